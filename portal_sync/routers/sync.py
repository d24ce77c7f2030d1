"""
Portal Sync API Router

Operational endpoints for the Portal sync core:
- Queue inspection and manual drain
- Catalog pull (buildings, units, amenities)
- Dual-write operations (reservations, incidents, approvals, user provisioning)
- Portal session status and sign-out

The Portal token is never returned by any endpoint.
"""

import uuid
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..config import settings
from ..services.catalog_sync import CatalogSyncService
from ..services.dual_write import (
    DualWriteOrchestrator,
    IncidentRequest,
    OperationResult,
    ReservationRequest,
)
from ..services.portal_client import PortalClient
from ..services.portal_session import PortalSessionStore, SessionContext
from ..services.queue_drainer import QueueDrainer
from ..services.sync_queue import IncidentLocalPayload, ReservationLocalPayload, SyncQueueStore
from ..schemas.sync import (
    SyncJobResponse,
    SyncQueueResponse,
    DrainRequest,
    DrainResponse,
    CatalogSyncRequest,
    CatalogSyncResponse,
    PortalSessionStatus,
    ReservationCreateRequest,
    IncidentCreateRequest,
    IncidentUpdateRequest,
    ReservationApprovalRequest,
    UserProvisionRequest,
    OperationResponse
)

router = APIRouter(prefix="/api/portal-sync", tags=["Portal Sync"])


def get_request_id(request: Request) -> str:
    """Get request_id from request state or generate one"""
    return getattr(request.state, 'request_id', str(uuid.uuid4())[:8])


def get_portal_client(request: Request) -> PortalClient:
    return PortalClient(request_id=get_request_id(request))


def get_session_context(db: Session = Depends(get_db)) -> SessionContext:
    return SessionContext.from_store(PortalSessionStore(db), identity_email=settings.portal_identity_email or None)


def get_orchestrator(
    db: Session = Depends(get_db),
    client: PortalClient = Depends(get_portal_client)
) -> DualWriteOrchestrator:
    return DualWriteOrchestrator(db, client=client)


# Hard failures only; Portal and local outages come back as queued
ERROR_STATUS = {
    "input_error": 422,
    "mapping_error": 409,
    "auth_error": 401,
    "local_store_error": 500,
}


def to_operation_response(result: OperationResult) -> OperationResponse:
    if not result.accepted:
        status_code = ERROR_STATUS.get(result.error.code, 502)
        raise HTTPException(status_code=status_code, detail=result.error.to_dict())

    return OperationResponse(
        ok=result.ok,
        queued=result.queued,
        error=result.error.to_dict() if result.error else None,
        job_id=result.job_id,
        record_id=getattr(result.record, "id", None)
    )


# ==================
# Queue
# ==================

@router.get("/queue", response_model=SyncQueueResponse)
def list_queue(db: Session = Depends(get_db)):
    """List pending sync jobs in processing order"""
    jobs = SyncQueueStore(db).all()
    return SyncQueueResponse(
        total=len(jobs),
        jobs=[SyncJobResponse.model_validate(job.model_dump()) for job in jobs]
    )


@router.post("/drain", response_model=DrainResponse)
def drain_queue(
    body: Optional[DrainRequest] = None,
    db: Session = Depends(get_db),
    client: PortalClient = Depends(get_portal_client),
    session: SessionContext = Depends(get_session_context)
):
    """
    Run one drain pass now.

    Jobs that still fail stay queued with their attempt count increased.
    """
    email = body.email if body else None
    drainer = QueueDrainer(db, orchestrator=DualWriteOrchestrator(db, client=client))
    result = drainer.drain(session, identity_email=email)
    return DrainResponse(processed=result.processed, remaining=result.remaining)


# ==================
# Dual-write operations
# ==================

@router.post("/reservations", response_model=OperationResponse, status_code=201)
def create_reservation(
    body: ReservationCreateRequest,
    orchestrator: DualWriteOrchestrator = Depends(get_orchestrator),
    session: SessionContext = Depends(get_session_context)
):
    """
    Create a reservation on the Portal and in the local mirror.

    ``queued`` means the Portal or the local write was deferred to the sync queue.
    """
    request = ReservationRequest(
        razon_social=body.razon_social,
        cantidad_personas=body.cantidad_personas,
        correo=body.correo,
        celular=body.celular,
        observacion=body.observacion,
        abonado=body.abonado
    )
    local = ReservationLocalPayload(
        user_id=body.user_id,
        amenity_id=body.amenity_id,
        unit_id=body.unit_id,
        reservation_date=body.reservation_date,
        start_time=body.start_time,
        end_time=body.end_time,
        notes=body.notes
    )
    return to_operation_response(orchestrator.create_reservation(session, request, local))


@router.post("/reservations/approve", response_model=OperationResponse)
def approve_reservation(
    body: ReservationApprovalRequest,
    orchestrator: DualWriteOrchestrator = Depends(get_orchestrator),
    session: SessionContext = Depends(get_session_context)
):
    result = orchestrator.approve_reservation(
        session,
        portal_reservation_id=body.portal_reservation_id,
        local_reservation_id=body.local_reservation_id,
        local_status=body.status
    )
    return to_operation_response(result)


@router.post("/incidents", response_model=OperationResponse, status_code=201)
def create_incident(
    body: IncidentCreateRequest,
    orchestrator: DualWriteOrchestrator = Depends(get_orchestrator),
    session: SessionContext = Depends(get_session_context)
):
    request = IncidentRequest(titulo=body.title, descripcion=body.description, prioridad=body.prioridad)
    local = IncidentLocalPayload(
        user_id=body.user_id,
        building_id=body.building_id,
        unit_id=body.unit_id,
        amenity_id=body.amenity_id,
        type=body.type,
        title=body.title,
        description=body.description,
        location=body.location,
        priority=body.priority
    )
    return to_operation_response(orchestrator.create_incident(session, request, local))


@router.put("/incidents", response_model=OperationResponse)
def update_incident(
    body: IncidentUpdateRequest,
    orchestrator: DualWriteOrchestrator = Depends(get_orchestrator),
    session: SessionContext = Depends(get_session_context)
):
    """Update an incident by Portal id, or by local id when it is mapped"""
    result = orchestrator.update_incident(
        session,
        body.changes,
        portal_incident_id=body.portal_incident_id,
        local_incident_id=body.local_incident_id,
        local_updates=body.local_updates
    )
    return to_operation_response(result)


@router.post("/users", response_model=OperationResponse, status_code=201)
def provision_user(
    body: UserProvisionRequest,
    orchestrator: DualWriteOrchestrator = Depends(get_orchestrator),
    session: SessionContext = Depends(get_session_context)
):
    """Create a Portal login for a user"""
    payload = {"nombreCompleto": body.nombre_completo, "correo": body.correo}
    return to_operation_response(orchestrator.provision_user(session, payload))


# ==================
# Catalog
# ==================

@router.post("/catalog", response_model=CatalogSyncResponse)
def sync_catalog(
    body: Optional[CatalogSyncRequest] = None,
    db: Session = Depends(get_db),
    client: PortalClient = Depends(get_portal_client),
    session: SessionContext = Depends(get_session_context)
):
    """Pull properties, units and amenities from the Portal into the local store"""
    body = body or CatalogSyncRequest()
    service = CatalogSyncService(db, client=client)
    result = service.sync_catalog(
        session,
        email=body.email,
        include_units=body.include_units,
        include_amenities=body.include_amenities
    )

    if result.error:
        status_code = 401 if result.error.code == "auth_error" else 502
        raise HTTPException(status_code=status_code, detail=result.error.message)

    return CatalogSyncResponse(**result.to_dict())


# ==================
# Session
# ==================

@router.get("/session", response_model=PortalSessionStatus)
def get_session_status(db: Session = Depends(get_db)):
    store = PortalSessionStore(db)
    credential = store.get()
    return PortalSessionStatus(
        authenticated=credential is not None,
        token_type=credential.token_type if credential else None,
        role=store.get_role()
    )


@router.delete("/session")
def sign_out(session: SessionContext = Depends(get_session_context)):
    """Clear the stored Portal credential"""
    session.clear()
    return {"success": True}
