"""
Dual-write orchestration.

Each business operation writes to the Portal first and then mirrors the change
locally. Whatever step fails is recorded as a SyncJob so no accepted write is
lost; only input problems (missing Portal mapping, invalid fields) are reported
as hard failures and never queued.

The replay_* methods are the same handlers the QueueDrainer calls for stored
jobs. During replay a failed step is reported back instead of queued again, so
the drainer can keep the original job with its attempt count.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

from pydantic import ValidationError as PayloadValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import AuthError, InputError, LocalStoreError, MappingError, PortalSyncError
from .local_store import IdMappingResolver, LocalStore
from .portal_auth import AuthSessionManager
from .portal_client import PortalClient
from .portal_session import SessionContext
from .status_translator import portal_status_to_local, reservation_status_to_local
from .sync_queue import (
    ApprovalPortalPayload,
    IncidentLocalPayload,
    IncidentPortalPayload,
    IncidentUpdateLocalPayload,
    IncidentUpdatePortalPayload,
    LocalCreateIncidentJob,
    LocalCreateReservationJob,
    LocalUpdateIncidentJob,
    LocalUpdateReservationStatusJob,
    ProvisionUserPortalPayload,
    RemoteApproveReservationJob,
    RemoteCreateIncidentJob,
    RemoteCreateReservationJob,
    RemoteProvisionUserJob,
    RemoteUpdateIncidentJob,
    ReservationLocalPayload,
    ReservationPortalPayload,
    ReservationStatusLocalPayload,
    SyncJobBase,
    SyncJobType,
    SyncQueueStore,
)
from ..utils.portal_payload import extract_portal_id, read_string

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """
    Outcome of a dual-write operation.

    ok      -- both sides written
    queued  -- accepted, remaining work is in the sync queue
    neither -- hard failure described by ``error``
    """
    ok: bool = False
    queued: bool = False
    error: Optional[PortalSyncError] = None
    record: Any = None
    job_id: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.ok or self.queued

    @classmethod
    def succeeded(cls, record: Any = None) -> "OperationResult":
        return cls(ok=True, record=record)

    @classmethod
    def failed(cls, error: PortalSyncError) -> "OperationResult":
        return cls(error=error)


@dataclass
class ReservationRequest:
    """Fields the Portal needs for a reservation beyond the local row"""
    razon_social: str
    cantidad_personas: int
    correo: str
    celular: str
    observacion: str = ""
    abonado: str = "NO"


@dataclass
class IncidentRequest:
    titulo: str
    descripcion: str
    prioridad: str


class DualWriteOrchestrator:

    def __init__(
        self,
        db: Session,
        client: Optional[PortalClient] = None,
        auth: Optional[AuthSessionManager] = None,
        queue: Optional[SyncQueueStore] = None,
        store: Optional[LocalStore] = None
    ):
        self.db = db
        self.client = client or PortalClient()
        self.store = store or LocalStore(db)
        self.auth = auth or AuthSessionManager(db, client=self.client, store=self.store)
        self.queue = queue or SyncQueueStore(db)
        self.mappings = IdMappingResolver(self.store)

        self._replay_handlers: Dict[str, Callable[[SessionContext, Any], OperationResult]] = {
            SyncJobType.REMOTE_CREATE_RESERVATION.value: self.replay_remote_create_reservation,
            SyncJobType.REMOTE_CREATE_INCIDENT.value: self.replay_remote_create_incident,
            SyncJobType.REMOTE_UPDATE_INCIDENT.value: self.replay_remote_update_incident,
            SyncJobType.REMOTE_APPROVE_RESERVATION.value: self.replay_remote_approve_reservation,
            SyncJobType.REMOTE_PROVISION_USER.value: self.replay_remote_provision_user,
            SyncJobType.LOCAL_CREATE_RESERVATION.value: self.replay_local_create_reservation,
            SyncJobType.LOCAL_CREATE_INCIDENT.value: self.replay_local_create_incident,
            SyncJobType.LOCAL_UPDATE_INCIDENT.value: self.replay_local_update_incident,
            SyncJobType.LOCAL_UPDATE_RESERVATION_STATUS.value: self.replay_local_update_reservation_status,
        }

    # ==================
    # Shared plumbing
    # ==================

    def _defer(self, job: SyncJobBase, error: PortalSyncError) -> OperationResult:
        """Queue the job and report a soft success"""
        job = job.model_copy(update={"last_error": error.message})
        try:
            self.queue.enqueue(job, reason=error.message)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Could not persist sync job {job.id} ({job.type}): {e}")
            return OperationResult.failed(LocalStoreError(message=str(e)))
        return OperationResult(queued=True, error=error, job_id=job.id)

    def _run_remote(self, session: SessionContext, job: SyncJobBase, apply) -> OperationResult:
        """ensure_auth, then the remote+local steps; any remote failure queues ``job``"""
        auth = self.auth.ensure_auth(session)
        if auth.error:
            return self._defer(job, auth.error)

        result = apply(session, job)
        # A LocalStoreError here means the Portal already accepted the write
        if result.accepted or isinstance(result.error, LocalStoreError):
            return result
        self._drop_rejected_credential(session, result.error)
        return self._defer(job, result.error)

    @staticmethod
    def _drop_rejected_credential(session: SessionContext, error: Optional[PortalSyncError]) -> None:
        """Forget a credential the Portal answered 401 to, so the next ensure_auth logs in again"""
        if error is None or isinstance(error, LocalStoreError) or error.status != 401:
            return
        if session.credential is not None:
            logger.warning("Portal rejected the session credential, clearing it")
            session.clear()

    @staticmethod
    def _invalid_input(operation: str, exc: Exception) -> OperationResult:
        logger.warning(f"Rejected {operation} input: {exc}")
        return OperationResult.failed(InputError(message=f"Invalid {operation} input", details=str(exc)))

    @staticmethod
    def _require_session(session: SessionContext) -> Optional[OperationResult]:
        if session.credential is None:
            return OperationResult.failed(AuthError(message="No Portal session"))
        return None

    def replay(self, session: SessionContext, job: SyncJobBase) -> OperationResult:
        """Re-attempt a stored job; used by the QueueDrainer"""
        handler = self._replay_handlers.get(job.type)
        if handler is None:
            return OperationResult.failed(InputError(message=f"Unsupported sync job: {job.type}"))
        result = handler(session, job)
        self._drop_rejected_credential(session, result.error)
        return result

    # ==================
    # Create reservation
    # ==================

    def create_reservation(
        self,
        session: SessionContext,
        request: ReservationRequest,
        local: ReservationLocalPayload
    ) -> OperationResult:
        razon_social = (request.razon_social or "").strip()
        correo = (request.correo or "").strip()
        celular = (request.celular or "").strip()
        try:
            cantidad = int(request.cantidad_personas)
        except (TypeError, ValueError):
            cantidad = 0

        if not razon_social or not correo or not celular or cantidad <= 0:
            return OperationResult.failed(InputError(message="Missing or invalid reservation fields"))

        unit_portal_id = self.mappings.unit_portal_id(local.unit_id)
        amenity_portal_id = self.mappings.amenity_portal_id(local.amenity_id)
        if not unit_portal_id or not amenity_portal_id:
            return OperationResult.failed(MappingError(message="Missing portal mapping for unit or amenity"))

        try:
            remote = ReservationPortalPayload(
                razon_social=razon_social,
                id_unidad=unit_portal_id,
                cantidad_personas=cantidad,
                id_quincho=amenity_portal_id,
                fecha=local.reservation_date,
                hora_inicio=local.start_time,
                hora_fin=local.end_time,
                correo=correo,
                celular=celular,
                observacion=(request.observacion or "").strip(),
                abonado=(request.abonado or "").strip() or "NO",
            )
            job = RemoteCreateReservationJob(remote_payload=remote, local_payload=local)
        except (PayloadValidationError, TypeError) as e:
            return self._invalid_input("reservation", e)
        return self._run_remote(session, job, self._apply_remote_create_reservation)

    def _apply_remote_create_reservation(self, session: SessionContext, job: RemoteCreateReservationJob) -> OperationResult:
        portal = self.client.create_reservation(session, job.remote_payload.to_portal())
        if portal.error:
            return OperationResult.failed(portal.error)

        portal_id = extract_portal_id(portal.data, "idReserva")
        local = job.local_payload.model_copy(update={"portal_id": portal_id})
        return self._apply_local_create_reservation(local, queue_on_failure=True)

    def _apply_local_create_reservation(self, local: ReservationLocalPayload, queue_on_failure: bool) -> OperationResult:
        created = self.store.create_reservation(
            local.user_id,
            local.amenity_id,
            local.reservation_date,
            local.start_time,
            local.end_time,
            local.notes,
            local.portal_id,
        )
        if created.error:
            if queue_on_failure:
                return self._defer(LocalCreateReservationJob(local_payload=local), created.error)
            return OperationResult.failed(created.error)

        reservation = created.result
        if local.portal_id and reservation.portal_id != local.portal_id:
            backfill = self.store.update_reservation_portal_id(reservation.id, local.portal_id)
            if backfill.error:
                logger.warning(f"Could not backfill portal_id on reservation {reservation.id}: {backfill.error.message}")
        return OperationResult.succeeded(reservation)

    def replay_remote_create_reservation(self, session: SessionContext, job: RemoteCreateReservationJob) -> OperationResult:
        return self._require_session(session) or self._apply_remote_create_reservation(session, job)

    def replay_local_create_reservation(self, session: SessionContext, job: LocalCreateReservationJob) -> OperationResult:
        return self._apply_local_create_reservation(job.local_payload, queue_on_failure=False)

    # ==================
    # Create incident
    # ==================

    def create_incident(
        self,
        session: SessionContext,
        request: IncidentRequest,
        local: IncidentLocalPayload
    ) -> OperationResult:
        if not (request.titulo or "").strip() or not (request.descripcion or "").strip():
            return OperationResult.failed(InputError(message="Missing incident title or description"))

        building_portal_id = self.mappings.building_portal_id(local.building_id)
        unit_portal_id = self.mappings.unit_portal_id(local.unit_id)
        if not building_portal_id or not unit_portal_id:
            return OperationResult.failed(MappingError(message="Missing portal mapping for building or unit"))

        amenity_portal_id = None
        if local.amenity_id:
            amenity_portal_id = self.mappings.amenity_portal_id(local.amenity_id)
            if not amenity_portal_id:
                return OperationResult.failed(MappingError(message="Missing portal mapping for amenity"))

        try:
            remote = IncidentPortalPayload(
                id_propiedad=building_portal_id,
                id_unidad=unit_portal_id,
                titulo=request.titulo.strip(),
                descripcion=request.descripcion.strip(),
                prioridad=request.prioridad,
                id_quincho=amenity_portal_id,
            )
            job = RemoteCreateIncidentJob(remote_payload=remote, local_payload=local)
        except (PayloadValidationError, TypeError) as e:
            return self._invalid_input("incident", e)
        return self._run_remote(session, job, self._apply_remote_create_incident)

    def _apply_remote_create_incident(self, session: SessionContext, job: RemoteCreateIncidentJob) -> OperationResult:
        portal = self.client.create_incident(session, job.remote_payload.to_portal())
        if portal.error:
            return OperationResult.failed(portal.error)

        portal_id = extract_portal_id(portal.data, "idIncidencia")
        local = job.local_payload.model_copy(update={"portal_id": portal_id})
        return self._apply_local_create_incident(local, queue_on_failure=True)

    def _apply_local_create_incident(self, local: IncidentLocalPayload, queue_on_failure: bool) -> OperationResult:
        created = self.store.create_incident(
            local.user_id,
            local.building_id,
            local.type,
            local.title,
            local.description,
            local.location,
            local.priority,
            local.portal_id,
        )
        if created.error:
            if queue_on_failure:
                return self._defer(LocalCreateIncidentJob(local_payload=local), created.error)
            return OperationResult.failed(created.error)

        incident = created.result
        if local.portal_id and incident.portal_id != local.portal_id:
            backfill = self.store.update_incident_portal_id(incident.id, local.portal_id)
            if backfill.error:
                logger.warning(f"Could not backfill portal_id on incident {incident.id}: {backfill.error.message}")
        return OperationResult.succeeded(incident)

    def replay_remote_create_incident(self, session: SessionContext, job: RemoteCreateIncidentJob) -> OperationResult:
        return self._require_session(session) or self._apply_remote_create_incident(session, job)

    def replay_local_create_incident(self, session: SessionContext, job: LocalCreateIncidentJob) -> OperationResult:
        return self._apply_local_create_incident(job.local_payload, queue_on_failure=False)

    # ==================
    # Update incident
    # ==================

    def update_incident(
        self,
        session: SessionContext,
        changes: Dict[str, Any],
        portal_incident_id: Optional[Union[int, str]] = None,
        local_incident_id: Optional[str] = None,
        local_updates: Optional[Dict[str, Any]] = None
    ) -> OperationResult:
        """
        Update an incident on the Portal, then locally.

        ``changes`` uses Portal field names (titulo, descripcion, prioridad,
        estado). The Portal id is resolved from the local incident when not given.
        """
        if portal_incident_id is None:
            portal_incident_id = self.mappings.incident_portal_id(local_incident_id)
            if not portal_incident_id:
                return OperationResult.failed(MappingError(message="Missing portal mapping for incident"))

        try:
            remote = IncidentUpdatePortalPayload(incident_id=portal_incident_id, **changes)
            local = None
            if local_incident_id or local_updates:
                local = IncidentUpdateLocalPayload(incident_id=local_incident_id, updates=local_updates or {})
            job = RemoteUpdateIncidentJob(remote_payload=remote, local_payload=local)
        except (PayloadValidationError, TypeError) as e:
            return self._invalid_input("incident update", e)
        return self._run_remote(session, job, self._apply_remote_update_incident)

    def _apply_remote_update_incident(self, session: SessionContext, job: RemoteUpdateIncidentJob) -> OperationResult:
        remote = job.remote_payload
        portal = self.client.update_incident(session, remote.incident_id, remote.to_portal())
        if portal.error:
            return OperationResult.failed(portal.error)

        local = job.local_payload or IncidentUpdateLocalPayload()
        incident_id = local.incident_id
        if not incident_id:
            portal_id = str(remote.incident_id)
            mirrored = self.store.get_incident_by_portal_id(int(portal_id)) if portal_id.isdigit() else None
            incident_id = mirrored.id if mirrored else None

        updates = dict(local.updates)
        if remote.estado:
            local_status = portal_status_to_local(remote.estado)
            if local_status:
                updates["status"] = local_status
            else:
                logger.info(f"Portal status '{remote.estado}' has no local mapping, status left unchanged")
                updates.pop("status", None)

        if not incident_id or not updates:
            return OperationResult.succeeded()

        return self._apply_local_update_incident(
            IncidentUpdateLocalPayload(incident_id=incident_id, updates=updates),
            queue_on_failure=True
        )

    def _apply_local_update_incident(self, local: IncidentUpdateLocalPayload, queue_on_failure: bool) -> OperationResult:
        if not local.incident_id:
            return OperationResult.failed(InputError(message="Missing incidentId"))

        updated = self.store.update_incident(local.incident_id, local.updates)
        if updated.error:
            if queue_on_failure:
                return self._defer(LocalUpdateIncidentJob(local_payload=local), updated.error)
            return OperationResult.failed(updated.error)
        return OperationResult.succeeded(updated.result)

    def replay_remote_update_incident(self, session: SessionContext, job: RemoteUpdateIncidentJob) -> OperationResult:
        return self._require_session(session) or self._apply_remote_update_incident(session, job)

    def replay_local_update_incident(self, session: SessionContext, job: LocalUpdateIncidentJob) -> OperationResult:
        return self._apply_local_update_incident(job.local_payload, queue_on_failure=False)

    # ==================
    # Approve reservation
    # ==================

    def approve_reservation(
        self,
        session: SessionContext,
        portal_reservation_id: Optional[Union[int, str]] = None,
        local_reservation_id: Optional[str] = None,
        local_status: Optional[str] = "approved"
    ) -> OperationResult:
        if portal_reservation_id is None:
            portal_reservation_id = self.mappings.reservation_portal_id(local_reservation_id)
            if not portal_reservation_id:
                return OperationResult.failed(MappingError(message="Missing portal mapping for reservation"))

        try:
            local = None
            if local_reservation_id and local_status:
                local = ReservationStatusLocalPayload(reservation_id=local_reservation_id, status=local_status)
            job = RemoteApproveReservationJob(
                remote_payload=ApprovalPortalPayload(reservation_id=portal_reservation_id),
                local_payload=local,
            )
        except (PayloadValidationError, TypeError) as e:
            return self._invalid_input("approval", e)
        return self._run_remote(session, job, self._apply_remote_approve_reservation)

    def _apply_remote_approve_reservation(self, session: SessionContext, job: RemoteApproveReservationJob) -> OperationResult:
        portal = self.client.approve_reservation(session, job.remote_payload.reservation_id)
        if portal.error:
            return OperationResult.failed(portal.error)

        if job.local_payload is None:
            return OperationResult.succeeded()

        # Prefer the status the Portal reports back, then the one requested
        data = portal.data.get("data") if isinstance(portal.data, dict) else None
        returned = read_string(data, ["estado", "status"]) if isinstance(data, dict) else None
        status = reservation_status_to_local(returned) or reservation_status_to_local(job.local_payload.status)
        if not status:
            logger.info(f"Reservation status '{job.local_payload.status}' has no local mapping, local write skipped")
            return OperationResult.succeeded()

        return self._apply_local_reservation_status(
            ReservationStatusLocalPayload(reservation_id=job.local_payload.reservation_id, status=status),
            queue_on_failure=True
        )

    def _apply_local_reservation_status(self, local: ReservationStatusLocalPayload, queue_on_failure: bool) -> OperationResult:
        updated = self.store.update_reservation_status(local.reservation_id, local.status)
        if updated.error:
            if queue_on_failure:
                return self._defer(LocalUpdateReservationStatusJob(local_payload=local), updated.error)
            return OperationResult.failed(updated.error)
        return OperationResult.succeeded(updated.result)

    def replay_remote_approve_reservation(self, session: SessionContext, job: RemoteApproveReservationJob) -> OperationResult:
        return self._require_session(session) or self._apply_remote_approve_reservation(session, job)

    def replay_local_update_reservation_status(self, session: SessionContext, job: LocalUpdateReservationStatusJob) -> OperationResult:
        return self._apply_local_reservation_status(job.local_payload, queue_on_failure=False)

    # ==================
    # Provision user
    # ==================

    def provision_user(self, session: SessionContext, payload: Dict[str, Any]) -> OperationResult:
        """Create a Portal login for a user; there is no local mirror step"""
        nombre_completo = read_string(payload, ["nombreCompleto", "nombre", "fullName", "full_name", "name"])
        correo = read_string(payload, ["correo", "email"])
        if not nombre_completo or not correo:
            return OperationResult.failed(InputError(message="Missing nombreCompleto or correo"))

        try:
            job = RemoteProvisionUserJob(
                remote_payload=ProvisionUserPortalPayload(nombre_completo=nombre_completo, correo=correo)
            )
        except (PayloadValidationError, TypeError) as e:
            return self._invalid_input("user", e)
        return self._run_remote(session, job, self._apply_remote_provision_user)

    def _apply_remote_provision_user(self, session: SessionContext, job: RemoteProvisionUserJob) -> OperationResult:
        portal = self.client.create_auth_user(session, job.remote_payload.to_portal())
        if portal.error:
            return OperationResult.failed(portal.error)
        return OperationResult.succeeded(portal.data)

    def replay_remote_provision_user(self, session: SessionContext, job: RemoteProvisionUserJob) -> OperationResult:
        return self._require_session(session) or self._apply_remote_provision_user(session, job)
