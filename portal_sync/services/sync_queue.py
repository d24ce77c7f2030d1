"""
Durable sync queue.

Jobs describing work that did not fully reach the Portal or the local mirror are
kept as a JSON array in the local_state table. SyncJob is a tagged union on
``type``: every variant carries exactly the payloads its replay handler needs.
"""

import enum
import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Iterable, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from sqlalchemy.orm import Session

from ..utils.db_helpers import read_state, write_state
from ..utils.logging_config import get_logger

logger = logging.getLogger(__name__)
structured_logger = get_logger(__name__)

QUEUE_KEY = "portalSyncQueue"

# Serializes read-modify-write of the queue document within this process
_queue_lock = threading.Lock()


class SyncJobType(str, enum.Enum):
    REMOTE_CREATE_RESERVATION = "remote-create-reservation"
    REMOTE_CREATE_INCIDENT = "remote-create-incident"
    REMOTE_UPDATE_INCIDENT = "remote-update-incident"
    REMOTE_APPROVE_RESERVATION = "remote-approve-reservation"
    REMOTE_PROVISION_USER = "remote-provision-user"
    LOCAL_CREATE_RESERVATION = "local-create-reservation"
    LOCAL_CREATE_INCIDENT = "local-create-incident"
    LOCAL_UPDATE_INCIDENT = "local-update-incident"
    LOCAL_UPDATE_RESERVATION_STATUS = "local-update-reservation-status"


# ==================
# Portal payloads (serialized with the Portal's field names)
# ==================

class PortalPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_portal(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ReservationPortalPayload(PortalPayload):
    razon_social: str = Field(alias="razonSocial")
    id_unidad: int = Field(alias="idUnidad")
    cantidad_personas: int = Field(alias="cantidadPersonas")
    id_quincho: int = Field(alias="idQuincho")
    fecha: str
    hora_inicio: str = Field(alias="horaInicio")
    hora_fin: str = Field(alias="horaFin")
    correo: str
    celular: str
    observacion: str = ""
    abonado: str = "NO"


class IncidentPortalPayload(PortalPayload):
    id_propiedad: int = Field(alias="idPropiedad")
    id_unidad: int = Field(alias="idUnidad")
    titulo: str
    descripcion: str
    prioridad: str
    id_quincho: Optional[int] = Field(default=None, alias="idQuincho")


class IncidentUpdatePortalPayload(PortalPayload):
    incident_id: Union[int, str] = Field(alias="incidentId")
    titulo: Optional[str] = None
    descripcion: Optional[str] = None
    prioridad: Optional[str] = None
    estado: Optional[str] = None

    def to_portal(self) -> Dict[str, Any]:
        body = super().to_portal()
        body.pop("incidentId", None)
        return body


class ApprovalPortalPayload(PortalPayload):
    reservation_id: Union[int, str] = Field(alias="reservationId")


class ProvisionUserPortalPayload(PortalPayload):
    nombre_completo: str = Field(alias="nombreCompleto")
    correo: str


# ==================
# Local payloads
# ==================

class ReservationLocalPayload(BaseModel):
    user_id: str
    amenity_id: str
    unit_id: Optional[str] = None
    reservation_date: str
    start_time: str
    end_time: str
    notes: Optional[str] = None
    portal_id: Optional[int] = None


class IncidentLocalPayload(BaseModel):
    user_id: str
    building_id: str
    unit_id: Optional[str] = None
    amenity_id: Optional[str] = None
    type: str = "maintenance"
    title: str
    description: str
    location: Optional[str] = None
    priority: Optional[str] = None
    portal_id: Optional[int] = None


class IncidentUpdateLocalPayload(BaseModel):
    incident_id: Optional[str] = None
    updates: Dict[str, Any] = Field(default_factory=dict)


class ReservationStatusLocalPayload(BaseModel):
    reservation_id: str
    status: str


# ==================
# Jobs
# ==================

class SyncJobBase(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    attempts: int = 0
    last_error: Optional[str] = None


class RemoteCreateReservationJob(SyncJobBase):
    type: Literal["remote-create-reservation"] = SyncJobType.REMOTE_CREATE_RESERVATION.value
    remote_payload: ReservationPortalPayload
    local_payload: ReservationLocalPayload


class RemoteCreateIncidentJob(SyncJobBase):
    type: Literal["remote-create-incident"] = SyncJobType.REMOTE_CREATE_INCIDENT.value
    remote_payload: IncidentPortalPayload
    local_payload: IncidentLocalPayload


class RemoteUpdateIncidentJob(SyncJobBase):
    type: Literal["remote-update-incident"] = SyncJobType.REMOTE_UPDATE_INCIDENT.value
    remote_payload: IncidentUpdatePortalPayload
    local_payload: Optional[IncidentUpdateLocalPayload] = None


class RemoteApproveReservationJob(SyncJobBase):
    type: Literal["remote-approve-reservation"] = SyncJobType.REMOTE_APPROVE_RESERVATION.value
    remote_payload: ApprovalPortalPayload
    local_payload: Optional[ReservationStatusLocalPayload] = None


class RemoteProvisionUserJob(SyncJobBase):
    type: Literal["remote-provision-user"] = SyncJobType.REMOTE_PROVISION_USER.value
    remote_payload: ProvisionUserPortalPayload


class LocalCreateReservationJob(SyncJobBase):
    type: Literal["local-create-reservation"] = SyncJobType.LOCAL_CREATE_RESERVATION.value
    local_payload: ReservationLocalPayload


class LocalCreateIncidentJob(SyncJobBase):
    type: Literal["local-create-incident"] = SyncJobType.LOCAL_CREATE_INCIDENT.value
    local_payload: IncidentLocalPayload


class LocalUpdateIncidentJob(SyncJobBase):
    type: Literal["local-update-incident"] = SyncJobType.LOCAL_UPDATE_INCIDENT.value
    local_payload: IncidentUpdateLocalPayload


class LocalUpdateReservationStatusJob(SyncJobBase):
    type: Literal["local-update-reservation-status"] = SyncJobType.LOCAL_UPDATE_RESERVATION_STATUS.value
    local_payload: ReservationStatusLocalPayload


SyncJob = Annotated[
    Union[
        RemoteCreateReservationJob,
        RemoteCreateIncidentJob,
        RemoteUpdateIncidentJob,
        RemoteApproveReservationJob,
        RemoteProvisionUserJob,
        LocalCreateReservationJob,
        LocalCreateIncidentJob,
        LocalUpdateIncidentJob,
        LocalUpdateReservationStatusJob,
    ],
    Field(discriminator="type"),
]

_job_adapter = TypeAdapter(SyncJob)


def parse_job(raw: Dict[str, Any]) -> SyncJobBase:
    return _job_adapter.validate_python(raw)


def mark_attempt(job: SyncJobBase, error: str) -> SyncJobBase:
    """Copy of job with one more failed attempt recorded"""
    return job.model_copy(update={"attempts": job.attempts + 1, "last_error": error})


class SyncQueueStore:
    """
    Ordered, durable list of pending sync jobs.

    enqueue appends under a lock (plus a row lock on PostgreSQL) so concurrent
    writers never drop each other's jobs; replace is used by the drainer only.
    """

    def __init__(self, db: Session):
        self.db = db

    def _load(self, for_update: bool = False) -> List[SyncJobBase]:
        raw = read_state(self.db, QUEUE_KEY, for_update=for_update)
        if not raw:
            return []
        try:
            entries = json.loads(raw)
        except ValueError:
            logger.error("Sync queue document is not valid JSON, ignoring it")
            return []
        if not isinstance(entries, list):
            return []

        jobs = []
        for entry in entries:
            try:
                jobs.append(parse_job(entry))
            except ValidationError as e:
                logger.error(f"Dropping malformed sync job {entry.get('id') if isinstance(entry, dict) else entry!r}: {e}")
        return jobs

    def _save(self, jobs: Iterable[SyncJobBase]) -> None:
        document = json.dumps([job.model_dump(mode="json") for job in jobs])
        write_state(self.db, QUEUE_KEY, document)

    def enqueue(self, job: SyncJobBase, reason: Optional[str] = None) -> SyncJobBase:
        with _queue_lock:
            jobs = self._load(for_update=True)
            jobs.append(job)
            self._save(jobs)
        structured_logger.job_enqueued(job.id, job.type, reason or job.last_error or "deferred")
        return job

    def all(self) -> List[SyncJobBase]:
        return self._load()

    def replace(self, remaining: List[SyncJobBase], drained_ids: Optional[Iterable[str]] = None) -> None:
        """
        Persist ``remaining`` as the new queue.

        With ``drained_ids`` (the ids the caller read before processing), jobs
        enqueued since then are kept after ``remaining`` instead of being dropped.
        """
        with _queue_lock:
            kept = list(remaining)
            if drained_ids is not None:
                seen = set(drained_ids)
                kept.extend(job for job in self._load(for_update=True) if job.id not in seen)
            self._save(kept)

    def __len__(self) -> int:
        return len(self._load())
