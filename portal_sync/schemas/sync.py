"""
Portal Sync Schemas

Pydantic models for the portal-sync API requests and responses.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any, Union
from pydantic import BaseModel, Field


# ==================
# Queue
# ==================

class SyncJobResponse(BaseModel):
    """Pending sync job; payloads are not exposed"""
    id: str
    type: str
    attempts: int
    last_error: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class SyncQueueResponse(BaseModel):
    total: int
    jobs: List[SyncJobResponse]


class DrainRequest(BaseModel):
    email: Optional[str] = Field(default=None, description="Identity email used if no Portal session is held")


class DrainResponse(BaseModel):
    processed: int
    remaining: int


# ==================
# Catalog
# ==================

class CatalogSyncRequest(BaseModel):
    email: Optional[str] = None
    include_units: bool = True
    include_amenities: bool = True


class CatalogSyncResponse(BaseModel):
    synced: Dict[str, int]
    errors: List[str]
    error: Optional[Dict[str, Any]] = None


# ==================
# Session
# ==================

class PortalSessionStatus(BaseModel):
    """Whether a Portal credential is held; the token itself is never returned"""
    authenticated: bool
    token_type: Optional[str] = None
    role: Optional[str] = None


# ==================
# Dual-write operations
# ==================

class ReservationCreateRequest(BaseModel):
    """Local reservation row plus the contact fields the Portal requires"""
    user_id: str
    amenity_id: str
    unit_id: Optional[str] = None
    reservation_date: str = Field(..., description="YYYY-MM-DD")
    start_time: str = Field(..., description="HH:MM")
    end_time: str = Field(..., description="HH:MM")
    notes: Optional[str] = None
    razon_social: str
    cantidad_personas: int
    correo: str
    celular: str
    observacion: str = ""
    abonado: str = "NO"


class IncidentCreateRequest(BaseModel):
    user_id: str
    building_id: str
    unit_id: Optional[str] = None
    amenity_id: Optional[str] = None
    type: str = "maintenance"
    title: str
    description: str
    location: Optional[str] = None
    priority: Optional[str] = None
    prioridad: str = Field(..., description="Portal priority label")


class IncidentUpdateRequest(BaseModel):
    """
    ``changes`` uses Portal field names (titulo, descripcion, prioridad, estado);
    ``local_updates`` uses local column names.
    """
    portal_incident_id: Optional[Union[int, str]] = None
    local_incident_id: Optional[str] = None
    changes: Dict[str, Any] = Field(default_factory=dict)
    local_updates: Optional[Dict[str, Any]] = None


class ReservationApprovalRequest(BaseModel):
    portal_reservation_id: Optional[Union[int, str]] = None
    local_reservation_id: Optional[str] = None
    status: Optional[str] = "approved"


class UserProvisionRequest(BaseModel):
    nombre_completo: str
    correo: str


class OperationResponse(BaseModel):
    ok: bool
    queued: bool
    error: Optional[Dict[str, Any]] = None
    job_id: Optional[str] = None
    record_id: Optional[str] = None
