"""
Portal ↔ local vocabulary translation.

The Portal speaks Spanish status literals and free-form role names; the local
mirror uses canonical enumerations. Every lookup returns None when there is no
mapping so callers can treat it as "leave the field unchanged".
"""

from typing import Optional

from ..models.incident import IncidentStatus
from ..models.reservation import ReservationStatus
from ..models.user import UserRole


# Case-sensitive on the Portal side
INCIDENT_STATUS_MAP = {
    "ABIERTA": IncidentStatus.OPEN.value,
    "EN_PROCESO": IncidentStatus.IN_PROGRESS.value,
    "RESUELTA": IncidentStatus.RESOLVED.value,
    "CERRADA": IncidentStatus.CLOSED.value,
    "RECHAZADA": IncidentStatus.CLOSED.value,
}

RESERVATION_STATUS_MAP = {
    "PENDIENTE": ReservationStatus.PENDING.value,
    "APROBADA": ReservationStatus.APPROVED.value,
    "RECHAZADA": ReservationStatus.REJECTED.value,
    "CANCELADA": ReservationStatus.CANCELLED.value,
}

# Normalized (trimmed, lower-cased) role claims → canonical local role
ROLE_VOCABULARY = {
    "regular_user": UserRole.REGULAR_USER.value,
    "regular": UserRole.REGULAR_USER.value,
    "user": UserRole.REGULAR_USER.value,
    "usuario": UserRole.REGULAR_USER.value,
    "residente": UserRole.REGULAR_USER.value,
    "tenant": UserRole.TENANT.value,
    "inquilino": UserRole.TENANT.value,
    "arrendatario": UserRole.TENANT.value,
    "locatario": UserRole.TENANT.value,
    "owner": UserRole.OWNER.value,
    "propietario": UserRole.OWNER.value,
    "dueno": UserRole.OWNER.value,
    "dueño": UserRole.OWNER.value,
    "super_admin": UserRole.SUPER_ADMIN.value,
    "superadmin": UserRole.SUPER_ADMIN.value,
    "super admin": UserRole.SUPER_ADMIN.value,
    "admin": UserRole.SUPER_ADMIN.value,
    "administrador": UserRole.SUPER_ADMIN.value,
    "administrator": UserRole.SUPER_ADMIN.value,
}


def portal_status_to_local(status: Optional[str]) -> Optional[str]:
    """Translate a Portal incident status literal (e.g. ``EN_PROCESO``)"""
    if not status:
        return None
    return INCIDENT_STATUS_MAP.get(status)


def reservation_status_to_local(status: Optional[str]) -> Optional[str]:
    """
    Translate a reservation decision to the local reservation status.

    Accepts either a Portal literal (``APROBADA``) or a value that is already
    canonical (``approved``).
    """
    if not status:
        return None
    if status in RESERVATION_STATUS_MAP:
        return RESERVATION_STATUS_MAP[status]
    canonical = {s.value for s in ReservationStatus}
    return status if status in canonical else None


def normalize_role(role: Optional[str]) -> str:
    return (role or "").strip().lower()


def portal_role_to_local(role: Optional[str]) -> Optional[str]:
    """Map a Portal role claim (``Inquilino``, ``ADMIN``...) to a local UserRole value"""
    normalized = normalize_role(role)
    if not normalized:
        return None
    return ROLE_VOCABULARY.get(normalized)
