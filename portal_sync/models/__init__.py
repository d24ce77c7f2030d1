# Models package
from .property import Building, Unit, Amenity
from .user import User, UserRole, UserRoleAssignment
from .reservation import Reservation, ReservationStatus
from .incident import Incident, IncidentStatus, IncidentType
from .local_state import LocalStateEntry

__all__ = [
    "Building", "Unit", "Amenity",
    "User", "UserRole", "UserRoleAssignment",
    "Reservation", "ReservationStatus",
    "Incident", "IncidentStatus", "IncidentType",
    "LocalStateEntry",
]
