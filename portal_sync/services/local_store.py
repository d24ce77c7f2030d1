"""
Local mirror store.

CRUD functions the sync core relies on, backed by SQLAlchemy. Every write returns
a StoreResult; database failures are rolled back and surfaced as LocalStoreError
instead of propagating.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import utcnow
from ..models.incident import Incident, IncidentStatus
from ..models.property import Amenity, Building, Unit
from ..models.reservation import Reservation, ReservationStatus
from ..models.user import User, UserRoleAssignment
from .errors import LocalStoreError

logger = logging.getLogger(__name__)

INCIDENT_UPDATABLE_FIELDS = ("title", "description", "priority", "status", "location", "type")
USER_PROFILE_FIELDS = ("full_name", "role", "unit_id", "building_id", "is_active")


@dataclass
class StoreResult:
    result: Any = None
    error: Optional[LocalStoreError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class LocalStore:
    """Reads and writes against the local mirror tables"""

    def __init__(self, db: Session):
        self.db = db

    def _fail(self, action: str, exc: Exception) -> StoreResult:
        self.db.rollback()
        logger.error(f"Local store {action} failed: {exc}")
        return StoreResult(error=LocalStoreError(message=str(exc)))

    # ==================
    # Reservations
    # ==================

    def find_reservation(
        self,
        user_id: str,
        amenity_id: str,
        reservation_date: str,
        start_time: str,
        end_time: str
    ) -> Optional[Reservation]:
        """Active reservation for the same user, amenity and slot, if any"""
        return self.db.query(Reservation).filter(
            and_(
                Reservation.user_id == user_id,
                Reservation.amenity_id == amenity_id,
                Reservation.reservation_date == reservation_date,
                Reservation.start_time == start_time,
                Reservation.end_time == end_time,
                Reservation.status != ReservationStatus.CANCELLED.value
            )
        ).first()

    def create_reservation(
        self,
        user_id: str,
        amenity_id: str,
        reservation_date: str,
        start_time: str,
        end_time: str,
        notes: Optional[str] = None,
        portal_id: Optional[int] = None
    ) -> StoreResult:
        """
        Create a pending reservation.

        Idempotent on (user, amenity, date, start, end): replaying the same
        logical reservation returns the existing row instead of a duplicate.
        """
        try:
            existing = self.find_reservation(user_id, amenity_id, reservation_date, start_time, end_time)
            if existing:
                if portal_id and not existing.portal_id:
                    existing.portal_id = portal_id
                    self.db.commit()
                logger.info(f"Reservation {existing.id} already mirrored, reusing it")
                return StoreResult(result=existing)

            reservation = Reservation(
                user_id=user_id,
                amenity_id=amenity_id,
                reservation_date=reservation_date,
                start_time=start_time,
                end_time=end_time,
                notes=notes or None,
                portal_id=portal_id or None,
                status=ReservationStatus.PENDING.value
            )
            self.db.add(reservation)
            self.db.commit()
            self.db.refresh(reservation)
            return StoreResult(result=reservation)
        except SQLAlchemyError as e:
            return self._fail("create_reservation", e)

    def update_reservation_status(self, reservation_id: str, status: str) -> StoreResult:
        try:
            reservation = self.db.query(Reservation).filter(Reservation.id == reservation_id).first()
            if not reservation:
                return StoreResult(error=LocalStoreError(message=f"Reservation {reservation_id} not found", status=404))
            reservation.status = status
            self.db.commit()
            return StoreResult(result=reservation)
        except SQLAlchemyError as e:
            return self._fail("update_reservation_status", e)

    def update_reservation_portal_id(self, reservation_id: str, portal_id: int) -> StoreResult:
        try:
            updated = self.db.query(Reservation).filter(Reservation.id == reservation_id).update(
                {Reservation.portal_id: portal_id}
            )
            self.db.commit()
            if not updated:
                return StoreResult(error=LocalStoreError(message=f"Reservation {reservation_id} not found", status=404))
            return StoreResult(result=portal_id)
        except SQLAlchemyError as e:
            return self._fail("update_reservation_portal_id", e)

    def get_reservation_portal_id(self, reservation_id: str) -> Optional[int]:
        reservation = self.db.query(Reservation).filter(Reservation.id == reservation_id).first()
        return reservation.portal_id if reservation else None

    def get_reservation_by_portal_id(self, portal_id: int) -> Optional[Reservation]:
        return self.db.query(Reservation).filter(Reservation.portal_id == portal_id).first()

    # ==================
    # Incidents
    # ==================

    def create_incident(
        self,
        user_id: str,
        building_id: str,
        type: str,
        title: str,
        description: str,
        location: Optional[str] = None,
        priority: Optional[str] = None,
        portal_id: Optional[int] = None
    ) -> StoreResult:
        try:
            if portal_id:
                existing = self.get_incident_by_portal_id(portal_id)
                if existing:
                    return StoreResult(result=existing)

            incident = Incident(
                user_id=user_id,
                building_id=building_id,
                type=type,
                title=title,
                description=description,
                location=location or None,
                priority=priority or "medium",
                portal_id=portal_id or None,
                status=IncidentStatus.OPEN.value
            )
            self.db.add(incident)
            self.db.commit()
            self.db.refresh(incident)
            return StoreResult(result=incident)
        except SQLAlchemyError as e:
            return self._fail("create_incident", e)

    def update_incident(self, incident_id: str, updates: Dict[str, Any]) -> StoreResult:
        try:
            incident = self.db.query(Incident).filter(Incident.id == incident_id).first()
            if not incident:
                return StoreResult(error=LocalStoreError(message=f"Incident {incident_id} not found", status=404))

            for field in INCIDENT_UPDATABLE_FIELDS:
                if field in updates and updates[field] is not None:
                    setattr(incident, field, updates[field])

            if updates.get("status") in (IncidentStatus.RESOLVED.value, IncidentStatus.CLOSED.value):
                incident.resolved_at = incident.resolved_at or utcnow()

            self.db.commit()
            return StoreResult(result=incident)
        except SQLAlchemyError as e:
            return self._fail("update_incident", e)

    def update_incident_portal_id(self, incident_id: str, portal_id: int) -> StoreResult:
        try:
            updated = self.db.query(Incident).filter(Incident.id == incident_id).update(
                {Incident.portal_id: portal_id}
            )
            self.db.commit()
            if not updated:
                return StoreResult(error=LocalStoreError(message=f"Incident {incident_id} not found", status=404))
            return StoreResult(result=portal_id)
        except SQLAlchemyError as e:
            return self._fail("update_incident_portal_id", e)

    def get_incident_portal_id(self, incident_id: str) -> Optional[int]:
        incident = self.db.query(Incident).filter(Incident.id == incident_id).first()
        return incident.portal_id if incident else None

    def get_incident_by_portal_id(self, portal_id: int) -> Optional[Incident]:
        return self.db.query(Incident).filter(Incident.portal_id == portal_id).first()

    # ==================
    # Portal id lookups
    # ==================

    def get_unit_portal_id(self, unit_id: str) -> Optional[int]:
        unit = self.db.query(Unit).filter(Unit.id == unit_id).first()
        return unit.portal_id if unit else None

    def get_amenity_portal_id(self, amenity_id: str) -> Optional[int]:
        amenity = self.db.query(Amenity).filter(Amenity.id == amenity_id).first()
        return amenity.portal_id if amenity else None

    def get_building_portal_id(self, building_id: str) -> Optional[int]:
        building = self.db.query(Building).filter(Building.id == building_id).first()
        return building.portal_id if building else None

    # ==================
    # Users
    # ==================

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email.strip().lower()).first()

    def update_user_profile(self, user_id: str, fields: Dict[str, Any]) -> StoreResult:
        try:
            user = self.db.query(User).filter(User.id == user_id).first()
            if not user:
                return StoreResult(error=LocalStoreError(message=f"User {user_id} not found", status=404))
            for field in USER_PROFILE_FIELDS:
                if field in fields:
                    setattr(user, field, fields[field])
            self.db.commit()
            return StoreResult(result=user)
        except SQLAlchemyError as e:
            return self._fail("update_user_profile", e)

    def set_user_roles(self, user_id: str, roles: List[str]) -> StoreResult:
        """Replace every role assignment of the user"""
        try:
            self.db.query(UserRoleAssignment).filter(UserRoleAssignment.user_id == user_id).delete()
            for role in dict.fromkeys(roles):
                self.db.add(UserRoleAssignment(user_id=user_id, role=role))
            self.db.commit()
            return StoreResult(result=list(dict.fromkeys(roles)))
        except SQLAlchemyError as e:
            return self._fail("set_user_roles", e)

    # ==================
    # Catalog (buildings / units / amenities)
    # ==================

    def get_building_by_portal_id(self, portal_id: int) -> Optional[Building]:
        return self.db.query(Building).filter(Building.portal_id == portal_id).first()

    def get_building_by_name(self, name: str) -> Optional[Building]:
        return self.db.query(Building).filter(Building.name == name).first()

    def get_unit_by_portal_id(self, portal_id: int) -> Optional[Unit]:
        return self.db.query(Unit).filter(Unit.portal_id == portal_id).first()

    def get_unit_by_number_in_building(self, building_id: str, unit_number: str) -> Optional[Unit]:
        return self.db.query(Unit).filter(
            and_(Unit.building_id == building_id, Unit.unit_number == unit_number)
        ).first()

    def get_amenity_by_portal_id(self, portal_id: int) -> Optional[Amenity]:
        return self.db.query(Amenity).filter(Amenity.portal_id == portal_id).first()

    def get_amenity_by_name_in_building(self, building_id: str, name_es: str) -> Optional[Amenity]:
        return self.db.query(Amenity).filter(
            and_(Amenity.building_id == building_id, Amenity.name_es == name_es)
        ).first()

    def save(self, model, values: Dict[str, Any], instance=None) -> StoreResult:
        """Create ``model`` from values, or apply them to ``instance``; None values are skipped"""
        values = {k: v for k, v in values.items() if v is not None}
        try:
            if instance is None:
                instance = model(**values)
                self.db.add(instance)
            else:
                for key, value in values.items():
                    setattr(instance, key, value)
            self.db.commit()
            self.db.refresh(instance)
            return StoreResult(result=instance)
        except SQLAlchemyError as e:
            return self._fail(f"save {model.__name__}", e)


class IdMappingResolver:
    """Resolve local rows to their Portal ids; never touches the network"""

    def __init__(self, store: LocalStore):
        self.store = store

    def unit_portal_id(self, unit_id: Optional[str]) -> Optional[int]:
        return self.store.get_unit_portal_id(unit_id) if unit_id else None

    def amenity_portal_id(self, amenity_id: Optional[str]) -> Optional[int]:
        return self.store.get_amenity_portal_id(amenity_id) if amenity_id else None

    def building_portal_id(self, building_id: Optional[str]) -> Optional[int]:
        return self.store.get_building_portal_id(building_id) if building_id else None

    def incident_portal_id(self, incident_id: Optional[str]) -> Optional[int]:
        return self.store.get_incident_portal_id(incident_id) if incident_id else None

    def reservation_portal_id(self, reservation_id: Optional[str]) -> Optional[int]:
        return self.store.get_reservation_portal_id(reservation_id) if reservation_id else None
