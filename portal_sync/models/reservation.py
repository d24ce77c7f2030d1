import uuid
from sqlalchemy import Column, String, Text, Integer, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
import enum
from ..database import Base, utcnow


class ReservationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    portal_id = Column(Integer, nullable=True, index=True)  # idReserva
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    amenity_id = Column(String(36), ForeignKey("amenities.id", ondelete="CASCADE"), nullable=False)
    reservation_date = Column(String(10), nullable=False)  # YYYY-MM-DD as sent to the Portal
    start_time = Column(String(8), nullable=False)
    end_time = Column(String(8), nullable=False)
    status = Column(String(20), default=ReservationStatus.PENDING.value)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User")
    amenity = relationship("Amenity")

    __table_args__ = (
        Index("idx_reservation_slot", "user_id", "amenity_id", "reservation_date", "start_time", "end_time"),
    )

    def __repr__(self):
        return f"<Reservation {self.reservation_date} {self.start_time}-{self.end_time} ({self.status})>"
