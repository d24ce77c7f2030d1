import uuid
from sqlalchemy import Column, String, Text, Integer, DateTime, ForeignKey
from sqlalchemy.orm import relationship
import enum
from ..database import Base, utcnow


class IncidentType(str, enum.Enum):
    MAINTENANCE = "maintenance"
    COMPLAINT = "complaint"
    SUGGESTION = "suggestion"


class IncidentStatus(str, enum.Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class Incident(Base):
    __tablename__ = "incidents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    portal_id = Column(Integer, nullable=True, index=True)  # idIncidencia
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    building_id = Column(String(36), ForeignKey("buildings.id", ondelete="CASCADE"), nullable=False)
    type = Column(String(20), nullable=False, default=IncidentType.MAINTENANCE.value)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    status = Column(String(20), default=IncidentStatus.OPEN.value)
    location = Column(String(255), nullable=True)
    priority = Column(String(20), default="medium")
    resolved_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User")
    building = relationship("Building")

    def __repr__(self):
        return f"<Incident {self.title} - {self.status}>"
