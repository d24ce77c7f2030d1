"""
Property catalog mirrored from the Portal: buildings, their units and amenities.

Rows are linked to their Portal counterparts through ``portal_id``.
"""
import uuid
from sqlalchemy import Column, String, Text, Integer, Float, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from ..database import Base, utcnow


class Building(Base):
    __tablename__ = "buildings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    portal_id = Column(Integer, nullable=True, index=True)  # idPropiedad
    name = Column(String(255), nullable=False)
    address = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    units = relationship("Unit", back_populates="building", cascade="all, delete-orphan")
    amenities = relationship("Amenity", back_populates="building", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Building {self.name} portal={self.portal_id}>"


class Unit(Base):
    __tablename__ = "units"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    building_id = Column(String(36), ForeignKey("buildings.id", ondelete="CASCADE"), nullable=False)
    portal_id = Column(Integer, nullable=True, index=True)  # idUnidad
    unit_number = Column(String(50), nullable=False)
    floor = Column(Integer, nullable=True)
    area_sqm = Column(Float, nullable=True)

    created_at = Column(DateTime, default=utcnow)

    building = relationship("Building", back_populates="units")

    __table_args__ = (
        UniqueConstraint("building_id", "unit_number", name="uq_unit_number_per_building"),
    )

    def __repr__(self):
        return f"<Unit {self.unit_number} portal={self.portal_id}>"


class Amenity(Base):
    __tablename__ = "amenities"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    building_id = Column(String(36), ForeignKey("buildings.id", ondelete="CASCADE"), nullable=False)
    portal_id = Column(Integer, nullable=True, index=True)  # idQuincho / idAmenity
    name_es = Column(String(255), nullable=False)
    name_en = Column(String(255), nullable=True)
    description_es = Column(Text, nullable=True)
    description_en = Column(Text, nullable=True)
    max_capacity = Column(Integer, nullable=True)
    requires_approval = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    building = relationship("Building", back_populates="amenities")

    def __repr__(self):
        return f"<Amenity {self.name_es} portal={self.portal_id}>"
