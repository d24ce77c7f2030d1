"""
Small key/value documents persisted next to the mirror tables.

Holds the sync queue (JSON array) and the Portal credential so both survive
process restarts.
"""
from sqlalchemy import Column, String, Text, DateTime
from ..database import Base, utcnow


class LocalStateEntry(Base):
    __tablename__ = "local_state"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<LocalStateEntry {self.key}>"
