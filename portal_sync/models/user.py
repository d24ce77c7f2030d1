import uuid
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
import enum
from ..database import Base, utcnow


class UserRole(str, enum.Enum):
    REGULAR_USER = "regular_user"
    TENANT = "tenant"
    OWNER = "owner"
    SUPER_ADMIN = "super_admin"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    role = Column(String(30), default=UserRole.REGULAR_USER.value)
    unit_id = Column(String(36), ForeignKey("units.id", ondelete="SET NULL"), nullable=True)
    building_id = Column(String(36), ForeignKey("buildings.id", ondelete="SET NULL"), nullable=True)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    roles = relationship("UserRoleAssignment", back_populates="user", cascade="all, delete-orphan")

    @property
    def role_names(self):
        return [assignment.role for assignment in self.roles]

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"


class UserRoleAssignment(Base):
    """A user may hold several roles; ``User.role`` keeps the primary one"""
    __tablename__ = "user_roles"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(30), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    user = relationship("User", back_populates="roles")

    __table_args__ = (
        UniqueConstraint("user_id", "role", name="uq_user_role"),
    )
