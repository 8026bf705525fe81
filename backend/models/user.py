"""
User model. Users are provisioned by the identity service; this backend only
reads them and maintains the one-level team hierarchy.
"""
from enum import Enum
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from .base import Base, TimestampMixin


class UserRole(str, Enum):
    SALES = "Sales"
    ADMIN = "Admin"
    SUPER_ADMIN = "SuperAdmin"


ADMIN_ROLES = frozenset({UserRole.ADMIN.value, UserRole.SUPER_ADMIN.value})


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    email = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.SALES.value)
    is_active = Column(Boolean, default=True, nullable=False)

    # A leader has no leader; members point at exactly one leader.
    assigned_to_leader = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    leader = relationship("User", remote_side=[id], back_populates="team_members")
    team_members = relationship("User", back_populates="leader")

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    def __repr__(self):
        return f"<User(id={self.id}, username={self.username}, role={self.role})>"
