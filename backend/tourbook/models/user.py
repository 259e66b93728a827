"""
User model with secure password storage and role list.
"""

from sqlalchemy import Column, Integer, String, Boolean, JSON

from tourbook.db.base import Base, TimestampMixin

ROLES = ("USER", "CABIN_OWNER", "TOUR_LEADER", "ADMIN")


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    username = Column(String(100), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    roles = Column(JSON, nullable=False, default=lambda: ["USER"])

    def has_any_role(self, *roles: str) -> bool:
        return any(role in (self.roles or []) for role in roles)

    @property
    def is_admin(self) -> bool:
        return self.has_any_role("ADMIN")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, roles={self.roles})>"
