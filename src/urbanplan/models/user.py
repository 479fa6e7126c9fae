from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.orm import relationship, validates

from ..database import Base, enum_type
from ..enums import UserRole, coerce_enum


class User(Base):
    """SQLAlchemy model for planner and administrator accounts."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(100), unique=True, index=True, nullable=False)
    password_hash = Column(Text, nullable=False)
    role = Column(
        enum_type(UserRole, "user_role", 20),
        default=UserRole.PLANNER,
        nullable=False,
    )
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    projects = relationship("Project", back_populates="owner", passive_deletes=True)

    @validates("role")
    def _validate_role(self, key, value):
        return coerce_enum(UserRole, value, key)

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} role={self.role}>"
