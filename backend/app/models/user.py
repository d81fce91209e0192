"""
User database model.

Staff and administrators; the identity collaborator reads display name and
kind from here to stamp ledger provenance.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.enums import UserKind


class User(Base):
    """User model for authentication and provenance stamping."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    username = Column(String(100), unique=True, index=True, nullable=False)
    full_name = Column(String(200), nullable=True)
    hashed_password = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    kind = Column(Enum(UserKind), default=UserKind.USER, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def display_name(self) -> str:
        return self.full_name or self.username

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', kind='{self.kind.value}')>"
