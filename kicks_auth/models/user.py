"""
Customer account model — storefront sign-in, email verification, legacy admin flag.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from kicks_auth.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    email: str = Column(String(320), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    # NULL for accounts created through an external identity provider
    password_hash: str | None = Column(String(128), nullable=True)  # type: ignore[assignment]
    first_name: str | None = Column(String(100), nullable=True)  # type: ignore[assignment]
    last_name: str | None = Column(String(100), nullable=True)  # type: ignore[assignment]
    avatar_url: str | None = Column(String(500), nullable=True)  # type: ignore[assignment]
    email_verified: bool = Column(Boolean, nullable=False, default=False, server_default="0")  # type: ignore[assignment]
    email_verified_at: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    is_admin: bool = Column(Boolean, nullable=False, default=False, server_default="0")  # type: ignore[assignment]
    is_active: bool = Column(Boolean, nullable=False, default=True, server_default="1")  # type: ignore[assignment]
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)  # type: ignore[assignment]
    updated_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
    )

    @property
    def role(self) -> str:
        return "admin" if self.is_admin else "user"
