"""
Staff / admin account model — back office and POS sign-in.

Lives in its own table, separate from ``users``.  Older rows keep their
bcrypt hash in ``password`` instead of ``password_hash``; both columns are
read on login.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from kicks_auth.core.permissions import parse_permissions
from kicks_auth.db.base import Base
from kicks_auth.models.user import _utcnow


class AdminUser(Base):
    __tablename__ = "admin_users"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    username: str | None = Column(String(100), unique=True, nullable=True)  # type: ignore[assignment]
    email: str = Column(String(320), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    password_hash: str | None = Column(String(128), nullable=True)  # type: ignore[assignment]
    password: str | None = Column(String(128), nullable=True)  # type: ignore[assignment]
    first_name: str | None = Column(String(100), nullable=True)  # type: ignore[assignment]
    last_name: str | None = Column(String(100), nullable=True)  # type: ignore[assignment]
    role: str = Column(  # type: ignore[assignment]
        String(20),
        nullable=False,
        default="staff",
        server_default="staff",
    )  # admin | staff
    permissions: str | None = Column(Text, nullable=True)  # type: ignore[assignment]
    is_active: bool = Column(Boolean, nullable=False, default=True, server_default="1", index=True)  # type: ignore[assignment]
    last_login_at: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)  # type: ignore[assignment]
    updated_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
    )
    deleted_at: datetime | None = Column(DateTime(timezone=True), nullable=True, index=True)  # type: ignore[assignment]

    @property
    def permission_map(self) -> dict[str, bool]:
        return parse_permissions(self.permissions)

    @property
    def credential_hashes(self) -> tuple[str, ...]:
        """Stored hashes in the order they are tried."""
        return tuple(h for h in (self.password_hash, self.password) if h)
