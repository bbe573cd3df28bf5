"""
Ephemeral token store — email-verification and password-reset tokens.

A token is valid while ``used_at IS NULL`` and ``now < expires_at``.
Consumption is one conditional UPDATE so two concurrent callers can never
both succeed; the caller owns the transaction and commits (or rolls back)
together with whatever state change the token authorises.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from kicks_auth.core.config import settings
from kicks_auth.core.exceptions import (
    EphemeralTokenExpired,
    TokenAlreadyUsed,
    TokenNotFound,
)
from kicks_auth.models.tokens import EmailVerificationToken, PasswordResetToken
from kicks_auth.models.user import User

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32  # 256 bits


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass(frozen=True)
class ConsumedToken:
    user_id: int
    email: str


class EphemeralTokenStore:
    """Issue / inspect / consume single-use tokens backed by one table."""

    def __init__(self, model: Any, ttl: timedelta, purpose: str) -> None:
        self.model = model
        self.ttl = ttl
        self.purpose = purpose

    async def issue(self, db: AsyncSession, user: User, now: datetime | None = None) -> str:
        """Replace the user's unused tokens with a fresh one.  Caller commits."""
        now = now or datetime.now(timezone.utc)
        token = secrets.token_hex(TOKEN_BYTES)

        # Serialise concurrent issues for the same user on the owner row
        await db.execute(select(User.id).where(User.id == user.id).with_for_update())
        await db.execute(
            delete(self.model)
            .where(self.model.user_id == user.id, self.model.used_at.is_(None))
            .execution_options(synchronize_session=False)
        )
        row = self.model(user_id=user.id, token=token, expires_at=now + self.ttl)
        if hasattr(self.model, "email"):
            row.email = user.email
        db.add(row)
        await db.flush()

        logger.info("Issued %s token for user %s", self.purpose, user.id)
        return token

    async def _get(self, db: AsyncSession, token: str):
        result = await db.execute(
            select(self.model)
            .where(self.model.token == token)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def _raise_for(self, row: Any, now: datetime) -> None:
        if row is None:
            raise TokenNotFound()
        if now >= _as_utc(row.expires_at):
            raise EphemeralTokenExpired()
        if row.used_at is not None:
            raise TokenAlreadyUsed()

    async def inspect(self, db: AsyncSession, token: str, now: datetime | None = None) -> Any:
        """Validate ``token`` without consuming it."""
        now = now or datetime.now(timezone.utc)
        row = await self._get(db, token) if token else None
        self._raise_for(row, now)
        return row

    async def consume(
        self, db: AsyncSession, token: str, now: datetime | None = None
    ) -> ConsumedToken:
        """Atomically mark ``token`` used and return its owner.  Caller commits."""
        now = now or datetime.now(timezone.utc)
        if not token:
            raise TokenNotFound()

        result = await db.execute(
            update(self.model)
            .where(
                self.model.token == token,
                self.model.used_at.is_(None),
                self.model.expires_at > now,
            )
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        row = await self._get(db, token)
        if result.rowcount != 1:
            self._raise_for(row, now)
            # Row changed between the UPDATE and the SELECT; treat as spent.
            raise TokenAlreadyUsed()

        email = getattr(row, "email", None)
        if email is None:
            user = await db.get(User, row.user_id)
            email = user.email if user is not None else ""
        logger.info("Consumed %s token for user %s", self.purpose, row.user_id)
        return ConsumedToken(user_id=row.user_id, email=email)


verification_tokens = EphemeralTokenStore(
    EmailVerificationToken,
    timedelta(hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS),
    purpose="email verification",
)

reset_tokens = EphemeralTokenStore(
    PasswordResetToken,
    timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES),
    purpose="password reset",
)
