"""
Identity resolution across the two account tables.

Customers live in ``users``; back-office staff live in ``admin_users``.
Nothing stops the same address from appearing in both, so every code path
that turns an email into a principal goes through :func:`find_account`,
whose precedence is:

1. ``users`` (role ``admin`` when the legacy ``is_admin`` flag is set,
   otherwise ``user``);
2. active, non-deleted ``admin_users`` (role as stored).

Login, the admin status check and the session bridge therefore always
agree on who an email is.  A staff row shadowed by a customer row with the
same email is unreachable until one of them is renamed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from kicks_auth.core.exceptions import (
    AccountInactive,
    Conflict,
    EmailNotVerified,
    Forbidden,
    InvalidCredentials,
    NoSession,
    UserNotFound,
)
from kicks_auth.core.permissions import all_permissions
from kicks_auth.core.security import hash_password_async, verify_password_async
from kicks_auth.models.admin_user import AdminUser
from kicks_auth.models.user import User
from kicks_auth.schemas.token import TokenClaims
from kicks_auth.schemas.user import PrincipalRead

logger = logging.getLogger(__name__)

Account = Union[User, AdminUser]

STAFF_ROLES = frozenset({"admin", "staff"})


@dataclass(frozen=True)
class Principal:
    """An authenticated identity with its effective role."""

    id: int
    email: str
    role: str
    kind: str  # "user" | "admin_user"
    first_name: str | None = None
    last_name: str | None = None
    email_verified: bool = True
    is_active: bool = True
    permissions: dict[str, bool] = field(default_factory=dict)
    account: Account | None = field(default=None, repr=False, compare=False)

    def to_read(self) -> PrincipalRead:
        return PrincipalRead(
            id=self.id,
            email=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
            role=self.role,
            kind=self.kind,
            email_verified=self.email_verified,
            permissions=self.permissions,
        )


def principal_for(account: Account) -> Principal:
    """Derive role and permissions for a row from either table."""
    if isinstance(account, AdminUser):
        return Principal(
            id=account.id,
            email=account.email,
            role=account.role if account.role in STAFF_ROLES else "staff",
            kind="admin_user",
            first_name=account.first_name,
            last_name=account.last_name,
            is_active=bool(account.is_active),
            permissions=account.permission_map,
            account=account,
        )
    return Principal(
        id=account.id,
        email=account.email,
        role=account.role,
        kind="user",
        first_name=account.first_name,
        last_name=account.last_name,
        email_verified=bool(account.email_verified),
        is_active=bool(account.is_active),
        permissions=all_permissions() if account.is_admin else {},
        account=account,
    )


# ── Lookups ─────────────────────────────────────────────────────────
async def find_user(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(
        select(User).where(func.lower(User.email) == email.strip().lower())
    )
    return result.scalar_one_or_none()


async def find_admin_user(
    db: AsyncSession, email: str, *, active_only: bool = True
) -> AdminUser | None:
    stmt = select(AdminUser).where(func.lower(AdminUser.email) == email.strip().lower())
    if active_only:
        stmt = stmt.where(AdminUser.is_active.is_(True), AdminUser.deleted_at.is_(None))
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def find_account(db: AsyncSession, email: str) -> Account | None:
    """The single precedence policy: ``users`` first, then active ``admin_users``."""
    user = await find_user(db, email)
    if user is not None:
        return user
    return await find_admin_user(db, email)


async def email_in_use(db: AsyncSession, email: str) -> bool:
    """True when either table (active or not) already holds ``email``."""
    if await find_user(db, email) is not None:
        return True
    return await find_admin_user(db, email, active_only=False) is not None


# ── Login ───────────────────────────────────────────────────────────
_dummy_hash_value: str | None = None


async def _dummy_hash() -> str:
    """A throwaway bcrypt hash at the configured cost, computed off the event loop."""
    global _dummy_hash_value
    if _dummy_hash_value is None:
        _dummy_hash_value = await hash_password_async("not-a-real-password")
    return _dummy_hash_value


async def warm_up() -> None:
    await _dummy_hash()


async def _check_password(password: str, hashes: tuple[str, ...]) -> bool:
    for hashed in hashes:
        if await verify_password_async(password, hashed):
            return True
    return False


async def resolve_for_login(db: AsyncSession, email: str, password: str) -> Principal:
    """Authenticate ``email`` / ``password`` against both account tables.

    Raises ``InvalidCredentials`` for an unknown email, a wrong password or a
    password-less (external-provider) account; ``EmailNotVerified`` for a
    customer who has not confirmed their address; ``AccountInactive`` for a
    disabled customer.
    """
    account = await find_account(db, email)

    if account is None:
        # Burn the same bcrypt cost as a real check.
        await verify_password_async(password, await _dummy_hash())
        raise InvalidCredentials()

    if isinstance(account, AdminUser):
        if not await _check_password(password, account.credential_hashes):
            raise InvalidCredentials()
        return principal_for(account)

    if account.password_hash is None:
        await verify_password_async(password, await _dummy_hash())
        raise InvalidCredentials()
    if not await verify_password_async(password, account.password_hash):
        raise InvalidCredentials()
    if not account.email_verified:
        raise EmailNotVerified()
    if not account.is_active:
        raise AccountInactive()
    return principal_for(account)


# ── Role check ──────────────────────────────────────────────────────
async def resolve_role_for_email(db: AsyncSession, email: str) -> Principal:
    """Return the staff principal for ``email`` or raise ``Forbidden``.

    Customers without the legacy admin flag, and unknown addresses, are
    both reported as "not an admin".
    """
    account = await find_account(db, email)
    if account is None:
        raise Forbidden("User is not an admin")
    principal = principal_for(account)
    if principal.role not in STAFF_ROLES or not principal.is_active:
        raise Forbidden("User is not an admin")
    return principal


# ── Session bridge / token subject ──────────────────────────────────
async def resolve_for_session(db: AsyncSession, session_user: dict | None) -> Principal:
    """Resolve the principal behind a framework session."""
    email = (session_user or {}).get("email")
    if not email:
        raise NoSession()
    account = await find_account(db, email)
    if account is None:
        raise UserNotFound("User not found in database")
    principal = principal_for(account)
    if not principal.is_active:
        raise AccountInactive()
    return principal


async def load_principal(db: AsyncSession, claims: TokenClaims) -> Principal:
    """Load the account a verified bearer token refers to."""
    model = AdminUser if claims.kind == "admin_user" else User
    account = await db.get(model, claims.subject_id)
    if account is None or not account.is_active:
        raise UserNotFound()
    if isinstance(account, AdminUser) and account.deleted_at is not None:
        raise UserNotFound()
    return principal_for(account)


# ── External identity provider ──────────────────────────────────────
async def provision_external_user(
    db: AsyncSession,
    email: str,
    first_name: str | None = None,
    last_name: str | None = None,
    avatar_url: str | None = None,
) -> User:
    """Create or refresh the customer row for an externally authenticated email.

    New rows have no password and are verified from the start; existing
    rows keep their credential and get their profile fields refreshed.
    An email held only by a staff account is refused so the provider cannot
    shadow it, and a disabled customer stays disabled.  Caller commits.
    """
    user = await find_user(db, email)
    if user is None:
        if await find_admin_user(db, email, active_only=False) is not None:
            raise Conflict("Email belongs to a staff account")
        user = User(
            email=email.strip().lower(),
            password_hash=None,
            first_name=first_name,
            last_name=last_name,
            avatar_url=avatar_url,
            email_verified=True,
            email_verified_at=datetime.now(timezone.utc),
            is_admin=False,
            is_active=True,
        )
        db.add(user)
        logger.info("Provisioned externally authenticated user %s", user.email)
    elif not user.is_active:
        raise AccountInactive()
    else:
        user.first_name = first_name or user.first_name
        user.last_name = last_name or user.last_name
        user.avatar_url = avatar_url or user.avatar_url
    await db.flush()
    return user
