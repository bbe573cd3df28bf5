"""
FastAPI dependencies — database session, collaborators and route guards.

Every protected endpoint declares its guard as ``Depends(require_role(...))``:

    no token               -> 401
    bad / expired token    -> 401
    role not allowed       -> 403
    otherwise              -> the verified ``TokenClaims``
"""

from __future__ import annotations

import secrets
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Optional

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from kicks_auth.core.config import settings
from kicks_auth.core.exceptions import Forbidden, TokenMissing, Unauthorized
from kicks_auth.core.security import TokenIssuer, token_issuer
from kicks_auth.db.session import async_session_factory
from kicks_auth.schemas.token import ROLES, TokenClaims
from kicks_auth.services.email import EmailService

# auto_error=False so a missing header falls through to the cookie
bearer_scheme = HTTPBearer(auto_error=False)

Guard = Callable[..., Awaitable[TokenClaims]]


# ── Database session ────────────────────────────────────────────────
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


# ── Collaborators ───────────────────────────────────────────────────
def get_token_issuer() -> TokenIssuer:
    return token_issuer


def get_email_service() -> EmailService:
    return EmailService()


# ── Auth guards ─────────────────────────────────────────────────────
def extract_token(
    request: Request, credentials: Optional[HTTPAuthorizationCredentials]
) -> str | None:
    """Bearer header first, then the auth cookie."""
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    cookie = request.cookies.get(settings.AUTH_COOKIE_NAME)
    if not cookie:
        return None
    if cookie.startswith("Bearer "):
        cookie = cookie[len("Bearer "):]
    return cookie or None


def require_role(*roles: str) -> Guard:
    """Build a guard admitting only tokens whose role is in ``roles``."""
    allowed = frozenset(roles)
    unknown = allowed - set(ROLES)
    if not allowed or unknown:
        raise ValueError(f"require_role() needs roles from {ROLES}, got {sorted(roles)}")

    async def guard(
        request: Request,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
        issuer: TokenIssuer = Depends(get_token_issuer),
    ) -> TokenClaims:
        token = extract_token(request, credentials)
        if token is None:
            raise TokenMissing()
        claims = issuer.verify(token)
        if claims.role not in allowed:
            raise Forbidden()
        return claims

    guard.__name__ = f"require_role_{'_'.join(sorted(allowed))}"
    return guard


require_authenticated = require_role(*ROLES)
require_staff = require_role("staff", "admin")
require_admin = require_role("admin")


async def admin_status_guard(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> TokenClaims | None:
    """Open unless ``ADMIN_STATUS_REQUIRES_AUTH`` is set, then staff-only."""
    if not settings.ADMIN_STATUS_REQUIRES_AUTH:
        return None
    return await require_staff(request, credentials, issuer)


async def require_identity_provider(
    provider_secret: Optional[str] = Header(default=None, alias="X-Identity-Provider-Secret"),
) -> None:
    """Admit only the trusted identity-provider callback."""
    expected = settings.EXTERNAL_AUTH_SECRET
    if not expected:
        raise Forbidden("External sign-in is not enabled")
    if not provider_secret or not secrets.compare_digest(
        provider_secret.encode(), expected.encode()
    ):
        raise Unauthorized("identity provider secret mismatch")


# ── Framework session ───────────────────────────────────────────────
def get_session_user(request: Request) -> dict | None:
    user = request.session.get("user")
    return user if isinstance(user, dict) else None
