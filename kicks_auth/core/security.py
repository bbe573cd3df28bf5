"""
Password hashing (bcrypt via passlib) and bearer-token issuing / verification (JWT).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from kicks_auth.core.config import Settings, settings
from kicks_auth.core.exceptions import TokenExpired, TokenInvalid
from kicks_auth.schemas.token import TokenClaims

logger = logging.getLogger(__name__)

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)


# ── Passwords ───────────────────────────────────────────────────────
def verify_password(plain: str, hashed: str | None) -> bool:
    """Check ``plain`` against a stored hash; unusable hashes never match."""
    if not plain or not hashed:
        return False
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, TypeError):
        logger.warning("Stored password hash is malformed; rejecting login attempt")
        return False


def get_password_hash(plain: str) -> str:
    return pwd_context.hash(plain)


async def verify_password_async(plain: str, hashed: str | None) -> bool:
    return await run_in_threadpool(verify_password, plain, hashed)


async def hash_password_async(plain: str) -> str:
    return await run_in_threadpool(get_password_hash, plain)


# ── JWT tokens ──────────────────────────────────────────────────────
@dataclass(frozen=True)
class TokenIssuer:
    """Signs and verifies bearer tokens with one shared secret."""

    secret: str
    algorithm: str = "HS256"
    default_ttl: timedelta = timedelta(days=7)

    @classmethod
    def from_settings(cls, cfg: Settings) -> "TokenIssuer":
        return cls(
            secret=cfg.SECRET_KEY,
            algorithm=cfg.ALGORITHM,
            default_ttl=timedelta(days=cfg.ACCESS_TOKEN_EXPIRE_DAYS),
        )

    def issue(
        self,
        subject_id: int | str,
        email: str,
        role: str,
        kind: str = "user",
        ttl: timedelta | None = None,
    ) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "sub": str(subject_id),
            "email": email,
            "role": role,
            "kind": kind,
            "iat": int(now.timestamp()),
            "exp": now + (ttl if ttl is not None else self.default_ttl),
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> TokenClaims:
        """Return the decoded claims or raise ``TokenExpired`` / ``TokenInvalid``."""
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise TokenExpired("token expired") from exc
        except JWTError as exc:
            raise TokenInvalid("malformed or badly signed token") from exc

        try:
            return TokenClaims.model_validate(payload)
        except ValidationError as exc:
            raise TokenInvalid("token claims incomplete") from exc


token_issuer = TokenIssuer.from_settings(settings)
