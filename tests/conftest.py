"""
Shared test fixtures for the GKICKS auth test suite.

Async throughout (aiosqlite + AsyncSession); the app's database and email
dependencies are overridden per test.
"""

import os
import sys
from typing import AsyncGenerator

import pytest

# Ensure project root is importable
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Override environment BEFORE importing application modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-0123456789abcdef0123456789abcdef"
os.environ["BCRYPT_ROUNDS"] = "10"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["CORS_ORIGINS"] = '["*"]'
os.environ["FRONTEND_URL"] = "http://shop.test"
os.environ.pop("SMTP_HOST", None)

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from kicks_auth.api.v1.deps import get_db, get_email_service
from kicks_auth.core.permissions import default_permissions, dump_permissions
from kicks_auth.core.security import TokenIssuer, get_password_hash, token_issuer
from kicks_auth.db.base import Base
from kicks_auth.main import app
from kicks_auth.models.admin_user import AdminUser
from kicks_auth.models.user import User
from kicks_auth.services.email import EmailService

API = "/api"

test_engine = create_async_engine(
    "sqlite+aiosqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def setup_db():
    """Create all tables before usage and drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestingSessionLocal() as session:
        yield session


app.dependency_overrides[get_db] = _override_get_db


# ── Email ───────────────────────────────────────────────────────────
class RecordingEmailService(EmailService):
    """Keeps every rendered message instead of talking to SMTP."""

    def __init__(self, fail: bool = False) -> None:
        super().__init__()
        self.fail = fail
        self.sent: list[dict] = []

    async def send_email(self, to_email, subject, html_content, text_content) -> bool:
        self.sent.append({"to": to_email, "subject": subject, "text": text_content})
        return not self.fail


@pytest.fixture
def outbox():
    service = RecordingEmailService()
    app.dependency_overrides[get_email_service] = lambda: service
    yield service
    app.dependency_overrides.pop(get_email_service, None)


# ── Clients & sessions ──────────────────────────────────────────────
@pytest.fixture
async def async_client(outbox) -> AsyncGenerator[AsyncClient, None]:
    """Return a httpx AsyncClient wired to the app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Return a raw database session for direct queries in tests."""
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def issuer() -> TokenIssuer:
    return token_issuer


# ── Account factories ───────────────────────────────────────────────
@pytest.fixture
def make_user(db_session: AsyncSession):
    async def _make(
        email: str = "customer@example.com",
        password: str | None = "Secret1",
        *,
        verified: bool = True,
        is_admin: bool = False,
        is_active: bool = True,
        first_name: str = "Casey",
    ) -> User:
        user = User(
            email=email,
            password_hash=get_password_hash(password) if password else None,
            first_name=first_name,
            last_name="Customer",
            email_verified=verified,
            is_admin=is_admin,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest.fixture
def make_admin_user(db_session: AsyncSession):
    async def _make(
        email: str = "staff@example.com",
        password: str = "StaffPass1",
        *,
        role: str = "staff",
        permissions: str | None = None,
        is_active: bool = True,
        legacy_column: bool = False,
    ) -> AdminUser:
        hashed = get_password_hash(password)
        admin_user = AdminUser(
            username=email.split("@")[0],
            email=email,
            password_hash=None if legacy_column else hashed,
            password=hashed if legacy_column else None,
            first_name="Sam",
            last_name="Staff",
            role=role,
            permissions=(
                permissions if permissions is not None
                else dump_permissions(default_permissions(role))
            ),
            is_active=is_active,
        )
        db_session.add(admin_user)
        await db_session.commit()
        return admin_user

    return _make


@pytest.fixture
def bearer(issuer: TokenIssuer):
    """Build an Authorization header for an account row."""
    def _bearer(account, role: str | None = None) -> dict:
        kind = "admin_user" if isinstance(account, AdminUser) else "user"
        token = issuer.issue(account.id, account.email, role or account.role, kind)
        return {"Authorization": f"Bearer {token}"}

    return _bearer
