"""
GKICKS Auth — application entry point.

This is the **only** file that assembles the app.  All business logic
lives in the `api/`, `services/`, `models/`, and `core/` packages.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware

from kicks_auth.api.v1.api import api_router
from kicks_auth.core.config import settings
from kicks_auth.core.exceptions import register_exception_handlers
from kicks_auth.core.limiter import limiter
from kicks_auth.core.permissions import default_permissions, dump_permissions
from kicks_auth.core.security import get_password_hash
from kicks_auth.db.base import Base
from kicks_auth.db.session import async_session_factory, engine

# Ensure all models are imported so metadata.create_all can see them
from kicks_auth.models.admin_user import AdminUser
from kicks_auth.models.tokens import EmailVerificationToken, PasswordResetToken  # noqa: F401
from kicks_auth.models.user import User  # noqa: F401
from kicks_auth.services.identity import find_admin_user, warm_up

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


async def seed_first_admin() -> None:
    """Create the configured first admin account if it does not exist yet."""
    if not (settings.FIRST_ADMIN_EMAIL and settings.FIRST_ADMIN_PASSWORD):
        return
    async with async_session_factory() as session:
        if await find_admin_user(session, settings.FIRST_ADMIN_EMAIL, active_only=False):
            return
        session.add(
            AdminUser(
                username=settings.FIRST_ADMIN_EMAIL.split("@", 1)[0],
                email=settings.FIRST_ADMIN_EMAIL.strip().lower(),
                password_hash=get_password_hash(settings.FIRST_ADMIN_PASSWORD),
                first_name="System",
                last_name="Administrator",
                role="admin",
                permissions=dump_permissions(default_permissions("admin")),
                is_active=True,
            )
        )
        await session.commit()
        logger.info(
            "Default admin created: %s (password: <redacted>)",
            settings.FIRST_ADMIN_EMAIL,
        )


# ── Lifespan ────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(_app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")

    await seed_first_admin()
    await warm_up()

    logger.info("%s v%s started (%s)", settings.PROJECT_NAME, settings.VERSION, settings.ENVIRONMENT)
    yield
    await engine.dispose()
    logger.info("Shutdown complete")


# ── App factory ─────────────────────────────────────────────────────
def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.PROJECT_NAME,
        description="Customer and staff authentication for the GKICKS shop",
        version=settings.VERSION,
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    application.state.limiter = limiter

    # Framework session (signed cookie) used by /auth/session and the token bridge
    application.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie=settings.SESSION_COOKIE_NAME,
        max_age=settings.ACCESS_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
        same_site="lax",
        https_only=settings.cookie_secure,
    )

    # CORS
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Global exception handlers (prevent stack-trace leakage)
    register_exception_handlers(application)

    application.include_router(api_router, prefix=settings.API_V1_PREFIX)

    return application


app = create_app()
