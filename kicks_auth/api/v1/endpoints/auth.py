"""
Auth endpoints — registration, login, email verification, password reset,
framework session and the session-to-bearer-token bridge.

Enumeration-sensitive endpoints (forgot-password, forgot-email,
resend-verification) answer the same way whether or not the account exists.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from kicks_auth.api.v1.deps import (
    get_db,
    get_email_service,
    get_session_user,
    get_token_issuer,
    require_authenticated,
    require_identity_provider,
)
from kicks_auth.core.config import settings
from kicks_auth.core.exceptions import (
    AccountInactive,
    Conflict,
    EphemeralTokenError,
    UserNotFound,
    ValidationFailed,
)
from kicks_auth.core.limiter import limiter
from kicks_auth.core.security import TokenIssuer, hash_password_async
from kicks_auth.models.user import User
from kicks_auth.schemas.auth import (
    AuthResponse,
    EmailRequest,
    ExternalLoginRequest,
    ExternalLoginResponse,
    LoginRequest,
    MeResponse,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    SessionResponse,
    TokenRequest,
    TokenValidity,
    VerifyEmailResponse,
)
from kicks_auth.schemas.token import TokenClaims
from kicks_auth.schemas.user import UserRead
from kicks_auth.services.email import EmailService
from kicks_auth.services.identity import (
    Principal,
    email_in_use,
    find_user,
    load_principal,
    principal_for,
    provision_external_user,
    resolve_for_login,
    resolve_for_session,
)
from kicks_auth.services.tokens import reset_tokens, verification_tokens

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)

FORGOT_PASSWORD_MESSAGE = (
    "If an account with that email exists, a password reset link has been sent."
)
FORGOT_EMAIL_MESSAGE = (
    "If an account with that email exists, recovery information has been sent "
    "to your email address."
)
RESEND_MESSAGE = (
    "If an account with that email exists and is unverified, "
    "a new verification email has been sent."
)


# ── Helpers ─────────────────────────────────────────────────────────
def _set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.AUTH_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict",
        max_age=settings.ACCESS_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
    )


def _remember_in_session(request: Request, principal: Principal) -> None:
    request.session["user"] = {
        "id": principal.id,
        "email": principal.email,
        "first_name": principal.first_name,
        "last_name": principal.last_name,
        "role": principal.role,
        "kind": principal.kind,
    }


def _issue_for(issuer: TokenIssuer, principal: Principal) -> str:
    return issuer.issue(principal.id, principal.email, principal.role, principal.kind)


async def _mark_email_verified(db: AsyncSession, token: str) -> User:
    """Consume a verification token and flag its owner verified, in one commit."""
    consumed = await verification_tokens.consume(db, token)
    user = await db.get(User, consumed.user_id)
    if user is None:
        raise UserNotFound()
    if not user.email_verified:
        user.email_verified = True
        user.email_verified_at = datetime.now(timezone.utc)
    await db.commit()
    logger.info("Email verified for user %s", user.id)
    return user


# ── Registration & login ────────────────────────────────────────────
@router.post("/register", response_model=RegisterResponse, status_code=201)
async def register(
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> RegisterResponse:
    """Create an unverified customer and mail them a verification link."""
    if await email_in_use(db, body.email):
        raise Conflict("User with this email already exists")

    user = User(
        email=body.email,
        password_hash=await hash_password_async(body.password),
        first_name=body.first_name,
        last_name=body.last_name,
        email_verified=False,
        is_admin=False,
        is_active=True,
    )
    db.add(user)
    await db.flush()
    token = await verification_tokens.issue(db, user)
    await db.commit()
    logger.info("Registered user %s", user.id)

    email_sent = await email_service.send_verification_email(user.email, user.first_name, token)
    if not email_sent:
        logger.warning("Verification email not delivered for user %s", user.id)

    return RegisterResponse(
        message="Registration successful. Please check your email to verify your account.",
        user=UserRead.model_validate(user),
        email_sent=email_sent,
    )


@router.post("/login", response_model=AuthResponse)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> AuthResponse:
    """Authenticate a customer or staff account; returns a bearer token and sets the cookie."""
    principal = await resolve_for_login(db, body.email, body.password)

    if principal.kind == "admin_user":
        principal.account.last_login_at = datetime.now(timezone.utc)  # type: ignore[union-attr]
        await db.commit()

    token = _issue_for(issuer, principal)
    _set_auth_cookie(response, token)
    _remember_in_session(request, principal)
    logger.info("Login: %s %s as %s", principal.kind, principal.id, principal.role)

    return AuthResponse(message="Login successful", user=principal.to_read(), token=token)


@router.post("/logout", response_model=MessageResponse)
async def logout(request: Request, response: Response) -> MessageResponse:
    """Clear the auth cookie and end the framework session."""
    response.delete_cookie(settings.AUTH_COOKIE_NAME)
    request.session.clear()
    return MessageResponse(message="Logged out")


@router.get("/me", response_model=MeResponse)
async def read_current_user(
    claims: TokenClaims = Depends(require_authenticated),
    db: AsyncSession = Depends(get_db),
) -> MeResponse:
    """Return the account behind the presented bearer token."""
    principal = await load_principal(db, claims)
    return MeResponse(user=principal.to_read())


# ── Email verification ──────────────────────────────────────────────
@router.post("/verify-email", response_model=VerifyEmailResponse)
async def verify_email(
    request: Request,
    response: Response,
    body: TokenRequest,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> VerifyEmailResponse:
    user = await _mark_email_verified(db, body.token)
    if not user.is_active:
        raise AccountInactive()
    welcome_sent = await email_service.send_welcome_email(user.email, user.first_name)

    principal = principal_for(user)
    token = _issue_for(issuer, principal)
    _set_auth_cookie(response, token)
    _remember_in_session(request, principal)

    return VerifyEmailResponse(
        message="Email verified successfully!",
        user=principal.to_read(),
        token=token,
        welcome_email_sent=welcome_sent,
    )


@router.get("/verify-email")
async def verify_email_link(
    request: Request,
    token: str = Query(default=""),
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> RedirectResponse:
    """Target of the link in the verification email; redirects to the storefront."""
    target = f"{settings.FRONTEND_URL.rstrip('/')}/verify-email"
    if not token:
        return RedirectResponse(f"{target}?error=missing-token", status_code=303)
    try:
        user = await _mark_email_verified(db, token)
    except EphemeralTokenError as exc:
        return RedirectResponse(f"{target}?error={exc.code}", status_code=303)
    if not user.is_active:
        return RedirectResponse(f"{target}?error={AccountInactive.code}", status_code=303)

    await email_service.send_welcome_email(user.email, user.first_name)
    principal = principal_for(user)
    redirect = RedirectResponse(f"{target}?status=success", status_code=303)
    _set_auth_cookie(redirect, _issue_for(issuer, principal))
    _remember_in_session(request, principal)
    return redirect


@router.post("/resend-verification", response_model=MessageResponse)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def resend_verification(
    request: Request,
    body: EmailRequest,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> MessageResponse:
    user = await find_user(db, body.email)
    if user is None:
        return MessageResponse(message=RESEND_MESSAGE)
    if user.email_verified:
        return MessageResponse(
            message="This email address is already verified. You can sign in to your account."
        )

    token = await verification_tokens.issue(db, user)
    await db.commit()
    if not await email_service.send_verification_email(user.email, user.first_name, token):
        logger.warning("Verification email not re-delivered for user %s", user.id)
    return MessageResponse(message=RESEND_MESSAGE)


# ── Password reset & account recovery ───────────────────────────────
@router.post("/forgot-password", response_model=MessageResponse)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def forgot_password(
    request: Request,
    body: EmailRequest,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> MessageResponse:
    user = await find_user(db, body.email)
    if user is not None and user.is_active:
        token = await reset_tokens.issue(db, user)
        await db.commit()
        if not await email_service.send_password_reset_email(user.email, user.first_name, token):
            logger.warning("Password reset email not delivered for user %s", user.id)
    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.get("/reset-password", response_model=TokenValidity)
async def validate_reset_token(
    token: str = Query(default=""),
    db: AsyncSession = Depends(get_db),
) -> TokenValidity:
    """Check a reset token without consuming it."""
    if not token:
        raise ValidationFailed("Token is required", valid=False)
    try:
        await reset_tokens.inspect(db, token)
    except EphemeralTokenError as exc:
        exc.extra["valid"] = False
        raise
    return TokenValidity(valid=True)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    body: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    """Consume a reset token and set the new password in one transaction."""
    new_hash = await hash_password_async(body.password)
    consumed = await reset_tokens.consume(db, body.token)
    user = await db.get(User, consumed.user_id)
    if user is None:
        raise UserNotFound()
    user.password_hash = new_hash
    await db.commit()
    logger.info("Password reset for user %s", user.id)
    return MessageResponse(message="Password has been reset successfully")


@router.post("/forgot-email", response_model=MessageResponse)
async def forgot_email(
    body: EmailRequest,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> MessageResponse:
    user = await find_user(db, body.email)
    if user is not None:
        if not await email_service.send_email_recovery_notice(user.email, user.first_name):
            logger.warning("Email recovery notice not delivered for user %s", user.id)
    return MessageResponse(message=FORGOT_EMAIL_MESSAGE)


# ── Framework session ───────────────────────────────────────────────
@router.post("/external-login", response_model=ExternalLoginResponse)
async def external_login(
    request: Request,
    body: ExternalLoginRequest,
    db: AsyncSession = Depends(get_db),
    _provider: None = Depends(require_identity_provider),
) -> ExternalLoginResponse:
    """Record a customer signed in by the external identity provider and open a session.

    The client then exchanges the session for a bearer token at ``/auth/session-to-jwt``.
    """
    user = await provision_external_user(
        db, body.email, body.first_name, body.last_name, body.avatar_url
    )
    await db.commit()

    principal = principal_for(user)
    _remember_in_session(request, principal)
    logger.info("External sign-in for user %s", user.id)
    return ExternalLoginResponse(message="External sign-in recorded", user=principal.to_read())


@router.get("/session", response_model=SessionResponse)
async def read_session(request: Request) -> SessionResponse:
    """Current framework-session principal, or ``null``."""
    return SessionResponse(user=get_session_user(request))


@router.post("/session-to-jwt", response_model=AuthResponse)
async def session_to_jwt(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> AuthResponse:
    """Mint a bearer token for the principal behind the framework session."""
    principal = await resolve_for_session(db, get_session_user(request))
    token = _issue_for(issuer, principal)
    _set_auth_cookie(response, token)
    logger.info("Session bridged to token for %s %s", principal.kind, principal.id)
    return AuthResponse(
        message="JWT token generated successfully", user=principal.to_read(), token=token
    )
