"""Request / response bodies for the auth and admin-status endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, Field, field_validator

from kicks_auth.schemas.user import (
    PrincipalRead,
    UserRead,
    check_password_strength,
    normalise_email,
)


# ── Requests ────────────────────────────────────────────────────────
class RegisterRequest(BaseModel):
    email: str
    password: str
    first_name: str = Field(
        min_length=1, max_length=100, validation_alias=AliasChoices("first_name", "firstName")
    )
    last_name: str = Field(
        min_length=1, max_length=100, validation_alias=AliasChoices("last_name", "lastName")
    )

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, v: str) -> str:
        return normalise_email(v)

    @field_validator("password")
    @classmethod
    def _password_strength(cls, v: str) -> str:
        return check_password_strength(v)


class LoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def _strip_email(cls, v: str) -> str:
        return v.strip().lower()


class EmailRequest(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, v: str) -> str:
        return normalise_email(v)


class ExternalLoginRequest(BaseModel):
    """Profile of a customer the external identity provider has authenticated."""

    email: str
    first_name: str | None = Field(
        default=None, max_length=100, validation_alias=AliasChoices("first_name", "firstName")
    )
    last_name: str | None = Field(
        default=None, max_length=100, validation_alias=AliasChoices("last_name", "lastName")
    )
    avatar_url: str | None = Field(
        default=None, max_length=500, validation_alias=AliasChoices("avatar_url", "avatar")
    )

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, v: str) -> str:
        return normalise_email(v)


class TokenRequest(BaseModel):
    token: str = Field(min_length=1)


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1)
    password: str

    @field_validator("password")
    @classmethod
    def _password_strength(cls, v: str) -> str:
        return check_password_strength(v)


# ── Responses ───────────────────────────────────────────────────────
class MessageResponse(BaseModel):
    message: str
    success: bool = True


class RegisterResponse(BaseModel):
    message: str
    user: UserRead
    requires_verification: bool = True
    email_sent: bool


class AuthResponse(BaseModel):
    message: str
    user: PrincipalRead
    token: str
    token_type: str = "bearer"


class VerifyEmailResponse(AuthResponse):
    welcome_email_sent: bool


class MeResponse(BaseModel):
    user: PrincipalRead


class ExternalLoginResponse(MessageResponse):
    user: PrincipalRead


class SessionResponse(BaseModel):
    user: dict | None


class TokenValidity(BaseModel):
    valid: bool


class AdminStatus(BaseModel):
    id: int
    email: str
    role: str
    kind: str
    permissions: dict[str, bool]
    is_active: bool
    created_at: datetime | None


class AdminStatusResponse(BaseModel):
    message: str
    user: AdminStatus


class DeleteResponse(BaseModel):
    success: bool
    message: str
