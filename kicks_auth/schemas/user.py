"""Pydantic schemas for customer and staff accounts.

None of the read models carry a password field; they are the only shapes
account rows leave the API in.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, field_validator

from kicks_auth.core.permissions import parse_permissions

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 6

StaffRole = Literal["admin", "staff"]


def normalise_email(v: str) -> str:
    v = v.strip().lower()
    if not _EMAIL_RE.match(v):
        raise ValueError("Invalid email format")
    return v


def check_password_strength(v: str) -> str:
    if len(v) < MIN_PASSWORD_LENGTH:
        raise ValueError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )
    return v


class UserRead(BaseModel):
    id: int
    email: str
    first_name: str | None
    last_name: str | None
    avatar_url: str | None = None
    email_verified: bool
    is_admin: bool
    is_active: bool
    created_at: datetime | None

    model_config = {"from_attributes": True}


class AdminUserRead(BaseModel):
    id: int
    username: str | None
    email: str
    first_name: str | None
    last_name: str | None
    role: str
    permissions: dict[str, bool]
    is_active: bool
    last_login_at: datetime | None = None
    created_at: datetime | None

    model_config = {"from_attributes": True}

    @field_validator("permissions", mode="before")
    @classmethod
    def _decode_permissions(cls, v: object) -> dict[str, bool]:
        return parse_permissions(v)


class AdminUserCreate(BaseModel):
    email: str
    password: str
    first_name: str
    last_name: str
    username: str | None = None
    role: StaffRole = "staff"
    permissions: dict[str, bool] | None = None

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, v: str) -> str:
        return normalise_email(v)

    @field_validator("password")
    @classmethod
    def _password_strength(cls, v: str) -> str:
        return check_password_strength(v)


class AdminUserUpdate(BaseModel):
    email: str | None = None
    password: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    role: StaffRole | None = None
    permissions: dict[str, bool] | None = None
    is_active: bool | None = None

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, v: str | None) -> str | None:
        return normalise_email(v) if v is not None else v

    @field_validator("password")
    @classmethod
    def _password_strength(cls, v: str | None) -> str | None:
        return check_password_strength(v) if v is not None else v


class PrincipalRead(BaseModel):
    """Account summary returned next to a freshly issued bearer token."""

    id: int
    email: str
    first_name: str | None
    last_name: str | None
    role: str
    kind: str
    email_verified: bool = True
    permissions: dict[str, bool] = {}
