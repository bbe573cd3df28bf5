"""Pydantic schemas for bearer tokens."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

Role = Literal["user", "staff", "admin"]
AccountKind = Literal["user", "admin_user"]

ROLES: tuple[str, ...] = ("user", "staff", "admin")


class TokenClaims(BaseModel):
    sub: str
    email: str
    role: Role
    kind: AccountKind = "user"
    iat: int | None = None
    exp: int

    @property
    def subject_id(self) -> int:
        return int(self.sub)
