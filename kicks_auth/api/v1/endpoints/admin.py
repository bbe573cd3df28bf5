"""
Back-office endpoints — staff status lookup and admin-user management.

- POST /admin/check-status is open by default (see ``ADMIN_STATUS_REQUIRES_AUTH``).
- Everything under /admin/admin-users requires the admin role.
- DELETE is a soft delete: the row is deactivated and stamped, never removed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from kicks_auth.api.v1.deps import admin_status_guard, get_db, require_admin
from kicks_auth.core.exceptions import Conflict, NotFound, ValidationFailed
from kicks_auth.core.permissions import default_permissions, dump_permissions
from kicks_auth.core.security import hash_password_async
from kicks_auth.models.admin_user import AdminUser
from kicks_auth.schemas.auth import (
    AdminStatus,
    AdminStatusResponse,
    DeleteResponse,
    EmailRequest,
)
from kicks_auth.schemas.token import TokenClaims
from kicks_auth.schemas.user import AdminUserCreate, AdminUserRead, AdminUserUpdate
from kicks_auth.services.identity import email_in_use, resolve_role_for_email

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


@router.post("/check-status", response_model=AdminStatusResponse)
async def check_admin_status(
    body: EmailRequest,
    db: AsyncSession = Depends(get_db),
    _caller: TokenClaims | None = Depends(admin_status_guard),
) -> AdminStatusResponse:
    """Resolve the staff role and permissions for an email."""
    principal = await resolve_role_for_email(db, body.email)
    return AdminStatusResponse(
        message="Admin status confirmed",
        user=AdminStatus(
            id=principal.id,
            email=principal.email,
            role=principal.role,
            kind=principal.kind,
            permissions=principal.permissions,
            is_active=principal.is_active,
            created_at=getattr(principal.account, "created_at", None),
        ),
    )


# ── Admin-user management ──────────────────────────────────────────
async def _get_live_admin_user(db: AsyncSession, admin_user_id: int) -> AdminUser:
    admin_user = await db.get(AdminUser, admin_user_id)
    if admin_user is None or admin_user.deleted_at is not None:
        raise NotFound("Admin user not found")
    return admin_user


@router.get("/admin-users", response_model=list[AdminUserRead])
async def list_admin_users(
    db: AsyncSession = Depends(get_db),
    _admin: TokenClaims = Depends(require_admin),
) -> list[AdminUser]:
    result = await db.execute(
        select(AdminUser)
        .where(AdminUser.is_active.is_(True), AdminUser.deleted_at.is_(None))
        .order_by(AdminUser.created_at.desc(), AdminUser.id.desc())
    )
    return list(result.scalars().all())


@router.post("/admin-users", response_model=AdminUserRead, status_code=201)
async def create_admin_user(
    body: AdminUserCreate,
    db: AsyncSession = Depends(get_db),
    admin: TokenClaims = Depends(require_admin),
) -> AdminUser:
    """Create a staff account; permissions default from the role."""
    if await email_in_use(db, body.email):
        raise Conflict("Email already exists")

    username = body.username or body.email.split("@", 1)[0]
    taken = await db.execute(
        select(AdminUser.id).where(func.lower(AdminUser.username) == username.lower())
    )
    if taken.first() is not None:
        raise Conflict("Username already exists")

    admin_user = AdminUser(
        username=username,
        email=body.email,
        password_hash=await hash_password_async(body.password),
        first_name=body.first_name,
        last_name=body.last_name,
        role=body.role,
        permissions=dump_permissions(
            body.permissions if body.permissions is not None else default_permissions(body.role)
        ),
        is_active=True,
    )
    db.add(admin_user)
    await db.commit()
    await db.refresh(admin_user)
    logger.info("Admin user %s created by %s", admin_user.id, admin.email)
    return admin_user


@router.put("/admin-users/{admin_user_id}", response_model=AdminUserRead)
async def update_admin_user(
    admin_user_id: int,
    body: AdminUserUpdate,
    db: AsyncSession = Depends(get_db),
    admin: TokenClaims = Depends(require_admin),
) -> AdminUser:
    admin_user = await _get_live_admin_user(db, admin_user_id)
    changes = body.model_dump(exclude_unset=True)

    if "email" in changes and changes["email"] != admin_user.email:
        if await email_in_use(db, changes["email"]):
            raise Conflict("Email already exists")
        admin_user.email = changes["email"]
    if "password" in changes:
        admin_user.password_hash = await hash_password_async(changes["password"])
        admin_user.password = None  # retire the legacy column
    if "permissions" in changes:
        admin_user.permissions = dump_permissions(changes["permissions"] or {})
    for field in ("first_name", "last_name", "role", "is_active"):
        if changes.get(field) is not None:
            setattr(admin_user, field, changes[field])

    await db.commit()
    await db.refresh(admin_user)
    logger.info(
        "Admin user %s updated by %s: %s",
        admin_user.id,
        admin.email,
        sorted(k for k in changes if k != "password"),
    )
    return admin_user


@router.delete("/admin-users/{admin_user_id}", response_model=DeleteResponse)
async def delete_admin_user(
    admin_user_id: int,
    db: AsyncSession = Depends(get_db),
    admin: TokenClaims = Depends(require_admin),
) -> DeleteResponse:
    """Soft-delete (deactivate and archive) a staff account."""
    if admin.kind == "admin_user" and admin.subject_id == admin_user_id:
        raise ValidationFailed("You cannot delete your own account")

    admin_user = await _get_live_admin_user(db, admin_user_id)
    admin_user.is_active = False
    admin_user.deleted_at = datetime.now(timezone.utc)
    await db.commit()
    logger.info("Admin user %s archived by %s", admin_user_id, admin.email)
    return DeleteResponse(success=True, message="Admin user archived")
