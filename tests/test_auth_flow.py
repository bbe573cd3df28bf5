"""
End-to-end auth flows over HTTP: registration, verification, login,
password reset and account recovery.
"""

import re
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from kicks_auth.core.security import verify_password
from kicks_auth.models.tokens import PasswordResetToken
from kicks_auth.models.user import User

TOKEN_RE = re.compile(r"token=([0-9a-f]{64})")

REGISTER = {
    "email": "Casey@Example.com",
    "password": "Secret1",
    "firstName": "Casey",
    "lastName": "Customer",
}


def _last_token(outbox) -> str:
    match = TOKEN_RE.search(outbox.sent[-1]["text"])
    assert match, outbox.sent[-1]
    return match.group(1)


def _auth_cookie(response) -> str:
    for header in response.headers.get_list("set-cookie"):
        if header.startswith("auth-token="):
            return header
    raise AssertionError("auth-token cookie not set")


def _keys(obj) -> set:
    if isinstance(obj, dict):
        return set(obj) | {k for v in obj.values() for k in _keys(v)}
    if isinstance(obj, list):
        return {k for v in obj for k in _keys(v)}
    return set()


# ── Registration & verification ─────────────────────────────────────
@pytest.mark.asyncio
async def test_register_verify_login(async_client: AsyncClient, outbox):
    resp = await async_client.post("/api/auth/register", json=REGISTER)
    assert resp.status_code == 201
    body = resp.json()
    assert body["requires_verification"] is True
    assert body["email_sent"] is True
    assert body["user"]["email"] == "casey@example.com"
    assert body["user"]["email_verified"] is False
    assert not any("password" in k for k in _keys(body))

    assert outbox.sent[-1]["to"] == "casey@example.com"
    assert "http://shop.test/verify-email?token=" in outbox.sent[-1]["text"]
    token = _last_token(outbox)

    blocked = await async_client.post(
        "/api/auth/login", json={"email": "casey@example.com", "password": "Secret1"}
    )
    assert blocked.status_code == 403
    assert blocked.json()["code"] == "email_not_verified"
    assert blocked.json()["requires_verification"] is True

    verified = await async_client.post("/api/auth/verify-email", json={"token": token})
    assert verified.status_code == 200
    assert verified.json()["user"]["email_verified"] is True
    assert verified.json()["welcome_email_sent"] is True
    assert verified.json()["token"]
    assert outbox.sent[-1]["subject"].startswith("Welcome")

    login = await async_client.post(
        "/api/auth/login", json={"email": "casey@example.com", "password": "Secret1"}
    )
    assert login.status_code == 200
    assert login.json()["user"]["role"] == "user"

    again = await async_client.post("/api/auth/verify-email", json={"token": token})
    assert again.status_code == 400
    assert again.json()["code"] == "already_used"


@pytest.mark.asyncio
async def test_register_accepts_snake_case_names(async_client: AsyncClient):
    resp = await async_client.post(
        "/api/auth/register",
        json={"email": "snake@example.com", "password": "Secret1", "first_name": "S", "last_name": "N"},
    )
    assert resp.status_code == 201
    assert resp.json()["user"]["first_name"] == "S"


@pytest.mark.asyncio
async def test_register_duplicate_email(async_client: AsyncClient, make_user):
    await make_user(email="casey@example.com")
    resp = await async_client.post("/api/auth/register", json=REGISTER)
    assert resp.status_code == 409
    assert resp.json() == {
        "error": "User with this email already exists",
        "code": "conflict",
        "success": False,
    }


@pytest.mark.asyncio
async def test_register_email_held_by_staff(async_client: AsyncClient, make_admin_user):
    await make_admin_user(email="casey@example.com")
    resp = await async_client.post("/api/auth/register", json=REGISTER)
    assert resp.status_code == 409


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "override",
    [
        {"email": "not-an-email"},
        {"password": "abc"},
        {"firstName": ""},
        {"email": None},
    ],
)
async def test_register_validation(async_client: AsyncClient, override):
    resp = await async_client.post("/api/auth/register", json={**REGISTER, **override})
    assert resp.status_code == 400
    assert resp.json()["code"] == "validation_error"
    assert resp.json()["success"] is False


@pytest.mark.asyncio
async def test_register_survives_mail_outage(async_client: AsyncClient, outbox, db_session: AsyncSession):
    outbox.fail = True
    resp = await async_client.post("/api/auth/register", json=REGISTER)
    assert resp.status_code == 201
    assert resp.json()["email_sent"] is False

    user = (await db_session.execute(select(User).where(User.email == "casey@example.com"))).scalar_one()
    assert user.email_verified is False


@pytest.mark.asyncio
async def test_verify_email_link_redirects(async_client: AsyncClient, outbox, db_session: AsyncSession):
    await async_client.post("/api/auth/register", json=REGISTER)
    token = _last_token(outbox)

    resp = await async_client.get("/api/auth/verify-email", params={"token": token})
    assert resp.status_code == 303
    assert resp.headers["location"] == "http://shop.test/verify-email?status=success"
    assert "httponly" in _auth_cookie(resp).lower()

    user = (await db_session.execute(select(User).where(User.email == "casey@example.com"))).scalar_one()
    assert user.email_verified is True
    assert user.email_verified_at is not None

    reused = await async_client.get("/api/auth/verify-email", params={"token": token})
    assert reused.headers["location"] == "http://shop.test/verify-email?error=already_used"

    missing = await async_client.get("/api/auth/verify-email")
    assert missing.headers["location"] == "http://shop.test/verify-email?error=missing-token"


@pytest.mark.asyncio
async def test_verify_email_refuses_inactive_account(
    async_client: AsyncClient, outbox, db_session: AsyncSession
):
    await async_client.post("/api/auth/register", json=REGISTER)
    token = _last_token(outbox)
    await db_session.execute(
        update(User).where(User.email == "casey@example.com").values(is_active=False)
    )
    await db_session.commit()

    resp = await async_client.post("/api/auth/verify-email", json={"token": token})
    assert resp.status_code == 403
    assert resp.json()["code"] == "account_inactive"
    assert "token" not in resp.json()
    assert not any(h.startswith("auth-token=") for h in resp.headers.get_list("set-cookie"))
    assert len(outbox.sent) == 1

    session = await async_client.get("/api/auth/session")
    assert session.json()["user"] is None

    user = (await db_session.execute(select(User).where(User.email == "casey@example.com"))).scalar_one()
    await db_session.refresh(user)
    assert user.email_verified is True
    assert user.is_active is False


@pytest.mark.asyncio
async def test_verify_email_link_refuses_inactive_account(
    async_client: AsyncClient, outbox, db_session: AsyncSession
):
    await async_client.post("/api/auth/register", json=REGISTER)
    token = _last_token(outbox)
    await db_session.execute(
        update(User).where(User.email == "casey@example.com").values(is_active=False)
    )
    await db_session.commit()

    resp = await async_client.get("/api/auth/verify-email", params={"token": token})
    assert resp.status_code == 303
    assert resp.headers["location"] == "http://shop.test/verify-email?error=account_inactive"
    assert not any(h.startswith("auth-token=") for h in resp.headers.get_list("set-cookie"))

    session = await async_client.get("/api/auth/session")
    assert session.json()["user"] is None


@pytest.mark.asyncio
async def test_verify_email_unknown_token(async_client: AsyncClient):
    resp = await async_client.post("/api/auth/verify-email", json={"token": "f" * 64})
    assert resp.status_code == 400
    assert resp.json()["code"] == "not_found"


@pytest.mark.asyncio
async def test_resend_verification(async_client: AsyncClient, outbox):
    await async_client.post("/api/auth/register", json=REGISTER)
    first = _last_token(outbox)

    resp = await async_client.post("/api/auth/resend-verification", json={"email": "casey@example.com"})
    assert resp.status_code == 200
    second = _last_token(outbox)
    assert second != first

    stale = await async_client.post("/api/auth/verify-email", json={"token": first})
    assert stale.json()["code"] == "not_found"
    fresh = await async_client.post("/api/auth/verify-email", json={"token": second})
    assert fresh.status_code == 200

    done = await async_client.post("/api/auth/resend-verification", json={"email": "casey@example.com"})
    assert "already verified" in done.json()["message"]


@pytest.mark.asyncio
async def test_resend_verification_unknown_email(async_client: AsyncClient, outbox):
    resp = await async_client.post("/api/auth/resend-verification", json={"email": "nobody@example.com"})
    assert resp.status_code == 200
    assert outbox.sent == []


# ── Login ───────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_login_sets_hardened_cookie(async_client: AsyncClient, make_user):
    await make_user(email="casey@example.com", password="Secret1")
    resp = await async_client.post(
        "/api/auth/login", json={"email": "casey@example.com", "password": "Secret1"}
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["token_type"] == "bearer"
    assert not any("password" in k for k in _keys(body))

    cookie = _auth_cookie(resp).lower()
    assert "httponly" in cookie
    assert "samesite=strict" in cookie
    assert f"max-age={7 * 24 * 60 * 60}" in cookie
    assert body["token"] in _auth_cookie(resp)


@pytest.mark.asyncio
async def test_login_failures_are_indistinguishable(async_client: AsyncClient, make_user):
    await make_user(email="casey@example.com", password="Secret1")
    unknown = await async_client.post(
        "/api/auth/login", json={"email": "nobody@example.com", "password": "Secret1"}
    )
    wrong = await async_client.post(
        "/api/auth/login", json={"email": "casey@example.com", "password": "Wrong1"}
    )
    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json() == wrong.json()


@pytest.mark.asyncio
async def test_login_inactive_customer(async_client: AsyncClient, make_user):
    await make_user(email="gone@example.com", password="Secret1", is_active=False)
    resp = await async_client.post(
        "/api/auth/login", json={"email": "gone@example.com", "password": "Secret1"}
    )
    assert resp.status_code == 403
    assert resp.json()["code"] == "account_inactive"


@pytest.mark.asyncio
async def test_staff_login(async_client: AsyncClient, make_admin_user, db_session: AsyncSession, issuer):
    staff = await make_admin_user(email="sam@example.com", password="StaffPass1")
    resp = await async_client.post(
        "/api/auth/login", json={"email": "sam@example.com", "password": "StaffPass1"}
    )
    assert resp.status_code == 200
    user = resp.json()["user"]
    assert user["role"] == "staff"
    assert user["kind"] == "admin_user"
    assert user["permissions"] == {"orders": True, "pos": True}

    claims = issuer.verify(resp.json()["token"])
    assert claims.role == "staff"
    assert claims.subject_id == staff.id

    await db_session.refresh(staff)
    assert staff.last_login_at is not None


@pytest.mark.asyncio
async def test_dual_table_email_resolves_to_customer(async_client: AsyncClient, make_user, make_admin_user):
    await make_user(email="both@example.com", password="CustPass1")
    await make_admin_user(email="both@example.com", password="StaffPass1", role="admin")

    resp = await async_client.post(
        "/api/auth/login", json={"email": "both@example.com", "password": "CustPass1"}
    )
    assert resp.status_code == 200
    assert resp.json()["user"]["role"] == "user"

    status = await async_client.post("/api/admin/check-status", json={"email": "both@example.com"})
    assert status.status_code == 403


@pytest.mark.asyncio
async def test_me_and_logout(async_client: AsyncClient, make_user):
    await make_user(email="casey@example.com", password="Secret1")
    login = await async_client.post(
        "/api/auth/login", json={"email": "casey@example.com", "password": "Secret1"}
    )
    token = login.json()["token"]

    me = await async_client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["user"]["email"] == "casey@example.com"

    out = await async_client.post("/api/auth/logout")
    assert out.status_code == 200
    assert 'auth-token=""' in _auth_cookie(out) or "max-age=0" in _auth_cookie(out).lower()

    after = await async_client.get("/api/auth/me")
    assert after.status_code == 401


# ── Password reset ──────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_forgot_password_does_not_enumerate(
    async_client: AsyncClient, make_user, outbox, db_session: AsyncSession
):
    await make_user(email="casey@example.com")
    known = await async_client.post("/api/auth/forgot-password", json={"email": "casey@example.com"})
    unknown = await async_client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()
    assert known.json()["message"] == (
        "If an account with that email exists, a password reset link has been sent."
    )
    assert [m["to"] for m in outbox.sent] == ["casey@example.com"]

    async def reset_rows(*filters) -> int:
        stmt = select(func.count()).select_from(PasswordResetToken).where(*filters)
        return (await db_session.execute(stmt)).scalar_one()

    assert await reset_rows(PasswordResetToken.email == "nobody@example.com") == 0
    assert await reset_rows() == 1


@pytest.mark.asyncio
async def test_password_reset_flow(async_client: AsyncClient, make_user, outbox):
    await make_user(email="casey@example.com", password="Secret1")
    await async_client.post("/api/auth/forgot-password", json={"email": "casey@example.com"})
    assert "http://shop.test/auth/reset-password?token=" in outbox.sent[-1]["text"]
    token = _last_token(outbox)

    check = await async_client.get("/api/auth/reset-password", params={"token": token})
    assert check.status_code == 200
    assert check.json() == {"valid": True}

    reset = await async_client.post(
        "/api/auth/reset-password", json={"token": token, "password": "NewSecret1"}
    )
    assert reset.status_code == 200

    old = await async_client.post(
        "/api/auth/login", json={"email": "casey@example.com", "password": "Secret1"}
    )
    assert old.status_code == 401
    new = await async_client.post(
        "/api/auth/login", json={"email": "casey@example.com", "password": "NewSecret1"}
    )
    assert new.status_code == 200

    reused = await async_client.post(
        "/api/auth/reset-password", json={"token": token, "password": "Another1"}
    )
    assert reused.status_code == 400
    assert reused.json()["code"] == "already_used"

    spent = await async_client.get("/api/auth/reset-password", params={"token": token})
    assert spent.status_code == 400
    assert spent.json()["valid"] is False
    assert spent.json()["code"] == "already_used"


@pytest.mark.asyncio
async def test_expired_reset_token(async_client: AsyncClient, make_user, outbox, db_session: AsyncSession):
    user = await make_user(email="casey@example.com", password="Secret1")
    await async_client.post("/api/auth/forgot-password", json={"email": "casey@example.com"})
    token = _last_token(outbox)

    await db_session.execute(
        update(PasswordResetToken)
        .where(PasswordResetToken.token == token)
        .values(expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
    )
    await db_session.commit()

    resp = await async_client.post(
        "/api/auth/reset-password", json={"token": token, "password": "NewSecret1"}
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "expired"

    await db_session.refresh(user)
    assert verify_password("Secret1", user.password_hash)


@pytest.mark.asyncio
async def test_reset_rejects_weak_password(async_client: AsyncClient, make_user, outbox):
    await make_user(email="casey@example.com")
    await async_client.post("/api/auth/forgot-password", json={"email": "casey@example.com"})
    token = _last_token(outbox)

    resp = await async_client.post("/api/auth/reset-password", json={"token": token, "password": "abc"})
    assert resp.status_code == 400

    # The token survives a rejected request.
    check = await async_client.get("/api/auth/reset-password", params={"token": token})
    assert check.json() == {"valid": True}


@pytest.mark.asyncio
async def test_reset_password_check_without_token(async_client: AsyncClient):
    resp = await async_client.get("/api/auth/reset-password")
    assert resp.status_code == 400
    assert resp.json()["valid"] is False


# ── Email recovery ──────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_forgot_email(async_client: AsyncClient, make_user, outbox):
    await make_user(email="casey@example.com")
    known = await async_client.post("/api/auth/forgot-email", json={"email": "casey@example.com"})
    unknown = await async_client.post("/api/auth/forgot-email", json={"email": "nobody@example.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()
    assert len(outbox.sent) == 1
    assert "casey@example.com" in outbox.sent[0]["text"]
