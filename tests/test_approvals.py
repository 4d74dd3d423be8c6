import asyncio
from uuid import UUID

import pytest
from httpx import AsyncClient
from sqlalchemy import event, func, or_, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from qari.api.v1.approvals import service as approval_service
from qari.auth import services as auth_service
from qari.auth.models import AuthSession, Identity
from qari.core.config import settings
from qari.core.exceptions import WriteFailure
from qari.core.models import Account, JoinRequest, Message, Student

from conftest import PASSWORD


async def _count(db: AsyncSession, model, *criteria) -> int:
    result = await db.execute(select(func.count()).select_from(model).where(*criteria))
    return result.scalar_one()


# ----- Bootstrap -----
@pytest.mark.asyncio
async def test_first_teacher_is_bootstrapped_admin(admin, db_session: AsyncSession) -> None:
    assert admin["approved"] is True
    assert admin["admin"] is True
    assert admin["recovered"] is False
    assert admin["join_request_id"] is None
    assert await _count(db_session, JoinRequest) == 0


@pytest.mark.asyncio
async def test_only_first_teacher_is_bootstrapped(admin, register, db_session: AsyncSession) -> None:
    second = await register("teacher2@example.com", "teacher", name="Second Teacher")
    parent = await register("parent@example.com", "parent", name="Abu Omar")

    assert second["approved"] is False and second["admin"] is False
    assert second["join_request_id"] is not None
    assert parent["approved"] is False and parent["admin"] is False

    admins = await _count(db_session, Account, Account.admin.is_(True))
    assert admins == 1
    requests = (await db_session.execute(select(JoinRequest))).scalars().all()
    assert {r.account_id for r in requests} == {UUID(second["account_id"]), UUID(parent["account_id"])}
    assert all(r.status == "pending" for r in requests)


@pytest.mark.asyncio
async def test_parent_before_any_teacher_is_not_bootstrapped(register) -> None:
    parent = await register("early-parent@example.com", "parent")
    assert parent["approved"] is False
    assert parent["admin"] is False
    assert parent["join_request_id"] is not None


@pytest.mark.asyncio
async def test_student_join_request_carries_age(admin, register, db_session: AsyncSession) -> None:
    student = await register("student@example.com", "student", name="Yusuf", age=11)
    request = await db_session.get(JoinRequest, UUID(student["join_request_id"]))
    assert request.role == "student"
    assert request.age == 11

    parent = await register("p@example.com", "parent", name="Parent", age=40)
    parent_request = await db_session.get(JoinRequest, UUID(parent["join_request_id"]))
    assert parent_request.age is None


# ----- Recovery -----
@pytest.mark.asyncio
async def test_repeat_registration_is_idempotent(admin, register, db_session: AsyncSession) -> None:
    first = await register("parent@example.com", "parent", name="Abu Omar")
    again = await register("parent@example.com", "parent", name="Abu Omar")

    assert again["recovered"] is True
    assert again["account_id"] == first["account_id"]
    assert again["approved"] is False
    assert again["join_request_id"] is None
    assert await _count(db_session, Account) == 2
    assert await _count(db_session, JoinRequest) == 1


@pytest.mark.asyncio
async def test_recovery_returns_current_approval(admin, register, approve) -> None:
    teacher = await register("teacher2@example.com", "teacher")
    await approve(teacher, admin)

    again = await register("teacher2@example.com", "teacher")
    assert again["recovered"] is True
    assert again["approved"] is True
    assert again["admin"] is False


@pytest.mark.asyncio
async def test_recovery_with_wrong_password_fails(admin, client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/auth/register",
        json={"email": "sheikh@example.com", "password": "not-the-password", "role": "teacher", "name": "X"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_identity_without_account_is_completed(admin, register, db_session: AsyncSession) -> None:
    # Signup that died after the identity was created
    orphan = await auth_service.sign_up(db_session, "orphan@example.com", PASSWORD)

    result = await register("orphan@example.com", "parent", name="Orphan")
    assert result["recovered"] is True
    assert result["account_id"] == str(orphan.identity_id)
    assert result["join_request_id"] is not None


@pytest.mark.asyncio
async def test_lookup_timeout_signs_out(admin, client: AsyncClient, db_session: AsyncSession, monkeypatch) -> None:
    async def slow_lookup(db, account_id):
        await asyncio.sleep(1)

    monkeypatch.setattr(approval_service, "get_account", slow_lookup)
    monkeypatch.setattr(settings, "profile_lookup_timeout_seconds", 0.05)

    response = await client.post(
        "/api/v1/auth/register",
        json={"email": "slow@example.com", "password": PASSWORD, "role": "parent", "name": "Slow"},
    )
    assert response.status_code == 504

    identity = await auth_service.get_identity_by_email(db_session, "slow@example.com")
    assert identity is not None
    assert not await auth_service.has_active_session(db_session, identity.id)
    assert await db_session.get(Account, identity.id) is None


@pytest.mark.asyncio
async def test_join_request_failure_is_not_fatal(
    admin, register, client: AsyncClient, auth_headers, db_session: AsyncSession
) -> None:
    def reject_join_requests(session, flush_context, instances):
        if any(isinstance(obj, JoinRequest) for obj in session.new):
            raise SQLAlchemyError("join_requests unavailable")

    event.listen(Session, "before_flush", reject_join_requests)
    try:
        parent = await register("parent@example.com", "parent")
    finally:
        event.remove(Session, "before_flush", reject_join_requests)

    assert parent["join_request_id"] is None
    account = await db_session.get(Account, UUID(parent["account_id"]))
    assert account is not None and account.approved is False

    # Manual approval without a join request
    response = await client.post(
        f"/api/v1/accounts/{parent['account_id']}/review",
        json={"decision": "accept"},
        headers=auth_headers(admin),
    )
    assert response.status_code == 200
    assert response.json()["approved"] is True


# ----- Review -----
@pytest.mark.asyncio
async def test_accepting_student_enrolls_with_reviewer(
    admin, register, approve, db_session: AsyncSession
) -> None:
    student = await register("student@example.com", "student", name="Yusuf", age=11)
    reviewed = await approve(student, admin)

    assert reviewed["status"] == "accepted"
    assert reviewed["reviewed_by"] == admin["account_id"]

    account = await db_session.get(Account, UUID(student["account_id"]))
    assert account.approved is True and account.rejected is False

    enrolled = await db_session.get(Student, UUID(student["account_id"]))
    assert enrolled is not None
    assert enrolled.teacher_id == UUID(admin["account_id"])
    assert enrolled.name == "Yusuf"
    assert enrolled.age == 11
    assert enrolled.notes == approval_service.APPROVAL_NOTE
    assert await _count(db_session, Student) == 1


@pytest.mark.asyncio
async def test_accepting_parent_creates_no_student(admin, register, approve, db_session: AsyncSession) -> None:
    parent = await register("parent@example.com", "parent")
    await approve(parent, admin)
    assert await _count(db_session, Student) == 0


@pytest.mark.asyncio
async def test_request_can_be_reviewed_once(admin, register, approve, client: AsyncClient, auth_headers) -> None:
    student = await register("student@example.com", "student")
    await approve(student, admin)

    response = await client.post(
        f"/api/v1/join-requests/{student['join_request_id']}/review",
        json={"decision": "reject"},
        headers=auth_headers(admin),
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_rejection_marks_account(admin, register, approve, client: AsyncClient) -> None:
    parent = await register("parent@example.com", "parent")
    reviewed = await approve(parent, admin, decision="reject")
    assert reviewed["status"] == "rejected"

    response = await client.post(
        "/api/v1/auth/login",
        json={"email": "parent@example.com", "password": PASSWORD, "role": "parent"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["approval_state"] == "rejected"
    assert body["account"]["rejected"] is True


@pytest.mark.asyncio
async def test_only_admins_review(admin, register, approve, client: AsyncClient, auth_headers) -> None:
    teacher = await register("teacher2@example.com", "teacher")
    await approve(teacher, admin)
    parent = await register("parent@example.com", "parent")

    response = await client.post(
        f"/api/v1/join-requests/{parent['join_request_id']}/review",
        json={"decision": "accept"},
        headers=auth_headers(teacher),
    )
    assert response.status_code == 403

    # A pending account cannot use approved-only endpoints at all
    response = await client.get("/api/v1/join-requests", headers=auth_headers(parent))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_list_and_count_pending(admin, register, approve, client: AsyncClient, auth_headers) -> None:
    parent = await register("parent@example.com", "parent")
    student = await register("student@example.com", "student")
    await approve(parent, admin)

    response = await client.get("/api/v1/join-requests", headers=auth_headers(admin))
    assert response.status_code == 200
    assert [r["account_id"] for r in response.json()] == [student["account_id"]]

    response = await client.get("/api/v1/join-requests/count", headers=auth_headers(admin))
    assert response.json() == {"pending": 1}

    response = await client.get(
        "/api/v1/join-requests", params={"status": "accepted"}, headers=auth_headers(admin)
    )
    assert [r["account_id"] for r in response.json()] == [parent["account_id"]]


# ----- Rejected account purge -----
@pytest.mark.asyncio
async def test_rejected_applicant_purges_everything(
    admin, register, approve, client: AsyncClient, auth_headers, db_session: AsyncSession
) -> None:
    parent = await register("parent@example.com", "parent")
    await approve(parent, admin, decision="reject")
    account_id = UUID(parent["account_id"])

    response = await client.delete("/api/v1/auth/me", headers=auth_headers(parent))
    assert response.status_code == 204

    assert await db_session.get(Account, account_id) is None
    assert await db_session.get(Identity, account_id) is None
    assert await _count(db_session, JoinRequest, JoinRequest.account_id == account_id) == 0
    assert await _count(db_session, AuthSession, AuthSession.identity_id == account_id) == 0

    # The email is free again
    again = await register("parent@example.com", "parent")
    assert again["recovered"] is False


@pytest.mark.asyncio
async def test_pending_applicant_cannot_purge(admin, register, client: AsyncClient, auth_headers) -> None:
    parent = await register("parent@example.com", "parent")
    response = await client.delete("/api/v1/auth/me", headers=auth_headers(parent))
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_rejected_member_with_messages_purges_everything(
    admin, register, approve, client: AsyncClient, auth_headers, db_session: AsyncSession
) -> None:
    assert (await db_session.execute(text("PRAGMA foreign_keys"))).scalar_one() == 1
    parent = await register("parent@example.com", "parent", name="Abu Omar")
    await approve(parent, admin)
    account_id = UUID(parent["account_id"])
    for sender, receiver in ((parent, admin), (admin, parent)):
        response = await client.post(
            "/api/v1/messages",
            json={"receiver_id": receiver["account_id"], "content": "As-salamu alaykum"},
            headers=auth_headers(sender),
        )
        assert response.status_code == 201, response.text

    # Rejected later, without a pending join request
    response = await client.post(
        f"/api/v1/accounts/{parent['account_id']}/review",
        json={"decision": "reject"},
        headers=auth_headers(admin),
    )
    assert response.status_code == 200
    assert response.json()["rejected"] is True

    response = await client.delete("/api/v1/auth/me", headers=auth_headers(parent))
    assert response.status_code == 204, response.text

    involving = or_(Message.sender_id == account_id, Message.receiver_id == account_id)
    assert await _count(db_session, Message, involving) == 0
    assert await _count(db_session, JoinRequest, JoinRequest.account_id == account_id) == 0
    assert await db_session.get(Account, account_id) is None
    assert await db_session.get(Identity, account_id) is None


@pytest.mark.asyncio
async def test_credentials_without_account_can_be_removed(
    client: AsyncClient, db_session: AsyncSession
) -> None:
    orphan = await auth_service.sign_up(db_session, "orphan@example.com", PASSWORD)

    response = await client.delete(
        "/api/v1/auth/me", headers={"Authorization": f"Bearer {orphan.access_token}"}
    )
    assert response.status_code == 204
    db_session.expunge_all()
    assert await db_session.get(Identity, orphan.identity_id) is None
    assert await _count(db_session, AuthSession, AuthSession.identity_id == orphan.identity_id) == 0


@pytest.mark.asyncio
async def test_purge_is_atomic(admin, register, approve, db_session: AsyncSession) -> None:
    parent = await register("parent@example.com", "parent")
    await approve(parent, admin, decision="reject")
    account_id = UUID(parent["account_id"])

    def fail_identity_delete(session, flush_context, instances):
        if any(isinstance(obj, Identity) for obj in session.deleted):
            raise SQLAlchemyError("identities unavailable")

    event.listen(Session, "before_flush", fail_identity_delete)
    try:
        with pytest.raises(WriteFailure):
            await approval_service.purge_rejected_account(db_session, account_id)
    finally:
        event.remove(Session, "before_flush", fail_identity_delete)

    assert await _count(db_session, Account, Account.id == account_id) == 1
    assert await _count(db_session, Identity, Identity.id == account_id) == 1
    assert await _count(db_session, JoinRequest, JoinRequest.account_id == account_id) == 1
