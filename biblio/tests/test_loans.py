"""Loan endpoint tests.

No-DB tests  : 401 boundary checks and error mapping with the services patched.
DB tests     : full lifecycle rules; skip gracefully if Postgres absent.
"""

import asyncio
import contextlib
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from biblio.auth.dependencies import get_current_user, get_optional_user
from biblio.auth.jwt import create_access_token
from biblio.core.config import settings
from biblio.core.errors import InvalidState, NotFound, StoreFailure, ValidationFailure
from biblio.db.session import AsyncSessionLocal, get_db
from biblio.main import app
from biblio.models.loan import Loan, LoanStatus
from biblio.models.material import Copy, CopyStatus, Material
from biblio.models.user import User, UserRole
from biblio.services.loan import approve_loan, reject_loan, request_loan, return_loan

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_user(role: UserRole = UserRole.MEMBER) -> User:
    return User(id=uuid.uuid4(), email=f"{role.value}@example.com", name="Test", role=role)


def _make_loan(status: LoanStatus = LoanStatus.REQUESTED) -> Loan:
    material = Material(id=uuid.uuid4(), title="Dune", author="Frank Herbert", quantity=1)
    copy = Copy(id=uuid.uuid4(), registration_number="BK00001", status=CopyStatus.ON_LOAN)
    now = datetime.now(tz=timezone.utc)
    loan = Loan(
        id=uuid.uuid4(),
        material_id=material.id,
        copy_id=copy.id,
        loan_date=now,
        due_date=now + timedelta(days=14),
        return_date=now if status.is_terminal else None,
        status=status,
    )
    loan.material = material
    loan.copy = copy
    loan.user = None
    return loan


async def _create_user(db, *, role: UserRole = UserRole.MEMBER) -> User:
    user = User(
        email=f"test_{uuid.uuid4().hex[:8]}@example.com",
        name="Test User",
        role=role,
        oauth_provider=None,
        oauth_subject=None,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def _create_material(db, *, copies: int = 1) -> Material:
    tag = uuid.uuid4().hex[:8].upper()
    material = Material(title=f"Test Material {tag}", author="Test Author", quantity=copies)
    material.copies = [
        Copy(registration_number=f"T{tag}{n:03d}", status=CopyStatus.AVAILABLE)
        for n in range(1, copies + 1)
    ]
    db.add(material)
    await db.commit()
    await db.refresh(material)
    return material


async def _quantity(material_id: uuid.UUID) -> int:
    # Fresh session so the value comes from the committed row
    async with AsyncSessionLocal() as session:
        material = await session.get(Material, material_id)
        return material.quantity


@contextlib.asynccontextmanager
async def _client_as(user: User | None, db=None):
    """HTTP client authenticated as *user*, optionally bound to a test DB session."""

    async def _override_user():
        return user

    async def _override_db():
        yield db

    app.dependency_overrides[get_optional_user] = _override_user
    if user is not None:
        app.dependency_overrides[get_current_user] = _override_user
    if db is not None:
        app.dependency_overrides[get_db] = _override_db
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.pop(get_optional_user, None)
        app.dependency_overrides.pop(get_current_user, None)
        app.dependency_overrides.pop(get_db, None)


# ---------------------------------------------------------------------------
# No-DB boundary tests (always run)
# ---------------------------------------------------------------------------


async def test_list_loans_no_auth(anon_client: AsyncClient) -> None:
    resp = await anon_client.get("/api/v1/loans")
    assert resp.status_code == 401
    assert resp.json()["code"] == "unauthorized"


async def test_return_no_auth(anon_client: AsyncClient) -> None:
    resp = await anon_client.post(f"/api/v1/loans/{uuid.uuid4()}/return")
    assert resp.status_code == 401


@pytest.mark.parametrize("action", ["approve", "reject"])
async def test_staff_transition_no_auth(anon_client: AsyncClient, action: str) -> None:
    resp = await anon_client.post(f"/api/v1/loans/{uuid.uuid4()}/{action}")
    assert resp.status_code == 401


@pytest.mark.parametrize("action", ["approve", "reject"])
async def test_staff_transition_member_forbidden(action: str) -> None:
    async with _client_as(_make_user()) as ac:
        resp = await ac.post(f"/api/v1/loans/{uuid.uuid4()}/{action}")
    assert resp.status_code == 403
    assert resp.json()["code"] == "forbidden"


async def test_anonymous_request_needs_guest_details(anon_client: AsyncClient) -> None:
    resp = await anon_client.post("/api/v1/loans", json={"material_id": str(uuid.uuid4())})
    assert resp.status_code == 422
    assert resp.json()["code"] == "validation_failure"


@pytest.mark.parametrize(
    "headers, cookies",
    [
        ({"Authorization": "Bearer not.a.valid.token"}, {}),
        ({}, {settings.ACCESS_TOKEN_COOKIE: "stale"}),
        (
            {},
            {
                settings.ACCESS_TOKEN_COOKIE: create_access_token(
                    {"sub": str(uuid.uuid4()), "role": "member"}, timedelta(minutes=-5)
                )
            },
        ),
    ],
    ids=["bad-bearer", "garbage-cookie", "expired-cookie"],
)
async def test_unusable_token_counts_as_guest(headers, cookies) -> None:
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test", cookies=cookies
    ) as ac:
        resp = await ac.post(
            "/api/v1/loans", json={"material_id": str(uuid.uuid4())}, headers=headers
        )
    # Treated as a guest with no guest details, not as a failed sign-in.
    assert resp.status_code == 422, resp.text
    assert resp.json()["code"] == "validation_failure"


async def test_request_rejects_malformed_guest_email(anon_client: AsyncClient) -> None:
    resp = await anon_client.post(
        "/api/v1/loans",
        json={
            "material_id": str(uuid.uuid4()),
            "guest_name": "Ana",
            "guest_email": "not-an-email",
        },
    )
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Error mapping — services patched, no DB
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, status, code",
    [
        (InvalidState("Cannot approve a loan that is active"), 400, "invalid_state"),
        (NotFound("Loan not found"), 404, "not_found"),
        (ValidationFailure("Loan has no copy assigned"), 422, "validation_failure"),
        (StoreFailure(), 500, "store_failure"),
    ],
)
async def test_approve_error_mapping(error, status, code) -> None:
    with patch("biblio.api.v1.loans.approve_loan", AsyncMock(side_effect=error)):
        async with _client_as(_make_user(UserRole.LIBRARIAN)) as ac:
            resp = await ac.post(f"/api/v1/loans/{uuid.uuid4()}/approve")
    assert resp.status_code == status
    assert resp.json() == {"detail": error.detail, "code": code}


async def test_approve_returns_loan() -> None:
    loan = _make_loan(LoanStatus.ACTIVE)
    with patch("biblio.api.v1.loans.approve_loan", AsyncMock(return_value=loan)) as svc:
        async with _client_as(_make_user(UserRole.ADMIN)) as ac:
            resp = await ac.post(f"/api/v1/loans/{loan.id}/approve")

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["status"] == "active"
    assert body["copy"]["registration_number"] == "BK00001"
    assert body["return_date"] is None
    assert svc.await_args.kwargs["loan_id"] == loan.id


async def test_reject_returns_closed_loan() -> None:
    loan = _make_loan(LoanStatus.REJECTED)
    with patch("biblio.api.v1.loans.reject_loan", AsyncMock(return_value=loan)):
        async with _client_as(_make_user(UserRole.LIBRARIAN)) as ac:
            resp = await ac.post(f"/api/v1/loans/{loan.id}/reject")

    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "rejected"
    assert resp.json()["return_date"] is not None


async def test_return_passes_current_user() -> None:
    member = _make_user()
    loan = _make_loan(LoanStatus.RETURNED)
    with patch("biblio.api.v1.loans.return_loan", AsyncMock(return_value=loan)) as svc:
        async with _client_as(member) as ac:
            resp = await ac.post(f"/api/v1/loans/{loan.id}/return")

    assert resp.status_code == 200, resp.text
    assert svc.await_args.kwargs["current_user"] is member


async def test_double_return_maps_to_400() -> None:
    error = InvalidState("Cannot return a loan that is returned")
    with patch("biblio.api.v1.loans.return_loan", AsyncMock(side_effect=error)):
        async with _client_as(_make_user(UserRole.LIBRARIAN)) as ac:
            resp = await ac.post(f"/api/v1/loans/{uuid.uuid4()}/return")
    assert resp.status_code == 400


async def test_change_due_date_endpoint() -> None:
    loan = _make_loan(LoanStatus.ACTIVE)
    with patch("biblio.api.v1.loans.change_due_date", AsyncMock(return_value=loan)) as svc:
        async with _client_as(_make_user(UserRole.LIBRARIAN)) as ac:
            resp = await ac.patch(
                f"/api/v1/loans/{loan.id}", json={"due_date": "2030-03-01T12:00:00Z"}
            )

    assert resp.status_code == 200, resp.text
    assert svc.await_args.kwargs["loan_id"] == loan.id
    assert svc.await_args.kwargs["due_date"] == datetime(2030, 3, 1, 12, tzinfo=timezone.utc)


async def test_change_due_date_only_accepts_due_date() -> None:
    with patch("biblio.api.v1.loans.change_due_date", AsyncMock()) as svc:
        async with _client_as(_make_user(UserRole.LIBRARIAN)) as ac:
            resp = await ac.patch(
                f"/api/v1/loans/{uuid.uuid4()}",
                json={"due_date": "2030-03-01T12:00:00Z", "status": "returned"},
            )
    assert resp.status_code == 422
    svc.assert_not_awaited()


async def test_change_due_date_member_forbidden() -> None:
    async with _client_as(_make_user()) as ac:
        resp = await ac.patch(
            f"/api/v1/loans/{uuid.uuid4()}", json={"due_date": "2030-03-01T12:00:00Z"}
        )
    assert resp.status_code == 403
    assert resp.json()["code"] == "invalid_state"


# ---------------------------------------------------------------------------
# DB-required tests
# ---------------------------------------------------------------------------


async def test_request_reserves_copy_and_takes_quantity(db) -> None:
    user = await _create_user(db)
    material = await _create_material(db, copies=2)

    async with _client_as(user, db) as ac:
        resp = await ac.post("/api/v1/loans", json={"material_id": str(material.id)})

    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["status"] == "requested"
    assert body["user"]["id"] == str(user.id)
    assert body["copy"]["registration_number"].endswith("001")
    assert body["return_date"] is None
    assert await _quantity(material.id) == 1


async def test_guest_request(db) -> None:
    material = await _create_material(db)

    async with _client_as(None, db) as ac:
        resp = await ac.post(
            "/api/v1/loans",
            json={
                "material_id": str(material.id),
                "guest_name": "Ana Guest",
                "guest_email": "ana@example.com",
            },
        )

    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["user"] is None
    assert body["guest_name"] == "Ana Guest"


async def test_request_when_no_copy_available(db) -> None:
    user = await _create_user(db)
    material = await _create_material(db, copies=1)
    await request_loan(db, material_id=material.id, current_user=user)

    async with _client_as(user, db) as ac:
        resp = await ac.post("/api/v1/loans", json={"material_id": str(material.id)})
    assert resp.status_code == 400
    assert await _quantity(material.id) == 0


async def test_request_unknown_material(db) -> None:
    user = await _create_user(db)
    async with _client_as(user, db) as ac:
        resp = await ac.post("/api/v1/loans", json={"material_id": str(uuid.uuid4())})
    assert resp.status_code == 404


async def test_approve_then_return(db) -> None:
    member = await _create_user(db)
    librarian = await _create_user(db, role=UserRole.LIBRARIAN)
    material = await _create_material(db)
    loan = await request_loan(db, material_id=material.id, current_user=member)

    async with _client_as(librarian, db) as ac:
        approved = await ac.post(f"/api/v1/loans/{loan.id}/approve")
        assert approved.status_code == 200, approved.text
        assert approved.json()["status"] == "active"
        assert await _quantity(material.id) == 0

        returned = await ac.post(f"/api/v1/loans/{loan.id}/return")
        assert returned.status_code == 200, returned.text
        assert returned.json()["status"] == "returned"
        assert returned.json()["return_date"] is not None

        again = await ac.post(f"/api/v1/loans/{loan.id}/return")
        assert again.status_code == 400

    assert await _quantity(material.id) == 1


async def test_reject_restores_quantity(db) -> None:
    member = await _create_user(db)
    material = await _create_material(db)
    loan = await request_loan(db, material_id=material.id, current_user=member)
    assert await _quantity(material.id) == 0

    rejected = await reject_loan(db, loan_id=loan.id)

    assert rejected.status == LoanStatus.REJECTED
    assert rejected.return_date is not None
    assert rejected.copy.status == CopyStatus.AVAILABLE
    assert await _quantity(material.id) == 1

    with pytest.raises(InvalidState):
        await approve_loan(db, loan_id=loan.id)


async def test_reject_active_loan_fails(db) -> None:
    member = await _create_user(db)
    material = await _create_material(db)
    loan = await request_loan(db, material_id=material.id, current_user=member)
    await approve_loan(db, loan_id=loan.id)

    with pytest.raises(InvalidState):
        await reject_loan(db, loan_id=loan.id)
    assert await _quantity(material.id) == 0


async def test_return_other_users_loan_member_forbidden(db) -> None:
    owner = await _create_user(db)
    other = await _create_user(db)
    material = await _create_material(db)
    loan = await request_loan(db, material_id=material.id, current_user=owner)

    async with _client_as(other, db) as ac:
        resp = await ac.post(f"/api/v1/loans/{loan.id}/return")

    assert resp.status_code == 403
    assert "another user" in resp.json()["detail"].lower()


async def test_get_other_users_loan_member_forbidden(db) -> None:
    owner = await _create_user(db)
    other = await _create_user(db)
    material = await _create_material(db)
    loan = await request_loan(db, material_id=material.id, current_user=owner)

    async with _client_as(other, db) as ac:
        resp = await ac.get(f"/api/v1/loans/{loan.id}")
    assert resp.status_code == 403

    async with _client_as(owner, db) as ac:
        resp = await ac.get(f"/api/v1/loans/{loan.id}")
    assert resp.status_code == 200


async def test_list_loans_member_sees_own_only(db) -> None:
    member1 = await _create_user(db)
    member2 = await _create_user(db)
    material = await _create_material(db, copies=2)
    await request_loan(db, material_id=material.id, current_user=member1)
    await request_loan(db, material_id=material.id, current_user=member2)

    async with _client_as(member1, db) as ac:
        resp = await ac.get("/api/v1/loans", params={"user_id": str(member2.id)})

    assert resp.status_code == 200, resp.text
    user_ids = {item["user"]["id"] for item in resp.json()["items"]}
    assert user_ids == {str(member1.id)}


async def test_list_loans_librarian_filters(db) -> None:
    member1 = await _create_user(db)
    member2 = await _create_user(db)
    librarian = await _create_user(db, role=UserRole.LIBRARIAN)
    material = await _create_material(db, copies=2)
    first = await request_loan(db, material_id=material.id, current_user=member1)
    await request_loan(db, material_id=material.id, current_user=member2)
    await approve_loan(db, loan_id=first.id)

    async with _client_as(librarian, db) as ac:
        resp = await ac.get(
            "/api/v1/loans", params={"q": material.title, "status": "requested"}
        )

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["total"] == 1
    assert body["items"][0]["user"]["id"] == str(member2.id)


async def test_copy_available_again_after_return(db) -> None:
    member1 = await _create_user(db)
    member2 = await _create_user(db)
    material = await _create_material(db)

    loan = await request_loan(db, material_id=material.id, current_user=member1)
    await return_loan(db, loan_id=loan.id, current_user=member1)

    loan2 = await request_loan(db, material_id=material.id, current_user=member2)
    assert loan2.status == LoanStatus.REQUESTED
    assert loan2.copy_id == loan.copy_id


async def test_concurrent_approve_has_one_winner(db) -> None:
    member = await _create_user(db)
    material = await _create_material(db)
    loan = await request_loan(db, material_id=material.id, current_user=member)

    async def _approve():
        async with AsyncSessionLocal() as session:
            return await approve_loan(session, loan_id=loan.id)

    results = await asyncio.gather(_approve(), _approve(), return_exceptions=True)

    assert sum(isinstance(r, Loan) for r in results) == 1
    assert sum(isinstance(r, InvalidState) for r in results) == 1


async def test_concurrent_return_increments_once(db) -> None:
    member = await _create_user(db)
    material = await _create_material(db)
    loan = await request_loan(db, material_id=material.id, current_user=member)
    await approve_loan(db, loan_id=loan.id)

    async def _return():
        async with AsyncSessionLocal() as session:
            return await return_loan(session, loan_id=loan.id, current_user=member)

    results = await asyncio.gather(_return(), _return(), return_exceptions=True)

    assert sum(isinstance(r, InvalidState) for r in results) == 1
    assert await _quantity(material.id) == 1


async def test_change_due_date_while_open(db) -> None:
    librarian = await _create_user(db, role=UserRole.LIBRARIAN)
    member = await _create_user(db)
    material = await _create_material(db)
    loan = await request_loan(db, material_id=material.id, current_user=member)
    new_due = loan.due_date + timedelta(days=7)

    async with _client_as(librarian, db) as ac:
        resp = await ac.patch(f"/api/v1/loans/{loan.id}", json={"due_date": new_due.isoformat()})

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert datetime.fromisoformat(body["due_date"]) == new_due
    assert body["status"] == "requested"


async def test_change_due_date_after_return_fails(db) -> None:
    librarian = await _create_user(db, role=UserRole.LIBRARIAN)
    material = await _create_material(db)
    loan = await request_loan(db, material_id=material.id, current_user=librarian)
    await return_loan(db, loan_id=loan.id, current_user=librarian)
    due = loan.due_date

    async with _client_as(librarian, db) as ac:
        resp = await ac.patch(
            f"/api/v1/loans/{loan.id}",
            json={"due_date": (due + timedelta(days=7)).isoformat()},
        )

    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_state"
    await db.refresh(loan)
    assert loan.due_date == due
