"""
Tests for the payments HTTP routes, end to end against the fake gateway.
"""

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import func, select
from tenacity import wait_none

from app.api.deps import get_flow_client
from app.config import settings
from app.database import get_db
from app.main import app
from app.models import Payment
from app.services.flow_service import FlowClient


@pytest_asyncio.fixture
async def client(session_maker, flow_client):
    """API client with the database and Flow client swapped for test doubles."""

    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_flow_client] = lambda: flow_client

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def auth(user_id) -> dict:
    return {"X-User-Id": str(user_id)}


async def count_payments(session_maker) -> int:
    async with session_maker() as session:
        return await session.scalar(select(func.count()).select_from(Payment))


@pytest.mark.asyncio
async def test_end_to_end_webhook_settles_expense(client, gateway, seed):
    """E1 (15000) paid by U1: create -> gateway reports 2 -> webhook -> status Pagado."""
    response = await client.post(f"/payments/expense/{seed.expense_id}", headers=auth(seed.owner_id))
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["token"] == "T1"
    assert body["checkoutUrl"].endswith("?token=T1")
    payment_id = body["paymentId"]

    response = await client.get("/payments/status", params={"token": "T1"}, headers=auth(seed.owner_id))
    assert response.json()["payment"]["status"] == "PENDING"

    gateway.set_status("T1", 2)

    response = await client.post("/payments/flow/confirmation", data={"token": "T1"})
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["action"] == "marked_paid"

    response = await client.get("/payments/status", params={"token": "T1"}, headers=auth(seed.owner_id))
    assert response.status_code == 200
    body = response.json()
    assert body["flow"]["status"] == 2
    assert body["flow"]["statusText"] == "Pagado"
    assert body["flow"]["amount"] == 15000
    assert body["payment"]["id"] == payment_id
    assert body["payment"]["status"] == "PAID"
    assert body["payment"]["paymentDate"] is not None
    assert body["payment"]["expense"]["status"] == "PAID"


@pytest.mark.asyncio
async def test_duplicate_webhook_still_answers_success(client, gateway, seed):
    await client.post(f"/payments/expense/{seed.expense_id}", headers=auth(seed.owner_id))
    gateway.set_status("T1", 2)

    first = await client.post("/payments/flow/confirmation", data={"token": "T1"})
    second = await client.post("/payments/flow/confirmation", json={"token": "T1"})

    assert first.json()["action"] == "marked_paid"
    assert second.status_code == 200
    assert second.json() == {"success": True, "action": "already_settled", "error": None}


@pytest.mark.asyncio
async def test_webhook_always_answers_200(client, gateway, seed):
    response = await client.post(
        "/payments/flow/confirmation",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )
    assert response.status_code == 200
    assert response.json()["success"] is True

    response = await client.post("/payments/flow/confirmation", data={"token": "unknown"})
    assert response.status_code == 200
    assert response.json()["action"] == "ignored"

    response = await client.post(
        "/payments/flow/confirmation",
        content=b"token=T1",
        headers={"content-type": "multipart/form-data"},
    )
    assert response.status_code == 200
    assert response.json()["action"] == "ignored"

    response = await client.post(
        "/payments/flow/confirmation",
        content=b"--xyz\r\ngarbage",
        headers={"content-type": "multipart/form-data; boundary=xyz"},
    )
    assert response.status_code == 200
    assert response.json()["success"] is True


@pytest.mark.asyncio
async def test_webhook_gateway_failure_is_200_with_success_false(client, seed):
    await client.post(f"/payments/expense/{seed.expense_id}", headers=auth(seed.owner_id))

    broken = FlowClient(
        settings,
        http_client=httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(503, text="down"))
        ),
        status_retry_wait=wait_none(),
    )
    app.dependency_overrides[get_flow_client] = lambda: broken

    response = await client.post("/payments/flow/confirmation", data={"token": "T1"})

    assert response.status_code == 200
    assert response.json()["success"] is False
    await broken.aclose()


@pytest.mark.asyncio
async def test_manual_confirm(client, gateway, seed):
    await client.post(f"/payments/expense/{seed.expense_id}", headers=auth(seed.owner_id))

    response = await client.post("/payments/confirm", json={"token": "T1"}, headers=auth(seed.owner_id))
    assert response.status_code == 202
    assert response.json()["status"] == "PENDING"
    assert response.json()["statusText"] == "Pendiente"

    gateway.set_status("T1", 2)
    response = await client.post("/payments/confirm", json={"token": "T1"}, headers=auth(seed.owner_id))
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["status"] == "PAID"
    assert body["statusText"] == "Pagado"


@pytest.mark.asyncio
async def test_manual_confirm_rejected(client, gateway, seed):
    await client.post(f"/payments/expense/{seed.expense_id}", headers=auth(seed.owner_id))
    gateway.set_status("T1", 3)

    response = await client.post("/payments/confirm", json={"token": "T1"}, headers=auth(seed.owner_id))

    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["status"] == "FAILED"
    assert response.json()["message"] == "Payment was rejected"


@pytest.mark.asyncio
async def test_manual_confirm_by_other_user_is_forbidden(client, gateway, seed):
    await client.post(f"/payments/expense/{seed.expense_id}", headers=auth(seed.owner_id))
    gateway.set_status("T1", 2)

    response = await client.post("/payments/confirm", json={"token": "T1"}, headers=auth(seed.outsider_id))
    assert response.status_code == 403
    assert response.json()["error"] == "authorization_error"

    response = await client.get("/payments/status", params={"token": "T1"}, headers=auth(seed.owner_id))
    assert response.json()["payment"]["status"] == "PENDING"


@pytest.mark.asyncio
async def test_manual_confirm_unknown_token(client, seed):
    response = await client.post("/payments/confirm", json={"token": "nope"}, headers=auth(seed.owner_id))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_create_errors(client, seed, session_maker):
    response = await client.post(f"/payments/expense/{seed.expense_id}")
    assert response.status_code == 401

    response = await client.post(f"/payments/expense/{seed.expense_id}", headers=auth(seed.outsider_id))
    assert response.status_code == 403

    response = await client.post(
        "/payments/expense/00000000-0000-0000-0000-000000000000", headers=auth(seed.owner_id)
    )
    assert response.status_code == 404
    assert response.json() == {
        "success": False,
        "error": "not_found",
        "message": "Expense not found",
    }

    assert await count_payments(session_maker) == 0


@pytest.mark.asyncio
async def test_create_on_paid_expense_conflicts(client, gateway, seed):
    await client.post(f"/payments/expense/{seed.expense_id}", headers=auth(seed.owner_id))
    gateway.set_status("T1", 2)
    await client.post("/payments/flow/confirmation", data={"token": "T1"})

    response = await client.post(f"/payments/expense/{seed.expense_id}", headers=auth(seed.owner_id))
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_create_gateway_failure_returns_502_and_no_row(client, seed, session_maker):
    broken = FlowClient(
        settings,
        http_client=httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
        ),
    )
    app.dependency_overrides[get_flow_client] = lambda: broken

    response = await client.post(f"/payments/expense/{seed.expense_id}", headers=auth(seed.owner_id))

    assert response.status_code == 502
    assert response.json()["success"] is False
    assert response.json()["error"] == "gateway_error"
    assert await count_payments(session_maker) == 0
    await broken.aclose()


@pytest.mark.asyncio
async def test_status_requires_token(client, seed):
    response = await client.get("/payments/status", headers=auth(seed.owner_id))
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_flow_return_redirects_to_web_client(client):
    response = await client.post("/payments/flow/return", data={"token": "T9"})
    assert response.status_code == 303
    assert response.headers["location"] == f"{settings.frontend_return_url}?token=T9"

    response = await client.post("/payments/flow/return", data={})
    assert response.status_code == 303
    assert response.headers["location"].endswith("?error=no_token")

    response = await client.get("/payments/flow/return", params={"token": "T9"})
    assert response.headers["location"] == f"{settings.frontend_return_url}?token=T9"

    response = await client.post(
        "/payments/flow/return",
        content=b"token=T9",
        headers={"content-type": "multipart/form-data"},
    )
    assert response.status_code == 303
    assert response.headers["location"].endswith("?error=no_token")


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_status_for_token_unknown_to_gateway(client, seed):
    response = await client.get(
        "/payments/status", params={"token": "never-issued"}, headers=auth(seed.owner_id)
    )
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"
