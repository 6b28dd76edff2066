"""
Pytest configuration and fixtures.
"""

import sys
import os
import uuid
from contextlib import asynccontextmanager
from decimal import Decimal
from types import SimpleNamespace
from typing import AsyncGenerator, Dict
from urllib.parse import parse_qsl

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("FLOW_API_URL", "https://flow.test/api")
os.environ.setdefault("FLOW_API_KEY", "test-api-key")
os.environ.setdefault("FLOW_SECRET_KEY", "test-secret")
os.environ.setdefault("FLOW_URL_CONFIRMATION", "https://condo.test/payments/flow/confirmation")
os.environ.setdefault("FLOW_URL_RETURN", "https://condo.test/payments/flow/return")
os.environ.setdefault("FRONTEND_RETURN_URL", "https://web.condo.test/flow/return")

# Add app to path
sys.path.append(os.getcwd())

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from tenacity import wait_none

from app.config import settings
from app.database import Base
from app.fsm.states import ExpenseStatus, UserUnitStatus
from app.models import Expense, Unit, User, UserUnit
from app.services.flow_service import FlowClient
from app.services.flow_signature import FlowSigner

CHECKOUT_BASE = "https://sandbox.flow.test/app/web/pay.php"


class FakeFlowGateway:
    """
    In-process stand-in for the Flow REST API, served through
    httpx.MockTransport. Verifies signatures like the real gateway.
    """

    def __init__(self, signer: FlowSigner):
        self.signer = signer
        self.orders: Dict[str, dict] = {}
        self.requests = []
        self._seq = 0

    def set_status(self, token: str, status: int) -> None:
        self.orders[token]["status"] = status

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/payment/create"):
            params = dict(parse_qsl(request.content.decode("utf-8")))
            if self.signer.sign(params) != params.get("s"):
                return httpx.Response(401, json={"code": 108, "message": "Invalid signature"})
            self._seq += 1
            token = f"T{self._seq}"
            self.orders[token] = {
                "flowOrder": 9000 + self._seq,
                "commerceOrder": params["commerceOrder"],
                "requestDate": "2026-10-18 10:00:00",
                "status": 1,
                "subject": params["subject"],
                "currency": params["currency"],
                "amount": int(params["amount"]),
                "payer": params["email"],
            }
            return httpx.Response(
                200,
                json={"url": CHECKOUT_BASE, "token": token, "flowOrder": 9000 + self._seq},
            )

        if path.endswith("/payment/getStatus"):
            params = dict(request.url.params)
            if self.signer.sign(params) != params.get("s"):
                return httpx.Response(401, json={"code": 108, "message": "Invalid signature"})
            order = self.orders.get(params.get("token"))
            if order is None:
                return httpx.Response(400, json={"code": 105, "message": "Token not found"})
            return httpx.Response(200, json=order)

        return httpx.Response(404, json={"message": "not found"})


@pytest.fixture
def signer() -> FlowSigner:
    return FlowSigner(settings.flow_secret_key)


@pytest.fixture
def gateway(signer) -> FakeFlowGateway:
    return FakeFlowGateway(signer)


@pytest_asyncio.fixture
async def flow_client(gateway) -> AsyncGenerator[FlowClient, None]:
    """Real FlowClient talking to the fake gateway."""
    client = FlowClient(
        settings,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(gateway)),
        status_retry_wait=wait_none(),
    )
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """File-backed SQLite so separate sessions get separate connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/payments.db", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def session_factory(session_maker):
    """Same contract as app.database.get_db_context, bound to the test engine."""

    @asynccontextmanager
    async def factory() -> AsyncGenerator[AsyncSession, None]:
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return factory


@pytest_asyncio.fixture
async def db(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for a test."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def seed(session_factory) -> SimpleNamespace:
    """
    Resident U1 confirmed on unit 101, expense E1 of 15000 PENDING.
    Also an outsider with no unit membership.
    """
    async with session_factory() as session:
        owner = User(id=uuid.uuid4(), email="u1@condo.test", name="Resident One")
        outsider = User(id=uuid.uuid4(), email="u2@condo.test", name="Outsider")
        unit = Unit(id=uuid.uuid4(), number="101")
        membership = UserUnit(
            user_id=owner.id,
            unit_id=unit.id,
            status=UserUnitStatus.CONFIRMED.value,
        )
        expense = Expense(
            id=uuid.uuid4(),
            unit_id=unit.id,
            concept="Gasto común octubre",
            amount=Decimal("15000"),
            status=ExpenseStatus.PENDING.value,
        )
        session.add_all([owner, outsider, unit, membership, expense])

    return SimpleNamespace(
        owner_id=owner.id,
        outsider_id=outsider.id,
        unit_id=unit.id,
        expense_id=expense.id,
    )
