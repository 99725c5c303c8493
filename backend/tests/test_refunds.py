import asyncio
import json
import uuid
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from returnsdesk.core import metrics
from returnsdesk.core.config import settings
from returnsdesk.db.base import Base
from returnsdesk.models.order import Order, OrderStatus
from returnsdesk.models.returns import RefundSettlement
from returnsdesk.models.user import User, UserRole
from returnsdesk.services import refunds as refunds_service


@pytest.fixture
def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'refunds.db'}", future=True)
    factory = async_sessionmaker(engine, expire_on_commit=False)

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield factory
    asyncio.run(engine.dispose())


async def _seed_settlement(session_factory) -> uuid.UUID:
    async with session_factory() as session:
        user = User(email=f"c-{uuid.uuid4().hex[:8]}@example.com", hashed_password="x", role=UserRole.customer)
        session.add(user)
        await session.flush()
        order = Order(user_id=user.id, status=OrderStatus.delivered, total_amount=Decimal("30.00"), currency="EUR")
        session.add(order)
        await session.flush()
        settlement = RefundSettlement(
            order_id=order.id,
            idempotency_key=f"{order.id}:{uuid.uuid4()}:completed",
            amount=Decimal("30.00"),
            currency="EUR",
            requested_at=datetime.now(timezone.utc),
        )
        session.add(settlement)
        await session.commit()
        return settlement.id


def _mock_async_client(monkeypatch: pytest.MonkeyPatch, handler) -> None:
    transport = httpx.MockTransport(handler)
    real_async_client = httpx.AsyncClient

    class MockAsyncClient:
        def __init__(self, *args, **kwargs):
            self._client = real_async_client(transport=transport, timeout=kwargs.get("timeout"))

        async def __aenter__(self):
            return self._client

        async def __aexit__(self, exc_type, exc, tb):
            await self._client.aclose()

    monkeypatch.setattr(refunds_service.httpx, "AsyncClient", MockAsyncClient)


def test_dispatch_posts_with_idempotency_key_and_stamps(monkeypatch: pytest.MonkeyPatch, session_factory) -> None:
    monkeypatch.setattr(settings, "refund_settlement_url", "https://settlements.example.com/refunds")
    seen: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202, json={"accepted": True}, request=request)

    _mock_async_client(monkeypatch, handler)

    async def scenario() -> None:
        settlement_id = await _seed_settlement(session_factory)
        assert await refunds_service.dispatch_settlement(session_factory, settlement_id) is True
        # Already acknowledged; nothing is sent again.
        assert await refunds_service.dispatch_settlement(session_factory, settlement_id) is False

        async with session_factory() as session:
            settlement = await session.get(RefundSettlement, settlement_id)
            assert settlement.dispatched_at is not None
            assert seen[0].headers["Idempotency-Key"] == settlement.idempotency_key

    asyncio.run(scenario())
    assert len(seen) == 1
    body = json.loads(seen[0].content)
    assert body["amount"] == "30.00"
    assert body["currency"] == "EUR"


def test_dispatch_failure_is_logged_not_raised(monkeypatch: pytest.MonkeyPatch, session_factory) -> None:
    monkeypatch.setattr(settings, "refund_settlement_url", "https://settlements.example.com/refunds")

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": "down"}, request=request)

    _mock_async_client(monkeypatch, handler)

    async def scenario() -> None:
        settlement_id = await _seed_settlement(session_factory)
        assert await refunds_service.dispatch_settlement(session_factory, settlement_id) is False
        async with session_factory() as session:
            settlement = await session.get(RefundSettlement, settlement_id)
            assert settlement.dispatched_at is None

    asyncio.run(scenario())
    assert metrics.snapshot()["refund_settlement_failures"] == 1


def test_dispatch_is_skipped_without_endpoint(monkeypatch: pytest.MonkeyPatch, session_factory) -> None:
    monkeypatch.setattr(settings, "refund_settlement_url", None)

    async def scenario() -> None:
        settlement_id = await _seed_settlement(session_factory)
        assert await refunds_service.dispatch_settlement(session_factory, settlement_id) is False

    asyncio.run(scenario())


def test_settlement_key_is_scoped_to_order_and_request() -> None:
    order_id, return_id = uuid.uuid4(), uuid.uuid4()
    assert refunds_service.settlement_key(order_id, return_id) == f"{order_id}:{return_id}:completed"
