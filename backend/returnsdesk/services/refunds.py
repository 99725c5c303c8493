from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from returnsdesk.core import metrics
from returnsdesk.core.config import settings
from returnsdesk.models.returns import RefundSettlement, ReturnRequest

logger = logging.getLogger(__name__)


def settlement_key(order_id: UUID, return_request_id: UUID) -> str:
    return f"{order_id}:{return_request_id}:completed"


def new_settlement(record: ReturnRequest, *, amount: Decimal, now: datetime) -> RefundSettlement:
    return RefundSettlement(
        return_request_id=record.id,
        order_id=record.order_id,
        idempotency_key=settlement_key(record.order_id, record.id),
        amount=amount,
        currency=getattr(record.order, "currency", None) or "USD",
        requested_at=now,
    )


async def undispatched_settlement(session: AsyncSession, return_request_id: UUID) -> RefundSettlement | None:
    result = await session.execute(
        select(RefundSettlement).where(
            RefundSettlement.return_request_id == return_request_id,
            RefundSettlement.dispatched_at.is_(None),
        )
    )
    return result.scalar_one_or_none()


def _settlement_payload(settlement: RefundSettlement) -> dict[str, object]:
    return {
        "settlement_id": str(settlement.id),
        "order_id": str(settlement.order_id),
        "return_request_id": str(settlement.return_request_id) if settlement.return_request_id else None,
        "amount": str(settlement.amount),
        "currency": settlement.currency,
        "requested_at": settlement.requested_at.isoformat(),
    }


async def _post_settlement(settlement: RefundSettlement) -> None:
    async with httpx.AsyncClient(timeout=settings.refund_settlement_timeout_seconds) as client:
        resp = await client.post(
            settings.refund_settlement_url,
            json=_settlement_payload(settlement),
            headers={"Idempotency-Key": settlement.idempotency_key},
        )
        resp.raise_for_status()


async def dispatch_settlement(session_factory: async_sessionmaker, settlement_id: UUID) -> bool:
    """Hand a recorded refund to the settlement endpoint.

    Runs after the completing transaction has committed. Delivery failures are
    logged and leave ``dispatched_at`` unset; they never undo the completion.
    """
    if not settings.refund_settlement_url:
        logger.info("refund_settlement_skipped", extra={"settlement_id": str(settlement_id)})
        return False

    async with session_factory() as session:
        settlement = await session.get(RefundSettlement, settlement_id)
        if settlement is None or settlement.dispatched_at is not None:
            return False
        try:
            await _post_settlement(settlement)
        except httpx.HTTPError as exc:
            metrics.record_settlement_dispatch_failure()
            logger.warning(
                "refund_settlement_failed",
                extra={"settlement_id": str(settlement_id), "order_id": str(settlement.order_id), "error": str(exc)},
            )
            return False
        settlement.dispatched_at = datetime.now(timezone.utc)
        session.add(settlement)
        await session.commit()
        logger.info("refund_settlement_dispatched", extra={"settlement_id": str(settlement_id)})
        return True
