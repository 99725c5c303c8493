from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Union
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from returnsdesk.core import metrics
from returnsdesk.core.config import settings
from returnsdesk.core.errors import Conflict, InvalidInput, NotFound, PreconditionFailed, Unauthorized
from returnsdesk.models.order import Order, OrderStatus
from returnsdesk.models.returns import (
    TERMINAL_STATUSES,
    RefundSettlement,
    ReturnReasonCategory,
    ReturnRequest,
    ReturnRequestEvent,
    ReturnRequestStatus,
)
from returnsdesk.models.user import User, UserRole
from returnsdesk.services import refund_policy
from returnsdesk.services import refunds as refunds_service

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: dict[ReturnRequestStatus, set[ReturnRequestStatus]] = {
    ReturnRequestStatus.pending: {ReturnRequestStatus.approved, ReturnRequestStatus.rejected},
    ReturnRequestStatus.approved: {ReturnRequestStatus.completed},
    ReturnRequestStatus.rejected: set(),
    ReturnRequestStatus.completed: set(),
}


@dataclass(frozen=True)
class IncompleteDetails:
    reason_category: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class CompleteDetails:
    reason_category: ReturnReasonCategory
    reason: str


ReturnDetails = Union[IncompleteDetails, CompleteDetails]


def return_details(reason_category: str | None, reason: str | None) -> ReturnDetails:
    category = _normalized_optional_text(reason_category)
    text = _normalized_optional_text(reason)
    if category in ReturnReasonCategory.__members__ and text:
        return CompleteDetails(reason_category=ReturnReasonCategory(category), reason=text)
    return IncompleteDetails(reason_category=category, reason=text)


def details_of(record: ReturnRequest) -> ReturnDetails:
    return return_details(record.reason_category, record.reason)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _normalized_optional_text(value: str | None) -> str | None:
    if not value:
        return None
    normalized = value.strip()
    return normalized or None


def _parse_category(raw: str | None) -> ReturnReasonCategory | None:
    value = _normalized_optional_text(raw)
    if value is None:
        return None
    try:
        return ReturnReasonCategory(value)
    except ValueError:
        raise InvalidInput(f"Unknown return reason category: {value}")


def _require_comment(admin_comment: str | None) -> str:
    comment = _normalized_optional_text(admin_comment)
    if not comment:
        raise InvalidInput("Admin comment is required")
    return comment


def parse_status_filter(raw: str | None) -> ReturnRequestStatus | None:
    value = _normalized_optional_text(raw)
    if value is None or value.lower() == "all":
        return None
    try:
        return ReturnRequestStatus(value.lower())
    except ValueError:
        raise InvalidInput(f"Unknown return request status: {value}")


def check_transition(current: ReturnRequestStatus, target: ReturnRequestStatus) -> None:
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        raise PreconditionFailed(f"Cannot move return request from {current.value} to {target.value}")


def _new_event(
    record: ReturnRequest,
    *,
    from_status: ReturnRequestStatus | None,
    to_status: ReturnRequestStatus,
    actor_id: UUID | None,
    note: str | None,
    now: datetime,
) -> ReturnRequestEvent:
    return ReturnRequestEvent(
        return_request_id=record.id,
        from_status=from_status,
        to_status=to_status,
        actor_id=actor_id,
        note=note,
        created_at=now,
    )


def _log_transition(record: ReturnRequest, *, from_status: ReturnRequestStatus | None, to_status: ReturnRequestStatus) -> None:
    logger.info(
        "return_request_transition",
        extra={
            "return_request_id": str(record.id),
            "order_id": str(record.order_id),
            "from_status": from_status.value if from_status else None,
            "to_status": to_status.value,
        },
    )


async def get_order(session: AsyncSession, order_id: UUID) -> Order | None:
    return (await session.execute(select(Order).where(Order.id == order_id))).scalar_one_or_none()


async def _require_order(session: AsyncSession, order_id: UUID) -> Order:
    order = await get_order(session, order_id)
    if not order:
        raise NotFound("Order not found")
    return order


def _ensure_order_access(order: Order, user: User) -> None:
    if user.role != UserRole.admin and order.user_id != user.id:
        raise NotFound("Order not found")


async def get_return_request(session: AsyncSession, return_id: UUID) -> ReturnRequest | None:
    result = await session.execute(
        select(ReturnRequest)
        .options(selectinload(ReturnRequest.events))
        .where(ReturnRequest.id == return_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_current_return_request(session: AsyncSession, order_id: UUID) -> ReturnRequest | None:
    """The order's most recently requested return, read fresh from the database."""
    result = await session.execute(
        select(ReturnRequest)
        .options(selectinload(ReturnRequest.events))
        .where(ReturnRequest.order_id == order_id)
        .order_by(ReturnRequest.requested_at.desc(), ReturnRequest.id.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def _require_current(session: AsyncSession, order_id: UUID) -> ReturnRequest:
    record = await get_current_return_request(session, order_id)
    if not record:
        raise NotFound("Return request not found")
    return record


async def get_return_request_for_order(session: AsyncSession, *, order_id: UUID, user: User) -> ReturnRequest:
    order = await _require_order(session, order_id)
    _ensure_order_access(order, user)
    return await _require_current(session, order_id)


async def conditional_update(
    session: AsyncSession,
    record: ReturnRequest,
    *,
    expected: ReturnRequestStatus,
    values: dict[str, Any],
) -> None:
    """Write ``values`` only if the row still holds ``expected``.

    A write that matches no row means another writer moved the request first;
    the transaction is rolled back and the caller gets ``PreconditionFailed``.
    """
    result = await session.execute(
        update(ReturnRequest)
        .where(ReturnRequest.id == record.id, ReturnRequest.status == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await session.rollback()
        raise PreconditionFailed(f"Return request is no longer {expected.value}")


async def submit_return_request(
    session: AsyncSession,
    *,
    order_id: UUID,
    actor: User,
    reason: str | None = None,
    reason_category: str | None = None,
    images: list[str] | None = None,
    require_details: bool = True,
) -> ReturnRequest:
    order = await _require_order(session, order_id)
    _ensure_order_access(order, actor)

    category = _parse_category(reason_category)
    text = _normalized_optional_text(reason)
    new_images = list(images or [])
    if require_details and (category is None or text is None):
        raise InvalidInput("Return reason and reason category are required")
    if len(new_images) > settings.return_max_images:
        raise InvalidInput(f"At most {settings.return_max_images} images are allowed")
    if OrderStatus(order.status) != OrderStatus.delivered:
        raise PreconditionFailed("Order is not eligible for return")

    current = await get_current_return_request(session, order.id)
    if current is not None and ReturnRequestStatus(current.status) not in TERMINAL_STATUSES:
        fillable = (
            ReturnRequestStatus(current.status) == ReturnRequestStatus.pending
            and isinstance(details_of(current), IncompleteDetails)
            and (category is not None or text is not None or new_images)
        )
        if not fillable:
            raise Conflict("Return request already exists")
        return await _fill_details(session, current, category=category, reason=text, images=new_images, actor=actor)

    now = _now()
    record = ReturnRequest(
        order_id=order.id,
        user_id=order.user_id,
        status=ReturnRequestStatus.pending,
        reason_category=category.value if category else None,
        reason=text,
        images=new_images,
        requested_at=now,
        updated_at=now,
    )
    session.add(record)
    try:
        await session.flush()
        session.add(
            _new_event(record, from_status=None, to_status=ReturnRequestStatus.pending, actor_id=actor.id, note=None, now=now)
        )
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise Conflict("Return request already exists")

    metrics.record_return_submitted()
    _log_transition(record, from_status=None, to_status=ReturnRequestStatus.pending)
    return await get_return_request(session, record.id) or record


async def _fill_details(
    session: AsyncSession,
    record: ReturnRequest,
    *,
    category: ReturnReasonCategory | None,
    reason: str | None,
    images: list[str],
    actor: User,
) -> ReturnRequest:
    merged_images = list(record.images or []) + images
    if len(merged_images) > settings.return_max_images:
        raise InvalidInput(f"At most {settings.return_max_images} images are allowed")
    now = _now()
    await conditional_update(
        session,
        record,
        expected=ReturnRequestStatus.pending,
        values={
            "reason_category": category.value if category else record.reason_category,
            "reason": reason or record.reason,
            "images": merged_images,
            "updated_at": now,
        },
    )
    session.add(
        _new_event(
            record,
            from_status=ReturnRequestStatus.pending,
            to_status=ReturnRequestStatus.pending,
            actor_id=actor.id,
            note="Return details submitted",
            now=now,
        )
    )
    await session.commit()
    return await get_return_request(session, record.id) or record


async def approve_return_request(
    session: AsyncSession,
    *,
    order_id: UUID,
    actor: User,
    admin_comment: str | None,
    refund_amount: Decimal | str | None = None,
) -> ReturnRequest:
    comment = _require_comment(admin_comment)
    record = await _require_current(session, order_id)
    previous = ReturnRequestStatus(record.status)
    check_transition(previous, ReturnRequestStatus.approved)
    if not isinstance(details_of(record), CompleteDetails):
        raise PreconditionFailed("Return reason and reason category are required before approval")

    amount = refund_policy.resolve_refund_amount(
        record.order.total_amount, refund_amount, max_ratio=settings.refund_max_ratio
    )
    now = _now()
    await conditional_update(
        session,
        record,
        expected=ReturnRequestStatus.pending,
        values={
            "status": ReturnRequestStatus.approved,
            "admin_comment": comment,
            "refund_amount": amount,
            "reviewed_by": actor.id,
            "reviewed_at": now,
            "updated_at": now,
        },
    )
    session.add(
        _new_event(record, from_status=previous, to_status=ReturnRequestStatus.approved, actor_id=actor.id, note=comment, now=now)
    )
    await session.commit()

    metrics.record_return_transition(ReturnRequestStatus.approved.value)
    _log_transition(record, from_status=previous, to_status=ReturnRequestStatus.approved)
    return await get_return_request(session, record.id) or record


async def reject_return_request(
    session: AsyncSession,
    *,
    order_id: UUID,
    actor: User,
    admin_comment: str | None,
) -> ReturnRequest:
    comment = _require_comment(admin_comment)
    record = await _require_current(session, order_id)
    previous = ReturnRequestStatus(record.status)
    check_transition(previous, ReturnRequestStatus.rejected)

    now = _now()
    await conditional_update(
        session,
        record,
        expected=ReturnRequestStatus.pending,
        values={
            "status": ReturnRequestStatus.rejected,
            "admin_comment": comment,
            "reviewed_by": actor.id,
            "reviewed_at": now,
            "updated_at": now,
        },
    )
    session.add(
        _new_event(record, from_status=previous, to_status=ReturnRequestStatus.rejected, actor_id=actor.id, note=comment, now=now)
    )
    await session.commit()

    metrics.record_return_transition(ReturnRequestStatus.rejected.value)
    _log_transition(record, from_status=previous, to_status=ReturnRequestStatus.rejected)
    return await get_return_request(session, record.id) or record


async def complete_return_request(
    session: AsyncSession,
    *,
    order_id: UUID,
    actor: User,
) -> tuple[ReturnRequest, RefundSettlement | None]:
    """Complete an approved return and record its refund settlement.

    Repeating the call on a completed request changes nothing and records no
    second settlement. It returns the stored settlement while that one is still
    undelivered so the caller can dispatch it again, otherwise ``None``.
    """
    record = await _require_current(session, order_id)
    return_id = record.id
    previous = ReturnRequestStatus(record.status)
    if previous == ReturnRequestStatus.completed:
        return record, await refunds_service.undispatched_settlement(session, return_id)
    check_transition(previous, ReturnRequestStatus.completed)

    now = _now()
    settlement = refunds_service.new_settlement(record, amount=Decimal(str(record.refund_amount or 0)), now=now)
    try:
        await conditional_update(
            session,
            record,
            expected=ReturnRequestStatus.approved,
            values={"status": ReturnRequestStatus.completed, "completed_at": now, "updated_at": now},
        )
        session.add(settlement)
        session.add(
            _new_event(record, from_status=previous, to_status=ReturnRequestStatus.completed, actor_id=actor.id, note=None, now=now)
        )
        await session.commit()
    except (PreconditionFailed, IntegrityError):
        await session.rollback()
        fresh = await get_return_request(session, return_id)
        if fresh is not None and ReturnRequestStatus(fresh.status) == ReturnRequestStatus.completed:
            return fresh, None
        raise PreconditionFailed("Return request is no longer approved")

    metrics.record_return_transition(ReturnRequestStatus.completed.value)
    _log_transition(record, from_status=previous, to_status=ReturnRequestStatus.completed)
    return await get_return_request(session, return_id) or record, settlement


async def cancel_return_request(session: AsyncSession, *, order_id: UUID, user: User) -> list[str]:
    """Withdraw a pending request; returns the evidence references it held."""
    order = await _require_order(session, order_id)
    _ensure_order_access(order, user)
    if order.user_id != user.id:
        raise Unauthorized("Only the customer can cancel a return request")
    record = await _require_current(session, order_id)
    if ReturnRequestStatus(record.status) != ReturnRequestStatus.pending:
        raise PreconditionFailed("Only pending return requests can be cancelled")

    images = list(record.images or [])
    return_id = record.id
    session.expunge(record)
    await session.execute(delete(ReturnRequestEvent).where(ReturnRequestEvent.return_request_id == return_id))
    result = await session.execute(
        delete(ReturnRequest).where(ReturnRequest.id == return_id, ReturnRequest.status == ReturnRequestStatus.pending)
    )
    if result.rowcount != 1:
        await session.rollback()
        raise PreconditionFailed("Return request is no longer pending")
    await session.commit()

    metrics.record_return_cancelled()
    logger.info("return_request_cancelled", extra={"return_request_id": str(return_id), "order_id": str(order_id)})
    return images


async def list_return_requests(
    session: AsyncSession,
    *,
    status_filter: ReturnRequestStatus | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[ReturnRequest], int]:
    if page < 1:
        raise InvalidInput("Page must be at least 1")
    if limit < 1:
        raise InvalidInput("Limit must be positive")

    filters = []
    if status_filter:
        filters.append(ReturnRequest.status == status_filter)

    count_stmt = select(func.count()).select_from(ReturnRequest)
    if filters:
        count_stmt = count_stmt.where(*filters)
    total_items = int((await session.execute(count_stmt)).scalar_one() or 0)

    query = select(ReturnRequest)
    if filters:
        query = query.where(*filters)
    query = (
        query.order_by(ReturnRequest.requested_at.desc(), ReturnRequest.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    rows = (await session.execute(query)).scalars().unique().all()
    return list(rows), total_items


def total_pages(total_items: int, limit: int) -> int:
    return (total_items + limit - 1) // limit if total_items else 0


async def list_return_requests_for_user(session: AsyncSession, *, user: User) -> list[ReturnRequest]:
    result = await session.execute(
        select(ReturnRequest)
        .join(Order, ReturnRequest.order_id == Order.id)
        .where(Order.user_id == user.id)
        .order_by(ReturnRequest.requested_at.desc(), ReturnRequest.id.desc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().unique().all())


async def status_summary(session: AsyncSession) -> dict[str, int]:
    rows = (await session.execute(select(ReturnRequest.status, func.count()).group_by(ReturnRequest.status))).all()
    counts = {status.value: 0 for status in ReturnRequestStatus}
    for status, count in rows:
        counts[ReturnRequestStatus(status).value] = int(count or 0)
    counts["all"] = sum(counts.values())
    return counts
