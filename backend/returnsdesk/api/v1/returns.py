from __future__ import annotations

from functools import partial
from uuid import UUID

import anyio
from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from returnsdesk.core.config import settings
from returnsdesk.core.dependencies import get_current_user, require_admin
from returnsdesk.core.errors import InvalidInput
from returnsdesk.db.session import get_session, get_session_factory
from returnsdesk.models.returns import ReturnRequest
from returnsdesk.models.user import User
from returnsdesk.schemas.returns import (
    ReturnApprovePayload,
    ReturnPaginationMeta,
    ReturnRejectPayload,
    ReturnRequestEventRead,
    ReturnRequestListResponse,
    ReturnRequestRead,
    ReturnStatusSummary,
)
from returnsdesk.services import refunds as refunds_service
from returnsdesk.services import returns as returns_service
from returnsdesk.services import storage

router = APIRouter(prefix="/orders", tags=["returns"])


def _serialize_return_request(record: ReturnRequest) -> ReturnRequestRead:
    order = getattr(record, "order", None)
    total = getattr(order, "total_amount", None)
    images = list(record.images or [])
    return ReturnRequestRead(
        id=record.id,
        order_id=record.order_id,
        order_reference=getattr(order, "reference_code", None),
        order_total=float(total) if total is not None else None,
        currency=getattr(order, "currency", None),
        customer_email=getattr(order, "customer_email", None),
        customer_name=getattr(order, "customer_name", None),
        user_id=record.user_id,
        request_status=record.status,
        reason_category=record.reason_category,
        reason=record.reason,
        details_complete=isinstance(returns_service.details_of(record), returns_service.CompleteDetails),
        images=images,
        image_urls=[storage.public_url(ref) for ref in images],
        requested_at=record.requested_at,
        admin_comment=record.admin_comment,
        refund_amount=float(record.refund_amount) if record.refund_amount is not None else None,
        reviewed_by=record.reviewed_by,
        reviewed_at=record.reviewed_at,
        completed_at=record.completed_at,
        events=[ReturnRequestEventRead.model_validate(event, from_attributes=True) for event in record.events or []],
    )


@router.get("/return-requests", response_model=ReturnRequestListResponse)
async def list_return_requests(
    status_filter: str | None = Query(default="all", alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    _: User = Depends(require_admin),
) -> ReturnRequestListResponse:
    rows, total_items = await returns_service.list_return_requests(
        session,
        status_filter=returns_service.parse_status_filter(status_filter),
        page=page,
        limit=limit,
    )
    return ReturnRequestListResponse(
        items=[_serialize_return_request(r) for r in rows],
        meta=ReturnPaginationMeta(
            page=page,
            limit=limit,
            total=total_items,
            pages=returns_service.total_pages(total_items, limit),
        ),
    )


@router.get("/return-requests/summary", response_model=ReturnStatusSummary)
async def return_requests_summary(
    session: AsyncSession = Depends(get_session),
    _: User = Depends(require_admin),
) -> ReturnStatusSummary:
    return ReturnStatusSummary(**await returns_service.status_summary(session))


@router.get("/my-return-requests", response_model=list[ReturnRequestRead])
async def my_return_requests(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> list[ReturnRequestRead]:
    rows = await returns_service.list_return_requests_for_user(session, user=current_user)
    return [_serialize_return_request(r) for r in rows]


@router.get("/{order_id}/return-request", response_model=ReturnRequestRead)
async def get_return_request(
    order_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> ReturnRequestRead:
    record = await returns_service.get_return_request_for_order(session, order_id=order_id, user=current_user)
    return _serialize_return_request(record)


@router.post("/{order_id}/return-request", response_model=ReturnRequestRead, status_code=status.HTTP_201_CREATED)
async def submit_return_request(
    order_id: UUID,
    reason: str | None = Form(default=None),
    reason_category: str | None = Form(default=None, alias="reasonCategory"),
    images: list[UploadFile] = File(default=[]),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> ReturnRequestRead:
    uploads = [upload for upload in images if upload.filename]
    if len(uploads) > settings.return_max_images:
        raise InvalidInput(f"At most {settings.return_max_images} images are allowed")

    stored: list[str] = []
    try:
        for upload in uploads:
            rel_path, _ = await anyio.to_thread.run_sync(
                partial(storage.save_upload, upload, subdir=f"returns/{order_id}")
            )
            stored.append(rel_path)
        record = await returns_service.submit_return_request(
            session,
            order_id=order_id,
            actor=current_user,
            reason=reason,
            reason_category=reason_category,
            images=stored,
        )
    except Exception:
        for ref in stored:
            storage.delete_file(ref)
        raise
    return _serialize_return_request(record)


@router.post(
    "/{order_id}/return-request/initiate",
    response_model=ReturnRequestRead,
    status_code=status.HTTP_201_CREATED,
)
async def initiate_return_request(
    order_id: UUID,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
) -> ReturnRequestRead:
    record = await returns_service.submit_return_request(
        session, order_id=order_id, actor=admin, require_details=False
    )
    return _serialize_return_request(record)


@router.post("/{order_id}/return-request/approve", response_model=ReturnRequestRead)
async def approve_return_request(
    order_id: UUID,
    payload: ReturnApprovePayload,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
) -> ReturnRequestRead:
    record = await returns_service.approve_return_request(
        session,
        order_id=order_id,
        actor=admin,
        admin_comment=payload.admin_comment,
        refund_amount=payload.refund_amount,
    )
    return _serialize_return_request(record)


@router.post("/{order_id}/return-request/reject", response_model=ReturnRequestRead)
async def reject_return_request(
    order_id: UUID,
    payload: ReturnRejectPayload,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
) -> ReturnRequestRead:
    record = await returns_service.reject_return_request(
        session, order_id=order_id, actor=admin, admin_comment=payload.admin_comment
    )
    return _serialize_return_request(record)


@router.post("/{order_id}/return-request/complete", response_model=ReturnRequestRead)
async def complete_return_request(
    order_id: UUID,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    admin: User = Depends(require_admin),
) -> ReturnRequestRead:
    record, settlement = await returns_service.complete_return_request(session, order_id=order_id, actor=admin)
    if settlement is not None:
        background_tasks.add_task(refunds_service.dispatch_settlement, session_factory, settlement.id)
    return _serialize_return_request(record)


@router.post(
    "/{order_id}/return-request/cancel",
    status_code=status.HTTP_204_NO_CONTENT,
    response_model=None,
)
async def cancel_return_request(
    order_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> None:
    images = await returns_service.cancel_return_request(session, order_id=order_id, user=current_user)
    for ref in images:
        storage.delete_file(ref)
