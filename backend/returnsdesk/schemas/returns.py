from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from returnsdesk.models.returns import ReturnRequestStatus


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys; snake_case input is accepted too."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReturnApprovePayload(CamelModel):
    admin_comment: str = Field(default="", max_length=2000)
    refund_amount: Decimal | str | None = None


class ReturnRejectPayload(CamelModel):
    admin_comment: str = Field(default="", max_length=2000)


class ReturnRequestEventRead(CamelModel):
    from_status: ReturnRequestStatus | None = None
    to_status: ReturnRequestStatus
    actor_id: UUID | None = None
    note: str | None = None
    created_at: datetime


class ReturnRequestRead(CamelModel):
    id: UUID
    order_id: UUID
    order_reference: str | None = None
    order_total: float | None = None
    currency: str | None = None
    customer_email: str | None = None
    customer_name: str | None = None
    user_id: UUID | None = None

    request_status: ReturnRequestStatus
    reason_category: str | None = None
    reason: str | None = None
    details_complete: bool = False
    images: list[str] = Field(default_factory=list)
    image_urls: list[str] = Field(default_factory=list)
    requested_at: datetime

    admin_comment: str | None = None
    refund_amount: float | None = None
    reviewed_by: UUID | None = None
    reviewed_at: datetime | None = None
    completed_at: datetime | None = None

    events: list[ReturnRequestEventRead] = Field(default_factory=list)


class ReturnPaginationMeta(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class ReturnRequestListResponse(CamelModel):
    items: list[ReturnRequestRead]
    meta: ReturnPaginationMeta


class ReturnStatusSummary(CamelModel):
    all: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    completed: int = 0
