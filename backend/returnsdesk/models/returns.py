import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Index, Numeric, String, Text, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from returnsdesk.db.base import Base
from returnsdesk.models.order import Order
from returnsdesk.models.user import User


class ReturnRequestStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    completed = "completed"


TERMINAL_STATUSES = frozenset({ReturnRequestStatus.rejected, ReturnRequestStatus.completed})


class ReturnReasonCategory(str, enum.Enum):
    damaged_item = "damaged_item"
    wrong_item = "wrong_item"
    defective_item = "defective_item"
    not_as_described = "not_as_described"
    size_issue = "size_issue"
    changed_mind = "changed_mind"
    other = "other"


_ACTIVE_RETURN = text("status IN ('pending', 'approved')")


class ReturnRequest(Base):
    __tablename__ = "return_requests"
    # One non-terminal return per order.
    __table_args__ = (
        Index(
            "uq_return_requests_active_order",
            "order_id",
            unique=True,
            postgresql_where=_ACTIVE_RETURN,
            sqlite_where=_ACTIVE_RETURN,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    status: Mapped[ReturnRequestStatus] = mapped_column(
        Enum(ReturnRequestStatus, name="return_request_status"),
        nullable=False,
        default=ReturnRequestStatus.pending,
        index=True,
    )

    reason_category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    images: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    admin_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    refund_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    reviewed_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    order: Mapped[Order] = relationship("Order", lazy="joined")
    user: Mapped[User | None] = relationship("User", foreign_keys=[user_id], lazy="joined")
    events: Mapped[list["ReturnRequestEvent"]] = relationship(
        "ReturnRequestEvent",
        back_populates="return_request",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ReturnRequestEvent.created_at",
    )


class ReturnRequestEvent(Base):
    __tablename__ = "return_request_events"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    return_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("return_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_status: Mapped[ReturnRequestStatus | None] = mapped_column(
        Enum(ReturnRequestStatus, name="return_request_status"), nullable=True
    )
    to_status: Mapped[ReturnRequestStatus] = mapped_column(
        Enum(ReturnRequestStatus, name="return_request_status"), nullable=False
    )
    actor_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    return_request: Mapped[ReturnRequest] = relationship("ReturnRequest", back_populates="events")


class RefundSettlement(Base):
    __tablename__ = "refund_settlements"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    return_request_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("return_requests.id", ondelete="SET NULL"), nullable=True
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    idempotency_key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    dispatched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
