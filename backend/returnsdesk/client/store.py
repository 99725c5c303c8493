"""Client-side state for return-request screens.

The store never patches its lists from a mutation response. After every
mutation that succeeded, or failed because another writer moved the request
first, it refetches the affected list so concurrent admins converge on the
server's state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable
from uuid import UUID

import httpx

from returnsdesk.client.api import ApiError, ImageUpload, ReturnsApiClient
from returnsdesk.core.errors import PreconditionFailed, ReturnsError

logger = logging.getLogger(__name__)

_CLIENT_ERRORS = (ReturnsError, ApiError, httpx.HTTPError)


@dataclass
class Pagination:
    page: int = 1
    limit: int = 20
    total: int = 0
    pages: int = 0


@dataclass
class ListFilters:
    status: str | None = None
    page: int = 1
    limit: int = 20


def _error_message(exc: Exception, fallback: str) -> str:
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message:
        return message
    return fallback


class ReturnRequestStore:
    def __init__(self, api: ReturnsApiClient) -> None:
        self.api = api
        self.reset()

    def reset(self) -> None:
        self.return_requests: list[dict[str, Any]] = []
        self.my_return_requests: list[dict[str, Any]] = []
        self.current_return_request: dict[str, Any] | None = None
        self.pagination = Pagination()
        self.filters = ListFilters()
        self.loading = False
        self.error: str | None = None
        self.success_message: str | None = None

    def clear_messages(self) -> None:
        self.error = None
        self.success_message = None

    def set_current_return_request(self, record: dict[str, Any] | None) -> None:
        self.current_return_request = record

    async def fetch_return_requests(
        self,
        *,
        status: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> list[dict[str, Any]]:
        self.filters = ListFilters(status=status, page=page, limit=limit)
        self.loading = True
        self.clear_messages()
        try:
            await self._refresh_admin_list()
        except _CLIENT_ERRORS as exc:
            self.error = _error_message(exc, "Failed to fetch return requests")
            raise
        finally:
            self.loading = False
        return self.return_requests

    async def fetch_my_return_requests(self) -> list[dict[str, Any]]:
        self.loading = True
        self.clear_messages()
        try:
            rows = await self.api.my_return_requests()
        except _CLIENT_ERRORS as exc:
            self.error = _error_message(exc, "Failed to fetch your return requests")
            raise
        finally:
            self.loading = False
        self.my_return_requests = list(rows or [])
        return self.my_return_requests

    async def _refresh_admin_list(self) -> None:
        body = await self.api.list_return_requests(
            status=self.filters.status, page=self.filters.page, limit=self.filters.limit
        )
        self.return_requests = list(body.get("items") or [])
        meta = body.get("meta") or {}
        self.pagination = Pagination(
            page=int(meta.get("page", self.filters.page)),
            limit=int(meta.get("limit", self.filters.limit)),
            total=int(meta.get("total", 0)),
            pages=int(meta.get("pages", 0)),
        )

    async def _refresh_my_list(self) -> None:
        self.my_return_requests = list(await self.api.my_return_requests() or [])

    async def _refresh(self, refresh: Callable[[], Awaitable[None]]) -> None:
        try:
            await refresh()
        except _CLIENT_ERRORS as exc:
            logger.warning("return_store_refresh_failed", extra={"error": str(exc)})
            self.error = self.error or _error_message(exc, "Failed to refresh return requests")

    async def _mutate(
        self,
        call: Callable[[], Awaitable[Any]],
        *,
        refresh: Callable[[], Awaitable[None]],
        success_message: str,
        failure_message: str,
    ) -> Any:
        self.loading = True
        self.clear_messages()
        try:
            result = await call()
        except PreconditionFailed as exc:
            self.error = _error_message(exc, failure_message)
            await self._refresh(refresh)
            raise
        except _CLIENT_ERRORS as exc:
            self.error = _error_message(exc, failure_message)
            raise
        else:
            self.success_message = success_message
            await self._refresh(refresh)
            return result
        finally:
            self.loading = False

    async def submit_return_request(
        self,
        order_id: UUID | str,
        *,
        reason: str | None,
        reason_category: str | None,
        images: Iterable[ImageUpload] = (),
    ) -> dict[str, Any]:
        return await self._mutate(
            lambda: self.api.submit_return_request(
                order_id, reason=reason, reason_category=reason_category, images=images
            ),
            refresh=self._refresh_my_list,
            success_message="Return request submitted successfully",
            failure_message="Failed to submit return request",
        )

    async def approve_return_request(
        self,
        order_id: UUID | str,
        *,
        admin_comment: str | None,
        refund_amount: float | str | None = None,
    ) -> dict[str, Any]:
        return await self._mutate(
            lambda: self.api.approve_return_request(order_id, admin_comment=admin_comment, refund_amount=refund_amount),
            refresh=self._refresh_admin_list,
            success_message="Return request approved successfully",
            failure_message="Failed to approve return request",
        )

    async def reject_return_request(self, order_id: UUID | str, *, admin_comment: str | None) -> dict[str, Any]:
        return await self._mutate(
            lambda: self.api.reject_return_request(order_id, admin_comment=admin_comment),
            refresh=self._refresh_admin_list,
            success_message="Return request rejected successfully",
            failure_message="Failed to reject return request",
        )

    async def complete_return_request(self, order_id: UUID | str) -> dict[str, Any]:
        return await self._mutate(
            lambda: self.api.complete_return_request(order_id),
            refresh=self._refresh_admin_list,
            success_message="Return completed and refund initiated successfully",
            failure_message="Failed to complete return request",
        )

    async def cancel_return_request(self, order_id: UUID | str) -> None:
        await self._mutate(
            lambda: self.api.cancel_return_request(order_id),
            refresh=self._refresh_my_list,
            success_message="Return request cancelled successfully",
            failure_message="Failed to cancel return request",
        )
