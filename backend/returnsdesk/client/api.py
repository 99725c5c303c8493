"""HTTP client for the returns API.

Every call carries a bounded timeout. Reads are retried a bounded number of
times on transport errors and 5xx responses; mutations are sent exactly once,
since replaying one after an ambiguous failure could repeat its side effects.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable
from uuid import UUID

import httpx

from returnsdesk.core.config import settings
from returnsdesk.core.errors import ERRORS_BY_CODE, ERRORS_BY_STATUS, InvalidInput

logger = logging.getLogger(__name__)

ImageUpload = tuple[str, bytes, str]


class ApiError(Exception):
    """A response the return-request error taxonomy does not cover (401, 422, 5xx)."""

    def __init__(self, status_code: int, detail: Any, code: str | None = None) -> None:
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail
        self.code = code

    @property
    def message(self) -> str:
        return str(self.detail)


def _error_from_response(resp: httpx.Response) -> Exception:
    try:
        body = resp.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    detail = body.get("detail") or resp.reason_phrase or "Request failed"
    code = body.get("code")
    error_cls = ERRORS_BY_CODE.get(code) if code else None
    if error_cls is None and resp.status_code not in (401, 422) and resp.status_code < 500:
        error_cls = ERRORS_BY_STATUS.get(resp.status_code)
    if error_cls is not None and isinstance(detail, str):
        return error_cls(detail)
    return ApiError(resp.status_code, detail, code)


def _require_text(value: str | None, message: str) -> str:
    text = (value or "").strip()
    if not text:
        raise InvalidInput(message)
    return text


class ReturnsApiClient:
    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float | None = None,
        list_retries: int | None = None,
        retry_backoff: float = 0.2,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = settings.client_timeout_seconds if timeout is None else timeout
        self.list_retries = settings.client_list_retries if list_retries is None else max(0, list_retries)
        self.retry_backoff = retry_backoff
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self._headers(),
            transport=self._transport,
        )

    async def _read(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        attempt = 0
        while True:
            attempt += 1
            try:
                async with self._client() as client:
                    resp = await client.get(path, params=params)
            except httpx.TransportError as exc:
                if attempt > self.list_retries:
                    raise
                logger.warning("returns_api_read_retry", extra={"path": path, "attempt": attempt, "error": str(exc)})
            else:
                if resp.is_success:
                    return resp.json()
                if resp.status_code < 500 or attempt > self.list_retries:
                    raise _error_from_response(resp)
                logger.warning(
                    "returns_api_read_retry",
                    extra={"path": path, "attempt": attempt, "status_code": resp.status_code},
                )
            if self.retry_backoff:
                await asyncio.sleep(self.retry_backoff * attempt)

    async def _write(self, path: str, **kwargs: Any) -> Any:
        async with self._client() as client:
            resp = await client.post(path, **kwargs)
        if not resp.is_success:
            raise _error_from_response(resp)
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    async def login(self, email: str, password: str) -> str:
        body = await self._write("/auth/login", json={"email": email, "password": password})
        self.token = body["access_token"]
        return self.token

    async def list_return_requests(self, *, status: str | None = None, page: int = 1, limit: int = 20) -> dict[str, Any]:
        params: dict[str, Any] = {"page": page, "limit": limit}
        if status:
            params["status"] = status
        return await self._read("/orders/return-requests", params=params)

    async def return_requests_summary(self) -> dict[str, int]:
        return await self._read("/orders/return-requests/summary")

    async def my_return_requests(self) -> list[dict[str, Any]]:
        return await self._read("/orders/my-return-requests")

    async def get_return_request(self, order_id: UUID | str) -> dict[str, Any]:
        return await self._read(f"/orders/{order_id}/return-request")

    async def submit_return_request(
        self,
        order_id: UUID | str,
        *,
        reason: str | None,
        reason_category: str | None,
        images: Iterable[ImageUpload] = (),
    ) -> dict[str, Any]:
        data = {
            "reason": _require_text(reason, "Return reason is required"),
            "reasonCategory": _require_text(reason_category, "Return reason category is required"),
        }
        files = [("images", image) for image in images]
        return await self._write(f"/orders/{order_id}/return-request", data=data, files=files or None)

    async def approve_return_request(
        self,
        order_id: UUID | str,
        *,
        admin_comment: str | None,
        refund_amount: float | str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"adminComment": _require_text(admin_comment, "Admin comment is required")}
        if refund_amount is not None and refund_amount != "":
            payload["refundAmount"] = str(refund_amount)
        return await self._write(f"/orders/{order_id}/return-request/approve", json=payload)

    async def reject_return_request(self, order_id: UUID | str, *, admin_comment: str | None) -> dict[str, Any]:
        payload = {"adminComment": _require_text(admin_comment, "Admin comment is required")}
        return await self._write(f"/orders/{order_id}/return-request/reject", json=payload)

    async def complete_return_request(self, order_id: UUID | str) -> dict[str, Any]:
        return await self._write(f"/orders/{order_id}/return-request/complete")

    async def cancel_return_request(self, order_id: UUID | str) -> None:
        await self._write(f"/orders/{order_id}/return-request/cancel")
