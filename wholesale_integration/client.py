"""
CommercePlatformClient -- REST boundary to the external commerce platform.

Responsibility:
    Issues the seven calls the engine needs (order create/get/cancel/close,
    customer create, fulfillment list/create) and converts every response
    into a tagged ``PlatformResult``.

Architecture position:
    Integration > Client.  Used by ``TransferService`` and
    ``ReconciliationService``.  Never called while a database transaction
    is open.

Invariants enforced:
    - Every request is bounded by ``PlatformSettings.timeout_seconds``.
    - Reads, cancels and closes are retried on transport errors, 429 and
      5xx with exponential backoff up to ``PlatformSettings.max_attempts``
      calls in total; other responses are returned on the first attempt.
    - Creates (order, customer, fulfillment) are retried only on 429 and on
      errors raised before the request reached the platform (connect
      failures).  A read timeout or 5xx on a create is returned as
      ``OtherError`` so a payload the platform may have accepted is never
      sent twice.
    - A 422 whose body names a customer that was not found is reported as
      ``NotFound(entity="customer")`` so the transfer flow can create the
      customer and retry.

Failure modes:
    - IntegrationNotConfiguredError at construction when the store domain
      or access token is missing.
    - Everything else is a value (``RateLimited``, ``OtherError``), never
      an exception.
"""

from __future__ import annotations

import time
from typing import Any, Callable

import httpx
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from wholesale_config.schema import PlatformSettings
from wholesale_integration.results import (
    NotFound,
    Ok,
    OtherError,
    PlatformResult,
    RateLimited,
)
from wholesale_kernel.exceptions import IntegrationNotConfiguredError
from wholesale_kernel.logging_config import get_logger

logger = get_logger("integration.client")

ORDER_STATUS_FIELDS = "id,name,cancelled_at,closed_at,fulfillment_status,financial_status"


class _RetryableStatus(Exception):
    """A 429 or 5xx response, raised inside the retry loop only."""

    def __init__(self, response: httpx.Response):
        self.response = response
        super().__init__(f"HTTP {response.status_code}")


_CONNECT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)


def _safe_to_resend(exc: BaseException) -> bool:
    """Whether a failed create can be sent again without risking a duplicate."""
    if isinstance(exc, _RetryableStatus):
        return exc.response.status_code == 429
    return isinstance(exc, _CONNECT_ERRORS)


def _retryable(exc: BaseException) -> bool:
    return isinstance(exc, (httpx.TransportError, _RetryableStatus))


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or f"HTTP {response.status_code}"
    if isinstance(body, dict) and "errors" in body:
        return str(body["errors"])[:500]
    return str(body)[:500]


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    logger.warning(
        "platform_request_retry",
        extra={
            "attempt": state.attempt_number,
            "error": str(exc) if exc else None,
            "next_wait_seconds": state.next_action.sleep if state.next_action else None,
        },
    )


class CommercePlatformClient:
    """
    Thin synchronous client over ``httpx.Client``.

    Contract:
        Every public method returns a ``PlatformResult``.  ``Ok.payload`` is
        the unwrapped resource (``order``, ``customer``, ``fulfillment``) or,
        for ``list_fulfillments``, ``{"fulfillments": [...]}``.

    Non-goals:
        - Does NOT map payloads to engine types (see ``payloads``).
        - Does NOT page through fulfillments; an order has few.
    """

    def __init__(
        self,
        settings: PlatformSettings,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not settings.is_configured:
            raise IntegrationNotConfiguredError()
        self._settings = settings
        self._sleep = sleep
        self._http = httpx.Client(
            base_url=settings.base_url,
            headers={
                settings.auth_header: settings.access_token,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=settings.timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> CommercePlatformClient:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _retrying(self, idempotent: bool) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self._settings.max_attempts),
            wait=wait_exponential(
                multiplier=self._settings.backoff_base_seconds,
                max=self._settings.backoff_max_seconds,
            ),
            retry=retry_if_exception(_retryable if idempotent else _safe_to_resend),
            before_sleep=_log_retry,
            sleep=self._sleep,
            reraise=True,
        )

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        response = self._http.request(method, path, **kwargs)
        if response.status_code == 429 or response.status_code >= 500:
            raise _RetryableStatus(response)
        return response

    def _request(
        self,
        method: str,
        path: str,
        entity: str,
        idempotent: bool = True,
        **kwargs: Any,
    ) -> PlatformResult:
        try:
            response = self._retrying(idempotent)(self._send, method, path, **kwargs)
        except _RetryableStatus as exc:
            response = exc.response
            if response.status_code == 429:
                logger.warning("platform_rate_limited", extra={"path": path})
                return RateLimited(retry_after=_retry_after(response))
            return OtherError(_error_detail(response), response.status_code)
        except httpx.TimeoutException as exc:
            logger.warning("platform_request_timeout", extra={"path": path, "error": str(exc)})
            return OtherError(f"timed out: {exc}")
        except httpx.TransportError as exc:
            logger.warning("platform_request_failed", extra={"path": path, "error": str(exc)})
            return OtherError(f"transport error: {exc}")

        status = response.status_code
        if 200 <= status < 300:
            if not response.content:
                return Ok({})
            try:
                body = response.json()
            except ValueError:
                body = None
            if not isinstance(body, dict):
                logger.warning(
                    "platform_response_unreadable",
                    extra={"path": path, "status_code": status},
                )
                return OtherError("response body is not a JSON object", status)
            return Ok(body)
        detail = _error_detail(response)
        if status == 404:
            return NotFound(entity, detail)
        if status == 422:
            lowered = detail.lower()
            if "customer" in lowered and "not found" in lowered:
                return NotFound("customer", detail)
        logger.info(
            "platform_request_rejected",
            extra={"path": path, "status_code": status, "detail": detail},
        )
        return OtherError(detail, status)

    @staticmethod
    def _unwrap(result: PlatformResult, key: str) -> PlatformResult:
        if isinstance(result, Ok) and isinstance(result.payload.get(key), dict):
            return Ok(result.payload[key])
        return result

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    def create_order(self, order: dict[str, Any]) -> PlatformResult:
        result = self._request(
            "POST", "/orders.json", "order", idempotent=False, json={"order": order},
        )
        return self._unwrap(result, "order")

    def get_order(self, external_order_id: str) -> PlatformResult:
        result = self._request(
            "GET",
            f"/orders/{external_order_id}.json",
            "order",
            params={"fields": ORDER_STATUS_FIELDS},
        )
        return self._unwrap(result, "order")

    def cancel_order(
        self,
        external_order_id: str,
        reason: str = "other",
        email: bool = False,
        restock: bool = False,
    ) -> PlatformResult:
        result = self._request(
            "POST",
            f"/orders/{external_order_id}/cancel.json",
            "order",
            json={"reason": reason, "email": email, "restock": restock},
        )
        return self._unwrap(result, "order")

    def close_order(self, external_order_id: str) -> PlatformResult:
        result = self._request("POST", f"/orders/{external_order_id}/close.json", "order", json={})
        return self._unwrap(result, "order")

    # -------------------------------------------------------------------------
    # Customers
    # -------------------------------------------------------------------------

    def create_customer(self, customer: dict[str, Any]) -> PlatformResult:
        result = self._request(
            "POST", "/customers.json", "customer", idempotent=False, json={"customer": customer},
        )
        return self._unwrap(result, "customer")

    # -------------------------------------------------------------------------
    # Fulfillments
    # -------------------------------------------------------------------------

    def list_fulfillments(self, external_order_id: str) -> PlatformResult:
        result = self._request("GET", f"/orders/{external_order_id}/fulfillments.json", "order")
        if isinstance(result, Ok):
            return Ok({"fulfillments": list(result.payload.get("fulfillments") or [])})
        return result

    def create_fulfillment(self, external_order_id: str, fulfillment: dict[str, Any]) -> PlatformResult:
        result = self._request(
            "POST",
            f"/orders/{external_order_id}/fulfillments.json",
            "order",
            idempotent=False,
            json={"fulfillment": fulfillment},
        )
        return self._unwrap(result, "fulfillment")
