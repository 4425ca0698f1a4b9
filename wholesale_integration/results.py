"""
Tagged results for every commerce platform call.

The client never hands raw ``httpx.Response`` objects or untyped JSON to
the rest of the engine.  Each call returns exactly one of:

    Ok(payload)              2xx with a decoded JSON body
    NotFound(entity)         404, or a 422 naming a missing customer
    RateLimited(retry_after) 429 after retries were exhausted
    OtherError(detail)       anything else, including timeouts

Callers match on the type and convert to internal DTOs (``payloads``) or to
typed exceptions (``raise_for_result``) immediately.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from wholesale_kernel.exceptions import PlatformRateLimitedError, PlatformRequestError


@dataclass(frozen=True)
class Ok:
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NotFound:
    entity: str
    detail: str = ""


@dataclass(frozen=True)
class RateLimited:
    retry_after: float | None = None


@dataclass(frozen=True)
class OtherError:
    detail: str
    status_code: int | None = None


PlatformResult = Union[Ok, NotFound, RateLimited, OtherError]


def raise_for_result(operation: str, result: PlatformResult) -> dict[str, Any]:
    """
    Return the payload of an ``Ok`` or raise the matching sync error.

    Raises:
        PlatformRateLimitedError: for ``RateLimited``.
        PlatformRequestError: for ``NotFound`` and ``OtherError``.
    """
    if isinstance(result, Ok):
        return result.payload
    if isinstance(result, RateLimited):
        raise PlatformRateLimitedError(operation, result.retry_after)
    if isinstance(result, NotFound):
        raise PlatformRequestError(operation, f"{result.entity} not found", 404)
    raise PlatformRequestError(operation, result.detail, result.status_code)


def describe(result: PlatformResult) -> str:
    if isinstance(result, Ok):
        return "ok"
    if isinstance(result, NotFound):
        return f"{result.entity} not found"
    if isinstance(result, RateLimited):
        return "rate limited"
    return result.detail
