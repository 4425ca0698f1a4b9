"""
run_batch -- per-item execution for bulk operations.

Bulk transfer, bulk status update, reconciliation runs and the trash purge
all loop over independent orders.  One order failing never aborts the
rest: each item's outcome is captured as a ``BatchItemResult`` and the
caller gets a ``BatchRunResult`` with counts.

Each item callable owns its own transaction(s).  Expected failures
(``WholesaleError``) are reported with their code; anything else is logged
with traceback and reported as ``UNHANDLED_EXCEPTION``.
"""

from __future__ import annotations

import time
from contextlib import nullcontext
from dataclasses import asdict, is_dataclass
from typing import Any, Callable, Sequence
from uuid import uuid4

from wholesale_kernel.domain.clock import Clock, SystemClock
from wholesale_kernel.domain.results import BatchItemResult, BatchItemStatus, BatchRunResult
from wholesale_kernel.exceptions import WholesaleError
from wholesale_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.batch")


def _as_result_data(value: Any) -> dict[str, Any] | None:
    if value is None:
        return None
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, dict):
        return value
    return {"value": value}


def run_batch(
    operation: str,
    items: Sequence[tuple[str, Callable[[], Any]]],
    clock: Clock | None = None,
    skip_on: tuple[type[WholesaleError], ...] = (),
    between: Callable[[], None] | None = None,
    job_id: str | None = None,
) -> BatchRunResult:
    """
    Run ``items`` in order and collect per-item outcomes.

    Args:
        operation: Name reported on the result and in logs.
        items: (item key, zero-argument callable) pairs.
        skip_on: Error types reported as SKIPPED instead of FAILED.
        between: Called before every item except the first (throttling).
        job_id: Bound into the log context for the whole run.  A new id is
            generated unless the caller is already inside a job.
    """
    if job_id is None and "job_id" in LogContext.get_all():
        scope = nullcontext()
    else:
        scope = LogContext.bind(job_id=job_id or f"{operation}-{uuid4().hex[:12]}")
    with scope:
        return _run_items(operation, items, clock, skip_on, between)


def _run_items(
    operation: str,
    items: Sequence[tuple[str, Callable[[], Any]]],
    clock: Clock | None,
    skip_on: tuple[type[WholesaleError], ...],
    between: Callable[[], None] | None,
) -> BatchRunResult:
    clock = clock or SystemClock()
    started_at = clock.now()
    run_start = time.monotonic()
    results: list[BatchItemResult] = []

    for index, (key, fn) in enumerate(items):
        if index and between is not None:
            between()
        item_start = time.monotonic()
        try:
            data = fn()
        except skip_on as exc:
            results.append(BatchItemResult(
                item_key=key,
                status=BatchItemStatus.SKIPPED,
                error_code=exc.code,
                error_message=str(exc),
                duration_ms=int((time.monotonic() - item_start) * 1000),
            ))
            continue
        except WholesaleError as exc:
            logger.warning(
                "batch_item_failed",
                extra={"operation": operation, "item_key": key, "error_code": exc.code},
            )
            results.append(BatchItemResult(
                item_key=key,
                status=BatchItemStatus.FAILED,
                error_code=exc.code,
                error_message=str(exc),
                duration_ms=int((time.monotonic() - item_start) * 1000),
            ))
            continue
        except Exception as exc:
            logger.exception(
                "batch_item_unhandled_exception",
                extra={"operation": operation, "item_key": key},
            )
            results.append(BatchItemResult(
                item_key=key,
                status=BatchItemStatus.FAILED,
                error_code="UNHANDLED_EXCEPTION",
                error_message=str(exc),
                duration_ms=int((time.monotonic() - item_start) * 1000),
            ))
            continue

        results.append(BatchItemResult(
            item_key=key,
            status=BatchItemStatus.SUCCEEDED,
            result_data=_as_result_data(data),
            duration_ms=int((time.monotonic() - item_start) * 1000),
        ))

    result = BatchRunResult.from_items(
        operation,
        results,
        started_at=started_at,
        completed_at=clock.now(),
        duration_ms=int((time.monotonic() - run_start) * 1000),
    )
    logger.info(
        "batch_completed",
        extra={
            "operation": operation,
            "total": result.total_items,
            "succeeded": result.succeeded,
            "failed": result.failed,
            "skipped": result.skipped,
        },
    )
    return result
