"""
Result envelopes returned to callers of the order engine.

``OperationResult`` is the ``{success, data | error, warnings}`` shape every
single-order operation returns.  ``BatchRunResult`` is what bulk operations
(bulk transfer, bulk status update, reconciliation runs, trash purge)
return: per-item outcomes plus counts, never a single boolean.

All DTOs are frozen dataclasses with tuples for collections.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from wholesale_kernel.exceptions import WholesaleError


@dataclass(frozen=True)
class ErrorInfo:
    """Machine-readable description of a failure."""

    code: str
    kind: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: WholesaleError) -> ErrorInfo:
        return cls(
            code=exc.code,
            kind=exc.kind,
            message=str(exc),
            details=exc.details(),
        )


@dataclass(frozen=True)
class OperationResult:
    success: bool
    data: Any = None
    error: ErrorInfo | None = None
    warnings: tuple[str, ...] = ()

    @classmethod
    def ok(cls, data: Any = None, warnings: tuple[str, ...] | list[str] = ()) -> OperationResult:
        return cls(success=True, data=data, warnings=tuple(warnings))

    @classmethod
    def fail(cls, exc: WholesaleError, warnings: tuple[str, ...] | list[str] = ()) -> OperationResult:
        return cls(
            success=False,
            error=ErrorInfo.from_exception(exc),
            warnings=tuple(warnings),
        )

    @property
    def is_sync_failure(self) -> bool:
        return self.error is not None and self.error.kind == "sync_failed"


# =============================================================================
# Batch results
# =============================================================================


class BatchItemStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class BatchRunStatus(str, Enum):
    COMPLETED = "completed"
    PARTIALLY_COMPLETED = "partially_completed"
    FAILED = "failed"
    EMPTY = "empty"


@dataclass(frozen=True)
class BatchItemResult:
    """Outcome for one item of a bulk operation."""

    item_key: str
    status: BatchItemStatus
    error_code: str | None = None
    error_message: str | None = None
    result_data: dict[str, Any] | None = None
    duration_ms: int = 0


@dataclass(frozen=True)
class BatchRunResult:
    """Outcome of a bulk operation."""

    operation: str
    total_items: int
    succeeded: int
    failed: int
    skipped: int
    item_results: tuple[BatchItemResult, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0

    @property
    def status(self) -> BatchRunStatus:
        if self.total_items == 0:
            return BatchRunStatus.EMPTY
        if self.failed == 0:
            return BatchRunStatus.COMPLETED
        if self.succeeded == 0 and self.skipped == 0:
            return BatchRunStatus.FAILED
        return BatchRunStatus.PARTIALLY_COMPLETED

    @property
    def errors(self) -> tuple[BatchItemResult, ...]:
        return tuple(r for r in self.item_results if r.status == BatchItemStatus.FAILED)

    @classmethod
    def from_items(
        cls,
        operation: str,
        items: list[BatchItemResult],
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
        duration_ms: int = 0,
    ) -> BatchRunResult:
        return cls(
            operation=operation,
            total_items=len(items),
            succeeded=sum(1 for r in items if r.status == BatchItemStatus.SUCCEEDED),
            failed=sum(1 for r in items if r.status == BatchItemStatus.FAILED),
            skipped=sum(1 for r in items if r.status == BatchItemStatus.SKIPPED),
            item_results=tuple(items),
            started_at=started_at,
            completed_at=completed_at,
            duration_ms=duration_ms,
        )
