"""
Ship-window validation -- pure functional core.

Responsibility:
    Decide whether a proposed ``(start, end)`` ship range is acceptable for a
    set of named delivery windows.  Used by order decomposition (every
    group carrying a window reference), planned-shipment date edits, and
    item reassignment (target group dates vs. the moving item's window).

Architecture position:
    Kernel > Domain -- zero I/O.  Callers resolve windows from the catalog
    and convert a failed result into a typed exception with
    ``raise_for_result``.

Rules:
    - No windows supplied: always valid.
    - Valid iff for every window ``window.start <= start`` and
      ``end <= window.end``.
    - A window with no configured start or end is a hard failure, reported
      with ``WindowViolation.MISSING_BOUNDS``.  It is never treated as "no
      window".
    - Windows are checked in the order given; the first offending window is
      reported.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Sequence

from wholesale_kernel.exceptions import (
    MissingWindowBoundsError,
    ShipWindowViolationError,
)

DATE_FORMAT = "%m/%d/%Y"


class WindowViolation(str, Enum):
    NONE = "none"
    STARTS_BEFORE_WINDOW = "starts_before_window"
    ENDS_AFTER_WINDOW = "ends_after_window"
    MISSING_BOUNDS = "missing_bounds"


@dataclass(frozen=True)
class DeliveryWindow:
    """A named ship window. ``start``/``end`` are None when not configured."""

    name: str
    start: date | None
    end: date | None
    window_id: str | None = None

    @property
    def has_bounds(self) -> bool:
        return self.start is not None and self.end is not None


@dataclass(frozen=True)
class ShipWindowResult:
    valid: bool
    violation: WindowViolation = WindowViolation.NONE
    window_name: str | None = None
    reason: str | None = None
    min_allowed_start: date | None = None
    max_allowed_end: date | None = None

    @classmethod
    def ok(cls) -> ShipWindowResult:
        return cls(valid=True)


def _fmt(value: date) -> str:
    return value.strftime(DATE_FORMAT)


def validate_ship_window(
    start: date,
    end: date,
    windows: Sequence[DeliveryWindow],
) -> ShipWindowResult:
    """Validate a candidate ship range against zero or more delivery windows."""
    for window in windows:
        if not window.has_bounds:
            return ShipWindowResult(
                valid=False,
                violation=WindowViolation.MISSING_BOUNDS,
                window_name=window.name,
                reason=f"{window.name} has no configured ship window",
            )
        if start < window.start:
            return ShipWindowResult(
                valid=False,
                violation=WindowViolation.STARTS_BEFORE_WINDOW,
                window_name=window.name,
                reason=(
                    f"Start date {_fmt(start)} is before {window.name}'s ship "
                    f"window start ({_fmt(window.start)})"
                ),
                min_allowed_start=window.start,
                max_allowed_end=window.end,
            )
        if end > window.end:
            return ShipWindowResult(
                valid=False,
                violation=WindowViolation.ENDS_AFTER_WINDOW,
                window_name=window.name,
                reason=(
                    f"End date {_fmt(end)} is after {window.name}'s ship "
                    f"window end ({_fmt(window.end)})"
                ),
                min_allowed_start=window.start,
                max_allowed_end=window.end,
            )
    return ShipWindowResult.ok()


def raise_for_result(result: ShipWindowResult) -> None:
    """
    Convert a failed result into the matching typed exception.

    Raises:
        MissingWindowBoundsError: window exists but has no bounds.
        ShipWindowViolationError: candidate range falls outside a window.
    """
    if result.valid:
        return
    if result.violation == WindowViolation.MISSING_BOUNDS:
        raise MissingWindowBoundsError(result.window_name or "")
    raise ShipWindowViolationError(result.window_name or "", result.reason or "")


def dedupe_windows(windows: Sequence[DeliveryWindow]) -> tuple[DeliveryWindow, ...]:
    """Drop repeated windows (same id or name), keeping first-seen order."""
    seen: set[str] = set()
    unique: list[DeliveryWindow] = []
    for window in windows:
        key = window.window_id or window.name
        if key in seen:
            continue
        seen.add(key)
        unique.append(window)
    return tuple(unique)
