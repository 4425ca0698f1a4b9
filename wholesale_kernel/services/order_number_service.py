"""
OrderNumberService -- type-prefixed order number allocation.

Responsibility:
    Issues ``{prefix}{integer}`` order numbers.  Immediate-availability
    orders and pre-orders use distinct prefixes with independent counters.

Architecture position:
    Kernel > Services.  Called by DecompositionService while the order is
    being created, inside the same transaction.

Invariants enforced:
    - Within a prefix, every issued number is strictly greater than every
      number issued before it, and no two callers receive the same number.
    - The allocation strategy is chosen once by capability detection and is
      explicit: ``CounterAllocator`` is the primary path,
      ``MaxExistingAllocator`` is a degraded mode.

Failure modes:
    - MaxExistingAllocator can hand the same number to two concurrent
      transactions; the second INSERT then fails on the unique
      order_number constraint and the whole order rolls back.

Audit relevance:
    The order number is written into the order_created audit payload.
"""

from abc import ABC, abstractmethod

from sqlalchemy import Integer, cast, func, select
from sqlalchemy.orm import Session

from wholesale_kernel.domain.order_status import OrderType
from wholesale_kernel.logging_config import get_logger
from wholesale_kernel.models.order import Order
from wholesale_kernel.services.sequence_service import SequenceService

logger = get_logger("services.order_number")

DEFAULT_IMMEDIATE_PREFIX = "A"
DEFAULT_PRE_ORDER_PREFIX = "P"
DEFAULT_START = 10001


def highest_existing_number(session: Session, prefix: str) -> int | None:
    """Largest numeric suffix among persisted order numbers with this prefix."""
    suffix = func.substr(Order.order_number, len(prefix) + 1)
    return session.execute(
        select(func.max(cast(suffix, Integer)))
        .where(Order.order_number.like(f"{prefix}%"))
    ).scalar_one_or_none()


class OrderNumberAllocator(ABC):
    """Strategy for producing the next integer for a prefix."""

    name: str = "abstract"

    @abstractmethod
    def allocate(self, session: Session, prefix: str, start: int) -> int:
        """Return the next integer for ``prefix`` (at least ``start``)."""


class CounterAllocator(OrderNumberAllocator):
    """
    Primary strategy: one counter row per prefix, bumped atomically.

    A counter created for the first time is seeded from the highest number
    already on file so migrated orders are never collided with.
    """

    name = "counter"

    def allocate(self, session: Session, prefix: str, start: int) -> int:
        def seed() -> int:
            existing = highest_existing_number(session, prefix) or 0
            return max(start - 1, existing)

        return SequenceService(session).next_value(
            SequenceService.order_number_sequence(prefix),
            seed=seed,
        )


class MaxExistingAllocator(OrderNumberAllocator):
    """
    Degraded strategy: read the highest existing number and add one.

    NOT concurrency safe.  Two transactions that read the same maximum
    receive the same number; the unique constraint on order_number turns
    the second into a failed order.  Used only when the counter table is
    unavailable.
    """

    name = "max_existing"

    def allocate(self, session: Session, prefix: str, start: int) -> int:
        existing = highest_existing_number(session, prefix)
        if existing is None:
            return start
        return max(existing + 1, start)


def detect_allocator(session: Session) -> OrderNumberAllocator:
    """Pick the counter strategy when the database has the counter table."""
    if SequenceService.is_available(session):
        return CounterAllocator()
    logger.warning(
        "order_number_degraded_allocation",
        extra={"strategy": MaxExistingAllocator.name},
    )
    return MaxExistingAllocator()


class OrderNumberService:
    """
    Allocates order numbers for a derived order type.

    Contract:
        ``next_order_number(OrderType.PRE_ORDER)`` returns e.g. ``"P10001"``.

    Non-goals:
        - Does NOT decide the order type; DecompositionService derives it
          from the catalog.
    """

    def __init__(
        self,
        session: Session,
        immediate_prefix: str = DEFAULT_IMMEDIATE_PREFIX,
        pre_order_prefix: str = DEFAULT_PRE_ORDER_PREFIX,
        start: int = DEFAULT_START,
        allocator: OrderNumberAllocator | None = None,
    ):
        self._session = session
        self._prefixes = {
            OrderType.IMMEDIATE: immediate_prefix,
            OrderType.PRE_ORDER: pre_order_prefix,
        }
        self._start = start
        self._allocator = allocator

    @property
    def allocator(self) -> OrderNumberAllocator:
        if self._allocator is None:
            self._allocator = detect_allocator(self._session)
        return self._allocator

    def prefix_for(self, order_type: OrderType | str) -> str:
        return self._prefixes[OrderType(order_type)]

    def next_order_number(self, order_type: OrderType | str) -> str:
        prefix = self.prefix_for(order_type)
        value = self.allocator.allocate(self._session, prefix, self._start)
        order_number = f"{prefix}{value}"
        logger.debug(
            "order_number_allocated",
            extra={
                "order_number": order_number,
                "strategy": self.allocator.name,
            },
        )
        return order_number
