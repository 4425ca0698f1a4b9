"""
SequenceService -- monotonic sequence allocation via counter rows.

Responsibility:
    Provides strictly monotonically increasing sequence numbers for order
    numbers (one counter per prefix) and audit events.  Each named sequence
    is one row in ``sequence_counters``; allocation is a single atomic
    server-side statement against that row.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by OrderNumberService and AuditorService.

Invariants enforced:
    - Monotonicity: the counter row is the sole source of truth for the
      next value.  Allocation is ``UPDATE ... SET current_value =
      current_value + 1 ... RETURNING current_value`` where the dialect
      supports it, else ``SELECT ... FOR UPDATE`` followed by an UPDATE.
      Either way the row lock is held by the database, not in-process, so
      concurrent transactions serialize on it.
    - Transactional: the increment becomes visible only when the caller's
      transaction commits.  A rollback returns the value.

Failure modes:
    - IntegrityError: concurrent first-use creation of the same counter
      (handled via savepoint rollback and retry).
    - RuntimeError: the counter vanished between the failed insert and the
      retry (should not happen outside manual table edits).

Audit relevance:
    Sequence allocation is logged at DEBUG level with sequence_name and
    value.  Audit event ordering depends on it.
"""

from typing import Callable

from sqlalchemy import BigInteger, String, inspect, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from wholesale_kernel.db.base import Base
from wholesale_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    """

    __tablename__ = "sequence_counters"

    # Sequence name (e.g., "order_number:A", "audit_event")
    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    # Last value handed out
    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Contract:
        Accepts a sequence name and returns the next strictly-monotonic
        integer value.  The increment is committed with the caller's
        transaction.

    Guarantees:
        - Two concurrent callers for the same name never receive the same
          value.
        - A counter created on first use starts from ``seed()`` when one is
          supplied, so pre-existing data is never collided with.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.

    Usage:
        with session_scope() as session:
            value = SequenceService(session).next_value("audit_event")
    """

    AUDIT_EVENT = "audit_event"
    ORDER_NUMBER_PREFIX = "order_number:"

    def __init__(self, session: Session):
        self._session = session

    @classmethod
    def order_number_sequence(cls, prefix: str) -> str:
        return f"{cls.ORDER_NUMBER_PREFIX}{prefix}"

    @staticmethod
    def is_available(session: Session) -> bool:
        """True when the counter table exists on the session's database."""
        return inspect(session.connection()).has_table(SequenceCounter.__tablename__)

    def _supports_returning(self) -> bool:
        return bool(getattr(self._session.get_bind().dialect, "update_returning", False))

    def _increment(self, sequence_name: str) -> int | None:
        """Atomically bump an existing counter; None if it does not exist."""
        if self._supports_returning():
            return self._session.execute(
                update(SequenceCounter)
                .where(SequenceCounter.name == sequence_name)
                .values(current_value=SequenceCounter.current_value + 1)
                .returning(SequenceCounter.current_value)
                .execution_options(synchronize_session=False)
            ).scalar_one_or_none()

        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if counter is None:
            return None
        counter.current_value += 1
        self._session.flush()
        return counter.current_value

    def next_value(
        self,
        sequence_name: str,
        seed: Callable[[], int] | None = None,
    ) -> int:
        """
        Get the next value for a named sequence.

        Preconditions:
            - ``sequence_name`` is a non-empty string.
            - The caller is within an active database transaction.

        Postconditions:
            - Returns an integer strictly greater than any previously
              returned value for this sequence name.
            - The counter row stays locked until the transaction completes.

        Args:
            sequence_name: Name of the sequence.
            seed: Called only when the counter does not exist yet; its
                result is the value the new counter starts after.

        Returns:
            The next sequence value (always > 0).
        """
        value = self._increment(sequence_name)
        if value is not None:
            logger.debug(
                "sequence_allocated",
                extra={"sequence_name": sequence_name, "value": value},
            )
            return value

        start = max(seed() if seed else 0, 0)

        # First use of this sequence.  Another transaction may be creating
        # the same counter; the savepoint keeps the caller's work intact.
        savepoint = self._session.begin_nested()
        try:
            self._session.add(SequenceCounter(name=sequence_name, current_value=start + 1))
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            logger.debug(
                "sequence_counter_race_retry",
                extra={"sequence_name": sequence_name},
            )
            savepoint.rollback()
            value = self._increment(sequence_name)
            if value is None:
                raise RuntimeError(
                    f"Sequence counter {sequence_name!r} disappeared during creation"
                )
            logger.debug(
                "sequence_allocated",
                extra={"sequence_name": sequence_name, "value": value},
            )
            return value

        logger.info(
            "sequence_counter_created",
            extra={"sequence_name": sequence_name, "value": start + 1},
        )
        return start + 1

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None."""
        return self._session.execute(
            select(SequenceCounter.current_value)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

    def reset(self, sequence_name: str, value: int = 0) -> None:
        """
        Reset a sequence to a specific value.

        WARNING: test and migration use only.
        """
        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
        ).scalar_one_or_none()

        if counter is None:
            self._session.add(SequenceCounter(name=sequence_name, current_value=value))
        else:
            counter.current_value = value

        self._session.flush()
