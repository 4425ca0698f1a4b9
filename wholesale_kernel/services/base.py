"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for every
    write-side service in the kernel.  Concrete services receive a
    SQLAlchemy ``Session`` and use ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or roll back themselves.  The caller
      (OrderOperations, the integration jobs, or a test harness) owns
      commit/rollback, which is what makes order creation, reassignment
      and shipment recording all-or-nothing.

Failure modes:
    - A subclass that commits on its own would expose a partially written
      order to concurrent readers.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from wholesale_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Does NOT provide query-only (read) methods -- those belong in
          ``wholesale_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
