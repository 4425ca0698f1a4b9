"""
Module: wholesale_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/, domain/ and
    models/.  MUST NOT import from services/ or outer packages.

Invariants enforced:
    - Read-only access: selectors accept a Session from the caller but never
      call session.add(), session.delete(), session.commit() or
      session.flush().
    - DTO return convention: selectors return frozen dataclasses, not ORM
      instances.
    - Session ownership: the caller owns the session and its transaction
      scope.  Status recomputation reads through a selector in the same
      transaction that writes, so it always sees fresh aggregates.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from wholesale_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors perform read-only queries and return DTOs or computed
        results.  They MUST NOT mutate any data.
    """

    def __init__(self, session: Session):
        self.session = session
