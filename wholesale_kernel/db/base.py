"""
Module: wholesale_kernel.db.base
Responsibility: Declarative base classes for every SQLAlchemy ORM model in the
    order engine.  Provides the UUID primary key convention, the type
    annotation map that keeps column types uniform, and TrackedBase for
    creator/modifier metadata.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel.  MUST NOT import from models/, services/, domain/, or outer
    packages.

Invariants enforced:
    - UUID primary keys on every table, stored as String(36) so the same
      schema runs on PostgreSQL and SQLite.
    - Decimal maps to Numeric(38, 9).  Prices and totals are never floats.
    - No ORM relationships are declared anywhere.  Ownership is expressed
      through foreign keys only, and deletion of dependants is always an
      explicit statement issued by a service.

Failure modes:
    - IntegrityError on a duplicate primary key (uuid4 collision).

Audit relevance:
    TrackedBase.created_by_id / updated_by_id record which actor created and
    last touched each order, item, group and shipment row.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """
    UUID stored as a 36-character string.

    Contract:
        Converts Python UUID objects to their canonical string form on the
        way in and back to UUID on the way out.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class Base(DeclarativeBase):
    """
    Declarative base for all order engine models.

    Contract:
        Every model inherits a uuid4 primary key named ``id`` and the
        shared type_annotation_map.

    Guarantees:
        - Decimal -> Numeric(38, 9)
        - datetime -> DateTime(timezone=True)
        - date -> Date
        - UUID -> UUIDString
        - int -> BigInteger
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        date: Date,
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with creation/modification timestamps and actor ids.

    Guarantees:
        - created_at is set by the database on INSERT.
        - updated_at is set on INSERT and refreshed on every UPDATE.
        - created_by_id is required; every row has a creator.
        - updated_by_id is set by services whenever they mutate a row.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by_id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    updated_by_id: Mapped[PyUUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )


UUID = PyUUID
