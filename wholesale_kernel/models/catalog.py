"""
Module: wholesale_kernel.models.catalog
Responsibility: Catalog reference data the order engine reads but does not
    own: sales reps, collections (delivery windows with an order-type
    classification) and SKUs with their external variant mapping.
Architecture position: Kernel > Models.  Maintained by admin screens and
    seeding scripts outside this package.

Invariants enforced:
    - Collection.order_type is the authoritative source of a line's order
      type.  A SKU without a collection is immediate-availability.
    - CatalogSku.sku is unique.
    - A collection's window bounds may be NULL; validation treats that as a
      hard failure rather than "no window".
"""

from datetime import date
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from wholesale_kernel.db.base import TrackedBase, UUIDString
from wholesale_kernel.domain.order_status import OrderType
from wholesale_kernel.domain.ship_window import DeliveryWindow


class SalesRep(TrackedBase):
    """A sales rep orders are written for."""

    __tablename__ = "sales_reps"

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Short code copied onto customer records
    code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def display_code(self) -> str:
        return (self.code or "").strip() or self.name


class Collection(TrackedBase):
    """
    A product collection and its delivery window.

    Contract:
        ``window_start``/``window_end`` bound the dates a planned shipment
        carrying this collection may use.  ``order_type`` classifies every
        SKU in the collection.
    """

    __tablename__ = "collections"

    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)

    order_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OrderType.IMMEDIATE.value,
    )

    window_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    window_end: Mapped[date | None] = mapped_column(Date, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_window(self) -> DeliveryWindow:
        return DeliveryWindow(
            name=self.name,
            start=self.window_start,
            end=self.window_end,
            window_id=str(self.id),
        )

    def __repr__(self) -> str:
        return f"<Collection {self.name} [{self.window_start} - {self.window_end}]>"


class CatalogSku(TrackedBase):
    """A sellable SKU."""

    __tablename__ = "catalog_skus"

    __table_args__ = (
        Index("idx_catalog_sku_collection", "collection_id"),
    )

    sku: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    collection_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("collections.id"), nullable=True,
    )

    # Variant id on the commerce platform; NULL means not resolvable for transfer
    external_variant_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:
        return f"<CatalogSku {self.sku}>"
