"""
CatalogService -- authoritative catalog lookups for the order engine.

Responsibility:
    Resolves submitted SKUs against the catalog, derives each line's order
    type and delivery-window reference, and validates the sales rep.
    Decomposition never trusts a client-supplied type flag; everything it
    needs to classify a line comes through here.

Architecture position:
    Kernel > Services.  Read-mostly; writes nothing.

Invariants enforced:
    - A line's order type comes from its SKU's catalog collection, falling
      back to the collection the caller referenced, falling back to
      immediate availability.
    - A line's delivery-window reference is the caller's collection_id when
      given, else the SKU's catalog collection.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from wholesale_kernel.domain.dtos import LineItemInput
from wholesale_kernel.domain.order_status import OrderType
from wholesale_kernel.domain.ship_window import DeliveryWindow
from wholesale_kernel.exceptions import (
    CollectionNotFoundError,
    InvalidSalesRepError,
    UnknownSkuError,
)
from wholesale_kernel.models.catalog import CatalogSku, Collection, SalesRep


@dataclass(frozen=True)
class ResolvedLine:
    """A cart line joined to its catalog facts."""

    line: LineItemInput
    description: str
    order_type: OrderType
    collection_id: UUID | None
    window: DeliveryWindow | None
    external_variant_id: str | None


def derive_order_type(lines: list[ResolvedLine]) -> OrderType:
    """An order is a pre-order if any of its lines is."""
    if any(line.order_type == OrderType.PRE_ORDER for line in lines):
        return OrderType.PRE_ORDER
    return OrderType.IMMEDIATE


class CatalogService:
    """Catalog, collection and sales rep lookups."""

    def __init__(self, session: Session):
        self._session = session
        self._collections: dict[UUID, Collection] = {}

    def get_active_sales_rep(self, sales_rep_id: UUID) -> SalesRep:
        """
        Raises:
            InvalidSalesRepError: rep missing or inactive.
        """
        rep = self._session.get(SalesRep, sales_rep_id) if sales_rep_id else None
        if rep is None or not rep.is_active:
            raise InvalidSalesRepError(str(sales_rep_id))
        return rep

    def get_collection(self, collection_id: UUID) -> Collection:
        if collection_id not in self._collections:
            collection = self._session.get(Collection, collection_id)
            if collection is None:
                raise CollectionNotFoundError(str(collection_id))
            self._collections[collection_id] = collection
        return self._collections[collection_id]

    def window_for(self, collection_id: UUID | None) -> DeliveryWindow | None:
        if collection_id is None:
            return None
        return self.get_collection(collection_id).to_window()

    def get_skus(self, skus: list[str]) -> dict[str, CatalogSku]:
        if not skus:
            return {}
        rows = self._session.execute(
            select(CatalogSku).where(CatalogSku.sku.in_(set(skus)))
        ).scalars().all()
        return {row.sku: row for row in rows}

    def resolve_lines(self, items: tuple[LineItemInput, ...] | list[LineItemInput]) -> list[ResolvedLine]:
        """
        Join every cart line to the catalog.

        Raises:
            UnknownSkuError: a SKU is not in the catalog.
            CollectionNotFoundError: a referenced collection does not exist.
        """
        catalog = self.get_skus([item.sku for item in items])
        resolved = []
        for item in items:
            entry = catalog.get(item.sku)
            if entry is None:
                raise UnknownSkuError(item.sku)

            window_ref = item.collection_id or entry.collection_id
            type_source = entry.collection_id or item.collection_id
            order_type = (
                OrderType(self.get_collection(type_source).order_type)
                if type_source else OrderType.IMMEDIATE
            )

            resolved.append(ResolvedLine(
                line=item,
                description=entry.description,
                order_type=order_type,
                collection_id=window_ref,
                window=self.window_for(window_ref),
                external_variant_id=entry.external_variant_id,
            ))
        return resolved

    def variant_ids(self, skus: list[str]) -> dict[str, str]:
        """SKU -> external variant id, for SKUs that have one."""
        return {
            sku: entry.external_variant_id
            for sku, entry in self.get_skus(skus).items()
            if entry.external_variant_id
        }
