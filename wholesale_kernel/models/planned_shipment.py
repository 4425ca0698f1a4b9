"""
Planned shipment model.

A planned shipment groups an order's items that share one intended delivery
window.  Rows are created lazily (by decomposition or by a reassignment onto
a new group) and deleted once they hold no items and no physical shipment
references them.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from wholesale_kernel.db.base import TrackedBase, UUIDString
from wholesale_kernel.domain.order_status import PlannedShipmentStatus


class PlannedShipment(TrackedBase):
    """
    A group of order items bound to one delivery window.

    Contract:
        ``collection_id`` is the group's delivery-window reference (NULL for
        the default group).  ``planned_start``/``planned_end`` must fall
        inside the windows of every item in the group unless an override
        was recorded.
    """

    __tablename__ = "planned_shipments"

    __table_args__ = (
        Index("idx_planned_shipment_order", "order_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=False,
    )

    collection_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("collections.id"), nullable=True,
    )

    name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    planned_start: Mapped[date] = mapped_column(Date, nullable=False)
    planned_end: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=PlannedShipmentStatus.PLANNED.value,
    )

    def __repr__(self) -> str:
        return f"<PlannedShipment {self.name or 'default'} [{self.planned_start} - {self.planned_end}]>"
