"""ORM models for the wholesale order engine."""

from wholesale_kernel.models.audit_event import AuditAction, AuditEvent
from wholesale_kernel.models.catalog import CatalogSku, Collection, SalesRep
from wholesale_kernel.models.customer import Customer
from wholesale_kernel.models.order import Order, OrderComment, OrderItem
from wholesale_kernel.models.planned_shipment import PlannedShipment
from wholesale_kernel.models.shipment import Shipment, ShipmentItem, ShipmentTracking


def import_all_models() -> None:
    """Register every mapped table on Base.metadata before DDL runs."""
    # SequenceCounter lives beside the service that owns it.
    import wholesale_kernel.services.sequence_service  # noqa: F401


__all__ = [
    "AuditAction",
    "AuditEvent",
    "CatalogSku",
    "Collection",
    "Customer",
    "Order",
    "OrderComment",
    "OrderItem",
    "PlannedShipment",
    "SalesRep",
    "Shipment",
    "ShipmentItem",
    "ShipmentTracking",
    "import_all_models",
]
