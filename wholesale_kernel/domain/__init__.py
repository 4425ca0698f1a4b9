"""Domain layer - pure rules, value objects and DTOs. Zero I/O."""

from wholesale_kernel.domain.actor import SYSTEM_ACTOR, ActorContext, require_admin
from wholesale_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from wholesale_kernel.domain.order_status import (
    ArchiveState,
    ExternalOrderState,
    LineStatus,
    OrderStatus,
    OrderType,
    PlannedShipmentStatus,
)
from wholesale_kernel.domain.ship_window import (
    DeliveryWindow,
    ShipWindowResult,
    WindowViolation,
    validate_ship_window,
)

__all__ = [
    "ActorContext",
    "SYSTEM_ACTOR",
    "require_admin",
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "ArchiveState",
    "ExternalOrderState",
    "LineStatus",
    "OrderStatus",
    "OrderType",
    "PlannedShipmentStatus",
    "DeliveryWindow",
    "ShipWindowResult",
    "WindowViolation",
    "validate_ship_window",
]
