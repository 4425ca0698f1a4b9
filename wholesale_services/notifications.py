"""
Order notifications -- dispatched after commit, never inside a transaction.

``OrderOperations`` calls the notifier once an order is durably created.
A notifier that raises does not undo the order: the failure is logged and
returned as a warning on the otherwise successful result.
"""

from __future__ import annotations

from typing import Protocol

from wholesale_kernel.domain.dtos import OrderInfo
from wholesale_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


class Notifier(Protocol):
    """Pluggable delivery of order confirmations (email, chat, webhook)."""

    def order_created(self, order: OrderInfo, recipient: str) -> None:
        """Send the order confirmation to the buyer and the rep."""
        ...


class LoggingNotifier:
    """Notifier that only writes a structured log line."""

    def order_created(self, order: OrderInfo, recipient: str) -> None:
        logger.info(
            "order_notification_sent",
            extra={
                "order_number": order.order_number,
                "recipient": recipient,
                "planned_shipment_count": len(order.planned_shipments),
                "order_total": str(order.order_total),
            },
        )
