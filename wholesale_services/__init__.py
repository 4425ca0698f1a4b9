"""Caller-facing orchestration for the wholesale order engine."""

from wholesale_services.notifications import LoggingNotifier, Notifier
from wholesale_services.order_operations import OrderOperations

__all__ = [
    "LoggingNotifier",
    "Notifier",
    "OrderOperations",
]
