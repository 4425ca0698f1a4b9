"""Selectors for the wholesale order engine (read side)."""

from wholesale_kernel.selectors.order_selector import OrderSelector, ReconciliationCandidate

__all__ = [
    "OrderSelector",
    "ReconciliationCandidate",
]
