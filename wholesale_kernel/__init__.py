"""
Wholesale Kernel

Order decomposition and fulfillment reconciliation for wholesale orders:
- One order per cart, split into planned shipments by delivery window
- Concurrency-safe, prefix-typed order numbers
- Partial fulfillment tracking recomputed from shipment records
- Explicit order status and archival lifecycles
- Hash-chained audit trail
"""

__version__ = "0.1.0"
