"""
wholesale_integration -- the commerce platform boundary.

Outbound: ``TransferService`` (order transfer, status sync, fulfillment
mirroring).  Inbound: ``ReconciliationService`` (fulfillment and status
pull).  Both talk to the platform only through ``CommercePlatformClient``,
whose every call returns a tagged ``PlatformResult``.
"""

from wholesale_integration.client import CommercePlatformClient
from wholesale_integration.reconciliation_service import ReconcileOutcome, ReconciliationService
from wholesale_integration.results import NotFound, Ok, OtherError, PlatformResult, RateLimited
from wholesale_integration.transfer_service import TransferOutcome, TransferService

__all__ = [
    "CommercePlatformClient",
    "NotFound",
    "Ok",
    "OtherError",
    "PlatformResult",
    "RateLimited",
    "ReconcileOutcome",
    "ReconciliationService",
    "TransferOutcome",
    "TransferService",
]
