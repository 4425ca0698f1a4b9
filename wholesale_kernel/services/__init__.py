"""Services for the wholesale order engine (write side)."""

from wholesale_kernel.services.auditor_service import AuditorService, AuditTrace
from wholesale_kernel.services.catalog_service import CatalogService
from wholesale_kernel.services.customer_service import CustomerService
from wholesale_kernel.services.decomposition_service import DecompositionService
from wholesale_kernel.services.fulfillment_service import (
    CANCEL_REASONS,
    VOID_REASONS,
    FulfillmentService,
)
from wholesale_kernel.services.order_lifecycle_service import OrderLifecycleService
from wholesale_kernel.services.order_number_service import (
    CounterAllocator,
    MaxExistingAllocator,
    OrderNumberService,
)
from wholesale_kernel.services.reassignment_service import ReassignmentService
from wholesale_kernel.services.sequence_service import SequenceService

__all__ = [
    "AuditTrace",
    "AuditorService",
    "CANCEL_REASONS",
    "CatalogService",
    "CounterAllocator",
    "CustomerService",
    "DecompositionService",
    "FulfillmentService",
    "MaxExistingAllocator",
    "OrderLifecycleService",
    "OrderNumberService",
    "ReassignmentService",
    "SequenceService",
    "VOID_REASONS",
]
