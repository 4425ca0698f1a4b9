"""
Typed Exception Hierarchy for the Wholesale Order Engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the order engine (admin screens, bulk actions, scheduled jobs)
must react differently to different failures:

  - A validation failure means "fix the input and resubmit".
  - A state conflict means "the order moved on; stop retrying".
  - An external sync failure means "the platform did not accept the change;
    retry later or force a local-only change".

Parsing message strings to tell these apart is fragile.  Every error here
therefore has:
  1. A TYPED class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. A KIND class attribute naming its category
  4. Structured DATA attributes (not just a message string)

Example:
    try:
        service.move_item(...)
    except ShipWindowViolationError as e:
        render_warning(e.window_name, e.reason)
    except StateConflictError as e:
        disable_retry(e.code)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    WholesaleError (base)
    |
    +-- ValidationError                      kind = "validation"
    |   +-- EmptyOrderError
    |   +-- InvalidSalesRepError
    |   +-- UnknownSkuError
    |   +-- ShipWindowViolationError
    |   +-- MissingWindowBoundsError
    |   +-- InvalidPlanError
    |   +-- InvalidQuantityError
    |   +-- OverShipmentError
    |   +-- ItemNotInOrderError
    |   +-- UnresolvedSkusError
    |   +-- InvalidCurrencyError
    |   +-- InvalidReasonError
    |
    +-- StateConflictError                   kind = "state_conflict"
    |   +-- OrderNotEditableError
    |   +-- OrderTerminalError
    |   +-- ItemNotInSourceGroupError
    |   +-- CrossOrderMoveError
    |   +-- InvalidStatusTransitionError
    |   +-- AlreadyTransferredError
    |   +-- NotTransferredError
    |   +-- ArchiveStateError
    |   +-- ExternalStillOpenError
    |   +-- ShipmentAlreadyVoidedError
    |
    +-- ExternalSyncError                    kind = "sync_failed"
    |   +-- IntegrationNotConfiguredError
    |   +-- PlatformRateLimitedError
    |   +-- PlatformRequestError
    |   +-- StatusSyncFailedError
    |
    +-- NotFoundError                        kind = "not_found"
    |   +-- OrderNotFoundError
    |   +-- OrderItemNotFoundError
    |   +-- PlannedShipmentNotFoundError
    |   +-- ShipmentNotFoundError
    |   +-- CollectionNotFoundError
    |
    +-- UnauthorizedActorError               kind = "unauthorized"
    |
    +-- AuditChainBrokenError                kind = "integrity"

===============================================================================
"""

from typing import Any


class WholesaleError(Exception):
    """
    Base exception for all order engine errors.

    Every subclass carries a ``code`` class attribute and inherits a
    ``kind`` from its category base.
    """

    code: str = "WHOLESALE_ERROR"
    kind: str = "error"

    def details(self) -> dict[str, Any]:
        """Structured attributes of this error, for result envelopes."""
        return {
            k: v for k, v in vars(self).items() if not k.startswith("_")
        }


# =============================================================================
# Validation failures
# =============================================================================


class ValidationError(WholesaleError):
    """Bad input shape or a constraint violation. Never partially applied."""

    code: str = "VALIDATION_FAILED"
    kind: str = "validation"


class EmptyOrderError(ValidationError):
    """An order submission carried no line items."""

    code: str = "EMPTY_ORDER"

    def __init__(self):
        super().__init__("Order must contain at least one item")


class InvalidSalesRepError(ValidationError):
    """The sales rep named on the order does not exist or is inactive."""

    code: str = "INVALID_SALES_REP"

    def __init__(self, sales_rep_id: str):
        self.sales_rep_id = sales_rep_id
        super().__init__("Invalid sales rep")


class UnknownSkuError(ValidationError):
    """A line item references a SKU absent from the catalog."""

    code: str = "UNKNOWN_SKU"

    def __init__(self, sku: str):
        self.sku = sku
        super().__init__(f"Unknown SKU: {sku}")


class ShipWindowViolationError(ValidationError):
    """Proposed ship dates fall outside a delivery window."""

    code: str = "SHIP_WINDOW_VIOLATION"

    def __init__(self, window_name: str, reason: str):
        self.window_name = window_name
        self.reason = reason
        super().__init__(f"{window_name}: {reason}")


class MissingWindowBoundsError(ValidationError):
    """A referenced delivery window has no configured start or end."""

    code: str = "MISSING_WINDOW_BOUNDS"

    def __init__(self, window_name: str):
        self.window_name = window_name
        super().__init__(
            f"Delivery window '{window_name}' has no configured ship window"
        )


class InvalidPlanError(ValidationError):
    """An explicit planned-shipment grouping does not cover items exactly once."""

    code: str = "INVALID_SHIPMENT_PLAN"

    def __init__(self, reason: str, item_keys: list[str] | None = None):
        self.reason = reason
        self.item_keys = item_keys or []
        super().__init__(f"Invalid shipment plan: {reason}")


class InvalidQuantityError(ValidationError):
    """A quantity is zero, negative, or otherwise unusable."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, subject: str, quantity: int):
        self.subject = subject
        self.quantity = quantity
        super().__init__(f"Invalid quantity {quantity} for {subject}")


class OverShipmentError(ValidationError):
    """Shipping would exceed the item's ordered quantity net of cancellations."""

    code: str = "OVER_SHIPMENT"

    def __init__(self, sku: str, requested: int, remaining: int):
        self.sku = sku
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Cannot ship {requested} of {sku}: only {remaining} remaining"
        )


class ItemNotInOrderError(ValidationError):
    """A referenced order item belongs to a different order."""

    code: str = "ITEM_NOT_IN_ORDER"

    def __init__(self, order_item_id: str, order_id: str):
        self.order_item_id = order_item_id
        self.order_id = order_id
        super().__init__(f"Order item {order_item_id} does not belong to order {order_id}")


class UnresolvedSkusError(ValidationError):
    """One or more order items have no external catalog reference."""

    code: str = "UNRESOLVED_SKUS"

    def __init__(self, order_id: str, missing_skus: list[str]):
        self.order_id = order_id
        self.missing_skus = missing_skus
        super().__init__(
            f"{len(missing_skus)} SKU(s) not found on the commerce platform: "
            f"{', '.join(missing_skus)}"
        )


class InvalidCurrencyError(ValidationError):
    """Currency code is not a recognised ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: {currency}")


class InvalidReasonError(ValidationError):
    """A cancel or void reason is not one of the allowed values."""

    code: str = "INVALID_REASON"

    def __init__(self, reason: str, allowed: tuple[str, ...]):
        self.reason = reason
        self.allowed = list(allowed)
        super().__init__(f"Invalid reason '{reason}'")


# =============================================================================
# State conflicts
# =============================================================================


class StateConflictError(WholesaleError):
    """The target record is in a state that forbids the operation."""

    code: str = "STATE_CONFLICT"
    kind: str = "state_conflict"


class OrderNotEditableError(StateConflictError):
    """Items and groups may only change on pending, untransferred orders."""

    code: str = "ORDER_NOT_EDITABLE"

    def __init__(self, order_number: str, status: str, reason: str):
        self.order_number = order_number
        self.status = status
        self.reason = reason
        super().__init__(f"Order {order_number} cannot be edited: {reason}")


class OrderTerminalError(StateConflictError):
    """The order is Invoiced or Cancelled."""

    code: str = "ORDER_TERMINAL"

    def __init__(self, order_number: str, status: str):
        self.order_number = order_number
        self.status = status
        super().__init__(f"Order {order_number} is {status}; no further changes allowed")


class ItemNotInSourceGroupError(StateConflictError):
    """The item is no longer a member of the stated source group."""

    code: str = "ITEM_NOT_IN_SOURCE_GROUP"

    def __init__(self, order_item_id: str, source_shipment_id: str):
        self.order_item_id = order_item_id
        self.source_shipment_id = source_shipment_id
        super().__init__("Item is not in the specified source shipment")


class CrossOrderMoveError(StateConflictError):
    """Source and target planned shipments belong to different orders."""

    code: str = "CROSS_ORDER_MOVE"

    def __init__(self, source_order_id: str, target_order_id: str):
        self.source_order_id = source_order_id
        self.target_order_id = target_order_id
        super().__init__("Cannot move item between different orders")


class InvalidStatusTransitionError(StateConflictError):
    """The requested status change is not allowed from the current status."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, order_number: str, from_status: str, to_status: str):
        self.order_number = order_number
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Order {order_number} cannot move from {from_status} to {to_status}"
        )


class AlreadyTransferredError(StateConflictError):
    """The order has already been pushed to the commerce platform."""

    code: str = "ALREADY_TRANSFERRED"

    def __init__(self, order_number: str, external_order_id: str | None):
        self.order_number = order_number
        self.external_order_id = external_order_id
        super().__init__(f"Order {order_number} has already been transferred")


class NotTransferredError(StateConflictError):
    """The operation requires an order that exists on the commerce platform."""

    code: str = "NOT_TRANSFERRED"

    def __init__(self, order_number: str):
        self.order_number = order_number
        super().__init__(f"Order {order_number} has not been transferred")


class ArchiveStateError(StateConflictError):
    """The archival lifecycle step is not allowed for this order."""

    code: str = "ARCHIVE_STATE_CONFLICT"

    def __init__(self, order_number: str, archive_state: str, action: str, reason: str):
        self.order_number = order_number
        self.archive_state = archive_state
        self.action = action
        self.reason = reason
        super().__init__(f"Cannot {action} order {order_number}: {reason}")


class ExternalStillOpenError(StateConflictError):
    """A transferred order is still open on the platform and cannot be trashed."""

    code: str = "EXTERNAL_ORDER_STILL_OPEN"

    def __init__(self, order_number: str, external_status: str | None):
        self.order_number = order_number
        self.external_status = external_status
        super().__init__(
            f"Order {order_number} must be cancelled or closed on the commerce "
            "platform before it can be trashed"
        )


class ShipmentAlreadyVoidedError(StateConflictError):
    """The shipment has already been voided."""

    code: str = "SHIPMENT_ALREADY_VOIDED"

    def __init__(self, shipment_id: str):
        self.shipment_id = shipment_id
        super().__init__(f"Shipment {shipment_id} is already voided")


# =============================================================================
# External sync failures
# =============================================================================


class ExternalSyncError(WholesaleError):
    """The commerce platform did not accept or return what was needed."""

    code: str = "SYNC_FAILED"
    kind: str = "sync_failed"


class IntegrationNotConfiguredError(ExternalSyncError):
    """Store domain or access token is missing."""

    code: str = "INTEGRATION_NOT_CONFIGURED"

    def __init__(self):
        super().__init__("Commerce platform integration is not configured")


class PlatformRateLimitedError(ExternalSyncError):
    """The platform kept answering 429 after retries were exhausted."""

    code: str = "PLATFORM_RATE_LIMITED"

    def __init__(self, operation: str, retry_after: float | None):
        self.operation = operation
        self.retry_after = retry_after
        super().__init__(f"Rate limited by commerce platform during {operation}")


class PlatformRequestError(ExternalSyncError):
    """The platform rejected a request, timed out, or was unreachable."""

    code: str = "PLATFORM_REQUEST_FAILED"

    def __init__(self, operation: str, detail: str, status_code: int | None = None):
        self.operation = operation
        self.detail = detail
        self.status_code = status_code
        super().__init__(f"Commerce platform {operation} failed: {detail}")


class StatusSyncFailedError(ExternalSyncError):
    """Cancel/close on the platform failed; the local status was left unchanged."""

    code: str = "STATUS_SYNC_FAILED"

    def __init__(self, order_number: str, target_status: str, detail: str):
        self.order_number = order_number
        self.target_status = target_status
        self.detail = detail
        super().__init__(
            f"Could not sync {target_status} for order {order_number} to the "
            f"commerce platform: {detail}"
        )


# =============================================================================
# Not found
# =============================================================================


class NotFoundError(WholesaleError):
    """Base for missing records."""

    code: str = "NOT_FOUND"
    kind: str = "not_found"


class OrderNotFoundError(NotFoundError):
    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class OrderItemNotFoundError(NotFoundError):
    code: str = "ORDER_ITEM_NOT_FOUND"

    def __init__(self, order_item_id: str):
        self.order_item_id = order_item_id
        super().__init__(f"Order item not found: {order_item_id}")


class PlannedShipmentNotFoundError(NotFoundError):
    code: str = "PLANNED_SHIPMENT_NOT_FOUND"

    def __init__(self, planned_shipment_id: str):
        self.planned_shipment_id = planned_shipment_id
        super().__init__(f"Planned shipment not found: {planned_shipment_id}")


class ShipmentNotFoundError(NotFoundError):
    code: str = "SHIPMENT_NOT_FOUND"

    def __init__(self, shipment_id: str):
        self.shipment_id = shipment_id
        super().__init__(f"Shipment not found: {shipment_id}")


class CollectionNotFoundError(NotFoundError):
    code: str = "COLLECTION_NOT_FOUND"

    def __init__(self, collection_id: str):
        self.collection_id = collection_id
        super().__init__(f"Delivery window not found: {collection_id}")


# =============================================================================
# Authorization and integrity
# =============================================================================


class UnauthorizedActorError(WholesaleError):
    """The acting user may not perform operator-only operations."""

    code: str = "UNAUTHORIZED_ACTOR"
    kind: str = "unauthorized"

    def __init__(self, actor_id: str, operation: str):
        self.actor_id = actor_id
        self.operation = operation
        super().__init__(f"Actor {actor_id} is not allowed to {operation}")


class AuditChainBrokenError(WholesaleError):
    """The audit hash chain failed validation."""

    code: str = "AUDIT_CHAIN_BROKEN"
    kind: str = "integrity"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )
