"""Error types for the marketplace core.

Every error carries a stable ``kind`` so the calling layer can map it to a
user-facing response without string matching.
"""

from typing import Optional


class errmsg:
    """Error message constants."""

    ORDER_NOT_FOUND = "Order not found"
    BAG_NOT_FOUND = "Bag not found"
    ITEM_NOT_FOUND = "Item not found"
    SHOP_NOT_FOUND = "Shop not found"
    SERVICE_NOT_FOUND = "Service not found"
    POLICY_NOT_FOUND = "Split policy not found"
    NO_ACTIVE_POLICY = "No active split policy found"
    INVOICE_NOT_FOUND = "Invoice not found"
    ORDER_CLOSED = "Order is closed"
    ORDER_NOT_CONFIRMED = "Order is not awaiting pickup"
    ALREADY_ASSIGNED = "Order already has a driver"
    INVALID_GEO = "Geo coordinates are malformed"
    NEGATIVE_AMOUNT = "Amounts cannot be negative"
    ORDER_REQUIRED = "A scan must reference an order, bag or item"
    ADDRESS_REQUIRED = "Address line 1 and city are required"
    LINES_REQUIRED = "Order must have at least one service line"
    QUANTITY_POSITIVE = "Quantity must be positive"
    PROCESSING_PCT_RANGE = "Processing percentage must be between 0 and 1"
    SLA_POSITIVE = "SLA hours must be positive"
    MALFORMED_QR = "QR payload is malformed"
    TAMPERED_LABEL = "Order label signature does not match"
    UNSIGNED_LABEL = "Order label is not signed"
    PCT_SUM = "Split percentages must sum to 1.0"


class MarketplaceError(Exception):
    """Base class for marketplace errors."""

    kind = "error"
    retryable = False

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message}: {self.cause}"
        return self.message


class NotFoundError(MarketplaceError):
    """Referenced order, policy, bag, item, shop or user does not exist."""

    kind = "not_found"


class InvalidTransitionError(MarketplaceError):
    """Requested state change is not the legal next step."""

    kind = "invalid_transition"

    def __init__(self, current: str, requested: str, message: str = ""):
        super().__init__(
            message or f"Invalid state transition from {current} to {requested}"
        )
        self.current = current
        self.requested = requested


class AlreadyAssignedError(MarketplaceError):
    """A concurrent driver claim won the race.

    Expected under contention; callers should poll for another order.
    """

    kind = "already_assigned"
    retryable = True

    def __init__(self, order_id: str):
        super().__init__(f"{errmsg.ALREADY_ASSIGNED}: {order_id}")
        self.order_id = order_id


class InvalidPolicyError(MarketplaceError):
    """Split policy is malformed."""

    kind = "invalid_policy"


class InvalidInputError(MarketplaceError):
    """Malformed input rejected at the boundary."""

    kind = "invalid_input"


class ForbiddenError(MarketplaceError):
    """Caller role may not perform the requested action."""

    kind = "forbidden"
