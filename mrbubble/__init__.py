"""Mr Bubbles Express marketplace core."""

from .config import Settings
from .errors import (
    AlreadyAssignedError,
    ForbiddenError,
    InvalidInputError,
    InvalidPolicyError,
    InvalidTransitionError,
    MarketplaceError,
    NotFoundError,
    errmsg,
)
from .invoice_logic import InvoiceLogic
from .models import (
    FloorMode,
    Invoice,
    InvoiceStatus,
    Order,
    OrderState,
    Scan,
    ScanType,
    Split,
    SplitPolicy,
    UserRole,
)
from .order_logic import OrderLogic
from .scan_logic import ScanLogic
from .split_logic import SplitLogic
from .store import MemoryStore, Store

__all__ = [
    # Logic
    "OrderLogic",
    "ScanLogic",
    "SplitLogic",
    "InvoiceLogic",
    # Storage
    "Store",
    "MemoryStore",
    # Records
    "Order",
    "OrderState",
    "Scan",
    "ScanType",
    "Split",
    "SplitPolicy",
    "FloorMode",
    "Invoice",
    "InvoiceStatus",
    "UserRole",
    # Errors
    "MarketplaceError",
    "NotFoundError",
    "InvalidTransitionError",
    "AlreadyAssignedError",
    "InvalidPolicyError",
    "InvalidInputError",
    "ForbiddenError",
    "errmsg",
    # Config
    "Settings",
]
