"""Domain records for the marketplace core.

Records are frozen; the store swaps whole records on update so nothing a
caller holds can change underneath it.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class OrderState(str, Enum):
    """Order lifecycle states, in forward order."""

    CREATED = "created"
    CONFIRMED = "confirmed"
    PICKED_UP = "picked_up"
    AT_ORIGIN_SHOP = "at_origin_shop"
    SUBCONTRACTED = "subcontracted"
    AT_PROCESSING_SHOP = "at_processing_shop"
    WASHING = "washing"
    DRYING = "drying"
    PRESSING = "pressing"
    QC = "qc"
    PACKED = "packed"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CLOSED = "closed"


class ScanType(str, Enum):
    PICKUP = "pickup"
    HANDOFF_TO_SHOP = "handoff.to_shop"
    HANDOFF_TO_PROCESSING = "handoff.to_processing"
    INTAKE = "intake"
    QC = "qc"
    PACK = "pack"
    HANDOFF_TO_DRIVER = "handoff.to_driver"
    DELIVERY = "delivery"


class UserRole(str, Enum):
    CUSTOMER = "customer"
    DRIVER = "driver"
    SHOP = "shop"
    FRANCHISE = "franchise"
    ADMIN = "admin"


class PaymentMethod(str, Enum):
    CARD = "card"
    CASH = "cash"
    ACCOUNT = "account"


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class FloorMode(str, Enum):
    """How a platform minimum fee is funded.

    OVERRIDE raises the platform share without touching the others, so the
    split can exceed the order total. CONSERVE deducts the shortfall from
    the other three shares pro rata.
    """

    OVERRIDE = "override"
    CONSERVE = "conserve"


# State -> timestamp field stamped when the order enters it.
STATE_TIMESTAMP_FIELDS = {
    OrderState.CONFIRMED: "confirmed_at",
    OrderState.PICKED_UP: "picked_up_at",
    OrderState.AT_ORIGIN_SHOP: "at_origin_shop_at",
    OrderState.SUBCONTRACTED: "subcontracted_at",
    OrderState.AT_PROCESSING_SHOP: "at_processing_shop_at",
    OrderState.WASHING: "washing_at",
    OrderState.DRYING: "drying_at",
    OrderState.PRESSING: "pressing_at",
    OrderState.QC: "qc_at",
    OrderState.PACKED: "packed_at",
    OrderState.OUT_FOR_DELIVERY: "out_for_delivery_at",
    OrderState.DELIVERED: "delivered_at",
    OrderState.CLOSED: "closed_at",
}

MONEY_FIELDS = (
    "subtotal_cents",
    "delivery_fee_cents",
    "tip_cents",
    "vat_cents",
    "total_cents",
)


@dataclass(frozen=True)
class User:
    id: str
    role: UserRole = UserRole.CUSTOMER
    email: str = ""
    shop_id: Optional[str] = None
    is_active: bool = False


@dataclass(frozen=True)
class Service:
    """Catalogue entry priced per unit (kg or item)."""

    id: str
    service_code: str
    name: str
    unit_price_cents: int
    unit: str = "item"
    description: str = ""
    currency: str = "EUR"


@dataclass(frozen=True)
class Shop:
    id: str
    name: str
    address: str
    city: str
    eircode: str = ""
    contact_email: str = ""
    contact_phone: str = ""
    is_processing_center: bool = False
    owner_id: Optional[str] = None
    subscription_tier: Optional[str] = None
    subscription_fee_cents: Optional[int] = None
    platform_fee_pct: Optional[int] = None


@dataclass(frozen=True)
class Order:
    id: str
    customer_id: str
    address_line1: str
    city: str
    state: OrderState = OrderState.CREATED
    address_line2: str = ""
    eircode: str = ""
    customer_full_name: str = ""
    customer_phone: str = ""
    pickup_date: str = ""
    time_window: str = ""
    driver_id: Optional[str] = None
    origin_shop_id: Optional[str] = None
    processing_shop_id: Optional[str] = None
    subtotal_cents: int = 0
    delivery_fee_cents: int = 0
    tip_cents: int = 0
    vat_cents: int = 0
    total_cents: int = 0
    currency: str = "EUR"
    payment_method: Optional[PaymentMethod] = None
    notes: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    confirmed_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    at_origin_shop_at: Optional[datetime] = None
    subcontracted_at: Optional[datetime] = None
    at_processing_shop_at: Optional[datetime] = None
    washing_at: Optional[datetime] = None
    drying_at: Optional[datetime] = None
    pressing_at: Optional[datetime] = None
    qc_at: Optional[datetime] = None
    packed_at: Optional[datetime] = None
    out_for_delivery_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    def is_closed(self) -> bool:
        return self.state == OrderState.CLOSED

    def is_unassigned(self) -> bool:
        return self.driver_id is None

    def is_awaiting_pickup(self) -> bool:
        return self.state == OrderState.CONFIRMED and self.driver_id is None


@dataclass(frozen=True)
class OrderLine:
    id: str
    order_id: str
    service_id: str
    quantity: Decimal
    unit_price_cents: int
    total_cents: int


@dataclass(frozen=True)
class Bag:
    id: str
    order_id: str
    sequence: int
    qr_code: str
    weight_kg: Optional[Decimal] = None
    label_printed: bool = False
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Item:
    id: str
    bag_id: str
    order_id: str
    description: str = ""
    qr_code: str = ""
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Party:
    """One side of a custody handoff, e.g. ("driver", "u-42")."""

    type: str
    id: str


@dataclass(frozen=True)
class Scan:
    """One custody or verification event. Append-only."""

    id: str
    type: ScanType
    order_id: str
    scanned_by: str
    scanned_by_role: UserRole
    bag_id: Optional[str] = None
    item_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    photo_url: Optional[str] = None
    signature: Optional[str] = None
    notes: str = ""
    from_party: Optional[Party] = None
    to_party: Optional[Party] = None
    weight_kg: Optional[Decimal] = None
    created_at: datetime = field(default_factory=utcnow)
    sequence: int = 0


@dataclass(frozen=True)
class Subcontract:
    id: str
    order_id: str
    from_shop_id: str
    to_shop_id: str
    processing_pct: Decimal
    sla_hours: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class SplitPolicy:
    id: str
    name: str
    version: str
    origin_shop_pct: Decimal
    processing_shop_pct: Decimal
    driver_pct: Decimal
    platform_pct: Decimal
    currency: str = "EUR"
    platform_min_cents: int = 0
    rounding: str = "HALF_UP_2DP"
    floor_mode: FloorMode = FloorMode.OVERRIDE
    is_active: bool = False
    policy_json: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    def percentages(self) -> dict[str, Decimal]:
        return {
            "origin_shop": self.origin_shop_pct,
            "processing_shop": self.processing_shop_pct,
            "driver": self.driver_pct,
            "platform": self.platform_pct,
        }


@dataclass(frozen=True)
class Split:
    """Computed revenue distribution for one order. Immutable."""

    id: str
    order_id: str
    policy_id: str
    origin_shop_cents: int
    processing_shop_cents: int
    driver_cents: int
    platform_cents: int
    origin_shop_pct: Decimal
    processing_shop_pct: Decimal
    driver_pct: Decimal
    platform_pct: Decimal
    order_total_cents: int
    rounding_remainder_cents: int = 0
    floor_applied: bool = False
    floor_mode: FloorMode = FloorMode.OVERRIDE
    audit_note: str = ""
    created_at: datetime = field(default_factory=utcnow)

    @property
    def shares_total_cents(self) -> int:
        return (
            self.origin_shop_cents
            + self.processing_shop_cents
            + self.driver_cents
            + self.platform_cents
        )

    def conserves_total(self) -> bool:
        return self.shares_total_cents == self.order_total_cents


@dataclass(frozen=True)
class Invoice:
    id: str
    order_id: str
    invoice_number: str
    subtotal_cents: int
    vat_cents: int
    total_cents: int
    currency: str = "EUR"
    status: InvoiceStatus = InvoiceStatus.PENDING
    pdf_url: Optional[str] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    def is_pending(self) -> bool:
        return self.status == InvoiceStatus.PENDING
