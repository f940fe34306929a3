"""Order pricing and VAT.

All arithmetic is Decimal on integer cents; results are whole cents.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from .errors import errmsg
from .models import Service
from .validation import require_non_negative, require_positive

# Irish standard VAT rate.
VAT_RATE = Decimal("0.23")

_ONE = Decimal("1")


@dataclass(frozen=True)
class PricedLine:
    service: Service
    quantity: Decimal
    total_cents: int


@dataclass(frozen=True)
class OrderPricing:
    subtotal_cents: int
    vat_cents: int
    total_cents: int


def to_decimal(value) -> Decimal:
    """Exact Decimal for ints, strings and floats (floats via their repr)."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def round_cents(value: Decimal, rounding: str = ROUND_HALF_UP) -> int:
    return int(value.quantize(_ONE, rounding=rounding))


def vat_cents(subtotal_cents: int) -> int:
    require_non_negative(subtotal_cents, errmsg.NEGATIVE_AMOUNT)
    return round_cents(Decimal(subtotal_cents) * VAT_RATE)


def price_line(service: Service, quantity) -> PricedLine:
    qty = to_decimal(quantity)
    require_positive(qty, errmsg.QUANTITY_POSITIVE)
    total = round_cents(Decimal(service.unit_price_cents) * qty)
    return PricedLine(service=service, quantity=qty, total_cents=total)


def price_order(
    lines: list[PricedLine], delivery_fee_cents: int = 0, tip_cents: int = 0
) -> OrderPricing:
    """Subtotal of the lines, VAT on the subtotal, and the grand total."""
    require_non_negative(delivery_fee_cents, errmsg.NEGATIVE_AMOUNT)
    require_non_negative(tip_cents, errmsg.NEGATIVE_AMOUNT)
    subtotal = sum(line.total_cents for line in lines)
    vat = vat_cents(subtotal)
    return OrderPricing(
        subtotal_cents=subtotal,
        vat_cents=vat,
        total_cents=subtotal + vat + delivery_fee_cents + tip_cents,
    )
