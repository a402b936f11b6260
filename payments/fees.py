"""Fee and commission math.

Everything here is a pure function of the order total. Stored fee figures
on Transactions are informational; these functions are the source of truth
and can be rerun at any time for audits or disputes.
"""
from collections import namedtuple
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .exceptions import InvalidAmount, ValidationError

TWO_PLACES = Decimal("0.01")

COMMISSION_RATE = Decimal("0.025")  # platform share of the order total
GATEWAY_RATE = Decimal("0.02")
GATEWAY_FLAT = Decimal("3.00")

MIN_ORDER_AMOUNT = Decimal("1.00")
MAX_ORDER_AMOUNT = Decimal("100000.00")

FeeBreakdown = namedtuple("FeeBreakdown", ["total", "gateway_fee", "amount_to_charge", "commission"])
OrderTotals = namedtuple("OrderTotals", ["subtotal", "delivery_charge", "total"])


def to_amount(value) -> Decimal:
    """Coerce ``value`` to a finite, non-negative Decimal or raise InvalidAmount."""
    if isinstance(value, bool) or value is None:
        raise InvalidAmount(f"Invalid amount value: {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"Invalid amount value: {value!r}")
    if not amount.is_finite():
        raise InvalidAmount(f"Amount must be finite, got {value!r}")
    if amount < 0:
        raise InvalidAmount(f"Amount must not be negative, got {value!r}")
    return amount


def round2(value) -> Decimal:
    return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def commission(total) -> Decimal:
    return round2(to_amount(total) * COMMISSION_RATE)


def gateway_fee(total) -> Decimal:
    return round2(to_amount(total) * GATEWAY_RATE + GATEWAY_FLAT)


def amount_to_charge(total) -> Decimal:
    # Buyer pays the processor surcharge; commission comes out of the total.
    return round2(to_amount(total)) + gateway_fee(total)


def breakdown(total) -> FeeBreakdown:
    return FeeBreakdown(
        total=round2(to_amount(total)),
        gateway_fee=gateway_fee(total),
        amount_to_charge=amount_to_charge(total),
        commission=commission(total),
    )


def order_totals(items, delivery_charge=0) -> OrderTotals:
    """Sum line items (``quantity`` x ``unit_price``) and add delivery.

    Raises ValidationError for empty carts or non-positive quantities.
    """
    if not items:
        raise ValidationError("At least one item is required")
    subtotal = Decimal("0")
    for item in items:
        quantity = item.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError(f"Quantity must be a positive integer, got {quantity!r}")
        unit_price = to_amount(item.get("unit_price"))
        if unit_price <= 0:
            raise InvalidAmount("Unit price must be greater than 0")
        subtotal += round2(unit_price * quantity)
    delivery = round2(to_amount(delivery_charge or 0))
    subtotal = round2(subtotal)
    return OrderTotals(subtotal=subtotal, delivery_charge=delivery, total=subtotal + delivery)


def check_order_limits(total) -> Decimal:
    total = to_amount(total)
    if total < MIN_ORDER_AMOUNT:
        raise InvalidAmount(f"Total amount must be at least ₹{MIN_ORDER_AMOUNT}")
    if total > MAX_ORDER_AMOUNT:
        raise InvalidAmount(f"Total amount must not exceed ₹{MAX_ORDER_AMOUNT}")
    return total
