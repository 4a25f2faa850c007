"""
Line and order price computation.

All arithmetic runs on Decimal built from the string form of the stored
float, then rounds half-up to cents: 19.995 -> 20.00, 0.125 -> 0.13.
Results go back to float because that is what the documents store.
"""
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Union

from errors import InvalidDiscount, InvalidPrice

Number = Union[int, float, Decimal]

CENT = Decimal("0.01")
HUNDRED = Decimal(100)


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round2(value: Number) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def apply_percentage(basis_price: Number, discount_percentage: Number) -> float:
    basis = to_decimal(basis_price)
    if basis < 0:
        raise InvalidPrice()
    pct = to_decimal(discount_percentage)
    if pct < 0 or pct > HUNDRED:
        raise InvalidDiscount()
    return float(round2(basis * (1 - pct / HUNDRED)))


def compute_line_price(basis_price: Number, promotion=None) -> float:
    """
    Unit price for a cart line.

    ``basis_price`` is the SKU price when a variant is selected, else the
    product base price. ``promotion`` is an already-resolved active
    advertisement (see promotions.find_active_promotion) or None; only its
    ``discount_percentage`` is read here.
    """
    if to_decimal(basis_price) < 0:
        raise InvalidPrice()
    pct = getattr(promotion, "discount_percentage", None) if promotion is not None else None
    if not pct:
        return float(round2(basis_price))
    return apply_percentage(basis_price, pct)


def items_price(lines: Iterable) -> float:
    """Sum of snapshotted unit price times quantity over cart or order lines."""
    total = sum((to_decimal(line.price) * line.quantity for line in lines), Decimal(0))
    return float(round2(total))


def order_total(items_total: Number, discount_amount: Optional[Number] = None) -> float:
    total = to_decimal(items_total) - to_decimal(discount_amount or 0)
    if total < 0:
        total = Decimal(0)
    return float(round2(total))
