from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, Optional

from db.models import CartLineItem, Coupon, PriceBreakdown

COUPONS: Dict[str, int] = {"MEDI10": 10, "SAVE20": 20}

FREE_SHIPPING_THRESHOLD = Decimal("100")
SHIPPING_FEE = Decimal("10")
TAX_RATE = Decimal("0.05")

_CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def round2(value: Decimal) -> Decimal:
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CouponResult:
    coupon: Optional[Coupon] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.coupon is not None


def resolve_coupon(code: str) -> CouponResult:
    """Look a code up in the coupon table, ignoring case and surrounding spaces."""
    normalized = (code or "").strip().upper()
    if not normalized:
        return CouponResult(error="Enter a coupon code.")
    percent = COUPONS.get(normalized)
    if percent is None:
        return CouponResult(error="Invalid coupon (use MEDI10 or SAVE20)")
    return CouponResult(coupon=Coupon(code=normalized, percent=percent))


def subtotal_of(line_items: Iterable[CartLineItem]) -> Decimal:
    return round2(sum((item.line_total for item in line_items), Decimal("0")))


def compute_breakdown(
    line_items: Iterable[CartLineItem], coupon: Optional[Coupon] = None
) -> PriceBreakdown:
    """
    Price the given line items. Only the items passed in are priced, so a
    caller that lets the user tick a subset passes just that subset.

    Every figure is rounded to cents as soon as it is computed, and the total
    is the sum of the rounded figures. This can differ by a cent from rounding
    once at the end, and that is intended.
    """
    subtotal = subtotal_of(line_items)
    discount = round2(subtotal * Decimal(coupon.percent) / 100) if coupon else ZERO
    taxable = subtotal - discount

    if subtotal == 0 or taxable >= FREE_SHIPPING_THRESHOLD:
        shipping = ZERO
    else:
        shipping = round2(SHIPPING_FEE)

    tax = round2(taxable * TAX_RATE)
    total = round2(subtotal - discount + shipping + tax)
    return PriceBreakdown(
        subtotal=subtotal,
        discount=discount,
        shipping=shipping,
        tax=tax,
        total=total,
    )
