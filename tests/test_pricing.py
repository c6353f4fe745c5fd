import os
import sys
import unittest
from decimal import Decimal

# Ensure project src/ is on sys.path for imports
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
src_path = os.path.join(ROOT, "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from db.models import CartLineItem, Coupon  # noqa: E402
from services.pricing import (  # noqa: E402
    compute_breakdown,
    resolve_coupon,
    round2,
    subtotal_of,
)


def item(pid: str, price: str, qty: int = 1) -> CartLineItem:
    return CartLineItem(id=f"line_{pid}", product_id=pid, name=pid, price=Decimal(price), quantity=qty)


class PricingTestCase(unittest.TestCase):
    def test_empty_cart_is_all_zero(self):
        b = compute_breakdown([])
        self.assertEqual(b.subtotal, Decimal("0.00"))
        self.assertEqual(b.shipping, Decimal("0.00"))
        self.assertEqual(b.tax, Decimal("0.00"))
        self.assertEqual(b.total, Decimal("0.00"))

    def test_small_order_pays_shipping(self):
        b = compute_breakdown([item("a", "20.00", 2)])
        self.assertEqual(b.subtotal, Decimal("40.00"))
        self.assertEqual(b.discount, Decimal("0.00"))
        self.assertEqual(b.shipping, Decimal("10.00"))
        self.assertEqual(b.tax, Decimal("2.00"))
        self.assertEqual(b.total, Decimal("52.00"))

    def test_free_shipping_at_threshold(self):
        b = compute_breakdown([item("a", "100.00")])
        self.assertEqual(b.shipping, Decimal("0.00"))
        self.assertEqual(b.total, Decimal("105.00"))

    def test_discount_can_push_below_free_shipping_threshold(self):
        b = compute_breakdown([item("a", "110.00")], Coupon("SAVE20", 20))
        self.assertEqual(b.discount, Decimal("22.00"))
        # taxable 88.00 is under 100, so shipping applies again
        self.assertEqual(b.shipping, Decimal("10.00"))
        self.assertEqual(b.tax, Decimal("4.40"))
        self.assertEqual(b.total, Decimal("102.40"))

    def test_rounding_happens_per_figure(self):
        b = compute_breakdown([item("a", "33.33")], Coupon("MEDI10", 10))
        self.assertEqual(b.discount, Decimal("3.33"))
        # 30.00 * 0.05
        self.assertEqual(b.tax, Decimal("1.50"))
        self.assertEqual(b.total, b.subtotal - b.discount + b.shipping + b.tax)

        half = compute_breakdown([item("b", "0.10")])
        # 0.005 rounds half up
        self.assertEqual(half.tax, Decimal("0.01"))

    def test_mixed_cart_with_save20(self):
        b = compute_breakdown([item("a", "100.00"), item("b", "50.00", 2)], Coupon("SAVE20", 20))
        self.assertEqual(b.subtotal, Decimal("200.00"))
        self.assertEqual(b.discount, Decimal("40.00"))
        self.assertEqual(b.shipping, Decimal("0.00"))
        self.assertEqual(b.tax, Decimal("8.00"))
        self.assertEqual(b.total, Decimal("168.00"))

    def test_coupon_discounts_on_200(self):
        items = [item("a", "200.00")]
        self.assertEqual(compute_breakdown(items, Coupon("MEDI10", 10)).discount, Decimal("20.00"))
        self.assertEqual(compute_breakdown(items, Coupon("SAVE20", 20)).discount, Decimal("40.00"))

    def test_150_without_coupon_ships_free(self):
        b = compute_breakdown([item("a", "150.00")])
        self.assertEqual(b.discount, Decimal("0.00"))
        self.assertEqual(b.shipping, Decimal("0.00"))
        self.assertEqual(b.total, Decimal("157.50"))

    def test_only_given_items_are_priced(self):
        items = [item("a", "10.00"), item("b", "5.50", 3)]
        self.assertEqual(subtotal_of(items), Decimal("26.50"))
        self.assertEqual(compute_breakdown(items[:1]).subtotal, Decimal("10.00"))

    def test_round2(self):
        self.assertEqual(round2(Decimal("2.345")), Decimal("2.35"))
        self.assertEqual(round2(Decimal("2.344")), Decimal("2.34"))


class CouponTestCase(unittest.TestCase):
    def test_known_codes_ignore_case_and_spaces(self):
        result = resolve_coupon("  medi10 ")
        self.assertTrue(result.ok)
        self.assertEqual(result.coupon, Coupon("MEDI10", 10))
        self.assertEqual(resolve_coupon("SAVE20").coupon.percent, 20)

    def test_unknown_and_empty_codes(self):
        bad = resolve_coupon("FREEBIE")
        self.assertFalse(bad.ok)
        self.assertEqual(bad.error, "Invalid coupon (use MEDI10 or SAVE20)")
        self.assertEqual(resolve_coupon("   ").error, "Enter a coupon code.")
        self.assertFalse(resolve_coupon(None).ok)


if __name__ == "__main__":
    unittest.main()
