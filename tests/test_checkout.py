import asyncio
import os
import re
import sys
import unittest
from decimal import Decimal

# Ensure project src/ is on sys.path for imports
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
src_path = os.path.join(ROOT, "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from api.client import ApiError  # noqa: E402
from db.models import CartLineItem, Order  # noqa: E402
from services.checkout import (  # noqa: E402
    CheckoutStep,
    CheckoutWorkflow,
    DeliveryOption,
    PaymentMethod,
    generate_order_id,
)
from services.pricing import compute_breakdown  # noqa: E402

ITEMS = [
    CartLineItem(id="li1", product_id="p1", name="Aspirin", price=Decimal("4.00"), quantity=2),
    CartLineItem(id="li2", product_id="p2", name="Vitamin C", price=Decimal("12.50")),
]


class CheckoutTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.placed = []
        self.fail_with = None

        async def create_order(request):
            if self.fail_with is not None:
                raise self.fail_with
            self.placed.append(request)
            return Order.from_json({**request.to_json(), "orderStatus": "Pending"})

        self.workflow = CheckoutWorkflow(ITEMS, compute_breakdown(ITEMS), create_order)

    def fill_shipping(self):
        self.workflow.update_shipping(
            full_name="Jane Doe", email="jane@example.com", phone="555-0100", address="1 Main St"
        )

    async def walk_to_review(self):
        self.fill_shipping()
        self.assertTrue(self.workflow.advance().ok)
        self.assertTrue(self.workflow.advance().ok)
        self.workflow.select_payment(PaymentMethod.CARD)
        self.assertTrue(self.workflow.advance().ok)
        self.assertIs(self.workflow.step, CheckoutStep.REVIEW)

    # ---------- gates ----------

    async def test_shipping_gate_lists_missing_fields(self):
        self.workflow.update_shipping(full_name="  ", email="a@b.c")
        result = self.workflow.advance()
        self.assertFalse(result.ok)
        self.assertIs(result.step, CheckoutStep.SHIPPING)
        self.assertEqual(
            list(result.errors),
            ["Full name is required.", "Phone is required.", "Address is required."],
        )

    async def test_unknown_shipping_field(self):
        with self.assertRaises(ValueError):
            self.workflow.update_shipping(zip_code="12345")

    async def test_delivery_and_payment_gates(self):
        self.fill_shipping()
        self.workflow.advance()
        self.workflow.select_delivery(None)
        self.assertEqual(self.workflow.advance().message, "Please select a delivery option.")
        self.workflow.select_delivery(DeliveryOption.EXPRESS)
        self.assertTrue(self.workflow.advance().ok)

        result = self.workflow.advance()
        self.assertFalse(result.ok)
        self.assertEqual(result.message, "Please select a payment method.")
        self.assertIs(self.workflow.step, CheckoutStep.PAYMENT)

    async def test_back_moves_one_step_and_stops_at_start(self):
        self.assertFalse(self.workflow.back().ok)
        await self.walk_to_review()
        self.assertIs(self.workflow.back().step, CheckoutStep.PAYMENT)
        self.assertIs(self.workflow.back().step, CheckoutStep.DELIVERY)

    async def test_review_is_left_only_by_placing(self):
        await self.walk_to_review()
        result = self.workflow.advance()
        self.assertFalse(result.ok)
        self.assertIs(self.workflow.step, CheckoutStep.REVIEW)

    # ---------- placing ----------

    async def test_place_order_needs_confirmation(self):
        await self.walk_to_review()
        result = await self.workflow.confirm_place_order()
        self.assertFalse(result.ok)
        self.assertEqual(self.placed, [])

        self.assertTrue(self.workflow.request_place_order().ok)
        self.workflow.cancel_place_order()
        self.assertFalse((await self.workflow.confirm_place_order()).ok)
        self.assertEqual(self.placed, [])

    async def test_request_place_order_outside_review(self):
        self.assertFalse(self.workflow.request_place_order().ok)
        self.assertFalse(self.workflow.awaiting_confirmation)

    async def test_successful_order(self):
        await self.walk_to_review()
        self.workflow.request_place_order()
        result = await self.workflow.confirm_place_order()

        self.assertTrue(result.ok)
        self.assertIs(self.workflow.step, CheckoutStep.PLACED)
        self.assertEqual(len(self.placed), 1)
        request = self.placed[0]
        payload = request.to_json()
        self.assertEqual(payload["paymentMethod"], "card")
        self.assertEqual(payload["deliveryOption"], "standard")
        self.assertEqual(payload["shippingAddress"]["fullName"], "Jane Doe")
        self.assertEqual(len(payload["items"]), 2)
        # 20.50 + 10 shipping + 1.03 tax
        self.assertEqual(payload["totalAmount"], "31.53")
        self.assertEqual(self.workflow.order.order_id, request.order_id)
        self.assertEqual(self.workflow.order.status, "Pending")

        # nothing moves once placed
        self.assertFalse(self.workflow.back().ok)
        self.assertFalse(self.workflow.advance().ok)

    async def test_express_delivery_adds_to_total(self):
        self.fill_shipping()
        self.workflow.advance()
        self.workflow.select_delivery(DeliveryOption.EXPRESS)
        self.workflow.advance()
        self.workflow.select_payment(PaymentMethod.PAYPAL)
        self.workflow.advance()
        self.assertEqual(self.workflow.total, Decimal("46.53"))
        self.assertEqual(self.workflow.build_request().to_json()["totalAmount"], "46.53")

    async def test_failed_order_stays_in_review(self):
        await self.walk_to_review()
        self.fail_with = ApiError("Failed to place order", 500)
        self.workflow.request_place_order()
        result = await self.workflow.confirm_place_order()

        self.assertFalse(result.ok)
        self.assertEqual(result.message, "Failed to place order")
        self.assertIs(self.workflow.step, CheckoutStep.REVIEW)
        self.assertFalse(self.workflow.placing)
        self.assertFalse(self.workflow.awaiting_confirmation)
        self.assertIsNone(self.workflow.order)

        # a retry goes through once the backend recovers
        self.fail_with = None
        self.workflow.request_place_order()
        self.assertTrue((await self.workflow.confirm_place_order()).ok)

    async def test_concurrent_confirms_place_one_order(self):
        await self.walk_to_review()
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_create_order(request):
            started.set()
            await release.wait()
            self.placed.append(request)
            return Order.from_json({**request.to_json(), "orderStatus": "Pending"})

        self.workflow._create_order = slow_create_order
        self.assertTrue(self.workflow.request_place_order().ok)

        first = asyncio.ensure_future(self.workflow.confirm_place_order())
        await started.wait()
        self.assertTrue(self.workflow.placing)
        # the button would be pressed again here
        self.assertFalse(self.workflow.request_place_order().ok)
        second = await self.workflow.confirm_place_order()
        self.assertFalse(second.ok)

        release.set()
        self.assertTrue((await first).ok)
        self.assertEqual(len(self.placed), 1)

    async def test_gathered_confirms_place_one_order(self):
        await self.walk_to_review()
        self.workflow.request_place_order()
        results = await asyncio.gather(
            self.workflow.confirm_place_order(), self.workflow.confirm_place_order()
        )
        self.assertEqual(sorted(r.ok for r in results), [False, True])
        self.assertEqual(len(self.placed), 1)
        self.assertIs(self.workflow.step, CheckoutStep.PLACED)

    async def test_empty_cart_cannot_be_placed(self):
        async def never(request):
            raise AssertionError("should not be called")

        workflow = CheckoutWorkflow([], compute_breakdown([]), never)
        workflow.update_shipping(full_name="a", email="b", phone="c", address="d")
        workflow.advance()
        workflow.advance()
        workflow.select_payment(PaymentMethod.CASH_ON_DELIVERY)
        workflow.advance()
        self.assertEqual(workflow.request_place_order().message, "Your cart is empty.")

    def test_order_id_format(self):
        self.assertRegex(generate_order_id(), re.compile(r"^ORD\d{13,}[A-Z0-9]{9}$"))


if __name__ == "__main__":
    unittest.main()
