from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass, fields
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence

from db.models import CartLineItem, Order, PriceBreakdown
from utils.logger import get_logger

_logger = get_logger(__name__)


class CheckoutStep(Enum):
    SHIPPING = 1
    DELIVERY = 2
    PAYMENT = 3
    REVIEW = 4
    PLACED = 5


class DeliveryOption(Enum):
    STANDARD = ("standard", "Standard (3-5 days)", Decimal("0.00"))
    EXPRESS = ("express", "Express (next day)", Decimal("15.00"))

    def __init__(self, key: str, label: str, cost: Decimal):
        self.key = key
        self.label = label
        self.cost = cost


class PaymentMethod(Enum):
    CARD = ("card", "Credit / Debit Card")
    PAYPAL = ("paypal", "PayPal")
    CASH_ON_DELIVERY = ("cash_on_delivery", "Cash on Delivery")

    def __init__(self, key: str, label: str):
        self.key = key
        self.label = label


FIELD_LABELS = {
    "full_name": "Full name",
    "email": "Email",
    "phone": "Phone",
    "address": "Address",
}


@dataclass
class ShippingForm:
    full_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""

    def missing_fields(self) -> List[str]:
        """Only checks presence; format checks belong to whoever renders the form."""
        return [f.name for f in fields(self) if not getattr(self, f.name).strip()]


@dataclass(frozen=True)
class StepResult:
    ok: bool
    step: CheckoutStep
    errors: tuple[str, ...] = ()

    @property
    def message(self) -> str:
        return " ".join(self.errors)


def generate_order_id() -> str:
    """ORD + epoch millis + 9 random upper-case alphanumerics."""
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=9))
    return f"ORD{int(time.time() * 1000)}{suffix}"


@dataclass(frozen=True)
class OrderRequest:
    order_id: str
    shipping: ShippingForm
    delivery: DeliveryOption
    payment: PaymentMethod
    items: tuple[CartLineItem, ...]
    breakdown: PriceBreakdown

    @property
    def total(self) -> Decimal:
        return self.breakdown.total + self.delivery.cost

    def to_json(self) -> dict:
        return {
            "orderId": self.order_id,
            "items": [
                {
                    "productId": i.product_id,
                    "quantity": i.quantity,
                    "price": str(i.price),
                    "name": i.name,
                    "image": i.image,
                }
                for i in self.items
            ],
            "shippingAddress": {
                "fullName": self.shipping.full_name.strip(),
                "email": self.shipping.email.strip(),
                "phone": self.shipping.phone.strip(),
                "street": self.shipping.address.strip(),
            },
            "deliveryOption": self.delivery.key,
            "paymentMethod": self.payment.key,
            "subtotal": str(self.breakdown.subtotal),
            "discount": str(self.breakdown.discount),
            "shipping": str(self.breakdown.shipping + self.delivery.cost),
            "tax": str(self.breakdown.tax),
            "totalAmount": str(self.total),
        }


CreateOrder = Callable[[OrderRequest], Awaitable[Order]]


class CheckoutWorkflow:
    """
    Shipping -> Delivery -> Payment -> Review -> Placed.

    Forward moves go one step at a time and only when the current step's
    fields validate; Back goes one step at a time. Placing the order takes
    two calls (request, then confirm) and is handed to the injected
    create_order collaborator. The workflow does no I/O of its own.
    """

    def __init__(
        self,
        items: Sequence[CartLineItem],
        breakdown: PriceBreakdown,
        create_order: CreateOrder,
    ):
        self.items = tuple(items)
        self.breakdown = breakdown
        self._create_order = create_order

        self.step = CheckoutStep.SHIPPING
        self.shipping = ShippingForm()
        self.delivery: Optional[DeliveryOption] = DeliveryOption.STANDARD
        self.payment: Optional[PaymentMethod] = None
        self.awaiting_confirmation = False
        self.placing = False
        self.order: Optional[Order] = None
        self.last_error: Optional[str] = None

    @property
    def total(self) -> Decimal:
        cost = self.delivery.cost if self.delivery else Decimal("0.00")
        return self.breakdown.total + cost

    # ---------------------------
    # Field updates
    # ---------------------------

    def update_shipping(self, **values: str) -> None:
        for name, value in values.items():
            if name not in FIELD_LABELS:
                raise ValueError(f"unknown shipping field: {name}")
            setattr(self.shipping, name, value or "")

    def select_delivery(self, option: Optional[DeliveryOption]) -> None:
        self.delivery = option

    def select_payment(self, method: Optional[PaymentMethod]) -> None:
        self.payment = method

    # ---------------------------
    # Gates & transitions
    # ---------------------------

    def validate(self, step: Optional[CheckoutStep] = None) -> List[str]:
        """Return the user-facing problems blocking a move past the given step."""
        step = step or self.step
        if step is CheckoutStep.SHIPPING:
            missing = self.shipping.missing_fields()
            return [f"{FIELD_LABELS[name]} is required." for name in missing]
        if step is CheckoutStep.DELIVERY:
            return [] if self.delivery else ["Please select a delivery option."]
        if step is CheckoutStep.PAYMENT:
            return [] if self.payment else ["Please select a payment method."]
        return []

    def advance(self) -> StepResult:
        """One step forward. Review is left only through the place-order confirmation."""
        if self.step in (CheckoutStep.REVIEW, CheckoutStep.PLACED):
            return StepResult(False, self.step, ("Confirm the order to continue.",))
        errors = self.validate()
        if errors:
            return StepResult(False, self.step, tuple(errors))
        self.step = CheckoutStep(self.step.value + 1)
        return StepResult(True, self.step)

    def back(self) -> StepResult:
        if self.step in (CheckoutStep.SHIPPING, CheckoutStep.PLACED) or self.placing:
            return StepResult(False, self.step)
        self.awaiting_confirmation = False
        self.step = CheckoutStep(self.step.value - 1)
        return StepResult(True, self.step)

    # ---------------------------
    # Placing the order
    # ---------------------------

    def request_place_order(self) -> StepResult:
        """First half of placing: arm the confirmation."""
        if self.placing:
            return StepResult(False, self.step, ("Your order is already being placed.",))
        if self.step is not CheckoutStep.REVIEW:
            return StepResult(False, self.step, ("Review your order first.",))
        if not self.items:
            return StepResult(False, self.step, ("Your cart is empty.",))
        self.awaiting_confirmation = True
        return StepResult(True, self.step)

    def cancel_place_order(self) -> None:
        self.awaiting_confirmation = False

    def build_request(self) -> OrderRequest:
        return OrderRequest(
            order_id=generate_order_id(),
            shipping=ShippingForm(**vars(self.shipping)),
            delivery=self.delivery or DeliveryOption.STANDARD,
            payment=self.payment,
            items=self.items,
            breakdown=self.breakdown,
        )

    async def confirm_place_order(self) -> StepResult:
        """Second half: hand the order to create_order. Failure keeps us on Review."""
        if self.placing:
            return StepResult(False, self.step, ("Your order is already being placed.",))
        if self.step is not CheckoutStep.REVIEW or not self.awaiting_confirmation:
            return StepResult(False, self.step, ("Order placement was not confirmed.",))
        for step in (CheckoutStep.SHIPPING, CheckoutStep.DELIVERY, CheckoutStep.PAYMENT):
            errors = self.validate(step)
            if errors:
                self.awaiting_confirmation = False
                return StepResult(False, self.step, tuple(errors))

        request = self.build_request()
        self.placing = True
        self.awaiting_confirmation = False
        try:
            order = await self._create_order(request)
        except Exception as e:
            self.last_error = getattr(e, "message", None) or str(e) or "Failed to place order"
            _logger.warning(f"Order {request.order_id} failed: {self.last_error}")
            return StepResult(False, self.step, (self.last_error,))
        finally:
            self.placing = False

        self.order = order
        self.last_error = None
        self.step = CheckoutStep.PLACED
        _logger.info(f"Order {order.order_id or request.order_id} placed.")
        return StepResult(True, self.step)
