# provide dataclass models
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Literal, Optional

TEMP_ID_PREFIX = "temp_"

SenderType = Literal["user", "support"]
MessageStatus = Literal["queued", "sending", "confirmed"]


def to_decimal(value: Any) -> Decimal:
    """Money values arrive as JSON numbers or strings; go through str to avoid float noise."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value if value is not None else 0))
    except InvalidOperation:
        raise ValueError(f"not a money value: {value!r}") from None


def clamp_quantity(qty: Any) -> int:
    try:
        qty = int(qty)
    except (TypeError, ValueError):
        return 1
    return max(qty, 1)


@dataclass(frozen=True)
class CartLineItem:
    id: str
    product_id: str
    name: str
    price: Decimal
    quantity: int = 1
    image: Optional[str] = None

    def __post_init__(self):
        price = to_decimal(self.price)
        if price < 0:
            raise ValueError(f"negative price for product {self.product_id}")
        object.__setattr__(self, "price", price)
        object.__setattr__(self, "quantity", clamp_quantity(self.quantity))

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity

    @classmethod
    def from_json(cls, data: dict) -> CartLineItem:
        """
        Cart items come back either flat or with the product populated:
        {"_id", "productId": {"_id", "name", "price", "image"}, "quantity"}.
        """
        product = data.get("productId")
        if isinstance(product, dict):
            product_id = str(product.get("_id") or product.get("id") or "")
        else:
            product = {}
            product_id = str(data.get("productId") or data.get("product_id") or "")
        if not product_id:
            raise ValueError("cart item without a product id")
        item_id = data.get("_id") or data.get("id") or f"line_{product_id}"
        return cls(
            id=str(item_id),
            product_id=product_id,
            name=data.get("name") or product.get("name") or "",
            price=data.get("price", product.get("price", 0)),
            quantity=data.get("quantity", 1),
            image=data.get("image") or product.get("image"),
        )


@dataclass(frozen=True)
class Cart:
    items: tuple[CartLineItem, ...] = ()
    total_price: Decimal = Decimal("0")

    @classmethod
    def from_json(cls, data: Optional[dict]) -> Cart:
        if not data:
            return cls()
        items = tuple(CartLineItem.from_json(i) for i in data.get("items") or [])
        return cls(items=items, total_price=to_decimal(data.get("totalPrice", 0)))

    def find(self, line_item_id: str) -> Optional[CartLineItem]:
        for item in self.items:
            if item.id == line_item_id:
                return item
        return None


@dataclass(frozen=True)
class Coupon:
    code: str
    percent: int


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    discount: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal


@dataclass(frozen=True)
class ChatMessage:
    id: str
    sender_id: str
    receiver_id: str
    message: str
    sender_type: SenderType
    timestamp: str  # ISO 8601
    status: MessageStatus = "confirmed"

    @property
    def queued(self) -> bool:
        """True until the server has confirmed the message."""
        return self.status != "confirmed"

    @property
    def is_temporary(self) -> bool:
        return self.id.startswith(TEMP_ID_PREFIX)

    def to_json(self) -> dict:
        return {
            "_id": self.id,
            "senderId": self.sender_id,
            "receiverId": self.receiver_id,
            "message": self.message,
            "senderType": self.sender_type,
            "timestamp": self.timestamp,
            "status": self.status,
        }

    @classmethod
    def from_json(cls, data: dict, user_id: Optional[str] = None) -> ChatMessage:
        """
        Server messages carry senderType "user" or "admin" (sometimes nothing), and
        either a timestamp or createdAt.
        """
        sender_id = str(data.get("senderId") or "")
        raw_type = data.get("senderType")
        if raw_type == "user" or (raw_type is None and user_id and sender_id == user_id):
            sender_type: SenderType = "user"
        else:
            sender_type = "support"
        status = data.get("status")
        if status not in ("queued", "sending", "confirmed"):
            status = "confirmed"
        return cls(
            id=str(data.get("_id") or data.get("id") or ""),
            sender_id=sender_id,
            receiver_id=str(data.get("receiverId") or ""),
            message=str(data.get("message") or ""),
            sender_type=sender_type,
            timestamp=str(data.get("timestamp") or data.get("createdAt") or ""),
            status=status,
        )


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    refresh_token: str
    expires_at: float  # epoch seconds
    user_id: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.access_token)


@dataclass(frozen=True)
class OrderLine:
    product_id: str
    name: str
    quantity: int
    price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True)
class Order:
    order_id: str
    status: str
    total_amount: Decimal
    shipping_address: str
    payment_method: str
    created_at: Optional[str] = None
    lines: tuple[OrderLine, ...] = field(default_factory=tuple)

    @property
    def can_cancel(self) -> bool:
        return self.status not in ("Cancelled", "Delivered", "Shipped")

    @classmethod
    def from_json(cls, data: dict) -> Order:
        lines = tuple(
            OrderLine(
                product_id=str(i.get("productId") or ""),
                name=i.get("name") or "",
                quantity=clamp_quantity(i.get("quantity", 1)),
                price=to_decimal(i.get("price", 0)),
            )
            for i in data.get("items") or []
        )
        address = data.get("shippingAddress") or ""
        if isinstance(address, dict):
            address = ", ".join(
                str(address[k])
                for k in ("street", "city", "state", "zipCode", "country")
                if address.get(k)
            )
        total = data.get("totalAmount")
        if total is None:
            total = sum((line.line_total for line in lines), Decimal("0"))
        return cls(
            order_id=str(data.get("orderId") or data.get("_id") or ""),
            status=data.get("orderStatus") or data.get("status") or "Pending",
            total_amount=to_decimal(total),
            shipping_address=address,
            payment_method=data.get("paymentMethod") or "",
            created_at=data.get("createdAt"),
            lines=lines,
        )
