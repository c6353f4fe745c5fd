# src/api/endpoints.py
from __future__ import annotations

from typing import List, Optional
from urllib.parse import quote

from api.client import ApiClient, ApiError
from db.models import Cart, Order
from utils.logger import get_logger

_logger = get_logger(__name__)


def _path_id(value: str) -> str:
    return quote(str(value), safe="")


def _ensure_success(data: dict, fallback: str) -> dict:
    """The backend reports logical failures as {"success": false, "message": ...} with a 2xx status."""
    if data.get("success") is False:
        raise ApiError(data.get("message") or fallback)
    return data


def _cart_from(data: dict) -> Cart:
    data = _ensure_success(data, "Cart request failed.")
    try:
        return Cart.from_json(data.get("cart"))
    except (KeyError, TypeError, ValueError) as e:
        raise ApiError(f"Unexpected cart data from server: {e}") from e


# ---------------------------
# Auth
# ---------------------------


async def login(client: ApiClient, email: str, password: str) -> dict:
    """Return the login payload: accessToken, refreshToken, message and (maybe) user."""
    data = await client.post(
        "/user/login", json={"email": email.strip(), "password": password}, auth=False
    )
    if not data.get("accessToken"):
        raise ApiError(data.get("message") or "Login failed!")
    return data


async def logout(client: ApiClient) -> None:
    """Tell the backend we are leaving. Local logout proceeds even if this fails."""
    try:
        await client.post("/user/logout")
    except ApiError as e:
        _logger.info(f"Remote logout failed, continuing: {e.message}")


# ---------------------------
# Cart
# ---------------------------


async def get_cart(client: ApiClient) -> Cart:
    return _cart_from(await client.get("/cart"))


async def add_to_cart(client: ApiClient, product_id: str, quantity: int) -> Cart:
    return _cart_from(
        await client.post("/cart", json={"productId": product_id, "quantity": quantity})
    )


async def update_cart_item(client: ApiClient, item_id: str, quantity: int) -> Cart:
    return _cart_from(
        await client.put(f"/cart/item/{_path_id(item_id)}", json={"quantity": quantity})
    )


async def remove_cart_item(client: ApiClient, item_id: str) -> Cart:
    return _cart_from(await client.delete(f"/cart/item/{_path_id(item_id)}"))


async def clear_cart(client: ApiClient) -> Cart:
    return _cart_from(await client.delete("/cart"))


# ---------------------------
# Orders
# ---------------------------


async def create_order(client: ApiClient, payload: dict) -> Order:
    """Place an order. The payload is built by the checkout workflow."""
    data = _ensure_success(
        await client.post("/order/orders", json=payload), "Failed to place order"
    )
    order = data.get("order") or {}
    if not isinstance(order, dict):
        order = {}
    # fall back to what we sent when the server echoes only part of the order
    merged = {**payload, **{k: v for k, v in order.items() if v is not None}}
    return Order.from_json(merged)


async def list_orders(client: ApiClient) -> List[Order]:
    """A customer's orders, newest first."""
    data = _ensure_success(await client.get("/order/orders"), "Failed to fetch orders")
    orders = [Order.from_json(o) for o in data.get("orders") or []]
    orders.sort(key=lambda o: o.created_at or "", reverse=True)
    return orders


async def get_order(client: ApiClient, order_id: str) -> Optional[Order]:
    """Return the order, or None if the backend does not know it."""
    try:
        data = await client.get(f"/order/orders/{_path_id(order_id)}")
    except ApiError as e:
        if e.status == 404:
            return None
        raise
    data = _ensure_success(data, "Failed to fetch order details")
    return Order.from_json(data.get("order") or {})


async def cancel_order(client: ApiClient, order_id: str) -> Order:
    data = _ensure_success(
        await client.put(
            f"/order/orders/{_path_id(order_id)}", json={"orderStatus": "Cancelled"}
        ),
        "Failed to cancel order",
    )
    return Order.from_json(data.get("order") or {"orderId": order_id, "orderStatus": "Cancelled"})


# ---------------------------
# Chat history
# ---------------------------


async def fetch_chat_messages(client: ApiClient, mark_as_read: bool = False) -> List[dict]:
    """Raw message dicts of the conversation with support."""
    data = await client.get(
        "/api/chat/messages/admin",
        params={"markAsRead": "true" if mark_as_read else "false"},
    )
    messages = data.get("messages")
    return [m for m in messages if isinstance(m, dict)] if isinstance(messages, list) else []
