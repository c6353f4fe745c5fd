"""
Cart state kept in step with the remote cart service.

Mutations are confirmed, not optimistic: local state changes only when the
server answers, and then it takes the server's items and totalPrice as they
are. A failed call leaves local state exactly as it was.

There is no locking. If two calls for the same line item overlap, whichever
response arrives last wins.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Awaitable, Callable, List, Literal, Optional, Sequence

import api.endpoints as endpoints
from api.client import ApiClient, ApiError
from db.models import Cart, CartLineItem, Coupon, PriceBreakdown, clamp_quantity
from services.pricing import CouponResult, compute_breakdown, resolve_coupon
from utils.logger import get_logger

_logger = get_logger(__name__)

Outcome = Literal["ok", "unauthenticated", "unavailable", "failed"]

MSG_LOGIN_REQUIRED = "Please log in to manage your cart."
MSG_UNAVAILABLE = "Cart service unavailable."
MSG_FAILED = "Could not update the cart. Please try again."


@dataclass(frozen=True)
class CartResult:
    outcome: Outcome
    message: str = ""
    cart: Optional[Cart] = None

    @property
    def ok(self) -> bool:
        return self.outcome == "ok"


def _result_from_error(e: ApiError) -> CartResult:
    if e.status == 401:
        return CartResult("unauthenticated", MSG_LOGIN_REQUIRED)
    if e.status == 404:
        return CartResult("unavailable", MSG_UNAVAILABLE)
    return CartResult("failed", e.message or MSG_FAILED)


@dataclass
class _Removed:
    item: CartLineItem
    timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False)
    restoring: bool = False


class CartStore:
    def __init__(self, client: ApiClient, undo_window: float = 6.0):
        self._client = client
        self.undo_window = undo_window

        self.cart: Cart = Cart()
        self.applied_coupon: Optional[Coupon] = None
        self.saved: List[CartLineItem] = []

        self._deselected: set[str] = set()
        self._last_removed: Optional[_Removed] = None
        self._closed = False
        self._listeners: List[Callable[[], None]] = []

    # ---------------------------
    # Read side
    # ---------------------------

    @property
    def items(self) -> tuple[CartLineItem, ...]:
        return self.cart.items

    @property
    def total_price(self) -> Decimal:
        return self.cart.total_price

    @property
    def can_undo(self) -> bool:
        return self._last_removed is not None

    @property
    def last_removed(self) -> Optional[CartLineItem]:
        return self._last_removed.item if self._last_removed else None

    def is_selected(self, line_item_id: str) -> bool:
        return line_item_id not in self._deselected

    def selected_items(self) -> List[CartLineItem]:
        return [i for i in self.cart.items if i.id not in self._deselected]

    def breakdown(self) -> PriceBreakdown:
        """Display pricing for the selected items only."""
        return compute_breakdown(self.selected_items(), self.applied_coupon)

    def add_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()

    # ---------------------------
    # Selection & coupon (local only)
    # ---------------------------

    def select(self, line_item_id: str, selected: bool = True) -> None:
        if selected:
            self._deselected.discard(line_item_id)
        else:
            self._deselected.add(line_item_id)
        self._notify()

    def select_all(self, selected: bool = True) -> None:
        self._deselected = set() if selected else {i.id for i in self.cart.items}
        self._notify()

    def apply_coupon(self, code: str) -> CouponResult:
        """Replace the applied coupon. An unknown code changes nothing."""
        result = resolve_coupon(code)
        if result.ok:
            self.applied_coupon = result.coupon
            self._notify()
        return result

    def remove_coupon(self) -> None:
        self.applied_coupon = None
        self._notify()

    # ---------------------------
    # Remote mutations
    # ---------------------------

    async def _mutate(
        self, op_name: str, call: Callable[[], Awaitable[Cart]]
    ) -> CartResult:
        if not self._client.session.is_authenticated:
            return CartResult("unauthenticated", MSG_LOGIN_REQUIRED)
        try:
            cart = await call()
        except ApiError as e:
            _logger.warning(f"Cart {op_name} failed ({e.status}): {e.message}")
            return _result_from_error(e)

        if self._closed:
            _logger.debug(f"Cart {op_name} finished after close, ignoring response.")
            return CartResult("ok", cart=cart)

        self.cart = cart
        present = {i.id for i in cart.items}
        self._deselected &= present
        self._notify()
        return CartResult("ok", cart=cart)

    async def hydrate(self) -> CartResult:
        """Fetch the server cart, typically once after login."""
        return await self._mutate("load", lambda: endpoints.get_cart(self._client))

    async def add(self, product_id: str, quantity: int = 1) -> CartResult:
        quantity = clamp_quantity(quantity)
        return await self._mutate(
            "add", lambda: endpoints.add_to_cart(self._client, product_id, quantity)
        )

    async def update_quantity(self, line_item_id: str, new_quantity: int) -> CartResult:
        quantity = clamp_quantity(new_quantity)
        return await self._mutate(
            "update",
            lambda: endpoints.update_cart_item(self._client, line_item_id, quantity),
        )

    async def remove(self, line_item_id: str) -> CartResult:
        """Remove a line item and keep it around for undo_window seconds."""
        item = self.cart.find(line_item_id)
        result = await self._mutate(
            "remove", lambda: endpoints.remove_cart_item(self._client, line_item_id)
        )
        if result.ok and item is not None and not self._closed:
            self._hold_for_undo(item)
        return result

    async def clear(self) -> CartResult:
        result = await self._mutate("clear", lambda: endpoints.clear_cart(self._client))
        if result.ok and not self._closed:
            # an emptied cart has no total, whatever the response carried
            self.cart = Cart()
            self._notify()
        return result

    async def remove_ordered(self, ordered: Sequence[CartLineItem]) -> CartResult:
        """Drop the line items an order was just placed for. Not undoable."""
        ids = [i.id for i in ordered]
        if set(ids) >= {i.id for i in self.cart.items}:
            result = await self.clear()
        else:
            result = CartResult("ok", cart=self.cart)
            for line_item_id in ids:
                result = await self._mutate(
                    "remove",
                    lambda i=line_item_id: endpoints.remove_cart_item(self._client, i),
                )
                if not result.ok:
                    break
        if result.ok:
            self.applied_coupon = None
            self._notify()
        return result

    # ---------------------------
    # Undo
    # ---------------------------

    def _hold_for_undo(self, item: CartLineItem) -> None:
        self._drop_undo()
        removed = _Removed(item)
        removed.timer = asyncio.get_running_loop().call_later(
            self.undo_window, self._expire_undo, removed
        )
        self._last_removed = removed

    def _expire_undo(self, removed: _Removed) -> None:
        if self._last_removed is removed:
            self._last_removed = None
            self._notify()

    def _drop_undo(self) -> None:
        if self._last_removed and self._last_removed.timer:
            self._last_removed.timer.cancel()
        self._last_removed = None

    async def undo(self) -> CartResult:
        """Put the last removed item back, if the undo window is still open."""
        if self._last_removed is None:
            return CartResult("failed", "Nothing to undo.")
        removed = self._last_removed
        if removed.restoring:
            return CartResult("failed", "Undo is already in progress.")
        removed.restoring = True
        try:
            result = await self.add(removed.item.product_id, removed.item.quantity)
        finally:
            removed.restoring = False
        # a failed re-add keeps the item for another try while the window lasts
        if result.ok and self._last_removed is removed:
            self._drop_undo()
            self._notify()
        return result

    # ---------------------------
    # Save for later (local list)
    # ---------------------------

    async def save_for_later(self, line_item_id: str) -> CartResult:
        item = self.cart.find(line_item_id)
        if item is None:
            return CartResult("failed", "Item is not in the cart.")
        result = await self._mutate(
            "save", lambda: endpoints.remove_cart_item(self._client, line_item_id)
        )
        if result.ok:
            self.saved.append(item)
            self._notify()
        return result

    async def restore_saved(self, line_item_id: str) -> CartResult:
        for item in self.saved:
            if item.id == line_item_id:
                break
        else:
            return CartResult("failed", "Item is not in the saved list.")
        result = await self.add(item.product_id, item.quantity)
        if result.ok:
            self.saved = [s for s in self.saved if s.id != line_item_id]
            self._notify()
        return result

    # ---------------------------
    # Lifecycle
    # ---------------------------

    def reset(self) -> None:
        """Forget everything local, e.g. on logout."""
        self._drop_undo()
        self.cart = Cart()
        self.applied_coupon = None
        self.saved = []
        self._deselected = set()
        self._notify()

    def close(self) -> None:
        """Stop applying late responses. Used when the owning view goes away."""
        self._closed = True
        self._drop_undo()

    def reopen(self) -> None:
        self._closed = False
