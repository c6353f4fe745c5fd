from textual import on, work
from textual.app import ComposeResult
from textual.containers import Container, Horizontal, HorizontalGroup, VerticalScroll
from textual.events import ScreenResume
from textual.message import Message
from textual.widgets import Button, Checkbox, Input, Label, Markdown, Rule

from db.models import CartLineItem
from services.cart import CartResult
from utils.messages import CartChangedMessage, ModeSwitchedMessage, NewOrderMessage
from utils.pure import format_money, generate_markdown_table
from views.base_screen import BaseScreen
from views.modal_checkout import CheckoutModal
from views.modal_dialog import confirm


class CartItemActionMessage(Message):
    bubble = True

    def __init__(self, action: str, item_id: str) -> None:
        super().__init__()
        self.action = action
        self.item_id = item_id


class CartItemActionLabel(Label):
    def __init__(self, content: str, item_id: str, **kwargs):
        super().__init__(content, **kwargs)
        self.item_id = item_id

    def action_item(self, action: str):
        self.post_message(CartItemActionMessage(action, self.item_id))


class CartItemWidget(HorizontalGroup):
    DEFAULT_CSS = """
    CartItemWidget {
        height: auto;
        padding: 0 1;
    }
    CartItemWidget #label-item-name {
        width: 1fr;
    }
    CartItemWidget Label {
        margin-right: 2;
        padding-top: 1;
    }
    """

    def __init__(self, item: CartLineItem, selected: bool):
        super().__init__()
        self.item = item
        self.selected = selected

    def compose(self):
        yield Checkbox("", value=self.selected, id="chk-item-select")
        yield Label(self.item.name or self.item.product_id, id="label-item-name")
        yield Label(format_money(self.item.price), id="label-item-price")
        yield CartItemActionLabel("[@click=item('dec')] - [/]", self.item.id)
        yield Label(f"x{self.item.quantity}", id="label-item-qty")
        yield CartItemActionLabel("[@click=item('inc')] + [/]", self.item.id)
        yield Label(format_money(self.item.line_total), id="label-item-total")
        yield CartItemActionLabel("[@click=item('save')]Save for later[/]", self.item.id)
        yield CartItemActionLabel("[@click=item('remove')]Remove[/]", self.item.id)

    @on(Checkbox.Changed)
    def handle_select(self, event: Checkbox.Changed):
        event.stop()
        self.app.state.cart.select(self.item.id, event.value)


class SavedItemWidget(HorizontalGroup):
    DEFAULT_CSS = """
    SavedItemWidget {
        height: auto;
        padding: 0 1;
    }
    SavedItemWidget Label {
        margin-right: 2;
    }
    """

    def __init__(self, item: CartLineItem):
        super().__init__()
        self.item = item

    def compose(self):
        yield Label(f"{self.item.name or self.item.product_id} x{self.item.quantity}")
        yield CartItemActionLabel("[@click=item('restore')]Move to cart[/]", self.item.id)


class CartScreen(BaseScreen):
    """
    Cart items, coupon, price breakdown and the way into checkout.
    """

    DEFAULT_CSS = """
    CartScreen #vertscroll-content {
        height: 1fr;
    }
    CartScreen .no-items {
        border: dashed $secondary;
    }
    CartScreen #hort-undo, CartScreen #hort-coupon, CartScreen #hort-add, CartScreen #hort-buttons {
        height: auto;
    }
    CartScreen #hort-undo {
        display: none;
    }
    CartScreen #hort-undo.-visible {
        display: block;
    }
    CartScreen Input {
        width: 30;
    }
    CartScreen #md-breakdown {
        height: auto;
    }
    CartScreen #vertscroll-saved {
        height: auto;
        max-height: 6;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._rendered = None

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Container():
            yield VerticalScroll(id="vertscroll-content")
            with Horizontal(id="hort-undo"):
                yield Label("", id="label-undo")
                yield Button("Undo", id="btn-undo", variant="warning")
            yield Label("Saved for later", id="label-saved")
            yield VerticalScroll(id="vertscroll-saved")
            yield Rule(line_style="dashed")
            with Horizontal(id="hort-add"):
                yield Input(placeholder="Product ID", id="input-product-id")
                yield Button("Add to cart", id="btn-add")
            with Horizontal(id="hort-coupon"):
                yield Input(placeholder="Coupon code", id="input-coupon")
                yield Button("Apply", id="btn-apply-coupon")
                yield Button("Remove coupon", id="btn-remove-coupon")
            yield Markdown("", id="md-breakdown")
            with Horizontal(id="hort-buttons"):
                yield Button("Clear Cart", id="btn-clear-cart")
                yield Button("Refresh", id="btn-refresh")
                yield Button("Checkout", id="btn-checkout", variant="primary")

    async def on_mount(self):
        await self.render_cart()

    def _report(self, result: CartResult, success: str = "") -> None:
        if result.ok:
            if success:
                self.notify(success)
        elif result.outcome == "unauthenticated":
            self.notify(result.message, severity="warning")
        else:
            self.notify(result.message, severity="error")

    @on(CartChangedMessage)
    @on(ModeSwitchedMessage)
    @on(ScreenResume)
    async def handle_cart_change(self):
        await self.render_cart()

    async def render_cart(self) -> None:
        """Redraw from the cart store. Item rows are only rebuilt when they changed."""
        cart = self.app.state.cart
        snapshot = (
            tuple((i.id, i.quantity, i.price, cart.is_selected(i.id)) for i in cart.items),
            tuple(s.id for s in cart.saved),
        )

        if snapshot != self._rendered:
            self._rendered = snapshot
            content = self.query_one("#vertscroll-content")
            await content.remove_children()
            await content.mount_all(
                [CartItemWidget(i, cart.is_selected(i.id)) for i in cart.items]
            )
            if not cart.items:
                await content.mount(Label("Your cart is empty."))
                content.add_class("no-items")
            else:
                content.remove_class("no-items")

            saved = self.query_one("#vertscroll-saved")
            await saved.remove_children()
            await saved.mount_all([SavedItemWidget(s) for s in cart.saved])
            self.query_one("#label-saved").display = bool(cart.saved)
            saved.display = bool(cart.saved)

        undo_bar = self.query_one("#hort-undo")
        if cart.can_undo:
            name = cart.last_removed.name or cart.last_removed.product_id
            self.query_one("#label-undo", Label).update(f"Removed {name}.")
            undo_bar.add_class("-visible")
        else:
            undo_bar.remove_class("-visible")

        await self.query_one("#md-breakdown", Markdown).update(self._breakdown_md())

    def _breakdown_md(self) -> str:
        cart = self.app.state.cart
        b = cart.breakdown()
        coupon = cart.applied_coupon
        discount_label = f"Discount ({coupon.code}, {coupon.percent}%)" if coupon else "Discount"
        shipping = "Free" if b.shipping == 0 and b.subtotal > 0 else format_money(b.shipping)
        rows = [
            ["Subtotal", format_money(b.subtotal)],
            [discount_label, "-" + format_money(b.discount)],
            ["Shipping", shipping],
            ["Tax (5%)", format_money(b.tax)],
            ["**Total**", f"**{format_money(b.total)}**"],
        ]
        selected = len(cart.selected_items())
        header = f"### Order Summary ({selected} of {len(cart.items)} items selected)\n\n"
        return header + generate_markdown_table(["Item", "Amount"], rows, ["l", "r"])

    # ---------------------------
    # Item actions
    # ---------------------------

    @on(CartItemActionMessage)
    @work()
    async def handle_item_action(self, message: CartItemActionMessage):
        cart = self.app.state.cart
        item = cart.cart.find(message.item_id)

        if message.action == "restore":
            self._report(await cart.restore_saved(message.item_id), "Item moved back to cart.")
            return
        if item is None:
            return

        if message.action == "inc":
            self._report(await cart.update_quantity(item.id, item.quantity + 1))
        elif message.action == "dec":
            if item.quantity <= 1:
                self.notify("Quantity cannot go below 1.", severity="warning")
                return
            self._report(await cart.update_quantity(item.id, item.quantity - 1))
        elif message.action == "remove":
            result = await cart.remove(item.id)
            self._report(
                result, f"Item removed. Undo within {cart.undo_window:.0f} seconds."
            )
        elif message.action == "save":
            self._report(await cart.save_for_later(item.id), "Item saved for later.")

    @on(Button.Pressed, "#btn-undo")
    @work(exclusive=True, group="undo")
    async def handle_undo(self):
        self._report(await self.app.state.cart.undo(), "Item restored.")

    @on(Button.Pressed, "#btn-add")
    @on(Input.Submitted, "#input-product-id")
    @work()
    async def handle_add(self):
        field = self.query_one("#input-product-id", Input)
        product_id = field.value.strip()
        if not product_id:
            self.notify("Enter a product id.", severity="warning")
            return
        result = await self.app.state.cart.add(product_id)
        self._report(result, "Added to cart.")
        if result.ok:
            field.value = ""

    # ---------------------------
    # Coupon
    # ---------------------------

    @on(Button.Pressed, "#btn-apply-coupon")
    @on(Input.Submitted, "#input-coupon")
    def handle_apply_coupon(self):
        field = self.query_one("#input-coupon", Input)
        result = self.app.state.cart.apply_coupon(field.value)
        if result.ok:
            self.notify(f"Coupon {result.coupon.code} applied: {result.coupon.percent}% off.")
            field.value = ""
        else:
            self.notify(result.error, severity="error")

    @on(Button.Pressed, "#btn-remove-coupon")
    def handle_remove_coupon(self):
        if self.app.state.cart.applied_coupon is None:
            self.notify("No coupon applied.", severity="warning")
            return
        self.app.state.cart.remove_coupon()

    # ---------------------------
    # Cart-wide actions
    # ---------------------------

    @on(Button.Pressed, "#btn-refresh")
    @work(exclusive=True, group="refresh")
    async def handle_refresh(self):
        self._report(await self.app.state.cart.hydrate())

    @on(Button.Pressed, "#btn-clear-cart")
    @work()
    async def handle_clear_cart(self) -> None:
        if not self.app.state.cart.items:
            self.app.notify("Cart is empty.", severity="warning")
            return

        if await self.app.push_screen_wait(
            confirm("Do you really want to remove all items from cart?", tone="error")
        ):
            self._report(await self.app.state.cart.clear(), "Cart cleared.")

    @on(Button.Pressed, "#btn-checkout")
    @work()
    async def handle_checkout(self) -> None:
        """
        Open up checkout over the selected items
        """
        state = self.app.state
        if not state.cart.items:
            self.app.notify("Cart is empty.", severity="warning")
            return
        if not state.cart.selected_items():
            self.app.notify("Select at least one item to check out.", severity="warning")
            return

        workflow = state.new_checkout()
        order = await self.app.push_screen_wait(CheckoutModal(workflow))
        if order is None:
            return

        self._report(await state.cart.remove_ordered(workflow.items))
        self.app.post_message(NewOrderMessage(order.order_id))
