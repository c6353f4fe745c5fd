from typing import Optional

from textual import events, on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import (
    Button,
    ContentSwitcher,
    Input,
    Label,
    Markdown,
    MarkdownViewer,
    RadioButton,
    RadioSet,
)

from db.models import Order
from services.checkout import (
    FIELD_LABELS,
    CheckoutStep,
    CheckoutWorkflow,
    DeliveryOption,
    PaymentMethod,
)
from utils.pure import format_money, generate_markdown_table
from views.modal_dialog import DialogModal

STEP_TITLES = {
    CheckoutStep.SHIPPING: "Shipping details",
    CheckoutStep.DELIVERY: "Delivery option",
    CheckoutStep.PAYMENT: "Payment method",
    CheckoutStep.REVIEW: "Review your order",
    CheckoutStep.PLACED: "Order placed",
}

PLACEHOLDERS = {
    "full_name": "Jane Doe",
    "email": "user@example.com",
    "phone": "+1 555 0100",
    "address": "123 Main St, Anytown, ST 00000",
}


class CheckoutModal(ModalScreen[Optional[Order]]):
    """
    Step-by-step checkout over a CheckoutWorkflow.
    Dismisses with the placed Order, or None if the user backs out.
    """

    DEFAULT_CSS = """
    CheckoutModal {
        align: center middle;
    }
    CheckoutModal > Vertical {
        width: 90%;
        height: 90%;
        padding: 1 2;
        border: thick $primary 60%;
        background: $surface;
    }
    CheckoutModal #label-step {
        text-style: bold;
        margin-bottom: 1;
    }
    CheckoutModal ContentSwitcher {
        height: 1fr;
    }
    CheckoutModal #hort-checkout-btns {
        height: auto;
        align-horizontal: right;
    }
    CheckoutModal #hort-checkout-btns Button {
        margin-left: 1;
    }
    """

    def __init__(self, workflow: CheckoutWorkflow):
        super().__init__()
        self.workflow = workflow

    def compose(self) -> ComposeResult:
        with Vertical():
            yield Label("", id="label-step")
            with ContentSwitcher(initial="step-shipping"):
                with Vertical(id="step-shipping"):
                    for name, label in FIELD_LABELS.items():
                        yield Label(label)
                        yield Input(placeholder=PLACEHOLDERS[name], id=f"input-{name}")
                with RadioSet(id="step-delivery"):
                    for option in DeliveryOption:
                        cost = "Free" if not option.cost else format_money(option.cost)
                        yield RadioButton(
                            f"{option.label} - {cost}",
                            value=option is self.workflow.delivery,
                            id=f"radio-delivery-{option.key}",
                        )
                with RadioSet(id="step-payment"):
                    for method in PaymentMethod:
                        yield RadioButton(method.label, id=f"radio-payment-{method.key}")
                yield MarkdownViewer("", id="step-review", show_table_of_contents=False)
                yield Markdown("", id="step-placed")
            with Horizontal(id="hort-checkout-btns"):
                yield Button("Cancel", id="btn-quit")
                yield Button("Back", id="btn-back")
                yield Button("Next", id="btn-next", variant="primary")
                yield Button("Place Order", id="btn-submit", variant="success")

    async def on_mount(self):
        await self._show_step()
        self.query_one("#input-full_name").focus()

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            self.handle_quit()

    async def _show_step(self) -> None:
        step = self.workflow.step
        if step is CheckoutStep.PLACED:
            title = STEP_TITLES[step]
        else:
            title = f"Step {step.value} of 4: {STEP_TITLES[step]}"
        self.query_one("#label-step", Label).update(title)

        if step is CheckoutStep.REVIEW:
            await self.query_one(MarkdownViewer).document.update(self._review_md())
        if step is CheckoutStep.PLACED:
            await self.query_one("#step-placed", Markdown).update(self._receipt_md())
        self.query_one(ContentSwitcher).current = f"step-{step.name.lower()}"

        placed = step is CheckoutStep.PLACED
        self.query_one("#btn-back").display = step not in (CheckoutStep.SHIPPING, CheckoutStep.PLACED)
        self.query_one("#btn-next").display = step.value < CheckoutStep.REVIEW.value
        self.query_one("#btn-submit").display = step is CheckoutStep.REVIEW
        self.query_one("#btn-quit", Button).label = "Close" if placed else "Cancel"

    def _review_md(self) -> str:
        wf = self.workflow
        headers = ["Product Name", "Unit Price", "Quantity", "Total Price"]
        rows = [
            [i.name or i.product_id, format_money(i.price), i.quantity, format_money(i.line_total)]
            for i in wf.items
        ]
        b = wf.breakdown
        delivery = wf.delivery or DeliveryOption.STANDARD
        s = wf.shipping
        md = "### Order Summary\n\n"
        md += generate_markdown_table(headers, rows, ["l", "r", "c", "r"])
        md += "\n\n### Ship To\n\n"
        md += f"{s.full_name}  \n{s.address}  \n{s.email} / {s.phone}\n\n"
        md += f"**Delivery:** {delivery.label}  \n"
        md += f"**Payment:** {wf.payment.label if wf.payment else '-'}\n\n"
        totals = [
            ["Subtotal", format_money(b.subtotal)],
            ["Discount", "-" + format_money(b.discount)],
            ["Shipping", format_money(b.shipping)],
            ["Delivery", format_money(delivery.cost)],
            ["Tax", format_money(b.tax)],
            ["**Total**", f"**{format_money(wf.total)}**"],
        ]
        md += generate_markdown_table(["", "Amount"], totals, ["l", "r"])
        return md

    def _receipt_md(self) -> str:
        order = self.workflow.order
        return (
            "### Thank you!\n\n"
            f"Your order number is **{order.order_id}**.  \n"
            f"Status: {order.status}  \n"
            f"Total: {format_money(order.total_amount)}\n"
        )

    def _sync_shipping(self) -> None:
        self.workflow.update_shipping(
            **{name: self.query_one(f"#input-{name}", Input).value for name in FIELD_LABELS}
        )

    @on(RadioSet.Changed, "#step-delivery")
    def handle_delivery(self, event: RadioSet.Changed):
        key = event.pressed.id.removeprefix("radio-delivery-")
        self.workflow.select_delivery(next(o for o in DeliveryOption if o.key == key))

    @on(RadioSet.Changed, "#step-payment")
    def handle_payment(self, event: RadioSet.Changed):
        key = event.pressed.id.removeprefix("radio-payment-")
        self.workflow.select_payment(next(m for m in PaymentMethod if m.key == key))

    @on(Button.Pressed, "#btn-next")
    async def handle_next(self):
        if self.workflow.step is CheckoutStep.SHIPPING:
            self._sync_shipping()
        result = self.workflow.advance()
        if not result.ok:
            self.notify(result.message, severity="error")
            return
        await self._show_step()

    @on(Button.Pressed, "#btn-back")
    async def handle_back(self):
        if self.workflow.back().ok:
            await self._show_step()

    @on(Button.Pressed, "#btn-submit")
    @work(group="place-order")
    async def handle_submit(self):
        armed = self.workflow.request_place_order()
        if not armed.ok:
            self.notify(armed.message, severity="error")
            return

        if not await self.app.push_screen_wait(
            DialogModal(
                f"Place order for {format_money(self.workflow.total)}? This cannot be undone.",
                primary_text="Yes",
                secondary_text="No",
                tone="positive",
            )
        ):
            self.workflow.cancel_place_order()
            return

        self.query_one("#btn-submit", Button).disabled = True
        result = await self.workflow.confirm_place_order()
        self.query_one("#btn-submit", Button).disabled = False
        if not result.ok:
            self.notify(result.message, severity="error")
            return

        self.notify(f"Order placed. Your order number is {self.workflow.order.order_id}.")
        await self._show_step()

    @on(Button.Pressed, "#btn-quit")
    def handle_quit(self):
        if self.workflow.placing:
            return
        self.dismiss(self.workflow.order)
