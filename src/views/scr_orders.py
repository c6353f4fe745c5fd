from math import ceil
from typing import List, Optional

from textual import on, work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.events import ScreenResume
from textual.reactive import reactive
from textual.widgets import Button, DataTable, Label, MarkdownViewer

import api.endpoints as endpoints
from api.client import ApiError
from db.models import Order
from utils.logger import get_logger
from utils.messages import ModeSwitchedMessage, NewOrderMessage
from utils.pure import format_money, generate_markdown_table, parse_timestamp
from views.base_screen import BaseScreen
from views.modal_dialog import confirm

_logger = get_logger(__name__)

PAGE_SIZE = 5


class OrdersScreen(BaseScreen):
    """
    Customers can browse their orders with pagination, view details and
    cancel orders that have not shipped yet.

    Layout:
    - Markdown detail view at the top, showing selected order details.
    - Orders table below (newest first), 5 per page with Prev/Next.
    """

    DEFAULT_CSS = """
    OrdersScreen #md-order-detail {
        height: 1fr;
    }
    OrdersScreen #table-orders {
        height: auto;
        max-height: 12;
    }
    OrdersScreen #hort-table-control {
        height: auto;
    }
    OrdersScreen #label-page {
        padding: 1 1;
    }
    """

    BINDINGS = [
        Binding("enter", "noop", "View Order Detail", show=True, key_display="⏎"),
    ]

    page_idx = reactive(1, init=False)
    page_cnt = reactive(1)

    def __init__(self) -> None:
        super().__init__()
        self._orders: List[Order] = []
        self._selected: Optional[Order] = None

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical():
            yield MarkdownViewer(id="md-order-detail", show_table_of_contents=False)
            yield DataTable(id="table-orders")
        with Horizontal(id="hort-table-control"):
            yield Button("Refresh", id="btn-refresh")
            yield Button("<", id="btn-prev")
            yield Label("1 / 1", id="label-page")
            yield Button(">", id="btn-next")
            yield Button("Cancel Order", id="btn-cancel-order", variant="error")

    def on_mount(self) -> None:
        table = self.query_one(DataTable)
        table.cursor_type = "row"
        table.zebra_stripes = True
        table.add_columns("Order No", "Date", "Status", "Shipping Address", "Total")
        self._load_orders()

    @on(Button.Pressed, "#btn-refresh")
    @on(ModeSwitchedMessage)
    @on(ScreenResume)
    @on(NewOrderMessage)
    def handle_refresh(self):
        self._load_orders()

    @on(DataTable.RowHighlighted)
    def handle_row_highlight(self, event: DataTable.RowHighlighted) -> None:
        order_id = event.row_key.value if event.row_key else None
        if order_id:
            self._load_and_render_detail(order_id)

    def watch_page_idx(self, old: int, new: int) -> None:
        self._render_page()

    def _refresh_buttons(self) -> None:
        self.query_one("#btn-prev", Button).disabled = self.page_idx <= 1
        self.query_one("#btn-next", Button).disabled = self.page_idx >= self.page_cnt
        self.query_one("#label-page", Label).update(f"{self.page_idx} / {self.page_cnt}")
        self.query_one("#btn-cancel-order", Button).disabled = not (
            self._selected and self._selected.can_cancel
        )

    @on(Button.Pressed, "#btn-prev")
    def handle_prev(self) -> None:
        if self.page_idx > 1:
            self.page_idx -= 1

    @on(Button.Pressed, "#btn-next")
    def handle_next(self) -> None:
        if self.page_idx < self.page_cnt:
            self.page_idx += 1

    @work(exclusive=True, group="orders")
    async def _load_orders(self) -> None:
        try:
            self._orders = await endpoints.list_orders(self.app.state.client)
        except ApiError as e:
            _logger.warning(f"Could not load orders: {e.message}")
            self.notify(e.message, severity="error")
            self._orders = []
        self.page_cnt = max(ceil(len(self._orders) / PAGE_SIZE), 1)
        if self.page_idx > self.page_cnt:
            self.page_idx = 1
        self._render_page()

    def _render_page(self) -> None:
        table = self.query_one(DataTable)
        table.clear()
        start = (self.page_idx - 1) * PAGE_SIZE
        page = self._orders[start : start + PAGE_SIZE]
        for o in page:
            date = parse_timestamp(o.created_at).astimezone().strftime("%Y-%m-%d") if o.created_at else "-"
            table.add_row(
                o.order_id,
                date,
                o.status,
                o.shipping_address,
                format_money(o.total_amount),
                key=o.order_id,
            )
        if page:
            table.move_cursor(row=0)
        else:
            self._selected = None
            self._render_detail(None)
        self._refresh_buttons()

    @work(exclusive=True, group="detail")
    async def _load_and_render_detail(self, order_id: str) -> None:
        try:
            order = await endpoints.get_order(self.app.state.client, order_id)
        except ApiError as e:
            _logger.info(f"Order {order_id} detail failed: {e.message}")
            order = next((o for o in self._orders if o.order_id == order_id), None)
        if order is None:
            self.notify(f"Order {order_id} was not found.", severity="warning")
        self._selected = order
        self._render_detail(order)
        self._refresh_buttons()

    def _render_detail(self, order: Optional[Order]) -> None:
        viewer = self.query_one("#md-order-detail", MarkdownViewer)
        if not order:
            viewer.document.update("### Select an order to view its details.")
            return

        header = (
            f"### Order #{order.order_id}\n"
            f"Status: **{order.status}**  \n"
            f"Payment: {order.payment_method or '-'}  \n"
            f"Ship To: {order.shipping_address or '-'}\n\n"
        )
        rows = [
            [ol.name or ol.product_id, ol.quantity, format_money(ol.price), format_money(ol.line_total)]
            for ol in order.lines
        ]
        table = generate_markdown_table(
            ["Product", "Qty", "Unit Price", "Line Total"], rows, ["l", "r", "r", "r"]
        )
        footer = f"\n\n**Grand Total:** {format_money(order.total_amount)}"
        viewer.document.update(header + table + footer)

    @on(Button.Pressed, "#btn-cancel-order")
    @work(exclusive=True, group="cancel")
    async def handle_cancel_order(self) -> None:
        order = self._selected
        if order is None or not order.can_cancel:
            return
        if not await self.app.push_screen_wait(
            confirm(f"Cancel order {order.order_id}?", tone="error")
        ):
            return
        try:
            await endpoints.cancel_order(self.app.state.client, order.order_id)
        except ApiError as e:
            self.notify(e.message, severity="error")
            return
        self.notify(f"Order {order.order_id} cancelled.")
        self._load_orders()

    def action_noop(self) -> None:
        pass
