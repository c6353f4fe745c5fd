from textual import on, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import LoadingIndicator

from utils.logger import get_logger
from utils.messages import (
    CartChangedMessage,
    ChatUpdatedMessage,
    ModeSwitchedMessage,
    QuitRequestedMessage,
    UserLogoutMessage,
)
from utils.state import GlobalState
from views.scr_cart import CartScreen
from views.scr_chat import ChatScreen
from views.scr_login import LoginScreen
from views.scr_orders import OrdersScreen

_logger = get_logger(__name__)


class StorefrontApp(App):
    BINDINGS = [
        Binding("ctrl+t", "switch_light", "Toggle Theme", show=True),
    ]

    MODES = {
        "cart": CartScreen,
        "orders": OrdersScreen,
        "chat": ChatScreen,
    }

    MENU_MODES = {
        "cart": "Cart",
        "orders": "Orders",
        "chat": "Support Chat",
    }

    TITLE = "MediSynthia"

    state: GlobalState

    def __init__(self, state: GlobalState | None = None):
        super().__init__()
        self.state = state or GlobalState()
        self.state.cart.add_listener(lambda: self._broadcast(CartChangedMessage()))
        self.state.session.add_logout_listener(self._on_session_lost)

    def compose(self) -> ComposeResult:
        yield LoadingIndicator()

    async def on_mount(self) -> None:
        self.main_flow()

    def action_switch_light(self):
        if self.theme == "textual-dark":
            self.theme = "solarized-light"
        else:
            self.theme = "textual-dark"
        self.notify(f"Theme changed to {self.theme}")

    def _broadcast(self, message) -> None:
        """Store callbacks arrive outside the DOM; hand them to whatever screen is showing."""
        self.screen.post_message(message)

    def _watch_chat(self) -> None:
        chat = self.state.chat
        if chat is None:
            return
        chat.add_listener(lambda: self._broadcast(ChatUpdatedMessage()))
        chat.add_support_listener(self._on_support_message)

    def _on_support_message(self, message) -> None:
        if self.current_mode != "chat":
            self.notify(message.message[:80], title="New message from support")

    def _on_session_lost(self) -> None:
        # fires for explicit logout too; end_session below is idempotent
        self.post_message(UserLogoutMessage())

    @on(UserLogoutMessage)
    @work(group="session")
    async def handle_user_logout(self):
        if self.state.chat is None and not self.state.session.is_authenticated:
            # already torn down by an earlier logout message
            return
        _logger.info("Session ended, returning to login.")
        await self.state.end_session()
        self.notify("You have been logged out.")
        self.main_flow()

    @on(QuitRequestedMessage)
    @work
    async def handle_quit(self):
        await self.state.close()
        self.exit()

    @work(exclusive=True, group="login")
    async def main_flow(self):
        if not await self.state.restore_session():
            await self.push_screen_wait(LoginScreen())
        self._watch_chat()
        self.post_message(ModeSwitchedMessage(self.current_mode, "cart"))
        await self.switch_mode("cart")


def main() -> None:
    app = StorefrontApp()
    app.run()


if __name__ == "__main__":
    main()
