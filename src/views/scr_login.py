from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.events import Key
from textual.widgets import Button, Input, Label

import api.endpoints as endpoints
from api.client import ApiError
from utils.logger import get_logger
from utils.messages import UserLoginMessage
from views.base_screen import BaseScreen
from views.modal_dialog import QuitDialogModal

_logger = get_logger(__name__)


class LoginScreen(BaseScreen):
    """
    Dismissed once the session holds tokens and the cart has been loaded.
    """

    DEFAULT_CSS = """
    LoginScreen {
        align: center middle;
    }
    LoginScreen #div-login {
        width: 60;
        height: auto;
        padding: 1 2;
        border: round $primary;
    }
    LoginScreen #div-login-btns {
        height: auto;
        align-horizontal: right;
        margin-top: 1;
    }
    LoginScreen #div-login-btns Button {
        margin-left: 1;
    }
    """

    def __init__(self):
        super().__init__()
        self.configure(header_sub_title="Login", show_sidebar=False)

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical(id="div-login"):
            yield Label("Email")
            yield Input(placeholder="user@example.com", id="input-login-email")
            yield Label("Password")
            yield Input(placeholder="*********", password=True, id="input-login-pwd")
            with Horizontal(id="div-login-btns"):
                yield Button("Quit", id="btn-quit")
                yield Button("Login", id="btn-login", variant="primary")

    def on_mount(self):
        self.query_one("#input-login-email").focus()

    def on_key(self, event: Key) -> None:
        if event.key == "enter" and self.focused == self.query_one("#input-login-pwd"):
            self.handle_login_submit()

    @on(Button.Pressed, "#btn-login")
    @work(exclusive=True)
    async def handle_login_submit(self) -> None:
        email = self.query_one("#input-login-email", Input).value.strip()
        pwd = self.query_one("#input-login-pwd", Input).value

        if not email or not pwd:
            self.notify("Email or password cannot be empty!", severity="error")
            return

        state = self.app.state
        try:
            data = await endpoints.login(state.client, email, pwd)
        except ApiError as e:
            _logger.info(f"Login failed for {email}: {e.message}")
            self.notify(e.message or "Invalid email or password.", severity="error")
            input_login_pwd = self.query_one("#input-login-pwd", Input)
            input_login_pwd.value = ""
            input_login_pwd.focus()
            input_login_pwd.add_class("-invalid")
            return

        user = data.get("user") if isinstance(data.get("user"), dict) else {}
        user.setdefault("email", email)
        await state.session.login(data["accessToken"], data.get("refreshToken", ""), user)
        await state.start_session()

        self.notify(data.get("message") or f"Welcome back, {email}!")
        self.app.post_message(UserLoginMessage())
        self.dismiss()

    @on(Button.Pressed, "#btn-quit")
    def handle_quit_(self) -> None:
        self.app.push_screen(QuitDialogModal())
