from textual import on, work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.screen import Screen
from textual.widgets import Button, Footer, Header, Label, ListItem, ListView, Markdown

from utils.messages import (
    ChatUpdatedMessage,
    ModeSwitchedMessage,
    UserLoginMessage,
    UserLogoutMessage,
)
from utils.pure import generate_markdown_table
from views.modal_dialog import QuitDialogModal, confirm


class Sidebar(Container):
    DEFAULT_CSS = """
    Sidebar {
        dock: left;
        width: 30;
        height: 100%;
        padding: 0 1;
        border-right: vkey $primary 40%;
    }
    Sidebar Label {
        text-style: bold;
        margin-top: 1;
    }
    Sidebar #btn-logout {
        width: 100%;
    }
    Sidebar ListView {
        height: auto;
    }
    """

    init_mode = ""

    def compose(self) -> ComposeResult:
        yield Label("Account", id="label-info-1")
        yield Markdown("", id="md-userinfo")
        yield Button("Log out", id="btn-logout", variant="error")
        yield Label("Menu", id="label-info-2")
        yield ListView(id="list-menu")

    async def on_mount(self):
        self.init_mode = self.app.current_mode
        await self.refresh_user_info()

        list_menu: ListView = self.query_one("#list-menu")
        await list_menu.clear()
        await list_menu.extend(
            [
                ListItem(Label(self._menu_text(k, v)), id="list-menu-item-" + k)
                for k, v in self.app.MENU_MODES.items()
            ]
        )
        self.highlight_item(self.init_mode)

    async def refresh_user_info(self) -> None:
        state = self.app.state
        if not state.session.is_authenticated:
            await self.query_one(Markdown).update("_Not logged in_")
            return
        table_rows = [
            ["Email", state.email or "-"],
            ["User ID", state.user_id or "-"],
        ]
        md_table_str = generate_markdown_table(None, table_rows, ["l", "l"])
        await self.query_one(Markdown).update(md_table_str)

    def _menu_text(self, mode: str, title: str) -> str:
        chat = self.app.state.chat
        if mode == "chat" and chat is not None and chat.unread_count:
            return f"{title} ({chat.unread_count})"
        return title

    def refresh_badges(self) -> None:
        for item in self.query_one("#list-menu").children:
            mode = item.id.removeprefix("list-menu-item-")
            title = self.app.MENU_MODES.get(mode)
            if title:
                item.query_one(Label).update(self._menu_text(mode, title))

    async def on_list_view_selected(self, event: ListView.Selected):
        selected_mode = event.item.id.removeprefix("list-menu-item-")
        self.highlight_item(self.init_mode)
        if self.app.current_mode != selected_mode:
            self.app.post_message(ModeSwitchedMessage(self.app.current_mode, selected_mode))
            await self.app.switch_mode(selected_mode)

    @on(Button.Pressed, "#btn-logout")
    @work()
    async def handle_logout(self):
        if not await self.app.push_screen_wait(confirm("Are you sure you want to log out?")):
            return
        self.app.post_message(UserLogoutMessage())

    def highlight_item(self, mode_str: str):
        for item in self.query_one("#list-menu").children:
            item.highlighted = item.id == "list-menu-item-" + mode_str


class BaseScreen(Screen):
    """
    Inherited by all screens, contains common elements like
    headers, footers, sidebar, and keybindings.
    """

    BINDINGS = [
        Binding("ctrl+z", "quit", "Quit App", show=True),
    ]

    def __init__(self):
        super().__init__()

        self.configure()

    def configure(
        self,
        header_sub_title: str = "",
        show_sidebar: bool = True,
    ) -> None:
        """
        configure behavior of the base screen
        :return:
        """

        # subtitle follows the menu title of the mode this screen belongs to
        self.sub_title = header_sub_title
        for k, v in self.app.MODES.items():
            if isinstance(v, type) and isinstance(self, v):
                self.sub_title = self.app.MENU_MODES.get(k, header_sub_title)

        self._show_sidebar = show_sidebar

    def compose(self) -> ComposeResult:
        if self._show_sidebar:
            yield Sidebar()
        yield Header()
        yield Footer(show_command_palette=False)

    @on(UserLoginMessage)
    async def handle_user_login(self):
        for sidebar in self.query(Sidebar):
            await sidebar.refresh_user_info()

    @on(ChatUpdatedMessage)
    def handle_chat_badge(self):
        for sidebar in self.query(Sidebar):
            sidebar.refresh_badges()

    @work()
    async def action_quit(self):
        await self.app.push_screen_wait(QuitDialogModal())
