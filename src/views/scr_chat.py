from rich.markup import escape
from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.events import ScreenResume, ScreenSuspend
from textual.widgets import Button, Input, Label, Static

from db.models import ChatMessage
from services.messaging import ConnectionState
from utils.messages import ChatUpdatedMessage
from utils.pure import format_time, group_by_day
from views.base_screen import BaseScreen
from views.modal_dialog import confirm

STATUS_TEXT = {
    ConnectionState.CONNECTED: "[green]Connected[/]",
    ConnectionState.CONNECTING: "[yellow]Connecting...[/]",
    ConnectionState.DISCONNECTED: "[dim]Disconnected[/]",
}

STATUS_MARK = {"queued": " [dim](queued)[/]", "sending": " [dim](sending)[/]", "confirmed": ""}


class ChatBubble(Static):
    DEFAULT_CSS = """
    ChatBubble {
        width: auto;
        max-width: 80%;
        padding: 0 1;
        margin: 0 1 1 1;
        border: round $secondary;
    }
    ChatBubble.-mine {
        border: round $primary;
    }
    """

    def __init__(self, message: ChatMessage):
        mine = message.sender_type == "user"
        who = "You" if mine else "Support"
        head = f"[b]{who}[/b] [dim]{format_time(message.timestamp)}[/]{STATUS_MARK[message.status]}"
        super().__init__(f"{head}\n{escape(message.message)}", classes="-mine" if mine else "")


class ChatScreen(BaseScreen):
    """
    Conversation with pharmacy support. The connection is only held while
    this screen is showing.
    """

    DEFAULT_CSS = """
    ChatScreen #hort-chat-status, ChatScreen #hort-chat-send {
        height: auto;
    }
    ChatScreen #label-chat-status {
        width: 1fr;
        padding: 1 1;
    }
    ChatScreen #vertscroll-messages {
        height: 1fr;
    }
    ChatScreen .day {
        width: 100%;
        content-align: center middle;
        color: $text-muted;
    }
    ChatScreen #input-chat {
        width: 1fr;
    }
    """

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical():
            with Horizontal(id="hort-chat-status"):
                yield Label("", id="label-chat-status")
                yield Button("Retry", id="btn-retry")
                yield Button("Clear history", id="btn-clear-chat")
            yield VerticalScroll(id="vertscroll-messages")
            with Horizontal(id="hort-chat-send"):
                yield Input(placeholder="Type a message...", id="input-chat")
                yield Button("Send", id="btn-send", variant="primary")

    @on(ScreenResume)
    @work(exclusive=True, group="chat-open")
    async def handle_resume(self):
        chat = self.app.state.chat
        if chat is None:
            await self.render_chat()
            return
        await chat.open()
        await chat.fetch_history(mark_as_read=True)
        await self.render_chat()
        self.query_one("#input-chat").focus()

    @on(ScreenSuspend)
    def handle_suspend(self):
        chat = self.app.state.chat
        if chat is not None:
            # run at app level, this screen's workers stop with it
            self.app.run_worker(chat.close(), group="chat-close")

    @on(ChatUpdatedMessage)
    async def handle_chat_updated(self):
        await self.render_chat()

    async def render_chat(self) -> None:
        chat = self.app.state.chat
        status = self.query_one("#label-chat-status", Label)
        messages = self.query_one("#vertscroll-messages")
        await messages.remove_children()

        if chat is None:
            status.update("[dim]Log in to chat with support.[/]")
            return

        text = STATUS_TEXT[chat.state]
        if chat.offline:
            text = "[red]Offline[/] - messages will be sent when the connection is back"
        if chat.queue:
            text += f" [dim]({len(chat.queue)} waiting)[/]"
        status.update(text)
        self.query_one("#btn-retry").display = chat.state is not ConnectionState.CONNECTED

        widgets = []
        for day, day_messages in group_by_day(chat.timeline(), lambda m: m.timestamp):
            widgets.append(Label(day, classes="day"))
            widgets.extend(ChatBubble(m) for m in day_messages)
        if not widgets:
            widgets.append(Label("No messages yet. Say hello!", classes="day"))
        await messages.mount_all(widgets)
        messages.scroll_end(animate=False)

    @on(Button.Pressed, "#btn-send")
    @on(Input.Submitted, "#input-chat")
    @work()
    async def handle_send(self):
        chat = self.app.state.chat
        field = self.query_one("#input-chat", Input)
        text = field.value
        if chat is None or not text.strip():
            return
        field.value = ""
        await chat.send(text)

    @on(Button.Pressed, "#btn-retry")
    @work(exclusive=True, group="chat-open")
    async def handle_retry(self):
        if self.app.state.chat is not None:
            await self.app.state.chat.retry()

    @on(Button.Pressed, "#btn-clear-chat")
    @work()
    async def handle_clear(self):
        chat = self.app.state.chat
        if chat is None:
            return
        if await self.app.push_screen_wait(
            confirm("Clear the chat history on this device? Unsent messages are dropped too.")
        ):
            await chat.clear_history()
