from textual.message import Message


class QuitRequestedMessage(Message):
    """
    broadcasted when the app is about to quit
    """

    bubble = True


class UserLogoutMessage(Message):
    """
    broadcasted after the session is cleared, whether by the user or by a failed token refresh
    """

    bubble = True


class UserLoginMessage(Message):
    """
    Fired once the session is stored and the cart hydrated, so screens can refresh
    """

    bubble = True


class CartChangedMessage(Message):
    """
    Fired whenever the cart store reports a change.
    Post at App level so every screen sees it.
    """

    bubble = True


class NewOrderMessage(Message):
    """
    Fired when checkout places an order.
    Listened to by the orders screen
    """

    bubble = True

    def __init__(self, order_id: str) -> None:
        super().__init__()
        self.order_id = order_id


class ChatUpdatedMessage(Message):
    """
    history, queue, unread count or connection state of the chat changed
    """

    bubble = True


class ModeSwitchedMessage(Message):
    """
    fired whenever switch_mode is called
    must be fired from app level
    """

    bubble = True

    def __init__(self, old_mode: str, new_mode: str) -> None:
        super().__init__()
        self.old_mode = old_mode
        self.new_mode = new_mode
