"""
Chat wire events.

Client to server: joinUser, sendDirectMessage.
Server to client: receiveDirectMessage, messageSent.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union

from db.models import ChatMessage, SenderType

JOIN_USER = "joinUser"
SEND_DIRECT_MESSAGE = "sendDirectMessage"
RECEIVE_DIRECT_MESSAGE = "receiveDirectMessage"
MESSAGE_SENT = "messageSent"


@dataclass(frozen=True)
class JoinUser:
    user_id: str


@dataclass(frozen=True)
class SendDirectMessage:
    sender_id: str
    receiver_id: str
    message: str
    sender_type: SenderType = "user"

    def to_json(self) -> dict:
        return {
            "senderId": self.sender_id,
            "receiverId": self.receiver_id,
            "message": self.message,
            "senderType": self.sender_type,
        }

    @classmethod
    def from_json(cls, data: dict) -> SendDirectMessage:
        return cls(
            sender_id=str(data["senderId"]),
            receiver_id=str(data["receiverId"]),
            message=str(data["message"]),
            sender_type="support" if data.get("senderType") == "support" else "user",
        )


@dataclass(frozen=True)
class ReceiveDirectMessage:
    message: ChatMessage


@dataclass(frozen=True)
class MessageSent:
    message: ChatMessage


OutgoingEvent = Union[JoinUser, SendDirectMessage]
IncomingEvent = Union[ReceiveDirectMessage, MessageSent]


def encode_event(event: OutgoingEvent) -> Tuple[str, Any]:
    """Return (event name, payload) ready to emit."""
    if isinstance(event, JoinUser):
        return JOIN_USER, event.user_id
    if isinstance(event, SendDirectMessage):
        return SEND_DIRECT_MESSAGE, event.to_json()
    raise ValueError(f"not an outgoing chat event: {event!r}")


def decode_event(name: str, payload: Any, user_id: Optional[str] = None) -> IncomingEvent:
    if not isinstance(payload, dict):
        raise ValueError(f"{name} payload must be an object, got {type(payload).__name__}")
    if name == RECEIVE_DIRECT_MESSAGE:
        return ReceiveDirectMessage(ChatMessage.from_json(payload, user_id))
    if name == MESSAGE_SENT:
        return MessageSent(ChatMessage.from_json(payload, user_id))
    raise ValueError(f"unknown chat event: {name}")
