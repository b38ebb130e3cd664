"""
relaychat - Relay wire protocol definitions.

Every frame on the relay socket is a single JSON object (an "envelope")
carrying a ``type`` discriminator. This module turns raw frames into typed
envelopes and back. Decoding either returns one of the dataclasses below or
raises ProtocolError tagged with ``parse``, ``invalid`` or ``unknown``.
"""

import json
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .constants import DEFAULT_SYNC_SINCE, RELAY_MESSAGE_ID_PREFIX
from .errors import ProtocolError, ProtocolErrorKind


class EnvelopeType(str, Enum):
    """Envelope type definitions."""

    # Client -> relay
    REGISTER = "register"
    MESSAGE = "message"
    SYNC = "sync"
    CONVERSATIONS = "conversations"

    # Relay -> client
    REGISTERED = "registered"
    ACK = "ack"
    SYNC_DONE = "sync_done"
    ERROR = "error"


class ContentType(str, Enum):
    """Payload kinds carried in ``message.contentType``."""

    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ContentType":
        """Map a wire value to a ContentType, falling back to TEXT."""
        if not value:
            return cls.TEXT
        try:
            return cls(value.lower())
        except ValueError:
            return cls.TEXT

    @property
    def is_media(self) -> bool:
        return self in (ContentType.IMAGE, ContentType.AUDIO)


# Client -> relay envelopes


@dataclass(frozen=True)
class RegisterRequest:
    phone_number: str


@dataclass(frozen=True)
class SendRequest:
    to: str
    content: str
    content_type: str = ContentType.TEXT.value


@dataclass(frozen=True)
class SyncRequest:
    since: str = DEFAULT_SYNC_SINCE


@dataclass(frozen=True)
class ConversationsRequest:
    pass


ClientEnvelope = Union[RegisterRequest, SendRequest, SyncRequest, ConversationsRequest]


# Relay -> client envelopes


@dataclass(frozen=True)
class RegisteredReply:
    phone_number: str


@dataclass(frozen=True)
class DeliveredMessage:
    """A message pushed by the relay, either live or drained from the queue."""

    id: str
    sender: str
    recipient: str
    content: str
    content_type: str
    timestamp: str

    def to_envelope(self) -> Dict[str, str]:
        return {
            "type": EnvelopeType.MESSAGE.value,
            "id": self.id,
            "from": self.sender,
            "to": self.recipient,
            "content": self.content,
            "contentType": self.content_type,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class AckReply:
    id: str
    timestamp: str


@dataclass(frozen=True)
class SyncDoneReply:
    count: int = 0


@dataclass(frozen=True)
class ConversationListReply:
    conversations: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ErrorReply:
    code: str
    msg: str


ServerEnvelope = Union[
    RegisteredReply, DeliveredMessage, AckReply, SyncDoneReply, ConversationListReply, ErrorReply
]


def mint_message_id() -> str:
    """Create a relay message id: millisecond clock plus a random suffix."""
    return f"{RELAY_MESSAGE_ID_PREFIX}{int(time.time() * 1000)}_{secrets.token_hex(5)}"


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    now = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return now.replace("+00:00", "Z")


class Protocol:
    """Envelope codec shared by the relay and the client."""

    @staticmethod
    def encode(envelope: Dict[str, Any]) -> str:
        """Serialize an envelope dictionary to a JSON text frame."""
        return json.dumps(envelope, ensure_ascii=False)

    @staticmethod
    def parse_frame(raw: Union[str, bytes]) -> Dict[str, Any]:
        """
        Parse a raw frame into an envelope dictionary.

        Raises:
            ProtocolError: (parse) if the frame is not a JSON object
        """
        try:
            if isinstance(raw, (bytes, bytearray)):
                raw = raw.decode("utf-8")
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
            raise ProtocolError(
                ProtocolErrorKind.PARSE, "Invalid message", {"error": str(e)}
            ) from e

        if not isinstance(data, dict):
            raise ProtocolError(
                ProtocolErrorKind.PARSE,
                "Invalid message",
                {"error": f"expected JSON object, got {type(data).__name__}"},
            )
        return data

    @staticmethod
    def decode_request(raw: Union[str, bytes]) -> ClientEnvelope:
        """
        Decode a client frame received by the relay.

        Returns:
            One of RegisterRequest, SendRequest, SyncRequest, ConversationsRequest

        Raises:
            ProtocolError: parse, invalid or unknown
        """
        data = Protocol.parse_frame(raw)
        msg_type = data.get("type")

        if msg_type == EnvelopeType.REGISTER.value:
            phone = data.get("phoneNumber")
            if not isinstance(phone, str) or not phone.strip():
                raise ProtocolError(ProtocolErrorKind.INVALID, "Missing phoneNumber")
            return RegisterRequest(phone_number=phone)

        if msg_type == EnvelopeType.MESSAGE.value:
            to = data.get("to")
            content = data.get("content")
            content_type = data.get("contentType")
            # An empty string is valid content; only absence is rejected.
            if not isinstance(to, str) or not to or not isinstance(content, str):
                raise ProtocolError(ProtocolErrorKind.INVALID, "Missing fields")
            if content_type is not None and not isinstance(content_type, str):
                raise ProtocolError(ProtocolErrorKind.INVALID, "Invalid contentType")
            return SendRequest(
                to=to, content=content, content_type=content_type or ContentType.TEXT.value
            )

        if msg_type == EnvelopeType.SYNC.value:
            since = data.get("since")
            return SyncRequest(since=since if isinstance(since, str) else DEFAULT_SYNC_SINCE)

        if msg_type == EnvelopeType.CONVERSATIONS.value:
            return ConversationsRequest()

        raise ProtocolError(
            ProtocolErrorKind.UNKNOWN, "Unknown type", {"type": msg_type}
        )

    @staticmethod
    def decode_reply(raw: Union[str, bytes]) -> ServerEnvelope:
        """
        Decode a relay frame received by the client.

        Raises:
            ProtocolError: parse, invalid or unknown
        """
        data = Protocol.parse_frame(raw)
        msg_type = data.get("type")

        if msg_type == EnvelopeType.REGISTERED.value:
            return RegisteredReply(phone_number=str(data.get("phoneNumber", "")))

        if msg_type == EnvelopeType.MESSAGE.value:
            msg_id = data.get("id")
            sender = data.get("from")
            content = data.get("content")
            if not all(isinstance(v, str) for v in (msg_id, sender, content)) or not msg_id:
                raise ProtocolError(ProtocolErrorKind.INVALID, "Malformed message envelope")
            return DeliveredMessage(
                id=msg_id,
                sender=sender,
                recipient=str(data.get("to", "")),
                content=content,
                content_type=ContentType.parse(data.get("contentType")).value,
                timestamp=str(data.get("timestamp", "")),
            )

        if msg_type == EnvelopeType.ACK.value:
            msg_id = data.get("id")
            if not isinstance(msg_id, str) or not msg_id:
                raise ProtocolError(ProtocolErrorKind.INVALID, "Malformed ack envelope")
            return AckReply(id=msg_id, timestamp=str(data.get("timestamp", "")))

        if msg_type == EnvelopeType.SYNC_DONE.value:
            count = data.get("count", 0)
            return SyncDoneReply(count=count if isinstance(count, int) else 0)

        if msg_type == EnvelopeType.CONVERSATIONS.value:
            items = data.get("list", [])
            if not isinstance(items, list):
                items = []
            return ConversationListReply(conversations=[str(i) for i in items])

        if msg_type == EnvelopeType.ERROR.value:
            return ErrorReply(
                code=str(data.get("code", "")), msg=str(data.get("msg", "Server error"))
            )

        raise ProtocolError(
            ProtocolErrorKind.UNKNOWN, f"Unknown type: {msg_type}", {"type": msg_type}
        )

    # Client -> relay builders

    @staticmethod
    def create_register(phone_number: str) -> Dict[str, str]:
        return {"type": EnvelopeType.REGISTER.value, "phoneNumber": phone_number}

    @staticmethod
    def create_message(to: str, content: str, content_type: str = "text") -> Dict[str, str]:
        return {
            "type": EnvelopeType.MESSAGE.value,
            "to": to,
            "content": content,
            "contentType": content_type,
        }

    @staticmethod
    def create_sync(since: str = DEFAULT_SYNC_SINCE) -> Dict[str, str]:
        return {"type": EnvelopeType.SYNC.value, "since": since}

    @staticmethod
    def create_conversations() -> Dict[str, str]:
        return {"type": EnvelopeType.CONVERSATIONS.value}

    # Relay -> client builders

    @staticmethod
    def create_registered(phone_number: str) -> Dict[str, str]:
        return {"type": EnvelopeType.REGISTERED.value, "phoneNumber": phone_number}

    @staticmethod
    def create_ack(msg_id: str, timestamp: str) -> Dict[str, str]:
        return {"type": EnvelopeType.ACK.value, "id": msg_id, "timestamp": timestamp}

    @staticmethod
    def create_sync_done(count: int = 0) -> Dict[str, Any]:
        return {"type": EnvelopeType.SYNC_DONE.value, "count": count}

    @staticmethod
    def create_conversation_list(conversations: Optional[List[str]] = None) -> Dict[str, Any]:
        return {"type": EnvelopeType.CONVERSATIONS.value, "list": list(conversations or [])}
