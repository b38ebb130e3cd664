"""
relaychat - Message storage and management.

Handles conversation persistence for the client. Each conversation lives in
its own encrypted file under ``<data_dir>/conversations`` and every write
re-serializes and re-encrypts the whole conversation, then atomically
replaces the file. There is no append-only format.

Readers never raise: a missing, undecryptable or unparseable file is treated
as "no conversation". Writers log failures and report them as False.

Operations on the same conversation id must be serialized by the caller;
two racing full rewrites keep only the last one.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import aiofiles

from .constants import CONVERSATION_FILE_SUFFIX, CONVERSATIONS_DIR
from .crypto import StorageCipher
from .errors import CryptoError, ErrorCode, StorageError
from .protocol import ContentType

logger = logging.getLogger(__name__)


class MessageDirection(str, Enum):
    """Who authored a message, from the local user's point of view."""

    LOCAL = "local"
    REMOTE = "remote"
    SYSTEM = "system"


@dataclass
class Message:
    """Represents a message in a conversation."""

    id: str
    direction: MessageDirection
    content: str
    content_type: ContentType = ContentType.TEXT
    quick_replies: Optional[List[str]] = None
    timestamp: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert message to dictionary for storage."""
        return {
            "id": self.id,
            "type": self.direction.value,
            "content": self.content,
            "contentType": self.content_type.value,
            "quickReplies": self.quick_replies,
            "timestamp": self.timestamp,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Message":
        """Create message from dictionary."""
        if not isinstance(data, dict):
            raise ValueError(f"Message entry must be an object, got {type(data).__name__}")
        try:
            direction = MessageDirection(data.get("type", MessageDirection.LOCAL.value))
        except ValueError:
            direction = MessageDirection.LOCAL

        return Message(
            id=data["id"],
            direction=direction,
            content=data["content"],
            content_type=ContentType.parse(data.get("contentType")),
            quick_replies=data.get("quickReplies"),
            timestamp=data.get("timestamp"),
        )

    @property
    def is_media(self) -> bool:
        return self.content_type.is_media


@dataclass
class Conversation:
    """Represents a two-party conversation and its ordered messages."""

    id: str
    messages: List[Message] = field(default_factory=list)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    unread_count: int = 0
    escalated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "messages": [msg.to_dict() for msg in self.messages],
            "createdAt": self.created_at,
            "escalated": self.escalated,
            "unreadCount": self.unread_count,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Conversation":
        if not isinstance(data, dict):
            raise ValueError(f"Conversation must be an object, got {type(data).__name__}")
        messages = data.get("messages", [])
        if not isinstance(messages, list):
            raise ValueError("Conversation messages must be a list")

        return Conversation(
            id=data["id"],
            messages=[Message.from_dict(m) for m in messages],
            created_at=data.get("createdAt", ""),
            unread_count=int(data.get("unreadCount", 0)),
            escalated=bool(data.get("escalated", False)),
        )

    def has_message(self, message_id: str) -> bool:
        return any(msg.id == message_id for msg in self.messages)

    def get_message(self, message_id: str) -> Optional[Message]:
        for msg in self.messages:
            if msg.id == message_id:
                return msg
        return None

    @property
    def last_message(self) -> Optional[Message]:
        return self.messages[-1] if self.messages else None


class ConversationStore:
    """Encrypted, file-per-conversation store with full-rewrite semantics."""

    def __init__(self, data_dir: Union[str, Path], cipher: Optional[StorageCipher] = None):
        """Initialize conversation store.

        Args:
            data_dir: Client data directory; files go in its conversations/ subdir
            cipher: Storage cipher (defaults to the built-in passphrase)
        """
        self.conversations_dir = Path(data_dir) / CONVERSATIONS_DIR
        self.conversations_dir.mkdir(parents=True, exist_ok=True)
        self.cipher = cipher or StorageCipher()

    def _path(self, conversation_id: str) -> Path:
        if (
            not conversation_id
            or conversation_id in (".", "..")
            or "/" in conversation_id
            or "\\" in conversation_id
        ):
            raise StorageError(
                ErrorCode.E002_INVALID_ARGUMENT,
                f"Invalid conversation id: {conversation_id!r}",
            )
        return self.conversations_dir / f"{conversation_id}{CONVERSATION_FILE_SUFFIX}"

    def _serialize(self, conversation: Conversation) -> str:
        json_data = json.dumps(conversation.to_dict(), ensure_ascii=False)
        return self.cipher.encrypt(json_data)

    def _deserialize(self, stored: str) -> Conversation:
        try:
            data = json.loads(self.cipher.decrypt(stored))
            return Conversation.from_dict(data)
        except CryptoError:
            raise
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise StorageError(
                ErrorCode.E303_DECODE_FAILED, f"Corrupted conversation data: {e}"
            ) from e

    def load(self, conversation_id: str) -> Optional[Conversation]:
        """
        Load a conversation.

        Returns:
            The conversation, or None if absent or unreadable
        """
        try:
            path = self._path(conversation_id)
            if not path.exists():
                return None
            with open(path, encoding="utf-8") as f:
                stored = f.read()
            return self._deserialize(stored)
        except StorageError as e:
            logger.warning(f"Treating conversation {conversation_id} as missing: {e}")
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Failed to read conversation {conversation_id}: {e}")
            return None

    def save(self, conversation: Conversation) -> bool:
        """
        Encrypt and atomically write a whole conversation.

        Returns:
            True if written, False on failure (logged)
        """
        temp_file = None
        try:
            path = self._path(conversation.id)
            stored = self._serialize(conversation)

            # Write to temporary file first for atomicity
            temp_file = f"{path}.tmp"
            with open(temp_file, "w", encoding="utf-8") as f:
                f.write(stored)

            # Atomic rename
            os.replace(temp_file, path)
            logger.debug(
                f"Saved conversation {conversation.id} ({len(conversation.messages)} messages)"
            )
            return True

        except (StorageError, OSError) as e:
            logger.error(f"Failed to save conversation {conversation.id}: {e}")
            self._discard_temp(temp_file)
            return False

    async def save_async(self, conversation: Conversation) -> bool:
        """Save a conversation asynchronously (same format and atomicity as save())."""
        temp_file = None
        try:
            path = self._path(conversation.id)
            stored = self._serialize(conversation)

            temp_file = f"{path}.tmp"
            async with aiofiles.open(temp_file, "w", encoding="utf-8") as f:
                await f.write(stored)

            os.replace(temp_file, path)
            logger.debug(
                f"Saved conversation {conversation.id} ({len(conversation.messages)} messages)"
            )
            return True

        except (StorageError, OSError) as e:
            logger.error(f"Failed to save conversation {conversation.id}: {e}")
            self._discard_temp(temp_file)
            return False

    @staticmethod
    def _discard_temp(temp_file: Optional[str]) -> None:
        if temp_file and os.path.exists(temp_file):
            try:
                os.remove(temp_file)
            except OSError as e:
                logger.debug(f"Could not remove temp file {temp_file}: {e}")

    def _appended(
        self, conversation_id: str, message: Message, unread_increment: int
    ) -> Conversation:
        conversation = self.load(conversation_id) or Conversation(id=conversation_id)
        conversation.messages.append(message)
        conversation.unread_count += unread_increment
        return conversation

    def append(self, conversation_id: str, message: Message, unread_increment: int = 0) -> bool:
        """
        Append a message, creating the conversation on first use.

        Args:
            conversation_id: Target conversation
            message: Message to append at the end
            unread_increment: Added to the unread count (0 leaves it unchanged)

        Returns:
            True if the rewritten conversation was persisted
        """
        conversation = self._appended(conversation_id, message, unread_increment)
        return self.save(conversation)

    async def append_async(
        self, conversation_id: str, message: Message, unread_increment: int = 0
    ) -> bool:
        """Async variant of append()."""
        conversation = self._appended(conversation_id, message, unread_increment)
        return await self.save_async(conversation)

    def remove(self, conversation_id: str, message_id: str) -> bool:
        """
        Remove one message from a conversation.

        Returns:
            True if the message was found and the conversation rewritten
        """
        conversation = self.load(conversation_id)
        if conversation is None:
            return False

        remaining = [msg for msg in conversation.messages if msg.id != message_id]
        if len(remaining) == len(conversation.messages):
            return False

        conversation.messages = remaining
        return self.save(conversation)

    def delete(self, conversation_id: str) -> bool:
        """Delete a conversation file. Returns True if a file was removed."""
        try:
            os.remove(self._path(conversation_id))
            logger.info(f"Deleted conversation {conversation_id}")
            return True
        except FileNotFoundError:
            return False
        except (StorageError, OSError) as e:
            logger.error(f"Failed to delete conversation {conversation_id}: {e}")
            return False

    def mark_read(self, conversation_id: str) -> bool:
        """Reset the unread count to zero. Returns True if a rewrite happened."""
        conversation = self.load(conversation_id)
        if conversation is None or conversation.unread_count == 0:
            return False
        conversation.unread_count = 0
        return self.save(conversation)

    def list_conversations(self) -> List[Conversation]:
        """Load every readable conversation, newest first."""
        conversations = []
        try:
            paths = sorted(self.conversations_dir.glob(f"*{CONVERSATION_FILE_SUFFIX}"))
        except OSError as e:
            logger.error(f"Failed to list conversations: {e}")
            return []

        for path in paths:
            conversation = self.load(path.name[: -len(CONVERSATION_FILE_SUFFIX)])
            if conversation is not None:
                conversations.append(conversation)

        return sorted(conversations, key=lambda c: c.created_at, reverse=True)
