"""
relaychat - Conversation management for the client.

ConversationManager is the delivery path between a ClientConnection and the
encrypted ConversationStore. It derives conversation ids from phone pairs,
stores inbound media as files, applies the unread policy and tells its own
observers about every stored message.

Every store operation for one conversation id runs under that id's lock, so
full-rewrite persistence never loses a concurrent append.
"""

import asyncio
import inspect
import logging
from typing import Callable, Dict, List, Optional

from .client import ClientConnection
from .errors import ErrorCode, TransportError
from .identity import (
    conversation_id,
    is_local_message_id,
    new_local_message_id,
    normalize_phone,
    peer_of,
)
from .media import MediaPayloadCodec, MediaStorage
from .message import Conversation, ConversationStore, Message, MessageDirection
from .protocol import ContentType, DeliveredMessage, utc_timestamp

logger = logging.getLogger(__name__)


class ConversationManager:
    """Stores, sends and tracks conversations for the local phone."""

    def __init__(
        self,
        own_phone: str,
        store: ConversationStore,
        media: MediaStorage,
        connection: Optional[ClientConnection] = None,
    ):
        """
        Args:
            own_phone: The local user's phone (normalized here)
            store: Conversation persistence
            media: Media file storage
            connection: Relay connection to send through and receive from
        """
        self.own_phone = normalize_phone(own_phone)
        self.store = store
        self.media = media
        self.codec = MediaPayloadCodec(media)
        self.connection: Optional[ClientConnection] = None
        self.active_conversation_id: Optional[str] = None

        self._locks: Dict[str, asyncio.Lock] = {}
        self.message_callbacks: List[Callable] = []

        if connection is not None:
            self.attach(connection)

    def attach(self, connection: ClientConnection) -> None:
        """Start receiving from ``connection`` and sending through it."""
        if self.connection is not None:
            self.connection.off("message", self.handle_incoming)
        self.connection = connection
        connection.on("message", self.handle_incoming)

    def on_message(self, callback: Callable) -> None:
        """Register ``callback(conversation_id, message)`` for every stored message."""
        self.message_callbacks.append(callback)

    def off_message(self, callback: Callable) -> None:
        if callback in self.message_callbacks:
            self.message_callbacks.remove(callback)

    def conversation_for(self, peer: str) -> str:
        return conversation_id(self.own_phone, normalize_phone(peer))

    def _lock(self, conv_id: str) -> asyncio.Lock:
        lock = self._locks.get(conv_id)
        if lock is None:
            lock = self._locks[conv_id] = asyncio.Lock()
        return lock

    async def handle_incoming(self, envelope: DeliveredMessage) -> Optional[Message]:
        """
        Store a message delivered by the relay.

        Returns:
            The stored message, or None if it was a duplicate, carried an
            unusable media payload, named an invalid phone or carried an id
            from the client-side id space
        """
        if is_local_message_id(envelope.id):
            logger.warning(f"Dropping delivery with client-side id {envelope.id}")
            return None

        try:
            sender = normalize_phone(envelope.sender)
            peer = normalize_phone(peer_of(self.own_phone, sender, envelope.recipient))
        except ValueError as e:
            logger.warning(f"Dropping message {envelope.id}: {e}")
            return None

        conv_id = conversation_id(self.own_phone, peer)
        content_type = ContentType.parse(envelope.content_type)
        direction = MessageDirection.LOCAL if sender == self.own_phone else MessageDirection.REMOTE

        async with self._lock(conv_id):
            conversation = self.store.load(conv_id) or Conversation(id=conv_id)
            if conversation.has_message(envelope.id):
                logger.debug(f"Duplicate delivery of {envelope.id} ignored")
                return None

            content = await self.codec.store_inbound_async(envelope.content, content_type)
            if content is None:
                return None

            message = Message(
                id=envelope.id,
                direction=direction,
                content=content,
                content_type=content_type,
                timestamp=envelope.timestamp or utc_timestamp(),
            )
            conversation.messages.append(message)
            if conv_id != self.active_conversation_id:
                conversation.unread_count += 1
            await self.store.save_async(conversation)

        logger.info(f"Stored {content_type.value} message {message.id} in {conv_id}")
        await self._notify(conv_id, message)
        return message

    async def send_text(self, peer: str, text: str) -> Message:
        """
        Store a text message locally, then send it.

        Raises:
            TransportError: If not registered; the local copy is kept
        """
        return await self._send(peer, text, text, ContentType.TEXT)

    async def send_image(self, peer: str, data: bytes, extension: Optional[str] = None) -> Message:
        """Save image bytes as a media file, store the message, then send it inline."""
        path = await self.media.save_async(data, ContentType.IMAGE, extension)
        return await self._send(peer, path, self.codec.encode_payload(data), ContentType.IMAGE)

    async def send_audio(self, peer: str, data: bytes, extension: Optional[str] = None) -> Message:
        """Save audio bytes as a media file, store the message, then send it inline."""
        path = await self.media.save_async(data, ContentType.AUDIO, extension)
        return await self._send(peer, path, self.codec.encode_payload(data), ContentType.AUDIO)

    async def _send(
        self, peer: str, stored_content: str, wire_content: str, content_type: ContentType
    ) -> Message:
        peer = normalize_phone(peer)
        conv_id = conversation_id(self.own_phone, peer)
        message = Message(
            id=new_local_message_id(),
            direction=MessageDirection.LOCAL,
            content=stored_content,
            content_type=content_type,
            timestamp=utc_timestamp(),
        )

        async with self._lock(conv_id):
            await self.store.append_async(conv_id, message)
        await self._notify(conv_id, message)

        if self.connection is None:
            raise TransportError(ErrorCode.E204_NOT_REGISTERED, "No relay connection")
        await self.connection.send(peer, wire_content, content_type)
        logger.debug(f"Sent {message.id} to {peer}")
        return message

    async def set_active_conversation(self, conv_id: Optional[str]) -> None:
        """Mark ``conv_id`` as the one on screen and reset its unread count."""
        self.active_conversation_id = conv_id
        if conv_id is None:
            return
        async with self._lock(conv_id):
            self.store.mark_read(conv_id)

    async def delete_message(self, conv_id: str, message: Message) -> bool:
        """Remove a message and, for media, its file. Returns True if removed."""
        async with self._lock(conv_id):
            removed = self.store.remove(conv_id, message.id)
        if removed and message.is_media:
            self.media.delete_media_file(message.content)
        return removed

    def load_messages(self, peer: str) -> List[Message]:
        conversation = self.store.load(self.conversation_for(peer))
        return conversation.messages if conversation else []

    def list_conversations(self) -> List[Conversation]:
        return self.store.list_conversations()

    async def _notify(self, conv_id: str, message: Message) -> None:
        for callback in list(self.message_callbacks):
            try:
                result = callback(conv_id, message)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in message callback: {e}", exc_info=True)
