"""
relaychat - Relay protocol handler.

One RelayProtocolHandler runs per client connection. It decodes each
inbound frame, drives the shared PeerRegistry and PendingQueue, and writes
replies back through its transport. The relay never stores history: it
forwards to a live peer or parks the message in the pending queue, and the
sender only ever learns that the relay accepted the message.

State machine (per connection):

    UNREGISTERED --register--> REGISTERED --close--> CLOSED
         |                                              ^
         +--------------------close---------------------+

Malformed input never closes the connection; it is answered with an
``error`` envelope carrying ``parse``, ``invalid`` or ``unknown``.
"""

import asyncio
import logging
from enum import Enum, auto
from typing import Any, Dict, Optional, Protocol as TypingProtocol, Union

from .errors import ProtocolError, ProtocolErrorKind, TransportError
from .peer_registry import PeerRegistry
from .pending_queue import PendingQueue
from .protocol import (
    ConversationsRequest,
    DeliveredMessage,
    Protocol,
    RegisterRequest,
    SendRequest,
    SyncRequest,
    mint_message_id,
    utc_timestamp,
)

logger = logging.getLogger(__name__)


class Transport(TypingProtocol):
    """What the handler needs from a connection: send text, report liveness."""

    @property
    def is_open(self) -> bool: ...

    async def send(self, text: str) -> None: ...


class RelayState(Enum):
    """Connection states for a relay client."""

    UNREGISTERED = auto()  # Connected, no phone bound yet
    REGISTERED = auto()  # Phone bound in the registry
    CLOSED = auto()  # Transport closed (terminal)


class RelayService:
    """
    Shared relay state: one registry and one pending queue per process.

    Constructed by the process entry point and passed to every handler; there
    is no module-level global.
    """

    def __init__(
        self,
        registry: Optional[PeerRegistry] = None,
        pending: Optional[PendingQueue] = None,
    ):
        self.registry = registry or PeerRegistry()
        self.pending = pending or PendingQueue()
        self.messages_relayed = 0
        self.messages_queued = 0

    def new_handler(self, transport: Transport) -> "RelayProtocolHandler":
        """Create the handler for a freshly accepted connection."""
        return RelayProtocolHandler(self, transport)

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "online_peers": len(self.registry),
            "messages_relayed": self.messages_relayed,
            "messages_queued": self.messages_queued,
            "pending": self.pending.get_statistics(),
        }


class RelayProtocolHandler:
    """Per-connection relay state machine."""

    def __init__(self, service: RelayService, transport: Transport):
        self.service = service
        self.transport = transport
        self.state = RelayState.UNREGISTERED
        self.phone: Optional[str] = None

        # Serializes every outbound frame on this connection so a live push
        # from another handler cannot overtake drained pending messages.
        self._send_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self.state is not RelayState.CLOSED and self.transport.is_open

    async def handle_frame(self, raw: Union[str, bytes]) -> None:
        """
        Process one inbound frame.

        Args:
            raw: Text (or bytes) frame exactly as received
        """
        if self.state is RelayState.CLOSED:
            logger.debug("Frame received after close, ignoring")
            return

        try:
            request = Protocol.decode_request(raw)
        except ProtocolError as e:
            logger.warning(f"Rejected frame from {self.phone or 'unregistered peer'}: {e}")
            await self._reply(e.to_envelope())
            return

        logger.debug(f"Envelope {type(request).__name__} from {self.phone or 'unregistered peer'}")

        if isinstance(request, RegisterRequest):
            await self._handle_register(request)
            return

        if self.state is RelayState.UNREGISTERED:
            if isinstance(request, SendRequest):
                error = ProtocolError(ProtocolErrorKind.INVALID, "Sender not registered")
            else:
                error = ProtocolError(ProtocolErrorKind.UNKNOWN, "Register first")
            await self._reply(error.to_envelope())
            return

        if isinstance(request, SendRequest):
            await self._handle_message(request)
        elif isinstance(request, SyncRequest):
            # No history is kept by the relay; this only proves liveness.
            await self._reply(Protocol.create_sync_done(0))
        elif isinstance(request, ConversationsRequest):
            await self._reply(Protocol.create_conversation_list([]))

    async def _handle_register(self, request: RegisterRequest) -> None:
        """Bind the phone, acknowledge it, then flush its pending queue."""
        phone = request.phone_number
        registry = self.service.registry

        async with self._send_lock:
            if self.phone is not None and self.phone != phone:
                registry.remove(self.phone, self)

            # Bind and drain with no suspension point in between.
            self.phone = phone
            registry.register(phone, self)
            pending = self.service.pending.drain_and_clear(phone)
            self.state = RelayState.REGISTERED

            sent = 0
            try:
                await self._write(Protocol.create_registered(phone))
                for envelope in pending:
                    await self._write(envelope)
                    sent += 1
            except TransportError as e:
                logger.warning(
                    f"Connection for {phone} failed during drain, "
                    f"{len(pending) - sent} messages lost: {e}"
                )
            finally:
                self.service.messages_relayed += sent

    async def _handle_message(self, request: SendRequest) -> None:
        """Forward or queue a message, then ack the sender."""
        message = DeliveredMessage(
            id=mint_message_id(),
            sender=self.phone,
            recipient=request.to,
            content=request.content,
            content_type=request.content_type,
            timestamp=utc_timestamp(),
        )
        envelope = message.to_envelope()

        destination = self.service.registry.lookup(request.to)
        delivered = False
        if destination is not None and destination.is_open:
            delivered = await destination.push(envelope)

        if delivered:
            self.service.messages_relayed += 1
            logger.info(f"Relayed {message.id} {message.sender} -> {message.recipient}")
        else:
            self.service.pending.enqueue(request.to, envelope)
            self.service.messages_queued += 1

        # Certifies acceptance by the relay, not receipt by the peer.
        await self._reply(Protocol.create_ack(message.id, message.timestamp))

    async def push(self, envelope: Dict[str, Any]) -> bool:
        """
        Deliver an unsolicited envelope to this connection.

        Returns:
            True if handed to the transport, False if the connection is gone
        """
        if not self.is_open:
            return False
        try:
            async with self._send_lock:
                await self._write(envelope)
            return True
        except TransportError as e:
            logger.warning(f"Push to {self.phone} failed: {e}")
            return False

    async def close(self) -> None:
        """Transport closed: drop the registry entry and become CLOSED."""
        if self.state is RelayState.CLOSED:
            return
        if self.phone is not None:
            self.service.registry.remove(self.phone, self)
        self.state = RelayState.CLOSED
        logger.debug(f"Handler closed for {self.phone or 'unregistered peer'}")

    async def _reply(self, envelope: Dict[str, Any]) -> None:
        try:
            async with self._send_lock:
                await self._write(envelope)
        except TransportError as e:
            logger.debug(f"Reply to {self.phone or 'unregistered peer'} dropped: {e}")

    async def _write(self, envelope: Dict[str, Any]) -> None:
        await self.transport.send(Protocol.encode(envelope))
