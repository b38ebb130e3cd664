"""
relaychat - Client connection to the relay.

ClientConnection owns one WebSocket to the relay, registers the local phone
on connect, and turns every inbound frame into an event for its observers.
It never persists anything and never retries: a failed connect or a dropped
socket surfaces as ``error`` / ``disconnected`` events, and reconnecting is
up to the caller.

Events and the argument each observer receives:

    connected       the relay URL
    disconnected    a short reason string
    registered      RegisteredReply
    message         DeliveredMessage
    ack             AckReply
    sync_done       SyncDoneReply
    conversations   ConversationListReply
    error           ErrorReply (relay errors and undecodable frames)

Observers run sequentially on the receive task, in registration order.
Callbacks may be plain functions or coroutine functions.
"""

import asyncio
import contextlib
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Union

from websockets.asyncio.client import ClientConnection as WebSocketConnection
from websockets.asyncio.client import connect
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    ConnectionClosedOK,
    WebSocketException,
)

from .connection_fsm import SessionEvent, SessionState, SessionStateMachine
from .constants import CLOSE_TIMEOUT, CONNECTION_TIMEOUT, DEFAULT_SYNC_SINCE, MAX_FRAME_SIZE
from .errors import ErrorCode, ProtocolError, TransportError
from .identity import normalize_phone
from .protocol import (
    AckReply,
    ContentType,
    ConversationListReply,
    DeliveredMessage,
    ErrorReply,
    Protocol,
    RegisteredReply,
    SyncDoneReply,
)

logger = logging.getLogger(__name__)

EVENTS = (
    "connected",
    "disconnected",
    "registered",
    "message",
    "ack",
    "sync_done",
    "conversations",
    "error",
)

_REPLY_EVENTS = {
    RegisteredReply: "registered",
    DeliveredMessage: "message",
    AckReply: "ack",
    SyncDoneReply: "sync_done",
    ConversationListReply: "conversations",
    ErrorReply: "error",
}


class ClientConnection:
    """Async client for one relay session."""

    def __init__(
        self,
        open_timeout: float = CONNECTION_TIMEOUT,
        max_frame_size: Optional[int] = MAX_FRAME_SIZE,
    ):
        """
        Initialize client.

        Args:
            open_timeout: Seconds allowed for the WebSocket handshake
            max_frame_size: Largest accepted inbound frame, None for no limit
        """
        self.open_timeout = open_timeout
        self.max_frame_size = max_frame_size
        self.url: Optional[str] = None
        self.phone: Optional[str] = None

        self.fsm = SessionStateMachine()
        self._websocket: Optional[WebSocketConnection] = None
        self._receive_task: Optional[asyncio.Task] = None

        # Event callbacks
        self.event_callbacks: Dict[str, List[Callable]] = {}

    @property
    def state(self) -> SessionState:
        return self.fsm.get_state()

    @property
    def is_registered(self) -> bool:
        return self.fsm.is_registered()

    def on(self, event_name: str, callback: Callable) -> None:
        """
        Register callback for event.

        Args:
            event_name: One of EVENTS
            callback: Function (or coroutine function) taking the event argument
        """
        if event_name not in EVENTS:
            raise ValueError(f"Unknown event: {event_name}")
        self.event_callbacks.setdefault(event_name, []).append(callback)

    def off(self, event_name: str, callback: Callable) -> None:
        """Unregister callback for event."""
        callbacks = self.event_callbacks.get(event_name, [])
        with contextlib.suppress(ValueError):
            callbacks.remove(callback)

    async def connect(self, url: str, phone: str) -> bool:
        """
        Open the transport and register ``phone`` with the relay.

        Returns once the register envelope is sent; the ``registered`` event
        marks the relay's confirmation.

        Returns:
            True if the transport opened and register was sent

        Raises:
            ValueError: If ``phone`` cannot be normalized
        """
        phone = normalize_phone(phone)
        if self._websocket is not None:
            await self.disconnect()

        self.url = url
        self.phone = phone
        self.fsm.transition(SessionEvent.CONNECT_REQUESTED)

        try:
            websocket = await connect(
                url,
                open_timeout=self.open_timeout,
                close_timeout=CLOSE_TIMEOUT,
                max_size=self.max_frame_size,
            )
        except (OSError, TimeoutError, WebSocketException) as e:
            logger.error(f"Connection to {url} failed: {e}")
            self.fsm.transition(SessionEvent.TRANSPORT_FAILED, str(e))
            await self._emit("error", ErrorReply(code="transport", msg=str(e)))
            return False

        self._websocket = websocket
        self.fsm.transition(SessionEvent.TRANSPORT_OPENED)
        logger.info(f"Connected to relay at {url}")
        await self._emit("connected", url)

        self._receive_task = asyncio.create_task(self._receive_loop(websocket))

        try:
            await self._send_envelope(Protocol.create_register(phone))
        except TransportError as e:
            logger.error(f"Register failed: {e}")
            await self.disconnect()
            return False
        return True

    async def reconnect(self) -> bool:
        """Drop the current transport and connect again with the last URL and phone."""
        if self.url is None or self.phone is None:
            raise TransportError(
                ErrorCode.E201_CONNECTION_FAILED, "reconnect() called before connect()"
            )
        await self.disconnect()
        return await self.connect(self.url, self.phone)

    async def disconnect(self) -> None:
        """Close the transport. Emits ``disconnected`` if one was open."""
        websocket, self._websocket = self._websocket, None
        task, self._receive_task = self._receive_task, None
        if websocket is None:
            return

        self.fsm.transition(SessionEvent.CLOSE_REQUESTED)
        try:
            await websocket.close()
        except WebSocketException as e:
            logger.debug(f"Error closing websocket: {e}")

        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        logger.info("Disconnected from relay")
        await self._emit("disconnected", "closed by client")

    async def send(
        self, to: str, content: str, content_type: Union[ContentType, str] = ContentType.TEXT
    ) -> None:
        """
        Hand a message envelope to the transport.

        Completion means the frame was written, not that the relay accepted
        it; acceptance arrives later as an ``ack`` event.

        Raises:
            TransportError: If the session is not registered or the write fails
            ValueError: If ``to`` or ``content_type`` is not valid
        """
        if not self.is_registered:
            raise TransportError(
                ErrorCode.E204_NOT_REGISTERED,
                "Not registered with relay",
                {"state": self.state.name},
            )
        envelope = Protocol.create_message(
            normalize_phone(to), content, ContentType(content_type).value
        )
        await self._send_envelope(envelope)

    async def request_sync(self, since: str = DEFAULT_SYNC_SINCE) -> None:
        """Ask the relay for history since ``since``; it currently answers count 0."""
        await self._send_envelope(Protocol.create_sync(since))

    async def request_conversations(self) -> None:
        """Ask the relay for its conversation list; it currently answers empty."""
        await self._send_envelope(Protocol.create_conversations())

    async def _send_envelope(self, envelope: Dict[str, Any]) -> None:
        websocket = self._websocket
        if websocket is None:
            raise TransportError(ErrorCode.E202_CONNECTION_CLOSED, "Not connected to relay")
        try:
            await websocket.send(Protocol.encode(envelope))
        except ConnectionClosed as e:
            raise TransportError(
                ErrorCode.E203_SEND_FAILED, f"Send failed: {e}", {"type": envelope.get("type")}
            ) from e

    async def _receive_loop(self, websocket: WebSocketConnection) -> None:
        """Background task dispatching every inbound frame in order."""
        reason = "closed by relay"
        try:
            async for frame in websocket:
                await self._dispatch(frame)
        except ConnectionClosedOK:
            pass
        except ConnectionClosedError as e:
            reason = f"connection lost: {e}"
        finally:
            # disconnect() already cleared the socket when the close was ours
            if self._websocket is websocket:
                self._websocket = None
                self._receive_task = None
                self.fsm.transition(SessionEvent.CONNECTION_LOST)
                logger.warning(f"Relay connection ended: {reason}")
                await self._emit("disconnected", reason)

    async def _dispatch(self, frame: Union[str, bytes]) -> None:
        try:
            envelope = Protocol.decode_reply(frame)
        except ProtocolError as e:
            logger.warning(f"Undecodable frame from relay: {e.message}")
            await self._emit("error", ErrorReply(code=e.kind.value, msg=e.message))
            return

        if isinstance(envelope, RegisteredReply):
            self.fsm.transition(SessionEvent.REGISTER_CONFIRMED)
            logger.info(f"Registered as {envelope.phone_number or self.phone}")
        elif isinstance(envelope, ErrorReply):
            logger.warning(f"Relay error ({envelope.code}): {envelope.msg}")

        await self._emit(_REPLY_EVENTS[type(envelope)], envelope)

    async def _emit(self, event_name: str, data: Any) -> None:
        for callback in list(self.event_callbacks.get(event_name, [])):
            try:
                result = callback(data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in {event_name} callback: {e}", exc_info=True)
