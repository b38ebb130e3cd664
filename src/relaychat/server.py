"""
relaychat - Relay server daemon using asyncio and websockets.

This module runs the message relay: it accepts WebSocket connections,
gives each one a RelayProtocolHandler, and keeps the shared RelayService
(peer registry and pending queue) alive for the lifetime of the process.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, ConnectionClosedOK
from websockets.protocol import State

from .config import Config
from .constants import DEFAULT_HOST, DEFAULT_RELAY_PORT, MAX_FRAME_SIZE
from .errors import ConfigError, ErrorCode, TransportError
from .relay import RelayService
from .utils import setup_logging

logger = logging.getLogger(__name__)


class WebSocketTransport:
    """Adapts a websockets server connection to the relay Transport interface."""

    def __init__(self, websocket: ServerConnection):
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        return self.websocket.state is State.OPEN

    @property
    def remote_address(self) -> str:
        address = self.websocket.remote_address
        if isinstance(address, tuple) and len(address) >= 2:
            return f"{address[0]}:{address[1]}"
        return str(address)

    async def send(self, text: str) -> None:
        try:
            await self.websocket.send(text)
        except ConnectionClosed as e:
            raise TransportError(
                ErrorCode.E202_CONNECTION_CLOSED,
                "Connection closed",
                {"peer": self.remote_address},
            ) from e


class RelayServer:
    """Background relay server maintaining peer connections."""

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_RELAY_PORT,
        service: Optional[RelayService] = None,
        max_frame_size: Optional[int] = MAX_FRAME_SIZE,
    ):
        """
        Initialize server.

        Args:
            host: Interface to bind
            port: TCP port to listen on (0 picks a free port)
            service: Shared relay state; a fresh one is created if omitted
            max_frame_size: Largest accepted frame in bytes, None for no limit
        """
        self.host = host
        self.port = port
        self.service = service or RelayService()
        self.max_frame_size = max_frame_size
        self.running = False
        self._server: Optional[Server] = None

    async def start(self) -> bool:
        """
        Start listening for relay connections.

        Returns:
            True if server started successfully, False on error
        """
        try:
            self._server = await serve(
                self._handle_connection,
                self.host,
                self.port,
                max_size=self.max_frame_size,
            )
        except OSError as e:
            logger.error(f"Failed to start relay on {self.host}:{self.port}: {e}")
            return False

        sockets = list(self._server.sockets)
        if sockets:
            self.port = sockets[0].getsockname()[1]
        self.running = True

        logger.info(f"Relay server listening on ws://{self.host}:{self.port}")
        logger.info("Forwarding only, no message storage")
        return True

    async def stop(self) -> None:
        """Stop the relay server and close every client connection."""
        logger.info("Stopping relay server...")
        self.running = False

        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        logger.info("Relay server stopped")

    async def run(self) -> None:
        """Block until stopped, then shut down."""
        try:
            while self.running:
                await asyncio.sleep(1)
        finally:
            await self.stop()

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """
        Handle one client connection for its whole lifetime.

        Frames are processed strictly one at a time per connection.
        """
        transport = WebSocketTransport(websocket)
        handler = self.service.new_handler(transport)
        logger.info(f"Client connected from {transport.remote_address}")

        try:
            async for frame in websocket:
                await handler.handle_frame(frame)
        except ConnectionClosedOK:
            logger.info(f"Client {transport.remote_address} disconnected gracefully")
        except ConnectionClosedError as e:
            logger.info(f"Client {transport.remote_address} disconnected with error: {e}")
        finally:
            await handler.close()
            logger.info(
                f"Connection closed for {transport.remote_address} "
                f"({handler.phone or 'unregistered'})"
            )

    def install_signal_handlers(self) -> None:
        """Stop the run loop on SIGINT/SIGTERM."""
        signal.signal(signal.SIGINT, self._signal_handler)
        if sys.platform == "win32":
            signal.signal(signal.SIGBREAK, self._signal_handler)
        else:
            signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """Handle termination signals."""
        logger.info(f"Received signal {signum}, shutting down...")
        self.running = False


async def async_main(argv=None) -> int:
    """Async main entry point for the relay server."""
    parser = argparse.ArgumentParser(
        description="relaychat relay - forwards messages between registered phones"
    )
    parser.add_argument("--config", type=str, default=None, help="Path to config.toml")
    parser.add_argument("--host", type=str, default=None, help="Interface to bind")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on (default: 9090)")
    parser.add_argument("--log-level", type=str, default=None, help="Logging level")
    args = parser.parse_args(argv)

    try:
        config = Config(Path(args.config).expanduser() if args.config else None)
    except ConfigError as e:
        logger.error(f"Cannot load configuration: {e.message}")
        return 1

    setup_logging(
        args.log_level or config.get("logging", "level", "INFO"),
        log_dir=None,
        console=config.get("logging", "console_logging", True),
    )

    server = RelayServer(
        host=args.host or config.get("relay", "host", DEFAULT_HOST),
        port=args.port if args.port is not None else config.get("relay", "port", DEFAULT_RELAY_PORT),
        max_frame_size=config.get("relay", "max_frame_size") or None,
    )

    if not await server.start():
        return 1

    server.install_signal_handlers()
    await server.run()
    return 0


def main():
    """Main entry point - runs async_main."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
