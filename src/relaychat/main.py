"""
relaychat - Command line client.

Subcommands:
    setup       write the local profile (own phone, relay URL, name)
    listen      stay connected and store every delivered message
    send        send one text, image or audio message and wait for its ack
    contacts    list, add or remove contact names
    history     print a stored conversation
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from . import __version__
from .client import ClientConnection
from .config import Config, LocalProfile
from .constants import (
    APP_NAME,
    CONFIG_FILENAME,
    CONNECTION_TIMEOUT,
    CONTACTS_FILENAME,
    DEFAULT_DATA_DIR,
    LOGS_DIR,
)
from .contact import ContactBook
from .conversation import ConversationManager
from .crypto import StorageCipher
from .errors import ConfigError, TransportError
from .identity import participants
from .media import MediaStorage
from .message import ConversationStore, Message, MessageDirection
from .protocol import AckReply, ErrorReply
from .utils import format_timestamp, setup_logging, truncate_string

console = Console()


class ClientContext:
    """Everything a subcommand needs, built from the data directory."""

    def __init__(self, data_dir: Path, config: Config):
        self.data_dir = data_dir
        self.config = config
        self.contacts = ContactBook(data_dir / CONTACTS_FILENAME)
        self.store = ConversationStore(
            data_dir, StorageCipher(config.get("storage", "passphrase"))
        )
        self.media = MediaStorage(data_dir)

    def profile(self) -> LocalProfile:
        profile = LocalProfile.load(self.data_dir)
        if profile is None:
            raise ConfigError(message=f"No profile yet, run '{APP_NAME} setup --phone <number>'")
        return profile

    def server_url(self, profile: LocalProfile, override: Optional[str]) -> str:
        return override or profile.signaling_server_url or self.config.get("client", "server_url")

    def describe(self, message: Message, peer: str) -> str:
        if message.direction is MessageDirection.LOCAL:
            author = "[cyan]me[/cyan]"
        elif message.direction is MessageDirection.SYSTEM:
            author = "[dim]system[/dim]"
        else:
            author = f"[green]{self.contacts.display_name(peer)}[/green]"

        if message.content_type.is_media:
            body = f"[magenta]<{message.content_type.value}>[/magenta] {message.content}"
        else:
            body = message.content
        return f"{author}: {body}"


async def connect_registered(
    connection: ClientConnection, url: str, phone: str, timeout: float
) -> bool:
    """Connect and wait until the relay confirms registration."""
    registered = asyncio.Event()
    failure: list = []

    def on_registered(_reply):
        registered.set()

    def on_error(reply: ErrorReply):
        failure.append(reply.msg)
        registered.set()

    connection.on("registered", on_registered)
    connection.on("error", on_error)
    try:
        if not await connection.connect(url, phone):
            console.print(f"[red]Cannot reach relay at {url}[/red]")
            return False
        await asyncio.wait_for(registered.wait(), timeout)
    except asyncio.TimeoutError:
        console.print("[red]Relay did not confirm registration[/red]")
        return False
    finally:
        connection.off("registered", on_registered)
        connection.off("error", on_error)

    if not connection.is_registered:
        console.print(f"[red]Registration failed: {failure[0] if failure else 'unknown'}[/red]")
        return False
    return True


def cmd_setup(ctx: ClientContext, args) -> int:
    try:
        profile = LocalProfile(
            phone_number=args.phone,
            signaling_server_url=args.server or ctx.config.get("client", "server_url"),
            user_name=args.name,
        )
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        return 1
    profile.save(ctx.data_dir)
    console.print(
        f"Profile saved: [bold]{profile.phone_number}[/bold] via {profile.signaling_server_url}"
    )
    return 0


async def cmd_listen(ctx: ClientContext, args) -> int:
    profile = ctx.profile()
    connection = ClientConnection()
    manager = ConversationManager(profile.phone_number, ctx.store, ctx.media, connection)
    closed = asyncio.Event()

    def on_message(conv_id: str, message: Message):
        first, second = participants(conv_id)
        peer = second if first == profile.phone_number else first
        console.print(ctx.describe(message, peer))

    manager.on_message(on_message)
    connection.on("disconnected", lambda reason: closed.set())

    url = ctx.server_url(profile, args.server)
    if not await connect_registered(connection, url, profile.phone_number, CONNECTION_TIMEOUT):
        await connection.disconnect()
        return 1

    console.print(f"Listening as [bold]{profile.phone_number}[/bold], Ctrl-C to stop")
    try:
        await closed.wait()
    finally:
        await connection.disconnect()
    console.print("[yellow]Relay connection closed[/yellow]")
    return 0


async def cmd_send(ctx: ClientContext, args) -> int:
    profile = ctx.profile()
    connection = ClientConnection()
    manager = ConversationManager(profile.phone_number, ctx.store, ctx.media, connection)

    acked: asyncio.Future = asyncio.get_running_loop().create_future()

    def on_ack(reply: AckReply):
        if not acked.done():
            acked.set_result(reply)

    connection.on("ack", on_ack)

    url = ctx.server_url(profile, args.server)
    if not await connect_registered(connection, url, profile.phone_number, CONNECTION_TIMEOUT):
        await connection.disconnect()
        return 1

    try:
        if args.image or args.audio:
            path = Path(args.image or args.audio).expanduser()
            data = path.read_bytes()
            extension = path.suffix.lstrip(".") or None
            if args.image:
                message = await manager.send_image(args.peer, data, extension)
            else:
                message = await manager.send_audio(args.peer, data, extension)
        else:
            message = await manager.send_text(args.peer, args.text)

        reply = await asyncio.wait_for(acked, args.timeout)
        console.print(
            f"[green]Accepted by relay[/green] as {reply.id} "
            f"(stored locally as {message.id})"
        )
        return 0
    except OSError as e:
        console.print(f"[red]Cannot read attachment: {e}[/red]")
        return 1
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        return 1
    except TransportError as e:
        console.print(f"[red]Not sent: {e.message}[/red]")
        return 1
    except asyncio.TimeoutError:
        console.print("[yellow]No ack received; the message is stored locally[/yellow]")
        return 1
    finally:
        await connection.disconnect()


def cmd_contacts(ctx: ClientContext, args) -> int:
    try:
        if args.add:
            phone, name = args.add
            ctx.contacts.save_contact_name(phone, name)
        elif args.remove:
            if not ctx.contacts.remove_contact(args.remove):
                console.print(f"[yellow]No contact {args.remove}[/yellow]")
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        return 1

    table = Table(title="Contacts")
    table.add_column("Phone", style="cyan")
    table.add_column("Name")
    for phone, name in ctx.contacts.get_all_contacts():
        table.add_row(phone, name)
    console.print(table)
    return 0


def cmd_history(ctx: ClientContext, args) -> int:
    profile = ctx.profile()
    manager = ConversationManager(profile.phone_number, ctx.store, ctx.media)

    if args.peer is None:
        table = Table(title="Conversations")
        table.add_column("Conversation", style="cyan")
        table.add_column("Messages", justify="right")
        table.add_column("Unread", justify="right")
        table.add_column("Last message")
        for conversation in manager.list_conversations():
            last = conversation.last_message
            table.add_row(
                conversation.id,
                str(len(conversation.messages)),
                str(conversation.unread_count),
                truncate_string(last.content, 40) if last else "",
            )
        console.print(table)
        return 0

    try:
        messages = manager.load_messages(args.peer)
        conv_id = manager.conversation_for(args.peer)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        return 1

    table = Table(title=f"{ctx.contacts.display_name(args.peer)} ({conv_id})")
    table.add_column("Time", style="dim")
    table.add_column("Message")
    for message in messages:
        table.add_row(
            format_timestamp(message.timestamp) if message.timestamp else "",
            ctx.describe(message, args.peer),
        )
    console.print(table)
    asyncio.run(manager.set_active_conversation(conv_id))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="relaychat - phone-addressed messaging through a relay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  relaychat setup --phone +15550001 --server ws://relay.local:9090
  relaychat listen
  relaychat send +15550002 "hello"
  relaychat send +15550002 --image photo.jpg
  relaychat history +15550002
        """,
    )
    parser.add_argument("--version", action="version", version=f"{APP_NAME} {__version__}")
    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help=f"Data directory for profile, contacts and conversations (default: {DEFAULT_DATA_DIR})",
    )
    parser.add_argument("--log-level", type=str, default=None, help="Logging level")

    sub = parser.add_subparsers(dest="command", required=True)

    setup = sub.add_parser("setup", help="Write the local profile")
    setup.add_argument("--phone", required=True, help="Own phone number")
    setup.add_argument("--server", default=None, help="Relay URL (ws://host:port)")
    setup.add_argument("--name", default=None, help="Display name")

    listen = sub.add_parser("listen", help="Receive and store messages until interrupted")
    listen.add_argument("--server", default=None, help="Override the relay URL")

    send = sub.add_parser("send", help="Send one message")
    send.add_argument("peer", help="Recipient phone number")
    send.add_argument("text", nargs="?", default="", help="Message text")
    media = send.add_mutually_exclusive_group()
    media.add_argument("--image", default=None, help="Send an image file")
    media.add_argument("--audio", default=None, help="Send an audio file")
    send.add_argument("--server", default=None, help="Override the relay URL")
    send.add_argument(
        "--timeout", type=float, default=CONNECTION_TIMEOUT, help="Seconds to wait for the ack"
    )

    contacts = sub.add_parser("contacts", help="List or edit contact names")
    edit = contacts.add_mutually_exclusive_group()
    edit.add_argument("--add", nargs=2, metavar=("PHONE", "NAME"), default=None)
    edit.add_argument("--remove", metavar="PHONE", default=None)

    history = sub.add_parser("history", help="Show conversations or one conversation")
    history.add_argument("peer", nargs="?", default=None, help="Peer phone number")

    return parser


def main(argv=None) -> int:
    """Main entry point for the relaychat client."""
    args = build_parser().parse_args(argv)

    data_dir = Path(args.data_dir or DEFAULT_DATA_DIR).expanduser().resolve()
    data_dir.mkdir(parents=True, exist_ok=True)

    try:
        config = Config(data_dir / CONFIG_FILENAME)
    except ConfigError as e:
        console.print(f"[red]{e.message}[/red]")
        return 1

    setup_logging(
        args.log_level or config.get("logging", "level", "INFO"),
        log_dir=data_dir / LOGS_DIR if config.get("logging", "file_logging", True) else None,
        console=config.get("logging", "console_logging", True),
    )

    ctx = ClientContext(data_dir, config)
    try:
        if args.command == "setup":
            return cmd_setup(ctx, args)
        if args.command == "contacts":
            return cmd_contacts(ctx, args)
        if args.command == "history":
            return cmd_history(ctx, args)
        if args.command == "listen":
            return asyncio.run(cmd_listen(ctx, args))
        if args.command == "send":
            return asyncio.run(cmd_send(ctx, args))
    except ConfigError as e:
        console.print(f"[red]{e.message}[/red]")
        return 1
    except KeyboardInterrupt:
        return 130
    return 2


if __name__ == "__main__":
    sys.exit(main())
