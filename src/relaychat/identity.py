"""
relaychat - Phone and conversation identity.

Both peers compute the same conversation id independently, with no
handshake, by sorting their two normalized phone numbers. Message ids come
from two disjoint spaces: the relay mints ``msg_...`` ids and the client
mints ``local_...`` ids for messages the relay has not acknowledged yet.
"""

import secrets
import time
from typing import Tuple

from .constants import CONVERSATION_ID_PREFIX, LOCAL_MESSAGE_ID_PREFIX


def normalize_phone(phone: str) -> str:
    """
    Normalize a phone identifier to ``+<digits>``.

    Surrounding whitespace and separators are dropped, and a bare numeric
    string gets the leading ``+`` it is missing.

    Raises:
        ValueError: If no digits remain
    """
    if phone is None:
        raise ValueError("Phone number is required")

    cleaned = "".join(ch for ch in phone.strip() if ch.isdigit() or ch == "+")
    digits = cleaned.lstrip("+")
    if not digits or "+" in digits:
        raise ValueError(f"Invalid phone number: {phone!r}")
    return "+" + digits


def conversation_id(phone_a: str, phone_b: str) -> str:
    """
    Derive the conversation id for a pair of phones.

    Pure and commutative: ``conversation_id(a, b) == conversation_id(b, a)``.
    Callers must pass normalized phones.
    """
    first, second = sorted((phone_a, phone_b))
    return f"{CONVERSATION_ID_PREFIX}{first}_{second}"


def peer_of(own_phone: str, sender: str, recipient: str) -> str:
    """Pick the other participant of a delivered message."""
    return recipient if sender == own_phone else sender


def new_local_message_id() -> str:
    """Mint a time-based id for an outgoing, not yet acknowledged message."""
    return f"{LOCAL_MESSAGE_ID_PREFIX}{int(time.time() * 1000)}_{secrets.token_hex(2)}"


def is_local_message_id(message_id: str) -> bool:
    return message_id.startswith(LOCAL_MESSAGE_ID_PREFIX)


def participants(conv_id: str) -> Tuple[str, str]:
    """
    Split a conversation id back into its two phones.

    Raises:
        ValueError: If ``conv_id`` was not produced by conversation_id()
    """
    if not conv_id.startswith(CONVERSATION_ID_PREFIX):
        raise ValueError(f"Not a conversation id: {conv_id!r}")
    parts = conv_id[len(CONVERSATION_ID_PREFIX) :].split("_")
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"Not a conversation id: {conv_id!r}")
    return parts[0], parts[1]
