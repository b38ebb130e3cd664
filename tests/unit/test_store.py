"""
Unit tests for relaychat.message module (ConversationStore).

Tests encrypted persistence, full-rewrite semantics and corruption handling.
"""

import json

import pytest

from relaychat.crypto import StorageCipher
from relaychat.message import Conversation, ConversationStore, Message, MessageDirection
from relaychat.protocol import ContentType

CONV_ID = "p2p_+15550001_+15550002"


def _message(n: int, direction=MessageDirection.REMOTE) -> Message:
    return Message(id=f"msg_{n}", direction=direction, content=f"text {n}")


@pytest.fixture
def store(temp_dir):
    return ConversationStore(temp_dir)


def test_load_missing(store):
    assert store.load(CONV_ID) is None


def test_append_creates_and_orders(store):
    """Sequential appends come back in order."""
    for n in range(3):
        assert store.append(CONV_ID, _message(n)) is True

    conversation = store.load(CONV_ID)

    assert [m.id for m in conversation.messages] == ["msg_0", "msg_1", "msg_2"]
    assert conversation.messages[0] == _message(0)
    assert conversation.created_at


def test_file_is_encrypted(store, temp_dir):
    store.append(CONV_ID, _message(1))
    raw = (temp_dir / "conversations" / f"{CONV_ID}.dat").read_text()

    assert "text 1" not in raw
    data = json.loads(StorageCipher().decrypt(raw))
    assert data["id"] == CONV_ID
    assert data["messages"][0]["type"] == "remote"
    assert data["unreadCount"] == 0


def test_no_temp_file_left(store, temp_dir):
    store.append(CONV_ID, _message(1))
    assert [p.name for p in (temp_dir / "conversations").iterdir()] == [f"{CONV_ID}.dat"]


def test_unread_changes_only_by_increment(store):
    store.append(CONV_ID, _message(1))
    assert store.load(CONV_ID).unread_count == 0

    store.append(CONV_ID, _message(2), unread_increment=1)
    store.append(CONV_ID, _message(3), unread_increment=1)
    assert store.load(CONV_ID).unread_count == 2

    assert store.mark_read(CONV_ID) is True
    assert store.load(CONV_ID).unread_count == 0
    assert store.mark_read(CONV_ID) is False


def test_remove(store):
    for n in range(3):
        store.append(CONV_ID, _message(n))

    assert store.remove(CONV_ID, "msg_1") is True
    assert store.remove(CONV_ID, "msg_1") is False
    assert [m.id for m in store.load(CONV_ID).messages] == ["msg_0", "msg_2"]


def test_remove_from_missing_conversation(store):
    assert store.remove(CONV_ID, "msg_1") is False


def test_delete(store):
    store.append(CONV_ID, _message(1))
    assert store.delete(CONV_ID) is True
    assert store.load(CONV_ID) is None
    assert store.delete(CONV_ID) is False


def test_corrupted_file_reads_as_absent(store, temp_dir):
    """Corruption is treated as no conversation."""
    path = temp_dir / "conversations" / f"{CONV_ID}.dat"
    path.write_text("not:encrypted")

    assert store.load(CONV_ID) is None


def test_corrupted_file_replaced_on_next_append(store, temp_dir):
    (temp_dir / "conversations" / f"{CONV_ID}.dat").write_text("garbage")

    assert store.append(CONV_ID, _message(9)) is True

    assert [m.id for m in store.load(CONV_ID).messages] == ["msg_9"]


def test_valid_ciphertext_invalid_json(store, temp_dir):
    path = temp_dir / "conversations" / f"{CONV_ID}.dat"
    path.write_text(StorageCipher().encrypt("{not json"))

    assert store.load(CONV_ID) is None


@pytest.mark.parametrize(
    "payload",
    [
        {"id": CONV_ID, "messages": ["oops"]},
        {"id": CONV_ID, "messages": "oops"},
        {"id": CONV_ID, "messages": [None]},
        ["not", "an", "object"],
    ],
)
def test_valid_json_wrong_shape_reads_as_absent(store, temp_dir, payload):
    path = temp_dir / "conversations" / f"{CONV_ID}.dat"
    path.write_text(StorageCipher().encrypt(json.dumps(payload)))

    assert store.load(CONV_ID) is None
    assert store.list_conversations() == []
    assert store.append(CONV_ID, _message(1)) is True
    assert [m.id for m in store.load(CONV_ID).messages] == ["msg_1"]


def test_wrong_key_reads_as_absent(temp_dir):
    ConversationStore(temp_dir, StorageCipher("one")).append(CONV_ID, _message(1))
    assert ConversationStore(temp_dir, StorageCipher("two")).load(CONV_ID) is None


def test_rejects_path_like_ids(store):
    assert store.load("../escape") is None
    assert store.append("../escape", _message(1)) is False


def test_media_message_fields(store):
    message = Message(
        id="msg_img",
        direction=MessageDirection.LOCAL,
        content="media/img/img_0001.jpg",
        content_type=ContentType.IMAGE,
        quick_replies=["ok", "later"],
    )
    store.append(CONV_ID, message)

    loaded = store.load(CONV_ID).messages[0]

    assert loaded == message
    assert loaded.is_media


def test_list_conversations_newest_first(store):
    store.save(Conversation(id="p2p_+1_+2", created_at="2024-01-01T00:00:00+00:00"))
    store.save(Conversation(id="p2p_+1_+3", created_at="2025-01-01T00:00:00+00:00"))

    assert [c.id for c in store.list_conversations()] == ["p2p_+1_+3", "p2p_+1_+2"]


def test_from_dict_tolerates_unknown_values():
    message = Message.from_dict({"id": "x", "type": "bot", "content": "hi", "contentType": "gif"})
    assert message.direction is MessageDirection.LOCAL
    assert message.content_type is ContentType.TEXT


@pytest.mark.asyncio
async def test_append_async(store):
    assert await store.append_async(CONV_ID, _message(1), unread_increment=1) is True
    assert await store.append_async(CONV_ID, _message(2)) is True

    conversation = store.load(CONV_ID)
    assert [m.id for m in conversation.messages] == ["msg_1", "msg_2"]
    assert conversation.unread_count == 1
