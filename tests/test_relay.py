"""
relaychat - Relay protocol handler tests.

Drives RelayProtocolHandler through in-memory transports: registration,
live forwarding, offline queueing and drain, acks and error replies.
"""

import asyncio
import json

import pytest

from relaychat.relay import RelayState


def _connect(service, transport_factory):
    transport = transport_factory()
    return service.new_handler(transport), transport


async def _register(handler, phone):
    await handler.handle_frame(json.dumps({"type": "register", "phoneNumber": phone}))


async def _send(handler, to, content="hi", **extra):
    envelope = {"type": "message", "to": to, "content": content, **extra}
    await handler.handle_frame(json.dumps(envelope))


@pytest.mark.asyncio
async def test_register_replies_registered(service, transport_factory):
    handler, transport = _connect(service, transport_factory)

    await _register(handler, "+1111")

    assert transport.envelopes == [{"type": "registered", "phoneNumber": "+1111"}]
    assert handler.state is RelayState.REGISTERED
    assert service.registry.lookup("+1111") is handler


@pytest.mark.asyncio
async def test_offline_message_queued_then_drained(service, transport_factory):
    """A message for a never-registered phone waits and is drained on register."""
    alice, alice_tx = _connect(service, transport_factory)
    await _register(alice, "+1111")

    await _send(alice, "+2222", "hi")

    assert len(alice_tx.of_type("ack")) == 1
    assert service.pending.get_pending_count("+2222") == 1

    bob, bob_tx = _connect(service, transport_factory)
    await _register(bob, "+2222")

    envelopes = bob_tx.envelopes
    assert envelopes[0] == {"type": "registered", "phoneNumber": "+2222"}
    assert envelopes[1]["type"] == "message"
    assert envelopes[1]["from"] == "+1111"
    assert envelopes[1]["to"] == "+2222"
    assert envelopes[1]["content"] == "hi"
    assert envelopes[1]["contentType"] == "text"
    assert envelopes[1]["id"] == alice_tx.of_type("ack")[0]["id"]
    assert service.pending.get_pending_count("+2222") == 0


@pytest.mark.asyncio
async def test_drain_preserves_order(service, transport_factory):
    alice, _ = _connect(service, transport_factory)
    await _register(alice, "+1111")
    for n in range(5):
        await _send(alice, "+2222", f"m{n}")

    bob, bob_tx = _connect(service, transport_factory)
    await _register(bob, "+2222")

    assert [env["content"] for env in bob_tx.of_type("message")] == [f"m{n}" for n in range(5)]


@pytest.mark.asyncio
async def test_live_forward(service, transport_factory):
    alice, alice_tx = _connect(service, transport_factory)
    bob, bob_tx = _connect(service, transport_factory)
    await _register(alice, "+1111")
    await _register(bob, "+2222")

    await _send(alice, "+2222", "QUJD", contentType="image")

    delivered = bob_tx.of_type("message")
    ack = alice_tx.of_type("ack")[0]
    assert len(delivered) == 1
    assert delivered[0]["contentType"] == "image"
    assert delivered[0]["id"] == ack["id"]
    assert delivered[0]["timestamp"] == ack["timestamp"]
    assert ack["id"].startswith("msg_")
    assert service.pending.get_pending_count("+2222") == 0
    assert service.messages_relayed == 1


@pytest.mark.asyncio
async def test_exactly_one_ack_per_message(service, transport_factory):
    alice, alice_tx = _connect(service, transport_factory)
    bob, _ = _connect(service, transport_factory)
    await _register(alice, "+1111")
    await _register(bob, "+2222")

    await _send(alice, "+2222")  # live
    await _send(alice, "+3333")  # queued

    acks = alice_tx.of_type("ack")
    assert len(acks) == 2
    assert acks[0]["id"] != acks[1]["id"]


@pytest.mark.asyncio
async def test_missing_content_is_invalid_and_connection_survives(service, transport_factory):
    alice, alice_tx = _connect(service, transport_factory)
    await _register(alice, "+1111")

    await alice.handle_frame(json.dumps({"type": "message", "to": "+2222"}))

    assert alice_tx.envelopes[-1]["type"] == "error"
    assert alice_tx.envelopes[-1]["code"] == "invalid"
    assert alice.state is RelayState.REGISTERED

    await _send(alice, "+2222", "second try")
    assert alice_tx.envelopes[-1]["type"] == "ack"


@pytest.mark.asyncio
async def test_empty_content_is_accepted(service, transport_factory):
    alice, alice_tx = _connect(service, transport_factory)
    await _register(alice, "+1111")

    await _send(alice, "+2222", "")

    assert alice_tx.envelopes[-1]["type"] == "ack"


@pytest.mark.asyncio
async def test_parse_error_then_register(service, transport_factory):
    handler, transport = _connect(service, transport_factory)

    await handler.handle_frame("this is {not json")

    assert transport.envelopes[-1]["type"] == "error"
    assert transport.envelopes[-1]["code"] == "parse"

    await _register(handler, "+1111")
    assert transport.envelopes[-1] == {"type": "registered", "phoneNumber": "+1111"}


@pytest.mark.asyncio
async def test_unknown_type(service, transport_factory):
    handler, transport = _connect(service, transport_factory)
    await _register(handler, "+1111")

    await handler.handle_frame('{"type":"typing"}')

    assert transport.envelopes[-1]["code"] == "unknown"


@pytest.mark.asyncio
async def test_register_without_phone_is_invalid(service, transport_factory):
    handler, transport = _connect(service, transport_factory)

    await handler.handle_frame('{"type":"register"}')

    assert transport.envelopes[-1]["code"] == "invalid"
    assert handler.state is RelayState.UNREGISTERED
    assert len(service.registry) == 0


@pytest.mark.asyncio
async def test_unregistered_sender_is_invalid(service, transport_factory):
    handler, transport = _connect(service, transport_factory)

    await _send(handler, "+2222")

    assert transport.envelopes[-1]["code"] == "invalid"
    assert service.pending.get_pending_count("+2222") == 0


@pytest.mark.asyncio
async def test_sync_and_conversations_stubs(service, transport_factory):
    handler, transport = _connect(service, transport_factory)
    await _register(handler, "+1111")

    await handler.handle_frame('{"type":"sync","since":"2024-01-01"}')
    await handler.handle_frame('{"type":"conversations"}')

    assert transport.envelopes[-2] == {"type": "sync_done", "count": 0}
    assert transport.envelopes[-1] == {"type": "conversations", "list": []}


@pytest.mark.asyncio
async def test_close_removes_registration(service, transport_factory):
    handler, _ = _connect(service, transport_factory)
    await _register(handler, "+1111")

    await handler.close()

    assert handler.state is RelayState.CLOSED
    assert service.registry.lookup("+1111") is None


@pytest.mark.asyncio
async def test_superseded_connection_close_keeps_new_one(service, transport_factory):
    old, _ = _connect(service, transport_factory)
    new, new_tx = _connect(service, transport_factory)
    await _register(old, "+2222")
    await _register(new, "+2222")

    await old.close()

    assert service.registry.lookup("+2222") is new

    sender, _ = _connect(service, transport_factory)
    await _register(sender, "+1111")
    await _send(sender, "+2222", "to the newest")
    assert new_tx.of_type("message")[0]["content"] == "to the newest"


@pytest.mark.asyncio
async def test_dead_destination_falls_back_to_queue(service, transport_factory):
    """A registered but broken connection does not lose the message."""
    bob, bob_tx = _connect(service, transport_factory)
    await _register(bob, "+2222")
    bob_tx.fail_sends = True

    alice, alice_tx = _connect(service, transport_factory)
    await _register(alice, "+1111")
    await _send(alice, "+2222", "kept")

    assert alice_tx.envelopes[-1]["type"] == "ack"
    assert service.pending.get_pending_count("+2222") == 1


@pytest.mark.asyncio
async def test_closed_destination_is_queued(service, transport_factory):
    bob, bob_tx = _connect(service, transport_factory)
    await _register(bob, "+2222")
    bob_tx.open = False

    alice, _ = _connect(service, transport_factory)
    await _register(alice, "+1111")
    await _send(alice, "+2222")

    assert service.pending.get_pending_count("+2222") == 1


@pytest.mark.asyncio
async def test_frames_after_close_ignored(service, transport_factory):
    handler, transport = _connect(service, transport_factory)
    await handler.close()

    await _register(handler, "+1111")

    assert transport.sent == []
    assert len(service.registry) == 0


@pytest.mark.asyncio
async def test_live_push_waits_for_drain(service, transport_factory):
    """A live push racing a drain is written after the drained messages."""
    alice, _ = _connect(service, transport_factory)
    await _register(alice, "+1111")
    for n in range(3):
        await _send(alice, "+2222", f"queued {n}")

    bob, bob_tx = _connect(service, transport_factory)
    await asyncio.gather(_register(bob, "+2222"), _send(alice, "+2222", "live"))

    contents = [env["content"] for env in bob_tx.of_type("message")]
    assert contents == ["queued 0", "queued 1", "queued 2", "live"]
    assert service.pending.get_pending_count("+2222") == 0


@pytest.mark.asyncio
async def test_statistics(service, transport_factory):
    alice, _ = _connect(service, transport_factory)
    await _register(alice, "+1111")
    await _send(alice, "+2222")

    stats = service.get_statistics()

    assert stats["online_peers"] == 1
    assert stats["messages_queued"] == 1
    assert stats["pending"]["total_messages"] == 1
