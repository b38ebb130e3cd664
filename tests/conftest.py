"""
Pytest configuration and fixtures for relaychat tests.

Provides common fixtures and test utilities for unit and integration tests.
"""

import asyncio
import json
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator, List

import pytest

from relaychat.errors import ErrorCode, TransportError
from relaychat.relay import RelayService


class FakeTransport:
    """In-memory relay transport recording every frame sent to the client."""

    def __init__(self):
        self.sent: List[str] = []
        self.open = True
        self.fail_sends = False

    @property
    def is_open(self) -> bool:
        return self.open

    async def send(self, text: str) -> None:
        # Yield like a real socket write so concurrent senders interleave.
        await asyncio.sleep(0)
        if not self.open or self.fail_sends:
            raise TransportError(ErrorCode.E202_CONNECTION_CLOSED, "Connection closed")
        self.sent.append(text)

    @property
    def envelopes(self) -> List[Dict[str, Any]]:
        return [json.loads(frame) for frame in self.sent]

    def of_type(self, msg_type: str) -> List[Dict[str, Any]]:
        return [env for env in self.envelopes if env.get("type") == msg_type]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for test data.

    Yields:
        Path: Temporary directory path

    Cleanup:
        Automatically removes directory after test
    """
    tmp = Path(tempfile.mkdtemp(prefix="relaychat_test_"))
    try:
        yield tmp
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def service() -> RelayService:
    """Fresh relay state (registry and pending queue)."""
    return RelayService()


@pytest.fixture
def transport_factory():
    """Build FakeTransport instances."""
    return FakeTransport


@pytest.fixture
def sample_delivery_envelope() -> dict:
    """
    Provide a delivery envelope as pushed by the relay.

    Returns:
        dict: Sample message envelope
    """
    return {
        "type": "message",
        "id": "msg_1735689600000_abc123",
        "from": "+15550002",
        "to": "+15550001",
        "content": "Hello, World!",
        "contentType": "text",
        "timestamp": "2025-01-01T00:00:00.000Z",
    }


# Pytest marks
def pytest_configure(config):
    """
    Configure pytest markers.

    Args:
        config: Pytest configuration object
    """
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")


# Test collection hooks
def pytest_collection_modifyitems(config, items):
    """
    Modify test collection to add markers based on test location.

    Args:
        config: Pytest configuration
        items: List of collected test items
    """
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
