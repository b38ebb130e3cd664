"""
relaychat - Pending queue for offline recipients.

Messages accepted by the relay while their recipient is not registered are
held here, in arrival order, until the recipient registers. The queue lives
in memory only; a relay restart forgets it.

Delivery from the queue is at-most-once: drain_and_clear() hands over the
whole list and empties it in one step, and nothing is ever re-enqueued.
"""

import logging
import threading
import time
from typing import Any, Dict, List

logger = logging.getLogger(__name__)


class PendingQueue:
    """
    Per-recipient ordered buffer of delivery envelopes.

    Thread Safety:
        All list operations are protected by a threading.Lock so enqueue and
        drain never interleave on the same recipient.
    """

    def __init__(self):
        self._pending: Dict[str, List[Dict[str, Any]]] = {}
        self._lock = threading.Lock()
        self.total_enqueued = 0
        self.total_drained = 0
        self.last_drain: float = 0.0

    def enqueue(self, phone: str, message: Dict[str, Any]) -> None:
        """
        Append ``message`` to the tail of ``phone``'s list.

        Args:
            phone: Recipient phone identifier
            message: Delivery envelope to hold
        """
        with self._lock:
            self._pending.setdefault(phone, []).append(message)
            self.total_enqueued += 1
            count = len(self._pending[phone])

        logger.info(f"Message {message.get('id')} queued for {phone} ({count} pending)")

    def drain_and_clear(self, phone: str) -> List[Dict[str, Any]]:
        """
        Take every pending message for ``phone`` in enqueue order.

        The list is removed in the same step, so there are no partial drains.

        Returns:
            Ordered list of envelopes (empty if nothing was pending)
        """
        with self._lock:
            messages = self._pending.pop(phone, [])
            self.total_drained += len(messages)
            if messages:
                self.last_drain = time.time()

        if messages:
            logger.info(f"Drained {len(messages)} pending messages for {phone}")
        return messages

    def get_pending_count(self, phone: str) -> int:
        """Get count of pending messages for ``phone``."""
        with self._lock:
            return len(self._pending.get(phone, []))

    def get_all_recipients(self) -> List[str]:
        """Get list of all recipients with pending messages."""
        with self._lock:
            return [phone for phone, messages in self._pending.items() if messages]

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get queue statistics.

        Returns:
            Dictionary with statistics
        """
        with self._lock:
            by_recipient = {phone: len(msgs) for phone, msgs in self._pending.items() if msgs}

        return {
            "total_messages": sum(by_recipient.values()),
            "recipients_with_pending": len(by_recipient),
            "by_recipient": by_recipient,
            "total_enqueued": self.total_enqueued,
            "total_drained": self.total_drained,
            "last_drain": self.last_drain,
        }
