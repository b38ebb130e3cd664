"""
relaychat - Peer registry for the relay.

Maps a phone identifier to the live connection that registered it. The
registry is the single source of truth for "is this peer reachable now" and
is rebuilt from scratch on every relay process run.
"""

import logging
import threading
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class PeerRegistry:
    """
    Phone -> connection mapping with at most one live entry per phone.

    A newer registration for the same phone silently replaces the previous
    mapping; the displaced connection is not told.

    Thread Safety:
        Mutations are guarded by a threading.Lock so the registry keeps the
        same serialization when driven from more than one thread.
    """

    def __init__(self):
        self._peers: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def register(self, phone: str, connection: Any) -> None:
        """Bind ``phone`` to ``connection``, overwriting any existing entry."""
        with self._lock:
            previous = self._peers.get(phone)
            self._peers[phone] = connection

        if previous is not None and previous is not connection:
            logger.info(f"Registration for {phone} replaced an existing connection")
        else:
            logger.info(f"Peer registered: {phone}")

    def lookup(self, phone: str) -> Optional[Any]:
        """Get the connection registered for ``phone``, or None."""
        with self._lock:
            return self._peers.get(phone)

    def remove(self, phone: str, connection: Optional[Any] = None) -> bool:
        """
        Remove the entry for ``phone``.

        Args:
            phone: Phone identifier
            connection: When given, only remove the entry if it still maps to
                this connection (a superseded connection closing must not
                evict its replacement)

        Returns:
            True if an entry was removed, False if nothing matched
        """
        with self._lock:
            current = self._peers.get(phone)
            if current is None:
                return False
            if connection is not None and current is not connection:
                return False
            del self._peers[phone]

        logger.info(f"Peer removed: {phone}")
        return True

    def is_online(self, phone: str) -> bool:
        """Check whether ``phone`` currently has a registered connection."""
        return self.lookup(phone) is not None

    def phones(self) -> List[str]:
        """Get all registered phone identifiers."""
        with self._lock:
            return list(self._peers.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)

    def __contains__(self, phone: str) -> bool:
        return self.is_online(phone)
