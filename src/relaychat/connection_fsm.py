"""
relaychat - Session state machine for the client's relay connection.

Tracks the lifecycle of one ClientConnection:

    DISCONNECTED -> CONNECTING -> CONNECTED -> REGISTERED
                        |             |            |
                        v             +-----+------+
                      ERROR                 v
                                      DISCONNECTED

Only REGISTERED allows sending. Nothing here retries: leaving ERROR or
DISCONNECTED always takes an explicit connect request.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """States of the client's relay session."""

    DISCONNECTED = auto()  # No transport
    CONNECTING = auto()  # Opening the WebSocket
    CONNECTED = auto()  # Transport open, register sent, not confirmed
    REGISTERED = auto()  # Relay confirmed our phone; sends allowed
    ERROR = auto()  # Last connect attempt failed


class SessionEvent(Enum):
    """Events that trigger state transitions."""

    CONNECT_REQUESTED = auto()
    TRANSPORT_OPENED = auto()
    TRANSPORT_FAILED = auto()
    REGISTER_CONFIRMED = auto()
    CONNECTION_LOST = auto()
    CLOSE_REQUESTED = auto()


@dataclass
class StateTransition:
    """Represents a state transition."""

    from_state: SessionState
    event: SessionEvent
    to_state: SessionState
    timestamp: float = field(default_factory=time.time)


class SessionStateMachine:
    """
    Finite state machine for the relay session.

    Enforces valid state transitions and keeps a short transition history.
    """

    TRANSITIONS: Dict[SessionState, Dict[SessionEvent, SessionState]] = {
        SessionState.DISCONNECTED: {
            SessionEvent.CONNECT_REQUESTED: SessionState.CONNECTING,
        },
        SessionState.CONNECTING: {
            SessionEvent.TRANSPORT_OPENED: SessionState.CONNECTED,
            SessionEvent.TRANSPORT_FAILED: SessionState.ERROR,
            SessionEvent.CLOSE_REQUESTED: SessionState.DISCONNECTED,
        },
        SessionState.CONNECTED: {
            SessionEvent.REGISTER_CONFIRMED: SessionState.REGISTERED,
            SessionEvent.CONNECTION_LOST: SessionState.DISCONNECTED,
            SessionEvent.CLOSE_REQUESTED: SessionState.DISCONNECTED,
        },
        SessionState.REGISTERED: {
            # A repeated confirmation keeps the session registered
            SessionEvent.REGISTER_CONFIRMED: SessionState.REGISTERED,
            SessionEvent.CONNECTION_LOST: SessionState.DISCONNECTED,
            SessionEvent.CLOSE_REQUESTED: SessionState.DISCONNECTED,
        },
        SessionState.ERROR: {
            SessionEvent.CONNECT_REQUESTED: SessionState.CONNECTING,
            SessionEvent.CLOSE_REQUESTED: SessionState.DISCONNECTED,
        },
    }

    def __init__(self, initial_state: SessionState = SessionState.DISCONNECTED):
        self.current_state = initial_state
        self.previous_state: Optional[SessionState] = None
        self.state_entry_time = time.time()
        self.error_message: Optional[str] = None
        self.transition_history: List[StateTransition] = []
        self.max_history = 100

        self.on_state_change: Optional[Callable[[SessionState, SessionState], None]] = None

    def transition(self, event: SessionEvent, error_msg: Optional[str] = None) -> bool:
        """
        Attempt state transition based on event.

        Args:
            event: Event triggering transition
            error_msg: Error description for TRANSPORT_FAILED

        Returns:
            True if transition successful, False otherwise
        """
        if not self.is_valid_transition(self.current_state, event):
            logger.debug(f"Ignored event {event.name} in state {self.current_state.name}")
            return False

        new_state = self.TRANSITIONS[self.current_state][event]

        if event == SessionEvent.TRANSPORT_FAILED:
            self.error_message = error_msg or "Unknown error"
        elif new_state == SessionState.CONNECTED:
            self.error_message = None

        old_state = self.current_state
        self.previous_state = old_state
        self.current_state = new_state
        self.state_entry_time = time.time()

        self.transition_history.append(StateTransition(old_state, event, new_state))
        if len(self.transition_history) > self.max_history:
            self.transition_history = self.transition_history[-self.max_history :]

        if old_state != new_state:
            logger.info(f"Session: {old_state.name} -> {new_state.name} (event: {event.name})")

            if self.on_state_change:
                try:
                    self.on_state_change(old_state, new_state)
                except Exception as e:
                    logger.error(f"State change callback error: {e}")

        return True

    def is_valid_transition(self, from_state: SessionState, event: SessionEvent) -> bool:
        return from_state in self.TRANSITIONS and event in self.TRANSITIONS[from_state]

    def get_state(self) -> SessionState:
        return self.current_state

    def get_time_in_state(self) -> float:
        """Get time spent in current state (seconds)."""
        return time.time() - self.state_entry_time

    def is_registered(self) -> bool:
        return self.current_state == SessionState.REGISTERED

    def is_open(self) -> bool:
        """Transport is up, whether or not registration was confirmed."""
        return self.current_state in (SessionState.CONNECTED, SessionState.REGISTERED)

    def get_history(self, count: int = 10) -> List[StateTransition]:
        return self.transition_history[-count:]

    def get_statistics(self) -> Dict[str, Any]:
        event_counts: Dict[str, int] = {}
        for transition in self.transition_history:
            event_counts[transition.event.name] = event_counts.get(transition.event.name, 0) + 1

        return {
            "current_state": self.current_state.name,
            "previous_state": self.previous_state.name if self.previous_state else None,
            "time_in_state": self.get_time_in_state(),
            "error_message": self.error_message,
            "total_transitions": len(self.transition_history),
            "event_counts": event_counts,
        }

    def __repr__(self) -> str:
        return (
            f"SessionStateMachine(state={self.current_state.name}, "
            f"time_in_state={self.get_time_in_state():.1f}s)"
        )
