#!/usr/bin/env python3
"""
Presence events and the event bus that delivers them.

Two event kinds reach the presentation layer: FACE_PRESENT and
FACE_NOT_PRESENT. Subscribers register per kind and get a token back;
the token is the only way to unsubscribe.
"""

import itertools
import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from enum import Enum, auto
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


# =============================================================================
# EVENT TYPES
# =============================================================================

class PresenceEvent(Enum):
    """Events published to the presentation layer."""
    FACE_PRESENT = auto()       # Exactly one trusted face acquired
    FACE_NOT_PRESENT = auto()   # Presence lost; content should be hidden


# Type alias for event handlers
EventHandler = Callable[[PresenceEvent], None]


@dataclass(frozen=True)
class SubscriptionToken:
    """Opaque handle returned by subscribe()."""
    id: int
    event: PresenceEvent


# =============================================================================
# EVENT BUS
# =============================================================================

class EventBus:
    """
    Typed publish/subscribe channel.

    Features:
    - Subscribe per event kind, unsubscribe by token
    - Serialized delivery: one queue, events arrive in publish order
    - No replay: late subscribers only see future events
    - Thread-safe
    """

    def __init__(self, executor: Optional[Executor] = None, serial: bool = True):
        """
        Initialize event bus.

        Args:
            executor: Single-worker executor to deliver on. LockController
                passes its own so delivery never overlaps a state change.
            serial: When no executor is given, create a private single-worker
                one (True) or deliver synchronously in publish() (False).
        """
        self._handlers: Dict[PresenceEvent, Dict[int, EventHandler]] = {
            kind: {} for kind in PresenceEvent
        }
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

        self._owns_executor = executor is None and serial
        if self._owns_executor:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="visionlock-events")
        else:
            self._executor = executor

        self._running = True

    def subscribe(self, event: PresenceEvent, handler: EventHandler) -> SubscriptionToken:
        """
        Subscribe to one event kind.

        Args:
            event: Event kind to receive
            handler: Callback function(event) -> None

        Returns:
            Token to pass to unsubscribe()
        """
        with self._lock:
            token = SubscriptionToken(id=next(self._ids), event=event)
            self._handlers[event][token.id] = handler
        return token

    def unsubscribe(self, token: SubscriptionToken) -> bool:
        """
        Remove a subscription.

        Returns:
            True if the token was registered
        """
        with self._lock:
            return self._handlers[token.event].pop(token.id, None) is not None

    def publish(self, event: PresenceEvent) -> None:
        """Deliver an event to every subscriber of its kind."""
        if not self._running:
            logger.debug(f"Bus shut down, dropping {event.name}")
            return

        # Snapshot now so handlers added later never see this event
        with self._lock:
            handlers = list(self._handlers[event].items())

        if self._executor is None:
            self._deliver(event, handlers)
        else:
            self._executor.submit(self._deliver, event, handlers)

    def subscriber_count(self, event: Optional[PresenceEvent] = None) -> int:
        with self._lock:
            if event is None:
                return sum(len(h) for h in self._handlers.values())
            return len(self._handlers[event])

    def _deliver(self, event: PresenceEvent, handlers: List[Tuple[int, EventHandler]]) -> None:
        for token_id, handler in handlers:
            # Honour unsubscribes that landed after publish()
            with self._lock:
                if token_id not in self._handlers[event]:
                    continue
            self._call_handler(handler, event)

    def _call_handler(self, handler: EventHandler, event: PresenceEvent) -> None:
        """Call handler with error handling."""
        try:
            handler(event)
        except Exception as e:
            logger.error(f"Event handler error for {event.name}: {e}")

    def shutdown(self) -> None:
        """Stop delivering events."""
        self._running = False
        if self._owns_executor:
            self._executor.shutdown(wait=True)


# =============================================================================
# EVENT LOGGING HANDLER
# =============================================================================

class EventLogger:
    """Handler that logs every event it receives."""

    def __init__(self, log_level: int = logging.INFO):
        self.log_level = log_level
        self._logger = logging.getLogger("events")

    def __call__(self, event: PresenceEvent) -> None:
        self._logger.log(self.log_level, f"[{event.name}]")

    def attach(self, bus: EventBus) -> List[SubscriptionToken]:
        """Subscribe to every event kind on a bus."""
        return [bus.subscribe(kind, self) for kind in PresenceEvent]
