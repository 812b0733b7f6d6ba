#!/usr/bin/env python3
"""
Presence Aggregator
===================
Turns per-cycle face observations into a stable presence boolean.

A face is alive for a cycle when it is not terminal and its confidence is
at least the threshold. Presence is decided from the number of alive faces:

  EXACTLY_ONE   → present iff exactly one face (0 or 2+ both mean absent)
  AT_LEAST_ONE  → present iff any face

There is no time window. Debouncing comes from the tracker, which keeps an
observation alive across frames instead of re-detecting every frame.
"""

import logging
import time
from typing import Callable, List, Optional, Sequence

from ..core.config import PresenceConfig, PresencePolicy
from ..core.models import PresenceState, PresenceChangedEvent, TrackedFace

logger = logging.getLogger(__name__)


class PresenceAggregator:
    """
    Owns the single PresenceState.

    Not thread-safe. LockController only calls it from its serial queue.
    """

    def __init__(
        self,
        config: Optional[PresenceConfig] = None,
        clock: Callable[[], float] = time.time
    ):
        self.config = config or PresenceConfig()
        self._clock = clock
        self._state = PresenceState()
        self._active_count = 0
        self._cycles = 0

    @property
    def state(self) -> PresenceState:
        return self._state

    @property
    def present(self) -> bool:
        return self._state.present

    @property
    def active_count(self) -> int:
        """Alive faces in the most recent cycle."""
        return self._active_count

    @property
    def cycles(self) -> int:
        return self._cycles

    def count_active(self, observations: Sequence[TrackedFace]) -> int:
        threshold = self.config.confidence_threshold
        return sum(1 for face in observations if face.is_alive(threshold))

    def evaluate(self, active: int) -> bool:
        """Presence for a given number of alive faces."""
        if self.config.policy == PresencePolicy.AT_LEAST_ONE:
            return active >= 1
        return active == 1

    def update(self, observations: List[TrackedFace]) -> Optional[PresenceChangedEvent]:
        """
        Fold one cycle of observations into presence.

        Args:
            observations: Every face the tracker reported this cycle

        Returns:
            PresenceChangedEvent if presence flipped, None otherwise
        """
        self._cycles += 1
        self._active_count = self.count_active(observations)
        new = self.evaluate(self._active_count)

        previous = self._state.present
        if new == previous:
            return None

        now = self._clock()
        self._state = PresenceState(present=new, last_changed_at=now)
        logger.debug(f"Presence {previous} → {new} ({self._active_count} active faces)")
        return PresenceChangedEvent(previous=previous, new=new, timestamp=now)

    def reset(self) -> None:
        """Back to not-present, without an event. Called per Monitoring session."""
        self._state = PresenceState(present=False, last_changed_at=self._clock())
        self._active_count = 0
        self._cycles = 0

    def get_status(self) -> dict:
        """Get current status for display."""
        return {
            "present": self._state.present,
            "last_changed_at": self._state.last_changed_at,
            "active_faces": self._active_count,
            "cycles": self._cycles,
            "policy": self.config.policy.value,
        }
