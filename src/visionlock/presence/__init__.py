#!/usr/bin/env python3
"""
Presence module for VisionLock.

Debounces per-cycle face observations into a presence boolean.
"""

from .aggregator import PresenceAggregator

__all__ = [
    "PresenceAggregator",
]
