#!/usr/bin/env python3
"""
Authentication adapters for VisionLock.
"""

from .authenticator import CallableAuthenticator, ConsoleAuthenticator

__all__ = [
    "CallableAuthenticator",
    "ConsoleAuthenticator",
]
