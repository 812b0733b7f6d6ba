#!/usr/bin/env python3
"""
Biometric authenticator adapters.

The platform prompt itself is out of scope. These adapters turn a blocking
"ask the user" call into the Future-returning BiometricAuthenticator the
lock controller expects.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional, Union

from ..core.errors import AuthError
from ..core.models import AuthFailureReason, AuthResult

logger = logging.getLogger(__name__)

# Blocking prompt: takes the reason text, returns granted or a full result
PromptFunction = Callable[[str], Union[bool, AuthResult]]


class CallableAuthenticator:
    """
    Runs a blocking prompt function on a worker thread.

    The function may return a bool, an AuthResult, or raise AuthError to
    report a specific failure reason. Any other exception is a FAILED
    result, never an exception on the future.
    """

    def __init__(self, prompt: PromptFunction, name: str = "visionlock-auth"):
        self._prompt = prompt
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)

    def authenticate(self, reason: str) -> "Future[AuthResult]":
        return self._executor.submit(self._challenge, reason)

    def _challenge(self, reason: str) -> AuthResult:
        try:
            outcome = self._prompt(reason)
        except AuthError as e:
            return AuthResult.failure(e.reason, e.message)
        except Exception as e:
            logger.error(f"Authentication prompt error: {e}")
            return AuthResult.failure(AuthFailureReason.FAILED, str(e))

        if isinstance(outcome, AuthResult):
            return outcome
        if outcome:
            return AuthResult.success()
        return AuthResult.failure(AuthFailureReason.FAILED)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)


class ConsoleAuthenticator(CallableAuthenticator):
    """Terminal stand-in for a biometric prompt, for the demo host."""

    def __init__(self, input_fn: Optional[Callable[[str], str]] = None):
        self._input = input_fn or input
        super().__init__(self._ask, name="visionlock-console-auth")

    def _ask(self, reason: str) -> AuthResult:
        try:
            answer = self._input(f"{reason} Unlock? [y/N] ").strip().lower()
        except EOFError:
            return AuthResult.failure(AuthFailureReason.HARDWARE_UNAVAILABLE, "no terminal")
        if answer in ("y", "yes"):
            return AuthResult.success()
        return AuthResult.failure(AuthFailureReason.USER_CANCEL)
