#!/usr/bin/env python3
"""
Lock Controller
===============
Gates sensitive content on the presence of exactly one trusted face.

State Diagram:
    IDLE ──start()──▶ AUTHENTICATING ──granted──▶ MONITORING
      ▲                 │    ▲                     │      │
      └──denied/error───┘    └────presence lost────┘      │
                             ▲                            │
                             └──foreground── SUSPENDED ◀──┘ background
    any ──stop()──▶ IDLE
    MONITORING ──camera stream died──▶ IDLE

Concurrency:
- Every state change runs on one serial queue (a single-worker executor),
  so frame-driven presence updates and lifecycle signals never race.
- Each challenge gets an attempt id and each Monitoring session a
  generation id. Callbacks carrying an old id are dropped.
- Teardown stops the camera thread and the tracking worker before any
  new acquisition starts.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, CancelledError
from dataclasses import dataclass
from typing import Callable, List, Optional

from .core.config import LockConfig, ReentryPolicy
from .core.errors import AuthError, LifecycleRaceError
from .core.events import EventBus, PresenceEvent, SubscriptionToken
from .core.models import (
    AuthFailureReason, AuthResult, Frame, PresenceState, SessionState, TrackedFace
)
from .core.protocols import BiometricAuthenticator, CaptureSession, FaceTracker, FrameSource
from .presence.aggregator import PresenceAggregator
from .tracking.cycle import TrackingCycle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StateTransition:
    """Record of a session state transition."""
    from_state: SessionState
    to_state: SessionState
    trigger: str
    timestamp: float
    attempt: int = 0


class LockController:
    """
    Orchestrates authentication, capture and presence for one session.

    Exclusively owns the capture session and tracking cycle while
    MONITORING. Nothing else holds on to them.
    """

    def __init__(
        self,
        authenticator: BiometricAuthenticator,
        frame_source: FrameSource,
        face_tracker: FaceTracker,
        config: Optional[LockConfig] = None,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], float] = time.time,
        history_size: int = 100
    ):
        """
        Initialize controller.

        Args:
            authenticator: Biometric prompt
            frame_source: Camera
            face_tracker: Face detection/tracking
            config: Lock configuration
            event_bus: Bus for presence events; by default one that
                delivers on this controller's serial queue
            clock: Time source for presence timestamps
            history_size: Number of transitions to keep
        """
        self.config = config or LockConfig()
        self._auth = authenticator
        self._source = frame_source
        self._tracker = face_tracker
        self._clock = clock

        self._serial = ThreadPoolExecutor(max_workers=1, thread_name_prefix="visionlock-lock")
        # The single worker thread lives as long as the executor
        self._serial_ident = self._serial.submit(threading.get_ident).result()

        self._owns_bus = event_bus is None
        self.event_bus = event_bus or EventBus(executor=self._serial)

        self._presence = PresenceAggregator(self.config.presence, clock)

        # Everything below is only touched on the serial queue
        self._state = SessionState.IDLE
        self._attempt = 0
        self._auth_future: Optional[Future] = None
        self._waiters: List[Future] = []
        self._generation = 0
        self._capture: Optional[CaptureSession] = None
        self._cycle: Optional[TrackingCycle] = None

        self._history: List[StateTransition] = []
        self._history_size = history_size
        self._transition_callbacks: List[Callable[[StateTransition], None]] = []
        self._closed = False

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def presence(self) -> PresenceState:
        return self._presence.state

    @property
    def tracking_cycle(self) -> Optional[TrackingCycle]:
        """The live cycle while MONITORING, else None."""
        return self._cycle

    @property
    def transitions(self) -> List[StateTransition]:
        return list(self._history)

    def start_async(self, reason: Optional[str] = None) -> "Future[SessionState]":
        """
        Begin a challenge without blocking.

        The future resolves to MONITORING on success, raises AuthError or
        DeviceError on failure, or resolves to the state reached if stop()
        or a background signal supersedes the challenge.
        """
        caller: Future = Future()
        caller.set_running_or_notify_cancel()
        if self._post(self._handle_start, caller, reason) is None:
            caller.set_exception(RuntimeError("LockController is closed"))
        return caller

    def start(self, reason: Optional[str] = None, timeout: Optional[float] = None) -> SessionState:
        """
        Authenticate and start monitoring. Blocks until resolved.

        Raises:
            AuthError: challenge not granted
            DeviceError: no usable camera
            RuntimeError: called from an event handler (use start_async)
        """
        if self._on_serial_queue():
            raise RuntimeError("start() would deadlock on the lock queue, use start_async()")
        return self.start_async(reason).result(timeout)

    def stop(self) -> None:
        """Tear everything down and go IDLE."""
        self._call(self._handle_stop)

    def on_app_background(self) -> None:
        """Host app entered background: release the camera now."""
        self._call(self._handle_background)

    def on_app_foreground(self) -> None:
        """Host app is entering foreground: re-challenge if suspended."""
        self._call(self._handle_foreground)

    def on_face_appeared(self, action: Callable[[], None]) -> SubscriptionToken:
        return self.event_bus.subscribe(PresenceEvent.FACE_PRESENT, lambda _event: action())

    def on_face_disappeared(self, action: Callable[[], None]) -> SubscriptionToken:
        return self.event_bus.subscribe(PresenceEvent.FACE_NOT_PRESENT, lambda _event: action())

    def on_transition(self, callback: Callable[[StateTransition], None]) -> None:
        """Register a callback for state transitions (runs on the lock queue)."""
        self._transition_callbacks.append(callback)

    def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Block until everything queued so far, event delivery included, has run."""
        if self._on_serial_queue():
            return
        self._serial.submit(lambda: None).result(timeout)

    def close(self) -> None:
        """Stop and release the lock queue. The controller cannot be reused."""
        if self._closed:
            return
        if self._on_serial_queue():
            raise RuntimeError("close() cannot run on the lock queue")
        self.stop()
        self._closed = True
        if self._owns_bus:
            self.event_bus.shutdown()
        self._serial.shutdown(wait=True)

    def __enter__(self) -> "LockController":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def get_status(self) -> dict:
        """Get current status for display."""
        cycle = self._cycle
        return {
            "state": self._state.name,
            **self._presence.get_status(),
            "attempt": self._attempt,
            "generation": self._generation,
            "cycle": cycle.get_status() if cycle else None,
        }

    # =========================================================================
    # SERIAL QUEUE
    # =========================================================================

    def _on_serial_queue(self) -> bool:
        """True on the lock queue's thread, event handlers included."""
        return threading.get_ident() == self._serial_ident

    def _run_serial(self, fn, *args) -> None:
        try:
            fn(*args)
        except Exception as e:
            logger.error(f"Lock controller error in {fn.__name__}: {e}")
            raise

    def _post(self, fn, *args) -> Optional[Future]:
        """Queue fn on the serial queue without waiting."""
        try:
            return self._serial.submit(self._run_serial, fn, *args)
        except RuntimeError:
            logger.debug(f"Lock queue closed, dropping {fn.__name__}")
            return None

    def _call(self, fn, *args) -> None:
        """Run fn on the serial queue and wait for it."""
        if self._on_serial_queue():
            fn(*args)
            return
        future = self._post(fn, *args)
        if future is not None:
            future.result()

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def _set_state(self, new_state: SessionState, trigger: str) -> None:
        old_state = self._state
        if old_state == new_state:
            return

        transition = StateTransition(
            from_state=old_state,
            to_state=new_state,
            trigger=trigger,
            timestamp=self._clock(),
            attempt=self._attempt
        )
        self._state = new_state
        self._history.append(transition)
        if len(self._history) > self._history_size:
            self._history = self._history[-self._history_size:]

        logger.info(f"{old_state.name} → {new_state.name} ({trigger})")

        for callback in self._transition_callbacks:
            try:
                callback(transition)
            except Exception as e:
                logger.error(f"Transition callback error: {e}")

    def _handle_start(self, caller: Future, reason: Optional[str]) -> None:
        if (self._state == SessionState.AUTHENTICATING
                and self.config.reentry_policy == ReentryPolicy.JOIN):
            logger.info(f"Challenge #{self._attempt} already in flight, joining it")
            self._waiters.append(caller)
            return

        self._waiters.append(caller)
        self._begin_challenge(reason, trigger="start")

    def _handle_stop(self) -> None:
        self._invalidate_attempt()
        self._teardown()
        self._set_state(SessionState.IDLE, "stop")
        self._resolve_waiters(state=SessionState.IDLE)

    def _handle_background(self) -> None:
        if self._state not in (SessionState.MONITORING, SessionState.AUTHENTICATING):
            logger.debug(f"Background signal ignored in {self._state.name}")
            return
        self._invalidate_attempt()
        self._teardown()
        self._set_state(SessionState.SUSPENDED, "background")
        self._resolve_waiters(state=SessionState.SUSPENDED)

    def _handle_foreground(self) -> None:
        if self._state != SessionState.SUSPENDED:
            logger.debug(f"Foreground signal ignored in {self._state.name}")
            return
        self._begin_challenge(None, trigger="foreground")

    def _handle_stream_end(self, generation: int, reason: str) -> None:
        if generation != self._generation or self._state != SessionState.MONITORING:
            logger.debug(f"Dropping {LifecycleRaceError('stream end', self._generation, generation)}")
            return
        logger.error(f"Camera stream ended: {reason}")
        self._teardown()
        self._set_state(SessionState.IDLE, "stream_ended")

    # =========================================================================
    # AUTHENTICATION
    # =========================================================================

    def _invalidate_attempt(self) -> None:
        """Any result for the current challenge is now stale."""
        self._attempt += 1
        if self._auth_future is not None:
            self._auth_future.cancel()
            self._auth_future = None

    def _begin_challenge(self, reason: Optional[str], trigger: str) -> None:
        self._teardown()
        self._invalidate_attempt()
        attempt = self._attempt
        self._set_state(SessionState.AUTHENTICATING, trigger)

        try:
            future = self._auth.authenticate(reason or self.config.prompt_reason)
        except Exception as e:
            logger.error(f"Could not start biometric challenge: {e}")
            future = Future()
            future.set_result(AuthResult.failure(AuthFailureReason.HARDWARE_UNAVAILABLE, str(e)))

        self._auth_future = future
        future.add_done_callback(
            lambda done: self._post(self._on_auth_done, attempt, done)
        )

    @staticmethod
    def _result_from(future: Future) -> AuthResult:
        try:
            result = future.result()
        except CancelledError:
            return AuthResult.failure(AuthFailureReason.CANCELLED)
        except AuthError as e:
            return AuthResult.failure(e.reason, e.message)
        except Exception as e:
            return AuthResult.failure(AuthFailureReason.FAILED, str(e))

        if isinstance(result, AuthResult):
            return result
        return AuthResult.success() if result else AuthResult.failure()

    def _on_auth_done(self, attempt: int, future: Future) -> None:
        if attempt != self._attempt or self._state != SessionState.AUTHENTICATING:
            logger.debug(f"Dropping {LifecycleRaceError('auth result', self._attempt, attempt)}")
            return

        self._auth_future = None
        result = self._result_from(future)

        if not result.granted:
            self._set_state(SessionState.IDLE, "auth_denied")
            self._resolve_waiters(error=AuthError(
                result.failure_reason or AuthFailureReason.FAILED, result.message
            ))
            return

        try:
            self._acquire()
        except Exception as e:
            logger.error(f"Could not start monitoring: {e}")
            self._teardown()
            self._set_state(SessionState.IDLE, "acquire_failed")
            self._resolve_waiters(error=e)
            return

        self._set_state(SessionState.MONITORING, "auth_granted")
        self._resolve_waiters(state=SessionState.MONITORING)

    def _resolve_waiters(
        self,
        state: Optional[SessionState] = None,
        error: Optional[BaseException] = None
    ) -> None:
        waiters, self._waiters = self._waiters, []

        if error is not None and not waiters:
            # Automatic re-authentication: stay locked, never surface
            logger.warning(f"Automatic re-authentication failed: {error}")

        for waiter in waiters:
            if waiter.done():
                continue
            if error is not None:
                waiter.set_exception(error)
            else:
                waiter.set_result(state)

    # =========================================================================
    # RESOURCES
    # =========================================================================

    def _acquire(self) -> None:
        """Fresh tracker state, fresh cycle, then the camera."""
        self._generation += 1
        generation = self._generation

        self._presence.reset()
        self._tracker.reset()

        cycle = TrackingCycle(
            self._tracker,
            sink=lambda frame, observations, release: self._on_cycle_output(
                generation, frame, observations, release
            ),
            confidence_threshold=self.config.presence.confidence_threshold,
            name=f"visionlock-track-{generation}"
        )
        self._cycle = cycle

        # Raises DeviceError when there is no camera
        self._capture = self._source.start(
            self.config.capture,
            cycle.offer,
            lambda reason: self._post(self._handle_stream_end, generation, reason)
        )
        logger.info(f"Monitoring session #{generation} started")

    def _teardown(self) -> None:
        """Release camera and tracker. Idempotent."""
        capture, cycle = self._capture, self._cycle
        self._capture = None
        self._cycle = None
        # In-flight observations now carry an old generation
        self._generation += 1

        if capture is not None:
            try:
                capture.stop()
            except Exception as e:
                logger.error(f"Error stopping capture: {e}")

        if cycle is not None:
            cycle.close()

        if capture is not None or cycle is not None:
            self._tracker.reset()
            logger.info("Capture and tracking released")

        if self._presence.present:
            # Content must not stay visible once the camera is gone
            self.event_bus.publish(PresenceEvent.FACE_NOT_PRESENT)
        self._presence.reset()

    # =========================================================================
    # PRESENCE
    # =========================================================================

    def _on_cycle_output(
        self,
        generation: int,
        frame: Frame,
        observations: List[TrackedFace],
        release: Callable[[], None]
    ) -> None:
        """Called on the tracking worker; hands off to the lock queue."""
        if self._post(self._apply_observations, generation, observations, release) is None:
            release()

    def _apply_observations(
        self,
        generation: int,
        observations: List[TrackedFace],
        release: Callable[[], None]
    ) -> None:
        try:
            if generation != self._generation or self._state != SessionState.MONITORING:
                logger.debug(f"Dropping {LifecycleRaceError('observations', self._generation, generation)}")
                return

            change = self._presence.update(observations)
            if change is None:
                return

            if change.new:
                self.event_bus.publish(PresenceEvent.FACE_PRESENT)
            else:
                self.event_bus.publish(PresenceEvent.FACE_NOT_PRESENT)
                self._begin_challenge(None, trigger="presence_lost")
        finally:
            release()
