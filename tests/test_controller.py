#!/usr/bin/env python3
"""
Lock controller tests.

Run the state machine end to end against fake camera, tracker and
biometric prompt:
- presence events from tracked faces
- re-challenge on presence loss
- start() failures reaching the caller
- background/foreground teardown and rebuild
- stale callbacks dropped
"""

import sys
import threading
import unittest
from unittest.mock import Mock
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent))

from visionlock.capture import OpenCVFrameSource
from visionlock.controller import LockController
from visionlock.core.config import CaptureConfig, LockConfig, ReentryPolicy
from visionlock.core.errors import AuthError, DeviceError
from visionlock.core.events import PresenceEvent
from visionlock.core.models import AuthFailureReason, AuthResult, SessionState

from fakes import (
    CaptureFactory, FakeAuthenticator, FakeFrameSource, ScriptedTracker, face, make_frame, wait_for
)

GRANTED = AuthResult.success()


class ControllerTestCase(unittest.TestCase):
    """Builds a controller over fakes and records every presence event."""

    def make_lock(self, results=None, config=None, source=None, cancellable=True):
        self.auth = FakeAuthenticator(results, cancellable=cancellable)
        self.source = source or FakeFrameSource()
        self.tracker = ScriptedTracker()
        self.lock = LockController(self.auth, self.source, self.tracker, config=config)
        self.addCleanup(self.lock.close)

        self.events = []
        self.lock.event_bus.subscribe(PresenceEvent.FACE_PRESENT, self.events.append)
        self.lock.event_bus.subscribe(PresenceEvent.FACE_NOT_PRESENT, self.events.append)

        self.transitions = []
        self.lock.on_transition(self.transitions.append)
        return self.lock

    def feed(self, faces):
        """Push one frame through a full detect/track/aggregate cycle."""
        cycle = self.lock.tracking_cycle
        self.assertIsNotNone(cycle, "no live tracking cycle")
        self.tracker.next_faces = list(faces)
        self.assertTrue(self.source.emit(make_frame()))
        self.assertTrue(wait_for(lambda: not cycle.is_busy))
        self.lock.wait_idle()

    def monitoring(self):
        self.assertEqual(self.lock.start(timeout=2.0), SessionState.MONITORING)


class TestScenarios(ControllerTestCase):

    def test_one_face_five_cycles(self):
        """A: five cycles with one face at 0.8 → one FacePresent, still Monitoring."""
        self.make_lock([GRANTED])
        self.monitoring()

        for _ in range(5):
            self.feed([face(confidence=0.8)])

        self.assertEqual(self.events, [PresenceEvent.FACE_PRESENT])
        self.assertEqual(self.lock.state, SessionState.MONITORING)
        self.assertTrue(self.lock.presence.present)

        status = self.lock.get_status()
        self.assertEqual(status["state"], "MONITORING")
        self.assertEqual(status["active_faces"], 1)
        self.assertEqual(status["cycle"]["processed"], 5)

    def test_confidence_drop_rechallenges(self):
        """B: tracked face drops to 0.2 → FaceNotPresent → Authenticating."""
        self.make_lock([GRANTED])
        self.monitoring()
        self.feed([face(confidence=0.8)])

        self.feed([face(confidence=0.2)])

        self.assertEqual(self.events, [PresenceEvent.FACE_PRESENT, PresenceEvent.FACE_NOT_PRESENT])
        self.assertEqual(self.lock.state, SessionState.AUTHENTICATING)
        self.assertEqual(len(self.auth.calls), 2)
        self.assertEqual(self.transitions[-1].trigger, "presence_lost")
        # Camera released while the prompt is up
        self.assertIsNone(self.source.current)
        self.assertTrue(self.source.sessions[0].stopped.is_set())

    def test_denied_start_raises_and_never_opens_camera(self):
        """C: granted=false → Idle, caller gets AuthError, no capture."""
        self.make_lock([AuthResult.failure(AuthFailureReason.NOT_ENROLLED, "no face enrolled")])

        with self.assertRaises(AuthError) as ctx:
            self.lock.start(timeout=2.0)

        self.assertEqual(ctx.exception.reason, AuthFailureReason.NOT_ENROLLED)
        self.assertEqual(self.lock.state, SessionState.IDLE)
        self.assertEqual(self.source.configs, [])

    def test_background_mid_cycle_produces_no_event(self):
        """D: background while a frame is mid-cycle → Suspended, no late event."""
        self.make_lock([GRANTED])
        self.monitoring()

        self.tracker.gate = threading.Event()
        self.tracker.next_faces = [face(confidence=0.9)]
        self.assertTrue(self.source.emit(make_frame()))
        self.assertTrue(wait_for(lambda: self.tracker.calls == ["detect"]))

        background = threading.Thread(target=self.lock.on_app_background)
        background.start()
        # Capture is stopped before the in-flight frame finishes
        self.assertTrue(self.source.sessions[0].stopped.wait(2.0))
        self.tracker.gate.set()
        background.join(2.0)
        self.assertFalse(background.is_alive())

        self.lock.wait_idle()
        self.assertEqual(self.lock.state, SessionState.SUSPENDED)
        self.assertEqual(self.events, [])
        self.assertFalse(self.lock.presence.present)
        self.assertIsNone(self.lock.tracking_cycle)

    def test_two_faces_not_present(self):
        """E: two simultaneously active faces → presence false."""
        self.make_lock([GRANTED])
        self.monitoring()

        self.feed([face("a", 0.9, x=0), face("b", 0.9, x=100)])

        self.assertEqual(self.events, [])
        self.assertFalse(self.lock.presence.present)
        self.assertEqual(self.lock.state, SessionState.MONITORING)


class TestChallengeSerialization(ControllerTestCase):

    def test_join_reuses_inflight_challenge(self):
        self.make_lock()
        first = self.lock.start_async()
        second = self.lock.start_async()
        self.lock.wait_idle()

        self.assertEqual(len(self.auth.calls), 1)
        self.auth.resolve(0, GRANTED)

        self.assertEqual(first.result(2.0), SessionState.MONITORING)
        self.assertEqual(second.result(2.0), SessionState.MONITORING)
        self.assertEqual(len(self.source.sessions), 1)

    def test_restart_supersedes_inflight_challenge(self):
        self.make_lock(config=LockConfig(reentry_policy=ReentryPolicy.RESTART))
        first = self.lock.start_async()
        self.lock.wait_idle()
        second = self.lock.start_async()
        self.lock.wait_idle()

        self.assertEqual(len(self.auth.calls), 2)
        self.assertTrue(self.auth.calls[0].cancelled())
        self.assertEqual(self.auth.outstanding, 1)

        self.auth.resolve(1, GRANTED)
        self.assertEqual(first.result(2.0), SessionState.MONITORING)
        self.assertEqual(second.result(2.0), SessionState.MONITORING)

    def test_late_result_after_background_dropped(self):
        self.make_lock(cancellable=False)
        pending = self.lock.start_async()
        self.lock.wait_idle()

        self.lock.on_app_background()
        self.assertEqual(pending.result(2.0), SessionState.SUSPENDED)

        # The prompt could not be withdrawn and answers anyway
        self.auth.resolve(0, GRANTED)
        self.lock.wait_idle()

        self.assertEqual(self.lock.state, SessionState.SUSPENDED)
        self.assertEqual(self.source.sessions, [])

    def test_stop_resolves_pending_start_with_idle(self):
        self.make_lock()
        pending = self.lock.start_async()
        self.lock.wait_idle()

        self.lock.stop()

        self.assertEqual(pending.result(2.0), SessionState.IDLE)
        self.assertTrue(self.auth.calls[0].cancelled())
        self.assertEqual(self.lock.state, SessionState.IDLE)

    def test_monitoring_only_after_grant(self):
        self.make_lock([GRANTED, GRANTED, GRANTED])
        self.monitoring()
        self.feed([face()])
        self.feed([face(confidence=0.1)])
        self.lock.wait_idle()
        self.lock.on_app_background()
        self.lock.on_app_foreground()
        self.lock.wait_idle()

        entered = [t for t in self.transitions if t.to_state == SessionState.MONITORING]
        self.assertEqual(len(entered), 3)
        for transition in entered:
            self.assertEqual(transition.from_state, SessionState.AUTHENTICATING)
            self.assertEqual(transition.trigger, "auth_granted")


class TestFailures(ControllerTestCase):

    def test_device_error_reaches_caller(self):
        self.make_lock([GRANTED], source=FakeFrameSource(error=DeviceError("no front camera")))

        with self.assertRaises(DeviceError):
            self.lock.start(timeout=2.0)

        self.assertEqual(self.lock.state, SessionState.IDLE)
        self.assertIsNone(self.lock.tracking_cycle)
        self.assertEqual(self.transitions[-1].trigger, "acquire_failed")

    def test_automatic_rechallenge_failure_swallowed(self):
        self.make_lock([GRANTED, AuthResult.failure(AuthFailureReason.LOCKOUT)])
        self.monitoring()
        self.feed([face()])

        with self.assertLogs("visionlock.controller", level="WARNING") as logs:
            self.feed([face(confidence=0.2)])
            self.lock.wait_idle()

        self.assertTrue(any("Automatic re-authentication failed" in line for line in logs.output))
        self.assertEqual(self.lock.state, SessionState.IDLE)
        self.assertEqual(self.events[-1], PresenceEvent.FACE_NOT_PRESENT)

    def test_camera_dying_hides_content_and_goes_idle(self):
        self.make_lock([GRANTED])
        self.monitoring()
        self.feed([face()])
        self.assertTrue(self.lock.presence.present)

        with self.assertLogs("visionlock.controller", level="ERROR"):
            self.source.sessions[0].die()
            self.lock.wait_idle()
            self.lock.wait_idle()

        self.assertEqual(self.lock.state, SessionState.IDLE)
        self.assertEqual(self.transitions[-1].trigger, "stream_ended")
        self.assertEqual(self.events, [PresenceEvent.FACE_PRESENT, PresenceEvent.FACE_NOT_PRESENT])
        self.assertFalse(self.lock.presence.present)
        self.assertIsNone(self.lock.tracking_cycle)
        self.assertTrue(self.source.sessions[0].stopped.is_set())

    def test_stream_end_after_stop_ignored(self):
        self.make_lock([GRANTED, GRANTED])
        self.monitoring()
        old_session = self.source.sessions[0]
        self.lock.stop()
        self.monitoring()

        # Report from the previous session arrives late
        old_session.on_stream_end("late")
        self.lock.wait_idle()

        self.assertEqual(self.lock.state, SessionState.MONITORING)
        self.assertIsNotNone(self.source.current)

    def test_opencv_stream_death_while_monitoring(self):
        factory = CaptureFactory(good_reads=50)
        source = OpenCVFrameSource(factory)
        config = LockConfig(capture=CaptureConfig(max_read_failures=3))
        self.make_lock([GRANTED], config=config, source=source)
        self.tracker.next_faces = [face(confidence=0.8)]

        self.monitoring()
        self.assertTrue(wait_for(lambda: self.lock.state == SessionState.IDLE, timeout=5.0))
        self.lock.wait_idle()

        self.assertIn(PresenceEvent.FACE_PRESENT, self.events)
        self.assertEqual(self.events[-1], PresenceEvent.FACE_NOT_PRESENT)
        self.assertFalse(self.lock.presence.present)
        self.assertTrue(factory.created[0].released)

    def test_authenticator_exception_becomes_hardware_unavailable(self):
        self.make_lock()

        self.auth.authenticate = Mock(side_effect=OSError("sensor busy"))
        with self.assertRaises(AuthError) as ctx:
            self.lock.start(timeout=2.0)
        self.assertEqual(ctx.exception.reason, AuthFailureReason.HARDWARE_UNAVAILABLE)

    def test_start_from_event_handler_rejected(self):
        self.make_lock([GRANTED])
        errors = []

        def handler():
            try:
                self.lock.start()
            except RuntimeError as e:
                errors.append(e)

        self.lock.on_face_appeared(handler)
        self.monitoring()
        self.feed([face()])

        self.assertEqual(len(errors), 1)


class TestLifecycle(ControllerTestCase):

    def test_background_then_foreground_rechallenges(self):
        self.make_lock([GRANTED, GRANTED])
        self.monitoring()
        self.feed([face()])

        self.lock.on_app_background()
        self.lock.wait_idle()
        self.assertEqual(self.lock.state, SessionState.SUSPENDED)
        # Content hidden as the camera goes away
        self.assertEqual(self.events, [PresenceEvent.FACE_PRESENT, PresenceEvent.FACE_NOT_PRESENT])

        self.lock.on_app_foreground()
        self.lock.wait_idle()

        self.assertEqual(self.lock.state, SessionState.MONITORING)
        self.assertEqual(len(self.auth.calls), 2)
        self.assertEqual(len(self.source.sessions), 2)
        self.assertEqual(self.transitions[-2].trigger, "foreground")

    def test_foreground_ignored_unless_suspended(self):
        self.make_lock()
        self.lock.on_app_foreground()
        self.lock.wait_idle()
        self.assertEqual(self.lock.state, SessionState.IDLE)
        self.assertEqual(self.auth.calls, [])

    def test_background_ignored_when_idle(self):
        self.make_lock()
        self.lock.on_app_background()
        self.assertEqual(self.lock.state, SessionState.IDLE)

    def test_restart_starts_fresh_detection(self):
        self.make_lock([GRANTED, GRANTED])
        self.monitoring()
        self.feed([face()])
        self.feed([face()])
        self.assertEqual(self.tracker.calls, ["detect", "track"])

        self.lock.stop()
        resets = self.tracker.resets
        self.assertIsNone(self.source.current)

        self.monitoring()
        self.feed([face()])

        self.assertEqual(self.tracker.calls[-1], "detect")
        self.assertGreater(self.tracker.resets, resets)
        self.assertTrue(self.source.sessions[0].stopped.is_set())

    def test_unsubscribed_action_not_called(self):
        self.make_lock([GRANTED])
        calls = []
        token = self.lock.on_face_appeared(lambda: calls.append(1))
        self.assertTrue(self.lock.event_bus.unsubscribe(token))

        self.monitoring()
        self.feed([face()])
        self.assertEqual(calls, [])

    def test_close_rejects_new_starts(self):
        self.make_lock([GRANTED])
        self.monitoring()
        self.lock.close()

        self.assertIsNone(self.source.current)
        with self.assertRaises(RuntimeError):
            self.lock.start_async().result(2.0)


if __name__ == "__main__":
    unittest.main(verbosity=2)
