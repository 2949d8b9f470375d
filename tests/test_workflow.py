"""Tests for EnrollmentWorkflow, driven end to end on a manual clock."""

import logging
from concurrent.futures import Future

import numpy as np
import pytest

from faceenroll.config import EnrollmentConfig
from faceenroll.errors import CommitError, CredentialError, SetupTimeout
from faceenroll.gate.position import MSG_HOLD_STILL, MSG_MOVE_CLOSER, MSG_NO_FACE
from faceenroll.observability import CaptureRecord, HoldTickRecord, SessionStartRecord
from faceenroll.services.codec import deserialize_descriptor
from faceenroll.testing import FakeVideoSource, face_sample, good_sample
from faceenroll.types import DetectionSample
from faceenroll.workflow import (
    MSG_CAPTURING,
    SNAPSHOT_EVENT_TYPE,
    AwaitingCredential,
    Committing,
    Error,
    Scanning,
    Success,
    WarmupProgress,
)

from conftest import CARD


class TestFirstEnrollment:
    def test_reaches_scanning_without_conflict(self, harness):
        harness.begin()
        assert harness.tag == "scanning"
        assert harness.visited == [
            "awaiting_credential", "verifying_credential", "warming_up", "scanning",
        ]
        assert harness.video.started

    def test_no_capture_before_hold_completes(self, harness):
        harness.begin()
        harness.tick(14)
        assert harness.tag == "scanning"
        assert harness.workflow.state.progress == pytest.approx(14 / 15)
        assert harness.workflow.guidance == MSG_HOLD_STILL

    def test_capture_commit_and_complete(self, harness):
        sample = harness.analyzer.script[0]
        harness.begin()
        harness.tick(15)
        assert harness.tag == "committing"
        assert harness.workflow.guidance == MSG_CAPTURING

        harness.settle()
        assert harness.tag == "success"
        commits = harness.commits()
        assert len(commits) == 1
        identity_id, payload, token = commits[0]
        assert identity_id == harness.user.id
        assert token == CARD
        np.testing.assert_array_equal(deserialize_descriptor(payload), sample.descriptor)

        enrollment = harness.store.get_enrollment(harness.user.id)
        assert enrollment is not None
        assert harness.store.users[harness.user.id].face_id_enabled

        # Only the success display timer is left
        assert harness.workflow.pending_timers() == 1
        harness.loop.advance(harness.config.timing.success_display_sec)
        assert [i.username for i in harness.completed] == ["ada"]
        assert harness.workflow.state is None
        assert harness.loop.pending_timers() == 0
        assert not harness.video.started

    def test_committing_always_carries_descriptor(self, harness):
        seen = []
        harness.workflow.add_listener(
            lambda old, new: seen.append(new.descriptor) if isinstance(new, Committing) else None
        )
        harness.begin()
        harness.tick(15)
        assert len(seen) == 1
        assert seen[0] is not None

    def test_telemetry_snapshot_uploaded(self, harness):
        harness.begin()
        harness.tick(15)
        harness.settle()
        uploads = [args for name, args in harness.service.calls if name == "upload_telemetry_snapshot"]
        assert len(uploads) == 1
        event_type, identity_id, face_detected, confidence = uploads[0]
        assert event_type == SNAPSHOT_EVENT_TYPE
        assert identity_id == harness.user.id
        assert face_detected is True
        assert confidence == pytest.approx(0.95)

    def test_telemetry_failure_does_not_affect_outcome(self, harness, caplog):
        harness.service.fail["upload_telemetry_snapshot"] = RuntimeError("storage offline")
        harness.begin()
        harness.tick(15)
        with caplog.at_level(logging.WARNING, logger="faceenroll.workflow.machine"):
            harness.settle()
        assert harness.tag == "success"
        assert "Telemetry snapshot upload failed" in caplog.text

    def test_telemetry_disabled(self, make_harness):
        h = make_harness(config=EnrollmentConfig.from_dict({"telemetry": {"enabled": False}}))
        h.begin()
        h.tick(15)
        h.settle()
        assert h.tag == "success"
        assert h.service.count("upload_telemetry_snapshot") == 0

    def test_trace_records(self, harness):
        harness.begin()
        harness.tick(15)
        assert len(harness.sink.get_records(SessionStartRecord)) == 1
        assert len(harness.sink.get_records(HoldTickRecord)) == 15
        assert len(harness.sink.get_records(CaptureRecord)) == 1
        assert [r.new_state for r in harness.sink.get_transitions()][:4] == [
            "awaiting_credential", "verifying_credential", "warming_up", "scanning",
        ]


class TestGuidance:
    def test_face_too_far_never_captures(self, make_harness):
        h = make_harness(script=[face_sample(size_ratio=0.10)])
        h.begin()
        for _ in range(20):
            h.tick()
            assert h.workflow.guidance == MSG_MOVE_CLOSER
            assert h.tag == "scanning"
        assert h.workflow.state.accumulator.good_ticks == 0
        assert h.commits() == []

    def test_no_face(self, make_harness):
        h = make_harness(script=[DetectionSample.empty()])
        h.begin()
        h.tick(3)
        assert h.workflow.guidance == MSG_NO_FACE


class TestReenrollment:
    def test_existing_enrollment_prompts(self, make_harness):
        h = make_harness(existing=True)
        h.begin()
        assert h.tag == "existing_enrollment_conflict"
        assert h.service.count("delete_enrollment") == 0
        assert h.workflow.pending_timers() == 0

    def test_confirm_deletes_exactly_once_before_warm_up(self, make_harness):
        h = make_harness(existing=True)
        deletes_at_warmup = []
        h.workflow.add_listener(
            lambda old, new: deletes_at_warmup.append(h.service.count("delete_enrollment"))
            if new is not None and new.tag.value == "warming_up" else None
        )
        h.begin()
        assert h.workflow.confirm_reenroll()
        assert not h.workflow.confirm_reenroll()
        assert h.tag == "verifying_credential"
        assert h.workflow.state.deleting

        h.settle()
        assert h.tag == "scanning"
        assert deletes_at_warmup == [1]
        assert h.service.count("delete_enrollment") == 1
        assert h.visited[2:] == [
            "existing_enrollment_conflict", "verifying_credential", "warming_up", "scanning",
        ]

    def test_reenroll_replaces_descriptor(self, make_harness):
        h = make_harness(existing=True)
        old_id = h.store.get_enrollment(h.user.id).id
        h.begin()
        h.workflow.confirm_reenroll()
        h.settle()
        h.tick(15)
        h.settle()
        assert h.tag == "success"
        assert h.store.get_enrollment(h.user.id).id != old_id

    def test_decline_cancels(self, make_harness):
        h = make_harness(existing=True)
        h.begin()
        assert h.workflow.decline_reenroll()
        assert h.workflow.state is None
        assert h.cancelled == 1
        assert h.service.count("delete_enrollment") == 0
        assert h.store.get_enrollment(h.user.id) is not None

    def test_delete_failure_is_error(self, make_harness):
        h = make_harness(existing=True)
        h.service.fail["delete_enrollment"] = RuntimeError("db locked")
        h.begin()
        h.workflow.confirm_reenroll()
        h.settle()
        assert h.tag == "error"
        assert h.workflow.guidance == "Failed to remove the existing enrollment"


def _enter(name, make_harness):
    """Build a harness parked in the named state."""
    if name == "awaiting_credential":
        h = make_harness()
        h.workflow.start()
    elif name == "verifying_credential":
        h = make_harness()
        h.workflow.start()
        h.workflow.on_credential(CARD)
    elif name == "existing_enrollment_conflict":
        h = make_harness(existing=True)
        h.begin()
    elif name == "warming_up":
        h = make_harness(video=FakeVideoSource(ready_after=None))
        h.begin()
    elif name == "scanning":
        h = make_harness()
        h.begin()
        h.tick(3)
    elif name == "committing":
        h = make_harness()
        h.begin()
        h.tick(15)
    elif name == "error":
        h = make_harness()
        h.workflow.start()
        h.workflow.on_credential("UNKNOWN-CARD")
        h.settle()
    else:
        raise ValueError(name)
    assert h.tag == name
    return h


class TestCancel:
    @pytest.mark.parametrize("state", [
        "awaiting_credential",
        "verifying_credential",
        "existing_enrollment_conflict",
        "warming_up",
        "scanning",
        "committing",
        "error",
    ])
    def test_cancel_leaves_nothing_behind(self, state, make_harness):
        h = _enter(state, make_harness)
        assert h.workflow.cancel()

        assert h.workflow.state is None
        assert h.workflow.pending_timers() == 0
        assert h.loop.pending_timers() == 0
        assert h.cancelled == 1
        assert not h.video.started

        # In-flight calls land, timers would have fired: nothing happens.
        analyzer_calls = h.analyzer.calls
        visited = list(h.visited)
        h.settle()
        h.loop.advance(10.0)
        assert h.analyzer.calls == analyzer_calls
        assert h.visited == visited
        assert h.workflow.state is None
        assert h.completed == []

    def test_cancel_when_idle(self, harness):
        assert not harness.workflow.cancel()
        assert harness.cancelled == 0

    def test_cancel_ignored_during_success(self, harness):
        harness.begin()
        harness.tick(15)
        harness.settle()
        assert not harness.workflow.cancel()
        harness.loop.advance(2.0)
        assert len(harness.completed) == 1
        assert harness.cancelled == 0

    def test_host_close_has_no_callbacks(self, harness):
        harness.begin()
        harness.tick(5)
        harness.workflow.close()
        assert harness.workflow.state is None
        assert harness.cancelled == 0
        assert harness.loop.pending_timers() == 0
        assert not harness.video.started


class TestCredential:
    def test_unknown_card_is_error(self, harness):
        harness.workflow.start()
        harness.workflow.on_credential("UNKNOWN-CARD")
        harness.settle()
        state = harness.workflow.state
        assert isinstance(state, Error)
        assert isinstance(state.error, CredentialError)
        assert state.message == "Card not recognized. Please try again."
        assert harness.video.start_count == 0

    def test_tap_ignored_outside_awaiting(self, harness):
        harness.begin()
        assert not harness.workflow.on_credential(CARD)
        assert harness.service.count("verify_credential") == 1
        assert harness.tag == "scanning"

    def test_tap_ignored_when_idle(self, harness):
        assert not harness.workflow.on_credential(CARD)
        assert harness.service.count("verify_credential") == 0

    def test_single_session(self, harness):
        assert harness.workflow.start()
        assert not harness.workflow.start()
        assert harness.workflow.session_id == 1


class TestWarmup:
    def test_waits_for_camera_then_models(self, make_harness):
        h = make_harness(video=FakeVideoSource(ready_after=3), models_ready_after=2)
        h.begin()
        assert h.tag == "warming_up"
        h.loop.advance(0.25)
        assert h.workflow.state.progress is WarmupProgress.CAMERA
        assert h.analyzer.model_polls == 0

        h.loop.advance(0.1)
        assert h.tag == "warming_up"
        assert h.workflow.state.progress is WarmupProgress.MODELS

        h.loop.advance(0.2)
        assert h.tag == "scanning"
        assert h.analyzer.model_polls == 3

    def test_camera_timeout(self, make_harness):
        h = make_harness(video=FakeVideoSource(ready_after=None))
        h.begin()
        h.loop.advance(4.8)
        assert h.tag == "warming_up"
        h.loop.advance(1.0)
        state = h.workflow.state
        assert isinstance(state.error, SetupTimeout)
        assert "Camera" in state.message
        assert h.video.ready_polls == 50
        assert h.workflow.pending_timers() == 0
        assert not h.video.started

    def test_models_timeout(self, make_harness):
        h = make_harness(models_ready_after=None)
        h.begin()
        h.loop.advance(11.0)
        state = h.workflow.state
        assert isinstance(state, Error)
        assert isinstance(state.error, SetupTimeout)
        assert "models" in state.message
        assert h.analyzer.model_polls == 100


class TestDroppedTicks:
    def test_analyzer_errors_are_tolerated_glitches(self, make_harness):
        crash = RuntimeError("model crashed")
        h = make_harness(script=[good_sample()] * 10 + [crash] * 3 + [good_sample()] * 5)
        h.begin()
        h.tick(17)
        assert h.tag == "scanning"
        h.tick(1)
        assert h.tag == "committing"

    def test_four_dropped_ticks_reset_hold(self, make_harness):
        crash = RuntimeError("model crashed")
        h = make_harness(script=[good_sample()] * 10 + [crash] * 4 + [good_sample()] * 14)
        h.begin()
        h.tick(28)
        assert h.tag == "scanning"
        assert h.workflow.state.accumulator.good_ticks == 14
        h.tick(1)
        assert h.tag == "committing"

    def test_slow_analyzer_never_captures(self, harness):
        harness.begin()
        harness.analyzer.delay_sec = 0.15
        harness.tick(5)
        state = harness.workflow.state
        assert isinstance(state, Scanning)
        assert state.accumulator.good_ticks == 0
        assert state.latest is None
        assert harness.commits() == []


class TestCommit:
    def test_duplicate_commit_trigger_is_ignored(self, harness):
        harness.begin()
        harness.tick(15)
        state = harness.workflow.state
        assert isinstance(state, Committing)
        assert state.commit_started

        harness.workflow._commit()
        harness.workflow._commit()
        harness.settle()
        assert len(harness.commits()) == 1
        assert harness.tag == "success"

    def test_commit_failure_is_error(self, harness):
        harness.service.fail["commit_enrollment"] = CommitError("Database unavailable")
        harness.begin()
        harness.tick(15)
        harness.settle()
        state = harness.workflow.state
        assert isinstance(state, Error)
        assert isinstance(state.error, CommitError)
        assert harness.workflow.guidance == "Database unavailable"
        assert harness.workflow.pending_timers() == 0
        assert not harness.video.started
        assert harness.completed == []

    def test_unexpected_commit_exception_becomes_commit_error(self, harness):
        harness.service.fail["commit_enrollment"] = ConnectionError("reset by peer")
        harness.begin()
        harness.tick(15)
        harness.settle()
        assert isinstance(harness.workflow.state.error, CommitError)

    def test_server_side_validation_failure(self, make_harness):
        h = make_harness(script=[good_sample(descriptor=np.zeros(64, dtype=np.float32))])
        h.begin()
        h.tick(15)
        h.settle()
        assert h.tag == "error"
        assert "expected 128, got 64" in h.workflow.guidance

    def test_retry_rescans_with_fresh_descriptor(self, harness):
        harness.service.fail["commit_enrollment"] = CommitError("Database unavailable")
        harness.begin()
        harness.tick(15)
        harness.settle()
        assert harness.tag == "error"

        del harness.service.fail["commit_enrollment"]
        fresh = good_sample()
        harness.analyzer.script = [fresh]

        assert harness.workflow.retry()
        assert isinstance(harness.workflow.state, AwaitingCredential)
        assert harness.workflow.session_id == 2

        harness.workflow.on_credential(CARD)
        harness.settle()
        state = harness.workflow.state
        assert isinstance(state, Scanning)
        assert state.accumulator.good_ticks == 0
        assert state.latest is None

        harness.tick(15)
        harness.settle()
        assert isinstance(harness.workflow.state, Success)
        first, second = harness.commits()
        np.testing.assert_array_equal(deserialize_descriptor(second[1]), fresh.descriptor)
        assert first[1] != second[1]

    def test_retry_only_from_error(self, harness):
        harness.begin()
        assert not harness.workflow.retry()
        assert harness.tag == "scanning"


class TestStaleCompletions:
    def test_commit_result_outside_committing_is_ignored(self, harness):
        harness.begin()
        future = Future()
        future.set_result(99)
        harness.workflow._on_committed(future)
        assert harness.tag == "scanning"
        assert harness.completed == []

    def test_verify_result_outside_verifying_is_ignored(self, harness):
        harness.workflow.start()
        future = Future()
        future.set_exception(CredentialError("Card not recognized. Please try again."))
        harness.workflow._on_verified(future)
        harness.workflow._on_deleted(future)
        assert harness.tag == "awaiting_credential"

    def test_success_finish_when_idle_is_ignored(self, harness):
        harness.workflow._finish_success()
        assert harness.workflow.state is None
        assert harness.completed == []
