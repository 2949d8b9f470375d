"""Tests for trace records, sinks and the hub."""

import json

import pytest

from faceenroll.observability import (
    CaptureRecord,
    FileSink,
    HoldTickRecord,
    MemorySink,
    ObservabilityHub,
    SessionStartRecord,
    Sink,
    StateTransitionRecord,
    TraceLevel,
)


@pytest.fixture
def hub():
    return ObservabilityHub()


class TestLevels:
    def test_off_by_default(self, hub):
        sink = MemorySink()
        hub.add_sink(sink)
        hub.emit(SessionStartRecord(session_id=1))
        assert len(sink) == 0
        assert not hub.enabled

    def test_minimal_filters_transitions_and_ticks(self, hub):
        sink = MemorySink()
        hub.configure(level=TraceLevel.MINIMAL, sinks=[sink])
        hub.emit(SessionStartRecord(session_id=1))
        hub.emit(StateTransitionRecord(session_id=1, old_state="idle", new_state="awaiting_credential"))
        hub.emit(HoldTickRecord(session_id=1, good=True))
        hub.emit(CaptureRecord(session_id=1, identity_id=3))
        assert [r.record_type for r in sink.get_records()] == ["session_start", "capture"]

    def test_normal_includes_transitions(self, hub):
        sink = MemorySink()
        hub.configure(level=TraceLevel.NORMAL, sinks=[sink])
        hub.emit(StateTransitionRecord(session_id=1, old_state="idle", new_state="awaiting_credential"))
        hub.emit(HoldTickRecord(session_id=1))
        assert len(sink.get_transitions()) == 1
        assert sink.get_records(HoldTickRecord) == []

    def test_no_sinks_means_disabled(self, hub):
        hub.configure(level=TraceLevel.VERBOSE)
        assert not hub.is_enabled(TraceLevel.MINIMAL)


class TestSinks:
    def test_memory_sink_bound(self):
        sink = MemorySink(max_records=2)
        for i in range(5):
            sink.write(SessionStartRecord(session_id=i))
        assert [r.session_id for r in sink.get_records()] == [3, 4]
        sink.clear()
        assert len(sink) == 0

    def test_file_sink_writes_jsonl(self, tmp_path, hub):
        path = tmp_path / "trace" / "session.jsonl"
        hub.configure(level=TraceLevel.NORMAL, sinks=[FileSink(path)])
        hub.emit(StateTransitionRecord(session_id=2, old_state="scanning", new_state="committing"))
        hub.shutdown()

        lines = path.read_text().splitlines()
        assert len(lines) == 1
        data = json.loads(lines[0])
        assert data["record_type"] == "state_transition"
        assert data["new_state"] == "committing"
        assert "min_level" not in data
        assert not hub.enabled

    def test_failing_sink_does_not_break_emit(self, hub, caplog):
        class Broken(Sink):
            def write(self, record):
                raise OSError("disk full")

        memory = MemorySink()
        hub.configure(level=TraceLevel.MINIMAL, sinks=[Broken(), memory])
        hub.emit(SessionStartRecord(session_id=1))
        assert len(memory) == 1
        assert "disk full" in caplog.text


class TestSingleton:
    def test_get_instance_is_shared(self):
        ObservabilityHub.reset_instance()
        try:
            assert ObservabilityHub.get_instance() is ObservabilityHub.get_instance()
        finally:
            ObservabilityHub.reset_instance()

    def test_reset_shuts_down(self):
        sink = MemorySink()
        ObservabilityHub.get_instance().configure(level=TraceLevel.VERBOSE, sinks=[sink])
        ObservabilityHub.reset_instance()
        assert not ObservabilityHub.get_instance().enabled
        ObservabilityHub.reset_instance()
