"""Tests for the JSON-lines activity logger."""

import json
from datetime import datetime, timezone

from phasegate.tracking.activity_logger import ActivityLogger, EventType


class TestActivityLogger:
    def test_session_directory(self, tmp_path):
        logger = ActivityLogger(session_id="s1", logs_dir=tmp_path)

        assert logger.session_log_dir == tmp_path / "sessions" / "s1"
        assert logger.session_log_dir.is_dir()

    def test_new_session_ids_are_unique(self, tmp_path):
        first = ActivityLogger.for_new_session(tmp_path)
        second = ActivityLogger.for_new_session(tmp_path)
        assert first.session_id != second.session_id

    def test_event_written_as_json_line(self, activity_logger):
        activity_logger.log_phase_start("001-x", "1", "Theme model")
        activity_logger.log_phase_complete("001-x", "1", duration_ms=1200)

        lines = activity_logger.main_log_file.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first["event_type"] == "phase_start"
        assert first["session_id"] == "test-session"
        assert first["data"] == {"restart": False}
        assert json.loads(lines[1])["duration_ms"] == 1200

    def test_extra_fields_go_to_data(self, activity_logger):
        activity_logger.log_event(EventType.INFO, "hello", plan_id="001-x", exit_code=2, detail="x")

        event = activity_logger.get_recent_events()[-1]
        assert event.exit_code == 2
        assert event.data == {"detail": "x"}

    def test_gate_cycle(self, activity_logger):
        activity_logger.log_gate_cycle("review", 1, 3, ["[major] Bug"], plan_id="001-x", phase_id="2")

        event = activity_logger.get_phase_events("2")[0]
        assert event.event_type == EventType.GATE_CYCLE
        assert event.message == "Gate review: corrective cycle 1/3"
        assert event.data["issues"] == ["[major] Bug"]

    def test_phase_events_filtered(self, activity_logger):
        activity_logger.log_step("001-x", "1", "implement")
        activity_logger.log_step("001-x", "2", "implement")
        activity_logger.log_step("001-x", "1", "implement", completed=True)

        events = activity_logger.get_phase_events("1")
        assert [e.event_type for e in events] == [EventType.STEP_START, EventType.STEP_COMPLETE]

    def test_recent_events_limit(self, activity_logger):
        for i in range(5):
            activity_logger.log_info(f"event {i}")

        events = activity_logger.get_recent_events(limit=2)
        assert [e.message for e in events] == ["event 3", "event 4"]

    def test_unreadable_lines_skipped(self, activity_logger):
        activity_logger.log_info("first")
        with open(activity_logger.main_log_file, "a", encoding="utf-8") as f:
            f.write("not json\n")
        activity_logger.log_info("second")

        assert [e.message for e in activity_logger.get_recent_events()] == ["first", "second"]

    def test_command_output_in_separate_file(self, activity_logger):
        activity_logger.log_command_execution("pytest -q", 1, 300, "1 failed", plan_id="001-x")

        main = activity_logger.main_log_file.read_text(encoding="utf-8")
        commands = [
            json.loads(line)
            for line in activity_logger.commands_log_file.read_text(encoding="utf-8").splitlines()
        ]
        assert "1 failed" not in main
        assert commands[0]["output"] == "1 failed"
        assert "timestamp" in commands[0]

    def test_no_events_yet(self, activity_logger):
        assert activity_logger.get_recent_events() == []


class TestLogLevels:
    def test_steps_hidden_at_info(self, tmp_path):
        logger = ActivityLogger(session_id="s1", logs_dir=tmp_path, level="info")

        logger.log_step("001-x", "1", "implement")
        logger.log_phase_start("001-x", "1", "Theme model")

        assert [e.event_type for e in logger.get_recent_events()] == [EventType.PHASE_START]

    def test_warn_keeps_halts_and_errors(self, tmp_path):
        logger = ActivityLogger(session_id="s1", logs_dir=tmp_path, level="WARN")

        logger.log_info("started")
        logger.log_command_execution("pytest -q", 0, 10, "ok")
        logger.log_phase_failed("001-x", "1", "validation failed")
        logger.log_error("store unwritable")

        assert [e.event_type for e in logger.get_recent_events()] == [
            EventType.PHASE_FAILED,
            EventType.ERROR,
        ]
        assert not logger.commands_log_file.exists()

    def test_debug_writes_everything(self, activity_logger):
        assert activity_logger.level == "DEBUG"
        assert activity_logger.enabled_for(EventType.STEP_START)


class TestRetention:
    def session(self, logs_dir, session_id):
        path = logs_dir / "sessions" / session_id
        path.mkdir(parents=True)
        return path

    def test_old_sessions_pruned(self, tmp_path):
        old = self.session(tmp_path, "20260101_120000_000000")
        recent = self.session(tmp_path, "20260310_120000_000000")
        other = self.session(tmp_path, "manual-notes")

        pruned = ActivityLogger.prune_sessions(
            tmp_path, retention_days=30, now=datetime(2026, 3, 15, tzinfo=timezone.utc)
        )

        assert pruned == ["20260101_120000_000000"]
        assert not old.exists()
        assert recent.exists()
        assert other.exists()

    def test_new_session_applies_retention(self, tmp_path):
        old = self.session(tmp_path, "20000101_000000_000000")

        logger = ActivityLogger.for_new_session(tmp_path, level="INFO", retention_days=30)

        assert not old.exists()
        assert logger.session_log_dir.is_dir()
        assert logger.level == "INFO"

    def test_missing_logs_dir(self, tmp_path):
        assert ActivityLogger.prune_sessions(tmp_path / "none", retention_days=1) == []
