"""Activity logging for pipeline runs."""

import json
import shutil
import threading
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events that can be logged."""

    SESSION_START = "session_start"
    SESSION_END = "session_end"
    PLAN_CREATED = "plan_created"
    PLAN_START = "plan_start"
    PLAN_COMPLETE = "plan_complete"
    PLAN_HALT = "plan_halt"
    PHASE_START = "phase_start"
    PHASE_COMPLETE = "phase_complete"
    PHASE_ESCALATED = "phase_escalated"
    PHASE_FAILED = "phase_failed"
    STEP_START = "step_start"
    STEP_COMPLETE = "step_complete"
    GATE_CYCLE = "gate_cycle"
    AGENT_INVOCATION = "agent_invocation"
    COMMAND_EXECUTE = "command_execute"
    ERROR = "error"
    INFO = "info"


LOG_LEVELS: Dict[str, int] = {"DEBUG": 10, "INFO": 20, "WARN": 30, "ERROR": 40}

# Event types not listed here log at INFO
EVENT_LEVELS: Dict[EventType, str] = {
    EventType.STEP_START: "DEBUG",
    EventType.STEP_COMPLETE: "DEBUG",
    EventType.PLAN_HALT: "WARN",
    EventType.PHASE_ESCALATED: "WARN",
    EventType.PHASE_FAILED: "WARN",
    EventType.ERROR: "ERROR",
}

SESSION_ID_FORMAT = "%Y%m%d_%H%M%S_%f"


class ActivityEvent(BaseModel):
    """Activity event model."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    event_type: EventType = Field(..., description="Type of event")
    session_id: str = Field(..., description="Session identifier")
    plan_id: Optional[str] = Field(None, description="Plan identifier")
    phase_id: Optional[str] = Field(None, description="Phase identifier")
    message: str = Field(..., description="Event message")

    data: Dict[str, Any] = Field(
        default_factory=dict, description="Additional event data"
    )

    duration_ms: Optional[int] = Field(None, description="Duration in milliseconds")
    exit_code: Optional[int] = Field(None, description="Exit code for commands")


class ActivityLogger:
    """Thread-safe JSON-lines activity logger."""

    def __init__(self, session_id: str, logs_dir: Path, level: str = "DEBUG"):
        """Initialize activity logger.

        Args:
            session_id: Current session identifier
            logs_dir: Directory to store log files
            level: Events below this level are not written
        """
        self.session_id = session_id
        self.logs_dir = Path(logs_dir)
        self.level = level.upper()
        self._threshold = LOG_LEVELS[self.level]
        self.session_log_dir = self.logs_dir / "sessions" / session_id

        self.session_log_dir.mkdir(parents=True, exist_ok=True)

        self.main_log_file = self.session_log_dir / "activity.jsonl"
        self.agents_log_file = self.session_log_dir / "agent_interactions.jsonl"
        self.commands_log_file = self.session_log_dir / "commands.jsonl"

        self._lock = threading.Lock()

    @classmethod
    def for_new_session(
        cls,
        logs_dir: Path,
        level: str = "DEBUG",
        retention_days: Optional[int] = None,
    ) -> "ActivityLogger":
        """Create a logger with a timestamped session id.

        Sessions older than ``retention_days`` are deleted first.
        """
        if retention_days is not None:
            cls.prune_sessions(logs_dir, retention_days)
        session_id = datetime.now(timezone.utc).strftime(SESSION_ID_FORMAT)
        return cls(session_id=session_id, logs_dir=logs_dir, level=level)

    @staticmethod
    def prune_sessions(
        logs_dir: Path, retention_days: int, now: Optional[datetime] = None
    ) -> List[str]:
        """Delete session directories older than the retention period.

        Directories whose names are not session timestamps are left alone.

        Returns:
            Session ids that were deleted
        """
        sessions_dir = Path(logs_dir) / "sessions"
        if not sessions_dir.is_dir():
            return []

        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)
        pruned = []
        for entry in sorted(sessions_dir.iterdir()):
            if not entry.is_dir():
                continue
            try:
                started = datetime.strptime(entry.name, SESSION_ID_FORMAT).replace(tzinfo=timezone.utc)
            except ValueError:
                continue
            if started < cutoff:
                shutil.rmtree(entry)
                pruned.append(entry.name)
        return pruned

    def enabled_for(self, event_type: EventType) -> bool:
        """Whether events of this type reach the log at the configured level."""
        return LOG_LEVELS[EVENT_LEVELS.get(event_type, "INFO")] >= self._threshold

    def log_event(
        self,
        event_type: EventType,
        message: str,
        plan_id: Optional[str] = None,
        phase_id: Optional[str] = None,
        **kwargs,
    ) -> None:
        """Log a general activity event.

        Args:
            event_type: Type of event
            message: Event message
            plan_id: Optional plan identifier
            phase_id: Optional phase identifier
            **kwargs: Additional event data
        """
        if not self.enabled_for(event_type):
            return

        event_fields: Dict[str, Any] = {
            "event_type": event_type,
            "session_id": self.session_id,
            "plan_id": plan_id,
            "phase_id": phase_id,
            "message": message,
        }

        data_fields = {}
        for key, value in kwargs.items():
            if key in ("duration_ms", "exit_code"):
                event_fields[key] = value
            else:
                data_fields[key] = value

        if data_fields:
            event_fields["data"] = data_fields

        self._write_event(self.main_log_file, ActivityEvent(**event_fields))

    def log_session_start(self, working_directory: str) -> None:
        self.log_event(
            EventType.SESSION_START,
            f"Session started: {self.session_id}",
            working_directory=working_directory,
        )

    def log_session_end(self, duration_ms: int, **stats) -> None:
        self.log_event(
            EventType.SESSION_END,
            f"Session ended: {self.session_id}",
            duration_ms=duration_ms,
            **stats,
        )

    def log_plan_start(self, plan_id: str, resuming: bool) -> None:
        self.log_event(
            EventType.PLAN_START,
            "Resuming plan" if resuming else "Starting plan",
            plan_id=plan_id,
            resuming=resuming,
        )

    def log_plan_complete(self, plan_id: str, duration_ms: int) -> None:
        self.log_event(
            EventType.PLAN_COMPLETE,
            "Plan completed",
            plan_id=plan_id,
            duration_ms=duration_ms,
        )

    def log_plan_halt(self, plan_id: str, reason: str, phase_id: Optional[str] = None) -> None:
        self.log_event(
            EventType.PLAN_HALT,
            f"Plan halted: {reason}",
            plan_id=plan_id,
            phase_id=phase_id,
            reason=reason,
        )

    def log_phase_start(self, plan_id: str, phase_id: str, name: str, restart: bool = False) -> None:
        self.log_event(
            EventType.PHASE_START,
            f"{'Restarting' if restart else 'Starting'} phase: {name}",
            plan_id=plan_id,
            phase_id=phase_id,
            restart=restart,
        )

    def log_phase_complete(self, plan_id: str, phase_id: str, duration_ms: int) -> None:
        self.log_event(
            EventType.PHASE_COMPLETE,
            "Phase completed",
            plan_id=plan_id,
            phase_id=phase_id,
            duration_ms=duration_ms,
        )

    def log_phase_escalated(self, plan_id: str, phase_id: str, reason: str) -> None:
        self.log_event(
            EventType.PHASE_ESCALATED,
            f"Phase escalated: {reason}",
            plan_id=plan_id,
            phase_id=phase_id,
            reason=reason,
        )

    def log_phase_failed(self, plan_id: str, phase_id: str, reason: str) -> None:
        self.log_event(
            EventType.PHASE_FAILED,
            f"Phase failed: {reason}",
            plan_id=plan_id,
            phase_id=phase_id,
            reason=reason,
        )

    def log_step(
        self,
        plan_id: str,
        phase_id: Optional[str],
        step: str,
        completed: bool = False,
        **kwargs,
    ) -> None:
        """Log the start or completion of a sub-step."""
        self.log_event(
            EventType.STEP_COMPLETE if completed else EventType.STEP_START,
            f"Step {step} {'completed' if completed else 'started'}",
            plan_id=plan_id,
            phase_id=phase_id,
            step=step,
            **kwargs,
        )

    def log_gate_cycle(
        self,
        gate: str,
        cycle: int,
        max_cycles: int,
        issues: List[str],
        plan_id: Optional[str] = None,
        phase_id: Optional[str] = None,
    ) -> None:
        """Log one corrective cycle of a gate."""
        self.log_event(
            EventType.GATE_CYCLE,
            f"Gate {gate}: corrective cycle {cycle}/{max_cycles}",
            plan_id=plan_id,
            phase_id=phase_id,
            gate=gate,
            cycle=cycle,
            max_cycles=max_cycles,
            issues=issues,
        )

    def log_agent_invocation(
        self,
        role: str,
        exit_code: int,
        duration_ms: int,
        output: str,
        plan_id: Optional[str] = None,
        phase_id: Optional[str] = None,
    ) -> None:
        """Log an agent invocation, with the output in a separate file."""
        if not self.enabled_for(EventType.AGENT_INVOCATION):
            return
        self.log_event(
            EventType.AGENT_INVOCATION,
            f"Agent {role} finished with exit code {exit_code}",
            plan_id=plan_id,
            phase_id=phase_id,
            exit_code=exit_code,
            duration_ms=duration_ms,
            role=role,
        )
        self._write_event(
            self.agents_log_file,
            {
                "session_id": self.session_id,
                "plan_id": plan_id,
                "phase_id": phase_id,
                "role": role,
                "exit_code": exit_code,
                "duration_ms": duration_ms,
                "output": output,
            },
        )

    def log_command_execution(
        self,
        command: str,
        exit_code: int,
        duration_ms: int,
        output: str,
        plan_id: Optional[str] = None,
        phase_id: Optional[str] = None,
    ) -> None:
        """Log a deterministic check command, with output in a separate file."""
        if not self.enabled_for(EventType.COMMAND_EXECUTE):
            return
        self.log_event(
            EventType.COMMAND_EXECUTE,
            f"Executed command: {command}",
            plan_id=plan_id,
            phase_id=phase_id,
            exit_code=exit_code,
            duration_ms=duration_ms,
            command=command,
        )
        self._write_event(
            self.commands_log_file,
            {
                "session_id": self.session_id,
                "plan_id": plan_id,
                "phase_id": phase_id,
                "command": command,
                "exit_code": exit_code,
                "duration_ms": duration_ms,
                "output": output,
            },
        )

    def log_error(self, error: str, plan_id: Optional[str] = None, **kwargs) -> None:
        self.log_event(EventType.ERROR, error, plan_id=plan_id, error=error, **kwargs)

    def log_info(self, message: str, plan_id: Optional[str] = None, **kwargs) -> None:
        self.log_event(EventType.INFO, message, plan_id=plan_id, **kwargs)

    def get_phase_events(self, phase_id: str) -> List[ActivityEvent]:
        """Get all events for a specific phase.

        Args:
            phase_id: Phase identifier

        Returns:
            List of events for the phase
        """
        return [e for e in self._read_events() if e.phase_id == phase_id]

    def get_recent_events(self, limit: int = 100) -> List[ActivityEvent]:
        """Get the most recent events from the session.

        Args:
            limit: Maximum number of events to return

        Returns:
            List of recent events, oldest first
        """
        return self._read_events()[-limit:]

    def _read_events(self) -> List[ActivityEvent]:
        events = []
        if self.main_log_file.exists():
            with open(self.main_log_file, "r", encoding="utf-8") as f:
                for line in f:
                    try:
                        events.append(ActivityEvent(**json.loads(line.strip())))
                    except (json.JSONDecodeError, ValueError):
                        continue
        return events

    def _write_event(
        self,
        log_file: Path,
        event: Union[BaseModel, Dict[str, Any]],
    ) -> None:
        """Write an event as one JSON line.

        Logging never interrupts a pipeline run: write failures are reported
        to the main log if possible and otherwise dropped.
        """
        with self._lock:
            try:
                if isinstance(event, BaseModel):
                    event_dict = event.model_dump(mode="json")
                else:
                    event_dict = dict(event)

                if "timestamp" not in event_dict:
                    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

                with open(log_file, "a", encoding="utf-8") as f:
                    json.dump(event_dict, f, default=str, separators=(",", ":"))
                    f.write("\n")

            except OSError as e:
                try:
                    error_event = {
                        "timestamp": datetime.now(timezone.utc).isoformat(),
                        "event_type": "error",
                        "message": f"Failed to write log event: {e}",
                        "session_id": self.session_id,
                    }
                    with open(self.main_log_file, "a", encoding="utf-8") as f:
                        json.dump(error_event, f, separators=(",", ":"))
                        f.write("\n")
                except OSError:
                    pass
