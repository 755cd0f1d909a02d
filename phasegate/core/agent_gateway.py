"""Gateway to external agents.

Every agent role (planner, implementer, reviewers, test author) is reached
through the same narrow call: ``invoke(role, context) -> AgentReport``. The
context bundle is opaque to the gateway; it is serialized and forwarded as-is.
Failures to reach an agent or to parse its answer raise
``AgentInvocationError``, which the gates treat like a ``needs_changes`` verdict.
"""

import json
import shlex
import subprocess
import time
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from ..tracking.activity_logger import ActivityLogger
from .exceptions import AgentInvocationError, AgentOutputParseError, AgentTimeoutError
from .output_parser import OutputParser

PromptContext = Dict[str, Any]


class AgentRole(str, Enum):
    """External capabilities the engine can call."""

    PLANNER = "planner"
    IMPLEMENTER = "implementer"
    REVIEWER = "reviewer"
    SPECIALIZED_REVIEWER = "specialized_reviewer"
    TEST_AUTHOR = "test_author"

    @property
    def is_reviewer(self) -> bool:
        return self in (AgentRole.REVIEWER, AgentRole.SPECIALIZED_REVIEWER)


class Verdict(str, Enum):
    """Reviewer outcome."""

    APPROVED = "approved"
    NEEDS_CHANGES = "needs_changes"
    BLOCKED = "blocked"


class ReviewIssue(BaseModel):
    """One problem reported by a reviewer."""

    description: str
    severity: str = "major"
    file: Optional[str] = None

    def __str__(self) -> str:
        location = f" ({self.file})" if self.file else ""
        return f"[{self.severity}] {self.description}{location}"


class AgentReport(BaseModel):
    """Structured answer from an agent invocation."""

    role: AgentRole
    verdict: Optional[Verdict] = None
    issues: List[ReviewIssue] = Field(default_factory=list)
    notes: str = ""
    files: List[str] = Field(default_factory=list)
    criteria: Dict[str, bool] = Field(default_factory=dict)
    tests_written: Optional[int] = None
    plan: Optional[Dict[str, Any]] = None
    raw_output: str = ""

    @classmethod
    def from_output(cls, role: AgentRole, output: str) -> "AgentReport":
        """Parse an agent's raw output into a report.

        Raises:
            AgentOutputParseError: If the output has no usable JSON, or a
                reviewer answer has no valid verdict
        """
        data = OutputParser.extract_json(output, strict=True)
        return cls.from_data(role, data, raw_output=output)

    @classmethod
    def from_data(
        cls, role: AgentRole, data: Dict[str, Any], raw_output: str = ""
    ) -> "AgentReport":
        """Build a report from an already-parsed JSON object."""
        verdict = None
        raw_verdict = data.get("verdict", data.get("status"))
        if role.is_reviewer:
            try:
                verdict = Verdict(str(raw_verdict).strip().lower())
            except ValueError as e:
                raise AgentOutputParseError(
                    f"{role.value} answer has no valid verdict: {raw_verdict!r}"
                ) from e

        plan = data.get("plan")
        if role == AgentRole.PLANNER and plan is None and "phases" in data:
            plan = data
        if role == AgentRole.PLANNER and not isinstance(plan, dict):
            raise AgentOutputParseError("planner answer does not contain a plan")

        try:
            return cls(
                role=role,
                verdict=verdict,
                issues=_parse_issues(data.get("issues", [])),
                notes=str(data.get("notes") or data.get("summary") or ""),
                files=[str(f) for f in data.get("files", []) or []],
                criteria=_parse_criteria(data.get("criteria", {})),
                tests_written=data.get("tests_written"),
                plan=plan,
                raw_output=raw_output,
            )
        except ValidationError as e:
            raise AgentOutputParseError(f"Malformed {role.value} answer: {e}") from e

    def issue_list(self) -> List[str]:
        """Issues as display strings."""
        return [str(issue) for issue in self.issues]


def _parse_issues(raw: Any) -> List[ReviewIssue]:
    issues = []
    for item in raw or []:
        if isinstance(item, str):
            issues.append(ReviewIssue(description=item))
        elif isinstance(item, dict):
            issues.append(
                ReviewIssue(
                    description=str(item.get("description") or item.get("issue") or item),
                    severity=str(item.get("severity", "major")),
                    file=item.get("file"),
                )
            )
    return issues


_TRUE_STRINGS = {"true", "yes", "1"}
_FALSE_STRINGS = {"false", "no", "0"}


def _parse_criteria(raw: Any) -> Dict[str, bool]:
    if isinstance(raw, dict):
        pairs = list(raw.items())
    else:
        pairs = [
            (item["criterion"], item.get("satisfied", False))
            for item in raw or []
            if isinstance(item, dict) and "criterion" in item
        ]
    return {str(criterion): _criterion_value(criterion, value) for criterion, value in pairs}


def _criterion_value(criterion: Any, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise AgentOutputParseError(f"Criterion {criterion!r} has no boolean result: {value!r}")


class AgentGateway(ABC):
    """Abstract gateway used identically for every agent role."""

    @abstractmethod
    def invoke(self, role: AgentRole, context: PromptContext) -> AgentReport:
        """Invoke the agent for a role.

        Args:
            role: Which external capability to call
            context: Opaque bundle forwarded to the agent

        Returns:
            The agent's structured report

        Raises:
            AgentInvocationError: If the agent cannot be reached or its output
                cannot be parsed
        """


RESPONSE_SHAPES: Dict[AgentRole, Dict[str, Any]] = {
    AgentRole.PLANNER: {
        "plan": {
            "shared_context": "string",
            "test_strategy": {"approach": "string", "tools": ["string"], "notes": "string"},
            "phases": [
                {
                    "id": "string",
                    "name": "string",
                    "description": "string",
                    "owns": ["path"],
                    "depends_on": ["phase id"],
                    "complexity": "low|medium|high",
                    "presentation": "boolean",
                    "acceptance_criteria": ["string"],
                }
            ],
        }
    },
    AgentRole.IMPLEMENTER: {"notes": "string", "files": ["path"]},
    AgentRole.REVIEWER: {
        "verdict": "approved|needs_changes|blocked",
        "issues": [{"description": "string", "severity": "string", "file": "path"}],
        "criteria": {"<acceptance criterion>": "boolean"},
        "notes": "string",
    },
    AgentRole.SPECIALIZED_REVIEWER: {
        "verdict": "approved|needs_changes|blocked",
        "issues": [{"description": "string", "severity": "string", "file": "path"}],
        "notes": "string",
    },
    AgentRole.TEST_AUTHOR: {"notes": "string", "files": ["path"], "tests_written": "integer"},
}


class ClaudeAgentGateway(AgentGateway):
    """Invoke agents through the Claude Code CLI (or a compatible command)."""

    def __init__(
        self,
        command: str = "claude --dangerously-skip-permissions",
        working_dir: Optional[Path] = None,
        timeout: int = 1800,
        prompts: Optional[Dict[str, str]] = None,
        activity_logger: Optional[ActivityLogger] = None,
    ):
        """Initialize the gateway.

        Args:
            command: Agent CLI command; the prompt is passed with ``-p``
            working_dir: Working directory for the agent process
            timeout: Seconds before the agent process is killed
            prompts: Optional role name -> agent instruction file
            activity_logger: Optional logger for agent interactions
        """
        self.command = command
        self.working_dir = Path(working_dir) if working_dir else Path.cwd()
        self.timeout = timeout
        self.prompts = prompts or {}
        self.activity_logger = activity_logger

    def invoke(self, role: AgentRole, context: PromptContext) -> AgentReport:
        prompt = self.build_prompt(role, context)
        cmd = shlex.split(self.command) + ["-p", prompt]
        start_time = time.time()

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=str(self.working_dir),
                text=True,
            )
            try:
                stdout, stderr = process.communicate(timeout=self.timeout)
            except subprocess.TimeoutExpired as e:
                process.kill()
                process.communicate()
                raise AgentTimeoutError(
                    f"{role.value} agent timed out after {self.timeout}s"
                ) from e
        except FileNotFoundError as e:
            raise AgentInvocationError(
                f"Agent CLI not found. Is it installed? Command: {self.command}"
            ) from e
        except OSError as e:
            raise AgentInvocationError(f"Failed to start {role.value} agent: {e}") from e

        duration_ms = int((time.time() - start_time) * 1000)
        self._log_interaction(role, stdout, process.returncode, duration_ms)

        if process.returncode != 0:
            message = f"{role.value} agent exited with code {process.returncode}"
            if stderr:
                message += f": {stderr[:500]}"
            raise AgentInvocationError(message)

        return AgentReport.from_output(role, stdout)

    def build_prompt(self, role: AgentRole, context: PromptContext) -> str:
        """Serialize the role instructions, context and response shape."""
        parts = []
        prompt_file = self.prompts.get(role.value)
        if prompt_file:
            parts.append(f"Read the agent prompt at {prompt_file} and follow its instructions.")
        parts.append(f"ROLE: {role.value}")
        parts.append(
            "CONTEXT (JSON):\n```json\n"
            + json.dumps(context, indent=2, default=str, ensure_ascii=False)
            + "\n```"
        )
        parts.append(
            "When finished, reply with a single JSON object in a ```json code block "
            "with this shape:\n```json\n"
            + json.dumps(RESPONSE_SHAPES[role], indent=2)
            + "\n```"
        )
        return "\n\n".join(parts)

    def _log_interaction(
        self,
        role: AgentRole,
        output: str,
        exit_code: int,
        duration_ms: int,
    ) -> None:
        # Step events from the phase runner carry the plan and phase ids
        if self.activity_logger is None:
            return
        self.activity_logger.log_agent_invocation(
            role=role.value,
            exit_code=exit_code,
            duration_ms=duration_ms,
            output=OutputParser.sanitize_output(output, max_length=2000),
        )
