"""Run deterministic check commands (tests, type checks, builds)."""

import shlex
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from ..tracking.activity_logger import ActivityLogger
from .exceptions import CommandExecutionError
from .output_parser import OutputParser

TIMEOUT_EXIT_CODE = 124


@dataclass
class CommandResult:
    """Result of one check command."""

    command: str
    exit_code: int
    output: str
    duration_seconds: float = 0.0

    @property
    def passed(self) -> bool:
        return self.exit_code == 0


@dataclass
class CheckResult:
    """Combined result of a sequence of check commands."""

    results: List[CommandResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(r.passed for r in self.results)

    def failure_output(self, max_length: int = 4000) -> str:
        """Output of the failing commands, for the implementer and reports."""
        sections = [
            f"$ {r.command}\n(exit code {r.exit_code})\n{r.output}"
            for r in self.results
            if not r.passed
        ]
        return OutputParser.sanitize_output("\n\n".join(sections), max_length=max_length)


class CommandRunner:
    """Run check commands in the project workspace."""

    def __init__(
        self,
        working_dir: Optional[Path] = None,
        timeout: Optional[int] = None,
        activity_logger: Optional[ActivityLogger] = None,
    ):
        """Initialize the runner.

        Args:
            working_dir: Project workspace
            timeout: Optional seconds before a command is killed
            activity_logger: Optional logger for command executions
        """
        self.working_dir = Path(working_dir) if working_dir else Path.cwd()
        self.timeout = timeout
        self.activity_logger = activity_logger

    def run(self, command: str, plan_id: Optional[str] = None, phase_id: Optional[str] = None) -> CommandResult:
        """Run a single command and capture its combined output.

        Raises:
            CommandExecutionError: If the command cannot be started at all
        """
        start_time = time.time()
        try:
            completed = subprocess.run(
                shlex.split(command),
                cwd=str(self.working_dir),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.timeout,
                check=False,
            )
            exit_code = completed.returncode
            output = completed.stdout or ""
        except subprocess.TimeoutExpired as e:
            exit_code = TIMEOUT_EXIT_CODE
            partial = e.output if isinstance(e.output, str) else ""
            output = f"{partial}\nCommand timed out after {self.timeout}s"
        except FileNotFoundError as e:
            raise CommandExecutionError(f"Command not found: {command}") from e
        except OSError as e:
            raise CommandExecutionError(f"Failed to run {command}: {e}") from e

        result = CommandResult(
            command=command,
            exit_code=exit_code,
            output=output,
            duration_seconds=time.time() - start_time,
        )

        if self.activity_logger:
            self.activity_logger.log_command_execution(
                command=command,
                exit_code=exit_code,
                duration_ms=int(result.duration_seconds * 1000),
                output=OutputParser.sanitize_output(output, max_length=4000),
                plan_id=plan_id,
                phase_id=phase_id,
            )

        return result

    def run_checks(
        self,
        commands: List[str],
        plan_id: Optional[str] = None,
        phase_id: Optional[str] = None,
    ) -> CheckResult:
        """Run every command in order; all must exit zero for the check to pass."""
        return CheckResult(
            results=[self.run(c, plan_id=plan_id, phase_id=phase_id) for c in commands]
        )
