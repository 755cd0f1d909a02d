"""Configuration models for phasegate."""

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

DURATION_PATTERN = re.compile(r"^(\d+)([hms])$")
DURATION_UNITS = {"h": 3600, "m": 60, "s": 1}
AGENT_ROLES = ["planner", "implementer", "reviewer", "specialized_reviewer", "test_author"]


def parse_duration(value: str) -> int:
    """Convert a duration like '30m', '2h' or '300s' to seconds."""
    match = DURATION_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    return int(match.group(1)) * DURATION_UNITS[match.group(2)]


def _validate_duration(v: str) -> str:
    if not DURATION_PATTERN.match(v):
        raise ValueError("Duration must be in format like '30m', '2h', or '300s'")
    return v


class AgentConfig(BaseModel):
    """Agent CLI configuration."""

    command: str = Field(
        default="claude --dangerously-skip-permissions", description="Agent command"
    )
    working_dir: str = Field(default=".", description="Working directory")
    timeout: str = Field(default="30m", description="Per-invocation timeout")
    prompts: Dict[str, str] = Field(
        default_factory=dict, description="Role name -> agent instruction file"
    )

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: str) -> str:
        """Validate timeout format."""
        return _validate_duration(v)

    @field_validator("prompts")
    @classmethod
    def validate_prompts(cls, v: Dict[str, str]) -> Dict[str, str]:
        """Validate that prompt files are keyed by known roles."""
        unknown = [role for role in v if role not in AGENT_ROLES]
        if unknown:
            raise ValueError(
                f"Unknown agent roles {unknown}. Valid roles: {', '.join(AGENT_ROLES)}"
            )
        return v


class GatesConfig(BaseModel):
    """Corrective-cycle ceilings for each gate."""

    review_max_cycles: int = Field(default=3, description="Code review gate")
    specialized_review_max_cycles: int = Field(
        default=2, description="Specialized (presentation) review gate"
    )
    test_fix_max_cycles: int = Field(default=3, description="Test execution gate")
    integration_max_cycles: int = Field(default=3, description="Whole-plan integration check")
    build_max_cycles: int = Field(default=3, description="Whole-plan build check")
    agent_failure_retries: int = Field(
        default=3, description="Retries for plain steps whose agent call fails"
    )

    @field_validator(
        "review_max_cycles",
        "specialized_review_max_cycles",
        "test_fix_max_cycles",
        "integration_max_cycles",
        "build_max_cycles",
        "agent_failure_retries",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate ceilings are at least 1."""
        if v < 1:
            raise ValueError("Cycle ceilings must be at least 1")
        return v


class CommandsConfig(BaseModel):
    """Deterministic check commands."""

    test: Optional[str] = Field(default=None, description="Test command")
    type_check: Optional[str] = Field(default=None, description="Type check command")
    build: Optional[str] = Field(default=None, description="Build command")
    timeout: str = Field(default="30m", description="Per-command timeout")

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: str) -> str:
        """Validate timeout format."""
        return _validate_duration(v)

    @field_validator("test", "type_check", "build")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Treat blank commands as unset."""
        if v is not None and not v.strip():
            return None
        return v


class StorageConfig(BaseModel):
    """Where plans and pipeline state live."""

    plans_dir: str = Field(default="plans", description="Archive directory for plans")
    state_dir: str = Field(default=".phasegate", description="Pointer, locks and reports")


class ValidationConfig(BaseModel):
    """Phase validation configuration."""

    ignored_paths: List[str] = Field(
        default_factory=lambda: ["*/__pycache__/*", "*.pyc"],
        description="Globs of paths any phase may change",
    )


class ResumeConfig(BaseModel):
    """Resumption configuration."""

    discard_partial_work: bool = Field(
        default=True,
        description="Restore an interrupted phase's files to its baseline on resume",
    )
    protected_branches: List[str] = Field(
        default=["main", "master"],
        description="Branches where partial work is never discarded",
    )


class BranchConfig(BaseModel):
    """Feature branch each plan runs on."""

    enabled: bool = Field(default=True, description="Check out a feature branch before running")
    prefix: str = Field(default="feature/", description="Branch name prefix before the plan slug")

    @field_validator("prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        """Reject prefixes git cannot use in a branch name."""
        if any(c in v for c in " ~^:?*[\\") or ".." in v:
            raise ValueError(f"invalid branch prefix: {v!r}")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    output_dir: str = Field(default=".phasegate/logs", description="Log output directory")
    retention_days: int = Field(default=30, description="Log retention in days")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARN", "ERROR"]
        if v.upper() not in valid_levels:
            raise ValueError(f"level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @field_validator("retention_days")
    @classmethod
    def validate_retention(cls, v: int) -> int:
        """Validate retention days."""
        if v < 1:
            raise ValueError("retention_days must be at least 1")
        if v > 365:
            raise ValueError("retention_days cannot exceed 365")
        return v


class PhasegateConfig(BaseModel):
    """Main phasegate configuration."""

    agent: AgentConfig = Field(default_factory=AgentConfig, description="Agent configuration")
    gates: GatesConfig = Field(default_factory=GatesConfig, description="Gate ceilings")
    commands: CommandsConfig = Field(
        default_factory=CommandsConfig, description="Check commands"
    )
    storage: StorageConfig = Field(default_factory=StorageConfig, description="Storage paths")
    validation: ValidationConfig = Field(
        default_factory=ValidationConfig, description="Validation configuration"
    )
    resume: ResumeConfig = Field(default_factory=ResumeConfig, description="Resumption")
    branches: BranchConfig = Field(default_factory=BranchConfig, description="Feature branches")
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    def get_working_dir(self) -> Path:
        """Get the project working directory as a Path object."""
        return Path(self.agent.working_dir).expanduser().resolve()

    def get_log_dir(self) -> Path:
        """Get the log directory, relative to the working directory."""
        return self._project_path(self.logging.output_dir)

    def get_plans_dir(self) -> Path:
        return self._project_path(self.storage.plans_dir)

    def get_state_dir(self) -> Path:
        return self._project_path(self.storage.state_dir)

    def get_reports_dir(self) -> Path:
        return self.get_state_dir() / "reports"

    def agent_timeout_seconds(self) -> int:
        return parse_duration(self.agent.timeout)

    def command_timeout_seconds(self) -> int:
        return parse_duration(self.commands.timeout)

    def _project_path(self, value: str) -> Path:
        path = Path(value).expanduser()
        if path.is_absolute():
            return path
        return self.get_working_dir() / path


def resolve_env_vars(obj: Any) -> Any:
    """Recursively resolve ``${VAR}`` and ``${VAR:default}`` in configuration data."""
    if isinstance(obj, dict):
        return {key: resolve_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [resolve_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return _resolve_env_var_string(obj)
    else:
        return obj


def _resolve_env_var_string(value: str) -> str:
    """Resolve environment variables in a string."""
    # Pattern for ${VAR_NAME} or ${VAR_NAME:default_value}
    pattern = r"\$\{([^}:]+)(?::([^}]*))?\}"

    def replace_var(match):
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ""
        return os.getenv(var_name, default_value)

    return re.sub(pattern, replace_var, value)
