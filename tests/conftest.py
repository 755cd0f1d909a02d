"""Shared pytest fixtures and utilities for phasegate tests."""

import io
import subprocess
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional

import pytest
from rich.console import Console

from phasegate.config.models import AgentConfig, CommandsConfig, PhasegateConfig
from phasegate.core.plan_schema import Plan, plan_from_dict
from phasegate.orchestrator import EscalationReporter, PhaseRunner, PipelineEngine, PlanStore
from phasegate.tracking.activity_logger import ActivityLogger
from tests.mocks import FakeChangeTracker, FakeCommandRunner, ScriptedAgentGateway

TEST_COMMAND = "pytest -q"
TYPE_CHECK_COMMAND = "mypy src"
BUILD_COMMAND = "python -m build"


# ============================================================================
# Directory and Configuration Fixtures
# ============================================================================


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Project workspace the pipeline operates on."""
    project = tmp_path / "project"
    project.mkdir()
    return project


@pytest.fixture
def config(workspace: Path) -> PhasegateConfig:
    """Configuration rooted in the temporary workspace, with all check commands set."""
    return PhasegateConfig(
        agent=AgentConfig(working_dir=str(workspace)),
        commands=CommandsConfig(
            test=TEST_COMMAND,
            type_check=TYPE_CHECK_COMMAND,
            build=BUILD_COMMAND,
        ),
    )


@pytest.fixture
def store(config: PhasegateConfig) -> PlanStore:
    return PlanStore(plans_dir=config.get_plans_dir(), state_dir=config.get_state_dir())


@pytest.fixture
def git_repo(tmp_path: Path) -> Generator[Path, None, None]:
    """Create a temporary git repository for testing.

    The repository is initialized with:
    - Git config (user.name and user.email)
    - Initial commit with README.md and src/app.py

    Yields:
        Path to the git repository
    """
    repo_path = tmp_path / "test_repo"
    repo_path.mkdir(parents=True, exist_ok=True)

    def git(*args: str) -> None:
        subprocess.run(["git", *args], cwd=repo_path, check=True, capture_output=True)

    git("init")
    git("config", "user.name", "Test User")
    git("config", "user.email", "test@example.com")
    git("checkout", "-b", "feature/work")

    (repo_path / "README.md").write_text("# Test Repository\n\nGenerated for testing.\n")
    (repo_path / "src").mkdir()
    (repo_path / "src" / "app.py").write_text("VALUE = 1\n")
    git("add", ".")
    git("commit", "-m", "Initial commit")

    yield repo_path


# ============================================================================
# Collaborator Fixtures
# ============================================================================


@pytest.fixture
def quiet_console() -> Console:
    """Console writing to a buffer instead of the terminal."""
    return Console(file=io.StringIO(), width=120)


@pytest.fixture
def gateway(workspace: Path) -> ScriptedAgentGateway:
    return ScriptedAgentGateway(workspace=workspace)


@pytest.fixture
def command_runner() -> FakeCommandRunner:
    return FakeCommandRunner()


@pytest.fixture
def change_tracker() -> FakeChangeTracker:
    return FakeChangeTracker()


@pytest.fixture
def activity_logger(config: PhasegateConfig) -> ActivityLogger:
    return ActivityLogger(session_id="test-session", logs_dir=config.get_log_dir())


@pytest.fixture
def reporter(
    config: PhasegateConfig, quiet_console: Console, activity_logger: ActivityLogger
) -> EscalationReporter:
    return EscalationReporter(
        config.get_reports_dir(), console=quiet_console, activity_logger=activity_logger
    )


@pytest.fixture
def runner(
    gateway: ScriptedAgentGateway,
    store: PlanStore,
    config: PhasegateConfig,
    command_runner: FakeCommandRunner,
    change_tracker: FakeChangeTracker,
    reporter: EscalationReporter,
    activity_logger: ActivityLogger,
    quiet_console: Console,
) -> PhaseRunner:
    return PhaseRunner(
        gateway=gateway,
        store=store,
        config=config,
        command_runner=command_runner,
        change_tracker=change_tracker,
        reporter=reporter,
        activity_logger=activity_logger,
        console=quiet_console,
    )


@pytest.fixture
def engine(
    gateway: ScriptedAgentGateway,
    store: PlanStore,
    config: PhasegateConfig,
    command_runner: FakeCommandRunner,
    change_tracker: FakeChangeTracker,
    reporter: EscalationReporter,
    activity_logger: ActivityLogger,
    quiet_console: Console,
) -> PipelineEngine:
    return PipelineEngine(
        store=store,
        gateway=gateway,
        config=config,
        command_runner=command_runner,
        change_tracker=change_tracker,
        reporter=reporter,
        activity_logger=activity_logger,
        console=quiet_console,
    )


# ============================================================================
# Plan Fixtures
# ============================================================================


def phase_data(
    phase_id: str,
    owns: Optional[List[str]] = None,
    depends_on: Optional[List[str]] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Minimal valid phase dictionary."""
    data: Dict[str, Any] = {
        "id": phase_id,
        "name": f"Phase {phase_id}",
        "description": f"Build the part of the feature covered by phase {phase_id}",
        "owns": owns if owns is not None else [f"src/part_{phase_id}.py"],
        "depends_on": depends_on or [],
        "acceptance_criteria": [f"Part {phase_id} works"],
    }
    data.update(extra)
    return data


@pytest.fixture
def make_plan() -> Callable[..., Plan]:
    """Factory building validated plans.

    Called without phases it builds the two-phase dark-mode plan: phase 1 owns
    the theme model, phase 2 (a presentation phase) owns the toggle and
    depends on phase 1.
    """

    def _make(
        phases: Optional[List[Dict[str, Any]]] = None,
        plan_number: int = 1,
        slug: str = "add-dark-mode",
        **extra: Any,
    ) -> Plan:
        if phases is None:
            phases = [
                phase_data("1", owns=["src/theme.py"], name="Theme model"),
                phase_data(
                    "2",
                    owns=["src/toggle.py"],
                    depends_on=["1"],
                    name="Toggle UI",
                    presentation=True,
                ),
            ]
        data: Dict[str, Any] = {
            "plan_number": plan_number,
            "slug": slug,
            "feature_request": "Add dark mode toggle",
            "phases": phases,
            "shared_context": "Python 3 project",
            "test_strategy": {"approach": "unit tests", "tools": ["pytest"]},
        }
        data.update(extra)
        return plan_from_dict(data)

    return _make


@pytest.fixture
def sample_plan(make_plan: Callable[..., Plan], store: PlanStore) -> Plan:
    """The default two-phase plan, already stored."""
    return store.create(make_plan())
