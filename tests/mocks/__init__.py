"""Mock utilities for testing."""

from .agent_mocks import (
    FakeChangeTracker,
    FakeCommandRunner,
    ScriptedAgentGateway,
    approved,
    blocked,
    needs_changes,
    plan_payload,
)

__all__ = [
    "FakeChangeTracker",
    "FakeCommandRunner",
    "ScriptedAgentGateway",
    "approved",
    "blocked",
    "needs_changes",
    "plan_payload",
]
