"""
phasegate: phase execution state machine for multi-agent build pipelines

Walks a plan's phases in dependency order, drives each through implementation,
review, testing and validation gates with bounded corrective retries, escalates
to a human when budgets run out, and persists every transition so an
interrupted run can be resumed.
"""

__version__ = "0.1.0"

from phasegate.core.exceptions import PhasegateError

__all__ = ["PhasegateError", "__version__"]
