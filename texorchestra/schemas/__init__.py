"""
texorchestra.schemas - Data structures for the build engine.

Step/Recipe -> BuildAttempt -> ProcessOutcome -> BuildResult

Lifecycle:
1. Recipe/Step: Static configuration, never mutated
2. BuildAttempt: Created per build with a cloned, materialized step list
3. ProcessOutcome: Reported by the supervisor for every step that runs
4. BuildResult: Returned to the caller when the build reaches a terminal state
"""

from .step import (
    Step,
    Recipe,
    ToolRef,
    TEX_MAGIC_PROGRAM,
    BIB_MAGIC_PROGRAM,
    WITH_ARGS_SUFFIX,
)
from .outcome import OutcomeKind, ProcessOutcome, TERMINATION_SIGNALS
from .attempt import BuildAttempt, BuildResult, BuildState, BuildStatus

__all__ = [
    "Step",
    "Recipe",
    "ToolRef",
    "TEX_MAGIC_PROGRAM",
    "BIB_MAGIC_PROGRAM",
    "WITH_ARGS_SUFFIX",
    "OutcomeKind",
    "ProcessOutcome",
    "TERMINATION_SIGNALS",
    "BuildAttempt",
    "BuildResult",
    "BuildState",
    "BuildStatus",
]
