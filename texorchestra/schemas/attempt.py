"""
Attempt schemas - tracking one build from admission to its terminal state.

BuildAttempt is the transient record of a build: the resolved step list, the
index of the running step and the retry guard.
BuildResult is what the orchestrator hands back to the caller.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .outcome import ProcessOutcome
from .step import Step


class BuildState(str, Enum):
    """State of the build orchestrator."""
    IDLE = "idle"
    ADMITTING = "admitting"
    RUNNING = "running"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class BuildStatus(str, Enum):
    """Terminal status of a build request."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REJECTED = "rejected"


@dataclass
class BuildAttempt:
    """
    A single build of a root file.

    Attributes:
        root_file: Root file being compiled
        language_id: Language of the root file (latex, rsweave, jlweave, ...)
        recipe_label: Label used in progress reports
        steps: Materialized steps, never modified once set
        index: Index of the current step
        retried: Set once the automatic clean-and-retry has been used
        cancelled: Set when the build was stopped by a kill request
        started_at: When the attempt was admitted
    """
    root_file: str
    language_id: str
    recipe_label: str
    steps: tuple[Step, ...] = field(default_factory=tuple)
    index: int = 0
    retried: bool = False
    cancelled: bool = False
    started_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if not isinstance(self.steps, tuple):
            self.steps = tuple(self.steps)

    @property
    def current_step(self) -> Step:
        return self.steps[self.index]

    @property
    def is_last_step(self) -> bool:
        return self.index == len(self.steps) - 1

    def progress(self) -> str:
        """Progress label: "<recipe>: i/N (<step>)" for multi-step recipes."""
        if len(self.steps) < 2:
            return self.recipe_label
        return f"{self.recipe_label}: {self.index + 1}/{len(self.steps)} ({self.current_step.name})"


@dataclass(frozen=True)
class BuildResult:
    """
    Result of a build request.

    Attributes:
        status: Terminal status
        attempt: The attempt, None when rejected or failed before resolution
        outcome: Outcome of the last step that ran
        error: Error message for failed builds
    """
    status: BuildStatus
    attempt: Optional[BuildAttempt] = None
    outcome: Optional[ProcessOutcome] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == BuildStatus.SUCCEEDED

    @property
    def retried(self) -> bool:
        return self.attempt is not None and self.attempt.retried

    @property
    def cancelled(self) -> bool:
        return self.attempt is not None and self.attempt.cancelled

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"status": self.status.value}
        if self.attempt is not None:
            result["root_file"] = self.attempt.root_file
            result["steps"] = [s.name for s in self.attempt.steps]
            result["retried"] = self.attempt.retried
        if self.outcome is not None:
            result["outcome"] = self.outcome.to_dict()
        if self.error is not None:
            result["error"] = self.error
        return result
