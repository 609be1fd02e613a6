"""
ProcessOutcome - the terminal result of running one step.

The supervisor reports every step as one of three outcomes:
- SUCCEEDED: exit code 0
- FAILED_EXIT_CODE: non-zero exit code, possibly caused by a signal
- SPAWN_ERROR: the executable could not be started at all
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

# Signals that mean the process was stopped on purpose (kill()).
TERMINATION_SIGNALS = frozenset({"SIGTERM", "SIGKILL"})


class OutcomeKind(str, Enum):
    """Kind of step outcome."""
    SUCCEEDED = "succeeded"
    FAILED_EXIT_CODE = "failed_exit_code"
    SPAWN_ERROR = "spawn_error"


@dataclass(frozen=True)
class ProcessOutcome:
    """
    Outcome of a single supervised process.

    Attributes:
        kind: Outcome kind
        exit_code: Process exit code (None for spawn errors or signal deaths)
        signal: Name of the signal that ended the process, if any
        message: Spawn error message
        stdout: Full captured standard output
        stderr: Full captured standard error
        pid: Process id (None for spawn errors)
    """
    kind: OutcomeKind
    exit_code: Optional[int] = None
    signal: Optional[str] = None
    message: Optional[str] = None
    stdout: str = ""
    stderr: str = ""
    pid: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.kind == OutcomeKind.SUCCEEDED

    @property
    def terminated(self) -> bool:
        """True when the process was ended by a termination signal."""
        return self.signal in TERMINATION_SIGNALS

    @classmethod
    def success(cls, pid: int, stdout: str = "", stderr: str = "") -> "ProcessOutcome":
        return cls(kind=OutcomeKind.SUCCEEDED, exit_code=0, stdout=stdout, stderr=stderr, pid=pid)

    @classmethod
    def failure(
        cls,
        exit_code: Optional[int],
        signal: Optional[str] = None,
        pid: Optional[int] = None,
        stdout: str = "",
        stderr: str = "",
    ) -> "ProcessOutcome":
        return cls(
            kind=OutcomeKind.FAILED_EXIT_CODE,
            exit_code=exit_code,
            signal=signal,
            stdout=stdout,
            stderr=stderr,
            pid=pid,
        )

    @classmethod
    def spawn_error(cls, message: str) -> "ProcessOutcome":
        return cls(kind=OutcomeKind.SPAWN_ERROR, message=message)

    def describe(self) -> str:
        """Short human-readable description for logs."""
        if self.kind == OutcomeKind.SPAWN_ERROR:
            return f"spawn error: {self.message}"
        if self.kind == OutcomeKind.SUCCEEDED:
            return "succeeded"
        return f"{self.exit_code}/{self.signal}"

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"kind": self.kind.value}
        if self.exit_code is not None:
            result["exit_code"] = self.exit_code
        if self.signal is not None:
            result["signal"] = self.signal
        if self.message is not None:
            result["message"] = self.message
        if self.pid is not None:
            result["pid"] = self.pid
        return result
