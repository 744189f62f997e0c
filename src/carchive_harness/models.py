"""Data models for carchive-harness."""

from __future__ import annotations

import signal
from collections.abc import Sequence
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


def signal_name(signum: int) -> str:
    """Human-readable signal name (``SIGSEGV``), falling back to the number."""
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"signal {signum}"


class ProcessResult(BaseModel):
    """Outcome of one finished process launch."""

    model_config = ConfigDict(frozen=True)

    argv: tuple[str, ...] = Field(description="Command line that was run")
    output: bytes = Field(default=b"", description="Combined stdout/stderr")
    exited_normally: bool = Field(description="False when killed by a signal")
    exit_code: int | None = Field(default=None, description="Exit status when exited_normally")
    terminating_signal: int | None = Field(default=None, description="Signal number when killed")

    @model_validator(mode="after")
    def _check_termination_fields(self) -> ProcessResult:
        """Exactly one of exit_code and terminating_signal is set, matching exited_normally."""
        if self.exited_normally:
            if self.exit_code is None or self.terminating_signal is not None:
                raise ValueError("a normal exit carries exit_code and no terminating_signal")
        elif self.terminating_signal is None or self.exit_code is not None:
            raise ValueError("a signalled process carries terminating_signal and no exit_code")
        return self

    @classmethod
    def from_returncode(cls, argv: Sequence[str], returncode: int, output: bytes = b"") -> ProcessResult:
        """Build a result from an asyncio/subprocess return code.

        Negative return codes are the POSIX convention for "killed by
        signal -returncode".
        """
        if returncode < 0:
            return cls(argv=tuple(argv), output=output, exited_normally=False, terminating_signal=-returncode)
        return cls(argv=tuple(argv), output=output, exited_normally=True, exit_code=returncode)

    @property
    def returncode(self) -> int:
        """Return code in subprocess convention (negative signal number)."""
        if self.exited_normally:
            return self.exit_code  # type: ignore[return-value]
        return -self.terminating_signal  # type: ignore[operator]

    @property
    def ok(self) -> bool:
        """Exited normally with status zero."""
        return self.exited_normally and self.exit_code == 0

    def describe(self) -> str:
        """Short description of the termination, e.g. ``killed by SIGSEGV``."""
        if self.exited_normally:
            return f"exit status {self.exit_code}"
        return f"killed by {signal_name(self.terminating_signal)}"  # type: ignore[arg-type]


class TerminationKind(str, Enum):
    """Three-way classification of how a process ended."""

    CLEAN_EXIT = "clean_exit"
    EXIT_WITH_CODE = "exit_with_code"
    KILLED_BY_SIGNAL = "killed_by_signal"


class ScenarioState(str, Enum):
    """Lifecycle states of one scenario run."""

    NOT_STARTED = "not_started"
    BUILT = "built"
    LINKED = "linked"
    RUNNING = "running"
    CLASSIFIED = "classified"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ScenarioOutcome(str, Enum):
    """Terminal outcome of a scenario."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ScenarioReport(BaseModel):
    """Result of running one scenario."""

    name: str
    outcome: ScenarioOutcome
    states: list[ScenarioState] = Field(default_factory=list, description="States visited, in order")
    reason: str | None = Field(default=None, description="Skip reason or failure message")
    error_type: str | None = Field(default=None, description="Exception class behind a failure")
    attempts: int = Field(default=0, description="Supervised attempts used by retried runs")
    duration_ms: int = Field(default=0, description="Wall-clock duration")

    @property
    def passed(self) -> bool:
        return self.outcome == ScenarioOutcome.PASSED

    @property
    def failed(self) -> bool:
        return self.outcome == ScenarioOutcome.FAILED
