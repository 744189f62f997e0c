"""Exception hierarchy for carchive-harness.

All exceptions inherit from HarnessError.

Hierarchy:
    HarnessError (base)
    ├── TransientError (retryable marker base)
    │   └── InconclusiveAttemptError  ← clean exit where a signal was expected
    ├── PermanentError (non-retryable marker base)
    │   ├── HarnessConfigError        ← toolchain query failed, bad settings
    │   ├── ToolInvocationError       ← toolchain/compiler exited non-zero
    │   ├── ProcessStartError         ← program could not be launched
    │   ├── SynchronizationError      ← readiness token missing or wrong
    │   ├── ClassificationShapeError  ← wait result of unexpected shape
    │   ├── ExpectationError          ← observed outcome differs from expected
    │   └── BinaryInspectionError
    │       ├── ElfOpenError          ← file cannot be opened
    │       ├── ElfFormatError        ← not ELF, or no dynamic section
    │       └── ElfReadError          ← section data unreadable
    └── ScenarioSkipped               ← target platform not applicable

Every PermanentError aborts the current scenario only. The retry protocol
in the orchestrator retries TransientError and nothing else.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class HarnessError(Exception):
    """Base exception for all harness errors with structured context.

    Attributes:
        message: Human-readable error message
        context: Dictionary of structured error context for logging
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


# =============================================================================
# Transient vs Permanent Error Base Classes
# =============================================================================


class TransientError(HarnessError):
    """Base for outcomes that may differ on the next attempt."""


class PermanentError(HarnessError):
    """Base for errors that won't change on retry."""


class InconclusiveAttemptError(TransientError):
    """A supervised attempt exited cleanly although a signal was sent.

    The signal was delivered to a thread that discarded it. The attempt
    says nothing about the contract under test and is retried.
    """


# =============================================================================
# Configuration and process errors
# =============================================================================


class HarnessConfigError(PermanentError):
    """The harness could not resolve its configuration.

    Raised when querying the toolchain environment fails or when the
    workspace does not exist.
    """


class ToolInvocationError(PermanentError):
    """An external build or link tool exited unsuccessfully.

    The tool's own combined output is the primary diagnostic and is kept
    verbatim in ``output``.

    Attributes:
        argv: Command line that was run
        returncode: Raw return code (negative when killed by a signal)
        output: Combined stdout/stderr of the tool, undecoded
    """

    def __init__(
        self,
        message: str,
        argv: Sequence[str],
        returncode: int | None,
        output: bytes,
        context: dict[str, Any] | None = None,
    ):
        ctx = context or {}
        ctx.update({"argv": list(argv), "returncode": returncode})
        super().__init__(message, ctx)
        self.argv = tuple(argv)
        self.returncode = returncode
        self.output = output

    def __str__(self) -> str:
        text = self.output.decode(errors="replace").rstrip()
        if not text:
            return self.message
        return f"{self.message}\n{text}"


class ProcessStartError(PermanentError):
    """The program could not be started (missing, not executable)."""


class SynchronizationError(PermanentError):
    """A supervised child did not print the readiness token.

    Raised when the first stderr line differs from the token or the stream
    closed before a full line arrived.
    """


class ClassificationShapeError(PermanentError):
    """A wait result had a form the classifier does not understand.

    Kept distinct from "no signal" so that an unknown status is never
    mistaken for a clean exit.
    """


class ExpectationError(PermanentError):
    """The observed termination or artifact differs from the expectation."""


# =============================================================================
# Binary inspection errors
# =============================================================================


class BinaryInspectionError(PermanentError):
    """Base exception for ELF inspection failures."""


class ElfOpenError(BinaryInspectionError):
    """The object file could not be opened."""


class ElfFormatError(BinaryInspectionError):
    """The file is not ELF or has no SHT_DYNAMIC section."""


class ElfReadError(BinaryInspectionError):
    """The dynamic section's contents could not be read."""


# =============================================================================
# Skips
# =============================================================================


class ScenarioSkipped(HarnessError):
    """The scenario does not apply to the target platform.

    Not a failure: the orchestrator records it as a skipped outcome.
    """
