"""Termination classification.

Maps the status a process wait produces to one of three outcomes:
CleanExit, ExitWithCode(code) or KilledBySignal(signal). Statuses of any
other shape raise ClassificationShapeError so an unexpected form is never
read as "exited cleanly".

Accepted statuses:
    None            -> CleanExit (the wait reported no error)
    ProcessResult   -> from its exit code / terminating signal
    int             -> subprocess return code convention
                       (0 clean, >0 exit code, <0 killed by -code)
"""

from __future__ import annotations

import signal
from dataclasses import dataclass
from typing import Any

from carchive_harness.exceptions import ClassificationShapeError
from carchive_harness.models import ProcessResult, TerminationKind, signal_name


@dataclass(frozen=True, slots=True)
class Termination:
    """Classified termination of a process."""

    kind: TerminationKind
    exit_code: int | None = None
    signal: int | None = None

    @property
    def is_clean(self) -> bool:
        return self.kind == TerminationKind.CLEAN_EXIT

    def is_signal(self, sig: int) -> bool:
        """True when killed by exactly ``sig``."""
        return self.kind == TerminationKind.KILLED_BY_SIGNAL and self.signal == sig

    def __str__(self) -> str:
        match self.kind:
            case TerminationKind.CLEAN_EXIT:
                return "clean exit"
            case TerminationKind.EXIT_WITH_CODE:
                return f"exit status {self.exit_code}"
            case TerminationKind.KILLED_BY_SIGNAL:
                return f"killed by {signal_name(self.signal or 0)}"


CLEAN_EXIT = Termination(TerminationKind.CLEAN_EXIT, exit_code=0)


def exit_with_code(code: int) -> Termination:
    return Termination(TerminationKind.EXIT_WITH_CODE, exit_code=code)


def killed_by(sig: int) -> Termination:
    return Termination(TerminationKind.KILLED_BY_SIGNAL, signal=int(sig))


def _from_returncode(returncode: int) -> Termination:
    if returncode == 0:
        return CLEAN_EXIT
    if returncode > 0:
        return exit_with_code(returncode)
    return killed_by(-returncode)


def classify(status: Any) -> Termination:
    """Classify a wait status.

    Args:
        status: None, a ProcessResult or an integer return code

    Returns:
        The classified Termination

    Raises:
        ClassificationShapeError: status has any other type
    """
    if status is None:
        return CLEAN_EXIT
    if isinstance(status, ProcessResult):
        if status.exited_normally:
            if status.exit_code is None:
                raise ClassificationShapeError(
                    "process result exited normally without an exit code",
                    context={"argv": list(status.argv)},
                )
            return _from_returncode(status.exit_code)
        if status.terminating_signal is None:
            raise ClassificationShapeError(
                "process result has neither exit code nor signal",
                context={"argv": list(status.argv)},
            )
        return killed_by(status.terminating_signal)
    # bool is an int subclass but never a wait status
    if isinstance(status, int) and not isinstance(status, bool):
        return _from_returncode(status)
    raise ClassificationShapeError(
        f"wait status ({status!r}) has type {type(status).__name__}; expected ProcessResult or return code",
        context={"status_type": type(status).__name__},
    )


def expect_signal(status: Any, sig: signal.Signals) -> bool:
    """Whether ``status`` shows death by exactly ``sig``.

    Raises:
        ClassificationShapeError: status has an unexpected type
    """
    return classify(status).is_signal(sig)
