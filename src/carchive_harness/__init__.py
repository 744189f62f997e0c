"""carchive-harness: verify signal handling of c-archive builds.

Builds a managed-language package as a static library plus header, links
it into native test programs, runs them, and checks how they terminate:
cleanly, with an exit status, or killed by a specific signal. Externally
delivered signals are retried within a bound because delivery to a
multi-threaded process may land on a thread that discards them.

Quick Start:
    ```python
    import asyncio
    from pathlib import Path

    from carchive_harness import SignalTestOrchestrator, Settings, SCENARIOS, resolve_config
    from carchive_harness.process import SubprocessRunner

    async def main() -> None:
        runner = SubprocessRunner()
        config = await resolve_config(Settings(workspace=Path("testdata")), runner)
        reports = await SignalTestOrchestrator(config, runner).run_all(SCENARIOS)
        for report in reports:
            print(report.name, report.outcome.value)

    asyncio.run(main())
    ```

Requirements:
    - A toolchain supporting -buildmode=c-archive on PATH
    - A C compiler (reported by `<toolchain> env CC`)
    - A POSIX host for the signal scenarios
"""

from carchive_harness.classifier import Termination, classify, expect_signal
from carchive_harness.config import HarnessConfig, resolve_config
from carchive_harness.elf_inspect import DynamicTagSet, has_dynamic_tag, read_dynamic_tags
from carchive_harness.exceptions import (
    BinaryInspectionError,
    ClassificationShapeError,
    ElfFormatError,
    ElfOpenError,
    ElfReadError,
    ExpectationError,
    HarnessConfigError,
    HarnessError,
    InconclusiveAttemptError,
    PermanentError,
    ProcessStartError,
    ScenarioSkipped,
    SynchronizationError,
    ToolInvocationError,
    TransientError,
)
from carchive_harness.models import ProcessResult, ScenarioOutcome, ScenarioReport, ScenarioState, TerminationKind
from carchive_harness.orchestrator import SignalTestOrchestrator
from carchive_harness.scenarios import SCENARIOS, Scenario
from carchive_harness.settings import Settings
from carchive_harness.shell_words import split_flags

__all__ = [
    "SCENARIOS",
    "BinaryInspectionError",
    "ClassificationShapeError",
    "DynamicTagSet",
    "ElfFormatError",
    "ElfOpenError",
    "ElfReadError",
    "ExpectationError",
    "HarnessConfig",
    "HarnessConfigError",
    "HarnessError",
    "InconclusiveAttemptError",
    "PermanentError",
    "ProcessResult",
    "ProcessStartError",
    "Scenario",
    "ScenarioOutcome",
    "ScenarioReport",
    "ScenarioSkipped",
    "ScenarioState",
    "Settings",
    "SignalTestOrchestrator",
    "SynchronizationError",
    "Termination",
    "TerminationKind",
    "ToolInvocationError",
    "TransientError",
    "classify",
    "expect_signal",
    "has_dynamic_tag",
    "read_dynamic_tags",
    "resolve_config",
    "split_flags",
]

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("carchive-harness")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"
