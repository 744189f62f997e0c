"""Scenario catalogue.

A scenario is declarative: the targets it does not apply to, and a list of
stages. Each stage builds one archive, optionally links a native program
against it, runs it with expected terminations, and optionally checks the
linked binary's dynamic section. The orchestrator interprets these.
"""

from __future__ import annotations

import signal
from dataclasses import dataclass, field
from enum import Enum

from carchive_harness.build import ArchiveBuild, BuildVerb
from carchive_harness.classifier import CLEAN_EXIT, Termination, killed_by
from carchive_harness.constants import DT_TEXTREL
from carchive_harness.exceptions import ScenarioSkipped


class RunMode(str, Enum):
    SYNC = "sync"
    SUPERVISED = "supervised"


@dataclass(frozen=True, slots=True)
class RunStep:
    """One execution of the linked program.

    Attributes:
        args: Arguments after the executable
        expect: Termination the run must end with
        mode: SYNC waits for completion; SUPERVISED waits for the readiness
            token, sends ``send`` and retries while the child exits cleanly
        send: Signal delivered in SUPERVISED mode
    """

    args: tuple[str, ...] = ()
    expect: Termination = CLEAN_EXIT
    mode: RunMode = RunMode.SYNC
    send: signal.Signals | None = None


@dataclass(frozen=True, slots=True)
class LinkStep:
    name: str
    sources: tuple[str, ...]
    extra_flags: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Stage:
    build: ArchiveBuild
    link: LinkStep | None = None
    runs: tuple[RunStep, ...] = ()
    forbidden_dynamic_tags: tuple[int, ...] = ()


@dataclass(frozen=True, slots=True)
class Scenario:
    """A named end-to-end check.

    Attributes:
        name: Identifier used on the command line
        description: One-line summary
        stages: Stages run in order
        skip_on: Targets the scenario does not apply to, as ``goos`` or
            ``goos/goarch``
        skip_note: Appended to the skip reason (e.g. an issue link)
        tags: Labels ``run --skip-tag`` filters on; "flaky" marks timing-dependent runs
    """

    name: str
    description: str
    stages: tuple[Stage, ...]
    skip_on: tuple[str, ...] = ()
    skip_note: str | None = None
    tags: frozenset[str] = field(default_factory=frozenset)

    def skip_reason(self, goos: str, goarch: str) -> str | None:
        """Reason the scenario is skipped on this target, or None."""
        for target in (f"{goos}/{goarch}", goos):
            if target in self.skip_on:
                reason = f"skipping {self.name} on {target}"
                return f"{reason}; {self.skip_note}" if self.skip_note else reason
        return None

    def check_applicable(self, goos: str, goarch: str) -> None:
        """Raise ScenarioSkipped when the target is excluded."""
        reason = self.skip_reason(goos, goarch)
        if reason is not None:
            raise ScenarioSkipped(reason, context={"scenario": self.name, "goos": goos, "goarch": goarch})

    @property
    def writes_shared(self) -> bool:
        """Whether any stage writes to shared workspace locations."""
        return any(stage.build.writes_shared for stage in self.stages)

    @property
    def uses_install(self) -> bool:
        return any(stage.build.verb == BuildVerb.INSTALL for stage in self.stages)


_SIGNAL_UNSUPPORTED = ("darwin/arm", "darwin/arm64", "windows")
_SIGNAL_NOTE = "see https://golang.org/issue/13701"

_UNIX_MAIN = ("main.c", "main_unix.c")


def _libgo2_forwarding(*runs: RunStep, build: ArchiveBuild | None = None) -> Stage:
    return Stage(
        build=build or ArchiveBuild.to_output("libgo2"),
        link=LinkStep("testp", ("main5.c",)),
        runs=runs,
    )


SCENARIOS: tuple[Scenario, ...] = (
    Scenario(
        name="install",
        description="install, build-by-file and build-with-output archives each link and run",
        stages=(
            Stage(
                build=ArchiveBuild.install("libgo"),
                link=LinkStep("testp1", _UNIX_MAIN),
                runs=(RunStep(("arg1", "arg2")),),
            ),
            Stage(
                build=ArchiveBuild.file("libgo"),
                link=LinkStep("testp2", _UNIX_MAIN),
                runs=(RunStep(("arg1", "arg2")),),
            ),
            Stage(
                build=ArchiveBuild.to_output("libgo"),
                link=LinkStep("testp3", _UNIX_MAIN),
                runs=(RunStep(("arg1", "arg2")),),
            ),
        ),
    ),
    Scenario(
        name="early_signal_handler",
        description="C signal handler installed before runtime init keeps working",
        stages=(
            Stage(
                build=ArchiveBuild.to_output("libgo2"),
                link=LinkStep("testp", ("main2.c",)),
                runs=(RunStep(),),
            ),
        ),
        skip_on=_SIGNAL_UNSUPPORTED,
        skip_note=_SIGNAL_NOTE,
    ),
    Scenario(
        name="signal_forwarding",
        description="synchronous SIGSEGV and SIGPIPE raised in C are forwarded",
        stages=(
            _libgo2_forwarding(
                RunStep(("1",), expect=killed_by(signal.SIGSEGV)),
                RunStep(("3",), expect=killed_by(signal.SIGPIPE)),
            ),
        ),
        skip_on=_SIGNAL_UNSUPPORTED,
        skip_note=_SIGNAL_NOTE,
    ),
    Scenario(
        name="signal_forwarding_external",
        description="externally sent SIGSEGV kills the program within the retry bound",
        stages=(
            _libgo2_forwarding(
                RunStep(
                    ("2",),
                    expect=killed_by(signal.SIGSEGV),
                    mode=RunMode.SUPERVISED,
                    send=signal.SIGSEGV,
                ),
            ),
        ),
        skip_on=_SIGNAL_UNSUPPORTED,
        skip_note=_SIGNAL_NOTE,
        tags=frozenset({"flaky"}),
    ),
    Scenario(
        name="os_signal",
        description="os/signal notification works inside a c-archive",
        stages=(
            Stage(
                build=ArchiveBuild.to_output("libgo3"),
                link=LinkStep("testp", ("main3.c",)),
                runs=(RunStep(),),
            ),
        ),
        skip_on=("windows",),
    ),
    Scenario(
        name="sigaltstack",
        description="runtime respects an alternate signal stack set up by C",
        stages=(
            Stage(
                build=ArchiveBuild.to_output("libgo4"),
                link=LinkStep("testp", ("main4.c",)),
                runs=(RunStep(),),
            ),
        ),
        skip_on=("windows",),
    ),
    Scenario(
        name="extar",
        description="-ldflags=-extar runs the given archiver",
        stages=(Stage(build=ArchiveBuild("libgo4", output="libgo4.a", fake_archiver=True)),),
        skip_on=("windows",),
    ),
    Scenario(
        name="pie",
        description="archive links into a PIE without text relocations",
        stages=(
            Stage(
                build=ArchiveBuild.install("libgo"),
                link=LinkStep("testp", _UNIX_MAIN, extra_flags=("-fPIE", "-pie")),
                runs=(RunStep(("arg1", "arg2")),),
                forbidden_dynamic_tags=(DT_TEXTREL,),
            ),
        ),
        skip_on=("windows", "darwin", "plan9"),
    ),
    Scenario(
        name="sigprof",
        description="SIGPROF profiling signals from C threads are tolerated",
        stages=(
            Stage(
                build=ArchiveBuild.to_output("libgo6"),
                link=LinkStep("testp6", ("main6.c",)),
                runs=(RunStep(),),
            ),
        ),
        skip_on=("windows", "plan9", "darwin"),
        skip_note="see https://golang.org/issue/19320",
    ),
    Scenario(
        name="compile_without_shared",
        description="archive compiled with -shared=false still forwards SIGPIPE",
        stages=(
            _libgo2_forwarding(
                RunStep(("3",), expect=killed_by(signal.SIGPIPE)),
                build=ArchiveBuild.to_output("libgo2", None, "-gcflags=-shared=false"),
            ),
        ),
        skip_on=_SIGNAL_UNSUPPORTED,
        skip_note=_SIGNAL_NOTE,
    ),
)

SCENARIOS_BY_NAME: dict[str, Scenario] = {s.name: s for s in SCENARIOS}


def get_scenario(name: str) -> Scenario:
    """Look up a scenario by name.

    Raises:
        KeyError: Unknown scenario
    """
    return SCENARIOS_BY_NAME[name]
