"""Signal test orchestration.

Each scenario runs through:

    NotStarted -> Built -> Linked -> Running -> Classified -> Passed
                                                            -> Failed
    NotStarted -> Skipped   (target excluded; nothing acquired)

Synchronous runs are classified once. Supervised runs follow the
external-signal protocol: start, wait for the readiness token, pause for
the grace interval, send the signal, wait, classify. A signal delivered to
a thread that discards it lets the child exit cleanly; that attempt is
inconclusive and the whole cycle is retried up to ``signal_tries`` times.
Any other unexpected termination fails at once.

Every error, HarnessError or not, ends only the scenario that raised it.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
import uuid
from collections.abc import AsyncIterator, Iterable
from pathlib import Path

import aiofiles.os
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from carchive_harness._logging import get_logger
from carchive_harness.build import BuildPipeline, ExecutableArtifact
from carchive_harness.classifier import classify
from carchive_harness.config import HarnessConfig
from carchive_harness.constants import SCRATCH_DIR_NAME
from carchive_harness.elf_inspect import has_dynamic_tag
from carchive_harness.exceptions import (
    ExpectationError,
    HarnessError,
    InconclusiveAttemptError,
    ScenarioSkipped,
)
from carchive_harness.models import (
    ProcessResult,
    ScenarioOutcome,
    ScenarioReport,
    ScenarioState,
)
from carchive_harness.process import CommandRunner, SubprocessRunner
from carchive_harness.resource_cleanup import cleanup_tree
from carchive_harness.scenarios import RunMode, RunStep, Scenario, Stage

logger = get_logger(__name__)


class _StateTracker:
    """Records the states one scenario run passes through."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.states: list[ScenarioState] = [ScenarioState.NOT_STARTED]
        self.attempts = 0

    def enter(self, state: ScenarioState) -> None:
        self.states.append(state)
        logger.debug(f"{self.name}: {state.value}", extra={"context_id": self.name, "state": state.value})


def _output_text(result: ProcessResult) -> str:
    return result.output.decode(errors="replace").rstrip()


class SignalTestOrchestrator:
    """Runs scenarios against one resolved configuration.

    Args:
        config: Resolved harness configuration
        runner: Command runner (defaults to real subprocesses)
    """

    def __init__(self, config: HarnessConfig, runner: CommandRunner | None = None) -> None:
        self.config = config
        self.runner = runner or SubprocessRunner()
        self._workspace_lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Scenario scope
    # -------------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def _scenario_scope(self, scenario: Scenario) -> AsyncIterator[Path]:
        """Scratch directory for one run, plus the workspace lock if needed.

        The scratch directory, and the install cache when the scenario
        installs, are removed on exit.
        """
        async with contextlib.AsyncExitStack() as stack:
            if scenario.writes_shared:
                await stack.enter_async_context(self._workspace_lock)

            scratch = self.config.workspace / SCRATCH_DIR_NAME / f"{scenario.name}-{uuid.uuid4().hex[:8]}"
            await aiofiles.os.makedirs(scratch, exist_ok=True)
            try:
                yield scratch
            finally:
                await cleanup_tree(scratch, scenario.name, "scratch directory")
                if scenario.uses_install:
                    await cleanup_tree(self.config.workspace / "pkg", scenario.name, "install cache")

    # -------------------------------------------------------------------------
    # Running
    # -------------------------------------------------------------------------

    async def run(self, scenario: Scenario) -> ScenarioReport:
        """Run one scenario to a terminal outcome.

        Returns:
            ScenarioReport; failures are reported, not raised
        """
        tracker = _StateTracker(scenario.name)
        started = time.monotonic()

        def report(
            outcome: ScenarioOutcome, reason: str | None = None, error_type: str | None = None
        ) -> ScenarioReport:
            return ScenarioReport(
                name=scenario.name,
                outcome=outcome,
                states=tracker.states,
                reason=reason,
                error_type=error_type,
                attempts=tracker.attempts,
                duration_ms=int((time.monotonic() - started) * 1000),
            )

        try:
            scenario.check_applicable(self.config.goos, self.config.goarch)
        except ScenarioSkipped as e:
            tracker.enter(ScenarioState.SKIPPED)
            logger.info(e.message, extra={"context_id": scenario.name})
            return report(ScenarioOutcome.SKIPPED, e.message)

        logger.info(f"=== RUN {scenario.name}", extra={"context_id": scenario.name})
        try:
            async with self._scenario_scope(scenario) as scratch:
                pipeline = BuildPipeline(self.config, self.runner, scratch, scenario.name)
                for stage in scenario.stages:
                    await self._run_stage(stage, pipeline, tracker)
        except HarnessError as e:
            tracker.enter(ScenarioState.FAILED)
            logger.error(
                f"--- FAIL {scenario.name}: {e.message}",
                extra={"context_id": scenario.name, "error_type": type(e).__name__, "context": e.context},
            )
            return report(ScenarioOutcome.FAILED, str(e), type(e).__name__)
        except Exception as e:  # noqa: BLE001 - one scenario's I/O failure must not cancel its siblings
            tracker.enter(ScenarioState.FAILED)
            logger.error(
                f"--- FAIL {scenario.name}: {type(e).__name__}: {e}",
                extra={"context_id": scenario.name, "error_type": type(e).__name__},
                exc_info=True,
            )
            return report(ScenarioOutcome.FAILED, f"{type(e).__name__}: {e}", type(e).__name__)

        tracker.enter(ScenarioState.PASSED)
        logger.info(f"--- PASS {scenario.name}", extra={"context_id": scenario.name})
        return report(ScenarioOutcome.PASSED)

    async def run_all(self, scenarios: Iterable[Scenario], jobs: int = 1) -> list[ScenarioReport]:
        """Run scenarios concurrently, at most ``jobs`` at a time.

        Returns:
            Reports in the order the scenarios were given
        """
        semaphore = asyncio.Semaphore(jobs)

        async def run_one(scenario: Scenario) -> ScenarioReport:
            async with semaphore:
                return await self.run(scenario)

        async with asyncio.TaskGroup() as tg:
            tasks = [tg.create_task(run_one(s), name=s.name) for s in scenarios]
        return [t.result() for t in tasks]

    async def _run_stage(self, stage: Stage, pipeline: BuildPipeline, tracker: _StateTracker) -> None:
        marker: Path | None = None
        if stage.build.fake_archiver:
            _, marker = await pipeline.write_fake_archiver()

        async with pipeline.archive(stage.build) as artifact:
            tracker.enter(ScenarioState.BUILT)

            if marker is not None and not await aiofiles.os.path.exists(marker):
                raise ExpectationError(
                    "fake archiver was not run by the build",
                    context={"marker": str(marker)},
                )

            if stage.link is None:
                return

            async with pipeline.executable(
                stage.link.name, stage.link.sources, artifact, stage.link.extra_flags
            ) as exe:
                tracker.enter(ScenarioState.LINKED)

                for step in stage.runs:
                    if step.mode == RunMode.SUPERVISED:
                        await self._run_supervised(step, exe, tracker)
                    else:
                        await self._run_sync(step, exe, tracker)

                for tag in stage.forbidden_dynamic_tags:
                    if await asyncio.to_thread(has_dynamic_tag, exe.path, tag):
                        raise ExpectationError(
                            f"{exe.path.name} has dynamic tag {tag}",
                            context={"path": str(exe.path), "tag": tag},
                        )

    async def _run_sync(self, step: RunStep, exe: ExecutableArtifact, tracker: _StateTracker) -> None:
        tracker.enter(ScenarioState.RUNNING)
        argv = self.config.command_to_run(exe.path, *step.args)
        result = await self.runner.run(argv, cwd=self.config.workspace)
        logger.debug(_output_text(result), extra={"context_id": tracker.name, "argv": list(argv)})

        verdict = classify(result)
        tracker.enter(ScenarioState.CLASSIFIED)
        if verdict != step.expect:
            raise ExpectationError(
                f"{' '.join(argv)}: got {verdict}; expected {step.expect}\n{_output_text(result)}".rstrip(),
                context={"argv": list(argv)},
            )

    async def _signal_attempt(self, step: RunStep, exe: ExecutableArtifact, tracker: _StateTracker) -> None:
        assert step.send is not None
        tracker.enter(ScenarioState.RUNNING)
        argv = self.config.command_to_run(exe.path, *step.args)

        child = await self.runner.start_supervised(argv, cwd=self.config.workspace)
        # Let the child get from printing the token into its sleep.
        await asyncio.sleep(self.config.signal_grace_seconds)
        await child.send_signal(step.send)
        result = await child.wait()

        verdict = classify(result)
        tracker.enter(ScenarioState.CLASSIFIED)
        if verdict.is_clean:
            raise InconclusiveAttemptError(
                f"{step.send.name} was discarded; program exited cleanly",
                context={"argv": list(argv), "attempt": tracker.attempts},
            )
        if verdict != step.expect:
            raise ExpectationError(
                f"{' '.join(argv)}: got {verdict}; expected {step.expect}\n{_output_text(result)}".rstrip(),
                context={"argv": list(argv), "attempt": tracker.attempts},
            )

    async def _run_supervised(self, step: RunStep, exe: ExecutableArtifact, tracker: _StateTracker) -> None:
        tries = self.config.signal_tries
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(tries),
                retry=retry_if_exception_type(InconclusiveAttemptError),
                reraise=True,
            ):
                with attempt:
                    tracker.attempts = attempt.retry_state.attempt_number
                    await self._signal_attempt(step, exe, tracker)
        except InconclusiveAttemptError as e:
            raise ExpectationError(
                f"program succeeded unexpectedly {tries} times",
                context={"tries": tries, **e.context},
            ) from e
        logger.info(
            f"{tracker.name}: expected termination after {tracker.attempts} attempt(s)",
            extra={"context_id": tracker.name, "attempts": tracker.attempts},
        )
