"""Command-line interface for carchive-harness.

Usage:
    carchive-harness list                          # Show scenarios
    carchive-harness run                           # Run every scenario
    carchive-harness run signal_forwarding pie     # Run selected scenarios
    carchive-harness run -w testdata -j 4 --tries 50 --json
    carchive-harness run --skip-tag flaky          # Leave out timing-sensitive scenarios
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, NoReturn

import click
from pydantic import ValidationError

from carchive_harness import __version__
from carchive_harness._logging import configure_logging
from carchive_harness.config import resolve_config
from carchive_harness.exceptions import HarnessError
from carchive_harness.models import ScenarioOutcome, ScenarioReport
from carchive_harness.orchestrator import SignalTestOrchestrator
from carchive_harness.process import SubprocessRunner
from carchive_harness.scenarios import SCENARIOS, SCENARIOS_BY_NAME, Scenario
from carchive_harness.settings import Settings

# Exit codes following Unix conventions
EXIT_SUCCESS = 0
EXIT_FAILURES = 1
EXIT_CLI_ERROR = 2
EXIT_HARNESS_ERROR = 125

_OUTCOME_STYLE: dict[ScenarioOutcome, tuple[str, str]] = {
    ScenarioOutcome.PASSED: ("PASS", "green"),
    ScenarioOutcome.FAILED: ("FAIL", "red"),
    ScenarioOutcome.SKIPPED: ("SKIP", "yellow"),
}


def format_error(title: str, message: str, suggestions: list[str] | None = None) -> str:
    """Format an error message following What → Why → Fix pattern.

    Args:
        title: Short error title
        message: Detailed explanation
        suggestions: Optional list of suggestions to fix the issue

    Returns:
        Formatted error string
    """
    lines = [
        click.style(f"Error: {title}", fg="red", bold=True),
        "",
        f"  {message}",
    ]

    if suggestions:
        lines.extend(["", "  Suggestions:"])
        lines.extend(f"    • {suggestion}" for suggestion in suggestions)

    return "\n".join(lines)


def format_report(report: ScenarioReport) -> str:
    """One summary line (plus failure detail) for a scenario report."""
    label, color = _OUTCOME_STYLE[report.outcome]
    line = f"{click.style(label, fg=color, bold=True)} {report.name} ({report.duration_ms}ms)"
    if report.attempts:
        line += f" [{report.attempts} attempt(s)]"
    if report.reason:
        detail = report.reason.replace("\n", "\n    ")
        line += f"\n    {detail}"
    return line


def format_reports_json(reports: list[ScenarioReport]) -> str:
    return json.dumps([r.model_dump(mode="json") for r in reports], indent=2)


def select_scenarios(names: tuple[str, ...], skip_tags: tuple[str, ...] = ()) -> list[Scenario]:
    """Scenarios named on the command line, or all of them.

    Scenarios carrying any of ``skip_tags`` are dropped, named or not.

    Raises:
        click.UsageError: A name is not in the catalogue
    """
    if names:
        unknown = [n for n in names if n not in SCENARIOS_BY_NAME]
        if unknown:
            raise click.UsageError(
                f"Unknown scenario(s): {', '.join(unknown)}. Run 'carchive-harness list' to see available scenarios."
            )
        selected = [SCENARIOS_BY_NAME[n] for n in names]
    else:
        selected = list(SCENARIOS)
    skipped = frozenset(skip_tags)
    return [s for s in selected if not s.tags & skipped]


async def run_scenarios(settings: Settings, scenarios: list[Scenario], json_output: bool) -> int:
    """Resolve configuration, run scenarios and print results.

    Returns:
        Exit code to return from CLI
    """
    runner = SubprocessRunner()
    try:
        config = await resolve_config(settings, runner)
    except HarnessError as e:
        click.echo(
            format_error(
                "Cannot configure harness",
                e.message,
                [
                    f"Check that '{settings.toolchain}' is on PATH",
                    "Point --workspace at the directory holding src/ and main*.c",
                ],
            ),
            err=True,
        )
        return EXIT_HARNESS_ERROR

    orchestrator = SignalTestOrchestrator(config, runner)
    reports = await orchestrator.run_all(scenarios, jobs=settings.jobs)

    if json_output:
        click.echo(format_reports_json(reports))
    else:
        for report in reports:
            click.echo(format_report(report))
        counts = {o: sum(1 for r in reports if r.outcome == o) for o in ScenarioOutcome}
        click.echo(
            f"{counts[ScenarioOutcome.PASSED]} passed, "
            f"{counts[ScenarioOutcome.FAILED]} failed, "
            f"{counts[ScenarioOutcome.SKIPPED]} skipped"
        )

    return EXIT_FAILURES if any(r.failed for r in reports) else EXIT_SUCCESS


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, "-V", "--version", prog_name="carchive-harness")
def main() -> None:
    """Verify c-archive signal handling by building, linking and running test programs."""


@main.command("list")
def list_command() -> None:
    """List available scenarios."""
    width = max(len(s.name) for s in SCENARIOS)
    for scenario in SCENARIOS:
        line = f"{scenario.name.ljust(width)}  {scenario.description}"
        if scenario.skip_on:
            line += click.style(f"  (not on {', '.join(scenario.skip_on)})", dim=True)
        if scenario.tags:
            line += click.style(f"  [{', '.join(sorted(scenario.tags))}]", fg="yellow")
        click.echo(line)


@main.command("run")
@click.argument("names", nargs=-1)
@click.option(
    "-w",
    "--workspace",
    type=click.Path(file_okay=False, path_type=Path),
    help="Workspace holding src/ and the native sources [default: current directory]",
)
@click.option("--toolchain", help="Toolchain binary [default: go]")
@click.option("-j", "--jobs", type=int, help="Scenarios to run concurrently [default: 1]")
@click.option("--tries", type=int, help="Attempts for external-signal scenarios [default: 20]")
@click.option("--grace", type=float, help="Seconds between readiness token and signal [default: 0.001]")
@click.option(
    "--skip-tag",
    "skip_tags",
    multiple=True,
    metavar="TAG",
    help="Leave out scenarios tagged TAG, e.g. --skip-tag flaky (repeatable)",
)
@click.option("--json", "json_output", is_flag=True, help="Output reports as JSON")
@click.option("-q", "--quiet", is_flag=True, help="Only log errors")
@click.option("-v", "--verbose", is_flag=True, help="Log every command and state change")
def run_command(
    names: tuple[str, ...],
    workspace: Path | None,
    toolchain: str | None,
    jobs: int | None,
    tries: int | None,
    grace: float | None,
    skip_tags: tuple[str, ...],
    json_output: bool,
    quiet: bool,
    verbose: bool,
) -> NoReturn:
    """Run scenarios (all when no NAMES are given).

    Settings not given on the command line come from CARCHIVE_HARNESS_*
    environment variables.

    Examples:

    \b
      carchive-harness run
      carchive-harness run signal_forwarding_external --tries 50
      carchive-harness run --skip-tag flaky
      carchive-harness run -w ./testdata -j 4 --json | jq .
    """
    configure_logging(level=logging.DEBUG if verbose else logging.INFO, quiet=quiet)
    scenarios = select_scenarios(names, skip_tags)

    overrides: dict[str, Any] = {
        key: value
        for key, value in {
            "workspace": workspace,
            "toolchain": toolchain,
            "jobs": jobs,
            "signal_tries": tries,
            "signal_grace_seconds": grace,
        }.items()
        if value is not None
    }
    try:
        settings = Settings(**overrides)
    except ValidationError as exc:
        raise click.UsageError(str(exc)) from exc

    sys.exit(asyncio.run(run_scenarios(settings, scenarios, json_output)))


if __name__ == "__main__":
    main()
