"""Tests for the scenario catalogue and applicability rules."""

import signal

import pytest

from carchive_harness.build import ArchiveBuild
from carchive_harness.classifier import killed_by
from carchive_harness.constants import DT_TEXTREL
from carchive_harness.exceptions import ScenarioSkipped
from carchive_harness.scenarios import SCENARIOS, SCENARIOS_BY_NAME, RunMode, Scenario, Stage, get_scenario

EXPECTED_NAMES = [
    "install",
    "early_signal_handler",
    "signal_forwarding",
    "signal_forwarding_external",
    "os_signal",
    "sigaltstack",
    "extar",
    "pie",
    "sigprof",
    "compile_without_shared",
]


class TestCatalogue:
    def test_names_unique_and_ordered(self) -> None:
        assert [s.name for s in SCENARIOS] == EXPECTED_NAMES
        assert set(SCENARIOS_BY_NAME) == set(EXPECTED_NAMES)

    def test_get_scenario(self) -> None:
        assert get_scenario("pie").name == "pie"
        with pytest.raises(KeyError):
            get_scenario("nope")

    def test_install_uses_three_build_shapes(self) -> None:
        builds = [stage.build for stage in get_scenario("install").stages]
        assert builds == [ArchiveBuild.install("libgo"), ArchiveBuild.file("libgo"), ArchiveBuild.to_output("libgo")]
        for stage in get_scenario("install").stages:
            assert stage.runs[0].args == ("arg1", "arg2")

    def test_signal_forwarding_expectations(self) -> None:
        runs = get_scenario("signal_forwarding").stages[0].runs
        assert [(r.args, r.expect, r.mode) for r in runs] == [
            (("1",), killed_by(signal.SIGSEGV), RunMode.SYNC),
            (("3",), killed_by(signal.SIGPIPE), RunMode.SYNC),
        ]

    def test_external_signal_is_supervised(self) -> None:
        scenario = get_scenario("signal_forwarding_external")
        (step,) = scenario.stages[0].runs
        assert step.mode == RunMode.SUPERVISED
        assert step.send == signal.SIGSEGV
        assert step.expect == killed_by(signal.SIGSEGV)
        assert step.args == ("2",)
        assert "flaky" in scenario.tags

    def test_pie_forbids_textrel(self) -> None:
        (stage,) = get_scenario("pie").stages
        assert stage.forbidden_dynamic_tags == (DT_TEXTREL,)
        assert stage.link is not None
        assert stage.link.extra_flags == ("-fPIE", "-pie")

    def test_extar_has_no_link(self) -> None:
        (stage,) = get_scenario("extar").stages
        assert stage.build.fake_archiver
        assert stage.link is None

    def test_compile_without_shared_flag(self) -> None:
        (stage,) = get_scenario("compile_without_shared").stages
        assert stage.build.flags == ("-gcflags=-shared=false",)
        assert [r.expect for r in stage.runs] == [killed_by(signal.SIGPIPE)]

    def test_supervised_steps_carry_a_signal(self) -> None:
        for scenario in SCENARIOS:
            for stage in scenario.stages:
                for step in stage.runs:
                    assert (step.mode == RunMode.SUPERVISED) == (step.send is not None), scenario.name


class TestApplicability:
    """Skip lists match goos or goos/goarch."""

    @pytest.mark.parametrize(
        ("name", "goos", "goarch"),
        [
            ("signal_forwarding", "windows", "amd64"),
            ("signal_forwarding", "darwin", "arm64"),
            ("early_signal_handler", "darwin", "arm"),
            ("os_signal", "windows", "386"),
            ("pie", "darwin", "amd64"),
            ("pie", "plan9", "amd64"),
            ("sigprof", "darwin", "amd64"),
            ("extar", "windows", "amd64"),
        ],
    )
    def test_skipped(self, name: str, goos: str, goarch: str) -> None:
        with pytest.raises(ScenarioSkipped):
            get_scenario(name).check_applicable(goos, goarch)

    @pytest.mark.parametrize(
        ("name", "goos", "goarch"),
        [
            ("signal_forwarding", "darwin", "amd64"),
            ("signal_forwarding", "linux", "arm64"),
            ("pie", "linux", "amd64"),
            ("install", "windows", "amd64"),
        ],
    )
    def test_applicable(self, name: str, goos: str, goarch: str) -> None:
        get_scenario(name).check_applicable(goos, goarch)

    def test_skip_reason_includes_note(self) -> None:
        reason = get_scenario("signal_forwarding").skip_reason("darwin", "arm64")
        assert reason == "skipping signal_forwarding on darwin/arm64; see https://golang.org/issue/13701"

    def test_skip_reason_without_note(self) -> None:
        assert get_scenario("os_signal").skip_reason("windows", "amd64") == "skipping os_signal on windows"

    def test_all_apply_on_linux_amd64(self) -> None:
        assert all(s.skip_reason("linux", "amd64") is None for s in SCENARIOS)


class TestSharedWrites:
    def test_install_and_file_builds_write_shared(self) -> None:
        assert get_scenario("install").writes_shared
        assert get_scenario("install").uses_install
        assert get_scenario("pie").writes_shared

    def test_output_builds_are_private(self) -> None:
        for name in ("signal_forwarding", "signal_forwarding_external", "os_signal", "extar", "sigprof"):
            assert not get_scenario(name).writes_shared, name
            assert not get_scenario(name).uses_install, name

    def test_custom_scenario(self) -> None:
        scenario = Scenario("custom", "a stage", stages=(Stage(build=ArchiveBuild.file("libgo")),))
        assert scenario.writes_shared
        assert not scenario.uses_install
