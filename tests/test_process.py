"""Tests for SubprocessRunner against real child processes.

Children are short Python programs run with sys.executable so no compiler
is needed. They kill themselves or print the readiness token the way the
native test programs do.
"""

import os
import signal
import sys
from pathlib import Path

import pytest

from carchive_harness.classifier import CLEAN_EXIT, classify, exit_with_code, killed_by
from carchive_harness.exceptions import ProcessStartError, SynchronizationError
from carchive_harness.process import CommandRunner, SubprocessRunner, SupervisedProcess
from tests.conftest import skip_unless_posix
from tests.fake_runner import FakeRunner

PY = sys.executable

# Prints the readiness token, then sleeps until signalled.
_READY_THEN_SLEEP = """
import sys, time
print("before token")
sys.stdout.flush()
sys.stderr.write("OK\\n")
sys.stderr.flush()
time.sleep(30)
"""

# Exits cleanly on SIGUSR1, like a program whose signal was discarded.
_READY_EXIT_ON_USR1 = """
import signal, sys, time
signal.signal(signal.SIGUSR1, lambda *_: sys.exit(0))
sys.stderr.write("OK\\n")
sys.stderr.flush()
time.sleep(30)
"""


def _py(code: str, *args: str) -> tuple[str, ...]:
    return (PY, "-c", code, *args)


@pytest.fixture
def runner() -> SubprocessRunner:
    return SubprocessRunner()


class TestProtocols:
    def test_runners_satisfy_protocol(self) -> None:
        assert isinstance(SubprocessRunner(), CommandRunner)
        assert isinstance(FakeRunner(), CommandRunner)


# ============================================================================
# Synchronous mode
# ============================================================================


class TestRun:
    """run(): wait for completion, merged output."""

    async def test_clean_exit_with_merged_output(self, runner: SubprocessRunner) -> None:
        code = "import sys; print('to stdout'); sys.stdout.flush(); sys.stderr.write('to stderr\\n')"
        result = await runner.run(_py(code))
        assert classify(result) == CLEAN_EXIT
        assert b"to stdout" in result.output
        assert b"to stderr" in result.output
        assert result.argv[0] == PY

    async def test_exit_code(self, runner: SubprocessRunner) -> None:
        result = await runner.run(_py("import sys; sys.exit(3)"))
        assert classify(result) == exit_with_code(3)

    async def test_arguments_passed(self, runner: SubprocessRunner) -> None:
        result = await runner.run(_py("import sys; print(sys.argv[1:])", "arg1", "arg2"))
        assert b"['arg1', 'arg2']" in result.output

    async def test_env_and_cwd(self, runner: SubprocessRunner, tmp_path: Path) -> None:
        code = "import os; print(os.environ['HARNESS_ENV_CHECK']); print(os.getcwd())"
        env = {**os.environ, "HARNESS_ENV_CHECK": "env-value"}
        result = await runner.run(_py(code), env=env, cwd=tmp_path)
        assert result.ok
        assert b"env-value" in result.output
        assert str(tmp_path.resolve()).encode() in result.output

    @skip_unless_posix
    async def test_killed_by_sigsegv(self, runner: SubprocessRunner) -> None:
        code = "import os, signal; os.kill(os.getpid(), signal.SIGSEGV)"
        result = await runner.run(_py(code))
        assert not result.exited_normally
        assert classify(result) == killed_by(signal.SIGSEGV)

    @skip_unless_posix
    async def test_killed_by_sigpipe(self, runner: SubprocessRunner) -> None:
        # Python ignores SIGPIPE by default; restore the default action first.
        code = (
            "import os, signal; signal.signal(signal.SIGPIPE, signal.SIG_DFL); os.kill(os.getpid(), signal.SIGPIPE)"
        )
        result = await runner.run(_py(code))
        assert classify(result) == killed_by(signal.SIGPIPE)

    async def test_missing_program(self, runner: SubprocessRunner, tmp_path: Path) -> None:
        with pytest.raises(ProcessStartError) as exc_info:
            await runner.run([str(tmp_path / "does-not-exist")])
        assert "does-not-exist" in exc_info.value.message

    async def test_empty_argv(self, runner: SubprocessRunner) -> None:
        with pytest.raises(ProcessStartError):
            await runner.run([])


# ============================================================================
# Supervised mode
# ============================================================================


@skip_unless_posix
class TestStartSupervised:
    """start_supervised(): readiness token, then signal and wait."""

    async def test_signal_after_token(self, runner: SubprocessRunner) -> None:
        child = await runner.start_supervised(_py(_READY_THEN_SLEEP))
        assert isinstance(child, SupervisedProcess)
        assert child.pid is not None

        await child.send_signal(signal.SIGSEGV)
        result = await child.wait()

        assert classify(result) == killed_by(signal.SIGSEGV)
        assert b"before token" in result.output
        assert b"OK" not in result.output

    async def test_discarded_signal_reads_as_clean_exit(self, runner: SubprocessRunner) -> None:
        child = await runner.start_supervised(_py(_READY_EXIT_ON_USR1))
        await child.send_signal(signal.SIGUSR1)
        result = await child.wait()
        assert classify(result) == CLEAN_EXIT

    async def test_remaining_stderr_collected(self, runner: SubprocessRunner) -> None:
        code = "import sys; sys.stderr.write('OK\\nafter token\\n'); sys.exit(0)"
        child = await runner.start_supervised(_py(code))
        result = await child.wait()
        assert result.ok
        assert b"after token" in result.output

    async def test_signal_after_exit_is_harmless(self, runner: SubprocessRunner) -> None:
        code = "import sys; sys.stderr.write('OK\\n')"
        child = await runner.start_supervised(_py(code))
        result = await child.wait()
        await child.send_signal(signal.SIGSEGV)
        assert classify(result) == CLEAN_EXIT

    async def test_custom_token(self, runner: SubprocessRunner) -> None:
        code = "import sys, time; sys.stderr.write('READY\\n'); sys.stderr.flush(); time.sleep(30)"
        child = await runner.start_supervised(_py(code), token=b"READY\n")
        await child.send_signal(signal.SIGKILL)
        result = await child.wait()
        assert classify(result) == killed_by(signal.SIGKILL)

    async def test_wrong_token(self, runner: SubprocessRunner) -> None:
        code = "import sys, time; sys.stderr.write('NOPE\\n'); sys.stderr.flush(); time.sleep(30)"
        with pytest.raises(SynchronizationError) as exc_info:
            await runner.start_supervised(_py(code))
        assert exc_info.value.context["received"] == "NOPE\n"

    async def test_token_without_newline(self, runner: SubprocessRunner) -> None:
        code = "import sys; sys.stderr.write('OK')"
        with pytest.raises(SynchronizationError) as exc_info:
            await runner.start_supervised(_py(code))
        assert exc_info.value.context["received"] == "OK"

    async def test_stream_closed_before_token(self, runner: SubprocessRunner) -> None:
        with pytest.raises(SynchronizationError):
            await runner.start_supervised(_py("pass"))

    async def test_missing_program(self, runner: SubprocessRunner, tmp_path: Path) -> None:
        with pytest.raises(ProcessStartError):
            await runner.start_supervised([str(tmp_path / "missing")])
