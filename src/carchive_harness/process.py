"""Process execution for build, link and run steps.

Every external command the harness issues goes through a CommandRunner:

- run(): synchronous mode. Start, wait, return a ProcessResult whose
  output is stdout and stderr merged in one pipe.
- start_supervised(): start with stderr piped, block until the child
  writes the readiness token line, then hand back a SupervisedProcess
  while the child keeps running. The caller signals it and later waits.

SubprocessRunner is the asyncio implementation. Tests substitute a fake
that implements the same protocol without spawning processes.
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from carchive_harness._logging import get_logger
from carchive_harness.constants import READY_TOKEN
from carchive_harness.exceptions import ProcessStartError, SynchronizationError
from carchive_harness.models import ProcessResult
from carchive_harness.platform_utils import ProcessWrapper

logger = get_logger(__name__)


@runtime_checkable
class SupervisedProcess(Protocol):
    """Handle on a child that has printed its readiness token."""

    @property
    def pid(self) -> int | None: ...

    async def send_signal(self, sig: signal.Signals) -> None: ...

    async def wait(self) -> ProcessResult: ...


@runtime_checkable
class CommandRunner(Protocol):
    """Capability to run external programs."""

    async def run(
        self,
        argv: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
    ) -> ProcessResult: ...

    async def start_supervised(
        self,
        argv: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
        token: bytes = READY_TOKEN,
    ) -> SupervisedProcess: ...


class _SubprocessHandle:
    """SupervisedProcess backed by a real child process."""

    def __init__(self, argv: tuple[str, ...], proc: ProcessWrapper) -> None:
        self._argv = argv
        self._proc = proc

    @property
    def pid(self) -> int | None:
        return self._proc.pid

    async def send_signal(self, sig: signal.Signals) -> None:
        logger.debug("Sending signal", extra={"pid": self._proc.pid, "signal": sig.name})
        await self._proc.send_signal(sig)

    async def wait(self) -> ProcessResult:
        """Wait for the child, draining its remaining output.

        Returns:
            ProcessResult with stdout followed by the rest of stderr
        """
        stdout, stderr = await self._proc.communicate()
        returncode = self._proc.returncode
        assert returncode is not None  # communicate() waits for exit
        return ProcessResult.from_returncode(self._argv, returncode, (stdout or b"") + (stderr or b""))


class SubprocessRunner:
    """CommandRunner on top of asyncio.create_subprocess_exec."""

    async def _spawn(
        self,
        argv: tuple[str, ...],
        *,
        env: Mapping[str, str] | None,
        cwd: Path | None,
        stdout: int,
        stderr: int,
    ) -> asyncio.subprocess.Process:
        if not argv:
            raise ProcessStartError("empty command line")
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=stdout,
                stderr=stderr,
                env=dict(env) if env is not None else None,
                cwd=cwd,
            )
        except OSError as e:
            raise ProcessStartError(
                f"cannot start {argv[0]}: {e}",
                context={"argv": list(argv), "error_type": type(e).__name__},
            ) from e

    async def run(
        self,
        argv: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
    ) -> ProcessResult:
        """Run a program to completion.

        Args:
            argv: Program and arguments
            env: Full environment for the child (None inherits ours)
            cwd: Working directory (None inherits ours)

        Returns:
            ProcessResult with combined stdout/stderr

        Raises:
            ProcessStartError: The program could not be started
        """
        args = tuple(argv)
        logger.debug("Running command", extra={"argv": list(args), "cwd": str(cwd) if cwd else None})
        proc = await self._spawn(
            args, env=env, cwd=cwd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.STDOUT
        )
        output, _ = await proc.communicate()
        assert proc.returncode is not None
        result = ProcessResult.from_returncode(args, proc.returncode, output or b"")
        logger.debug(
            "Command finished",
            extra={"argv": list(args), "returncode": proc.returncode, "output_bytes": len(result.output)},
        )
        return result

    async def start_supervised(
        self,
        argv: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
        token: bytes = READY_TOKEN,
    ) -> SupervisedProcess:
        """Start a program and wait for its readiness token on stderr.

        Args:
            argv: Program and arguments
            env: Full environment for the child (None inherits ours)
            cwd: Working directory (None inherits ours)
            token: Exact line, newline included, the child must print first

        Returns:
            Handle on the still-running child

        Raises:
            ProcessStartError: The program could not be started
            SynchronizationError: First stderr line was not the token, or
                stderr closed before a full line arrived. The child is
                killed and reaped before this is raised.
        """
        args = tuple(argv)
        logger.debug("Starting supervised command", extra={"argv": list(args)})
        async_proc = await self._spawn(
            args, env=env, cwd=cwd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
        )
        proc = ProcessWrapper(async_proc)
        assert async_proc.stderr is not None

        try:
            line = await async_proc.stderr.readuntil(b"\n")
        except asyncio.IncompleteReadError as e:
            line = e.partial
        except asyncio.LimitOverrunError as e:
            line = await async_proc.stderr.read(e.consumed)

        if line != token:
            await proc.kill()
            await proc.communicate()
            raise SynchronizationError(
                f"did not receive readiness token {token!r} from {args[0]}",
                context={"argv": list(args), "received": line.decode(errors="replace"), "expected": token.decode()},
            )

        logger.debug("Supervised command ready", extra={"argv": list(args), "pid": proc.pid})
        return _SubprocessHandle(args, proc)
