"""Host platform detection and PID-reuse safe process wrappers.

Uses psutil's OS detection constants for host identification. The
scenarios themselves are gated on the toolchain's target (GOOS/GOARCH),
not on the host. Host detection serves test markers.
"""

import asyncio
import contextlib
import signal
from enum import Enum, auto
from functools import cache

import psutil


class HostOS(Enum):
    """Host operating system families the harness distinguishes."""

    LINUX = auto()
    MACOS = auto()
    BSD = auto()
    WINDOWS = auto()
    UNKNOWN = auto()


@cache
def detect_host_os() -> HostOS:
    """Detect current host operating system using psutil constants."""
    if psutil.LINUX:
        return HostOS.LINUX
    if psutil.MACOS:
        return HostOS.MACOS
    if psutil.BSD:
        return HostOS.BSD
    if psutil.WINDOWS:
        return HostOS.WINDOWS
    return HostOS.UNKNOWN


def supports_posix_signals() -> bool:
    """Whether the host delivers POSIX signals to child processes."""
    return detect_host_os() in (HostOS.LINUX, HostOS.MACOS, HostOS.BSD)


class ProcessWrapper:
    """PID-reuse safe process wrapper using psutil.

    Wraps asyncio.subprocess.Process with psutil.Process so a signal is
    never sent to an unrelated process that inherited a recycled PID.
    """

    def __init__(self, async_proc: asyncio.subprocess.Process) -> None:
        """Wrap asyncio process with psutil for PID-safe signalling.

        Args:
            async_proc: asyncio subprocess.Process instance
        """
        self.async_proc = async_proc
        self.psutil_proc: psutil.Process | None = None

        if async_proc.pid:
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                self.psutil_proc = psutil.Process(async_proc.pid)

    async def is_running(self) -> bool:
        """Check if process is still running (PID-reuse safe).

        Returns:
            True if process is running, False otherwise
        """
        if not self.psutil_proc:
            return self.async_proc.returncode is None

        try:
            return await asyncio.to_thread(self.psutil_proc.is_running)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False

    @property
    def pid(self) -> int | None:
        """Process ID."""
        return self.async_proc.pid

    @property
    def returncode(self) -> int | None:
        """Process return code (None if still running)."""
        return self.async_proc.returncode

    async def communicate(self, input: bytes | None = None) -> tuple[bytes, bytes]:
        """Wait for process to terminate and return stdout/stderr.

        Args:
            input: Data to send to stdin

        Returns:
            Tuple of (stdout, stderr) bytes
        """
        return await self.async_proc.communicate(input)

    async def send_signal(self, sig: signal.Signals) -> None:
        """Send a signal to the process (fire-and-forget).

        Silently does nothing if the process already exited; the caller
        observes delivery only through the eventual termination status.

        Args:
            sig: Signal to send
        """
        if self.psutil_proc and await self.is_running():
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                await asyncio.to_thread(self.psutil_proc.send_signal, sig)
        elif self.async_proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self.async_proc.send_signal(sig)

    async def kill(self) -> None:
        """Kill process (SIGKILL) - async, non-blocking."""
        if self.psutil_proc and await self.is_running():
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                await asyncio.to_thread(self.psutil_proc.kill)
        elif self.async_proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self.async_proc.kill()
