"""Harness configuration.

HarnessConfig is resolved once at startup from Settings plus the
toolchain's own report of the target platform and C compiler, then passed
to every component. Nothing reads process-wide state after that.

Example:
    ```python
    from carchive_harness.config import resolve_config
    from carchive_harness.process import SubprocessRunner
    from carchive_harness.settings import Settings

    runner = SubprocessRunner()
    config = await resolve_config(Settings(workspace=Path("testdata")), runner)
    print(config.goos, config.goarch, config.cc)
    ```
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from carchive_harness import constants
from carchive_harness._logging import get_logger
from carchive_harness.exceptions import HarnessConfigError, ProcessStartError
from carchive_harness.process import CommandRunner
from carchive_harness.settings import Settings
from carchive_harness.shell_words import split_flags

logger = get_logger(__name__)


class HarnessConfig(BaseModel):
    """Resolved, immutable harness configuration.

    Attributes:
        toolchain: Toolchain binary used for build/install
        workspace: Workspace root; builds run here with workspace_var pointing at it
        goos: Target operating system reported by the toolchain
        goarch: Target architecture reported by the toolchain
        cc: C compiler followed by its tokenized base flags
        exec_wrapper: Wrapper that runs target binaries, when one is installed
        env: Environment for build steps (workspace_var overridden)
        signal_tries: Attempt bound for the external-signal retry protocol
        signal_grace_seconds: Pause between readiness token and signal
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    toolchain: str = constants.DEFAULT_TOOLCHAIN
    workspace: Path
    goos: str
    goarch: str
    cc: tuple[str, ...] = Field(min_length=1)
    exec_wrapper: Path | None = None
    env: dict[str, str] = Field(default_factory=dict)
    signal_tries: int = Field(default=constants.DEFAULT_SIGNAL_TRIES, ge=1)
    signal_grace_seconds: float = Field(default=constants.DEFAULT_SIGNAL_GRACE_SECONDS, ge=0)

    @property
    def libgodir(self) -> str:
        """Install cache subdirectory name under pkg/."""
        name = f"{self.goos}_{self.goarch}"
        if self.goos == "darwin" and self.goarch in ("arm", "arm64"):
            name += "_shared"
        elif self.goos in constants.SHARED_LIBGODIR_OSES:
            name += "_shared"
        return name

    @property
    def pkg_dir(self) -> Path:
        """Directory `install` writes archives and headers into."""
        return self.workspace / "pkg" / self.libgodir

    @property
    def exe_suffix(self) -> str:
        return ".exe" if self.goos == "windows" else ""

    @property
    def platform_link_flags(self) -> tuple[str, ...]:
        """Flags every link on this target needs after the base flags."""
        if self.goos == "darwin":
            return constants.DARWIN_FRAMEWORK_FLAGS
        return ()

    @property
    def platform_link_libs(self) -> tuple[str, ...]:
        """Libraries appended after the archive on this target."""
        if self.goos == "windows":
            return constants.WINDOWS_LINK_LIBS
        return ()

    def command_to_run(self, exe: Path | str, *args: str) -> tuple[str, ...]:
        """Command line running ``exe``, through the exec wrapper if any."""
        prefix = (str(self.exec_wrapper),) if self.exec_wrapper else ()
        return (*prefix, str(exe), *args)


def workspace_environ(workspace: Path, var: str, base: dict[str, str] | None = None) -> dict[str, str]:
    """Copy of ``base`` (default os.environ) with ``var`` set to the workspace."""
    env = {k: v for k, v in (os.environ if base is None else base).items() if k != var}
    env[var] = str(workspace)
    return env


def find_exec_wrapper(prefix: str, goos: str, goarch: str) -> Path | None:
    """Look up <prefix>_<GOOS>_<GOARCH>_exec on PATH."""
    found = shutil.which(f"{prefix}_{goos}_{goarch}_exec")
    return Path(found) if found else None


async def toolchain_env(runner: CommandRunner, toolchain: str, key: str) -> str:
    """Query one value from ``<toolchain> env <key>``.

    Raises:
        HarnessConfigError: The toolchain is missing or the query failed
    """
    try:
        result = await runner.run((toolchain, "env", key))
    except ProcessStartError as e:
        raise HarnessConfigError(f"{toolchain} env {key} failed: {e.message}", context=e.context) from e
    if not result.ok:
        raise HarnessConfigError(
            f"{toolchain} env {key} failed: {result.describe()}\n{result.output.decode(errors='replace')}",
            context={"key": key, "returncode": result.returncode},
        )
    return result.output.decode().strip()


async def resolve_config(settings: Settings, runner: CommandRunner) -> HarnessConfig:
    """Resolve the harness configuration once at startup.

    Args:
        settings: User-facing settings
        runner: Runner used to query the toolchain

    Returns:
        Immutable HarnessConfig

    Raises:
        HarnessConfigError: Workspace missing or toolchain query failed
    """
    workspace = settings.workspace.resolve()
    if not workspace.is_dir():
        raise HarnessConfigError(f"workspace not found: {workspace}", context={"workspace": str(workspace)})

    goos = await toolchain_env(runner, settings.toolchain, "GOOS")
    goarch = await toolchain_env(runner, settings.toolchain, "GOARCH")
    compiler = await toolchain_env(runner, settings.toolchain, "CC")
    flags = await toolchain_env(runner, settings.toolchain, "GOGCCFLAGS")

    config = HarnessConfig(
        toolchain=settings.toolchain,
        workspace=workspace,
        goos=goos,
        goarch=goarch,
        cc=(compiler, *split_flags(flags)),
        exec_wrapper=find_exec_wrapper(settings.exec_wrapper_prefix, goos, goarch),
        env=workspace_environ(workspace, settings.workspace_var),
        signal_tries=settings.signal_tries,
        signal_grace_seconds=settings.signal_grace_seconds,
    )
    logger.info(
        "Harness configured",
        extra={
            "goos": goos,
            "goarch": goarch,
            "cc": list(config.cc),
            "exec_wrapper": str(config.exec_wrapper) if config.exec_wrapper else None,
        },
    )
    return config
