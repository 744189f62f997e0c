"""Build pipeline: c-archive build and native link.

Stage 1 drives the toolchain to emit a static library plus header for a
package. Three invocation shapes are supported and produce equivalent
artifacts:

    install   <toolchain> install -buildmode=c-archive <pkg>
              -> <workspace>/pkg/<libgodir>/<pkg>.a, .h
    file      <toolchain> build -buildmode=c-archive src/<pkg>/<pkg>.go
              -> <workspace>/<pkg>.a, .h
    output    <toolchain> build -buildmode=c-archive [flags] -o <path> <pkg>
              -> <path>, sibling .h

Stage 2 links native sources against the archive with the configured C
compiler. Both stages are async context managers: artifacts are removed on
exit whatever the outcome. A failing tool raises ToolInvocationError with
its output kept verbatim.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import aiofiles

from carchive_harness._logging import get_logger
from carchive_harness.config import HarnessConfig
from carchive_harness.constants import BUILDMODE_FLAG
from carchive_harness.exceptions import ToolInvocationError
from carchive_harness.process import CommandRunner
from carchive_harness.resource_cleanup import cleanup_file

logger = get_logger(__name__)

FAKE_ARCHIVER_NAME = "testar"
FAKE_ARCHIVER_MARKER = "testar.ran"

# Skips leading options, writes to the archive path, then leaves a marker
# proving the toolchain invoked it.
_FAKE_ARCHIVER_SCRIPT = """#!/usr/bin/env bash
while expr $1 : '[-]' >/dev/null; do
  shift
done
echo "testar" > $1
echo "testar" > {marker}
"""


class BuildVerb(str, Enum):
    INSTALL = "install"
    BUILD = "build"


@dataclass(frozen=True, slots=True)
class BuildArtifact:
    """Static library and its generated header."""

    archive: Path
    header: Path


@dataclass(frozen=True, slots=True)
class ExecutableArtifact:
    """Linked native program."""

    path: Path


@dataclass(frozen=True, slots=True)
class ArchiveBuild:
    """One c-archive build of a package.

    Attributes:
        package: Package name under <workspace>/src
        verb: install or build
        from_file: Build src/<package>/<package>.go by path instead of by name
        output: File name for -o, placed in the scenario scratch directory
        flags: Extra toolchain flags placed before -o
        fake_archiver: Pass -ldflags=-extar=<script> pointing at a fake ar
    """

    package: str
    verb: BuildVerb = BuildVerb.BUILD
    from_file: bool = False
    output: str | None = None
    flags: tuple[str, ...] = ()
    fake_archiver: bool = False

    @classmethod
    def install(cls, package: str) -> ArchiveBuild:
        return cls(package, verb=BuildVerb.INSTALL)

    @classmethod
    def file(cls, package: str) -> ArchiveBuild:
        return cls(package, from_file=True)

    @classmethod
    def to_output(cls, package: str, output: str | None = None, *flags: str) -> ArchiveBuild:
        return cls(package, output=output or f"{package}.a", flags=flags)

    @property
    def writes_shared(self) -> bool:
        """Whether outputs land in shared workspace locations."""
        return self.verb == BuildVerb.INSTALL or self.output is None

    def artifact(self, config: HarnessConfig, scratch: Path) -> BuildArtifact:
        """Where this build leaves its library and header."""
        if self.verb == BuildVerb.INSTALL:
            archive = config.pkg_dir / f"{self.package}.a"
        elif self.output is not None:
            archive = scratch / self.output
        else:
            archive = config.workspace / f"{self.package}.a"
        return BuildArtifact(archive=archive, header=archive.with_suffix(".h"))

    def command(self, config: HarnessConfig, scratch: Path) -> tuple[str, ...]:
        """Toolchain command line for this build."""
        argv: list[str] = [config.toolchain, self.verb.value, BUILDMODE_FLAG, *self.flags]
        if self.fake_archiver:
            argv.append(f"-ldflags=-extar={scratch / FAKE_ARCHIVER_NAME}")
        if self.output is not None and self.verb == BuildVerb.BUILD:
            argv += ["-o", str(scratch / self.output)]
        if self.from_file:
            argv.append(str(Path("src") / self.package / f"{self.package}.go"))
        else:
            argv.append(self.package)
        return tuple(argv)


class BuildPipeline:
    """Builds archives and links executables for one scenario.

    Args:
        config: Resolved harness configuration
        runner: Runner for toolchain and compiler commands
        scratch: Scenario-local directory for explicit outputs
        context_id: Scenario name for log correlation
    """

    def __init__(self, config: HarnessConfig, runner: CommandRunner, scratch: Path, context_id: str) -> None:
        self.config = config
        self.runner = runner
        self.scratch = scratch
        self.context_id = context_id

    async def _invoke(self, argv: Sequence[str], *, env: dict[str, str] | None, what: str) -> None:
        logger.info(f"{what}: {' '.join(argv)}", extra={"context_id": self.context_id, "argv": list(argv)})
        result = await self.runner.run(argv, env=env, cwd=self.config.workspace)
        if result.ok:
            return
        # The tool's own output is the diagnostic; log it unmodified.
        logger.error(
            result.output.decode(errors="replace"),
            extra={"context_id": self.context_id, "argv": list(argv), "returncode": result.returncode},
        )
        raise ToolInvocationError(
            f"{what} failed: {result.describe()}",
            argv=argv,
            returncode=result.returncode,
            output=result.output,
            context={"context_id": self.context_id},
        )

    async def write_fake_archiver(self) -> tuple[Path, Path]:
        """Write the fake archiver script into the scratch directory.

        Returns:
            (script path, marker path the script creates when run)
        """
        script = self.scratch / FAKE_ARCHIVER_NAME
        marker = self.scratch / FAKE_ARCHIVER_MARKER
        async with aiofiles.open(script, "w") as f:
            await f.write(_FAKE_ARCHIVER_SCRIPT.format(marker=marker))
        await asyncio.to_thread(script.chmod, 0o777)
        return script, marker

    @asynccontextmanager
    async def archive(self, build: ArchiveBuild) -> AsyncIterator[BuildArtifact]:
        """Build a c-archive; remove the library and header on exit.

        Raises:
            ToolInvocationError: The toolchain failed
        """
        artifact = build.artifact(self.config, self.scratch)
        try:
            # config.env is shared by concurrent scenarios; each launch gets its own copy
            await self._invoke(build.command(self.config, self.scratch), env=dict(self.config.env), what="build")
            yield artifact
        finally:
            await cleanup_file(artifact.archive, self.context_id, "archive")
            await cleanup_file(artifact.header, self.context_id, "header")

    def link_command(
        self,
        exe: Path,
        sources: Sequence[str],
        artifact: BuildArtifact,
        extra_flags: Sequence[str] = (),
    ) -> tuple[str, ...]:
        """C compiler command line linking ``sources`` against ``artifact``."""
        config = self.config
        if config.goos == "windows":
            sources = ["main_windows.c" if s == "main_unix.c" else s for s in sources]
        includes = ["-I", str(config.pkg_dir)]
        if artifact.header.parent != config.pkg_dir:
            includes += ["-I", str(artifact.header.parent)]
        return (
            *config.cc,
            *includes,
            *config.platform_link_flags,
            *extra_flags,
            "-o",
            str(exe),
            *sources,
            str(artifact.archive),
            *config.platform_link_libs,
        )

    @asynccontextmanager
    async def executable(
        self,
        name: str,
        sources: Sequence[str],
        artifact: BuildArtifact,
        extra_flags: Sequence[str] = (),
    ) -> AsyncIterator[ExecutableArtifact]:
        """Link an executable; remove it on exit.

        Args:
            name: Executable base name (suffix added on Windows)
            sources: Native sources, relative to the workspace
            artifact: Archive to link against
            extra_flags: Flags after the base flags (e.g. -fPIE -pie)

        Raises:
            ToolInvocationError: The compiler failed
        """
        exe = self.scratch / f"{name}{self.config.exe_suffix}"
        try:
            await self._invoke(self.link_command(exe, sources, artifact, extra_flags), env=None, what="link")
            yield ExecutableArtifact(exe)
        finally:
            await cleanup_file(exe, self.context_id, "executable")
