"""Shared pytest fixtures for carchive-harness tests."""

import os
import shutil
from pathlib import Path

import pytest

from carchive_harness.config import HarnessConfig
from carchive_harness.platform_utils import supports_posix_signals
from tests.fake_runner import FakeRunner

# ============================================================================
# Shared Skip Markers
# ============================================================================

# Real child processes killed by signals; needs POSIX signal semantics.
skip_unless_posix = pytest.mark.skipif(
    not supports_posix_signals(),
    reason="This test requires POSIX signals (Linux, macOS, BSD)",
)

# End-to-end runs need a prepared workspace (src/libgo*/, main*.c) and the
# toolchain on PATH.
E2E_WORKSPACE_VAR = "CARCHIVE_HARNESS_E2E_WORKSPACE"

skip_unless_e2e = pytest.mark.skipif(
    not (os.environ.get(E2E_WORKSPACE_VAR) and shutil.which("go")),
    reason=f"Set {E2E_WORKSPACE_VAR} to a c-archive test workspace and put 'go' on PATH",
)

# ============================================================================
# Common Config Fixtures
# ============================================================================


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Empty workspace root."""
    ws = tmp_path / "workspace"
    ws.mkdir()
    return ws


@pytest.fixture
def config(workspace: Path) -> HarnessConfig:
    """HarnessConfig for linux/amd64 with a gcc-style compiler.

    Grace is zero so supervised tests don't sleep.
    """
    return HarnessConfig(
        toolchain="go",
        workspace=workspace,
        goos="linux",
        goarch="amd64",
        cc=("gcc", "-fPIC", "-m64", "-pthread"),
        env={"GOPATH": str(workspace), "PATH": "/usr/bin:/bin"},
        signal_tries=5,
        signal_grace_seconds=0,
    )


@pytest.fixture
def fake_runner() -> FakeRunner:
    """FakeRunner where every command succeeds until told otherwise."""
    return FakeRunner()


@pytest.fixture
def e2e_workspace() -> Path:
    """Workspace for end-to-end runs, from CARCHIVE_HARNESS_E2E_WORKSPACE."""
    return Path(os.environ[E2E_WORKSPACE_VAR])
