"""Constants for carchive-harness configuration and protocols."""

from typing import Final

from elftools.elf.enums import ENUM_D_TAG

# ============================================================================
# Toolchain
# ============================================================================

DEFAULT_TOOLCHAIN: Final[str] = "go"
"""Managed-language toolchain binary used for `build`, `install` and `env`."""

DEFAULT_WORKSPACE_VAR: Final[str] = "GOPATH"
"""Environment variable pointed at the workspace root for build steps."""

DEFAULT_EXEC_WRAPPER_PREFIX: Final[str] = "go"
"""Prefix of the execution wrapper looked up as <prefix>_<GOOS>_<GOARCH>_exec."""

BUILDMODE_FLAG: Final[str] = "-buildmode=c-archive"

SHARED_LIBGODIR_OSES: Final[frozenset[str]] = frozenset(
    {"dragonfly", "freebsd", "linux", "netbsd", "openbsd", "solaris"}
)
"""Targets whose install cache directory carries a `_shared` suffix."""

DARWIN_FRAMEWORK_FLAGS: Final[tuple[str, ...]] = (
    "-framework",
    "CoreFoundation",
    "-framework",
    "Foundation",
)

WINDOWS_LINK_LIBS: Final[tuple[str, ...]] = ("-lntdll", "-lws2_32", "-lwinmm")

# ============================================================================
# Signal retry protocol
# ============================================================================

DEFAULT_SIGNAL_TRIES: Final[int] = 20
"""Attempts of the launch-signal-classify cycle before the scenario fails.
Tuned against observed delivery to threads that discard external signals."""

DEFAULT_SIGNAL_GRACE_SECONDS: Final[float] = 0.001
"""Pause between the readiness token and the signal so the child reaches
its sleep."""

READY_TOKEN: Final[bytes] = b"OK\n"
"""Line a supervised child writes to stderr once its handlers are installed."""

# ============================================================================
# ELF
# ============================================================================

DT_TEXTREL: Final[int] = ENUM_D_TAG["DT_TEXTREL"]
"""Dynamic tag marking text relocations; must be absent from a PIE."""

ELF32_DYN_ENTRY_SIZE: Final[int] = 8
ELF64_DYN_ENTRY_SIZE: Final[int] = 16

# ============================================================================
# Scratch space
# ============================================================================

SCRATCH_DIR_NAME: Final[str] = ".carchive-harness"
"""Directory under the workspace holding per-scenario scratch directories."""
