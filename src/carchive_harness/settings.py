"""Runtime configuration from environment variables."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from carchive_harness import constants


class Settings(BaseSettings):
    """Runtime configuration from environment variables.

    All settings can be overridden via environment variables with the
    CARCHIVE_HARNESS_ prefix.
    Example: CARCHIVE_HARNESS_SIGNAL_TRIES=50
    """

    model_config = SettingsConfigDict(
        env_prefix="CARCHIVE_HARNESS_",
        extra="ignore",
    )

    # Toolchain
    toolchain: str = constants.DEFAULT_TOOLCHAIN
    workspace: Path = Field(default_factory=Path.cwd)
    """Directory holding src/<package>/ and the native main*.c sources."""
    workspace_var: str = constants.DEFAULT_WORKSPACE_VAR
    exec_wrapper_prefix: str = constants.DEFAULT_EXEC_WRAPPER_PREFIX

    # Signal retry protocol
    signal_tries: int = Field(default=constants.DEFAULT_SIGNAL_TRIES, ge=1)
    signal_grace_seconds: float = Field(default=constants.DEFAULT_SIGNAL_GRACE_SECONDS, ge=0)

    # Scheduling
    jobs: int = Field(default=1, ge=1)
