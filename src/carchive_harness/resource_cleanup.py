"""Artifact cleanup for scenario teardown.

Cleanup operations log errors but don't raise: a teardown failure must
not mask the scenario's own outcome.
"""

import asyncio
import shutil
from pathlib import Path

import aiofiles.os

from carchive_harness._logging import get_logger

logger = get_logger(__name__)


async def cleanup_file(
    file_path: Path | None,
    context_id: str,
    description: str = "file",
) -> bool:
    """Delete a file.

    Silently succeeds if the file doesn't exist.

    Args:
        file_path: Path to delete (None safe - returns immediately)
        context_id: Scenario name for logging
        description: What the file is, for logging (e.g. "archive", "header")

    Returns:
        True if the file is gone, False if deletion failed
    """
    if file_path is None:
        return True

    try:
        await aiofiles.os.remove(file_path)
        logger.debug(
            f"{description} deleted",
            extra={"context_id": context_id, "path": str(file_path)},
        )
        return True

    except FileNotFoundError:
        return True

    except OSError as e:
        logger.error(
            f"{description} OS error during deletion",
            extra={"context_id": context_id, "path": str(file_path), "error": str(e), "error_type": type(e).__name__},
        )
        return False


async def cleanup_tree(
    dir_path: Path | None,
    context_id: str,
    description: str = "directory",
) -> bool:
    """Recursively delete a directory (build cache, scratch dir).

    Silently succeeds if the directory doesn't exist.

    Args:
        dir_path: Directory to delete (None safe - returns immediately)
        context_id: Scenario name for logging
        description: What the directory is, for logging

    Returns:
        True if the directory is gone, False if deletion failed
    """
    if dir_path is None:
        return True

    try:
        await asyncio.to_thread(shutil.rmtree, dir_path)
        logger.debug(
            f"{description} removed",
            extra={"context_id": context_id, "path": str(dir_path)},
        )
        return True

    except FileNotFoundError:
        return True

    except OSError as e:
        logger.error(
            f"{description} removal error",
            extra={"context_id": context_id, "path": str(dir_path), "error": str(e), "error_type": type(e).__name__},
        )
        return False
