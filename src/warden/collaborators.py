"""
Interfaces to the systems outside the access-control core.

The container controller runs commands and reads logs; the filesystem helpers
read, write and search files. Every string they receive has already passed the
matching guard: commands through the command guard, paths through the path
guard, search patterns through the pattern checker.
"""

import asyncio
import contextlib
import os
import re
import stat
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, List, Protocol

from loguru import logger

MAX_READ_BYTES = 1024 * 1024
MAX_SEARCH_RESULTS = 100


@dataclass
class ExecResult:
    """
    Result of a console command.

    Attributes:
        success: Whether the container accepted the command
        output: Text the server printed in response
        error: Error description when not successful
    """
    success: bool
    output: str = ""
    error: str = ""


class ContainerController(Protocol):
    """What the panel needs from the game-server container."""

    async def get_logs(self, tail: int = 100) -> List[str]:
        """Last ``tail`` log lines (0 for all)."""
        ...

    async def exec_command(self, command: str) -> ExecResult:
        """Send a validated console command to the server."""
        ...

    def follow_logs(self) -> AsyncIterator[str]:
        """Log lines as the server writes them."""
        ...


class NullContainerController:
    """Controller used when no container backend is configured."""

    async def get_logs(self, tail: int = 100) -> List[str]:
        return []

    async def exec_command(self, command: str) -> ExecResult:
        logger.warning("Console command dropped: no container controller configured")
        return ExecResult(success=False, error="Container controller not configured")

    async def follow_logs(self) -> AsyncIterator[str]:
        # Nothing to stream; park until the connection is closed
        await asyncio.Event().wait()
        yield ""  # pragma: no cover


# =============================================================================
# Filesystem
# =============================================================================

def read_text_file(real_path: str, max_bytes: int = MAX_READ_BYTES) -> str:
    """
    Read a text file at a path the path guard already resolved.

    Raises:
        FileNotFoundError: If the file does not exist
        IsADirectoryError: If the path is a directory
        ValueError: If the file is larger than ``max_bytes``
    """
    path = Path(real_path)
    if path.stat().st_size > max_bytes:
        raise ValueError(f"File is larger than {max_bytes} bytes")
    return path.read_text(encoding="utf-8", errors="replace")


def write_text_file(real_path: str, content: str) -> int:
    """
    Write a text file at a path the path guard already resolved.

    Returns:
        Number of bytes written
    """
    data = content.encode("utf-8")
    # Fresh O_EXCL temp file in the same directory, never a pre-existing name
    fd, tmp_path = tempfile.mkstemp(dir=os.path.dirname(real_path), prefix=".warden-", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        if os.path.isfile(real_path):
            os.chmod(tmp_path, stat.S_IMODE(os.stat(real_path).st_mode))
        os.replace(tmp_path, real_path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_path)
        raise
    return len(data)


def search_files(root: str, pattern: "re.Pattern[str]", max_results: int = MAX_SEARCH_RESULTS) -> List[str]:
    """
    Find files under ``root`` whose name or relative path matches ``pattern``.

    Symlinked directories are not followed.

    Args:
        root: Directory approved by the path guard
        pattern: Pattern approved by the pattern checker
        max_results: Stop after this many matches

    Returns:
        Matching paths relative to ``root``, using ``/`` separators
    """
    results: List[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            rel = os.path.relpath(os.path.join(dirpath, name), root).replace(os.sep, "/")
            if pattern.search(name) or pattern.search(rel):
                results.append(rel)
                if len(results) >= max_results:
                    return results
    return results
