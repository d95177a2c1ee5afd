"""
Filesystem path validation.

Every path that reaches a file handler goes through here first. Containment is
decided on canonical paths (symlinks followed, ``..`` collapsed) and compared
by path segment, so ``/data-evil`` is never considered inside ``/data``.
"""

import os
import re
import secrets
from pathlib import PurePosixPath
from typing import Iterable, Optional, Union

from loguru import logger

PathLike = Union[str, "os.PathLike[str]"]

MAX_FILENAME_LENGTH = 255
MAX_UPLOAD_BASENAME_LENGTH = 100
UPLOAD_PREFIX_BYTES = 4

_SAFE_FILENAME_RE = re.compile(r"^[A-Za-z0-9._-]+$")
_UNSAFE_CHAR_RE = re.compile(r"[^A-Za-z0-9._-]")
_DOT_RUN_RE = re.compile(r"\.+")


def _canonical(path: PathLike) -> Optional[str]:
    """Absolute path with symlinks resolved, or None if it cannot be resolved."""
    try:
        text = os.fspath(path)
        if not text or "\x00" in text:
            return None
        # realpath resolves each symlink before applying the ``..`` that follows it
        return os.path.realpath(text)
    except (TypeError, ValueError, OSError):
        return None


def _is_within(candidate: str, root: str) -> bool:
    if candidate == root:
        return True
    try:
        return os.path.commonpath([candidate, root]) == root
    except ValueError:
        # Different drives on Windows
        return False


def is_path_safe(candidate_path: PathLike, allowed_roots: Iterable[PathLike]) -> bool:
    """
    Check that a path resolves inside one of the allowed roots.

    Args:
        candidate_path: User-supplied path (absolute, or relative to the cwd)
        allowed_roots: Directories the path may live under

    Returns:
        True if the canonical path equals or descends from a canonical root

    Examples:
        >>> is_path_safe("/data/../etc/passwd", ["/data"])
        False
        >>> is_path_safe("/data/sub/../file.txt", ["/data"])
        True
    """
    resolved = _canonical(candidate_path)
    if resolved is None:
        return False

    for root in allowed_roots:
        resolved_root = _canonical(root)
        if resolved_root is not None and _is_within(resolved, resolved_root):
            return True

    return False


def get_real_path_if_safe(candidate_path: PathLike, allowed_roots: Iterable[PathLike]) -> Optional[str]:
    """
    Resolve a path and return it only when it is inside an allowed root.

    A path that does not exist yet (a file about to be written) is accepted
    when its parent directory exists.

    Args:
        candidate_path: User-supplied path
        allowed_roots: Directories the path may live under

    Returns:
        The canonical path, or None when the operation must be refused
    """
    real_path = _canonical(candidate_path)
    if real_path is None:
        return None

    if not os.path.exists(real_path) and not os.path.isdir(os.path.dirname(real_path)):
        return None

    if not is_path_safe(real_path, list(allowed_roots)):
        logger.warning(f"Blocked path outside allowed roots: {os.fspath(candidate_path)!r}")
        return None

    return real_path


def safe_join(base_dir: PathLike, *parts: str) -> Optional[str]:
    """
    Join user-relative parts onto a base directory, refusing escapes.

    Returns:
        Canonical joined path, or None if it would leave ``base_dir``
    """
    base = _canonical(base_dir)
    if base is None:
        return None

    cleaned = []
    for part in parts:
        if not isinstance(part, str) or "\x00" in part:
            return None
        cleaned.append(part.replace("\\", "/").lstrip("/"))

    joined = _canonical(os.path.join(base, *cleaned))
    if joined is None or not _is_within(joined, base):
        return None
    return joined


def sanitize_file_name(name: str) -> Optional[str]:
    """
    Reduce a user-supplied file name to a safe single segment.

    Directory components are dropped. Hidden names, ``..``, names outside
    ``[A-Za-z0-9._-]`` and overlong names are refused.

    Args:
        name: File name as received

    Returns:
        The safe base name, or None if it cannot be used
    """
    if not isinstance(name, str) or not name:
        return None

    base_name = PurePosixPath(name.replace("\\", "/")).name

    if not base_name or base_name.startswith(".") or ".." in base_name:
        return None
    if len(base_name) > MAX_FILENAME_LENGTH:
        return None
    if not _SAFE_FILENAME_RE.match(base_name):
        return None

    return base_name


def generate_upload_filename(original_name: str) -> str:
    """
    Build a collision-resistant name for an uploaded file.

    Unsafe characters become ``_``, dot runs collapse, the base is truncated
    and a random hex prefix is added so names cannot be predicted or reused
    to overwrite an existing upload.

    Args:
        original_name: Name supplied by the client

    Returns:
        ``<hex>_<safe base><ext>``
    """
    base_name = PurePosixPath(str(original_name or "").replace("\\", "/")).name
    stem, ext = os.path.splitext(base_name)
    ext = _UNSAFE_CHAR_RE.sub("", ext.lower())
    if ext == ".":
        ext = ""

    safe_stem = _UNSAFE_CHAR_RE.sub("_", stem)
    safe_stem = _DOT_RUN_RE.sub(".", safe_stem).strip(".")
    safe_stem = safe_stem[:MAX_UPLOAD_BASENAME_LENGTH] or "upload"

    unique_id = secrets.token_hex(UPLOAD_PREFIX_BYTES)
    return f"{unique_id}_{safe_stem}{ext}"


def is_allowed_extension(file_path: PathLike, allowed_extensions: Iterable[str]) -> bool:
    """Case-insensitive extension check (extensions include the dot)."""
    ext = os.path.splitext(os.fspath(file_path))[1].lower()
    return ext in {e.lower() for e in allowed_extensions}
