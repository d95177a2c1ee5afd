"""
Guards for user-supplied strings: file paths, console commands and search patterns.
"""

from .command_guard import ensure_command, validate_command
from .path_guard import (
    generate_upload_filename,
    get_real_path_if_safe,
    is_path_safe,
    safe_join,
    sanitize_file_name,
)
from .pattern_guard import PatternCheck, PatternMode, check_pattern, compile_search_pattern
from .results import GuardResult

__all__ = [
    "GuardResult",
    "validate_command",
    "ensure_command",
    "is_path_safe",
    "get_real_path_if_safe",
    "safe_join",
    "sanitize_file_name",
    "generate_upload_filename",
    "PatternCheck",
    "PatternMode",
    "check_pattern",
    "compile_search_pattern",
]
