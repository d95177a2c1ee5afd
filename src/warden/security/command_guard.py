"""
Console command validation.

Commands typed into the panel console are forwarded to the game server through
the container-exec collaborator. Nothing here runs a shell, but the checks are
written as if one might be on the other side: allow-listed verbs only, no
shell metacharacters, no command-substitution shapes, no control characters.
"""

import re
from typing import FrozenSet

from loguru import logger

from .results import GuardResult

MAX_COMMAND_LENGTH = 1024

# Only these verbs can be executed via the console (case-sensitive)
ALLOWED_COMMANDS: FrozenSet[str] = frozenset({
    # Player management
    "/kick", "/ban", "/unban", "/pardon", "/mute", "/unmute",
    # Communication
    "/say", "/tell", "/msg", "/whisper", "/me", "/broadcast",
    # Game management
    "/stop", "/save", "/save-all", "/save-on", "/save-off",
    "/time", "/weather", "/difficulty", "/gamemode", "/gamerule",
    # Player interaction
    "/tp", "/teleport", "/give", "/clear", "/effect", "/heal",
    "/kill", "/spawn", "/setspawn", "/home", "/warp",
    # World management
    "/seed", "/worldborder",
    # Server info
    "/list", "/players", "/help", "/version", "/tps", "/status",
    # Whitelist and operators
    "/whitelist", "/op", "/deop",
    # Server authentication and native updates
    "/auth", "/update",
})

FORBIDDEN_CHARACTERS = frozenset(";|&$`(){}[]<>\\")

_SUBSTITUTION_RE = re.compile(r"\$\(|\$\{")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")

_PLAYER_NAME_RE = re.compile(r"^[A-Za-z0-9_-]{1,32}$")
_MESSAGE_STRIP_RE = re.compile(r"[;&|`$(){}\[\]<>\\!#*~^]")


def validate_command(raw_command: str) -> GuardResult:
    """
    Validate a console command.

    Args:
        raw_command: Command as typed by the user

    Returns:
        GuardResult with the trimmed command when accepted

    Examples:
        >>> validate_command("/kick Alice").ok
        True
        >>> validate_command("/kick Alice; rm -rf /").reason
        'Command contains forbidden characters'
    """
    if not isinstance(raw_command, str) or not raw_command.strip():
        return GuardResult.reject("Command is required")

    command = raw_command.strip()

    if len(command) > MAX_COMMAND_LENGTH:
        return GuardResult.reject(f"Command is longer than {MAX_COMMAND_LENGTH} characters")

    if not command.startswith("/"):
        return GuardResult.reject("Command must start with /")

    if _CONTROL_RE.search(command):
        return GuardResult.reject("Command contains control characters")

    verb = command.split()[0]
    if verb not in ALLOWED_COMMANDS:
        return GuardResult.reject("Command not allowed. Use /help for available commands.")

    # Checked on its own so the reason names the shape, even though the
    # character check below would also catch it
    if _SUBSTITUTION_RE.search(command):
        return GuardResult.reject("Command contains command substitution")

    if any(ch in FORBIDDEN_CHARACTERS for ch in command):
        return GuardResult.reject("Command contains forbidden characters")

    return GuardResult.accept(command)


def ensure_command(raw_command: str) -> str:
    """
    Validate a command, raising RejectedInput when refused.

    Returns:
        The normalized command
    """
    result = validate_command(raw_command)
    if not result.ok:
        logger.warning(f"Rejected console command: {result.reason}")
    return result.unwrap()


def is_valid_player_name(name: str) -> bool:
    """Player names: 1-32 chars, alphanumeric, underscore, hyphen."""
    return isinstance(name, str) and bool(_PLAYER_NAME_RE.match(name))


def sanitize_message(message: str, max_length: int = 256) -> str:
    """
    Strip metacharacters and newlines from free text (chat, kick reasons).

    Args:
        message: Text to clean
        max_length: Maximum length of the result

    Returns:
        Cleaned text, possibly empty
    """
    if not isinstance(message, str):
        return ""
    cleaned = _MESSAGE_STRIP_RE.sub("", message)
    cleaned = cleaned.replace("\n", " ").replace("\r", "")
    cleaned = _CONTROL_RE.sub("", cleaned)
    return cleaned.strip()[:max_length]
