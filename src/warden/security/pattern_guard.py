"""
Search pattern safety checks.

User-supplied search expressions are run against large file trees, so a
pattern is vetted for bounded matching cost before it is compiled. Limits:

- 100 characters of user input
- at most 10 quantifiers and 5 groups
- no repeated group whose body itself repeats (``(a+)+``, ``(a*)*``)
- no backreferences
- no verbose flag (``(?x)``), whose ignored whitespace would hide nesting

Glob patterns are translated to a regex first and the translation is held to
the same structural limits.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from loguru import logger

from ..errors import RejectedInput

MAX_PATTERN_LENGTH = 100
MAX_QUANTIFIERS = 10
MAX_GROUPS = 5
MAX_REPEAT_BOUND = 1000

_REGEX_LITERAL_RE = re.compile(r"^/(.+)/([a-z]*)$", re.DOTALL)
_COUNTED_RE = re.compile(r"\{(\d*)(,(\d*))?\}")
_INLINE_FLAGS_RE = re.compile(r"\(\?[aiLmsux]+\)")
_FLAG_GROUP_RE = re.compile(r"\(\?([aiLmsux]*)(?:-([imsx]+))?[:)]")
_GLOB_CHARS = frozenset("*?[")
_SUPPORTED_FLAGS = {"i": re.IGNORECASE}


class PatternMode(str, Enum):
    """How a search expression is interpreted."""
    PLAINTEXT = "plaintext"
    GLOB = "glob"
    REGEX = "regex"
    AUTO = "auto"


@dataclass(frozen=True)
class PatternCheck:
    """
    Outcome of a pattern check.

    Attributes:
        ok: Whether the pattern may be used
        reason: Rule that was violated (None when ok)
        mode: Mode the expression was interpreted in
        source: Regex source handed to the search collaborator
        compiled: Compiled pattern (only when ok)
    """
    ok: bool
    reason: Optional[str] = None
    mode: Optional[PatternMode] = None
    source: Optional[str] = None
    compiled: Optional["re.Pattern[str]"] = None


def _reject(reason: str, mode: Optional[PatternMode] = None) -> PatternCheck:
    return PatternCheck(ok=False, reason=reason, mode=mode)


# =============================================================================
# Structural analysis
# =============================================================================

def _group_prefix_length(source: str, i: int) -> Tuple[int, Optional[str]]:
    """
    Length of the ``(``-prefix of the group starting at ``i``.

    Returns:
        (length, reason) where reason is set if the group is a reference form
    """
    if not source.startswith("(?", i):
        return 1, None
    if source.startswith("(?P=", i) or source.startswith("(?(", i):
        return 0, "Backreferences are not allowed"
    for prefix in ("(?<=", "(?<!"):
        if source.startswith(prefix, i):
            return len(prefix), None
    if source.startswith("(?P<", i):
        end = source.find(">", i)
        return (end - i + 1 if end != -1 else len(source) - i), None
    if source[i + 2:i + 3] in (":", "=", "!", ">"):
        return 3, None
    # Scoped flags, e.g. (?i:...)
    colon = source.find(":", i)
    return (colon - i + 1 if colon != -1 else 2), None


def _quantifier_at(source: str, i: int) -> Optional[Tuple[int, bool, bool]]:
    """
    Parse a quantifier starting at ``i``.

    Returns:
        (length, repeats, too_large) or None if there is no quantifier here.
        ``repeats`` is True when the quantifier allows more than one match.
    """
    ch = source[i]
    if ch in "*+":
        length, repeats, too_large = 1, True, False
    elif ch == "?":
        length, repeats, too_large = 1, False, False
    elif ch == "{":
        match = _COUNTED_RE.match(source, i)
        if not match or (not match.group(1) and match.group(2) is None):
            return None
        low = int(match.group(1)) if match.group(1) else 0
        if match.group(2) is None:
            high: Optional[int] = low
        else:
            high = int(match.group(3)) if match.group(3) else None
        length = match.end() - i
        repeats = high is None or high > 1
        too_large = low > MAX_REPEAT_BOUND or (high is not None and high > MAX_REPEAT_BOUND)
    else:
        return None

    # Lazy or possessive modifier belongs to the same quantifier
    if source[i + length:i + length + 1] in ("?", "+"):
        length += 1
    return length, repeats, too_large


def _structural_issue(source: str) -> Optional[str]:
    """
    Scan a regex source for shapes with unbounded backtracking cost.

    Returns:
        The violated rule, or None when the pattern is within bounds
    """
    quantifiers = 0
    groups = 0
    # One frame per open group: does its body contain a repeating quantifier?
    frames: List[bool] = [False]
    can_repeat = False
    closed_group_repeats = False

    i = 0
    n = len(source)
    while i < n:
        ch = source[i]

        if ch == "\\":
            nxt = source[i + 1:i + 2]
            if nxt.isdigit() and nxt != "0":
                return "Backreferences are not allowed"
            i += 2
            can_repeat, closed_group_repeats = True, False
            continue

        if ch == "[":
            j = i + 1
            if source[j:j + 1] == "^":
                j += 1
            if source[j:j + 1] == "]":
                j += 1
            while j < n and source[j] != "]":
                j += 2 if source[j] == "\\" else 1
            i = j + 1
            can_repeat, closed_group_repeats = True, False
            continue

        if ch == "(":
            if source.startswith("(?#", i):
                end = source.find(")", i)
                i = n if end == -1 else end + 1
                continue
            flag_group = _FLAG_GROUP_RE.match(source, i)
            if flag_group and "x" in (flag_group.group(1) + (flag_group.group(2) or "")):
                return "Verbose regex flag is not allowed"
            flags = _INLINE_FLAGS_RE.match(source, i)
            if flags:
                i = flags.end()
                continue
            prefix, reason = _group_prefix_length(source, i)
            if reason:
                return reason
            groups += 1
            if groups > MAX_GROUPS:
                return f"Too many groups (max {MAX_GROUPS})"
            frames.append(False)
            i += prefix
            can_repeat, closed_group_repeats = False, False
            continue

        if ch == ")":
            inner_repeats = False
            if len(frames) > 1:
                inner_repeats = frames.pop()
                if inner_repeats:
                    frames[-1] = True
            i += 1
            can_repeat, closed_group_repeats = True, inner_repeats
            continue

        quantifier = _quantifier_at(source, i)
        if quantifier is not None and (ch != "{" or can_repeat):
            length, repeats, too_large = quantifier
            quantifiers += 1
            if quantifiers > MAX_QUANTIFIERS:
                return f"Too many quantifiers (max {MAX_QUANTIFIERS})"
            if too_large:
                return f"Quantifier bound is too large (max {MAX_REPEAT_BOUND})"
            if repeats and closed_group_repeats:
                return "Nested quantifiers are not allowed"
            if repeats:
                frames[-1] = True
            i += length
            can_repeat, closed_group_repeats = False, False
            continue

        can_repeat = ch not in "|^$"
        closed_group_repeats = False
        i += 1

    return None


# =============================================================================
# Glob translation
# =============================================================================

def translate_glob(glob: str) -> str:
    """
    Translate a glob into an anchored regex source.

    ``*`` matches within one path segment, ``**/`` matches any number of
    directories, ``?`` one character, ``[...]`` a character class.
    """
    parts: List[str] = []
    i = 0
    n = len(glob)
    while i < n:
        if glob.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif glob.startswith("**", i) and i + 2 == n:
            parts.append(".*")
            i += 2
        elif glob[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif glob[i] == "?":
            parts.append("[^/]")
            i += 1
        elif glob[i] == "[":
            j = i + 1
            if j < n and glob[j] in "!^":
                j += 1
            if j < n and glob[j] == "]":
                j += 1
            while j < n and glob[j] != "]":
                j += 1
            if j < n:
                body = glob[i + 1:j].replace("\\", "\\\\")
                if body.startswith("!"):
                    body = "^" + body[1:]
                parts.append(f"[{body}]")
                i = j + 1
            else:
                parts.append(re.escape(glob[i]))
                i += 1
        else:
            parts.append(re.escape(glob[i]))
            i += 1
    return "^" + "".join(parts) + r"\Z"


# =============================================================================
# Public API
# =============================================================================

def _resolve_mode(expression: str, mode: PatternMode) -> PatternMode:
    if mode != PatternMode.AUTO:
        return mode
    literal = _REGEX_LITERAL_RE.match(expression)
    if literal and set(literal.group(2)) <= set(_SUPPORTED_FLAGS):
        return PatternMode.REGEX
    if any(ch in _GLOB_CHARS for ch in expression):
        return PatternMode.GLOB
    return PatternMode.PLAINTEXT


def check_pattern(expression: str, mode: "PatternMode | str" = PatternMode.AUTO) -> PatternCheck:
    """
    Decide whether a search expression is safe to compile and run.

    Args:
        expression: Expression as typed by the user
        mode: plaintext, glob, regex or auto

    Returns:
        PatternCheck; ``compiled`` is set only when the pattern passed

    Examples:
        >>> check_pattern("(a+)+$", "regex").reason
        'Nested quantifiers are not allowed'
        >>> check_pattern("server.properties", "plaintext").ok
        True
    """
    try:
        mode = PatternMode(mode)
    except ValueError:
        return _reject("Unknown pattern mode")

    if not isinstance(expression, str) or not expression:
        return _reject("Pattern is required", mode)
    if len(expression) > MAX_PATTERN_LENGTH:
        return _reject(f"Pattern is longer than {MAX_PATTERN_LENGTH} characters", mode)

    mode = _resolve_mode(expression, mode)
    flags = 0

    if mode == PatternMode.PLAINTEXT:
        source = re.escape(expression)
        flags = re.IGNORECASE
    elif mode == PatternMode.GLOB:
        source = translate_glob(expression)
        flags = re.IGNORECASE
    else:
        source = expression
        literal = _REGEX_LITERAL_RE.match(expression)
        if literal:
            source = literal.group(1)
            for flag in literal.group(2):
                if flag not in _SUPPORTED_FLAGS:
                    return _reject("Unsupported regex flag", mode)
                flags |= _SUPPORTED_FLAGS[flag]

    issue = _structural_issue(source)
    if issue:
        logger.warning(f"Rejected {mode.value} search pattern: {issue}")
        return _reject(issue, mode)

    try:
        compiled = re.compile(source, flags)
    except re.error:
        return _reject("Invalid regular expression", mode)

    return PatternCheck(ok=True, mode=mode, source=source, compiled=compiled)


def compile_search_pattern(expression: str, mode: "PatternMode | str" = PatternMode.AUTO) -> "re.Pattern[str]":
    """
    Check and compile a search expression.

    Raises:
        RejectedInput: If the pattern is not safe
    """
    result = check_pattern(expression, mode)
    if not result.ok:
        raise RejectedInput(result.reason or "Rejected pattern")
    return result.compiled
