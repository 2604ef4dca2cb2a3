from __future__ import annotations

import re
from typing import Callable, Union

from .models import MatchLocation, SearchResult


class PatternError(ValueError):
    pass


# $$, ${name} or $name; the name runs over [A-Za-z0-9_] as far as it can.
_GROUP_REFERENCE = re.compile(r"\$(?:(\$)|\{([^}]*)\}|([A-Za-z0-9_]+))")


def compile_pattern(pattern: str, is_regex: bool) -> re.Pattern[str]:
    if not is_regex:
        return re.compile(re.escape(pattern))
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise PatternError(f"Invalid search pattern {pattern!r}: {exc}") from exc


def count_matches(text: str, compiled: re.Pattern[str]) -> int:
    # An empty pattern would match at every character boundary, which is never
    # a useful hit count for an editor search; count it as nothing found.
    if not compiled.pattern:
        return 0
    return sum(1 for _ in compiled.finditer(text))


def _split_lines(content: str) -> list[str]:
    lines = content.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def search_text(content: str, pattern: str, is_regex: bool) -> SearchResult:
    """Locate every match line by line.

    Lines are 1-based, offsets count characters within the line. A trailing
    newline does not start another line. An empty or invalid pattern yields
    an empty result rather than an error.
    """
    if not pattern:
        return SearchResult()
    try:
        compiled = compile_pattern(pattern, is_regex)
    except PatternError:
        return SearchResult()

    matches: list[MatchLocation] = []
    for line_no, line in enumerate(_split_lines(content), start=1):
        for match in compiled.finditer(line):
            matches.append(MatchLocation(line=line_no, start_char=match.start(), end_char=match.end()))
    return SearchResult(found=bool(matches), count=len(matches), matches=matches)


def _group_value(match: re.Match[str], name: str) -> str:
    key: Union[int, str] = int(name) if name.isdigit() else name
    try:
        value = match.group(key)
    except IndexError:
        return ""
    return value or ""


def expand_replacement(replacement: str) -> Callable[[re.Match[str]], str]:
    """Build a ``re.sub`` callable from a ``$``-style replacement template.

    ``$1`` and ``${name}`` insert a group, ``$$`` is a literal dollar sign.
    Unknown or unmatched groups insert nothing. Backslashes are literal.
    """
    pieces: list[tuple[bool, str]] = []
    pos = 0
    for ref in _GROUP_REFERENCE.finditer(replacement):
        if ref.start() > pos:
            pieces.append((False, replacement[pos:ref.start()]))
        dollar, braced, bare = ref.groups()
        if dollar:
            pieces.append((False, "$"))
        else:
            pieces.append((True, braced if braced is not None else bare))
        pos = ref.end()
    if pos < len(replacement):
        pieces.append((False, replacement[pos:]))

    def expand(match: re.Match[str]) -> str:
        return "".join(_group_value(match, text) if is_group else text for is_group, text in pieces)

    return expand


def replace_text(content: str, pattern: str, replacement: str, is_regex: bool) -> tuple[str, int]:
    """Replace every match; regex replacements take ``$1`` / ``${name}`` references."""
    if not pattern:
        return content, 0
    compiled = compile_pattern(pattern, is_regex)
    if not is_regex:
        return compiled.subn(lambda _match: replacement, content)
    return compiled.subn(expand_replacement(replacement), content)
