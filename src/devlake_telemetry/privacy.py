"""Privacy filter deciding which history lines may be counted as commands.

Only the first whitespace-delimited token of an accepted line leaves this
module. Anything that looks like pasted code, a comment or a quoted string is
rejected outright.
"""

from __future__ import annotations

import re
from collections import Counter
from typing import Iterable

PRIVILEGE_PREFIX = "sudo"

# Identifiers that show up in history when code is pasted into a shell.
DENYLIST = frozenset(
    {
        "print",
        "from",
        "import",
        "if",
        "for",
        "while",
        "try",
        "except",
        "with",
        "User",
        "content",
        "Registration",
        "f",
        "user",
        "reg",
    }
)

_CODE_PUNCTUATION = re.compile(r"[(){}\[\]=.:]")
_QUOTES = ("\"", "'")


def filter_command(line: object, *, exclude: Iterable[str] = ()) -> str | None:
    """Return the command name for ``line`` or ``None`` when it must not be counted."""

    if not isinstance(line, str):
        return None

    text = line.strip()
    if not text or text.startswith("#") or text.startswith(_QUOTES):
        return None

    tokens = text.split()
    if tokens[0] == PRIVILEGE_PREFIX:
        tokens = tokens[1:]
        if not tokens:
            return None

    command = tokens[0]
    if command.startswith(_QUOTES) or _CODE_PUNCTUATION.search(command):
        return None
    if command in DENYLIST or command in set(exclude):
        return None
    return command


def is_allowed(line: object, *, exclude: Iterable[str] = ()) -> bool:
    return filter_command(line, exclude=exclude) is not None


def tally_commands(lines: Iterable[object], *, exclude: Iterable[str] = ()) -> Counter[str]:
    """Count surviving command names across ``lines``."""

    excluded = frozenset(exclude)
    counts: Counter[str] = Counter()
    for line in lines:
        command = filter_command(line, exclude=excluded)
        if command is not None:
            counts[command] += 1
    return counts


__all__ = ["DENYLIST", "PRIVILEGE_PREFIX", "filter_command", "is_allowed", "tally_commands"]
