"""Shell history sources feeding the activity and development detectors.

Sources are consulted in order and are not mutually exclusive. A command run
in bash shortly after a zsh session can be reported by both the audit log and
the bash history tail, so counts may overlap when a user switches shells
within one window.
"""

from __future__ import annotations

import logging
import os
import re
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, Sequence

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_LOG = Path("/var/log/audit/audit.log")
AUDIT_WINDOW_CAP_SECONDS = 3600
BASH_TAIL_LINES = 100

_ZSH_ENTRY = re.compile(r"^: (\d+):\d+;(.*)$")
_AUDIT_EXECVE = re.compile(r"^type=EXECVE msg=audit\((\d+)(?:\.\d+)?:\d+\):(.*)$")
_AUDIT_ARG = re.compile(r"\ba([01])=(\"[^\"]*\"|[0-9A-Fa-f]+|\(null\))")


@dataclass(slots=True)
class HistoryBatch:
    """Raw command lines produced by one source plus the watermark to persist."""

    entries: list[str] = field(default_factory=list)
    new_watermark: int = 0


class HistorySource(Protocol):
    """Strategy interface implemented by every history source."""

    name: str

    def collect(self, watermark: int, now: int) -> HistoryBatch:
        ...


def advance_watermark(watermark: int, now: int) -> int:
    """Watermarks only ever move forward."""

    return max(watermark, now)


def _read_text(path: Path) -> str:
    # zsh stores metafied bytes, so decode leniently.
    return path.read_bytes().decode("utf-8", errors="replace")


class ZshHistorySource:
    """Extended zsh history where every entry carries its own epoch."""

    name = "zsh"

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    def collect(self, watermark: int, now: int) -> HistoryBatch:
        batch = HistoryBatch(new_watermark=advance_watermark(watermark, now))
        if not self._path.is_file():
            return batch
        for line in _read_text(self._path).splitlines():
            match = _ZSH_ENTRY.match(line)
            if match is None:
                continue
            if int(match.group(1)) > watermark:
                batch.entries.append(match.group(2))
        return batch


def _decode_audit_arg(raw: str) -> str | None:
    if raw == "(null)":
        return None
    if raw.startswith("\""):
        return raw[1:-1]
    try:
        return bytes.fromhex(raw).decode("utf-8", errors="replace")
    except ValueError:
        return None


class AuditLogSource:
    """Linux auditd EXECVE records, used to recover commands from untimestamped shells.

    Only the program name and its first argument are read, which is enough to
    tell ``go test`` from ``go build``. Nothing past the first argument is parsed.
    """

    name = "audit"

    def __init__(self, path: Path = DEFAULT_AUDIT_LOG, *, window_cap: int = AUDIT_WINDOW_CAP_SECONDS) -> None:
        self._path = Path(path)
        self._window_cap = window_cap

    def window(self, watermark: int, now: int) -> int:
        return max(0, min(now - watermark, self._window_cap))

    def collect(self, watermark: int, now: int) -> HistoryBatch:
        batch = HistoryBatch(new_watermark=advance_watermark(watermark, now))
        window = self.window(watermark, now)
        if window == 0 or not self._path.is_file():
            return batch
        start = now - window
        for line in _read_text(self._path).splitlines():
            match = _AUDIT_EXECVE.match(line)
            if match is None:
                continue
            epoch = int(match.group(1))
            if epoch <= start or epoch > now:
                continue
            args: dict[str, str] = {}
            for index, raw in _AUDIT_ARG.findall(match.group(2)):
                decoded = _decode_audit_arg(raw)
                if decoded is not None:
                    args[index] = decoded
            program = os.path.basename(args.get("0", ""))
            if not program:
                continue
            first_arg = args.get("1")
            batch.entries.append(f"{program} {first_arg}" if first_arg else program)
        return batch


class BashHistorySource:
    """Plain bash history, gated on the file's modification time.

    bash writes no per-entry timestamps by default, so the trailing lines are
    re-read whenever the file changed after the watermark.
    """

    name = "bash"

    def __init__(self, path: Path, *, tail: int = BASH_TAIL_LINES) -> None:
        self._path = Path(path)
        self._tail = tail

    def collect(self, watermark: int, now: int) -> HistoryBatch:
        batch = HistoryBatch(new_watermark=advance_watermark(watermark, now))
        if not self._path.is_file():
            return batch
        if int(self._path.stat().st_mtime) <= watermark:
            return batch
        batch.entries.extend(deque(_read_text(self._path).splitlines(), maxlen=self._tail))
        return batch


def default_history_sources(home: Path, *, audit_log: Path = DEFAULT_AUDIT_LOG) -> list[HistorySource]:
    """Return the ordered fallback chain for ``home``."""

    home = Path(home)
    return [
        ZshHistorySource(home / ".zsh_history"),
        AuditLogSource(audit_log),
        BashHistorySource(home / ".bash_history"),
    ]


def read_sources(
    sources: Sequence[HistorySource], watermark: int, now: int
) -> list[tuple[str, HistoryBatch]]:
    """Collect from each source, treating unreadable sources as empty."""

    batches: list[tuple[str, HistoryBatch]] = []
    for source in sources:
        try:
            batch = source.collect(watermark, now)
        except (OSError, ValueError) as exc:
            logger.debug("History source %s unavailable: %s", source.name, exc)
            batch = HistoryBatch(new_watermark=advance_watermark(watermark, now))
        batches.append((source.name, batch))
    return batches


__all__ = [
    "AUDIT_WINDOW_CAP_SECONDS",
    "AuditLogSource",
    "BashHistorySource",
    "DEFAULT_AUDIT_LOG",
    "HistoryBatch",
    "HistorySource",
    "ZshHistorySource",
    "advance_watermark",
    "default_history_sources",
    "read_sources",
]
