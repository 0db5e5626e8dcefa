"""Multi-source activity collector producing command-name counts."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Sequence

from ..privacy import tally_commands
from .history import (
    DEFAULT_AUDIT_LOG,
    HistorySource,
    advance_watermark,
    default_history_sources,
    read_sources,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CommandActivity:
    commands: dict[str, int] = field(default_factory=dict)
    new_watermark: int = 0


class ActivityCollector:
    """Tally command names across an ordered chain of history sources."""

    def __init__(self, sources: Sequence[HistorySource], *, exclude: Iterable[str] = ()) -> None:
        self._sources = list(sources)
        self._exclude = frozenset(exclude)

    @classmethod
    def for_home(
        cls,
        home: Path,
        *,
        exclude: Iterable[str] = (),
        audit_log: Path = DEFAULT_AUDIT_LOG,
    ) -> "ActivityCollector":
        return cls(default_history_sources(home, audit_log=audit_log), exclude=exclude)

    @property
    def sources(self) -> list[HistorySource]:
        return list(self._sources)

    def collect(self, watermark: int, now: int) -> CommandActivity:
        """Count commands newer than ``watermark`` and return the advanced watermark.

        The watermark moves to ``now`` even when nothing was found.
        """

        totals: Counter[str] = Counter()
        for name, batch in read_sources(self._sources, watermark, now):
            counts = tally_commands(batch.entries, exclude=self._exclude)
            if counts:
                logger.debug("Source %s contributed %d commands", name, sum(counts.values()))
            totals.update(counts)
        return CommandActivity(commands=dict(totals), new_watermark=advance_watermark(watermark, now))


__all__ = ["ActivityCollector", "CommandActivity"]
