"""Count test and build executions found in shell history."""

from __future__ import annotations

import re
from typing import Iterable, Sequence

from ..models import DevelopmentActivity
from ..privacy import PRIVILEGE_PREFIX
from ..signatures import SignatureCatalog
from .history import HistorySource, read_sources


def _strip_prefix(line: str) -> str:
    text = line.strip()
    prefix = PRIVILEGE_PREFIX + " "
    return text[len(prefix):].lstrip() if text.startswith(prefix) else text


class DevelopmentActivityDetector:
    """Classify history lines as test runs or builds. A line counts once, tests first."""

    def __init__(
        self,
        sources: Sequence[HistorySource],
        *,
        test_patterns: Iterable[str],
        build_patterns: Iterable[str],
    ) -> None:
        self._sources = list(sources)
        self._test = [re.compile(pattern) for pattern in test_patterns]
        self._build = [re.compile(pattern) for pattern in build_patterns]

    @classmethod
    def from_catalog(cls, sources: Sequence[HistorySource], catalog: SignatureCatalog) -> "DevelopmentActivityDetector":
        return cls(sources, test_patterns=catalog.activity.test, build_patterns=catalog.activity.build)

    def classify(self, lines: Iterable[str]) -> DevelopmentActivity:
        tests = builds = 0
        for line in lines:
            text = _strip_prefix(line)
            if not text:
                continue
            if any(pattern.search(text) for pattern in self._test):
                tests += 1
            elif any(pattern.search(text) for pattern in self._build):
                builds += 1
        return DevelopmentActivity(test_runs_detected=tests, build_commands_detected=builds)

    def detect(self, watermark: int, now: int) -> DevelopmentActivity:
        lines: list[str] = []
        for _, batch in read_sources(self._sources, watermark, now):
            lines.extend(batch.entries)
        return self.classify(lines)


__all__ = ["DevelopmentActivityDetector"]
