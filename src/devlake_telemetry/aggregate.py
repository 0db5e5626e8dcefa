"""Fold hourly snapshots into the per-day aggregate.

The merge is a set of small typed functions, one per field group, so each rule
can be exercised without touching disk:

* counters add key-wise, missing keys count as zero
* name sets union and stay sorted
* git totals add and repositories group by name
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Mapping

from .models import DailyAggregate, DevelopmentActivity, GitActivityRecord
from .snapshot import HourlySnapshot
from .state import StateStore

logger = logging.getLogger(__name__)

RolloverHandler = Callable[[DailyAggregate], object]


def merge_counts(first: Mapping[str, int], second: Mapping[str, int]) -> dict[str, int]:
    merged = dict(first)
    for key, value in second.items():
        merged[key] = merged.get(key, 0) + value
    return merged


def merge_names(first: Iterable[str], second: Iterable[str]) -> list[str]:
    return sorted(set(first) | set(second))


def merge_git(first: GitActivityRecord, second: GitActivityRecord) -> GitActivityRecord:
    if not second.repositories:
        return first
    return GitActivityRecord.from_repositories([*first.repositories, *second.repositories])


def merge_development(first: DevelopmentActivity, second: DevelopmentActivity) -> DevelopmentActivity:
    return DevelopmentActivity(
        test_runs_detected=first.test_runs_detected + second.test_runs_detected,
        build_commands_detected=first.build_commands_detected + second.build_commands_detected,
    )


def fold(aggregate: DailyAggregate, snapshot: HourlySnapshot) -> DailyAggregate:
    """Return a new aggregate with ``snapshot`` merged in.

    Tools only join the daily set during active hours.
    """

    active = snapshot.is_active
    return DailyAggregate(
        date=aggregate.date,
        hours_collected=[*aggregate.hours_collected, snapshot.hour],
        active_hours=aggregate.active_hours + (1 if active else 0),
        commands=merge_counts(aggregate.commands, snapshot.commands),
        tools_used=(
            merge_names(aggregate.tools_used, snapshot.tools_used) if active else list(aggregate.tools_used)
        ),
        projects=merge_names(aggregate.projects, snapshot.projects),
        git_activity=merge_git(aggregate.git_activity, snapshot.git_activity),
        development_activity=merge_development(aggregate.development_activity, snapshot.development_activity),
        connections=merge_counts(aggregate.connections, snapshot.connections),
    )


class DailyAggregator:
    """Maintain the persisted aggregate, handling date rollover."""

    def __init__(self, store: StateStore, *, on_rollover: RolloverHandler | None = None) -> None:
        self._store = store
        self._on_rollover = on_rollover

    def fold_snapshot(self, snapshot: HourlySnapshot) -> DailyAggregate:
        with self._store.aggregate_lock():
            current = self._store.load_aggregate()
            if current is None:
                current = DailyAggregate.empty(snapshot.date)
            elif current.date != snapshot.date:
                self._rollover(current)
                current = DailyAggregate.empty(snapshot.date)
            updated = fold(current, snapshot)
            self._store.save_aggregate(updated)
        logger.info(
            "Daily aggregate updated",
            extra={"date": updated.date.isoformat(), "hour": snapshot.hour, "active": snapshot.is_active},
        )
        return updated

    def _rollover(self, previous: DailyAggregate) -> None:
        logger.info("Date rolled over from %s, flushing previous aggregate", previous.date.isoformat())
        if self._on_rollover is None:
            return
        try:
            self._on_rollover(previous)
        except Exception as exc:  # best effort: the reset happens regardless
            logger.error("Rollover transmission for %s failed: %s", previous.date.isoformat(), exc)


__all__ = [
    "DailyAggregator",
    "fold",
    "merge_counts",
    "merge_development",
    "merge_git",
    "merge_names",
]
