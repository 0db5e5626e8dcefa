"""Hourly snapshot record and the active-hour policy."""

from __future__ import annotations

import datetime as dt
from typing import Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, computed_field

from .models import DevelopmentActivity, GitActivityRecord


def is_active_hour(
    *,
    command_count: int,
    project_count: int,
    commit_count: int,
    test_runs: int,
    builds: int,
) -> bool:
    """An hour is active when the developer did something.

    A tool merely running (an editor left open overnight) does not count.
    """

    return any(value > 0 for value in (command_count, project_count, commit_count, test_runs, builds))


class HourlySnapshot(BaseModel):
    """Immutable result of one collection cycle."""

    model_config = ConfigDict(frozen=True)

    timestamp: dt.datetime
    hour: int = Field(ge=0, le=23)
    commands: dict[str, NonNegativeInt] = Field(default_factory=dict)
    tools_used: list[str] = Field(default_factory=list)
    projects: list[str] = Field(default_factory=list)
    git_activity: GitActivityRecord = Field(default_factory=GitActivityRecord)
    development_activity: DevelopmentActivity = Field(default_factory=DevelopmentActivity)
    connections: dict[str, NonNegativeInt] = Field(default_factory=dict)

    @property
    def date(self) -> dt.date:
        return self.timestamp.date()

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_active(self) -> bool:
        return is_active_hour(
            command_count=sum(self.commands.values()),
            project_count=len(self.projects),
            commit_count=self.git_activity.total_commits,
            test_runs=self.development_activity.test_runs_detected,
            builds=self.development_activity.build_commands_detected,
        )


def build_snapshot(
    timestamp: dt.datetime,
    *,
    commands: Mapping[str, int] | None = None,
    tools: Iterable[str] = (),
    projects: Iterable[str] = (),
    git_activity: GitActivityRecord | None = None,
    development_activity: DevelopmentActivity | None = None,
    connections: Mapping[str, int] | None = None,
) -> HourlySnapshot:
    """Compose collector outputs into one snapshot; names are deduplicated and sorted."""

    return HourlySnapshot(
        timestamp=timestamp,
        hour=timestamp.hour,
        commands={name: count for name, count in (commands or {}).items() if count > 0},
        tools_used=sorted(set(tools)),
        projects=sorted(set(projects)),
        git_activity=git_activity or GitActivityRecord(),
        development_activity=development_activity or DevelopmentActivity(),
        connections={name: count for name, count in (connections or {}).items() if count > 0},
    )


__all__ = ["HourlySnapshot", "build_snapshot", "is_active_hour"]
