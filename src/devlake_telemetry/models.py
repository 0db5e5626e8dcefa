"""Data models for collected and persisted telemetry."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Iterable

from pydantic import BaseModel, Field, NonNegativeInt, model_validator


class RepositoryActivity(BaseModel):
    """Commit churn for a single repository, identified by directory name only."""

    name: str
    commits: NonNegativeInt = 0
    lines_added: NonNegativeInt = 0
    lines_deleted: NonNegativeInt = 0
    files_changed: NonNegativeInt = 0
    branches_worked: list[str] = Field(default_factory=list)

    def combine(self, other: "RepositoryActivity") -> "RepositoryActivity":
        """Return the sum of two records for the same repository name."""

        return RepositoryActivity(
            name=self.name,
            commits=self.commits + other.commits,
            lines_added=self.lines_added + other.lines_added,
            lines_deleted=self.lines_deleted + other.lines_deleted,
            files_changed=self.files_changed + other.files_changed,
            branches_worked=sorted(set(self.branches_worked) | set(other.branches_worked)),
        )


def group_repositories(records: Iterable[RepositoryActivity]) -> list[RepositoryActivity]:
    """Group records by repository name, summing counters and unioning branches."""

    grouped: dict[str, RepositoryActivity] = {}
    for record in records:
        existing = grouped.get(record.name)
        if existing is None:
            grouped[record.name] = record.model_copy(
                update={"branches_worked": sorted(set(record.branches_worked))}
            )
        else:
            grouped[record.name] = existing.combine(record)
    return [grouped[name] for name in sorted(grouped)]


class GitActivityRecord(BaseModel):
    """Git totals for a window. Totals always equal the repository sums."""

    total_commits: NonNegativeInt = 0
    total_lines_added: NonNegativeInt = 0
    total_lines_deleted: NonNegativeInt = 0
    total_files_changed: NonNegativeInt = 0
    repositories: list[RepositoryActivity] = Field(default_factory=list)

    @classmethod
    def from_repositories(cls, repositories: Iterable[RepositoryActivity]) -> "GitActivityRecord":
        grouped = group_repositories(repositories)
        return cls(
            total_commits=sum(repo.commits for repo in grouped),
            total_lines_added=sum(repo.lines_added for repo in grouped),
            total_lines_deleted=sum(repo.lines_deleted for repo in grouped),
            total_files_changed=sum(repo.files_changed for repo in grouped),
            repositories=grouped,
        )

    @model_validator(mode="after")
    def _totals_match_repositories(self) -> "GitActivityRecord":
        sums = (
            sum(repo.commits for repo in self.repositories),
            sum(repo.lines_added for repo in self.repositories),
            sum(repo.lines_deleted for repo in self.repositories),
            sum(repo.files_changed for repo in self.repositories),
        )
        totals = (
            self.total_commits,
            self.total_lines_added,
            self.total_lines_deleted,
            self.total_files_changed,
        )
        if sums != totals:
            raise ValueError("git totals do not match repository sums")
        return self


class DevelopmentActivity(BaseModel):
    """Counts of test and build executions. Matched command text is never kept."""

    test_runs_detected: NonNegativeInt = 0
    build_commands_detected: NonNegativeInt = 0


class DailyAggregate(BaseModel):
    """Running total for one calendar date."""

    date: date
    hours_collected: list[int] = Field(default_factory=list)
    active_hours: NonNegativeInt = 0
    commands: dict[str, NonNegativeInt] = Field(default_factory=dict)
    tools_used: list[str] = Field(default_factory=list)
    projects: list[str] = Field(default_factory=list)
    git_activity: GitActivityRecord = Field(default_factory=GitActivityRecord)
    development_activity: DevelopmentActivity = Field(default_factory=DevelopmentActivity)
    connections: dict[str, NonNegativeInt] = Field(default_factory=dict)

    @classmethod
    def empty(cls, day: date) -> "DailyAggregate":
        return cls(date=day)


@dataclass(slots=True, frozen=True)
class ProcessingState:
    """Cross-cycle state owned by the agent and persisted between invocations."""

    last_history_watermark: int = 0
    connection_baseline: frozenset[str] = field(default_factory=frozenset)
    last_send_date: date | None = None


@dataclass(slots=True, frozen=True)
class ArchiveRecord:
    """Write-once copy of a daily aggregate taken at successful transmission."""

    date: date
    path: Path
    aggregate: DailyAggregate


__all__ = [
    "ArchiveRecord",
    "DailyAggregate",
    "DevelopmentActivity",
    "GitActivityRecord",
    "ProcessingState",
    "RepositoryActivity",
    "group_repositories",
]
