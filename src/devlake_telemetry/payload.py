"""Wire payload for the daily report."""

from __future__ import annotations

import socket
from dataclasses import dataclass
from typing import Any

from .config import login_user
from .git import GitRunner
from .models import DailyAggregate


@dataclass(slots=True, frozen=True)
class DeveloperIdentity:
    developer_id: str
    email: str = ""
    name: str = ""
    hostname: str = ""


async def resolve_identity(runner: GitRunner | None) -> DeveloperIdentity:
    """Identify the developer from the login user, hostname and global git config."""

    email = name = ""
    if runner is not None:
        email = await runner.config_value("user.email")
        name = await runner.config_value("user.name")
    return DeveloperIdentity(
        developer_id=login_user(),
        email=email,
        name=name,
        hostname=socket.gethostname(),
    )


def build_payload(aggregate: DailyAggregate, identity: DeveloperIdentity) -> dict[str, Any]:
    """Render the report body. Command counts and connection counts stay on the host."""

    git = aggregate.git_activity
    return {
        "developer_id": identity.developer_id,
        "email": identity.email,
        "name": identity.name,
        "hostname": identity.hostname,
        "date": aggregate.date.isoformat(),
        "active_hours": aggregate.active_hours,
        "tools_used": list(aggregate.tools_used),
        "git_activity": {
            "total_commits": git.total_commits,
            "total_lines_added": git.total_lines_added,
            "total_lines_deleted": git.total_lines_deleted,
            "total_files_changed": git.total_files_changed,
            "repositories": [
                {
                    "name": repo.name,
                    "commits": repo.commits,
                    "lines_added": repo.lines_added,
                    "lines_deleted": repo.lines_deleted,
                    "files_changed": repo.files_changed,
                    "branches_worked": list(repo.branches_worked),
                }
                for repo in git.repositories
            ],
        },
        "development_activity": {
            "test_runs_detected": aggregate.development_activity.test_runs_detected,
            "build_commands_detected": aggregate.development_activity.build_commands_detected,
        },
        "project_context": list(aggregate.projects),
    }


__all__ = ["DeveloperIdentity", "build_payload", "resolve_identity"]
