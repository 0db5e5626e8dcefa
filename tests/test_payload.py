from __future__ import annotations

import asyncio
from datetime import date

from devlake_telemetry.git import GitExecutionResult
from devlake_telemetry.git.runner import FakeGitRunner
from devlake_telemetry.models import DailyAggregate, DevelopmentActivity, GitActivityRecord, RepositoryActivity
from devlake_telemetry.payload import DeveloperIdentity, build_payload, resolve_identity


def test_payload_matches_wire_format() -> None:
    aggregate = DailyAggregate(
        date=date(2026, 2, 19),
        hours_collected=[9, 10, 11],
        active_hours=2,
        commands={"git": 12, "kubectl": 3},
        tools_used=["docker", "vscode"],
        projects=["api"],
        git_activity=GitActivityRecord.from_repositories(
            [
                RepositoryActivity(
                    name="api",
                    commits=2,
                    lines_added=40,
                    lines_deleted=5,
                    files_changed=3,
                    branches_worked=["main"],
                )
            ]
        ),
        development_activity=DevelopmentActivity(test_runs_detected=4, build_commands_detected=1),
        connections={"github": 2},
    )
    identity = DeveloperIdentity(developer_id="alex", email="alex@example.com", name="Alex", hostname="box")

    payload = build_payload(aggregate, identity)

    assert payload == {
        "developer_id": "alex",
        "email": "alex@example.com",
        "name": "Alex",
        "hostname": "box",
        "date": "2026-02-19",
        "active_hours": 2,
        "tools_used": ["docker", "vscode"],
        "git_activity": {
            "total_commits": 2,
            "total_lines_added": 40,
            "total_lines_deleted": 5,
            "total_files_changed": 3,
            "repositories": [
                {
                    "name": "api",
                    "commits": 2,
                    "lines_added": 40,
                    "lines_deleted": 5,
                    "files_changed": 3,
                    "branches_worked": ["main"],
                }
            ],
        },
        "development_activity": {"test_runs_detected": 4, "build_commands_detected": 1},
        "project_context": ["api"],
    }


def test_resolve_identity_uses_git_config(monkeypatch) -> None:
    monkeypatch.setenv("SUDO_USER", "alex")
    fake = FakeGitRunner(
        [
            GitExecutionResult(args=(), returncode=0, stdout="alex@example.com\n", stderr=""),
            GitExecutionResult(args=(), returncode=1, stdout="", stderr=""),
        ]
    )

    identity = asyncio.run(resolve_identity(fake))

    assert identity.developer_id == "alex"
    assert identity.email == "alex@example.com"
    assert identity.name == ""
    assert fake.invocations[0] == ("config", "--global", "--get", "user.email")


def test_resolve_identity_without_git(monkeypatch) -> None:
    monkeypatch.setenv("SUDO_USER", "alex")
    identity = asyncio.run(resolve_identity(None))
    assert identity.email == ""
    assert identity.hostname
