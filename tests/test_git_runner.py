from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest

from devlake_telemetry.collectors.git_activity import GitActivityExtractor, normalize_branch, parse_numstat
from devlake_telemetry.git import GitExecutionResult, GitNotFoundError, GitRunner
from devlake_telemetry.git.runner import FakeGitRunner
from devlake_telemetry.git.utils import sanitize_environment

NUMSTAT = (
    "\x1eaaa111\trefs/heads/main\n"
    "\n"
    "10\t2\tsrc/app.py\n"
    "3\t0\tREADME.md\n"
    "\x1ebbb222\trefs/remotes/origin/feature/login\n"
    "\n"
    "-\t-\tassets/logo.png\n"
    "\x1eccc333\trefs/tags/v1.0\n"
    "\n"
    "1\t1\tsetup.cfg\n"
)


def _ok(stdout: str) -> GitExecutionResult:
    return GitExecutionResult(args=("log",), returncode=0, stdout=stdout, stderr="")


def test_git_runner_executes_script(tmp_path: Path) -> None:
    script = tmp_path / "git"
    script.write_text("#!/bin/sh\necho \"$@\"\n", encoding="utf-8")
    script.chmod(0o755)

    runner = GitRunner(script)
    result = asyncio.run(runner.log_numstat(tmp_path / "repo", 0, author="dev@example.com"))

    assert result.ok
    out = result.stdout.strip()
    assert out.startswith(f"-C {tmp_path / 'repo'} log --all --source --no-color --since=1970-01-01T00:00:00+00:00")
    assert "--numstat" in out
    assert out.endswith("--author=dev@example.com")


def test_config_value_returns_empty_on_failure(tmp_path: Path) -> None:
    script = tmp_path / "git"
    script.write_text("#!/bin/sh\nexit 1\n", encoding="utf-8")
    script.chmod(0o755)

    assert asyncio.run(GitRunner(script).config_value("user.email")) == ""


def test_cancelled_invocation_kills_git(tmp_path: Path) -> None:
    pidfile = tmp_path / "git.pid"
    script = tmp_path / "git"
    script.write_text(f"#!/bin/sh\necho $$ > \"{pidfile}\"\nexec sleep 30\n", encoding="utf-8")
    script.chmod(0o755)
    runner = GitRunner(script)

    with pytest.raises(asyncio.TimeoutError):
        asyncio.run(asyncio.wait_for(runner.log_numstat(tmp_path, 0), 1.0))

    pid = int(pidfile.read_text(encoding="utf-8"))
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)


def test_git_not_found(tmp_path: Path) -> None:
    with pytest.raises(GitNotFoundError):
        GitRunner(tmp_path / "missing")


def test_sanitize_environment_strips_repository_overrides(monkeypatch) -> None:
    monkeypatch.setenv("GIT_DIR", "/elsewhere/.git")
    env = sanitize_environment({"EXTRA": "1"})
    assert "GIT_DIR" not in env
    assert env["GIT_TERMINAL_PROMPT"] == "0"
    assert env["EXTRA"] == "1"


@pytest.mark.parametrize(
    "ref, expected",
    [
        ("refs/heads/main", "main"),
        ("refs/remotes/origin/feature/login", "feature/login"),
        ("refs/remotes/origin/HEAD", None),
        ("refs/tags/v1.0", None),
        ("HEAD", None),
    ],
)
def test_normalize_branch(ref: str, expected: str | None) -> None:
    assert normalize_branch(ref) == expected


def test_parse_numstat_counts_commits_lines_and_binary_files() -> None:
    record = parse_numstat("api", NUMSTAT)

    assert record.commits == 3
    assert record.lines_added == 14
    assert record.lines_deleted == 3
    assert record.files_changed == 4
    assert record.branches_worked == ["feature/login", "main"]


def test_extractor_totals_match_repository_sums(tmp_path: Path) -> None:
    fake = FakeGitRunner([_ok(NUMSTAT), _ok(""), _ok("\x1eddd444\trefs/heads/dev\n\n5\t5\tmain.go\n")])
    extractor = GitActivityExtractor(fake, author="dev@example.com")
    repos = [tmp_path / "api", tmp_path / "idle", tmp_path / "svc"]

    record = asyncio.run(extractor.extract(repos, 1_771_500_000))

    assert [repo.name for repo in record.repositories] == ["api", "svc"]
    assert record.total_commits == 4
    assert record.total_lines_added == 19
    assert record.total_files_changed == 5
    assert len(fake.invocations) == 3
    assert all(call[-1] == "--author=dev@example.com" for call in fake.invocations)


def test_extractor_skips_failed_repositories(tmp_path: Path) -> None:
    fake = FakeGitRunner([GitExecutionResult(args=(), returncode=128, stdout="", stderr="not a git repository")])
    record = asyncio.run(GitActivityExtractor(fake).extract([tmp_path / "broken"], 0))
    assert record.total_commits == 0
    assert record.repositories == []


def test_extractor_without_git_returns_empty_record(tmp_path: Path) -> None:
    record = asyncio.run(GitActivityExtractor(None).extract([tmp_path], 0))
    assert record.total_commits == 0
