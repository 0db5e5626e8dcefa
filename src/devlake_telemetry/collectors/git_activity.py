"""Extract commit churn from local repositories."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Sequence

from ..git import GitRunner
from ..git.runner import COMMIT_MARKER
from ..models import GitActivityRecord, RepositoryActivity

logger = logging.getLogger(__name__)

MAX_CONCURRENT_REPOSITORIES = 4


def normalize_branch(ref: str) -> str | None:
    """Map a ``%S`` source ref to a branch name; tags and bare ``HEAD`` are ignored."""

    ref = ref.strip()
    if ref.startswith("refs/heads/"):
        return ref[len("refs/heads/"):] or None
    if ref.startswith("refs/remotes/"):
        _, _, branch = ref[len("refs/remotes/"):].partition("/")
        return branch if branch and branch != "HEAD" else None
    return None


def parse_numstat(name: str, output: str) -> RepositoryActivity:
    """Fold ``git log --numstat`` output into one repository record.

    Binary files appear as ``-\\t-\\t<path>`` and count as changed with no lines.
    Paths are discarded as soon as a row is counted.
    """

    commits = added = deleted = files = 0
    branches: set[str] = set()
    for line in output.splitlines():
        if line.startswith(COMMIT_MARKER):
            commits += 1
            _, _, source = line[len(COMMIT_MARKER):].partition("\t")
            branch = normalize_branch(source)
            if branch:
                branches.add(branch)
            continue
        parts = line.split("\t", 2)
        if len(parts) != 3:
            continue
        plus, minus, _ = parts
        files += 1
        added += int(plus) if plus.isdigit() else 0
        deleted += int(minus) if minus.isdigit() else 0
    return RepositoryActivity(
        name=name,
        commits=commits,
        lines_added=added,
        lines_deleted=deleted,
        files_changed=files,
        branches_worked=sorted(branches),
    )


class GitActivityExtractor:
    """Run a bounded-window log query per repository and total the results."""

    def __init__(self, runner: GitRunner | None, *, author: str | None = None) -> None:
        self._runner = runner
        self._author = author
        self._semaphore = asyncio.Semaphore(MAX_CONCURRENT_REPOSITORIES)

    async def _repository_activity(
        self, runner: GitRunner, repository: Path, since_epoch: int
    ) -> RepositoryActivity | None:
        async with self._semaphore:
            result = await runner.log_numstat(repository, since_epoch, author=self._author)
        if not result.ok:
            logger.debug("git log failed for %s: %s", repository.name, result.stderr.strip())
            return None
        record = parse_numstat(repository.name, result.stdout)
        return record if record.commits else None

    async def extract(self, repositories: Sequence[Path], since_epoch: int) -> GitActivityRecord:
        runner = self._runner
        if runner is None or not repositories:
            return GitActivityRecord()
        records = await asyncio.gather(
            *(self._repository_activity(runner, Path(repo), since_epoch) for repo in repositories)
        )
        return GitActivityRecord.from_repositories(record for record in records if record is not None)


__all__ = ["GitActivityExtractor", "normalize_branch", "parse_numstat"]
