"""Discover git repositories under the home tree and report recently touched ones."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

DEFAULT_SCAN_DEPTH = 4
SKIP_DIRECTORIES = frozenset(
    {
        "node_modules",
        "vendor",
        "venv",
        "__pycache__",
        "Library",
        "target",
        "build",
        "dist",
    }
)


def _pruned(names: Iterable[str]) -> list[str]:
    return [name for name in names if not name.startswith(".") and name not in SKIP_DIRECTORIES]


def _is_repository(path: str) -> bool:
    return os.path.isdir(os.path.join(path, ".git"))


def discover_repositories(home: Path, *, max_depth: int = DEFAULT_SCAN_DEPTH) -> list[Path]:
    """Return repository roots whose ``.git`` directory sits at most ``max_depth`` below ``home``.

    The walk continues below a repository, so nested checkouts are reported too.
    ``home`` itself is never a project, even when it is a dotfiles checkout.
    """

    home = Path(home)
    if not home.is_dir():
        return []

    repositories: list[Path] = []
    for root, dirnames, _ in os.walk(home, onerror=lambda exc: logger.debug("Skipping %s", exc)):
        current = Path(root)
        depth = len(current.relative_to(home).parts)
        if depth > 0 and ".git" in dirnames and depth + 1 <= max_depth:
            repositories.append(current)
        if depth + 2 > max_depth:
            dirnames[:] = []
        else:
            dirnames[:] = _pruned(dirnames)
    return sorted(repositories)


def has_recent_activity(repository: Path, since_epoch: float) -> bool:
    """True when a regular file of ``repository`` was modified at or after ``since_epoch``.

    Hidden and vendor directories are skipped, as are nested repositories,
    which are reported on their own.
    """

    for root, dirnames, filenames in os.walk(repository, onerror=lambda exc: None):
        dirnames[:] = [name for name in _pruned(dirnames) if not _is_repository(os.path.join(root, name))]
        for filename in filenames:
            path = os.path.join(root, filename)
            try:
                if os.path.isfile(path) and os.stat(path).st_mtime >= since_epoch:
                    return True
            except OSError:
                continue
    return False


def scan_projects(repositories: Iterable[Path], since_epoch: float) -> list[str]:
    """Return the sorted directory names of repositories with recent file changes."""

    active = {repo.name for repo in repositories if has_recent_activity(repo, since_epoch)}
    return sorted(active)


__all__ = [
    "DEFAULT_SCAN_DEPTH",
    "SKIP_DIRECTORIES",
    "discover_repositories",
    "has_recent_activity",
    "scan_projects",
]
