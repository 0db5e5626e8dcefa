"""Async runner for the git CLI."""

from __future__ import annotations

import asyncio
import contextlib
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from .utils import sanitize_environment

# Record separator marking the start of each commit header in log output.
COMMIT_MARKER = "\x1e"
LOG_FORMAT = "%x1e%H%x09%S"


class GitRunnerError(RuntimeError):
    """Base class for git runner errors."""


class GitNotFoundError(GitRunnerError):
    """Raised when the git executable cannot be located."""


@dataclass(slots=True)
class GitExecutionResult:
    """Holds the outcome of a git invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class GitRunner:
    """Execute read-only git commands asynchronously."""

    def __init__(self, executable: Path | None = None) -> None:
        self._executable_path = self._resolve_executable(executable)

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise GitNotFoundError(f"git executable not found at {candidate}")

        binary = shutil.which("git")
        if binary is None:
            raise GitNotFoundError("git executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def log_numstat(
        self,
        repository: Path,
        since_epoch: int,
        *,
        author: str | None = None,
    ) -> GitExecutionResult:
        since = datetime.fromtimestamp(since_epoch, tz=timezone.utc).isoformat()
        args: list[str] = [
            "-C",
            str(repository),
            "log",
            "--all",
            "--source",
            "--no-color",
            f"--since={since}",
            "--numstat",
            f"--format={LOG_FORMAT}",
        ]
        if author:
            args.append(f"--author={author}")
        return await self._invoke(*args)

    async def config_value(self, key: str) -> str:
        """Return a global config value, or an empty string when unset."""

        result = await self._invoke("config", "--global", "--get", key)
        return result.stdout.strip() if result.ok else ""

    async def _invoke(self, *args: str) -> GitExecutionResult:
        cmd = [str(self._executable_path), *args]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment(),
        )
        try:
            stdout_bytes, stderr_bytes = await process.communicate()
        except asyncio.CancelledError:
            # A timed-out cycle must not leave git running behind it.
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            raise
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return GitExecutionResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


class FakeGitRunner(GitRunner):
    """Test double that simulates git responses."""

    def __init__(self, responses: Iterable[GitExecutionResult] | None = None) -> None:  # type: ignore[override]
        self._responses = list(responses or [])
        self._invocations: list[tuple[str, ...]] = []
        self._executable_path = Path("/tmp/fake-git")

    async def _invoke(self, *args: str) -> GitExecutionResult:  # type: ignore[override]
        self._invocations.append(tuple(args))
        if self._responses:
            return self._responses.pop(0)
        return GitExecutionResult(args=tuple(args), returncode=0, stdout="", stderr="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations
