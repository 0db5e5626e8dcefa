"""Crash-safe persistence for agent state under the data directory.

Every file is replaced atomically (write to a temporary sibling, fsync, then
``os.replace``) and read-modify-write sequences hold an exclusive ``flock`` on
a ``<name>.lock`` sibling. Unparseable files are treated as absent.
"""

from __future__ import annotations

import contextlib
import fcntl
import json
import logging
import os
import tempfile
from datetime import date, timedelta
from pathlib import Path
from typing import Iterator

from pydantic import ValidationError

from .errors import StateLockError
from .models import ArchiveRecord, DailyAggregate, ProcessingState
from .snapshot import HourlySnapshot

logger = logging.getLogger(__name__)

HOURLY_FILE = "hourly_data.json"
AGGREGATE_FILE = "daily_aggregate.json"
WATERMARK_FILE = "last_history_timestamp"
BASELINE_FILE = "connection_baseline.json"
LAST_SEND_FILE = "last_send_date"
CYCLE_LOCK_FILE = "agent.lock"
ARCHIVE_DIR = "archive"
ARCHIVE_PREFIX = "daily_"


def atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise


@contextlib.contextmanager
def exclusive_lock(path: Path, *, blocking: bool = True) -> Iterator[None]:
    """Hold an exclusive advisory lock on ``path`` for the duration of the block."""

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a+") as handle:
        flags = fcntl.LOCK_EX if blocking else fcntl.LOCK_EX | fcntl.LOCK_NB
        try:
            fcntl.flock(handle.fileno(), flags)
        except BlockingIOError as exc:
            raise StateLockError(f"{path} is held by another process") from exc
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def _archive_date(path: Path) -> date | None:
    stem = path.stem[len(ARCHIVE_PREFIX):]
    try:
        return date.fromisoformat(stem.split(".", 1)[0])
    except ValueError:
        return None


class StateStore:
    """Own every file the agent persists between invocations."""

    def __init__(self, data_dir: Path) -> None:
        self._root = Path(data_dir)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def archive_dir(self) -> Path:
        return self._root / ARCHIVE_DIR

    def _path(self, name: str) -> Path:
        return self._root / name

    def _lock_path(self, name: str) -> Path:
        return self._root / f"{name}.lock"

    def _read_text(self, name: str) -> str | None:
        try:
            return self._path(name).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (UnicodeDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable state file %s: %s", name, exc)
            return None

    def _read_json(self, name: str):
        raw = self._read_text(name)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring malformed state file %s: %s", name, exc)
            return None

    # -- cycle serialisation -------------------------------------------------

    @contextlib.contextmanager
    def cycle_lock(self) -> Iterator[None]:
        """Serialise whole invocations; raises ``StateLockError`` instead of waiting."""

        with exclusive_lock(self._path(CYCLE_LOCK_FILE), blocking=False):
            yield

    # -- processing state ----------------------------------------------------

    def load_watermark(self) -> int:
        raw = self._read_text(WATERMARK_FILE)
        if raw is None:
            return 0
        try:
            return max(0, int(raw.strip()))
        except ValueError:
            logger.warning("Ignoring malformed watermark %r", raw.strip()[:32])
            return 0

    def save_watermark(self, epoch: int) -> int:
        """Persist ``epoch`` unless a later watermark is already stored; return the stored value."""

        with exclusive_lock(self._lock_path(WATERMARK_FILE)):
            value = max(self.load_watermark(), int(epoch))
            atomic_write(self._path(WATERMARK_FILE), f"{value}\n")
        return value

    def load_baseline(self) -> frozenset[str]:
        document = self._read_json(BASELINE_FILE)
        if document is None:
            return frozenset()
        if not isinstance(document, list) or not all(isinstance(item, str) for item in document):
            logger.warning("Ignoring malformed connection baseline")
            return frozenset()
        return frozenset(document)

    def save_baseline(self, baseline: frozenset[str]) -> None:
        with exclusive_lock(self._lock_path(BASELINE_FILE)):
            atomic_write(self._path(BASELINE_FILE), json.dumps(sorted(baseline)))

    def load_last_send_date(self) -> date | None:
        raw = self._read_text(LAST_SEND_FILE)
        if raw is None:
            return None
        try:
            return date.fromisoformat(raw.strip())
        except ValueError:
            logger.warning("Ignoring malformed last-send marker %r", raw.strip()[:32])
            return None

    def mark_sent(self, day: date) -> None:
        with exclusive_lock(self._lock_path(LAST_SEND_FILE)):
            atomic_write(self._path(LAST_SEND_FILE), f"{day.isoformat()}\n")

    def load_state(self) -> ProcessingState:
        return ProcessingState(
            last_history_watermark=self.load_watermark(),
            connection_baseline=self.load_baseline(),
            last_send_date=self.load_last_send_date(),
        )

    def save_state(self, state: ProcessingState) -> ProcessingState:
        """Persist watermark and baseline; the send marker is only written by ``mark_sent``."""

        watermark = self.save_watermark(state.last_history_watermark)
        self.save_baseline(state.connection_baseline)
        return ProcessingState(
            last_history_watermark=watermark,
            connection_baseline=state.connection_baseline,
            last_send_date=self.load_last_send_date(),
        )

    # -- hourly and daily records ---------------------------------------------

    def write_hourly(self, snapshot: HourlySnapshot) -> None:
        atomic_write(self._path(HOURLY_FILE), snapshot.model_dump_json(indent=2))

    @contextlib.contextmanager
    def aggregate_lock(self) -> Iterator[None]:
        with exclusive_lock(self._lock_path(AGGREGATE_FILE)):
            yield

    def load_aggregate(self) -> DailyAggregate | None:
        raw = self._read_text(AGGREGATE_FILE)
        if raw is None:
            return None
        try:
            return DailyAggregate.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Ignoring malformed daily aggregate: %s", exc.errors()[:1])
            return None

    def save_aggregate(self, aggregate: DailyAggregate) -> None:
        atomic_write(self._path(AGGREGATE_FILE), aggregate.model_dump_json(indent=2))

    # -- archives ------------------------------------------------------------

    def write_archive(self, aggregate: DailyAggregate) -> ArchiveRecord:
        """Write a date-named copy of ``aggregate``. Existing archives are never replaced.

        A second archive for the same date gets a numeric suffix.
        """

        self.archive_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".archive.", dir=self.archive_dir)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(aggregate.model_dump_json(indent=2))
            handle.flush()
            os.fsync(handle.fileno())
        try:
            base = f"{ARCHIVE_PREFIX}{aggregate.date.isoformat()}"
            suffix = 0
            while True:
                name = f"{base}.json" if suffix == 0 else f"{base}.{suffix}.json"
                target = self.archive_dir / name
                try:
                    os.link(tmp_name, target)
                except FileExistsError:
                    suffix += 1
                    continue
                break
        finally:
            os.unlink(tmp_name)
        logger.info("Archived daily aggregate to %s", target.name)
        return ArchiveRecord(date=aggregate.date, path=target, aggregate=aggregate)

    def list_archives(self) -> list[Path]:
        if not self.archive_dir.is_dir():
            return []
        return sorted(self.archive_dir.glob(f"{ARCHIVE_PREFIX}*.json"))

    def load_archive(self, path: Path) -> DailyAggregate:
        return DailyAggregate.model_validate_json(Path(path).read_text(encoding="utf-8"))

    def prune_archives(self, retention_days: int, today: date) -> list[Path]:
        """Delete archives dated before ``today - retention_days``."""

        cutoff = today - timedelta(days=retention_days)
        removed: list[Path] = []
        for path in self.list_archives():
            archive_date = _archive_date(path)
            if archive_date is not None and archive_date < cutoff:
                path.unlink(missing_ok=True)
                removed.append(path)
        if removed:
            logger.info("Pruned %d archives older than %s", len(removed), cutoff.isoformat())
        return removed


__all__ = ["StateStore", "atomic_write", "exclusive_lock"]
