"""Collection cycle for the DevLake telemetry agent.

One invocation runs one cycle: take the cycle lock, sample every collector
concurrently, build the hourly snapshot, fold it into the daily aggregate and,
if today's report has not gone out yet, send it.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

from pydantic import ValidationError

from . import __version__
from .aggregate import DailyAggregator
from .collectors import (
    ActivityCollector,
    CommandActivity,
    ConnectionSample,
    ConnectionTracker,
    DevelopmentActivityDetector,
    GitActivityExtractor,
    ToolDetector,
    discover_repositories,
    scan_projects,
)
from .collectors.history import advance_watermark
from .config import TelemetrySettings, get_settings
from .errors import ClientRejectedError, StateLockError, TransportError
from .git import GitNotFoundError, GitRunner
from .models import DailyAggregate, DevelopmentActivity, GitActivityRecord, ProcessingState
from .payload import DeveloperIdentity, resolve_identity
from .signatures import SignatureLoadError, load_catalog
from .snapshot import HourlySnapshot, build_snapshot
from .state import StateStore
from .transport import SendResult, TransmissionClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


def configure_logging(level: str, log_file: Path | None = None) -> None:
    """Configure root logging for the agent, optionally teeing to ``log_file``."""

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


@dataclass(slots=True)
class CycleResult:
    skipped: bool = False
    snapshot: HourlySnapshot | None = None
    aggregate: DailyAggregate | None = None
    send: SendResult | None = None
    state: ProcessingState | None = None


class TelemetryAgent:
    """Wire collectors, aggregation and transmission for a single cycle."""

    def __init__(
        self,
        settings: TelemetrySettings,
        *,
        store: StateStore,
        activity: ActivityCollector,
        tools: ToolDetector,
        development: DevelopmentActivityDetector,
        connections: ConnectionTracker,
        git: GitActivityExtractor,
        transmission: TransmissionClient,
        git_runner: GitRunner | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._activity = activity
        self._tools = tools
        self._development = development
        self._connections = connections
        self._git = git
        self._transmission = transmission
        self._git_runner = git_runner
        self._clock = clock or (lambda: datetime.now().astimezone())
        self._identity: DeveloperIdentity | None = None

    @classmethod
    def from_settings(cls, settings: TelemetrySettings, **overrides: Any) -> "TelemetryAgent":
        store = overrides.pop("store", None) or StateStore(settings.data_dir)
        catalog = overrides.pop("catalog", None) or load_catalog(
            settings.signature_paths, developer_tools=settings.developer_tools
        )

        git_runner = overrides.pop("git_runner", None)
        if git_runner is None:
            try:
                git_runner = GitRunner()
            except GitNotFoundError as exc:
                logger.warning("Git activity disabled: %s", exc)

        activity = overrides.pop("activity", None) or ActivityCollector.for_home(
            settings.home_dir, exclude=settings.privacy.exclude_commands
        )
        components = {
            "activity": activity,
            "tools": overrides.pop("tools", None) or ToolDetector(catalog),
            "development": overrides.pop("development", None)
            or DevelopmentActivityDetector.from_catalog(activity.sources, catalog),
            "connections": overrides.pop("connections", None) or ConnectionTracker(catalog),
            "git": overrides.pop("git", None) or GitActivityExtractor(git_runner, author=settings.git_author),
            "transmission": overrides.pop("transmission", None)
            or TransmissionClient.from_settings(settings, store),
        }
        return cls(
            settings,
            store=store,
            git_runner=git_runner,
            **components,
            **overrides,
        )

    async def _bounded(self, name: str, work: Awaitable[T], fallback: T) -> T:
        """Await ``work`` with the collector timeout, returning ``fallback`` on timeout or error."""

        try:
            return await asyncio.wait_for(work, timeout=self._settings.collector_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("Collector %s timed out, using empty result", name)
        except Exception as exc:  # one collector must never abort the cycle
            logger.warning("Collector %s failed, using empty result: %s", name, exc)
        return fallback

    async def collect(self, state: ProcessingState, now: datetime) -> tuple[HourlySnapshot, ProcessingState]:
        """Run every collector concurrently and return the snapshot and the next state."""

        epoch = int(now.timestamp())
        watermark = state.last_history_watermark
        window_start = epoch - self._settings.collection_interval_seconds

        repositories = await self._bounded(
            "repositories",
            asyncio.to_thread(
                discover_repositories, self._settings.home_dir, max_depth=self._settings.project_scan_depth
            ),
            [],
        )

        commands, tools, projects, git_activity, development, connections = await asyncio.gather(
            self._bounded(
                "commands",
                asyncio.to_thread(self._activity.collect, watermark, epoch),
                CommandActivity(new_watermark=advance_watermark(watermark, epoch)),
            ),
            self._bounded("tools", asyncio.to_thread(self._tools.detect), []),
            self._bounded("projects", asyncio.to_thread(scan_projects, repositories, window_start), []),
            self._bounded("git", self._git.extract(repositories, window_start), GitActivityRecord()),
            self._bounded(
                "development",
                asyncio.to_thread(self._development.detect, watermark, epoch),
                DevelopmentActivity(),
            ),
            self._bounded(
                "connections",
                asyncio.to_thread(self._connections.sample, state.connection_baseline),
                ConnectionSample(baseline=state.connection_baseline),
            ),
        )

        snapshot = build_snapshot(
            now,
            commands=commands.commands,
            tools=tools,
            projects=projects,
            git_activity=git_activity,
            development_activity=development,
            connections=connections.counts,
        )
        next_state = ProcessingState(
            last_history_watermark=advance_watermark(watermark, commands.new_watermark),
            connection_baseline=connections.baseline,
            last_send_date=state.last_send_date,
        )
        return snapshot, next_state

    async def _resolve_identity(self) -> DeveloperIdentity:
        if self._identity is None:
            self._identity = await resolve_identity(self._git_runner)
        return self._identity

    def _send(self, aggregate: DailyAggregate, identity: DeveloperIdentity, today: date) -> SendResult | None:
        try:
            return self._transmission.send(aggregate, identity, today=today)
        except ClientRejectedError as exc:
            logger.error("Daily report for %s rejected: %s", aggregate.date.isoformat(), exc)
        except TransportError as exc:
            logger.error("Daily report for %s not delivered: %s", aggregate.date.isoformat(), exc)
        return None

    async def run_cycle(self, *, send: bool = True) -> CycleResult:
        try:
            with self._store.cycle_lock():
                return await self._run_locked(send=send)
        except StateLockError as exc:
            logger.warning("Another collection cycle is running, skipping this one: %s", exc)
            return CycleResult(skipped=True)

    async def _run_locked(self, *, send: bool) -> CycleResult:
        now = self._clock()
        today = now.date()
        logger.info("Collecting hourly telemetry data", extra={"version": __version__})

        state = self._store.load_state()
        snapshot, next_state = await self.collect(state, now)
        self._store.write_hourly(snapshot)
        persisted = self._store.save_state(next_state)

        identity = await self._resolve_identity() if send else None

        def flush_previous(previous: DailyAggregate) -> None:
            if identity is not None:
                self._send(previous, identity, today)

        aggregator = DailyAggregator(self._store, on_rollover=flush_previous)
        aggregate = aggregator.fold_snapshot(snapshot)

        result: SendResult | None = None
        if identity is not None:
            result = self._send(aggregate, identity, today)

        logger.info(
            "Collection cycle finished",
            extra={"active": snapshot.is_active, "sent": bool(result and result.status == "sent")},
        )
        return CycleResult(
            snapshot=snapshot,
            aggregate=aggregate,
            send=result,
            state=ProcessingState(
                last_history_watermark=persisted.last_history_watermark,
                connection_baseline=persisted.connection_baseline,
                last_send_date=self._store.load_last_send_date(),
            ),
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Collect privacy-safe developer telemetry and send a daily summary to DevLake."
    )
    parser.add_argument(
        "--no-send",
        action="store_true",
        help="Collect and aggregate only; never contact the webhook",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point invoked by the OS scheduler once per collection interval."""

    args = build_parser().parse_args(argv)
    try:
        settings = get_settings()
    except ValidationError as exc:
        print(f"Invalid telemetry configuration: {exc}", file=sys.stderr)
        return 2

    configure_logging(settings.log_level, settings.log_file)
    log = logging.getLogger(__name__)
    log.info("=== DevLake Telemetry Collector Starting ===")

    try:
        agent = TelemetryAgent.from_settings(settings)
    except SignatureLoadError as exc:
        log.error("Signature catalog could not be loaded: %s", exc)
        return 2

    try:
        asyncio.run(agent.run_cycle(send=not args.no_send))
    except Exception:
        log.exception("Collection cycle failed")
        return 1
    log.info("=== DevLake Telemetry Collector Finished ===")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
