"""DevLake telemetry diagnostics CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
from datetime import date

from devlake_telemetry.config import TelemetrySettings, get_settings
from devlake_telemetry.git import GitNotFoundError, GitRunner
from devlake_telemetry.models import DailyAggregate
from devlake_telemetry.payload import build_payload, resolve_identity
from devlake_telemetry.signatures import SignatureLoadError, load_catalog
from devlake_telemetry.signatures.loader import dump_catalog
from devlake_telemetry.state import StateStore


def load_store(settings: TelemetrySettings) -> StateStore:
    return StateStore(settings.data_dir)


def load_aggregate_or_exit(store: StateStore) -> DailyAggregate:
    aggregate = store.load_aggregate()
    if aggregate is None:
        print(f"No daily aggregate under {store.root}")
        raise SystemExit(1)
    return aggregate


def cmd_state(args: argparse.Namespace) -> None:
    settings = get_settings()
    store = load_store(settings)
    state = store.load_state()
    last_send = state.last_send_date
    print(
        json.dumps(
            {
                "data_dir": str(store.root),
                "last_history_watermark": state.last_history_watermark,
                "tracked_connections": len(state.connection_baseline),
                "last_send_date": last_send.isoformat() if last_send else None,
                "sent_today": last_send == date.today(),
            },
            indent=2,
        )
    )


def cmd_today(args: argparse.Namespace) -> None:
    settings = get_settings()
    store = load_store(settings)
    aggregate = load_aggregate_or_exit(store)
    if args.json:
        print(aggregate.model_dump_json(indent=2))
        return
    git = aggregate.git_activity
    print(f"{aggregate.date.isoformat()}: {aggregate.active_hours} active of {len(aggregate.hours_collected)} hours")
    print(f"  tools: {', '.join(aggregate.tools_used) or '-'}")
    print(f"  projects: {', '.join(aggregate.projects) or '-'}")
    print(f"  commits: {git.total_commits} (+{git.total_lines_added}/-{git.total_lines_deleted})")
    top = sorted(aggregate.commands.items(), key=lambda item: (-item[1], item[0]))[:10]
    for name, count in top:
        print(f"  {count:>5}  {name}")


def cmd_archives(args: argparse.Namespace) -> None:
    settings = get_settings()
    store = load_store(settings)
    paths = store.list_archives()
    if args.limit is not None and args.limit > 0:
        paths = paths[-args.limit :]
    payload = []
    for path in paths:
        aggregate = store.load_archive(path)
        payload.append(
            {
                "file": path.name,
                "date": aggregate.date.isoformat(),
                "active_hours": aggregate.active_hours,
                "total_commits": aggregate.git_activity.total_commits,
            }
        )
    print(json.dumps(payload, indent=2))


def cmd_payload(args: argparse.Namespace) -> None:
    """Print the body the next send would POST, without sending it."""

    settings = get_settings()
    store = load_store(settings)
    aggregate = load_aggregate_or_exit(store)
    try:
        runner: GitRunner | None = GitRunner()
    except GitNotFoundError:
        runner = None
    identity = asyncio.run(resolve_identity(runner))
    print(json.dumps(build_payload(aggregate, identity), indent=2))


def cmd_signatures(args: argparse.Namespace) -> None:
    settings = get_settings()
    try:
        catalog = load_catalog(settings.signature_paths, developer_tools=settings.developer_tools)
    except SignatureLoadError as exc:
        print(f"Signature catalog invalid: {exc}")
        raise SystemExit(1)
    print(json.dumps(dump_catalog(catalog), indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="DevLake telemetry diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_state = sub.add_parser("state", help="Show watermark, baseline size and send marker")
    p_state.set_defaults(func=cmd_state)

    p_today = sub.add_parser("today", help="Summarise the current daily aggregate")
    p_today.add_argument("--json", action="store_true", help="Output JSON")
    p_today.set_defaults(func=cmd_today)

    p_archives = sub.add_parser("archives", help="List archived daily aggregates")
    p_archives.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N archives",
    )
    p_archives.set_defaults(func=cmd_archives)

    p_payload = sub.add_parser("payload", help="Preview the webhook body for the current aggregate")
    p_payload.set_defaults(func=cmd_payload)

    p_signatures = sub.add_parser("signatures", help="Dump the merged signature catalog")
    p_signatures.set_defaults(func=cmd_signatures)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
