from __future__ import annotations

import os
import time
from pathlib import Path
from types import SimpleNamespace

import psutil

from devlake_telemetry.collectors.connections import ConnectionTracker, endpoint_address, endpoint_id
from devlake_telemetry.collectors.devactivity import DevelopmentActivityDetector
from devlake_telemetry.collectors.history import HistoryBatch
from devlake_telemetry.collectors.projects import discover_repositories, scan_projects
from devlake_telemetry.collectors.tools import ToolDetector, process_descriptions
from devlake_telemetry.signatures import load_default_catalog


def _proc(name: str, cmdline: list[str] | None = None) -> SimpleNamespace:
    return SimpleNamespace(info={"name": name, "cmdline": cmdline or []})


def _conn(pid: int, address: str, port: int, status: str = psutil.CONN_ESTABLISHED) -> SimpleNamespace:
    return SimpleNamespace(pid=pid, raddr=(address, port), status=status)


class StaticSource:
    name = "static"

    def __init__(self, entries: list[str]) -> None:
        self._entries = entries

    def collect(self, watermark: int, now: int) -> HistoryBatch:
        return HistoryBatch(entries=list(self._entries), new_watermark=max(watermark, now))


def test_process_descriptions_reads_name_and_executable_only() -> None:
    def fake_iter(attrs):
        assert attrs == ["name", "cmdline"]
        return iter([_proc("python3", ["/usr/bin/python3", "secret.py", "--token=abc"]), _proc("", [])])

    assert process_descriptions(fake_iter) == ["python3 /usr/bin/python3"]


def test_tool_detector_matches_catalog() -> None:
    processes = [
        _proc("code", ["/usr/share/code/code"]),
        _proc("dockerd", ["/usr/bin/dockerd"]),
        _proc("bash", ["/bin/bash"]),
    ]
    detector = ToolDetector(load_default_catalog(), process_iter=lambda attrs: iter(processes))

    assert detector.detect() == ["docker", "vscode"]


def test_tool_detector_respects_developer_tools_restriction() -> None:
    catalog = load_default_catalog().restrict_tools(["docker"])
    processes = [_proc("code", ["/usr/share/code/code"]), _proc("docker", ["/usr/bin/docker"])]
    detector = ToolDetector(catalog, process_iter=lambda attrs: iter(processes))

    assert detector.detect() == ["docker"]


def test_tool_detector_returns_empty_when_process_table_unreadable() -> None:
    def denied(attrs):
        raise psutil.AccessDenied()

    assert ToolDetector(load_default_catalog(), process_iter=denied).detect() == []


def test_discover_repositories_respects_depth_and_skips(tmp_path: Path) -> None:
    (tmp_path / "work" / "api" / ".git").mkdir(parents=True)
    (tmp_path / "work" / "api" / "vendor" / "lib" / ".git").mkdir(parents=True)
    (tmp_path / "node_modules" / "pkg" / ".git").mkdir(parents=True)
    (tmp_path / ".cache" / "repo" / ".git").mkdir(parents=True)
    (tmp_path / "a" / "b" / "c" / "d" / "deep" / ".git").mkdir(parents=True)
    (tmp_path / "dotfiles" / ".git").mkdir(parents=True)

    repos = discover_repositories(tmp_path, max_depth=4)

    assert repos == [tmp_path / "dotfiles", tmp_path / "work" / "api"]


def test_dotfiles_repository_at_home_does_not_hide_projects(tmp_path: Path) -> None:
    (tmp_path / ".git").mkdir()
    (tmp_path / "work" / "api" / ".git").mkdir(parents=True)
    (tmp_path / "work" / "api" / "libs" / "sub" / ".git").mkdir(parents=True)

    repos = discover_repositories(tmp_path, max_depth=4)

    assert repos == [tmp_path / "work" / "api"]


def test_nested_repositories_are_reported_separately(tmp_path: Path) -> None:
    (tmp_path / "mono" / ".git").mkdir(parents=True)
    (tmp_path / "mono" / "plugin" / ".git").mkdir(parents=True)

    assert discover_repositories(tmp_path, max_depth=4) == [tmp_path / "mono", tmp_path / "mono" / "plugin"]


def test_activity_check_skips_hidden_vendor_and_nested_repositories(tmp_path: Path) -> None:
    repo = tmp_path / "api"
    (repo / ".git").mkdir(parents=True)
    for relative in ("main.py", ".cache/blob", "node_modules/pkg/index.js", "plugin/.git/HEAD", "plugin/mod.py"):
        target = repo / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text("x\n", encoding="utf-8")
    old = time.time() - 7200
    os.utime(repo / "main.py", (old, old))

    assert scan_projects([repo], time.time() - 3600) == []
    assert scan_projects([repo / "plugin"], time.time() - 3600) == ["plugin"]


def test_scan_projects_reports_recently_modified_repositories(tmp_path: Path) -> None:
    fresh = tmp_path / "fresh"
    stale = tmp_path / "stale"
    for repo in (fresh, stale):
        (repo / ".git").mkdir(parents=True)
        (repo / "main.py").write_text("x = 1\n", encoding="utf-8")
    old = time.time() - 7200
    os.utime(stale / "main.py", (old, old))
    (stale / ".git" / "index").write_text("", encoding="utf-8")

    assert scan_projects([fresh, stale], time.time() - 3600) == ["fresh"]


def test_development_detector_counts_tests_before_builds() -> None:
    detector = DevelopmentActivityDetector.from_catalog(
        [
            StaticSource(
                [
                    "pytest -q",
                    "go test ./...",
                    "sudo make test",
                    "go build ./cmd/app",
                    "npm run build",
                    "docker build -t app .",
                    "git status",
                ]
            )
        ],
        load_default_catalog(),
    )

    activity = detector.detect(0, 100)

    assert activity.test_runs_detected == 3
    assert activity.build_commands_detected == 3


def test_endpoint_identifier_round_trip() -> None:
    identifier = endpoint_id(42, "140.82.112.3", 443)
    assert identifier == "42|140.82.112.3:443"
    assert endpoint_address(identifier) == "140.82.112.3"


def test_connection_tracker_counts_only_new_endpoints() -> None:
    resolved = {"140.82.112.3": "lb-140-82-112-3-iad.github.com", "104.18.32.47": "api.openai.com"}
    connections = [
        _conn(10, "140.82.112.3", 443),
        _conn(11, "104.18.32.47", 443),
        _conn(12, "10.0.0.5", 22),
        _conn(13, "140.82.112.4", 443, status=psutil.CONN_TIME_WAIT),
    ]
    lookups: list[str] = []

    def resolver(address: str) -> str:
        lookups.append(address)
        return resolved.get(address, address)

    tracker = ConnectionTracker(
        load_default_catalog(), connections_fn=lambda kind: list(connections), resolver=resolver
    )

    first = tracker.sample(frozenset())
    second = tracker.sample(first.baseline)

    assert first.counts == {"github": 1, "openai": 1}
    assert first.baseline == frozenset({"10|140.82.112.3:443", "11|104.18.32.47:443"})
    assert second.counts == {}
    assert second.baseline == first.baseline
    assert sorted(lookups) == ["104.18.32.47", "140.82.112.3"]


def test_connection_tracker_keeps_baseline_when_table_unreadable() -> None:
    def denied(kind):
        raise psutil.AccessDenied()

    tracker = ConnectionTracker(load_default_catalog(), connections_fn=denied, resolver=lambda a: a)
    sample = tracker.sample(frozenset({"1|1.2.3.4:443"}))

    assert sample.counts == {}
    assert sample.baseline == frozenset({"1|1.2.3.4:443"})


def test_connection_tracker_empty_table_resets_baseline() -> None:
    tracker = ConnectionTracker(load_default_catalog(), connections_fn=lambda kind: [], resolver=lambda a: a)
    sample = tracker.sample(frozenset({"1|1.2.3.4:443"}))

    assert sample.counts == {}
    assert sample.baseline == frozenset()
