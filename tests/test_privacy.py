from __future__ import annotations

import pytest

from devlake_telemetry.privacy import DENYLIST, filter_command, is_allowed, tally_commands


@pytest.mark.parametrize(
    "line, expected",
    [
        ("git status", "git"),
        ("  ls -la  ", "ls"),
        ("sudo systemctl restart nginx", "systemctl"),
        ("kubectl get pods -n prod", "kubectl"),
    ],
)
def test_filter_keeps_only_the_command_name(line: str, expected: str) -> None:
    assert filter_command(line) == expected


@pytest.mark.parametrize(
    "line",
    [
        "",
        "   ",
        "# a comment",
        "'quoted'",
        "\"quoted\"",
        "print(x)",
        "x=1",
        "foo.bar()",
        "import os",
        "from x import y",
        "sudo",
        "os.path.join",
        "user",
    ],
)
def test_filter_rejects_code_like_lines(line: str) -> None:
    assert filter_command(line) is None


def test_filter_rejects_non_strings() -> None:
    assert filter_command(None) is None
    assert filter_command(42) is None


def test_denylist_applies_after_privilege_prefix() -> None:
    assert filter_command("sudo import foo") is None
    assert "import" in DENYLIST


def test_exclude_list_drops_configured_commands() -> None:
    assert filter_command("ssh host", exclude=["ssh"]) is None
    assert is_allowed("ssh host")
    assert not is_allowed("ssh host", exclude={"ssh"})


def test_tally_counts_surviving_commands() -> None:
    lines = ["git status", "git push", "print('x')", "ls", "# note", "sudo git log", None]
    counts = tally_commands(lines, exclude=["ls"])
    assert dict(counts) == {"git": 3}
