from __future__ import annotations

import signal

from codexdesk.shared.services import process_cleanup
from codexdesk.shared.services.process_cleanup import (
    ProcessInfo,
    find_stale_processes,
    is_managed_candidate,
    parse_process_table,
)

PS_OUTPUT = """
    1     0 /sbin/init
  500     1 codex exec --sandbox workspace-write fix the tests
  600  4242 codex exec --sandbox workspace-write live run
  700  9999 codex exec --sandbox read-only parent gone
  800     1 codex --version
  900     1 vim codex-stream.log
 4242     1 python -m codexdesk.app
garbage line
"""


def test_parse_process_table() -> None:
    table = parse_process_table(PS_OUTPUT)

    assert table[500] == ProcessInfo(
        pid=500, ppid=1, args="codex exec --sandbox workspace-write fix the tests",
    )
    assert set(table) == {1, 500, 600, 700, 800, 900, 4242}


def test_is_managed_candidate() -> None:
    assert is_managed_candidate("/usr/bin/codex exec --sandbox workspace-write hi")
    assert not is_managed_candidate("codex --version")
    assert not is_managed_candidate("vim codex-stream.log")


def test_find_stale_processes_skips_live_children() -> None:
    table = parse_process_table(PS_OUTPUT)

    stale = find_stale_processes(table, current_pid=4242)

    assert sorted(p.pid for p in stale) == [500, 700]


def test_cleanup_signals_stale_processes(monkeypatch) -> None:
    killed: list[tuple[int, int]] = []
    messages: list[str] = []

    def fake_kill(pid: int, sig: int) -> None:
        if pid == 700:
            raise ProcessLookupError(pid)
        killed.append((pid, sig))

    monkeypatch.setattr(
        process_cleanup, "_list_processes", lambda: parse_process_table(PS_OUTPUT),
    )
    monkeypatch.setattr(process_cleanup.os, "kill", fake_kill)

    count = process_cleanup.cleanup_stale_codex_processes(
        current_pid=4242, log=messages.append,
    )

    assert count == 1
    assert killed == [(500, signal.SIGTERM)]
    assert len(messages) == 1 and "pid=500" in messages[0]


def test_unsandboxed_exec_is_not_a_candidate() -> None:
    # Every run codexdesk spawns passes --sandbox; hand-started sessions may not.
    assert not is_managed_candidate("codex exec fix the tests")
    assert not is_managed_candidate("/usr/local/bin/codex exec -m o3 hi")

    table = parse_process_table("  510     1 codex exec fix the tests\n")
    assert find_stale_processes(table, current_pid=4242) == []
