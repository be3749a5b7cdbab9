"""Best-effort cleanup for stale Codex subprocesses.

This targets orphaned ``codex exec`` processes that were spawned by a
previous codexdesk run but outlived it (e.g. after a crash).
"""

from __future__ import annotations

import os
import re
import signal
import subprocess
from dataclasses import dataclass
from typing import Callable

# codexdesk always passes --sandbox, so bare `codex exec` sessions never match.
_MANAGED_PATTERNS = (
    r"\bcodex\b.*\bexec\b.*--sandbox\b",
)


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    ppid: int
    args: str


def parse_process_table(output: str) -> dict[int, ProcessInfo]:
    """Parse `ps -eo pid=,ppid=,args=` output into a table keyed by PID."""
    table: dict[int, ProcessInfo] = {}
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        parts = line.split(maxsplit=2)
        if len(parts) < 3:
            continue
        try:
            pid = int(parts[0])
            ppid = int(parts[1])
        except ValueError:
            continue
        table[pid] = ProcessInfo(pid=pid, ppid=ppid, args=parts[2])
    return table


def _list_processes() -> dict[int, ProcessInfo]:
    out = subprocess.check_output(
        ["ps", "-eo", "pid=,ppid=,args="],
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return parse_process_table(out)


def is_managed_candidate(args: str) -> bool:
    """Match processes codexdesk spawns and may reap once orphaned."""
    return any(re.search(pat, args) for pat in _MANAGED_PATTERNS)


def find_stale_processes(
    table: dict[int, ProcessInfo],
    current_pid: int,
) -> list[ProcessInfo]:
    """Managed processes whose parent is init (PID 1) or gone."""
    stale = []
    for proc in table.values():
        if proc.pid == current_pid:
            continue
        if not is_managed_candidate(proc.args):
            continue
        if proc.ppid == current_pid:
            continue
        if proc.ppid == 1 or proc.ppid not in table:
            stale.append(proc)
    return stale


def cleanup_stale_codex_processes(
    *,
    current_pid: int | None = None,
    log: Callable[[str], None] | None = None,
) -> int:
    """SIGTERM orphaned Codex processes. Returns how many were signalled."""
    pid = current_pid or os.getpid()
    logger = log or (lambda _: None)
    killed = 0

    for proc in find_stale_processes(_list_processes(), pid):
        try:
            os.kill(proc.pid, signal.SIGTERM)
            killed += 1
            logger(
                f"Reaped stale codex process pid={proc.pid} "
                f"ppid={proc.ppid} cmd={proc.args[:180]}"
            )
        except ProcessLookupError:
            continue
        except PermissionError as exc:
            logger(
                f"Failed to reap stale process pid={proc.pid}: "
                f"{type(exc).__name__}: {exc}"
            )

    return killed
