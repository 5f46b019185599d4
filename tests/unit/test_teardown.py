from __future__ import annotations

import subprocess
import sys
import time
import uuid
from pathlib import Path
from typing import Any

import psutil
import pytest

from cloudemu.harness.launcher import ProcessHandle
from cloudemu.harness.teardown import TeardownManager, find_processes


class FakeProc:
    """psutil.Process stand-in recording kill() calls."""

    def __init__(self, pid: int, error: Exception | None = None) -> None:
        self.pid = pid
        self.error = error
        self.killed = 0

    def kill(self) -> None:
        if self.error is not None:
            raise self.error
        self.killed += 1

    def wait(self, timeout: float | None = None) -> int:
        return 0


@pytest.fixture
def sleeper() -> Any:
    """A real child process carrying a unique marker in its command line."""
    marker = f"cloudemu-marker-{uuid.uuid4().hex}"
    proc = subprocess.Popen(
        [sys.executable, "-c", "import time; time.sleep(60)", marker],
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )
    # Wait until the child has exec'd and shows the marker
    deadline = time.monotonic() + 10
    while not find_processes(marker) and time.monotonic() < deadline:
        time.sleep(0.05)
    yield proc, marker
    if proc.poll() is None:
        proc.kill()
    proc.wait(timeout=5)


def test_cleanup_kills_matching_process(sleeper: Any) -> None:
    """A process whose command line contains the pattern is killed."""
    proc, marker = sleeper
    assert [p.pid for p in find_processes(marker)] == [proc.pid]

    killed = TeardownManager(kill_timeout=5).cleanup([marker])

    assert killed == [proc.pid]
    assert find_processes(marker) == []


def test_cleanup_is_idempotent(sleeper: Any) -> None:
    """A second cleanup finds nothing and does not fail."""
    _, marker = sleeper
    manager = TeardownManager(kill_timeout=5)
    assert len(manager.cleanup([marker])) == 1
    assert manager.cleanup([marker]) == []


def test_cleanup_without_matches_is_not_an_error() -> None:
    assert TeardownManager().cleanup([f"no-such-process-{uuid.uuid4().hex}"]) == []


def test_single_pattern_string_is_accepted(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[str] = []

    def fake_find(pattern: str) -> list[FakeProc]:
        seen.append(pattern)
        return []

    monkeypatch.setattr("cloudemu.harness.teardown.find_processes", fake_find)
    TeardownManager().cleanup("cloud_spanner_emulator/emulator_main")
    assert seen == ["cloud_spanner_emulator/emulator_main"]


def test_every_pattern_is_searched_and_failures_are_skipped(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """
    Verify that cleanup:
    - kills the matches of every pattern (emulator and gateway)
    - skips processes it may not kill, without raising
    - ignores processes that are already gone
    """
    main = FakeProc(10)
    gateway = FakeProc(11)
    foreign = FakeProc(12, error=psutil.AccessDenied(12))
    gone = FakeProc(13, error=psutil.NoSuchProcess(13))
    by_pattern = {
        "emulator_main": [main, foreign],
        "gateway_main": [gateway, gone],
    }
    monkeypatch.setattr(
        "cloudemu.harness.teardown.find_processes", lambda pattern: by_pattern[pattern]
    )

    killed = TeardownManager().cleanup(["emulator_main", "gateway_main"])

    assert killed == [10, 11]
    assert main.killed == 1
    assert gateway.killed == 1


def test_kill_tracked_removes_pid_file(sleeper: Any, tmp_path: Path) -> None:
    """The tracked process is killed and its pid file removed."""
    proc, _ = sleeper
    pid_file = tmp_path / "pubsub-emulator.pid"
    pid_file.write_text(str(proc.pid), encoding="utf-8")
    handle = ProcessHandle(
        name="pubsub",
        pid=proc.pid,
        args=(),
        log_path=tmp_path / "pubsub-emulator.log",
        pid_file=pid_file,
        popen=proc,
    )

    killed = TeardownManager(kill_timeout=5).kill_tracked(handle)

    assert proc.pid in killed
    assert proc.poll() is not None
    assert not pid_file.exists()


def test_cleanup_with_handle_does_not_kill_twice(
    sleeper: Any, tmp_path: Path
) -> None:
    """A tracked process that also matches a pattern is killed once."""
    proc, marker = sleeper
    handle = ProcessHandle(
        name="x",
        pid=proc.pid,
        args=(),
        log_path=tmp_path / "x.log",
        pid_file=tmp_path / "x.pid",
        popen=proc,
    )
    assert TeardownManager(kill_timeout=5).cleanup([marker], handle=handle) == [proc.pid]
