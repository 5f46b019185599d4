from __future__ import annotations

import time
from pathlib import Path
from typing import Any, cast

import pytest

from cloudemu.errors import ReadinessError
from cloudemu.harness.launcher import ProcessHandle
from cloudemu.harness.readiness import ReadinessWaiter, port_probe


class FakePopen:
    def __init__(self, returncode: int | None = None) -> None:
        self.returncode = returncode

    def poll(self) -> int | None:
        return self.returncode


def make_handle(tmp_path: Path, returncode: int | None = None) -> ProcessHandle:
    return ProcessHandle(
        name="pubsub",
        pid=99,
        args=("gcloud",),
        log_path=tmp_path / "pubsub-emulator.log",
        pid_file=tmp_path / "pubsub-emulator.pid",
        popen=cast(Any, FakePopen(returncode)),
    )


def test_polls_probe_until_ready(tmp_path: Path) -> None:
    """The waiter returns as soon as the probe reports readiness."""
    answers = iter([False, False, True])
    calls: list[int] = []

    def probe() -> bool:
        calls.append(1)
        return next(answers)

    ReadinessWaiter(poll_interval=0.01).await_ready(make_handle(tmp_path), timeout=5, probe=probe)
    assert len(calls) == 3


def test_times_out_when_probe_never_succeeds(tmp_path: Path) -> None:
    """The wait is bounded by the timeout and ends with ReadinessError."""
    t0 = time.monotonic()
    with pytest.raises(ReadinessError, match="did not become ready within 0.2 seconds"):
        ReadinessWaiter(poll_interval=0.02).await_ready(
            make_handle(tmp_path), timeout=0.2, probe=lambda: False
        )
    assert time.monotonic() - t0 < 2


def test_process_exit_fails_fast_with_log_tail(tmp_path: Path) -> None:
    """An emulator that dies while starting is reported with its last output."""
    handle = make_handle(tmp_path, returncode=1)
    handle.log_path.write_text("starting\nERROR: port in use\n", encoding="utf-8")

    with pytest.raises(ReadinessError) as ei:
        ReadinessWaiter(poll_interval=0.01).await_ready(handle, timeout=30, probe=lambda: False)
    assert "exited with code 1" in str(ei.value)
    assert "ERROR: port in use" in str(ei.value)


def test_grace_delay_without_probe(tmp_path: Path) -> None:
    """Without a probe a fixed grace delay is applied."""
    t0 = time.monotonic()
    ReadinessWaiter(poll_interval=0.01, grace_delay=0.1).await_ready(
        make_handle(tmp_path), timeout=5
    )
    assert time.monotonic() - t0 >= 0.1


def test_grace_delay_longer_than_timeout_fails(tmp_path: Path) -> None:
    """A grace delay can never extend the wait past the timeout."""
    with pytest.raises(ReadinessError):
        ReadinessWaiter(poll_interval=0.01, grace_delay=10).await_ready(
            make_handle(tmp_path), timeout=0.1
        )


def test_port_probe(monkeypatch: pytest.MonkeyPatch) -> None:
    """port_probe checks the given host and port."""
    seen: list[tuple[str, int]] = []

    def fake_is_listening(host: str, port: int) -> bool:
        seen.append((host, port))
        return True

    monkeypatch.setattr("cloudemu.harness.readiness.is_listening", fake_is_listening)
    assert port_probe("localhost", 8085)() is True
    assert seen == [("localhost", 8085)]
