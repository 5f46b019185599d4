from __future__ import annotations

import subprocess
import sys
from typing import Any, cast

import pytest

from cloudemu.utils.cli import ProcessOutcome, run_cmd
from cloudemu.utils.net import get_free_port, is_listening


def test_run_cmd_success() -> None:
    """run_cmd should succeed and capture stdout lines on a successful command."""
    out = cast(ProcessOutcome, run_cmd(["/bin/echo", "hello"], check=True))
    assert out.status == 0
    assert out.ok
    assert out.output == ("hello",)


def test_run_cmd_collects_stderr_lines() -> None:
    """With check=False a failing command returns its status and stderr split into lines."""
    out = cast(
        ProcessOutcome,
        run_cmd(
            [sys.executable, "-c", "import sys; sys.stderr.write('a\\nb\\n'); sys.exit(3)"],
            check=False,
        ),
    )
    assert out.status == 3
    assert not out.ok
    assert out.errors == ("a", "b")
    assert out.stderr == "a\nb"


def test_run_cmd_error_check_true_raises() -> None:
    """When check=True and the command fails, run_cmd must raise CalledProcessError."""
    with pytest.raises(subprocess.CalledProcessError):
        run_cmd([sys.executable, "-c", "import sys; sys.exit(1)"], check=True)


def test_run_cmd_spawn(monkeypatch: pytest.MonkeyPatch) -> None:
    """When spawn=True, run_cmd should return the Popen instance in a new session."""
    spawned: dict[str, Any] = {}

    class DummyP:
        def __init__(self, args: list[str], **kwargs: Any) -> None:
            spawned["args"] = args
            spawned["kwargs"] = kwargs

    monkeypatch.setattr("cloudemu.utils.cli.subprocess.Popen", DummyP)
    p = run_cmd(["sleep", "1"], spawn=True)
    assert isinstance(p, DummyP)
    assert spawned["args"] == ["sleep", "1"]
    assert spawned["kwargs"]["start_new_session"] is True
    assert spawned["kwargs"]["stderr"] is subprocess.STDOUT


def test_process_outcome_from_completed_decodes_bytes() -> None:
    """Bytes output is decoded and split into lines."""
    proc = subprocess.CompletedProcess(["x"], 0, stdout=b"one\ntwo\n", stderr=b"")
    out = ProcessOutcome.from_completed(proc)
    assert out.args == ("x",)
    assert out.output == ("one", "two")
    assert out.errors == ()


def test_free_port_is_not_listening() -> None:
    """A freshly picked free port has no listener."""
    port = get_free_port()
    assert 0 < port < 65536
    assert is_listening("127.0.0.1", port, timeout=0.2) is False
