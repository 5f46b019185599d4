from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from cloudemu.runner import main

runner = CliRunner()


def test_run_passes_gating_properties_to_pytest(monkeypatch: pytest.MonkeyPatch) -> None:
    """`run -e spanner` opts the Spanner emulator in and returns pytest's exit code."""
    seen: dict[str, Any] = {}

    def fake_main(args: list[str]) -> int:
        seen["args"] = args
        return 5

    monkeypatch.setattr(main.pytest, "main", fake_main)

    result = runner.invoke(
        main.app,
        ["run", "-e", "spanner", "--tests-path", "tests/e2e", "--extra=-m spanner"],
    )

    assert result.exit_code == 5
    assert seen["args"] == [
        "tests/e2e",
        "--property",
        "it.spanner-emulator=true",
        "-m",
        "spanner",
    ]


def test_run_rejects_unknown_emulator(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(main.pytest, "main", lambda args: 0)
    result = runner.invoke(main.app, ["run", "-e", "cloudsql"])
    assert result.exit_code != 0


def test_cleanup_kills_per_emulator(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """cleanup searches each requested emulator's patterns."""
    cleaned: list[tuple[str, ...]] = []

    class FakeTeardown:
        def __init__(self, kill_timeout: float) -> None:
            pass

        def cleanup(self, patterns: Any, handle: Any = None) -> list[int]:
            cleaned.append(tuple(patterns))
            return [1, 2] if "cbtemulator" in patterns else []

    monkeypatch.setattr(main, "TeardownManager", FakeTeardown)
    cfg = tmp_path / "cfg.yaml"
    cfg.write_text(f"artifacts_dir: {tmp_path}\n", encoding="utf-8")

    result = runner.invoke(main.app, ["cleanup", "bigtable", "pubsub", "--config", str(cfg)])

    assert result.exit_code == 0, result.output
    assert cleaned == [
        ("cbtemulator", "emulators bigtable start"),
        ("cloud-pubsub-emulator", "emulators pubsub start"),
    ]
    assert "bigtable: killed 2 process(es)" in result.output
    assert "Done, 2 process(es) killed" in result.output


def test_list_emulators() -> None:
    result = runner.invoke(main.app, ["list"])
    assert result.exit_code == 0
    assert "it.spanner-emulator" in result.output
    assert "PUBSUB_EMULATOR_HOST" in result.output
