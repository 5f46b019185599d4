from __future__ import annotations

import json

import pytest
import structlog

from cloudemu.utils.logging import current_test_log_path, setup_logging


def test_setup_logging_produces_json(capsys: pytest.CaptureFixture[str]) -> None:
    """Configure logging and verify that structlog outputs JSON via JSONRenderer."""
    setup_logging()
    log = structlog.get_logger()
    log.info("hello", emulator="spanner", port=9010)

    out = capsys.readouterr().out.strip().splitlines()[-1]
    data = json.loads(out)
    assert data["event"] == "hello"
    assert data["message"] == "hello"
    assert data["level"] in ("info", "INFO")
    assert "timestamp" in data
    assert data["emulator"] == "spanner"
    assert data["port"] == 9010


def test_current_test_log_path_sanitizes_name() -> None:
    """Test log file names are made filesystem-safe."""
    path = current_test_log_path("tests/unit/test_x.py::test_y")
    assert path.name == "test_tests_unit_test_x.py__test_y.log"
    assert current_test_log_path().name == "cloudemu.log"
