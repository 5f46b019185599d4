from __future__ import annotations

from pathlib import Path
from typing import Any

import allure
import pytest

from ..emulator import Emulator
from ..utils.logging import current_test_log_path
from .fixtures import POOL_KEY, SETTINGS_KEY

_TAIL_LINES = 200


def _tail(path: Path, lines: int = _TAIL_LINES) -> str:
    try:
        with path.open(encoding="utf-8", errors="ignore") as f:
            return "".join(f.readlines()[-lines:])
    except OSError:
        return ""


def _requested_emulators(item: Any) -> list[str]:
    """
    Emulators the test asked for: the `<name>_emulator` fixtures it uses, or,
    for tests calling emulator_factory directly, the emulators started so far.
    """
    fixturenames = getattr(item, "fixturenames", ())
    names = [e.value for e in Emulator if f"{e.value}_emulator" in fixturenames]
    if not names and "emulator_factory" in fixturenames:
        pool = item.config.stash.get(POOL_KEY, None)
        if pool is not None:
            names = list(pool.started)
    return names


def pytest_runtest_makereport(item: Any, call: Any) -> None:
    """
    Pytest hook: called after each test phase (setup, call, teardown).

    When a test fails, attaches the tail of the test log and of the logs of
    the emulators the test uses to the Allure report. Emulator start failures
    surface in the setup phase, so that phase is covered too.
    """
    if getattr(call, "when", None) not in ("setup", "call"):
        return
    if getattr(call, "excinfo", None) is None:
        return
    # Skips raised by the gate are not failures
    if call.excinfo.errisinstance(pytest.skip.Exception):
        return

    attachments: list[tuple[str, str]] = []
    content = _tail(current_test_log_path(getattr(item, "name", None)))
    if content:
        attachments.append(("Recent logs", content))

    # Settings exist only once an emulator fixture was set up in this session
    settings = item.config.stash.get(SETTINGS_KEY, None)
    if settings is not None:
        for name in _requested_emulators(item):
            log = Path(settings.artifacts_dir) / f"{name}-emulator.log"
            content = _tail(log)
            if content:
                attachments.append((log.name, content))

    for name, body in attachments:
        allure.attach(body, name=name, attachment_type=allure.attachment_type.TEXT)
