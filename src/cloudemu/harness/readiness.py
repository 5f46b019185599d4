from __future__ import annotations

import time
from collections.abc import Callable

from ..errors import ReadinessError
from ..utils.logging import get_logger
from ..utils.net import is_listening
from .launcher import ProcessHandle

Probe = Callable[[], bool]


def port_probe(host: str, port: int) -> Probe:
    """Probe that succeeds once host:port accepts TCP connections."""

    def probe() -> bool:
        return is_listening(host, port)

    return probe


class ReadinessWaiter:
    """
    Blocks until a started emulator can answer requests.

    With a probe, polls it every `poll_interval` seconds; without one, waits a
    fixed `grace_delay`. Either way the wait is bounded by the timeout passed
    to await_ready().
    """

    def __init__(self, poll_interval: float = 0.5, grace_delay: float = 0.0) -> None:
        self.poll_interval = poll_interval
        self.grace_delay = grace_delay
        self._log = get_logger(__name__)

    def await_ready(
        self,
        handle: ProcessHandle,
        timeout: float,
        probe: Probe | None = None,
    ) -> None:
        """
        Wait until the emulator behind `handle` is ready.

        Raises:
            ReadinessError: If the process exits first or the timeout elapses.
        """
        self._log.info(
            "Waiting for emulator readiness",
            action="emulator_wait_ready",
            emulator=handle.name,
            pid=handle.pid,
            timeout=timeout,
        )
        deadline = time.monotonic() + timeout

        if probe is None:
            if self.grace_delay > timeout:
                self._sleep_until(handle, deadline)
                self._timed_out(handle, timeout)
            self._sleep_until(handle, time.monotonic() + self.grace_delay)
            self._log.info("Emulator is ready", action="emulator_ready", emulator=handle.name)
            return

        while True:
            self._check_alive(handle)
            if probe():
                break
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._timed_out(handle, timeout)
            time.sleep(min(self.poll_interval, remaining))

        if self.grace_delay:
            self._sleep_until(handle, min(deadline, time.monotonic() + self.grace_delay))
        self._log.info("Emulator is ready", action="emulator_ready", emulator=handle.name)

    def _sleep_until(self, handle: ProcessHandle, until: float) -> None:
        while True:
            self._check_alive(handle)
            remaining = until - time.monotonic()
            if remaining <= 0:
                return
            time.sleep(min(self.poll_interval, remaining))

    def _check_alive(self, handle: ProcessHandle) -> None:
        if handle.is_running():
            return
        self._log.error(
            "Emulator exited before becoming ready",
            action="emulator_exited",
            emulator=handle.name,
            exit_code=handle.exit_code(),
        )
        raise ReadinessError(
            f"{handle.name} emulator exited with code {handle.exit_code()} before becoming ready. "
            f"Last output:\n{handle.log_tail(20)}"
        )

    def _timed_out(self, handle: ProcessHandle, timeout: float) -> None:
        self._log.error(
            "Emulator did not become ready within the timeout",
            action="emulator_ready_timeout",
            emulator=handle.name,
            timeout=timeout,
        )
        raise ReadinessError(
            f"{handle.name} emulator did not become ready within {timeout} seconds. "
            f"See log: {handle.log_path}"
        )
