from __future__ import annotations

import os
import subprocess
from collections.abc import Iterable

import psutil

from ..utils.logging import get_logger
from .launcher import ProcessHandle


def _cmdline(proc: psutil.Process) -> str:
    info = getattr(proc, "info", None) or {}
    parts = info.get("cmdline")
    if parts is None:
        parts = proc.cmdline()
    return " ".join(parts or [])


def find_processes(pattern: str) -> list[psutil.Process]:
    """
    Return running processes whose command line contains `pattern`.

    The current process is never included.
    """
    own_pid = os.getpid()
    found: list[psutil.Process] = []
    for proc in psutil.process_iter(["pid", "cmdline"]):
        try:
            if proc.pid == own_pid:
                continue
            if pattern in _cmdline(proc):
                found.append(proc)
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
    return found


class TeardownManager:
    """
    Force-kills emulator processes.

    Cleanup is best-effort and idempotent: a process that cannot be killed is
    logged and skipped, and a pattern matching nothing is not an error.
    """

    def __init__(self, kill_timeout: float = 5.0) -> None:
        self.kill_timeout = kill_timeout
        self._log = get_logger(__name__)

    def cleanup(
        self,
        patterns: Iterable[str],
        handle: ProcessHandle | None = None,
    ) -> list[int]:
        """
        Kill the tracked process tree (if a handle is given), then every process
        whose command line contains one of `patterns`.

        Returns:
            list[int]: pids that were killed.
        """
        patterns = [patterns] if isinstance(patterns, str) else list(patterns)
        killed: list[int] = []
        if handle is not None:
            killed.extend(self.kill_tracked(handle))

        for pattern in patterns:
            matches = [p for p in find_processes(pattern) if p.pid not in killed]
            if not matches:
                self._log.debug(
                    "Did not find emulator processes to kill",
                    action="teardown_no_match",
                    pattern=pattern,
                )
                continue
            for proc in matches:
                self._log.debug(
                    "Found emulator process to kill",
                    action="teardown_match",
                    pattern=pattern,
                    pid=proc.pid,
                )
                if self._kill(proc):
                    killed.append(proc.pid)

        if killed:
            self._log.info("Emulator processes killed", action="teardown_done", pids=killed)
        else:
            self._log.warning(
                "Did not find the emulator process to kill",
                action="teardown_nothing_found",
                patterns=patterns,
            )
        return killed

    def kill_tracked(self, handle: ProcessHandle) -> list[int]:
        """Kill the process recorded in `handle` together with its children."""
        killed: list[int] = []
        try:
            root = psutil.Process(handle.pid)
            tree = root.children(recursive=True) + [root]
        except psutil.NoSuchProcess:
            tree = []
        except psutil.AccessDenied as e:
            self._log.warning("Cannot inspect tracked emulator process", pid=handle.pid, error=str(e))
            tree = []

        for proc in tree:
            if self._kill(proc):
                killed.append(proc.pid)

        if handle.popen is not None:
            # Reap our own child so it does not linger as a zombie
            try:
                handle.popen.wait(timeout=self.kill_timeout)
            except subprocess.TimeoutExpired:
                self._log.warning(
                    "Emulator process did not exit after kill",
                    action="teardown_wait_timeout",
                    pid=handle.pid,
                )

        try:
            handle.pid_file.unlink(missing_ok=True)
        except OSError as e:
            self._log.warning("Failed to remove pid file", path=str(handle.pid_file), error=str(e))
        return killed

    def _kill(self, proc: psutil.Process) -> bool:
        try:
            proc.kill()
            proc.wait(timeout=self.kill_timeout)
            return True
        except psutil.NoSuchProcess:
            # Already gone
            return False
        except psutil.TimeoutExpired:
            self._log.warning("Killed process did not exit in time", pid=proc.pid)
            return True
        except (psutil.AccessDenied, OSError) as e:
            self._log.warning(
                "Failed to kill emulator process",
                action="teardown_kill_failed",
                pid=proc.pid,
                error=str(e),
            )
            return False
