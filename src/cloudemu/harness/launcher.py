from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from shutil import which
from typing import cast

import psutil

from ..config.models import Settings
from ..emulator import EmulatorSpec
from ..errors import LaunchError
from ..utils.cli import run_cmd
from ..utils.logging import get_logger
from ..utils.net import is_listening, owner_info


@dataclass(slots=True)
class ProcessHandle:
    """
    Reference to a running emulator process.

    The pid is also persisted to `pid_file`, so the process can be found
    again by a later run even when this object (and its Popen) is gone.
    """

    name: str
    pid: int
    args: tuple[str, ...]
    log_path: Path
    pid_file: Path
    popen: subprocess.Popen | None = field(default=None, repr=False)

    def is_running(self) -> bool:
        if self.popen is not None:
            return self.popen.poll() is None
        try:
            return psutil.Process(self.pid).status() != psutil.STATUS_ZOMBIE
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False

    def exit_code(self) -> int | None:
        return self.popen.poll() if self.popen is not None else None

    def log_tail(self, lines: int = 50) -> str:
        """Return the last `lines` lines of the emulator output."""
        try:
            content = self.log_path.read_text(encoding="utf-8", errors="ignore")
        except OSError:
            return ""
        return "\n".join(content.splitlines()[-lines:])

    @classmethod
    def from_pid_file(
        cls, name: str, artifacts_dir: str | Path, expect: str | None = None
    ) -> ProcessHandle | None:
        """
        Recover a handle from the pid file left by ProcessLauncher.start().

        With `expect`, the handle is only returned if the live process's command
        line still contains that text (pids get reused).
        """
        base = Path(artifacts_dir)
        pid_file = base / f"{name}-emulator.pid"
        try:
            pid = int(pid_file.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return None
        if expect is not None:
            try:
                if expect not in " ".join(psutil.Process(pid).cmdline()):
                    return None
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                return None
        return cls(
            name=name,
            pid=pid,
            args=(),
            log_path=base / f"{name}-emulator.log",
            pid_file=pid_file,
        )


class ProcessLauncher:
    """
    Starts emulator binaries as child processes.

    Output of the child goes to <artifacts_dir>/<name>-emulator.log and its
    pid to <artifacts_dir>/<name>-emulator.pid.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or Settings()
        self._log = get_logger(__name__)

    def _which(self, cmd: str) -> str | None:
        return which(cmd)

    def _abort(self, proc: subprocess.Popen) -> None:
        """Kill a just-spawned child that cannot be tracked."""
        try:
            proc.kill()
            proc.wait(timeout=self.settings.kill_timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            self._log.warning(
                "Failed to kill untracked emulator process",
                action="emulator_abort_failed",
                pid=proc.pid,
                error=str(e),
            )

    def start(
        self,
        spec: EmulatorSpec,
        *,
        host: str,
        port: int,
        extra_args: Sequence[str] = (),
    ) -> ProcessHandle:
        """
        Spawn the emulator for `spec` listening on host:port.

        Raises:
            LaunchError: If the executable is not on PATH, the port is taken,
                or the OS refuses to spawn the process.
        """
        executable = self.settings.gcloud_bin or spec.executable
        resolved = self._which(executable)
        if resolved is None:
            raise LaunchError(
                f"{executable} not found in PATH. Install the Google Cloud SDK "
                f"to run the {spec.display_name}."
            )

        if is_listening(host, port):
            raise LaunchError(f"Port {host}:{port} is in use ({owner_info(port)}).")

        base = Path(self.settings.artifacts_dir)
        base.mkdir(parents=True, exist_ok=True)
        log_path = base / f"{spec.name}-emulator.log"
        pid_file = base / f"{spec.name}-emulator.pid"

        cmd = spec.command(resolved, host, port, extra_args)
        self._log.info(
            "Starting emulator",
            action="emulator_start",
            emulator=spec.name,
            cmd=" ".join(cmd),
            log=str(log_path),
        )

        try:
            with log_path.open("a", encoding="utf-8") as fout:
                # The child keeps its own copy of the descriptor
                proc = cast(subprocess.Popen, run_cmd(cmd, spawn=True, stdout=fout))
        except OSError as e:
            raise LaunchError(f"Failed to start {spec.display_name}: {e}") from e

        try:
            pid_file.write_text(str(proc.pid), encoding="utf-8")
        except OSError as e:
            # Without a pid file the process could not be found again later
            self._abort(proc)
            raise LaunchError(f"Failed to write pid file {pid_file}: {e}") from e

        self._log.info(
            "Emulator process started",
            action="emulator_started",
            emulator=spec.name,
            pid=proc.pid,
        )
        return ProcessHandle(
            name=spec.name,
            pid=proc.pid,
            args=tuple(cmd),
            log_path=log_path,
            pid_file=pid_file,
            popen=proc,
        )
