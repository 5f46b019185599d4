from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any


def _to_lines(stream: str | bytes | bytearray | None) -> tuple[str, ...]:
    if isinstance(stream, bytes | bytearray):
        stream = stream.decode(errors="ignore")
    return tuple((stream or "").splitlines())


@dataclass(frozen=True, slots=True)
class ProcessOutcome:
    """
    Result of running an external command.

    Holds the exit status together with stdout and stderr split into lines,
    in the order the command produced them.
    """

    args: tuple[str, ...]
    status: int
    output: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status == 0

    @property
    def stdout(self) -> str:
        return "\n".join(self.output)

    @property
    def stderr(self) -> str:
        return "\n".join(self.errors)

    @classmethod
    def from_completed(cls, proc: subprocess.CompletedProcess) -> ProcessOutcome:
        """
        Build a ProcessOutcome from subprocess.CompletedProcess, decoding bytes output.

        Args:
            proc (subprocess.CompletedProcess): The completed process instance.
        """
        args = proc.args if isinstance(proc.args, list | tuple) else [proc.args]
        return cls(
            args=tuple(str(a) for a in args),
            status=proc.returncode,
            output=_to_lines(proc.stdout),
            errors=_to_lines(proc.stderr),
        )


def run_cmd(
    args: Sequence[str],
    *,
    check: bool = True,
    spawn: bool = False,
    timeout: float | None = None,
    stdout: IO[Any] | None = None,
    cwd: str | Path | None = None,
) -> ProcessOutcome | subprocess.Popen:
    """
    Execute a command as a subprocess.

    Args:
        args (Sequence[str]): Command and arguments to execute.
        check (bool): If True, raise CalledProcessError on failure.
        spawn (bool): If True, start the process asynchronously and return a Popen object.
            Output of a spawned process goes to `stdout` (stderr is merged into it)
            in a new session, so the whole process group can be killed later.
        timeout (float | None): Optional timeout in seconds for waiting for completion.
        stdout (IO | None): File object receiving output of a spawned process.
        cwd (str | Path | None): Working directory for the command.

    Returns:
        ProcessOutcome | subprocess.Popen:
            - ProcessOutcome: exit status with stdout/stderr lines (if `spawn=False`)
            - subprocess.Popen: Process object (if `spawn=True`)

    Raises:
        subprocess.CalledProcessError: If `check=True` and process exits with a nonzero code.
        subprocess.TimeoutExpired: If the command does not finish within `timeout`.
    """
    if spawn:
        return subprocess.Popen(
            list(args),
            stdout=stdout if stdout is not None else subprocess.DEVNULL,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            start_new_session=True,
            cwd=cwd,
        )

    proc = subprocess.run(list(args), capture_output=True, timeout=timeout, check=False, cwd=cwd)

    if check and proc.returncode != 0:
        raise subprocess.CalledProcessError(proc.returncode, args, proc.stdout, proc.stderr)

    return ProcessOutcome.from_completed(proc)
