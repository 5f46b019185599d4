from __future__ import annotations

import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import cast

from ..errors import SetupError
from ..utils.cli import ProcessOutcome, run_cmd
from ..utils.logging import get_logger

# Exit codes reported for commands that never produced one
EXIT_TIMEOUT = 124
EXIT_NOT_STARTED = 127


@dataclass(frozen=True, slots=True)
class SetupCommand:
    """
    One external command run against a ready emulator.

    fail_fast=None inherits the flag passed to SetupRunner.run().
    """

    args: tuple[str, ...]
    description: str
    fail_fast: bool | None = None


class SetupRunner:
    """
    Runs setup commands strictly one after another.

    A failing fail-fast command triggers `on_failure` (teardown) and raises
    SetupError; commands after it are never executed. Failures of
    best-effort commands are logged and the sequence continues.
    """

    def __init__(self, command_timeout: float | None = 120.0) -> None:
        self.command_timeout = command_timeout
        self._log = get_logger(__name__)

    def run(
        self,
        commands: Sequence[SetupCommand],
        fail_fast: bool = True,
        on_failure: Callable[[], None] | None = None,
    ) -> list[ProcessOutcome]:
        outcomes: list[ProcessOutcome] = []
        for command in commands:
            outcome = self.run_one(command)
            outcomes.append(outcome)
            if outcome.ok:
                continue

            required = fail_fast if command.fail_fast is None else command.fail_fast
            if not required:
                self._log.warning(
                    "Best-effort setup command failed",
                    action="setup_command_tolerated",
                    command=command.description,
                    status=outcome.status,
                    errors=list(outcome.errors),
                )
                continue

            self._log.error(
                "Setup command failed",
                action="setup_command_failed",
                command=command.description,
                status=outcome.status,
                errors=list(outcome.errors),
            )
            if on_failure is not None:
                on_failure()
            raise SetupError(command.description, outcome)
        return outcomes

    def run_one(self, command: SetupCommand) -> ProcessOutcome:
        """Execute a single command, turning spawn failures and timeouts into outcomes."""
        self._log.info(
            "Running setup command",
            action="setup_command",
            command=command.description,
            args=" ".join(command.args),
        )
        try:
            outcome = cast(
                ProcessOutcome,
                run_cmd(command.args, check=False, timeout=self.command_timeout),
            )
        except subprocess.TimeoutExpired:
            outcome = ProcessOutcome(
                args=command.args,
                status=EXIT_TIMEOUT,
                errors=(f"Timed out after {self.command_timeout} seconds",),
            )
        except OSError as e:
            outcome = ProcessOutcome(args=command.args, status=EXIT_NOT_STARTED, errors=(str(e),))

        self._log.debug(
            "Setup command finished",
            action="setup_command_done",
            command=command.description,
            status=outcome.status,
        )
        return outcome
