from __future__ import annotations

from .utils.cli import ProcessOutcome


class EmulatorError(RuntimeError):
    """Base class for failures that abort an emulator-backed test run."""


class LaunchError(EmulatorError):
    """The emulator process could not be started; nothing needs tearing down."""


class ReadinessError(EmulatorError):
    """The emulator did not become ready in time (or exited while starting)."""


class SetupError(EmulatorError):
    """
    A required setup command failed.

    The message ends with the command's stderr lines joined by newlines,
    so the exact tool failure reaches the test report.
    """

    def __init__(self, description: str, outcome: ProcessOutcome) -> None:
        self.description = description
        self.outcome = outcome
        super().__init__(f"{description} failed: " + "\n".join(outcome.errors))
