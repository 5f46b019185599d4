from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from enum import Enum
from types import TracebackType
from typing import cast

from ..config.models import Settings
from ..emulator import EmulatorSpec
from ..errors import EmulatorError
from ..utils.cli import ProcessOutcome, run_cmd
from ..utils.logging import get_logger
from ..utils.net import get_free_port
from .gate import Gate
from .launcher import ProcessHandle, ProcessLauncher
from .readiness import ReadinessWaiter, port_probe
from .setup import SetupCommand, SetupRunner
from .teardown import TeardownManager

_EXPORT_RE = re.compile(r"^\s*(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)=(.*)$")


class LifecycleState(str, Enum):
    NOT_STARTED = "not_started"
    STARTED = "started"
    READY = "ready"
    SETUP_COMPLETE = "setup_complete"
    SETUP_FAILED = "setup_failed"
    TORN_DOWN = "torn_down"


def parse_env_init(lines: Sequence[str]) -> dict[str, str]:
    """Parse `export KEY=VALUE` lines printed by `gcloud beta emulators <name> env-init`."""
    env: dict[str, str] = {}
    for line in lines:
        m = _EXPORT_RE.match(line)
        if m:
            env[m.group(1)] = m.group(2).strip().strip("'\"")
    return env


class EmulatorHarness:
    """
    Runs one emulator process for the duration of one test run.

    Lifecycle: gate -> launch -> wait for readiness -> setup -> (tests) -> teardown.
    Teardown runs on every failure after launch and again (as a no-op) when
    stop() is called at the end of the run. Subclasses customise the run via
    before_emulator_start(), after_emulator_start() and after_emulator_destroyed().

    Example:
        with EmulatorHarness(get_spec("pubsub")) as harness:
            os.environ.update(harness.env())
            ...
    """

    def __init__(
        self,
        spec: EmulatorSpec,
        settings: Settings | None = None,
        *,
        properties: Mapping[str, str] | None = None,
        gate: Gate | None = None,
        launcher: ProcessLauncher | None = None,
        waiter: ReadinessWaiter | None = None,
        setup_runner: SetupRunner | None = None,
        teardown: TeardownManager | None = None,
    ) -> None:
        self.spec = spec
        self.settings = settings or Settings()
        self.gate = gate or Gate(
            spec.gating_property, properties=properties, default=spec.always_present
        )
        self.launcher = launcher or ProcessLauncher(self.settings)
        self.waiter = waiter or ReadinessWaiter(
            poll_interval=self.settings.poll_interval,
            grace_delay=self.settings.grace_delay,
        )
        self.setup_runner = setup_runner or SetupRunner(self.settings.command_timeout)
        self.teardown = teardown or TeardownManager(self.settings.kill_timeout)

        overrides = self.settings.for_emulator(spec.name)
        self.host = self.settings.host
        self.port = spec.default_port if overrides.port is None else overrides.port
        self.project = overrides.project
        self.readiness_timeout = overrides.readiness_timeout or self.settings.readiness_timeout
        self._extra_args = list(overrides.extra_args)

        self.handle: ProcessHandle | None = None
        self.history: list[LifecycleState] = [LifecycleState.NOT_STARTED]
        self._log = get_logger(__name__).bind(emulator=spec.name)

    # ------------------------
    # Public API
    # ------------------------
    @property
    def state(self) -> LifecycleState:
        return self.history[-1]

    @property
    def host_port(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def executable(self) -> str:
        return self.settings.gcloud_bin or self.spec.executable

    def should_run(self) -> bool:
        return self.gate.should_run()

    def start(self) -> bool:
        """
        Bring the emulator up.

        Returns:
            bool: False if the gate rejected the run (nothing was started).

        Raises:
            LaunchError: The process could not be started.
            ReadinessError: The emulator never became ready (already torn down).
            SetupError: A required setup command failed (already torn down).
        """
        if self.state is not LifecycleState.NOT_STARTED:
            raise EmulatorError(f"{self.spec.display_name} harness was already used ({self.state.value})")

        if not self.should_run():
            self._log.info(
                "Emulator run not enabled",
                action="emulator_gated",
                property=self.spec.gating_property,
            )
            return False

        if self.port == 0:
            self.port = get_free_port()
        self.before_emulator_start()
        self.handle = self.launcher.start(
            self.spec,
            host=self.host,
            port=self.port,
            extra_args=[*self.extra_start_args(), *self._extra_args],
        )
        self._transition(LifecycleState.STARTED)

        try:
            self.waiter.await_ready(
                self.handle, self.readiness_timeout, probe=port_probe(self.host, self.port)
            )
        except BaseException:
            self.stop()
            raise
        self._transition(LifecycleState.READY)

        try:
            self.after_emulator_start()
        except BaseException:
            self._setup_failed()
            raise
        self._transition(LifecycleState.SETUP_COMPLETE)
        return True

    def stop(self) -> None:
        """Tear the emulator down. Safe to call in any state and more than once."""
        if self.state in (LifecycleState.NOT_STARTED, LifecycleState.TORN_DOWN):
            return
        self._log.info("Stopping emulator", action="emulator_stop", state=self.state.value)
        try:
            self.teardown.cleanup(self.spec.cleanup_patterns, handle=self.handle)
        finally:
            self.handle = None
            self._transition(LifecycleState.TORN_DOWN)
            self.after_emulator_destroyed()

    def run_setup(
        self, commands: Sequence[SetupCommand], fail_fast: bool = True
    ) -> list[ProcessOutcome]:
        """Run setup commands; a required failure tears the emulator down before raising."""
        return self.setup_runner.run(commands, fail_fast=fail_fast, on_failure=self._setup_failed)

    def env(self) -> dict[str, str]:
        """Environment variables pointing client libraries at this emulator."""
        return {self.spec.host_env_var: self.host_port}

    def env_init(self) -> dict[str, str]:
        """
        Ask gcloud for the client environment of this emulator.

        Raises:
            EmulatorError: If `env-init` fails.
        """
        outcome = cast(
            ProcessOutcome,
            run_cmd(
                self.spec.env_init_args(self.executable),
                check=False,
                timeout=self.settings.command_timeout,
            ),
        )
        if not outcome.ok:
            raise EmulatorError(
                f"env-init for {self.spec.display_name} failed: " + "\n".join(outcome.errors)
            )
        return parse_env_init(outcome.output)

    # ------------------------
    # Hooks
    # ------------------------
    def extra_start_args(self) -> list[str]:
        """Arguments appended to the start command by emulator-specific harnesses."""
        return []

    def before_emulator_start(self) -> None:
        pass

    def after_emulator_start(self) -> None:
        pass

    def after_emulator_destroyed(self) -> None:
        pass

    # ------------------------
    # Helpers
    # ------------------------
    def _setup_failed(self) -> None:
        if self.state is LifecycleState.READY:
            self._transition(LifecycleState.SETUP_FAILED)
        self.stop()

    def _transition(self, state: LifecycleState) -> None:
        self.history.append(state)
        self._log.debug("Emulator state changed", action="emulator_state", state=state.value)

    def __enter__(self) -> EmulatorHarness:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.stop()
