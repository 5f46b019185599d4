from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from ..config.models import Settings
from ..emulator import Emulator, get_spec
from ..errors import LaunchError
from ..harness.lifecycle import EmulatorHarness
from ..harness.setup import SetupCommand
from ..utils.net import get_free_port, is_listening, owner_info

DEFAULT_REST_PORT = 9020


class SpannerEmulatorHarness(EmulatorHarness):
    """
    Cloud Spanner emulator with a test instance created on startup.

    After the emulator is ready, switches gcloud to the emulator configuration
    and creates the instance configured in Settings.spanner. Teardown kills
    both emulator processes (emulator_main and gateway_main).

    The emulator serves gRPC on `port` and its REST gateway on `rest_port`.
    A rest_port of 0 means a free port. Left unset, it is free when `port`
    is 0 and 9020 otherwise. Free ports are picked only once the gate passed.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        properties: Mapping[str, str] | None = None,
        **components: Any,
    ) -> None:
        super().__init__(
            get_spec(Emulator.SPANNER), settings, properties=properties, **components
        )
        configured = self.settings.spanner.rest_port
        if configured is None:
            free_main = self.settings.for_emulator(self.spec.name).port == 0
            configured = 0 if free_main else DEFAULT_REST_PORT
        self.rest_port = configured

    def before_emulator_start(self) -> None:
        if self.rest_port == 0:
            self.rest_port = get_free_port()
            while self.rest_port == self.port:
                self.rest_port = get_free_port()
        if is_listening(self.host, self.rest_port):
            raise LaunchError(
                f"REST port {self.host}:{self.rest_port} is in use ({owner_info(self.rest_port)})."
            )

    def extra_start_args(self) -> list[str]:
        return [f"--rest-port={self.rest_port}"]

    def setup_commands(self) -> list[SetupCommand]:
        s = self.settings.spanner
        gcloud = self.executable
        commands: list[SetupCommand] = []
        if s.bootstrap_configuration:
            commands += [
                # Fails when the configuration already exists, which is fine
                SetupCommand(
                    (gcloud, "config", "configurations", "create", s.configuration, "--no-activate"),
                    description="Creating emulator configuration",
                    fail_fast=False,
                ),
                SetupCommand(
                    (gcloud, "config", "set", "auth/disable_credentials", "true",
                     f"--configuration={s.configuration}"),
                    description="Disabling credentials",
                ),
                SetupCommand(
                    (gcloud, "config", "set", "project", self.project,
                     f"--configuration={s.configuration}"),
                    description="Setting emulator project",
                ),
                SetupCommand(
                    (gcloud, "config", "set", "api_endpoint_overrides/spanner",
                     f"http://{self.host}:{self.rest_port}/", f"--configuration={s.configuration}"),
                    description="Pointing gcloud at the emulator",
                ),
            ]
        commands += [
            SetupCommand(
                (gcloud, "config", "configurations", "activate", s.configuration),
                description="Switching to emulator configuration",
            ),
            SetupCommand(
                (
                    gcloud,
                    "spanner",
                    "instances",
                    "create",
                    s.instance_id,
                    f"--config={s.instance_config}",
                    f"--description={s.description}",
                    f"--nodes={s.nodes}",
                ),
                description="Creating instance",
            ),
        ]
        return commands

    def after_emulator_start(self) -> None:
        self.run_setup(self.setup_commands(), fail_fast=True)

    def env(self) -> dict[str, str]:
        env = super().env()
        env["GOOGLE_CLOUD_PROJECT"] = self.project
        return env
