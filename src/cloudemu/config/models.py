from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


class EmulatorSettings(BaseModel):
    """Per-emulator overrides (keyed by emulator name in Settings.emulators)."""

    port: int | None = None  # Port to bind; None means the well-known port, 0 a free one
    project: str = "test-project"  # Project id exported to client libraries
    extra_args: list[str] = Field(default_factory=list)  # Appended to the start command
    readiness_timeout: float | None = None  # Overrides Settings.readiness_timeout


class SpannerSettings(BaseModel):
    """Setup performed against a freshly started Spanner emulator."""

    configuration: str = "emulator"  # gcloud configuration switched to before setup
    bootstrap_configuration: bool = False  # Create the configuration first (best-effort)
    instance_id: str = "integration-instance"
    instance_config: str = "emulator-config"
    description: str = "Test Instance"
    nodes: int = 1
    rest_port: int | None = None  # REST gateway port; None: 9020, or a free one when the emulator port is 0


class Settings(BaseSettings):
    """
    Main configuration of the emulator harness.

    Loads values from the following sources:
    - Environment variables (with prefix CLOUDEMU_, nested with "__")
    - Initialization values (e.g., from YAML)
    - .env file
    - Secret files
    """

    model_config = SettingsConfigDict(env_prefix="CLOUDEMU_", env_nested_delimiter="__")

    gcloud_bin: str | None = None  # Executable override; each emulator defaults to "gcloud"
    artifacts_dir: str = "artifacts/emulators"  # Emulator logs and pid files
    host: str = "localhost"  # Interface the emulators bind to
    readiness_timeout: float = 60.0  # Max seconds to wait for an emulator to accept connections
    poll_interval: float = 0.5  # Seconds between readiness probes
    grace_delay: float = 0.0  # Extra seconds to wait once the probe succeeds
    command_timeout: float = 120.0  # Max seconds for a single setup command
    kill_timeout: float = 5.0  # Seconds to wait for killed processes to be reaped
    emulators: dict[str, EmulatorSettings] = Field(default_factory=dict)
    spanner: SpannerSettings = Field(default_factory=SpannerSettings)

    def for_emulator(self, name: str) -> EmulatorSettings:
        """Return overrides for the named emulator, or defaults when none are configured."""
        return self.emulators.get(name) or EmulatorSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,  # type: type[BaseSettings]
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """
        Configure the order of configuration sources.

        Loading priority:
        1. Environment variables
        2. Initialization values (e.g., from YAML)
        3. .env file
        4. Secret files
        """
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)
