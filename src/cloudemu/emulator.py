from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum


class Emulator(str, Enum):
    """
    Enumeration of the local Google Cloud emulators the harness knows how to run.

    Values match the service names accepted by `gcloud beta emulators <name>`.
    """

    SPANNER = "spanner"
    PUBSUB = "pubsub"
    DATASTORE = "datastore"
    FIRESTORE = "firestore"
    BIGTABLE = "bigtable"


@dataclass(frozen=True, slots=True)
class EmulatorSpec:
    """
    Static description of one emulator type.

    Fields:
    - name: service name as understood by gcloud ("spanner", "pubsub", ...)
    - display_name: human-readable name for logs and skip messages
    - gating_property: opt-in property key, e.g. "it.spanner-emulator"
    - start_args: arguments following the executable that start the emulator
    - cleanup_patterns: command-line substrings identifying emulator processes
    - default_port: port used when the configuration does not set one
    - host_env_var: variable client libraries read to find the emulator
    - executable: binary to launch (resolved through PATH)
    - always_present: gate default when the property is absent
    """

    name: str
    display_name: str
    gating_property: str
    start_args: tuple[str, ...]
    cleanup_patterns: tuple[str, ...]
    default_port: int
    host_env_var: str
    executable: str = "gcloud"
    always_present: bool = False

    def command(
        self,
        executable: str | None,
        host: str,
        port: int,
        extra_args: Sequence[str] = (),
    ) -> list[str]:
        """Build the full argument vector that starts this emulator on host:port."""
        return [
            executable or self.executable,
            *self.start_args,
            f"--host-port={host}:{port}",
            *extra_args,
        ]

    def env_init_args(self, executable: str | None = None) -> list[str]:
        """Arguments of the `env-init` command printing the client environment."""
        return [executable or self.executable, "beta", "emulators", self.name, "env-init"]


def _gcloud_spec(
    emulator: Emulator,
    display_name: str,
    default_port: int,
    host_env_var: str,
    patterns: tuple[str, ...],
) -> EmulatorSpec:
    start_args = ("beta", "emulators", emulator.value, "start")
    return EmulatorSpec(
        name=emulator.value,
        display_name=display_name,
        gating_property=f"it.{emulator.value}-emulator",
        start_args=start_args,
        # The gcloud wrapper itself is matched last, after the emulator binaries
        cleanup_patterns=(*patterns, f"emulators {emulator.value} start"),
        default_port=default_port,
        host_env_var=host_env_var,
    )


EMULATORS: dict[Emulator, EmulatorSpec] = {
    Emulator.SPANNER: _gcloud_spec(
        Emulator.SPANNER,
        "Cloud Spanner emulator",
        9010,
        "SPANNER_EMULATOR_HOST",
        ("cloud_spanner_emulator/emulator_main", "cloud_spanner_emulator/gateway_main"),
    ),
    Emulator.PUBSUB: _gcloud_spec(
        Emulator.PUBSUB,
        "Cloud Pub/Sub emulator",
        8085,
        "PUBSUB_EMULATOR_HOST",
        ("cloud-pubsub-emulator",),
    ),
    Emulator.DATASTORE: _gcloud_spec(
        Emulator.DATASTORE,
        "Cloud Datastore emulator",
        8081,
        "DATASTORE_EMULATOR_HOST",
        ("cloud-datastore-emulator",),
    ),
    Emulator.FIRESTORE: _gcloud_spec(
        Emulator.FIRESTORE,
        "Cloud Firestore emulator",
        8080,
        "FIRESTORE_EMULATOR_HOST",
        ("cloud-firestore-emulator",),
    ),
    Emulator.BIGTABLE: _gcloud_spec(
        Emulator.BIGTABLE,
        "Cloud Bigtable emulator",
        8086,
        "BIGTABLE_EMULATOR_HOST",
        ("cbtemulator",),
    ),
}


def get_spec(name: str | Emulator) -> EmulatorSpec:
    """
    Return the EmulatorSpec for a service name.

    Raises:
        KeyError: If the name is not a known emulator.
    """
    try:
        return EMULATORS[Emulator(str(getattr(name, "value", name)).lower())]
    except ValueError:
        known = ", ".join(e.value for e in Emulator)
        raise KeyError(f"Unknown emulator '{name}'. Known emulators: {known}") from None
