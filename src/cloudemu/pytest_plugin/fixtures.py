from __future__ import annotations

from collections.abc import Callable, Generator, Iterable, Mapping

import allure
import pytest

from ..config.loader import load_settings
from ..config.models import Settings
from ..emulator import Emulator, get_spec
from ..emulators.factory import create_harness
from ..harness.lifecycle import EmulatorHarness
from ..utils.logging import bind_context, clear_contextvars, get_logger, setup_logging

_logger = get_logger(__name__)

EmulatorFactory = Callable[[str | Emulator], EmulatorHarness]

# Session state shared with the reporting hooks
SETTINGS_KEY = pytest.StashKey[Settings]()
POOL_KEY = pytest.StashKey["EmulatorPool"]()


def parse_properties(raw: Iterable[str]) -> dict[str, str]:
    """
    Turn repeated `--property key=value` options into a dict.

    A bare key (`--property it.spanner-emulator`) means "true"; later values win.
    """
    props: dict[str, str] = {}
    for item in raw:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not key:
            raise pytest.UsageError(f"Invalid --property value: {item!r} (expected KEY=VALUE)")
        props[key] = value if sep else "true"
    return props


class EmulatorPool:
    """
    Emulators started for one test session, at most one per type.

    get() skips the calling test when the emulator's gating property is not
    "true", starts the emulator on first use and exports its host variables
    (e.g. SPANNER_EMULATOR_HOST) to the process environment. close() stops
    every started emulator in reverse order, even when one of them fails to
    stop, and restores the environment.
    """

    def __init__(self, settings: Settings, properties: Mapping[str, str]) -> None:
        self.settings = settings
        self.properties = properties
        self.started: dict[str, EmulatorHarness] = {}
        self._env = pytest.MonkeyPatch()

    def get(self, name: str | Emulator) -> EmulatorHarness:
        spec = get_spec(name)
        harness = self.started.get(spec.name)
        if harness is not None:
            return harness

        harness = create_harness(spec.name, self.settings, self.properties)
        if not harness.should_run():
            pytest.skip(harness.gate.skip_reason())

        with allure.step(f"Start {spec.display_name}"):
            harness.start()
        self.started[spec.name] = harness
        for key, value in harness.env().items():
            self._env.setenv(key, value)
        return harness

    def close(self) -> None:
        try:
            for harness in reversed(list(self.started.values())):
                with allure.step(f"Stop {harness.spec.display_name}"):
                    try:
                        harness.stop()
                    except Exception:
                        # Keep stopping the remaining emulators
                        _logger.exception("Failed to stop emulator", emulator=harness.spec.name)
        finally:
            self.started.clear()
            self._env.undo()


@pytest.fixture(scope="session")
def emulator_settings(pytestconfig: pytest.Config) -> Settings:
    """
    Load harness configuration once per session.

    The YAML path can be passed with --emulator-config; CLOUDEMU_* environment
    variables override file values.
    """
    with allure.step("Load emulator configuration"):
        settings = load_settings(pytestconfig.getoption("--emulator-config"))
    pytestconfig.stash[SETTINGS_KEY] = settings
    return settings


@pytest.fixture(scope="session")
def emulator_properties(pytestconfig: pytest.Config) -> dict[str, str]:
    """Properties given with --property (the opt-in switches live here)."""
    return parse_properties(pytestconfig.getoption("--property") or [])


@pytest.fixture(scope="session")
def emulator_factory(
    pytestconfig: pytest.Config,
    emulator_settings: Settings,
    emulator_properties: dict[str, str],
) -> Generator[EmulatorFactory, None, None]:
    """Start emulators on demand for the whole session (see EmulatorPool)."""
    pool = EmulatorPool(emulator_settings, emulator_properties)
    pytestconfig.stash[POOL_KEY] = pool
    try:
        yield pool.get
    finally:
        pool.close()


def _emulator_fixture(emulator: Emulator) -> Callable[..., EmulatorHarness]:
    spec = get_spec(emulator)

    def _fixture(emulator_factory: EmulatorFactory) -> EmulatorHarness:
        return emulator_factory(emulator)

    _fixture.__doc__ = (
        f"Session-scoped {spec.display_name}; enable with --property {spec.gating_property}=true."
    )
    return pytest.fixture(scope="session", name=f"{spec.name}_emulator")(_fixture)


spanner_emulator = _emulator_fixture(Emulator.SPANNER)
pubsub_emulator = _emulator_fixture(Emulator.PUBSUB)
datastore_emulator = _emulator_fixture(Emulator.DATASTORE)
firestore_emulator = _emulator_fixture(Emulator.FIRESTORE)
bigtable_emulator = _emulator_fixture(Emulator.BIGTABLE)


# ----- Logging: initialization and context -----
@pytest.fixture(scope="session", autouse=True)
def _setup_structlog() -> None:
    """One-time structured logging setup for the entire test session."""
    setup_logging()


@pytest.fixture(autouse=True)
def _bind_test_logging_context(request: pytest.FixtureRequest) -> Generator[None, None, None]:
    """Bind the test name to the logging context and clear it afterwards."""
    bind_context(test_name=request.node.name)
    try:
        yield
    finally:
        clear_contextvars()
