from __future__ import annotations

from collections.abc import Mapping

from ..config.models import Settings
from ..emulator import Emulator, get_spec
from ..harness.lifecycle import EmulatorHarness
from .spanner import SpannerEmulatorHarness


def create_harness(
    name: str | Emulator,
    settings: Settings | None = None,
    properties: Mapping[str, str] | None = None,
) -> EmulatorHarness:
    """
    Build the harness for an emulator name.

    Emulators with their own setup get a dedicated harness; the rest share
    the generic one.
    """
    spec = get_spec(name)
    if spec.name == Emulator.SPANNER.value:
        return SpannerEmulatorHarness(settings, properties=properties)
    return EmulatorHarness(spec, settings, properties=properties)
