from __future__ import annotations

import os
import re
from collections.abc import Mapping

TRUE_LITERAL = "true"


def env_key(property_name: str) -> str:
    """Environment-variable form of a property key: "it.spanner-emulator" -> "IT_SPANNER_EMULATOR"."""
    return re.sub(r"[^0-9A-Za-z]+", "_", property_name).strip("_").upper()


class Gate:
    """
    Opt-in check guarding emulator-backed tests.

    The property is read from explicit properties first (pytest `--property`),
    then from the environment under the literal key and under its
    environment-variable form. Only the exact literal "true" enables the run;
    "TRUE", "True" or " true" keep it closed.
    """

    def __init__(
        self,
        property_name: str,
        *,
        properties: Mapping[str, str] | None = None,
        environ: Mapping[str, str] | None = None,
        default: bool = False,
    ) -> None:
        self.property_name = property_name
        self._properties = properties or {}
        self._environ = environ if environ is not None else os.environ
        self._default = default

    def value(self) -> str | None:
        """Raw property value, or None when it is not set anywhere."""
        if self.property_name in self._properties:
            return self._properties[self.property_name]
        for key in (self.property_name, env_key(self.property_name)):
            if key in self._environ:
                return self._environ[key]
        return None

    def should_run(self) -> bool:
        raw = self.value()
        if raw is None:
            return self._default
        return raw == TRUE_LITERAL

    def skip_reason(self) -> str:
        return (
            f"Emulator tests are disabled: set '{self.property_name}=true' "
            f"(--property {self.property_name}=true or {env_key(self.property_name)}=true) to run them"
        )
