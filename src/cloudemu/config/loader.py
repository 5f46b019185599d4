from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from .models import Settings

# Used when no path is given; the CLOUDEMU_CONFIG variable points elsewhere.
DEFAULT_CONFIG: str = os.getenv("CLOUDEMU_CONFIG", "configs/emulators.yaml")


def _read_yaml(path: Path) -> dict[str, Any]:
    with path.open(encoding="utf-8") as f:
        loaded = yaml.safe_load(f)
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError(f"{path}: expected a mapping at the top level, got {type(loaded).__name__}")
    return loaded


def load_settings(path: str | Path | None = None) -> Settings:
    """
    Build Settings from a YAML file merged with CLOUDEMU_* environment variables.

    A missing (or empty) file is not an error: only the environment and the
    defaults apply then. `~` and $VARS in the path are expanded.

    Raises:
        ValueError: If the file holds something other than a mapping.
    """
    file_path = Path(os.path.expandvars(str(path or DEFAULT_CONFIG))).expanduser()
    data = _read_yaml(file_path) if file_path.is_file() else {}
    return Settings(**data)
