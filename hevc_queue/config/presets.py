"""
Named encoding presets.

Presets are loaded from the packaged `presets.yaml` and merged with the
`presets` section of the user configuration (user entries win). A preset is a
mapping of settings; only the keys in `PRESET_SETTING_KEYS` are meaningful.
"""
from pathlib import Path
from typing import Any, Dict

import yaml

from .common import USER_PRESETS

PRESETS_FILE = Path(__file__).resolve().parent / "presets.yaml"

PRESET_SETTING_KEYS = ("x265_options", "preset", "video_filters", "bitdepth")

# Value of the preset option that disables preset expansion.
NO_PRESET = "none"
PRESET_SEPARATOR = ":"


def load_presets(path: Path = PRESETS_FILE) -> Dict[str, Dict[str, Any]]:
    """Returns the packaged presets merged with the user-defined ones."""
    with path.open("r", encoding="utf-8") as f:
        presets = yaml.safe_load(f) or {}
    for name, settings in USER_PRESETS.items():
        presets[name] = settings or {}
    return {name: dict(settings or {}) for name, settings in presets.items()}


PRESETS = load_presets()
