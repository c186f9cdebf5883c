"""Solver configuration loaded from config/solver.yaml."""

import copy
from pathlib import Path

import yaml

PROJECT_DIR = Path(__file__).resolve().parent
CONFIG_PATH = PROJECT_DIR / "config" / "solver.yaml"

DEFAULTS = {
    "model": {"path": "model/model_weights.json"},
    "solver": {"num_chars": 6},
    "stash": {"max_entries": 64},
    "logging": {"level": "INFO", "file": None},
}


def _merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Path = CONFIG_PATH) -> dict:
    """Load the YAML config over the built-in defaults. A missing file means defaults."""
    config_path = Path(config_path)
    if not config_path.exists():
        return copy.deepcopy(DEFAULTS)
    with open(config_path, "r", encoding="utf-8") as f:
        loaded = yaml.safe_load(f) or {}
    if not isinstance(loaded, dict):
        raise ValueError(f"{config_path}: expected a mapping at the top level")
    return _merge(DEFAULTS, loaded)


def resolve_model_source(config: dict) -> str:
    """Model location from config; relative paths resolve against the project root."""
    source = str(config["model"]["path"])
    if source.startswith(("http://", "https://")):
        return source
    path = Path(source)
    if not path.is_absolute():
        path = PROJECT_DIR / path
    return str(path)
