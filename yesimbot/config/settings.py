"""
Configuration loader — defaults, user YAML overlay, YESIMBOT_* environment overrides.

The document is a mapping of sections (adapters, parameters, settings,
memory_slot, memory, router, prompt, logging). `adapters` is a list, one
entry per backend, so paths may index into it: `adapters.0.model`.
"""

from __future__ import annotations
import os
import yaml
from pathlib import Path
from typing import Any, Optional

from ..core.errors import ConfigError

DEFAULT_CONFIG_PATH = Path(__file__).parent / "default_config.yaml"

# Overrides aimed at an adapter only apply when the merged document lists one
ENV_OVERRIDES = {
    "YESIMBOT_LOG_LEVEL": "logging.level",
    "YESIMBOT_LOG_FORMAT": "logging.format",
    "YESIMBOT_RESPONSE_FORMAT": "settings.response_format",
    "YESIMBOT_API_KEY": "adapters.0.api_key",
    "YESIMBOT_BASE_URL": "adapters.0.base_url",
    "YESIMBOT_MODEL": "adapters.0.model",
}


def _child(node: Any, segment: str) -> Any:
    """One path step: a mapping key or a list index. None when absent."""
    if isinstance(node, dict):
        return node.get(segment)
    if isinstance(node, list) and segment.isdigit() and int(segment) < len(node):
        return node[int(segment)]
    return None


class Config:
    """Merged configuration document addressed by dot paths."""

    def __init__(self, data: dict):
        self._data = data

    def get(self, key: str, default: Any = None) -> Any:
        """Value at `key` (e.g. "settings.max_tool_depth", "adapters.1.id"), or default."""
        node: Any = self._data
        for segment in key.split("."):
            node = _child(node, segment)
            if node is None:
                return default
        return node

    def set(self, key: str, value: Any) -> None:
        """Assign at `key`, creating missing mapping sections on the way."""
        *parents, leaf = key.split(".")
        node: Any = self._data
        for segment in parents:
            if isinstance(node, list) and segment.isdigit():
                node = node[int(segment)]
            else:
                node = node.setdefault(segment, {})
        node[leaf] = value

    def adapter_entries(self) -> list[dict]:
        """Raw adapter mappings in pool order."""
        entries = self.get("adapters") or []
        if not isinstance(entries, list):
            raise ConfigError(f"adapters must be a list, got {type(entries).__name__}")
        return [e for e in entries if isinstance(e, dict)]

    @property
    def raw(self) -> dict:
        return self._data

    def __repr__(self) -> str:
        # adapter entries hold credentials
        return f"Config(sections={sorted(self._data)})"


def _read_yaml(path: Path) -> dict:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Build the effective configuration.

    Layers, last wins: packaged default_config.yaml, the user file at
    `config_path` (skipped when missing), then ENV_OVERRIDES. A user file
    that lists adapters replaces the default list as a whole.
    """
    data = _read_yaml(DEFAULT_CONFIG_PATH)
    if config_path and Path(config_path).exists():
        data = _deep_merge(data, _read_yaml(Path(config_path)))

    config = Config(data)
    for env_key, path in ENV_OVERRIDES.items():
        value = os.getenv(env_key)
        if value is None:
            continue
        if path.startswith("adapters.") and not config.adapter_entries():
            continue
        config.set(path, value)
    return config


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Sections merge key by key; scalars and lists from `overlay` replace."""
    merged = dict(base)
    for key, value in overlay.items():
        current = merged.get(key)
        merged[key] = _deep_merge(current, value) if isinstance(current, dict) and isinstance(value, dict) else value
    return merged
