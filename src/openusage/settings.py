# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Persisted user settings: provider order, disabled providers and the
automatic refresh interval.

Stored as one JSON document, `<data dir>/settings.json`:

    {"plugins": {"order": [...], "disabled": [...]}, "autoUpdateInterval": 15}

New providers are appended to the order and start enabled.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .config.defaults import AUTO_REFRESH_INTERVAL_CHOICES
from .utils.paths import get_data_file

lib_logger = logging.getLogger("openusage")

SETTINGS_FILENAME = "settings.json"
PLUGIN_SETTINGS_KEY = "plugins"
AUTO_UPDATE_SETTINGS_KEY = "autoUpdateInterval"


@dataclass
class PluginSettings:
    order: List[str] = field(default_factory=list)
    disabled: List[str] = field(default_factory=list)

    def enabled_ids(self) -> List[str]:
        disabled = set(self.disabled)
        return [pid for pid in self.order if pid not in disabled]

    def to_dict(self) -> Dict[str, List[str]]:
        return {"order": list(self.order), "disabled": list(self.disabled)}


def normalize_plugin_settings(
    settings: PluginSettings, known_ids: Iterable[str]
) -> PluginSettings:
    """Drop unknown and duplicate ids, then append providers missing from the order."""
    known = list(known_ids)
    known_set = set(known)

    order: List[str] = []
    for pid in settings.order:
        if pid in known_set and pid not in order:
            order.append(pid)
    for pid in known:
        if pid not in order:
            order.append(pid)

    disabled = [pid for pid in settings.disabled if pid in known_set]
    return PluginSettings(order=order, disabled=disabled)


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


class SettingsStore:
    """JSON-backed settings document. Unreadable files load as defaults."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else get_data_file(SETTINGS_FILENAME)

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            lib_logger.warning(f"Could not read settings from {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, self.path)

    def load_plugin_settings(self) -> PluginSettings:
        stored = self._read().get(PLUGIN_SETTINGS_KEY)
        if not isinstance(stored, dict):
            return PluginSettings()
        return PluginSettings(
            order=_string_list(stored.get("order")),
            disabled=_string_list(stored.get("disabled")),
        )

    def save_plugin_settings(self, settings: PluginSettings) -> None:
        data = self._read()
        data[PLUGIN_SETTINGS_KEY] = settings.to_dict()
        self._write(data)

    def load_auto_refresh_interval(self) -> Optional[int]:
        """Interval in seconds, or None when unset. Stored in minutes."""
        minutes = self._read().get(AUTO_UPDATE_SETTINGS_KEY)
        if isinstance(minutes, int) and minutes * 60 in AUTO_REFRESH_INTERVAL_CHOICES:
            return minutes * 60
        return None

    def save_auto_refresh_interval(self, seconds: int) -> None:
        if seconds not in AUTO_REFRESH_INTERVAL_CHOICES:
            raise ValueError(f"Unsupported auto refresh interval: {seconds}s")
        data = self._read()
        data[AUTO_UPDATE_SETTINGS_KEY] = seconds // 60
        self._write(data)
