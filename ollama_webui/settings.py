import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional


logger = logging.getLogger("webui.settings")

DEFAULT_SETTINGS: Dict[str, Any] = {
    "ollama": {
        "host": "http://127.0.0.1:11434",
        "model": "llama3",
        "options": {"temperature": 0.3, "top_p": 0.9},
        "connect_timeout": 10,
        "read_timeout": 300,
        "max_line_length": 1024 * 1024,
        "stop_on_done": True,
    },
    "server": {
        "host": "127.0.0.1",
        "port": 3000,
    },
    "weather": {
        "geocoding_url": "https://geocoding-api.open-meteo.com/v1/search",
        "forecast_url": "https://api.open-meteo.com/v1/forecast",
        "timeout": 15,
    },
    "auth": {
        "session_max_age": 8 * 60 * 60,
        "min_password_length": 6,
    },
}


@dataclass(frozen=True)
class OllamaConfig:
    """
    Immutable view of the ``ollama`` section, taken once per request.
    """

    host: str
    model: str
    options: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    connect_timeout: float = 10
    read_timeout: Optional[float] = 300
    max_line_length: Optional[int] = 1024 * 1024
    stop_on_done: bool = True

    @classmethod
    def from_settings(cls, section: Dict[str, Any]) -> "OllamaConfig":
        defaults = DEFAULT_SETTINGS["ollama"]
        return cls(
            host=str(section.get("host") or defaults["host"]),
            model=str(section.get("model") or defaults["model"]),
            options=MappingProxyType(dict(section.get("options") or {})),
            connect_timeout=section.get("connect_timeout", defaults["connect_timeout"]),
            read_timeout=section.get("read_timeout", defaults["read_timeout"]),
            max_line_length=section.get("max_line_length", defaults["max_line_length"]),
            stop_on_done=bool(section.get("stop_on_done", defaults["stop_on_done"])),
        )


class SettingsManager:
    """
    Handles loading the hand-edited configuration file.

    A missing or unreadable file is not fatal: the defaults are used instead so
    the server stays usable before anyone has written a config.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._settings: Dict[str, Any] | None = None

    @property
    def settings(self) -> Dict[str, Any]:
        if self._settings is None:
            self._settings = self._load_from_disk()
        return self._settings

    def _load_from_disk(self) -> Dict[str, Any]:
        merged = json.loads(json.dumps(DEFAULT_SETTINGS))
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except FileNotFoundError:
            logger.info("No config at %s, using defaults.", self.path)
            return merged
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Could not read %s, using safe defaults: %s", self.path, exc)
            return merged
        if not isinstance(data, dict):
            logger.error("Config at %s is not a JSON object, using safe defaults.", self.path)
            return merged
        # Merge with defaults to backfill new keys without overwriting manual edits.
        _deep_update(merged, data)
        return merged

    def reload(self) -> Dict[str, Any]:
        self._settings = self._load_from_disk()
        return self._settings

    def ollama_snapshot(self) -> OllamaConfig:
        return OllamaConfig.from_settings(self.settings.get("ollama") or {})

    def section(self, name: str) -> Dict[str, Any]:
        value = self.settings.get(name)
        if isinstance(value, dict):
            return dict(value)
        return dict(DEFAULT_SETTINGS.get(name, {}))


def _deep_update(target: Dict[str, Any], source: Dict[str, Any]) -> None:
    """
    Recursively update a mapping, preserving nested structures.
    """
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_update(target[key], value)
        else:
            target[key] = value
