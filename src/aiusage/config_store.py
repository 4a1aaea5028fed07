import json
import threading
from pathlib import Path
from typing import Any, Iterator, Protocol, Sequence

import structlog

from aiusage.errors import ConfigError
from aiusage.models import Preferences, ProviderConfig

logger = structlog.get_logger()


class ConfigStore(Protocol):
    """
    ConfigStore persists provider configs and preferences.

    Every operation reads or replaces the whole collection; callers
    load, change the collection in memory and save it back. Failures
    raise ConfigError.
    """

    def load_config(self) -> "list[ProviderConfig]": ...

    def save_config(self, configs: "Sequence[ProviderConfig]") -> "None": ...

    def load_preferences(self) -> "Preferences": ...

    def save_preferences(self, preferences: "Preferences") -> "None": ...


class ProviderConfigMap:
    """
    ProviderConfigMap keys configs by provider_id so that upserts and
    removals do not need to scan the list. It converts from and to
    the list form only at the storage boundary, keeping the order in
    which ids were first seen.
    """

    def __init__(self, configs: "Sequence[ProviderConfig]" = ()) -> "None":
        self._configs: "dict[str, ProviderConfig]" = {}
        for config in configs:
            # a later duplicate wins, like the last write to the file
            self._configs[config.provider_id] = config

    def __contains__(self, provider_id: "object") -> "bool":
        return provider_id in self._configs

    def __iter__(self) -> "Iterator[ProviderConfig]":
        return iter(self._configs.values())

    def __len__(self) -> "int":
        return len(self._configs)

    def get(self, provider_id: "str") -> "ProviderConfig | None":
        return self._configs.get(provider_id)

    def upsert(self, config: "ProviderConfig") -> "None":
        self._configs[config.provider_id] = config

    def remove(self, provider_id: "str") -> "bool":
        """
        removes the config for provider_id. Returns False when there
        was nothing to remove.
        """
        return self._configs.pop(provider_id, None) is not None

    def to_list(self) -> "list[ProviderConfig]":
        return list(self._configs.values())


class InMemoryConfigStore:
    """
    InMemoryConfigStore keeps configs in memory only, handing out
    copies so callers cannot mutate the stored state in place.
    """

    def __init__(
        self,
        configs: "Sequence[ProviderConfig]" = (),
        preferences: "Preferences | None" = None,
    ) -> "None":
        self._lock: "threading.Lock" = threading.Lock()
        self._configs: "list[dict[str, Any]]" = [c.to_dict() for c in configs]
        self._preferences: "dict[str, Any]" = (preferences or Preferences()).to_dict()
        self.save_count: "int" = 0

    def load_config(self) -> "list[ProviderConfig]":
        with self._lock:
            return [ProviderConfig.from_dict(c) for c in self._configs]

    def save_config(self, configs: "Sequence[ProviderConfig]") -> "None":
        with self._lock:
            self._configs = [c.to_dict() for c in configs]
            self.save_count += 1

    def load_preferences(self) -> "Preferences":
        with self._lock:
            return Preferences.from_dict(self._preferences)

    def save_preferences(self, preferences: "Preferences") -> "None":
        with self._lock:
            self._preferences = preferences.to_dict()


class JsonConfigStore:
    """
    JsonConfigStore persists everything in a single JSON document:

        {"providers": [...], "preferences": {...}}

    A missing file reads as an empty configuration. Writes go to a
    temporary file which then replaces the original.
    """

    def __init__(self, path: "str | Path") -> "None":
        self._path: "Path" = Path(path).expanduser()
        self._lock: "threading.Lock" = threading.Lock()

    @property
    def path(self) -> "Path":
        return self._path

    def _read(self) -> "dict[str, Any]":
        if not self._path.exists():
            return {}
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"failed to read {self._path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"unexpected document in {self._path}")
        return data

    def _write(self, data: "dict[str, Any]") -> "None":
        temp_path = self._path.with_suffix(".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            temp_path.replace(self._path)
        except OSError as e:
            raise ConfigError(f"failed to write {self._path}: {e}") from e

    def load_config(self) -> "list[ProviderConfig]":
        with self._lock:
            data = self._read()
        try:
            return [ProviderConfig.from_dict(p) for p in data.get("providers", [])]
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid provider entry in {self._path}: {e}") from e

    def save_config(self, configs: "Sequence[ProviderConfig]") -> "None":
        with self._lock:
            data = self._read()
            data["providers"] = [c.to_dict() for c in configs]
            self._write(data)
        logger.debug("config_saved", path=str(self._path), providers=len(configs))

    def load_preferences(self) -> "Preferences":
        with self._lock:
            data = self._read()
        try:
            return Preferences.from_dict(data.get("preferences", {}))
        except TypeError as e:
            raise ConfigError(f"invalid preferences in {self._path}: {e}") from e

    def save_preferences(self, preferences: "Preferences") -> "None":
        with self._lock:
            data = self._read()
            data["preferences"] = preferences.to_dict()
            self._write(data)
