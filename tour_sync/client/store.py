"""Client-local settings stores (column mappings, ETA baseline)."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

MS_PER_ROW_KEY = "flex-sync-ms-per-row"


def mapping_key(table_name: str) -> str:
    return f"column-mapping:{table_name}"


class SettingsStore:
    """Key-value store for one client profile."""

    def get(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def load_mapping(self, table_name: str) -> dict[str, str]:
        value = self.get(mapping_key(table_name))
        if not isinstance(value, dict):
            return {}
        return {str(k): str(v) for k, v in value.items() if v}

    def save_mapping(self, table_name: str, mapping: dict[str, str]) -> None:
        self.set(mapping_key(table_name), dict(mapping))


class MemorySettingsStore(SettingsStore):
    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileSettingsStore(SettingsStore):
    """Settings kept in one JSON file, rewritten atomically on every change."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._data: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._data is None:
            self._data = {}
            if self.path.exists():
                try:
                    loaded = json.loads(self.path.read_text(encoding="utf-8"))
                except (OSError, json.JSONDecodeError) as e:
                    logger.warning("Ignoring unreadable settings file %s: %s", self.path, e)
                else:
                    if isinstance(loaded, dict):
                        self._data = loaded
        return self._data

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._load(), f, ensure_ascii=False, indent=2)
            os.replace(tmp, self.path)
        except Exception:
            Path(tmp).unlink(missing_ok=True)
            raise

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._load()[key] = value
        self._save()

    def delete(self, key: str) -> None:
        if self._load().pop(key, None) is not None:
            self._save()
