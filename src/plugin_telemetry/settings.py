"""Key/value settings storage used by the telemetry client.

The consent flag, one-shot flags, KUI counters, the installation id and the
last-send timestamp all live behind the small SettingsStore interface so that
hosts can plug in their own option storage.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class SettingsStore(Protocol):
    """Persistent key/value storage provided by the host."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any, autoload: bool = True) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemorySettingsStore:
    """Dict-backed store, for tests and short-lived processes."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any, autoload: bool = True) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class JsonFileSettingsStore:
    """Settings persisted as a JSON object in a single file.

    Every write rewrites the file through a temporary file and an atomic
    rename. The autoload hint has no meaning for a file store and is ignored.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError):
            logger.warning("Unreadable settings file %s, starting empty", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def set(self, key: str, value: Any, autoload: bool = True) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def delete(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)
