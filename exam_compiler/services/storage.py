from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

LANGUAGE_KEY = "exam_language"


def code_key(question_id: str, language: str) -> str:
    return f"exam_code_{question_id}_{language}"


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStore:
    """Process-local store; contents are lost on restart."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def __len__(self) -> int:
        return len(self._data)


class JsonFileStore:
    """Durable store backed by a single JSON object on disk.

    Every ``set`` rewrites the file through a temporary file and an atomic
    rename, so a crash never leaves a half-written document behind. Writes
    are serialized so concurrent sessions sharing the store cannot interleave.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        self._data: dict[str, str] = self._load()
        self._lock = threading.Lock()

    def _load(self) -> dict[str, str]:
        try:
            with self.path.open(encoding="utf-8") as fh:
                raw = json.load(fh)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError:
            logger.warning(f"Ignoring unreadable store file {self.path}")
            return {}
        if not isinstance(raw, dict):
            logger.warning(f"Ignoring store file {self.path}: expected a JSON object")
            return {}
        return {str(k): str(v) for k, v in raw.items()}

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            if self._data.get(key) == value:
                return
            self._data[key] = value
            self._flush(dict(self._data))

    def _flush(self, snapshot: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".store-", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(snapshot, fh, ensure_ascii=False)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


def open_store(path: str | None) -> KeyValueStore:
    if path:
        logger.info(f"Saving editor code to {path}")
        return JsonFileStore(path)
    return MemoryStore()
