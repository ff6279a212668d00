from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Callable, Protocol
from uuid import uuid4

from digest_agent.errors import PersistenceError

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class KeyValueStore(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl: float | None = None) -> None: ...

    def add(self, key: str, value: Any, ttl: float | None = None) -> bool: ...

    def delete(self, key: str) -> bool: ...


def _expires_at(now: float, ttl: float | None) -> float | None:
    return None if ttl is None else now + ttl


class MemoryKeyValueStore:
    """Process-local store, used by tests and single-process deployments."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._items: dict[str, tuple[Any, float | None]] = {}

    def _live(self, key: str) -> tuple[Any, float | None] | None:
        item = self._items.get(key)
        if item is None:
            return None
        _, expires_at = item
        if expires_at is not None and expires_at <= self._clock():
            del self._items[key]
            return None
        return item

    def get(self, key: str) -> Any | None:
        with self._lock:
            item = self._live(key)
            return None if item is None else item[0]

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        with self._lock:
            self._items[key] = (value, _expires_at(self._clock(), ttl))

    def add(self, key: str, value: Any, ttl: float | None = None) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._items[key] = (value, _expires_at(self._clock(), ttl))
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._items.pop(key, None) is not None


class FileKeyValueStore:
    """One JSON document per key under ``root``.

    Writes go through a temp file and ``os.replace`` so readers never see a
    half-written document. ``add`` hard-links a finished temp file into
    place, which fails when the key exists, so two processes cannot both
    take the same key.
    """

    def __init__(self, root: Path | str, clock: Callable[[], float] = time.time) -> None:
        self.root = Path(root)
        self._clock = clock
        self._lock = threading.Lock()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Cannot create state directory {self.root}: {exc}") from exc

    def _path(self, key: str) -> Path:
        return self.root / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    def _read(self, path: Path) -> dict[str, Any] | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise PersistenceError(f"Cannot read {path.name}: {exc}") from exc
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"Corrupt state file {path.name}: {exc}") from exc
        expires_at = document.get("expires_at")
        if expires_at is not None and expires_at <= self._clock():
            self._reclaim(path, raw)
            return None
        return document

    def _reclaim(self, path: Path, expired_raw: str) -> None:
        """Remove an expired document unless another writer replaced it since it was read."""
        parked = path.with_name(f".expired-{uuid4().hex}-{path.name}")
        try:
            os.rename(path, parked)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise PersistenceError(f"Cannot expire {path.name}: {exc}") from exc
        try:
            if parked.read_text(encoding="utf-8") != expired_raw:
                try:
                    os.link(parked, path)
                except FileExistsError:
                    logger.warning("Dropped a replaced %s that raced with a newer writer", path.name)
        except OSError as exc:
            raise PersistenceError(f"Cannot expire {path.name}: {exc}") from exc
        finally:
            parked.unlink(missing_ok=True)

    def _encode(self, value: Any, ttl: float | None) -> str:
        return json.dumps({"value": value, "expires_at": _expires_at(self._clock(), ttl)})

    def _write_temp(self, payload: str) -> str:
        fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=".tmp-", suffix=".json")
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
        return tmp_name

    def get(self, key: str) -> Any | None:
        with self._lock:
            document = self._read(self._path(key))
            return None if document is None else document.get("value")

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        path = self._path(key)
        payload = self._encode(value, ttl)
        with self._lock:
            try:
                os.replace(self._write_temp(payload), path)
            except OSError as exc:
                raise PersistenceError(f"Cannot write {path.name}: {exc}") from exc

    def add(self, key: str, value: Any, ttl: float | None = None) -> bool:
        path = self._path(key)
        payload = self._encode(value, ttl)
        with self._lock:
            # drops the file when it has expired
            if self._read(path) is not None:
                return False
            try:
                tmp_name = self._write_temp(payload)
            except OSError as exc:
                raise PersistenceError(f"Cannot write {path.name}: {exc}") from exc
            try:
                # link fails when the target exists and publishes the complete document at once
                os.link(tmp_name, path)
            except FileExistsError:
                return False
            except OSError as exc:
                raise PersistenceError(f"Cannot create {path.name}: {exc}") from exc
            finally:
                os.unlink(tmp_name)
            return True

    def delete(self, key: str) -> bool:
        path = self._path(key)
        with self._lock:
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            except OSError as exc:
                raise PersistenceError(f"Cannot delete {path.name}: {exc}") from exc
            return True
