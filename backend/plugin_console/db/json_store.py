from __future__ import annotations
"""Whole-document JSON persistence.

Each store owns one document. Writers always replace the complete document:
serialize to a sibling temp file, re-read it to make sure it parses, then
``os.replace`` it over the live file. Readers therefore only ever observe the
previous or the next version, never a torn write, even if the process dies
mid-save. Read-modify-write cycles inside this process are serialized by a
per-store lock (the worker thread and API callers share the stores).
"""
import copy
import json
import logging
import os
import secrets
import threading
import time
from pathlib import Path
from typing import Any, Callable, Protocol, TypeVar

from plugin_console.core.errors import RegistryWriteConflict

_log = logging.getLogger(__name__)

T = TypeVar('T')


class DocumentStore(Protocol):
    def load(self) -> Any: ...
    def save(self, data: Any) -> None: ...
    def mutate(self, fn: Callable[[Any], T]) -> T: ...


class JsonFileStore:
    def __init__(self, path: Path | str, default: Any):
        self.path = Path(path)
        self._default = default
        self._lock = threading.RLock()

    def _fresh_default(self) -> Any:
        return copy.deepcopy(self._default)

    def load(self) -> Any:
        with self._lock:
            try:
                text = self.path.read_text(encoding='utf-8')
            except FileNotFoundError:
                return self._fresh_default()
            if not text.strip():
                _log.warning(f"empty document at {self.path}, using default")
                return self._fresh_default()
            try:
                return json.loads(text)
            except json.JSONDecodeError as e:
                _log.error(f"unparseable document at {self.path}: {e}")
                self._set_aside()
                return self._fresh_default()

    def _set_aside(self) -> None:
        # Moved out of the way so the next save cannot overwrite it.
        aside = self.path.with_name(f"{self.path.name}.corrupt-{time.strftime('%Y%m%d%H%M%S')}-{secrets.token_hex(2)}")
        try:
            os.replace(self.path, aside)
        except OSError as e:
            _log.error(f"could not move corrupt document {self.path} aside: {e}")
            return
        _log.warning(f"corrupt document kept at {aside}")

    def save(self, data: Any) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_name(f".{self.path.name}.{secrets.token_hex(4)}.tmp")
            try:
                with open(tmp, 'w', encoding='utf-8') as fh:
                    json.dump(data, fh, indent=2, default=str)
                    fh.flush()
                    os.fsync(fh.fileno())
                json.loads(tmp.read_text(encoding='utf-8'))
                os.replace(tmp, self.path)
            except (OSError, ValueError) as e:
                try:
                    tmp.unlink()
                except FileNotFoundError:
                    pass
                raise RegistryWriteConflict(f"Failed to write {self.path.name}: {e}", path=str(self.path)) from e

    def mutate(self, fn: Callable[[Any], T]) -> T:
        """Apply ``fn`` to the current document and persist it atomically.

        ``fn`` edits the loaded document in place and returns a value for the
        caller. If ``fn`` raises, nothing is written.
        """
        with self._lock:
            data = self.load()
            out = fn(data)
            self.save(data)
            return out


class MemoryStore:
    """In-process stand-in for JsonFileStore, used by tests and dry runs."""

    def __init__(self, default: Any):
        self._data = copy.deepcopy(default)
        self._lock = threading.RLock()
        self.saves = 0

    def load(self) -> Any:
        with self._lock:
            return copy.deepcopy(self._data)

    def save(self, data: Any) -> None:
        with self._lock:
            self._data = json.loads(json.dumps(data, default=str))
            self.saves += 1

    def mutate(self, fn: Callable[[Any], T]) -> T:
        with self._lock:
            data = self.load()
            out = fn(data)
            self.save(data)
            return out
