from __future__ import annotations
"""Installed-plugin registry and the append-only operation history."""
import enum
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from plugin_console.core.errors import NotFound
from plugin_console.db.json_store import DocumentStore

_log = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


class PluginSource(str, enum.Enum):
    github = 'github'
    modrinth = 'modrinth'
    direct_url = 'direct-url'
    manual = 'manual'


class PluginRecord(BaseModel):
    # Keys this model does not know about are carried through rewrites untouched.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='allow', coerce_numbers_to_str=True)

    name: str
    version: str
    source: PluginSource = PluginSource.manual
    enabled: bool = True
    category: str = 'custom'
    description: str = ''
    installed_at: Optional[str] = None
    updated_at: Optional[str] = None
    origin_url: Optional[str] = None
    project_id: Optional[str] = None
    filename: Optional[str] = None
    backup_version: Optional[str] = None

    def to_json(self) -> dict:
        return self.model_dump(mode='json', by_alias=True)


class HistoryAction(str, enum.Enum):
    installed = 'installed'
    upgrade = 'upgrade'
    downgrade = 'downgrade'
    same = 'same'
    unknown = 'unknown'
    uninstalled = 'uninstalled'
    enabled = 'enabled'
    disabled = 'disabled'
    rolledback = 'rolledback'


class HistoryOutcome(str, enum.Enum):
    success = 'success'
    failed = 'failed'


class HistoryEntry(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    timestamp: str
    action: HistoryAction
    plugin_name: str
    from_version: Optional[str] = None
    to_version: Optional[str] = None
    outcome: HistoryOutcome = HistoryOutcome.success
    details: Optional[str] = None

    def to_json(self) -> dict:
        return self.model_dump(mode='json', by_alias=True, exclude_none=True)


def _same_name(a: str, b: str) -> bool:
    return a.casefold() == b.casefold()


def _plugins_of(doc: Any) -> list[dict]:
    if not isinstance(doc, dict):
        raise ValueError('registry document must be an object')
    plugins = doc.setdefault('plugins', [])
    if not isinstance(plugins, list):
        doc['plugins'] = plugins = []
    return plugins


class PluginRegistry:
    """Case-insensitive, name keyed view over ``{"plugins": [...]}``.

    Each mutation rewrites the whole document through the store.
    """

    def __init__(self, store: DocumentStore):
        self._store = store

    @property
    def location(self):
        return getattr(self._store, 'path', None)

    def _records(self, doc: Any) -> list[PluginRecord]:
        out: list[PluginRecord] = []
        for raw in (doc or {}).get('plugins', []) if isinstance(doc, dict) else []:
            try:
                out.append(PluginRecord.model_validate(raw))
            except ValueError as e:
                _log.warning(f"skipping malformed registry entry {raw!r}: {e}")
        return out

    def list(self) -> list[PluginRecord]:
        return self._records(self._store.load())

    def get(self, name: str) -> Optional[PluginRecord]:
        return next((r for r in self.list() if _same_name(r.name, name)), None)

    def require(self, name: str) -> PluginRecord:
        rec = self.get(name)
        if rec is None:
            raise NotFound(f"Plugin {name} not found")
        return rec

    def upsert(self, record: PluginRecord) -> PluginRecord:
        payload = record.to_json()

        def apply(doc: Any) -> None:
            plugins = _plugins_of(doc)
            for i, raw in enumerate(plugins):
                if isinstance(raw, dict) and _same_name(str(raw.get('name', '')), record.name):
                    merged = dict(raw)
                    merged.update(payload)
                    plugins[i] = merged
                    return
            plugins.append(payload)

        self._store.mutate(apply)
        return record

    def update(self, name: str, fn: Callable[[PluginRecord], PluginRecord]) -> PluginRecord:
        """Load, transform and write back one record in a single locked cycle."""
        holder: dict[str, PluginRecord] = {}

        def apply(doc: Any) -> None:
            plugins = _plugins_of(doc)
            for i, raw in enumerate(plugins):
                if isinstance(raw, dict) and _same_name(str(raw.get('name', '')), name):
                    rec = fn(PluginRecord.model_validate(raw))
                    merged = dict(raw)
                    merged.update(rec.to_json())
                    plugins[i] = merged
                    holder['record'] = rec
                    return
            raise NotFound(f"Plugin {name} not found")

        self._store.mutate(apply)
        return holder['record']

    def set_enabled(self, name: str, enabled: bool) -> PluginRecord:
        def flip(rec: PluginRecord) -> PluginRecord:
            return rec.model_copy(update={'enabled': enabled, 'updated_at': utc_now_iso()})
        return self.update(name, flip)

    def remove(self, name: str) -> PluginRecord:
        holder: dict[str, PluginRecord] = {}

        def apply(doc: Any) -> None:
            plugins = _plugins_of(doc)
            for i, raw in enumerate(plugins):
                if isinstance(raw, dict) and _same_name(str(raw.get('name', '')), name):
                    holder['record'] = PluginRecord.model_validate(plugins.pop(i))
                    return
            raise NotFound(f"Plugin {name} not found")

        self._store.mutate(apply)
        return holder['record']


class PluginHistory:
    """Bounded list of HistoryEntry documents, oldest first on disk."""

    def __init__(self, store: DocumentStore, limit: int = 500):
        self._store = store
        self._limit = max(1, int(limit))

    def append(self, entry: HistoryEntry) -> HistoryEntry:
        def apply(doc: Any) -> None:
            if not isinstance(doc, list):
                raise ValueError('history document must be a list')
            doc.append(entry.to_json())
            overflow = len(doc) - self._limit
            if overflow > 0:
                del doc[:overflow]

        self._store.mutate(apply)
        return entry

    def record(self, action: HistoryAction, plugin_name: str, *, from_version: Optional[str] = None,
               to_version: Optional[str] = None, outcome: HistoryOutcome = HistoryOutcome.success,
               details: Optional[str] = None) -> HistoryEntry:
        return self.append(HistoryEntry(
            timestamp=utc_now_iso(),
            action=action,
            plugin_name=plugin_name,
            from_version=from_version,
            to_version=to_version,
            outcome=outcome,
            details=details,
        ))

    def list(self, limit: Optional[int] = None) -> list[HistoryEntry]:
        doc = self._store.load()
        rows = doc if isinstance(doc, list) else []
        out: list[HistoryEntry] = []
        for raw in reversed(rows):
            try:
                out.append(HistoryEntry.model_validate(raw))
            except ValueError as e:
                _log.warning(f"skipping malformed history entry {raw!r}: {e}")
            if limit is not None and len(out) >= limit:
                break
        return out
