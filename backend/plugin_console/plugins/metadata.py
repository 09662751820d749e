from __future__ import annotations
"""Read the declared metadata of a plugin archive.

Only the manifest entry is read; nothing inside the archive is extracted or
executed.
"""
import io
import zipfile
import zlib
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional

import yaml

from plugin_console.core.errors import InvalidArchive, MissingManifest
from plugin_console.utils.string_utils import as_string_list, normalize_null_strings

MANIFEST_ENTRIES = ('plugin.yml', 'paper-plugin.yml')
MAX_MANIFEST_BYTES = 1024 * 1024


@dataclass
class PluginMetadata:
    name: str
    version: str
    description: str = ''
    authors: list[str] = field(default_factory=list)
    api_version: Optional[str] = None
    depends: list[str] = field(default_factory=list)
    soft_depends: list[str] = field(default_factory=list)
    main: Optional[str] = None
    website: Optional[str] = None

    def as_dict(self) -> dict:
        return asdict(self)


def _open_archive(data: bytes) -> zipfile.ZipFile:
    if not data:
        raise InvalidArchive('Invalid plugin file: archive is empty')
    try:
        return zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise InvalidArchive(f"Invalid plugin file: not a valid JAR/ZIP archive ({e})") from e


def _read_manifest(zf: zipfile.ZipFile) -> tuple[str, str]:
    names = set(zf.namelist())
    for entry in MANIFEST_ENTRIES:
        if entry in names:
            if zf.getinfo(entry).file_size > MAX_MANIFEST_BYTES:
                raise InvalidArchive(f"Invalid plugin file: {entry} is larger than {MAX_MANIFEST_BYTES} bytes")
            try:
                raw = zf.read(entry)
            except (zipfile.BadZipFile, zlib.error, EOFError, OSError, RuntimeError, NotImplementedError) as e:
                raise InvalidArchive(f"Invalid plugin file: cannot read {entry} ({e})") from e
            return entry, raw.decode('utf-8', errors='replace')
    raise MissingManifest('Invalid plugin file: missing plugin.yml')


def _load_manifest(entry: str, text: str) -> dict:
    try:
        # Aliases are refused outright; nested ones expand exponentially.
        if any(isinstance(event, yaml.AliasEvent) for event in yaml.parse(text, Loader=yaml.BaseLoader)):
            raise MissingManifest(f"Invalid plugin file: {entry} uses YAML aliases")
        # BaseLoader keeps every scalar a string, so "version: 1.10" is not read as 1.1.
        doc = yaml.load(text, Loader=yaml.BaseLoader)
    except yaml.YAMLError as e:
        raise MissingManifest(f"Invalid plugin file: {entry} is not valid YAML ({e})") from e
    if not isinstance(doc, dict):
        raise MissingManifest(f"Invalid plugin file: {entry} is not a mapping")
    return doc


def _text(doc: dict, key: str) -> Optional[str]:
    value = doc.get(key)
    if not isinstance(value, str) or normalize_null_strings(value) is None:
        return None
    return value.strip() or None


def parse_plugin_archive(data: bytes) -> PluginMetadata:
    with _open_archive(data) as zf:
        entry, text = _read_manifest(zf)
    doc = _load_manifest(entry, text)

    name = _text(doc, 'name')
    version = _text(doc, 'version')
    if not name:
        raise MissingManifest(f"Missing required field: name in {entry}")
    if not version:
        raise MissingManifest(f"Missing required field: version in {entry}")

    authors = as_string_list(doc.get('author')) + as_string_list(doc.get('authors'))
    return PluginMetadata(
        name=name,
        version=version,
        description=_text(doc, 'description') or '',
        authors=list(dict.fromkeys(authors)),
        api_version=_text(doc, 'api-version'),
        depends=as_string_list(doc.get('depend')),
        soft_depends=as_string_list(doc.get('softdepend')),
        main=_text(doc, 'main'),
        website=_text(doc, 'website'),
    )


def parse_plugin_file(path: Path | str) -> PluginMetadata:
    p = Path(path)
    try:
        data = p.read_bytes()
    except FileNotFoundError as e:
        raise InvalidArchive(f"Plugin file not found: {p.name}") from e
    return parse_plugin_archive(data)

