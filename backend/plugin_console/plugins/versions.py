from __future__ import annotations
"""Version relations between an installed plugin and an incoming artifact."""

import enum
import re
from typing import Optional

from packaging import version as _v


class VersionRelation(str, enum.Enum):
    upgrade = 'upgrade'
    downgrade = 'downgrade'
    same = 'same'
    unknown = 'unknown'


_NUMERIC_RE = re.compile(r'\d+')


def clean_version(value: Optional[str]) -> str:
    """Strip a leading 'v' and any '-qualifier' (1.2.0-SNAPSHOT -> 1.2.0)."""
    text = (value or '').strip()
    text = re.sub(r'^[vV](?=\d)', '', text)
    return text.split('-', 1)[0].strip()


def _numeric_key(value: str) -> tuple[int, ...]:
    parts = [int(p) for p in _NUMERIC_RE.findall(value)]
    while len(parts) > 1 and parts[-1] == 0:
        parts.pop()
    return tuple(parts)


def _order(a, b) -> VersionRelation:
    if a > b:
        return VersionRelation.upgrade
    if a < b:
        return VersionRelation.downgrade
    return VersionRelation.same


def compare_versions(new: Optional[str], current: Optional[str]) -> VersionRelation:
    """Relation of *new* relative to *current*; '1.10.0' is newer than '1.2.0'."""
    cleaned_new, cleaned_current = clean_version(new), clean_version(current)
    try:
        return _order(_v.parse(cleaned_new), _v.parse(cleaned_current))
    except _v.InvalidVersion:
        pass
    key_new, key_current = _numeric_key(cleaned_new), _numeric_key(cleaned_current)
    if key_new and key_current:
        return _order(key_new, key_current)
    if (new or '').strip() == (current or '').strip():
        return VersionRelation.same
    return VersionRelation.unknown
