from typing import Any, Mapping, Sequence

# Spellings YAML treats as null. Manifests are read with the base loader, which
# hands them back as plain strings.
_NULL_SPELLINGS = frozenset({'null', '~'})


def normalize_null_strings(obj: Any) -> Any:
    """Recursively convert YAML null spellings ('null', 'Null', '~') to None inside dict/list structures.

    Args:
        obj: The object to process. Can be a string, dictionary, list, or other type.

    Returns:
        The processed object with all null spellings converted to None.
        Other types are returned as-is.
    """
    if isinstance(obj, str):
        return None if obj.strip().lower() in _NULL_SPELLINGS else obj
    if isinstance(obj, Mapping):
        return {k: normalize_null_strings(v) for k, v in obj.items()}
    if isinstance(obj, Sequence) and not isinstance(obj, (str, bytes)):
        return [normalize_null_strings(v) for v in obj]
    return obj


def as_string_list(raw: Any) -> list[str]:
    """Accept a scalar or a list declaration and return trimmed, non-empty strings."""
    normalized = normalize_null_strings(raw)
    if normalized is None:
        return []
    if isinstance(normalized, (list, tuple, set)):
        items = normalized
    else:
        items = (normalized,)
    cleaned: list[str] = []
    for item in items:
        if item is None:
            continue
        text = str(item).strip()
        if text:
            cleaned.append(text)
    return cleaned
