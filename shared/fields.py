"""Ordered field candidates for payloads that name the same value several ways.

Provider payloads are inconsistent (``conditionId`` vs ``condition_id``,
``clobTokenIds`` as a JSON string vs ``tokens`` as a list of objects). Each
semantic field is described once as a priority-ordered list of
``(field_name, transform)`` pairs and read with :func:`pick`.
"""
import json
from typing import Any, Callable, Iterable, Optional

Transform = Callable[[Any], Any]
FieldCandidates = list[tuple[str, Transform]]


def identity(value: Any) -> Any:
    return value


def as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def as_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def as_list(value: Any) -> Optional[list]:
    """Accept a list, or a JSON-encoded list as the Gamma API returns it."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return None
    if isinstance(value, list):
        return value
    return None


def as_token_ids(value: Any) -> Optional[list[str]]:
    """Token lists come as plain ids or as ``{"token_id": ...}`` objects."""
    items = as_list(value)
    if not items:
        return None
    ids = []
    for item in items:
        if isinstance(item, dict):
            item = item.get("token_id")
        if item:
            ids.append(str(item))
    return ids or None


def pick(payload: Any, candidates: FieldCandidates, default: Any = None) -> Any:
    """Return the first candidate whose field is present and transforms to a value."""
    if not isinstance(payload, dict):
        return default
    for name, transform in candidates:
        if name not in payload:
            continue
        value = transform(payload[name])
        if value is not None:
            return value
    return default


def dig(payload: Any, path: Iterable[str]) -> Any:
    """Follow a key path through nested dicts, returning None on any miss."""
    current = payload
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
        if current is None:
            return None
    return current


CONDITION_ID: FieldCandidates = [
    ("conditionId", as_str),
    ("condition_id", as_str),
]

TOKEN_IDS: FieldCandidates = [
    ("clobTokenIds", as_token_ids),
    ("tokens", as_token_ids),
    ("clob_token_ids", as_token_ids),
]

VOLUME: FieldCandidates = [
    ("volumeNum", as_float),
    ("volume", as_float),
    ("liquidityNum", as_float),
    ("liquidity", as_float),
]

QUESTION: FieldCandidates = [
    ("question", as_str),
    ("title", as_str),
]

LIQUIDITY: FieldCandidates = [
    ("liquidityNum", as_float),
    ("liquidity", as_float),
    ("liquidityClob", as_float),
]

OUTCOMES: FieldCandidates = [
    ("outcomes", as_list),
]
