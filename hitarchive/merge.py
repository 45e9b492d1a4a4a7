"""
Field-by-field reconciliation of a re-fetched record with the stored one.

Precedence rules:
- description: the longer text wins, a re-fetch never shortens it
- popularity: the incoming count wins (it is the fresher number)
- other origin facts: kept, filled from incoming only when empty
- mutable pipeline fields: first write wins, incoming applies only where
  the stored value is absent
- enrich_attempt_count: never decreases
"""

from typing import Any, Dict, Mapping

from .database import MUTABLE_FIELDS, ORIGIN_FIELDS


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _longer_text(existing: Any, incoming: Any) -> Any:
    if _is_empty(incoming):
        return existing
    if len(str(incoming)) > len(str(existing or "")):
        return incoming
    return existing


def reconcile(existing: Mapping[str, Any], incoming: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Merge an incoming record into an existing one.

    Args:
        existing: Stored field values (must include the key fields)
        incoming: Freshly fetched / imported field values (may be partial)

    Returns:
        New dict with the merged values; neither input is modified.
    """
    merged = dict(existing)

    for field in ORIGIN_FIELDS:
        if field not in incoming:
            continue
        value = incoming[field]
        if field == "description":
            merged[field] = _longer_text(existing.get(field), value)
        elif field == "popularity":
            if value is not None:
                merged[field] = value
        elif _is_empty(existing.get(field)) and not _is_empty(value):
            merged[field] = value

    for field in MUTABLE_FIELDS:
        if field not in incoming:
            continue
        value = incoming[field]
        if field == "enrich_attempt_count":
            merged[field] = max(existing.get(field) or 0, value or 0)
        elif existing.get(field) is None and value is not None:
            merged[field] = value

    return merged


def diff_dict(old: Mapping[str, Any], new: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
    changed = {}
    keys = set(old.keys()) | set(new.keys())
    for k in keys:
        ov = old.get(k)
        nv = new.get(k)
        if ov != nv:
            changed[k] = {"old": ov, "new": nv}
    return changed
