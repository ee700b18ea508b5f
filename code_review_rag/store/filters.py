"""
Client-side evaluation of backend-neutral filters.

Filters use the Qdrant JSON shape::

    {"must": [...], "must_not": [...], "should": [...]}

where each clause is one of

- ``{"key": k, "match": {"value": v}}``
- ``{"key": k, "match": {"any": [v, ...]}}``
- ``{"key": k, "match": {"pattern": regex}}``
- ``{"key": k, "match": {"text": substring}}``
- ``{"key": k, "range": {"gt"|"gte"|"lt"|"lte": bound}}``
- ``{"is_empty": {"key": k}}``
- a nested filter with its own ``must``/``must_not``/``should``

The in-memory store evaluates filters entirely here; the Qdrant store
uses it to post-filter clauses the server cannot express.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Optional

GROUPS = ("must", "must_not", "should")


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern:
    return re.compile(pattern)


def _as_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _comparable(value: Any, bound: Any) -> Optional[tuple[Any, Any]]:
    if isinstance(value, bool) or isinstance(bound, bool):
        return None
    if isinstance(value, (int, float)) and isinstance(bound, (int, float)):
        return value, bound
    left, right = _as_datetime(value), _as_datetime(bound)
    if left is not None and right is not None:
        return left, right
    return None


def _match(value: Any, spec: dict[str, Any]) -> bool:
    values = value if isinstance(value, list) else [value]
    if "value" in spec:
        return spec["value"] in values
    if "any" in spec:
        wanted = spec["any"]
        return any(v in wanted for v in values)
    if "pattern" in spec:
        regex = _compile(spec["pattern"])
        return any(isinstance(v, str) and regex.search(v) is not None for v in values)
    if "text" in spec:
        return any(isinstance(v, str) and spec["text"] in v for v in values)
    raise ValueError(f"Unsupported match clause: {spec}")


def _range(value: Any, spec: dict[str, Any]) -> bool:
    for op, bound in spec.items():
        if bound is None:
            continue
        pair = _comparable(value, bound)
        if pair is None:
            return False
        left, right = pair
        if op == "gt" and not left > right:
            return False
        if op == "gte" and not left >= right:
            return False
        if op == "lt" and not left < right:
            return False
        if op == "lte" and not left <= right:
            return False
    return True


def matches_clause(payload: dict[str, Any], clause: dict[str, Any]) -> bool:
    if any(group in clause for group in GROUPS):
        return matches_filter(payload, clause)
    if "is_empty" in clause:
        value = payload.get(clause["is_empty"]["key"])
        return value is None or value == [] or value == ""
    key = clause.get("key")
    if key is None:
        raise ValueError(f"Filter clause has no key: {clause}")
    if key not in payload or payload[key] is None:
        return False
    if "match" in clause:
        return _match(payload[key], clause["match"])
    if "range" in clause:
        return _range(payload[key], clause["range"])
    raise ValueError(f"Unsupported filter clause: {clause}")


def matches_filter(payload: dict[str, Any], filter: Optional[dict[str, Any]]) -> bool:
    """True when ``payload`` satisfies every group of ``filter``."""
    if not filter:
        return True
    if not all(matches_clause(payload, c) for c in filter.get("must", [])):
        return False
    if any(matches_clause(payload, c) for c in filter.get("must_not", [])):
        return False
    should = filter.get("should", [])
    if should and not any(matches_clause(payload, c) for c in should):
        return False
    return True


def clause_keys(filter: Optional[dict[str, Any]]) -> set[str]:
    """Payload keys referenced anywhere in ``filter``."""
    keys: set[str] = set()
    for group in GROUPS:
        for clause in (filter or {}).get(group, []):
            if any(g in clause for g in GROUPS):
                keys |= clause_keys(clause)
            elif "is_empty" in clause:
                keys.add(clause["is_empty"]["key"])
            elif "key" in clause:
                keys.add(clause["key"])
    return keys
