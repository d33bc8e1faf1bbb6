import hashlib
import json
from datetime import date, timedelta
from typing import Any, Dict, Iterator, List


def stable_hash(payload: Dict[str, Any]) -> str:
    raw = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def iter_days(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def extract_ids(items: Any, key: str = "id") -> List[str]:
    """String ids of ``items`` in order, skipping non-objects and missing ids."""
    if not isinstance(items, list):
        return []
    out: Dict[str, None] = {}
    for item in items:
        if not isinstance(item, dict):
            continue
        value = item.get(key)
        if value is None or value == "":
            continue
        out.setdefault(str(value), None)
    return list(out)
