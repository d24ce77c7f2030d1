"""
Tolerant readers for Portal payloads.

Portal envelopes and field names vary per endpoint and deployment, so values are
looked up across a list of synonym keys and lists are unwrapped from whatever
envelope they arrive in.
"""

import math
from typing import Any, Dict, Iterable, List, Optional


def to_portal_list(payload: Any) -> List[Any]:
    """Unwrap a bare array, {data: [...]}, {items: [...]} or {result: [...]}"""
    if not payload:
        return []
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("data", "items", "result"):
            if isinstance(payload.get(key), list):
                return payload[key]
    return []


def read_string(record: Dict[str, Any], keys: Iterable[str]) -> Optional[str]:
    if not isinstance(record, dict):
        return None
    for key in keys:
        value = record.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, (int, float)):
            return str(value)
    return None


def read_number(record: Dict[str, Any], keys: Iterable[str]) -> Optional[float]:
    if not isinstance(record, dict):
        return None
    for key in keys:
        value = record.get(key)
        if value is None or isinstance(value, bool):
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            continue
        if math.isfinite(number):
            return int(number) if number.is_integer() else number
    return None


def read_boolean(record: Dict[str, Any], keys: Iterable[str]) -> Optional[bool]:
    if not isinstance(record, dict):
        return None
    for key in keys:
        value = record.get(key)
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value != 0
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized in ("1", "true", "si", "sí", "yes"):
                return True
            if normalized in ("0", "false", "no"):
                return False
    return None


def extract_portal_id(payload: Any, key: str) -> Optional[int]:
    """Read the id the Portal assigned, from {data: {<key>: ...}} or {<key>: ...}"""
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    for source in (data, payload):
        if isinstance(source, dict):
            value = read_number(source, [key])
            if value is not None:
                return int(value)
    return None
