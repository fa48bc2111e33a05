"""Normalization utilities for rows coming from the hosted database.

Provides consistent parsing of timestamps, genre lists and command line
``key=value`` assignments.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union


# Values accepted as booleans on the command line
TRUE_STRINGS = {"true", "yes", "y", "on", "si", "sí"}
FALSE_STRINGS = {"false", "no", "n", "off"}


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse a Postgres/ISO-8601 timestamp.

    Args:
        value: Timestamp string (``Z`` suffix accepted), datetime or None

    Returns:
        Timezone-aware datetime (UTC assumed when naive) or None
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip().replace(" ", "T", 1)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def split_genres(value: Union[str, Iterable[str], None]) -> List[str]:
    """Split a comma separated genre column into a clean list.

    Args:
        value: ``"Acción, Drama"`` or an already split list

    Returns:
        List of non-empty, stripped genre names
    """
    if not value:
        return []
    if isinstance(value, str):
        parts = value.split(",")
    else:
        parts = list(value)
    return [p.strip() for p in parts if p and p.strip()]


def coerce_value(raw: str) -> Any:
    """Convert a command line value to the closest JSON type.

    ``"12"`` becomes 12, ``"4.5"`` becomes 4.5, ``"true"`` becomes True,
    ``"null"`` becomes None. Anything else stays a string.
    """
    text = raw.strip()
    lowered = text.lower()
    if lowered in ("null", "none"):
        return None
    if lowered in TRUE_STRINGS:
        return True
    if lowered in FALSE_STRINGS:
        return False
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        pass
    if text.startswith(("[", "{")):
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass
    return text


def parse_assignments(assignments: Iterable[str]) -> Dict[str, Any]:
    """Parse ``key=value`` pairs into a row dict.

    Args:
        assignments: Items such as ``["titulo=Dune", "duracion=155"]``

    Returns:
        Dict of column -> coerced value

    Raises:
        ValueError: If an item has no ``=`` or an empty key
    """
    values: Dict[str, Any] = {}
    for item in assignments:
        key, sep, raw = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"expected key=value, got {item!r}")
        values[key] = coerce_value(raw)
    return values
