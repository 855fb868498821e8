"""Row-mapping helpers shared by the SQLite stores.

Timestamps are stored as ISO-8601 strings of timezone-aware UTC datetimes,
so lexical order in SQL matches chronological order.  List and dict
columns are stored as JSON text.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any


def to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def to_json(value: Any) -> str:
    return json.dumps(value)


def from_json(value: str | None, default: Any) -> Any:
    return json.loads(value) if value else default


def like_pattern(text: str) -> str:
    """Build a ``%text%`` LIKE pattern, escaping wildcards with ``\\``.

    SQLite's LIKE is case-insensitive for ASCII letters, which is the
    substring-match semantics the text fallback needs.
    """
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"
