"""Compact formatters for the status-bar summary.

Design principles:
  - Output JSON is compact (no indentation, no spaces after separators)
  - Device IDs are truncated to their first block when no name is known
  - Sizes and ages are short enough to fit a tooltip column
"""

import json
import re
from datetime import datetime, timezone
from typing import Any

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

SHORT_ID_LEN = 7
TOOLTIP_LIMIT = 4_000

_FRACTION = re.compile(r"\.(\d+)")


# ---------------------------------------------------------------------------
#  Core helpers
# ---------------------------------------------------------------------------


def fmt(data: Any) -> str:
    """Serialize to a single compact JSON line."""
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def short_id(device_id: str) -> str:
    """Truncate a Syncthing device ID to its first block."""
    return device_id[:SHORT_ID_LEN] if device_id else ""


def format_bytes(n: int | float) -> str:
    """Human-readable byte size."""
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if abs(n) < 1024:
            return f"{n:.1f} {unit}"
        n /= 1024
    return f"{n:.1f} PB"


def format_age(seconds: float) -> str:
    """Short relative age such as ``just now``, ``42s ago`` or ``3h ago``."""
    seconds = int(seconds)
    if seconds < 5:
        return "just now"
    if seconds < 60:
        return f"{seconds}s ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    return f"{seconds // 86400}d ago"


def truncate(text: str, limit: int = TOOLTIP_LIMIT) -> str:
    """Cut text that exceeds the limit on a line boundary."""
    if len(text) <= limit:
        return text
    cut = text[:limit]
    last_nl = cut.rfind("\n")
    if last_nl > limit * 0.8:
        cut = cut[:last_nl]
    return cut + "\n…"


def parse_time(value: str | None) -> datetime | None:
    """Parse a Syncthing RFC 3339 timestamp.

    Syncthing emits nanosecond fractions and uses the Unix epoch for
    "never"; both are handled.  Unparseable input yields ``None``.
    """
    if not value:
        return None
    text = value.strip().replace("Z", "+00:00")
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    if parsed.year <= 1970:
        return None
    return parsed
