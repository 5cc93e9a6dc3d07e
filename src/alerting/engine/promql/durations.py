from __future__ import annotations

import re
from datetime import timedelta

from src.alerting.errors import InvalidDuration

# Prometheus duration syntax: units in descending order, each at most once.
_DURATION_RE = re.compile(
    r"^(?:(\d+)y)?(?:(\d+)w)?(?:(\d+)d)?(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?(?:(\d+)ms)?$"
)

_UNIT_MS = (
    365 * 24 * 3600 * 1000,
    7 * 24 * 3600 * 1000,
    24 * 3600 * 1000,
    3600 * 1000,
    60 * 1000,
    1000,
    1,
)


# PUBLIC_INTERFACE
def parse_duration(text: str) -> timedelta:
    """Parse a Prometheus duration such as ``10m``, ``1h30m`` or ``500ms``."""
    raw = (text or "").strip()
    if raw == "0":
        return timedelta(0)
    m = _DURATION_RE.match(raw)
    if not raw or not m or not any(m.groups()):
        raise InvalidDuration(f"duration {text!r} not valid", meta={"duration": text})
    total_ms = sum(int(g) * unit for g, unit in zip(m.groups(), _UNIT_MS) if g)
    return timedelta(milliseconds=total_ms)
