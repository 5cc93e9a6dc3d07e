from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from src.alerting.errors import UnknownUnit


@dataclass(frozen=True)
class UnitValue:
    """Display suffix appended to alert values."""

    show: str = ""


CUSTOM_UNIT_PREFIX = "custom-"

UNITS: Dict[str, UnitValue] = {
    "short": UnitValue(),
    "count": UnitValue(show=""),
    "times": UnitValue(show=" times"),
    "percent-0-100": UnitValue(show="%"),
    "percent-0.0-1.0": UnitValue(show="%"),
    "bytes-B": UnitValue(show="B"),
    "bytes-KB": UnitValue(show="KB"),
    "bytes-MB": UnitValue(show="MB"),
    "bytes-GB": UnitValue(show="GB"),
    "bytes-TB": UnitValue(show="TB"),
    "bytes/sec-B/s": UnitValue(show="B/s"),
    "bytes/sec-KB/s": UnitValue(show="KB/s"),
    "bytes/sec-MB/s": UnitValue(show="MB/s"),
    "bytes/sec-GB/s": UnitValue(show="GB/s"),
    "duration-us": UnitValue(show="us"),
    "duration-ms": UnitValue(show="ms"),
    "duration-s": UnitValue(show="s"),
    "duration-m": UnitValue(show="m"),
    "duration-h": UnitValue(show="h"),
    "duration-d": UnitValue(show="d"),
    "cpu-core": UnitValue(show="core"),
    "cpu-mcore": UnitValue(show="mcore"),
    "reqps-req/s": UnitValue(show="req/s"),
}


# PUBLIC_INTERFACE
def parse_unit(unit: str) -> UnitValue:
    """Resolve a unit name to its display suffix; empty means no unit."""
    if not unit:
        return UnitValue()
    if unit.startswith(CUSTOM_UNIT_PREFIX):
        return UnitValue(show=unit[len(CUSTOM_UNIT_PREFIX) :])
    try:
        return UNITS[unit]
    except KeyError:
        raise UnknownUnit(f"invalid unit: {unit}", meta={"unit": unit}) from None
