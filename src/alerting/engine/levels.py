from __future__ import annotations

from typing import List

from src.alerting.errors import DuplicateSeverity, EmptyLevels, MissingInhibitLabels
from src.alerting.schemas.alerts import AlertLevel


# PUBLIC_INTERFACE
def check_alert_levels(levels: List[AlertLevel], inhibit_labels: List[str]) -> None:
    """Reject empty or duplicated severity levels, and multi-level rules without inhibit labels."""
    if not levels:
        raise EmptyLevels("alert levels can't be empty")
    seen = set()
    for level in levels:
        if level.severity in seen:
            raise DuplicateSeverity(f"alert level {level.severity} is duplicated", meta={"severity": level.severity})
        seen.add(level.severity)
    if len(levels) > 1 and not inhibit_labels:
        raise MissingInhibitLabels("inhibit labels can't be empty when more than one alert level is configured")
