"""Live-state reconciler: mirrors Prometheus alert state onto stored rules."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List

from src.alerting.clients.cluster import real_time_alert_key
from src.alerting.schemas.alerts import AlertRule, AlertRuleOut, RealTimeAlert, RealTimeAlertRule
from src.alerting.state import AppState

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _active_at(alert: RealTimeAlert) -> datetime:
    ts = alert.active_at
    if ts is None:
        return _EPOCH
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


# PUBLIC_INTERFACE
def refresh_states(state: AppState, cluster: str, rules: List[AlertRule]) -> Dict[str, RealTimeAlertRule]:
    """
    Overwrite each rule's ``state`` with the live state and persist it.

    Rules with no live entry become "inactive". Any failure fetching the snapshot
    propagates; nothing is updated in that case. Returns the snapshot used.
    """
    live = state.fleet.client_of(cluster).list_alert_rule_states()
    for rule in rules:
        entry = live.get(real_time_alert_key(rule.namespace, rule.name))
        new_state = entry.state if entry else "inactive"
        if rule.id and rule.state != new_state:
            logger.info("Rule %s/%s on cluster=%s state %s -> %s", rule.namespace, rule.name, cluster, rule.state, new_state)
        rule.state = new_state
        if rule.id:
            state.rules.update_state(rule.id, new_state)
    return live


# PUBLIC_INTERFACE
def with_live_alerts(rule: AlertRule, live: Dict[str, RealTimeAlertRule]) -> AlertRuleOut:
    """Response view of ``rule`` carrying its live alert instances, newest first."""
    entry = live.get(real_time_alert_key(rule.namespace, rule.name))
    alerts = sorted(entry.alerts, key=_active_at, reverse=True) if entry else []
    out = AlertRuleOut.model_validate(rule.model_dump(by_alias=True))
    out.real_time_alerts = alerts
    return out
