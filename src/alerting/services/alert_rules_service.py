from __future__ import annotations

import logging
from typing import Dict, Optional

from src.alerting.clients.cluster import ClusterClient
from src.alerting.engine.pipeline import prepare_rule
from src.alerting.engine.receivers import resolve_receivers
from src.alerting.errors import RuleAlreadyExists, RuleNotFound
from src.alerting.schemas.alerts import (
    AlertRule,
    AlertRuleIn,
    AlertRuleOut,
    AlertRulePage,
    AlertRuleQuery,
    AlertType,
    rule_meta,
)
from src.alerting.schemas.channels import AlertChannel
from src.alerting.services import reconcile_service, sync_service
from src.alerting.state import AppState

logger = logging.getLogger(__name__)


def _prepare(state: AppState, rule: AlertRule) -> AlertRule:
    cfg = state.config
    return prepare_rule(
        rule,
        state.templates.get,
        state.channels.get,
        cfg.default_channel_id,
        cfg.global_alert_namespace,
    )


def _preload_channels(state: AppState, rule: AlertRule) -> AlertRule:
    """Attach channel records to receivers; dangling references stay unset."""
    cache: Dict[str, Optional[AlertChannel]] = {}
    for rec in rule.receivers:
        if rec.alert_channel_id not in cache:
            cache[rec.alert_channel_id] = state.channels.get(rec.alert_channel_id)
        rec.alert_channel = cache[rec.alert_channel_id]
    return rule


def _get_or_raise(state: AppState, cluster: str, namespace: str, alert_type: AlertType, name: str) -> AlertRule:
    rule = state.rules.get(cluster, namespace, name, alert_type)
    if rule is None:
        raise RuleNotFound(
            f"alert rule {name} not found",
            meta={"cluster": cluster, "namespace": namespace, "name": name, "alertType": alert_type},
        )
    return rule


def _apply(client: ClusterClient, rule: AlertRule) -> Dict[str, str]:
    results = sync_service.apply_rule(client, rule)
    logger.info("Synced rule %s/%s on cluster=%s: %s", rule.namespace, rule.name, rule.cluster, results)
    return results


# PUBLIC_INTERFACE
def list_rules(state: AppState, query: AlertRuleQuery) -> AlertRulePage:
    """
    Refresh live state for every rule in the namespace, then return one page.

    The state filter applies to the refreshed state, never to a value from a prior call.
    """
    scoped = state.rules.find(query.cluster, query.namespace, query.alert_type)
    live = reconcile_service.refresh_states(state, query.cluster, scoped)

    items, total = state.rules.page(query)
    out = [reconcile_service.with_live_alerts(_preload_channels(state, r), live) for r in items]
    return AlertRulePage(items=out, total=total, page=query.page, size=query.size)


# PUBLIC_INTERFACE
def get_rule(state: AppState, cluster: str, namespace: str, alert_type: AlertType, name: str) -> AlertRuleOut:
    """Fetch one rule with its live state and alert instances."""
    rule = _get_or_raise(state, cluster, namespace, alert_type, name)
    live = reconcile_service.refresh_states(state, cluster, [rule])
    return reconcile_service.with_live_alerts(_preload_channels(state, rule), live)


# PUBLIC_INTERFACE
def create_rule(
    state: AppState, cluster: str, namespace: str, alert_type: AlertType, payload: AlertRuleIn
) -> AlertRuleOut:
    """
    Validate and derive the rule, store it, then apply it to the cluster.

    The local write happens first; a sync failure leaves the stored rule in place
    and is reported as SyncError so the caller can retry with an update.
    """
    rule = AlertRule.from_request(cluster, namespace, alert_type, payload)
    _prepare(state, rule)
    client = state.fleet.client_of(cluster)

    if state.rules.exists(cluster, namespace, rule.name):
        raise RuleAlreadyExists(f"alert rule {rule.name} already exists", meta=rule_meta(rule))
    state.rules.insert(rule)
    logger.info("Created rule %s/%s (%s) on cluster=%s", namespace, rule.name, alert_type, cluster)

    _apply(client, rule)
    return reconcile_service.with_live_alerts(rule, {})


# PUBLIC_INTERFACE
def update_rule(
    state: AppState, cluster: str, namespace: str, alert_type: AlertType, name: str, payload: AlertRuleIn
) -> AlertRuleOut:
    """Full replace of an existing rule; identity comes from the path, not the body."""
    existing = _get_or_raise(state, cluster, namespace, alert_type, name)

    rule = AlertRule.from_request(cluster, namespace, alert_type, payload)
    rule.name = existing.name
    rule.state = existing.state
    _prepare(state, rule)
    client = state.fleet.client_of(cluster)

    if state.rules.replace(rule) is None:
        raise RuleNotFound(f"alert rule {name} not found", meta=rule_meta(rule))
    logger.info("Updated rule %s/%s (%s) on cluster=%s", namespace, rule.name, alert_type, cluster)

    _apply(client, rule)
    return reconcile_service.with_live_alerts(rule, {})


# PUBLIC_INTERFACE
def delete_rule(state: AppState, cluster: str, namespace: str, alert_type: AlertType, name: str) -> None:
    """Tear down the rule's cluster resources and silences, then drop the stored record."""
    rule = _get_or_raise(state, cluster, namespace, alert_type, name)
    client = state.fleet.client_of(cluster)
    sync_service.teardown_rule(client, rule.namespace, rule.name)
    state.rules.delete(cluster, namespace, rule.name)
    logger.info("Deleted rule %s/%s (%s) on cluster=%s", namespace, rule.name, alert_type, cluster)


# PUBLIC_INTERFACE
def sync_rule(state: AppState, cluster: str, namespace: str, alert_type: AlertType, name: str) -> Dict[str, str]:
    """Re-apply a stored rule to its cluster (closes a partial-convergence window)."""
    rule = _get_or_raise(state, cluster, namespace, alert_type, name)
    return resync_stored_rule(state, rule)


# PUBLIC_INTERFACE
def resync_stored_rule(state: AppState, rule: AlertRule) -> Dict[str, str]:
    """Resolve a stored rule's channels again and apply it."""
    rule.receivers = resolve_receivers(rule.receivers, state.channels.get, state.config.default_channel_id)
    return _apply(state.fleet.client_of(rule.cluster), rule)
