"""Multi-resource synchronizer.

A stored rule is applied to its cluster as three resources, in order:

1. the namespace-wide email credential Secret (``alert-email-password``),
2. a PrometheusRule with one evaluation rule per severity level,
3. an AlertmanagerConfig routing the rule's alerts to its receivers, with
   inhibit rules between adjacent severity levels.

Every step is an idempotent create-or-update, so re-applying an unchanged rule
writes nothing. Teardown removes (2) and (3) plus any active silences; the Secret
is shared by all rules of the namespace and is kept.
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Callable, Dict, List, Tuple

from src.alerting.clients.cluster import (
    ALERT_NAME_LABEL,
    ALERT_NAMESPACE_LABEL,
    ALERTMANAGER_CONFIG,
    PROMETHEUS_RULE,
    SECRET,
    ClusterClient,
    create_or_update,
)
from src.alerting.engine.message import VALUE_ANNOTATION_EXPR
from src.alerting.errors import ResourceNotFound, SyncError
from src.alerting.schemas.alerts import AlertRule
from src.alerting.schemas.channels import AlertChannel, EmailChannel, WebhookChannel
from src.alerting.schemas.common import SEVERITY_RANK

logger = logging.getLogger(__name__)

SEVERITY_LABEL = "severity"
MESSAGE_ANNOTATION_KEY = "message"
VALUE_ANNOTATION_KEY = "value"

NULL_RECEIVER_NAME = "null"
ROUTE_GROUP_WAIT = "30s"
ROUTE_GROUP_INTERVAL = "30s"

EMAIL_SECRET_NAME = "alert-email-password"
EMAIL_SECRET_LABELS = {"alerting.io/secret-type": "alert-email"}

RESOURCE_TYPE_LABEL = "alerting.io/alert-type"
RESOURCE_NAME_LABEL = "alerting.io/alert-name"


def email_secret_key(receiver_name: str, sender: str) -> str:
    """Key of one channel's password inside the email Secret."""
    return f"{receiver_name}-{sender.replace('@', '')}"


def _resource_labels(rule: AlertRule) -> Dict[str, str]:
    return {RESOURCE_TYPE_LABEL: rule.alert_type, RESOURCE_NAME_LABEL: rule.name}


def _rule_matchers(rule: AlertRule) -> List[Dict[str, str]]:
    return [
        {"name": ALERT_NAMESPACE_LABEL, "value": rule.namespace},
        {"name": ALERT_NAME_LABEL, "value": rule.name},
    ]


def _resolved_channels(rule: AlertRule) -> List[Tuple[str, AlertChannel]]:
    out = []
    for rec in rule.receivers:
        if rec.alert_channel is None:
            raise ValueError(f"receiver {rec.alert_channel_id} has no resolved channel")
        out.append((rec.interval, rec.alert_channel))
    return out


# ---- resource builders (pure) ----


def build_email_secret_data(rule: AlertRule) -> Dict[str, str]:
    """Secret ``data`` entries contributed by the rule's email channels (base64, as on the wire)."""
    data: Dict[str, str] = {}
    for _, channel in _resolved_channels(rule):
        cfg = channel.channel_config
        if isinstance(cfg, EmailChannel):
            key = email_secret_key(channel.receiver_name(), cfg.from_)
            data[key] = base64.b64encode(cfg.auth_password.encode("utf-8")).decode("ascii")
    return data


def build_rule_groups(rule: AlertRule) -> List[Dict[str, Any]]:
    """One rule group named after the rule, one evaluation rule per severity level."""
    rules = []
    for level in rule.alert_levels:
        item: Dict[str, Any] = {
            "alert": rule.name,
            "expr": f"{rule.expr}{level.compare_op}{level.compare_value}",
        }
        if rule.for_:
            item["for"] = rule.for_
        item["labels"] = {
            ALERT_NAMESPACE_LABEL: rule.namespace,
            ALERT_NAME_LABEL: rule.name,
            SEVERITY_LABEL: level.severity,
        }
        item["annotations"] = {
            MESSAGE_ANNOTATION_KEY: rule.message,
            VALUE_ANNOTATION_KEY: VALUE_ANNOTATION_EXPR,
        }
        rules.append(item)
    return [{"name": rule.name, "rules": rules}]


def channel_receiver(channel: AlertChannel) -> Dict[str, Any]:
    """Alertmanager receiver definition for a channel."""
    name = channel.receiver_name()
    cfg = channel.channel_config
    if isinstance(cfg, EmailChannel):
        return {
            "name": name,
            "emailConfigs": [
                {
                    "to": cfg.to,
                    "from": cfg.from_,
                    "smarthost": cfg.smtp_server,
                    "authUsername": cfg.from_,
                    "authPassword": {"name": EMAIL_SECRET_NAME, "key": email_secret_key(name, cfg.from_)},
                    "requireTLS": cfg.require_tls,
                    "sendResolved": cfg.send_resolved,
                }
            ],
        }
    if isinstance(cfg, WebhookChannel):
        return {"name": name, "webhookConfigs": [{"url": cfg.url, "sendResolved": cfg.send_resolved}]}
    raise TypeError(f"unsupported channel config {type(cfg).__name__}")


def build_inhibit_rules(rule: AlertRule) -> List[Dict[str, Any]]:
    """
    Suppress each lower severity while the next higher one fires.

    Levels are ordered critical > error > warning > info and paired with their
    neighbour, so N levels give N-1 inhibit rules.
    """
    if len(rule.alert_levels) < 2:
        return []
    severities = sorted({lv.severity for lv in rule.alert_levels}, key=lambda s: SEVERITY_RANK[s])
    equal = list(rule.inhibit_labels) + [ALERT_NAMESPACE_LABEL, ALERT_NAME_LABEL]
    out = []
    for source, target in zip(severities, severities[1:]):
        out.append(
            {
                "sourceMatch": _rule_matchers(rule) + [{"name": SEVERITY_LABEL, "value": source}],
                "targetMatch": _rule_matchers(rule) + [{"name": SEVERITY_LABEL, "value": target}],
                "equal": list(equal),
            }
        )
    return out


def build_alertmanager_config_spec(rule: AlertRule) -> Dict[str, Any]:
    routes = []
    receivers: List[Dict[str, Any]] = [{"name": NULL_RECEIVER_NAME}]
    for interval, channel in _resolved_channels(rule):
        route: Dict[str, Any] = {"receiver": channel.receiver_name()}
        if interval:
            route["repeatInterval"] = interval
        route["continue"] = True
        route["matchers"] = _rule_matchers(rule)
        routes.append(route)
        receivers.append(channel_receiver(channel))
    return {
        "route": {
            "receiver": NULL_RECEIVER_NAME,
            "groupBy": [ALERT_NAMESPACE_LABEL, ALERT_NAME_LABEL],
            "groupWait": ROUTE_GROUP_WAIT,
            "groupInterval": ROUTE_GROUP_INTERVAL,
            "routes": routes,
        },
        "receivers": receivers,
        "inhibitRules": build_inhibit_rules(rule),
    }


# ---- sync steps ----


def sync_email_secret(client: ClusterClient, rule: AlertRule) -> str:
    entries = build_email_secret_data(rule)

    def mutate(obj: Dict[str, Any]) -> None:
        obj["type"] = "Opaque"
        data = obj.get("data") or {}
        data.update(entries)
        obj["data"] = data

    return create_or_update(client, SECRET, rule.namespace, EMAIL_SECRET_NAME, mutate, labels=EMAIL_SECRET_LABELS)


def sync_prometheus_rule(client: ClusterClient, rule: AlertRule) -> str:
    groups = build_rule_groups(rule)

    def mutate(obj: Dict[str, Any]) -> None:
        obj["spec"] = {"groups": groups}

    return create_or_update(client, PROMETHEUS_RULE, rule.namespace, rule.name, mutate, labels=_resource_labels(rule))


def sync_alertmanager_config(client: ClusterClient, rule: AlertRule) -> str:
    spec = build_alertmanager_config_spec(rule)

    def mutate(obj: Dict[str, Any]) -> None:
        obj["spec"] = spec

    return create_or_update(
        client, ALERTMANAGER_CONFIG, rule.namespace, rule.name, mutate, labels=_resource_labels(rule)
    )


_STAGES: List[Tuple[str, Callable[[ClusterClient, AlertRule], str]]] = [
    ("secret", sync_email_secret),
    ("rule", sync_prometheus_rule),
    ("routing", sync_alertmanager_config),
]


# PUBLIC_INTERFACE
def apply_rule(client: ClusterClient, rule: AlertRule) -> Dict[str, str]:
    """
    Converge the rule's three cluster resources to the stored rule.

    Stops at the first failing stage and raises SyncError naming it; earlier stages
    are not rolled back. Returns the create_or_update outcome per stage.
    """
    results: Dict[str, str] = {}
    for stage, step in _STAGES:
        try:
            results[stage] = step(client, rule)
        except Exception as exc:
            logger.warning(
                "Sync stage=%s failed for rule %s/%s on cluster=%s: %s",
                stage,
                rule.namespace,
                rule.name,
                client.name,
                exc,
            )
            raise SyncError(stage, exc) from exc
    return results


def _silence_matches(silence: Dict[str, Any], namespace: str, name: str) -> bool:
    pinned = {
        m.get("name"): m.get("value")
        for m in silence.get("matchers") or []
        if not m.get("isRegex") and m.get("isEqual", True)
    }
    return pinned.get(ALERT_NAMESPACE_LABEL) == namespace and pinned.get(ALERT_NAME_LABEL) == name


# PUBLIC_INTERFACE
def expire_rule_silences(client: ClusterClient, namespace: str, name: str) -> int:
    """Expire non-expired silences pinned to the rule; returns how many were expired."""
    if not client.has_alertmanager:
        logger.warning("Cluster %s has no alertmanager url; skipping silence cleanup for %s/%s", client.name, namespace, name)
        return 0
    expired = 0
    for silence in client.list_silences():
        state = (silence.get("status") or {}).get("state")
        if state == "expired" or not _silence_matches(silence, namespace, name):
            continue
        try:
            client.expire_silence(silence["id"])
        except ResourceNotFound:
            continue
        expired += 1
    if expired:
        logger.info("Expired %d silence(s) for %s/%s on cluster=%s", expired, namespace, name, client.name)
    return expired


# PUBLIC_INTERFACE
def teardown_rule(client: ClusterClient, namespace: str, name: str) -> None:
    """
    Remove the rule's PrometheusRule and AlertmanagerConfig, then its silences.

    Missing resources are not errors. Both deletes are attempted; the first other
    failure is raised as SyncError("teardown").
    """
    first_error: Exception | None = None
    for kind in (PROMETHEUS_RULE, ALERTMANAGER_CONFIG):
        try:
            client.delete(kind, namespace, name)
            logger.info("Deleted %s %s/%s on cluster=%s", kind.kind, namespace, name, client.name)
        except ResourceNotFound:
            continue
        except Exception as exc:
            logger.warning("Delete %s %s/%s failed on cluster=%s: %s", kind.kind, namespace, name, client.name, exc)
            if first_error is None:
                first_error = exc
    if first_error is not None:
        raise SyncError("teardown", first_error) from first_error

    try:
        expire_rule_silences(client, namespace, name)
    except Exception as exc:
        raise SyncError("teardown", exc) from exc
