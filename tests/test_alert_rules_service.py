from __future__ import annotations

import pytest

from src.alerting.errors import (
    ChannelNotFound,
    ClusterNotFound,
    MissingInhibitLabels,
    RuleAlreadyExists,
    RuleNotFound,
    SyncError,
)
from src.alerting.schemas.alerts import AlertRule, AlertRuleIn, AlertRuleQuery
from src.alerting.services import alert_rules_service
from src.alerting.services.resync_service import resync_tick

PR_PATH = "/apis/monitoring.coreos.com/v1/namespaces/team-a/prometheusrules/high-cpu"
AMC_PATH = "/apis/monitoring.coreos.com/v1alpha1/namespaces/team-a/alertmanagerconfigs/high-cpu"


def _payload(name: str = "high-cpu", **overrides) -> AlertRuleIn:
    body = {
        "name": name,
        "generator": {
            "kind": "promql",
            "scope": "node",
            "resource": "cpu",
            "rule": "usage",
            "unit": "percent-0-100",
            "labelMatchers": [{"name": "pod", "type": "=~", "value": "web-.*"}],
        },
        "alertLevels": [{"severity": "critical", "compareOp": ">", "compareValue": "80"}],
        "receivers": [{"alertChannelId": "default", "interval": "1h"}],
    }
    body.update(overrides)
    return AlertRuleIn.model_validate(body)


def _log_payload(name: str = "errors") -> AlertRuleIn:
    return AlertRuleIn.model_validate(
        {
            "name": name,
            "generator": {
                "kind": "logql",
                "match": "error",
                "duration": "5m",
                "labelMatchers": [{"name": "app", "value": "web"}],
            },
            "alertLevels": [{"severity": "warning", "compareOp": ">", "compareValue": "10"}],
            "receivers": [{"alertChannelId": "default"}],
        }
    )


def _query(**kw) -> AlertRuleQuery:
    base = dict(cluster="c1", namespace="team-a", alert_type="monitor")
    base.update(kw)
    return AlertRuleQuery(**base)


def test_create_stores_and_applies_rule(app_state, cluster_api):
    out = alert_rules_service.create_rule(app_state, "c1", "team-a", "monitor", _payload())

    assert out.id
    assert 'namespace="team-a"' in out.expr
    assert out.message.startswith("high-cpu: ")
    assert [r.alert_channel_id for r in out.receivers] == ["default"]
    assert out.state == "inactive"

    stored = app_state.rules.get("c1", "team-a", "high-cpu")
    assert stored is not None
    assert stored.expr == out.expr
    assert cluster_api.obj(PR_PATH) is not None
    assert cluster_api.obj(AMC_PATH) is not None


def test_create_duplicate_is_rejected(app_state):
    alert_rules_service.create_rule(app_state, "c1", "team-a", "monitor", _payload())
    with pytest.raises(RuleAlreadyExists):
        alert_rules_service.create_rule(app_state, "c1", "team-a", "monitor", _payload())


def test_unique_index_rejects_racing_insert(app_state):
    rule = AlertRule.from_request("c1", "team-a", "monitor", _payload())
    app_state.rules.insert(rule)
    with pytest.raises(RuleAlreadyExists):
        app_state.rules.insert(AlertRule.from_request("c1", "team-a", "monitor", _payload()))


def test_same_name_in_other_namespace_is_allowed(app_state):
    alert_rules_service.create_rule(app_state, "c1", "team-a", "monitor", _payload())
    alert_rules_service.create_rule(app_state, "c1", "team-b", "monitor", _payload())
    assert app_state.rules.exists("c1", "team-b", "high-cpu")


def test_validation_failure_persists_nothing(app_state, cluster_api):
    payload = _payload(
        alertLevels=[
            {"severity": "critical", "compareOp": ">", "compareValue": "90"},
            {"severity": "warning", "compareOp": ">", "compareValue": "70"},
        ]
    )
    with pytest.raises(MissingInhibitLabels):
        alert_rules_service.create_rule(app_state, "c1", "team-a", "monitor", payload)

    with pytest.raises(ChannelNotFound):
        alert_rules_service.create_rule(
            app_state, "c1", "team-a", "monitor", _payload(receivers=[{"alertChannelId": "nope"}])
        )

    assert not app_state.rules.exists("c1", "team-a", "high-cpu")
    assert cluster_api.writes() == []


def test_sync_failure_keeps_stored_rule_and_names_stage(app_state, cluster_api):
    cluster_api.fail("POST", "/alertmanagerconfigs")
    with pytest.raises(SyncError) as excinfo:
        alert_rules_service.create_rule(app_state, "c1", "team-a", "monitor", _payload())
    assert excinfo.value.stage == "routing"
    assert app_state.rules.exists("c1", "team-a", "high-cpu")

    # Once the cluster recovers, an explicit sync converges the rule.
    cluster_api.failures.clear()
    results = alert_rules_service.sync_rule(app_state, "c1", "team-a", "monitor", "high-cpu")
    assert results == {"secret": "unchanged", "rule": "unchanged", "routing": "created"}


def test_unknown_cluster(app_state):
    with pytest.raises(ClusterNotFound):
        alert_rules_service.create_rule(app_state, "nope", "team-a", "monitor", _payload())
    assert not app_state.rules.exists("nope", "team-a", "high-cpu")


def test_update_replaces_rule_and_keeps_identity(app_state, cluster_api):
    created = alert_rules_service.create_rule(app_state, "c1", "team-a", "monitor", _payload())

    payload = _payload(
        name="renamed-in-body",
        message="cpu is hot",
        alertLevels=[{"severity": "critical", "compareOp": ">=", "compareValue": "95"}],
    )
    out = alert_rules_service.update_rule(app_state, "c1", "team-a", "monitor", "high-cpu", payload)

    assert out.name == "high-cpu"
    assert out.id == created.id
    assert out.message == "cpu is hot"
    assert not app_state.rules.exists("c1", "team-a", "renamed-in-body")

    rules = cluster_api.obj(PR_PATH)["spec"]["groups"][0]["rules"]
    assert rules[0]["expr"].endswith(">=95")
    assert rules[0]["annotations"]["message"] == "cpu is hot"


def test_update_missing_rule(app_state):
    with pytest.raises(RuleNotFound):
        alert_rules_service.update_rule(app_state, "c1", "team-a", "monitor", "missing", _payload("missing"))


def test_alert_type_scopes_lookups(app_state):
    alert_rules_service.create_rule(app_state, "c1", "team-a", "logging", _log_payload())
    with pytest.raises(RuleNotFound):
        alert_rules_service.get_rule(app_state, "c1", "team-a", "monitor", "errors")
    out = alert_rules_service.get_rule(app_state, "c1", "team-a", "logging", "errors")
    assert out.expr.startswith("sum(count_over_time(")


def test_get_refreshes_live_state(app_state, cluster_api):
    alert_rules_service.create_rule(app_state, "c1", "team-a", "monitor", _payload())
    cluster_api.set_live_rule("team-a", "high-cpu", "firing", alerts=[{"labels": {"pod": "web-1"}, "state": "firing"}])

    out = alert_rules_service.get_rule(app_state, "c1", "team-a", "monitor", "high-cpu")
    assert out.state == "firing"
    assert len(out.real_time_alerts) == 1
    assert out.receivers[0].alert_channel is not None
    assert app_state.rules.get("c1", "team-a", "high-cpu").state == "firing"


def test_list_filters_on_refreshed_state(app_state, cluster_api):
    for name in ("a-cpu", "b-cpu", "c-cpu"):
        alert_rules_service.create_rule(app_state, "c1", "team-a", "monitor", _payload(name))
    alert_rules_service.create_rule(app_state, "c1", "team-a", "logging", _log_payload())

    page = alert_rules_service.list_rules(app_state, _query())
    assert [r.name for r in page.items] == ["a-cpu", "b-cpu", "c-cpu"]
    assert page.total == 3

    cluster_api.set_live_rule("team-a", "b-cpu", "firing")
    page = alert_rules_service.list_rules(app_state, _query(state="firing"))
    assert [r.name for r in page.items] == ["b-cpu"]

    cluster_api.rule_groups = []
    page = alert_rules_service.list_rules(app_state, _query(state="firing"))
    assert page.items == []
    assert page.total == 0


def test_list_search_and_paging(app_state):
    for name in ("a-cpu", "b-cpu", "c-cpu", "d-mem"):
        alert_rules_service.create_rule(app_state, "c1", "team-a", "monitor", _payload(name))

    page = alert_rules_service.list_rules(app_state, _query(search="-CPU", page=2, size=2))
    assert page.total == 3
    assert [r.name for r in page.items] == ["c-cpu"]

    page = alert_rules_service.list_rules(app_state, _query(search="node_cpu_seconds"))
    assert page.total == 4


def test_delete_tears_down_and_removes(app_state, cluster_api):
    alert_rules_service.create_rule(app_state, "c1", "team-a", "monitor", _payload())
    alert_rules_service.delete_rule(app_state, "c1", "team-a", "monitor", "high-cpu")

    assert not app_state.rules.exists("c1", "team-a", "high-cpu")
    assert cluster_api.obj(PR_PATH) is None
    assert cluster_api.obj(AMC_PATH) is None
    with pytest.raises(RuleNotFound):
        alert_rules_service.delete_rule(app_state, "c1", "team-a", "monitor", "high-cpu")


def test_failed_teardown_keeps_stored_rule(app_state, cluster_api):
    alert_rules_service.create_rule(app_state, "c1", "team-a", "monitor", _payload())
    cluster_api.fail("DELETE", "/alertmanagerconfigs/")
    with pytest.raises(SyncError):
        alert_rules_service.delete_rule(app_state, "c1", "team-a", "monitor", "high-cpu")
    assert app_state.rules.exists("c1", "team-a", "high-cpu")


@pytest.mark.anyio
async def test_resync_tick_converges_drift(app_state, cluster_api):
    alert_rules_service.create_rule(app_state, "c1", "team-a", "monitor", _payload())
    alert_rules_service.create_rule(app_state, "c1", "team-a", "logging", _log_payload())
    del cluster_api.objects[AMC_PATH]

    synced, failed = await resync_tick(app_state)
    assert (synced, failed) == (2, 0)
    assert cluster_api.obj(AMC_PATH) is not None


@pytest.mark.anyio
async def test_resync_tick_counts_failures(app_state, cluster_api):
    alert_rules_service.create_rule(app_state, "c1", "team-a", "monitor", _payload())
    cluster_api.fail("GET", "/prometheusrules/")
    synced, failed = await resync_tick(app_state)
    assert (synced, failed) == (0, 1)
