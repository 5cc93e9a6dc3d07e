from __future__ import annotations

import httpx
import pytest

BASE = "/api/clusters/c1/namespaces/team-a"


def _webhook(name: str = "ops", url: str = "http://hooks/ops", **extra) -> dict:
    return {"name": name, "channelConfig": {"channelType": "webhook", "url": url}, **extra}


@pytest.mark.anyio
async def test_root_health_ok(async_client: httpx.AsyncClient):
    res = await async_client.get("/")
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "ok"
    assert "timestamp" in body


@pytest.mark.anyio
async def test_health_reports_settings_and_masks_mongo_uri(async_client: httpx.AsyncClient):
    res = await async_client.get("/api/health/settings")
    assert res.status_code == 200
    body = res.json()
    assert body["global_alert_namespace"] == "global"
    assert body["default_channel_id"] == "default"
    assert body["alert_resync_interval_sec"] == 0

    res = await async_client.get("/api/health/mongo")
    assert res.status_code == 200
    body = res.json()
    assert isinstance(body["ok"], bool)
    assert body["mongo_db_name"] == "alerting_test"
    assert body["mongo_uri_sanitized"].startswith("mongodb://")


@pytest.mark.anyio
async def test_channel_crud(async_client: httpx.AsyncClient):
    res = await async_client.get("/api/channels")
    assert res.status_code == 200
    assert [c["id"] for c in res.json()["items"]] == ["default"]

    res = await async_client.post("/api/channels", json=_webhook(id="ops"))
    assert res.status_code == 201
    assert res.json()["id"] == "ops"

    res = await async_client.post("/api/channels", json=_webhook(id="ops"))
    assert res.status_code == 400
    assert res.json()["code"] == "duplicate_channel"

    res = await async_client.post("/api/channels", json=_webhook(name="generated"))
    assert res.status_code == 201
    assert len(res.json()["id"]) == 32

    email = {
        "name": "ops-mail",
        "channelConfig": {
            "channelType": "email",
            "smtpServer": "smtp.example.com:587",
            "from": "alerts@example.com",
            "to": "ops@example.com",
            "authPassword": "s3cret",
        },
    }
    res = await async_client.put("/api/channels/ops", json=email)
    assert res.status_code == 200
    assert res.json()["channelConfig"]["channelType"] == "email"

    res = await async_client.get("/api/channels/ops")
    assert res.json()["name"] == "ops-mail"

    res = await async_client.delete("/api/channels/ops")
    assert res.status_code == 204
    res = await async_client.get("/api/channels/ops")
    assert res.status_code == 404
    assert res.json()["code"] == "channel_not_found"


@pytest.mark.anyio
async def test_channel_delete_guards(async_client: httpx.AsyncClient):
    res = await async_client.delete("/api/channels/default")
    assert res.status_code == 409
    assert res.json()["code"] == "default_channel_protected"

    await async_client.post("/api/channels", json=_webhook(id="ops"))
    rule = {
        "name": "high-cpu",
        "generator": {"kind": "promql", "scope": "node", "resource": "cpu", "rule": "usage", "unit": "percent-0-100"},
        "alertLevels": [{"severity": "critical", "compareOp": ">", "compareValue": "90"}],
        "receivers": [{"alertChannelId": "ops"}],
    }
    res = await async_client.post(f"{BASE}/monitor/alerts", json=rule)
    assert res.status_code == 201

    res = await async_client.delete("/api/channels/ops")
    assert res.status_code == 409
    body = res.json()
    assert body["code"] == "channel_in_use"
    assert body["meta"]["rules"] == 1


@pytest.mark.anyio
async def test_templates_catalog(async_client: httpx.AsyncClient):
    res = await async_client.get("/api/templates", params={"scope": "node"})
    assert res.status_code == 200
    names = [(t["resource"], t["rule"]) for t in res.json()["items"]]
    assert names == [("cpu", "usage"), ("memory", "usage")]

    res = await async_client.get("/api/templates/node/cpu/usage")
    assert res.status_code == 200
    assert res.json()["ruleShowName"] == "node cpu usage"

    res = await async_client.get("/api/templates/node/cpu/nope")
    assert res.status_code == 404
    assert res.json()["code"] == "template_not_found"

    body = {"expr": "sum(rate(http_requests_total[5m])) by (service)", "labels": ["service"], "unit": "reqps-req/s"}
    res = await async_client.put("/api/templates/app/http/rps", json=body)
    assert res.status_code == 200
    assert res.json()["scope"] == "app"

    res = await async_client.put("/api/templates/app/http/errors", json={"expr": "up == 0"})
    assert res.status_code == 400
    assert res.json()["code"] == "comparison_operator_forbidden"

    res = await async_client.put("/api/templates/app/http/bad", json={"expr": "sum("})
    assert res.status_code == 400
    assert res.json()["code"] == "expr_syntax_error"

    res = await async_client.put("/api/templates/app/http/unit", json={"expr": "up", "unit": "parsecs"})
    assert res.status_code == 400
    assert res.json()["code"] == "unknown_unit"


@pytest.mark.anyio
async def test_cluster_registry_hides_token(async_client: httpx.AsyncClient):
    res = await async_client.get("/api/clusters")
    assert res.status_code == 200
    assert [c["name"] for c in res.json()["items"]] == ["c1"]
    assert "token" not in res.json()["items"][0]

    body = {"name": "c2", "apiServer": "https://kube2.test", "token": "t2", "prometheusUrl": "http://prom2.test"}
    res = await async_client.post("/api/clusters", json=body)
    assert res.status_code == 201
    assert "token" not in res.json()

    res = await async_client.post("/api/clusters", json=body)
    assert res.status_code == 409
    assert res.json()["code"] == "cluster_already_exists"

    res = await async_client.patch("/api/clusters/c2", json={"alertmanagerUrl": "http://am2.test"})
    assert res.status_code == 200
    assert res.json()["alertmanagerUrl"] == "http://am2.test"
    assert res.json()["prometheusUrl"] == "http://prom2.test"

    res = await async_client.delete("/api/clusters/c2")
    assert res.status_code == 204
    res = await async_client.get("/api/clusters/c2")
    assert res.status_code == 404
    assert res.json()["code"] == "cluster_not_found"
