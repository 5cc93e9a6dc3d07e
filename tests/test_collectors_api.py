from __future__ import annotations

import httpx
import pytest

COLLECTOR = "/api/clusters/c1/namespaces/team-a/monitor/collector"
SERVICE_PATH = "/api/v1/namespaces/team-a/services/web"
MONITOR_PATH = "/apis/monitoring.coreos.com/v1/namespaces/team-a/servicemonitors/web"


@pytest.fixture
def web_service(cluster_api):
    cluster_api.put_object(
        SERVICE_PATH,
        {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {"namespace": "team-a", "name": "web", "labels": {"app": "web"}},
            "spec": {"ports": [{"name": "http", "port": 80}, {"name": "metrics", "port": 9090}]},
        },
    )
    return cluster_api


@pytest.mark.anyio
async def test_collector_lifecycle(async_client: httpx.AsyncClient, web_service):
    res = await async_client.post(COLLECTOR, json={"service": "web", "port": "metrics", "path": "/metrics"})
    assert res.status_code == 200
    assert res.json()["meta"] == {"serviceMonitor": "created"}

    monitor = web_service.obj(MONITOR_PATH)
    assert monitor["spec"]["selector"] == {"matchLabels": {"app": "web"}}
    assert monitor["spec"]["namespaceSelector"] == {"any": False, "matchNames": ["team-a"]}
    assert monitor["spec"]["endpoints"] == [
        {"port": "metrics", "honorLabels": True, "interval": "30s", "path": "/metrics"}
    ]
    assert web_service.obj(SERVICE_PATH)["metadata"]["labels"]["alerting.io/monitor-collector"] == "enabled"

    res = await async_client.get(COLLECTOR, params={"service": "web"})
    assert res.status_code == 200
    assert res.json() == {"service": "web", "port": "metrics", "path": "/metrics"}

    # Re-posting the same collector leaves the ServiceMonitor untouched.
    res = await async_client.post(COLLECTOR, json={"service": "web", "port": "metrics", "path": "/metrics"})
    assert res.json()["meta"] == {"serviceMonitor": "unchanged"}

    res = await async_client.delete(COLLECTOR, params={"service": "web"})
    assert res.status_code == 200
    assert web_service.obj(MONITOR_PATH) is None
    assert "alerting.io/monitor-collector" not in web_service.obj(SERVICE_PATH)["metadata"]["labels"]


@pytest.mark.anyio
async def test_collector_with_stale_selector_has_no_port(async_client: httpx.AsyncClient, web_service):
    await async_client.post(COLLECTOR, json={"service": "web", "port": "metrics", "path": "/metrics"})
    svc = web_service.obj(SERVICE_PATH)
    svc["metadata"]["labels"]["app"] = "web-v2"
    web_service.put_object(SERVICE_PATH, svc)

    res = await async_client.get(COLLECTOR, params={"service": "web"})
    assert res.status_code == 200
    assert res.json() == {"service": "web", "port": "", "path": ""}


@pytest.mark.anyio
async def test_collector_rejects_unknown_port(async_client: httpx.AsyncClient, web_service):
    res = await async_client.post(COLLECTOR, json={"service": "web", "port": "grpc"})
    assert res.status_code == 400
    assert res.json()["code"] == "collector_error"
    assert web_service.obj(MONITOR_PATH) is None


@pytest.mark.anyio
async def test_collector_for_missing_service(async_client: httpx.AsyncClient):
    res = await async_client.post(COLLECTOR, json={"service": "ghost", "port": "metrics"})
    assert res.status_code == 404
    assert res.json()["code"] == "resource_not_found"


@pytest.mark.anyio
async def test_collector_status(async_client: httpx.AsyncClient, cluster_api):
    cluster_api.targets = [
        {
            "scrapePool": "serviceMonitor/team-a/web/0",
            "scrapeUrl": "http://10.0.0.7:9090/metrics",
            "health": "up",
            "lastError": "",
            "labels": {"job": "web"},
        }
    ]
    res = await async_client.get(f"{COLLECTOR}/status", params={"service": "web"})
    assert res.status_code == 200
    body = res.json()
    assert body["scrapePool"] == "serviceMonitor/team-a/web/0"
    assert body["health"] == "up"
    assert body["scrapeUrl"] == "http://10.0.0.7:9090/metrics"

    res = await async_client.get(f"{COLLECTOR}/status", params={"service": "api"})
    assert res.status_code == 200
    assert res.json()["health"] == "unknown"
    assert "not found" in res.json()["lastError"]

    cluster_api.prometheus_down = True
    res = await async_client.get(f"{COLLECTOR}/status", params={"service": "web"})
    assert res.status_code == 200
    assert res.json()["health"] == "unknown"
    assert res.json()["lastError"]
