from __future__ import annotations

import copy
import json
import os
from collections.abc import AsyncIterator
from typing import Any, Dict, List, Optional, Tuple

import httpx
import mongomock
import pytest

from src.alerting.clients.cluster import ClusterFleet
from src.alerting.config import BackendConfig
from src.alerting.db.mongo import MongoManager
from src.alerting.schemas.clusters import Cluster
from src.alerting.services.channels_service import ensure_default_channel
from src.alerting.services.templates_service import seed_builtin_templates
from src.alerting.state import AppState, build_state

API_SERVER = "https://kube.test"
PROMETHEUS_URL = "http://prometheus.test"
ALERTMANAGER_URL = "http://alertmanager.test"


class FakeClusterApi:
    """
    In-memory stand-in for one cluster's Kubernetes, Prometheus and Alertmanager HTTP APIs.

    Served through ``httpx.MockTransport`` so the real ClusterClient is exercised.
    """

    def __init__(self) -> None:
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.rule_groups: List[Dict[str, Any]] = []
        self.targets: List[Dict[str, Any]] = []
        self.silences: List[Dict[str, Any]] = []
        self.requests: List[Tuple[str, str]] = []
        self.failures: Dict[Tuple[str, str], int] = {}
        self.prometheus_down = False
        self._rv = 0

    # ---- helpers for tests ----

    def fail(self, method: str, path_fragment: str, status: int = 500) -> None:
        self.failures[(method, path_fragment)] = status

    def obj(self, path: str) -> Optional[Dict[str, Any]]:
        return self.objects.get(path)

    def put_object(self, path: str, obj: Dict[str, Any]) -> None:
        self.objects[path] = copy.deepcopy(obj)

    def writes(self) -> List[Tuple[str, str]]:
        return [r for r in self.requests if r[0] in ("POST", "PUT", "DELETE")]

    def set_live_rule(
        self, namespace: str, name: str, state: str, alerts: Optional[List[Dict[str, Any]]] = None, severity: str = "critical"
    ) -> None:
        self.rule_groups.append(
            {
                "name": name,
                "file": f"{namespace}-{name}.yaml",
                "rules": [
                    {
                        "name": name,
                        "type": "alerting",
                        "state": state,
                        "labels": {"gems_namespace": namespace, "gems_alertname": name, "severity": severity},
                        "alerts": alerts or [],
                    }
                ],
            }
        )

    # ---- transport ----

    def handler(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        self.requests.append((method, path))
        for (m, fragment), status in self.failures.items():
            if m == method and fragment in path:
                return httpx.Response(status, json={"message": "injected failure"})

        host = request.url.host
        if host == "prometheus.test":
            return self._prometheus(path)
        if host == "alertmanager.test":
            return self._alertmanager(method, path)
        return self._kube(method, path, request)

    def _prometheus(self, path: str) -> httpx.Response:
        if self.prometheus_down:
            return httpx.Response(503, text="prometheus unavailable")
        if path == "/api/v1/rules":
            return httpx.Response(200, json={"status": "success", "data": {"groups": self.rule_groups}})
        if path == "/api/v1/targets":
            return httpx.Response(200, json={"status": "success", "data": {"activeTargets": self.targets}})
        return httpx.Response(404)

    def _alertmanager(self, method: str, path: str) -> httpx.Response:
        if method == "GET" and path == "/api/v2/silences":
            return httpx.Response(200, json=self.silences)
        if method == "DELETE" and path.startswith("/api/v2/silence/"):
            sid = path.rsplit("/", 1)[-1]
            for s in self.silences:
                if s["id"] == sid:
                    s["status"] = {"state": "expired"}
                    return httpx.Response(200)
            return httpx.Response(404)
        return httpx.Response(404)

    def _kube(self, method: str, path: str, request: httpx.Request) -> httpx.Response:
        if method == "GET":
            obj = self.objects.get(path)
            if obj is None:
                return httpx.Response(404, json={"kind": "Status", "reason": "NotFound"})
            return httpx.Response(200, json=copy.deepcopy(obj))
        if method == "DELETE":
            if self.objects.pop(path, None) is None:
                return httpx.Response(404, json={"kind": "Status", "reason": "NotFound"})
            return httpx.Response(200, json={"kind": "Status", "status": "Success"})

        body = json.loads(request.content)
        self._rv += 1
        body.setdefault("metadata", {})["resourceVersion"] = str(self._rv)
        if method == "POST":
            full = f"{path}/{body['metadata']['name']}"
            if full in self.objects:
                return httpx.Response(409, json={"kind": "Status", "reason": "AlreadyExists"})
            self.objects[full] = body
            return httpx.Response(201, json=body)
        if method == "PUT":
            if path not in self.objects:
                return httpx.Response(404, json={"kind": "Status", "reason": "NotFound"})
            self.objects[path] = body
            return httpx.Response(200, json=body)
        return httpx.Response(405)


def _test_config(**overrides: Any) -> BackendConfig:
    values: Dict[str, Any] = dict(
        mongo_uri="mongodb://localhost:27017",
        mongo_db_name="alerting_test",
        global_alert_namespace="global",
        default_channel_id="default",
        default_channel_name="default-webhook",
        default_channel_webhook_url="http://alert-proxy.alerting:9094/webhook",
        remote_timeout_sec=5,
        remote_verify_tls=True,
        alert_resync_interval_sec=0,
        default_page_size=10,
    )
    values.update(overrides)
    return BackendConfig(**values)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def cluster_api() -> FakeClusterApi:
    """Fake remote cluster shared by the fleet of ``app_state``."""
    return FakeClusterApi()


@pytest.fixture
def app_state(cluster_api: FakeClusterApi) -> AppState:
    """
    AppState backed by mongomock and the fake cluster.

    Indexes, the default channel, built-in templates and cluster "c1" are in place.
    """
    mongo = MongoManager("mongodb://localhost:27017", "alerting_test")
    mongo._app_client = mongomock.MongoClient()
    mongo.init_indexes()

    state = build_state(_test_config(), mongo)
    state.fleet = ClusterFleet(state.clusters.get, transport=httpx.MockTransport(cluster_api.handler))
    state.clusters.insert(
        Cluster(
            name="c1",
            api_server=API_SERVER,
            token="secret-token",
            prometheus_url=PROMETHEUS_URL,
            alertmanager_url=ALERTMANAGER_URL,
        )
    )
    ensure_default_channel(state)
    seed_builtin_templates(state)
    return state


@pytest.fixture
def app(app_state: AppState):
    """FastAPI app with its state swapped for the in-memory ``app_state``."""
    os.environ.setdefault("BACKEND_MONGO_URI", "mongodb://localhost:27017")

    from src.alerting.main import app as fastapi_app

    original = fastapi_app.state.state
    fastapi_app.state.state = app_state
    yield fastapi_app
    fastapi_app.state.state = original


@pytest.fixture
async def async_client(app) -> AsyncIterator[httpx.AsyncClient]:
    """
    Async HTTP client bound to the FastAPI ASGI app.

    ASGITransport does not run startup hooks, so no Mongo connection or resync loop is started.
    """
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
