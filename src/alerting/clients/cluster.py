"""HTTP clients for managed clusters.

A ``ClusterClient`` talks to three endpoints of one cluster:

- the Kubernetes API (declarative resources by kind/namespace/name),
- Prometheus (active scrape targets, live alerting-rule states),
- Alertmanager (silences).

``ClusterFleet`` resolves cluster records and caches one client per cluster.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from threading import RLock
from typing import Any, Callable, Dict, List, Optional

import httpx

from src.alerting.errors import ClusterNotFound, RemoteError, ResourceNotFound
from src.alerting.schemas.alerts import RealTimeAlert, RealTimeAlertRule
from src.alerting.schemas.clusters import Cluster

logger = logging.getLogger(__name__)

# Labels stamped on every evaluation rule; used to group live states back to stored rules.
ALERT_NAMESPACE_LABEL = "gems_namespace"
ALERT_NAME_LABEL = "gems_alertname"

_STATE_ORDER = {"inactive": 0, "pending": 1, "firing": 2}
_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


@dataclass(frozen=True)
class ResourceKind:
    """REST coordinates of a Kubernetes resource kind."""

    kind: str
    group: str
    version: str
    plural: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    def path(self, namespace: str, name: Optional[str] = None) -> str:
        prefix = f"/apis/{self.group}/{self.version}" if self.group else f"/api/{self.version}"
        base = f"{prefix}/namespaces/{namespace}/{self.plural}"
        return f"{base}/{name}" if name else base

    def new_object(self, namespace: str, name: str) -> Dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": {"namespace": namespace, "name": name},
        }


SECRET = ResourceKind("Secret", "", "v1", "secrets")
SERVICE = ResourceKind("Service", "", "v1", "services")
PROMETHEUS_RULE = ResourceKind("PrometheusRule", "monitoring.coreos.com", "v1", "prometheusrules")
SERVICE_MONITOR = ResourceKind("ServiceMonitor", "monitoring.coreos.com", "v1", "servicemonitors")
ALERTMANAGER_CONFIG = ResourceKind("AlertmanagerConfig", "monitoring.coreos.com", "v1alpha1", "alertmanagerconfigs")


def real_time_alert_key(namespace: str, name: str) -> str:
    return f"{namespace}/{name}"


def _parse_time(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    # Prometheus emits nanosecond precision; datetime holds microseconds.
    text = _FRACTION_RE.sub(r".\1", raw).replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


class ClusterClient:
    """Blocking client for one cluster's Kubernetes, Prometheus and Alertmanager APIs."""

    def __init__(
        self,
        cluster: Cluster,
        *,
        timeout_sec: float = 10.0,
        verify_tls: bool = True,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.name = cluster.name
        self._api_server = cluster.api_server.rstrip("/")
        self._prometheus_url = (cluster.prometheus_url or "").rstrip("/")
        self._alertmanager_url = (cluster.alertmanager_url or "").rstrip("/")
        self._token = cluster.token
        self._http = httpx.Client(
            timeout=timeout_sec,
            verify=bool(verify_tls and cluster.verify_tls),
            transport=transport,
        )

    @property
    def has_alertmanager(self) -> bool:
        return bool(self._alertmanager_url)

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, url: str, *, auth: bool = False, **kwargs: Any) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if auth and self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        try:
            resp = self._http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise RemoteError(f"{method} {url} failed: {exc}", meta={"cluster": self.name}) from exc
        if resp.status_code == 404:
            raise ResourceNotFound(f"{method} {url}: not found", status=404, meta={"cluster": self.name})
        if resp.status_code >= 400:
            raise RemoteError(
                f"{method} {url} returned {resp.status_code}: {resp.text[:300]}",
                status=resp.status_code,
                meta={"cluster": self.name},
            )
        return resp

    # ---- Kubernetes resources ----

    def get(self, kind: ResourceKind, namespace: str, name: str) -> Dict[str, Any]:
        return self._request("GET", self._api_server + kind.path(namespace, name), auth=True).json()

    def create(self, kind: ResourceKind, namespace: str, obj: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", self._api_server + kind.path(namespace), auth=True, json=obj).json()

    def update(self, kind: ResourceKind, namespace: str, name: str, obj: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", self._api_server + kind.path(namespace, name), auth=True, json=obj).json()

    def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        self._request("DELETE", self._api_server + kind.path(namespace, name), auth=True)

    # ---- Prometheus ----

    def _prometheus_data(self, path: str, params: Dict[str, str]) -> Dict[str, Any]:
        if not self._prometheus_url:
            raise RemoteError(f"cluster {self.name} has no prometheus url configured", meta={"cluster": self.name})
        body = self._request("GET", self._prometheus_url + path, params=params).json()
        if body.get("status") != "success":
            raise RemoteError(
                f"prometheus {path} failed: {body.get('error') or body.get('status')}", meta={"cluster": self.name}
            )
        return body.get("data") or {}

    def list_active_targets(self) -> List[Dict[str, Any]]:
        """Active scrape targets as reported by ``/api/v1/targets``."""
        return list(self._prometheus_data("/api/v1/targets", {"state": "active"}).get("activeTargets") or [])

    def list_alert_rule_states(self, namespace: Optional[str] = None) -> Dict[str, RealTimeAlertRule]:
        """
        Live alerting-rule states keyed by ``"<namespace>/<name>"``.

        Evaluation rules of one stored rule (one per severity level) are merged; the
        aggregate state is the most advanced of firing > pending > inactive.
        """
        data = self._prometheus_data("/api/v1/rules", {"type": "alert"})
        out: Dict[str, RealTimeAlertRule] = {}
        for group in data.get("groups") or []:
            for rule in group.get("rules") or []:
                labels = rule.get("labels") or {}
                ns = labels.get(ALERT_NAMESPACE_LABEL)
                name = labels.get(ALERT_NAME_LABEL)
                if not ns or not name:
                    continue
                if namespace and ns != namespace:
                    continue
                key = real_time_alert_key(ns, name)
                entry = out.get(key)
                if entry is None:
                    entry = RealTimeAlertRule(name=name, namespace=ns)
                    out[key] = entry
                state = rule.get("state") or "inactive"
                if _STATE_ORDER.get(state, 0) > _STATE_ORDER[entry.state]:
                    entry.state = state
                for alert in rule.get("alerts") or []:
                    entry.alerts.append(
                        RealTimeAlert(
                            labels=alert.get("labels") or {},
                            annotations=alert.get("annotations") or {},
                            state=alert.get("state") or "",
                            active_at=_parse_time(alert.get("activeAt")),
                            value=str(alert.get("value") or ""),
                        )
                    )
        return out

    # ---- Alertmanager ----

    def list_silences(self) -> List[Dict[str, Any]]:
        if not self._alertmanager_url:
            raise RemoteError(f"cluster {self.name} has no alertmanager url configured", meta={"cluster": self.name})
        return list(self._request("GET", self._alertmanager_url + "/api/v2/silences").json() or [])

    def expire_silence(self, silence_id: str) -> None:
        if not self._alertmanager_url:
            raise RemoteError(f"cluster {self.name} has no alertmanager url configured", meta={"cluster": self.name})
        self._request("DELETE", f"{self._alertmanager_url}/api/v2/silence/{silence_id}")


# PUBLIC_INTERFACE
def create_or_update(
    client: ClusterClient,
    kind: ResourceKind,
    namespace: str,
    name: str,
    mutate: Callable[[Dict[str, Any]], None],
    labels: Optional[Dict[str, str]] = None,
) -> str:
    """
    Fetch the object (or start from an empty one), apply ``mutate`` in place and write it back.

    Nothing is written when the mutation leaves an existing object unchanged.
    Returns "created", "updated" or "unchanged".
    """
    try:
        obj = client.get(kind, namespace, name)
        found = True
    except ResourceNotFound:
        obj = kind.new_object(namespace, name)
        found = False

    before = copy.deepcopy(obj)
    if labels:
        obj.setdefault("metadata", {}).setdefault("labels", {}).update(labels)
    mutate(obj)

    if not found:
        client.create(kind, namespace, obj)
        logger.info("Created %s %s/%s on cluster=%s", kind.kind, namespace, name, client.name)
        return "created"
    if obj == before:
        return "unchanged"
    client.update(kind, namespace, name, obj)
    logger.info("Updated %s %s/%s on cluster=%s", kind.kind, namespace, name, client.name)
    return "updated"


class ClusterFleet:
    """
    Per-cluster client cache.

    Cluster records are read from the store on first use; ``evict`` drops a cached
    client after its record changes.
    """

    def __init__(
        self,
        find_cluster: Callable[[str], Optional[Cluster]],
        *,
        timeout_sec: float = 10.0,
        verify_tls: bool = True,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._find_cluster = find_cluster
        self._timeout_sec = timeout_sec
        self._verify_tls = verify_tls
        self._transport = transport
        self._clients: Dict[str, ClusterClient] = {}
        self._lock = RLock()

    def client_of(self, cluster: str) -> ClusterClient:
        """Get (or create) the cached client for ``cluster``."""
        with self._lock:
            existing = self._clients.get(cluster)
            if existing is not None:
                return existing
            record = self._find_cluster(cluster)
            if record is None:
                raise ClusterNotFound(f"cluster {cluster} not found", meta={"cluster": cluster})
            client = ClusterClient(
                record, timeout_sec=self._timeout_sec, verify_tls=self._verify_tls, transport=self._transport
            )
            self._clients[cluster] = client
            return client

    def evict(self, cluster: str) -> None:
        with self._lock:
            client = self._clients.pop(cluster, None)
        if client is not None:
            client.close()

    def close(self) -> None:
        """Close all cached clients."""
        with self._lock:
            for name, client in list(self._clients.items()):
                try:
                    client.close()
                except Exception:
                    logger.exception("Error closing cluster client for cluster=%s", name)
                self._clients.pop(name, None)
