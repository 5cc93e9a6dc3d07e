"""Monitor collectors: ServiceMonitors that make Prometheus scrape a Service port."""

from __future__ import annotations

import logging
from typing import Any, Dict

from src.alerting.clients.cluster import SERVICE, SERVICE_MONITOR, create_or_update
from src.alerting.errors import CollectorError, RemoteError
from src.alerting.schemas.collectors import CollectorStatus, MonitorCollector
from src.alerting.schemas.common import OkResponse
from src.alerting.state import AppState

logger = logging.getLogger(__name__)

MONITOR_COLLECTOR_LABEL = "alerting.io/monitor-collector"
STATUS_ENABLED = "enabled"
SCRAPE_INTERVAL = "30s"


def scrape_pool_name(namespace: str, service: str) -> str:
    return f"serviceMonitor/{namespace}/{service}/0"


def _labels(obj: Dict[str, Any]) -> Dict[str, str]:
    return (obj.get("metadata") or {}).get("labels") or {}


def _selector_matches(match_labels: Dict[str, str], labels: Dict[str, str]) -> bool:
    return all(labels.get(k) == v for k, v in match_labels.items())


# PUBLIC_INTERFACE
def get_collector(state: AppState, cluster: str, namespace: str, service: str) -> MonitorCollector:
    """Read the collector for ``service``; port and path stay empty when the monitor no longer targets it."""
    client = state.fleet.client_of(cluster)
    monitor = client.get(SERVICE_MONITOR, namespace, service)
    svc = client.get(SERVICE, namespace, service)

    ret = MonitorCollector(service=service)
    spec = monitor.get("spec") or {}
    match_labels = (spec.get("selector") or {}).get("matchLabels") or {}
    if not _selector_matches(match_labels, _labels(svc)):
        logger.warning("Selector on servicemonitor %s/%s doesn't match service labels", namespace, service)
        return ret
    endpoints = spec.get("endpoints") or []
    if not endpoints:
        logger.warning("Servicemonitor %s/%s has no endpoints", namespace, service)
        return ret
    ret.port = endpoints[0].get("port") or ""
    ret.path = endpoints[0].get("path") or ""
    return ret


# PUBLIC_INTERFACE
def collector_status(state: AppState, cluster: str, namespace: str, service: str) -> CollectorStatus:
    """
    Active scrape target of the collector.

    Lookup failures are reported in the result (health "unknown") rather than raised.
    """
    pool = scrape_pool_name(namespace, service)
    try:
        targets = state.fleet.client_of(cluster).list_active_targets()
        for t in targets:
            if t.get("scrapePool") == pool:
                return CollectorStatus(
                    scrape_pool=pool,
                    scrape_url=t.get("scrapeUrl") or "",
                    health=t.get("health") or "unknown",
                    last_error=t.get("lastError") or "",
                    last_scrape=t.get("lastScrape"),
                    labels=t.get("labels") or {},
                )
        raise RemoteError(f"scrape target {pool} not found", meta={"cluster": cluster})
    except Exception as exc:
        logger.warning("Get scrape target status for %s on cluster=%s failed: %s", pool, cluster, exc)
        return CollectorStatus(scrape_pool=pool, health="unknown", last_error=str(exc))


# PUBLIC_INTERFACE
def create_or_update_collector(state: AppState, cluster: str, namespace: str, payload: MonitorCollector) -> OkResponse:
    """Point a ServiceMonitor at the named Service port and mark the Service as collected."""
    client = state.fleet.client_of(cluster)
    svc = client.get(SERVICE, namespace, payload.service)

    port_names = [p.get("name") for p in ((svc.get("spec") or {}).get("ports") or [])]
    if payload.port not in port_names:
        raise CollectorError(
            f"port {payload.port} not found in Service {payload.service}",
            meta={"service": payload.service, "port": payload.port},
        )

    selector = dict(_labels(svc))
    selector.pop(MONITOR_COLLECTOR_LABEL, None)

    def mutate(obj: Dict[str, Any]) -> None:
        obj["spec"] = {
            "selector": {"matchLabels": selector},
            "namespaceSelector": {"any": False, "matchNames": [namespace]},
            "endpoints": [
                {"port": payload.port, "honorLabels": True, "interval": SCRAPE_INTERVAL, "path": payload.path}
            ],
        }

    outcome = create_or_update(client, SERVICE_MONITOR, namespace, payload.service, mutate)

    svc.setdefault("metadata", {}).setdefault("labels", {})[MONITOR_COLLECTOR_LABEL] = STATUS_ENABLED
    client.update(SERVICE, namespace, payload.service, svc)
    return OkResponse(meta={"serviceMonitor": outcome})


# PUBLIC_INTERFACE
def delete_collector(state: AppState, cluster: str, namespace: str, service: str) -> OkResponse:
    client = state.fleet.client_of(cluster)
    svc = client.get(SERVICE, namespace, service)
    client.delete(SERVICE_MONITOR, namespace, service)

    labels = (svc.get("metadata") or {}).get("labels")
    if labels:
        labels.pop(MONITOR_COLLECTOR_LABEL, None)
    client.update(SERVICE, namespace, service, svc)
    return OkResponse()
