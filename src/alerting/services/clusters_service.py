from __future__ import annotations

import logging

from src.alerting.errors import ClusterAlreadyExists, ClusterNotFound
from src.alerting.schemas.clusters import Cluster, ClusterCreate, ClusterListResponse, ClusterOut, ClusterUpdate
from src.alerting.schemas.common import utc_now
from src.alerting.state import AppState

logger = logging.getLogger(__name__)


def _to_out(cluster: Cluster) -> ClusterOut:
    return ClusterOut(
        name=cluster.name,
        api_server=cluster.api_server,
        prometheus_url=cluster.prometheus_url,
        alertmanager_url=cluster.alertmanager_url,
        verify_tls=cluster.verify_tls,
        created_at=cluster.created_at,
        updated_at=cluster.updated_at,
    )


def _get_or_raise(state: AppState, name: str) -> Cluster:
    cluster = state.clusters.get(name)
    if cluster is None:
        raise ClusterNotFound(f"cluster {name} not found", meta={"cluster": name})
    return cluster


# PUBLIC_INTERFACE
def list_clusters(state: AppState) -> ClusterListResponse:
    items = [_to_out(c) for c in state.clusters.list()]
    return ClusterListResponse(items=items, total=len(items))


# PUBLIC_INTERFACE
def get_cluster(state: AppState, name: str) -> ClusterOut:
    return _to_out(_get_or_raise(state, name))


# PUBLIC_INTERFACE
def create_cluster(state: AppState, payload: ClusterCreate) -> ClusterOut:
    name = payload.name.strip()
    if state.clusters.get(name) is not None:
        raise ClusterAlreadyExists(f"cluster {name} already exists", meta={"cluster": name})
    now = utc_now()
    cluster = Cluster(**payload.model_dump(exclude={"name"}), name=name, created_at=now, updated_at=now)
    state.clusters.insert(cluster)
    logger.info("Registered cluster %s api=%s", name, cluster.api_server)
    return _to_out(cluster)


# PUBLIC_INTERFACE
def update_cluster(state: AppState, name: str, payload: ClusterUpdate) -> ClusterOut:
    """Partial update; the cached client is dropped so the next call uses the new endpoints."""
    existing = _get_or_raise(state, name)
    changes = payload.model_dump(exclude_unset=True)
    updated = existing.model_copy(update={**changes, "updated_at": utc_now()})
    state.clusters.replace(updated)
    state.fleet.evict(name)
    return _to_out(updated)


# PUBLIC_INTERFACE
def delete_cluster(state: AppState, name: str) -> None:
    """Forget a cluster record; stored rules for it are left untouched."""
    _get_or_raise(state, name)
    state.clusters.delete(name)
    state.fleet.evict(name)
    logger.info("Removed cluster %s", name)
