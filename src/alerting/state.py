from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI

from src.alerting.clients.cluster import ClusterFleet
from src.alerting.config import BackendConfig
from src.alerting.db.mongo import MongoManager
from src.alerting.db.stores import AlertChannelStore, AlertRuleStore, ClusterStore, PromqlTemplateStore


@dataclass
class AppState:
    """Typed app.state container for shared singletons."""

    config: BackendConfig
    mongo: Optional[MongoManager]
    rules: AlertRuleStore
    channels: AlertChannelStore
    templates: PromqlTemplateStore
    clusters: ClusterStore
    fleet: ClusterFleet
    resync_task: Optional[object] = None  # asyncio.Task, but kept loose to avoid import cycles


# PUBLIC_INTERFACE
def build_state(config: BackendConfig, mongo: MongoManager) -> AppState:
    """Wire stores and the cluster fleet on top of a Mongo manager."""
    cols = mongo.collections()
    clusters = ClusterStore(cols.clusters)
    return AppState(
        config=config,
        mongo=mongo,
        rules=AlertRuleStore(cols.alert_rules),
        channels=AlertChannelStore(cols.alert_channels),
        templates=PromqlTemplateStore(cols.promql_templates),
        clusters=clusters,
        fleet=ClusterFleet(
            clusters.get,
            timeout_sec=float(config.remote_timeout_sec),
            verify_tls=config.remote_verify_tls,
        ),
    )


# PUBLIC_INTERFACE
def init_state(app: FastAPI, config: BackendConfig) -> None:
    """Initialize app.state with Mongo manager, stores and config."""
    app.state.state = build_state(config, MongoManager(config.mongo_uri, config.mongo_db_name))


# PUBLIC_INTERFACE
def get_state(app: FastAPI) -> AppState:
    """Fetch typed AppState from a FastAPI app."""
    return app.state.state  # type: ignore[attr-defined]
