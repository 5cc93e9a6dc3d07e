from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import RLock
from typing import Optional

from pymongo import ASCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


DEFAULT_DB_NAME = "alerting"


@dataclass(frozen=True)
class MongoCollections:
    """Convenience wrapper for app collections."""

    alert_rules: Collection
    alert_channels: Collection
    promql_templates: Collection
    clusters: Collection


class MongoManager:
    """
    MongoDB connection manager.

    Maintains one MongoClient for the app's own storage DB; remote cluster clients
    are cached separately by ``ClusterFleet``.
    """

    def __init__(self, app_mongo_uri: str, db_name: str = DEFAULT_DB_NAME):
        self._app_mongo_uri = app_mongo_uri
        self._db_name = db_name
        self._app_client: Optional[MongoClient] = None
        self._lock = RLock()

    def connect_app(self) -> None:
        """Initialize app Mongo client if needed."""
        with self._lock:
            if self._app_client is not None:
                return
            # MongoClient is thread-safe and manages internal pooling.
            self._app_client = MongoClient(self._app_mongo_uri, connect=True, tz_aware=True)

    # PUBLIC_INTERFACE
    def ping(self, timeout_ms: int = 1500) -> bool:
        """
        Ping the configured MongoDB to validate connectivity.

        This is used by startup validation and the connectivity-check endpoint.
        """
        try:
            if self._app_client is None:
                self.connect_app()
            assert self._app_client is not None
            self._app_client.admin.command("ping", maxTimeMS=int(max(250, timeout_ms)))
            return True
        except PyMongoError:
            logger.exception("Mongo ping failed (PyMongoError)")
            return False
        except Exception:
            logger.exception("Mongo ping failed (unexpected)")
            return False

    def close(self) -> None:
        """Close the app Mongo client."""
        with self._lock:
            if self._app_client is not None:
                try:
                    self._app_client.close()
                except Exception:
                    logger.exception("Error closing app MongoClient")
                self._app_client = None

    def app_db(self) -> Database:
        """Return the application database handle."""
        if self._app_client is None:
            self.connect_app()
        assert self._app_client is not None
        return self._app_client[self._db_name]

    def collections(self) -> MongoCollections:
        """Return app collections."""
        db = self.app_db()
        return MongoCollections(
            alert_rules=db["alert_rules"],
            alert_channels=db["alert_channels"],
            promql_templates=db["promql_templates"],
            clusters=db["clusters"],
        )

    def init_indexes(self) -> None:
        """Create required indexes (idempotent)."""
        cols = self.collections()

        # ---- Alert rules ----
        # Rule identity; a concurrent duplicate create loses with DuplicateKeyError.
        cols.alert_rules.create_index(
            [("cluster", ASCENDING), ("namespace", ASCENDING), ("name", ASCENDING)],
            unique=True,
            name="uniq_alert_rules_cluster_namespace_name",
        )
        cols.alert_rules.create_index(
            [("cluster", ASCENDING), ("namespace", ASCENDING), ("alertType", ASCENDING)],
            name="idx_alert_rules_cluster_namespace_type",
        )
        cols.alert_rules.create_index([("receivers.alertChannelId", ASCENDING)], name="idx_alert_rules_channel")

        # ---- Channels ----
        cols.alert_channels.create_index([("id", ASCENDING)], unique=True, name="uniq_alert_channels_id")

        # ---- Templates ----
        cols.promql_templates.create_index(
            [("scope", ASCENDING), ("resource", ASCENDING), ("rule", ASCENDING)],
            unique=True,
            name="uniq_promql_templates_scope_resource_rule",
        )

        # ---- Clusters ----
        cols.clusters.create_index([("name", ASCENDING)], unique=True, name="uniq_clusters_name")
