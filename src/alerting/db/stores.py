"""Domain stores over the app Mongo collections.

Each store converts documents to/from the pydantic models in ``src.alerting.schemas``.
A rule and its receivers are a single document, so every rule write is atomic.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterator, List, Optional, Tuple

from bson import ObjectId
from pymongo import ASCENDING
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError

from src.alerting.errors import RuleAlreadyExists
from src.alerting.schemas.alerts import AlertRule, AlertRuleQuery, AlertState
from src.alerting.schemas.channels import AlertChannel
from src.alerting.schemas.clusters import Cluster
from src.alerting.schemas.common import utc_now
from src.alerting.schemas.templates import PromqlTemplate

logger = logging.getLogger(__name__)


def _oid_str(v: Any) -> str:
    try:
        return str(v)
    except Exception:
        return ""


def _to_oid(rule_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(rule_id)
    except Exception:
        return None


class AlertRuleStore:
    """alert_rules collection: one document per (cluster, namespace, name)."""

    def __init__(self, collection: Collection):
        self._col = collection

    @staticmethod
    def _to_doc(rule: AlertRule) -> Dict[str, Any]:
        doc = rule.model_dump(
            by_alias=True,
            exclude={"id": True, "receivers": {"__all__": {"alert_channel"}}},
        )
        doc.pop("realTimeAlerts", None)
        return doc

    @staticmethod
    def _doc_to_rule(doc: dict) -> AlertRule:
        data = dict(doc)
        data["id"] = _oid_str(data.pop("_id", None))
        return AlertRule.model_validate(data)

    @staticmethod
    def _identity(cluster: str, namespace: str, name: str) -> Dict[str, Any]:
        return {"cluster": cluster, "namespace": namespace, "name": name}

    def get(self, cluster: str, namespace: str, name: str, alert_type: Optional[str] = None) -> Optional[AlertRule]:
        q = self._identity(cluster, namespace, name)
        if alert_type:
            q["alertType"] = alert_type
        doc = self._col.find_one(q)
        return self._doc_to_rule(doc) if doc else None

    def exists(self, cluster: str, namespace: str, name: str) -> bool:
        return self._col.find_one(self._identity(cluster, namespace, name), projection={"_id": 1}) is not None

    def insert(self, rule: AlertRule) -> AlertRule:
        """Insert a new rule; a concurrent duplicate raises RuleAlreadyExists."""
        now = utc_now()
        rule.created_at = now
        rule.updated_at = now
        doc = self._to_doc(rule)
        try:
            res = self._col.insert_one(doc)
        except DuplicateKeyError as exc:
            raise RuleAlreadyExists(
                f"alert rule {rule.name} already exists",
                meta={"cluster": rule.cluster, "namespace": rule.namespace, "name": rule.name},
            ) from exc
        rule.id = _oid_str(res.inserted_id)
        return rule

    def replace(self, rule: AlertRule) -> Optional[AlertRule]:
        """Full replace keyed by identity; returns None when the rule no longer exists."""
        existing = self._col.find_one(self._identity(rule.cluster, rule.namespace, rule.name))
        if not existing:
            return None
        rule.id = _oid_str(existing["_id"])
        rule.created_at = existing.get("createdAt")
        rule.updated_at = utc_now()
        doc = self._to_doc(rule)
        doc["_id"] = existing["_id"]
        self._col.replace_one({"_id": existing["_id"]}, doc, upsert=False)
        return rule

    def delete(self, cluster: str, namespace: str, name: str) -> bool:
        res = self._col.delete_one(self._identity(cluster, namespace, name))
        return res.deleted_count > 0

    def update_state(self, rule_id: str, state: AlertState) -> None:
        oid = _to_oid(rule_id)
        if oid is None:
            return
        self._col.update_one({"_id": oid}, {"$set": {"state": state}})

    def find(self, cluster: str, namespace: Optional[str] = None, alert_type: Optional[str] = None) -> List[AlertRule]:
        q: Dict[str, Any] = {"cluster": cluster}
        if namespace is not None:
            q["namespace"] = namespace
        if alert_type:
            q["alertType"] = alert_type
        return [self._doc_to_rule(d) for d in self._col.find(q).sort("name", ASCENDING)]

    def iter_all(self) -> Iterator[AlertRule]:
        for doc in self._col.find({}).sort([("cluster", ASCENDING), ("namespace", ASCENDING), ("name", ASCENDING)]):
            yield self._doc_to_rule(doc)

    def count_using_channel(self, channel_id: str) -> int:
        return int(self._col.count_documents({"receivers.alertChannelId": channel_id}))

    def page(self, query: AlertRuleQuery) -> Tuple[List[AlertRule], int]:
        """
        Filtered, name-ordered page of rules.

        Returns (items, total_matching).
        """
        q: Dict[str, Any] = {
            "cluster": query.cluster,
            "namespace": query.namespace,
            "alertType": query.alert_type,
        }
        if query.state:
            q["state"] = query.state
        if query.search:
            pattern = re.escape(query.search.strip())
            q["$or"] = [
                {"name": {"$regex": pattern, "$options": "i"}},
                {"expr": {"$regex": pattern, "$options": "i"}},
            ]

        total = int(self._col.count_documents(q))
        docs = list(
            self._col.find(q)
            .sort("name", ASCENDING)
            .skip((int(query.page) - 1) * int(query.size))
            .limit(int(query.size))
        )
        return [self._doc_to_rule(d) for d in docs], total


class AlertChannelStore:
    """alert_channels collection keyed by the string ``id`` field."""

    def __init__(self, collection: Collection):
        self._col = collection

    @staticmethod
    def _doc_to_channel(doc: dict) -> AlertChannel:
        data = dict(doc)
        data.pop("_id", None)
        return AlertChannel.model_validate(data)

    def get(self, channel_id: str) -> Optional[AlertChannel]:
        doc = self._col.find_one({"id": channel_id})
        return self._doc_to_channel(doc) if doc else None

    def list(self) -> List[AlertChannel]:
        return [self._doc_to_channel(d) for d in self._col.find({}).sort("createdAt", ASCENDING)]

    def insert(self, channel: AlertChannel) -> AlertChannel:
        self._col.insert_one(channel.model_dump(by_alias=True))
        return channel

    def replace(self, channel: AlertChannel) -> None:
        self._col.replace_one({"id": channel.id}, channel.model_dump(by_alias=True), upsert=False)

    def delete(self, channel_id: str) -> bool:
        return self._col.delete_one({"id": channel_id}).deleted_count > 0


class PromqlTemplateStore:
    """promql_templates collection keyed by (scope, resource, rule)."""

    def __init__(self, collection: Collection):
        self._col = collection

    @staticmethod
    def _doc_to_template(doc: dict) -> PromqlTemplate:
        data = dict(doc)
        data.pop("_id", None)
        return PromqlTemplate.model_validate(data)

    def get(self, scope: str, resource: str, rule: str) -> Optional[PromqlTemplate]:
        doc = self._col.find_one({"scope": scope, "resource": resource, "rule": rule})
        return self._doc_to_template(doc) if doc else None

    def list(self, scope: Optional[str] = None, resource: Optional[str] = None) -> List[PromqlTemplate]:
        q: Dict[str, Any] = {}
        if scope:
            q["scope"] = scope
        if resource:
            q["resource"] = resource
        docs = self._col.find(q).sort([("scope", ASCENDING), ("resource", ASCENDING), ("rule", ASCENDING)])
        return [self._doc_to_template(d) for d in docs]

    def upsert(self, tpl: PromqlTemplate) -> PromqlTemplate:
        key = {"scope": tpl.scope, "resource": tpl.resource, "rule": tpl.rule}
        self._col.replace_one(key, tpl.model_dump(by_alias=True), upsert=True)
        return tpl

    def seed(self, templates: List[PromqlTemplate]) -> int:
        """Insert templates that are absent; existing (possibly edited) ones are kept."""
        inserted = 0
        for tpl in templates:
            key = {"scope": tpl.scope, "resource": tpl.resource, "rule": tpl.rule}
            res = self._col.update_one(key, {"$setOnInsert": tpl.model_dump(by_alias=True)}, upsert=True)
            if res.upserted_id is not None:
                inserted += 1
        return inserted


class ClusterStore:
    """clusters collection keyed by ``name``."""

    def __init__(self, collection: Collection):
        self._col = collection

    @staticmethod
    def _doc_to_cluster(doc: dict) -> Cluster:
        data = dict(doc)
        data.pop("_id", None)
        return Cluster.model_validate(data)

    def get(self, name: str) -> Optional[Cluster]:
        doc = self._col.find_one({"name": name})
        return self._doc_to_cluster(doc) if doc else None

    def list(self) -> List[Cluster]:
        return [self._doc_to_cluster(d) for d in self._col.find({}).sort("name", ASCENDING)]

    def insert(self, cluster: Cluster) -> Cluster:
        self._col.insert_one(cluster.model_dump(by_alias=True))
        return cluster

    def replace(self, cluster: Cluster) -> None:
        self._col.replace_one({"name": cluster.name}, cluster.model_dump(by_alias=True), upsert=False)

    def delete(self, name: str) -> bool:
        return self._col.delete_one({"name": name}).deleted_count > 0
