from __future__ import annotations

import logging
from typing import List, Optional

from src.alerting.engine.expr import has_comparison_operator
from src.alerting.engine.promql.parser import parse
from src.alerting.engine.units import parse_unit
from src.alerting.errors import ComparisonOperatorForbidden, TemplateNotFound
from src.alerting.schemas.templates import PromqlTemplate, PromqlTemplateListResponse
from src.alerting.state import AppState

logger = logging.getLogger(__name__)

BUILTIN_TEMPLATES: List[PromqlTemplate] = [
    PromqlTemplate(
        scope="node",
        resource="cpu",
        rule="usage",
        expr='(1 - avg(irate(node_cpu_seconds_total{mode="idle"}[5m])) by (instance)) * 100',
        labels=["instance"],
        rule_show_name="node cpu usage",
        unit="percent-0-100",
    ),
    PromqlTemplate(
        scope="node",
        resource="memory",
        rule="usage",
        expr="(1 - node_memory_MemAvailable_bytes / node_memory_MemTotal_bytes) * 100",
        labels=["instance"],
        rule_show_name="node memory usage",
        unit="percent-0-100",
    ),
    PromqlTemplate(
        scope="containers",
        resource="cpu",
        rule="usage",
        expr='sum(rate(container_cpu_usage_seconds_total{container!="", image!=""}[5m])) by (namespace, pod, container)',
        labels=["pod", "container"],
        rule_show_name="container cpu usage",
        unit="cpu-core",
    ),
    PromqlTemplate(
        scope="containers",
        resource="memory",
        rule="usage",
        expr='sum(container_memory_working_set_bytes{container!="", image!=""}) by (namespace, pod, container)',
        labels=["pod", "container"],
        rule_show_name="container memory usage",
        unit="bytes-B",
    ),
    PromqlTemplate(
        scope="containers",
        resource="restart",
        rule="count",
        expr="sum(increase(kube_pod_container_status_restarts_total[5m])) by (namespace, pod, container)",
        labels=["pod", "container"],
        rule_show_name="container restarts",
        unit="times",
    ),
    PromqlTemplate(
        scope="pvc",
        resource="disk",
        rule="usage",
        expr="kubelet_volume_stats_used_bytes / kubelet_volume_stats_capacity_bytes * 100",
        labels=["persistentvolumeclaim"],
        rule_show_name="pvc disk usage",
        unit="percent-0-100",
    ),
]


# PUBLIC_INTERFACE
def seed_builtin_templates(state: AppState) -> int:
    """Insert built-in templates that are missing; returns how many were added."""
    added = state.templates.seed(BUILTIN_TEMPLATES)
    if added:
        logger.info("Seeded %d built-in promql template(s)", added)
    return added


# PUBLIC_INTERFACE
def list_templates(
    state: AppState, scope: Optional[str] = None, resource: Optional[str] = None
) -> PromqlTemplateListResponse:
    items = state.templates.list(scope, resource)
    return PromqlTemplateListResponse(items=items, total=len(items))


# PUBLIC_INTERFACE
def get_template(state: AppState, scope: str, resource: str, rule: str) -> PromqlTemplate:
    tpl = state.templates.get(scope, resource, rule)
    if tpl is None:
        raise TemplateNotFound(
            f"template {scope}.{resource}.{rule} not found",
            meta={"scope": scope, "resource": resource, "rule": rule},
        )
    return tpl


# PUBLIC_INTERFACE
def upsert_template(state: AppState, tpl: PromqlTemplate) -> PromqlTemplate:
    """Create or replace a template after checking its expression and unit."""
    parse(tpl.expr)
    if has_comparison_operator(tpl.expr):
        raise ComparisonOperatorForbidden(
            "template expression must not contain comparison operators (<|<=|==|!=|>|>=)",
            meta={"expr": tpl.expr},
        )
    parse_unit(tpl.unit)
    return state.templates.upsert(tpl)
