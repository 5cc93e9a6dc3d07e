from __future__ import annotations

from typing import Dict, Optional

from fastapi import APIRouter, Path, Query, Request, status

from src.alerting.schemas.alerts import AlertRuleIn, AlertRuleOut, AlertRulePage, AlertRuleQuery, AlertState, AlertType
from src.alerting.schemas.common import ErrorResponse, OkResponse
from src.alerting.services import alert_rules_service
from src.alerting.state import get_state

PREFIX = "/api/clusters/{cluster}/namespaces/{namespace}"

_ERRORS = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


def _build_router(alert_type: AlertType, tag: str) -> APIRouter:
    """CRUD routes for one alert type under ``/{alert_type}/alerts``."""
    router = APIRouter(prefix=f"{PREFIX}/{alert_type}/alerts", tags=[tag])

    @router.get(
        "",
        response_model=AlertRulePage,
        responses=_ERRORS,
        summary=f"List {alert_type} alert rules",
        description="Refreshes every rule's live state from Prometheus, then returns one page ordered by name.",
        operation_id=f"list_{alert_type}_alert_rules",
    )
    def list_rules(
        request: Request,
        cluster: str = Path(..., description="Cluster name."),
        namespace: str = Path(..., description="Namespace (or the global sentinel)."),
        search: Optional[str] = Query(default=None, description="Case-insensitive search in name and expr."),
        state: Optional[AlertState] = Query(default=None, description="Filter on live state."),
        page: int = Query(default=1, ge=1),
        size: Optional[int] = Query(default=None, ge=1, le=500),
    ) -> AlertRulePage:
        app_state = get_state(request.app)
        query = AlertRuleQuery(
            cluster=cluster,
            namespace=namespace,
            alert_type=alert_type,
            search=search,
            state=state,
            page=page,
            size=size or app_state.config.default_page_size,
        )
        return alert_rules_service.list_rules(app_state, query)

    @router.post(
        "",
        response_model=AlertRuleOut,
        status_code=status.HTTP_201_CREATED,
        responses=_ERRORS,
        summary=f"Create {alert_type} alert rule",
        description="Validates and derives the rule, stores it, then applies it to the cluster.",
        operation_id=f"create_{alert_type}_alert_rule",
    )
    def create_rule(
        request: Request,
        payload: AlertRuleIn,
        cluster: str = Path(...),
        namespace: str = Path(...),
    ) -> AlertRuleOut:
        return alert_rules_service.create_rule(get_state(request.app), cluster, namespace, alert_type, payload)

    @router.get(
        "/{name}",
        response_model=AlertRuleOut,
        responses=_ERRORS,
        summary=f"Get {alert_type} alert rule",
        operation_id=f"get_{alert_type}_alert_rule",
    )
    def get_rule(request: Request, cluster: str = Path(...), namespace: str = Path(...), name: str = Path(...)) -> AlertRuleOut:
        return alert_rules_service.get_rule(get_state(request.app), cluster, namespace, alert_type, name)

    @router.put(
        "/{name}",
        response_model=AlertRuleOut,
        responses=_ERRORS,
        summary=f"Replace {alert_type} alert rule",
        description="Full replace; the rule identity is taken from the path.",
        operation_id=f"put_{alert_type}_alert_rule",
    )
    def put_rule(
        request: Request,
        payload: AlertRuleIn,
        cluster: str = Path(...),
        namespace: str = Path(...),
        name: str = Path(...),
    ) -> AlertRuleOut:
        return alert_rules_service.update_rule(get_state(request.app), cluster, namespace, alert_type, name, payload)

    @router.delete(
        "/{name}",
        response_model=OkResponse,
        responses=_ERRORS,
        summary=f"Delete {alert_type} alert rule",
        description="Removes the rule's cluster resources and silences, then the stored rule.",
        operation_id=f"delete_{alert_type}_alert_rule",
    )
    def delete_rule(request: Request, cluster: str = Path(...), namespace: str = Path(...), name: str = Path(...)) -> OkResponse:
        alert_rules_service.delete_rule(get_state(request.app), cluster, namespace, alert_type, name)
        return OkResponse()

    @router.post(
        "/{name}/sync",
        response_model=OkResponse,
        responses=_ERRORS,
        summary=f"Re-apply {alert_type} alert rule",
        description="Re-applies the stored rule to the cluster; reports the outcome per resource.",
        operation_id=f"sync_{alert_type}_alert_rule",
    )
    def sync_rule(request: Request, cluster: str = Path(...), namespace: str = Path(...), name: str = Path(...)) -> OkResponse:
        results: Dict[str, str] = alert_rules_service.sync_rule(
            get_state(request.app), cluster, namespace, alert_type, name
        )
        return OkResponse(meta=results)

    return router


monitor_router = _build_router("monitor", "Monitor alert rules")
logging_router = _build_router("logging", "Logging alert rules")
