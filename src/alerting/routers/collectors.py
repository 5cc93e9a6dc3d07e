from __future__ import annotations

from fastapi import APIRouter, Path, Query, Request

from src.alerting.schemas.collectors import CollectorStatus, MonitorCollector
from src.alerting.schemas.common import ErrorResponse, OkResponse
from src.alerting.services import collectors_service
from src.alerting.state import get_state

router = APIRouter(prefix="/api/clusters/{cluster}/namespaces/{namespace}/monitor/collector", tags=["Collectors"])


@router.get(
    "",
    response_model=MonitorCollector,
    responses={404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
    summary="Get monitor collector",
    operation_id="get_monitor_collector",
)
def get_collector(
    request: Request,
    cluster: str = Path(...),
    namespace: str = Path(...),
    service: str = Query(..., description="Service name."),
) -> MonitorCollector:
    return collectors_service.get_collector(get_state(request.app), cluster, namespace, service)


@router.get(
    "/status",
    response_model=CollectorStatus,
    summary="Monitor collector scrape status",
    description="Lookup failures are reported with health 'unknown' and the error text.",
    operation_id="get_monitor_collector_status",
)
def get_collector_status(
    request: Request,
    cluster: str = Path(...),
    namespace: str = Path(...),
    service: str = Query(..., description="Service name."),
) -> CollectorStatus:
    return collectors_service.collector_status(get_state(request.app), cluster, namespace, service)


@router.post(
    "",
    response_model=OkResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
    summary="Create or update monitor collector",
    operation_id="put_monitor_collector",
)
def put_collector(
    request: Request,
    payload: MonitorCollector,
    cluster: str = Path(...),
    namespace: str = Path(...),
) -> OkResponse:
    return collectors_service.create_or_update_collector(get_state(request.app), cluster, namespace, payload)


@router.delete(
    "",
    response_model=OkResponse,
    responses={404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
    summary="Delete monitor collector",
    operation_id="delete_monitor_collector",
)
def delete_collector(
    request: Request,
    cluster: str = Path(...),
    namespace: str = Path(...),
    service: str = Query(..., description="Service name."),
) -> OkResponse:
    return collectors_service.delete_collector(get_state(request.app), cluster, namespace, service)
