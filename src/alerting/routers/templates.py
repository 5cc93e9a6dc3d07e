from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Path, Query, Request

from src.alerting.schemas.common import ErrorResponse
from src.alerting.schemas.templates import PromqlTemplate, PromqlTemplateIn, PromqlTemplateListResponse
from src.alerting.services import templates_service
from src.alerting.state import get_state

router = APIRouter(prefix="/api/templates", tags=["Templates"])


@router.get(
    "",
    response_model=PromqlTemplateListResponse,
    summary="List promql templates",
    operation_id="list_promql_templates",
)
def list_templates(
    request: Request,
    scope: Optional[str] = Query(default=None),
    resource: Optional[str] = Query(default=None),
) -> PromqlTemplateListResponse:
    return templates_service.list_templates(get_state(request.app), scope, resource)


@router.get(
    "/{scope}/{resource}/{rule}",
    response_model=PromqlTemplate,
    responses={404: {"model": ErrorResponse}},
    summary="Get promql template",
    operation_id="get_promql_template",
)
def get_template(
    request: Request,
    scope: str = Path(...),
    resource: str = Path(...),
    rule: str = Path(...),
) -> PromqlTemplate:
    return templates_service.get_template(get_state(request.app), scope, resource, rule)


@router.put(
    "/{scope}/{resource}/{rule}",
    response_model=PromqlTemplate,
    responses={400: {"model": ErrorResponse}},
    summary="Create or replace promql template",
    description="The expression must parse and must not contain comparison operators.",
    operation_id="put_promql_template",
)
def put_template(
    request: Request,
    payload: PromqlTemplateIn,
    scope: str = Path(...),
    resource: str = Path(...),
    rule: str = Path(...),
) -> PromqlTemplate:
    tpl = PromqlTemplate(scope=scope, resource=resource, rule=rule, **payload.model_dump())
    return templates_service.upsert_template(get_state(request.app), tpl)
