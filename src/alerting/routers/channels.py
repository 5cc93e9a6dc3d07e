from __future__ import annotations

from fastapi import APIRouter, Path, Request, status

from src.alerting.schemas.channels import AlertChannel, AlertChannelCreate, AlertChannelListResponse, AlertChannelUpdate
from src.alerting.schemas.common import ErrorResponse
from src.alerting.services import channels_service
from src.alerting.state import get_state

router = APIRouter(prefix="/api/channels", tags=["Channels"])


@router.get(
    "",
    response_model=AlertChannelListResponse,
    summary="List alert channels",
    operation_id="list_alert_channels",
)
def list_channels(request: Request) -> AlertChannelListResponse:
    return channels_service.list_channels(get_state(request.app))


@router.post(
    "",
    response_model=AlertChannel,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
    summary="Create alert channel",
    operation_id="create_alert_channel",
)
def create_channel(request: Request, payload: AlertChannelCreate) -> AlertChannel:
    return channels_service.create_channel(get_state(request.app), payload)


@router.get(
    "/{channel_id}",
    response_model=AlertChannel,
    responses={404: {"model": ErrorResponse}},
    summary="Get alert channel",
    operation_id="get_alert_channel",
)
def get_channel(request: Request, channel_id: str = Path(..., description="Channel id.")) -> AlertChannel:
    return channels_service.get_channel(get_state(request.app), channel_id)


@router.put(
    "/{channel_id}",
    response_model=AlertChannel,
    responses={404: {"model": ErrorResponse}},
    summary="Replace alert channel",
    description="Rules using the channel pick up the change on their next sync.",
    operation_id="put_alert_channel",
)
def put_channel(
    request: Request,
    payload: AlertChannelUpdate,
    channel_id: str = Path(..., description="Channel id."),
) -> AlertChannel:
    return channels_service.update_channel(get_state(request.app), channel_id, payload)


@router.delete(
    "/{channel_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Delete alert channel",
    description="Rejected for the default channel and for channels referenced by any rule.",
    operation_id="delete_alert_channel",
)
def delete_channel(request: Request, channel_id: str = Path(..., description="Channel id.")) -> None:
    channels_service.delete_channel(get_state(request.app), channel_id)
    return None
