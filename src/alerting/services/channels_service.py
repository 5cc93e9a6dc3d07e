from __future__ import annotations

import logging
from uuid import uuid4

from src.alerting.errors import ChannelInUse, ChannelNotFound, DefaultChannelProtected, DuplicateChannel
from src.alerting.schemas.channels import (
    AlertChannel,
    AlertChannelCreate,
    AlertChannelListResponse,
    AlertChannelUpdate,
    WebhookChannel,
)
from src.alerting.schemas.common import utc_now
from src.alerting.state import AppState

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def ensure_default_channel(state: AppState) -> AlertChannel:
    """Create the process-wide default channel when it does not exist yet."""
    cfg = state.config
    existing = state.channels.get(cfg.default_channel_id)
    if existing is not None:
        return existing
    now = utc_now()
    channel = AlertChannel(
        id=cfg.default_channel_id,
        name=cfg.default_channel_name,
        channel_config=WebhookChannel(url=cfg.default_channel_webhook_url),
        created_at=now,
        updated_at=now,
    )
    state.channels.insert(channel)
    logger.info("Created default alert channel id=%s url=%s", channel.id, cfg.default_channel_webhook_url)
    return channel


# PUBLIC_INTERFACE
def list_channels(state: AppState) -> AlertChannelListResponse:
    items = state.channels.list()
    return AlertChannelListResponse(items=items, total=len(items))


# PUBLIC_INTERFACE
def get_channel(state: AppState, channel_id: str) -> AlertChannel:
    channel = state.channels.get(channel_id)
    if channel is None:
        raise ChannelNotFound(f"alert channel {channel_id} not found", meta={"channelId": channel_id})
    return channel


# PUBLIC_INTERFACE
def create_channel(state: AppState, payload: AlertChannelCreate) -> AlertChannel:
    """Store a new channel; an explicit id must not collide with an existing one."""
    channel_id = (payload.id or "").strip() or uuid4().hex
    if state.channels.get(channel_id) is not None:
        raise DuplicateChannel(f"alert channel {channel_id} already exists", meta={"channelId": channel_id})
    now = utc_now()
    channel = AlertChannel(
        id=channel_id,
        name=payload.name.strip(),
        channel_config=payload.channel_config,
        created_at=now,
        updated_at=now,
    )
    return state.channels.insert(channel)


# PUBLIC_INTERFACE
def update_channel(state: AppState, channel_id: str, payload: AlertChannelUpdate) -> AlertChannel:
    """
    Replace a channel's name and config.

    Rules using the channel pick the change up on their next sync.
    """
    existing = get_channel(state, channel_id)
    channel = AlertChannel(
        id=existing.id,
        name=payload.name.strip(),
        channel_config=payload.channel_config,
        created_at=existing.created_at,
        updated_at=utc_now(),
    )
    state.channels.replace(channel)
    return channel


# PUBLIC_INTERFACE
def delete_channel(state: AppState, channel_id: str) -> None:
    """Delete a channel that no rule references; the default channel is never deleted."""
    if channel_id == state.config.default_channel_id:
        raise DefaultChannelProtected("the default alert channel can't be deleted", meta={"channelId": channel_id})
    get_channel(state, channel_id)
    in_use = state.rules.count_using_channel(channel_id)
    if in_use:
        raise ChannelInUse(
            f"alert channel {channel_id} is used by {in_use} alert rule(s)",
            meta={"channelId": channel_id, "rules": in_use},
        )
    state.channels.delete(channel_id)
