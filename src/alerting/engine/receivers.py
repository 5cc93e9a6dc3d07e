from __future__ import annotations

from typing import Callable, List, Optional

from src.alerting.errors import ChannelNotFound, DuplicateChannel, EmptyReceivers
from src.alerting.schemas.alerts import AlertReceiver
from src.alerting.schemas.channels import AlertChannel

ChannelLookup = Callable[[str], Optional[AlertChannel]]


# PUBLIC_INTERFACE
def resolve_receivers(
    receivers: List[AlertReceiver],
    find_channel: ChannelLookup,
    default_channel_id: str,
) -> List[AlertReceiver]:
    """Validate receivers, append the default channel when missing, and attach channel records."""
    if not receivers:
        raise EmptyReceivers("alert receivers can't be empty")

    seen = set()
    for rec in receivers:
        if rec.alert_channel_id in seen:
            raise DuplicateChannel(
                f"alert channel {rec.alert_channel_id} is duplicated", meta={"channelId": rec.alert_channel_id}
            )
        seen.add(rec.alert_channel_id)

    resolved = [AlertReceiver(alert_channel_id=r.alert_channel_id, interval=r.interval) for r in receivers]
    if default_channel_id not in seen:
        resolved.append(AlertReceiver(alert_channel_id=default_channel_id, interval=receivers[0].interval))

    for rec in resolved:
        channel = find_channel(rec.alert_channel_id)
        if channel is None:
            raise ChannelNotFound(
                f"alert channel {rec.alert_channel_id} not found", meta={"channelId": rec.alert_channel_id}
            )
        rec.alert_channel = channel
    return resolved
