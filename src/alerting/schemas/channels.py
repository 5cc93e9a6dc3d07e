from __future__ import annotations

from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class EmailChannel(BaseModel):
    """Outbound mail notification settings."""

    channel_type: Literal["email"] = Field("email", alias="channelType")
    smtp_server: str = Field(..., alias="smtpServer", description="SMTP host:port.")
    from_: str = Field(..., alias="from", description="Sender address; also used as SMTP auth username.")
    to: str = Field(..., description="Comma-separated recipient addresses.")
    auth_password: str = Field("", alias="authPassword", description="SMTP auth password (stored in a cluster Secret).")
    require_tls: bool = Field(True, alias="requireTLS")
    send_resolved: bool = Field(True, alias="sendResolved")

    model_config = ConfigDict(populate_by_name=True)


class WebhookChannel(BaseModel):
    """HTTP webhook notification settings."""

    channel_type: Literal["webhook"] = Field("webhook", alias="channelType")
    url: str = Field(..., description="Webhook URL receiving Alertmanager payloads.")
    send_resolved: bool = Field(True, alias="sendResolved")

    model_config = ConfigDict(populate_by_name=True)


ChannelConfig = Annotated[Union[EmailChannel, WebhookChannel], Field(discriminator="channel_type")]


class AlertChannelBase(BaseModel):
    name: str = Field(..., min_length=1, description="Channel display name.")
    channel_config: ChannelConfig = Field(..., alias="channelConfig")

    model_config = ConfigDict(populate_by_name=True)


class AlertChannelCreate(AlertChannelBase):
    """Request body for creating a channel."""

    id: Optional[str] = Field(default=None, description="Optional explicit channel id; generated when omitted.")


class AlertChannelUpdate(AlertChannelBase):
    """Request body for replacing a channel."""


class AlertChannel(AlertChannelBase):
    """A named notification target."""

    id: str = Field(..., description="Stable channel identifier.")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    def receiver_name(self) -> str:
        """Alertmanager receiver name for this channel."""
        return f"{self.name}-id-{self.id}"


class AlertChannelListResponse(BaseModel):
    items: List[AlertChannel] = Field(..., description="Configured channels.")
    total: int = Field(..., ge=0)
