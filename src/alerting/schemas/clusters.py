from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ClusterBase(BaseModel):
    """Endpoints used to reach one managed cluster."""

    api_server: str = Field(..., alias="apiServer", description="Kubernetes API server (or agent proxy) base URL.")
    token: Optional[str] = Field(default=None, description="Bearer token for the API server (not returned by API).")
    prometheus_url: str = Field("", alias="prometheusUrl", description="Prometheus HTTP API base URL.")
    alertmanager_url: str = Field("", alias="alertmanagerUrl", description="Alertmanager HTTP API base URL.")
    verify_tls: bool = Field(True, alias="verifyTls")

    model_config = ConfigDict(populate_by_name=True)


class ClusterCreate(ClusterBase):
    name: str = Field(..., min_length=1, description="Unique cluster name used in API paths.")


class ClusterUpdate(BaseModel):
    """Partial update of a cluster record."""

    api_server: Optional[str] = Field(default=None, alias="apiServer")
    token: Optional[str] = None
    prometheus_url: Optional[str] = Field(default=None, alias="prometheusUrl")
    alertmanager_url: Optional[str] = Field(default=None, alias="alertmanagerUrl")
    verify_tls: Optional[bool] = Field(default=None, alias="verifyTls")

    model_config = ConfigDict(populate_by_name=True)


class Cluster(ClusterCreate):
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")


class ClusterOut(ClusterBase):
    """Response model; never carries the token."""

    name: str
    token: Optional[str] = Field(default=None, exclude=True)
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")


class ClusterListResponse(BaseModel):
    items: List[ClusterOut]
    total: int = Field(..., ge=0)
