from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from src.alerting.config import _sanitize_mongo_uri_for_logs
from src.alerting.schemas.common import HealthResponse, utc_now
from src.alerting.state import get_state

router = APIRouter(tags=["Health"])


class MongoConnectivityResponse(BaseModel):
    """Response model for backend↔Mongo connectivity diagnostics."""

    ok: bool = Field(..., description="Whether the backend can successfully ping MongoDB.")
    mongo_db_name: str = Field(..., description="Database holding rules, channels, templates and clusters.")
    mongo_uri_sanitized: str = Field(..., description="MongoDB URI with credentials masked.")
    timestamp: str = Field(..., description="UTC timestamp when the check was performed (ISO string).")
    meta: Dict[str, Any] = Field(default_factory=dict, description="Optional debug metadata.")


class EngineSettingsResponse(BaseModel):
    """Effective engine settings (no secrets)."""

    global_alert_namespace: str = Field(..., description="Namespace value marking cluster-wide rules.")
    default_channel_id: str = Field(..., description="Channel appended to every rule's receivers.")
    remote_timeout_sec: int = Field(..., description="Timeout for cluster, Prometheus and Alertmanager calls.")
    alert_resync_interval_sec: int = Field(..., description="Background re-apply interval (0 means disabled).")
    timestamp: str = Field(..., description="UTC timestamp when the settings were read (ISO string).")


@router.get(
    "/",
    response_model=HealthResponse,
    summary="Health check",
    description="Basic service liveness check used by deployment probes.",
    operation_id="health_check",
)
def health_check() -> HealthResponse:
    """Return service liveness status."""
    return HealthResponse(status="ok", message="Healthy", timestamp=utc_now())


@router.get(
    "/api/health/mongo",
    response_model=MongoConnectivityResponse,
    summary="Mongo connectivity check",
    description="Pings the backend's configured MongoDB. Credentials are masked.",
    operation_id="mongo_connectivity_check",
)
def mongo_connectivity_check(request: Request) -> MongoConnectivityResponse:
    """Connectivity check endpoint to validate backend↔Mongo."""
    state = get_state(request.app)
    ok = state.mongo.ping() if state.mongo is not None else False

    return MongoConnectivityResponse(
        ok=ok,
        mongo_db_name=state.config.mongo_db_name,
        mongo_uri_sanitized=_sanitize_mongo_uri_for_logs(state.config.mongo_uri),
        timestamp=utc_now().isoformat(),
        meta={},
    )


@router.get(
    "/api/health/settings",
    response_model=EngineSettingsResponse,
    summary="Engine settings",
    description="Reports the effective namespace, default channel and remote-call settings.",
    operation_id="engine_settings",
)
def engine_settings(request: Request) -> EngineSettingsResponse:
    cfg = get_state(request.app).config
    return EngineSettingsResponse(
        global_alert_namespace=cfg.global_alert_namespace,
        default_channel_id=cfg.default_channel_id,
        remote_timeout_sec=int(cfg.remote_timeout_sec),
        alert_resync_interval_sec=int(cfg.alert_resync_interval_sec),
        timestamp=utc_now().isoformat(),
    )
