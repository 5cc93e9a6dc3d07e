from __future__ import annotations

import asyncio
import logging
import os
from typing import List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.alerting.config import load_config
from src.alerting.errors import AlertEngineError
from src.alerting.routers import alert_rules, channels, clusters, collectors, health, templates
from src.alerting.schemas.common import ErrorResponse
from src.alerting.services.channels_service import ensure_default_channel
from src.alerting.services.resync_service import resync_loop
from src.alerting.services.templates_service import seed_builtin_templates
from src.alerting.state import get_state, init_state

openapi_tags = [
    {"name": "Health", "description": "Service health and liveness."},
    {"name": "Monitor alert rules", "description": "Metric (PromQL) alert rules per cluster and namespace."},
    {"name": "Logging alert rules", "description": "Log (LogQL) alert rules per cluster and namespace."},
    {"name": "Collectors", "description": "ServiceMonitor-based metric collectors."},
    {"name": "Channels", "description": "Notification channels referenced by rule receivers."},
    {"name": "Templates", "description": "PromQL template catalog used by metric rules."},
    {"name": "Clusters", "description": "Endpoints of managed clusters."},
]

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Alert Rule Engine API",
    description=(
        "Compiles declarative alert rules into PromQL/LogQL expressions, stores them in MongoDB, "
        "and keeps each cluster's PrometheusRule, AlertmanagerConfig and email Secret in sync. "
        "Rule state is mirrored from Prometheus on every read."
    ),
    version="0.1.0",
    openapi_tags=openapi_tags,
)

# Initialize typed app state (config + Mongo manager + stores)
init_state(app, load_config())


@app.exception_handler(AlertEngineError)
async def _alert_engine_error_handler(request: Request, exc: AlertEngineError) -> JSONResponse:
    """Render engine errors as the uniform ErrorResponse envelope."""
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    body = ErrorResponse(detail=exc.message, code=exc.code, meta=exc.meta)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))


@app.on_event("startup")
async def _on_startup() -> None:
    """Startup hook: connect to Mongo, ensure indexes and seed data, and start the resync loop."""
    state = get_state(app)

    # Connect + verify early so misconfigured Mongo doesn't silently break requests.
    state.mongo.connect_app()
    if not state.mongo.ping():
        raise RuntimeError("Mongo connectivity check failed during startup. Verify BACKEND_MONGO_URI.")

    state.mongo.init_indexes()
    ensure_default_channel(state)
    seed_builtin_templates(state)

    app.state._resync_shutdown = asyncio.Event()
    state.resync_task = asyncio.create_task(resync_loop(state, app.state._resync_shutdown))


@app.on_event("shutdown")
async def _on_shutdown() -> None:
    """Shutdown hook: stop the resync loop and close cluster and Mongo connections."""
    state = get_state(app)

    resync_shutdown = getattr(app.state, "_resync_shutdown", None)
    if resync_shutdown is not None:
        resync_shutdown.set()
    resync_task = state.resync_task
    if resync_task is not None:
        try:
            await asyncio.wait_for(resync_task, timeout=5.0)
        except Exception:
            logger.exception("Error stopping resync task")

    state.fleet.close()
    if state.mongo is not None:
        state.mongo.close()


def _env_cors_origins() -> List[str]:
    # Comma-separated list of allowed UI origins.
    raw = os.getenv("CORS_ALLOW_ORIGINS") or ""
    return [p.strip() for p in raw.split(",") if p.strip()]


allowed_origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
allowed_origins.extend(_env_cors_origins())

# De-dupe while preserving order
_seen = set()
allowed_origins = [o for o in allowed_origins if not (o in _seen or _seen.add(o))]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(clusters.router)
app.include_router(alert_rules.monitor_router)
app.include_router(alert_rules.logging_router)
app.include_router(collectors.router)
app.include_router(channels.router)
app.include_router(templates.router)
