from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

Severity = Literal["critical", "error", "warning", "info"]

# Higher-severity first; used to pair levels for inhibition.
SEVERITY_RANK: Dict[str, int] = {"critical": 0, "error": 1, "warning": 2, "info": 3}


class HealthResponse(BaseModel):
    """Response model for health endpoints."""

    status: str = Field(..., description="High-level health status string (e.g., 'ok').")
    message: str = Field(..., description="Human-readable status message.")
    timestamp: datetime = Field(..., description="UTC timestamp at time of response.")


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    detail: str = Field(..., description="Human-readable error details.")
    code: Optional[str] = Field(default=None, description="Optional machine-readable error code.")
    meta: Dict[str, Any] = Field(default_factory=dict, description="Optional metadata for debugging.")


class OkResponse(BaseModel):
    """Plain acknowledgement for mutating endpoints that return no resource."""

    status: str = Field("ok", description="Always 'ok' on success.")
    meta: Dict[str, Any] = Field(default_factory=dict, description="Optional operation details.")


# PUBLIC_INTERFACE
def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)
