from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class MonitorCollector(BaseModel):
    """Scrape configuration for one Service port."""

    service: str = Field(..., min_length=1, description="Service name.")
    port: str = Field("", description="Named Service port to scrape.")
    path: str = Field("", description="Metrics path.")


class CollectorStatus(BaseModel):
    """Active scrape target reported by Prometheus for a collector."""

    scrape_pool: str = Field(..., alias="scrapePool")
    scrape_url: str = Field("", alias="scrapeUrl")
    health: str = Field("unknown", description="up | down | unknown")
    last_error: str = Field("", alias="lastError")
    last_scrape: Optional[str] = Field(default=None, alias="lastScrape")
    labels: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)
