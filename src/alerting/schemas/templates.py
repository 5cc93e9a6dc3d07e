from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field


class PromqlTemplate(BaseModel):
    """A named base expression in the template catalog."""

    scope: str = Field(..., description="Template scope, e.g. 'node' or 'containers'.")
    resource: str = Field(..., description="Resource within the scope, e.g. 'cpu'.")
    rule: str = Field(..., description="Rule name within the resource, e.g. 'usage'.")
    expr: str = Field(..., description="Base PromQL expression without comparison.")
    labels: List[str] = Field(default_factory=list, description="Labels rendered into derived alert messages.")
    rule_show_name: str = Field("", alias="ruleShowName", description="Display name used in derived alert messages.")
    unit: str = Field("", description="Suggested unit for values of this expression.")

    model_config = ConfigDict(populate_by_name=True)


class PromqlTemplateIn(BaseModel):
    """Request body for creating or replacing a template; identity comes from the path."""

    expr: str = Field(..., min_length=1)
    labels: List[str] = Field(default_factory=list)
    rule_show_name: str = Field("", alias="ruleShowName")
    unit: str = Field("")

    model_config = ConfigDict(populate_by_name=True)


class PromqlTemplateListResponse(BaseModel):
    items: List[PromqlTemplate]
    total: int = Field(..., ge=0)
