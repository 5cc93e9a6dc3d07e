from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from src.alerting.schemas.channels import AlertChannel
from src.alerting.schemas.common import Severity

AlertType = Literal["monitor", "logging"]
AlertState = Literal["inactive", "pending", "firing"]
MatchType = Literal["=", "!=", "=~", "!~"]
CompareOp = Literal[">", ">=", "<", "<=", "==", "!="]


class LabelMatcher(BaseModel):
    """A single label constraint, e.g. ``pod=~"web-.*"``."""

    name: str = Field(..., min_length=1, description="Label name.")
    type: MatchType = Field("=", description="Match operator.")
    value: str = Field(..., description="Label value or regular expression.")

    def __str__(self) -> str:
        escaped = self.value.replace("\\", "\\\\").replace('"', '\\"')
        return f'{self.name}{self.type}"{escaped}"'


class PromqlGenerator(BaseModel):
    """Metric-query generator: a catalog template plus label constraints."""

    kind: Literal["promql"] = "promql"
    scope: str = Field(..., description="Template scope, e.g. 'node'.")
    resource: str = Field(..., description="Template resource, e.g. 'cpu'.")
    rule: str = Field(..., description="Template rule name, e.g. 'usage'.")
    unit: str = Field("", description="Unit name used to format the alert value.")
    label_matchers: List[LabelMatcher] = Field(default_factory=list, alias="labelMatchers")

    model_config = ConfigDict(populate_by_name=True)


class LogqlGenerator(BaseModel):
    """Log-query generator: count log lines matching a pattern over a lookback window."""

    kind: Literal["logql"] = "logql"
    match: str = Field(..., description="Regular expression matched against log lines.")
    duration: str = Field(..., description="Lookback window, at most 10m.")
    label_matchers: List[LabelMatcher] = Field(default_factory=list, alias="labelMatchers")

    model_config = ConfigDict(populate_by_name=True)


Generator = Annotated[Union[PromqlGenerator, LogqlGenerator], Field(discriminator="kind")]


class AlertLevel(BaseModel):
    severity: Severity = Field(..., description="Severity label attached to alerts of this level.")
    compare_op: CompareOp = Field(..., alias="compareOp")
    compare_value: str = Field(..., alias="compareValue", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class AlertReceiver(BaseModel):
    """Binding of a rule to a notification channel."""

    alert_channel_id: str = Field(..., alias="alertChannelId", min_length=1)
    interval: str = Field("", description="Alertmanager repeat interval, e.g. '1h'.")
    alert_channel: Optional[AlertChannel] = Field(default=None, alias="alertChannel")

    model_config = ConfigDict(populate_by_name=True)


class RealTimeAlert(BaseModel):
    """A live alert instance as reported by the rule evaluator."""

    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    state: str = Field("", description="Alert instance state.")
    active_at: Optional[datetime] = Field(default=None, alias="activeAt")
    value: str = Field("")

    model_config = ConfigDict(populate_by_name=True)


class RealTimeAlertRule(BaseModel):
    """Live evaluation state for one stored rule, aggregated over its severity levels."""

    name: str
    namespace: str
    state: AlertState = "inactive"
    alerts: List[RealTimeAlert] = Field(default_factory=list)


class AlertRuleIn(BaseModel):
    """Request body for creating or replacing an alert rule."""

    name: str = Field(..., min_length=1, description="Rule name, unique per cluster and namespace.")
    generator: Generator = Field(..., description="Template-driven query generator (promql or logql).")
    message: str = Field("", description="Alert message; derived when empty.")
    for_: str = Field("", alias="for", description="Evaluation hold duration, e.g. '1m'.")
    alert_levels: List[AlertLevel] = Field(default_factory=list, alias="alertLevels")
    inhibit_labels: List[str] = Field(default_factory=list, alias="inhibitLabels")
    receivers: List[AlertReceiver] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class AlertRule(BaseModel):
    """A stored alert rule with its derived expression and message."""

    id: Optional[str] = Field(default=None, description="Record id (Mongo ObjectId string).")
    cluster: str
    namespace: str
    name: str
    alert_type: AlertType = Field(..., alias="alertType")
    generator: Generator
    expr: str = ""
    message: str = ""
    for_: str = Field("", alias="for")
    alert_levels: List[AlertLevel] = Field(default_factory=list, alias="alertLevels")
    inhibit_labels: List[str] = Field(default_factory=list, alias="inhibitLabels")
    receivers: List[AlertReceiver] = Field(default_factory=list)
    state: AlertState = "inactive"
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_request(cls, cluster: str, namespace: str, alert_type: AlertType, payload: AlertRuleIn) -> "AlertRule":
        return cls(
            cluster=cluster,
            namespace=namespace,
            name=payload.name.strip(),
            alert_type=alert_type,
            generator=payload.generator.model_copy(deep=True),
            message=payload.message,
            for_=payload.for_,
            alert_levels=[lv.model_copy() for lv in payload.alert_levels],
            inhibit_labels=list(payload.inhibit_labels),
            receivers=[AlertReceiver(alert_channel_id=r.alert_channel_id, interval=r.interval) for r in payload.receivers],
        )


class AlertRuleOut(AlertRule):
    """Response model: stored rule plus live alert instances."""

    real_time_alerts: List[RealTimeAlert] = Field(default_factory=list, alias="realTimeAlerts")


class AlertRuleQuery(BaseModel):
    """Filter/paging model for listing rules (used by router query params)."""

    cluster: str
    namespace: str
    alert_type: AlertType
    search: Optional[str] = None
    state: Optional[AlertState] = None
    page: int = Field(1, ge=1)
    size: int = Field(10, ge=1, le=500)


class AlertRulePage(BaseModel):
    """Envelope for paged rule listings."""

    items: List[AlertRuleOut] = Field(..., description="Rules on this page.")
    total: int = Field(..., ge=0, description="Total rules matching the filters.")
    page: int = Field(..., ge=1)
    size: int = Field(..., ge=1)


def rule_meta(rule: AlertRule) -> Dict[str, Any]:
    """Identity fields used for error metadata and log context."""
    return {"cluster": rule.cluster, "namespace": rule.namespace, "name": rule.name}
