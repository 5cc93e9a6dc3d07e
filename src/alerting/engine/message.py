from __future__ import annotations

from typing import List, Optional

from src.alerting.engine.units import parse_unit
from src.alerting.schemas.alerts import AlertRule, LogqlGenerator, PromqlGenerator
from src.alerting.schemas.templates import PromqlTemplate

# Go-template placeholders rendered by the rule evaluator when an alert fires.
ALERT_CLUSTER_KEY = "cluster"
VALUE_ANNOTATION_EXPR = '{{ $value | printf "%.1f" }}'


def _label_placeholder(label: str) -> str:
    return f"[{label}:{{{{ $labels.{label} }}}}] "


def _metric_labels(generator: PromqlGenerator, template: Optional[PromqlTemplate]) -> List[str]:
    labels = list(template.labels) if template else []
    for m in generator.label_matchers:
        if m.name not in labels:
            labels.append(m.name)
    return labels


# PUBLIC_INTERFACE
def build_message(rule: AlertRule, template: Optional[PromqlTemplate] = None) -> str:
    """Build the default alert message for ``rule`` (ignores any existing message)."""
    generator = rule.generator
    if isinstance(generator, PromqlGenerator):
        unit = parse_unit(generator.unit)
        message = f"{rule.name}: [cluster:{{{{ $externalLabels.{ALERT_CLUSTER_KEY} }}}}] "
        for label in _metric_labels(generator, template):
            message += _label_placeholder(label)
        show_name = (template.rule_show_name if template else "") or generator.rule
        return message + f"{show_name} trigger alert, value: {VALUE_ANNOTATION_EXPR}{unit.show}"

    if not isinstance(generator, LogqlGenerator):
        raise TypeError(f"unsupported generator {type(generator).__name__}")
    message = (
        f"{rule.name}: [cluster:{{{{ $labels.{ALERT_CLUSTER_KEY} }}}}] "
        "[namespace:{{ $labels.namespace }}] "
    )
    for m in generator.label_matchers:
        message += _label_placeholder(m.name)
    return message + (
        f"string [{generator.match}] appeared in logs over the last {generator.duration} "
        f"too many times, value: {VALUE_ANNOTATION_EXPR}"
    )


# PUBLIC_INTERFACE
def set_message(rule: AlertRule, template: Optional[PromqlTemplate] = None) -> AlertRule:
    """Fill ``rule.message`` when the caller left it empty; a set message is kept."""
    if not rule.message:
        rule.message = build_message(rule, template)
    return rule
