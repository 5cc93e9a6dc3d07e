"""Validation and derivation pipeline applied to every created or updated rule.

No I/O apart from the two catalog lookups passed in by the caller.
"""

from __future__ import annotations

from typing import Callable, Optional

from src.alerting.engine.expr import DEFAULT_GLOBAL_NAMESPACE, compile_expr
from src.alerting.engine.levels import check_alert_levels
from src.alerting.engine.message import set_message
from src.alerting.engine.promql.durations import parse_duration
from src.alerting.engine.receivers import ChannelLookup, resolve_receivers
from src.alerting.errors import GeneratorMismatch, TemplateNotFound
from src.alerting.schemas.alerts import AlertRule, LogqlGenerator, PromqlGenerator
from src.alerting.schemas.templates import PromqlTemplate

TemplateLookup = Callable[[str, str, str], Optional[PromqlTemplate]]

_GENERATOR_KIND = {"monitor": PromqlGenerator, "logging": LogqlGenerator}


def _resolve_template(rule: AlertRule, find_template: TemplateLookup) -> Optional[PromqlTemplate]:
    gen = rule.generator
    if not isinstance(gen, PromqlGenerator):
        return None
    tpl = find_template(gen.scope, gen.resource, gen.rule)
    if tpl is None:
        raise TemplateNotFound(
            f"template {gen.scope}.{gen.resource}.{gen.rule} not found",
            meta={"scope": gen.scope, "resource": gen.resource, "rule": gen.rule},
        )
    return tpl


# PUBLIC_INTERFACE
def prepare_rule(
    rule: AlertRule,
    find_template: TemplateLookup,
    find_channel: ChannelLookup,
    default_channel_id: str,
    global_namespace: str = DEFAULT_GLOBAL_NAMESPACE,
) -> AlertRule:
    """Derive ``message``, ``expr`` and resolved receivers for ``rule``, validating along the way.

    Order: template -> message -> expr -> receivers -> levels. The first failure is raised
    and ``rule`` may be partially updated; callers persist only on success.
    """
    expected = _GENERATOR_KIND[rule.alert_type]
    if not isinstance(rule.generator, expected):
        raise GeneratorMismatch(
            f"alert type {rule.alert_type} requires a {expected.model_fields['kind'].default} generator",
            meta={"alertType": rule.alert_type, "kind": rule.generator.kind},
        )
    if rule.for_:
        parse_duration(rule.for_)

    template = _resolve_template(rule, find_template)
    set_message(rule, template)
    rule.expr = compile_expr(rule.generator, rule.namespace, template, global_namespace)
    rule.receivers = resolve_receivers(rule.receivers, find_channel, default_channel_id)
    check_alert_levels(rule.alert_levels, rule.inhibit_labels)
    return rule
