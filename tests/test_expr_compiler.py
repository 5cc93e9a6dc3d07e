from __future__ import annotations

import pytest

from src.alerting.engine.expr import check_expr, compile_expr, has_comparison_operator
from src.alerting.errors import (
    ComparisonOperatorForbidden,
    DuplicateLabelMatcher,
    DurationTooLong,
    EmptyLabelMatchers,
    InvalidDuration,
    InvalidPattern,
    MissingNamespaceConstraint,
    TemplateNotFound,
)
from src.alerting.schemas.alerts import LabelMatcher, LogqlGenerator, PromqlGenerator
from src.alerting.schemas.templates import PromqlTemplate

CPU_TEMPLATE = PromqlTemplate(
    scope="node",
    resource="cpu",
    rule="usage",
    expr='(1 - avg(irate(node_cpu_seconds_total{mode="idle"}[5m])) by (instance)) * 100',
    labels=["instance"],
    rule_show_name="node cpu usage",
    unit="percent-0-100",
)


def _cpu_generator(*matchers: LabelMatcher) -> PromqlGenerator:
    return PromqlGenerator(scope="node", resource="cpu", rule="usage", unit="percent-0-100", label_matchers=list(matchers))


def _log_generator(match: str = "error", duration: str = "5m", *matchers: LabelMatcher) -> LogqlGenerator:
    return LogqlGenerator(
        match=match,
        duration=duration,
        label_matchers=list(matchers) or [LabelMatcher(name="app", value="web")],
    )


def test_promql_expr_gets_namespace_and_user_matchers():
    gen = _cpu_generator(LabelMatcher(name="pod", type="=~", value="web-.*"))
    expr = compile_expr(gen, "team-a", CPU_TEMPLATE)
    assert expr == (
        '(1 - avg by (instance) (irate(node_cpu_seconds_total{mode="idle",namespace="team-a",pod=~"web-.*"}[5m]))) * 100'
    )


def test_promql_compile_is_deterministic():
    gen = _cpu_generator(LabelMatcher(name="pod", type="=~", value="web-.*"), LabelMatcher(name="node", value="n1"))
    first = compile_expr(gen, "team-a", CPU_TEMPLATE)
    again = compile_expr(gen.model_copy(deep=True), "team-a", CPU_TEMPLATE.model_copy(deep=True))
    assert first == again


def test_global_namespace_adds_no_namespace_matcher():
    expr = compile_expr(_cpu_generator(), "global", CPU_TEMPLATE)
    assert "namespace=" not in expr


def test_custom_global_namespace_name_is_honored():
    expr = compile_expr(_cpu_generator(), "cluster-wide", CPU_TEMPLATE, global_namespace="cluster-wide")
    assert "namespace=" not in expr


def test_user_namespace_matcher_conflicts_with_injected_one():
    gen = _cpu_generator(LabelMatcher(name="namespace", value="team-b"))
    with pytest.raises(DuplicateLabelMatcher):
        compile_expr(gen, "team-a", CPU_TEMPLATE)


@pytest.mark.parametrize("namespace", ["global", "team-a"])
@pytest.mark.parametrize("values", [("web-.*", "api-.*"), ("api-.*", "web-.*")])
def test_promql_repeated_user_label_is_rejected_in_any_order(namespace: str, values):
    gen = _cpu_generator(*(LabelMatcher(name="pod", type="=~", value=v) for v in values))
    with pytest.raises(DuplicateLabelMatcher):
        compile_expr(gen, namespace, CPU_TEMPLATE)


def test_template_matcher_is_replaced_by_user_matcher_on_same_label():
    gen = _cpu_generator(LabelMatcher(name="mode", value="user"))
    expr = compile_expr(gen, "team-a", CPU_TEMPLATE)
    assert 'mode="user"' in expr
    assert 'mode="idle"' not in expr


def test_promql_requires_template():
    with pytest.raises(TemplateNotFound):
        compile_expr(_cpu_generator(), "team-a", None)


def test_template_with_comparison_is_rejected():
    tpl = CPU_TEMPLATE.model_copy(update={"expr": "up == 0"})
    with pytest.raises(ComparisonOperatorForbidden):
        compile_expr(_cpu_generator(), "team-a", tpl)


def test_logql_expr_shape():
    expr = compile_expr(_log_generator(), "team-a", None)
    assert expr == 'sum(count_over_time({app="web", namespace="team-a"} |~ `error` [5m]))without(fluentd_thread)'


def test_logql_duplicate_matcher_detected_regardless_of_order():
    a = LabelMatcher(name="app", value="web")
    b = LabelMatcher(name="app", value="api")
    with pytest.raises(DuplicateLabelMatcher):
        compile_expr(_log_generator("error", "5m", a, b), "team-a", None)
    with pytest.raises(DuplicateLabelMatcher):
        compile_expr(_log_generator("error", "5m", b, a), "team-a", None)


def test_logql_namespace_matcher_from_user_is_duplicate():
    ns = LabelMatcher(name="namespace", value="team-a")
    with pytest.raises(DuplicateLabelMatcher):
        compile_expr(_log_generator("error", "5m", ns), "team-a", None)


def test_logql_lookback_limit():
    assert "[10m]" in compile_expr(_log_generator(duration="10m"), "team-a", None)
    with pytest.raises(DurationTooLong):
        compile_expr(_log_generator(duration="11m"), "team-a", None)
    with pytest.raises(DurationTooLong):
        compile_expr(_log_generator(duration="1h"), "team-a", None)


def test_logql_invalid_duration_and_pattern():
    with pytest.raises(InvalidDuration):
        compile_expr(_log_generator(duration="five minutes"), "team-a", None)
    with pytest.raises(InvalidPattern):
        compile_expr(_log_generator(match="(unclosed"), "team-a", None)
    with pytest.raises(InvalidPattern):
        compile_expr(_log_generator(match="a`b"), "team-a", None)


@pytest.mark.parametrize("pattern", ["(?=error)", r"(a)\1", "(?<!x)y"])
def test_logql_pattern_must_be_re2_syntax(pattern: str):
    with pytest.raises(InvalidPattern):
        compile_expr(_log_generator(match=pattern), "team-a", None)


def test_logql_accepts_re2_pattern():
    expr = compile_expr(_log_generator(match="(?i)timeout|refused"), "team-a", None)
    assert "|~ `(?i)timeout|refused`" in expr


def test_logql_requires_label_matchers():
    gen = LogqlGenerator(match="error", duration="5m", label_matchers=[])
    with pytest.raises(EmptyLabelMatchers):
        compile_expr(gen, "team-a", None)


@pytest.mark.parametrize(
    "expr,expected",
    [
        ("up > 0", True),
        ("a >= b", True),
        ("a != b", True),
        ("rate(x[5m]) * 100", False),
        ('x{code!="200"}', False),
        ('x{path=~"/a>b"}', False),
        ("sum(count_over_time({app=\"web\"} |~ `a<b` [5m]))", False),
    ],
)
def test_comparison_detection_ignores_matchers_and_strings(expr: str, expected: bool):
    assert has_comparison_operator(expr) is expected


def test_check_expr_requires_namespace_for_scoped_rules():
    with pytest.raises(MissingNamespaceConstraint):
        check_expr("sum(rate(x[5m]))", "team-a", promql=True)
    check_expr('sum(rate(x{namespace="team-a"}[5m]))', "team-a", promql=True)
    check_expr('sum(rate(x{namespace=~"team-a"}[5m]))', "team-a", promql=True)
    check_expr("sum(rate(x[5m]))", "global", promql=True)
