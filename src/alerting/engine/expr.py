"""Expression compiler: derives a rule's query expression from its generator.

Pure and side-effect free; runs on every create and update.
"""

from __future__ import annotations

import re
from datetime import timedelta
from typing import Iterable, List, Optional

import re2

from src.alerting.engine.promql.durations import parse_duration
from src.alerting.engine.promql.nodes import Matcher
from src.alerting.engine.promql.parser import add_label_matchers, parse
from src.alerting.errors import (
    ComparisonOperatorForbidden,
    DuplicateLabelMatcher,
    DurationTooLong,
    EmptyLabelMatchers,
    InvalidPattern,
    MissingNamespaceConstraint,
    TemplateNotFound,
)
from src.alerting.schemas.alerts import Generator, LabelMatcher, LogqlGenerator, PromqlGenerator
from src.alerting.schemas.templates import PromqlTemplate

MAX_LOG_LOOKBACK = timedelta(minutes=10)
DEFAULT_GLOBAL_NAMESPACE = "global"

_COMPARISON_RE = re.compile(r"==|!=|<=|>=|<|>")


def is_namespace_scoped(namespace: str, global_namespace: str = DEFAULT_GLOBAL_NAMESPACE) -> bool:
    return bool(namespace) and namespace != global_namespace


def _strip_literals(expr: str) -> str:
    """Drop quoted strings and ``{...}`` matcher bodies, keeping operator text."""
    out: List[str] = []
    depth = 0
    i = 0
    n = len(expr)
    while i < n:
        ch = expr[i]
        if ch in "\"'`":
            j = i + 1
            while j < n and expr[j] != ch:
                if ch != "`" and expr[j] == "\\":
                    j += 1
                j += 1
            i = j + 1
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth = max(0, depth - 1)
        elif depth == 0:
            out.append(ch)
        i += 1
    return "".join(out)


# PUBLIC_INTERFACE
def has_comparison_operator(expr: str) -> bool:
    """True when ``expr`` contains <, <=, ==, !=, >= or > outside literals and matchers."""
    return bool(_COMPARISON_RE.search(_strip_literals(expr)))


def _check_unique(matchers: Iterable[LabelMatcher]) -> None:
    seen = set()
    for m in matchers:
        if m.name in seen:
            raise DuplicateLabelMatcher(f"duplicated label matcher: {m}", meta={"label": m.name})
        seen.add(m.name)


def _compile_promql(generator: PromqlGenerator, namespace: str, template: PromqlTemplate, scoped: bool) -> str:
    tree = parse(template.expr)
    matchers = list(generator.label_matchers)
    if scoped:
        matchers.append(LabelMatcher(name="namespace", type="=", value=namespace))
    _check_unique(matchers)
    add_label_matchers(tree, [Matcher(m.name, m.type, m.value) for m in matchers])
    return str(tree)


def _compile_logql(generator: LogqlGenerator, namespace: str) -> str:
    if parse_duration(generator.duration) > MAX_LOG_LOOKBACK:
        raise DurationTooLong(
            f"log lookback duration {generator.duration} exceeds 10m", meta={"duration": generator.duration}
        )
    try:
        re2.compile(generator.match)
    except re2.error as exc:
        raise InvalidPattern(f"match {generator.match} not valid: {exc}", meta={"match": generator.match}) from exc
    if "`" in generator.match:
        raise InvalidPattern(f"match {generator.match} must not contain backticks", meta={"match": generator.match})
    if not generator.label_matchers:
        raise EmptyLabelMatchers("labelMatchers can't be empty")

    ns_matcher = LabelMatcher(name="namespace", type="=", value=namespace)
    _check_unique([*generator.label_matchers, ns_matcher])
    selectors = sorted(str(m) for m in generator.label_matchers)
    selectors.append(str(ns_matcher))
    return (
        f"sum(count_over_time({{{', '.join(selectors)}}} |~ `{generator.match}` [{generator.duration}]))"
        "without(fluentd_thread)"
    )


# PUBLIC_INTERFACE
def check_expr(expr: str, namespace: str, *, promql: bool, global_namespace: str = DEFAULT_GLOBAL_NAMESPACE) -> None:
    """Post-conditions every stored expression must satisfy."""
    if promql:
        parse(expr)
    if has_comparison_operator(expr):
        raise ComparisonOperatorForbidden(
            "query expression must not contain comparison operators (<|<=|==|!=|>|>=)", meta={"expr": expr}
        )
    if is_namespace_scoped(namespace, global_namespace):
        if f'namespace="{namespace}"' not in expr and f'namespace=~"{namespace}"' not in expr:
            raise MissingNamespaceConstraint(
                f'query expr {expr} must contain namespace {namespace}, eg: {{namespace="{namespace}"}}',
                meta={"expr": expr, "namespace": namespace},
            )


# PUBLIC_INTERFACE
def compile_expr(
    generator: Generator,
    namespace: str,
    template: Optional[PromqlTemplate] = None,
    global_namespace: str = DEFAULT_GLOBAL_NAMESPACE,
) -> str:
    """Build and validate the query expression for ``generator`` in ``namespace``.

    Metric generators need the resolved catalog ``template``; log generators ignore it.
    """
    if isinstance(generator, PromqlGenerator):
        if template is None:
            raise TemplateNotFound(
                f"template {generator.scope}.{generator.resource}.{generator.rule} not found",
                meta={"scope": generator.scope, "resource": generator.resource, "rule": generator.rule},
            )
        expr = _compile_promql(generator, namespace, template, is_namespace_scoped(namespace, global_namespace))
        check_expr(expr, namespace, promql=True, global_namespace=global_namespace)
    else:
        expr = _compile_logql(generator, namespace)
        check_expr(expr, namespace, promql=False, global_namespace=global_namespace)
    return expr
