"""Recursive-descent PromQL parser.

Supports the expression language used by alert templates: literals, instant and
range selectors, subqueries, ``offset``/``@`` modifiers, function calls,
aggregations, binary operators with vector matching, and unary signs.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

import re2

from src.alerting.engine.promql.lexer import DURATION, EOF, IDENT, NUMBER, OP, PUNCT, STRING, Token, tokenize
from src.alerting.engine.promql.nodes import (
    AggregateExpr,
    BinaryExpr,
    Call,
    Expr,
    Matcher,
    MatrixSelector,
    NumberLiteral,
    ParenExpr,
    StringLiteral,
    SubqueryExpr,
    UnaryExpr,
    VectorMatching,
    VectorSelector,
    walk,
)
from src.alerting.errors import ExprSyntaxError

AGGREGATORS = {
    "sum", "avg", "count", "min", "max", "group", "stddev", "stdvar",
    "topk", "bottomk", "count_values", "quantile", "limitk", "limit_ratio",
}
_PARAM_AGGREGATORS = {"topk", "bottomk", "count_values", "quantile", "limitk", "limit_ratio"}

FUNCTIONS = {
    "abs", "absent", "absent_over_time", "acos", "acosh", "asin", "asinh", "atan", "atanh",
    "avg_over_time", "ceil", "changes", "clamp", "clamp_max", "clamp_min", "cos", "cosh",
    "count_over_time", "day_of_month", "day_of_week", "day_of_year", "days_in_month", "deg",
    "delta", "deriv", "double_exponential_smoothing", "exp", "floor", "histogram_avg",
    "histogram_count", "histogram_fraction", "histogram_quantile", "histogram_stddev",
    "histogram_stdvar", "histogram_sum", "holt_winters", "hour", "idelta", "increase", "info",
    "irate", "label_join", "label_replace", "last_over_time", "ln", "log10", "log2",
    "mad_over_time", "max_over_time", "min_over_time", "minute", "month", "pi",
    "predict_linear", "present_over_time", "quantile_over_time", "rad", "rate", "resets",
    "round", "scalar", "sgn", "sin", "sinh", "sort", "sort_by_label", "sort_by_label_desc",
    "sort_desc", "sqrt", "stddev_over_time", "stdvar_over_time", "sum_over_time", "tan", "tanh",
    "time", "timestamp", "vector", "year",
}

COMPARISON_OPERATORS = {"==", "!=", "<=", "<", ">=", ">"}

_PRECEDENCE = {
    "or": 1,
    "and": 2,
    "unless": 2,
    "==": 3, "!=": 3, "<=": 3, "<": 3, ">=": 3, ">": 3,
    "+": 4, "-": 4,
    "*": 5, "/": 5, "%": 5, "atan2": 5,
    "^": 6,
}
_KEYWORD_OPERATORS = {"and", "or", "unless", "atan2"}
_MATCH_OPERATORS = {"=", "!=", "=~", "!~"}


class _Parser:
    def __init__(self, src: str) -> None:
        self.src = src
        self.tokens = tokenize(src)
        self.pos = 0

    # ---- token helpers ----

    def _peek(self, offset: int = 0) -> Token:
        idx = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[idx]

    def _advance(self) -> Token:
        tok = self.tokens[self.pos]
        if tok.kind != EOF:
            self.pos += 1
        return tok

    def _error(self, msg: str, tok: Optional[Token] = None) -> ExprSyntaxError:
        tok = tok or self._peek()
        return ExprSyntaxError(f"parse error at position {tok.pos}: {msg}", meta={"expr": self.src})

    def _is_punct(self, text: str, offset: int = 0) -> bool:
        tok = self._peek(offset)
        return tok.kind == PUNCT and tok.text == text

    def _is_keyword(self, *words: str) -> bool:
        tok = self._peek()
        return tok.kind == IDENT and tok.text.lower() in words

    def _expect_punct(self, text: str) -> Token:
        if not self._is_punct(text):
            tok = self._peek()
            raise self._error(f"unexpected {tok.text or 'end of input'!r}, expected {text!r}")
        return self._advance()

    def _expect(self, kind: str, what: str) -> Token:
        tok = self._peek()
        if tok.kind != kind:
            raise self._error(f"unexpected {tok.text or 'end of input'!r}, expected {what}")
        return self._advance()

    # ---- grammar ----

    def parse(self) -> Expr:
        expr = self._parse_binary(1)
        if self._peek().kind != EOF:
            raise self._error(f"unexpected {self._peek().text!r}")
        return expr

    def _peek_binary_op(self) -> Optional[str]:
        tok = self._peek()
        if tok.kind == OP and tok.text in _PRECEDENCE:
            return tok.text
        if tok.kind == IDENT and tok.text.lower() in _KEYWORD_OPERATORS:
            return tok.text.lower()
        return None

    def _parse_binary(self, min_prec: int) -> Expr:
        lhs = self._parse_unary()
        while True:
            op = self._peek_binary_op()
            if op is None or _PRECEDENCE[op] < min_prec:
                return lhs
            self._advance()
            return_bool = False
            if self._is_keyword("bool"):
                if op not in COMPARISON_OPERATORS:
                    raise self._error("bool modifier can only be used on comparison operators")
                self._advance()
                return_bool = True
            matching = self._parse_vector_matching()
            prec = _PRECEDENCE[op]
            rhs = self._parse_binary(prec if op == "^" else prec + 1)
            lhs = BinaryExpr(op=op, lhs=lhs, rhs=rhs, return_bool=return_bool, matching=matching)

    def _parse_vector_matching(self) -> Optional[VectorMatching]:
        if not self._is_keyword("on", "ignoring", "group_left", "group_right"):
            return None
        matching = VectorMatching()
        if self._is_keyword("on", "ignoring"):
            matching.on = self._advance().text.lower() == "on"
            matching.labels = self._parse_label_list()
        if self._is_keyword("group_left", "group_right"):
            matching.group = self._advance().text.lower()[len("group_") :]
            if self._is_punct("("):
                matching.include = self._parse_label_list()
        return matching

    def _parse_unary(self) -> Expr:
        tok = self._peek()
        if tok.kind == OP and tok.text in ("+", "-"):
            self._advance()
            operand = self._parse_binary(_PRECEDENCE["^"])
            if isinstance(operand, NumberLiteral) and tok.text == "-" and not operand.text.startswith("-"):
                return NumberLiteral("-" + operand.text)
            return UnaryExpr(op=tok.text, expr=operand)
        return self._parse_postfix()

    def _parse_postfix(self) -> Expr:
        expr = self._parse_primary()
        while True:
            if self._is_punct("["):
                expr = self._parse_range(expr)
            elif self._is_keyword("offset") or self._is_punct("@"):
                self._parse_modifier(expr)
            else:
                return expr

    def _parse_range(self, expr: Expr) -> Expr:
        self._expect_punct("[")
        rng = self._expect(DURATION, "duration").text
        if self._is_punct(":"):
            self._advance()
            step = None
            if self._peek().kind == DURATION:
                step = self._advance().text
            self._expect_punct("]")
            return SubqueryExpr(expr=expr, range=rng, step=step)
        self._expect_punct("]")
        if not isinstance(expr, VectorSelector) or expr.offset or expr.at:
            raise self._error("ranges only allowed for vector selectors")
        return MatrixSelector(vector=expr, range=rng)

    def _parse_modifier(self, expr: Expr) -> None:
        target = expr.vector if isinstance(expr, MatrixSelector) else expr
        if not isinstance(target, (VectorSelector, SubqueryExpr)):
            raise self._error("offset and @ modifiers must follow a selector or subquery")
        if self._is_keyword("offset"):
            self._advance()
            sign = ""
            if self._peek().kind == OP and self._peek().text == "-":
                self._advance()
                sign = "-"
            if target.offset:
                raise self._error("offset may not be set multiple times")
            target.offset = sign + self._expect(DURATION, "duration").text
            return
        self._advance()  # '@'
        if target.at:
            raise self._error("@ <timestamp> may not be set multiple times")
        if self._is_keyword("start", "end"):
            fn = self._advance().text.lower()
            self._expect_punct("(")
            self._expect_punct(")")
            target.at = f"{fn}()"
            return
        sign = ""
        if self._peek().kind == OP and self._peek().text in ("+", "-"):
            sign = "-" if self._advance().text == "-" else ""
        target.at = sign + self._expect(NUMBER, "timestamp").text

    def _parse_primary(self) -> Expr:
        tok = self._peek()
        if tok.kind == NUMBER:
            self._advance()
            return NumberLiteral(tok.text)
        if tok.kind == STRING:
            self._advance()
            return StringLiteral(tok.value)
        if tok.kind == PUNCT and tok.text == "(":
            self._advance()
            inner = self._parse_binary(1)
            self._expect_punct(")")
            return ParenExpr(inner)
        if tok.kind == PUNCT and tok.text == "{":
            matchers = self._parse_matchers()
            if not any(m.value != "" or m.op in ("!=", "!~") for m in matchers):
                raise self._error("vector selector must contain at least one non-empty matcher", tok)
            return VectorSelector(name=None, matchers=matchers)
        if tok.kind == IDENT:
            word = tok.text.lower()
            if word in ("inf", "nan"):
                self._advance()
                return NumberLiteral(tok.text)
            if word in AGGREGATORS and (self._is_punct("(", 1) or self._peek(1).text.lower() in ("by", "without")):
                return self._parse_aggregate()
            if self._is_punct("(", 1):
                return self._parse_call()
            if word in _KEYWORD_OPERATORS or word in ("by", "without", "on", "ignoring", "bool", "offset"):
                raise self._error(f"unexpected keyword {tok.text!r}")
            self._advance()
            matchers: List[Matcher] = []
            if self._is_punct("{"):
                matchers = self._parse_matchers()
            return VectorSelector(name=tok.text, matchers=matchers)
        raise self._error(f"unexpected {tok.text or 'end of input'!r}")

    def _parse_call(self) -> Expr:
        name_tok = self._advance()
        if name_tok.text not in FUNCTIONS:
            raise self._error(f"unknown function with name {name_tok.text!r}", name_tok)
        self._expect_punct("(")
        args: List[Expr] = []
        while not self._is_punct(")"):
            args.append(self._parse_binary(1))
            if not self._is_punct(","):
                break
            self._advance()
        self._expect_punct(")")
        return Call(func=name_tok.text, args=args)

    def _parse_aggregate(self) -> Expr:
        op = self._advance().text.lower()
        grouping: List[str] = []
        without = False
        has_grouping = False
        if self._is_keyword("by", "without"):
            without = self._advance().text.lower() == "without"
            grouping = self._parse_label_list()
            has_grouping = True
        self._expect_punct("(")
        first = self._parse_binary(1)
        param: Optional[Expr] = None
        body = first
        if self._is_punct(","):
            self._advance()
            param = first
            body = self._parse_binary(1)
        self._expect_punct(")")
        if not has_grouping and self._is_keyword("by", "without"):
            without = self._advance().text.lower() == "without"
            grouping = self._parse_label_list()
        if op in _PARAM_AGGREGATORS and param is None:
            raise self._error(f"aggregation {op!r} requires a parameter")
        if op not in _PARAM_AGGREGATORS and param is not None:
            raise self._error(f"aggregation {op!r} does not take a parameter")
        return AggregateExpr(op=op, expr=body, param=param, grouping=grouping, without=without)

    def _parse_label_list(self) -> List[str]:
        self._expect_punct("(")
        labels: List[str] = []
        while not self._is_punct(")"):
            labels.append(self._expect(IDENT, "label name").text)
            if not self._is_punct(","):
                break
            self._advance()
        self._expect_punct(")")
        return labels

    def _parse_matchers(self) -> List[Matcher]:
        self._expect_punct("{")
        matchers: List[Matcher] = []
        while not self._is_punct("}"):
            name = self._expect(IDENT, "label name").text
            op_tok = self._peek()
            if op_tok.kind != OP or op_tok.text not in _MATCH_OPERATORS:
                raise self._error(f"unexpected {op_tok.text!r} in label matching, expected one of =, !=, =~, !~")
            self._advance()
            value = self._expect(STRING, "label value string").value
            if op_tok.text in ("=~", "!~"):
                try:
                    re2.compile(value)
                except re2.error as exc:
                    raise self._error(f"invalid regular expression {value!r}: {exc}", op_tok) from exc
            matchers.append(Matcher(name=name, op=op_tok.text, value=value))
            if not self._is_punct(","):
                break
            self._advance()
        self._expect_punct("}")
        return matchers


# PUBLIC_INTERFACE
def parse(expr: str) -> Expr:
    """Parse PromQL text into a syntax tree; raises ExprSyntaxError."""
    if not (expr or "").strip():
        raise ExprSyntaxError("empty expression")
    return _Parser(expr).parse()


# PUBLIC_INTERFACE
def add_label_matchers(node: Expr, matchers: Iterable[Matcher]) -> Expr:
    """Inject ``matchers`` into every vector selector of ``node`` (in place)."""
    matchers = list(matchers)
    for sub in walk(node):
        if isinstance(sub, VectorSelector):
            for m in matchers:
                sub.set_matcher(m)
    return node
