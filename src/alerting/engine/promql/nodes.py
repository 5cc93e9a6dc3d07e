"""PromQL syntax tree.

``str(node)`` renders canonical PromQL text: selector matchers are sorted so that
equivalent trees always serialize to the same string.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Union


def quote(value: str) -> str:
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\t", "\\t")
        .replace("\r", "\\r")
    )
    return f'"{escaped}"'


def _modifiers(at: Optional[str], offset: Optional[str]) -> str:
    out = ""
    if at:
        out += f" @ {at}"
    if offset:
        out += f" offset {offset}"
    return out


@dataclass
class Matcher:
    name: str
    op: str
    value: str

    def __str__(self) -> str:
        return f"{self.name}{self.op}{quote(self.value)}"


@dataclass
class NumberLiteral:
    text: str

    def __str__(self) -> str:
        return self.text


@dataclass
class StringLiteral:
    value: str

    def __str__(self) -> str:
        return quote(self.value)


@dataclass
class VectorSelector:
    name: Optional[str]
    matchers: List[Matcher] = field(default_factory=list)
    offset: Optional[str] = None
    at: Optional[str] = None

    def selector_text(self) -> str:
        labels = sorted(
            str(m)
            for m in self.matchers
            if not (m.name == "__name__" and m.op == "=" and m.value == self.name)
        )
        name = self.name or ""
        if not labels:
            return name or "{}"
        return f"{name}{{{','.join(labels)}}}"

    def __str__(self) -> str:
        return self.selector_text() + _modifiers(self.at, self.offset)

    def set_matcher(self, matcher: Matcher) -> None:
        """Add ``matcher``, replacing any existing matcher on the same label."""
        self.matchers = [m for m in self.matchers if m.name != matcher.name]
        self.matchers.append(Matcher(matcher.name, matcher.op, matcher.value))


@dataclass
class MatrixSelector:
    vector: VectorSelector
    range: str

    def __str__(self) -> str:
        return f"{self.vector.selector_text()}[{self.range}]" + _modifiers(self.vector.at, self.vector.offset)


@dataclass
class SubqueryExpr:
    expr: "Expr"
    range: str
    step: Optional[str] = None
    offset: Optional[str] = None
    at: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.expr}[{self.range}:{self.step or ''}]" + _modifiers(self.at, self.offset)


@dataclass
class Call:
    func: str
    args: List["Expr"] = field(default_factory=list)

    def __str__(self) -> str:
        return f"{self.func}({', '.join(str(a) for a in self.args)})"


@dataclass
class AggregateExpr:
    op: str
    expr: "Expr"
    param: Optional["Expr"] = None
    grouping: List[str] = field(default_factory=list)
    without: bool = False

    def __str__(self) -> str:
        head = self.op
        if self.without:
            head += f" without ({', '.join(self.grouping)}) "
        elif self.grouping:
            head += f" by ({', '.join(self.grouping)}) "
        inner = str(self.expr) if self.param is None else f"{self.param}, {self.expr}"
        return f"{head}({inner})"


@dataclass
class VectorMatching:
    on: bool = False
    labels: List[str] = field(default_factory=list)
    group: Optional[str] = None  # "left" | "right"
    include: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        if not (self.on or self.labels or self.group):
            return ""
        out = f" {'on' if self.on else 'ignoring'} ({', '.join(self.labels)})"
        if self.group:
            out += f" group_{self.group} ({', '.join(self.include)})"
        return out


@dataclass
class BinaryExpr:
    op: str
    lhs: "Expr"
    rhs: "Expr"
    return_bool: bool = False
    matching: Optional[VectorMatching] = None

    def __str__(self) -> str:
        modifier = " bool" if self.return_bool else ""
        matching = str(self.matching) if self.matching else ""
        return f"{self.lhs} {self.op}{modifier}{matching} {self.rhs}"


@dataclass
class ParenExpr:
    expr: "Expr"

    def __str__(self) -> str:
        return f"({self.expr})"


@dataclass
class UnaryExpr:
    op: str
    expr: "Expr"

    def __str__(self) -> str:
        return f"{self.op}{self.expr}"


Expr = Union[
    NumberLiteral,
    StringLiteral,
    VectorSelector,
    MatrixSelector,
    SubqueryExpr,
    Call,
    AggregateExpr,
    BinaryExpr,
    ParenExpr,
    UnaryExpr,
]


def children(node: Expr) -> List[Expr]:
    if isinstance(node, MatrixSelector):
        return [node.vector]
    if isinstance(node, (SubqueryExpr, ParenExpr, UnaryExpr)):
        return [node.expr]
    if isinstance(node, Call):
        return list(node.args)
    if isinstance(node, AggregateExpr):
        return [node.expr] if node.param is None else [node.param, node.expr]
    if isinstance(node, BinaryExpr):
        return [node.lhs, node.rhs]
    return []


# PUBLIC_INTERFACE
def walk(node: Expr) -> Iterator[Expr]:
    """Yield ``node`` and every descendant, depth first."""
    yield node
    for child in children(node):
        yield from walk(child)
