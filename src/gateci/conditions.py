# conditions.py
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator, List, Tuple, Union

from .errors import DefinitionError, UnknownConditionFieldError
from .model import EventKind, PipelineContext

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# A job condition is a small expression tree:
#
#   FieldEquals("ref", "refs/heads/main")
#   And(left, right) / Or(left, right) / Not(operand)
#
# evaluate() is a pure interpreter over PipelineContext and never raises
# for a validated tree. validate() runs when the pipeline is loaded and
# rejects unknown fields, so a bad predicate never reaches run time.
# ---------------------------------------------------------------------

KNOWN_FIELDS: Tuple[str, ...] = ("ref", "event")

# accepted spellings in string predicates -> canonical field
FIELD_ALIASES = {
    "ref": "ref",
    "github.ref": "ref",
    "event": "event",
    "event_name": "event",
    "github.event_name": "event",
}


class _Expr:
    """Operator sugar: ref_is(...) & ~event_is(...)"""

    def __and__(self, other: Condition) -> Condition:
        return And(self, other)

    def __or__(self, other: Condition) -> Condition:
        return Or(self, other)

    def __invert__(self) -> Condition:
        return Not(self)


@dataclass(frozen=True)
class FieldEquals(_Expr):
    field: str
    value: str

    def __str__(self) -> str:
        return f"{self.field} == {self.value!r}"


@dataclass(frozen=True)
class And(_Expr):
    left: Condition
    right: Condition

    def __str__(self) -> str:
        return f"({self.left} && {self.right})"


@dataclass(frozen=True)
class Or(_Expr):
    left: Condition
    right: Condition

    def __str__(self) -> str:
        return f"({self.left} || {self.right})"


@dataclass(frozen=True)
class Not(_Expr):
    operand: Condition

    def __str__(self) -> str:
        return f"!{self.operand}"


Condition = Union[FieldEquals, And, Or, Not]


def evaluate(predicate: Condition | None, context: PipelineContext) -> bool:
    """Evaluate a validated predicate. A missing predicate always passes."""
    if predicate is None:
        return True
    if isinstance(predicate, FieldEquals):
        if predicate.field == "event":
            # "PUSH" and "pull-request" name the same events as "push" and "pull_request"
            return EventKind.parse(predicate.value) is context.event
        return context.ref == predicate.value
    if isinstance(predicate, And):
        return evaluate(predicate.left, context) and evaluate(predicate.right, context)
    if isinstance(predicate, Or):
        return evaluate(predicate.left, context) or evaluate(predicate.right, context)
    if isinstance(predicate, Not):
        return not evaluate(predicate.operand, context)
    raise TypeError(f"Not a condition: {predicate!r}")


def validate(predicate: Condition | None, *, job: str = "") -> None:
    """Reject predicates that could not be evaluated against a PipelineContext."""
    if predicate is None:
        return
    if isinstance(predicate, FieldEquals):
        if predicate.field not in KNOWN_FIELDS:
            raise UnknownConditionFieldError(field_name=predicate.field, known=KNOWN_FIELDS, job=job)
        if predicate.field == "event":
            try:
                EventKind.parse(predicate.value)
            except ValueError as e:
                err = DefinitionError(f"invalid event literal in condition: {e}")
                err.job = job
                raise err from None
        return
    if isinstance(predicate, (And, Or)):
        validate(predicate.left, job=job)
        validate(predicate.right, job=job)
        return
    if isinstance(predicate, Not):
        validate(predicate.operand, job=job)
        return
    raise DefinitionError(f"Not a condition: {predicate!r}")


# ---------------------------------------------------------------------
# String predicates
# ---------------------------------------------------------------------
# Grammar (lowest precedence first):
#   or_expr  := and_expr (("||" | "or") and_expr)*
#   and_expr := unary (("&&" | "and") unary)*
#   unary    := ("!" | "not") unary | "(" or_expr ")" | compare
#   compare  := IDENT ("==" | "!=") STRING

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
      | (?P<op>==|!=|&&|\|\||!|\(|\))
      | (?P<ident>[A-Za-z_][A-Za-z0-9_.]*)
    )
    """,
    re.VERBOSE,
)

_WRAPPER_RE = re.compile(r"^\s*\$\{\{(.*)\}\}\s*$", re.DOTALL)


def _tokenize(text: str) -> Iterator[Tuple[str, str]]:
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise DefinitionError(f"invalid condition {text!r}: unexpected input at offset {pos}")
        pos = m.end()
        if m.group("string") is not None:
            raw = m.group("string")[1:-1]
            yield "string", re.sub(r"\\(.)", r"\1", raw)
        elif m.group("op") is not None:
            yield "op", m.group("op")
        else:
            word = m.group("ident")
            lowered = word.lower()
            if lowered in ("and", "or", "not"):
                yield "op", {"and": "&&", "or": "||", "not": "!"}[lowered]
            else:
                yield "ident", word


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens: List[Tuple[str, str]] = list(_tokenize(text))
        self.pos = 0

    def _peek(self) -> Tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _take(self) -> Tuple[str, str]:
        tok = self._peek()
        if tok is None:
            raise DefinitionError(f"invalid condition {self.text!r}: unexpected end of expression")
        self.pos += 1
        return tok

    def _accept(self, op: str) -> bool:
        if self._peek() == ("op", op):
            self.pos += 1
            return True
        return False

    def parse(self) -> Condition:
        expr = self._or()
        if self._peek() is not None:
            raise DefinitionError(f"invalid condition {self.text!r}: unexpected {self._peek()[1]!r}")
        return expr

    def _or(self) -> Condition:
        expr = self._and()
        while self._accept("||"):
            expr = Or(expr, self._and())
        return expr

    def _and(self) -> Condition:
        expr = self._unary()
        while self._accept("&&"):
            expr = And(expr, self._unary())
        return expr

    def _unary(self) -> Condition:
        if self._accept("!"):
            return Not(self._unary())
        if self._accept("("):
            expr = self._or()
            if not self._accept(")"):
                raise DefinitionError(f"invalid condition {self.text!r}: missing ')'")
            return expr
        return self._compare()

    def _compare(self) -> Condition:
        kind, name = self._take()
        if kind != "ident":
            raise DefinitionError(f"invalid condition {self.text!r}: expected a field, got {name!r}")
        field = FIELD_ALIASES.get(name, name)

        kind, op = self._take()
        if kind != "op" or op not in ("==", "!="):
            raise DefinitionError(f"invalid condition {self.text!r}: expected '==' or '!=' after {name!r}")

        kind, value = self._take()
        if kind != "string":
            raise DefinitionError(f"invalid condition {self.text!r}: expected a quoted literal, got {value!r}")

        if field == "event":
            try:
                value = EventKind.parse(value).value
            except ValueError:
                pass  # rejected by validate() with the job name attached

        expr: Condition = FieldEquals(field, value)
        return Not(expr) if op == "!=" else expr


def parse_condition(text: str) -> Condition:
    """
    Parse a string predicate such as

        ${{ github.ref == 'refs/heads/main' }}
        ref == "refs/heads/main" && event != "schedule"

    Field names are validated separately by validate().
    """
    m = _WRAPPER_RE.match(text)
    if m:
        text = m.group(1)
    if not text.strip():
        raise DefinitionError("invalid condition: empty expression")
    return _Parser(text).parse()


# ---------------------------------------------------------------------
# Helpers for Python workflows
# ---------------------------------------------------------------------

def ref_is(ref: str) -> FieldEquals:
    return FieldEquals("ref", ref)


def branch_is(branch: str) -> FieldEquals:
    return FieldEquals("ref", f"refs/heads/{branch}")


def event_is(event: str | EventKind) -> FieldEquals:
    return FieldEquals("event", EventKind.parse(event).value)
