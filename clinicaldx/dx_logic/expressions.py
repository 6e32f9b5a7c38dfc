#!/usr/bin/env python3
"""
Boolean expression parser / evaluator (one engine, two grammars).

    Or   := And ('OR' And)*
    And  := Atom ('AND' Atom)*
    Atom := '(' Or ')' | Leaf

Group formulas:      Leaf := group-id
Counting expressions: Leaf := counter comparator integer

Tokens are whitespace-separated words plus parentheses. AND binds tighter
than OR, and evaluation always visits every operand. A chain of one
operator is a single n-ary node, so tree depth grows with parenthesis
nesting only (at most MAX_NESTING levels). Malformed input raises
GrammarError at compile time.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Collection, List, Mapping, Optional, Tuple, Union

from clinicaldx.dx_logic.comparators import NUMERIC_OPERATORS
from clinicaldx.utils.exceptions import GrammarError, UnknownOperator

AND = "AND"
OR = "OR"
_STRUCTURAL = {"(", ")", AND, OR}
_TOKEN_RE = re.compile(r"[()]|[^\s()]+")
_INT_RE = re.compile(r"^[+-]?\d+$")
MAX_NESTING = 64


@dataclass(frozen=True)
class Identifier:
    name: str


@dataclass(frozen=True)
class Comparison:
    counter: str
    op: str
    value: int


@dataclass(frozen=True)
class And:
    operands: Tuple["Node", ...]


@dataclass(frozen=True)
class Or:
    operands: Tuple["Node", ...]


Node = Union[Identifier, Comparison, And, Or]


def tokenize(expr: str) -> List[str]:
    return _TOKEN_RE.findall(expr)


class _Parser:
    """Recursive-descent parser parameterized by its leaf rule."""

    def __init__(self, expr: str, parse_leaf: Callable[["_Parser"], Node]):
        self.expr = expr
        self.tokens = tokenize(expr)
        self.pos = 0
        self._parse_leaf = parse_leaf
        self.depth = 0

    def peek(self) -> Optional[str]:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return None

    def advance(self) -> str:
        tok = self.tokens[self.pos]
        self.pos += 1
        return tok

    def fail(self, message: str) -> GrammarError:
        return GrammarError(f"{message} in expression {self.expr!r}")

    def parse(self) -> Node:
        if not self.tokens:
            raise self.fail("Empty expression")
        node = self._parse_or()
        if self.pos < len(self.tokens):
            tok = self.peek()
            if tok == ")":
                raise self.fail("Unbalanced parenthesis: unexpected ')'")
            raise self.fail(f"Unexpected token {tok!r} after complete expression")
        return node

    def _parse_or(self) -> Node:
        operands = [self._parse_and()]
        while self.peek() == OR:
            self.advance()
            operands.append(self._parse_and())
        return operands[0] if len(operands) == 1 else Or(tuple(operands))

    def _parse_and(self) -> Node:
        operands = [self._parse_atom()]
        while self.peek() == AND:
            self.advance()
            operands.append(self._parse_atom())
        return operands[0] if len(operands) == 1 else And(tuple(operands))

    def _parse_atom(self) -> Node:
        tok = self.peek()
        if tok == "(":
            if self.depth >= MAX_NESTING:
                raise self.fail(f"Expression nested too deeply (more than {MAX_NESTING} levels)")
            self.advance()
            self.depth += 1
            node = self._parse_or()
            if self.peek() != ")":
                raise self.fail("Unbalanced parenthesis: missing ')'")
            self.advance()
            self.depth -= 1
            return node
        if tok is None:
            raise self.fail("Missing operand at end of expression")
        if tok in _STRUCTURAL:
            raise self.fail(f"Missing operand before {tok!r}")
        return self._parse_leaf(self)

    def word(self, what: str) -> str:
        """Consume one non-structural token, naming ``what`` was expected otherwise."""
        tok = self.peek()
        if tok is None or tok in _STRUCTURAL:
            found = "end of expression" if tok is None else repr(tok)
            raise self.fail(f"Expected {what}, found {found}")
        return self.advance()


# ---------------------------------------------------------------------------
# Grammar (a): group formulas
# ---------------------------------------------------------------------------

def parse_formula(expr: str, group_ids: Optional[Collection[str]] = None) -> Node:
    """
    Parse a formula over group identifiers.

    If ``group_ids`` is given, every identifier must be one of them.
    """
    if not isinstance(expr, str):
        raise GrammarError(f"Formula must be a string, got {type(expr).__name__}")

    def leaf(p: _Parser) -> Node:
        name = p.word("group identifier")
        if group_ids is not None and name not in group_ids:
            raise p.fail(f"Unknown group identifier {name!r}")
        return Identifier(name)

    return _Parser(expr, leaf).parse()


# ---------------------------------------------------------------------------
# Grammar (b): counting expressions
# ---------------------------------------------------------------------------

def parse_count_expression(expr: str, counters: Optional[Collection[str]] = None) -> Node:
    """
    Parse a counting expression such as ``major >= 2 OR (major >= 1 AND minor >= 2)``.

    If ``counters`` is given, every counter name must be one of them.
    """
    if not isinstance(expr, str):
        raise GrammarError(f"Counting expression must be a string, got {type(expr).__name__}")

    def leaf(p: _Parser) -> Node:
        name = p.word("counter name")
        if counters is not None and name not in counters:
            raise p.fail(f"Unknown counter {name!r}")
        op = p.word(f"comparator after {name!r}")
        if op not in NUMERIC_OPERATORS:
            raise UnknownOperator(
                f"Unknown operator {op!r} in expression {p.expr!r} "
                f"(expected one of {', '.join(NUMERIC_OPERATORS)})"
            )
        literal = p.word(f"integer after {name!r} {op}")
        if not _INT_RE.match(literal):
            raise p.fail(f"Expected integer literal, found {literal!r}")
        return Comparison(name, op, int(literal))

    return _Parser(expr, leaf).parse()


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def evaluate(node: Node, leaf: Callable[[Node], bool]) -> bool:
    """Evaluate a tree; ``leaf`` resolves Identifier / Comparison nodes."""
    if isinstance(node, And):
        results = [evaluate(operand, leaf) for operand in node.operands]
        return all(results)
    if isinstance(node, Or):
        results = [evaluate(operand, leaf) for operand in node.operands]
        return any(results)
    return leaf(node)


def evaluate_formula(node: Node, values: Mapping[str, bool]) -> bool:
    return evaluate(node, lambda n: bool(values.get(n.name, False)))


def evaluate_count_expression(node: Node, counts: Mapping[str, int]) -> bool:
    return evaluate(node, lambda n: NUMERIC_OPERATORS[n.op](counts.get(n.counter, 0), n.value))


def identifiers(node: Node) -> List[str]:
    """Leaf names (group ids or counter names) in left-to-right order."""
    if isinstance(node, (And, Or)):
        names: List[str] = []
        for operand in node.operands:
            names.extend(identifiers(operand))
        return names
    if isinstance(node, Comparison):
        return [node.counter]
    return [node.name]


def render_expression(node: Node) -> str:
    """Canonical text for a parsed expression (minimal parentheses)."""
    if isinstance(node, Identifier):
        return node.name
    if isinstance(node, Comparison):
        return f"{node.counter} {node.op} {node.value}"
    if isinstance(node, And):
        nested: Tuple[type, ...] = (And, Or)
        joiner = f" {AND} "
    else:
        nested = (Or,)
        joiner = f" {OR} "
    parts = []
    for operand in node.operands:
        text = render_expression(operand)
        parts.append(f"({text})" if isinstance(operand, nested) else text)
    return joiner.join(parts)
