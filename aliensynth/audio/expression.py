"""
Restricted arithmetic expression language for waveform formulas.

Formulas arrive from a text field or a command-line flag, so they are never
handed to eval(). Instead they are tokenized, parsed by a small
recursive-descent parser into an AST and evaluated with numpy over a whole
array of ``t`` values at once.

Grammar::

    expr    := term (("+" | "-") term)*
    term    := unary (("*" | "/" | "%") unary | <implicit> unary)*
    unary   := ("-" | "+") unary | power
    power   := primary (("^" | "**") unary)?
    primary := NUMBER | NAME | NAME "(" args ")" | "(" expr ")"

Adjacent operands multiply implicitly, so ``sin(2π t)`` reads as
``sin(2 * π * t)``. A ``Math.`` prefix is accepted on any name and constant
names are case-insensitive, which lets formulas written for the JavaScript
Math object (``Math.sin(2 * Math.PI * t)``) compile unchanged.
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Tuple

import numpy as np

from aliensynth.core.exceptions import CompilationError

MAX_FORMULA_LENGTH = 512
MAX_DEPTH = 64

VARIABLE = "t"

CONSTANTS: Dict[str, float] = {
    "pi": float(np.pi),
    "π": float(np.pi),
    "tau": float(2 * np.pi),
    "e": float(np.e),
}

# name -> (ufunc, arity)
FUNCTIONS: Dict[str, Tuple[Callable, int]] = {
    "sin": (np.sin, 1),
    "cos": (np.cos, 1),
    "tan": (np.tan, 1),
    "asin": (np.arcsin, 1),
    "acos": (np.arccos, 1),
    "atan": (np.arctan, 1),
    "sinh": (np.sinh, 1),
    "cosh": (np.cosh, 1),
    "tanh": (np.tanh, 1),
    "exp": (np.exp, 1),
    "log": (np.log, 1),
    "log2": (np.log2, 1),
    "log10": (np.log10, 1),
    "sqrt": (np.sqrt, 1),
    "abs": (np.abs, 1),
    "floor": (np.floor, 1),
    "ceil": (np.ceil, 1),
    "round": (np.round, 1),
    "sign": (np.sign, 1),
    "pow": (np.power, 2),
    "atan2": (np.arctan2, 2),
    "min": (np.minimum, 2),
    "max": (np.maximum, 2),
}

_BINARY_OPS: Dict[str, Callable] = {
    "+": np.add,
    "-": np.subtract,
    "*": np.multiply,
    "/": np.divide,
    "%": np.mod,
    "^": np.power,
}

# π never joins a longer name, so "2πt" reads as 2 * π * t
_TOKEN_RE = re.compile(
    r"""
    (?P<space>\s+)
  | (?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)
  | (?P<name>π|[^\W\dπ][^\Wπ]*(?:\.[^\W\dπ][^\Wπ]*)*)
  | (?P<op>\*\*|[-+*/%^(),])
    """,
    re.VERBOSE,
)


@dataclass(frozen=True)
class Token:
    kind: str  # "number", "name", "op" or "end"
    text: str
    pos: int


# ---------------------------------------------------------------------------
# AST
# ---------------------------------------------------------------------------

class Node:
    """Base class of expression tree nodes."""

    def evaluate(self, t: np.ndarray):
        raise NotImplementedError


@dataclass(frozen=True)
class Number(Node):
    value: float

    def evaluate(self, t: np.ndarray):
        return self.value


@dataclass(frozen=True)
class Variable(Node):
    name: str

    def evaluate(self, t: np.ndarray):
        return t


@dataclass(frozen=True)
class UnaryOp(Node):
    op: str
    operand: Node

    def evaluate(self, t: np.ndarray):
        value = self.operand.evaluate(t)
        return np.negative(value) if self.op == "-" else value


@dataclass(frozen=True)
class BinaryOp(Node):
    op: str
    left: Node
    right: Node

    def evaluate(self, t: np.ndarray):
        return _BINARY_OPS[self.op](self.left.evaluate(t), self.right.evaluate(t))


@dataclass(frozen=True)
class Call(Node):
    name: str
    args: Tuple[Node, ...]

    def evaluate(self, t: np.ndarray):
        func, _ = FUNCTIONS[self.name]
        return func(*(arg.evaluate(t) for arg in self.args))


# ---------------------------------------------------------------------------
# Tokenizer and parser
# ---------------------------------------------------------------------------

def tokenize(source: str) -> List[Token]:
    """Split a formula into tokens, ending with an ``end`` token."""
    tokens = []
    pos = 0
    while pos < len(source):
        match = _TOKEN_RE.match(source, pos)
        if match is None:
            raise CompilationError(
                f"unexpected character {source[pos]!r} at position {pos}", source
            )
        kind = match.lastgroup
        if kind != "space":
            tokens.append(Token(kind, match.group(), pos))
        pos = match.end()
    tokens.append(Token("end", "", len(source)))
    return tokens


def _canonical(name: str) -> str:
    if name.startswith("Math."):
        name = name[len("Math."):]
    return name


class _Parser:
    def __init__(self, source: str):
        self.source = source
        self.tokens = tokenize(source)
        self.index = 0
        self.depth = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def _error(self, message: str) -> CompilationError:
        return CompilationError(
            f"{message} at position {self.current.pos}", self.source
        )

    def _expect(self, text: str) -> None:
        if self.current.text != text:
            found = self.current.text or "end of formula"
            raise self._error(f"expected {text!r}, found {found!r}")
        self._advance()

    def _enter(self) -> None:
        self.depth += 1
        if self.depth > MAX_DEPTH:
            raise self._error("formula nested too deeply")

    def parse(self) -> Node:
        node = self._expr()
        if self.current.kind != "end":
            raise self._error(f"unexpected {self.current.text!r}")
        return node

    def _expr(self) -> Node:
        node = self._term()
        while self.current.text in ("+", "-"):
            op = self._advance().text
            node = BinaryOp(op, node, self._term())
        return node

    def _term(self) -> Node:
        node = self._unary()
        while True:
            token = self.current
            if token.text in ("*", "/", "%"):
                self._advance()
                node = BinaryOp(token.text, node, self._unary())
            elif token.kind in ("number", "name") or token.text == "(":
                node = BinaryOp("*", node, self._unary())
            else:
                return node

    def _unary(self) -> Node:
        if self.current.text in ("-", "+"):
            op = self._advance().text
            self._enter()
            node = UnaryOp(op, self._unary())
            self.depth -= 1
            return node
        return self._power()

    def _power(self) -> Node:
        base = self._primary()
        if self.current.text in ("^", "**"):
            self._advance()
            self._enter()
            exponent = self._unary()
            self.depth -= 1
            return BinaryOp("^", base, exponent)
        return base

    def _primary(self) -> Node:
        token = self.current
        if token.kind == "number":
            self._advance()
            return Number(float(token.text))
        if token.kind == "name":
            self._advance()
            return self._name(token)
        if token.text == "(":
            self._advance()
            self._enter()
            node = self._expr()
            self.depth -= 1
            self._expect(")")
            return node
        found = token.text or "end of formula"
        raise self._error(f"unexpected {found!r}")

    def _name(self, token: Token) -> Node:
        name = _canonical(token.text)
        if name in FUNCTIONS and self.current.text == "(":
            return self._call(name, token)
        if name == VARIABLE:
            return Variable(name)
        if name.lower() in CONSTANTS:
            return Number(CONSTANTS[name.lower()])
        if name in FUNCTIONS:
            raise CompilationError(
                f"function {name!r} must be called with parentheses", self.source
            )
        raise CompilationError(
            f"unknown name {token.text!r} at position {token.pos}", self.source
        )

    def _call(self, name: str, token: Token) -> Node:
        self._expect("(")
        self._enter()
        args = [self._expr()]
        while self.current.text == ",":
            self._advance()
            args.append(self._expr())
        self._expect(")")
        self.depth -= 1

        _, arity = FUNCTIONS[name]
        if len(args) != arity:
            raise CompilationError(
                f"{name}() takes {arity} argument(s), got {len(args)}", self.source
            )
        return Call(name, tuple(args))


class Expression:
    """A parsed formula of the single variable ``t``."""

    def __init__(self, source: str, root: Node):
        self.source = source
        self.root = root

    def evaluate(self, t: np.ndarray) -> np.ndarray:
        """
        Evaluate the formula at every point of ``t``.

        Floating point errors (division by zero, overflow, domain errors)
        do not raise here; they surface as non-finite values in the result.
        """
        t = np.asarray(t, dtype=np.float64)
        with np.errstate(all="ignore"):
            result = self.root.evaluate(t)
        return np.broadcast_to(np.asarray(result, dtype=np.float64), t.shape).copy()

    def __repr__(self) -> str:
        return f"Expression({self.source!r})"


def parse(source: str) -> Expression:
    """
    Parse a formula into an Expression.

    Raises:
        CompilationError: On syntax errors, unknown names, wrong arity or
            formulas exceeding the length/nesting limits
    """
    if source is None or not source.strip():
        raise CompilationError("formula is empty", source or "")
    if len(source) > MAX_FORMULA_LENGTH:
        raise CompilationError(
            f"formula longer than {MAX_FORMULA_LENGTH} characters", source
        )
    return Expression(source, _Parser(source).parse())
