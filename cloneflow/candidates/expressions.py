"""
Arithmetic expressions over candidate quantities.

A small recursive-descent parser compiles an expression once into a tree of
tuples that is then evaluated per candidate. Supported: numbers, variables,
``+ - * / ^``, parentheses, unary minus and the functions abs, min, max,
sqrt, log, log2 and log10.
"""

import math
import re
from typing import Any, Callable, Dict, List, Tuple

from ..errors import invalid_input
from ..utils.sequence import gc_content, gc_count

_TOKEN = re.compile(r'\s*(?:(\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?|([A-Za-z_][A-Za-z0-9_]*)|(.))')
_NUMBER = re.compile(r'(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?')


def _checked_log(fn: Callable[[float], float]) -> Callable[[float], float]:
    def wrapped(x: float) -> float:
        if x <= 0:
            raise invalid_input(f"log of non-positive value {x}")
        return fn(x)
    return wrapped


def _sqrt(x: float) -> float:
    if x < 0:
        raise invalid_input(f"sqrt of negative value {x}")
    return math.sqrt(x)


FUNCTIONS: Dict[str, Tuple[Callable[..., float], int, int]] = {
    # name: (fn, min_args, max_args)
    'abs': (abs, 1, 1),
    'min': (min, 1, 64),
    'max': (max, 1, 64),
    'sqrt': (_sqrt, 1, 1),
    'log': (_checked_log(math.log), 1, 1),
    'log2': (_checked_log(math.log2), 1, 1),
    'log10': (_checked_log(math.log10), 1, 1),
}

BUILTIN_VARIABLES = (
    'length_bp', 'gc_count', 'at_count', 'gc_fraction', 'at_fraction',
    'n_fraction', 'start', 'end', 'strand_sign',
)


def _tokenize(text: str) -> List[str]:
    tokens = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        m = _TOKEN.match(text, pos)
        if m is None or m.end() == pos:
            raise invalid_input(f"Unexpected character at position {pos} in expression '{text}'")
        token = m.group(0).strip()
        if m.group(3) is not None and m.group(3) not in '+-*/^(),':
            raise invalid_input(f"Unexpected character '{m.group(3)}' in expression '{text}'")
        tokens.append(token)
        pos = m.end()
    return tokens


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    def peek(self):
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self, expected=None):
        token = self.peek()
        if token is None or (expected is not None and token != expected):
            raise invalid_input(
                f"Expected {expected or 'a value'} but found {token or 'end of input'} in '{self.text}'"
            )
        self.pos += 1
        return token

    def parse(self):
        if not self.tokens:
            raise invalid_input("Expression must not be empty")
        node = self.expr()
        if self.peek() is not None:
            raise invalid_input(f"Unexpected '{self.peek()}' in expression '{self.text}'")
        return node

    def expr(self):
        node = self.term()
        while self.peek() in ('+', '-'):
            op = self.take()
            node = ('bin', op, node, self.term())
        return node

    def term(self):
        node = self.unary()
        while self.peek() in ('*', '/'):
            op = self.take()
            node = ('bin', op, node, self.unary())
        return node

    def unary(self):
        if self.peek() == '-':
            self.take()
            return ('neg', self.unary())
        if self.peek() == '+':
            self.take()
            return self.unary()
        return self.power()

    def power(self):
        node = self.atom()
        if self.peek() == '^':
            self.take()
            node = ('bin', '^', node, self.unary())
        return node

    def atom(self):
        token = self.take()
        if token == '(':
            node = self.expr()
            self.take(')')
            return node
        if _NUMBER.fullmatch(token):
            return ('num', float(token))
        if token[0].isalpha() or token[0] == '_':
            if self.peek() == '(':
                return self.call(token)
            return ('var', token)
        raise invalid_input(f"Unexpected '{token}' in expression '{self.text}'")

    def call(self, name: str):
        if name not in FUNCTIONS:
            raise invalid_input(f"Unknown function '{name}'")
        self.take('(')
        args = []
        if self.peek() != ')':
            args.append(self.expr())
            while self.peek() == ',':
                self.take()
                args.append(self.expr())
        self.take(')')
        _, lo, hi = FUNCTIONS[name]
        if not lo <= len(args) <= hi:
            raise invalid_input(f"Function '{name}' takes {lo}..{hi} arguments, got {len(args)}")
        return ('call', name, args)


def _evaluate(node, variables: Dict[str, float]) -> float:
    kind = node[0]
    if kind == 'num':
        return node[1]
    if kind == 'var':
        try:
            return variables[node[1]]
        except KeyError:
            raise invalid_input(f"Unknown variable '{node[1]}'")
    if kind == 'neg':
        return -_evaluate(node[1], variables)
    if kind == 'call':
        fn = FUNCTIONS[node[1]][0]
        return float(fn(*[_evaluate(a, variables) for a in node[2]]))
    _, op, left, right = node
    a = _evaluate(left, variables)
    b = _evaluate(right, variables)
    if op == '+':
        return a + b
    if op == '-':
        return a - b
    if op == '*':
        return a * b
    if op == '/':
        if b == 0:
            raise invalid_input("Division by zero in expression")
        return a / b
    try:
        return float(a ** b)
    except (OverflowError, ZeroDivisionError, TypeError) as e:
        raise invalid_input(f"Cannot evaluate {a}^{b}: {e}")


class Expression:
    """Compiled expression; evaluate() returns a finite float."""

    def __init__(self, text: str):
        self.text = text
        self.tree = _Parser(text).parse()

    def variables(self) -> List[str]:
        names: List[str] = []

        def walk(node: Any):
            if node[0] == 'var' and node[1] not in names:
                names.append(node[1])
            elif node[0] == 'neg':
                walk(node[1])
            elif node[0] == 'call':
                for arg in node[2]:
                    walk(arg)
            elif node[0] == 'bin':
                walk(node[2])
                walk(node[3])

        walk(self.tree)
        return names

    def evaluate(self, variables: Dict[str, float]) -> float:
        value = _evaluate(self.tree, variables)
        if not math.isfinite(value):
            raise invalid_input(f"Expression '{self.text}' produced a non-finite value")
        return value


def window_quantities(bases: str, start: int, end: int, strand: str) -> Dict[str, float]:
    """Built-in per-candidate variables."""
    length = len(bases)
    upper = bases.upper()
    gc = gc_count(upper)
    at = sum(1 for b in upper if b in 'ATU')
    n = sum(1 for b in upper if b == 'N')
    return {
        'length_bp': float(length),
        'gc_count': float(gc),
        'at_count': float(at),
        'gc_fraction': gc_content(upper, called_only=False),
        'at_fraction': at / length if length else 0.0,
        'n_fraction': n / length if length else 0.0,
        'start': float(start),
        'end': float(end),
        'strand_sign': -1.0 if strand == '-' else 1.0,
    }
