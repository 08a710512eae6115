"""Safe expression evaluator.

Expressions are tokenized, parsed by recursive descent into a small tree,
and walked against an explicit name table. Nothing is handed to Python's
own ``eval``; attribute access on host objects is impossible because member
lookup only reads dict keys, sequence indices, ``length`` and a fixed table
of string/list methods.

Precedence, lowest first::

    ternary  ?:
    ||
    &&
    ??
    == != === !==
    > < >= <=
    + -
    * / %
    unary ! -
    postfix .name [expr] (args)
    primary
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable

from flowchord.errors.exceptions import (
    ExpressionError,
    ExpressionSyntaxError,
    UnknownIdentifierError,
    UnsafeExpressionError,
)
from flowchord.expressions.functions import build_scope
from flowchord.expressions.lexer import Token, TokenType, tokenize

DENYLIST: tuple[re.Pattern[str], ...] = (
    re.compile(r"\beval\b", re.IGNORECASE),
    re.compile(r"\bFunction\b"),
    re.compile(r"\bimport\b", re.IGNORECASE),
    re.compile(r"\brequire\b", re.IGNORECASE),
    re.compile(r"__proto__"),
    re.compile(r"\bconstructor\b"),
    re.compile(r"\bprototype\b"),
    re.compile(r"\bnew\b"),
    re.compile(r"\bdelete\b"),
    re.compile(r"\bthis\b"),
    re.compile(r"\bwindow\b", re.IGNORECASE),
    re.compile(r"\bdocument\b", re.IGNORECASE),
    re.compile(r"\bglobalThis\b", re.IGNORECASE),
    re.compile(r"\bfetch\b", re.IGNORECASE),
    re.compile(r"\bXMLHttpRequest\b"),
    re.compile(r"__\w+__"),
    re.compile(r"\bglobals\b"),
    re.compile(r"\blocals\b"),
    re.compile(r"\bexec\b"),
    re.compile(r"\bcompile\b"),
    re.compile(r"\bopen\b"),
    re.compile(r"\blambda\b"),
    # single "=" that is not part of == === != !== <= >=
    re.compile(r"(?<![=!<>])=(?!=)"),
)

_STRING_LITERAL = re.compile(r"""'(?:\\.|[^'\\])*'|"(?:\\.|[^"\\])*\"""")

DENIED_MEMBERS = frozenset({"__proto__", "constructor", "prototype"})


def check_denylist(expression: str) -> None:
    """Raise UnsafeExpressionError if the text matches a blocked pattern.

    Quoted string contents are masked first so that data such as ``"new"``
    is not mistaken for a keyword; member access through a string index is
    still checked at evaluation time.
    """
    masked = _STRING_LITERAL.sub(lambda m: m.group(0)[0] * 2, expression)
    for pattern in DENYLIST:
        if pattern.search(masked):
            raise UnsafeExpressionError(
                f"Blocked unsafe pattern: {pattern.pattern}",
                expression=expression,
            )


# AST

@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Identifier:
    name: str


@dataclass(frozen=True)
class Member:
    target: Any
    name: str


@dataclass(frozen=True)
class Index:
    target: Any
    key: Any


@dataclass(frozen=True)
class Call:
    callee: Any
    args: tuple[Any, ...]


@dataclass(frozen=True)
class Unary:
    op: str
    operand: Any


@dataclass(frozen=True)
class Binary:
    op: str
    left: Any
    right: Any


@dataclass(frozen=True)
class Logical:
    op: str
    left: Any
    right: Any


@dataclass(frozen=True)
class Conditional:
    test: Any
    when_true: Any
    when_false: Any


@dataclass(frozen=True)
class ArrayLiteral:
    items: tuple[Any, ...]


# Nested parentheses, brackets, calls, ternaries and unary operators.
MAX_NESTING = 32


class _Parser:
    def __init__(self, expression: str) -> None:
        self._expression = expression
        self._tokens = tokenize(expression)
        self._pos = 0
        self._depth = 0

    @property
    def _current(self) -> Token:
        return self._tokens[self._pos]

    def _advance(self) -> Token:
        token = self._tokens[self._pos]
        if token.type != TokenType.EOF:
            self._pos += 1
        return token

    def _match_operator(self, *ops: str) -> str | None:
        token = self._current
        if token.type == TokenType.OPERATOR and token.value in ops:
            self._advance()
            return token.value
        return None

    def _expect(self, token_type: TokenType) -> Token:
        token = self._current
        if token.type != token_type:
            raise self._error(f"Expected '{token_type.value}'")
        return self._advance()

    def _error(self, message: str) -> ExpressionSyntaxError:
        token = self._current
        found = "end of expression" if token.type == TokenType.EOF else repr(token.value)
        return ExpressionSyntaxError(
            f"{message} at position {token.position}, found {found}",
            expression=self._expression,
        )

    def parse(self) -> Any:
        if self._current.type == TokenType.EOF:
            raise self._error("Empty expression")
        node = self._ternary()
        if self._current.type != TokenType.EOF:
            raise self._error("Unexpected token")
        return node

    def _descend(self) -> None:
        self._depth += 1
        if self._depth > MAX_NESTING:
            raise self._error(f"Expression nested deeper than {MAX_NESTING} levels")

    def _ternary(self) -> Any:
        self._descend()
        try:
            return self._conditional()
        finally:
            self._depth -= 1

    def _conditional(self) -> Any:
        test = self._logical_or()
        if self._current.type == TokenType.QUESTION:
            self._advance()
            when_true = self._ternary()
            self._expect(TokenType.COLON)
            when_false = self._ternary()
            return Conditional(test, when_true, when_false)
        return test

    def _logical_or(self) -> Any:
        node = self._logical_and()
        while self._match_operator("||"):
            node = Logical("||", node, self._logical_and())
        return node

    def _logical_and(self) -> Any:
        node = self._coalesce()
        while self._match_operator("&&"):
            node = Logical("&&", node, self._coalesce())
        return node

    def _coalesce(self) -> Any:
        node = self._equality()
        while self._match_operator("??"):
            node = Logical("??", node, self._equality())
        return node

    def _equality(self) -> Any:
        node = self._relational()
        while (op := self._match_operator("===", "!==", "==", "!=")) is not None:
            node = Binary(op, node, self._relational())
        return node

    def _relational(self) -> Any:
        node = self._additive()
        while (op := self._match_operator(">=", "<=", ">", "<")) is not None:
            node = Binary(op, node, self._additive())
        return node

    def _additive(self) -> Any:
        node = self._multiplicative()
        while (op := self._match_operator("+", "-")) is not None:
            node = Binary(op, node, self._multiplicative())
        return node

    def _multiplicative(self) -> Any:
        node = self._unary()
        while (op := self._match_operator("*", "/", "%")) is not None:
            node = Binary(op, node, self._unary())
        return node

    def _unary(self) -> Any:
        op = self._match_operator("!", "-")
        if op is not None:
            self._descend()
            try:
                return Unary(op, self._unary())
            finally:
                self._depth -= 1
        return self._postfix()

    def _postfix(self) -> Any:
        node = self._primary()
        while True:
            token = self._current
            if token.type == TokenType.DOT:
                self._advance()
                if self._current.type != TokenType.IDENTIFIER:
                    raise self._error("Expected property name")
                node = Member(node, self._advance().value)
            elif token.type == TokenType.LBRACKET:
                self._advance()
                key = self._ternary()
                self._expect(TokenType.RBRACKET)
                node = Index(node, key)
            elif token.type == TokenType.LPAREN:
                self._advance()
                node = Call(node, self._arguments(TokenType.RPAREN))
            else:
                return node

    def _arguments(self, closing: TokenType) -> tuple[Any, ...]:
        args: list[Any] = []
        if self._current.type == closing:
            self._advance()
            return ()
        while True:
            args.append(self._ternary())
            if self._current.type == TokenType.COMMA:
                self._advance()
                continue
            self._expect(closing)
            return tuple(args)

    def _primary(self) -> Any:
        token = self._current
        if token.type in (TokenType.NUMBER, TokenType.STRING, TokenType.BOOLEAN, TokenType.NULL):
            self._advance()
            return Literal(token.value)
        if token.type == TokenType.IDENTIFIER:
            self._advance()
            return Identifier(token.value)
        if token.type == TokenType.LPAREN:
            self._advance()
            node = self._ternary()
            self._expect(TokenType.RPAREN)
            return node
        if token.type == TokenType.LBRACKET:
            self._advance()
            return ArrayLiteral(self._arguments(TokenType.RBRACKET))
        raise self._error("Unexpected token")


@lru_cache(maxsize=512)
def parse(expression: str) -> Any:
    """Check the denylist, then parse an expression into a tree.

    Raises:
        UnsafeExpressionError: If a blocked pattern is present.
        ExpressionSyntaxError: If the expression is malformed.
    """
    check_denylist(expression)
    return _Parser(expression.strip()).parse()


# Value helpers

def is_truthy(value: Any) -> bool:
    """Python truthiness: empty strings, lists and dicts are falsy."""
    return bool(value)


def to_display(value: Any) -> str:
    """String form used by ``+`` concatenation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def to_number(value: Any, expression: str | None = None) -> int | float:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if value is None:
        return 0
    if isinstance(value, str):
        try:
            number = float(value.strip()) if value.strip() else 0
        except ValueError:
            raise ExpressionError(
                f"Cannot convert {value!r} to a number", expression=expression
            ) from None
        return int(number) if isinstance(number, float) and number.is_integer() else number
    raise ExpressionError(
        f"Cannot convert {type(value).__name__} to a number", expression=expression
    )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def loose_equals(left: Any, right: Any) -> bool:
    """``==``: numbers, numeric strings and booleans compare by value."""
    if left is None or right is None:
        return left is None and right is None
    if type(left) is type(right) or (_is_number(left) and _is_number(right)):
        return left == right
    scalars = (str, int, float, bool)
    if isinstance(left, scalars) and isinstance(right, scalars):
        try:
            return to_number(left) == to_number(right)
        except ExpressionError:
            return False
    return False


def strict_equals(left: Any, right: Any) -> bool:
    """``===``: same kind and same value; booleans never equal numbers."""
    if _is_number(left) and _is_number(right):
        return left == right
    return type(left) is type(right) and left == right


def _normalize(value: int | float) -> int | float:
    if isinstance(value, float) and value.is_integer() and not math.isinf(value):
        return int(value)
    return value


# Safe method table

def _split(target: str, separator: str | None = None, limit: int | None = None) -> list[str]:
    if separator is None:
        parts = [target]
    elif separator == "":
        parts = list(target)
    else:
        parts = target.split(separator)
    return parts[:int(limit)] if limit is not None else parts


def _join(target: list[Any], separator: str = ",") -> str:
    return separator.join("" if item is None else to_display(item) for item in target)


def _index_of(target: str | list[Any], value: Any) -> int:
    if isinstance(target, str):
        return target.find(to_display(value))
    for i, item in enumerate(target):
        if strict_equals(item, value):
            return i
    return -1


def _includes(target: str | list[Any], value: Any) -> bool:
    if isinstance(target, str):
        return to_display(value) in target
    return any(strict_equals(item, value) for item in target)


def _slice(target: str | list[Any], start: Any = 0, end: Any = None) -> str | list[Any]:
    return target[int(start or 0):None if end is None else int(end)]


STRING_METHODS: dict[str, Callable[..., Any]] = {
    "toUpperCase": lambda s: s.upper(),
    "toLowerCase": lambda s: s.lower(),
    "trim": lambda s: s.strip(),
    "includes": _includes,
    "startsWith": lambda s, prefix: s.startswith(to_display(prefix)),
    "endsWith": lambda s, suffix: s.endswith(to_display(suffix)),
    "split": _split,
    "slice": _slice,
    "indexOf": _index_of,
    "replace": lambda s, old, new: s.replace(to_display(old), to_display(new), 1),
}

LIST_METHODS: dict[str, Callable[..., Any]] = {
    "includes": _includes,
    "join": _join,
    "slice": _slice,
    "indexOf": _index_of,
}


@dataclass(frozen=True)
class SafeMethod:
    """A whitelisted method bound to its receiver."""

    name: str
    target: Any
    func: Callable[..., Any]

    def __call__(self, *args: Any) -> Any:
        return self.func(self.target, *args)


class _Evaluator:
    def __init__(self, scope: dict[str, Any], expression: str) -> None:
        self._scope = scope
        self._expression = expression

    def visit(self, node: Any) -> Any:
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, Identifier):
            value = self._lookup(node.name)
            if callable(value) and getattr(value, "nullary", False):
                return value()
            return value
        if isinstance(node, Member):
            return self._member(self.visit(node.target), node.name)
        if isinstance(node, Index):
            return self._index(self.visit(node.target), self.visit(node.key))
        if isinstance(node, Call):
            return self._call(node)
        if isinstance(node, Unary):
            return self._unary(node.op, self.visit(node.operand))
        if isinstance(node, Logical):
            return self._logical(node)
        if isinstance(node, Binary):
            return self._binary(node.op, self.visit(node.left), self.visit(node.right))
        if isinstance(node, Conditional):
            branch = node.when_true if is_truthy(self.visit(node.test)) else node.when_false
            return self.visit(branch)
        if isinstance(node, ArrayLiteral):
            return [self.visit(item) for item in node.items]
        raise ExpressionError(f"Unsupported node {type(node).__name__}", expression=self._expression)

    def _lookup(self, name: str) -> Any:
        if name not in self._scope:
            raise UnknownIdentifierError(name, expression=self._expression)
        return self._scope[name]

    def _check_member(self, name: str) -> None:
        if name in DENIED_MEMBERS or (name.startswith("__") and name.endswith("__")):
            raise UnsafeExpressionError(
                f"Access to '{name}' is not allowed", expression=self._expression
            )

    def _member(self, target: Any, name: str) -> Any:
        self._check_member(name)
        if target is None:
            return None
        if isinstance(target, dict):
            return target.get(name)
        if isinstance(target, str):
            if name == "length":
                return len(target)
            method = STRING_METHODS.get(name)
            return SafeMethod(name, target, method) if method else None
        if isinstance(target, list):
            if name == "length":
                return len(target)
            method = LIST_METHODS.get(name)
            return SafeMethod(name, target, method) if method else None
        return None

    def _index(self, target: Any, key: Any) -> Any:
        if isinstance(key, str):
            return self._member(target, key)
        if target is None:
            return None
        if isinstance(key, float) and key.is_integer():
            key = int(key)
        if isinstance(target, (list, str)) and isinstance(key, int) and not isinstance(key, bool):
            if 0 <= key < len(target):
                return target[key]
            return None
        if isinstance(target, dict) and key is not None:
            return target.get(to_display(key))
        return None

    def _call(self, node: Call) -> Any:
        if isinstance(node.callee, Identifier):
            func = self._lookup(node.callee.name)
            name = node.callee.name
        else:
            func = self.visit(node.callee)
            name = node.callee.name if isinstance(node.callee, Member) else "expression"
        if not callable(func) or isinstance(func, type):
            raise ExpressionError(f"{name} is not a function", expression=self._expression)
        args = [self.visit(arg) for arg in node.args]
        try:
            return func(*args)
        except ExpressionError:
            raise
        except (TypeError, ValueError, AttributeError, IndexError, KeyError, ArithmeticError) as e:
            raise ExpressionError(f"{name}: {e}", expression=self._expression) from e

    def _unary(self, op: str, value: Any) -> Any:
        if op == "!":
            return not is_truthy(value)
        return _normalize(-to_number(value, self._expression))

    def _logical(self, node: Logical) -> Any:
        left = self.visit(node.left)
        if node.op == "&&":
            return self.visit(node.right) if is_truthy(left) else left
        if node.op == "||":
            return left if is_truthy(left) else self.visit(node.right)
        return self.visit(node.right) if left is None else left

    def _binary(self, op: str, left: Any, right: Any) -> Any:
        if op == "==":
            return loose_equals(left, right)
        if op == "!=":
            return not loose_equals(left, right)
        if op == "===":
            return strict_equals(left, right)
        if op == "!==":
            return not strict_equals(left, right)

        if op == "+":
            if isinstance(left, list) and isinstance(right, list):
                return left + right
            if isinstance(left, str) or isinstance(right, str):
                return to_display(left) + to_display(right)
            return _normalize(to_number(left, self._expression) + to_number(right, self._expression))

        if op in (">", "<", ">=", "<="):
            if isinstance(left, str) and isinstance(right, str):
                a, b = left, right
            else:
                a = to_number(left, self._expression)
                b = to_number(right, self._expression)
            if op == ">":
                return a > b
            if op == "<":
                return a < b
            if op == ">=":
                return a >= b
            return a <= b

        a = to_number(left, self._expression)
        b = to_number(right, self._expression)
        if op == "-":
            return _normalize(a - b)
        if op == "*":
            return _normalize(a * b)
        if b == 0:
            raise ExpressionError("Division by zero", expression=self._expression)
        if op == "/":
            return _normalize(a / b)
        return _normalize(math.fmod(a, b))


def evaluate(expression: str, context: dict[str, Any] | None = None) -> Any:
    """Evaluate one expression (without ``{{ }}``) against a context.

    Args:
        expression: Expression text, e.g. ``$json.name.toUpperCase()``.
        context: Evaluation context; see :func:`build_scope` for its keys.

    Raises:
        UnsafeExpressionError: Blocked pattern or member.
        UnknownIdentifierError: Name not in scope.
        ExpressionSyntaxError: Malformed expression.
        ExpressionError: Any other evaluation failure.

    Example:
        >>> evaluate("$json.a + 1", {"input": {"a": 5}})
        6
    """
    tree = parse(expression)
    return evaluate_tree(tree, build_scope(context), expression)


def evaluate_tree(tree: Any, scope: dict[str, Any], expression: str = "") -> Any:
    try:
        return _Evaluator(scope, expression).visit(tree)
    except RecursionError:
        raise ExpressionError("Expression is too deeply nested", expression=expression) from None


def validate_expression(expression: str) -> tuple[bool, str | None]:
    """Check that an expression is allowed and parses, without evaluating it."""
    try:
        parse(expression)
    except ExpressionError as e:
        return False, str(e)
    return True, None
