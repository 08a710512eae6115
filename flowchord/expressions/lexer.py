"""Tokenizer for template expressions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from flowchord.errors.exceptions import ExpressionSyntaxError


class TokenType(str, Enum):
    NUMBER = "number"
    STRING = "string"
    BOOLEAN = "boolean"
    NULL = "null"
    IDENTIFIER = "identifier"
    OPERATOR = "operator"
    LPAREN = "("
    RPAREN = ")"
    LBRACKET = "["
    RBRACKET = "]"
    DOT = "."
    COMMA = ","
    QUESTION = "?"
    COLON = ":"
    EOF = "eof"


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: Any
    position: int


# Longest first so "===" wins over "==" and "=".
OPERATORS = (
    "===", "!==", "==", "!=", ">=", "<=", "&&", "||", "??",
    "+", "-", "*", "/", "%", ">", "<", "!",
)

PUNCTUATION = {
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    "[": TokenType.LBRACKET,
    "]": TokenType.RBRACKET,
    ".": TokenType.DOT,
    ",": TokenType.COMMA,
    "?": TokenType.QUESTION,
    ":": TokenType.COLON,
}

ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"'}


def _is_digit(ch: str) -> bool:
    return "0" <= ch <= "9"


def _is_identifier_start(ch: str) -> bool:
    return ch.isalpha() or ch in "_$"


def _is_identifier_part(ch: str) -> bool:
    return ch.isalnum() or ch in "_$"


def tokenize(expression: str) -> list[Token]:
    """Split an expression into tokens.

    Raises:
        ExpressionSyntaxError: On an unterminated string or unknown character.
    """
    tokens: list[Token] = []
    pos = 0
    length = len(expression)

    while pos < length:
        ch = expression[pos]

        if ch.isspace():
            pos += 1
            continue

        if _is_digit(ch) or (ch == "." and pos + 1 < length and _is_digit(expression[pos + 1])):
            start = pos
            seen_dot = False
            while pos < length and (_is_digit(expression[pos]) or (expression[pos] == "." and not seen_dot)):
                if expression[pos] == ".":
                    # "1.foo" is a member access, not a float
                    if pos + 1 >= length or not _is_digit(expression[pos + 1]):
                        break
                    seen_dot = True
                pos += 1
            text = expression[start:pos]
            try:
                value: Any = float(text) if seen_dot else int(text)
            except ValueError:
                raise ExpressionSyntaxError(
                    f"Invalid number '{text}' at position {start}",
                    expression=expression,
                ) from None
            tokens.append(Token(TokenType.NUMBER, value, start))
            continue

        if ch in "'\"":
            start = pos
            quote = ch
            pos += 1
            chars: list[str] = []
            while pos < length and expression[pos] != quote:
                if expression[pos] == "\\" and pos + 1 < length:
                    pos += 1
                    chars.append(ESCAPES.get(expression[pos], expression[pos]))
                else:
                    chars.append(expression[pos])
                pos += 1
            if pos >= length:
                raise ExpressionSyntaxError(
                    f"Unterminated string starting at position {start}",
                    expression=expression,
                )
            pos += 1
            tokens.append(Token(TokenType.STRING, "".join(chars), start))
            continue

        if _is_identifier_start(ch):
            start = pos
            while pos < length and _is_identifier_part(expression[pos]):
                pos += 1
            word = expression[start:pos]
            if word in ("true", "false"):
                tokens.append(Token(TokenType.BOOLEAN, word == "true", start))
            elif word in ("null", "undefined"):
                tokens.append(Token(TokenType.NULL, None, start))
            else:
                tokens.append(Token(TokenType.IDENTIFIER, word, start))
            continue

        operator = next((op for op in OPERATORS if expression.startswith(op, pos)), None)
        if operator is not None:
            tokens.append(Token(TokenType.OPERATOR, operator, pos))
            pos += len(operator)
            continue

        if ch in PUNCTUATION:
            tokens.append(Token(PUNCTUATION[ch], ch, pos))
            pos += 1
            continue

        raise ExpressionSyntaxError(
            f"Unexpected character '{ch}' at position {pos}",
            expression=expression,
        )

    tokens.append(Token(TokenType.EOF, None, length))
    return tokens
