"""``{{ expression }}`` template resolution."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from flowchord.errors.exceptions import ExpressionError, UnsafeExpressionError
from flowchord.expressions.evaluator import evaluate

logger = logging.getLogger(__name__)

# One level of nested braces is allowed inside a span.
TEMPLATE_PATTERN = re.compile(r"\{\{\s*((?:[^{}]|\{[^{}]*\})*)\s*\}\}")

BLOCKED_MARKER = "{{BLOCKED: unsafe pattern}}"


def stringify(value: Any) -> str:
    """Render an evaluated value into template text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), default=str)
    if isinstance(value, (bytes, bytearray)):
        return f"[binary {len(value)} bytes]"
    return str(value)


def _substitute(match: re.Match[str], context: dict[str, Any] | None) -> str:
    expression = match.group(1).strip()
    try:
        return stringify(evaluate(expression, context))
    except UnsafeExpressionError as e:
        logger.warning("Blocked unsafe expression: %s", e)
        return BLOCKED_MARKER
    except ExpressionError as e:
        logger.warning("Expression error in %r: %s", expression, e)
        return f"{{{{ERROR: {e}}}}}"


def resolve_expressions(template: Any, context: dict[str, Any] | None = None) -> Any:
    """Substitute every ``{{ ... }}`` span in a string.

    Non-string values are returned unchanged. Errors never propagate; they
    are embedded as ``{{ERROR: message}}`` (or ``{{BLOCKED: unsafe pattern}}``
    for denylisted text).

    Example:
        >>> resolve_expressions("Hello {{ $json.name }}", {"input": {"name": "Ada"}})
        'Hello Ada'
    """
    if not isinstance(template, str) or "{{" not in template:
        return template
    return TEMPLATE_PATTERN.sub(lambda m: _substitute(m, context), template)


def resolve_expressions_in_object(value: Any, context: dict[str, Any] | None = None) -> Any:
    """Resolve templates in every string nested in dicts and lists."""
    if isinstance(value, str):
        return resolve_expressions(value, context)
    if isinstance(value, list):
        return [resolve_expressions_in_object(item, context) for item in value]
    if isinstance(value, dict):
        return {key: resolve_expressions_in_object(item, context) for key, item in value.items()}
    return value


def has_expressions(text: Any) -> bool:
    return isinstance(text, str) and TEMPLATE_PATTERN.search(text) is not None


def extract_expressions(text: Any) -> list[str]:
    """List the expressions inside each ``{{ }}`` span, trimmed."""
    if not isinstance(text, str):
        return []
    return [m.group(1).strip() for m in TEMPLATE_PATTERN.finditer(text)]
