"""Safe ``{{ }}`` expression language for node configuration."""

from flowchord.expressions.evaluator import (
    check_denylist,
    evaluate,
    is_truthy,
    parse,
    validate_expression,
)
from flowchord.expressions.functions import BUILT_INS, build_scope
from flowchord.expressions.templates import (
    extract_expressions,
    has_expressions,
    resolve_expressions,
    resolve_expressions_in_object,
    stringify,
)

__all__ = [
    "BUILT_INS",
    "build_scope",
    "check_denylist",
    "evaluate",
    "extract_expressions",
    "has_expressions",
    "is_truthy",
    "parse",
    "resolve_expressions",
    "resolve_expressions_in_object",
    "stringify",
    "validate_expression",
]
