"""Built-in ``$`` functions and the evaluation scope for template expressions."""

from __future__ import annotations

import json
import math
import uuid
from datetime import datetime, timezone
from typing import Any, Callable


def nullary(func: Callable[[], Any]) -> Callable[[], Any]:
    """Mark a built-in that may be referenced without parentheses (``$now``)."""
    func.nullary = True  # type: ignore[attr-defined]
    return func


def _to_number(value: Any) -> float | int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if value is None:
        return 0
    try:
        return float(str(value).strip())
    except ValueError:
        return math.nan


def _to_text(value: Any) -> str:
    # Local copy of the template stringifier; avoids an import cycle.
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def _normalize_number(value: float | int) -> float | int:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


@nullary
def now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@nullary
def new_uuid() -> str:
    return str(uuid.uuid4())


def format_date(date: Any, fmt: str = "yyyy-MM-dd") -> str:
    """Format an ISO date string or epoch milliseconds with yyyy/MM/dd/HH/mm/ss tokens."""
    if isinstance(date, (int, float)) and not isinstance(date, bool):
        d = datetime.fromtimestamp(date / 1000)
    elif isinstance(date, datetime):
        d = date
    else:
        d = datetime.fromisoformat(str(date).replace("Z", "+00:00"))
    return (
        fmt.replace("yyyy", f"{d.year}")
        .replace("MM", f"{d.month:02d}")
        .replace("dd", f"{d.day:02d}")
        .replace("HH", f"{d.hour:02d}")
        .replace("mm", f"{d.minute:02d}")
        .replace("ss", f"{d.second:02d}")
    )


def _round(num: Any, decimals: int = 0) -> float | int:
    return _normalize_number(round(float(_to_number(num)), int(decimals)))


def _join(arr: Any, delimiter: str = ",") -> str:
    if isinstance(arr, list):
        return delimiter.join("" if item is None else _to_text(item) for item in arr)
    return _to_text(arr)


def _length(value: Any) -> int:
    if isinstance(value, list):
        return len(value)
    return len(_to_text(value))


def _first(value: Any) -> Any:
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _last(value: Any) -> Any:
    if isinstance(value, list):
        return value[-1] if value else None
    return value


def _pick(obj: Any, *keys: str) -> dict[str, Any]:
    if not isinstance(obj, dict):
        return {}
    return {key: obj[key] for key in keys if key in obj}


def _stringify(obj: Any, pretty: bool = False) -> str:
    if pretty:
        return json.dumps(obj, indent=2, default=str)
    return json.dumps(obj, separators=(",", ":"), default=str)


def _parse(text: Any) -> Any:
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return text


def is_empty(value: Any) -> bool:
    if value is None or value == "":
        return True
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


BUILT_INS: dict[str, Callable[..., Any]] = {
    "$now": now,
    "$uuid": new_uuid,
    "$formatDate": format_date,
    # Strings
    "$upper": lambda s: _to_text(s).upper(),
    "$lower": lambda s: _to_text(s).lower(),
    "$trim": lambda s: _to_text(s).strip(),
    "$replace": lambda s, find, repl: _to_text(s).replace(_to_text(find), _to_text(repl), 1),
    "$split": lambda s, delimiter=",": _to_text(s).split(delimiter) if delimiter else list(_to_text(s)),
    "$join": _join,
    # Numbers
    "$round": _round,
    "$floor": lambda n: math.floor(_to_number(n)),
    "$ceil": lambda n: math.ceil(_to_number(n)),
    "$abs": lambda n: _normalize_number(abs(_to_number(n))),
    "$min": lambda *nums: _normalize_number(min(_to_number(n) for n in nums)),
    "$max": lambda *nums: _normalize_number(max(_to_number(n) for n in nums)),
    # Arrays
    "$length": _length,
    "$first": _first,
    "$last": _last,
    "$reverse": lambda arr: list(reversed(arr)) if isinstance(arr, list) else arr,
    # Objects
    "$keys": lambda obj: list(obj.keys()) if isinstance(obj, dict) else [],
    "$values": lambda obj: list(obj.values()) if isinstance(obj, dict) else [],
    "$pick": _pick,
    # JSON
    "$stringify": _stringify,
    "$parse": _parse,
    # Conditionals
    "$if": lambda condition, when_true, when_false=None: when_true if condition else when_false,
    "$default": lambda value, fallback: fallback if value is None else value,
    "$isEmpty": is_empty,
}


def build_scope(context: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build the name table an expression is evaluated against.

    Recognized context keys: ``input``, ``index``, ``item``, ``nodeData``
    (``$node``), ``workflowData`` (``$workflow``) and ``variables``
    (``$vars``, also exposed as bare names).

    Example:
        >>> scope = build_scope({"input": {"a": 5}})
        >>> scope["$json"]
        {'a': 5}
    """
    context = context or {}
    input_data = context.get("input")
    variables = context.get("variables") or {}

    scope: dict[str, Any] = dict(BUILT_INS)
    scope.update(
        {
            "$json": input_data if input_data is not None else {},
            "$input": input_data if input_data is not None else {},
            "$index": context.get("index") if context.get("index") is not None else 0,
            "$item": context.get("item"),
            "$node": context.get("nodeData") or {},
            "$vars": variables,
            "$workflow": context.get("workflowData") or {},
        }
    )
    scope.update(variables)
    return scope
