"""Sandboxed execution of user-supplied Python snippets.

User code is the body of a function that receives ``input`` and
``context`` and may ``return`` a value::

    total = sum(item["price"] for item in input["items"])
    return {"total": round(total, 2)}

Three layers keep it contained. A pattern pre-scan rejects code that
reaches for dynamic evaluation, module loading, dunder attributes or
reflection before anything runs. The snippet is then compiled with
RestrictedPython, which refuses ``_``-prefixed names and routes every
attribute, item and iteration access through guard functions. At run time
the function's builtins are an explicit allow-list; every other builtin
name is bound to a trap that raises :class:`SandboxViolationError` when
touched.
"""

from __future__ import annotations

import asyncio
import builtins
import json
import logging
import math
import operator
import re
import textwrap
import time
from types import SimpleNamespace
from typing import Any, Callable

from RestrictedPython import compile_restricted_exec
from RestrictedPython.Eval import default_guarded_getitem
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
    safer_getattr,
)

from flowchord.errors.exceptions import (
    SandboxError,
    SandboxRuntimeError,
    SandboxViolationError,
    TimeoutError as NodeTimeoutError,
    UnsafePatternError,
)

logger = logging.getLogger(__name__)

# (pattern, name shown to the user)
BLOCKED_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\beval\s*\("), "eval()"),
    (re.compile(r"\bexec\s*\("), "exec()"),
    (re.compile(r"\bcompile\s*\("), "compile()"),
    (re.compile(r"__import__"), "__import__"),
    (re.compile(r"\bimportlib\b"), "importlib"),
    (re.compile(r"^\s*(?:from\s+\S+\s+)?import\s", re.MULTILINE), "import statement"),
    (re.compile(r"__(?:class|subclasses|globals|builtins|dict|mro|bases|code)__"), "dunder attribute access"),
    (re.compile(r"\bgetattr\s*\("), "getattr()"),
    (re.compile(r"\bsetattr\s*\("), "setattr()"),
    (re.compile(r"\bdelattr\s*\("), "delattr()"),
    (re.compile(r"\bglobals\s*\("), "globals()"),
    (re.compile(r"\blocals\s*\("), "locals()"),
    (re.compile(r"\bvars\s*\("), "vars()"),
)

SAFE_BUILTINS = frozenset({
    "abs", "all", "any", "bool", "chr", "dict", "divmod", "enumerate",
    "filter", "float", "format", "frozenset", "int", "isinstance", "iter",
    "len", "list", "map", "max", "min", "next", "ord", "pow", "range",
    "repr", "reversed", "round", "set", "slice", "sorted", "str", "sum",
    "tuple", "zip",
    "ArithmeticError", "AssertionError", "Exception", "IndexError",
    "KeyError", "LookupError", "RuntimeError", "StopIteration",
    "TypeError", "ValueError", "ZeroDivisionError",
    "True", "False", "None",
})

# Attributes that lead from ordinary objects back to frames, code objects
# or unsafe formatting. Names starting with "_" are refused at compile time.
BLOCKED_ATTRIBUTES = frozenset({
    "gi_frame", "gi_code", "gi_yieldfrom",
    "cr_frame", "cr_code", "cr_await",
    "ag_frame", "ag_code", "ag_await",
    "tb_frame", "tb_next",
    "f_back", "f_builtins", "f_globals", "f_locals", "f_code",
    "format", "format_map", "mro",
})

_INPLACE_OPERATORS: dict[str, Callable[[Any, Any], Any]] = {
    "+=": operator.iadd,
    "-=": operator.isub,
    "*=": operator.imul,
    "/=": operator.itruediv,
    "//=": operator.ifloordiv,
    "%=": operator.imod,
    "**=": operator.ipow,
    "@=": operator.imatmul,
    "<<=": operator.ilshift,
    ">>=": operator.irshift,
    "&=": operator.iand,
    "|=": operator.ior,
    "^=": operator.ixor,
}

_ENTRYPOINT = "sandbox_main"

_TRACEBACK_NOISE = (
    re.compile(r'File "[^"]*",?\s*'),
    re.compile(r",?\s*line \d+,?"),
    re.compile(r"\s*in <module>"),
    re.compile(rf"\s*in {_ENTRYPOINT}"),
)

_MISSING = object()


class _Trap:
    """Stand-in for a blocked builtin. Any use raises."""

    __slots__ = ("_name",)

    def __init__(self, name: str) -> None:
        object.__setattr__(self, "_name", name)

    def _deny(self, *args: Any, **kwargs: Any) -> Any:
        raise SandboxViolationError(object.__getattribute__(self, "_name"))

    __call__ = _deny
    __getattr__ = _deny
    __setattr__ = _deny
    __delattr__ = _deny
    __getitem__ = _deny
    __setitem__ = _deny

    def __repr__(self) -> str:
        return f"<blocked {object.__getattribute__(self, '_name')}>"


class _PrintToLog:
    """Target of ``print`` calls in restricted code."""

    def __init__(self, _getattr_: Any = None) -> None:
        self._lines: list[str] = []

    def _call_print(self, *objects: Any, **kwargs: Any) -> None:
        line = " ".join(str(o) for o in objects)
        self._lines.append(line)
        logger.info("[Sandbox] %s", line)

    def __call__(self) -> str:
        return "\n".join(self._lines)


def guarded_getattr(obj: Any, name: str, default: Any = _MISSING) -> Any:
    """Attribute access for restricted code."""
    if name in BLOCKED_ATTRIBUTES:
        raise SandboxViolationError(f"attribute '{name}'")
    value = safer_getattr(obj, name, _MISSING)
    if value is _MISSING:
        if default is _MISSING:
            raise AttributeError(f"{type(obj).__name__!r} object has no attribute {name!r}")
        return default
    return value


def _inplace(op: str, target: Any, value: Any) -> Any:
    return _INPLACE_OPERATORS[op](target, value)


def _apply(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    return func(*args, **kwargs)


def check_code(code: str) -> None:
    """Raise UnsafePatternError for the first blocked pattern found."""
    for pattern, name in BLOCKED_PATTERNS:
        if pattern.search(code):
            raise UnsafePatternError(name)


def _restricted_compile(code: str) -> Any:
    """Compile wrapped code, raising SyntaxError or UnsafePatternError."""
    source = _wrap(code)
    compile(source, "<sandbox>", "exec")
    result = compile_restricted_exec(source, "<sandbox>")
    if result.errors:
        raise UnsafePatternError(re.sub(r"^Line \d+: ", "", result.errors[0]))
    return result.code


def validate_code(code: Any) -> tuple[bool, str | None]:
    """Check code against the denylist and the restricted compiler without running it."""
    if not isinstance(code, str):
        return False, "Code must be a string"
    try:
        check_code(code)
        _restricted_compile(code)
    except UnsafePatternError as e:
        return False, str(e)
    except SyntaxError as e:
        return False, f"Syntax error: {e.msg}"
    return True, None


def sanitize_message(message: str) -> str:
    """Strip file paths and line references from an error message."""
    for pattern in _TRACEBACK_NOISE:
        message = pattern.sub(" ", message)
    return " ".join(message.split())


def _wrap(code: str) -> str:
    body = textwrap.indent(textwrap.dedent(code), "    ")
    if not body.strip():
        body = "    pass"
    return f"def {_ENTRYPOINT}(input, context):\n{body}\n"


class SandboxedCodeExecutor:
    """Run user Python snippets with a restricted global environment.

    The snippet runs in a worker thread raced against a timeout. Python
    cannot kill a thread, so a snippet stuck in a tight loop keeps its
    worker busy after the timeout fires; the caller is released either way.

    Example:
        >>> sandbox = SandboxedCodeExecutor(timeout=5.0)
        >>> await sandbox.run("return input * 2", 21)
        42
    """

    def __init__(self, timeout: float = 30.0, max_sleep: float = 30.0) -> None:
        self._timeout = timeout
        self._max_sleep = max_sleep

    @property
    def timeout(self) -> float:
        return self._timeout

    def _sleep(self, seconds: float) -> None:
        time.sleep(max(0.0, min(float(seconds), self._max_sleep)))

    def build_globals(self) -> dict[str, Any]:
        """Build the restricted globals and guard hooks for one run."""
        safe_builtins: dict[str, Any] = {
            name: _Trap(name) for name in dir(builtins) if not name.startswith("__")
        }
        for name in SAFE_BUILTINS:
            safe_builtins[name] = getattr(builtins, name)
        safe_builtins["__build_class__"] = _Trap("class")
        safe_builtins["__import__"] = _Trap("import")

        return {
            "__builtins__": safe_builtins,
            "__name__": "sandbox",
            "__metaclass__": _Trap("class"),
            "_getattr_": guarded_getattr,
            "_getitem_": default_guarded_getitem,
            "_getiter_": iter,
            "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
            "_unpack_sequence_": guarded_unpack_sequence,
            "_write_": full_write_guard,
            "_inplacevar_": _inplace,
            "_apply_": _apply,
            "_print_": _PrintToLog,
            "math": SimpleNamespace(**{
                name: getattr(math, name) for name in dir(math) if not name.startswith("_")
            }),
            "json": SimpleNamespace(dumps=json.dumps, loads=json.loads),
            "sleep": self._sleep,
        }

    def _compile(self, code: str) -> Callable[[Any, Any], Any]:
        try:
            compiled = _restricted_compile(code)
        except SyntaxError as e:
            raise SandboxRuntimeError(
                f"Sandbox execution error: invalid syntax: {e.msg}",
                error_type="SyntaxError",
            ) from None
        env = self.build_globals()
        exec(compiled, env)  # noqa: S102 - restricted bytecode and globals
        return env[_ENTRYPOINT]

    async def run(
        self,
        code: str,
        input: Any = None,
        timeout_ms: float | None = None,
        *,
        context: dict[str, Any] | None = None,
    ) -> Any:
        """Execute a snippet and return its result.

        Args:
            code: Function body; ``input`` and ``context`` are in scope.
            input: Value bound to ``input``.
            timeout_ms: Timeout in milliseconds (default: executor timeout).
            context: Read-only metadata bound to ``context`` (node id, run id).

        Raises:
            UnsafePatternError: Code matched the denylist; it never ran.
            SandboxViolationError: Code touched a blocked builtin.
            SandboxRuntimeError: Code raised; message is sanitized.
            TimeoutError: Code ran past the timeout.
        """
        if not isinstance(code, str):
            raise SandboxRuntimeError("Code must be a string")
        check_code(code)

        timeout = timeout_ms / 1000 if timeout_ms else self._timeout
        func = self._compile(code)
        snapshot = dict(context or {})

        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, input, snapshot), timeout=timeout
            )
        except asyncio.TimeoutError:
            raise NodeTimeoutError(
                f"Execution timeout after {int(timeout * 1000)}ms",
                timeout_seconds=timeout,
                source="codeExecutor",
            ) from None
        except SandboxError:
            raise
        except Exception as e:
            raise SandboxRuntimeError(
                f"Sandbox execution error: {sanitize_message(str(e)) or type(e).__name__}",
                error_type=type(e).__name__,
            ) from None
