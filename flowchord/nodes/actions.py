"""Action node executors."""

from __future__ import annotations

import asyncio
import csv
import io
import json
import time
from typing import TYPE_CHECKING, Any

from flowchord.core.context import LogType
from flowchord.core.graph import NodeSpec, NodeType
from flowchord.errors.exceptions import ConfigError, InvalidConfigError
from flowchord.nodes.base import (
    ExecutorOutput,
    NodeExecutor,
    merged_overrides,
    run_handler,
)

if TYPE_CHECKING:
    from flowchord.core.context import NodeContext

MIME_EXTENSIONS = {
    "application/json": ".json",
    "text/plain": ".txt",
    "text/csv": ".csv",
    "text/markdown": ".md",
    "text/html": ".html",
    "audio/wav": ".wav",
    "audio/mpeg": ".mp3",
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "video/mp4": ".mp4",
    "application/pdf": ".pdf",
    "application/octet-stream": ".bin",
}


async def code_executor(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
    """Run a Python snippet in the sandbox with ``input`` bound."""
    language = node.data.get("language") or "python"
    if language != "python":
        raise InvalidConfigError("language", language, "Only 'python' code is supported")
    code = node.data.get("code")
    if not isinstance(code, str) or not code.strip():
        raise ConfigError(f"{node.label}: no code to execute")

    context.add_log(LogType.INFO, "Executing python code (sandboxed)")
    result = await context.collaborators.sandbox.run(
        code,
        input,
        context.settings.sandbox_timeout * 1000,
        context={"nodeId": node.id, "runId": context.run_id},
    )
    return ExecutorOutput(output=result)


def _parse_headers(headers: Any) -> dict[str, str]:
    if not headers:
        return {}
    if isinstance(headers, str):
        try:
            headers = json.loads(headers)
        except ValueError:
            raise InvalidConfigError("headers", headers, "Headers must be a JSON object") from None
    if not isinstance(headers, dict):
        raise InvalidConfigError("headers", headers, "Headers must be a JSON object")
    return {str(k): str(v) for k, v in headers.items()}


async def http_request(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
    """Call an HTTP endpoint. URL, headers and body may contain templates."""
    config = context.resolve(
        {key: node.data.get(key) for key in ("url", "method", "headers", "body")},
        input,
    )
    url = config.get("url")
    if not url:
        raise ConfigError(f"{node.label}: URL is required")
    method = (config.get("method") or "GET").upper()
    timeout_ms = node.data.get("timeout")

    context.add_log(LogType.INFO, f"{method} {url}")
    response = await context.collaborators.http.request(
        method,
        url,
        headers=_parse_headers(config.get("headers")),
        body=config.get("body"),
        timeout=timeout_ms / 1000 if timeout_ms else context.settings.http_timeout,
    )
    if response.get("blob") is not None:
        context.add_log(LogType.SUCCESS, f"Received binary data ({response.get('mimeType')})")
    return ExecutorOutput(output=response)


async def set_variable(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
    """Store a workflow variable.

    The configured value can be overridden by the payload: first by a key
    with the variable's own name, then ``value``, then ``text``.
    """
    name = node.data.get("variableName") or node.data.get("name")
    if not name:
        raise ConfigError(f"{node.label}: variable name is required")

    value = node.data.get("value")
    if isinstance(input, dict):
        for key in (name, "value", "text"):
            if input.get(key) is not None:
                value = input[key]
                break

    value = context.resolve(value, input)
    context.set_variable(name, value)

    shown = value[:50] if isinstance(value, str) else "..."
    context.add_log(LogType.INFO, f"Set {name} = {shown}")

    base = dict(input) if isinstance(input, dict) else {}
    return ExecutorOutput(output={**base, name: value})


async def delay(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
    """Wait, then pass the input through unchanged."""
    raw = node.data.get("ms", node.data.get("duration", 1000))
    try:
        ms = float(raw)
    except (TypeError, ValueError):
        raise InvalidConfigError("ms", raw, "Delay must be a number of milliseconds") from None
    if ms < 0:
        raise InvalidConfigError("ms", raw, "Delay cannot be negative")

    context.add_log(LogType.INFO, f"Waiting {int(ms)}ms")
    remaining = ms / 1000
    # Sleep in slices so long delays keep the node's timeout alive.
    while remaining > 0:
        step = min(remaining, 1.0)
        await asyncio.sleep(step)
        remaining -= step
        context.heartbeat()
    return ExecutorOutput(output=input)


def _to_csv(rows: list[dict[str, Any]]) -> str:
    buffer = io.StringIO()
    headers = list(rows[0].keys())
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow(
            [json.dumps(row.get(h)) if isinstance(row.get(h), (dict, list)) else row.get(h, "") for h in headers]
        )
    return buffer.getvalue().rstrip("\n")


def detect_content(value: Any) -> tuple[str, Any]:
    """Pick a MIME type for an output and render it for storage."""
    if isinstance(value, (bytes, bytearray)):
        return "application/octet-stream", bytes(value)
    if isinstance(value, dict):
        if isinstance(value.get("audioBlob"), (bytes, bytearray)):
            return value.get("mimeType") or "audio/wav", value["audioBlob"]
        if isinstance(value.get("imageBlob"), (bytes, bytearray)):
            return value.get("mimeType") or "image/png", value["imageBlob"]
    if isinstance(value, str):
        return "text/plain", value
    if isinstance(value, (dict, list)):
        return "application/json", json.dumps(value, indent=2, default=str)
    return "text/plain", "" if value is None else str(value)


def render_as(value: Any, mime_type: str) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, (dict, list)):
        if mime_type == "text/csv" and isinstance(value, list) and value and isinstance(value[0], dict):
            return _to_csv(value)
        return json.dumps(value, indent=2, default=str)
    return "" if value is None else str(value)


async def output(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
    """Terminal node: emit the payload and save it as an artifact."""
    config = merged_overrides(
        node.data, input, ("outputType", "filename", "artifactType", "artifactName")
    )
    output_type = config.get("outputType") or "console"
    artifact_type = config.get("artifactType") or "auto"

    data = json.dumps(input, indent=2, default=str) if config.get("formatJson") else input
    context.add_log(LogType.SUCCESS, f"Workflow output ({output_type})")

    if artifact_type != "auto":
        mime_type = artifact_type
        content = render_as(input, mime_type)
    else:
        mime_type, content = detect_content(input)
    extension = MIME_EXTENSIONS.get(mime_type, ".bin")

    filename = config.get("artifactName") or config.get("filename")
    if not filename:
        filename = f"output_{int(time.time() * 1000)}{extension}"
    elif "." not in filename:
        filename += extension
    elif artifact_type != "auto":
        filename = filename.rsplit(".", 1)[0] + extension

    context.add_artifact(filename, content, mime_type)
    context.add_log(LogType.SUCCESS, f"Saved artifact: {filename}")
    return ExecutorOutput(output=data)


async def tool_call(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
    """Invoke a tool registered by name on the collaborators."""
    tool_name = node.data.get("toolName")
    if not tool_name:
        raise ConfigError(f"{node.label}: toolName is required")
    args = context.resolve(node.data.get("args"), input) or input

    context.add_log(LogType.INFO, f"Executing tool: {tool_name}")
    handler = context.collaborators.tool_named(tool_name)
    result = await run_handler(handler, node, args, context)
    return ExecutorOutput(
        output={"tool": tool_name, "status": "success", "result": result, "args": args}
    )


async def local_storage(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
    """Get, set or delete a key in the key/value store."""
    mode = node.data.get("mode") or "get"
    key = context.resolve(node.data.get("key"), input)
    if not key:
        raise ConfigError(f"{node.label}: no key specified")

    store = context.collaborators.storage
    if mode == "get":
        value = await store.get(key)
        context.add_log(LogType.INFO, f"Retrieved: {key}")
        return ExecutorOutput(output={"key": key, "value": value, "found": value is not None})
    if mode == "set":
        await store.set(key, input)
        context.add_log(LogType.SUCCESS, f"Stored: {key}")
        return ExecutorOutput(output={"key": key, "success": True})
    if mode == "delete":
        deleted = await store.delete(key)
        context.add_log(LogType.INFO, f"Deleted: {key}")
        return ExecutorOutput(output={"key": key, "deleted": deleted})
    raise InvalidConfigError("mode", mode, "Use 'get', 'set' or 'delete'")


def delegate(node_type: NodeType) -> NodeExecutor:
    """Executor that hands the node to its injected handler."""

    async def execute(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
        handler = context.collaborators.handler_for(node_type)
        context.add_log(LogType.INFO, f"Running {node.label}")
        result = await run_handler(handler, node, input, context)
        return ExecutorOutput(output=result)

    execute.__name__ = f"delegate_{node_type.value}"
    return execute


async def chat_model(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
    """Resource node. Its configuration is read by the agent it feeds."""
    config = {
        key: node.data.get(key)
        for key in ("modelId", "modelName", "provider", "temperature", "maxTokens")
        if node.data.get(key) is not None
    }
    return ExecutorOutput(output=config)
