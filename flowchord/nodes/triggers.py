"""Trigger node executors. Triggers start a branch; they never fail."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from flowchord.core.context import LogType
from flowchord.core.graph import NodeSpec
from flowchord.nodes.base import ExecutorOutput, utc_timestamp

if TYPE_CHECKING:
    from flowchord.core.context import NodeContext


async def manual_trigger(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
    """Start a run by hand with the configured payload and form values."""
    default_payload = node.data.get("defaultPayload") or ""
    form_data = dict(node.data.get("inputValues") or {})

    output: dict[str, Any] = {
        "timestamp": utc_timestamp(),
        "trigger": "manual",
        **form_data,
    }
    if default_payload:
        output["text"] = default_payload
    fallback = {**form_data, "text": default_payload} if default_payload else form_data
    output["data"] = input if input not in (None, {}) else fallback

    context.add_log(LogType.INFO, "Workflow started manually")
    return ExecutorOutput(output=output)


async def schedule_trigger(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
    schedule = node.data.get("cron") or node.data.get("interval")
    context.add_log(LogType.INFO, f"Scheduled run ({schedule or 'no schedule set'})")
    return ExecutorOutput(
        output={
            "timestamp": utc_timestamp(),
            "trigger": "schedule",
            "schedule": schedule,
            "data": input,
        }
    )


async def webhook_trigger(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
    endpoint = node.data.get("endpoint") or "/webhook/default"
    context.add_log(LogType.INFO, f"Webhook received on {endpoint}")
    return ExecutorOutput(
        output={
            "timestamp": utc_timestamp(),
            "trigger": "webhook",
            "method": node.data.get("method") or "POST",
            "endpoint": endpoint,
            "body": input if input is not None else {},
            "query": dict(node.data.get("query") or {}),
        }
    )


async def error_trigger(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
    """Started by the engine with ``{error, failedNodeId, input}`` when a node fails."""
    payload = input if isinstance(input, dict) else {"error": input}
    context.add_log(LogType.WARNING, "Error trigger activated", {"failedNodeId": payload.get("failedNodeId")})
    return ExecutorOutput(
        output={
            "timestamp": utc_timestamp(),
            "trigger": "error",
            "error": payload.get("error"),
            "failedNodeId": payload.get("failedNodeId"),
            "originalInput": payload.get("input"),
        }
    )
