"""Lookup of workflow graphs referenced by ``subWorkflow`` nodes."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from flowchord.core.graph import WorkflowGraph
from flowchord.errors.exceptions import ConfigError


@runtime_checkable
class WorkflowStore(Protocol):
    """Source of workflow definitions. Persistence is out of scope."""

    async def load(self, workflow_id: str) -> WorkflowGraph | None:
        ...


class InMemoryWorkflowStore:
    """Dict-backed workflow store.

    Example:
        >>> store = InMemoryWorkflowStore()
        >>> store.add(WorkflowGraph.from_lists(nodes=[...], edges=[...], id="child"))
        >>> graph = await store.load("child")
    """

    def __init__(self, workflows: dict[str, WorkflowGraph] | None = None) -> None:
        self._workflows: dict[str, WorkflowGraph] = dict(workflows or {})

    def add(self, graph: WorkflowGraph | dict[str, Any], workflow_id: str | None = None) -> WorkflowGraph:
        """Register a graph (or its dict export) under its id."""
        if not isinstance(graph, WorkflowGraph):
            graph = WorkflowGraph.model_validate(graph)
        key = workflow_id or graph.id
        if not key:
            raise ConfigError("Workflow needs an id to be stored")
        self._workflows[key] = graph
        return graph

    def remove(self, workflow_id: str) -> None:
        self._workflows.pop(workflow_id, None)

    async def load(self, workflow_id: str) -> WorkflowGraph | None:
        return self._workflows.get(workflow_id)

    def __contains__(self, workflow_id: object) -> bool:
        return workflow_id in self._workflows

    def __len__(self) -> int:
        return len(self._workflows)
