"""Node executors and the registry that dispatches them."""

from flowchord.nodes.base import (
    Collaborators,
    ExecutorOutput,
    InMemoryKeyValueStore,
    KeyValueStore,
    LoopPlan,
    NodeExecutor,
)
from flowchord.nodes.control import ControlFlowRunner, MergeBarrier
from flowchord.nodes.registry import DEFAULT_EXECUTORS, NodeExecutorRegistry

__all__ = [
    "Collaborators",
    "ExecutorOutput",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "LoopPlan",
    "NodeExecutor",
    "ControlFlowRunner",
    "MergeBarrier",
    "DEFAULT_EXECUTORS",
    "NodeExecutorRegistry",
]
