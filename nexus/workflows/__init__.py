"""Workflow Executor: definition model, templating, actions, interpreter."""

from .actions import ActionRegistry, default_registry
from .engine import ExecutionContext, TraceEntry, WorkflowExecutor, WorkflowResult
from .schema import NodeType, WorkflowDefinition, WorkflowEdge, WorkflowNode
from .templating import evaluate_condition, substitute

__all__ = [
    "ActionRegistry",
    "ExecutionContext",
    "NodeType",
    "TraceEntry",
    "WorkflowDefinition",
    "WorkflowEdge",
    "WorkflowExecutor",
    "WorkflowNode",
    "WorkflowResult",
    "default_registry",
    "evaluate_condition",
    "substitute",
]
