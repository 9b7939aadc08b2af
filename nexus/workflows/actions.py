"""Pluggable strategies behind action nodes.

A strategy is an async callable `(node, params, variables) -> dict` registered
under an action kind (node `data.kind`, default "http"). `params` is the node
data with templates already substituted; `variables` is a read-only view of
the current bindings.
"""
from __future__ import annotations

from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping

from nexus.core.exceptions import ValidationError
from nexus.workflows.schema import WorkflowNode

ActionStrategy = Callable[[WorkflowNode, dict[str, Any], Mapping[str, Any]], Awaitable[dict[str, Any]]]

DEFAULT_ACTION_KIND = "http"


class ActionRegistry:
    def __init__(self) -> None:
        self._strategies: dict[str, ActionStrategy] = {}

    def register(self, kind: str, strategy: ActionStrategy | None = None):
        """Register directly, or use as `@registry.register("kind")`."""
        if strategy is not None:
            self._strategies[kind] = strategy
            return strategy

        def decorator(func: ActionStrategy) -> ActionStrategy:
            self._strategies[kind] = func
            return func

        return decorator

    def get(self, kind: str) -> ActionStrategy:
        try:
            return self._strategies[kind]
        except KeyError as exc:
            raise ValidationError(f"No action registered for kind {kind!r}") from exc

    def kinds(self) -> list[str]:
        return sorted(self._strategies)

    async def run(self, node: WorkflowNode, params: dict[str, Any], variables: Mapping[str, Any]) -> dict[str, Any]:
        kind = str(params.get("kind") or DEFAULT_ACTION_KIND)
        return await self.get(kind)(node, params, MappingProxyType(dict(variables)))


async def http_placeholder(node: WorkflowNode, params: dict[str, Any], variables: Mapping[str, Any]) -> dict[str, Any]:
    """Record the intended request without sending it."""
    return {
        "url": params.get("url"),
        "method": str(params.get("method") or "GET").upper(),
        "status": "placeholder",
    }


def default_registry() -> ActionRegistry:
    registry = ActionRegistry()
    registry.register(DEFAULT_ACTION_KIND, http_placeholder)
    return registry
