"""Workflow definition model and load-time validation.

Routing is resolved once at load: every node gets either a `DefaultRoute`
(at most one outgoing edge) or a `BranchRoute` (conditional, edges selected
by the "true"/"false" label). The executor never inspects raw edges.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from nexus.core.exceptions import NotFoundError, ValidationError


class NodeType(str, Enum):
    START = "start"
    MODEL_CALL = "model-call"
    RETRIEVAL = "retrieval"
    ACTION = "action"
    CONDITIONAL = "conditional"
    END = "end"


# Node type names used by the visual builder.
NODE_TYPE_ALIASES: dict[str, NodeType] = {
    "llm": NodeType.MODEL_CALL,
    "model_call": NodeType.MODEL_CALL,
    "rag": NodeType.RETRIEVAL,
    "api": NodeType.ACTION,
}

BRANCH_LABELS = ("true", "false")


@dataclass(frozen=True)
class WorkflowNode:
    id: str
    type: NodeType
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkflowEdge:
    source: str
    target: str
    branch_label: str | None = None


@dataclass(frozen=True)
class DefaultRoute:
    target: str | None


@dataclass(frozen=True)
class BranchRoute:
    on_true: str | None
    on_false: str | None

    def select(self, outcome: bool) -> str | None:
        return self.on_true if outcome else self.on_false


Route = Union[DefaultRoute, BranchRoute]


@dataclass(frozen=True)
class WorkflowDefinition:
    nodes: dict[str, WorkflowNode]
    edges: tuple[WorkflowEdge, ...]
    start_id: str
    routes: dict[str, Route]

    def node(self, node_id: str) -> WorkflowNode:
        try:
            return self.nodes[node_id]
        except KeyError as exc:
            raise NotFoundError(f"Node {node_id} not found") from exc

    def route(self, node_id: str) -> Route:
        return self.routes[node_id]

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "WorkflowDefinition":
        if not isinstance(config, dict):
            raise ValidationError("Workflow definition must be an object")
        nodes = [_parse_node(raw) for raw in config.get("nodes") or []]
        edges = tuple(_parse_edge(raw) for raw in config.get("edges") or [])
        return cls.build(nodes, edges)

    @classmethod
    def build(cls, nodes: list[WorkflowNode], edges: tuple[WorkflowEdge, ...]) -> "WorkflowDefinition":
        if not nodes:
            raise ValidationError("Workflow must contain at least one node")

        by_id: dict[str, WorkflowNode] = {}
        for node in nodes:
            if node.id in by_id:
                raise ValidationError(f"Duplicate node id: {node.id}")
            by_id[node.id] = node

        starts = [n.id for n in nodes if n.type is NodeType.START]
        if len(starts) != 1:
            raise ValidationError(f"Workflow must have exactly one start node, found {len(starts)}")

        outgoing: dict[str, list[WorkflowEdge]] = {node_id: [] for node_id in by_id}
        for edge in edges:
            for endpoint in (edge.source, edge.target):
                if endpoint not in by_id:
                    raise ValidationError(f"Edge {edge.source}->{edge.target} references unknown node {endpoint}")
            outgoing[edge.source].append(edge)

        routes = {node_id: _build_route(by_id[node_id], out) for node_id, out in outgoing.items()}

        if not _end_reachable(starts[0], by_id, routes):
            raise ValidationError("No end node is reachable from the start node")

        return cls(nodes=by_id, edges=edges, start_id=starts[0], routes=routes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [{"id": n.id, "type": n.type.value, "data": n.data} for n in self.nodes.values()],
            "edges": [
                {"source": e.source, "target": e.target, "sourceHandle": e.branch_label}
                for e in self.edges
            ],
        }


def parse_node_type(value: Any) -> NodeType:
    name = str(value or "").strip().lower()
    if name in NODE_TYPE_ALIASES:
        return NODE_TYPE_ALIASES[name]
    try:
        return NodeType(name)
    except ValueError as exc:
        raise ValidationError(f"Unknown node type: {value!r}") from exc


def _parse_node(raw: Any) -> WorkflowNode:
    if not isinstance(raw, dict) or not raw.get("id"):
        raise ValidationError("Every node needs an 'id'")
    data = raw.get("data") or {}
    if not isinstance(data, dict):
        raise ValidationError(f"Node {raw['id']} data must be an object")
    return WorkflowNode(id=str(raw["id"]), type=parse_node_type(raw.get("type")), data=dict(data))


def _parse_edge(raw: Any) -> WorkflowEdge:
    if not isinstance(raw, dict) or not raw.get("source") or not raw.get("target"):
        raise ValidationError("Every edge needs a 'source' and a 'target'")
    label = raw.get("sourceHandle", raw.get("branchLabel", raw.get("branch_label")))
    return WorkflowEdge(
        source=str(raw["source"]),
        target=str(raw["target"]),
        branch_label=str(label).lower() if label is not None else None,
    )


def _build_route(node: WorkflowNode, outgoing: list[WorkflowEdge]) -> Route:
    if node.type is not NodeType.CONDITIONAL:
        if len(outgoing) > 1:
            raise ValidationError(f"Node {node.id} has {len(outgoing)} outgoing edges; only conditionals may branch")
        return DefaultRoute(outgoing[0].target if outgoing else None)

    targets: dict[str, str] = {}
    for edge in outgoing:
        if edge.branch_label not in BRANCH_LABELS:
            raise ValidationError(f"Conditional node {node.id} has an edge without a true/false label")
        if edge.branch_label in targets:
            raise ValidationError(f"Conditional node {node.id} has more than one '{edge.branch_label}' edge")
        targets[edge.branch_label] = edge.target
    return BranchRoute(on_true=targets.get("true"), on_false=targets.get("false"))


def _end_reachable(start_id: str, nodes: dict[str, WorkflowNode], routes: dict[str, Route]) -> bool:
    seen = {start_id}
    queue = deque([start_id])
    while queue:
        node_id = queue.popleft()
        if nodes[node_id].type is NodeType.END:
            return True
        route = routes[node_id]
        targets = [route.target] if isinstance(route, DefaultRoute) else [route.on_true, route.on_false]
        for target in targets:
            if target is not None and target not in seen:
                seen.add(target)
                queue.append(target)
    return False
