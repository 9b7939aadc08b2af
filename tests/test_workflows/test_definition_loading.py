from __future__ import annotations

import pytest

from nexus.core.exceptions import NotFoundError, ValidationError
from nexus.workflows.schema import BranchRoute, DefaultRoute, NodeType, WorkflowDefinition


def _config(nodes, edges):
    return {"nodes": nodes, "edges": edges}


def test_aliases_and_routes_are_resolved():
    definition = WorkflowDefinition.from_dict(
        _config(
            [
                {"id": "s", "type": "start"},
                {"id": "m", "type": "llm", "data": {"model": "fast", "prompt": "hi"}},
                {"id": "c", "type": "conditional", "data": {"condition": "1 > 0"}},
                {"id": "e1", "type": "end"},
                {"id": "e2", "type": "end"},
            ],
            [
                {"source": "s", "target": "m"},
                {"source": "m", "target": "c"},
                {"source": "c", "target": "e1", "sourceHandle": "true"},
                {"source": "c", "target": "e2", "sourceHandle": "false"},
            ],
        )
    )
    assert definition.start_id == "s"
    assert definition.node("m").type is NodeType.MODEL_CALL
    assert definition.route("m") == DefaultRoute("c")
    assert definition.route("c") == BranchRoute(on_true="e1", on_false="e2")
    assert definition.route("e1") == DefaultRoute(None)


@pytest.mark.parametrize(
    "nodes, edges, message",
    [
        ([{"id": "s", "type": "start"}, {"id": "s", "type": "end"}], [], "Duplicate"),
        ([{"id": "e", "type": "end"}], [], "exactly one start"),
        ([{"id": "s", "type": "start"}, {"id": "x", "type": "teleport"}], [], "Unknown node type"),
        ([{"id": "s", "type": "start"}, {"id": "e", "type": "end"}], [{"source": "s", "target": "ghost"}], "unknown node"),
        ([{"id": "s", "type": "start"}, {"id": "e", "type": "end"}], [], "No end node"),
    ],
)
def test_invalid_definitions_are_rejected(nodes, edges, message):
    with pytest.raises(ValidationError, match=message):
        WorkflowDefinition.from_dict(_config(nodes, edges))


def test_only_conditionals_may_branch():
    with pytest.raises(ValidationError, match="only conditionals may branch"):
        WorkflowDefinition.from_dict(
            _config(
                [{"id": "s", "type": "start"}, {"id": "a", "type": "end"}, {"id": "b", "type": "end"}],
                [{"source": "s", "target": "a"}, {"source": "s", "target": "b"}],
            )
        )


def test_conditional_edges_need_distinct_labels():
    nodes = [{"id": "s", "type": "start"}, {"id": "c", "type": "conditional"}, {"id": "e", "type": "end"}]
    with pytest.raises(ValidationError, match="without a true/false label"):
        WorkflowDefinition.from_dict(
            _config(nodes, [{"source": "s", "target": "c"}, {"source": "c", "target": "e"}])
        )
    with pytest.raises(ValidationError, match="more than one 'true'"):
        WorkflowDefinition.from_dict(
            _config(
                nodes,
                [
                    {"source": "s", "target": "c"},
                    {"source": "c", "target": "e", "sourceHandle": "true"},
                    {"source": "c", "target": "s", "sourceHandle": "true"},
                ],
            )
        )


def test_unknown_node_lookup_raises_not_found():
    definition = WorkflowDefinition.from_dict(
        _config([{"id": "s", "type": "start"}, {"id": "e", "type": "end"}], [{"source": "s", "target": "e"}])
    )
    with pytest.raises(NotFoundError):
        definition.node("missing")
