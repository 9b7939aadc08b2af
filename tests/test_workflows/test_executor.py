from __future__ import annotations

import pytest

from nexus.core.exceptions import (
    CircularDependencyError,
    ConfigurationError,
    UpstreamError,
    ValidationError,
    WorkflowExecutionError,
)
from nexus.core.identity import CallerIdentity
from nexus.llm.providers import ModelInvocationResult
from nexus.rag.pipeline import RetrievedChunk
from nexus.workflows.actions import ActionRegistry, default_registry
from nexus.workflows.engine import WorkflowExecutor
from nexus.workflows.schema import WorkflowDefinition

CALLER = CallerIdentity(user_id="user-1")


class ScriptedModel:
    def __init__(self, reply="42", fail=False):
        self.reply = reply
        self.fail = fail
        self.calls = []

    async def __call__(self, config, messages):
        self.calls.append((config, messages))
        if self.fail:
            raise UpstreamError("Rate limit exceeded.", status_code=429)
        return ModelInvocationResult(self.reply, 12, 8, f"vendor/{config.model}")


class StaticRetriever:
    def __init__(self, chunks):
        self.chunks = chunks
        self.queries = []

    async def retrieve(self, query, owner_id, limit=None, threshold=None):
        self.queries.append((query, owner_id, limit, threshold))
        return self.chunks


def _linear(*middle, end_data=None):
    nodes = [{"id": "start", "type": "start"}, *middle, {"id": "end", "type": "end", "data": end_data or {}}]
    ids = [n["id"] for n in nodes]
    edges = [{"source": a, "target": b} for a, b in zip(ids, ids[1:])]
    return WorkflowDefinition.from_dict({"nodes": nodes, "edges": edges})


def _branching(condition, cycle_on_false=False):
    edges = [
        {"source": "start", "target": "ask"},
        {"source": "ask", "target": "check"},
        {"source": "check", "target": "yes", "sourceHandle": "true"},
        {"source": "check", "target": "ask" if cycle_on_false else "no", "sourceHandle": "false"},
        {"source": "yes", "target": "end"},
    ]
    nodes = [
        {"id": "start", "type": "start"},
        {"id": "ask", "type": "model-call", "data": {"model": "fast", "prompt": "Score {{topic}}"}},
        {"id": "check", "type": "conditional", "data": {"condition": condition}},
        {"id": "yes", "type": "action", "data": {"url": "https://hooks/{{llm_response}}", "method": "post"}},
        {"id": "end", "type": "end"},
    ]
    if not cycle_on_false:
        nodes.append({"id": "no", "type": "end"})
        edges.append({"source": "no", "target": "end"})
    return WorkflowDefinition.from_dict({"nodes": nodes, "edges": edges})


@pytest.mark.asyncio
async def test_linear_model_call_binds_output_and_mapping():
    model = ScriptedModel("Bonjour")
    definition = _linear(
        {
            "id": "translate",
            "type": "model-call",
            "data": {
                "model": {"model": "fast", "temperature": 0.1},
                "systemPrompt": "You translate.",
                "prompt": "Translate {{text}}",
                "outputVariable": "translation",
            },
        },
        end_data={"outputMapping": {"answer": "translation"}},
    )

    result = await WorkflowExecutor(invoke_model=model).execute(definition, {"text": "Hello"}, CALLER)

    assert result.output == {"answer": "Bonjour"}
    assert [e.node_id for e in result.trace] == ["start", "translate", "end"]
    assert all(e.elapsed_ms >= 0 for e in result.trace)
    config, messages = model.calls[0]
    assert config.temperature == 0.1
    assert messages == [
        {"role": "system", "content": "You translate."},
        {"role": "user", "content": "Translate Hello"},
    ]
    assert result.total_tokens == 20
    assert result.trace[1].result["model_alias"] == "fast"


@pytest.mark.asyncio
async def test_output_without_mapping_is_all_variables():
    definition = _linear({"id": "ask", "type": "llm", "data": {"model": "fast", "prompt": "hi"}})
    result = await WorkflowExecutor(invoke_model=ScriptedModel("yo")).execute(definition, {"x": 1}, CALLER)
    assert result.output == {"x": 1, "llm_response": "yo"}


@pytest.mark.asyncio
async def test_true_branch_runs_action_placeholder():
    definition = _branching("{{llm_response}} > 10")
    result = await WorkflowExecutor(invoke_model=ScriptedModel("42")).execute(definition, {"topic": "cats"}, CALLER)

    assert [e.node_id for e in result.trace] == ["start", "ask", "check", "yes", "end"]
    assert result.trace[2].result == {"condition": "42 > 10", "result": True}
    assert result.output["api_response"] == {"url": "https://hooks/42", "method": "POST", "status": "placeholder"}


@pytest.mark.asyncio
async def test_false_branch_is_followed():
    definition = _branching("{{llm_response}} > 100")
    result = await WorkflowExecutor(invoke_model=ScriptedModel("42")).execute(definition, {}, CALLER)
    assert [e.node_id for e in result.trace] == ["start", "ask", "check", "no", "end"]
    assert "api_response" not in result.output


@pytest.mark.asyncio
async def test_malformed_condition_takes_false_branch_unless_strict():
    definition = _branching("{{llm_response}} is big")
    lenient = await WorkflowExecutor(invoke_model=ScriptedModel()).execute(definition, {}, CALLER)
    assert lenient.trace[2].result["result"] is False

    with pytest.raises(WorkflowExecutionError) as exc_info:
        await WorkflowExecutor(invoke_model=ScriptedModel(), strict_conditions=True).execute(definition, {}, CALLER)
    assert isinstance(exc_info.value.cause, ValidationError)
    assert exc_info.value.node_id == "check"


@pytest.mark.asyncio
async def test_revisiting_a_non_end_node_is_a_cycle():
    definition = _branching("{{llm_response}} > 100", cycle_on_false=True)
    with pytest.raises(CircularDependencyError) as exc_info:
        await WorkflowExecutor(invoke_model=ScriptedModel("1")).execute(definition, {}, CALLER)
    assert exc_info.value.node_id == "ask"
    assert [e.node_id for e in exc_info.value.trace] == ["start", "ask", "check"]


@pytest.mark.asyncio
async def test_revisiting_an_end_node_terminates_normally():
    definition = WorkflowDefinition.from_dict(
        {
            "nodes": [
                {"id": "start", "type": "start"},
                {"id": "end", "type": "end", "data": {"outputMapping": {"hook": "api_response"}}},
                {"id": "notify", "type": "api", "data": {"url": "https://n"}},
            ],
            "edges": [
                {"source": "start", "target": "end"},
                {"source": "end", "target": "notify"},
                {"source": "notify", "target": "end"},
            ],
        }
    )
    result = await WorkflowExecutor().execute(definition, {}, CALLER)
    assert [e.node_id for e in result.trace] == ["start", "end", "notify"]
    assert result.output == {"hook": {"url": "https://n", "method": "GET", "status": "placeholder"}}


@pytest.mark.asyncio
async def test_node_failure_carries_partial_trace():
    definition = _branching("1 > 0")
    with pytest.raises(WorkflowExecutionError) as exc_info:
        await WorkflowExecutor(invoke_model=ScriptedModel(fail=True)).execute(definition, {}, CALLER)

    error = exc_info.value
    assert error.node_id == "ask"
    assert isinstance(error.cause, UpstreamError)
    assert [e.node_id for e in error.trace] == ["start", "ask"]
    assert error.trace[-1].error == "Rate limit exceeded."
    assert error.trace[0].error is None


@pytest.mark.asyncio
async def test_retrieval_node_stores_chunks_for_later_prompts():
    retriever = StaticRetriever([RetrievedChunk("Cats purr.", 0.91, "doc-1", {"start_char": 0})])
    model = ScriptedModel("ok")
    definition = _linear(
        {"id": "find", "type": "rag", "data": {"query": "about {{topic}}", "limit": 3}},
        {"id": "ask", "type": "model-call", "data": {"model": "fast", "prompt": "Use {{rag_results}}"}},
    )
    result = await WorkflowExecutor(invoke_model=model, retriever=retriever).execute(definition, {"topic": "cats"}, CALLER)

    assert retriever.queries == [("about cats", "user-1", 3, None)]
    assert result.trace[1].result == {"chunks": ["Cats purr."], "count": 1}
    assert "Cats purr." in model.calls[0][1][-1]["content"]


@pytest.mark.asyncio
async def test_retrieval_threshold_from_json_string_is_numeric():
    retriever = StaticRetriever([])
    definition = _linear({"id": "find", "type": "retrieval", "data": {"query": "x", "limit": "2", "threshold": "0.5"}})
    await WorkflowExecutor(retriever=retriever).execute(definition, {}, CALLER)

    query, owner, limit, threshold = retriever.queries[0]
    assert (limit, threshold) == (2, 0.5)
    assert isinstance(threshold, float)


@pytest.mark.asyncio
async def test_retrieval_without_retriever_fails_the_node():
    definition = _linear({"id": "find", "type": "retrieval", "data": {"query": "x"}})
    with pytest.raises(WorkflowExecutionError) as exc_info:
        await WorkflowExecutor().execute(definition, {}, CALLER)
    assert isinstance(exc_info.value.cause, ConfigurationError)


@pytest.mark.asyncio
async def test_custom_action_kind_is_dispatched():
    registry = default_registry()

    @registry.register("echo")
    async def echo(node, params, variables):
        return {"echo": params["text"], "seen": sorted(variables)}

    definition = _linear({"id": "say", "type": "action", "data": {"kind": "echo", "text": "{{name}}", "outputVariable": "said"}})
    result = await WorkflowExecutor(actions=registry).execute(definition, {"name": "Ada"}, CALLER)
    assert result.output["said"] == {"echo": "Ada", "seen": ["name"]}


@pytest.mark.asyncio
async def test_unknown_action_kind_fails():
    definition = _linear({"id": "say", "type": "action", "data": {"kind": "smtp"}})
    with pytest.raises(WorkflowExecutionError) as exc_info:
        await WorkflowExecutor(actions=ActionRegistry()).execute(definition, {}, CALLER)
    assert isinstance(exc_info.value.cause, ValidationError)
