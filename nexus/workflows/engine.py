"""Workflow Executor.

Walks a validated `WorkflowDefinition` one node at a time from its start
node, appending a trace entry per node. The first node failure aborts the run
with a `WorkflowExecutionError` carrying the partial trace; there is no retry.
"""
from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Protocol

from nexus.core.exceptions import CircularDependencyError, ConfigurationError, WorkflowExecutionError
from nexus.core.identity import CallerIdentity
from nexus.llm.providers import ModelConfig, ModelInvocationResult, invoke
from nexus.workflows.actions import ActionRegistry, default_registry
from nexus.workflows.schema import BranchRoute, NodeType, WorkflowDefinition, WorkflowNode
from nexus.workflows.templating import evaluate_condition, substitute, substitute_all

logger = logging.getLogger(__name__)

ModelInvoker = Callable[[ModelConfig, list[dict[str, str]]], Awaitable[ModelInvocationResult]]

DEFAULT_OUTPUT_VARIABLES = {
    NodeType.MODEL_CALL: "llm_response",
    NodeType.RETRIEVAL: "rag_results",
    NodeType.ACTION: "api_response",
}
DEFAULT_RETRIEVAL_LIMIT = 5


class Retriever(Protocol):
    async def retrieve(self, query: str, owner_id: str, limit: int | None = None, threshold: float | None = None) -> list[Any]:
        ...


@dataclass
class ExecutionContext:
    variables: dict[str, Any]
    node_results: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TraceEntry:
    node_id: str
    type: str
    elapsed_ms: int
    result: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class WorkflowResult:
    output: dict[str, Any]
    trace: tuple[TraceEntry, ...]

    @property
    def total_tokens(self) -> int:
        return sum(int((e.result or {}).get("tokens") or 0) for e in self.trace)

    def trace_dicts(self) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self.trace]


class WorkflowExecutor:
    def __init__(
        self,
        *,
        invoke_model: ModelInvoker | None = None,
        retriever: Retriever | None = None,
        actions: ActionRegistry | None = None,
        strict_conditions: bool = False,
    ) -> None:
        self.invoke_model = invoke_model or invoke
        self.retriever = retriever
        self.actions = actions or default_registry()
        self.strict_conditions = strict_conditions
        self._behaviors: dict[NodeType, Callable[..., Awaitable[dict[str, Any]]]] = {
            NodeType.START: self._run_marker,
            NodeType.END: self._run_marker,
            NodeType.MODEL_CALL: self._run_model_call,
            NodeType.RETRIEVAL: self._run_retrieval,
            NodeType.ACTION: self._run_action,
            NodeType.CONDITIONAL: self._run_conditional,
        }

    async def execute(
        self,
        definition: WorkflowDefinition,
        inputs: dict[str, Any],
        caller: CallerIdentity,
    ) -> WorkflowResult:
        context = ExecutionContext(variables=dict(inputs or {}))
        trace: list[TraceEntry] = []
        visited: set[str] = set()
        terminal: WorkflowNode | None = None
        started = time.perf_counter()
        logger.info("Workflow run started for %s (%s nodes)", caller.user_id, len(definition.nodes))

        current_id: str | None = definition.start_id
        while current_id is not None:
            node = definition.node(current_id)
            if current_id in visited:
                if node.type is NodeType.END:
                    terminal = node
                    break
                raise CircularDependencyError(current_id, trace)
            visited.add(current_id)

            node_started = time.perf_counter()
            try:
                result = await self._behaviors[node.type](node, context, caller)
            except Exception as exc:
                trace.append(TraceEntry(node.id, node.type.value, _elapsed_ms(node_started), error=str(exc)))
                logger.error("Workflow node %s (%s) failed: %s", node.id, node.type.value, exc)
                raise WorkflowExecutionError(node.id, exc, trace) from exc

            context.node_results[node.id] = result
            trace.append(TraceEntry(node.id, node.type.value, _elapsed_ms(node_started), result=result))

            route = definition.route(node.id)
            if isinstance(route, BranchRoute):
                current_id = route.select(bool(result["result"]))
            else:
                current_id = route.target
            if current_id is None:
                terminal = node

        output = self._collect_output(terminal, context)
        logger.info(
            "Workflow run finished for %s: %s steps in %sms",
            caller.user_id,
            len(trace),
            _elapsed_ms(started),
        )
        return WorkflowResult(output=output, trace=tuple(trace))

    @staticmethod
    def _collect_output(terminal: WorkflowNode | None, context: ExecutionContext) -> dict[str, Any]:
        mapping = (terminal.data.get("outputMapping") if terminal and terminal.type is NodeType.END else None)
        if not mapping:
            return dict(context.variables)
        return {key: context.variables.get(source) for key, source in mapping.items()}

    async def _run_marker(self, node: WorkflowNode, context: ExecutionContext, caller: CallerIdentity) -> dict[str, Any]:
        return {"type": node.type.value}

    async def _run_model_call(self, node: WorkflowNode, context: ExecutionContext, caller: CallerIdentity) -> dict[str, Any]:
        raw_model = node.data.get("model")
        config = ModelConfig(model=raw_model) if isinstance(raw_model, str) else ModelConfig.from_dict(raw_model or {})

        messages: list[dict[str, str]] = []
        if node.data.get("systemPrompt"):
            messages.append({"role": "system", "content": substitute(node.data["systemPrompt"], context.variables)})
        messages.append({"role": "user", "content": substitute(node.data.get("prompt"), context.variables)})

        response = await self.invoke_model(config, messages)
        context.variables[_output_variable(node)] = response.content
        return {
            "content": response.content,
            "tokens": response.total_tokens,
            "input_tokens": response.input_tokens,
            "output_tokens": response.output_tokens,
            "model": response.resolved_model_id,
            "model_alias": config.model,
        }

    async def _run_retrieval(self, node: WorkflowNode, context: ExecutionContext, caller: CallerIdentity) -> dict[str, Any]:
        if self.retriever is None:
            raise ConfigurationError("Retrieval node reached but no document retriever is configured")
        query = substitute(node.data.get("query"), context.variables)
        limit = int(node.data.get("limit") or DEFAULT_RETRIEVAL_LIMIT)
        threshold = node.data.get("threshold")
        threshold = None if threshold in (None, "") else float(threshold)

        chunks = await self.retriever.retrieve(query, caller.user_id, limit, threshold)
        stored = [c.to_dict() if hasattr(c, "to_dict") else c for c in chunks]
        context.variables[_output_variable(node)] = stored
        return {"chunks": [c["content"] for c in stored], "count": len(stored)}

    async def _run_action(self, node: WorkflowNode, context: ExecutionContext, caller: CallerIdentity) -> dict[str, Any]:
        params = substitute_all(node.data, context.variables)
        result = await self.actions.run(node, params, context.variables)
        context.variables[_output_variable(node)] = result
        return result

    async def _run_conditional(self, node: WorkflowNode, context: ExecutionContext, caller: CallerIdentity) -> dict[str, Any]:
        condition = substitute(node.data.get("condition"), context.variables)
        outcome = evaluate_condition(condition, strict=self.strict_conditions)
        return {"condition": condition, "result": outcome}


def _output_variable(node: WorkflowNode) -> str:
    return str(node.data.get("outputVariable") or DEFAULT_OUTPUT_VARIABLES[node.type])


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.perf_counter() - started) * 1000))
