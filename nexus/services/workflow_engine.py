"""Agent persistence: CRUD, activation and recorded workflow runs with token and cost totals."""
from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from nexus.core.exceptions import NotFoundError, ValidationError
from nexus.core.identity import CallerIdentity
from nexus.llm.providers import cost_of
from nexus.models import Agent, AgentExecution, LLMModel
from nexus.rag.pipeline import DocumentPipeline
from nexus.workflows.engine import TraceEntry, WorkflowExecutor
from nexus.workflows.schema import NodeType, WorkflowDefinition

logger = logging.getLogger(__name__)


def _agent_dict(row: Agent) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "name": row.name,
        "description": row.description,
        "workflow_config": row.workflow_config or {},
        "is_active": row.is_active,
        "created_by": row.created_by,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


def _execution_dict(row: AgentExecution) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "agent_id": str(row.agent_id),
        "status": row.status,
        "output": row.output_data,
        "trace": row.execution_trace or [],
        "error": row.error_message,
        "execution_time_ms": row.execution_time_ms,
        "tokens_used": row.tokens_used,
        "cost": row.cost,
    }


def _load_agent(db: Session, agent_id: Any) -> Agent:
    try:
        key = agent_id if isinstance(agent_id, uuid.UUID) else uuid.UUID(str(agent_id))
    except ValueError as exc:
        raise NotFoundError(f"Agent {agent_id} not found") from exc
    row = db.get(Agent, key)
    if row is None:
        raise NotFoundError(f"Agent {agent_id} not found")
    return row


def list_agents(db: Session, active_only: bool = False) -> list[dict[str, Any]]:
    query = db.query(Agent)
    if active_only:
        query = query.filter(Agent.is_active.is_(True))
    return [_agent_dict(a) for a in query.order_by(Agent.created_at.desc()).all()]


def get_agent(db: Session, agent_id: Any) -> dict[str, Any]:
    return _agent_dict(_load_agent(db, agent_id))


def save_agent(db: Session, payload: dict[str, Any], caller: CallerIdentity) -> dict[str, Any]:
    """Create an agent, or update it when `payload["id"]` names an existing one.

    The workflow definition is validated before anything is written.
    """
    config = payload.get("workflow_config") or {}
    WorkflowDefinition.from_dict(config)

    if payload.get("id"):
        row = _load_agent(db, payload["id"])
        row.name = payload.get("name") or row.name
        row.description = payload.get("description", row.description)
        row.workflow_config = config
        row.is_active = bool(payload.get("is_active", row.is_active))
        row.updated_at = datetime.now(timezone.utc)
    else:
        if not payload.get("name"):
            raise ValidationError("Agent name is required")
        row = Agent(
            name=payload["name"],
            description=payload.get("description"),
            workflow_config=config,
            is_active=bool(payload.get("is_active", True)),
            created_by=caller.user_id,
        )
        db.add(row)
    db.commit()
    db.refresh(row)
    return _agent_dict(row)


def toggle_agent(db: Session, agent_id: Any, is_active: bool) -> dict[str, Any]:
    row = _load_agent(db, agent_id)
    row.is_active = is_active
    row.updated_at = datetime.now(timezone.utc)
    db.commit()
    return {"success": True, "agent_id": str(row.id), "is_active": is_active}


def trace_cost(db: Session, trace: tuple[TraceEntry, ...]) -> float:
    """Sum model-call cost using catalog rates for each alias used."""
    rates: dict[str, LLMModel | None] = {}
    total = 0.0
    for entry in trace:
        if entry.type != NodeType.MODEL_CALL.value or not entry.result:
            continue
        alias = entry.result.get("model_alias")
        if alias not in rates:
            rates[alias] = db.query(LLMModel).filter(LLMModel.model_name == alias).first()
        model = rates[alias]
        if model is None:
            continue
        total += cost_of(model, entry.result.get("input_tokens", 0), entry.result.get("output_tokens", 0))
    return total


async def execute_agent(
    db: Session,
    agent_id: Any,
    inputs: dict[str, Any],
    caller: CallerIdentity,
    executor: WorkflowExecutor | None = None,
) -> dict[str, Any]:
    agent = _load_agent(db, agent_id)
    if not agent.is_active:
        raise ValidationError(f"Agent {agent.name} is not active")

    execution = AgentExecution(agent_id=agent.id, user_id=caller.user_id, input_data=inputs or {}, status="running")
    db.add(execution)
    db.commit()
    db.refresh(execution)

    executor = executor or WorkflowExecutor(retriever=DocumentPipeline(db))
    started = time.perf_counter()
    try:
        definition = WorkflowDefinition.from_dict(agent.workflow_config or {})
        result = await executor.execute(definition, inputs or {}, caller)
    except Exception as exc:
        trace = getattr(exc, "trace", ())
        execution.status = "failed"
        execution.error_message = str(exc)
        execution.execution_trace = [e.to_dict() if isinstance(e, TraceEntry) else e for e in trace]
        execution.execution_time_ms = int((time.perf_counter() - started) * 1000)
        execution.completed_at = datetime.now(timezone.utc)
        db.commit()
        logger.error("Agent %s execution %s failed: %s", agent.id, execution.id, exc)
        raise

    execution.status = "completed"
    execution.output_data = result.output
    execution.execution_trace = result.trace_dicts()
    execution.execution_time_ms = int((time.perf_counter() - started) * 1000)
    execution.tokens_used = result.total_tokens
    execution.cost = trace_cost(db, result.trace)
    execution.completed_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(execution)
    return _execution_dict(execution)


def get_execution(db: Session, execution_id: Any) -> dict[str, Any]:
    try:
        key = uuid.UUID(str(execution_id))
    except ValueError as exc:
        raise NotFoundError(f"Execution {execution_id} not found") from exc
    row = db.get(AgentExecution, key)
    if row is None:
        raise NotFoundError(f"Execution {execution_id} not found")
    return _execution_dict(row)
