"""
Agents API Routes
Manage stored workflows and run them
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from nexus.api.dependencies import get_caller, get_document_embedder, get_model_gateway
from nexus.core.identity import CallerIdentity
from nexus.database import get_db
from nexus.llm.gateway import ModelGateway
from nexus.llm.providers import invoke
from nexus.rag.embeddings import Embedder
from nexus.rag.pipeline import DocumentPipeline
from nexus.schemas.agent import AgentExecuteRequest, AgentSave, AgentToggle
from nexus.services.workflow_engine import (
    execute_agent,
    get_agent,
    get_execution,
    list_agents,
    save_agent,
    toggle_agent,
)
from nexus.workflows.engine import WorkflowExecutor

router = APIRouter()


@router.get("/")
async def get_agents(active_only: bool = False, db: Session = Depends(get_db)) -> list[dict[str, Any]]:
    return list_agents(db, active_only=active_only)


@router.post("/")
async def post_agent(
    payload: AgentSave,
    db: Session = Depends(get_db),
    caller: CallerIdentity = Depends(get_caller),
) -> dict[str, Any]:
    return save_agent(db, payload.model_dump(), caller)


@router.post("/execute")
async def post_execute(
    payload: AgentExecuteRequest,
    db: Session = Depends(get_db),
    caller: CallerIdentity = Depends(get_caller),
    gateway: ModelGateway = Depends(get_model_gateway),
    embedder: Embedder = Depends(get_document_embedder),
) -> dict[str, Any]:
    async def invoke_model(config, messages):
        return await invoke(config, messages, gateway)

    executor = WorkflowExecutor(
        invoke_model=invoke_model,
        retriever=DocumentPipeline(db, embedder=embedder),
    )
    return await execute_agent(db, payload.agent_id, payload.input, caller, executor=executor)


@router.get("/executions/{execution_id}")
async def execution_detail(execution_id: str, db: Session = Depends(get_db)) -> dict[str, Any]:
    return get_execution(db, execution_id)


@router.get("/{agent_id}")
async def agent_detail(agent_id: str, db: Session = Depends(get_db)) -> dict[str, Any]:
    return get_agent(db, agent_id)


@router.patch("/{agent_id}")
async def patch_agent(agent_id: str, payload: AgentToggle, db: Session = Depends(get_db)) -> dict[str, Any]:
    return toggle_agent(db, agent_id, payload.is_active)
