"""
Chat API Routes
Single turns and side-by-side model comparison
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from nexus.api.dependencies import get_caller, get_document_embedder, get_model_gateway, get_policy_cache
from nexus.core.identity import CallerIdentity
from nexus.database import get_db
from nexus.guardrails.policy import PolicyCache
from nexus.llm.gateway import ModelGateway
from nexus.rag.embeddings import Embedder
from nexus.rag.pipeline import DocumentPipeline
from nexus.schemas.chat import ChatMessageRequest, CompareRequest
from nexus.services.chat import list_models, resolve_model, send_message
from nexus.services.comparison import compare_models

router = APIRouter()


@router.get("/models")
async def get_models(db: Session = Depends(get_db)) -> list[dict[str, Any]]:
    return [
        {
            "id": str(m.id),
            "provider": m.provider,
            "model_name": m.model_name,
            "display_name": m.display_name,
            "cost_per_1k_input_tokens": float(m.cost_per_1k_input_tokens or 0),
            "cost_per_1k_output_tokens": float(m.cost_per_1k_output_tokens or 0),
        }
        for m in list_models(db)
    ]


@router.post("/message")
async def post_message(
    payload: ChatMessageRequest,
    db: Session = Depends(get_db),
    caller: CallerIdentity = Depends(get_caller),
    policy_cache: PolicyCache = Depends(get_policy_cache),
    gateway: ModelGateway = Depends(get_model_gateway),
    embedder: Embedder = Depends(get_document_embedder),
) -> dict[str, Any]:
    model = resolve_model(db, payload.model_id)
    result = await send_message(
        db,
        caller,
        payload.message,
        model,
        policy_cache,
        history=[turn.model_dump() for turn in payload.history],
        session_id=payload.session_id,
        use_rag=payload.use_rag,
        pipeline=DocumentPipeline(db, embedder=embedder) if payload.use_rag else None,
        temperature=payload.temperature,
        max_tokens=payload.max_tokens,
        gateway=gateway,
    )
    return result.to_dict()


@router.post("/compare")
async def post_compare(
    payload: CompareRequest,
    db: Session = Depends(get_db),
    caller: CallerIdentity = Depends(get_caller),
    policy_cache: PolicyCache = Depends(get_policy_cache),
    gateway: ModelGateway = Depends(get_model_gateway),
) -> dict[str, Any]:
    models = [resolve_model(db, model_id) for model_id in payload.model_ids]
    report = await compare_models(db, caller, payload.message, models, policy_cache, gateway)
    return {
        "results": [r.to_dict() for r in report.results],
        "total_cost": report.total_cost,
        "total_tokens": report.total_tokens,
        "pii_detected": report.pii_detected,
        "pii_types": report.pii_types,
    }
