"""
RAG API Routes
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from nexus.api.dependencies import get_caller, get_document_embedder
from nexus.core.identity import CallerIdentity
from nexus.database import get_db
from nexus.rag.embeddings import Embedder
from nexus.rag.pipeline import DocumentPipeline
from nexus.schemas.document import RagQueryRequest

router = APIRouter()


@router.post("/query")
async def query_documents(
    payload: RagQueryRequest,
    db: Session = Depends(get_db),
    caller: CallerIdentity = Depends(get_caller),
    embedder: Embedder = Depends(get_document_embedder),
) -> dict[str, Any]:
    chunks = await DocumentPipeline(db, embedder=embedder).retrieve(
        payload.query,
        caller.user_id,
        limit=payload.limit,
        threshold=payload.threshold,
    )
    return {"results": [c.to_dict() for c in chunks], "count": len(chunks)}
