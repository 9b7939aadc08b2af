"""
Documents API Routes
Upload, list and delete a caller's documents
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, File, UploadFile, status
from sqlalchemy.orm import Session

from nexus.api.dependencies import get_caller, get_document_embedder
from nexus.core.identity import CallerIdentity
from nexus.database import get_db
from nexus.rag.embeddings import Embedder
from nexus.rag.pipeline import DocumentPipeline
from nexus.schemas.document import DocumentSchema

router = APIRouter()


@router.post("/upload", status_code=status.HTTP_201_CREATED)
async def upload_document(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    caller: CallerIdentity = Depends(get_caller),
    embedder: Embedder = Depends(get_document_embedder),
) -> dict[str, Any]:
    data = await file.read()
    pipeline = DocumentPipeline(db, embedder=embedder)
    document_id = await pipeline.ingest(data, file.filename or "upload", caller.user_id, file.content_type)
    document = pipeline.get_document(document_id, caller.user_id)
    return DocumentSchema.model_validate(document).model_dump(mode="json")


@router.get("/")
async def get_documents(
    db: Session = Depends(get_db),
    caller: CallerIdentity = Depends(get_caller),
) -> list[dict[str, Any]]:
    pipeline = DocumentPipeline(db)
    return [DocumentSchema.model_validate(d).model_dump(mode="json") for d in pipeline.list_documents(caller.user_id)]


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    document_id: str,
    db: Session = Depends(get_db),
    caller: CallerIdentity = Depends(get_caller),
) -> None:
    DocumentPipeline(db).delete_document(document_id, caller.user_id)
