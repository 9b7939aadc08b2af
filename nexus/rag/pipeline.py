"""Document ingestion and similarity retrieval.

Ingestion is a staged commit: chunk/embedding pairs are buffered locally and
written in one batch, in the same transaction that marks the document
completed. Any failure before that commit discards the buffer and marks the
document failed, so a document never has a partial set of chunks.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any

import numpy as np
from pgvector.sqlalchemy import Vector
from sqlalchemy import Select, func, select, type_coerce
from sqlalchemy.orm import Session

from nexus.config import settings
from nexus.core.exceptions import IngestionFailure, NotFoundError, UpstreamError, ValidationError
from nexus.models import Document, DocumentChunk
from nexus.rag.chunking import chunk_text
from nexus.rag.embeddings import Embedder, get_embedder
from nexus.rag.extraction import extract_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetrievedChunk:
    content: str
    similarity: float
    document_id: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class DocumentPipeline:
    """Ingest and retrieve a caller's documents against one DB session."""

    def __init__(
        self,
        db: Session,
        embedder: Embedder | None = None,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
    ) -> None:
        self.db = db
        self._embedder = embedder
        self.chunk_size = chunk_size or settings.chunk_size
        self.chunk_overlap = settings.chunk_overlap if chunk_overlap is None else chunk_overlap

    @property
    def embedder(self) -> Embedder:
        if self._embedder is None:
            self._embedder = get_embedder()
        return self._embedder

    async def ingest(self, data: bytes, filename: str, owner_id: str, mime_type: str | None = None) -> str:
        """Create a document and process it; failures end up in its status."""
        document = Document(
            user_id=owner_id,
            filename=filename,
            file_size=len(data),
            mime_type=mime_type,
            status="processing",
        )
        self.db.add(document)
        self.db.commit()
        self.db.refresh(document)
        document_id = document.id
        logger.info("Ingesting document %s (%s, %s bytes)", document_id, filename, len(data))

        try:
            staged = await self._stage_chunks(document_id, data, filename, mime_type)
            self.db.add_all(staged)
            document.status = "completed"
            document.error_message = None
            self.db.commit()
        except Exception as exc:
            self.db.rollback()
            self._mark_failed(document_id, str(exc))
            logger.error("Ingestion failed for document %s: %s", document_id, exc)
            return str(document_id)

        logger.info("Document %s completed with %s chunks", document_id, len(staged))
        return str(document_id)

    async def _stage_chunks(
        self,
        document_id: Any,
        data: bytes,
        filename: str,
        mime_type: str | None,
    ) -> list[DocumentChunk]:
        text = extract_text(data, filename, mime_type)
        if not text or not text.strip():
            raise IngestionFailure("Document contains no extractable text", document_id=str(document_id))

        chunks = chunk_text(text, self.chunk_size, self.chunk_overlap)
        vectors = await self.embedder.embed([c.content for c in chunks])
        if len(vectors) != len(chunks):
            raise UpstreamError(f"Expected {len(chunks)} embeddings, received {len(vectors)}")

        return [
            DocumentChunk(
                document_id=document_id,
                chunk_index=chunk.index,
                content=chunk.content,
                embedding=[float(v) for v in vector],
                meta={"start_char": chunk.start, "end_char": chunk.end},
            )
            for chunk, vector in zip(chunks, vectors)
        ]

    def _mark_failed(self, document_id: Any, message: str) -> None:
        document = self.db.get(Document, document_id)
        if document is None:
            return
        document.status = "failed"
        document.error_message = message
        self.db.commit()

    async def retrieve(
        self,
        query: str,
        owner_id: str,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> list[RetrievedChunk]:
        """Most similar chunks from the caller's completed documents.

        On PostgreSQL the threshold, ordering and limit run in the database
        against the pgvector column; other backends score in memory.
        """
        if not query or not query.strip():
            raise ValidationError("Query is required")
        limit = settings.retrieval_limit if limit is None else limit
        threshold = settings.retrieval_threshold if threshold is None else float(threshold)
        if limit <= 0:
            raise ValidationError("limit must be positive")

        document_ids = [
            row.id
            for row in self.db.query(Document.id)
            .filter(Document.user_id == owner_id, Document.status == "completed")
            .all()
        ]
        if not document_ids:
            logger.debug("No completed documents for %s; skipping similarity search", owner_id)
            return []

        query_vector = [float(v) for v in (await self.embedder.embed([query]))[0]]
        if self.db.get_bind().dialect.name == "postgresql":
            return self._rank_in_database(query_vector, document_ids, limit, threshold)
        return self._rank_in_memory(query_vector, document_ids, limit, threshold)

    def _rank_in_database(
        self,
        query_vector: list[float],
        document_ids: list[Any],
        limit: int,
        threshold: float,
    ) -> list[RetrievedChunk]:
        rows = self.db.execute(similarity_statement(query_vector, document_ids, limit, threshold)).all()
        return [
            RetrievedChunk(
                content=chunk.content,
                similarity=1.0 - float(distance),
                document_id=str(chunk.document_id),
                metadata=dict(chunk.meta or {}),
            )
            for chunk, distance in rows
        ]

    def _rank_in_memory(
        self,
        query_vector: list[float],
        document_ids: list[Any],
        limit: int,
        threshold: float,
    ) -> list[RetrievedChunk]:
        vector = np.asarray(query_vector, dtype=float)
        rows = (
            self.db.query(DocumentChunk)
            .filter(DocumentChunk.document_id.in_(document_ids))
            .all()
        )
        rows = [r for r in rows if len(r.embedding or ()) == vector.shape[0]]
        if not rows:
            return []

        similarities = cosine_similarities(vector, np.asarray([r.embedding for r in rows], dtype=float))
        ranked = [i for i in np.argsort(-similarities, kind="stable") if similarities[i] >= threshold][:limit]
        return [
            RetrievedChunk(
                content=rows[i].content,
                similarity=float(similarities[i]),
                document_id=str(rows[i].document_id),
                metadata=dict(rows[i].meta or {}),
            )
            for i in ranked
        ]

    def list_documents(self, owner_id: str) -> list[Document]:
        return (
            self.db.query(Document)
            .filter(Document.user_id == owner_id)
            .order_by(Document.created_at.desc())
            .all()
        )

    def get_document(self, document_id: Any, owner_id: str) -> Document:
        try:
            key = document_id if isinstance(document_id, uuid.UUID) else uuid.UUID(str(document_id))
        except ValueError as exc:
            raise NotFoundError(f"Document {document_id} not found") from exc
        document = (
            self.db.query(Document)
            .filter(Document.id == key, Document.user_id == owner_id)
            .first()
        )
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        return document

    def delete_document(self, document_id: Any, owner_id: str) -> None:
        document = self.get_document(document_id, owner_id)
        self.db.delete(document)
        self.db.commit()


def cosine_similarities(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    return np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)


def similarity_statement(query_vector: list[float], document_ids: list[Any], limit: int, threshold: float) -> Select:
    """Top chunks by cosine distance, using pgvector's `<=>` operator."""
    distance = type_coerce(DocumentChunk.embedding, Vector()).cosine_distance(query_vector)
    return (
        select(DocumentChunk, distance.label("distance"))
        .where(DocumentChunk.document_id.in_(document_ids))
        .where(func.vector_dims(DocumentChunk.embedding) == len(query_vector))
        .where(distance <= 1.0 - threshold)
        .order_by(distance)
        .limit(limit)
    )
