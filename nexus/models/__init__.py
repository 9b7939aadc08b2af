"""
SQLAlchemy models for the Nexus orchestration core.
"""
from __future__ import annotations

import uuid

from pgvector.sqlalchemy import Vector
from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, Numeric, Text, Uuid
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

EMBEDDING_TYPE = JSON().with_variant(Vector(), "postgresql")


class Guardrail(Base):
    __tablename__ = "guardrails"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False, unique=True)
    enabled = Column(Boolean, default=True)
    pii_types = Column(JSON, default=list)
    action = Column(Text, default="redact")
    allowlist_patterns = Column(JSON, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class LLMModel(Base):
    __tablename__ = "llm_models"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    provider = Column(Text, nullable=False)
    model_name = Column(Text, nullable=False)
    display_name = Column(Text, nullable=False)
    cost_per_1k_input_tokens = Column(Numeric(12, 6), default=0)
    cost_per_1k_output_tokens = Column(Numeric(12, 6), default=0)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class LLMRequest(Base):
    __tablename__ = "llm_requests"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False)
    model_id = Column(Uuid, ForeignKey("llm_models.id", ondelete="SET NULL"))
    session_id = Column(Text)
    prompt = Column(Text)
    response = Column(Text)
    input_tokens = Column(Integer, default=0)
    output_tokens = Column(Integer, default=0)
    cost = Column(Float, default=0.0)
    pii_detected = Column(Boolean, default=False)
    pii_types = Column(JSON)
    latency_ms = Column(Integer)
    status = Column(Text, nullable=False)
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Document(Base):
    __tablename__ = "documents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    filename = Column(Text, nullable=False)
    file_size = Column(Integer)
    mime_type = Column(Text)
    status = Column(Text, nullable=False, default="processing")
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    chunks = relationship("DocumentChunk", back_populates="document", cascade="all, delete-orphan")


class DocumentChunk(Base):
    __tablename__ = "document_chunks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id = Column(Uuid, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    chunk_index = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    # Native vector column on PostgreSQL; JSON list elsewhere.
    embedding = Column(EMBEDDING_TYPE, nullable=False)
    meta = Column("metadata", JSON, default=dict)

    document = relationship("Document", back_populates="chunks")


class Agent(Base):
    __tablename__ = "agents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    description = Column(Text)
    workflow_config = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, default=True)
    created_by = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class AgentExecution(Base):
    __tablename__ = "agent_executions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    agent_id = Column(Uuid, ForeignKey("agents.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Text, nullable=False)
    input_data = Column(JSON, default=dict)
    output_data = Column(JSON)
    execution_trace = Column(JSON)
    status = Column(Text, nullable=False, default="running")
    error_message = Column(Text)
    execution_time_ms = Column(Integer)
    tokens_used = Column(Integer, default=0)
    cost = Column(Float, default=0.0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True))
