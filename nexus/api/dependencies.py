"""Shared API dependencies: caller identity and process-wide collaborators."""
from __future__ import annotations

from fastapi import Header, Request

from nexus.core.exceptions import ConfigurationError, ValidationError
from nexus.core.identity import CallerIdentity
from nexus.guardrails.policy import PolicyCache
from nexus.llm.gateway import ModelGateway
from nexus.llm.providers import get_gateway
from nexus.rag.embeddings import Embedder, get_embedder

TRUE_VALUES = {"1", "true", "yes"}


def get_caller(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
    x_guardrail_bypass: str | None = Header(default=None),
) -> CallerIdentity:
    """Identity is asserted by the upstream gateway; nothing is verified here."""
    if not x_user_id:
        raise ValidationError("X-User-Id header is required")
    return CallerIdentity(
        user_id=x_user_id,
        role=x_user_role,
        can_bypass_guardrails=(x_guardrail_bypass or "").strip().lower() in TRUE_VALUES,
    )


def get_policy_cache(request: Request) -> PolicyCache:
    cache = getattr(request.app.state, "policy_cache", None)
    if cache is None:
        raise ConfigurationError("Guardrail policy cache is not initialised")
    return cache


def get_model_gateway() -> ModelGateway:
    return get_gateway()


def get_document_embedder() -> Embedder:
    return get_embedder()
