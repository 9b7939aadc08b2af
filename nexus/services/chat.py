"""Single chat turn: guardrails, optional retrieval context, one model call."""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import asdict, dataclass
from typing import Any, Sequence

from sqlalchemy.orm import Session

from nexus.core.exceptions import NotFoundError, UpstreamError, ValidationError
from nexus.core.identity import CallerIdentity
from nexus.guardrails.enforcement import apply_guardrails, guard_turns
from nexus.guardrails.policy import PolicyCache
from nexus.llm.gateway import ModelGateway
from nexus.llm.providers import ModelConfig, cost_of, invoke
from nexus.models import LLMModel, LLMRequest
from nexus.rag.pipeline import DocumentPipeline

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatResult:
    success: bool
    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    latency_ms: int = 0
    pii_detected: bool = False
    pii_types: tuple[str, ...] = ()
    warning: str | None = None
    original_text: str | None = None
    redacted_text: str | None = None
    context_chunks: int = 0
    error: str | None = None
    hint: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["pii_types"] = list(self.pii_types)
        return data


def list_models(db: Session) -> list[LLMModel]:
    return (
        db.query(LLMModel)
        .filter(LLMModel.is_active.is_(True))
        .order_by(LLMModel.display_name.asc())
        .all()
    )


def resolve_model(db: Session, model_ref: str) -> LLMModel:
    """Look a catalog row up by id, falling back to its alias."""
    if not model_ref:
        raise ValidationError("Model is required")
    row = None
    try:
        row = db.get(LLMModel, uuid.UUID(str(model_ref)))
    except ValueError:
        row = db.query(LLMModel).filter(LLMModel.model_name == model_ref).first()
    if row is None or not row.is_active:
        raise NotFoundError(f"Model {model_ref} not found")
    return row


def build_context(chunks: Sequence[Any]) -> str:
    lines = [f"[{i}] {chunk.content}" for i, chunk in enumerate(chunks, start=1)]
    return "Use the following context to answer the question:\n\n" + "\n\n".join(lines)


async def send_message(
    db: Session,
    caller: CallerIdentity,
    message: str,
    model: LLMModel,
    policy_cache: PolicyCache,
    *,
    history: Sequence[dict[str, str]] = (),
    session_id: str | None = None,
    use_rag: bool = False,
    pipeline: DocumentPipeline | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
    gateway: ModelGateway | None = None,
) -> ChatResult:
    """Run one turn and record it.

    Guardrails cover `history` as well as `message`; BlockedByPolicy
    propagates before any model call. Every invocation
    attempt is recorded; gateway failures come back as an unsuccessful
    result, anything else is re-raised after recording.
    """
    if not message or not message.strip():
        raise ValidationError("Message is required")

    guarded = apply_guardrails(message, policy_cache, bypass=caller.can_bypass_guardrails)
    prior_turns = guard_turns(history, policy_cache, bypass=caller.can_bypass_guardrails)

    messages: list[dict[str, str]] = []
    context_chunks = 0
    if use_rag:
        pipeline = pipeline or DocumentPipeline(db)
        try:
            chunks = await pipeline.retrieve(guarded.text, caller.user_id)
        except Exception as exc:
            logger.warning("Retrieval for chat context failed, continuing without it: %s", exc)
            chunks = []
        if chunks:
            messages.append({"role": "system", "content": build_context(chunks)})
            context_chunks = len(chunks)

    messages.extend(prior_turns)
    messages.append({"role": "user", "content": guarded.text})

    config = ModelConfig(
        model=model.model_name,
        provider=model.provider,
        temperature=temperature,
        max_tokens=max_tokens,
    )
    started = time.perf_counter()
    request = LLMRequest(
        user_id=caller.user_id,
        model_id=model.id,
        session_id=session_id,
        prompt=guarded.text,
        pii_detected=guarded.pii_detected,
        pii_types=guarded.detected_categories or None,
    )
    guard_fields = dict(
        pii_detected=guarded.pii_detected,
        pii_types=tuple(guarded.detected_categories),
        warning=guarded.warning,
        original_text=guarded.original_text if guarded.was_redacted else None,
        redacted_text=guarded.redacted_text if guarded.was_redacted else None,
        context_chunks=context_chunks,
    )

    try:
        response = await invoke(config, messages, gateway)
    except Exception as exc:
        latency_ms = int((time.perf_counter() - started) * 1000)
        logger.error("Chat turn for %s failed on %s: %s", caller.user_id, model.model_name, exc)
        request.status = "error"
        request.error_message = str(exc)
        request.latency_ms = latency_ms
        db.add(request)
        db.commit()
        if not isinstance(exc, UpstreamError):
            raise
        return ChatResult(
            success=False,
            content="",
            model=model.model_name,
            latency_ms=latency_ms,
            error=str(exc),
            hint=exc.hint,
            **guard_fields,
        )

    latency_ms = int((time.perf_counter() - started) * 1000)
    cost = cost_of(model, response.input_tokens, response.output_tokens)
    request.response = response.content
    request.input_tokens = response.input_tokens
    request.output_tokens = response.output_tokens
    request.cost = cost
    request.latency_ms = latency_ms
    request.status = "success"
    db.add(request)
    db.commit()

    return ChatResult(
        success=True,
        content=response.content,
        model=response.resolved_model_id,
        input_tokens=response.input_tokens,
        output_tokens=response.output_tokens,
        cost=cost,
        latency_ms=latency_ms,
        **guard_fields,
    )
