"""Fan one prompt out to several models and aggregate the results."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Sequence

from sqlalchemy.orm import Session

from nexus.core.identity import CallerIdentity
from nexus.guardrails.enforcement import apply_guardrails
from nexus.guardrails.policy import PolicyCache
from nexus.llm.gateway import ModelGateway
from nexus.llm.providers import ModelConfig, cost_of, invoke
from nexus.models import LLMModel, LLMRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ComparisonResult:
    model_id: str
    model_name: str
    provider: str
    content: str
    input_tokens: int
    output_tokens: int
    cost: float
    success: bool
    latency_ms: int
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ComparisonReport:
    results: list[ComparisonResult]
    pii_detected: bool
    pii_types: list[str]

    @property
    def total_cost(self) -> float:
        return sum(r.cost for r in self.results)

    @property
    def total_tokens(self) -> int:
        return sum(r.input_tokens + r.output_tokens for r in self.results)


async def _invoke_target(
    model: LLMModel,
    messages: list[dict[str, str]],
    gateway: ModelGateway | None,
) -> ComparisonResult:
    started = time.perf_counter()
    response = await invoke(ModelConfig(model=model.model_name, provider=model.provider), messages, gateway)
    return ComparisonResult(
        model_id=str(model.id),
        model_name=model.display_name,
        provider=model.provider,
        content=response.content,
        input_tokens=response.input_tokens,
        output_tokens=response.output_tokens,
        cost=cost_of(model, response.input_tokens, response.output_tokens),
        success=True,
        latency_ms=int((time.perf_counter() - started) * 1000),
    )


async def fan_out(
    models: Sequence[LLMModel],
    messages: list[dict[str, str]],
    gateway: ModelGateway | None = None,
) -> list[ComparisonResult]:
    """Invoke every model concurrently; one result per model, in input order."""
    started = time.perf_counter()
    settled = await asyncio.gather(
        *(_invoke_target(model, messages, gateway) for model in models),
        return_exceptions=True,
    )

    results: list[ComparisonResult] = []
    for model, outcome in zip(models, settled):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            logger.warning("Comparison target %s failed: %s", model.model_name, outcome)
            results.append(
                ComparisonResult(
                    model_id=str(model.id),
                    model_name=model.display_name,
                    provider=model.provider,
                    content=f"Error: {outcome}",
                    input_tokens=0,
                    output_tokens=0,
                    cost=0.0,
                    success=False,
                    latency_ms=int((time.perf_counter() - started) * 1000),
                    error=str(outcome),
                )
            )
        else:
            results.append(outcome)
    return results


async def compare_models(
    db: Session,
    caller: CallerIdentity,
    message: str,
    models: Sequence[LLMModel],
    policy_cache: PolicyCache,
    gateway: ModelGateway | None = None,
) -> ComparisonReport:
    """Guard the prompt once, fan out, then record every attempt."""
    guarded = apply_guardrails(message, policy_cache, bypass=caller.can_bypass_guardrails)
    messages = [{"role": "user", "content": guarded.text}]

    results = await fan_out(models, messages, gateway)

    for result in results:
        db.add(
            LLMRequest(
                user_id=caller.user_id,
                model_id=_model_key(models, result.model_id),
                prompt=guarded.text,
                response=result.content if result.success else None,
                input_tokens=result.input_tokens,
                output_tokens=result.output_tokens,
                cost=result.cost,
                pii_detected=guarded.pii_detected,
                pii_types=guarded.detected_categories or None,
                latency_ms=result.latency_ms,
                status="success" if result.success else "error",
                error_message=result.error,
            )
        )
    db.commit()

    return ComparisonReport(
        results=results,
        pii_detected=guarded.pii_detected,
        pii_types=guarded.detected_categories,
    )


def _model_key(models: Sequence[LLMModel], model_id: str) -> Any:
    for model in models:
        if str(model.id) == model_id:
            return model.id
    return None
