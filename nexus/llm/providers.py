"""Model invocation and token cost accounting."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Any, Protocol

from nexus.config import settings
from nexus.core.exceptions import ValidationError
from nexus.llm.gateway import AnthropicGateway, ModelGateway, OpenRouterGateway

logger = logging.getLogger(__name__)

VALID_ROLES = {"system", "user", "assistant"}


@dataclass(frozen=True)
class ModelConfig:
    model: str
    provider: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModelConfig":
        """Accept both snake_case and the camelCase keys workflow JSON uses."""
        if not isinstance(data, dict) or not data.get("model"):
            raise ValidationError("Model configuration requires a 'model' alias")
        return cls(
            model=str(data["model"]),
            provider=data.get("provider"),
            temperature=data.get("temperature"),
            max_tokens=data.get("max_tokens", data.get("maxTokens")),
        )


@dataclass(frozen=True)
class ModelInvocationResult:
    content: str
    input_tokens: int
    output_tokens: int
    resolved_model_id: str

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class ModelRates:
    cost_per_1k_input_tokens: float
    cost_per_1k_output_tokens: float


class HasRates(Protocol):
    cost_per_1k_input_tokens: Any
    cost_per_1k_output_tokens: Any


@lru_cache
def get_gateway() -> ModelGateway:
    """Return the configured process-wide gateway."""
    if settings.model_gateway == "anthropic":
        return AnthropicGateway()
    return OpenRouterGateway(
        api_key=settings.openrouter_api_key.get_secret_value() if settings.openrouter_api_key else None,
        base_url=str(settings.openrouter_base_url),
        referer=settings.app_url,
        timeout=settings.llm_timeout_seconds,
    )


def resolve_model_id(alias: str, translations: dict[str, str]) -> str:
    """Translate an internal alias, falling back to the alias itself."""
    return translations.get(alias, alias)


async def invoke(
    config: ModelConfig,
    messages: list[dict[str, str]],
    gateway: ModelGateway | None = None,
) -> ModelInvocationResult:
    """Issue one chat call with the full ordered message list.

    Raises UpstreamError on any gateway failure; never retries.
    """
    if not config.model:
        raise ValidationError("Model alias is required")
    if not messages:
        raise ValidationError("At least one message is required")
    for message in messages:
        if message.get("role") not in VALID_ROLES:
            raise ValidationError(f"Unsupported message role: {message.get('role')!r}")

    gateway = gateway or get_gateway()
    model_id = resolve_model_id(config.model, gateway.translations)
    temperature = config.temperature if config.temperature is not None else settings.default_temperature

    raw = await gateway.complete(
        model_id,
        list(messages),
        temperature=temperature,
        max_tokens=config.max_tokens,
    )
    result = ModelInvocationResult(
        content=raw["content"],
        input_tokens=raw["input_tokens"],
        output_tokens=raw["output_tokens"],
        resolved_model_id=raw["model"],
    )
    logger.debug(
        "Invoked %s via %s (alias %s): %s in / %s out tokens",
        result.resolved_model_id,
        gateway.name,
        config.model,
        result.input_tokens,
        result.output_tokens,
    )
    return result


def cost_of(model: HasRates, input_tokens: int, output_tokens: int) -> float:
    """Linear per-1000-token cost. No rounding."""
    input_rate = _as_float(model.cost_per_1k_input_tokens)
    output_rate = _as_float(model.cost_per_1k_output_tokens)
    return (input_tokens / 1000) * input_rate + (output_tokens / 1000) * output_rate


def _as_float(value: Any) -> float:
    # Numeric columns come back as Decimal, JSON payloads as str.
    if value is None:
        return 0.0
    return float(Decimal(str(value)))
