"""Model Invocation Layer."""

from .gateway import AnthropicGateway, ModelGateway, OpenRouterGateway
from .providers import ModelConfig, ModelInvocationResult, ModelRates, cost_of, get_gateway, invoke, resolve_model_id

__all__ = [
    "AnthropicGateway",
    "ModelConfig",
    "ModelGateway",
    "ModelInvocationResult",
    "ModelRates",
    "OpenRouterGateway",
    "cost_of",
    "get_gateway",
    "invoke",
    "resolve_model_id",
]
