"""Transport backends for chat-style model calls.

Every gateway issues exactly one upstream call per `complete` and converts
failures into `UpstreamError` with the upstream status (when there is one) and
a corrective hint. Nothing here retries.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx
from anthropic import APIConnectionError, APIStatusError, AsyncAnthropic

from nexus.core.exceptions import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

# Internal alias -> gateway-specific identifier.
OPENROUTER_MODELS: dict[str, str] = {
    "gemini-2.0-flash-exp:free": "google/gemini-2.0-flash-exp:free",
    "deepseek-v3.1": "deepseek/deepseek-chat-v3.1",
    "gpt-oss-20b": "openai/gpt-oss-20b",
    "minimax-m2:free": "minimax/minimax-m2:free",
}

ANTHROPIC_MODELS: dict[str, str] = {
    "claude-sonnet": "claude-sonnet-4-20250514",
    "claude-haiku": "claude-haiku-4-5-20251001",
    "claude-opus": "claude-opus-4-5-20251101",
}


def classify_upstream_failure(
    gateway: str,
    model_id: str,
    status_code: int | None,
    message: str,
) -> UpstreamError:
    """Map an upstream status/message pair to a typed error with a hint."""
    if status_code == 400 and "not a valid model id" in message.lower():
        return UpstreamError(
            f"Invalid model ID: {model_id}",
            status_code=status_code,
            hint=f"Check the model identifiers the {gateway} gateway serves.",
        )
    if status_code in (401, 403):
        return UpstreamError(
            "Authentication failed.",
            status_code=status_code,
            hint="Check your API key configuration.",
        )
    if status_code == 429:
        return UpstreamError(
            "Rate limit exceeded.",
            status_code=status_code,
            hint=f"The {gateway} gateway is temporarily limiting requests. Wait a moment and try again.",
        )
    return UpstreamError(
        f"LLM API error ({status_code or 'unknown'}): {message}",
        status_code=status_code,
        hint=None,
    )


class ModelGateway(ABC):
    """One chat-completion backend."""

    name: str = "gateway"
    translations: dict[str, str] = {}

    @abstractmethod
    async def complete(
        self,
        model_id: str,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int | None,
    ) -> dict[str, Any]:
        """Return {"content", "input_tokens", "output_tokens", "model"}."""


class OpenRouterGateway(ModelGateway):
    """OpenAI-compatible chat completions over httpx."""

    name = "openrouter"
    translations = OPENROUTER_MODELS

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://openrouter.ai/api/v1",
        referer: str = "http://localhost:3000",
        title: str = "Nexus-AI",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.referer = referer
        self.title = title
        self.timeout = timeout
        self.transport = transport

    async def complete(
        self,
        model_id: str,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int | None,
    ) -> dict[str, Any]:
        if not self.api_key:
            raise ConfigurationError("OPENROUTER_API_KEY is not configured.")

        payload: dict[str, Any] = {
            "model": model_id,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "HTTP-Referer": self.referer,
                        "X-Title": self.title,
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.HTTPError as exc:
            logger.error("OpenRouter transport failure for %s: %s", model_id, exc)
            raise UpstreamError(f"LLM API error (unknown): {exc}", hint="The model gateway could not be reached.") from exc

        if response.is_error:
            message = _error_message(response)
            logger.error("OpenRouter returned %s for %s: %s", response.status_code, model_id, message)
            raise classify_upstream_failure(self.name, model_id, response.status_code, message)

        data = response.json() or {}
        choices = data.get("choices") or []
        if not choices:
            raise UpstreamError("LLM API error: response contained no choices", status_code=response.status_code)
        usage = data.get("usage") or {}
        return {
            "content": (choices[0].get("message") or {}).get("content") or "",
            "input_tokens": int(usage.get("prompt_tokens") or 0),
            "output_tokens": int(usage.get("completion_tokens") or 0),
            "model": data.get("model") or model_id,
        }


class AnthropicGateway(ModelGateway):
    """Anthropic Messages API through the official SDK."""

    name = "anthropic"
    translations = ANTHROPIC_MODELS

    def __init__(self, client: AsyncAnthropic | None = None) -> None:
        self._client = client

    @property
    def client(self) -> AsyncAnthropic:
        if self._client is None:
            from nexus.core.anthropic_client import get_anthropic_client

            self._client = get_anthropic_client()
        return self._client

    async def complete(
        self,
        model_id: str,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int | None,
    ) -> dict[str, Any]:
        system_parts = [m["content"] for m in messages if m.get("role") == "system"]
        conversation = [
            {"role": m["role"], "content": m["content"]} for m in messages if m.get("role") != "system"
        ]
        kwargs: dict[str, Any] = {
            "model": model_id,
            "max_tokens": max_tokens or 1024,
            "temperature": temperature,
            "messages": conversation,
        }
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)

        try:
            message = await self.client.messages.create(**kwargs)
        except APIStatusError as exc:
            logger.error("Anthropic returned %s for %s: %s", exc.status_code, model_id, exc.message)
            raise classify_upstream_failure(self.name, model_id, exc.status_code, str(exc.message)) from exc
        except APIConnectionError as exc:
            logger.error("Anthropic transport failure for %s: %s", model_id, exc)
            raise UpstreamError(f"LLM API error (unknown): {exc}", hint="The model gateway could not be reached.") from exc

        text = "".join(block.text for block in message.content if getattr(block, "type", None) == "text")
        return {
            "content": text,
            "input_tokens": int(message.usage.input_tokens or 0),
            "output_tokens": int(message.usage.output_tokens or 0),
            "model": message.model or model_id,
        }


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error)
        if error:
            return str(error)
    return response.text or response.reason_phrase
