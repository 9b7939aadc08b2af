"""Thin wrapper around Anthropic async client."""
from __future__ import annotations

from anthropic import AsyncAnthropic

from nexus.config import settings
from nexus.core.exceptions import ConfigurationError


_client: AsyncAnthropic | None = None


def get_anthropic_client() -> AsyncAnthropic:
    global _client
    if _client is None:
        if settings.anthropic_api_key is None:
            raise ConfigurationError("ANTHROPIC_API_KEY is not configured.")
        _client = AsyncAnthropic(api_key=settings.anthropic_api_key.get_secret_value())
    return _client
