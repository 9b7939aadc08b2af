"""Custom exception types for the orchestration core and API layers."""
from __future__ import annotations

from typing import Any, Sequence


class AppError(Exception):
    """Base app exception."""


class ConfigurationError(AppError):
    """Missing credentials or an unprovisioned backing store."""


class ValidationError(AppError):
    """Malformed workflow definition, condition, model id or user input."""


class NotFoundError(AppError):
    """Missing node, document, agent or model."""


class BlockedByPolicy(AppError):
    """Guardrail block action triggered before any model call."""

    def __init__(self, categories: Sequence[str], message: str | None = None):
        self.categories = list(categories)
        super().__init__(
            message or f"PII detected. Request blocked by guardrails. Detected types: {', '.join(self.categories)}"
        )


class UpstreamError(AppError):
    """Model gateway or embedding service failure."""

    def __init__(self, message: str, status_code: int | None = None, hint: str | None = None):
        self.status_code = status_code
        self.hint = hint
        super().__init__(message)


class IngestionFailure(AppError):
    """Document produced no extractable text or could not be embedded/stored."""

    def __init__(self, message: str, document_id: str | None = None):
        self.document_id = document_id
        super().__init__(message)


class CircularDependencyError(ValidationError):
    """A workflow run revisited a non-end node."""

    def __init__(self, node_id: str, trace: Sequence[Any] = ()):
        self.node_id = node_id
        self.trace = tuple(trace)
        super().__init__(f"Circular dependency detected at node {node_id}")


class WorkflowExecutionError(AppError):
    """A node failed; carries the partial trace accumulated before the failure."""

    def __init__(self, node_id: str, cause: Exception, trace: Sequence[Any]):
        self.node_id = node_id
        self.cause = cause
        self.trace = tuple(trace)
        super().__init__(str(cause))
