"""Guardrail Engine: PII detection, redaction and policy enforcement."""

from .enforcement import GuardrailOutcome, apply_guardrails, enforce, guard_turns
from .pii import PIICategory, PIIMatch, RedactionResult, detect, redact
from .policy import GuardrailAction, GuardrailPolicy, PolicyCache, database_loader, read_policy, upsert_policy

__all__ = [
    "GuardrailAction",
    "GuardrailOutcome",
    "GuardrailPolicy",
    "PIICategory",
    "PIIMatch",
    "PolicyCache",
    "RedactionResult",
    "apply_guardrails",
    "database_loader",
    "detect",
    "enforce",
    "guard_turns",
    "read_policy",
    "redact",
    "upsert_policy",
]
