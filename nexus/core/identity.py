"""Caller identity as supplied by the surrounding request layer."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CallerIdentity:
    user_id: str
    role: str | None = None
    # Decided upstream; the guardrail engine never looks at roles.
    can_bypass_guardrails: bool = False
