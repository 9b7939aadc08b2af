"""Apply a guardrail policy's action to one piece of user text."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from nexus.core.exceptions import BlockedByPolicy
from nexus.guardrails.pii import redact
from nexus.guardrails.policy import GuardrailAction, GuardrailPolicy, PolicyCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuardrailOutcome:
    text: str
    original_text: str
    redacted_text: str
    detected_categories: list[str] = field(default_factory=list)
    action: GuardrailAction | None = None
    warning: str | None = None

    @property
    def pii_detected(self) -> bool:
        return bool(self.detected_categories)

    @property
    def was_redacted(self) -> bool:
        return self.text != self.original_text


def passthrough(text: str) -> GuardrailOutcome:
    return GuardrailOutcome(text=text, original_text=text, redacted_text=text)


def enforce(text: str, policy: GuardrailPolicy) -> GuardrailOutcome:
    """Redact, block or warn according to `policy`.

    Raises BlockedByPolicy for the block action when anything was detected.
    """
    if not policy.enabled:
        return passthrough(text)

    result = redact(text, policy.allowlist_patterns, policy.categories)
    if not result.detected_categories:
        return passthrough(text)

    logger.info("PII detected (%s), action=%s", ", ".join(result.detected_categories), policy.action.value)

    if policy.action is GuardrailAction.BLOCK:
        raise BlockedByPolicy(result.detected_categories)

    if policy.action is GuardrailAction.WARN:
        return GuardrailOutcome(
            text=text,
            original_text=text,
            redacted_text=result.redacted_text,
            detected_categories=result.detected_categories,
            action=policy.action,
            warning=f"PII detected ({', '.join(result.detected_categories)}) but request allowed",
        )

    return GuardrailOutcome(
        text=result.redacted_text,
        original_text=text,
        redacted_text=result.redacted_text,
        detected_categories=result.detected_categories,
        action=policy.action,
    )


def apply_guardrails(text: str, cache: PolicyCache, bypass: bool = False) -> GuardrailOutcome:
    """Entry point for request handlers; `bypass` is decided by the caller."""
    if bypass:
        return passthrough(text)
    return enforce(text, cache.get())


def guard_turns(
    turns: Sequence[Mapping[str, str]],
    cache: PolicyCache,
    bypass: bool = False,
) -> list[dict[str, str]]:
    """Apply the current policy to client-supplied conversation history.

    Every turn is checked, whatever its role. Block raises on the first turn
    that triggers; redact rewrites the turn's content.
    """
    if bypass:
        return [{"role": t["role"], "content": t["content"]} for t in turns]
    policy = cache.get()
    return [{"role": t["role"], "content": enforce(t["content"], policy).text} for t in turns]
