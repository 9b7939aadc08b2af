"""Guardrail policy model, persistence reads and the TTL cache.

The cache holds one immutable `(policy, loaded_at)` pair and replaces it
wholesale on refresh, so concurrent readers always see a complete policy.
Any failure to read the store yields the fail-closed default.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable

from sqlalchemy.orm import Session

from nexus.guardrails.pii import ALL_CATEGORIES, PIICategory, normalize_categories
from nexus.models import Guardrail

logger = logging.getLogger(__name__)


class GuardrailAction(str, Enum):
    REDACT = "redact"
    BLOCK = "block"
    WARN = "warn"


@dataclass(frozen=True)
class GuardrailPolicy:
    enabled: bool
    categories: frozenset[PIICategory]
    action: GuardrailAction
    allowlist_patterns: tuple[str, ...] = ()

    @classmethod
    def fail_closed(cls) -> "GuardrailPolicy":
        return cls(enabled=True, categories=ALL_CATEGORIES, action=GuardrailAction.REDACT)

    @classmethod
    def from_record(
        cls,
        enabled: bool | None,
        categories: Iterable[str] | None,
        action: str | None,
        allowlist_patterns: Iterable[str] | None,
    ) -> "GuardrailPolicy":
        return cls(
            enabled=bool(enabled) if enabled is not None else False,
            categories=normalize_categories(categories),
            action=GuardrailAction(action or GuardrailAction.REDACT.value),
            allowlist_patterns=tuple(allowlist_patterns or ()),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "categories": sorted(c.value for c in self.categories),
            "action": self.action.value,
            "allowlist_patterns": list(self.allowlist_patterns),
        }


def read_policy(db: Session, name: str) -> GuardrailPolicy | None:
    """Load the named policy row, or None when it does not exist."""
    row = db.query(Guardrail).filter(Guardrail.name == name).first()
    if row is None:
        return None
    return GuardrailPolicy.from_record(row.enabled, row.pii_types, row.action, row.allowlist_patterns)


def upsert_policy(db: Session, name: str, policy: GuardrailPolicy) -> Guardrail:
    row = db.query(Guardrail).filter(Guardrail.name == name).first()
    if row is None:
        row = Guardrail(name=name)
        db.add(row)
    row.enabled = policy.enabled
    row.pii_types = sorted(c.value for c in policy.categories)
    row.action = policy.action.value
    row.allowlist_patterns = list(policy.allowlist_patterns)
    db.commit()
    db.refresh(row)
    return row


class PolicyCache:
    """TTL cache in front of a policy loader.

    `loader` returns the stored policy, None when none is stored, or raises.
    Both None and an exception resolve to the fail-closed default, which is
    cached for the same TTL as a real policy. `invalidate()` forces the next
    `get()` to reload.
    """

    def __init__(
        self,
        loader: Callable[[], GuardrailPolicy | None],
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entry: tuple[GuardrailPolicy, float] | None = None

    def get(self, force_refresh: bool = False) -> GuardrailPolicy:
        entry = self._entry
        now = self._clock()
        if not force_refresh and entry is not None and now - entry[1] < self.ttl_seconds:
            return entry[0]

        policy = self._load()
        self._entry = (policy, now)
        return policy

    def invalidate(self) -> None:
        self._entry = None

    def _load(self) -> GuardrailPolicy:
        try:
            policy = self._loader()
        except Exception as exc:
            logger.warning("Guardrail policy fetch failed, using fail-closed default: %s", exc)
            return GuardrailPolicy.fail_closed()
        if policy is None:
            logger.warning("No guardrail policy stored yet, using fail-closed default")
            return GuardrailPolicy.fail_closed()
        logger.debug("Guardrail policy refreshed: %s", policy.to_dict())
        return policy


def database_loader(session_factory: Callable[[], Session], name: str) -> Callable[[], GuardrailPolicy | None]:
    """Build a loader that opens a short-lived session per refresh."""

    def load() -> GuardrailPolicy | None:
        db = session_factory()
        try:
            return read_policy(db, name)
        finally:
            db.close()

    return load
