"""PII detection and redaction.

Each category owns one fixed pattern. Allowlist patterns are compiled once
per call, tested against each matched value independently, and a malformed
pattern is skipped with a warning.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

from nexus.config import settings
from nexus.core.exceptions import ValidationError

logger = logging.getLogger(__name__)


class PIICategory(str, Enum):
    SSN = "ssn"
    CREDIT_CARD = "credit_card"
    EMAIL = "email"
    PHONE = "phone"
    IP_ADDRESS = "ip_address"

    @property
    def placeholder(self) -> str:
        return f"[{self.value.upper()} REDACTED]"


PII_PATTERNS: dict[PIICategory, re.Pattern[str]] = {
    PIICategory.SSN: re.compile(r"\b\d{3}-?\d{2}-?\d{4}\b"),
    PIICategory.CREDIT_CARD: re.compile(r"\b(?:\d{4}[-\s]?){3}\d{4}\b"),
    PIICategory.EMAIL: re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b", re.IGNORECASE),
    PIICategory.PHONE: re.compile(r"\b(?:\+?1[-.\s]?)?\(?([0-9]{3})\)?[-.\s]?([0-9]{3})[-.\s]?([0-9]{4})\b"),
    PIICategory.IP_ADDRESS: re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b"),
}

ALL_CATEGORIES: frozenset[PIICategory] = frozenset(PIICategory)


@dataclass(frozen=True)
class PIIMatch:
    category: PIICategory
    matched_value: str
    start_index: int
    end_index: int


@dataclass(frozen=True)
class RedactionResult:
    redacted_text: str
    detected_categories: list[str]


def normalize_categories(categories: Iterable[str | PIICategory] | None) -> frozenset[PIICategory]:
    """None or empty selects every category; unknown names are rejected."""
    if not categories:
        return ALL_CATEGORIES
    normalized = set()
    for category in categories:
        try:
            normalized.add(PIICategory(category))
        except ValueError as exc:
            raise ValidationError(f"Unknown PII category: {category!r}") from exc
    return frozenset(normalized) or ALL_CATEGORIES


def compile_allowlist(patterns: Iterable[str]) -> list[re.Pattern[str]]:
    compiled: list[re.Pattern[str]] = []
    for pattern in patterns or ():
        try:
            compiled.append(re.compile(pattern, re.IGNORECASE))
        except re.error as exc:
            logger.warning("Skipping malformed allowlist pattern %r: %s", pattern, exc)
    return compiled


def detect(
    text: str,
    categories: Iterable[str | PIICategory] | None = None,
    allowlist: Sequence[str] = (),
) -> list[PIIMatch]:
    """Return every non-allowlisted match, ordered by position."""
    if not settings.pii_detection_enabled or not text:
        return []

    selected = normalize_categories(categories)
    exemptions = compile_allowlist(allowlist)

    matches: list[PIIMatch] = []
    for category, pattern in PII_PATTERNS.items():
        if category not in selected:
            continue
        for found in pattern.finditer(text):
            value = found.group(0)
            if any(exempt.search(value) for exempt in exemptions):
                continue
            matches.append(PIIMatch(category, value, found.start(), found.end()))

    matches.sort(key=lambda m: (m.start_index, -m.end_index))
    return matches


def redact(
    text: str,
    allowlist: Sequence[str] = (),
    categories: Iterable[str | PIICategory] | None = None,
) -> RedactionResult:
    """Replace each match with its category placeholder.

    Overlapping matches collapse into one span covering all of them, labelled
    with the outermost (earliest, then longest) match's category. Spans are
    applied right to left so pending offsets stay valid.
    """
    matches = detect(text, categories, allowlist)
    detected = list(dict.fromkeys(m.category.value for m in matches))

    spans: list[list] = []
    for match in matches:
        if spans and match.start_index < spans[-1][1]:
            spans[-1][1] = max(spans[-1][1], match.end_index)
            continue
        spans.append([match.start_index, match.end_index, match.category])

    redacted = text
    for start, end, category in reversed(spans):
        redacted = redacted[:start] + category.placeholder + redacted[end:]

    return RedactionResult(redacted_text=redacted, detected_categories=detected)
