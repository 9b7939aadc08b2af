from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class GuardrailSchema(BaseModel):
    enabled: bool = True
    categories: list[Literal["ssn", "credit_card", "email", "phone", "ip_address"]] = Field(default_factory=list)
    action: Literal["redact", "block", "warn"] = "redact"
    allowlist_patterns: list[str] = Field(default_factory=list)
