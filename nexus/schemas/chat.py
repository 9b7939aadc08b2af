from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class ChatTurn(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatMessageRequest(BaseModel):
    message: str = Field(min_length=1)
    model_id: str
    session_id: str | None = None
    history: list[ChatTurn] = Field(default_factory=list)
    use_rag: bool = False
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)


class CompareRequest(BaseModel):
    message: str = Field(min_length=1)
    model_ids: list[str] = Field(min_length=1)
