from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class AgentSave(BaseModel):
    id: str | None = None
    name: str | None = None
    description: str | None = None
    workflow_config: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True


class AgentToggle(BaseModel):
    is_active: bool


class AgentExecuteRequest(BaseModel):
    agent_id: str
    input: dict[str, Any] = Field(default_factory=dict)
