"""
Guardrails API Routes
Read and replace the active PII policy
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from nexus.api.dependencies import get_policy_cache
from nexus.config import settings
from nexus.database import get_db
from nexus.guardrails.policy import GuardrailPolicy, PolicyCache, read_policy, upsert_policy
from nexus.schemas.guardrail import GuardrailSchema

router = APIRouter()


@router.get("/")
async def get_guardrails(db: Session = Depends(get_db)) -> dict[str, Any]:
    policy = read_policy(db, settings.guardrail_policy_name)
    if policy is None:
        return {"name": settings.guardrail_policy_name, "stored": False, **GuardrailPolicy.fail_closed().to_dict()}
    return {"name": settings.guardrail_policy_name, "stored": True, **policy.to_dict()}


@router.put("/")
async def put_guardrails(
    payload: GuardrailSchema,
    db: Session = Depends(get_db),
    policy_cache: PolicyCache = Depends(get_policy_cache),
) -> dict[str, Any]:
    policy = GuardrailPolicy.from_record(
        payload.enabled,
        payload.categories,
        payload.action,
        payload.allowlist_patterns,
    )
    upsert_policy(db, settings.guardrail_policy_name, policy)
    policy_cache.invalidate()
    return {"name": settings.guardrail_policy_name, "stored": True, **policy.to_dict()}
