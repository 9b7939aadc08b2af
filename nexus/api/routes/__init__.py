"""
API Routes Package
"""
from . import (
    health,
    chat,
    agents,
    documents,
    rag,
    guardrails,
)
