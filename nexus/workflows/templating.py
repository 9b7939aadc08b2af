"""`{{identifier}}` substitution and the small condition language.

Conditions support exactly one of `>`, `<`, `==` (checked in that order).
`>`/`<` compare numerically, `==` compares trimmed strings. Anything else is
malformed: it evaluates to False with a warning, or raises ValidationError
when `strict` is set.
"""
from __future__ import annotations

import json
import logging
import math
import re
from typing import Any, Mapping

from nexus.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

TEMPLATE_PATTERN = re.compile(r"\{\{(\w+)\}\}")
CONDITION_OPERATORS = (">", "<", "==")


def stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


def substitute(template: Any, variables: Mapping[str, Any]) -> str:
    """Replace bound placeholders; unbound ones stay verbatim."""
    if template is None:
        return ""

    def replace(match: re.Match[str]) -> str:
        key = match.group(1)
        return stringify(variables[key]) if key in variables else match.group(0)

    return TEMPLATE_PATTERN.sub(replace, str(template))


def substitute_all(value: Any, variables: Mapping[str, Any]) -> Any:
    """Substitute into every string nested inside dicts and lists."""
    if isinstance(value, str):
        return substitute(value, variables)
    if isinstance(value, dict):
        return {k: substitute_all(v, variables) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute_all(v, variables) for v in value]
    return value


def evaluate_condition(expression: str, strict: bool = False) -> bool:
    """Evaluate an already-substituted condition string."""
    for operator in CONDITION_OPERATORS:
        if operator not in expression:
            continue
        parts = expression.split(operator)
        if len(parts) != 2:
            return _malformed(expression, f"operator {operator!r} appears more than once", strict)
        left, right = (p.strip() for p in parts)
        if operator == "==":
            return left == right
        left_num, right_num = _to_number(left), _to_number(right)
        if left_num is None or right_num is None:
            return _malformed(expression, "non-numeric operand", strict)
        return left_num > right_num if operator == ">" else left_num < right_num

    return _malformed(expression, "no recognized operator", strict)


def _to_number(text: str) -> float | None:
    try:
        value = float(text)
    except ValueError:
        return None
    return None if math.isnan(value) else value


def _malformed(expression: str, reason: str, strict: bool) -> bool:
    if strict:
        raise ValidationError(f"Malformed condition {expression!r}: {reason}")
    logger.warning("Malformed condition %r (%s); evaluating to false", expression, reason)
    return False
