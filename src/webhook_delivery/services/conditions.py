"""Filter condition evaluation against submitted data."""
from __future__ import annotations

import json
import math
from typing import Any, Callable, Mapping

import structlog
from pydantic import ValidationError

from webhook_delivery.domain.enums import LogicOperator
from webhook_delivery.domain.models import FilterCondition, FilterRule

logger = structlog.get_logger(__name__)


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return str(value)


def _number(value: Any) -> float:
    if isinstance(value, str) and not value.strip():
        return 0.0
    return float(value)


def _compare_numbers(op: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def compare(field_value: Any, rule_value: Any) -> bool:
        try:
            left, right = _number(field_value), _number(rule_value)
        except (TypeError, ValueError):
            return False
        if math.isnan(left) or math.isnan(right):
            return False
        return op(left, right)

    return compare


OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "equals": lambda field, value: _stringify(field) == _stringify(value),
    "notEquals": lambda field, value: _stringify(field) != _stringify(value),
    "contains": lambda field, value: _stringify(value) in _stringify(field),
    "greaterThan": _compare_numbers(lambda a, b: a > b),
    "lessThan": _compare_numbers(lambda a, b: a < b),
}


def evaluate_rule(rule: FilterRule, data: Mapping[str, Any]) -> bool:
    if rule.field_id not in data:
        return False
    op = OPERATORS.get(rule.operator)
    if op is None:
        return False
    return op(data[rule.field_id], rule.value)


def parse_conditions(raw: Mapping[str, Any] | str) -> FilterCondition:
    if isinstance(raw, str):
        raw = json.loads(raw)
    return FilterCondition.model_validate(raw)


def evaluate_conditions(raw: Mapping[str, Any] | str | None, data: Mapping[str, Any] | None) -> bool:
    """Return whether ``data`` satisfies the stored condition.

    No condition or no rules qualifies every event. A condition that cannot be
    parsed never qualifies.
    """
    if raw is None:
        return True
    try:
        condition = parse_conditions(raw)
    except (ValueError, ValidationError) as exc:
        logger.error("malformed filter condition", error=str(exc))
        return False
    if not condition.rules:
        return True

    data = data or {}
    results = (evaluate_rule(rule, data) for rule in condition.rules)
    if condition.logic_operator == LogicOperator.OR:
        return any(results)
    return all(results)
