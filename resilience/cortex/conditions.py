"""Module conditions: evaluators for MarginPolicy conditions."""
#
# PURPOSE:
# Each ConditionType has one evaluator that turns a Condition plus the
# triggering context into a boolean. The PolicyEngine ANDs them.
#
# COMPARATORS:
# - SIGNAL: EQ / NE on the signal type only
# - UTILIZATION / RISK: numeric, EQ / NE within a 0.01 tolerance
# - TIME: now against a configured instant
#

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from resilience.contracts.margin import Condition, ConditionType, Operator
from resilience.contracts.signals import Signal

NUMERIC_TOLERANCE = 0.01


@dataclass
class EvaluationContext:
    """Everything a condition may look at."""
    signal: Signal
    now: float
    utilization: Callable[[], float]


def compare(left: float, operator: Operator, right: float, tolerance: float = 0.0) -> bool:
    if operator == Operator.EQ:
        return abs(left - right) <= tolerance if tolerance else left == right
    if operator == Operator.NE:
        return abs(left - right) > tolerance if tolerance else left != right
    if operator == Operator.GT:
        return left > right
    if operator == Operator.LT:
        return left < right
    if operator == Operator.GTE:
        return left >= right
    if operator == Operator.LTE:
        return left <= right
    return False


def parse_instant(value: Any) -> float:
    """ISO-8601 string, datetime or epoch seconds -> epoch seconds."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        return float(value)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Cannot interpret {value!r} as a point in time")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


class ConditionEvaluator(ABC):
    """Protocol for condition evaluation."""

    @property
    @abstractmethod
    def condition_type(self) -> ConditionType:
        pass

    @abstractmethod
    def evaluate(self, condition: Condition, context: EvaluationContext) -> bool:
        pass


class SignalCondition(ConditionEvaluator):
    condition_type = ConditionType.SIGNAL

    def evaluate(self, condition: Condition, context: EvaluationContext) -> bool:
        expected = getattr(condition.value, "value", condition.value)
        actual = context.signal.type.value
        if condition.operator == Operator.EQ:
            return actual == expected
        if condition.operator == Operator.NE:
            return actual != expected
        return False


class UtilizationCondition(ConditionEvaluator):
    condition_type = ConditionType.UTILIZATION

    def evaluate(self, condition: Condition, context: EvaluationContext) -> bool:
        return compare(context.utilization(), condition.operator, float(condition.value), NUMERIC_TOLERANCE)


class RiskCondition(ConditionEvaluator):
    condition_type = ConditionType.RISK

    def evaluate(self, condition: Condition, context: EvaluationContext) -> bool:
        return compare(context.signal.risk_score, condition.operator, float(condition.value), NUMERIC_TOLERANCE)


class TimeCondition(ConditionEvaluator):
    condition_type = ConditionType.TIME

    def evaluate(self, condition: Condition, context: EvaluationContext) -> bool:
        return compare(context.now, condition.operator, parse_instant(condition.value))


DEFAULT_EVALUATORS: Dict[ConditionType, ConditionEvaluator] = {
    e.condition_type: e
    for e in (SignalCondition(), UtilizationCondition(), RiskCondition(), TimeCondition())
}


def evaluate_condition(
    condition: Condition,
    context: EvaluationContext,
    evaluators: Optional[Dict[ConditionType, ConditionEvaluator]] = None,
) -> bool:
    evaluator = (evaluators or DEFAULT_EVALUATORS).get(condition.type)
    if evaluator is None:
        return False
    return evaluator.evaluate(condition, context)
