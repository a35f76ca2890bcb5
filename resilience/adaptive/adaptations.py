"""
resilience/adaptive/adaptations.py
Adaptation executors run by the AdaptivePatternActivator.

Each executor computes a performance impact from the stress batch, clamped
to [min_improvement, max_improvement], and describes it as an improvement
string. Executors have no side effects outside their result.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from resilience.contracts.adaptive import AdaptationResult, AdaptationType
from resilience.contracts.signals import Severity, Signal


@dataclass
class AdaptationContext:
    signals: List[Signal]
    stress_level: float
    now: float
    recent_event_count: int
    max_improvement: float
    parameters: Mapping[str, Any] = field(default_factory=dict)
    min_improvement: float = 0.0


class Adaptation(ABC):
    """Protocol for adaptation executors."""

    @property
    @abstractmethod
    def adaptation_type(self) -> AdaptationType:
        pass

    @abstractmethod
    def impact(self, context: AdaptationContext) -> float:
        """Raw performance impact in percent."""
        pass

    @abstractmethod
    def describe(self, impact: float, context: AdaptationContext) -> str:
        pass

    def apply(self, context: AdaptationContext) -> AdaptationResult:
        impact = max(context.min_improvement, min(self.impact(context), context.max_improvement))
        return AdaptationResult(
            adaptation_type=self.adaptation_type,
            success=True,
            performance_impact=impact,
            improvement=self.describe(impact, context),
        )


class CapacityScaling(Adaptation):
    adaptation_type = AdaptationType.CAPACITY_SCALING

    def factor(self, context: AdaptationContext) -> float:
        step = float(context.parameters.get("scaling_step", 0.1))
        ceiling = float(context.parameters.get("max_scaling_factor", 2.0))
        return min(ceiling, 1.0 + step * len(context.signals))

    def impact(self, context: AdaptationContext) -> float:
        return round((self.factor(context) - 1.0) * 100)

    def describe(self, impact: float, context: AdaptationContext) -> str:
        return f"Capacity scaled by {self.factor(context):.2f}x"


class EfficiencyImprovement(Adaptation):
    adaptation_type = AdaptationType.EFFICIENCY_IMPROVEMENT

    def impact(self, context: AdaptationContext) -> float:
        return min(25.0, 2.0 * len(context.signals))

    def describe(self, impact: float, context: AdaptationContext) -> str:
        return f"Efficiency improved by {impact:g}%"


class RedundancyEnhancement(Adaptation):
    adaptation_type = AdaptationType.REDUNDANCY_ENHANCEMENT

    def impact(self, context: AdaptationContext) -> float:
        return min(15.0, 1.5 * len(context.signals))

    def describe(self, impact: float, context: AdaptationContext) -> str:
        return f"Redundancy enhanced by {impact:g}%"


class StressLearning(Adaptation):
    adaptation_type = AdaptationType.STRESS_LEARNING

    @staticmethod
    def critical_count(context: AdaptationContext) -> int:
        return sum(1 for s in context.signals if s.severity in (Severity.HIGH, Severity.CRITICAL))

    def impact(self, context: AdaptationContext) -> float:
        return min(20.0, 5.0 * self.critical_count(context))

    def describe(self, impact: float, context: AdaptationContext) -> str:
        return f"Learned from {self.critical_count(context)} critical signals"


class ThresholdAdaptation(Adaptation):
    adaptation_type = AdaptationType.THRESHOLD_ADAPTATION

    def impact(self, context: AdaptationContext) -> float:
        return min(10.0, 2.0 * context.recent_event_count)

    def describe(self, impact: float, context: AdaptationContext) -> str:
        return f"Thresholds adapted based on {context.recent_event_count} recent events"


def default_adaptations() -> Dict[AdaptationType, Adaptation]:
    return {
        a.adaptation_type: a
        for a in (CapacityScaling(), EfficiencyImprovement(), RedundancyEnhancement(),
                  StressLearning(), ThresholdAdaptation())
    }
