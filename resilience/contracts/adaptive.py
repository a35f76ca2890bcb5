"""
resilience/contracts/adaptive.py
Antifragile pattern, stress event and adaptation records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from resilience.contracts.signals import SignalType


class AdaptationType(str, Enum):
    CAPACITY_SCALING = "CAPACITY_SCALING"
    EFFICIENCY_IMPROVEMENT = "EFFICIENCY_IMPROVEMENT"
    REDUNDANCY_ENHANCEMENT = "REDUNDANCY_ENHANCEMENT"
    STRESS_LEARNING = "STRESS_LEARNING"
    THRESHOLD_ADAPTATION = "THRESHOLD_ADAPTATION"


@dataclass(frozen=True)
class TriggerCondition:
    min_stress_level: float
    required_signals: tuple = ()
    time_window: float = 3600.0

    def present_types(self, signals: Sequence[Any], now: float) -> set:
        """Signal types seen within `time_window` seconds before `now`."""
        return {s.type for s in signals if now - s.timestamp <= self.time_window}

    def matches(self, stress_level: float, present: set) -> bool:
        if stress_level < self.min_stress_level:
            return False
        return all(signal_type in present for signal_type in self.required_signals)


@dataclass
class AntifragilePattern:
    """
    A learned response to a recurring stress shape.

    success_rate starts at 1.0 and is only used as a gate once the pattern
    has been activated at least once.
    """
    id: str
    name: str
    description: str
    trigger_condition: TriggerCondition
    adaptations: List[AdaptationType]
    success_rate: float = 1.0
    last_activated: Optional[float] = None
    activation_count: int = 0

    def in_cooldown(self, now: float, cooldown: float) -> bool:
        return self.last_activated is not None and now - self.last_activated < cooldown

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "trigger_condition": {
                "min_stress_level": self.trigger_condition.min_stress_level,
                "required_signals": [s.value for s in self.trigger_condition.required_signals],
                "time_window": self.trigger_condition.time_window,
            },
            "adaptations": [a.value for a in self.adaptations],
            "success_rate": self.success_rate,
            "last_activated": self.last_activated,
            "activation_count": self.activation_count,
        }


@dataclass(frozen=True)
class AdaptationResult:
    adaptation_type: AdaptationType
    success: bool
    performance_impact: float
    improvement: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class AdaptationRecord:
    timestamp: float
    adaptation_type: AdaptationType
    pattern_id: str
    performance_impact: float
    success: bool


@dataclass
class StressEvent:
    id: str
    timestamp: float
    trigger_signals: List[str]
    signal_types: List[SignalType]
    stress_level: float
    activated_patterns: List[str] = field(default_factory=list)
    adaptations: List[str] = field(default_factory=list)
    performance_improvements: List[str] = field(default_factory=list)
    lessons_learned: List[str] = field(default_factory=list)
    follow_up_actions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "trigger_signals": list(self.trigger_signals),
            "signal_types": [t.value for t in self.signal_types],
            "stress_level": self.stress_level,
            "activated_patterns": list(self.activated_patterns),
            "adaptations": list(self.adaptations),
            "performance_improvements": list(self.performance_improvements),
            "lessons_learned": list(self.lessons_learned),
            "follow_up_actions": list(self.follow_up_actions),
        }


@dataclass(frozen=True)
class StressResponse:
    stress_event_id: str
    stress_level: float
    activated_patterns: List[str]
    adaptations: List[str]
    performance_improvements: List[str]
