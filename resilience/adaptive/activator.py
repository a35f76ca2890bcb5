"""
Adaptive Pattern Activator (resilience/adaptive/activator.py)

PURPOSE:
Turns repeated stress into adaptation. Every signal batch is scored and
recorded as a StressEvent; patterns whose trigger condition matches are
activated (subject to cooldown and learned success rate) and run their
adaptations.

GATES (in order):
1. Adaptive system enabled
2. Batch stress score >= stress_adaptation_threshold
3. Pattern min_stress_level met and all required signal types seen within
   the pattern's time_window
4. Pattern not in cooldown
5. Pattern success_rate >= min_success_rate (only once it has history)
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, List, Optional, Sequence

from resilience.adaptive.adaptations import Adaptation, AdaptationContext, default_adaptations
from resilience.base.config import AdaptiveConfig
from resilience.contracts.adaptive import (
    AdaptationRecord,
    AdaptationResult,
    AdaptationType,
    AntifragilePattern,
    StressEvent,
    StressResponse,
)
from resilience.contracts.margin import new_id
from resilience.contracts.signals import Signal
from resilience.errors import handle_error

logger = logging.getLogger(__name__)

DAY = 86400.0
MAX_STRESS = 100.0


def stress_score(signals: Sequence[Signal]) -> float:
    """Σ severity weights, capped at 100."""
    return min(MAX_STRESS, float(sum(s.stress_weight for s in signals)))


class AdaptivePatternActivator:
    def __init__(
        self,
        config: Optional[AdaptiveConfig] = None,
        patterns: Sequence[AntifragilePattern] = (),
        adaptations: Optional[Dict[AdaptationType, Adaptation]] = None,
    ):
        self.config = config if config is not None else AdaptiveConfig()
        self._patterns: Dict[str, AntifragilePattern] = {p.id: p for p in patterns}
        self._adaptations = adaptations if adaptations is not None else default_adaptations()
        self._stress_events: List[StressEvent] = []
        self._history: List[AdaptationRecord] = []
        self._lock = threading.Lock()

    def update_config(self, config: AdaptiveConfig):
        with self._lock:
            self.config = config

    def add_pattern(self, pattern: AntifragilePattern):
        with self._lock:
            self._patterns[pattern.id] = pattern

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_stress_event(self, signals: Sequence[Signal], now: Optional[float] = None) -> StressResponse:
        now = time.time() if now is None else now
        signals = list(signals)
        level = stress_score(signals)

        with self._lock:
            event = StressEvent(
                id=new_id("stress"),
                timestamp=now,
                trigger_signals=[s.id for s in signals],
                signal_types=sorted({s.type for s in signals}, key=lambda t: t.value),
                stress_level=level,
            )
            self._stress_events.append(event)

            if not self.config.enabled:
                event.lessons_learned.append("Adaptive system disabled; stress recorded only")
            elif level < self.config.stress_adaptation_threshold:
                event.lessons_learned.append(
                    f"Stress level {level:g} below adaptation threshold {self.config.stress_adaptation_threshold:g}"
                )
            else:
                for pattern in self._candidates(event, signals, now):
                    self._activate(pattern, event, signals, now)
                if not event.activated_patterns:
                    event.follow_up_actions.append(
                        f"Review patterns: stress level {level:g} matched no eligible pattern"
                    )

            self._purge(now)

        if event.activated_patterns:
            logger.info(
                f"[Adaptive] Stress {level:g}: activated {', '.join(event.activated_patterns)}"
            )
        return StressResponse(
            stress_event_id=event.id,
            stress_level=level,
            activated_patterns=list(event.activated_patterns),
            adaptations=list(event.adaptations),
            performance_improvements=list(event.performance_improvements),
        )

    def _candidates(self, event: StressEvent, signals: List[Signal], now: float) -> List[AntifragilePattern]:
        eligible = []
        for pattern in self._patterns.values():
            trigger = pattern.trigger_condition
            if not trigger.matches(event.stress_level, trigger.present_types(signals, now)):
                continue
            if pattern.in_cooldown(now, self.config.activation_cooldown):
                logger.debug(f"[Adaptive] Pattern {pattern.id} in cooldown")
                continue
            if pattern.activation_count > 0 and pattern.success_rate < self.config.min_success_rate:
                logger.debug(f"[Adaptive] Pattern {pattern.id} below success rate ({pattern.success_rate:.2f})")
                continue
            eligible.append(pattern)
        return eligible

    def _activate(self, pattern: AntifragilePattern, event: StressEvent, signals: List[Signal], now: float):
        enabled = [a for a in pattern.adaptations if self.config.adaptation(a.value).enabled]
        if not enabled:
            logger.debug(f"[Adaptive] Pattern {pattern.id} has no enabled adaptations")
            return

        pattern.last_activated = now
        pattern.activation_count += 1

        recent = sum(1 for e in self._stress_events if now - e.timestamp <= DAY)
        target = self.config.performance_thresholds.target_improvement
        results: List[AdaptationResult] = []
        for adaptation_type in enabled:
            result = self._run(adaptation_type, signals, event.stress_level, recent, now)
            results.append(result)
            self._history.append(AdaptationRecord(
                timestamp=now,
                adaptation_type=adaptation_type,
                pattern_id=pattern.id,
                performance_impact=result.performance_impact,
                success=result.success,
            ))
            event.adaptations.append(adaptation_type.value)
            if result.success and result.improvement:
                event.performance_improvements.append(result.improvement)
            if result.success and result.performance_impact < target:
                event.follow_up_actions.append(
                    f"{adaptation_type.value} impact {result.performance_impact:g}% below target {target:g}%"
                )

        outcome = 1.0 if results and all(r.success for r in results) else 0.0
        rate = self.config.learning_rate
        pattern.success_rate = (1 - rate) * pattern.success_rate + rate * outcome

        event.activated_patterns.append(pattern.id)
        event.lessons_learned.append(
            f"Pattern {pattern.name} activated at stress level {event.stress_level:g}"
        )
        if outcome < 1.0:
            event.follow_up_actions.append(f"Investigate failed adaptations for pattern {pattern.id}")

    def _run(
        self,
        adaptation_type: AdaptationType,
        signals: List[Signal],
        stress_level: float,
        recent: int,
        now: float,
    ) -> AdaptationResult:
        executor = self._adaptations.get(adaptation_type)
        if executor is None:
            return AdaptationResult(adaptation_type, False, 0.0, error="No executor registered")
        context = AdaptationContext(
            signals=signals,
            stress_level=stress_level,
            now=now,
            recent_event_count=recent,
            max_improvement=self.config.performance_thresholds.max_improvement,
            parameters=self.config.adaptation(adaptation_type.value).parameters,
            min_improvement=self.config.performance_thresholds.min_improvement,
        )
        try:
            return executor.apply(context)
        except Exception as e:
            error = handle_error(e, f"Adaptation {adaptation_type.value}")
            logger.error(f"[Adaptive] {error}")
            return AdaptationResult(adaptation_type, False, 0.0, error=error.message)

    def _purge(self, now: float):
        event_cutoff = now - self.config.event_retention_days * DAY
        history_cutoff = now - self.config.adaptation_retention_days * DAY
        self._stress_events = [e for e in self._stress_events if e.timestamp >= event_cutoff]
        self._history = [r for r in self._history if r.timestamp >= history_cutoff]

    def purge(self, now: Optional[float] = None):
        with self._lock:
            self._purge(time.time() if now is None else now)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_patterns(self) -> List[AntifragilePattern]:
        with self._lock:
            return list(self._patterns.values())

    def get_stress_events(self, limit: Optional[int] = None) -> List[StressEvent]:
        with self._lock:
            events = list(self._stress_events)
        return events[-limit:] if limit else events

    def get_adaptation_history(self) -> List[AdaptationRecord]:
        with self._lock:
            return list(self._history)

    def get_status(self, now: Optional[float] = None) -> Dict[str, Any]:
        """
        Antifragile status summary.

        score = min(100, round(success_rate * 50 + active * 10 + recent * 2))
        where `active` counts patterns activated within the cooldown and
        `recent` counts adaptations in the last 24 hours.
        """
        now = time.time() if now is None else now
        with self._lock:
            patterns = list(self._patterns.values())
            active = [p for p in patterns if p.in_cooldown(now, self.config.activation_cooldown)]
            recent = [r for r in self._history if now - r.timestamp <= DAY]
            success_rate = (
                sum(1 for r in self._history if r.success) / len(self._history) if self._history else 1.0
            )
            score = min(100, round(success_rate * 50 + len(active) * 10 + len(recent) * 2))
            return {
                "enabled": self.config.enabled,
                "active_patterns": [p.id for p in active],
                "total_patterns": len(patterns),
                "recent_adaptations": len(recent),
                "success_rate": success_rate,
                "antifragile_score": score,
                "stress_events": len(self._stress_events),
            }
