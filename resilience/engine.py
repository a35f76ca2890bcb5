"""
Resilience Engine (resilience/engine.py)

PURPOSE:
The external interface. Wires the margin ledger, threshold monitor,
policy engine, adaptive pattern activator and performance monitor around
one shared event log, and exposes query / command / lifecycle operations.

FLOW:
    signals -> PolicyEngine (allocate / deploy via the ledger)
            -> AdaptivePatternActivator (stress scoring, adaptation)
            -> PerformanceMonitor (processing-time samples)
    ticks   -> ThresholdMonitor, reorder check, expiry sweep,
               performance snapshot, retention purge
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from resilience.adaptive.activator import AdaptivePatternActivator
from resilience.base.config import EngineConfig, get_config
from resilience.base.loader import RuleSet
from resilience.contracts.adaptive import AdaptationRecord, AntifragilePattern, StressEvent, StressResponse
from resilience.contracts.alerts import Alert
from resilience.contracts.margin import (
    AllocationRequest,
    LedgerOutcome,
    MarginAllocation,
    MarginDeployment,
    MarginEvent,
    MarginEventType,
    MarginType,
)
from resilience.contracts.signals import Signal
from resilience.cortex.policy_engine import PolicyEngine, PolicyExecution
from resilience.events import EventLog
from resilience.ledger import defaults
from resilience.ledger.ledger import MarginLedger
from resilience.ledger.store import LedgerStore
from resilience.monitoring.performance import PerformanceMetricsSnapshot, PerformanceMonitor
from resilience.monitoring.thresholds import ThresholdMonitor, ThresholdReading
from resilience.scheduler.ticker import PeriodicTask, Scheduler

logger = logging.getLogger(__name__)

@dataclass
class SignalBatchResult:
    stress: StressResponse
    executions: List[PolicyExecution] = field(default_factory=list)
    failed_signals: List[str] = field(default_factory=list)

    @property
    def activated_patterns(self) -> List[str]:
        return self.stress.activated_patterns

    @property
    def allocation_ids(self) -> List[str]:
        return [
            r.allocation_id
            for e in self.executions
            for r in e.results
            if r.ok and r.allocation_id and r.deployment_id is None
        ]


@dataclass
class TickReport:
    readings: List[ThresholdReading]
    reorders: List[str]
    expired: List[str]
    snapshot: Optional[PerformanceMetricsSnapshot]


class ResilienceEngine:
    """
    Usage:
        engine = ResilienceEngine()
        result = engine.process_signals([Signal(source=..., type=SignalType.EMERGENCY, severity=Severity.HIGH)])
        await engine.start()     # periodic ticks
        ...
        await engine.stop()
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        rules: Optional[RuleSet] = None,
        store: Optional[LedgerStore] = None,
    ):
        self.config = config if config is not None else get_config()
        self.config.validate()
        rules = rules if rules is not None else RuleSet()

        self.events = EventLog(self.config.ledger.event_log_capacity)
        self.ledger = MarginLedger(self.config.ledger, store=store, event_log=self.events)
        pools = rules.build_pools()
        for pool in pools if pools is not None else defaults.default_pools():
            self.ledger.add_pool(pool)

        self.thresholds = ThresholdMonitor(
            self.ledger,
            rules.thresholds if rules.thresholds is not None else defaults.default_thresholds(),
        )
        self.policies = PolicyEngine(
            self.ledger,
            rules.policies if rules.policies is not None else defaults.default_policies(),
            config=self.config.ledger,
        )
        patterns = rules.build_patterns()
        self.adaptive = AdaptivePatternActivator(
            self.config.adaptive,
            patterns if patterns is not None else defaults.default_patterns(),
        )
        self.performance = PerformanceMonitor(
            self.config.monitoring,
            utilization_source=self.ledger.overall_utilization,
        )

        self.scheduler = Scheduler()
        self._build_schedule()
        self._running = False

    def _build_schedule(self):
        t = self.config.thresholds
        if t.enabled:
            self.scheduler.add(PeriodicTask("threshold-check", t.check_interval, self.thresholds.tick))
            self.scheduler.add(PeriodicTask("reorder-check", t.reorder_check_interval, self.thresholds.check_reorders))
        self.scheduler.add(PeriodicTask("expiry-sweep", t.expiry_sweep_interval, self.ledger.recover_expired))
        if self.config.monitoring.enabled:
            self.scheduler.add(PeriodicTask(
                "performance-snapshot", self.config.monitoring.monitoring_interval, self.performance.tick
            ))
        self.scheduler.add(PeriodicTask("adaptive-purge", t.expiry_sweep_interval, self.adaptive.purge))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        if self._running:
            logger.warning("[Engine] Already running")
            return
        self._running = True
        await self.scheduler.start()
        logger.info(f"[Engine] Started with {len(self.ledger.get_pools())} pools")

    async def stop(self):
        if not self._running:
            return
        self._running = False
        await self.scheduler.stop()
        logger.info("[Engine] Stopped")

    def tick(self, now: Optional[float] = None) -> TickReport:
        """Run every periodic job once at `now`."""
        now = time.time() if now is None else now
        readings: List[ThresholdReading] = []
        reorders: List[str] = []
        if self.config.thresholds.enabled:
            readings = self.thresholds.tick(now)
            reorders = self.thresholds.check_reorders(now)
        expired = self.ledger.recover_expired(now)
        snapshot = self.performance.tick(now) if self.config.monitoring.enabled else None
        self.adaptive.purge(now)
        return TickReport(readings, reorders, expired, snapshot)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def process_signals(
        self,
        signals: Sequence[Signal],
        now: Optional[float] = None,
        processing_time_ms: Optional[float] = None,
    ) -> SignalBatchResult:
        """
        Run a signal batch through the policy engine and the adaptive activator.

        Each signal's processing time is recorded with the performance
        monitor: measured, or `processing_time_ms` when the caller declares it.
        """
        now = time.time() if now is None else now
        executions: List[PolicyExecution] = []
        failed: List[str] = []

        for signal in signals:
            started = time.perf_counter()
            error_type = None
            try:
                executions.extend(self.policies.process_signal(signal, now))
            except Exception as e:
                error_type = type(e).__name__
                failed.append(signal.id)
                logger.error(f"[Engine] Processing of signal {signal.id} failed: {e}")
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            if processing_time_ms is not None:
                elapsed_ms = processing_time_ms
            self.performance.record_signal_processing(
                signal.type, elapsed_ms, success=error_type is None,
                severity=signal.severity, error_type=error_type, now=now,
            )

        stress = self.adaptive.process_stress_event(signals, now)
        logger.info(
            f"[Engine] Processed {len(signals)} signals: {len(executions)} policy executions, "
            f"{len(stress.activated_patterns)} patterns activated"
        )
        return SignalBatchResult(stress=stress, executions=executions, failed_signals=failed)

    def allocate_margin(self, request: AllocationRequest, now: Optional[float] = None) -> LedgerOutcome[MarginAllocation]:
        return self.ledger.allocate(request, now=now)

    def deploy_margin(
        self, allocation_id: str, quantity: float, reason: str = "", now: Optional[float] = None
    ) -> LedgerOutcome[MarginDeployment]:
        return self.ledger.deploy(allocation_id, quantity, reason, now=now)

    def recover_margin(self, allocation_id: str, reason: str = "", now: Optional[float] = None) -> bool:
        return self.ledger.recover(allocation_id, reason, now=now)

    def record_workflow_execution(
        self,
        workflow_id: str,
        execution_time_ms: float,
        success: bool = True,
        error_type: Optional[str] = None,
        now: Optional[float] = None,
    ) -> List[Alert]:
        """Report a finished workflow run from a workflow executor."""
        return self.performance.record_workflow_execution(
            workflow_id, execution_time_ms, success, error_type, now=now
        )

    def acknowledge_alert(self, alert_id: str, acknowledged_by: str, now: Optional[float] = None) -> Alert:
        return self.performance.acknowledge_alert(alert_id, acknowledged_by, now=now)

    def resolve_alert(
        self, alert_id: str, resolved_by: str, resolution: str = "", now: Optional[float] = None
    ) -> Alert:
        return self.performance.resolve_alert(alert_id, resolved_by, resolution, now=now)

    def update_config(self, partial: Mapping[str, Any]) -> EngineConfig:
        """
        Apply a nested partial config update to the running engine.

        Raises:
            ConfigurationError: the update is unknown or invalid; nothing changes.
        """
        updated = self.config.with_updates(partial)
        self.config = updated
        self.ledger.config = updated.ledger
        self.policies.config = updated.ledger
        self.adaptive.update_config(updated.adaptive)
        self.performance.update_config(updated.monitoring)

        intervals = {
            "threshold-check": updated.thresholds.check_interval,
            "reorder-check": updated.thresholds.reorder_check_interval,
            "expiry-sweep": updated.thresholds.expiry_sweep_interval,
            "performance-snapshot": updated.monitoring.monitoring_interval,
            "adaptive-purge": updated.thresholds.expiry_sweep_interval,
        }
        for name, interval in intervals.items():
            task = self.scheduler.get(name)
            if task is not None:
                task.interval = interval

        logger.info(f"[Engine] Configuration updated: {sorted(partial)}")
        return updated

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_status(self, now: Optional[float] = None) -> Dict[str, Any]:
        now = time.time() if now is None else now
        current = self.performance.get_current_metrics()
        return {
            "running": self._running,
            "timestamp": now,
            "ledger": self.ledger.status_report(),
            "adaptive": self.adaptive.get_status(now),
            "performance": self.performance.get_statistics(),
            "metrics": current.to_dict() if current is not None else None,
        }

    def get_patterns(self) -> List[AntifragilePattern]:
        return self.adaptive.get_patterns()

    def get_stress_events(self, limit: Optional[int] = None) -> List[StressEvent]:
        return self.adaptive.get_stress_events(limit)

    def get_adaptation_history(self) -> List[AdaptationRecord]:
        return self.adaptive.get_adaptation_history()

    def get_active_alerts(self) -> List[Alert]:
        return self.performance.get_active_alerts()

    def get_alert_history(self) -> List[Alert]:
        return self.performance.get_alert_history()

    def get_metrics_history(self, window: Optional[float] = None, now: Optional[float] = None) -> List[PerformanceMetricsSnapshot]:
        return self.performance.get_metrics_history(window, now)

    def get_overall_utilization(self, margin_type: Optional[MarginType] = None) -> float:
        return self.ledger.overall_utilization(margin_type)

    def get_events(
        self,
        event_type: Optional[MarginEventType] = None,
        since: Optional[float] = None,
    ) -> List[MarginEvent]:
        return self.events.events(event_type, since)

    def get_config(self) -> EngineConfig:
        return self.config
