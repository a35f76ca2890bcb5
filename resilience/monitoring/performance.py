"""
Performance Monitor - Baselines, Snapshots and Deduplicated Alerts

PURPOSE:
Watch the engine's own processing. Signal processing and workflow execution
samples are compared against EMA baselines; every tick aggregates the
rolling window into a metrics snapshot, derives trends and raises
system-health and resource-exhaustion alerts.

KEY CONCEPTS:
- **Baseline**: EMA per key, "{signal_type}-processing-time" or
  "{workflow_id}-execution-time". A sample is judged against the baseline
  in force before it. Samples under `min_judged_sample_ms` update the
  baseline but are never judged degraded.
- **Snapshot**: Aggregate of the last `window` seconds of samples.
- **Trend**: Mean of the last N snapshots versus the N before them.
- **Dedup**: An alert is suppressed while an open alert with the same
  signature (type, title) was raised within the dedup window.

Response times are milliseconds; timestamps are epoch seconds.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from resilience.base.config import MonitoringConfig
from resilience.contracts.alerts import Alert, AlertSeverity, AlertStatus, AlertType
from resilience.contracts.margin import new_id
from resilience.errors import AlertNotFoundError
from resilience.monitoring.baselines import BaselineTracker, signal_key, workflow_key

logger = logging.getLogger(__name__)

AlertCallback = Callable[[Alert], None]

IMPROVING = "IMPROVING"
DEGRADING = "DEGRADING"
STABLE = "STABLE"


@dataclass(frozen=True)
class SignalSample:
    timestamp: float
    signal_type: str
    response_time_ms: float
    success: bool
    severity: Optional[str] = None
    error_type: Optional[str] = None


@dataclass(frozen=True)
class WorkflowSample:
    timestamp: float
    workflow_id: str
    execution_time_ms: float
    success: bool
    error_type: Optional[str] = None


@dataclass
class PerformanceMetricsSnapshot:
    timestamp: float
    window: float
    signal_count: int
    workflow_count: int
    response_time: Dict[str, float] = field(default_factory=dict)
    success_rate: Dict[str, Any] = field(default_factory=dict)
    resource_utilization: Dict[str, float] = field(default_factory=dict)
    throughput: Dict[str, float] = field(default_factory=dict)
    errors: Dict[str, Any] = field(default_factory=dict)
    trends: Dict[str, str] = field(default_factory=dict)

    @property
    def sample_count(self) -> int:
        return self.signal_count + self.workflow_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "window": self.window,
            "signal_count": self.signal_count,
            "workflow_count": self.workflow_count,
            "response_time": dict(self.response_time),
            "success_rate": dict(self.success_rate),
            "resource_utilization": dict(self.resource_utilization),
            "throughput": dict(self.throughput),
            "errors": dict(self.errors),
            "trends": dict(self.trends),
        }


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """sorted[floor(n * p)], clamped to the last element."""
    if not sorted_values:
        return 0.0
    index = min(len(sorted_values) - 1, int(math.floor(len(sorted_values) * p)))
    return sorted_values[index]


def _rate(samples: Sequence[Any]) -> float:
    return sum(1 for s in samples if s.success) / len(samples) if samples else 1.0


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class PerformanceMonitor:
    """
    Tracks processing performance and manages the alert lifecycle.

    Usage:
        monitor = PerformanceMonitor(MonitoringConfig())
        monitor.record_signal_processing("EMERGENCY", 120.0, success=True)
        snapshot = monitor.tick()
    """

    def __init__(
        self,
        config: Optional[MonitoringConfig] = None,
        utilization_source: Optional[Callable[[], float]] = None,
    ):
        self.config = config if config is not None else MonitoringConfig()
        self.config.validate()
        self.baselines = BaselineTracker(self.config.baseline_alpha, self.config.default_baseline_ms)
        self.utilization_source = utilization_source

        self._signal_samples: List[SignalSample] = []
        self._workflow_samples: List[WorkflowSample] = []
        self._utilization_samples: List[tuple] = []
        self._snapshots: List[PerformanceMetricsSnapshot] = []
        self._active_alerts: Dict[str, Alert] = {}
        self._alert_history: List[Alert] = []
        self._subscribers: List[AlertCallback] = []
        self._lock = threading.RLock()

    def update_config(self, config: MonitoringConfig):
        config.validate()
        with self._lock:
            self.config = config
            self.baselines.alpha = config.baseline_alpha
            self.baselines.default = config.default_baseline_ms

    def subscribe(self, callback: AlertCallback):
        self._subscribers.append(callback)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_signal_processing(
        self,
        signal_type: str,
        response_time_ms: float,
        success: bool = True,
        severity: Optional[str] = None,
        error_type: Optional[str] = None,
        now: Optional[float] = None,
    ) -> List[Alert]:
        now = time.time() if now is None else now
        signal_type = getattr(signal_type, "value", signal_type)
        severity = getattr(severity, "value", severity)
        alerts = []
        with self._lock:
            self._signal_samples.append(SignalSample(now, signal_type, response_time_ms, success, severity, error_type))
            prior = self.baselines.observe(signal_key(signal_type), response_time_ms)

            if self._degraded(response_time_ms, prior, self.config.signal_degradation_factor):
                alerts.append(self._raise(
                    AlertType.PERFORMANCE_DEGRADATION, AlertSeverity.MEDIUM,
                    "High Response Time Detected",
                    f"{signal_type} processing took {response_time_ms:.0f}ms (baseline {prior:.0f}ms)",
                    source="signal-processing", now=now,
                    metadata={"signal_type": signal_type, "response_time_ms": response_time_ms, "baseline_ms": prior},
                ))
            if not success:
                alerts.append(self._raise(
                    AlertType.PROCESSING_ERROR, AlertSeverity.HIGH,
                    "Signal Processing Failure",
                    f"Processing of {signal_type} signal failed"
                    + (f": {error_type}" if error_type else ""),
                    source="signal-processing", now=now,
                    metadata={"signal_type": signal_type, "error_type": error_type},
                ))
        return [a for a in alerts if a is not None]

    def monitor_signal_batch(
        self,
        signals: Sequence[Any],
        processing_time_ms: float,
        success: bool = True,
        error_type: Optional[str] = None,
        now: Optional[float] = None,
    ) -> List[Alert]:
        """Record one processing-time sample per signal in a batch."""
        alerts: List[Alert] = []
        for signal in signals:
            alerts.extend(self.record_signal_processing(
                signal.type, processing_time_ms, success,
                severity=signal.severity, error_type=error_type, now=now,
            ))
        return alerts

    def record_workflow_execution(
        self,
        workflow_id: str,
        execution_time_ms: float,
        success: bool = True,
        error_type: Optional[str] = None,
        now: Optional[float] = None,
    ) -> List[Alert]:
        now = time.time() if now is None else now
        alerts = []
        with self._lock:
            self._workflow_samples.append(WorkflowSample(now, workflow_id, execution_time_ms, success, error_type))
            prior = self.baselines.observe(workflow_key(workflow_id), execution_time_ms)

            if self._degraded(execution_time_ms, prior, self.config.workflow_degradation_factor):
                alerts.append(self._raise(
                    AlertType.PERFORMANCE_DEGRADATION, AlertSeverity.MEDIUM,
                    "Slow Execution Detected",
                    f"Workflow {workflow_id} took {execution_time_ms:.0f}ms (baseline {prior:.0f}ms)",
                    source="workflow-execution", now=now,
                    metadata={"workflow_id": workflow_id, "execution_time_ms": execution_time_ms, "baseline_ms": prior},
                ))
            if not success:
                alerts.append(self._raise(
                    AlertType.EXECUTION_ERROR, AlertSeverity.HIGH,
                    "Workflow Execution Failure",
                    f"Workflow {workflow_id} failed" + (f": {error_type}" if error_type else ""),
                    source="workflow-execution", now=now,
                    metadata={"workflow_id": workflow_id, "error_type": error_type},
                ))
        return [a for a in alerts if a is not None]

    def _degraded(self, sample_ms: float, prior: Optional[float], factor: float) -> bool:
        if prior is None or sample_ms < self.config.min_judged_sample_ms:
            return False
        return sample_ms > factor * prior

    def record_resource_utilization(self, value: float, now: Optional[float] = None):
        now = time.time() if now is None else now
        with self._lock:
            self._utilization_samples.append((now, value))

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def _raise(
        self,
        alert_type: AlertType,
        severity: AlertSeverity,
        title: str,
        description: str,
        source: str,
        now: float,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Alert]:
        """Create an alert unless a matching one was raised within the dedup window."""
        for existing in self._active_alerts.values():
            if existing.is_open and existing.signature == (alert_type, title) \
                    and now - existing.timestamp < self.config.alert_dedup_window:
                logger.debug(f"[PerformanceMonitor] Suppressed duplicate alert: {title}")
                return None

        alert = Alert(
            id=new_id("alert"),
            type=alert_type,
            severity=severity,
            title=title,
            description=description,
            source=source,
            timestamp=now,
            metadata=metadata or {},
        )
        self._active_alerts[alert.id] = alert
        logger.warning(f"[PerformanceMonitor] {severity.value} alert: {title} - {description}")

        for callback in list(self._subscribers):
            try:
                callback(alert)
            except Exception as e:
                logger.error(f"[PerformanceMonitor] Alert subscriber failed: {e}")
        return alert

    def acknowledge_alert(self, alert_id: str, acknowledged_by: str, now: Optional[float] = None) -> Alert:
        with self._lock:
            alert = self._active_alerts.get(alert_id)
            if alert is None:
                raise AlertNotFoundError(alert_id)
            alert.status = AlertStatus.ACKNOWLEDGED
            alert.acknowledged_by = acknowledged_by
            alert.acknowledged_at = time.time() if now is None else now
            logger.info(f"[PerformanceMonitor] Alert {alert_id} acknowledged by {acknowledged_by}")
            return alert

    def resolve_alert(
        self,
        alert_id: str,
        resolved_by: str,
        resolution: str = "",
        now: Optional[float] = None,
    ) -> Alert:
        """Resolve an alert and move it from the active set to history."""
        with self._lock:
            alert = self._active_alerts.pop(alert_id, None)
            if alert is None:
                raise AlertNotFoundError(alert_id)
            alert.status = AlertStatus.RESOLVED
            alert.resolved_by = resolved_by
            alert.resolved_at = time.time() if now is None else now
            alert.resolution = resolution
            self._alert_history.append(alert)
            logger.info(f"[PerformanceMonitor] Alert {alert_id} resolved by {resolved_by}")
            return alert

    def get_active_alerts(self) -> List[Alert]:
        with self._lock:
            return sorted(self._active_alerts.values(), key=lambda a: a.timestamp)

    def get_alert_history(self) -> List[Alert]:
        with self._lock:
            return list(self._alert_history)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def tick(self, now: Optional[float] = None) -> PerformanceMetricsSnapshot:
        """Snapshot the rolling window, update trends, purge, and check system health."""
        now = time.time() if now is None else now
        if self.utilization_source is not None:
            try:
                self.record_resource_utilization(self.utilization_source(), now)
            except Exception as e:
                logger.error(f"[PerformanceMonitor] Utilization source failed: {e}")

        with self._lock:
            snapshot = self._aggregate(now)
            self._snapshots.append(snapshot)
            snapshot.trends = self._trends()
            self._purge(now)
            self._check_health(snapshot, now)
        return snapshot

    def _aggregate(self, now: float) -> PerformanceMetricsSnapshot:
        start = now - self.config.window
        signals = [s for s in self._signal_samples if start <= s.timestamp <= now]
        workflows = [w for w in self._workflow_samples if start <= w.timestamp <= now]
        utilization = [v for (t, v) in self._utilization_samples if start <= t <= now]

        times = sorted([s.response_time_ms for s in signals] + [w.execution_time_ms for w in workflows])
        all_samples: List[Any] = list(signals) + list(workflows)
        minutes = self.config.window / 60.0

        by_signal_type: Dict[str, List[SignalSample]] = defaultdict(list)
        by_severity: Dict[str, List[SignalSample]] = defaultdict(list)
        for s in signals:
            by_signal_type[s.signal_type].append(s)
            if s.severity:
                by_severity[s.severity].append(s)
        by_workflow: Dict[str, List[WorkflowSample]] = defaultdict(list)
        for w in workflows:
            by_workflow[w.workflow_id].append(w)

        errors_by_type: Dict[str, int] = defaultdict(int)
        errors_by_workflow: Dict[str, int] = defaultdict(int)
        for s in signals:
            if not s.success:
                errors_by_type[s.error_type or "unknown"] += 1
        for w in workflows:
            if not w.success:
                errors_by_type[w.error_type or "unknown"] += 1
                errors_by_workflow[w.workflow_id] += 1

        error_total = sum(1 for s in all_samples if not s.success)
        return PerformanceMetricsSnapshot(
            timestamp=now,
            window=self.config.window,
            signal_count=len(signals),
            workflow_count=len(workflows),
            response_time={
                "average": _mean(times),
                "median": percentile(times, 0.5),
                "p95": percentile(times, 0.95),
                "p99": percentile(times, 0.99),
                "min": times[0] if times else 0.0,
                "max": times[-1] if times else 0.0,
            },
            success_rate={
                "overall": _rate(all_samples),
                "by_signal_type": {k: _rate(v) for k, v in by_signal_type.items()},
                "by_severity": {k: _rate(v) for k, v in by_severity.items()},
                "by_workflow": {k: _rate(v) for k, v in by_workflow.items()},
            },
            resource_utilization={
                "average": _mean(utilization),
                "peak": max(utilization) if utilization else 0.0,
            },
            throughput={
                "signals_per_minute": len(signals) / minutes,
                "workflows_per_minute": len(workflows) / minutes,
            },
            errors={
                "total": error_total,
                "rate": error_total / len(all_samples) if all_samples else 0.0,
                "by_type": dict(errors_by_type),
                "by_workflow": dict(errors_by_workflow),
            },
        )

    def _trends(self) -> Dict[str, str]:
        k = self.config.trend_sample_size
        if len(self._snapshots) < 2 * k:
            return {"response_time": STABLE, "success_rate": STABLE, "throughput": STABLE}

        recent = self._snapshots[-k:]
        previous = self._snapshots[-2 * k:-k]

        def avg(items, fn):
            return _mean([fn(s) for s in items])

        rt_now = avg(recent, lambda s: s.response_time["average"])
        rt_before = avg(previous, lambda s: s.response_time["average"])
        sr_now = avg(recent, lambda s: s.success_rate["overall"])
        sr_before = avg(previous, lambda s: s.success_rate["overall"])
        tp_now = avg(recent, lambda s: s.throughput["signals_per_minute"] + s.throughput["workflows_per_minute"])
        tp_before = avg(previous, lambda s: s.throughput["signals_per_minute"] + s.throughput["workflows_per_minute"])

        def relative(current: float, before: float, higher_is_better: bool) -> str:
            if current > before * 1.1:
                return IMPROVING if higher_is_better else DEGRADING
            if current < before * 0.9:
                return DEGRADING if higher_is_better else IMPROVING
            return STABLE

        if sr_now > sr_before + 0.05:
            success_trend = IMPROVING
        elif sr_now < sr_before - 0.05:
            success_trend = DEGRADING
        else:
            success_trend = STABLE

        return {
            "response_time": relative(rt_now, rt_before, higher_is_better=False),
            "success_rate": success_trend,
            "throughput": relative(tp_now, tp_before, higher_is_better=True),
        }

    def _purge(self, now: float):
        retention_cutoff = now - self.config.metrics_retention
        window_cutoff = now - self.config.window
        self._snapshots = [s for s in self._snapshots if s.timestamp >= retention_cutoff]
        self._signal_samples = [s for s in self._signal_samples if s.timestamp >= window_cutoff]
        self._workflow_samples = [w for w in self._workflow_samples if w.timestamp >= window_cutoff]
        self._utilization_samples = [u for u in self._utilization_samples if u[0] >= window_cutoff]
        self._alert_history = [
            a for a in self._alert_history if (a.resolved_at or a.timestamp) >= retention_cutoff
        ]

    def _check_health(self, snapshot: PerformanceMetricsSnapshot, now: float):
        thresholds = self.config.alert_thresholds
        peak = snapshot.resource_utilization["peak"]
        if peak >= thresholds.resource_utilization:
            self._raise(
                AlertType.RESOURCE_EXHAUSTION, AlertSeverity.HIGH,
                "High Resource Utilization Alert",
                f"Peak margin utilization {peak:.1%} at or above {thresholds.resource_utilization:.1%}",
                source="performance-monitor", now=now,
                metadata={"peak_utilization": peak, "threshold": thresholds.resource_utilization},
            )
        if snapshot.sample_count == 0:
            return
        overall = snapshot.success_rate["overall"]
        if overall < thresholds.success_rate:
            self._raise(
                AlertType.SYSTEM_HEALTH, AlertSeverity.HIGH,
                "Low Success Rate Alert",
                f"Success rate {overall:.1%} below threshold {thresholds.success_rate:.1%}",
                source="performance-monitor", now=now,
                metadata={"success_rate": overall, "threshold": thresholds.success_rate},
            )
        average = snapshot.response_time["average"]
        if average > thresholds.response_time_ms:
            self._raise(
                AlertType.SYSTEM_HEALTH, AlertSeverity.MEDIUM,
                "High Response Time Alert",
                f"Average response time {average:.0f}ms above threshold {thresholds.response_time_ms:.0f}ms",
                source="performance-monitor", now=now,
                metadata={"average_response_time_ms": average, "threshold": thresholds.response_time_ms},
            )
        error_rate = snapshot.errors["rate"]
        if error_rate > thresholds.error_rate:
            self._raise(
                AlertType.SYSTEM_HEALTH, AlertSeverity.HIGH,
                "High Error Rate Alert",
                f"Error rate {error_rate:.1%} above threshold {thresholds.error_rate:.1%}",
                source="performance-monitor", now=now,
                metadata={"error_rate": error_rate, "threshold": thresholds.error_rate},
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_metrics_history(self, window: Optional[float] = None, now: Optional[float] = None) -> List[PerformanceMetricsSnapshot]:
        """Snapshots, optionally only those from the last `window` seconds."""
        with self._lock:
            snapshots = list(self._snapshots)
        if window is None:
            return snapshots
        now = time.time() if now is None else now
        return [s for s in snapshots if s.timestamp >= now - window]

    def get_current_metrics(self) -> Optional[PerformanceMetricsSnapshot]:
        with self._lock:
            return self._snapshots[-1] if self._snapshots else None

    def get_baselines(self) -> Dict[str, float]:
        return self.baselines.all()

    def set_baseline(self, key: str, value: float):
        self.baselines.set(key, value)

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            by_severity: Dict[str, int] = defaultdict(int)
            for alert in self._active_alerts.values():
                by_severity[alert.severity.value] += 1
            latest = self._snapshots[-1] if self._snapshots else None
            return {
                "snapshots": len(self._snapshots),
                "active_alerts": len(self._active_alerts),
                "resolved_alerts": len(self._alert_history),
                "active_alerts_by_severity": dict(by_severity),
                "baselines": len(self.baselines.all()),
                "latest_success_rate": latest.success_rate["overall"] if latest else None,
                "latest_average_response_time_ms": latest.response_time["average"] if latest else None,
            }

    def clear_history(self):
        with self._lock:
            self._snapshots.clear()
            self._alert_history.clear()
            self._signal_samples.clear()
            self._workflow_samples.clear()
            self._utilization_samples.clear()
