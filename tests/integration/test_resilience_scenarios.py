"""
End-to-end scenarios through the ResilienceEngine:
margin lifecycle, adaptive activation and degradation alerting.
"""

import pytest

from resilience.contracts.alerts import AlertType
from resilience.contracts.margin import AllocationRequest
from resilience.contracts.signals import Severity, SignalType
from resilience.engine import ResilienceEngine
from resilience.monitoring.baselines import signal_key


@pytest.fixture
def engine(engine_config):
    return ResilienceEngine(config=engine_config)


def test_margin_lifecycle(engine, now):
    allocation = engine.allocate_margin(AllocationRequest("bearing-6205", 10, id="repair-42"), now=now).value
    assert engine.ledger.get_pool("bearing-6205").available_quantity == 40

    assert engine.deploy_margin(allocation.id, 4, "replace worn bearings", now=now + 600).ok
    assert engine.recover_margin(allocation.id, "repair complete", now=now + 7200)

    pool = engine.ledger.get_pool("bearing-6205")
    assert pool.available_quantity == 50
    assert pool.allocated_quantity == 0
    record = engine.ledger.utilization_history()[-1]
    assert record.utilization_rate == pytest.approx(0.4)
    assert record.pool_id == "bearing-6205"


def test_high_load_activates_capacity_scaling(engine, make_signal, now):
    signals = [make_signal(SignalType.PERFORMANCE_DEGRADATION, Severity.HIGH) for _ in range(3)]

    result = engine.process_signals(signals, now=now)

    assert result.stress.stress_level == 90
    assert result.activated_patterns == ["high-load-capacity-scaling"]
    assert result.stress.performance_improvements == ["Capacity scaled by 1.30x"]
    assert engine.get_adaptation_history()[-1].pattern_id == "high-load-capacity-scaling"


def test_low_stress_activates_nothing(engine, make_signal, now):
    result = engine.process_signals([make_signal(SignalType.PERFORMANCE_DEGRADATION, Severity.LOW)], now=now)

    assert result.stress.stress_level == 10
    assert result.activated_patterns == []
    assert engine.get_adaptation_history() == []


def test_degraded_processing_raises_one_alert(engine, make_signal, now):
    monitor = engine.performance
    monitor.set_baseline(signal_key(SignalType.EMERGENCY.value), 100.0)
    signal = make_signal(SignalType.EMERGENCY, Severity.HIGH)

    alerts = monitor.monitor_signal_batch([signal], processing_time_ms=300.0, now=now)

    assert len(alerts) == 1
    assert alerts[0].type == AlertType.PERFORMANCE_DEGRADATION

    # Same degradation again inside the dedup window
    assert monitor.monitor_signal_batch([signal], processing_time_ms=300.0, now=now + 10) == []
    degradations = [a for a in engine.get_active_alerts() if a.type == AlertType.PERFORMANCE_DEGRADATION]
    assert len(degradations) == 1


def test_degraded_batch_through_engine_raises_one_alert(engine, make_signal, now):
    def degradations():
        return [a for a in engine.get_active_alerts() if a.type == AlertType.PERFORMANCE_DEGRADATION]

    signal = make_signal(SignalType.OPERATIONAL, Severity.LOW)
    engine.process_signals([signal], now=now, processing_time_ms=100.0)
    assert degradations() == []

    engine.process_signals([signal], now=now + 60, processing_time_ms=300.0)
    assert len(degradations()) == 1
    assert degradations()[0].metadata["baseline_ms"] == 100.0

    # Repeated within five minutes
    engine.process_signals([signal], now=now + 120, processing_time_ms=300.0)
    engine.process_signals([signal], now=now + 300, processing_time_ms=900.0)
    assert len(degradations()) == 1
    assert engine.get_active_alerts() == degradations()
