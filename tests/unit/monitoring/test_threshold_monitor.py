import pytest

from resilience.contracts.margin import (
    AllocationRequest,
    BreachLevel,
    MarginEventType,
    MarginThreshold,
    MarginType,
    PoolStatus,
    ResourceCategory,
    ResourcePool,
)
from resilience.ledger.defaults import default_thresholds
from resilience.ledger.ledger import MarginLedger
from resilience.monitoring.thresholds import ThresholdMonitor, availability_ratio


BANDS = MarginThreshold(id="t", margin_type=MarginType.MATERIAL, warning=0.3, critical=0.1, emergency=0.05)


@pytest.mark.parametrize("ratio,expected", [
    (0.03, BreachLevel.EMERGENCY),
    (0.12, BreachLevel.WARNING),
    (0.1, BreachLevel.CRITICAL),
    (0.35, None),
    (0.9, None),
])
def test_classification_is_ordered(ratio, expected):
    assert BANDS.classify(ratio) == expected


def test_classification_first_match_wins():
    # 0.03 sits below all three bands but only EMERGENCY is reported
    bands = MarginThreshold(id="t", margin_type=MarginType.MATERIAL, warning=0.3, critical=0.15, emergency=0.05)
    assert [bands.classify(r) for r in (0.03, 0.12, 0.35, 0.9)] == [
        BreachLevel.EMERGENCY, BreachLevel.CRITICAL, None, None,
    ]
    assert bands.classify(0.3) == BreachLevel.WARNING


def test_threshold_rejects_misordered_bands():
    with pytest.raises(ValueError):
        MarginThreshold(id="bad", margin_type=MarginType.MATERIAL, warning=0.1, critical=0.3, emergency=0.05)
    with pytest.raises(ValueError):
        MarginThreshold(id="bad", margin_type=MarginType.MATERIAL, warning=1.5, critical=0.3, emergency=0.05)


def test_ratio_uses_minimum_stock_then_total():
    assert availability_ratio(ResourcePool("a", "A", ResourceCategory.TOOLS, 100, minimum_stock=20)) == 5.0
    assert availability_ratio(ResourcePool("b", "B", ResourceCategory.TOOLS, 100, allocated_quantity=75)) == 0.25
    assert availability_ratio(ResourcePool("c", "C", ResourceCategory.TOOLS, 0)) == 0.0


def _monitor_with_pool(total, minimum, allocated, reorder=0.0):
    ledger = MarginLedger()
    ledger.add_pool(ResourcePool("p", "Pool", ResourceCategory.SPARE_PARTS, total,
                                 minimum_stock=minimum, reorder_point=reorder))
    if allocated:
        ledger.allocate(AllocationRequest("p", allocated), now=0)
    return ledger, ThresholdMonitor(ledger, default_thresholds())


def test_tick_emits_one_breach_per_pool(now):
    # available 1 / minimum 20 = 0.05 -> EMERGENCY (and also below critical and warning)
    ledger, monitor = _monitor_with_pool(total=100, minimum=20, allocated=99)

    readings = monitor.tick(now)

    assert len(readings) == 1
    assert readings[0].level == BreachLevel.EMERGENCY
    assert readings[0].threshold_id == "spare-parts-threshold"
    assert readings[0].auto_deploy is True
    breaches = ledger.events.events(MarginEventType.THRESHOLD_BREACH)
    assert len(breaches) == 1
    assert breaches[0].metadata["level"] == "EMERGENCY"
    assert breaches[0].impact == 0.7


def test_tick_no_breach_when_healthy(now):
    ledger, monitor = _monitor_with_pool(total=100, minimum=20, allocated=10)
    readings = monitor.tick(now)
    assert readings[0].level is None
    assert ledger.events.events(MarginEventType.THRESHOLD_BREACH) == []


def test_category_threshold_preferred_over_margin_type():
    ledger = MarginLedger()
    monitor = ThresholdMonitor(ledger, default_thresholds())
    consumables = ResourcePool("oil", "Oil", ResourceCategory.CONSUMABLES, 10)
    tools = ResourcePool("wrench", "Wrench", ResourceCategory.TOOLS, 10)
    assert monitor.threshold_for(consumables).id == "consumables-threshold"
    assert monitor.threshold_for(tools).id == "material-threshold"


def test_inactive_pools_are_skipped(now):
    ledger = MarginLedger()
    ledger.add_pool(ResourcePool("old", "Old", ResourceCategory.SPARE_PARTS, 0, status=PoolStatus.DISCONTINUED))
    monitor = ThresholdMonitor(ledger, default_thresholds())
    assert monitor.tick(now) == []
    assert monitor.check_reorders(now) == []


def test_reorder_recommendation(now):
    ledger, monitor = _monitor_with_pool(total=50, minimum=10, allocated=36, reorder=15)

    flagged = monitor.check_reorders(now)

    assert flagged == ["p"]
    event = ledger.events.events(MarginEventType.OPTIMIZATION)[-1]
    assert "Reorder recommendation for Pool: Order 20" in event.description
    assert event.metadata["recommended_quantity"] == 20


def test_no_reorder_above_reorder_point(now):
    ledger, monitor = _monitor_with_pool(total=50, minimum=10, allocated=10, reorder=15)
    assert monitor.check_reorders(now) == []
