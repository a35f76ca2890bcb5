# ============================================================================
# tests/unit/ledger/test_margin_ledger.py
# Allocation / deployment / recovery invariants of the MarginLedger
# ============================================================================

import threading

import pytest

from resilience.base.config import LedgerConfig, PoolSelection
from resilience.contracts.margin import (
    AllocationRequest,
    DeploymentStatus,
    MarginEventType,
    MarginType,
    ResourceCategory,
    ResourcePool,
)
from resilience.errors import ErrorCode
from resilience.events import EventLog
from resilience.ledger.ledger import MarginLedger
from resilience.ledger.store import InMemoryLedgerStore


def _assert_pool_invariant(ledger, pool_id):
    pool = ledger.get_pool(pool_id)
    assert pool.allocated_quantity + pool.available_quantity == pool.total_quantity
    assert pool.available_quantity >= 0


def test_allocate_moves_quantity(ledger, now):
    outcome = ledger.allocate(AllocationRequest("bearing-6205", 10, id="req-1"), now=now)

    assert outcome.ok
    allocation = outcome.value
    assert allocation.amount == 10
    assert allocation.type == MarginType.MATERIAL
    assert allocation.expires_at == now + 7 * 86400
    assert allocation.id.startswith("material-alloc-")

    pool = ledger.get_pool("bearing-6205")
    assert pool.available_quantity == 40
    assert pool.allocated_quantity == 10
    _assert_pool_invariant(ledger, "bearing-6205")

    events = ledger.events.events(MarginEventType.ALLOCATION)
    assert events[-1].metadata["outcome"] == "GRANTED"
    assert events[-1].impact == 0.3


def test_allocate_denials(ledger, now):
    missing = ledger.allocate(AllocationRequest("no-such-pool", 1), now=now)
    assert not missing.ok
    assert missing.error.code == ErrorCode.POOL_NOT_FOUND

    too_much = ledger.allocate(AllocationRequest("bearing-6205", 51), now=now)
    assert too_much.error.code == ErrorCode.INSUFFICIENT_RESOURCE

    zero = ledger.allocate(AllocationRequest("bearing-6205", 0), now=now)
    assert zero.error.code == ErrorCode.INVALID_QUANTITY

    # Denials leave the pool untouched and are recorded
    _assert_pool_invariant(ledger, "bearing-6205")
    assert ledger.get_pool("bearing-6205").available_quantity == 50
    denied = [e for e in ledger.events.events(MarginEventType.ALLOCATION) if e.metadata["outcome"] == "DENIED"]
    assert [e.metadata["code"] for e in denied] == [
        "POOL_NOT_FOUND", "INSUFFICIENT_RESOURCE", "INVALID_QUANTITY",
    ]


def test_concurrency_limit(ledger, now):
    for i in range(5):
        assert ledger.allocate(AllocationRequest("safety-helmet", 1, id=f"r{i}"), now=now).ok

    outcome = ledger.allocate(AllocationRequest("safety-helmet", 1, id="r5"), now=now)
    assert outcome.error.code == ErrorCode.CONCURRENCY_LIMIT_EXCEEDED
    assert ledger.get_pool("safety-helmet").available_quantity == 95


def test_duplicate_request_id_denied(ledger, now):
    assert ledger.allocate(AllocationRequest("bearing-6205", 1, id="same"), now=now).ok
    second = ledger.allocate(AllocationRequest("bearing-6205", 1, id="same"), now=now)
    assert second.error.code == ErrorCode.DUPLICATE_REQUEST


def test_disabled_ledger_denies(now):
    ledger = MarginLedger(LedgerConfig(enabled=False))
    ledger.add_pool(ResourcePool("p", "Pool", ResourceCategory.TOOLS, 10))
    assert ledger.allocate(AllocationRequest("p", 1), now=now).error.code == ErrorCode.LEDGER_DISABLED


def test_exhaustion_event(ledger, now):
    ledger.allocate(AllocationRequest("bearing-6205", 50), now=now)
    exhausted = ledger.events.events(MarginEventType.EXHAUSTION)
    assert len(exhausted) == 1
    assert exhausted[0].impact == 1.0
    assert exhausted[0].metadata["pool_id"] == "bearing-6205"


def test_deploy_rejects_over_deployment(ledger, now):
    allocation = ledger.allocate(AllocationRequest("bearing-6205", 10), now=now).value

    first = ledger.deploy(allocation.id, 6, "repair", now=now)
    assert first.ok
    assert first.value.status == DeploymentStatus.ACTIVE

    second = ledger.deploy(allocation.id, 5, "more", now=now)
    assert not second.ok
    assert second.error.code == ErrorCode.QUANTITY_EXCEEDS_ALLOCATION
    assert second.error.details["remaining"] == 4

    assert ledger.deploy(allocation.id, 4, "rest", now=now).ok
    assert ledger.deployed_amount(allocation.id) == 10
    # Deployment never changes pool totals
    assert ledger.get_pool("bearing-6205").available_quantity == 40


@pytest.mark.parametrize("quantity", [0, -3])
def test_deploy_rejects_non_positive_quantity(ledger, now, quantity):
    allocation = ledger.allocate(AllocationRequest("bearing-6205", 10), now=now).value

    outcome = ledger.deploy(allocation.id, quantity, now=now)

    assert not outcome.ok
    assert outcome.error.code == ErrorCode.INVALID_QUANTITY
    assert outcome.error.details == {"quantity": quantity}
    assert ledger.deployments(allocation.id) == []


def test_deploy_unknown_allocation(ledger, now):
    outcome = ledger.deploy("missing", 1, now=now)
    assert outcome.error.code == ErrorCode.ALLOCATION_NOT_FOUND


def test_recover_records_utilization(ledger, now):
    allocation = ledger.allocate(AllocationRequest("bearing-6205", 10), now=now).value
    ledger.deploy(allocation.id, 4, "repair", now=now + 60)

    assert ledger.recover(allocation.id, "done", now=now + 3600) is True

    pool = ledger.get_pool("bearing-6205")
    assert pool.available_quantity == 50
    assert pool.allocated_quantity == 0

    history = ledger.utilization_history()
    assert len(history) == 1
    assert history[0].utilization_rate == pytest.approx(0.4)
    assert history[0].peak_utilization == pytest.approx(0.4)
    assert history[0].duration == 3600
    assert all(d.status == DeploymentStatus.COMPLETED for d in ledger.deployments(allocation.id))
    assert ledger.get_allocation(allocation.id) is None


def test_recover_twice_is_noop(ledger, now):
    allocation = ledger.allocate(AllocationRequest("bearing-6205", 10), now=now).value

    assert ledger.recover(allocation.id, now=now) is True
    assert ledger.recover(allocation.id, now=now) is False
    assert ledger.recover("never-existed", now=now) is False
    assert len(ledger.events.events(MarginEventType.RECOVERY)) == 1
    _assert_pool_invariant(ledger, "bearing-6205")


def test_recover_expired(ledger, now):
    short = ledger.allocate(AllocationRequest("bearing-6205", 5, duration_days=1), now=now).value
    long = ledger.allocate(AllocationRequest("bearing-6205", 5, duration_days=30), now=now).value

    recovered = ledger.recover_expired(now=now + 2 * 86400)

    assert recovered == [short.id]
    assert ledger.get_allocation(long.id) is not None
    assert ledger.get_pool("bearing-6205").available_quantity == 45


def test_overall_utilization(ledger, now):
    assert ledger.overall_utilization() == 0.0
    ledger.allocate(AllocationRequest("bearing-6205", 30), now=now)
    # 30 allocated over 150 total
    assert ledger.overall_utilization() == pytest.approx(0.2)
    assert MarginLedger().overall_utilization() == 0.0


def test_select_pool_strategies(now):
    ledger = MarginLedger()
    ledger.add_pool(ResourcePool("big", "Big", ResourceCategory.CONSUMABLES, 200))
    ledger.add_pool(ResourcePool("small", "Small", ResourceCategory.CONSUMABLES, 12))

    assert ledger.select_pool(ResourceCategory.CONSUMABLES, 10).id == "big"
    assert ledger.select_pool(ResourceCategory.CONSUMABLES, 10, PoolSelection.BEST_FIT).id == "small"
    assert ledger.select_pool(ResourceCategory.CONSUMABLES, 500) is None


def test_concurrent_allocations_never_overcommit():
    ledger = MarginLedger(LedgerConfig(max_concurrent_allocations=1000))
    ledger.add_pool(ResourcePool("p", "Pool", ResourceCategory.STORAGE, 100))
    granted = []

    def worker():
        for _ in range(20):
            outcome = ledger.allocate(AllocationRequest("p", 1))
            if outcome.ok:
                granted.append(outcome.value.id)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(granted) == 100
    pool = ledger.get_pool("p")
    assert pool.available_quantity == 0
    assert pool.allocated_quantity == 100


def test_status_report(ledger, now):
    allocation = ledger.allocate(AllocationRequest("bearing-6205", 10), now=now).value
    ledger.deploy(allocation.id, 2, now=now)

    report = ledger.status_report()
    assert report["active_allocations"] == 1
    assert report["active_deployments"] == 1
    assert report["allocated_quantity"] == 10
    assert len(report["recent_events"]) == 2


def test_injected_empty_collaborators_are_kept():
    log = EventLog(10)
    store = InMemoryLedgerStore()
    ledger = MarginLedger(LedgerConfig(), store=store, event_log=log)

    assert ledger.events is log
    assert ledger.store is store

    ledger.add_pool(ResourcePool("p", "Pool", ResourceCategory.STORAGE, 10))
    assert ledger.allocate(AllocationRequest("p", 1)).ok
    assert len(log) == 1


def test_recovered_history_is_bounded(now):
    ledger = MarginLedger(LedgerConfig(history_capacity=2))
    ledger.add_pool(ResourcePool("p", "Pool", ResourceCategory.STORAGE, 100))

    ids = []
    for i in range(3):
        allocation = ledger.allocate(AllocationRequest("p", 10), now=now + i).value
        ledger.deploy(allocation.id, 5, now=now + i)
        ledger.recover(allocation.id, now=now + i + 1)
        ids.append(allocation.id)
    live = ledger.allocate(AllocationRequest("p", 10), now=now + 10).value
    ledger.deploy(live.id, 3, now=now + 10)

    assert ledger.deployments(ids[0]) == []
    assert [d.status for d in ledger.deployments(ids[2])] == [DeploymentStatus.COMPLETED]
    assert len(ledger.deployments()) == 3
    assert len(ledger.utilization_history()) == 2
    assert ledger.deployed_amount(live.id) == 3
    assert ledger.status_report()["active_deployments"] == 1
