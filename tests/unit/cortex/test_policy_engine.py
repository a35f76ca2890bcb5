import pytest

from resilience.contracts.margin import (
    Action,
    ActionType,
    Condition,
    ConditionType,
    MarginEventType,
    MarginPolicy,
    Operator,
)
from resilience.contracts.signals import Severity, SignalType
from resilience.cortex.conditions import EvaluationContext, compare, evaluate_condition, parse_instant
from resilience.cortex.policy_engine import PolicyEngine
from resilience.errors import ErrorCode
from resilience.ledger.defaults import default_policies


def _signal_condition(signal_type):
    return Condition(type=ConditionType.SIGNAL, operator=Operator.EQ, value=signal_type.value)


def _allocate(category, quantity):
    return Action(type=ActionType.ALLOCATE, parameters={"category": category, "quantity": quantity})


# --- Conditions ---

def test_signal_condition_rejects_ordering_operators():
    with pytest.raises(ValueError):
        Condition(type=ConditionType.SIGNAL, operator=Operator.GT, value="EMERGENCY")


def test_numeric_comparison_tolerance():
    assert compare(0.805, Operator.EQ, 0.8, tolerance=0.01)
    assert not compare(0.82, Operator.EQ, 0.8, tolerance=0.01)
    assert compare(0.82, Operator.NE, 0.8, tolerance=0.01)
    assert compare(0.8, Operator.GTE, 0.8)
    assert not compare(0.8, Operator.GT, 0.8)


def test_risk_and_utilization_conditions(make_signal, now):
    context = EvaluationContext(signal=make_signal(severity=Severity.HIGH), now=now, utilization=lambda: 0.5)

    assert evaluate_condition(Condition(type=ConditionType.RISK, operator=Operator.GTE, value=0.8), context)
    assert not evaluate_condition(Condition(type=ConditionType.RISK, operator=Operator.GT, value=0.8), context)
    assert evaluate_condition(Condition(type=ConditionType.UTILIZATION, operator=Operator.EQ, value=0.495), context)
    assert not evaluate_condition(Condition(type=ConditionType.UTILIZATION, operator=Operator.GTE, value=0.8), context)


def test_time_condition(make_signal):
    instant = parse_instant("2023-11-14T22:13:20Z")
    assert instant == 1_700_000_000.0
    context = EvaluationContext(signal=make_signal(), now=instant + 60, utilization=lambda: 0.0)

    after = Condition(type=ConditionType.TIME, operator=Operator.GT, value="2023-11-14T22:13:20Z")
    before = Condition(type=ConditionType.TIME, operator=Operator.LT, value=instant)
    assert evaluate_condition(after, context)
    assert not evaluate_condition(before, context)


# --- Engine ---

def test_matching_policy_allocates_from_category_pool(ledger, make_signal, now):
    policy = MarginPolicy(
        id="emergency", name="Emergency",
        conditions=[_signal_condition(SignalType.EMERGENCY)],
        actions=[_allocate("SAFETY", 10)],
    )
    engine = PolicyEngine(ledger, [policy])
    signal = make_signal(SignalType.EMERGENCY, Severity.CRITICAL)

    executions = engine.process_signal(signal, now=now)

    assert len(executions) == 1
    result = executions[0].results[0]
    assert result.ok
    allocation = ledger.get_allocation(result.allocation_id)
    assert allocation.pool_id == "safety-helmet"
    assert allocation.amount == 10
    assert allocation.request_id == f"policy-emergency-{signal.id}-0"
    assert allocation.priority == Severity.CRITICAL
    assert allocation.metadata == {"signal_id": signal.id, "policy_id": "emergency"}
    assert ledger.get_pool("safety-helmet").available_quantity == 90


def test_non_matching_signal_does_nothing(ledger, make_signal, now):
    engine = PolicyEngine(ledger, [MarginPolicy(
        id="emergency", name="Emergency",
        conditions=[_signal_condition(SignalType.EMERGENCY)],
        actions=[_allocate("SAFETY", 10)],
    )])
    assert engine.process_signal(make_signal(SignalType.MAINTENANCE), now=now) == []
    assert ledger.live_allocations() == []


def test_policies_fire_in_priority_order(ledger, make_signal, now):
    condition = [_signal_condition(SignalType.EMERGENCY)]
    engine = PolicyEngine(ledger, [
        MarginPolicy(id="late", name="Late", conditions=condition, actions=[_allocate("SAFETY", 1)], priority=5),
        MarginPolicy(id="off", name="Off", conditions=condition, actions=[_allocate("SAFETY", 1)], active=False),
        MarginPolicy(id="early", name="Early", conditions=condition, actions=[_allocate("SAFETY", 1)], priority=1),
    ])

    executions = engine.process_signal(make_signal(SignalType.EMERGENCY), now=now)

    assert [e.policy_id for e in executions] == ["early", "late"]


def test_failed_action_does_not_stop_the_rest(ledger, make_signal, now):
    policy = MarginPolicy(
        id="mixed", name="Mixed",
        conditions=[_signal_condition(SignalType.MAINTENANCE)],
        actions=[
            _allocate("HUMAN", 5),
            _allocate("SPARE_PARTS", 5),
            Action(type=ActionType.ALERT, parameters={"message": "parts allocated"}),
        ],
    )
    engine = PolicyEngine(ledger, [policy])

    execution = engine.process_signal(make_signal(SignalType.MAINTENANCE), now=now)[0]

    assert [r.ok for r in execution.results] == [False, True, True]
    assert execution.results[0].error.code == ErrorCode.POLICY_NO_MATCHING_POOL
    assert not execution.succeeded
    triggers = ledger.events.events(MarginEventType.POLICY_TRIGGER)
    assert triggers[-1].description == "ALERT: parts allocated"
    assert triggers[-1].metadata["policy_id"] == "mixed"


def test_deploy_uses_allocation_for_signal(ledger, make_signal, now):
    policy = MarginPolicy(
        id="repair", name="Repair",
        conditions=[_signal_condition(SignalType.MAINTENANCE)],
        actions=[
            _allocate("SPARE_PARTS", 6),
            Action(type=ActionType.DEPLOY, parameters={"quantity": 4}),
            Action(type=ActionType.DEPLOY),
        ],
    )
    engine = PolicyEngine(ledger, [policy])

    execution = engine.process_signal(make_signal(SignalType.MAINTENANCE), now=now)[0]

    assert execution.succeeded
    allocation_id = execution.results[0].allocation_id
    assert execution.results[1].allocation_id == allocation_id
    # The second deploy takes whatever remains
    assert ledger.deployed_amount(allocation_id) == 6


def test_deploy_without_allocation_fails(ledger, make_signal, now):
    engine = PolicyEngine(ledger, [MarginPolicy(
        id="deploy-only", name="Deploy only",
        conditions=[_signal_condition(SignalType.MAINTENANCE)],
        actions=[Action(type=ActionType.DEPLOY)],
    )])
    result = engine.process_signal(make_signal(SignalType.MAINTENANCE), now=now)[0].results[0]
    assert not result.ok
    assert result.error.code == ErrorCode.ALLOCATION_NOT_FOUND


def test_ledger_denial_is_reported(ledger, make_signal, now):
    engine = PolicyEngine(ledger, [MarginPolicy(
        id="greedy", name="Greedy",
        conditions=[_signal_condition(SignalType.EMERGENCY)],
        actions=[_allocate("SAFETY", 60), _allocate("SAFETY", 60)],
    )])
    results = engine.process_signal(make_signal(SignalType.EMERGENCY), now=now)[0].results

    assert results[0].ok
    # Only 40 helmets are left, so no pool can serve the second action
    assert results[1].error.code == ErrorCode.POLICY_NO_MATCHING_POOL
    assert ledger.get_pool("safety-helmet").available_quantity == 40


def test_malformed_action_parameters_are_contained(ledger, make_signal, now):
    engine = PolicyEngine(ledger, [MarginPolicy(
        id="broken", name="Broken",
        conditions=[_signal_condition(SignalType.EMERGENCY)],
        actions=[Action(type=ActionType.ALLOCATE, parameters={"quantity": 1}), _allocate("SAFETY", 1)],
    )])
    results = engine.process_signal(make_signal(SignalType.EMERGENCY), now=now)[0].results
    assert not results[0].ok
    assert results[0].error.code == ErrorCode.POLICY_ACTION_FAILED
    assert results[1].ok


def test_register_policy_replaces_same_id(ledger):
    engine = PolicyEngine(ledger)
    engine.register_policy(MarginPolicy(id="p", name="First"))
    engine.register_policy(MarginPolicy(id="p", name="Second"))
    assert [p.name for p in engine.get_policies()] == ["Second"]


def test_default_emergency_policies(make_signal, now):
    from resilience.ledger.defaults import default_pools
    from resilience.ledger.ledger import MarginLedger

    ledger = MarginLedger()
    for pool in default_pools():
        ledger.add_pool(pool)
    engine = PolicyEngine(ledger, default_policies())

    executions = engine.process_signal(make_signal(SignalType.EMERGENCY, Severity.CRITICAL), now=now)

    assert {e.policy_id for e in executions} == {"emergency-material-policy", "emergency-capacity-policy"}
    assert all(e.succeeded for e in executions)
    # MEDIUM risk (0.5) does not pass the capacity policy's risk gate
    medium = engine.process_signal(make_signal(SignalType.EMERGENCY, Severity.MEDIUM), now=now)
    assert [e.policy_id for e in medium] == ["emergency-material-policy"]
