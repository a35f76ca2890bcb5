"""
Policy Engine (resilience/cortex/policy_engine.py)

PURPOSE:
Evaluates declarative MarginPolicies against incoming signals and executes
the actions of every policy that matches.

ORDERING:
- Active policies are evaluated in ascending priority (ties keep insertion order).
- Every matching policy fires; there is no first-match short circuit.
- Actions run in declaration order and independently: a failed action is
  recorded in the execution result and the remaining actions still run.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from resilience.base.config import LedgerConfig, PoolSelection
from resilience.contracts.margin import (
    Action,
    ActionType,
    AllocationRequest,
    MarginEvent,
    MarginEventType,
    MarginPolicy,
    ResourceCategory,
)
from resilience.contracts.signals import Signal
from resilience.cortex.conditions import EvaluationContext, evaluate_condition
from resilience.errors import (
    AllocationNotFoundError,
    ErrorCode,
    ResilienceError,
    handle_error,
)
from resilience.ledger.ledger import MarginLedger

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    action_type: ActionType
    ok: bool
    allocation_id: Optional[str] = None
    deployment_id: Optional[str] = None
    error: Optional[ResilienceError] = None


@dataclass
class PolicyExecution:
    policy_id: str
    signal_id: str
    results: List[ActionResult] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return all(r.ok for r in self.results)


class PolicyEngine:
    """
    Applies MarginPolicies to signals using the MarginLedger.
    """

    def __init__(
        self,
        ledger: MarginLedger,
        policies: Sequence[MarginPolicy] = (),
        config: Optional[LedgerConfig] = None,
    ):
        self.ledger = ledger
        self.config = config or ledger.config
        self._policies: List[MarginPolicy] = list(policies)

    # --- Registry ---

    def register_policy(self, policy: MarginPolicy):
        self._policies = [p for p in self._policies if p.id != policy.id]
        self._policies.append(policy)
        logger.info(f"[PolicyEngine] Registered policy: {policy.id}")

    def set_policies(self, policies: Sequence[MarginPolicy]):
        self._policies = list(policies)

    def get_policies(self) -> List[MarginPolicy]:
        return list(self._policies)

    def ordered_policies(self) -> List[MarginPolicy]:
        return sorted((p for p in self._policies if p.active), key=lambda p: p.priority)

    # --- Evaluation ---

    def evaluate(self, policy: MarginPolicy, signal: Signal, now: Optional[float] = None) -> bool:
        """AND of all conditions; an empty condition list matches."""
        context = EvaluationContext(
            signal=signal,
            now=time.time() if now is None else now,
            utilization=self.ledger.overall_utilization,
        )
        try:
            return all(evaluate_condition(c, context) for c in policy.conditions)
        except (ValueError, TypeError) as e:
            logger.error(f"[PolicyEngine] Policy {policy.id} has an unevaluable condition: {e}")
            return False

    def process_signal(self, signal: Signal, now: Optional[float] = None) -> List[PolicyExecution]:
        now = time.time() if now is None else now
        executions = []
        for policy in self.ordered_policies():
            if not self.evaluate(policy, signal, now):
                continue
            logger.info(f"[PolicyEngine] Policy {policy.id} matched signal {signal.id}")
            execution = PolicyExecution(policy_id=policy.id, signal_id=signal.id)
            for index, action in enumerate(policy.actions):
                execution.results.append(self._run_action(policy, action, index, signal, now))
            executions.append(execution)
        return executions

    def process_signals(self, signals: Sequence[Signal], now: Optional[float] = None) -> List[PolicyExecution]:
        executions: List[PolicyExecution] = []
        for signal in signals:
            executions.extend(self.process_signal(signal, now))
        return executions

    # --- Actions ---

    def _run_action(
        self, policy: MarginPolicy, action: Action, index: int, signal: Signal, now: float
    ) -> ActionResult:
        handlers = {
            ActionType.ALLOCATE: self._allocate,
            ActionType.DEPLOY: self._deploy,
            ActionType.ALERT: self._notify,
            ActionType.ESCALATE: self._notify,
        }
        handler = handlers.get(action.type)
        if handler is None:
            return ActionResult(action.type, False, error=ResilienceError(
                ErrorCode.POLICY_UNKNOWN_ACTION, f"Unknown action type: {action.type}"))
        try:
            result = handler(policy, action, index, signal, now)
        except Exception as e:
            error = handle_error(e, f"Policy {policy.id} action {action.type.value}", ErrorCode.POLICY_ACTION_FAILED)
            logger.error(f"[PolicyEngine] {error}")
            return ActionResult(action.type, False, error=error)
        if not result.ok:
            logger.warning(f"[PolicyEngine] Policy {policy.id} action {action.type.value} failed: {result.error}")
        return result

    def _allocate(self, policy: MarginPolicy, action: Action, index: int, signal: Signal, now: float) -> ActionResult:
        params = action.parameters
        category = ResourceCategory(params["category"])
        quantity = float(params["quantity"])
        strategy = PoolSelection(params["selection"]) if "selection" in params else self.config.pool_selection

        pool = self.ledger.select_pool(category, quantity, strategy)
        if pool is None:
            return ActionResult(ActionType.ALLOCATE, False, error=ResilienceError(
                ErrorCode.POLICY_NO_MATCHING_POOL,
                f"No {category.value} pool with {quantity} available",
                {"category": category.value, "quantity": quantity},
            ))

        request = AllocationRequest(
            id=f"policy-{policy.id}-{signal.id}-{index}",
            pool_id=pool.id,
            quantity=quantity,
            priority=signal.severity,
            duration_days=params.get("duration_days", self.config.default_allocation_days),
            reason=params.get("reason", f"Policy {policy.name} triggered by {signal.type.value} signal"),
            requester=f"policy:{policy.id}",
            metadata={"signal_id": signal.id, "policy_id": policy.id},
        )
        outcome = self.ledger.allocate(request, now=now)
        if not outcome.ok:
            return ActionResult(ActionType.ALLOCATE, False, error=outcome.error)
        return ActionResult(ActionType.ALLOCATE, True, allocation_id=outcome.value.id)

    def _deploy(self, policy: MarginPolicy, action: Action, index: int, signal: Signal, now: float) -> ActionResult:
        params = action.parameters
        tags: Dict[str, Any] = {"signal_id": signal.id}
        if "policy_id" in params:
            tags["policy_id"] = params["policy_id"]
        candidates = self.ledger.find_allocations(**tags)
        if not candidates:
            return ActionResult(ActionType.DEPLOY, False,
                                error=AllocationNotFoundError(f"<signal {signal.id}>"))

        # Most recent allocation for this signal
        allocation = candidates[-1]
        remaining = allocation.amount - self.ledger.deployed_amount(allocation.id)
        quantity = float(params.get("quantity", remaining))
        outcome = self.ledger.deploy(
            allocation.id,
            quantity,
            params.get("reason", f"Policy {policy.name} deployment"),
            now=now,
        )
        if not outcome.ok:
            return ActionResult(ActionType.DEPLOY, False, allocation_id=allocation.id, error=outcome.error)
        return ActionResult(ActionType.DEPLOY, True, allocation_id=allocation.id, deployment_id=outcome.value.id)

    def _notify(self, policy: MarginPolicy, action: Action, index: int, signal: Signal, now: float) -> ActionResult:
        message = action.parameters.get("message", f"Policy {policy.name} triggered")
        self.ledger.events.emit(MarginEvent.create(
            MarginEventType.POLICY_TRIGGER,
            f"{action.type.value}: {message}",
            margin_type=policy.margin_type,
            timestamp=now,
            metadata={
                "policy_id": policy.id,
                "signal_id": signal.id,
                "action": action.type.value,
                "parameters": dict(action.parameters),
            },
        ))
        return ActionResult(action.type, True)
