"""
resilience/ledger/ledger.py
The Margin Ledger.

Sole owner of pool quantities, live allocations, deployments and
utilization history.

DESIGN PRINCIPLES:
1. One threading.Lock per pool serialises allocate / deploy / recover on
   that pool; there is no global pool lock.
2. Denials are returned as LedgerOutcome.denied(...) and recorded as
   events. They are never raised to the caller.
3. Every state change appends a MarginEvent.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from typing import Any, Dict, List, Optional

from resilience.base.config import LedgerConfig, PoolSelection
from resilience.contracts.margin import (
    AllocationRequest,
    DeploymentStatus,
    LedgerOutcome,
    MarginAllocation,
    MarginDeployment,
    MarginEvent,
    MarginEventType,
    MarginType,
    MarginUtilization,
    PoolStatus,
    ResourceCategory,
    ResourcePool,
    new_id,
)
from resilience.errors import (
    AllocationNotFoundError,
    ErrorCode,
    InsufficientResourceError,
    PoolNotFoundError,
    QuantityExceedsAllocationError,
    ResilienceError,
)
from resilience.events import EventLog
from resilience.ledger.store import InMemoryLedgerStore, LedgerStore

logger = logging.getLogger(__name__)

DAY = 86400.0


class MarginLedger:
    """
    Allocates, deploys and recovers margin from resource pools.

    Usage:
        ledger = MarginLedger(LedgerConfig())
        ledger.add_pool(ResourcePool("bearing-6205", "Bearing", ResourceCategory.SPARE_PARTS, 50))
        outcome = ledger.allocate(AllocationRequest("bearing-6205", 5))
        if outcome.ok:
            ledger.deploy(outcome.value.id, 3, "line 2 repair")
            ledger.recover(outcome.value.id, "repair done")
    """

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        store: Optional[LedgerStore] = None,
        event_log: Optional[EventLog] = None,
    ):
        self.config = config if config is not None else LedgerConfig()
        self.store = store if store is not None else InMemoryLedgerStore(self.config.history_capacity)
        self.events = event_log if event_log is not None else EventLog(self.config.event_log_capacity)
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Pools
    # ------------------------------------------------------------------

    def add_pool(self, pool: ResourcePool) -> None:
        with self._locks_guard:
            self._locks.setdefault(pool.id, threading.Lock())
        self.store.put_pool(pool)
        logger.debug(f"[Ledger] Registered pool {pool.id} ({pool.category.value}, total {pool.total_quantity})")

    def _lock_for(self, pool_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(pool_id, threading.Lock())

    def get_pool(self, pool_id: str) -> Optional[ResourcePool]:
        """Consistent copy of a pool, or None."""
        pool = self.store.get_pool(pool_id)
        if pool is None:
            return None
        with self._lock_for(pool_id):
            return copy.copy(pool)

    def get_pools(
        self,
        margin_type: Optional[MarginType] = None,
        category: Optional[ResourceCategory] = None,
    ) -> List[ResourcePool]:
        result = []
        for pool in self.store.list_pools():
            if margin_type is not None and pool.margin_type != margin_type:
                continue
            if category is not None and pool.category != category:
                continue
            with self._lock_for(pool.id):
                result.append(copy.copy(pool))
        return result

    def select_pool(
        self,
        category: ResourceCategory,
        quantity: float,
        strategy: Optional[PoolSelection] = None,
    ) -> Optional[ResourcePool]:
        """
        Pick an active pool of `category` with at least `quantity` available.

        FIRST_FIT returns the first pool in registration order; BEST_FIT the
        one that leaves the least slack.
        """
        strategy = strategy or self.config.pool_selection
        candidates = [
            p for p in self.get_pools(category=category)
            if p.status == PoolStatus.ACTIVE and p.available_quantity >= quantity
        ]
        if not candidates:
            return None
        if strategy == PoolSelection.BEST_FIT:
            return min(candidates, key=lambda p: p.available_quantity - quantity)
        return candidates[0]

    # ------------------------------------------------------------------
    # Allocate
    # ------------------------------------------------------------------

    def allocate(self, request: AllocationRequest, now: Optional[float] = None) -> LedgerOutcome[MarginAllocation]:
        """
        Reserve `request.quantity` from `request.pool_id`.

        Denials: POOL_NOT_FOUND, INSUFFICIENT_RESOURCE,
        CONCURRENCY_LIMIT_EXCEEDED, DUPLICATE_REQUEST, LEDGER_DISABLED,
        INVALID_QUANTITY.
        """
        now = time.time() if now is None else now

        if not self.config.enabled:
            return self._deny_allocation(
                request, ResilienceError(ErrorCode.LEDGER_DISABLED, "Ledger is disabled"), now
            )
        if request.quantity <= 0:
            return self._deny_allocation(
                request,
                ResilienceError(ErrorCode.INVALID_QUANTITY, f"Quantity must be positive, got {request.quantity}",
                                {"quantity": request.quantity}),
                now,
            )

        pool = self.store.get_pool(request.pool_id)
        if pool is None:
            return self._deny_allocation(request, PoolNotFoundError(request.pool_id), now)

        duration_days = request.duration_days or self.config.default_allocation_days

        denial: Optional[ResilienceError] = None
        with self._lock_for(pool.id):
            if request.quantity > pool.available_quantity:
                denial = InsufficientResourceError(pool.id, request.quantity, pool.available_quantity)
            else:
                allocation = MarginAllocation(
                    id=new_id(f"{pool.margin_type.value.lower()}-alloc"),
                    type=pool.margin_type,
                    pool_id=pool.id,
                    amount=request.quantity,
                    allocated_at=now,
                    expires_at=now + duration_days * DAY,
                    request_id=request.id,
                    priority=request.priority,
                    reason=request.reason,
                    metadata=dict(request.metadata),
                )
                denial = self.store.register_allocation(allocation, self.config.max_concurrent_allocations)
                if denial is None:
                    pool.available_quantity -= request.quantity
                    pool.allocated_quantity += request.quantity
                    exhausted = pool.available_quantity <= 0
                    remaining = pool.available_quantity

        # Events are emitted outside the pool lock; subscribers may read the ledger
        if denial is not None:
            return self._deny_allocation(request, denial, now)

        self.events.emit(MarginEvent.create(
            MarginEventType.ALLOCATION,
            f"Allocated {request.quantity} {pool.unit} of {pool.name}",
            margin_type=pool.margin_type,
            timestamp=now,
            metadata={
                "outcome": "GRANTED",
                "allocation_id": allocation.id,
                "request_id": request.id,
                "pool_id": pool.id,
                "quantity": request.quantity,
                "priority": request.priority.value,
                "reason": request.reason,
            },
        ))
        if exhausted:
            self.events.emit(MarginEvent.create(
                MarginEventType.EXHAUSTION,
                f"Pool {pool.name} is exhausted",
                margin_type=pool.margin_type,
                timestamp=now,
                metadata={"pool_id": pool.id, "available_quantity": remaining},
            ))
            logger.warning(f"[Ledger] Pool {pool.id} exhausted by allocation {allocation.id}")

        logger.info(f"[Ledger] Allocated {request.quantity} from {pool.id} ({allocation.id})")
        return LedgerOutcome.success(allocation)

    def _deny_allocation(
        self, request: AllocationRequest, error: ResilienceError, now: float
    ) -> LedgerOutcome[MarginAllocation]:
        pool = self.store.get_pool(request.pool_id)
        self.events.emit(MarginEvent.create(
            MarginEventType.ALLOCATION,
            f"Allocation denied for {request.pool_id}: {error.message}",
            margin_type=pool.margin_type if pool else None,
            timestamp=now,
            metadata={
                "outcome": "DENIED",
                "code": error.code.name,
                "request_id": request.id,
                "pool_id": request.pool_id,
                "quantity": request.quantity,
            },
        ))
        logger.info(f"[Ledger] Allocation denied ({error.code.name}): {error.message}")
        return LedgerOutcome.denied(error)

    # ------------------------------------------------------------------
    # Deploy
    # ------------------------------------------------------------------

    def deploy(
        self,
        allocation_id: str,
        quantity: float,
        reason: str = "",
        now: Optional[float] = None,
    ) -> LedgerOutcome[MarginDeployment]:
        """
        Record use of part of an allocation. Pool totals do not change.

        The sum of deployments on an allocation never exceeds its amount.
        """
        now = time.time() if now is None else now

        if quantity <= 0:
            return LedgerOutcome.denied(ResilienceError(
                ErrorCode.INVALID_QUANTITY, f"Quantity must be positive, got {quantity}", {"quantity": quantity}
            ))

        allocation = self.store.get_allocation(allocation_id)
        if allocation is None:
            return LedgerOutcome.denied(AllocationNotFoundError(allocation_id))

        with self._lock_for(allocation.pool_id):
            # Recovered while we waited for the lock
            if self.store.get_allocation(allocation_id) is None:
                return LedgerOutcome.denied(AllocationNotFoundError(allocation_id))

            deployed = sum(d.amount for d in self.store.list_deployments(allocation_id, include_archived=False))
            remaining = allocation.amount - deployed
            if quantity > remaining:
                return LedgerOutcome.denied(QuantityExceedsAllocationError(allocation_id, quantity, remaining))

            deployment = MarginDeployment(
                id=new_id("deployment"),
                allocation_id=allocation_id,
                deployed_at=now,
                amount=quantity,
                reason=reason,
            )
            self.store.add_deployment(deployment)
            allocation.utilization_rate = (deployed + quantity) / allocation.amount

        self.events.emit(MarginEvent.create(
            MarginEventType.DEPLOYMENT,
            f"Deployed {quantity} from allocation {allocation_id}",
            margin_type=allocation.type,
            timestamp=now,
            metadata={
                "deployment_id": deployment.id,
                "allocation_id": allocation_id,
                "pool_id": allocation.pool_id,
                "quantity": quantity,
                "reason": reason,
            },
        ))
        logger.info(f"[Ledger] Deployed {quantity} from {allocation_id}")
        return LedgerOutcome.success(deployment)

    # ------------------------------------------------------------------
    # Recover
    # ------------------------------------------------------------------

    def recover(self, allocation_id: str, reason: str = "", now: Optional[float] = None) -> bool:
        """
        Return an allocation to its pool and record its utilization.

        Returns:
            True if the allocation was live, False otherwise (no-op).
        """
        now = time.time() if now is None else now

        allocation = self.store.get_allocation(allocation_id)
        if allocation is None:
            return False

        pool = self.store.get_pool(allocation.pool_id)
        with self._lock_for(allocation.pool_id):
            allocation = self.store.pop_allocation(allocation_id)
            if allocation is None:
                return False

            deployments = self.store.archive_deployments(allocation_id)
            deployed = sum(d.amount for d in deployments)
            rate = deployed / allocation.amount if allocation.amount > 0 else 0.0

            record = MarginUtilization(
                id=new_id("utilization"),
                margin_type=allocation.type,
                pool_id=allocation.pool_id,
                utilization_rate=rate,
                peak_utilization=rate,
                average_utilization=rate,
                timestamp=now,
                duration=now - allocation.allocated_at,
            )
            self.store.append_utilization(record)

            for deployment in deployments:
                deployment.status = DeploymentStatus.COMPLETED

            if pool is not None:
                pool.available_quantity += allocation.amount
                pool.allocated_quantity -= allocation.amount

        self.events.emit(MarginEvent.create(
            MarginEventType.RECOVERY,
            f"Recovered {allocation.amount} from allocation {allocation_id}",
            margin_type=allocation.type,
            timestamp=now,
            metadata={
                "allocation_id": allocation_id,
                "pool_id": allocation.pool_id,
                "quantity": allocation.amount,
                "utilization_rate": rate,
                "reason": reason,
            },
        ))
        logger.info(f"[Ledger] Recovered {allocation_id} (utilization {rate:.2f})")
        return True

    def recover_expired(self, now: Optional[float] = None) -> List[str]:
        """Recover every live allocation whose expiry has passed."""
        now = time.time() if now is None else now
        recovered = []
        for allocation in self.store.list_allocations():
            if allocation.is_expired(now) and self.recover(allocation.id, "Allocation expired", now=now):
                recovered.append(allocation.id)
        if recovered:
            logger.info(f"[Ledger] Recovered {len(recovered)} expired allocations")
        return recovered

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def overall_utilization(self, margin_type: Optional[MarginType] = None) -> float:
        """Σallocated / Σtotal across pools; 0 when there is no capacity."""
        pools = self.get_pools(margin_type=margin_type)
        total = sum(p.total_quantity for p in pools)
        if total <= 0:
            return 0.0
        return sum(p.allocated_quantity for p in pools) / total

    def get_allocation(self, allocation_id: str) -> Optional[MarginAllocation]:
        return self.store.get_allocation(allocation_id)

    def live_allocations(self) -> List[MarginAllocation]:
        return self.store.list_allocations()

    def find_allocations(self, **tags: Any) -> List[MarginAllocation]:
        """Live allocations whose metadata matches every given tag, oldest first."""
        matches = [
            a for a in self.store.list_allocations()
            if all(a.metadata.get(k) == v for k, v in tags.items())
        ]
        return sorted(matches, key=lambda a: a.allocated_at)

    def deployments(self, allocation_id: Optional[str] = None) -> List[MarginDeployment]:
        """Deployments of live allocations plus the retained history of recovered ones."""
        return self.store.list_deployments(allocation_id)

    def deployed_amount(self, allocation_id: str) -> float:
        return sum(d.amount for d in self.store.list_deployments(allocation_id))

    def utilization_history(self, margin_type: Optional[MarginType] = None) -> List[MarginUtilization]:
        history = self.store.list_utilization()
        if margin_type is None:
            return history
        return [u for u in history if u.margin_type == margin_type]

    def status_report(self) -> Dict[str, Any]:
        pools = self.get_pools()
        allocations = self.live_allocations()
        active_deployments = [
            d for d in self.store.list_deployments(include_archived=False) if d.status == DeploymentStatus.ACTIVE
        ]
        return {
            "enabled": self.config.enabled,
            "pools": [p.to_dict() for p in pools],
            "total_quantity": sum(p.total_quantity for p in pools),
            "allocated_quantity": sum(p.allocated_quantity for p in pools),
            "available_quantity": sum(p.available_quantity for p in pools),
            "overall_utilization": self.overall_utilization(),
            "active_allocations": len(allocations),
            "active_deployments": len(active_deployments),
            "recent_events": [e.to_dict() for e in self.events.recent(10)],
        }
