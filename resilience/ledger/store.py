"""
resilience/ledger/store.py
Storage behind the MarginLedger.

The ledger owns the business rules; the store only holds state. The
live-allocation registry guards itself with its own lock so that the
concurrency limit and request-id uniqueness are checked and applied in
one step, independently of any pool lock.
"""

from __future__ import annotations

import threading
from collections import deque
from abc import ABC, abstractmethod
from typing import Deque, Dict, List, Optional

from resilience.contracts.margin import (
    MarginAllocation,
    MarginDeployment,
    MarginUtilization,
    ResourcePool,
)
from resilience.errors import (
    ConcurrencyLimitError,
    DuplicateRequestError,
    ResilienceError,
)


class LedgerStore(ABC):
    """Persistence boundary for ledger state."""

    @abstractmethod
    def put_pool(self, pool: ResourcePool) -> None:
        pass

    @abstractmethod
    def get_pool(self, pool_id: str) -> Optional[ResourcePool]:
        pass

    @abstractmethod
    def list_pools(self) -> List[ResourcePool]:
        pass

    @abstractmethod
    def register_allocation(self, allocation: MarginAllocation, limit: int) -> Optional[ResilienceError]:
        """
        Add a live allocation if the registry is below `limit` and no live
        allocation exists for the same request id.

        Returns:
            None on success, otherwise the denial.
        """
        pass

    @abstractmethod
    def get_allocation(self, allocation_id: str) -> Optional[MarginAllocation]:
        pass

    @abstractmethod
    def pop_allocation(self, allocation_id: str) -> Optional[MarginAllocation]:
        """Remove and return a live allocation, or None if it is not live."""
        pass

    @abstractmethod
    def list_allocations(self) -> List[MarginAllocation]:
        pass

    @abstractmethod
    def add_deployment(self, deployment: MarginDeployment) -> None:
        pass

    @abstractmethod
    def list_deployments(
        self, allocation_id: Optional[str] = None, include_archived: bool = True
    ) -> List[MarginDeployment]:
        pass

    @abstractmethod
    def archive_deployments(self, allocation_id: str) -> List[MarginDeployment]:
        """Move a recovered allocation's deployments into bounded history and return them."""
        pass

    @abstractmethod
    def append_utilization(self, record: MarginUtilization) -> None:
        pass

    @abstractmethod
    def list_utilization(self) -> List[MarginUtilization]:
        pass


class InMemoryLedgerStore(LedgerStore):
    """
    Default store: plain dicts, with recovered deployments and utilization
    records kept in deques bounded by `history_capacity`.
    """

    def __init__(self, history_capacity: int = 10000):
        self._pools: Dict[str, ResourcePool] = {}
        self._allocations: Dict[str, MarginAllocation] = {}
        self._by_request: Dict[str, str] = {}
        self._deployments: Dict[str, List[MarginDeployment]] = {}
        self._archived: Deque[MarginDeployment] = deque(maxlen=history_capacity)
        self._utilization: Deque[MarginUtilization] = deque(maxlen=history_capacity)
        self._registry_lock = threading.Lock()
        self._history_lock = threading.Lock()

    # --- Pools ---

    def put_pool(self, pool: ResourcePool) -> None:
        self._pools[pool.id] = pool

    def get_pool(self, pool_id: str) -> Optional[ResourcePool]:
        return self._pools.get(pool_id)

    def list_pools(self) -> List[ResourcePool]:
        return list(self._pools.values())

    # --- Live allocations ---

    def register_allocation(self, allocation: MarginAllocation, limit: int) -> Optional[ResilienceError]:
        with self._registry_lock:
            if allocation.request_id in self._by_request:
                return DuplicateRequestError(allocation.request_id)
            if len(self._allocations) >= limit:
                return ConcurrencyLimitError(limit)
            self._allocations[allocation.id] = allocation
            self._by_request[allocation.request_id] = allocation.id
            return None

    def get_allocation(self, allocation_id: str) -> Optional[MarginAllocation]:
        with self._registry_lock:
            return self._allocations.get(allocation_id)

    def pop_allocation(self, allocation_id: str) -> Optional[MarginAllocation]:
        with self._registry_lock:
            allocation = self._allocations.pop(allocation_id, None)
            if allocation is not None:
                self._by_request.pop(allocation.request_id, None)
            return allocation

    def list_allocations(self) -> List[MarginAllocation]:
        with self._registry_lock:
            return list(self._allocations.values())

    # --- Deployments & history ---

    def add_deployment(self, deployment: MarginDeployment) -> None:
        with self._history_lock:
            self._deployments.setdefault(deployment.allocation_id, []).append(deployment)

    def list_deployments(
        self, allocation_id: Optional[str] = None, include_archived: bool = True
    ) -> List[MarginDeployment]:
        with self._history_lock:
            if allocation_id is not None:
                live = list(self._deployments.get(allocation_id, []))
            else:
                live = [d for deps in self._deployments.values() for d in deps]
            if not include_archived:
                return live
            archived = [d for d in self._archived if allocation_id is None or d.allocation_id == allocation_id]
            return archived + live

    def archive_deployments(self, allocation_id: str) -> List[MarginDeployment]:
        with self._history_lock:
            deployments = self._deployments.pop(allocation_id, [])
            self._archived.extend(deployments)
            return deployments

    def append_utilization(self, record: MarginUtilization) -> None:
        with self._history_lock:
            self._utilization.append(record)

    def list_utilization(self) -> List[MarginUtilization]:
        with self._history_lock:
            return list(self._utilization)
