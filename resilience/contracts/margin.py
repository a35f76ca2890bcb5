"""
resilience/contracts/margin.py
Margin data model: pools, allocations, deployments, thresholds, policies, events.

DESIGN PRINCIPLES:
1. Pools are mutable ledger state (dataclasses) and only the MarginLedger
   writes them, always under the pool's lock.
2. Rules (thresholds, policies) are pydantic models so they can be loaded
   and validated from JSON.
3. Events and utilization records are frozen; the logs are append-only.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from resilience.contracts.signals import Severity
from resilience.errors import ResilienceError


def new_id(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


class MarginType(str, Enum):
    CAPACITY = "CAPACITY"
    TIME = "TIME"
    MATERIAL = "MATERIAL"
    FINANCIAL = "FINANCIAL"


class ResourceCategory(str, Enum):
    # Material
    SPARE_PARTS = "SPARE_PARTS"
    CONSUMABLES = "CONSUMABLES"
    TOOLS = "TOOLS"
    EQUIPMENT = "EQUIPMENT"
    SAFETY = "SAFETY"
    # Capacity
    COMPUTATIONAL = "COMPUTATIONAL"
    HUMAN = "HUMAN"
    STORAGE = "STORAGE"
    NETWORK = "NETWORK"
    # Time
    MAINTENANCE_WINDOW = "MAINTENANCE_WINDOW"
    EMERGENCY_RESPONSE = "EMERGENCY_RESPONSE"
    PROJECT_TIMELINE = "PROJECT_TIMELINE"
    # Financial
    OPERATIONAL_BUDGET = "OPERATIONAL_BUDGET"
    CAPITAL_BUDGET = "CAPITAL_BUDGET"
    CONTINGENCY_FUND = "CONTINGENCY_FUND"

    @property
    def margin_type(self) -> MarginType:
        return _CATEGORY_MARGIN_TYPE[self]


_CATEGORY_MARGIN_TYPE: Dict[ResourceCategory, MarginType] = {
    ResourceCategory.SPARE_PARTS: MarginType.MATERIAL,
    ResourceCategory.CONSUMABLES: MarginType.MATERIAL,
    ResourceCategory.TOOLS: MarginType.MATERIAL,
    ResourceCategory.EQUIPMENT: MarginType.MATERIAL,
    ResourceCategory.SAFETY: MarginType.MATERIAL,
    ResourceCategory.COMPUTATIONAL: MarginType.CAPACITY,
    ResourceCategory.HUMAN: MarginType.CAPACITY,
    ResourceCategory.STORAGE: MarginType.CAPACITY,
    ResourceCategory.NETWORK: MarginType.CAPACITY,
    ResourceCategory.MAINTENANCE_WINDOW: MarginType.TIME,
    ResourceCategory.EMERGENCY_RESPONSE: MarginType.TIME,
    ResourceCategory.PROJECT_TIMELINE: MarginType.TIME,
    ResourceCategory.OPERATIONAL_BUDGET: MarginType.FINANCIAL,
    ResourceCategory.CAPITAL_BUDGET: MarginType.FINANCIAL,
    ResourceCategory.CONTINGENCY_FUND: MarginType.FINANCIAL,
}


class PoolStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    DISCONTINUED = "DISCONTINUED"


class DeploymentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


# ============================================================================
# Ledger State
# ============================================================================

@dataclass
class ResourcePool:
    """
    A quantity of one resource that can be allocated.

    Invariant: allocated_quantity + available_quantity == total_quantity,
    available_quantity >= 0.
    """
    id: str
    name: str
    category: ResourceCategory
    total_quantity: float
    allocated_quantity: float = 0.0
    available_quantity: Optional[float] = None
    minimum_stock: float = 0.0
    reorder_point: float = 0.0
    criticality: Severity = Severity.MEDIUM
    status: PoolStatus = PoolStatus.ACTIVE
    unit: str = "units"
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.available_quantity is None:
            self.available_quantity = self.total_quantity - self.allocated_quantity
        if self.total_quantity < 0 or self.allocated_quantity < 0 or self.available_quantity < 0:
            raise ValueError(f"Pool {self.id} has negative quantities")
        if abs(self.allocated_quantity + self.available_quantity - self.total_quantity) > 1e-9:
            raise ValueError(f"Pool {self.id} violates allocated + available == total")

    @property
    def margin_type(self) -> MarginType:
        return self.category.margin_type

    @property
    def utilization(self) -> float:
        return self.allocated_quantity / self.total_quantity if self.total_quantity > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "margin_type": self.margin_type.value,
            "category": self.category.value,
            "total_quantity": self.total_quantity,
            "allocated_quantity": self.allocated_quantity,
            "available_quantity": self.available_quantity,
            "minimum_stock": self.minimum_stock,
            "reorder_point": self.reorder_point,
            "criticality": self.criticality.value,
            "status": self.status.value,
            "unit": self.unit,
        }


@dataclass
class AllocationRequest:
    pool_id: str
    quantity: float
    id: str = field(default_factory=lambda: new_id("request"))
    priority: Severity = Severity.MEDIUM
    duration_days: Optional[float] = None
    reason: str = ""
    requester: str = "system"
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MarginAllocation:
    id: str
    type: MarginType
    pool_id: str
    amount: float
    allocated_at: float
    expires_at: float
    request_id: str
    priority: Severity = Severity.MEDIUM
    reason: str = ""
    utilization_rate: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "pool_id": self.pool_id,
            "amount": self.amount,
            "utilization_rate": self.utilization_rate,
            "allocated_at": self.allocated_at,
            "expires_at": self.expires_at,
            "metadata": {
                "request_id": self.request_id,
                "item_id": self.pool_id,
                "priority": self.priority.value,
                "reason": self.reason,
                **self.metadata,
            },
        }


@dataclass
class MarginDeployment:
    id: str
    allocation_id: str
    deployed_at: float
    amount: float
    reason: str = ""
    status: DeploymentStatus = DeploymentStatus.ACTIVE


@dataclass(frozen=True)
class MarginUtilization:
    id: str
    margin_type: MarginType
    pool_id: str
    utilization_rate: float
    peak_utilization: float
    average_utilization: float
    timestamp: float
    duration: float


# ============================================================================
# Rules
# ============================================================================

class BreachLevel(str, Enum):
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    EMERGENCY = "EMERGENCY"


class MarginThreshold(BaseModel):
    """
    Availability bands for a margin type (optionally narrowed to a category).

    Ratios are fractions of minimum stock; a pool is in breach when its
    ratio is at or below a band.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    margin_type: MarginType
    category: Optional[ResourceCategory] = None
    warning: float = Field(..., ge=0.0, le=1.0)
    critical: float = Field(..., ge=0.0, le=1.0)
    emergency: float = Field(..., ge=0.0, le=1.0)
    auto_deploy: float = Field(0.0, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_ordering(self) -> "MarginThreshold":
        if not self.emergency <= self.critical <= self.warning:
            raise ValueError(
                f"Threshold {self.id}: expected emergency <= critical <= warning, "
                f"got {self.emergency}, {self.critical}, {self.warning}"
            )
        return self

    def classify(self, ratio: float) -> Optional[BreachLevel]:
        # Most severe band first
        if ratio <= self.emergency:
            return BreachLevel.EMERGENCY
        if ratio <= self.critical:
            return BreachLevel.CRITICAL
        if ratio <= self.warning:
            return BreachLevel.WARNING
        return None

    def matches(self, pool: ResourcePool) -> bool:
        if self.margin_type != pool.margin_type:
            return False
        return self.category is None or self.category == pool.category


class ConditionType(str, Enum):
    SIGNAL = "SIGNAL"
    UTILIZATION = "UTILIZATION"
    TIME = "TIME"
    RISK = "RISK"


class Operator(str, Enum):
    EQ = "EQ"
    NE = "NE"
    GT = "GT"
    LT = "LT"
    GTE = "GTE"
    LTE = "LTE"


class ActionType(str, Enum):
    ALLOCATE = "ALLOCATE"
    DEPLOY = "DEPLOY"
    ALERT = "ALERT"
    ESCALATE = "ESCALATE"


class Condition(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ConditionType
    operator: Operator
    value: Any

    @model_validator(mode="after")
    def _check_operator(self) -> "Condition":
        if self.type == ConditionType.SIGNAL and self.operator not in (Operator.EQ, Operator.NE):
            raise ValueError("SIGNAL conditions only support EQ and NE")
        return self


class Action(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ActionType
    parameters: Dict[str, Any] = Field(default_factory=dict)


class MarginPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    margin_type: Optional[MarginType] = None
    conditions: List[Condition] = Field(default_factory=list)
    actions: List[Action] = Field(default_factory=list)
    priority: int = 10
    active: bool = True

    @field_validator("priority")
    @classmethod
    def _non_negative_priority(cls, v: int) -> int:
        if v < 0:
            raise ValueError("priority must be >= 0")
        return v


# ============================================================================
# Events & Outcomes
# ============================================================================

class MarginEventType(str, Enum):
    ALLOCATION = "ALLOCATION"
    DEPLOYMENT = "DEPLOYMENT"
    RECOVERY = "RECOVERY"
    THRESHOLD_BREACH = "THRESHOLD_BREACH"
    POLICY_TRIGGER = "POLICY_TRIGGER"
    OPTIMIZATION = "OPTIMIZATION"
    EXHAUSTION = "EXHAUSTION"


EVENT_IMPACT: Dict[MarginEventType, float] = {
    MarginEventType.ALLOCATION: 0.3,
    MarginEventType.DEPLOYMENT: 0.5,
    MarginEventType.RECOVERY: 0.2,
    MarginEventType.THRESHOLD_BREACH: 0.7,
    MarginEventType.POLICY_TRIGGER: 0.4,
    MarginEventType.OPTIMIZATION: 0.1,
    MarginEventType.EXHAUSTION: 1.0,
}


@dataclass(frozen=True)
class MarginEvent:
    id: str
    type: MarginEventType
    margin_type: Optional[MarginType]
    timestamp: float
    description: str
    impact: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        event_type: MarginEventType,
        description: str,
        margin_type: Optional[MarginType] = None,
        metadata: Optional[Dict[str, Any]] = None,
        timestamp: Optional[float] = None,
    ) -> "MarginEvent":
        return cls(
            id=new_id("margin-event"),
            type=event_type,
            margin_type=margin_type,
            timestamp=timestamp if timestamp is not None else time.time(),
            description=description,
            impact=EVENT_IMPACT[event_type],
            metadata=metadata or {},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "margin_type": self.margin_type.value if self.margin_type else None,
            "timestamp": self.timestamp,
            "description": self.description,
            "impact": self.impact,
            "metadata": self.metadata,
        }


T = TypeVar("T")


@dataclass(frozen=True)
class LedgerOutcome(Generic[T]):
    """Result of a ledger command: either a value or a typed denial."""
    value: Optional[T] = None
    error: Optional[ResilienceError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "LedgerOutcome[T]":
        return cls(value=value)

    @classmethod
    def denied(cls, error: ResilienceError) -> "LedgerOutcome[T]":
        return cls(error=error)

    def __bool__(self) -> bool:
        return self.ok
