"""
resilience/base/loader.py
Loads a rule set (pools, thresholds, policies, patterns) from JSON.

Document shape:
    {
      "pools":      [{"id": ..., "name": ..., "category": "SPARE_PARTS", "total_quantity": 50, ...}],
      "thresholds": [{"id": ..., "margin_type": "MATERIAL", "warning": 0.3, ...}],
      "policies":   [{"id": ..., "name": ..., "conditions": [...], "actions": [...]}],
      "patterns":   [{"id": ..., "name": ..., "min_stress_level": 70, ...}]
    }

Any section may be omitted. Malformed documents raise ConfigurationError.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from resilience.contracts.adaptive import AdaptationType, AntifragilePattern, TriggerCondition
from resilience.contracts.margin import MarginPolicy, MarginThreshold, PoolStatus, ResourceCategory, ResourcePool
from resilience.contracts.signals import Severity, SignalType
from resilience.errors import ConfigurationError, ErrorCode

logger = logging.getLogger(__name__)


class PoolSpec(BaseModel):
    id: str
    name: str
    category: ResourceCategory
    total_quantity: float = Field(..., ge=0)
    allocated_quantity: float = Field(0.0, ge=0)
    minimum_stock: float = Field(0.0, ge=0)
    reorder_point: float = Field(0.0, ge=0)
    criticality: Severity = Severity.MEDIUM
    status: PoolStatus = PoolStatus.ACTIVE
    unit: str = "units"
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("allocated_quantity")
    @classmethod
    def _within_total(cls, v: float, info) -> float:
        total = info.data.get("total_quantity")
        if total is not None and v > total:
            raise ValueError("allocated_quantity cannot exceed total_quantity")
        return v

    def build(self) -> ResourcePool:
        return ResourcePool(
            id=self.id,
            name=self.name,
            category=self.category,
            total_quantity=self.total_quantity,
            allocated_quantity=self.allocated_quantity,
            minimum_stock=self.minimum_stock,
            reorder_point=self.reorder_point,
            criticality=self.criticality,
            status=self.status,
            unit=self.unit,
            metadata=dict(self.metadata),
        )

    @classmethod
    def from_pool(cls, pool: ResourcePool) -> "PoolSpec":
        return cls(
            id=pool.id, name=pool.name, category=pool.category,
            total_quantity=pool.total_quantity, allocated_quantity=pool.allocated_quantity,
            minimum_stock=pool.minimum_stock, reorder_point=pool.reorder_point,
            criticality=pool.criticality, status=pool.status, unit=pool.unit,
            metadata=dict(pool.metadata),
        )


class PatternSpec(BaseModel):
    id: str
    name: str
    description: str = ""
    min_stress_level: float = Field(..., ge=0, le=100)
    required_signals: List[SignalType] = Field(default_factory=list)
    time_window: float = Field(3600.0, gt=0)
    adaptations: List[AdaptationType] = Field(..., min_length=1)

    def build(self) -> AntifragilePattern:
        return AntifragilePattern(
            id=self.id,
            name=self.name,
            description=self.description,
            trigger_condition=TriggerCondition(
                min_stress_level=self.min_stress_level,
                required_signals=tuple(self.required_signals),
                time_window=self.time_window,
            ),
            adaptations=list(self.adaptations),
        )

    @classmethod
    def from_pattern(cls, pattern: AntifragilePattern) -> "PatternSpec":
        return cls(
            id=pattern.id, name=pattern.name, description=pattern.description,
            min_stress_level=pattern.trigger_condition.min_stress_level,
            required_signals=list(pattern.trigger_condition.required_signals),
            time_window=pattern.trigger_condition.time_window,
            adaptations=list(pattern.adaptations),
        )


class RuleSet(BaseModel):
    pools: Optional[List[PoolSpec]] = None
    thresholds: Optional[List[MarginThreshold]] = None
    policies: Optional[List[MarginPolicy]] = None
    patterns: Optional[List[PatternSpec]] = None

    @field_validator("pools")
    @classmethod
    def _unique_pool_ids(cls, v: Optional[List[PoolSpec]]) -> Optional[List[PoolSpec]]:
        if v is not None:
            ids = [p.id for p in v]
            if len(ids) != len(set(ids)):
                raise ValueError("pool ids must be unique")
        return v

    def build_pools(self) -> Optional[List[ResourcePool]]:
        return [p.build() for p in self.pools] if self.pools is not None else None

    def build_patterns(self) -> Optional[List[AntifragilePattern]]:
        return [p.build() for p in self.patterns] if self.patterns is not None else None


def parse_rules(document: Dict[str, Any]) -> RuleSet:
    try:
        return RuleSet.model_validate(document)
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid rule set",
            details={"errors": e.errors(include_url=False)},
            code=ErrorCode.CONFIG_PARSE_ERROR,
        )


def load_rules(path: Union[str, Path]) -> RuleSet:
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(
            f"Rule file not found: {path}", code=ErrorCode.CONFIG_FILE_NOT_FOUND
        )
    try:
        document = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"Rule file {path} is not valid JSON: {e}", code=ErrorCode.CONFIG_PARSE_ERROR
        )
    rules = parse_rules(document)
    logger.info(
        f"[RuleLoader] Loaded {path}: "
        f"{len(rules.pools or [])} pools, {len(rules.thresholds or [])} thresholds, "
        f"{len(rules.policies or [])} policies, {len(rules.patterns or [])} patterns"
    )
    return rules


def default_rule_set() -> RuleSet:
    from resilience.ledger.defaults import default_patterns, default_policies, default_pools, default_thresholds
    return RuleSet(
        pools=[PoolSpec.from_pool(p) for p in default_pools()],
        thresholds=default_thresholds(),
        policies=default_policies(),
        patterns=[PatternSpec.from_pattern(p) for p in default_patterns()],
    )
