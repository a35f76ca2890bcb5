"""
resilience/contracts/signals.py
Demand signals consumed by the engine.

A Signal is immutable once accepted. Everything downstream (policy
evaluation, stress scoring, performance tracking) reads it and never
writes back.
"""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field


class SignalType(str, Enum):
    ASSET_CONDITION = "ASSET_CONDITION"
    PERFORMANCE_DEGRADATION = "PERFORMANCE_DEGRADATION"
    RISK_ESCALATION = "RISK_ESCALATION"
    EMERGENCY = "EMERGENCY"
    MAINTENANCE = "MAINTENANCE"
    ENVIRONMENTAL = "ENVIRONMENTAL"
    OPERATIONAL = "OPERATIONAL"
    COMPLIANCE = "COMPLIANCE"
    OTHER = "OTHER"


class SignalSource(str, Enum):
    IOT_SENSOR = "IOT_SENSOR"
    USER_REPORT = "USER_REPORT"
    SYSTEM_MONITOR = "SYSTEM_MONITOR"
    EXTERNAL_API = "EXTERNAL_API"
    ENVIRONMENTAL = "ENVIRONMENTAL"
    MAINTENANCE = "MAINTENANCE"
    COMMUNITY = "COMMUNITY"
    PREDICTIVE = "PREDICTIVE"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# Stress contribution of one signal (antifragile scoring)
SEVERITY_STRESS_WEIGHT: Dict[Severity, int] = {
    Severity.LOW: 10,
    Severity.MEDIUM: 20,
    Severity.HIGH: 30,
    Severity.CRITICAL: 40,
}

# Numeric risk for RISK policy conditions
SEVERITY_RISK_SCORE: Dict[Severity, float] = {
    Severity.LOW: 0.2,
    Severity.MEDIUM: 0.5,
    Severity.HIGH: 0.8,
    Severity.CRITICAL: 1.0,
}


class Signal(BaseModel):
    """An observation that may demand margin or trigger adaptation."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"signal-{uuid.uuid4().hex[:12]}")
    source: SignalSource
    type: SignalType
    severity: Severity
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time, description="Epoch seconds")
    organisation_id: str = "default"
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def stress_weight(self) -> int:
        return SEVERITY_STRESS_WEIGHT[self.severity]

    @property
    def risk_score(self) -> float:
        return SEVERITY_RISK_SCORE[self.severity]
