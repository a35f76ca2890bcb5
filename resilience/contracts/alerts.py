"""
resilience/contracts/alerts.py
Alerts raised by the performance monitor.

An alert moves ACTIVE -> ACKNOWLEDGED -> RESOLVED. Resolving moves it out
of the active set into history; the record itself is never deleted while
inside the retention window.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class AlertType(str, Enum):
    PERFORMANCE_DEGRADATION = "PERFORMANCE_DEGRADATION"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    EXECUTION_ERROR = "EXECUTION_ERROR"
    SYSTEM_HEALTH = "SYSTEM_HEALTH"
    RESOURCE_EXHAUSTION = "RESOURCE_EXHAUSTION"


class AlertSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AlertStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"


@dataclass
class Alert:
    id: str
    type: AlertType
    severity: AlertSeverity
    title: str
    description: str
    source: str
    timestamp: float
    status: AlertStatus = AlertStatus.ACTIVE
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[float] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[float] = None
    resolution: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def signature(self) -> tuple:
        """Deduplication key."""
        return (self.type, self.title)

    @property
    def is_open(self) -> bool:
        return self.status != AlertStatus.RESOLVED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "source": self.source,
            "timestamp": self.timestamp,
            "status": self.status.value,
            "acknowledged_by": self.acknowledged_by,
            "acknowledged_at": self.acknowledged_at,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at,
            "resolution": self.resolution,
            "metadata": self.metadata,
        }
