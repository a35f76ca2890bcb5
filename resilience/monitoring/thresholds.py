"""
Threshold Monitor (resilience/monitoring/thresholds.py)

PURPOSE:
Periodically classifies every pool's availability against its threshold
bands and records breaches and reorder recommendations as MarginEvents.

Each tick reads one consistent copy per pool from the ledger. Classification
is ordered most-severe first, so a pool yields at most one breach per tick.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

from resilience.contracts.margin import (
    BreachLevel,
    MarginEvent,
    MarginEventType,
    MarginThreshold,
    PoolStatus,
    ResourcePool,
)
from resilience.ledger.ledger import MarginLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThresholdReading:
    pool_id: str
    ratio: float
    level: Optional[BreachLevel]
    threshold_id: Optional[str]
    auto_deploy: bool = False


def availability_ratio(pool: ResourcePool) -> float:
    """available / minimum_stock, falling back to available / total."""
    if pool.minimum_stock > 0:
        return pool.available_quantity / pool.minimum_stock
    if pool.total_quantity > 0:
        return pool.available_quantity / pool.total_quantity
    return 0.0


class ThresholdMonitor:
    def __init__(self, ledger: MarginLedger, thresholds: Sequence[MarginThreshold] = ()):
        self.ledger = ledger
        self.thresholds: List[MarginThreshold] = list(thresholds)

    def set_thresholds(self, thresholds: Sequence[MarginThreshold]):
        self.thresholds = list(thresholds)

    def threshold_for(self, pool: ResourcePool) -> Optional[MarginThreshold]:
        # Category-specific bands win over margin-type-wide bands
        specific = [t for t in self.thresholds if t.category is not None and t.matches(pool)]
        if specific:
            return specific[0]
        for threshold in self.thresholds:
            if threshold.matches(pool):
                return threshold
        return None

    def classify(self, pool: ResourcePool) -> ThresholdReading:
        ratio = availability_ratio(pool)
        threshold = self.threshold_for(pool)
        if threshold is None:
            return ThresholdReading(pool.id, ratio, None, None)
        return ThresholdReading(
            pool_id=pool.id,
            ratio=ratio,
            level=threshold.classify(ratio),
            threshold_id=threshold.id,
            auto_deploy=ratio <= threshold.auto_deploy,
        )

    def tick(self, now: Optional[float] = None) -> List[ThresholdReading]:
        """Classify all active pools; emit one THRESHOLD_BREACH per breaching pool."""
        now = time.time() if now is None else now
        readings = []
        for pool in self.ledger.get_pools():
            if pool.status != PoolStatus.ACTIVE:
                continue
            reading = self.classify(pool)
            readings.append(reading)
            if reading.level is None:
                continue

            self.ledger.events.emit(MarginEvent.create(
                MarginEventType.THRESHOLD_BREACH,
                f"{reading.level.value} threshold breach for {pool.name}: "
                f"{pool.available_quantity} {pool.unit} available",
                margin_type=pool.margin_type,
                timestamp=now,
                metadata={
                    "pool_id": pool.id,
                    "level": reading.level.value,
                    "ratio": reading.ratio,
                    "threshold_id": reading.threshold_id,
                    "available_quantity": pool.available_quantity,
                    "minimum_stock": pool.minimum_stock,
                    "auto_deploy": reading.auto_deploy,
                },
            ))
            log = logger.warning if reading.level == BreachLevel.WARNING else logger.error
            log(f"[ThresholdMonitor] {reading.level.value} breach on {pool.id} (ratio {reading.ratio:.2f})")
        return readings

    def check_reorders(self, now: Optional[float] = None) -> List[str]:
        """Emit a reorder recommendation for each active pool at or below its reorder point."""
        now = time.time() if now is None else now
        flagged = []
        for pool in self.ledger.get_pools():
            if pool.status != PoolStatus.ACTIVE or pool.available_quantity > pool.reorder_point:
                continue
            order_quantity = pool.minimum_stock * 2
            self.ledger.events.emit(MarginEvent.create(
                MarginEventType.OPTIMIZATION,
                f"Reorder recommendation for {pool.name}: Order {order_quantity:g} {pool.unit}",
                margin_type=pool.margin_type,
                timestamp=now,
                metadata={
                    "pool_id": pool.id,
                    "recommended_quantity": order_quantity,
                    "available_quantity": pool.available_quantity,
                    "reorder_point": pool.reorder_point,
                },
            ))
            flagged.append(pool.id)
        if flagged:
            logger.info(f"[ThresholdMonitor] Reorder recommended for {', '.join(flagged)}")
        return flagged
