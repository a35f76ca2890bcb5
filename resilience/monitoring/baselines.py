"""
resilience/monitoring/baselines.py
Exponential moving average baselines.

    b' = alpha * x + (1 - alpha) * b

A key's first sample seeds its baseline unless a default baseline is
configured. After k samples of a constant x the gap to x shrinks by
(1 - alpha) ** k.
"""

from __future__ import annotations

import math
import threading
from typing import Dict, Optional


def signal_key(signal_type: str) -> str:
    return f"{signal_type}-processing-time"


def workflow_key(workflow_id: str) -> str:
    return f"{workflow_id}-execution-time"


def steps_to_converge(alpha: float, epsilon: float) -> int:
    """Samples needed for a constant input to close all but `epsilon` of the initial gap."""
    return math.ceil(math.log(epsilon) / math.log(1 - alpha))


class BaselineTracker:
    def __init__(self, alpha: float = 0.1, default: Optional[float] = None):
        if not 0 < alpha <= 1:
            raise ValueError(f"alpha must be within (0, 1], got {alpha}")
        self.alpha = alpha
        self.default = default
        self._baselines: Dict[str, float] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[float]:
        with self._lock:
            return self._baselines.get(key, self.default)

    def set(self, key: str, value: float):
        with self._lock:
            self._baselines[key] = value

    def observe(self, key: str, value: float) -> Optional[float]:
        """
        Fold a sample into the baseline.

        Returns:
            The baseline in force before this sample (None for an unseeded key).
        """
        with self._lock:
            prior = self._baselines.get(key, self.default)
            if prior is None:
                self._baselines[key] = value
            else:
                self._baselines[key] = self.alpha * value + (1 - self.alpha) * prior
            return prior

    def all(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._baselines)

    def clear(self):
        with self._lock:
            self._baselines.clear()
