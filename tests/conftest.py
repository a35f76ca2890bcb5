"""Pytest configuration for the resilience engine."""
import os

import pytest

from resilience.base.config import EngineConfig, LedgerConfig
from resilience.contracts.margin import ResourceCategory, ResourcePool
from resilience.contracts.signals import Severity, Signal, SignalSource, SignalType
from resilience.ledger.ledger import MarginLedger


def pytest_configure():
    # Keep tests off the filesystem and away from any developer overrides.
    os.environ.setdefault("RESILIENCE_LOG_FILE", "false")
    os.environ.setdefault("RESILIENCE_LOG_LEVEL", "WARNING")


NOW = 1_700_000_000.0


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def ledger():
    ledger = MarginLedger(LedgerConfig(max_concurrent_allocations=5))
    ledger.add_pool(ResourcePool("bearing-6205", "Ball Bearing 6205", ResourceCategory.SPARE_PARTS, 50,
                                 minimum_stock=10, reorder_point=15))
    ledger.add_pool(ResourcePool("safety-helmet", "Safety Helmet", ResourceCategory.SAFETY, 100,
                                 minimum_stock=20, reorder_point=30))
    return ledger


@pytest.fixture
def engine_config():
    return EngineConfig()


@pytest.fixture
def make_signal():
    def _make(signal_type=SignalType.OPERATIONAL, severity=Severity.MEDIUM, **kwargs):
        return Signal(source=SignalSource.SYSTEM_MONITOR, type=signal_type, severity=severity, **kwargs)
    return _make
