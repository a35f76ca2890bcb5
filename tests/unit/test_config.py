import logging

import pytest

from resilience.base.config import (
    AdaptationSettings,
    EngineConfig,
    LedgerConfig,
    MonitoringConfig,
    PoolSelection,
    get_config,
    set_config,
    setup_logging,
)
from resilience.errors import ConfigurationError, ErrorCode


def test_defaults_are_valid():
    config = EngineConfig()
    config.validate()
    assert config.ledger.max_concurrent_allocations == 50
    assert config.adaptive.stress_adaptation_threshold == 60
    assert config.adaptive.adaptation("CAPACITY_SCALING").parameters["scaling_step"] == 0.1
    assert config.adaptive.adaptation("UNKNOWN").enabled is False


def test_from_env(monkeypatch):
    monkeypatch.setenv("RESILIENCE_MAX_CONCURRENT_ALLOCATIONS", "3")
    monkeypatch.setenv("RESILIENCE_POOL_SELECTION", "best_fit")
    monkeypatch.setenv("RESILIENCE_ADAPTIVE_ENABLED", "false")
    monkeypatch.setenv("RESILIENCE_MONITORING_PRESET", "high-frequency")
    monkeypatch.setenv("RESILIENCE_DEFAULT_BASELINE_MS", "250")

    config = EngineConfig.from_env()

    assert config.ledger.max_concurrent_allocations == 3
    assert config.ledger.pool_selection == PoolSelection.BEST_FIT
    assert config.adaptive.enabled is False
    assert config.monitoring.monitoring_interval == 10.0
    assert config.monitoring.default_baseline_ms == 250.0


def test_from_env_rejects_invalid_values(monkeypatch):
    monkeypatch.setenv("RESILIENCE_LEARNING_RATE", "0")
    with pytest.raises(ConfigurationError) as exc:
        EngineConfig.from_env()
    assert "adaptive.learning_rate must be within (0, 1]" in exc.value.details["problems"]


def test_from_env_wraps_unparsable_values(monkeypatch):
    monkeypatch.setenv("RESILIENCE_MAX_CONCURRENT_ALLOCATIONS", "lots")
    with pytest.raises(ConfigurationError) as exc:
        EngineConfig.from_env()
    assert exc.value.code == ErrorCode.CONFIG_INVALID

    monkeypatch.setenv("RESILIENCE_MAX_CONCURRENT_ALLOCATIONS", "3")
    monkeypatch.setenv("RESILIENCE_POOL_SELECTION", "nearest")
    with pytest.raises(ConfigurationError):
        EngineConfig.from_env()


def test_validate_reports_wrong_types():
    config = EngineConfig(monitoring=MonitoringConfig(window="abc"))
    with pytest.raises(ConfigurationError) as exc:
        config.validate()
    assert exc.value.details["problems"] == ["monitoring.window must be a number, got 'abc'"]


def test_validate_collects_every_problem():
    config = EngineConfig(ledger=LedgerConfig(max_concurrent_allocations=0, default_allocation_days=0))
    with pytest.raises(ConfigurationError) as exc:
        config.validate()
    assert exc.value.code == ErrorCode.CONFIG_INVALID
    assert len(exc.value.details["problems"]) == 2


def test_with_updates_nested():
    config = EngineConfig().with_updates({
        "adaptive": {
            "activation_cooldown": 60,
            "performance_thresholds": {"max_improvement": 40.0},
            "adaptation_config": {"CAPACITY_SCALING": {"parameters": {"scaling_step": 0.2}}},
        },
        "ledger": {"pool_selection": "best_fit"},
        "monitoring": {"alert_thresholds": {"success_rate": 0.8}},
    })

    assert config.adaptive.activation_cooldown == 60
    assert config.adaptive.performance_thresholds.max_improvement == 40.0
    assert config.adaptive.performance_thresholds.min_improvement == 5.0
    assert config.adaptive.adaptation("CAPACITY_SCALING").parameters == {"scaling_step": 0.2}
    assert config.adaptive.adaptation("STRESS_LEARNING").enabled is True
    assert config.ledger.pool_selection == PoolSelection.BEST_FIT
    assert config.monitoring.alert_thresholds.success_rate == 0.8
    assert config.monitoring.alert_thresholds.error_rate == 0.1
    # The source config is untouched
    assert EngineConfig().adaptive.activation_cooldown == 300


def test_with_updates_accepts_settings_objects():
    config = EngineConfig().with_updates({
        "adaptive": {"adaptation_config": {"CAPACITY_SCALING": AdaptationSettings(enabled=False)}},
    })
    assert config.adaptive.adaptation("CAPACITY_SCALING").enabled is False


@pytest.mark.parametrize("partial", [
    {"nonsense": {}},
    {"ledger": {"nonsense": 1}},
    {"ledger": 5},
    {"monitoring": {"monitoring_interval": 0}},
    {"monitoring": {"window": "abc"}},
    {"monitoring": {"monitoring_interval": "fast"}},
    {"monitoring": {"alert_thresholds": {"bogus": 1}}},
    {"monitoring": {"alert_thresholds": 5}},
    {"adaptive": {"performance_thresholds": {"min_improvement": "high"}}},
    {"adaptive": {"adaptation_config": {"CAPACITY_SCALING": {"bogus": 1}}}},
    {"adaptive": {"adaptation_config": {"CAPACITY_SCALING": 3}}},
    {"ledger": {"pool_selection": "nearest"}},
    {"ledger": {"max_concurrent_allocations": None}},
])
def test_with_updates_rejects_bad_partials(partial):
    with pytest.raises(ConfigurationError):
        EngineConfig().with_updates(partial)


def test_global_config_roundtrip():
    config = EngineConfig().with_updates({"ledger": {"max_concurrent_allocations": 7}})
    set_config(config)
    try:
        assert get_config() is config
    finally:
        set_config(EngineConfig())


def test_setup_logging_sets_level():
    setup_logging(EngineConfig().with_updates({"log": {"level": "DEBUG"}}))
    assert logging.getLogger().level == logging.DEBUG
    setup_logging(EngineConfig().with_updates({"log": {"level": "WARNING"}}))
    assert logging.getLogger().level == logging.WARNING
