# ============================================================================
# resilience/base/config.py
# Engine Configuration Management
# ============================================================================
#
# PURPOSE:
# All tunables for the ledger, threshold monitor, adaptive activator,
# performance monitor and logging live here. Every section is a frozen
# dataclass; a live `update_config` produces a new EngineConfig via
# `with_updates` rather than mutating one in place.
#
# KEY CONCEPTS:
# 1. Frozen dataclasses per component section
# 2. Environment variables (RESILIENCE_*) via EngineConfig.from_env()
# 3. validate() raises ConfigurationError; invalid config is fatal at startup
# 4. Singleton accessors get_config() / set_config()
#
# All durations are seconds unless the field name says otherwise.
# Response-time thresholds are milliseconds.
#
# ============================================================================

from __future__ import annotations

import os
import logging
from dataclasses import dataclass, field, fields, replace, asdict
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from resilience.errors import ConfigurationError, ErrorCode

logger = logging.getLogger(__name__)

DAY = 86400.0
HOUR = 3600.0


# ============================================================================
# Ledger Configuration
# ============================================================================

class PoolSelection(str, Enum):
    """How the policy engine picks a pool for an ALLOCATE action."""
    FIRST_FIT = "first_fit"
    BEST_FIT = "best_fit"


@dataclass(frozen=True)
class LedgerConfig:
    enabled: bool = True

    # Live allocations across the whole ledger
    max_concurrent_allocations: int = 50

    # Used when an AllocationRequest does not carry its own duration
    default_allocation_days: float = 7.0

    pool_selection: PoolSelection = PoolSelection.FIRST_FIT

    # MarginEvents kept in memory before the oldest are dropped
    event_log_capacity: int = 10000

    # Completed deployments and utilization records kept before the oldest are dropped
    history_capacity: int = 10000


# ============================================================================
# Threshold Monitor Configuration
# ============================================================================

@dataclass(frozen=True)
class ThresholdConfig:
    enabled: bool = True
    check_interval: float = 300.0          # breach classification (5 minutes)
    reorder_check_interval: float = DAY    # reorder recommendations (daily)
    expiry_sweep_interval: float = HOUR    # recover expired allocations


# ============================================================================
# Adaptive (Antifragile) Configuration
# ============================================================================

@dataclass(frozen=True)
class PerformanceThresholds:
    min_improvement: float = 5.0
    target_improvement: float = 15.0
    max_improvement: float = 50.0


@dataclass(frozen=True)
class AdaptationSettings:
    enabled: bool = True
    parameters: Mapping[str, Any] = field(default_factory=dict)


def _default_adaptation_config() -> Dict[str, AdaptationSettings]:
    return {
        "CAPACITY_SCALING": AdaptationSettings(True, {"max_scaling_factor": 2.0, "scaling_step": 0.1}),
        "EFFICIENCY_IMPROVEMENT": AdaptationSettings(True, {"optimization_target": 0.15}),
        "REDUNDANCY_ENHANCEMENT": AdaptationSettings(True, {"redundancy_level": 2}),
        "STRESS_LEARNING": AdaptationSettings(True, {"learning_window": 7}),
        "THRESHOLD_ADAPTATION": AdaptationSettings(True, {"adaptation_rate": 0.05}),
    }


@dataclass(frozen=True)
class AdaptiveConfig:
    enabled: bool = True

    # Batch stress score (0-100) below which no pattern activates
    stress_adaptation_threshold: float = 60.0

    # Weight of a new outcome in the pattern success-rate EMA
    learning_rate: float = 0.1

    # Minimum gap between two activations of the same pattern
    activation_cooldown: float = 300.0

    # Patterns with history below this success rate are skipped
    min_success_rate: float = 0.7

    event_retention_days: float = 30.0
    adaptation_retention_days: float = 30.0

    performance_thresholds: PerformanceThresholds = field(default_factory=PerformanceThresholds)
    adaptation_config: Mapping[str, AdaptationSettings] = field(default_factory=_default_adaptation_config)

    def adaptation(self, adaptation_type: str) -> AdaptationSettings:
        return self.adaptation_config.get(adaptation_type, AdaptationSettings(enabled=False))


# ============================================================================
# Performance Monitoring Configuration
# ============================================================================

@dataclass(frozen=True)
class AlertThresholds:
    response_time_ms: float = 10000.0
    success_rate: float = 0.90
    error_rate: float = 0.10
    # Peak pool utilization that raises a RESOURCE_EXHAUSTION alert
    resource_utilization: float = 0.95


@dataclass(frozen=True)
class MonitoringConfig:
    enabled: bool = True
    monitoring_interval: float = 30.0
    metrics_retention: float = 7 * DAY
    window: float = 300.0                  # rolling window for a snapshot
    baseline_alpha: float = 0.1
    default_baseline_ms: Optional[float] = None
    alert_dedup_window: float = 300.0
    signal_degradation_factor: float = 2.0
    workflow_degradation_factor: float = 1.5
    trend_sample_size: int = 5
    # Samples faster than this never count as degraded
    min_judged_sample_ms: float = 1.0
    alert_thresholds: AlertThresholds = field(default_factory=AlertThresholds)

    def validate(self) -> None:
        problems = monitoring_problems(self)
        if problems:
            raise ConfigurationError(
                "Invalid monitoring configuration",
                details={"problems": problems},
                code=ErrorCode.CONFIG_MISSING_REQUIRED,
            )


_NUMBER_ANNOTATIONS = ("int", "float", "Optional[float]")


def _number_problems(prefix: str, section: Any) -> List[str]:
    """Numeric fields holding something other than a number."""
    problems: List[str] = []
    for f in fields(section):
        if f.type not in _NUMBER_ANNOTATIONS:
            continue
        value = getattr(section, f.name)
        if value is None and f.type.startswith("Optional"):
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            problems.append(f"{prefix}.{f.name} must be a number, got {value!r}")
    return problems


def monitoring_problems(m: MonitoringConfig) -> List[str]:
    problems = _number_problems("monitoring", m)
    if not isinstance(m.alert_thresholds, AlertThresholds):
        problems.append("monitoring.alert_thresholds is required")
    else:
        problems.extend(_number_problems("monitoring.alert_thresholds", m.alert_thresholds))
    if problems:
        return problems

    if not m.monitoring_interval or m.monitoring_interval <= 0:
        problems.append("monitoring.monitoring_interval must be positive")
    if not m.metrics_retention or m.metrics_retention <= 0:
        problems.append("monitoring.metrics_retention must be positive")
    if m.window <= 0:
        problems.append("monitoring.window must be positive")
    if not 0 < m.baseline_alpha <= 1:
        problems.append("monitoring.baseline_alpha must be within (0, 1]")
    if m.trend_sample_size <= 0:
        problems.append("monitoring.trend_sample_size must be positive")
    if m.min_judged_sample_ms < 0:
        problems.append("monitoring.min_judged_sample_ms must not be negative")
    t = m.alert_thresholds
    if t.response_time_ms <= 0:
        problems.append("monitoring.alert_thresholds.response_time_ms must be positive")
    if not 0 <= t.success_rate <= 1 or not 0 <= t.error_rate <= 1:
        problems.append("monitoring.alert_thresholds rates must be within [0, 1]")
    if not 0 < t.resource_utilization <= 1:
        problems.append("monitoring.alert_thresholds.resource_utilization must be within (0, 1]")
    return problems


# Named presets for MonitoringConfig
MONITORING_PRESETS: Dict[str, MonitoringConfig] = {
    "high-frequency": MonitoringConfig(
        monitoring_interval=10.0,
        metrics_retention=DAY,
        alert_thresholds=AlertThresholds(response_time_ms=5000.0, success_rate=0.95, error_rate=0.05),
    ),
    "standard": MonitoringConfig(
        monitoring_interval=30.0,
        metrics_retention=7 * DAY,
        alert_thresholds=AlertThresholds(response_time_ms=10000.0, success_rate=0.90, error_rate=0.10),
    ),
    "low-frequency": MonitoringConfig(
        monitoring_interval=60.0,
        metrics_retention=30 * DAY,
        alert_thresholds=AlertThresholds(response_time_ms=30000.0, success_rate=0.80, error_rate=0.20),
    ),
}


def get_monitoring_preset(name: str) -> MonitoringConfig:
    try:
        return MONITORING_PRESETS[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown monitoring preset: {name}",
            details={"available": sorted(MONITORING_PRESETS)},
            code=ErrorCode.CONFIG_MISSING_REQUIRED,
        )


# ============================================================================
# Logging Configuration
# ============================================================================

@dataclass(frozen=True)
class LogConfig:
    level: str = "INFO"
    format: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    # File logging is off by default; the engine is usually embedded
    file_enabled: bool = False
    file_name: str = "resilience.log"
    log_dir: Path = field(default_factory=lambda: Path.home() / ".resilience")
    max_file_size_mb: int = 10
    backup_count: int = 5


# ============================================================================
# Master Configuration Container
# ============================================================================

_SECTIONS = ("ledger", "thresholds", "adaptive", "monitoring", "log")


@dataclass(frozen=True)
class EngineConfig:
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    adaptive: AdaptiveConfig = field(default_factory=AdaptiveConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    log: LogConfig = field(default_factory=LogConfig)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build a config from RESILIENCE_* environment variables."""
        try:
            config = cls._parse_env()
        except ValueError as e:
            raise ConfigurationError(f"Invalid RESILIENCE_* environment value: {e}")
        config.validate()
        return config

    @classmethod
    def _parse_env(cls) -> "EngineConfig":
        def _bool(name: str, default: str) -> bool:
            return os.getenv(name, default).lower() == "true"

        ledger = LedgerConfig(
            enabled=_bool("RESILIENCE_LEDGER_ENABLED", "true"),
            max_concurrent_allocations=int(os.getenv("RESILIENCE_MAX_CONCURRENT_ALLOCATIONS", "50")),
            default_allocation_days=float(os.getenv("RESILIENCE_DEFAULT_ALLOCATION_DAYS", "7")),
            pool_selection=PoolSelection(os.getenv("RESILIENCE_POOL_SELECTION", "first_fit")),
        )

        thresholds = ThresholdConfig(
            enabled=_bool("RESILIENCE_THRESHOLDS_ENABLED", "true"),
            check_interval=float(os.getenv("RESILIENCE_THRESHOLD_CHECK_INTERVAL", "300")),
            reorder_check_interval=float(os.getenv("RESILIENCE_REORDER_CHECK_INTERVAL", str(DAY))),
            expiry_sweep_interval=float(os.getenv("RESILIENCE_EXPIRY_SWEEP_INTERVAL", str(HOUR))),
        )

        adaptive = AdaptiveConfig(
            enabled=_bool("RESILIENCE_ADAPTIVE_ENABLED", "true"),
            stress_adaptation_threshold=float(os.getenv("RESILIENCE_STRESS_THRESHOLD", "60")),
            learning_rate=float(os.getenv("RESILIENCE_LEARNING_RATE", "0.1")),
            activation_cooldown=float(os.getenv("RESILIENCE_ACTIVATION_COOLDOWN", "300")),
            min_success_rate=float(os.getenv("RESILIENCE_MIN_SUCCESS_RATE", "0.7")),
            event_retention_days=float(os.getenv("RESILIENCE_EVENT_RETENTION_DAYS", "30")),
        )

        preset = os.getenv("RESILIENCE_MONITORING_PRESET")
        monitoring = get_monitoring_preset(preset) if preset else MonitoringConfig()
        if os.getenv("RESILIENCE_MONITORING_INTERVAL"):
            monitoring = replace(monitoring, monitoring_interval=float(os.environ["RESILIENCE_MONITORING_INTERVAL"]))
        if os.getenv("RESILIENCE_DEFAULT_BASELINE_MS"):
            monitoring = replace(monitoring, default_baseline_ms=float(os.environ["RESILIENCE_DEFAULT_BASELINE_MS"]))

        log = LogConfig(
            level=os.getenv("RESILIENCE_LOG_LEVEL", "INFO"),
            file_enabled=_bool("RESILIENCE_LOG_FILE", "false"),
            log_dir=Path(os.getenv("RESILIENCE_LOG_DIR", str(Path.home() / ".resilience"))),
        )

        return cls(ledger=ledger, thresholds=thresholds, adaptive=adaptive,
                   monitoring=monitoring, log=log)

    def validate(self) -> None:
        """Raise ConfigurationError on any invalid setting."""
        problems: List[str] = []
        problems.extend(_number_problems("ledger", self.ledger))
        problems.extend(_number_problems("thresholds", self.thresholds))
        problems.extend(_number_problems("adaptive", self.adaptive))
        if not isinstance(self.adaptive.performance_thresholds, PerformanceThresholds):
            problems.append("adaptive.performance_thresholds is required")
        else:
            problems.extend(_number_problems("adaptive.performance_thresholds", self.adaptive.performance_thresholds))
        problems.extend(monitoring_problems(self.monitoring))
        if problems:
            raise ConfigurationError("Invalid engine configuration", details={"problems": problems})

        if self.ledger.max_concurrent_allocations <= 0:
            problems.append("ledger.max_concurrent_allocations must be positive")
        if self.ledger.default_allocation_days <= 0:
            problems.append("ledger.default_allocation_days must be positive")

        for name in ("check_interval", "reorder_check_interval", "expiry_sweep_interval"):
            if getattr(self.thresholds, name) <= 0:
                problems.append(f"thresholds.{name} must be positive")

        a = self.adaptive
        if not 0 <= a.stress_adaptation_threshold <= 100:
            problems.append("adaptive.stress_adaptation_threshold must be within [0, 100]")
        if not 0 < a.learning_rate <= 1:
            problems.append("adaptive.learning_rate must be within (0, 1]")
        if a.activation_cooldown < 0:
            problems.append("adaptive.activation_cooldown must not be negative")
        if not 0 <= a.min_success_rate <= 1:
            problems.append("adaptive.min_success_rate must be within [0, 1]")
        pt = a.performance_thresholds
        if not 0 <= pt.min_improvement <= pt.target_improvement <= pt.max_improvement:
            problems.append("adaptive.performance_thresholds must satisfy min <= target <= max")
        if self.ledger.history_capacity <= 0:
            problems.append("ledger.history_capacity must be positive")

        if problems:
            raise ConfigurationError("Invalid engine configuration", details={"problems": problems})

    def with_updates(self, partial: Mapping[str, Any]) -> "EngineConfig":
        """
        Return a new config with a nested partial update applied.

        Example:
            cfg.with_updates({"adaptive": {"activation_cooldown": 60}})

        Raises:
            ConfigurationError: unknown section/field or the result fails validate()
        """
        sections: Dict[str, Any] = {}
        for section_name, values in partial.items():
            if section_name not in _SECTIONS:
                raise ConfigurationError(f"Unknown config section: {section_name}")
            section = getattr(self, section_name)
            if not isinstance(values, Mapping):
                raise ConfigurationError(f"Config section {section_name} must be a mapping")
            sections[section_name] = _replace_section(section_name, section, values)

        updated = replace(self, **sections)
        updated.validate()
        return updated

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_NESTED = {
    "performance_thresholds": PerformanceThresholds,
    "alert_thresholds": AlertThresholds,
}


def _replace_section(section_name: str, section: Any, values: Mapping[str, Any]) -> Any:
    known = set(section.__dataclass_fields__)
    changes: Dict[str, Any] = {}
    for key, value in values.items():
        if key not in known:
            raise ConfigurationError(f"Unknown config field: {section_name}.{key}")
        try:
            changes[key] = _merge_field(key, getattr(section, key), value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid value for {section_name}.{key}: {e}")
    try:
        return replace(section, **changes)
    except TypeError as e:
        raise ConfigurationError(f"Invalid value for section {section_name}: {e}")


def _merge_field(key: str, current: Any, value: Any) -> Any:
    if key in _NESTED:
        if not isinstance(value, Mapping):
            raise TypeError(f"expected a mapping, got {value!r}")
        return replace(current, **value)
    if key == "adaptation_config":
        if not isinstance(value, Mapping):
            raise TypeError(f"expected a mapping, got {value!r}")
        merged = dict(current)
        for adaptation_type, settings in value.items():
            if isinstance(settings, AdaptationSettings):
                merged[adaptation_type] = settings
            else:
                base = merged.get(adaptation_type, AdaptationSettings())
                merged[adaptation_type] = replace(base, **settings)
        return merged
    if key == "pool_selection":
        return PoolSelection(value)
    return value


# ============================================================================
# Global Configuration Singleton
# ============================================================================

_config: Optional[EngineConfig] = None


def get_config() -> EngineConfig:
    global _config
    if _config is None:
        _config = EngineConfig.from_env()
    return _config


def set_config(config: EngineConfig) -> None:
    """Replace the global config (tests and embedding hosts)."""
    global _config
    config.validate()
    _config = config


def setup_logging(config: Optional[EngineConfig] = None) -> None:
    """
    Configure console and optional rotating file logging.

    Call this once at application startup; library code only uses
    module-level loggers.
    """
    cfg = config if config is not None else get_config()

    handlers: List[logging.Handler] = [logging.StreamHandler()]

    if cfg.log.file_enabled:
        from logging.handlers import RotatingFileHandler
        cfg.log.log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            cfg.log.log_dir / cfg.log.file_name,
            maxBytes=cfg.log.max_file_size_mb * 1024 * 1024,
            backupCount=cfg.log.backup_count,
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, cfg.log.level.upper()),
        format=cfg.log.format,
        handlers=handlers,
        force=True,
    )
