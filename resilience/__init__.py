# ============================================================================
# resilience/__init__.py
# Package Marker for the Resilience Engine
# ============================================================================
#
# Subpackages:
# - base/        configuration, logging setup, rule loading
# - contracts/   signals, margin model, alerts, adaptive records
# - ledger/      margin ledger and its store
# - monitoring/  threshold monitor, baselines, performance monitor
# - cortex/      policy conditions and the policy engine
# - adaptive/    antifragile pattern activator
# - scheduler/   periodic asyncio ticks
#
# The public entry point is resilience.engine.ResilienceEngine.
# ============================================================================

__version__ = "0.1.0"
