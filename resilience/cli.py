"""
Resilience Engine CLI

Runs the engine headless against a rule file and a signal batch, or prints
the default rule set.

Usage:
    python -m resilience.cli defaults > rules.json
    python -m resilience.cli simulate --rules rules.json --signals signals.json [--ticks 1]
    python -m resilience.cli presets
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import List

from pydantic import TypeAdapter, ValidationError

from resilience.base.config import MONITORING_PRESETS, EngineConfig, get_monitoring_preset, setup_logging
from resilience.base.loader import RuleSet, default_rule_set, load_rules
from resilience.contracts.signals import Signal
from resilience.engine import ResilienceEngine
from resilience.errors import ConfigurationError, ErrorCode, ResilienceError

logger = logging.getLogger(__name__)


def _load_signals(path: str) -> List[Signal]:
    try:
        document = json.loads(Path(path).read_text())
        return TypeAdapter(List[Signal]).validate_python(document)
    except FileNotFoundError:
        raise ConfigurationError(f"Signal file not found: {path}", code=ErrorCode.CONFIG_FILE_NOT_FOUND)
    except (json.JSONDecodeError, ValidationError) as e:
        raise ConfigurationError(f"Invalid signal file {path}: {e}", code=ErrorCode.CONFIG_PARSE_ERROR)


def run_defaults(args) -> int:
    print(default_rule_set().model_dump_json(indent=2, exclude_none=True))
    return 0


def run_presets(args) -> int:
    print(json.dumps({name: asdict(cfg) for name, cfg in MONITORING_PRESETS.items()}, indent=2, default=str))
    return 0


def run_simulate(args) -> int:
    config = EngineConfig.from_env()
    if args.preset:
        config = EngineConfig(
            ledger=config.ledger,
            thresholds=config.thresholds,
            adaptive=config.adaptive,
            monitoring=get_monitoring_preset(args.preset),
            log=config.log,
        )
    setup_logging(config)

    rules = load_rules(args.rules) if args.rules else RuleSet()
    engine = ResilienceEngine(config=config, rules=rules)
    signals = _load_signals(args.signals)

    result = engine.process_signals(signals)
    for _ in range(args.ticks):
        engine.tick()

    report = {
        "activated_patterns": result.activated_patterns,
        "performance_improvements": result.stress.performance_improvements,
        "policy_executions": [
            {
                "policy_id": e.policy_id,
                "signal_id": e.signal_id,
                "results": [
                    {
                        "action": r.action_type.value,
                        "ok": r.ok,
                        "allocation_id": r.allocation_id,
                        "error": r.error.to_dict() if r.error else None,
                    }
                    for r in e.results
                ],
            }
            for e in result.executions
        ],
        "status": engine.get_status(),
        "active_alerts": [a.to_dict() for a in engine.get_active_alerts()],
    }
    print(json.dumps(report, indent=2, default=str))
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Resilience margin & adaptation engine")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    defaults_parser = subparsers.add_parser("defaults", help="Print the default rule set as JSON")
    defaults_parser.set_defaults(func=run_defaults)

    presets_parser = subparsers.add_parser("presets", help="Print the monitoring presets")
    presets_parser.set_defaults(func=run_presets)

    simulate_parser = subparsers.add_parser("simulate", help="Process a signal batch and print engine status")
    simulate_parser.add_argument("--signals", required=True, help="JSON file with a list of signals")
    simulate_parser.add_argument("--rules", help="JSON rule file (defaults are used when omitted)")
    simulate_parser.add_argument("--ticks", type=int, default=1, help="Periodic ticks to run after processing")
    simulate_parser.add_argument("--preset", choices=sorted(MONITORING_PRESETS), help="Monitoring preset")
    simulate_parser.set_defaults(func=run_simulate)

    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1
    try:
        return args.func(args)
    except ResilienceError as e:
        print(e.to_json(), file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
