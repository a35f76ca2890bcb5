import json

import pytest

from resilience.base.loader import RuleSet, default_rule_set, load_rules, parse_rules
from resilience.contracts.adaptive import AdaptationType
from resilience.contracts.margin import ResourceCategory
from resilience.errors import ConfigurationError, ErrorCode


RULES = {
    "pools": [
        {"id": "oil", "name": "Hydraulic Oil", "category": "CONSUMABLES", "total_quantity": 200,
         "minimum_stock": 40, "reorder_point": 60, "unit": "liters"},
    ],
    "thresholds": [
        {"id": "consumables", "margin_type": "MATERIAL", "category": "CONSUMABLES",
         "warning": 0.4, "critical": 0.2, "emergency": 0.1},
    ],
    "policies": [
        {"id": "oil-top-up", "name": "Oil Top Up",
         "conditions": [{"type": "SIGNAL", "operator": "EQ", "value": "MAINTENANCE"}],
         "actions": [{"type": "ALLOCATE", "parameters": {"category": "CONSUMABLES", "quantity": 20}}]},
    ],
    "patterns": [
        {"id": "env", "name": "Environmental", "min_stress_level": 40,
         "required_signals": ["ENVIRONMENTAL"], "adaptations": ["REDUNDANCY_ENHANCEMENT"]},
    ],
}


def test_parse_rules_builds_domain_objects():
    rules = parse_rules(RULES)

    pool = rules.build_pools()[0]
    assert pool.category == ResourceCategory.CONSUMABLES
    assert pool.available_quantity == 200
    pattern = rules.build_patterns()[0]
    assert pattern.trigger_condition.min_stress_level == 40
    assert pattern.adaptations == [AdaptationType.REDUNDANCY_ENHANCEMENT]
    assert rules.policies[0].priority == 10


def test_missing_sections_stay_none():
    rules = RuleSet()
    assert rules.build_pools() is None
    assert rules.build_patterns() is None
    assert parse_rules({"pools": []}).build_pools() == []


@pytest.mark.parametrize("document", [
    {"pools": [{"id": "p", "name": "P", "category": "NOPE", "total_quantity": 1}]},
    {"pools": [{"id": "p", "name": "P", "category": "TOOLS", "total_quantity": 1, "allocated_quantity": 2}]},
    {"pools": [{"id": "p", "name": "P", "category": "TOOLS", "total_quantity": 1},
               {"id": "p", "name": "Q", "category": "TOOLS", "total_quantity": 1}]},
    {"thresholds": [{"id": "t", "margin_type": "MATERIAL", "warning": 0.1, "critical": 0.2, "emergency": 0.05}]},
    {"patterns": [{"id": "x", "name": "X", "min_stress_level": 10, "adaptations": []}]},
])
def test_invalid_documents_are_rejected(document):
    with pytest.raises(ConfigurationError) as exc:
        parse_rules(document)
    assert exc.value.code == ErrorCode.CONFIG_PARSE_ERROR


def test_load_rules_from_file(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps(RULES))
    assert load_rules(path).pools[0].id == "oil"


def test_load_rules_errors(tmp_path):
    with pytest.raises(ConfigurationError) as missing:
        load_rules(tmp_path / "absent.json")
    assert missing.value.code == ErrorCode.CONFIG_FILE_NOT_FOUND

    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    with pytest.raises(ConfigurationError) as parse:
        load_rules(broken)
    assert parse.value.code == ErrorCode.CONFIG_PARSE_ERROR


def test_default_rule_set_reparses():
    defaults = default_rule_set()
    reparsed = parse_rules(json.loads(defaults.model_dump_json()))
    assert [p.id for p in reparsed.pools] == [p.id for p in defaults.pools]
    assert len(reparsed.policies) == 4
    assert len(reparsed.patterns) == 3
