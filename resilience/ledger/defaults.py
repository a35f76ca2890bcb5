"""
resilience/ledger/defaults.py
Default rule set: pools, thresholds, policies and antifragile patterns.

Used when the engine is started without a rule file. Factories return
fresh objects on every call because pools and patterns are mutable.
"""

from __future__ import annotations

from typing import List

from resilience.contracts.adaptive import AdaptationType, AntifragilePattern, TriggerCondition
from resilience.contracts.margin import (
    Action,
    ActionType,
    Condition,
    ConditionType,
    MarginPolicy,
    MarginThreshold,
    MarginType,
    Operator,
    ResourceCategory,
    ResourcePool,
)
from resilience.contracts.signals import Severity, SignalType


def default_pools() -> List[ResourcePool]:
    return [
        # Material inventory
        ResourcePool("bearing-6205", "Ball Bearing 6205", ResourceCategory.SPARE_PARTS, 50,
                     minimum_stock=10, reorder_point=15, criticality=Severity.HIGH, unit="pieces"),
        ResourcePool("hydraulic-oil-46", "Hydraulic Oil ISO 46", ResourceCategory.CONSUMABLES, 200,
                     minimum_stock=50, reorder_point=75, criticality=Severity.MEDIUM, unit="liters"),
        ResourcePool("safety-helmet", "Safety Helmet", ResourceCategory.SAFETY, 100,
                     minimum_stock=20, reorder_point=30, criticality=Severity.CRITICAL, unit="pieces"),
        ResourcePool("electrical-cable-16mm", "Electrical Cable 16mm", ResourceCategory.EQUIPMENT, 500,
                     minimum_stock=100, reorder_point=150, criticality=Severity.HIGH, unit="meters"),
        ResourcePool("welding-electrode-7018", "Welding Electrode E7018", ResourceCategory.CONSUMABLES, 50,
                     minimum_stock=10, reorder_point=15, criticality=Severity.MEDIUM, unit="kg"),
        # Capacity
        ResourcePool("computational-capacity", "Computational Capacity", ResourceCategory.COMPUTATIONAL, 1000,
                     minimum_stock=200, reorder_point=300, unit="cpu-hours"),
        ResourcePool("human-capacity", "Field Technicians", ResourceCategory.HUMAN, 50,
                     minimum_stock=10, reorder_point=15, criticality=Severity.HIGH, unit="people"),
        ResourcePool("storage-capacity", "Storage Capacity", ResourceCategory.STORAGE, 10000,
                     minimum_stock=2000, reorder_point=3000, unit="GB"),
        ResourcePool("network-capacity", "Network Capacity", ResourceCategory.NETWORK, 1000,
                     minimum_stock=200, reorder_point=300, unit="Mbps"),
        # Time
        ResourcePool("maintenance-window-hours", "Maintenance Window", ResourceCategory.MAINTENANCE_WINDOW, 168,
                     minimum_stock=24, reorder_point=48, unit="hours"),
        ResourcePool("emergency-response-hours", "Emergency Response Buffer", ResourceCategory.EMERGENCY_RESPONSE, 72,
                     minimum_stock=12, reorder_point=24, criticality=Severity.CRITICAL, unit="hours"),
        # Financial
        ResourcePool("operational-budget", "Operational Budget", ResourceCategory.OPERATIONAL_BUDGET, 100000,
                     minimum_stock=20000, reorder_point=30000, unit="USD"),
        ResourcePool("contingency-fund", "Contingency Fund", ResourceCategory.CONTINGENCY_FUND, 50000,
                     minimum_stock=10000, reorder_point=15000, criticality=Severity.HIGH, unit="USD"),
    ]


def default_thresholds() -> List[MarginThreshold]:
    """Category-specific bands first; the ThresholdMonitor uses the first match."""
    return [
        MarginThreshold(id="spare-parts-threshold", margin_type=MarginType.MATERIAL,
                        category=ResourceCategory.SPARE_PARTS,
                        warning=0.3, critical=0.1, emergency=0.05, auto_deploy=0.15),
        MarginThreshold(id="consumables-threshold", margin_type=MarginType.MATERIAL,
                        category=ResourceCategory.CONSUMABLES,
                        warning=0.4, critical=0.2, emergency=0.1, auto_deploy=0.25),
        MarginThreshold(id="safety-threshold", margin_type=MarginType.MATERIAL,
                        category=ResourceCategory.SAFETY,
                        warning=0.2, critical=0.1, emergency=0.05, auto_deploy=0.15),
        MarginThreshold(id="material-threshold", margin_type=MarginType.MATERIAL,
                        warning=0.3, critical=0.1, emergency=0.05, auto_deploy=0.15),
        MarginThreshold(id="capacity-threshold", margin_type=MarginType.CAPACITY,
                        warning=0.3, critical=0.15, emergency=0.05, auto_deploy=0.2),
        MarginThreshold(id="time-threshold", margin_type=MarginType.TIME,
                        warning=0.3, critical=0.15, emergency=0.05, auto_deploy=0.2),
        MarginThreshold(id="financial-threshold", margin_type=MarginType.FINANCIAL,
                        warning=0.3, critical=0.15, emergency=0.05, auto_deploy=0.2),
    ]


def default_policies() -> List[MarginPolicy]:
    return [
        MarginPolicy(
            id="emergency-material-policy",
            name="Emergency Material Response",
            margin_type=MarginType.MATERIAL,
            conditions=[Condition(type=ConditionType.SIGNAL, operator=Operator.EQ, value=SignalType.EMERGENCY.value)],
            actions=[Action(type=ActionType.ALLOCATE,
                            parameters={"category": ResourceCategory.SAFETY.value, "quantity": 10})],
            priority=1,
        ),
        MarginPolicy(
            id="maintenance-material-policy",
            name="Maintenance Material Allocation",
            margin_type=MarginType.MATERIAL,
            conditions=[Condition(type=ConditionType.SIGNAL, operator=Operator.EQ, value=SignalType.MAINTENANCE.value)],
            actions=[Action(type=ActionType.ALLOCATE,
                            parameters={"category": ResourceCategory.SPARE_PARTS.value, "quantity": 5})],
            priority=2,
        ),
        MarginPolicy(
            id="emergency-capacity-policy",
            name="Emergency Capacity Response",
            margin_type=MarginType.CAPACITY,
            conditions=[
                Condition(type=ConditionType.SIGNAL, operator=Operator.EQ, value=SignalType.EMERGENCY.value),
                Condition(type=ConditionType.RISK, operator=Operator.GTE, value=0.8),
            ],
            actions=[
                Action(type=ActionType.ALLOCATE,
                       parameters={"category": ResourceCategory.HUMAN.value, "quantity": 5}),
                Action(type=ActionType.ALLOCATE,
                       parameters={"category": ResourceCategory.COMPUTATIONAL.value, "quantity": 100}),
            ],
            priority=1,
        ),
        MarginPolicy(
            id="surge-capacity-policy",
            name="Surge Capacity Alert",
            margin_type=MarginType.CAPACITY,
            conditions=[Condition(type=ConditionType.UTILIZATION, operator=Operator.GTE, value=0.8)],
            actions=[Action(type=ActionType.ESCALATE,
                            parameters={"message": "Overall utilization at or above 80%", "level": "HIGH"})],
            priority=3,
        ),
    ]


def default_patterns() -> List[AntifragilePattern]:
    return [
        AntifragilePattern(
            id="high-load-capacity-scaling",
            name="High Load Capacity Scaling",
            description="Scale capacity when performance degrades under high stress",
            trigger_condition=TriggerCondition(
                min_stress_level=70,
                required_signals=(SignalType.PERFORMANCE_DEGRADATION,),
            ),
            adaptations=[AdaptationType.CAPACITY_SCALING],
        ),
        AntifragilePattern(
            id="stress-learning-pattern",
            name="Stress Learning",
            description="Learn from escalating risk on degrading assets and adapt thresholds",
            trigger_condition=TriggerCondition(
                min_stress_level=60,
                required_signals=(SignalType.RISK_ESCALATION, SignalType.ASSET_CONDITION),
            ),
            adaptations=[AdaptationType.STRESS_LEARNING, AdaptationType.THRESHOLD_ADAPTATION],
        ),
        AntifragilePattern(
            id="efficiency-improvement-pattern",
            name="Efficiency Improvement",
            description="Improve maintenance efficiency under environmental stress",
            trigger_condition=TriggerCondition(
                min_stress_level=50,
                required_signals=(SignalType.MAINTENANCE, SignalType.ENVIRONMENTAL),
            ),
            adaptations=[AdaptationType.EFFICIENCY_IMPROVEMENT],
        ),
    ]
