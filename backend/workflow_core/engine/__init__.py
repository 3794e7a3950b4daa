"""
workflow_core/engine - workflow engine components

- event_bus: publish/subscribe with at-least-once delivery
- state_machine: declarative transition tables with role checks
- conditions: trigger condition trees (parse + pure evaluation)

Usage:
    >>> from workflow_core.engine import EventBus, Event, StateMachine
    >>> from workflow_core.engine import parse_condition, evaluate_condition
"""

# Event bus
from workflow_core.engine.event_bus import (
    EventId,
    CorrelationId,
    EventHandler,
    Event,
    PublishResult,
    EventBusStatistics,
    EventBus,
    WILDCARD,
)

# State machine
from workflow_core.engine.state_machine import (
    StateTransition,
    StateMachineConfig,
    StateMachine,
)

# Conditions
from workflow_core.engine.conditions import (
    ConditionOperator,
    FieldCondition,
    AndCondition,
    OrCondition,
    ConditionNode,
    UNDEFINED,
    parse_condition,
    condition_to_dict,
    pydantic_field_errors,
    resolve_field,
    evaluate_condition,
)

__all__ = [
    # Event bus
    "EventId",
    "CorrelationId",
    "EventHandler",
    "Event",
    "PublishResult",
    "EventBusStatistics",
    "EventBus",
    "WILDCARD",
    # State machine
    "StateTransition",
    "StateMachineConfig",
    "StateMachine",
    # Conditions
    "ConditionOperator",
    "FieldCondition",
    "AndCondition",
    "OrCondition",
    "ConditionNode",
    "UNDEFINED",
    "parse_condition",
    "condition_to_dict",
    "pydantic_field_errors",
    "resolve_field",
    "evaluate_condition",
]
