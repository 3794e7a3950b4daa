"""
adops/services/actions

Workflow rule action executors.

Each action type is:
1. Defined with a typed config model in adops.models.schemas
2. Implemented as a handler function in a domain-specific module
3. Registered using the @registry.register decorator
4. Executed via ActionExecutorRegistry.execute()

Usage:
    from adops.services.actions import get_action_registry

    registry = get_action_registry()
    result = registry.execute(action, ctx)
"""
from adops.services.actions.base import (
    ActionContext, ActionDefinition, ActionExecutorRegistry, ActionResult,
)

import logging

logger = logging.getLogger(__name__)

# Global action registry instance
_action_registry: ActionExecutorRegistry = None


def _create_action_registry() -> ActionExecutorRegistry:
    """Create the registry and register every action module."""
    registry = ActionExecutorRegistry()

    from adops.services.actions import notification_actions, pipeline_actions, webhook_actions

    notification_actions.register_notification_actions(registry)
    pipeline_actions.register_pipeline_actions(registry)
    webhook_actions.register_webhook_actions(registry)

    logger.info(f"ActionExecutorRegistry initialized with {len(registry.list_actions())} actions")

    return registry


def get_action_registry() -> ActionExecutorRegistry:
    """
    Get the global action registry instance.

    Creates the registry on first call (lazy initialization).
    """
    global _action_registry
    if _action_registry is None:
        _action_registry = _create_action_registry()
    return _action_registry


def reset_action_registry() -> None:
    """Reset the global action registry (tests)."""
    global _action_registry
    _action_registry = None


__all__ = [
    "ActionContext",
    "ActionDefinition",
    "ActionExecutorRegistry",
    "ActionResult",
    "get_action_registry",
    "reset_action_registry",
]
