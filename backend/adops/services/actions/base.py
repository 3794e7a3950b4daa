"""
adops/services/actions/base.py

Action executor registry and execution context.

Each action type of a trigger rule has one handler registered under its
`type` tag. Handlers receive the typed config model and an ActionContext,
return an output dict, and signal failure by raising.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set
import logging
import re

from sqlalchemy.orm import Session

from adops.models.schemas import TriggerContext
from adops.tenancy import TenantContext
from workflow_core.engine.conditions import UNDEFINED, resolve_field
from workflow_core.errors import PreconditionFailed

logger = logging.getLogger(__name__)

_TEMPLATE_PATTERN = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")


@dataclass
class ActionContext:
    """
    Everything an action handler may touch.

    Attributes:
        tenant: Tenant the event belongs to
        db: Session of the current rule evaluation
        event: The event being evaluated
        trigger_id: Rule being executed
        trigger_name: Rule name (messages)
        campaigns: CampaignWorkflowService bound to db
        orders: OrderWorkflowService bound to db
        notifications: NotificationService bound to db
        webhook_timeout: Default webhook timeout in seconds
    """

    tenant: TenantContext
    db: Session
    event: TriggerContext
    trigger_id: int
    trigger_name: str
    campaigns: Any
    orders: Any
    notifications: Any
    webhook_timeout: float = 10.0

    @property
    def entity_id(self) -> str:
        return self.event.entity_id

    @property
    def entity_type(self) -> str:
        return self.event.entity_type.value

    def require_entity(self, action: str, *allowed: str) -> None:
        """Raise unless the event's entity type is one of allowed."""
        if self.entity_type not in allowed:
            raise PreconditionFailed(
                f"{action} is only valid for {' / '.join(allowed)} entities, got {self.entity_type}",
                details={"entity_type": self.entity_type},
            )

    def render(self, template: str) -> str:
        """Replace {{dot.path}} placeholders with values from the event payload."""
        def replace(match):
            value = resolve_field(match.group(1), self.event.data)
            return "" if value is UNDEFINED or value is None else str(value)

        return _TEMPLATE_PATTERN.sub(replace, template or "")


@dataclass
class ActionResult:
    """Outcome of one action, stored in the execution log"""

    type: str
    success: bool
    output: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"type": self.type, "success": self.success, "output": self.output}
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class ActionDefinition:
    """
    Registered action executor.

    Attributes:
        name: Action type tag (e.g. "emit_webhook")
        handler: handler(config, ctx) -> output dict
        description: Human-readable description
        entity_types: Entity types the action accepts (empty = any)
        side_effects: Declared side effects
    """

    name: str
    handler: Callable[[Any, ActionContext], Dict[str, Any]]
    description: str = ""
    entity_types: Set[str] = field(default_factory=set)
    side_effects: List[str] = field(default_factory=list)


class ActionExecutorRegistry:
    """
    Registry of action executors.

    Example:
        >>> registry = ActionExecutorRegistry()
        >>> @registry.register("send_notification", description="Notify users")
        ... def handle(config, ctx):
        ...     return {"recipients": []}
        >>> registry.execute(action, ctx)
    """

    def __init__(self):
        self._actions: Dict[str, ActionDefinition] = {}

    def register(
        self,
        name: str,
        description: str = "",
        entity_types: Optional[Iterable[str]] = None,
        side_effects: Optional[List[str]] = None,
    ) -> Callable:
        """Decorator registering a handler under an action type tag."""
        def decorator(func: Callable) -> Callable:
            self._actions[name] = ActionDefinition(
                name=name,
                handler=func,
                description=description,
                entity_types=set(entity_types or ()),
                side_effects=side_effects or [],
            )
            logger.info(f"Registered workflow action: {name}")
            return func

        return decorator

    def get_action(self, name: str) -> Optional[ActionDefinition]:
        return self._actions.get(name)

    def list_actions(self) -> List[ActionDefinition]:
        return list(self._actions.values())

    def execute(self, action, ctx: ActionContext) -> ActionResult:
        """
        Run one typed action (an ActionSpec member).

        Never raises: handler failures become ActionResult(success=False).
        """
        definition = self.get_action(action.type)
        if definition is None:
            return ActionResult(type=action.type, success=False, error=f"Unknown action: {action.type}")

        try:
            if definition.entity_types:
                ctx.require_entity(action.type, *sorted(definition.entity_types))
            output = definition.handler(action.config, ctx) or {}
        except Exception as e:
            logger.warning(
                f"[{ctx.tenant}] action {action.type} of trigger {ctx.trigger_id} failed "
                f"for {ctx.entity_type} {ctx.entity_id}: {e}"
            )
            return ActionResult(type=action.type, success=False, error=str(e))

        return ActionResult(type=action.type, success=True, output=output)


__all__ = ["ActionContext", "ActionResult", "ActionDefinition", "ActionExecutorRegistry"]
