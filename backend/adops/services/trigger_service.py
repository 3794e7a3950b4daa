"""
Trigger service - per-tenant rule configuration store

Writes validate the whole rule (condition tree + action union), bump the
version, append a version snapshot and invalidate the tenant's rule cache
before returning. Rules are never physically deleted.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import logging

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from adops.models.schemas import ActionSpec, TriggerCreate, TriggerUpdate
from adops.models.workflow import WorkflowTrigger, WorkflowTriggerVersion
from adops.tenancy import TenantContext
from workflow_core.cache import TenantCache
from workflow_core.engine.conditions import ConditionNode, condition_to_dict, parse_condition, pydantic_field_errors
from workflow_core.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

_ACTIONS_ADAPTER = TypeAdapter(List[ActionSpec])


@dataclass
class CompiledTrigger:
    """Parsed, session-independent view of an enabled rule (cache value)"""

    id: int
    name: str
    event: str
    priority: int
    condition: Optional[ConditionNode]
    actions: List[Any] = field(default_factory=list)


def compile_trigger(trigger: WorkflowTrigger) -> CompiledTrigger:
    return CompiledTrigger(
        id=trigger.id,
        name=trigger.name,
        event=trigger.event,
        priority=trigger.priority,
        condition=parse_condition(trigger.condition) if trigger.condition else None,
        actions=_ACTIONS_ADAPTER.validate_python(trigger.actions or []),
    )


class TriggerService:
    """Workflow trigger configuration service"""

    def __init__(self, db: Session, cache: TenantCache):
        self.db = db
        self.cache = cache

    # ============== Validation ==============

    def _validate(self, data: Dict[str, Any], schema) -> Tuple[Any, Optional[ConditionNode]]:
        """Validate a create/update payload; collects every field error before raising."""
        if not isinstance(data, dict):
            raise ValidationError("Trigger definition must be an object", field_errors={"__root__": "expected an object"})

        errors: Dict[str, str] = {}
        model = None
        try:
            model = schema.model_validate(data)
        except PydanticValidationError as e:
            errors.update(pydantic_field_errors(e))

        condition = None
        if data.get("condition") is not None:
            try:
                condition = parse_condition(data["condition"])
            except ValidationError as e:
                # tree errors replace pydantic's outer type errors
                errors = {k: v for k, v in errors.items() if not k.startswith("condition")}
                errors.update(e.field_errors)

        if errors:
            raise ValidationError("Invalid workflow trigger", field_errors=errors)
        return model, condition

    @staticmethod
    def _dump_actions(actions) -> List[Dict[str, Any]]:
        return [action.model_dump(mode="json") for action in actions]

    # ============== Queries ==============

    def get_trigger(self, tenant: TenantContext, trigger_id: int) -> WorkflowTrigger:
        trigger = self.db.query(WorkflowTrigger).filter(
            WorkflowTrigger.organization_id == tenant.org_id,
            WorkflowTrigger.id == trigger_id,
        ).first()
        if trigger is None:
            raise NotFoundError(f"Workflow trigger {trigger_id} not found", details={"trigger_id": trigger_id})
        return trigger

    def list_triggers(
        self,
        tenant: TenantContext,
        event: Optional[str] = None,
        enabled: Optional[bool] = None,
    ) -> List[WorkflowTrigger]:
        """Triggers in evaluation order (priority desc, then creation order)"""
        query = self.db.query(WorkflowTrigger).filter(WorkflowTrigger.organization_id == tenant.org_id)
        if event:
            query = query.filter(WorkflowTrigger.event == getattr(event, "value", event))
        if enabled is not None:
            query = query.filter(WorkflowTrigger.is_enabled == enabled)
        return query.order_by(WorkflowTrigger.priority.desc(), WorkflowTrigger.id).all()

    def load_enabled_rules(self, tenant: TenantContext, event: str) -> List[CompiledTrigger]:
        """Enabled rules for an event, compiled and cached per tenant"""
        event = getattr(event, "value", event)

        def load():
            compiled = []
            for trigger in self.list_triggers(tenant, event=event, enabled=True):
                try:
                    compiled.append(compile_trigger(trigger))
                except (ValidationError, PydanticValidationError) as e:
                    logger.error(f"[{tenant}] trigger {trigger.id} has an invalid stored definition, skipped: {e}")
            return compiled

        return self.cache.get_or_load(tenant.org_id, ("triggers", event), load)

    # ============== Writes ==============

    def create_trigger(self, tenant: TenantContext, data: Dict[str, Any], actor_id: Optional[int] = None) -> WorkflowTrigger:
        """
        Create a rule.

        Raises:
            ValidationError: With field_errors such as {"actions.0.config.url": "..."}
        """
        model, condition = self._validate(data, TriggerCreate)
        trigger = WorkflowTrigger(
            organization_id=tenant.org_id,
            name=model.name,
            description=model.description,
            event=model.event.value,
            condition=condition_to_dict(condition) if condition else None,
            actions=self._dump_actions(model.actions),
            is_enabled=model.is_enabled,
            priority=model.priority,
            version=1,
            created_by=actor_id,
            updated_by=actor_id,
        )
        self.db.add(trigger)
        self.db.flush()
        self._record_version(tenant, trigger, actor_id, "Created")
        self._commit(tenant)
        logger.info(f"[{tenant}] workflow trigger {trigger.id} '{trigger.name}' created by {actor_id}")
        return trigger

    def update_trigger(
        self,
        tenant: TenantContext,
        trigger_id: int,
        data: Dict[str, Any],
        actor_id: Optional[int] = None,
    ) -> WorkflowTrigger:
        """Partial update; an explicit "condition": None removes the condition"""
        trigger = self.get_trigger(tenant, trigger_id)
        model, condition = self._validate(data, TriggerUpdate)
        fields = model.model_fields_set

        if "name" in fields and model.name is not None:
            trigger.name = model.name
        if "description" in fields:
            trigger.description = model.description
        if "event" in fields and model.event is not None:
            trigger.event = model.event.value
        if "condition" in fields:
            trigger.condition = condition_to_dict(condition) if condition else None
        if "actions" in fields and model.actions is not None:
            trigger.actions = self._dump_actions(model.actions)
        if "is_enabled" in fields and model.is_enabled is not None:
            trigger.is_enabled = model.is_enabled
        if "priority" in fields and model.priority is not None:
            trigger.priority = model.priority

        trigger.version += 1
        trigger.updated_by = actor_id
        self._record_version(tenant, trigger, actor_id, model.change_reason or "Updated")
        self._commit(tenant)
        logger.info(f"[{tenant}] workflow trigger {trigger.id} updated to v{trigger.version} by {actor_id}")
        return trigger

    def delete_trigger(self, tenant: TenantContext, trigger_id: int, actor_id: Optional[int] = None) -> WorkflowTrigger:
        """Soft delete: disable the rule, keep it for the execution log"""
        trigger = self.get_trigger(tenant, trigger_id)
        trigger.is_enabled = False
        trigger.version += 1
        trigger.updated_by = actor_id
        self._record_version(tenant, trigger, actor_id, "Disabled")
        self._commit(tenant)
        logger.info(f"[{tenant}] workflow trigger {trigger.id} disabled by {actor_id}")
        return trigger

    # ============== Versions ==============

    def _record_version(self, tenant: TenantContext, trigger: WorkflowTrigger, actor_id: Optional[int],
                        reason: Optional[str]) -> WorkflowTriggerVersion:
        version = WorkflowTriggerVersion(
            organization_id=tenant.org_id,
            trigger_id=trigger.id,
            version=trigger.version,
            snapshot=trigger.snapshot(),
            changed_by=actor_id,
            change_reason=reason,
        )
        self.db.add(version)
        return version

    def get_versions(self, tenant: TenantContext, trigger_id: int, limit: int = 20) -> List[WorkflowTriggerVersion]:
        """Version history, newest first"""
        self.get_trigger(tenant, trigger_id)
        return self.db.query(WorkflowTriggerVersion).filter(
            WorkflowTriggerVersion.organization_id == tenant.org_id,
            WorkflowTriggerVersion.trigger_id == trigger_id,
        ).order_by(WorkflowTriggerVersion.version.desc()).limit(limit).all()

    def get_version(self, tenant: TenantContext, trigger_id: int, version: int) -> WorkflowTriggerVersion:
        row = self.db.query(WorkflowTriggerVersion).filter(
            WorkflowTriggerVersion.organization_id == tenant.org_id,
            WorkflowTriggerVersion.trigger_id == trigger_id,
            WorkflowTriggerVersion.version == version,
        ).first()
        if row is None:
            raise NotFoundError(f"Version {version} of workflow trigger {trigger_id} not found",
                                details={"trigger_id": trigger_id, "version": version})
        return row

    def rollback_to_version(
        self,
        tenant: TenantContext,
        trigger_id: int,
        version: int,
        actor_id: Optional[int] = None,
    ) -> WorkflowTrigger:
        """
        Restore the configuration of an earlier version.

        The restore is a new version; history is never rewritten.
        """
        trigger = self.get_trigger(tenant, trigger_id)
        snapshot = dict(self.get_version(tenant, trigger_id, version).snapshot)
        model, condition = self._validate(snapshot, TriggerCreate)

        trigger.name = model.name
        trigger.description = model.description
        trigger.event = model.event.value
        trigger.condition = condition_to_dict(condition) if condition else None
        trigger.actions = self._dump_actions(model.actions)
        trigger.is_enabled = model.is_enabled
        trigger.priority = model.priority
        trigger.version += 1
        trigger.updated_by = actor_id
        self._record_version(tenant, trigger, actor_id, f"Rollback to version {version}")
        self._commit(tenant)
        logger.info(f"[{tenant}] workflow trigger {trigger.id} rolled back to v{version} (now v{trigger.version})")
        return trigger

    def _commit(self, tenant: TenantContext) -> None:
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.cache.invalidate(tenant.org_id)
