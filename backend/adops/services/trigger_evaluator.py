"""
Trigger evaluator - runs tenant rules for one workflow event

For every enabled rule of the event (priority desc, sequentially):
1. claim (rule, entity, event) by inserting a "running" log row; a row that
   already exists means the rule ran before -> duplicate
2. re-read the entity snapshot into the payload, evaluate the condition;
   false -> the row becomes "skipped"
3. run the actions in list order; a failed action does not stop the others
   but marks the rule execution "failed"
4. finalize the row, bump the rule's execution counter

Side effects run at most once per key: a crash after the claim leaves the
row "running" rather than repeating the actions on redelivery.

Rule failures are logged and recorded ("error" rows), never surfaced to the
code that published the event. Only a failure to load the rules propagates,
so the event bus redelivers the event.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import logging

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from adops.config import settings
from adops.models.pipeline import Campaign, Order
from adops.models.schemas import EntityType, TriggerContext
from adops.models.workflow import ExecutionStatus, TriggerExecutionLog, WorkflowTrigger
from adops.services.actions import ActionContext, ActionExecutorRegistry, ActionResult, get_action_registry
from adops.services.campaign_workflow_service import CampaignWorkflowService
from adops.services.events import WorkflowEventPublisher
from adops.services.inventory_service import default_document_number
from adops.services.notification_service import NotificationService
from adops.services.order_workflow_service import OrderWorkflowService
from adops.services.trigger_service import CompiledTrigger, TriggerService
from adops.services.workflow_settings_service import WorkflowSettingsService
from adops.tenancy import TenantContext
from workflow_core.cache import TenantCache
from workflow_core.engine.conditions import evaluate_condition
from workflow_core.engine.event_bus import Event

logger = logging.getLogger(__name__)

# Outcome status for a rule that already ran for this (entity, event)
DUPLICATE = "duplicate"
ERROR = ExecutionStatus.ERROR.value


@dataclass
class RuleOutcome:
    """What happened to one rule for one event (not persisted for duplicates)"""

    trigger_id: int
    trigger_name: str
    status: str
    action_results: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None


class TriggerEvaluator:
    """
    Workflow trigger evaluator

    Example:
        >>> evaluator = TriggerEvaluator(SessionLocal, cache, publisher)
        >>> bus.subscribe(WILDCARD, evaluator.handle_event)
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        cache: TenantCache,
        publisher: Optional[WorkflowEventPublisher] = None,
        registry: Optional[ActionExecutorRegistry] = None,
        webhook_timeout: float = settings.WEBHOOK_TIMEOUT_SECONDS,
        number_generator: Callable[[str], str] = default_document_number,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.publisher = publisher or WorkflowEventPublisher()
        self.registry = registry or get_action_registry()
        self.webhook_timeout = webhook_timeout
        self.number_generator = number_generator

    # ============== Event intake ==============

    def handle_event(self, event: Event) -> None:
        """Event bus subscriber: decode the payload and evaluate"""
        try:
            context = TriggerContext.model_validate(event.data)
        except PydanticValidationError as e:
            logger.warning(f"Ignoring {event.event_type} ({event.event_id}): not a workflow event: {e}")
            return
        if event.tenant and event.tenant != context.org_id:
            logger.warning(f"Ignoring {event.event_id}: tenant mismatch ({event.tenant} != {context.org_id})")
            return
        self.evaluate(context)

    def evaluate(self, context: TriggerContext) -> List[RuleOutcome]:
        """
        Evaluate every enabled rule of the tenant for this event.

        Args:
            context: Event intake (org, actor, event name, entity, payload)

        Returns:
            One outcome per matching rule, in evaluation order

        Raises:
            Exception: The tenant's rules could not be loaded (the bus redelivers)
        """
        tenant = TenantContext(org_id=context.org_id)
        outcomes: List[RuleOutcome] = []
        db = self.session_factory()
        try:
            try:
                rules = TriggerService(db, self.cache).load_enabled_rules(tenant, context.event)
            except Exception as e:
                logger.error(f"[{tenant}] could not load rules for {context.event.value}: {e}", exc_info=True)
                raise

            for rule in rules:
                try:
                    outcome = self._evaluate_rule(db, tenant, context, rule)
                except Exception as e:
                    db.rollback()
                    logger.error(
                        f"[{tenant}] trigger {rule.id} failed for {context.entity_type.value} "
                        f"{context.entity_id}: {e}",
                        exc_info=True,
                    )
                    self._record_error(db, tenant, context, rule, str(e))
                    outcome = RuleOutcome(trigger_id=rule.id, trigger_name=rule.name, status=ERROR, error=str(e))
                outcomes.append(outcome)
        finally:
            db.close()

        if outcomes:
            summary = ", ".join(f"{o.trigger_id}={o.status}" for o in outcomes)
            logger.info(f"[{tenant}] {context.event.value} {context.entity_type.value} {context.entity_id}: {summary}")
        return outcomes

    # ============== Per rule ==============

    def _evaluate_rule(
        self,
        db: Session,
        tenant: TenantContext,
        context: TriggerContext,
        rule: CompiledTrigger,
    ) -> RuleOutcome:
        if self._already_executed(db, tenant, rule, context) or self._claim(db, tenant, context, rule) is None:
            logger.info(f"[{tenant}] trigger {rule.id} already ran for {context.entity_id}/{context.event.value}")
            return RuleOutcome(trigger_id=rule.id, trigger_name=rule.name, status=DUPLICATE)

        payload = self._current_payload(db, tenant, context)
        if rule.condition is not None and not evaluate_condition(rule.condition, payload):
            return self._record(db, tenant, context, rule, ExecutionStatus.SKIPPED, [])

        event = context.model_copy(update={"data": payload})
        services = self._services(db)
        results: List[ActionResult] = []
        for action in rule.actions:
            action_ctx = ActionContext(
                tenant=tenant,
                db=db,
                event=event,
                trigger_id=rule.id,
                trigger_name=rule.name,
                webhook_timeout=self.webhook_timeout,
                **services,
            )
            result = self.registry.execute(action, action_ctx)
            results.append(self._settle(db, result))

        failed = [r for r in results if not r.success]
        status = ExecutionStatus.FAILED if failed else ExecutionStatus.SUCCESS
        error = "; ".join(f"{r.type}: {r.error}" for r in failed) or None
        return self._record(db, tenant, context, rule, status, results, error)

    @staticmethod
    def _settle(db: Session, result: ActionResult) -> ActionResult:
        """Commit a successful action's writes; drop a failed action's writes"""
        if not result.success:
            db.rollback()
            return result
        try:
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Could not commit {result.type} action: {e}", exc_info=True)
            return ActionResult(type=result.type, success=False, output=result.output, error=str(e))
        return result

    def _services(self, db: Session) -> Dict[str, Any]:
        settings_service = WorkflowSettingsService(db, self.cache)
        return {
            "campaigns": CampaignWorkflowService(db, settings_service, self.publisher, self.number_generator),
            "orders": OrderWorkflowService(db, self.publisher, self.number_generator),
            "notifications": NotificationService(db, settings_service=settings_service),
        }

    def _already_executed(self, db: Session, tenant: TenantContext, rule: CompiledTrigger,
                          context: TriggerContext) -> bool:
        return db.query(TriggerExecutionLog.id).filter(*self._key_filter(tenant, rule, context)).first() is not None

    @staticmethod
    def _current_payload(db: Session, tenant: TenantContext, context: TriggerContext) -> Dict[str, Any]:
        """Event payload with the entity's current snapshot"""
        payload = dict(context.data)
        if not context.entity_id.isdigit():
            return payload
        model = {EntityType.CAMPAIGN: Campaign, EntityType.ORDER: Order}.get(context.entity_type)
        if model is None:
            return payload
        entity = db.query(model).filter(
            model.organization_id == tenant.org_id,
            model.id == int(context.entity_id),
        ).first()
        if entity is not None:
            payload[context.entity_type.value] = entity.to_dict()
        return payload

    @staticmethod
    def _key_filter(tenant: TenantContext, rule: CompiledTrigger, context: TriggerContext):
        return (
            TriggerExecutionLog.organization_id == tenant.org_id,
            TriggerExecutionLog.trigger_id == rule.id,
            TriggerExecutionLog.entity_id == context.entity_id,
            TriggerExecutionLog.event == context.event.value,
        )

    def _claim(
        self,
        db: Session,
        tenant: TenantContext,
        context: TriggerContext,
        rule: CompiledTrigger,
    ) -> Optional[int]:
        """Insert the "running" log row; None if another delivery holds the key"""
        entry = TriggerExecutionLog(
            organization_id=tenant.org_id,
            trigger_id=rule.id,
            event=context.event.value,
            entity_type=context.entity_type.value,
            entity_id=context.entity_id,
            status=ExecutionStatus.RUNNING.value,
            action_results=[],
        )
        db.add(entry)
        try:
            db.commit()
        except IntegrityError:
            # a concurrent delivery claimed the same (rule, entity, event) first
            db.rollback()
            logger.warning(f"[{tenant}] trigger {rule.id} execution for {context.entity_id} was claimed concurrently")
            return None
        return entry.id

    def _record(
        self,
        db: Session,
        tenant: TenantContext,
        context: TriggerContext,
        rule: CompiledTrigger,
        status: ExecutionStatus,
        results: List[ActionResult],
        error: Optional[str] = None,
    ) -> RuleOutcome:
        """Finalize the claimed log row and bump the rule counters in one commit"""
        action_results = [r.to_dict() for r in results]
        db.query(TriggerExecutionLog).filter(*self._key_filter(tenant, rule, context)).update({
            TriggerExecutionLog.status: status.value,
            TriggerExecutionLog.action_results: action_results,
            TriggerExecutionLog.error_message: error,
            TriggerExecutionLog.executed_at: datetime.utcnow(),
        }, synchronize_session=False)
        self._bump_counter(db, tenant, rule)
        db.commit()

        if status == ExecutionStatus.FAILED:
            logger.warning(f"[{tenant}] trigger {rule.id} '{rule.name}' failed for {context.entity_id}: {error}")
        return RuleOutcome(trigger_id=rule.id, trigger_name=rule.name, status=status.value,
                           action_results=action_results, error=error)

    def _record_error(
        self,
        db: Session,
        tenant: TenantContext,
        context: TriggerContext,
        rule: CompiledTrigger,
        error: str,
    ) -> None:
        """Mark the rule's log row "error", inserting it when the key was never claimed"""
        try:
            updated = db.query(TriggerExecutionLog).filter(*self._key_filter(tenant, rule, context)).update({
                TriggerExecutionLog.status: ExecutionStatus.ERROR.value,
                TriggerExecutionLog.error_message: error,
                TriggerExecutionLog.executed_at: datetime.utcnow(),
            }, synchronize_session=False)
            if not updated:
                db.add(TriggerExecutionLog(
                    organization_id=tenant.org_id,
                    trigger_id=rule.id,
                    event=context.event.value,
                    entity_type=context.entity_type.value,
                    entity_id=context.entity_id,
                    status=ExecutionStatus.ERROR.value,
                    action_results=[],
                    error_message=error,
                ))
            self._bump_counter(db, tenant, rule)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"[{tenant}] could not record error of trigger {rule.id}: {e}", exc_info=True)

    @staticmethod
    def _bump_counter(db: Session, tenant: TenantContext, rule: CompiledTrigger) -> None:
        db.query(WorkflowTrigger).filter(
            WorkflowTrigger.organization_id == tenant.org_id,
            WorkflowTrigger.id == rule.id,
        ).update({
            WorkflowTrigger.execution_count: WorkflowTrigger.execution_count + 1,
            WorkflowTrigger.last_executed_at: datetime.utcnow(),
        }, synchronize_session=False)


__all__ = ["TriggerEvaluator", "RuleOutcome", "DUPLICATE", "ERROR"]
