"""
Workflow runtime - wires cache, event bus, publisher, evaluator and services

    runtime = WorkflowRuntime()
    runtime.start()
    with session_scope() as db:
        campaigns = runtime.campaign_service(db)
        campaigns.update_probability(tenant, campaign_id, 90, actor_id=7, actor_role="sales")
    runtime.stop()

Services publish through runtime.publisher; the evaluator is subscribed to
every event and runs tenant rules on the bus worker.
"""
from typing import Callable, Optional
import logging

from sqlalchemy.orm import Session

from adops.config import settings
from adops.database import SessionLocal
from adops.services.actions import ActionExecutorRegistry
from adops.services.campaign_workflow_service import CampaignWorkflowService
from adops.services.events import WorkflowEventPublisher
from adops.services.inventory_service import InventoryService, default_document_number
from adops.services.notification_service import NotificationService
from adops.services.order_workflow_service import OrderWorkflowService
from adops.services.trigger_evaluator import TriggerEvaluator
from adops.services.trigger_service import TriggerService
from adops.services.workflow_settings_service import WorkflowSettingsService
from workflow_core.cache import TenantCache
from workflow_core.engine.event_bus import WILDCARD, EventBus

logger = logging.getLogger(__name__)


class WorkflowRuntime:
    """Composition root for the workflow engine (one per process)"""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        asynchronous: bool = settings.EVENT_ASYNC,
        cache_ttl_seconds: float = settings.RULE_CACHE_TTL_SECONDS,
        max_deliveries: int = settings.EVENT_MAX_DELIVERIES,
        number_generator: Callable[[str], str] = default_document_number,
        registry: Optional[ActionExecutorRegistry] = None,
    ):
        self.session_factory = session_factory
        self.number_generator = number_generator
        self.cache = TenantCache(ttl_seconds=cache_ttl_seconds)
        self.bus = EventBus(
            history_size=settings.EVENT_HISTORY_SIZE,
            asynchronous=asynchronous,
            max_deliveries=max_deliveries,
        )
        self.publisher = WorkflowEventPublisher(self.bus)
        self.evaluator = TriggerEvaluator(
            session_factory,
            self.cache,
            publisher=self.publisher,
            registry=registry,
            webhook_timeout=settings.WEBHOOK_TIMEOUT_SECONDS,
            number_generator=number_generator,
        )
        self.bus.subscribe(WILDCARD, self.evaluator.handle_event)

    # ============== Lifecycle ==============

    def start(self) -> None:
        if self.bus.asynchronous:
            self.bus.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self.bus.stop(timeout)

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait until every published event has been evaluated"""
        return self.bus.drain(timeout)

    # ============== Service factories ==============

    def settings_service(self, db: Session) -> WorkflowSettingsService:
        return WorkflowSettingsService(db, self.cache)

    def trigger_service(self, db: Session) -> TriggerService:
        return TriggerService(db, self.cache)

    def inventory_service(self, db: Session) -> InventoryService:
        return InventoryService(db, self.number_generator)

    def notification_service(self, db: Session) -> NotificationService:
        return NotificationService(db, settings_service=self.settings_service(db))

    def campaign_service(self, db: Session) -> CampaignWorkflowService:
        return CampaignWorkflowService(db, self.settings_service(db), self.publisher, self.number_generator)

    def order_service(self, db: Session) -> OrderWorkflowService:
        return OrderWorkflowService(db, self.publisher, self.number_generator)


__all__ = ["WorkflowRuntime"]
