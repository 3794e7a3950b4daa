"""
Workflow event publishing
Services publish only after their transaction committed.
"""
from datetime import datetime
from typing import Any, Dict, Optional
import logging

from adops.models.schemas import TriggerContext, WorkflowEventName
from adops.tenancy import TenantContext
from workflow_core.engine.event_bus import Event, EventBus, PublishResult

logger = logging.getLogger(__name__)


class WorkflowEventPublisher:
    """Wraps TriggerContext payloads into bus events"""

    def __init__(self, bus: Optional[EventBus] = None, source: str = "adops"):
        self.bus = bus
        self.source = source

    def publish(
        self,
        tenant: TenantContext,
        event: WorkflowEventName,
        entity_type: str,
        entity_id,
        data: Optional[Dict[str, Any]] = None,
        actor_id: Optional[int] = None,
        actor_role: Optional[str] = None,
    ) -> Optional[PublishResult]:
        """Publish one workflow event; no-op without a bus"""
        if self.bus is None:
            return None
        context = TriggerContext(
            org_id=tenant.org_id,
            user_id=actor_id,
            user_role=actor_role,
            event=event,
            entity_type=entity_type,
            entity_id=entity_id,
            data=data or {},
        )
        logger.debug(f"[{tenant}] publishing {context.event.value} for {entity_type} {entity_id}")
        return self.bus.publish(Event(
            event_type=context.event.value,
            timestamp=datetime.now(),
            data=context.model_dump(mode="json"),
            source=self.source,
            tenant=tenant.org_id,
        ))
