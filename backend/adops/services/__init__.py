# Workflow Services
from adops.services.inventory_service import InventoryService
from adops.services.workflow_settings_service import WorkflowSettingsService
from adops.services.notification_service import NotificationService
from adops.services.events import WorkflowEventPublisher
from adops.services.campaign_workflow_service import CampaignWorkflowService
from adops.services.order_workflow_service import OrderWorkflowService
from adops.services.trigger_service import TriggerService
from adops.services.trigger_evaluator import TriggerEvaluator

__all__ = [
    'InventoryService', 'WorkflowSettingsService', 'NotificationService',
    'WorkflowEventPublisher', 'CampaignWorkflowService', 'OrderWorkflowService',
    'TriggerService', 'TriggerEvaluator',
]
