# Pipeline entities
from adops.models.pipeline import (
    User, Campaign, ScheduledSpot, InventorySlot, Reservation, ReservationItem,
    CampaignApproval, Order, OrderItem, OrderStatusHistory, Contract, Invoice,
    ActivityLog, Notification,
    CampaignStatus, OrderStatus, SlotState, ReservationStatus, ApprovalStatus, UserRole,
)
# Workflow configuration / execution
from adops.models.workflow import (
    WorkflowTrigger, WorkflowTriggerVersion, TriggerExecutionLog, WorkflowSetting, ExecutionStatus,
)

__all__ = [
    'User', 'Campaign', 'ScheduledSpot', 'InventorySlot', 'Reservation', 'ReservationItem',
    'CampaignApproval', 'Order', 'OrderItem', 'OrderStatusHistory', 'Contract', 'Invoice',
    'ActivityLog', 'Notification',
    'CampaignStatus', 'OrderStatus', 'SlotState', 'ReservationStatus', 'ApprovalStatus', 'UserRole',
    'WorkflowTrigger', 'WorkflowTriggerVersion', 'TriggerExecutionLog', 'WorkflowSetting', 'ExecutionStatus',
]
