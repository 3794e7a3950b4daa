"""
workflow_core/notification - notification channel abstraction
"""
from workflow_core.notification.channel import (
    ChannelRegistry, DeliveryReport, NotificationChannel, NotificationMessage,
)

__all__ = ["ChannelRegistry", "DeliveryReport", "NotificationChannel", "NotificationMessage"]
