"""
In-app notification channel - writes Notification rows
"""
import logging

from sqlalchemy.orm import Session

from adops.models.pipeline import Notification
from workflow_core.notification.channel import NotificationChannel, NotificationMessage

logger = logging.getLogger(__name__)


class InAppChannel(NotificationChannel):
    """In-app channel

    Rows go into the caller's session and are committed with its unit of
    work. A failed flush rolls that session back before reporting failure,
    so the caller can keep using it.
    """

    channel_type = "in_app"

    def __init__(self, db: Session):
        self.db = db

    def deliver(self, message: NotificationMessage) -> bool:
        try:
            user_id = int(message.recipient)
        except ValueError:
            logger.error(f"[{message.tenant_id}] in-app recipient is not a user id: {message.recipient!r}")
            return False

        try:
            self.db.add(Notification(
                organization_id=message.tenant_id,
                user_id=user_id,
                title=message.title,
                message=message.body,
                entity_type=message.entity_type,
                entity_id=message.entity_id,
            ))
            self.db.flush()
        except Exception as e:
            self.db.rollback()
            logger.error(f"[{message.tenant_id}] in-app notification to user {user_id} rolled back: {e}")
            return False
        return True
