"""
Notification service - recipient resolution and channel fan-out
"""
from typing import Callable, Iterable, List, Optional
import logging

from sqlalchemy.orm import Session

from adops.models.pipeline import User
from adops.notification.in_app_channel import InAppChannel
from adops.tenancy import TenantContext
from workflow_core.notification.channel import ChannelRegistry, NotificationChannel, NotificationMessage

logger = logging.getLogger(__name__)

# channel type -> flag in the notifications.enabled setting
CHANNEL_SETTING_FLAGS = {"in_app": "in_app", "email": "email", "webhook": "webhook"}


class NotificationService:
    """Notification service"""

    def __init__(
        self,
        db: Session,
        channels: Optional[Iterable[NotificationChannel]] = None,
        settings_service=None,
    ):
        self.db = db
        self.settings_service = settings_service
        self.registry = ChannelRegistry([InAppChannel(db), *(channels or [])])

    def resolve_recipients(
        self,
        tenant: TenantContext,
        user_ids: Iterable[int] = (),
        roles: Iterable[str] = (),
    ) -> List[int]:
        """
        Explicit users union active users holding any of the roles.

        Unknown or inactive explicit ids are dropped. Order is explicit ids
        first, then role members by id; each user appears once.
        """
        explicit = [int(uid) for uid in user_ids]
        roles = list(roles)

        known = set()
        if explicit:
            known = {
                uid for (uid,) in self.db.query(User.id).filter(
                    User.organization_id == tenant.org_id,
                    User.id.in_(explicit),
                    User.is_active == True,  # noqa: E712
                ).all()
            }
            dropped = [uid for uid in explicit if uid not in known]
            if dropped:
                logger.warning(f"[{tenant}] dropping unknown notification recipients: {dropped}")

        by_role: List[int] = []
        if roles:
            by_role = [
                uid for (uid,) in self.db.query(User.id).filter(
                    User.organization_id == tenant.org_id,
                    User.role.in_(roles),
                    User.is_active == True,  # noqa: E712
                ).order_by(User.id).all()
            ]

        recipients: List[int] = []
        seen = set()
        for uid in [uid for uid in explicit if uid in known] + by_role:
            if uid not in seen:
                seen.add(uid)
                recipients.append(uid)
        return recipients

    def channel_filter(self, tenant: TenantContext) -> Optional[Callable[[str], bool]]:
        """Channel type -> enabled, from the tenant's notifications.enabled setting"""
        if self.settings_service is None:
            return None
        flags = self.settings_service.notification_channels(tenant)
        return lambda channel_type: getattr(flags, CHANNEL_SETTING_FLAGS.get(channel_type, ""), True)

    def notify(
        self,
        tenant: TenantContext,
        title: str,
        message: str,
        user_ids: Iterable[int] = (),
        roles: Iterable[str] = (),
        entity_type: Optional[str] = None,
        entity_id=None,
    ) -> List[int]:
        """
        Resolve recipients and send one notification per recipient per enabled channel.

        Delivery is fire-and-forget: failed channels are logged by the registry.

        Returns:
            Resolved recipient ids
        """
        recipients = self.resolve_recipients(tenant, user_ids, roles)
        enabled = self.channel_filter(tenant)

        failures = 0
        for uid in recipients:
            report = self.registry.dispatch(NotificationMessage(
                tenant_id=tenant.org_id,
                recipient=str(uid),
                title=title,
                body=message,
                entity_type=entity_type,
                entity_id=str(entity_id) if entity_id is not None else None,
            ), enabled)
            failures += len(report.failed)

        logger.info(f"[{tenant}] notification '{title}' sent to {len(recipients)} recipients"
                    + (f" ({failures} failed deliveries)" if failures else ""))
        return recipients
