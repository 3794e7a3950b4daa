"""
adops/services/actions/notification_actions.py

Notification and approval-request actions.
"""
from typing import Any, Dict

from adops.models.pipeline import ApprovalStatus, ApprovalType, CampaignApproval
from adops.models.schemas import RequireApprovalConfig, SendNotificationConfig
from adops.services.actions.base import ActionContext, ActionExecutorRegistry

import logging

logger = logging.getLogger(__name__)


def register_notification_actions(registry: ActionExecutorRegistry) -> None:
    """Register send_notification and require_approval."""

    @registry.register(
        name="send_notification",
        description="Notify explicit users and every active user holding one of the roles.",
        side_effects=["writes_notifications"],
    )
    def handle_send_notification(config: SendNotificationConfig, ctx: ActionContext) -> Dict[str, Any]:
        recipients = ctx.notifications.notify(
            ctx.tenant,
            title=ctx.render(config.title),
            message=ctx.render(config.message),
            user_ids=config.to_users,
            roles=config.to_roles,
            entity_type=ctx.entity_type,
            entity_id=ctx.entity_id,
        )
        return {"recipients": recipients, "count": len(recipients)}

    @registry.register(
        name="require_approval",
        description="Open a pending approval request on the campaign and notify the approving roles.",
        entity_types={"campaign"},
        side_effects=["creates_approval", "writes_notifications"],
    )
    def handle_require_approval(config: RequireApprovalConfig, ctx: ActionContext) -> Dict[str, Any]:
        campaign = ctx.campaigns.get_campaign(ctx.tenant, int(ctx.entity_id))
        reason = ctx.render(config.reason) if config.reason else f"Required by workflow rule '{ctx.trigger_name}'"

        # A failed in-app write rolls the session back, so notify before adding the request
        notified = ctx.notifications.notify(
            ctx.tenant,
            title=f"Approval required: campaign {campaign.name}",
            message=reason,
            roles=config.roles,
            entity_type=ctx.entity_type,
            entity_id=ctx.entity_id,
        )
        approval = CampaignApproval(
            organization_id=ctx.tenant.org_id,
            entity_type=ctx.entity_type,
            entity_id=str(campaign.id),
            approval_type=ApprovalType.RULE,
            status=ApprovalStatus.PENDING,
            reason=reason,
            required_roles=list(config.roles),
            requested_by=ctx.event.user_id,
            trigger_id=ctx.trigger_id,
        )
        ctx.db.add(approval)
        ctx.db.flush()
        campaign.approval_request_id = approval.id

        logger.info(f"[{ctx.tenant}] approval {approval.id} opened for campaign {campaign.id}")
        return {"approval_id": approval.id, "required_roles": list(config.roles), "notified": notified}


__all__ = ["register_notification_actions"]
