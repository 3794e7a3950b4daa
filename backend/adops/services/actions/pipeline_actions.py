"""
adops/services/actions/pipeline_actions.py

Actions that go back through the campaign / order workflow services:
reservation, probability change and status transition. None of them writes
status fields directly.
"""
from typing import Any, Dict

from adops.models.pipeline import CampaignStatus
from adops.models.schemas import ChangeProbabilityConfig, CreateReservationConfig, TransitionStatusConfig
from adops.services.actions.base import ActionContext, ActionExecutorRegistry
from adops.services.campaign_workflow_service import snap_to_rung

import logging

logger = logging.getLogger(__name__)


def apply_probability_operation(current: int, operation: str, amount: int) -> int:
    """set / add / subtract, clamped to [0, 100]."""
    if operation == "set":
        value = amount
    elif operation == "add":
        value = current + amount
    elif operation == "subtract":
        value = current - amount
    else:
        raise ValueError(f"unknown probability operation: {operation}")
    return max(0, min(100, value))


def register_pipeline_actions(registry: ActionExecutorRegistry) -> None:
    """Register create_reservation, change_probability and transition_status."""

    @registry.register(
        name="create_reservation",
        description="Reserve inventory for the campaign's scheduled spots.",
        entity_types={"campaign"},
        side_effects=["reserves_inventory"],
    )
    def handle_create_reservation(config: CreateReservationConfig, ctx: ActionContext) -> Dict[str, Any]:
        reservation = ctx.campaigns.create_reservation(
            ctx.tenant,
            int(ctx.entity_id),
            actor_id=ctx.event.user_id,
            actor_role=ctx.event.user_role,
            expires_in_days=config.expires_in_days,
        )
        return {"reservation_id": reservation.id, "reservation_number": reservation.reservation_number}

    @registry.register(
        name="change_probability",
        description="Set, raise or lower the campaign probability (clamped, snapped to a rung).",
        entity_types={"campaign"},
        side_effects=["changes_campaign_status"],
    )
    def handle_change_probability(config: ChangeProbabilityConfig, ctx: ActionContext) -> Dict[str, Any]:
        campaign = ctx.campaigns.get_campaign(ctx.tenant, int(ctx.entity_id))
        current = campaign.probability
        clamped = apply_probability_operation(current, config.operation, config.to)
        target = snap_to_rung(clamped)
        if target == current:
            return {"previous_probability": current, "probability": current, "changed": False}

        notes = f"Workflow rule '{ctx.trigger_name}'"
        if campaign.status == CampaignStatus.PENDING_APPROVAL:
            # Raising a pending campaign approves it, lowering rejects it to the requested rung
            approve = target > current
            result = ctx.campaigns.review_approval(
                ctx.tenant,
                campaign.id,
                approve=approve,
                actor_id=ctx.event.user_id,
                actor_role=ctx.event.user_role,
                reason=notes,
                fallback_probability=None if approve else target,
            )
        else:
            result = ctx.campaigns.update_probability(
                ctx.tenant,
                campaign.id,
                target,
                actor_id=ctx.event.user_id,
                actor_role=ctx.event.user_role,
                notes=notes,
            )
        return {
            "previous_probability": current,
            "requested_probability": clamped,
            "probability": result.probability,
            "status": result.new_status,
            "changed": result.probability != current,
        }

    @registry.register(
        name="transition_status",
        description="Move the campaign or order through its state machine.",
        entity_types={"campaign", "order"},
        side_effects=["changes_status"],
    )
    def handle_transition_status(config: TransitionStatusConfig, ctx: ActionContext) -> Dict[str, Any]:
        service = ctx.campaigns if ctx.entity_type == "campaign" else ctx.orders
        result = service.transition(
            ctx.tenant,
            int(ctx.entity_id),
            config.to,
            actor_id=ctx.event.user_id,
            actor_role=ctx.event.user_role,
            notes=f"Workflow rule '{ctx.trigger_name}'",
        )
        return result.model_dump()


__all__ = ["register_pipeline_actions", "apply_probability_operation"]
