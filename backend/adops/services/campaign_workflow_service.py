"""
Campaign workflow service - probability-weighted pipeline state machine

Stage statuses sit on fixed probability rungs:
    draft 10 -> qualified 35 -> proposal 65 -> verbal 90 -> signed 100
Side statuses: pending_approval (90, awaiting review), approved / booked /
active (100, post approval) and lost (keeps its rung).

Status and probability are only ever written together by _set_status().
"""
from collections import Counter
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from adops.models.pipeline import (
    ActivityLog, ApprovalStatus, ApprovalType, Campaign, CampaignApproval, CampaignStatus, Contract,
    Invoice, Order, OrderItem, OrderStatus, OrderStatusHistory, Reservation, ScheduledSpot, SlotState,
)
from adops.models.schemas import (
    CampaignCreate, RateCardDeltaTracking, TalentApprovalRule, TransitionResult, WorkflowEventName,
)
from adops.services.events import WorkflowEventPublisher
from adops.services.inventory_service import InventoryService, default_document_number, slot_key
from adops.services.workflow_settings_service import WorkflowSettingsService
from adops.tenancy import TenantContext
from workflow_core.engine.conditions import pydantic_field_errors
from workflow_core.engine.state_machine import StateMachine, StateMachineConfig, StateTransition
from workflow_core.errors import (
    ConflictError, NotFoundError, PermissionDenied, PreconditionFailed, ValidationError,
)

logger = logging.getLogger(__name__)

# ============== Pipeline table ==============

RUNGS = (10, 35, 65, 90, 100)

STAGE_STATUSES = (
    CampaignStatus.DRAFT,
    CampaignStatus.QUALIFIED,
    CampaignStatus.PROPOSAL,
    CampaignStatus.VERBAL,
    CampaignStatus.SIGNED,
)
RUNG_STATUS = dict(zip(RUNGS, STAGE_STATUSES))
STATUS_PROBABILITY = {
    **{status: rung for rung, status in RUNG_STATUS.items()},
    CampaignStatus.PENDING_APPROVAL: 90,
    CampaignStatus.APPROVED: 100,
    CampaignStatus.BOOKED: 100,
    CampaignStatus.ACTIVE: 100,
}
POST_APPROVAL_STATUSES = (CampaignStatus.APPROVED, CampaignStatus.BOOKED, CampaignStatus.ACTIVE)

SELLER_ROLES = {"master", "admin", "sales"}
APPROVER_ROLES = {"master", "admin"}

COMMISSION_RATE = Decimal("0.15")
PAYMENT_TERMS = "Net 30"
BILLING_CYCLE = "monthly"
INVOICE_DUE_DAYS = 30


def snap_to_rung(value: int) -> int:
    """Largest rung not above value; never below the first rung."""
    return max((rung for rung in RUNGS if rung <= value), default=RUNGS[0])


def _under_review(context: Dict[str, Any]) -> bool:
    return bool(context.get("approval_review"))


def _build_campaign_machine() -> StateMachine:
    open_stages = [s.value for s in STAGE_STATUSES if s != CampaignStatus.SIGNED]
    transitions = []
    for source in open_stages:
        for target in [s.value for s in STAGE_STATUSES] + [CampaignStatus.PENDING_APPROVAL.value, CampaignStatus.LOST.value]:
            if target != source:
                transitions.append(StateTransition(source, target))

    pending = CampaignStatus.PENDING_APPROVAL.value
    # Leaving pending_approval for a rung only happens through an approval review
    for target in ("signed", "proposal", "qualified", "draft"):
        transitions.append(StateTransition(pending, target, allowed_roles=set(APPROVER_ROLES), condition=_under_review))
    transitions.append(StateTransition(pending, "lost", allowed_roles=set(APPROVER_ROLES)))

    transitions += [
        StateTransition("signed", "approved"),
        StateTransition("signed", "booked"),
        StateTransition("signed", "active"),
        StateTransition("signed", "lost"),
        StateTransition("approved", "booked"),
        StateTransition("approved", "active"),
        StateTransition("approved", "lost"),
        StateTransition("booked", "active"),
        StateTransition("booked", "lost"),
    ]

    required_roles = {status.value: set(SELLER_ROLES) for status in STAGE_STATUSES}
    required_roles.update({
        "pending_approval": set(SELLER_ROLES),
        "lost": set(SELLER_ROLES),
        "approved": set(APPROVER_ROLES),
        "booked": set(APPROVER_ROLES),
        "active": set(APPROVER_ROLES),
    })

    return StateMachine(StateMachineConfig(
        name="Campaign",
        states=[s.value for s in CampaignStatus],
        transitions=transitions,
        initial_state=CampaignStatus.DRAFT.value,
        terminal_states={"active", "lost"},
        required_roles=required_roles,
    ))


CAMPAIGN_MACHINE = _build_campaign_machine()


def _money(value) -> Decimal:
    return Decimal(value or 0).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class CampaignWorkflowService:
    """
    Campaign workflow service

    Every mutating method validates first, commits once, then publishes its
    workflow events. A validation or storage failure rolls back and raises.
    """

    def __init__(
        self,
        db: Session,
        settings_service: WorkflowSettingsService,
        publisher: Optional[WorkflowEventPublisher] = None,
        number_generator: Callable[[str], str] = default_document_number,
        today: Callable[[], date] = date.today,
    ):
        self.db = db
        self.settings_service = settings_service
        self.publisher = publisher or WorkflowEventPublisher()
        self.number_generator = number_generator
        self.inventory = InventoryService(db, number_generator)
        self.today = today

    # ============== Queries ==============

    def get_campaign(self, tenant: TenantContext, campaign_id: int) -> Campaign:
        campaign = self.db.query(Campaign).filter(
            Campaign.organization_id == tenant.org_id,
            Campaign.id == campaign_id,
        ).first()
        if campaign is None:
            raise NotFoundError(f"Campaign {campaign_id} not found", details={"campaign_id": campaign_id})
        return campaign

    def _lock_campaign(self, tenant: TenantContext, campaign_id: int) -> Campaign:
        campaign = self.db.query(Campaign).filter(
            Campaign.organization_id == tenant.org_id,
            Campaign.id == campaign_id,
        ).with_for_update().first()
        if campaign is None:
            raise NotFoundError(f"Campaign {campaign_id} not found", details={"campaign_id": campaign_id})
        return campaign

    # ============== Create ==============

    def create_campaign(
        self,
        tenant: TenantContext,
        data,
        actor_id: Optional[int] = None,
        actor_role: Optional[str] = None,
    ) -> Campaign:
        """Create a campaign at draft / 10% with its optional schedule"""
        try:
            payload = data if isinstance(data, CampaignCreate) else CampaignCreate.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError("Invalid campaign", field_errors=pydantic_field_errors(e)) from e

        campaign = Campaign(
            organization_id=tenant.org_id,
            name=payload.name,
            budget=payload.budget,
            advertiser_id=payload.advertiser_id,
            agency_id=payload.agency_id,
            start_date=payload.start_date,
            end_date=payload.end_date,
            created_by=actor_id,
        )
        self._set_status(campaign, CampaignStatus.DRAFT)
        campaign.scheduled_spots = [
            ScheduledSpot(
                organization_id=tenant.org_id,
                show_id=spot.show_id,
                air_date=spot.air_date,
                placement_type=spot.placement_type,
                spot_type=spot.spot_type,
                rate=spot.rate,
            )
            for spot in payload.spots
        ]
        self.db.add(campaign)
        self.db.commit()
        self.db.refresh(campaign)
        logger.info(f"[{tenant}] campaign {campaign.id} created by {actor_id}")

        snapshot = {"campaign": campaign.to_dict()}
        self.publisher.publish(tenant, WorkflowEventName.CAMPAIGN_CREATED, "campaign", campaign.id,
                               snapshot, actor_id, actor_role)
        if payload.spots:
            self.publisher.publish(tenant, WorkflowEventName.SCHEDULE_CREATED, "campaign", campaign.id,
                                   {**snapshot, "spot_count": len(payload.spots)}, actor_id, actor_role)
        return campaign

    # ============== Transitions ==============

    @staticmethod
    def _set_status(campaign: Campaign, status: CampaignStatus, probability: Optional[int] = None) -> None:
        """The only writer of status and probability"""
        if probability is None:
            probability = STATUS_PROBABILITY.get(status, campaign.probability or RUNGS[0])
        if probability not in RUNGS:
            raise ValueError(f"probability {probability} is not a pipeline rung")
        campaign.status = status
        campaign.probability = probability

    def _resolve_target(self, tenant: TenantContext, campaign: Campaign, target: CampaignStatus) -> CampaignStatus:
        """Route rung moves that cross the approval threshold into pending_approval"""
        if target not in STAGE_STATUSES:
            return target
        rule = self.settings_service.approval_rules(tenant).campaign_approval
        if not rule.enabled:
            return target
        current_rung = STATUS_PROBABILITY.get(campaign.status, campaign.probability)
        if current_rung < rule.trigger_threshold <= STATUS_PROBABILITY[target]:
            return CampaignStatus.PENDING_APPROVAL
        return target

    def transition(
        self,
        tenant: TenantContext,
        campaign_id: int,
        to_status,
        actor_id: Optional[int],
        actor_role: Optional[str],
        notes: Optional[str] = None,
    ) -> TransitionResult:
        """
        Move a campaign to another status through the validated path.

        Raises:
            ValidationError: Unknown status
            PreconditionFailed: Transition not in the campaign table
            PermissionDenied: Role not allowed to enter the target status
        """
        try:
            target = CampaignStatus(to_status)
        except ValueError as e:
            raise ValidationError(f"Unknown campaign status: {to_status}",
                                  field_errors={"to_status": "unknown campaign status"}) from e
        campaign = self._lock_campaign(tenant, campaign_id)
        return self._change_status(tenant, campaign, target, actor_id, actor_role, notes)

    def update_probability(
        self,
        tenant: TenantContext,
        campaign_id: int,
        probability: int,
        actor_id: Optional[int],
        actor_role: Optional[str],
        notes: Optional[str] = None,
    ) -> TransitionResult:
        """
        Move a campaign to a probability rung.

        Raises:
            ValidationError: probability is not one of 10/35/65/90/100
        """
        if isinstance(probability, bool) or probability not in RUNGS:
            raise ValidationError(
                f"Invalid probability {probability}",
                field_errors={"probability": f"must be one of {', '.join(str(r) for r in RUNGS)}"},
            )
        campaign = self._lock_campaign(tenant, campaign_id)
        target = RUNG_STATUS[probability]
        if campaign.status == target:
            return TransitionResult(entity_type="campaign", entity_id=campaign.id,
                                    previous_status=target.value, new_status=target.value,
                                    probability=campaign.probability)
        return self._change_status(tenant, campaign, target, actor_id, actor_role, notes)

    def _change_status(
        self,
        tenant: TenantContext,
        campaign: Campaign,
        requested: CampaignStatus,
        actor_id: Optional[int],
        actor_role: Optional[str],
        notes: Optional[str],
    ) -> TransitionResult:
        previous_status = campaign.status
        previous_probability = campaign.probability
        target = self._resolve_target(tenant, campaign, requested)
        CAMPAIGN_MACHINE.validate_transition(previous_status.value, target.value, actor_role)
        self._check_talent_gate(tenant, campaign, target, actor_role)

        reservation: Optional[Reservation] = None
        milestone_events: List[Tuple[WorkflowEventName, Dict[str, Any]]] = []
        try:
            cancelled = 0
            self._set_status(campaign, target)
            if target == CampaignStatus.PENDING_APPROVAL:
                self._open_approval(tenant, campaign, actor_id)
            if target == CampaignStatus.LOST:
                held = self.inventory.get_held_reservation(tenant, campaign)
                if held:
                    self.inventory.release_reservation(tenant, held)
                cancelled = self._cancel_open_approvals(tenant, campaign, actor_id)
            else:
                milestone_events = self._run_milestones(tenant, campaign, previous_probability, actor_id)
            reservation = self._auto_reserve(tenant, campaign, previous_probability, actor_id)
            self._record_activity(tenant, "campaign", campaign.id, "status_changed", actor_id, {
                "from_status": previous_status.value,
                "to_status": target.value,
                "from_probability": previous_probability,
                "to_probability": campaign.probability,
                "cancelled_approvals": cancelled,
                "notes": notes,
            })
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"[{tenant}] campaign {campaign.id}: {previous_status.value} -> {target.value} by {actor_id}")

        if campaign.probability != previous_probability:
            self.publisher.publish(tenant, WorkflowEventName.PROBABILITY_UPDATED, "campaign", campaign.id, {
                "campaign": campaign.to_dict(),
                "previous_probability": previous_probability,
                "new_probability": campaign.probability,
                "previous_status": previous_status.value,
                "new_status": campaign.status.value,
            }, actor_id, actor_role)
        for event_name, data in milestone_events:
            self.publisher.publish(tenant, event_name, "campaign", campaign.id,
                                   {"campaign": campaign.to_dict(), **data}, actor_id, actor_role)
        if reservation is not None:
            self._publish_reserved(tenant, campaign, reservation, actor_id, actor_role)

        return TransitionResult(entity_type="campaign", entity_id=campaign.id,
                                previous_status=previous_status.value, new_status=campaign.status.value,
                                probability=campaign.probability)

    def _auto_reserve(
        self,
        tenant: TenantContext,
        campaign: Campaign,
        previous_probability: int,
        actor_id: Optional[int],
    ) -> Optional[Reservation]:
        """Reserve the schedule when the campaign crosses the auto-reservation threshold"""
        threshold = self.settings_service.milestone_thresholds(tenant).auto_reservation
        if campaign.status == CampaignStatus.LOST:
            return None
        if not (previous_probability < threshold <= campaign.probability):
            return None
        if not campaign.scheduled_spots:
            logger.info(f"[{tenant}] campaign {campaign.id} has no schedule; auto reservation skipped")
            return None
        counts = Counter(slot_key(spot) for spot in campaign.scheduled_spots)
        shortages = self.inventory.shortages(tenant, counts)
        if shortages:
            logger.warning(f"[{tenant}] auto reservation skipped for campaign {campaign.id}: {shortages}")
            return None
        reservation, created = self.inventory.reserve_campaign(tenant, campaign, actor_id)
        return reservation if created else None

    def _open_approval(self, tenant: TenantContext, campaign: Campaign, actor_id: Optional[int]) -> CampaignApproval:
        rule = self.settings_service.approval_rules(tenant).campaign_approval
        approval = CampaignApproval(
            organization_id=tenant.org_id,
            entity_type="campaign",
            entity_id=str(campaign.id),
            status=ApprovalStatus.PENDING,
            reason=f"Campaign reached {rule.trigger_threshold}% probability",
            required_roles=list(rule.required_roles),
            requested_by=actor_id,
        )
        self.db.add(approval)
        self.db.flush()
        campaign.approval_request_id = approval.id
        return approval

    def _cancel_open_approvals(self, tenant: TenantContext, campaign: Campaign, actor_id: Optional[int]) -> int:
        """Close every pending request of a lost campaign"""
        pending = self.db.query(CampaignApproval).filter(
            CampaignApproval.organization_id == tenant.org_id,
            CampaignApproval.entity_type == "campaign",
            CampaignApproval.entity_id == str(campaign.id),
            CampaignApproval.status == ApprovalStatus.PENDING,
        ).all()
        now = datetime.utcnow()
        for approval in pending:
            approval.status = ApprovalStatus.CANCELLED
            approval.reviewed_by = actor_id
            approval.reviewed_at = now
        return len(pending)

    # ============== Milestones ==============

    def _run_milestones(
        self,
        tenant: TenantContext,
        campaign: Campaign,
        previous_probability: int,
        actor_id: Optional[int],
    ) -> List[Tuple[WorkflowEventName, Dict[str, Any]]]:
        """
        Hooks for the thresholds crossed by this move (upwards only).

        Returns the events to publish once the transaction commits.
        """
        thresholds = self.settings_service.milestone_thresholds(tenant)

        def crossed(threshold: int) -> bool:
            return previous_probability < threshold <= campaign.probability

        events: List[Tuple[WorkflowEventName, Dict[str, Any]]] = []
        if crossed(thresholds.schedule_valid):
            events += self._validate_schedule(tenant, campaign, actor_id)

        talent_rule = self.settings_service.approval_rules(tenant).talent_approval
        if talent_rule.enabled and crossed(thresholds.talent_approval_required):
            self._open_talent_approvals(tenant, campaign, talent_rule, actor_id)
        return events

    def _schedule_problems(self, campaign: Campaign) -> List[str]:
        if not campaign.scheduled_spots:
            return ["no scheduled spots"]
        today = self.today()
        problems = []
        for spot in campaign.scheduled_spots:
            if spot.air_date < today:
                problems.append(f"spot {spot.id} airs in the past ({spot.air_date.isoformat()})")
            elif (campaign.start_date and spot.air_date < campaign.start_date) or \
                    (campaign.end_date and spot.air_date > campaign.end_date):
                problems.append(f"spot {spot.id} airs outside the flight ({spot.air_date.isoformat()})")
        return problems

    def _validate_schedule(
        self,
        tenant: TenantContext,
        campaign: Campaign,
        actor_id: Optional[int],
    ) -> List[Tuple[WorkflowEventName, Dict[str, Any]]]:
        problems = self._schedule_problems(campaign)
        if problems:
            logger.warning(f"[{tenant}] campaign {campaign.id} schedule not valid: {problems}")
            self._record_activity(tenant, "campaign", campaign.id, "schedule_invalid", actor_id,
                                  {"problems": problems})
            return []

        spot_count = len(campaign.scheduled_spots)
        self._record_activity(tenant, "campaign", campaign.id, "schedule_validated", actor_id,
                              {"spot_count": spot_count})
        events = [(WorkflowEventName.SCHEDULE_VALIDATED, {"spot_count": spot_count})]

        tracking = self.settings_service.get_model(tenant, "rate_card.delta_tracking")
        if tracking.enabled:
            delta = self._rate_delta(tenant, campaign, tracking, actor_id)
            if delta is not None:
                events.append((WorkflowEventName.RATE_DELTA_DETECTED, delta))
        return events

    def _rate_delta(
        self,
        tenant: TenantContext,
        campaign: Campaign,
        tracking: RateCardDeltaTracking,
        actor_id: Optional[int],
    ) -> Optional[Dict[str, Any]]:
        """Average deviation of negotiated rates from the rate card, when above the threshold"""
        spots = []
        for spot in campaign.scheduled_spots:
            slot = self.inventory.get_slot(tenant, slot_key(spot))
            if slot is None or not slot.rate_card:
                continue
            card = Decimal(slot.rate_card)
            delta = (Decimal(spot.rate or 0) - card) / card * 100
            spots.append({
                "spot_id": spot.id,
                "show_id": spot.show_id,
                "rate": float(spot.rate or 0),
                "rate_card": float(card),
                "delta_percent": float(delta.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)),
            })
        if not spots:
            return None

        variance = round(sum(s["delta_percent"] for s in spots) / len(spots), 2)
        if abs(variance) < tracking.threshold_percent:
            return None

        approval_id = None
        requires_approval = abs(variance) > tracking.require_approval_above
        if requires_approval:
            roles = self.settings_service.approval_rules(tenant).campaign_approval.required_roles
            approval = CampaignApproval(
                organization_id=tenant.org_id,
                entity_type="campaign",
                entity_id=str(campaign.id),
                approval_type=ApprovalType.RATE_CARD,
                status=ApprovalStatus.PENDING,
                reason=f"Negotiated rates deviate {variance:+.2f}% from the rate card",
                required_roles=list(roles),
                requested_by=actor_id,
            )
            self.db.add(approval)
            self.db.flush()
            approval_id = approval.id

        details = {
            "variance_percent": variance,
            "requires_approval": requires_approval,
            "approval_id": approval_id,
            "spots": spots,
        }
        self._record_activity(tenant, "campaign", campaign.id, "rate_delta_detected", actor_id, details)
        logger.info(f"[{tenant}] campaign {campaign.id} rate delta {variance:+.2f}%")
        return details

    def _open_talent_approvals(
        self,
        tenant: TenantContext,
        campaign: Campaign,
        rule: TalentApprovalRule,
        actor_id: Optional[int],
    ) -> List[CampaignApproval]:
        """One request per show carrying talent-read spots, unless one is already pending or approved"""
        by_show: Dict[int, List[ScheduledSpot]] = {}
        for spot in campaign.scheduled_spots:
            if spot.spot_type in rule.required_for_types:
                by_show.setdefault(spot.show_id, []).append(spot)
        if not by_show:
            return []

        covered = {
            row.show_id for row in self.db.query(CampaignApproval.show_id).filter(
                CampaignApproval.organization_id == tenant.org_id,
                CampaignApproval.entity_type == "campaign",
                CampaignApproval.entity_id == str(campaign.id),
                CampaignApproval.approval_type == ApprovalType.TALENT,
                CampaignApproval.status.in_([ApprovalStatus.PENDING, ApprovalStatus.APPROVED]),
            )
        }
        opened = []
        for show_id, spots in sorted(by_show.items()):
            if show_id in covered:
                continue
            types = "/".join(sorted({spot.spot_type for spot in spots}))
            approval = CampaignApproval(
                organization_id=tenant.org_id,
                entity_type="campaign",
                entity_id=str(campaign.id),
                approval_type=ApprovalType.TALENT,
                show_id=show_id,
                status=ApprovalStatus.PENDING,
                reason=f"Talent approval for show {show_id}: {len(spots)} {types} spot(s)",
                required_roles=[rule.fallback_approver],
                requested_by=actor_id,
            )
            self.db.add(approval)
            opened.append(approval)

        if opened:
            self.db.flush()
            self._record_activity(tenant, "campaign", campaign.id, "talent_approval_requested", actor_id, {
                "approval_ids": [a.id for a in opened],
                "show_ids": [a.show_id for a in opened],
            })
            logger.info(f"[{tenant}] campaign {campaign.id}: {len(opened)} talent approval(s) requested")
        return opened

    def _check_talent_gate(
        self,
        tenant: TenantContext,
        campaign: Campaign,
        target: CampaignStatus,
        actor_role: Optional[str],
    ) -> None:
        """Sellers cannot cross the approval threshold while a talent request stands rejected"""
        if actor_role in APPROVER_ROLES or target not in STATUS_PROBABILITY:
            return
        threshold = self.settings_service.approval_rules(tenant).campaign_approval.trigger_threshold
        current_rung = STATUS_PROBABILITY.get(campaign.status, campaign.probability)
        if not (current_rung < threshold <= STATUS_PROBABILITY[target]):
            return
        rejected = self.db.query(CampaignApproval).filter(
            CampaignApproval.organization_id == tenant.org_id,
            CampaignApproval.entity_type == "campaign",
            CampaignApproval.entity_id == str(campaign.id),
            CampaignApproval.approval_type == ApprovalType.TALENT,
            CampaignApproval.status == ApprovalStatus.REJECTED,
        ).count()
        if rejected:
            raise PreconditionFailed(
                f"Cannot proceed to {threshold}%: {rejected} talent approval(s) were rejected",
                details={"rejected_talent_approvals": rejected},
            )

    def review_talent_approval(
        self,
        tenant: TenantContext,
        approval_id: int,
        approve: bool,
        actor_id: Optional[int],
        actor_role: Optional[str],
        reason: Optional[str] = None,
    ) -> CampaignApproval:
        """
        Approve or reject a talent approval request.

        Raises:
            NotFoundError: No talent request with that id in the tenant
            PermissionDenied: Role is neither the request's approver nor admin/master
            ConflictError: Request already reviewed or cancelled
        """
        approval = self.db.query(CampaignApproval).filter(
            CampaignApproval.organization_id == tenant.org_id,
            CampaignApproval.id == approval_id,
            CampaignApproval.approval_type == ApprovalType.TALENT,
        ).first()
        if approval is None:
            raise NotFoundError(f"Talent approval {approval_id} not found", details={"approval_id": approval_id})
        allowed = set(approval.required_roles or []) | APPROVER_ROLES
        if actor_role not in allowed:
            raise PermissionDenied(
                f"Insufficient permissions. Required roles: {', '.join(sorted(allowed))}",
                details={"role": actor_role, "required_roles": sorted(allowed)},
            )
        if approval.status != ApprovalStatus.PENDING:
            raise ConflictError(f"Talent approval {approval_id} is already {approval.status.value}",
                                details={"status": approval.status.value})

        try:
            approval.status = ApprovalStatus.APPROVED if approve else ApprovalStatus.REJECTED
            approval.reviewed_by = actor_id
            approval.reviewed_at = datetime.utcnow()
            approval.rejection_reason = None if approve else reason
            self._record_activity(tenant, "campaign", approval.entity_id,
                                  "talent_approval_approved" if approve else "talent_approval_rejected",
                                  actor_id, {"approval_id": approval.id, "show_id": approval.show_id,
                                             "reason": reason})
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return approval

    def _record_activity(self, tenant: TenantContext, entity_type: str, entity_id, action: str,
                         actor_id: Optional[int], details: Dict[str, Any]) -> ActivityLog:
        entry = ActivityLog(
            organization_id=tenant.org_id,
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            actor_id=actor_id,
            details=details,
        )
        self.db.add(entry)
        return entry

    def _publish_reserved(self, tenant, campaign, reservation, actor_id, actor_role) -> None:
        self.publisher.publish(tenant, WorkflowEventName.INVENTORY_RESERVED, "campaign", campaign.id, {
            "campaign": campaign.to_dict(),
            "reservation": {
                "id": reservation.id,
                "reservation_number": reservation.reservation_number,
                "item_count": len(reservation.items),
                "expires_at": reservation.expires_at.isoformat() if reservation.expires_at else None,
            },
        }, actor_id, actor_role)

    # ============== Approval review ==============

    def review_approval(
        self,
        tenant: TenantContext,
        campaign_id: int,
        approve: bool,
        actor_id: Optional[int],
        actor_role: Optional[str],
        reason: Optional[str] = None,
        fallback_probability: Optional[int] = None,
    ) -> TransitionResult:
        """
        Approve (-> signed / 100) or reject (-> fallback rung) a pending campaign.

        Rejection releases the held reservation and writes exactly one
        activity record. The fallback rung defaults to the tenant's
        rejection_fallback setting.

        Raises:
            ValidationError: fallback_probability is not a rung below 90
        """
        rules = self.settings_service.approval_rules(tenant)
        if fallback_probability is None:
            fallback_probability = rules.rejection_fallback
        elif fallback_probability not in RUNGS or fallback_probability >= 90:
            raise ValidationError(
                f"Invalid fallback probability {fallback_probability}",
                field_errors={"fallback_probability": "must be one of 10, 35, 65"},
            )
        allowed = set(rules.campaign_approval.required_roles) or APPROVER_ROLES
        if actor_role not in allowed:
            raise PermissionDenied(
                f"Insufficient permissions. Required roles: {', '.join(sorted(allowed))}",
                details={"role": actor_role, "required_roles": sorted(allowed)},
            )

        campaign = self._lock_campaign(tenant, campaign_id)
        if campaign.status != CampaignStatus.PENDING_APPROVAL:
            raise PreconditionFailed(
                f"Campaign {campaign.id} is not awaiting approval (status {campaign.status.value})",
                details={"status": campaign.status.value},
            )

        previous_status = campaign.status
        previous_probability = campaign.probability
        target = CampaignStatus.SIGNED if approve else RUNG_STATUS[fallback_probability]
        CAMPAIGN_MACHINE.validate_transition(previous_status.value, target.value, actor_role,
                                             context={"approval_review": True})

        approval = None
        if campaign.approval_request_id:
            approval = self.db.query(CampaignApproval).filter(
                CampaignApproval.organization_id == tenant.org_id,
                CampaignApproval.id == campaign.approval_request_id,
            ).first()

        try:
            released = 0
            self._set_status(campaign, target)
            if approval is not None and approval.status == ApprovalStatus.PENDING:
                approval.status = ApprovalStatus.APPROVED if approve else ApprovalStatus.REJECTED
                approval.reviewed_by = actor_id
                approval.reviewed_at = datetime.utcnow()
                approval.rejection_reason = None if approve else reason
            if not approve:
                held = self.inventory.get_held_reservation(tenant, campaign)
                if held:
                    released = self.inventory.release_reservation(tenant, held)
            self._record_activity(tenant, "campaign", campaign.id,
                                  "approval_approved" if approve else "approval_rejected", actor_id, {
                                      "from_status": previous_status.value,
                                      "to_status": target.value,
                                      "to_probability": campaign.probability,
                                      "reason": reason,
                                      "released_units": released,
                                  })
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"[{tenant}] campaign {campaign.id} approval {'approved' if approve else 'rejected'} by {actor_id}")
        self.publisher.publish(tenant, WorkflowEventName.PROBABILITY_UPDATED, "campaign", campaign.id, {
            "campaign": campaign.to_dict(),
            "previous_probability": previous_probability,
            "new_probability": campaign.probability,
            "previous_status": previous_status.value,
            "new_status": campaign.status.value,
            "approval": {"approved": approve, "reason": reason},
        }, actor_id, actor_role)

        return TransitionResult(entity_type="campaign", entity_id=campaign.id,
                                previous_status=previous_status.value, new_status=campaign.status.value,
                                probability=campaign.probability)

    # ============== Reservation ==============

    def create_reservation(
        self,
        tenant: TenantContext,
        campaign_id: int,
        actor_id: Optional[int],
        actor_role: Optional[str] = None,
        expires_in_days: Optional[int] = None,
    ) -> Reservation:
        """Reserve the campaign's schedule (returns the held reservation if one exists)"""
        campaign = self._lock_campaign(tenant, campaign_id)
        if campaign.status in (CampaignStatus.LOST,) + POST_APPROVAL_STATUSES:
            raise PreconditionFailed(
                f"Cannot reserve inventory for a campaign in status {campaign.status.value}",
                details={"status": campaign.status.value},
            )
        try:
            kwargs = {"expires_in_days": expires_in_days} if expires_in_days else {}
            reservation, created = self.inventory.reserve_campaign(tenant, campaign, actor_id, **kwargs)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        if created:
            self._publish_reserved(tenant, campaign, reservation, actor_id, actor_role)
        return reservation

    # ============== Approval -> Order / Contract / Invoice ==============

    def approve_campaign(
        self,
        tenant: TenantContext,
        campaign_id: int,
        actor_id: Optional[int],
        actor_role: Optional[str],
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Approve a signed campaign and create its Order, Contract and Invoice.

        All writes share one transaction: if any creation fails nothing is
        committed and the error propagates.

        Returns:
            {"campaign": Campaign, "order": Order, "contract": Contract, "invoice": Invoice}

        Raises:
            PermissionDenied: Role is not admin/master
            ConflictError: Campaign already approved / booked / active
            PreconditionFailed: Probability is not 100, or the flight has ended
        """
        if actor_role not in APPROVER_ROLES:
            raise PermissionDenied(
                f"Insufficient permissions. Required roles: {', '.join(sorted(APPROVER_ROLES))}",
                details={"role": actor_role, "required_roles": sorted(APPROVER_ROLES)},
            )
        campaign = self._lock_campaign(tenant, campaign_id)
        if campaign.status in POST_APPROVAL_STATUSES:
            raise ConflictError(f"Campaign {campaign.id} is already {campaign.status.value}",
                                details={"status": campaign.status.value})
        if campaign.probability != 100:
            raise PreconditionFailed(
                f"Campaign must be at 100% probability to approve (currently {campaign.probability}%)",
                details={"probability": campaign.probability},
            )

        today = self.today()
        if campaign.end_date and campaign.end_date < today:
            raise PreconditionFailed(f"Campaign {campaign.id} flight ended on {campaign.end_date.isoformat()}",
                                     details={"end_date": campaign.end_date.isoformat()})
        in_flight = campaign.start_date is not None and campaign.start_date <= today
        target = CampaignStatus.ACTIVE if in_flight else CampaignStatus.BOOKED
        previous_status = campaign.status
        CAMPAIGN_MACHINE.validate_transition(previous_status.value, target.value, actor_role)

        try:
            order = self._create_order_from_campaign(tenant, campaign, actor_id, notes)
            contract = Contract(
                organization_id=tenant.org_id,
                contract_number=self.number_generator("CTR"),
                campaign_id=campaign.id,
                order_id=order.id,
                total_amount=order.total_amount,
                payment_terms=PAYMENT_TERMS,
                billing_cycle=BILLING_CYCLE,
                status="draft",
                start_date=campaign.start_date,
                end_date=campaign.end_date,
                created_by=actor_id,
            )
            invoice = Invoice(
                organization_id=tenant.org_id,
                invoice_number=self.number_generator("INV"),
                order_id=order.id,
                campaign_id=campaign.id,
                amount=order.total_amount,
                status="draft",
                issue_date=today,
                due_date=today + timedelta(days=INVOICE_DUE_DAYS),
            )
            self.db.add_all([contract, invoice])

            self._set_status(campaign, target)
            campaign.approved_by = actor_id
            campaign.approved_at = datetime.utcnow()
            self._record_activity(tenant, "campaign", campaign.id, "campaign_approved", actor_id, {
                "from_status": previous_status.value,
                "to_status": target.value,
                "order_number": order.order_number,
                "notes": notes,
            })
            self.db.flush()
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"[{tenant}] campaign {campaign_id} approval rolled back: {e}", exc_info=True)
            raise

        logger.info(f"[{tenant}] campaign {campaign.id} approved: order {order.order_number}, "
                    f"contract {contract.contract_number}, invoice {invoice.invoice_number}")

        self.publisher.publish(tenant, WorkflowEventName.CONTRACT_GENERATED, "contract", contract.id, {
            "campaign": campaign.to_dict(),
            "order": order.to_dict(),
            "contract": {"id": contract.id, "contract_number": contract.contract_number,
                         "total_amount": float(contract.total_amount)},
        }, actor_id, actor_role)
        self.publisher.publish(tenant, WorkflowEventName.INVOICE_GENERATED, "invoice", invoice.id, {
            "campaign": campaign.to_dict(),
            "order": order.to_dict(),
            "invoice": {"id": invoice.id, "invoice_number": invoice.invoice_number,
                        "amount": float(invoice.amount), "due_date": invoice.due_date.isoformat()},
        }, actor_id, actor_role)

        return {"campaign": campaign, "order": order, "contract": contract, "invoice": invoice}

    def _create_order_from_campaign(
        self,
        tenant: TenantContext,
        campaign: Campaign,
        actor_id: Optional[int],
        notes: Optional[str],
    ) -> Order:
        gross = _money(campaign.budget)
        net = gross
        commission = _money(net * COMMISSION_RATE)
        now = datetime.utcnow()
        order = Order(
            organization_id=tenant.org_id,
            order_number=self.number_generator("ORD"),
            campaign_id=campaign.id,
            status=OrderStatus.APPROVED,
            gross_amount=gross,
            discount_amount=Decimal("0.00"),
            net_amount=net,
            commission_amount=commission,
            total_amount=net + commission,
            notes=notes,
            submitted_at=now,
            approved_at=now,
            approved_by=actor_id,
            created_by=actor_id,
        )

        reservation = self.inventory.get_held_reservation(tenant, campaign)
        if reservation is not None:
            sources = list(reservation.items)
            self.inventory.mark_converted(reservation)
        else:
            sources = list(campaign.scheduled_spots)
            for key, count in Counter(slot_key(spot) for spot in sources).items():
                self.inventory.reserve(tenant, key, count)

        order.items = [
            OrderItem(
                show_id=item.show_id,
                air_date=item.air_date,
                placement_type=item.placement_type,
                rate=item.rate,
                slot_state=SlotState.RESERVED,
            )
            for item in sources
        ]
        order.history = [OrderStatusHistory(
            organization_id=tenant.org_id,
            from_status=OrderStatus.DRAFT.value,
            to_status=OrderStatus.APPROVED.value,
            changed_by=actor_id,
            notes=f"Created from campaign {campaign.id} approval",
        )]
        self.db.add(order)
        self.db.flush()
        return order
