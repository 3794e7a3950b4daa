"""
Tests for adops/services/campaign_workflow_service.py
Covers: create_campaign, transition, update_probability, approval gate, review_approval,
        milestone hooks (schedule validation, rate-card delta, talent approvals),
        create_reservation, approve_campaign, snap_to_rung
"""
from datetime import date, timedelta
from decimal import Decimal

import pytest

from adops.models.pipeline import (
    ActivityLog, ApprovalStatus, ApprovalType, Campaign, CampaignApproval, CampaignStatus, Contract, Invoice,
    InventorySlot, Order, OrderStatus, ReservationStatus, SlotState,
)
from adops.services.campaign_workflow_service import CAMPAIGN_MACHINE, CampaignWorkflowService, snap_to_rung
from adops.services.events import WorkflowEventPublisher
from workflow_core.engine.event_bus import WILDCARD, EventBus
from workflow_core.errors import (
    ConflictError, NotFoundError, PermissionDenied, PreconditionFailed, ValidationError,
)

from conftest import AIR_DATE


# ── helpers ──────────────────────────────────────────────────────────

@pytest.fixture
def captured():
    """(publisher, received events) pair backed by an inline bus"""
    bus = EventBus()
    received = []
    bus.subscribe(WILDCARD, received.append)
    return WorkflowEventPublisher(bus), received


@pytest.fixture
def service(db_session, settings_service, number_generator, captured):
    publisher, _ = captured
    return CampaignWorkflowService(db_session, settings_service, publisher, number_generator)


def _slot_counts(db, tenant):
    slot = db.query(InventorySlot).filter(InventorySlot.organization_id == tenant.org_id).one()
    db.refresh(slot)
    return slot.available, slot.reserved, slot.booked


def _activity(db, campaign, action=None):
    query = db.query(ActivityLog).filter(ActivityLog.entity_type == "campaign",
                                         ActivityLog.entity_id == str(campaign.id))
    if action:
        query = query.filter(ActivityLog.action == action)
    return query.all()


def _to_pending(service, tenant, campaign):
    for rung in (35, 65, 90):
        service.update_probability(tenant, campaign.id, rung, actor_id=3, actor_role="sales")


def _disable_approval(settings_service, tenant):
    settings_service.set(tenant, "approval.rules", {"campaignApproval": {"enabled": False}})


# ── tests ────────────────────────────────────────────────────────────

class TestSnapToRung:

    @pytest.mark.parametrize("value,expected", [
        (0, 10), (9, 10), (10, 10), (34, 10), (35, 35), (64, 35), (99, 90), (100, 100),
    ])
    def test_snap(self, value, expected):
        assert snap_to_rung(value) == expected


class TestCreateCampaign:

    def test_starts_at_draft(self, db_session, tenant, service, captured):
        campaign = service.create_campaign(tenant, {
            "name": "Spring Launch",
            "budget": "12000",
            "spots": [{"show_id": 7, "air_date": AIR_DATE.isoformat(), "placement_type": "pre-roll", "rate": 250}],
        }, actor_id=3, actor_role="sales")

        assert campaign.status == CampaignStatus.DRAFT
        assert campaign.probability == 10
        assert campaign.organization_id == tenant.org_id
        assert len(campaign.scheduled_spots) == 1

        _, received = captured
        assert [e.event_type for e in received] == ["campaign_created", "schedule_created"]
        assert received[0].data["entity_id"] == str(campaign.id)
        assert received[0].data["org_id"] == tenant.org_id

    def test_invalid_payload(self, tenant, service):
        with pytest.raises(ValidationError) as exc:
            service.create_campaign(tenant, {"name": "", "budget": -5})
        assert "name" in exc.value.field_errors
        assert "budget" in exc.value.field_errors

    def test_flight_dates_validated(self, tenant, service):
        with pytest.raises(ValidationError):
            service.create_campaign(tenant, {"name": "Backwards", "start_date": "2026-05-01",
                                             "end_date": "2026-04-01"})


class TestTransitions:

    def test_stage_move_updates_status_and_probability(self, db_session, tenant, service, campaign_factory, captured):
        campaign = campaign_factory()
        result = service.transition(tenant, campaign.id, "proposal", actor_id=3, actor_role="sales")

        assert (result.previous_status, result.new_status, result.probability) == ("draft", "proposal", 65)
        assert (campaign.status, campaign.probability) == (CampaignStatus.PROPOSAL, 65)
        assert _activity(db_session, campaign, "status_changed")[0].details["to_probability"] == 65

        _, received = captured
        assert received[-1].event_type == "probability_updated"
        assert received[-1].data["data"]["new_probability"] == 65

    def test_unknown_status(self, tenant, service, campaign_factory):
        with pytest.raises(ValidationError):
            service.transition(tenant, campaign_factory().id, "won", actor_id=3, actor_role="sales")

    def test_role_not_allowed(self, tenant, service, campaign_factory):
        with pytest.raises(PermissionDenied):
            service.transition(tenant, campaign_factory().id, "qualified", actor_id=4, actor_role="producer")

    def test_post_approval_status_requires_approval_flow(self, tenant, service, campaign_factory):
        with pytest.raises(PreconditionFailed):
            service.transition(tenant, campaign_factory().id, "booked", actor_id=2, actor_role="admin")

    def test_other_tenant_cannot_see_campaign(self, other_tenant, service, campaign_factory):
        with pytest.raises(NotFoundError):
            service.transition(other_tenant, campaign_factory().id, "qualified", actor_id=3, actor_role="sales")

    def test_update_probability_rejects_non_rung(self, tenant, service, campaign_factory):
        with pytest.raises(ValidationError) as exc:
            service.update_probability(tenant, campaign_factory().id, 50, actor_id=3, actor_role="sales")
        assert "probability" in exc.value.field_errors

    def test_update_probability_same_rung_is_noop(self, db_session, tenant, service, campaign_factory, captured):
        campaign = campaign_factory(status=CampaignStatus.QUALIFIED, probability=35)
        result = service.update_probability(tenant, campaign.id, 35, actor_id=3, actor_role="sales")
        assert result.previous_status == result.new_status == "qualified"
        assert _activity(db_session, campaign) == []
        assert captured[1] == []

    def test_lost_keeps_rung_and_releases_reservation(self, db_session, tenant, slot, service, campaign_factory):
        campaign = campaign_factory(status=CampaignStatus.PROPOSAL, probability=65, spots=2)
        reservation = service.create_reservation(tenant, campaign.id, actor_id=3)
        assert _slot_counts(db_session, tenant) == (8, 2, 0)

        service.transition(tenant, campaign.id, "lost", actor_id=3, actor_role="sales")

        assert (campaign.status, campaign.probability) == (CampaignStatus.LOST, 65)
        assert reservation.status == ReservationStatus.RELEASED
        assert _slot_counts(db_session, tenant) == (10, 0, 0)

    def test_lost_is_terminal(self, tenant, service, campaign_factory):
        campaign = campaign_factory(status=CampaignStatus.LOST, probability=35)
        with pytest.raises(PreconditionFailed):
            service.transition(tenant, campaign.id, "qualified", actor_id=2, actor_role="admin")


class TestApprovalGate:

    def test_crossing_threshold_goes_pending_and_reserves(self, db_session, tenant, slot, service,
                                                          campaign_factory, captured):
        campaign = campaign_factory(spots=2)
        _to_pending(service, tenant, campaign)

        assert (campaign.status, campaign.probability) == (CampaignStatus.PENDING_APPROVAL, 90)
        approval = db_session.get(CampaignApproval, campaign.approval_request_id)
        assert approval.status == ApprovalStatus.PENDING
        assert approval.required_roles == ["admin", "master"]
        assert _slot_counts(db_session, tenant) == (8, 2, 0)

        _, received = captured
        assert [e.event_type for e in received][-2:] == ["probability_updated", "inventory_reserved"]

    def test_jumping_past_threshold_still_gated(self, tenant, service, campaign_factory):
        campaign = campaign_factory()
        result = service.update_probability(tenant, campaign.id, 100, actor_id=3, actor_role="sales")
        assert result.new_status == "pending_approval"
        assert campaign.probability == 90

    def test_seller_cannot_leave_pending(self, tenant, service, campaign_factory):
        campaign = campaign_factory()
        _to_pending(service, tenant, campaign)
        with pytest.raises(PreconditionFailed):
            service.transition(tenant, campaign.id, "signed", actor_id=2, actor_role="admin")

    def test_auto_reservation_skipped_on_shortage(self, db_session, tenant, slot, service, campaign_factory):
        campaign = campaign_factory(spots=11)
        _to_pending(service, tenant, campaign)
        assert campaign.status == CampaignStatus.PENDING_APPROVAL
        assert campaign.reservation_id is None
        assert _slot_counts(db_session, tenant) == (10, 0, 0)

    def test_gate_disabled(self, db_session, tenant, slot, service, settings_service, campaign_factory):
        _disable_approval(settings_service, tenant)
        campaign = campaign_factory(status=CampaignStatus.PROPOSAL, probability=65, spots=1)

        result = service.update_probability(tenant, campaign.id, 90, actor_id=3, actor_role="sales")

        assert result.new_status == "verbal"
        assert campaign.reservation_id is not None
        assert campaign.approval_request_id is None


class TestReviewApproval:

    def test_reject_falls_back_and_releases(self, db_session, tenant, slot, service, campaign_factory):
        campaign = campaign_factory(spots=3)
        _to_pending(service, tenant, campaign)
        reservation_id = campaign.reservation_id
        assert _slot_counts(db_session, tenant) == (7, 3, 0)
        before = len(_activity(db_session, campaign))

        result = service.review_approval(tenant, campaign.id, approve=False, actor_id=2, actor_role="admin")

        assert (result.new_status, result.probability) == ("proposal", 65)
        assert (campaign.status, campaign.probability) == (CampaignStatus.PROPOSAL, 65)
        assert _slot_counts(db_session, tenant) == (10, 0, 0)
        assert service.inventory.get_reservation(tenant, reservation_id).status == ReservationStatus.RELEASED
        assert len(_activity(db_session, campaign)) == before + 1
        rejected = _activity(db_session, campaign, "approval_rejected")
        assert len(rejected) == 1
        assert rejected[0].details["released_units"] == 3
        approval = db_session.get(CampaignApproval, campaign.approval_request_id)
        assert approval.status == ApprovalStatus.REJECTED
        assert approval.rejection_reason is None

    def test_reject_uses_tenant_fallback(self, tenant, service, settings_service, campaign_factory):
        settings_service.set(tenant, "approval.rules", {"rejectionFallback": 35})
        campaign = campaign_factory()
        _to_pending(service, tenant, campaign)
        result = service.review_approval(tenant, campaign.id, approve=False, actor_id=2, actor_role="admin",
                                         reason="Rate too low")
        assert (result.new_status, result.probability) == ("qualified", 35)

    def test_approve_moves_to_signed(self, db_session, tenant, slot, service, campaign_factory):
        campaign = campaign_factory(spots=1)
        _to_pending(service, tenant, campaign)

        result = service.review_approval(tenant, campaign.id, approve=True, actor_id=2, actor_role="admin")

        assert (result.new_status, result.probability) == ("signed", 100)
        assert service.inventory.get_held_reservation(tenant, campaign) is not None
        assert len(_activity(db_session, campaign, "approval_approved")) == 1

    def test_seller_cannot_review(self, tenant, service, campaign_factory):
        campaign = campaign_factory()
        _to_pending(service, tenant, campaign)
        with pytest.raises(PermissionDenied):
            service.review_approval(tenant, campaign.id, approve=True, actor_id=3, actor_role="sales")

    def test_not_pending(self, tenant, service, campaign_factory):
        with pytest.raises(PreconditionFailed):
            service.review_approval(tenant, campaign_factory().id, approve=True, actor_id=2, actor_role="admin")

    def test_reject_to_explicit_rung(self, tenant, service, campaign_factory):
        campaign = campaign_factory()
        _to_pending(service, tenant, campaign)
        result = service.review_approval(tenant, campaign.id, approve=False, actor_id=2, actor_role="admin",
                                         fallback_probability=10)
        assert (result.new_status, result.probability) == ("draft", 10)

    def test_reject_to_invalid_rung(self, tenant, service, campaign_factory):
        campaign = campaign_factory()
        _to_pending(service, tenant, campaign)
        with pytest.raises(ValidationError) as exc:
            service.review_approval(tenant, campaign.id, approve=False, actor_id=2, actor_role="admin",
                                    fallback_probability=90)
        assert "fallback_probability" in exc.value.field_errors
        assert campaign.status == CampaignStatus.PENDING_APPROVAL

    def test_lost_while_pending_cancels_request(self, db_session, tenant, slot, service, campaign_factory):
        campaign = campaign_factory(spots=2)
        _to_pending(service, tenant, campaign)

        service.transition(tenant, campaign.id, "lost", actor_id=2, actor_role="admin")

        approval = db_session.get(CampaignApproval, campaign.approval_request_id)
        assert approval.status == ApprovalStatus.CANCELLED
        assert approval.reviewed_by == 2
        assert _activity(db_session, campaign, "status_changed")[-1].details["cancelled_approvals"] == 1
        assert _slot_counts(db_session, tenant) == (10, 0, 0)
        with pytest.raises(PreconditionFailed):
            service.review_approval(tenant, campaign.id, approve=True, actor_id=2, actor_role="admin")


class TestMilestones:

    def test_schedule_validated_at_35(self, db_session, tenant, slot, service, campaign_factory, captured):
        campaign = campaign_factory(spots=2)
        service.update_probability(tenant, campaign.id, 35, actor_id=3, actor_role="sales")

        _, received = captured
        assert [e.event_type for e in received] == ["probability_updated", "schedule_validated"]
        assert received[-1].data["data"]["spot_count"] == 2
        assert received[-1].data["data"]["campaign"]["probability"] == 35
        assert len(_activity(db_session, campaign, "schedule_validated")) == 1

    def test_empty_schedule_not_validated(self, db_session, tenant, service, campaign_factory, captured):
        campaign = campaign_factory()
        service.update_probability(tenant, campaign.id, 35, actor_id=3, actor_role="sales")

        _, received = captured
        assert [e.event_type for e in received] == ["probability_updated"]
        invalid = _activity(db_session, campaign, "schedule_invalid")
        assert invalid[0].details["problems"] == ["no scheduled spots"]

    def test_spot_outside_flight_not_validated(self, db_session, tenant, slot, service, campaign_factory, captured):
        campaign = campaign_factory(spots=1, end_date=AIR_DATE - timedelta(days=1))
        service.update_probability(tenant, campaign.id, 35, actor_id=3, actor_role="sales")

        _, received = captured
        assert "schedule_validated" not in [e.event_type for e in received]
        assert "outside the flight" in _activity(db_session, campaign, "schedule_invalid")[0].details["problems"][0]

    def test_only_upward_crossings_fire(self, tenant, slot, service, campaign_factory, captured):
        campaign = campaign_factory(status=CampaignStatus.PROPOSAL, probability=65, spots=1)
        service.update_probability(tenant, campaign.id, 10, actor_id=3, actor_role="sales")

        _, received = captured
        assert [e.event_type for e in received] == ["probability_updated"]

    def test_rate_delta_opens_approval(self, db_session, tenant, slot, service, campaign_factory, captured):
        slot.rate_card = Decimal("400.00")
        db_session.commit()
        campaign = campaign_factory(spots=2)

        service.update_probability(tenant, campaign.id, 35, actor_id=3, actor_role="sales")

        _, received = captured
        assert [e.event_type for e in received] == [
            "probability_updated", "schedule_validated", "rate_delta_detected",
        ]
        delta = received[-1].data["data"]
        assert delta["variance_percent"] == -37.5
        assert delta["requires_approval"] is True
        assert [s["delta_percent"] for s in delta["spots"]] == [-37.5, -37.5]

        approval = db_session.get(CampaignApproval, delta["approval_id"])
        assert approval.approval_type == ApprovalType.RATE_CARD
        assert approval.status == ApprovalStatus.PENDING
        assert approval.required_roles == ["admin", "master"]
        assert campaign.approval_request_id is None

    def test_small_rate_delta_ignored(self, db_session, tenant, slot, service, campaign_factory, captured):
        slot.rate_card = Decimal("260.00")
        db_session.commit()
        campaign = campaign_factory(spots=1)

        service.update_probability(tenant, campaign.id, 35, actor_id=3, actor_role="sales")

        _, received = captured
        assert [e.event_type for e in received] == ["probability_updated", "schedule_validated"]
        assert _activity(db_session, campaign, "rate_delta_detected") == []

    def test_rate_delta_tracking_disabled(self, db_session, tenant, slot, service, settings_service,
                                          campaign_factory, captured):
        settings_service.set(tenant, "rate_card.delta_tracking", {"enabled": False})
        slot.rate_card = Decimal("400.00")
        db_session.commit()
        campaign = campaign_factory(spots=1)

        service.update_probability(tenant, campaign.id, 35, actor_id=3, actor_role="sales")

        _, received = captured
        assert [e.event_type for e in received] == ["probability_updated", "schedule_validated"]


class TestTalentApproval:

    def _talent_requests(self, db, campaign):
        return db.query(CampaignApproval).filter(
            CampaignApproval.entity_id == str(campaign.id),
            CampaignApproval.approval_type == ApprovalType.TALENT,
        ).all()

    def test_requests_opened_at_65(self, db_session, tenant, slot, service, campaign_factory):
        campaign = campaign_factory(spots=2, spot_type="host_read")
        service.update_probability(tenant, campaign.id, 65, actor_id=3, actor_role="sales")

        requests = self._talent_requests(db_session, campaign)
        assert len(requests) == 1
        assert requests[0].show_id == 7
        assert requests[0].required_roles == ["producer"]
        assert requests[0].reason == "Talent approval for show 7: 2 host_read spot(s)"
        assert len(_activity(db_session, campaign, "talent_approval_requested")) == 1

    def test_produced_spots_need_no_request(self, db_session, tenant, slot, service, campaign_factory):
        campaign = campaign_factory(spots=2)
        service.update_probability(tenant, campaign.id, 65, actor_id=3, actor_role="sales")
        assert self._talent_requests(db_session, campaign) == []

    def test_open_request_not_duplicated(self, db_session, tenant, slot, service, campaign_factory):
        campaign = campaign_factory(spots=1, spot_type="endorsement")
        for rung in (65, 35, 65):
            service.update_probability(tenant, campaign.id, rung, actor_id=3, actor_role="sales")
        assert len(self._talent_requests(db_session, campaign)) == 1

    def test_disabled(self, db_session, tenant, slot, service, settings_service, campaign_factory):
        settings_service.set(tenant, "approval.rules", {"talentApproval": {"enabled": False}})
        campaign = campaign_factory(spots=1, spot_type="host_read")
        service.update_probability(tenant, campaign.id, 65, actor_id=3, actor_role="sales")
        assert self._talent_requests(db_session, campaign) == []

    def test_rejection_blocks_seller_at_threshold(self, db_session, tenant, slot, service, campaign_factory):
        campaign = campaign_factory(spots=1, spot_type="host_read")
        service.update_probability(tenant, campaign.id, 65, actor_id=3, actor_role="sales")
        request = self._talent_requests(db_session, campaign)[0]

        reviewed = service.review_talent_approval(tenant, request.id, approve=False, actor_id=4,
                                                  actor_role="producer", reason="Host unavailable")
        assert reviewed.status == ApprovalStatus.REJECTED
        assert reviewed.rejection_reason == "Host unavailable"

        with pytest.raises(PreconditionFailed) as exc:
            service.update_probability(tenant, campaign.id, 90, actor_id=3, actor_role="sales")
        assert exc.value.details["rejected_talent_approvals"] == 1
        assert (campaign.status, campaign.probability) == (CampaignStatus.PROPOSAL, 65)

        result = service.update_probability(tenant, campaign.id, 90, actor_id=2, actor_role="admin")
        assert result.new_status == "pending_approval"

    def test_review_permissions(self, db_session, tenant, slot, service, campaign_factory):
        campaign = campaign_factory(spots=1, spot_type="host_read")
        service.update_probability(tenant, campaign.id, 65, actor_id=3, actor_role="sales")
        request = self._talent_requests(db_session, campaign)[0]

        with pytest.raises(PermissionDenied):
            service.review_talent_approval(tenant, request.id, approve=True, actor_id=3, actor_role="sales")
        service.review_talent_approval(tenant, request.id, approve=True, actor_id=2, actor_role="admin")
        with pytest.raises(ConflictError):
            service.review_talent_approval(tenant, request.id, approve=False, actor_id=4, actor_role="producer")
        assert len(_activity(db_session, campaign, "talent_approval_approved")) == 1

    def test_unknown_request(self, tenant, service):
        with pytest.raises(NotFoundError):
            service.review_talent_approval(tenant, 999, approve=True, actor_id=2, actor_role="admin")


class TestApproveCampaign:

    def _signed(self, service, tenant, campaign):
        _to_pending(service, tenant, campaign)
        service.review_approval(tenant, campaign.id, approve=True, actor_id=2, actor_role="admin")

    def test_creates_order_contract_invoice(self, db_session, tenant, slot, service, campaign_factory, captured):
        campaign = campaign_factory(spots=2, budget=Decimal("10000.00"))
        self._signed(service, tenant, campaign)
        reservation_id = campaign.reservation_id

        result = service.approve_campaign(tenant, campaign.id, actor_id=2, actor_role="admin")

        order, contract, invoice = result["order"], result["contract"], result["invoice"]
        assert campaign.status == CampaignStatus.BOOKED
        assert order.status == OrderStatus.APPROVED
        assert order.gross_amount == Decimal("10000.00")
        assert order.commission_amount == Decimal("1500.00")
        assert order.total_amount == Decimal("11500.00")
        assert [item.slot_state for item in order.items] == [SlotState.RESERVED, SlotState.RESERVED]
        assert [(h.from_status, h.to_status) for h in order.history] == [("draft", "approved")]
        assert contract.payment_terms == "Net 30"
        assert contract.total_amount == order.total_amount
        assert invoice.due_date == date.today() + timedelta(days=30)
        assert service.inventory.get_reservation(tenant, reservation_id).status == ReservationStatus.CONVERTED
        assert _slot_counts(db_session, tenant) == (8, 2, 0)

        _, received = captured
        assert [e.event_type for e in received][-2:] == ["contract_generated", "invoice_generated"]
        assert received[-1].data["entity_type"] == "invoice"

    def test_in_flight_campaign_becomes_active(self, tenant, slot, service, campaign_factory):
        campaign = campaign_factory(start_date=date.today() - timedelta(days=1))
        self._signed(service, tenant, campaign)
        service.approve_campaign(tenant, campaign.id, actor_id=2, actor_role="admin")
        assert campaign.status == CampaignStatus.ACTIVE

    def test_reserves_schedule_without_reservation(self, db_session, tenant, slot, service,
                                                   campaign_factory):
        campaign = campaign_factory(status=CampaignStatus.SIGNED, probability=100, spots=3)
        result = service.approve_campaign(tenant, campaign.id, actor_id=2, actor_role="admin")
        assert len(result["order"].items) == 3
        assert _slot_counts(db_session, tenant) == (7, 3, 0)

    def test_requires_full_probability(self, tenant, service, campaign_factory):
        campaign = campaign_factory(status=CampaignStatus.VERBAL, probability=90)
        with pytest.raises(PreconditionFailed):
            service.approve_campaign(tenant, campaign.id, actor_id=2, actor_role="admin")

    def test_already_approved(self, tenant, service, campaign_factory):
        campaign = campaign_factory(status=CampaignStatus.BOOKED, probability=100)
        with pytest.raises(ConflictError):
            service.approve_campaign(tenant, campaign.id, actor_id=2, actor_role="admin")

    def test_requires_approver_role(self, tenant, service, campaign_factory):
        campaign = campaign_factory(status=CampaignStatus.SIGNED, probability=100)
        with pytest.raises(PermissionDenied):
            service.approve_campaign(tenant, campaign.id, actor_id=3, actor_role="sales")

    def test_flight_ended(self, tenant, service, campaign_factory):
        campaign = campaign_factory(status=CampaignStatus.SIGNED, probability=100,
                                    end_date=date.today() - timedelta(days=1))
        with pytest.raises(PreconditionFailed):
            service.approve_campaign(tenant, campaign.id, actor_id=2, actor_role="admin")

    def test_failure_rolls_back_everything(self, db_session, tenant, slot, settings_service, campaign_factory):
        def numbers(prefix):
            if prefix == "INV":
                raise RuntimeError("invoice numbering service unavailable")
            return f"{prefix}-1"

        service = CampaignWorkflowService(db_session, settings_service, number_generator=numbers)
        campaign = campaign_factory(status=CampaignStatus.SIGNED, probability=100, spots=2)

        with pytest.raises(RuntimeError):
            service.approve_campaign(tenant, campaign.id, actor_id=2, actor_role="admin")

        db_session.expire_all()
        assert db_session.get(Campaign, campaign.id).status == CampaignStatus.SIGNED
        assert db_session.query(Order).count() == 0
        assert db_session.query(Contract).count() == 0
        assert db_session.query(Invoice).count() == 0
        assert _slot_counts(db_session, tenant) == (10, 0, 0)


def test_campaign_machine_table():
    """Open stages may move to any other stage, pending_approval or lost"""
    assert set(CAMPAIGN_MACHINE.allowed_targets("draft")) == {
        "qualified", "proposal", "verbal", "signed", "pending_approval", "lost",
    }
    assert CAMPAIGN_MACHINE.allowed_targets("active") == []
