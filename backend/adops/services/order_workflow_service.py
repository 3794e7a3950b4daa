"""
Order workflow service - order state machine, status history and slot moves

    draft -> pending_approval -> approved -> booked -> confirmed
    (cancelled reachable from every non-terminal status)

Entering approved reserves items that hold no slot, approved -> booked moves
reserved units to booked, and entering cancelled returns whatever each item
holds to available.
"""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Dict, List, Optional, Sequence, Tuple
import logging

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from adops.models.pipeline import Campaign, Order, OrderItem, OrderStatus, OrderStatusHistory, SlotState
from adops.models.schemas import OrderCreate, TransitionResult, WorkflowEventName
from adops.services.events import WorkflowEventPublisher
from adops.services.inventory_service import InventoryService, default_document_number, slot_key
from adops.tenancy import TenantContext
from workflow_core.engine.conditions import pydantic_field_errors
from workflow_core.engine.state_machine import StateMachine, StateMachineConfig, StateTransition
from workflow_core.errors import ConflictError, NotFoundError, ValidationError, WorkflowError

logger = logging.getLogger(__name__)

COMMISSION_RATE = Decimal("0.15")

ORDER_MACHINE = StateMachine(StateMachineConfig(
    name="Order",
    states=[s.value for s in OrderStatus],
    transitions=[
        StateTransition("draft", "pending_approval"),
        StateTransition("draft", "cancelled"),
        StateTransition("pending_approval", "approved"),
        StateTransition("pending_approval", "draft"),
        StateTransition("pending_approval", "cancelled"),
        StateTransition("approved", "booked"),
        StateTransition("approved", "cancelled"),
        StateTransition("booked", "confirmed"),
        StateTransition("booked", "cancelled"),
    ],
    initial_state="draft",
    terminal_states={"confirmed", "cancelled"},
    required_roles={
        "pending_approval": {"master", "admin", "sales"},
        "approved": {"master", "admin"},
        "booked": {"master", "admin", "sales"},
        "confirmed": {"master", "admin"},
        "cancelled": {"master", "admin"},
        "draft": {"master", "admin"},
    },
))

# (event, entity_id, data) published after commit
PendingEvent = Tuple[WorkflowEventName, int, Dict]


def _money(value) -> Decimal:
    return Decimal(value or 0).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class OrderWorkflowService:
    """Order workflow service"""

    def __init__(
        self,
        db: Session,
        publisher: Optional[WorkflowEventPublisher] = None,
        number_generator: Callable[[str], str] = default_document_number,
    ):
        self.db = db
        self.publisher = publisher or WorkflowEventPublisher()
        self.number_generator = number_generator
        self.inventory = InventoryService(db, number_generator)

    # ============== Queries ==============

    def get_order(self, tenant: TenantContext, order_id: int) -> Order:
        order = self.db.query(Order).filter(
            Order.organization_id == tenant.org_id,
            Order.id == order_id,
        ).first()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})
        return order

    def get_history(self, tenant: TenantContext, order_id: int) -> List[OrderStatusHistory]:
        self.get_order(tenant, order_id)
        return self.db.query(OrderStatusHistory).filter(
            OrderStatusHistory.organization_id == tenant.org_id,
            OrderStatusHistory.order_id == order_id,
        ).order_by(OrderStatusHistory.id).all()

    # ============== Create ==============

    def create_order(self, tenant: TenantContext, data, actor_id: Optional[int] = None) -> Order:
        """Create a draft order; amounts derive from item rates"""
        try:
            payload = data if isinstance(data, OrderCreate) else OrderCreate.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError("Invalid order", field_errors=pydantic_field_errors(e)) from e

        if payload.campaign_id is not None:
            exists = self.db.query(Campaign.id).filter(
                Campaign.organization_id == tenant.org_id,
                Campaign.id == payload.campaign_id,
            ).first()
            if not exists:
                raise NotFoundError(f"Campaign {payload.campaign_id} not found")

        gross = _money(sum((item.rate for item in payload.items), Decimal("0")))
        net = max(gross - _money(payload.discount_amount), Decimal("0.00"))
        commission = _money(net * COMMISSION_RATE)
        order = Order(
            organization_id=tenant.org_id,
            order_number=self.number_generator("ORD"),
            campaign_id=payload.campaign_id,
            status=OrderStatus.DRAFT,
            gross_amount=gross,
            discount_amount=_money(payload.discount_amount),
            net_amount=net,
            commission_amount=commission,
            total_amount=net + commission,
            notes=payload.notes,
            created_by=actor_id,
        )
        order.items = [
            OrderItem(
                show_id=item.show_id,
                air_date=item.air_date,
                placement_type=item.placement_type,
                rate=item.rate,
                slot_state=SlotState.NONE,
            )
            for item in payload.items
        ]
        self.db.add(order)
        self.db.commit()
        self.db.refresh(order)
        logger.info(f"[{tenant}] order {order.order_number} created by {actor_id}")
        return order

    # ============== Transitions ==============

    @staticmethod
    def _parse_status(to_status) -> OrderStatus:
        try:
            return OrderStatus(to_status)
        except ValueError as e:
            raise ValidationError(f"Unknown order status: {to_status}",
                                  field_errors={"to_status": "unknown order status"}) from e

    def transition(
        self,
        tenant: TenantContext,
        order_id: int,
        to_status,
        actor_id: Optional[int],
        actor_role: Optional[str],
        notes: Optional[str] = None,
    ) -> TransitionResult:
        """
        Validate and apply one order transition together with its slot moves.

        Raises:
            PreconditionFailed: Transition not in the order table
            PermissionDenied: Role not allowed for the target status
            ConflictError: Inventory could not be moved (nothing is committed)
        """
        target = self._parse_status(to_status)
        order = self.db.query(Order).filter(
            Order.organization_id == tenant.org_id,
            Order.id == order_id,
        ).with_for_update().first()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})

        ORDER_MACHINE.validate_transition(order.status.value, target.value, actor_role)
        previous = order.status
        try:
            events = self._apply(tenant, order, target, actor_id, notes, strict=True)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"[{tenant}] order {order.order_number}: {previous.value} -> {target.value} by {actor_id}")
        self._publish(tenant, events, actor_id, actor_role)
        return TransitionResult(entity_type="order", entity_id=order.id,
                                previous_status=previous.value, new_status=target.value)

    def bulk_transition(
        self,
        tenant: TenantContext,
        order_ids: Sequence[int],
        to_status,
        actor_id: Optional[int],
        actor_role: Optional[str],
        notes: Optional[str] = None,
    ) -> List[TransitionResult]:
        """
        Transition a batch of orders.

        Every order is checked against the transition and role tables before
        anything is written; one failure rejects the whole batch. Slot moves
        inside an accepted batch are best effort (logged, not fatal).
        """
        target = self._parse_status(to_status)
        ids = list(dict.fromkeys(order_ids))
        orders = self.db.query(Order).filter(
            Order.organization_id == tenant.org_id,
            Order.id.in_(ids),
        ).with_for_update().all()
        by_id = {order.id: order for order in orders}
        missing = [oid for oid in ids if oid not in by_id]
        if missing:
            raise NotFoundError(f"Orders not found: {missing}", details={"order_ids": missing})

        failures = []
        first_error: Optional[WorkflowError] = None
        for oid in ids:
            try:
                ORDER_MACHINE.validate_transition(by_id[oid].status.value, target.value, actor_role)
            except WorkflowError as e:
                failures.append({"order_id": oid, "error": e.code, "message": e.message})
                first_error = first_error or e
        if first_error is not None:
            logger.warning(f"[{tenant}] bulk transition to {target.value} rejected: {failures}")
            first_error.details = {**first_error.details, "failures": failures}
            raise first_error

        results = []
        events: List[PendingEvent] = []
        try:
            for oid in ids:
                order = by_id[oid]
                previous = order.status
                events += self._apply(tenant, order, target, actor_id, notes, strict=False)
                results.append(TransitionResult(entity_type="order", entity_id=oid,
                                                previous_status=previous.value, new_status=target.value))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"[{tenant}] bulk transition of {len(ids)} orders to {target.value} by {actor_id}")
        self._publish(tenant, events, actor_id, actor_role)
        return results

    def _apply(
        self,
        tenant: TenantContext,
        order: Order,
        target: OrderStatus,
        actor_id: Optional[int],
        notes: Optional[str],
        strict: bool,
    ) -> List[PendingEvent]:
        previous = order.status
        events: List[PendingEvent] = []
        now = datetime.utcnow()

        if target == OrderStatus.APPROVED:
            self._move_items(tenant, order, SlotState.NONE, SlotState.RESERVED, strict)
            order.approved_at = now
            order.approved_by = actor_id
        elif target == OrderStatus.BOOKED:
            first_booking = order.booked_at is None
            booked = self._move_items(tenant, order, SlotState.RESERVED, SlotState.BOOKED, strict)
            order.booked_at = now
            if first_booking and booked:
                events.append((WorkflowEventName.FIRST_SPOT_BOOKED, order.id,
                               {"order": order.to_dict(), "booked_items": booked}))
        elif target == OrderStatus.CANCELLED:
            self._move_items(tenant, order, SlotState.RESERVED, SlotState.NONE, strict)
            self._move_items(tenant, order, SlotState.BOOKED, SlotState.NONE, strict)
            order.cancelled_at = now
        elif target == OrderStatus.PENDING_APPROVAL:
            order.submitted_at = now
        elif target == OrderStatus.CONFIRMED:
            order.confirmed_at = now

        order.status = target
        self.db.add(OrderStatusHistory(
            organization_id=tenant.org_id,
            order_id=order.id,
            from_status=previous.value,
            to_status=target.value,
            changed_by=actor_id,
            changed_at=now,
            notes=notes,
        ))
        return events

    def _move_items(
        self,
        tenant: TenantContext,
        order: Order,
        source: SlotState,
        target: SlotState,
        strict: bool,
    ) -> int:
        """Move each item in state source to state target; returns items moved"""
        buckets = {SlotState.NONE: "available", SlotState.RESERVED: "reserved", SlotState.BOOKED: "booked"}
        moved = 0
        for item in order.items:
            if item.slot_state != source:
                continue
            try:
                self.inventory.move(tenant, slot_key(item), buckets[source], buckets[target])
            except ConflictError as e:
                if strict:
                    raise
                logger.warning(f"[{tenant}] order {order.order_number} item {item.id}: {e.message}")
                continue
            item.slot_state = target
            moved += 1
        return moved

    def _publish(self, tenant: TenantContext, events: List[PendingEvent], actor_id, actor_role) -> None:
        for event, entity_id, data in events:
            self.publisher.publish(tenant, event, "order", entity_id, data, actor_id, actor_role)
