"""
Sales pipeline entities
Campaign -> Reservation -> Order -> Contract / Invoice, plus inventory slots.
Every row carries organization_id; services always filter on it.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict
from sqlalchemy import (
    Column, Integer, String, DateTime, Date, ForeignKey, Text,
    Enum as SQLEnum, Boolean, Numeric, JSON, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
from adops.database import Base


# ============== Enums ==============

class CampaignStatus(str, Enum):
    """Campaign status"""
    DRAFT = "draft"                    # 10%
    QUALIFIED = "qualified"            # 35%
    PROPOSAL = "proposal"              # 65%
    VERBAL = "verbal"                  # 90%
    PENDING_APPROVAL = "pending_approval"  # 90%, awaiting admin review
    SIGNED = "signed"                  # 100%
    APPROVED = "approved"
    BOOKED = "booked"
    ACTIVE = "active"
    LOST = "lost"                      # keeps its last rung


class OrderStatus(str, Enum):
    """Order status"""
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    BOOKED = "booked"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class SlotState(str, Enum):
    """Inventory bucket an order item currently occupies"""
    NONE = "none"
    RESERVED = "reserved"
    BOOKED = "booked"


class ReservationStatus(str, Enum):
    HELD = "held"
    RELEASED = "released"
    CONVERTED = "converted"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"      # campaign lost while the request was open


class ApprovalType(str, Enum):
    """Why an approval request was opened"""
    CAMPAIGN = "campaign"        # approval threshold crossed
    TALENT = "talent"            # host-read / endorsement spots on a show
    RATE_CARD = "rate_card"      # negotiated rates far off the rate card
    RULE = "rule"                # require_approval action


class UserRole(str, Enum):
    """User role"""
    MASTER = "master"
    ADMIN = "admin"
    SALES = "sales"
    PRODUCER = "producer"
    TALENT = "talent"
    CLIENT = "client"


def _money(value) -> float:
    return float(value) if value is not None else 0.0


def _iso(value):
    return value.isoformat() if value is not None else None


# ============== Directory ==============

class User(Base):
    """Tenant user; role drives transition permissions and notification fan-out"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(50), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(200))
    role = Column(String(20), nullable=False, default=UserRole.SALES.value)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)


# ============== Pipeline ==============

class Campaign(Base):
    """
    Campaign - pipeline aggregate root
    status and probability are written together by CampaignWorkflowService only
    """
    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(50), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    status = Column(SQLEnum(CampaignStatus), nullable=False, default=CampaignStatus.DRAFT)
    probability = Column(Integer, nullable=False, default=10)
    budget = Column(Numeric(12, 2), default=0)
    advertiser_id = Column(Integer)
    agency_id = Column(Integer)
    start_date = Column(Date)                  # flight start
    end_date = Column(Date)                    # flight end
    reservation_id = Column(Integer)           # current held reservation
    approval_request_id = Column(Integer)      # open CampaignApproval
    created_by = Column(Integer)
    approved_by = Column(Integer)
    approved_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    scheduled_spots = relationship("ScheduledSpot", back_populates="campaign", order_by="ScheduledSpot.id")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value if self.status else None,
            "probability": self.probability,
            "budget": _money(self.budget),
            "advertiser_id": self.advertiser_id,
            "agency_id": self.agency_id,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "reservation_id": self.reservation_id,
            "approval_request_id": self.approval_request_id,
            "created_by": self.created_by,
        }


class ScheduledSpot(Base):
    """One planned airing of a campaign; source of reservation items"""
    __tablename__ = "scheduled_spots"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(50), nullable=False, index=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False)
    show_id = Column(Integer, nullable=False)
    air_date = Column(Date, nullable=False)
    placement_type = Column(String(30), nullable=False)   # pre-roll, mid-roll, post-roll
    spot_type = Column(String(30), nullable=False, default="produced")   # produced, host_read, endorsement
    rate = Column(Numeric(10, 2), default=0)               # negotiated rate

    campaign = relationship("Campaign", back_populates="scheduled_spots")


class InventorySlot(Base):
    """
    Sellable units for (show, air date, placement type)
    available + reserved + booked == total, moved only by InventoryService
    """
    __tablename__ = "inventory_slots"
    __table_args__ = (
        UniqueConstraint("organization_id", "show_id", "air_date", "placement_type", name="uq_inventory_slot"),
        CheckConstraint("available >= 0 AND reserved >= 0 AND booked >= 0", name="ck_inventory_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(50), nullable=False, index=True)
    show_id = Column(Integer, nullable=False)
    air_date = Column(Date, nullable=False)
    placement_type = Column(String(30), nullable=False)
    total = Column(Integer, nullable=False, default=0)
    available = Column(Integer, nullable=False, default=0)
    reserved = Column(Integer, nullable=False, default=0)
    booked = Column(Integer, nullable=False, default=0)
    rate_card = Column(Numeric(10, 2))         # list rate per unit


class Reservation(Base):
    """Held inventory for a campaign's schedule"""
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(50), nullable=False, index=True)
    reservation_number = Column(String(50), nullable=False)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False)
    status = Column(SQLEnum(ReservationStatus), nullable=False, default=ReservationStatus.HELD)
    total_amount = Column(Numeric(12, 2), default=0)
    expires_at = Column(DateTime)
    created_by = Column(Integer)
    released_at = Column(DateTime)
    converted_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)

    items = relationship("ReservationItem", back_populates="reservation", order_by="ReservationItem.id")


class ReservationItem(Base):
    __tablename__ = "reservation_items"

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=False)
    show_id = Column(Integer, nullable=False)
    air_date = Column(Date, nullable=False)
    placement_type = Column(String(30), nullable=False)
    rate = Column(Numeric(10, 2), default=0)

    reservation = relationship("Reservation", back_populates="items")


class CampaignApproval(Base):
    """
    Approval request on a campaign
    Opened by the milestone hooks or by the require_approval action
    """
    __tablename__ = "campaign_approvals"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(50), nullable=False, index=True)
    entity_type = Column(String(20), nullable=False, default="campaign")
    entity_id = Column(String(50), nullable=False)
    approval_type = Column(SQLEnum(ApprovalType), nullable=False, default=ApprovalType.CAMPAIGN)
    show_id = Column(Integer)                   # talent requests only
    status = Column(SQLEnum(ApprovalStatus), nullable=False, default=ApprovalStatus.PENDING)
    reason = Column(Text)
    required_roles = Column(JSON, default=list)
    requested_by = Column(Integer)
    trigger_id = Column(Integer)                # set when opened by a rule
    reviewed_by = Column(Integer)
    reviewed_at = Column(DateTime)
    rejection_reason = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)


class Order(Base):
    """Order - created directly or by campaign approval"""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(50), nullable=False, index=True)
    order_number = Column(String(50), nullable=False)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"))
    status = Column(SQLEnum(OrderStatus), nullable=False, default=OrderStatus.DRAFT)
    gross_amount = Column(Numeric(12, 2), default=0)
    discount_amount = Column(Numeric(12, 2), default=0)
    net_amount = Column(Numeric(12, 2), default=0)
    commission_amount = Column(Numeric(12, 2), default=0)
    total_amount = Column(Numeric(12, 2), default=0)
    notes = Column(Text)
    submitted_at = Column(DateTime)
    approved_at = Column(DateTime)
    approved_by = Column(Integer)
    booked_at = Column(DateTime)
    confirmed_at = Column(DateTime)
    cancelled_at = Column(DateTime)
    created_by = Column(Integer)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship("OrderItem", back_populates="order", order_by="OrderItem.id")
    history = relationship("OrderStatusHistory", back_populates="order", order_by="OrderStatusHistory.id")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "campaign_id": self.campaign_id,
            "status": self.status.value if self.status else None,
            "gross_amount": _money(self.gross_amount),
            "net_amount": _money(self.net_amount),
            "commission_amount": _money(self.commission_amount),
            "total_amount": _money(self.total_amount),
            "created_by": self.created_by,
        }


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    show_id = Column(Integer, nullable=False)
    air_date = Column(Date, nullable=False)
    placement_type = Column(String(30), nullable=False)
    rate = Column(Numeric(10, 2), default=0)
    slot_state = Column(SQLEnum(SlotState), nullable=False, default=SlotState.NONE)

    order = relationship("Order", back_populates="items")


class OrderStatusHistory(Base):
    """Append-only, one row per order transition"""
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(50), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    from_status = Column(String(30), nullable=False)
    to_status = Column(String(30), nullable=False)
    changed_by = Column(Integer)
    changed_at = Column(DateTime, default=datetime.utcnow)
    notes = Column(Text)

    order = relationship("Order", back_populates="history")


class Contract(Base):
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(50), nullable=False, index=True)
    contract_number = Column(String(50), nullable=False)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"))
    order_id = Column(Integer, ForeignKey("orders.id"))
    total_amount = Column(Numeric(12, 2), default=0)
    payment_terms = Column(String(30), default="Net 30")
    billing_cycle = Column(String(20), default="monthly")
    status = Column(String(20), default="draft")
    start_date = Column(Date)
    end_date = Column(Date)
    created_by = Column(Integer)
    created_at = Column(DateTime, default=datetime.utcnow)


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(50), nullable=False, index=True)
    invoice_number = Column(String(50), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"))
    campaign_id = Column(Integer, ForeignKey("campaigns.id"))
    amount = Column(Numeric(12, 2), default=0)
    status = Column(String(20), default="draft")
    issue_date = Column(Date)
    due_date = Column(Date)
    created_at = Column(DateTime, default=datetime.utcnow)


class ActivityLog(Base):
    """Append-only business activity record"""
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(50), nullable=False, index=True)
    entity_type = Column(String(20), nullable=False)
    entity_id = Column(String(50), nullable=False)
    action = Column(String(50), nullable=False)
    actor_id = Column(Integer)
    details = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)


class Notification(Base):
    """In-app notification written by the in_app channel"""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(50), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    title = Column(String(200), nullable=False)
    message = Column(Text)
    entity_type = Column(String(20))
    entity_id = Column(String(50))
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
