"""
Inventory service - slot counters and campaign reservations

Every counter change goes through move(): one guarded UPDATE that decrements
one bucket and increments another in the same statement, so
available + reserved + booked == total holds under concurrent transitions.
"""
from collections import Counter
from datetime import datetime, date, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple
import logging
import uuid

from sqlalchemy import update
from sqlalchemy.orm import Session

from adops.models.pipeline import (
    Campaign, InventorySlot, Reservation, ReservationItem, ReservationStatus,
)
from adops.tenancy import TenantContext
from workflow_core.errors import ConflictError, PreconditionFailed

logger = logging.getLogger(__name__)

BUCKETS = ("available", "reserved", "booked")
RESERVATION_EXPIRY_DAYS = 14

# (show_id, air_date, placement_type)
SlotKey = Tuple[int, date, str]


def default_document_number(prefix: str) -> str:
    """Document number: PREFIX-YYYYMMDD-XXXXXX"""
    return f"{prefix}-{datetime.now().strftime('%Y%m%d')}-{uuid.uuid4().hex[:6].upper()}"


def slot_key(item) -> SlotKey:
    return (item.show_id, item.air_date, item.placement_type)


class InventoryService:
    """Inventory service"""

    def __init__(self, db: Session, number_generator: Callable[[str], str] = default_document_number):
        self.db = db
        self.number_generator = number_generator

    # ============== Slots ==============

    def get_slot(self, tenant: TenantContext, key: SlotKey) -> Optional[InventorySlot]:
        show_id, air_date, placement_type = key
        return self.db.query(InventorySlot).filter(
            InventorySlot.organization_id == tenant.org_id,
            InventorySlot.show_id == show_id,
            InventorySlot.air_date == air_date,
            InventorySlot.placement_type == placement_type,
        ).first()

    def create_slot(self, tenant: TenantContext, key: SlotKey, total: int, rate_card=None) -> InventorySlot:
        """Create a slot with every unit available"""
        if total < 0:
            raise ValueError("total must be >= 0")
        if self.get_slot(tenant, key):
            raise ConflictError(f"Inventory slot already exists: {key}")
        show_id, air_date, placement_type = key
        slot = InventorySlot(
            organization_id=tenant.org_id,
            show_id=show_id,
            air_date=air_date,
            placement_type=placement_type,
            total=total,
            available=total,
            reserved=0,
            booked=0,
            rate_card=rate_card,
        )
        self.db.add(slot)
        self.db.flush()
        return slot

    def move(self, tenant: TenantContext, key: SlotKey, source: str, target: str, count: int = 1) -> None:
        """
        Move units between two buckets of one slot.

        Args:
            tenant: Tenant context
            key: (show_id, air_date, placement_type)
            source: Bucket to decrement
            target: Bucket to increment
            count: Units to move

        Raises:
            ConflictError: Slot missing or source bucket holds fewer than count units
        """
        if source not in BUCKETS or target not in BUCKETS or source == target:
            raise ValueError(f"invalid bucket move {source} -> {target}")
        if count <= 0:
            return

        show_id, air_date, placement_type = key
        source_col = getattr(InventorySlot, source)
        target_col = getattr(InventorySlot, target)
        stmt = (
            update(InventorySlot)
            .where(
                InventorySlot.organization_id == tenant.org_id,
                InventorySlot.show_id == show_id,
                InventorySlot.air_date == air_date,
                InventorySlot.placement_type == placement_type,
                source_col >= count,
            )
            .values({source: source_col - count, target: target_col + count})
            .execution_options(synchronize_session="fetch")
        )
        result = self.db.execute(stmt)
        if result.rowcount != 1:
            logger.warning(f"[{tenant}] inventory move {source}->{target} x{count} rejected for {key}")
            raise ConflictError(
                f"Insufficient {source} inventory for show {show_id} on {air_date} ({placement_type})",
                details={"show_id": show_id, "air_date": air_date.isoformat(),
                         "placement_type": placement_type, "bucket": source, "requested": count},
            )

    def reserve(self, tenant: TenantContext, key: SlotKey, count: int = 1) -> None:
        self.move(tenant, key, "available", "reserved", count)

    def book(self, tenant: TenantContext, key: SlotKey, count: int = 1) -> None:
        self.move(tenant, key, "reserved", "booked", count)

    def release(self, tenant: TenantContext, key: SlotKey, bucket: str, count: int = 1) -> None:
        """Return units from reserved or booked to available"""
        self.move(tenant, key, bucket, "available", count)

    def shortages(self, tenant: TenantContext, counts: Dict[SlotKey, int]) -> List[Dict]:
        """Slots that cannot supply the requested available units"""
        problems = []
        for key, count in counts.items():
            slot = self.get_slot(tenant, key)
            have = slot.available if slot else 0
            if have < count:
                show_id, air_date, placement_type = key
                problems.append({"show_id": show_id, "air_date": air_date.isoformat(),
                                 "placement_type": placement_type, "requested": count, "available": have})
        return problems

    # ============== Reservations ==============

    def get_reservation(self, tenant: TenantContext, reservation_id: int) -> Optional[Reservation]:
        return self.db.query(Reservation).filter(
            Reservation.organization_id == tenant.org_id,
            Reservation.id == reservation_id,
        ).first()

    def get_held_reservation(self, tenant: TenantContext, campaign: Campaign) -> Optional[Reservation]:
        if not campaign.reservation_id:
            return None
        reservation = self.get_reservation(tenant, campaign.reservation_id)
        if reservation and reservation.status == ReservationStatus.HELD:
            return reservation
        return None

    def reserve_campaign(
        self,
        tenant: TenantContext,
        campaign: Campaign,
        actor_id: Optional[int],
        expires_in_days: int = RESERVATION_EXPIRY_DAYS,
    ) -> Tuple[Reservation, bool]:
        """
        Reserve the campaign's scheduled spots.

        Returns:
            (reservation, created) - an already held reservation is returned
            as is with created=False

        Raises:
            PreconditionFailed: Campaign has no scheduled spots
            ConflictError: A slot is missing or sold out
        """
        existing = self.get_held_reservation(tenant, campaign)
        if existing:
            return existing, False

        spots = list(campaign.scheduled_spots)
        if not spots:
            raise PreconditionFailed(
                f"Campaign {campaign.id} has no scheduled spots to reserve",
                details={"campaign_id": campaign.id},
            )

        counts: Dict[SlotKey, int] = Counter(slot_key(spot) for spot in spots)
        shortages = self.shortages(tenant, counts)
        if shortages:
            raise ConflictError(
                f"Insufficient inventory for campaign {campaign.id}",
                details={"campaign_id": campaign.id, "shortages": shortages},
            )
        for key, count in counts.items():
            self.reserve(tenant, key, count)

        reservation = Reservation(
            organization_id=tenant.org_id,
            reservation_number=self.number_generator("RES"),
            campaign_id=campaign.id,
            status=ReservationStatus.HELD,
            total_amount=sum((Decimal(spot.rate or 0) for spot in spots), Decimal("0")),
            expires_at=datetime.utcnow() + timedelta(days=expires_in_days),
            created_by=actor_id,
        )
        reservation.items = [
            ReservationItem(
                show_id=spot.show_id,
                air_date=spot.air_date,
                placement_type=spot.placement_type,
                rate=spot.rate,
            )
            for spot in spots
        ]
        self.db.add(reservation)
        self.db.flush()
        campaign.reservation_id = reservation.id

        logger.info(f"[{tenant}] reserved {len(spots)} spots for campaign {campaign.id} ({reservation.reservation_number})")
        return reservation, True

    def release_reservation(self, tenant: TenantContext, reservation: Reservation) -> int:
        """
        Release a held reservation back to available.

        Returns:
            Number of units released (0 when the reservation is not held)
        """
        if reservation.status != ReservationStatus.HELD:
            return 0
        counts = Counter(slot_key(item) for item in reservation.items)
        for key, count in counts.items():
            self.release(tenant, key, "reserved", count)
        reservation.status = ReservationStatus.RELEASED
        reservation.released_at = datetime.utcnow()
        logger.info(f"[{tenant}] released reservation {reservation.reservation_number}")
        return sum(counts.values())

    def mark_converted(self, reservation: Reservation) -> None:
        """Reservation units now belong to an order; counters stay reserved"""
        if reservation.status != ReservationStatus.HELD:
            raise ConflictError(f"Reservation {reservation.reservation_number} is {reservation.status.value}")
        reservation.status = ReservationStatus.CONVERTED
        reservation.converted_at = datetime.utcnow()

    def list_slots(self, tenant: TenantContext) -> List[InventorySlot]:
        return self.db.query(InventorySlot).filter(
            InventorySlot.organization_id == tenant.org_id
        ).order_by(InventorySlot.air_date, InventorySlot.show_id).all()
