"""
Booking Ledger

The authoritative per-slot occupancy counter. Reserve and release are single
conditional UPDATE statements, so the capacity check and the increment can
never be split by another writer, whatever the database engine. Neither call
commits: they take part in the caller's transaction.
"""
import logging
from typing import Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..models.slot import SlotInstance

logger = logging.getLogger(__name__)


class BookingLedger:
    def __init__(self, db: Session):
        self.db = db

    def _apply(self, statement) -> bool:
        result = self.db.execute(statement.execution_options(synchronize_session=False))
        return result.rowcount == 1

    def _expire(self, slot_id: str) -> None:
        slot = self.db.identity_map.get(self.db.identity_key(SlotInstance, slot_id))
        if slot is not None:
            self.db.expire(slot, ["booked_count"])

    def reserve(self, slot_id: str) -> bool:
        """Take one unit of capacity; False when the slot is full or gone."""
        reserved = self._apply(
            update(SlotInstance)
            .where(SlotInstance.id == slot_id, SlotInstance.booked_count < SlotInstance.capacity)
            .values(booked_count=SlotInstance.booked_count + 1)
        )
        self._expire(slot_id)
        return reserved

    def release(self, slot_id: str) -> bool:
        """Give one unit back; never drops below zero."""
        released = self._apply(
            update(SlotInstance)
            .where(SlotInstance.id == slot_id, SlotInstance.booked_count > 0)
            .values(booked_count=SlotInstance.booked_count - 1)
        )
        self._expire(slot_id)
        if not released:
            logger.warning(f"Release on slot {slot_id} found nothing to release")
        return released

    def occupancy(self, slot_id: str) -> Optional[Tuple[int, int]]:
        """Return ``(booked_count, capacity)`` or None for an unknown slot."""
        row = self.db.query(SlotInstance.booked_count, SlotInstance.capacity).filter(
            SlotInstance.id == slot_id
        ).first()
        return (row[0], row[1]) if row else None
