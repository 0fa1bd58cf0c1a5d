"""
Conflict Resolver

Arbitrates concurrent claims on slot capacity. Booking and rescheduling both
go through it so they get the same guarantees:

1. ``arbitrate`` serializes workers on the slots (and, under the
   single-booking policy, the patient) involved.
2. ``secure_slot`` turns a slot id into a stored slot that is still
   bookable at the request's time.
3. ``claim`` reserves one unit in the ledger or raises ConflictError.
"""
import logging
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.context import RequestContext
from ..core.exceptions import ConflictError
from ..core.locks import StripedLocks, booking_locks, patient_key, slot_key
from ..models.appointment import ACTIVE_STATUSES, Appointment
from ..models.slot import SlotInstance
from .booking_ledger import BookingLedger
from .slot_generator import SlotGenerator

logger = logging.getLogger(__name__)


class ConflictResolver:
    def __init__(
        self,
        db: Session,
        locks: StripedLocks = booking_locks,
        timeout: Optional[float] = None,
    ):
        self.db = db
        self.locks = locks
        self.timeout = settings.SLOT_LOCK_TIMEOUT_SECONDS if timeout is None else timeout
        self.ledger = BookingLedger(db)
        self.generator = SlotGenerator(db)

    @property
    def single_booking_policy(self) -> bool:
        return settings.ENFORCE_PATIENT_SINGLE_BOOKING

    @contextmanager
    def arbitrate(self, slot_ids: Iterable[str], patient_id: Optional[int] = None) -> Iterator[None]:
        keys = [slot_key(slot_id) for slot_id in slot_ids]
        if patient_id is not None and self.single_booking_policy:
            keys.append(patient_key(patient_id))
        with self.locks.hold(keys, self.timeout):
            yield

    def secure_slot(self, ctx: RequestContext, slot_id: str) -> SlotInstance:
        """Resolve and store the slot, rejecting ones that are gone or already started."""
        slot = self.generator.resolve(slot_id)
        if slot is None:
            raise ConflictError(f"Slot {slot_id} does not exist", slot_id=slot_id)
        if slot.starts_at <= ctx.now:
            raise ConflictError(f"Slot {slot_id} is in the past", slot_id=slot_id)
        return self.generator.materialize(slot)

    def claim(self, slot: SlotInstance) -> None:
        if self.ledger.reserve(slot.id):
            return
        occupancy = self.ledger.occupancy(slot.id)
        if occupancy is None:
            logger.info(f"Reservation rejected: slot {slot.id} no longer exists")
            raise ConflictError(f"Slot {slot.id} no longer exists", slot_id=slot.id)
        booked, capacity = occupancy
        logger.info(f"Reservation rejected: slot {slot.id} is full ({booked}/{capacity})")
        raise ConflictError(
            f"Slot {slot.id} is fully booked",
            slot_id=slot.id,
            booked_count=booked,
            capacity=capacity,
        )

    def check_patient_overlap(
        self,
        patient_id: int,
        slot: SlotInstance,
        exclude_appointment_id: Optional[int] = None,
    ) -> None:
        """Reject a second active appointment overlapping ``slot`` when the policy is on."""
        if not self.single_booking_policy:
            return
        query = self.db.query(Appointment.id, SlotInstance).join(
            SlotInstance, Appointment.slot_instance_id == SlotInstance.id
        ).filter(
            Appointment.patient_id == patient_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            SlotInstance.date == slot.date,
            SlotInstance.start_time < slot.end_time,
            SlotInstance.end_time > slot.start_time,
        )
        if exclude_appointment_id is not None:
            query = query.filter(Appointment.id != exclude_appointment_id)
        clash = query.first()
        if clash is not None:
            appointment_id, other = clash
            raise ConflictError(
                f"Patient {patient_id} already has appointment {appointment_id} at that time",
                slot_id=slot.id,
                conflicting_appointment_id=appointment_id,
                conflicting_slot_id=other.id,
            )
