"""
Slot Generator

Expands a doctor's weekly availability templates over a date range into
concrete slot instances, considering:
- Availability templates (one per doctor and weekday)
- Availability exceptions (doctor days off, clinic holidays)
- Slots already materialized, whose occupancy is never reset

Slot ids are deterministic (``<doctor>-<YYYYMMDD>-<HHMM>``), so a slot has
the same identity whether it was produced from a template just now or read
back from the database.
"""
import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from sqlalchemy import exists, inspect, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.exceptions import ValidationError
from ..core.locks import booking_locks, slot_key
from ..core.config import settings
from ..models.appointment import Appointment
from ..models.availability import AvailabilityException, AvailabilityTemplate
from ..models.slot import SlotInstance

logger = logging.getLogger(__name__)

_SLOT_ID_RE = re.compile(r"^(\d+)-(\d{8})-(\d{4})$")


def make_slot_id(doctor_id: int, slot_date: date, start: time) -> str:
    return f"{doctor_id}-{slot_date:%Y%m%d}-{start:%H%M}"


def parse_slot_id(slot_id: str) -> Tuple[int, date, time]:
    """Split a slot id into doctor, date and start time."""
    match = _SLOT_ID_RE.match(slot_id or "")
    if not match:
        raise ValidationError(f"Malformed slot id '{slot_id}'", slot_id=slot_id)
    doctor_part, date_part, time_part = match.groups()
    try:
        slot_date = datetime.strptime(date_part, "%Y%m%d").date()
        start = datetime.strptime(time_part, "%H%M").time()
    except ValueError:
        raise ValidationError(f"Malformed slot id '{slot_id}'", slot_id=slot_id) from None
    return int(doctor_part), slot_date, start


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def _clock(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


def partition_window(start: time, end: time, duration_minutes: int) -> List[Tuple[time, time]]:
    """
    Cut ``[start, end)`` into back-to-back intervals of ``duration_minutes``.

    A trailing interval shorter than the duration is dropped. An invalid
    window (empty, reversed, or non-positive duration) yields nothing.
    """
    if duration_minutes is None or duration_minutes <= 0:
        return []
    first, last = _minutes(start), _minutes(end)
    intervals = []
    cursor = first
    while cursor + duration_minutes <= last:
        intervals.append((_clock(cursor), _clock(cursor + duration_minutes)))
        cursor += duration_minutes
    return intervals


def daterange(date_from: date, date_to: date) -> Iterator[date]:
    current = date_from
    while current <= date_to:
        yield current
        current += timedelta(days=1)


def _overlaps(slot: SlotInstance, others: Iterable[SlotInstance]) -> bool:
    return any(slot.start_time < other.end_time and other.start_time < slot.end_time for other in others)


class SlotGenerator:
    def __init__(self, db: Session):
        self.db = db

    # Lookups

    def templates_by_day(self, doctor_id: int) -> Dict[int, AvailabilityTemplate]:
        templates = self.db.query(AvailabilityTemplate).filter(
            AvailabilityTemplate.doctor_id == doctor_id,
            AvailabilityTemplate.is_available.is_(True),
        ).all()
        return {t.day_of_week: t for t in templates}

    def blocked_dates(self, doctor_id: int, date_from: date, date_to: date) -> Set[date]:
        rows = self.db.query(AvailabilityException.date).filter(
            or_(
                AvailabilityException.doctor_id == doctor_id,
                AvailabilityException.doctor_id.is_(None),
            ),
            AvailabilityException.date >= date_from,
            AvailabilityException.date <= date_to,
        ).all()
        return {row[0] for row in rows}

    def materialized(self, doctor_id: int, date_from: date, date_to: date) -> Dict[date, List[SlotInstance]]:
        rows = self.db.query(SlotInstance).filter(
            SlotInstance.doctor_id == doctor_id,
            SlotInstance.date >= date_from,
            SlotInstance.date <= date_to,
        ).order_by(SlotInstance.date, SlotInstance.start_time).all()
        by_date: Dict[date, List[SlotInstance]] = {}
        for row in rows:
            by_date.setdefault(row.date, []).append(row)
        return by_date

    # Generation

    def _from_template(self, template: Optional[AvailabilityTemplate], slot_date: date) -> List[SlotInstance]:
        if template is None:
            return []
        return [
            SlotInstance(
                id=make_slot_id(template.doctor_id, slot_date, start),
                doctor_id=template.doctor_id,
                date=slot_date,
                start_time=start,
                end_time=end,
                capacity=template.capacity_per_slot,
                booked_count=0,
            )
            for start, end in partition_window(
                template.start_time, template.end_time, template.slot_duration_minutes
            )
        ]

    def _slots_for_day(
        self,
        template: Optional[AvailabilityTemplate],
        slot_date: date,
        existing: List[SlotInstance],
    ) -> List[SlotInstance]:
        # No active template: the day offers nothing, even slots already stored
        if template is None:
            return []
        # Materialized slots win; the template only fills the gaps between them.
        slots = list(existing)
        for candidate in self._from_template(template, slot_date):
            if not _overlaps(candidate, existing):
                slots.append(candidate)
        slots.sort(key=lambda s: s.start_time)
        return slots

    def generate(
        self,
        doctor_id: int,
        date_from: date,
        date_to: date,
        materialize: bool = False,
    ) -> List[SlotInstance]:
        """
        Return the doctor's slot instances for every date in the range.

        Dates covered by an exception, or whose weekday has no active
        template, yield nothing. Without ``materialize`` this is read only:
        slots not yet stored are returned as transient instances carrying
        their final ids and ``booked_count == 0``.
        """
        templates = self.templates_by_day(doctor_id)
        blocked = self.blocked_dates(doctor_id, date_from, date_to)
        stored = self.materialized(doctor_id, date_from, date_to)

        slots: List[SlotInstance] = []
        for slot_date in daterange(date_from, date_to):
            if slot_date in blocked:
                continue
            slots.extend(
                self._slots_for_day(templates.get(slot_date.weekday()), slot_date, stored.get(slot_date, []))
            )

        if materialize:
            slots = self._store(slots)
        return slots

    def resolve(self, slot_id: str) -> Optional[SlotInstance]:
        """
        Find the slot behind an id, stored or derivable from the current template.

        Returns None when the slot does not exist on that day, including days
        blocked by an exception and weekdays without an active template.
        """
        doctor_id, slot_date, start = parse_slot_id(slot_id)
        if slot_date in self.blocked_dates(doctor_id, slot_date, slot_date):
            return None
        template = self.templates_by_day(doctor_id).get(slot_date.weekday())
        if template is None:
            return None
        stored = self.db.get(SlotInstance, slot_id)
        if stored is not None:
            return stored
        existing = self.materialized(doctor_id, slot_date, slot_date).get(slot_date, [])
        for slot in self._slots_for_day(template, slot_date, existing):
            if slot.id == slot_id:
                return slot
        return None

    # Materialization

    def materialize(self, slot: SlotInstance) -> SlotInstance:
        """Store ``slot`` if it is not stored yet and return the stored row."""
        stored = self.db.get(SlotInstance, slot.id)
        if stored is not None:
            return stored
        self.db.add(slot)
        try:
            self.db.commit()
        except IntegrityError:
            # Another worker stored it first
            self.db.rollback()
            stored = self.db.get(SlotInstance, slot.id)
            if stored is None:
                raise
            return stored
        logger.info(f"Materialized slot {slot.id}")
        return slot

    def _store(self, slots: List[SlotInstance]) -> List[SlotInstance]:
        pending = [s for s in slots if inspect(s).transient]
        if not pending:
            return slots
        self.db.add_all(pending)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return [self.materialize(s) if s in pending else s for s in slots]
        logger.info(f"Materialized {len(pending)} slots")
        return slots

    def discard_unreferenced(
        self,
        doctor_id: Optional[int],
        from_date: date,
        weekdays: Optional[Iterable[int]] = None,
        on_date: Optional[date] = None,
    ) -> int:
        """
        Delete stored slots from ``from_date`` on that no appointment references.

        Used after template edits and new exceptions so future generation
        follows the new availability, while slots that carry appointments
        (active or historical) stay untouched.
        """
        # Any appointment counts, cancelled ones included: it keeps its slot row
        # through the foreign key, so that slot also keeps its old shape.
        unreferenced = ~exists().where(Appointment.slot_instance_id == SlotInstance.id)
        query = self.db.query(SlotInstance.id, SlotInstance.date).filter(
            SlotInstance.date >= from_date, unreferenced
        )
        if doctor_id is not None:
            query = query.filter(SlotInstance.doctor_id == doctor_id)
        if on_date is not None:
            query = query.filter(SlotInstance.date == on_date)
        days = set(weekdays) if weekdays is not None else None
        candidate_ids = [
            slot_id for slot_id, slot_date in query.all()
            if days is None or slot_date.weekday() in days
        ]
        if not candidate_ids:
            return 0

        with booking_locks.hold([slot_key(i) for i in candidate_ids], settings.SLOT_LOCK_TIMEOUT_SECONDS):
            removed = self.db.query(SlotInstance).filter(
                SlotInstance.id.in_(candidate_ids), unreferenced
            ).delete(synchronize_session=False)
            self.db.commit()
        logger.info(f"Discarded {removed} unbooked slots for doctor {doctor_id} from {from_date}")
        return removed
