import logging
from datetime import date
from typing import Dict, List, Optional, Tuple, Union

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.context import RequestContext
from ..core.exceptions import ForbiddenError, InvalidTransitionError, NotFoundError, ValidationError
from ..models.appointment import Appointment, AppointmentStatus, AppointmentStatusChange
from ..models.slot import SlotInstance
from .conflict_resolver import ConflictResolver
from .directory import Directory
from .slot_generator import parse_slot_id
from .state_machine import resolve_transition
from .validation import clean_text, coerce_status, require_cancel_reason, validate_date_range

logger = logging.getLogger(__name__)


class AppointmentService:
    """Books appointments into slots and drives them through their lifecycle."""

    def __init__(self, db: Session):
        self.db = db
        self.directory = Directory(db)
        self.resolver = ConflictResolver(db)
        self.ledger = self.resolver.ledger

    # Booking

    def create_appointment(
        self,
        ctx: RequestContext,
        doctor_id: int,
        slot_instance_id: str,
        patient_id: int,
        reason: Optional[str] = None,
    ) -> Appointment:
        """Reserve one unit of the slot and create a pending appointment in it."""
        self._check_patient_scope(ctx, patient_id)
        self._check_slot_doctor(slot_instance_id, doctor_id)
        self.directory.require_patient(patient_id)
        self.directory.require_bookable_doctor(doctor_id)

        with self.resolver.arbitrate([slot_instance_id], patient_id):
            slot = self.resolver.secure_slot(ctx, slot_instance_id)
            try:
                self.resolver.check_patient_overlap(patient_id, slot)
                self.resolver.claim(slot)
                appointment = self._open_appointment(ctx, slot, patient_id, reason)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        self.db.refresh(appointment)
        logger.info(
            f"Booked appointment {appointment.id} for patient {patient_id} "
            f"in slot {slot_instance_id} [{ctx.request_id}]"
        )
        return appointment

    def reschedule_appointment(
        self,
        ctx: RequestContext,
        appointment_id: int,
        new_slot_instance_id: str,
        note: Optional[str] = None,
    ) -> Tuple[Appointment, Appointment]:
        """
        Move an active appointment to another slot as cancel + new booking.

        The new slot is reserved before the old one is released, in one
        transaction, so a failed reservation leaves the original untouched.
        Returns ``(cancelled, new)``.
        """
        appointment = self.get_appointment(ctx, appointment_id)
        observed = appointment.status
        transition = resolve_transition(observed, AppointmentStatus.CANCELLED, settings.STRICT_COMPLETION)
        self._check_role(ctx, transition.roles, observed, AppointmentStatus.CANCELLED)

        new_doctor_id, _, _ = parse_slot_id(new_slot_instance_id)
        if new_slot_instance_id == appointment.slot_instance_id:
            raise ValidationError("Appointment is already in that slot", slot_id=new_slot_instance_id)
        self.directory.require_bookable_doctor(new_doctor_id)

        old_slot_id = appointment.slot_instance_id
        patient_id = appointment.patient_id
        cancel_reason = "rescheduled" if not clean_text(note) else f"rescheduled: {clean_text(note)}"

        with self.resolver.arbitrate([old_slot_id, new_slot_instance_id], patient_id):
            slot = self.resolver.secure_slot(ctx, new_slot_instance_id)
            try:
                self.resolver.check_patient_overlap(patient_id, slot, exclude_appointment_id=appointment.id)
                self.resolver.claim(slot)
                replacement = self._open_appointment(ctx, slot, patient_id, appointment.reason)
                if not self._compare_and_set(appointment, observed, AppointmentStatus.CANCELLED, ctx, cancel_reason):
                    current = self._current_status(appointment.id)
                    raise InvalidTransitionError(current, AppointmentStatus.CANCELLED)
                self.ledger.release(old_slot_id)
                self._record(appointment.id, observed, AppointmentStatus.CANCELLED, ctx, cancel_reason)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        self.db.refresh(appointment)
        self.db.refresh(replacement)
        logger.info(
            f"Rescheduled appointment {appointment.id} from {old_slot_id} to "
            f"{new_slot_instance_id} as {replacement.id} [{ctx.request_id}]"
        )
        return appointment, replacement

    # Lifecycle

    def update_status(
        self,
        ctx: RequestContext,
        appointment_id: int,
        new_status: Union[str, AppointmentStatus],
        cancel_reason: Optional[str] = None,
    ) -> Appointment:
        """Apply one transition from the state table; cancelling twice is a no-op."""
        requested = coerce_status(new_status)
        appointment = self.get_appointment(ctx, appointment_id)
        observed = appointment.status

        if observed == AppointmentStatus.CANCELLED and requested == AppointmentStatus.CANCELLED:
            return appointment

        transition = resolve_transition(observed, requested, settings.STRICT_COMPLETION)
        self._check_role(ctx, transition.roles, observed, requested)
        if transition.requires_reason:
            cancel_reason = require_cancel_reason(cancel_reason)
        elif clean_text(cancel_reason) is not None:
            raise ValidationError("cancel_reason is only accepted when cancelling")

        if transition.releases_capacity:
            with self.resolver.arbitrate([appointment.slot_instance_id]):
                return self._apply(ctx, appointment, transition, cancel_reason)
        return self._apply(ctx, appointment, transition, cancel_reason)

    def cancel_appointment(self, ctx: RequestContext, appointment_id: int, cancel_reason: Optional[str]) -> Appointment:
        return self.update_status(ctx, appointment_id, AppointmentStatus.CANCELLED, cancel_reason)

    def _apply(self, ctx, appointment, transition, cancel_reason) -> Appointment:
        try:
            while not self._compare_and_set(appointment, transition.source, transition.target, ctx, cancel_reason):
                self.db.rollback()
                current = self._current_status(appointment.id)
                if current == AppointmentStatus.CANCELLED and transition.target == AppointmentStatus.CANCELLED:
                    # Lost the race to another cancel; it already released the slot.
                    self.db.refresh(appointment)
                    return appointment
                # Someone else moved it first; retry only if the edge from there is legal too
                transition = self._retarget(ctx, current, transition)
            if transition.releases_capacity:
                self.ledger.release(appointment.slot_instance_id)
            self._record(appointment.id, transition.source, transition.target, ctx, cancel_reason)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(appointment)
        logger.info(
            f"Appointment {appointment.id}: {transition.source.value} -> "
            f"{transition.target.value} by {ctx.role.value} {ctx.actor_id} [{ctx.request_id}]"
        )
        return appointment

    def _retarget(self, ctx, current, transition):
        retarget = resolve_transition(current, transition.target, settings.STRICT_COMPLETION)
        if retarget.releases_capacity != transition.releases_capacity:
            raise InvalidTransitionError(current, transition.target)
        self._check_role(ctx, retarget.roles, current, transition.target)
        logger.info(f"Status changed concurrently; retrying {current.value} -> {transition.target.value}")
        return retarget

    def _compare_and_set(self, appointment, expected, target, ctx, cancel_reason=None) -> bool:
        values = {"status": target, "updated_at": ctx.now}
        if target == AppointmentStatus.CANCELLED:
            values["cancel_reason"] = cancel_reason
        result = self.db.execute(
            update(Appointment)
            .where(Appointment.id == appointment.id, Appointment.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.expire(appointment)
        return result.rowcount == 1

    def _current_status(self, appointment_id: int) -> Optional[AppointmentStatus]:
        return self.db.query(Appointment.status).filter(Appointment.id == appointment_id).scalar()

    def _open_appointment(self, ctx, slot, patient_id, reason) -> Appointment:
        appointment = Appointment(
            patient_id=patient_id,
            doctor_id=slot.doctor_id,
            slot_instance_id=slot.id,
            status=AppointmentStatus.PENDING,
            reason=clean_text(reason),
            created_at=ctx.now,
            updated_at=ctx.now,
        )
        self.db.add(appointment)
        self.db.flush()
        self._record(appointment.id, None, AppointmentStatus.PENDING, ctx)
        return appointment

    def _record(self, appointment_id, from_status, to_status, ctx, reason=None) -> None:
        self.db.add(AppointmentStatusChange(
            appointment_id=appointment_id,
            from_status=from_status,
            to_status=to_status,
            actor_id=ctx.actor_id,
            reason=reason,
            changed_at=ctx.now,
        ))

    # Access rules

    def _check_patient_scope(self, ctx: RequestContext, patient_id: int) -> None:
        if ctx.is_patient and ctx.actor_id != patient_id:
            raise ForbiddenError("Patients may only act on their own appointments")

    def _check_role(self, ctx, roles, current, requested) -> None:
        if ctx.role not in roles:
            raise ForbiddenError(
                f"Role {ctx.role.value} may not move an appointment from "
                f"{current.value} to {requested.value}"
            )

    def _check_slot_doctor(self, slot_instance_id: str, doctor_id: int) -> None:
        slot_doctor_id, _, _ = parse_slot_id(slot_instance_id)
        if slot_doctor_id != doctor_id:
            raise ValidationError(
                f"Slot {slot_instance_id} does not belong to doctor {doctor_id}",
                slot_id=slot_instance_id,
            )

    # Reads

    def get_appointment(self, ctx: RequestContext, appointment_id: int) -> Appointment:
        appointment = self.db.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment", appointment_id)
        self._check_patient_scope(ctx, appointment.patient_id)
        return appointment

    def _by_slot_time(self, query):
        return query.join(SlotInstance, Appointment.slot_instance_id == SlotInstance.id).order_by(
            SlotInstance.date, SlotInstance.start_time, Appointment.id
        )

    def get_appointments_for_doctor(
        self,
        ctx: RequestContext,
        doctor_id: int,
        date_from: date,
        date_to: date,
        status: Optional[Union[str, AppointmentStatus]] = None,
    ) -> List[Appointment]:
        if ctx.is_patient:
            raise ForbiddenError("Patients may not list a doctor's appointments")
        validate_date_range(date_from, date_to)
        self.directory.require_doctor(doctor_id)
        query = self._by_slot_time(
            self.db.query(Appointment).filter(Appointment.doctor_id == doctor_id)
        ).filter(SlotInstance.date >= date_from, SlotInstance.date <= date_to)
        if status is not None:
            query = query.filter(Appointment.status == coerce_status(status))
        return query.all()

    def get_todays_appointments(self, ctx: RequestContext, doctor_id: int) -> List[Appointment]:
        return self.get_appointments_for_doctor(ctx, doctor_id, ctx.today, ctx.today)

    def get_appointments_for_patient(self, ctx: RequestContext, patient_id: int) -> List[Appointment]:
        self._check_patient_scope(ctx, patient_id)
        self.directory.require_patient(patient_id)
        return self._by_slot_time(
            self.db.query(Appointment).filter(Appointment.patient_id == patient_id)
        ).all()

    def get_doctor_stats(self, ctx: RequestContext, doctor_id: int) -> Dict[str, int]:
        """Appointment counts per status for one doctor."""
        if ctx.is_patient:
            raise ForbiddenError("Patients may not view doctor statistics")
        self.directory.require_doctor(doctor_id)
        counts = {status.value: 0 for status in AppointmentStatus}
        rows = self.db.query(Appointment.status, func.count(Appointment.id)).filter(
            Appointment.doctor_id == doctor_id
        ).group_by(Appointment.status).all()
        for status, count in rows:
            counts[status.value] = count
        return counts
