from datetime import date, time

import pytest

from clinic_scheduler.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from clinic_scheduler.core.security import UserRole
from clinic_scheduler.models import SlotInstance
from clinic_scheduler.schemas.availability import TemplateCreate, TemplateUpdate
from clinic_scheduler.services.appointment_service import AppointmentService
from clinic_scheduler.services.availability_service import AvailabilityService
from clinic_scheduler.services.booking_ledger import BookingLedger
from clinic_scheduler.services.slot_generator import SlotGenerator, make_slot_id

from .conftest import MONDAY, add_template, make_ctx

monday_hours = {
    "day_of_week": 0,
    "start_time": "09:00",
    "end_time": "10:00",
    "slot_duration_minutes": 30,
    "capacity_per_slot": 1,
}


def stored_ids(db, doctor_id, day=MONDAY):
    return [s.id for s in SlotGenerator(db).materialized(doctor_id, day, day).get(day, [])]


class TestTemplates:

    def test_create_and_list(self, db, doctor):
        """Staff add a template and see it listed."""
        service = AvailabilityService(db)
        template = service.create_template(make_ctx(), doctor.id, TemplateCreate(**monday_hours))

        assert template.id is not None
        assert template.start_time == time(9, 0)
        assert [t.id for t in service.list_templates(doctor.id)] == [template.id]

    def test_reversed_window_is_invalid(self, db, doctor):
        """start_time must precede end_time."""
        data = TemplateCreate(**dict(monday_hours, start_time="11:00"))
        with pytest.raises(ValidationError):
            AvailabilityService(db).create_template(make_ctx(), doctor.id, data)

    def test_window_shorter_than_slot_is_invalid(self, db, doctor):
        """A window that cannot hold one slot is rejected."""
        data = TemplateCreate(**dict(monday_hours, slot_duration_minutes=90))
        with pytest.raises(ValidationError):
            AvailabilityService(db).create_template(make_ctx(), doctor.id, data)

    def test_one_template_per_weekday(self, db, doctor):
        """A second template for the same weekday conflicts."""
        service = AvailabilityService(db)
        service.create_template(make_ctx(), doctor.id, TemplateCreate(**monday_hours))
        with pytest.raises(ConflictError):
            service.create_template(make_ctx(), doctor.id, TemplateCreate(**monday_hours))

    def test_patient_cannot_manage_templates(self, db, doctor, patients):
        """Template management is a staff action."""
        ctx = make_ctx(role=UserRole.PATIENT, actor_id=patients[0].id)
        with pytest.raises(ForbiddenError):
            AvailabilityService(db).create_template(ctx, doctor.id, TemplateCreate(**monday_hours))

    def test_unknown_doctor(self, db, test_db):
        """Templates need an existing doctor."""
        with pytest.raises(NotFoundError):
            AvailabilityService(db).create_template(make_ctx(), 5, TemplateCreate(**monday_hours))

    def test_update_keeps_booked_slots_and_drops_unbooked(self, db, doctor, monday_template, patients):
        """After an edit only slots with appointments stay stored."""
        service = AvailabilityService(db)
        service.generate_slots(make_ctx(), doctor.id, MONDAY, MONDAY)
        booked_id = make_slot_id(doctor.id, MONDAY, time(9, 0))
        AppointmentService(db).create_appointment(make_ctx(), doctor.id, booked_id, patients[0].id)

        service.update_template(
            make_ctx(), doctor.id, monday_template.id,
            TemplateUpdate(end_time=time(11, 0), capacity_per_slot=2),
        )

        assert stored_ids(db, doctor.id) == [booked_id]
        slots = service.get_available_slots(make_ctx(), doctor.id, MONDAY, MONDAY, include_full=True)
        assert [(s.start_time, s.capacity, s.booked_count) for s in slots] == [
            (time(9, 0), 1, 1),
            (time(9, 30), 2, 0),
            (time(10, 0), 2, 0),
            (time(10, 30), 2, 0),
        ]

    def test_update_rejects_invalid_window(self, db, doctor, monday_template):
        """An edit that breaks the window is refused and rolled back."""
        service = AvailabilityService(db)
        with pytest.raises(ValidationError):
            service.update_template(
                make_ctx(), doctor.id, monday_template.id, TemplateUpdate(end_time=time(8, 0))
            )
        db.refresh(monday_template)
        assert monday_template.end_time == time(10, 0)

    def test_update_template_of_other_doctor(self, db, doctor, monday_template):
        """A template id under the wrong doctor is not found."""
        with pytest.raises(NotFoundError):
            AvailabilityService(db).update_template(
                make_ctx(), doctor.id + 1, monday_template.id, TemplateUpdate(capacity_per_slot=3)
            )

    def test_delete_withdraws_booked_slot(self, db, doctor, patients):
        """A deleted template leaves its booked slots in place but no longer offers them."""
        add_template(db, doctor.id, capacity=2)
        booked_id = make_slot_id(doctor.id, MONDAY, time(9, 0))
        appointments = AppointmentService(db)
        appointment = appointments.create_appointment(make_ctx(), doctor.id, booked_id, patients[0].id)

        service = AvailabilityService(db)
        template = service.list_templates(doctor.id)[0]
        service.delete_template(make_ctx(), doctor.id, template.id)

        assert service.list_templates(doctor.id) == []
        assert service.get_available_slots(make_ctx(), doctor.id, MONDAY, MONDAY, include_full=True) == []
        assert stored_ids(db, doctor.id) == [booked_id]
        with pytest.raises(ConflictError):
            appointments.create_appointment(make_ctx(), doctor.id, booked_id, patients[1].id)
        assert BookingLedger(db).occupancy(booked_id) == (1, 2)

        cancelled = appointments.update_status(make_ctx(), appointment.id, "cancelled", "no doctor")
        assert cancelled.status.value == "cancelled"
        assert db.get(SlotInstance, booked_id).booked_count == 0

    def test_disabled_template_withdraws_booked_slot(self, db, doctor, monday_template, patients):
        """Switching a template off hides its stored slots and refuses new bookings."""
        booked_id = make_slot_id(doctor.id, MONDAY, time(9, 0))
        appointments = AppointmentService(db)
        appointments.create_appointment(make_ctx(), doctor.id, booked_id, patients[0].id)

        service = AvailabilityService(db)
        service.update_template(make_ctx(), doctor.id, monday_template.id, TemplateUpdate(is_available=False))

        assert service.get_available_slots(make_ctx(), doctor.id, MONDAY, MONDAY, include_full=True) == []
        with pytest.raises(ConflictError):
            appointments.create_appointment(
                make_ctx(), doctor.id, make_slot_id(doctor.id, MONDAY, time(9, 30)), patients[1].id
            )

        service.update_template(make_ctx(), doctor.id, monday_template.id, TemplateUpdate(is_available=True))
        slots = service.get_available_slots(make_ctx(), doctor.id, MONDAY, MONDAY, include_full=True)
        assert [(s.id, s.booked_count) for s in slots] == [
            (booked_id, 1),
            (make_slot_id(doctor.id, MONDAY, time(9, 30)), 0),
        ]

    def test_slot_with_only_cancelled_appointments_keeps_its_shape(self, db, doctor, monday_template, patients):
        """Cancelled appointments still hold their slot row, so an edit does not reshape it."""
        kept_id = make_slot_id(doctor.id, MONDAY, time(9, 30))
        appointments = AppointmentService(db)
        appointment = appointments.create_appointment(make_ctx(), doctor.id, kept_id, patients[0].id)
        appointments.update_status(make_ctx(), appointment.id, "cancelled", "changed plans")

        service = AvailabilityService(db)
        service.update_template(make_ctx(), doctor.id, monday_template.id, TemplateUpdate(capacity_per_slot=3))

        slots = service.get_available_slots(make_ctx(), doctor.id, MONDAY, MONDAY)
        assert [(s.id, s.capacity, s.booked_count) for s in slots] == [
            (make_slot_id(doctor.id, MONDAY, time(9, 0)), 3, 0),
            (kept_id, 1, 0),
        ]
        rebooked = appointments.create_appointment(make_ctx(), doctor.id, kept_id, patients[1].id)
        assert rebooked.slot_instance_id == kept_id


class TestExceptions:

    def test_day_off_discards_unbooked_slots(self, db, doctor, monday_template):
        """Blocking a date removes stored slots nobody booked."""
        service = AvailabilityService(db)
        service.generate_slots(make_ctx(), doctor.id, MONDAY, MONDAY)
        assert len(stored_ids(db, doctor.id)) == 2

        exception = service.create_exception(make_ctx(), MONDAY, doctor.id, "training")

        assert exception.reason == "training"
        assert stored_ids(db, doctor.id) == []
        assert service.get_available_slots(make_ctx(), doctor.id, MONDAY, MONDAY) == []

    def test_duplicate_block(self, db, doctor):
        """The same date cannot be blocked twice for the same doctor or the clinic."""
        service = AvailabilityService(db)
        service.create_exception(make_ctx(), MONDAY, doctor.id)
        service.create_exception(make_ctx(), MONDAY)
        with pytest.raises(ConflictError):
            service.create_exception(make_ctx(), MONDAY, doctor.id)
        with pytest.raises(ConflictError):
            service.create_exception(make_ctx(), MONDAY)

    def test_list_and_delete(self, db, doctor, monday_template):
        """Removing an exception makes the day bookable again."""
        service = AvailabilityService(db)
        holiday = service.create_exception(make_ctx(), MONDAY, reason="New clinic wing opening")
        service.create_exception(make_ctx(), date(2030, 1, 14), doctor.id)

        assert [e.id for e in service.list_exceptions(date_from=MONDAY, date_to=MONDAY)] == [holiday.id]
        assert len(service.list_exceptions(doctor_id=doctor.id)) == 1

        service.delete_exception(make_ctx(), holiday.id)
        assert len(service.get_available_slots(make_ctx(), doctor.id, MONDAY, MONDAY)) == 2

    def test_delete_unknown(self, db, test_db):
        """Deleting a missing exception is not found."""
        with pytest.raises(NotFoundError):
            AvailabilityService(db).delete_exception(make_ctx(), 99)
