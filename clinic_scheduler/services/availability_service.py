import logging
from datetime import date
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.context import RequestContext
from ..core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ..models.availability import AvailabilityException, AvailabilityTemplate
from ..models.slot import SlotInstance
from ..schemas.availability import TemplateCreate, TemplateUpdate
from .directory import Directory
from .slot_generator import SlotGenerator, partition_window
from .validation import clean_text, validate_date_range

logger = logging.getLogger(__name__)


class AvailabilityService:
    """Manages availability templates and exceptions, and answers slot queries."""

    def __init__(self, db: Session):
        self.db = db
        self.directory = Directory(db)
        self.generator = SlotGenerator(db)

    def _require_staff(self, ctx: RequestContext) -> None:
        if not ctx.is_staff:
            raise ForbiddenError("Only clinic staff may change availability")

    # Slots

    def get_available_slots(
        self,
        ctx: RequestContext,
        doctor_id: int,
        date_from: date,
        date_to: date,
        include_full: bool = False,
    ) -> List[SlotInstance]:
        """Bookable slots for a doctor; read only, nothing is stored."""
        validate_date_range(date_from, date_to)
        if not self.directory.require_doctor(doctor_id).active:
            return []
        slots = [
            slot for slot in self.generator.generate(doctor_id, date_from, date_to)
            if slot.starts_at > ctx.now
        ]
        if not include_full:
            slots = [slot for slot in slots if slot.remaining > 0]
        return slots

    def generate_slots(self, ctx: RequestContext, doctor_id: int, date_from: date, date_to: date) -> List[SlotInstance]:
        """Materialize every slot in the range; safe to repeat."""
        self._require_staff(ctx)
        validate_date_range(date_from, date_to)
        self.directory.require_doctor(doctor_id)
        slots = self.generator.generate(doctor_id, date_from, date_to, materialize=True)
        logger.info(f"Generated {len(slots)} slots for doctor {doctor_id} ({date_from} to {date_to})")
        return slots

    # Templates

    def list_templates(self, doctor_id: int) -> List[AvailabilityTemplate]:
        self.directory.require_doctor(doctor_id)
        return self.db.query(AvailabilityTemplate).filter(
            AvailabilityTemplate.doctor_id == doctor_id
        ).order_by(AvailabilityTemplate.day_of_week).all()

    def _get_template(self, doctor_id: int, template_id: int) -> AvailabilityTemplate:
        template = self.db.get(AvailabilityTemplate, template_id)
        if template is None or template.doctor_id != doctor_id:
            raise NotFoundError("Availability template", template_id)
        return template

    def _validate_window(self, template: AvailabilityTemplate) -> None:
        if template.start_time >= template.end_time:
            raise ValidationError("start_time must be before end_time")
        if template.slot_duration_minutes is None or template.slot_duration_minutes <= 0:
            raise ValidationError("slot_duration_minutes must be positive")
        if template.capacity_per_slot is None or template.capacity_per_slot < 1:
            raise ValidationError("capacity_per_slot must be at least 1")
        if not partition_window(template.start_time, template.end_time, template.slot_duration_minutes):
            raise ValidationError("Availability window is shorter than one slot")

    def _save_template(self, template: AvailabilityTemplate) -> None:
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(
                f"Doctor {template.doctor_id} already has a template for day {template.day_of_week}",
                doctor_id=template.doctor_id,
                day_of_week=template.day_of_week,
            ) from None
        self.db.refresh(template)

    def create_template(self, ctx: RequestContext, doctor_id: int, data: TemplateCreate) -> AvailabilityTemplate:
        self._require_staff(ctx)
        self.directory.require_doctor(doctor_id)
        template = AvailabilityTemplate(doctor_id=doctor_id, **data.model_dump())
        self._validate_window(template)
        self.db.add(template)
        self._save_template(template)
        # Unbooked slots left from an earlier template on this weekday give way
        self.generator.discard_unreferenced(doctor_id, ctx.today, weekdays=[template.day_of_week])
        logger.info(f"Created template {template.id} for doctor {doctor_id}")
        return template

    def update_template(
        self,
        ctx: RequestContext,
        doctor_id: int,
        template_id: int,
        changes: TemplateUpdate,
    ) -> AvailabilityTemplate:
        """Edit a template; only future, unbooked slots follow the change."""
        self._require_staff(ctx)
        template = self._get_template(doctor_id, template_id)
        previous_day = template.day_of_week
        updates = changes.model_dump(exclude_unset=True)
        for field, value in updates.items():
            if value is None:
                raise ValidationError(f"{field} may not be null")
        for field, value in updates.items():
            setattr(template, field, value)
        try:
            self._validate_window(template)
        except ValidationError:
            self.db.rollback()
            raise
        self._save_template(template)
        self.generator.discard_unreferenced(
            doctor_id, ctx.today, weekdays={previous_day, template.day_of_week}
        )
        logger.info(f"Updated template {template.id} for doctor {doctor_id}")
        return template

    def delete_template(self, ctx: RequestContext, doctor_id: int, template_id: int) -> None:
        self._require_staff(ctx)
        template = self._get_template(doctor_id, template_id)
        day = template.day_of_week
        self.db.delete(template)
        self.db.commit()
        self.generator.discard_unreferenced(doctor_id, ctx.today, weekdays=[day])
        logger.info(f"Deleted template {template_id} for doctor {doctor_id}")

    # Exceptions

    def list_exceptions(
        self,
        doctor_id: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[AvailabilityException]:
        query = self.db.query(AvailabilityException)
        if doctor_id is not None:
            query = query.filter(AvailabilityException.doctor_id == doctor_id)
        if date_from is not None:
            query = query.filter(AvailabilityException.date >= date_from)
        if date_to is not None:
            query = query.filter(AvailabilityException.date <= date_to)
        return query.order_by(AvailabilityException.date, AvailabilityException.id).all()

    def create_exception(
        self,
        ctx: RequestContext,
        on_date: date,
        doctor_id: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> AvailabilityException:
        """Block a date for one doctor, or for the whole clinic when no doctor is given."""
        self._require_staff(ctx)
        if doctor_id is not None:
            self.directory.require_doctor(doctor_id)
        if self._exception_exists(doctor_id, on_date):
            raise ConflictError(
                f"{on_date} is already blocked",
                doctor_id=doctor_id,
                date=on_date.isoformat(),
            )
        exception = AvailabilityException(doctor_id=doctor_id, date=on_date, reason=clean_text(reason))
        self.db.add(exception)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(f"{on_date} is already blocked", date=on_date.isoformat()) from None
        self.db.refresh(exception)
        self.generator.discard_unreferenced(doctor_id, on_date, on_date=on_date)
        logger.info(f"Blocked {on_date} for {'clinic' if doctor_id is None else f'doctor {doctor_id}'}")
        return exception

    def _exception_exists(self, doctor_id: Optional[int], on_date: date) -> bool:
        # NULL never equals NULL in a unique index, so clinic holidays are checked here
        query = self.db.query(AvailabilityException.id).filter(AvailabilityException.date == on_date)
        if doctor_id is None:
            query = query.filter(AvailabilityException.doctor_id.is_(None))
        else:
            query = query.filter(AvailabilityException.doctor_id == doctor_id)
        return query.first() is not None

    def delete_exception(self, ctx: RequestContext, exception_id: int) -> None:
        self._require_staff(ctx)
        exception = self.db.get(AvailabilityException, exception_id)
        if exception is None:
            raise NotFoundError("Availability exception", exception_id)
        self.db.delete(exception)
        self.db.commit()
        logger.info(f"Removed availability exception {exception_id}")
