from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from ...core.context import RequestContext
from ...core.database import get_db
from ...api.deps import get_request_context
from ...services.availability_service import AvailabilityService
from ...schemas.availability import (
    DateRange, ExceptionCreate, ExceptionResponse,
    TemplateCreate, TemplateResponse, TemplateUpdate
)
from ...schemas.slot import SlotResponse

router = APIRouter(tags=["Availability"])

# Slots
@router.get("/doctors/{doctor_id}/slots", response_model=List[SlotResponse])
def get_available_slots(
    doctor_id: int,
    date_from: date,
    date_to: date,
    include_full: bool = False,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """List the doctor's bookable slots in a date range."""
    service = AvailabilityService(db)
    slots = service.get_available_slots(ctx, doctor_id, date_from, date_to, include_full)
    return [SlotResponse.model_validate(slot) for slot in slots]

@router.post("/doctors/{doctor_id}/slots/generate", response_model=List[SlotResponse])
def generate_slots(
    doctor_id: int,
    date_range: DateRange,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Materialize slot instances for a date range (staff only)."""
    service = AvailabilityService(db)
    slots = service.generate_slots(ctx, doctor_id, date_range.date_from, date_range.date_to)
    return [SlotResponse.model_validate(slot) for slot in slots]

# Templates
@router.get("/doctors/{doctor_id}/templates", response_model=List[TemplateResponse])
def list_templates(
    doctor_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """List a doctor's weekly availability templates."""
    return AvailabilityService(db).list_templates(doctor_id)

@router.post(
    "/doctors/{doctor_id}/templates",
    response_model=TemplateResponse,
    status_code=status.HTTP_201_CREATED
)
def create_template(
    doctor_id: int,
    template_data: TemplateCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Add a weekly availability template."""
    return AvailabilityService(db).create_template(ctx, doctor_id, template_data)

@router.put("/doctors/{doctor_id}/templates/{template_id}", response_model=TemplateResponse)
def update_template(
    doctor_id: int,
    template_id: int,
    changes: TemplateUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Edit a template; slots that already carry appointments are kept."""
    return AvailabilityService(db).update_template(ctx, doctor_id, template_id, changes)

@router.delete("/doctors/{doctor_id}/templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_template(
    doctor_id: int,
    template_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Remove a template."""
    AvailabilityService(db).delete_template(ctx, doctor_id, template_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

# Exceptions
@router.get("/availability-exceptions", response_model=List[ExceptionResponse])
def list_exceptions(
    doctor_id: Optional[int] = None,
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """List blocked dates."""
    return AvailabilityService(db).list_exceptions(doctor_id, date_from, date_to)

@router.post(
    "/availability-exceptions",
    response_model=ExceptionResponse,
    status_code=status.HTTP_201_CREATED
)
def create_exception(
    exception_data: ExceptionCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Block a date for a doctor, or for everyone when no doctor is given."""
    return AvailabilityService(db).create_exception(
        ctx, exception_data.date, exception_data.doctor_id, exception_data.reason
    )

@router.delete("/availability-exceptions/{exception_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_exception(
    exception_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Unblock a date."""
    AvailabilityService(db).delete_exception(ctx, exception_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
