from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ...core.context import RequestContext
from ...core.database import get_db
from ...api.deps import get_request_context
from ...models.appointment import AppointmentStatus
from ...services.appointment_service import AppointmentService
from ...schemas.appointment import (
    AppointmentCreate, AppointmentDetail, AppointmentReschedule,
    AppointmentResponse, AppointmentStatusUpdate, DoctorStats, RescheduleResponse
)

router = APIRouter(tags=["Appointments"])

@router.post(
    "/appointments",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED
)
def create_appointment(
    booking: AppointmentCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Book a patient into a slot; 409 when the slot cannot take it."""
    service = AppointmentService(db)
    return service.create_appointment(
        ctx, booking.doctor_id, booking.slot_instance_id, booking.patient_id, booking.reason
    )

@router.get("/appointments/{appointment_id}", response_model=AppointmentDetail)
def get_appointment(
    appointment_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Appointment with its slot and status history."""
    appointment = AppointmentService(db).get_appointment(ctx, appointment_id)
    return AppointmentDetail.model_validate(appointment)

@router.patch("/appointments/{appointment_id}/status", response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    status_update: AppointmentStatusUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Confirm, cancel or complete an appointment."""
    service = AppointmentService(db)
    return service.update_status(
        ctx, appointment_id, status_update.status, status_update.cancel_reason
    )

@router.post("/appointments/{appointment_id}/reschedule", response_model=RescheduleResponse)
def reschedule_appointment(
    appointment_id: int,
    reschedule: AppointmentReschedule,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Move an appointment to another slot (cancel + new booking)."""
    service = AppointmentService(db)
    cancelled, appointment = service.reschedule_appointment(
        ctx, appointment_id, reschedule.slot_instance_id, reschedule.note
    )
    return RescheduleResponse(
        cancelled=AppointmentResponse.model_validate(cancelled),
        appointment=AppointmentResponse.model_validate(appointment),
    )

@router.get("/doctors/{doctor_id}/appointments", response_model=List[AppointmentResponse])
def get_doctor_appointments(
    doctor_id: int,
    date_from: date,
    date_to: date,
    status: Optional[AppointmentStatus] = None,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """A doctor's appointments in a date range, optionally by status."""
    service = AppointmentService(db)
    return service.get_appointments_for_doctor(ctx, doctor_id, date_from, date_to, status)

@router.get("/doctors/{doctor_id}/appointments/today", response_model=List[AppointmentResponse])
def get_todays_appointments(
    doctor_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """A doctor's appointments for the current day."""
    return AppointmentService(db).get_todays_appointments(ctx, doctor_id)

@router.get("/doctors/{doctor_id}/stats", response_model=DoctorStats)
def get_doctor_stats(
    doctor_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Appointment counts per status."""
    counts = AppointmentService(db).get_doctor_stats(ctx, doctor_id)
    return DoctorStats(doctor_id=doctor_id, total=sum(counts.values()), by_status=counts)

@router.get("/patients/{patient_id}/appointments", response_model=List[AppointmentResponse])
def get_patient_appointments(
    patient_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """All appointments of a patient."""
    return AppointmentService(db).get_appointments_for_patient(ctx, patient_id)
