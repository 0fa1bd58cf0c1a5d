from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.appointment import AppointmentStatus
from .slot import SlotResponse


class AppointmentCreate(BaseModel):
    doctor_id: int
    slot_instance_id: str = Field(..., min_length=1, max_length=40)
    patient_id: int
    reason: Optional[str] = Field(None, max_length=1000)


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus
    cancel_reason: Optional[str] = Field(None, max_length=255)


class AppointmentReschedule(BaseModel):
    slot_instance_id: str = Field(..., min_length=1, max_length=40)
    note: Optional[str] = Field(None, max_length=200)


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    doctor_id: int
    slot_instance_id: str
    status: AppointmentStatus
    reason: Optional[str] = None
    cancel_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class StatusChangeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    from_status: Optional[AppointmentStatus] = None
    to_status: AppointmentStatus
    actor_id: Optional[int] = None
    reason: Optional[str] = None
    changed_at: datetime


class AppointmentDetail(AppointmentResponse):
    slot: SlotResponse
    history: List[StatusChangeResponse] = []


class RescheduleResponse(BaseModel):
    cancelled: AppointmentResponse
    appointment: AppointmentResponse


class DoctorStats(BaseModel):
    doctor_id: int
    total: int
    by_status: Dict[str, int]
