from datetime import date, datetime, time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TemplateBase(BaseModel):
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Monday ... 6 = Sunday")
    start_time: time
    end_time: time
    slot_duration_minutes: int = Field(..., gt=0, le=24 * 60)
    capacity_per_slot: int = Field(1, ge=1)
    is_available: bool = True


class TemplateCreate(TemplateBase):
    pass


class TemplateUpdate(BaseModel):
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    slot_duration_minutes: Optional[int] = Field(None, gt=0, le=24 * 60)
    capacity_per_slot: Optional[int] = Field(None, ge=1)
    is_available: Optional[bool] = None


class TemplateResponse(TemplateBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    doctor_id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ExceptionCreate(BaseModel):
    doctor_id: Optional[int] = Field(None, description="Leave empty for a clinic-wide holiday")
    date: date
    reason: Optional[str] = Field(None, max_length=255)


class ExceptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    doctor_id: Optional[int] = None
    date: date
    reason: Optional[str] = None


class DateRange(BaseModel):
    date_from: date
    date_to: date
