from datetime import date, time

from pydantic import BaseModel, ConfigDict


class SlotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    doctor_id: int
    date: date
    start_time: time
    end_time: time
    capacity: int
    booked_count: int
    remaining: int
