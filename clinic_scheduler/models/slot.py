from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, Date, Time,
    CheckConstraint, UniqueConstraint
)
from sqlalchemy.sql import func

from ..core.database import Base

class SlotInstance(Base):
    """
    A concrete, dated slot materialized from a template.

    The primary key is the deterministic slot id, so a slot has the same
    identity before and after it is materialized.
    """
    __tablename__ = "slot_instances"
    
    id = Column(String(40), primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    capacity = Column(Integer, nullable=False)
    booked_count = Column(Integer, nullable=False, default=0)
    
    created_at = Column(DateTime, server_default=func.now())
    
    __table_args__ = (
        UniqueConstraint("doctor_id", "date", "start_time", name="uq_slot_doctor_date_start"),
        CheckConstraint("booked_count >= 0", name="ck_slot_booked_nonnegative"),
        CheckConstraint("booked_count <= capacity", name="ck_slot_booked_capacity"),
    )
    
    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.date, self.start_time)
    
    @property
    def remaining(self) -> int:
        return self.capacity - self.booked_count
    
    def __repr__(self):
        return f"<SlotInstance(id='{self.id}', booked={self.booked_count}/{self.capacity})>"
