from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, Date, Time, Boolean,
    CheckConstraint, UniqueConstraint
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..core.database import Base

class AvailabilityTemplate(Base):
    """A doctor's recurring availability for one day of the week."""
    __tablename__ = "availability_templates"
    
    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    
    # 0 = Monday ... 6 = Sunday, matching date.weekday()
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    slot_duration_minutes = Column(Integer, nullable=False)
    capacity_per_slot = Column(Integer, nullable=False, default=1)
    is_available = Column(Boolean, nullable=False, default=True)
    
    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    
    doctor = relationship("Doctor", back_populates="templates")
    
    __table_args__ = (
        UniqueConstraint("doctor_id", "day_of_week", name="uq_template_doctor_day"),
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_template_day"),
        CheckConstraint("slot_duration_minutes > 0", name="ck_template_duration"),
        CheckConstraint("capacity_per_slot >= 1", name="ck_template_capacity"),
    )
    
    def __repr__(self):
        return (
            f"<AvailabilityTemplate(doctor_id={self.doctor_id}, day={self.day_of_week}, "
            f"{self.start_time}-{self.end_time}, every {self.slot_duration_minutes}m)>"
        )

class AvailabilityException(Base):
    """A date on which a doctor (or, with no doctor, the whole clinic) is unavailable."""
    __tablename__ = "availability_exceptions"
    
    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=True, index=True)
    date = Column(Date, nullable=False, index=True)
    reason = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    
    __table_args__ = (
        UniqueConstraint("doctor_id", "date", name="uq_exception_doctor_date"),
    )
    
    def __repr__(self):
        return f"<AvailabilityException(doctor_id={self.doctor_id}, date='{self.date}')>"
