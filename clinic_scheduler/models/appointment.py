from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, Enum as SQLEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base

class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

ACTIVE_STATUSES = (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)

class Appointment(Base):
    __tablename__ = "appointments"
    
    id = Column(Integer, primary_key=True, index=True)
    
    # Relationships
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    slot_instance_id = Column(String(40), ForeignKey("slot_instances.id"), nullable=False, index=True)
    
    # Appointment details
    status = Column(SQLEnum(AppointmentStatus), nullable=False, default=AppointmentStatus.PENDING)
    reason = Column(Text, nullable=True)
    cancel_reason = Column(String(255), nullable=True)
    
    # Tracking
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now())
    
    # Relationships
    patient = relationship("Patient", back_populates="appointments")
    doctor = relationship("Doctor", back_populates="appointments")
    slot = relationship("SlotInstance")
    history = relationship(
        "AppointmentStatusChange",
        back_populates="appointment",
        order_by="AppointmentStatusChange.id",
    )
    
    def __repr__(self):
        return f"<Appointment(id={self.id}, patient_id={self.patient_id}, slot='{self.slot_instance_id}', status='{self.status}')>"

class AppointmentStatusChange(Base):
    """Append-only record of every status an appointment has taken."""
    __tablename__ = "appointment_status_changes"
    
    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    from_status = Column(SQLEnum(AppointmentStatus), nullable=True)  # None on creation
    to_status = Column(SQLEnum(AppointmentStatus), nullable=False)
    actor_id = Column(Integer, nullable=True)
    reason = Column(String(255), nullable=True)
    changed_at = Column(DateTime, nullable=False, server_default=func.now())
    
    appointment = relationship("Appointment", back_populates="history")
    
    def __repr__(self):
        return f"<AppointmentStatusChange(appointment_id={self.appointment_id}, {self.from_status}->{self.to_status})>"
