from .doctor import Doctor
from .patient import Patient
from .availability import AvailabilityTemplate, AvailabilityException
from .slot import SlotInstance
from .appointment import Appointment, AppointmentStatus, AppointmentStatusChange

__all__ = [
    "Doctor", "Patient",
    "AvailabilityTemplate", "AvailabilityException",
    "SlotInstance",
    "Appointment", "AppointmentStatus", "AppointmentStatusChange",
]
