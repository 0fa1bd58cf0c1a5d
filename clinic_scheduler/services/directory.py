"""
Read-only view of the patient and doctor directories.

Doctor and patient records are maintained elsewhere; the scheduling core
only asks whether an id exists and whether a doctor is taking bookings.
"""
from typing import NamedTuple

from sqlalchemy.orm import Session

from ..core.exceptions import ConflictError, NotFoundError
from ..models.doctor import Doctor
from ..models.patient import Patient


class DirectoryRecord(NamedTuple):
    exists: bool
    active: bool


class Directory:
    def __init__(self, db: Session):
        self.db = db

    def get_doctor(self, doctor_id: int) -> DirectoryRecord:
        doctor = self.db.get(Doctor, doctor_id)
        if doctor is None:
            return DirectoryRecord(exists=False, active=False)
        return DirectoryRecord(exists=True, active=bool(doctor.is_active))

    def get_patient(self, patient_id: int) -> DirectoryRecord:
        exists = self.db.get(Patient, patient_id) is not None
        return DirectoryRecord(exists=exists, active=exists)

    def require_doctor(self, doctor_id: int) -> DirectoryRecord:
        record = self.get_doctor(doctor_id)
        if not record.exists:
            raise NotFoundError("Doctor", doctor_id)
        return record

    def require_bookable_doctor(self, doctor_id: int) -> None:
        if not self.require_doctor(doctor_id).active:
            raise ConflictError(
                f"Doctor {doctor_id} is not accepting appointments",
                doctor_id=doctor_id,
            )

    def require_patient(self, patient_id: int) -> None:
        if not self.get_patient(patient_id).exists:
            raise NotFoundError("Patient", patient_id)
