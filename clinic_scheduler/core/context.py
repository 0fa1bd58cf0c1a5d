"""
Request-scoped context passed explicitly into every scheduling operation.

The core holds no ambient identity and never reads the wall clock itself:
who is acting and what time it is come from here.
"""
from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field

from .security import UserRole, STAFF_ROLES


class RequestContext(BaseModel):
    actor_id: int
    role: UserRole
    request_id: str = Field(default_factory=lambda: uuid4().hex)
    now: datetime = Field(default_factory=datetime.now)

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_patient(self) -> bool:
        return self.role == UserRole.PATIENT

    @property
    def today(self):
        return self.now.date()
