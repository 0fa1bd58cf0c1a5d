"""Input checks shared by the scheduling services."""
from datetime import date
from typing import Optional, Union

from ..core.config import settings
from ..core.exceptions import ValidationError
from ..models.appointment import AppointmentStatus


def validate_date_range(date_from: date, date_to: date) -> None:
    if date_from is None or date_to is None:
        raise ValidationError("Both date_from and date_to are required")
    if date_from > date_to:
        raise ValidationError(
            "date_from must not be after date_to",
            date_from=date_from.isoformat(),
            date_to=date_to.isoformat(),
        )
    span = (date_to - date_from).days + 1
    if span > settings.MAX_SLOT_RANGE_DAYS:
        raise ValidationError(
            f"Date range may cover at most {settings.MAX_SLOT_RANGE_DAYS} days",
            days=span,
        )


def coerce_status(value: Union[str, AppointmentStatus]) -> AppointmentStatus:
    """Map a boundary value onto the closed status set."""
    if isinstance(value, AppointmentStatus):
        return value
    try:
        return AppointmentStatus(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Unknown appointment status '{value}'",
            allowed=[s.value for s in AppointmentStatus],
        ) from None


def clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def require_cancel_reason(value: Optional[str]) -> str:
    reason = clean_text(value)
    if reason is None:
        raise ValidationError("cancel_reason is required when cancelling an appointment")
    return reason
