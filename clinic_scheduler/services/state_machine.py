"""
Appointment State Machine

pending --confirm--> confirmed --complete--> completed
   |                     |
   +------cancel---------+-----> cancelled

``cancelled`` and ``completed`` are terminal. ``pending -> completed`` is
only allowed when strict completion is switched off.
"""
from typing import Dict, FrozenSet, Iterable, NamedTuple, Optional, Tuple

from ..core.security import CLINICAL_ROLES, STAFF_ROLES, UserRole
from ..core.exceptions import InvalidTransitionError
from ..models.appointment import AppointmentStatus


class Transition(NamedTuple):
    source: AppointmentStatus
    target: AppointmentStatus
    roles: FrozenSet[UserRole]
    releases_capacity: bool = False
    requires_reason: bool = False


ALL_ROLES = frozenset(UserRole)

_TRANSITIONS: Dict[Tuple[AppointmentStatus, AppointmentStatus], Transition] = {
    (t.source, t.target): t
    for t in (
        Transition(AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED, STAFF_ROLES),
        Transition(
            AppointmentStatus.PENDING, AppointmentStatus.CANCELLED, ALL_ROLES,
            releases_capacity=True, requires_reason=True,
        ),
        Transition(
            AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED, STAFF_ROLES,
            releases_capacity=True, requires_reason=True,
        ),
        Transition(AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED, CLINICAL_ROLES),
    )
}

_LENIENT_TRANSITIONS = {
    (AppointmentStatus.PENDING, AppointmentStatus.COMPLETED): Transition(
        AppointmentStatus.PENDING, AppointmentStatus.COMPLETED, CLINICAL_ROLES
    ),
}


def transition_table(strict: bool = True) -> Dict[Tuple[AppointmentStatus, AppointmentStatus], Transition]:
    table = dict(_TRANSITIONS)
    if not strict:
        table.update(_LENIENT_TRANSITIONS)
    return table


def resolve_transition(
    current: AppointmentStatus,
    requested: AppointmentStatus,
    strict: bool = True,
) -> Transition:
    transition = transition_table(strict).get((current, requested))
    if transition is None:
        raise InvalidTransitionError(current, requested)
    return transition


def allowed_targets(current: AppointmentStatus, strict: bool = True) -> FrozenSet[AppointmentStatus]:
    return frozenset(target for source, target in transition_table(strict) if source == current)


def is_valid_walk(statuses: Iterable[AppointmentStatus], strict: bool = True) -> bool:
    """True when ``statuses`` starts at pending and only follows the table."""
    previous: Optional[AppointmentStatus] = None
    for status in statuses:
        if previous is None:
            if status != AppointmentStatus.PENDING:
                return False
        elif (previous, status) not in transition_table(strict):
            return False
        previous = status
    return True
