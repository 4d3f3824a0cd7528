"""Lifecycle rules for queue entries and doctor availability."""
from typing import Dict, FrozenSet

from ..core.errors import InvalidTransitionError
from ..schemas.queue import DoctorStatus, EntryStatus

TERMINAL_STATUSES: FrozenSet[EntryStatus] = frozenset({
    EntryStatus.COMPLETED,
    EntryStatus.NO_SHOW,
    EntryStatus.CANCELLED,
})

# Entries that still hold a place in the queue
LIVE_STATUSES: FrozenSet[EntryStatus] = frozenset({
    EntryStatus.WAITING,
    EntryStatus.CALLED,
    EntryStatus.IN_CONSULTATION,
})

# Entries that still have a queue position
POSITIONED_STATUSES: FrozenSet[EntryStatus] = frozenset({
    EntryStatus.WAITING,
    EntryStatus.CALLED,
})

ENTRY_TRANSITIONS: Dict[EntryStatus, FrozenSet[EntryStatus]] = {
    EntryStatus.WAITING: frozenset({
        EntryStatus.CALLED,
        EntryStatus.IN_CONSULTATION,  # call step skipped
        EntryStatus.NO_SHOW,
        EntryStatus.CANCELLED,
    }),
    EntryStatus.CALLED: frozenset({
        EntryStatus.IN_CONSULTATION,
        EntryStatus.NO_SHOW,
        EntryStatus.CANCELLED,
    }),
    EntryStatus.IN_CONSULTATION: frozenset({
        EntryStatus.COMPLETED,
        EntryStatus.CANCELLED,
    }),
    EntryStatus.COMPLETED: frozenset(),
    EntryStatus.NO_SHOW: frozenset(),
    EntryStatus.CANCELLED: frozenset(),
}

DOCTOR_TRANSITIONS: Dict[DoctorStatus, FrozenSet[DoctorStatus]] = {
    DoctorStatus.OFFLINE: frozenset({
        DoctorStatus.AVAILABLE,
        DoctorStatus.BREAK,
        DoctorStatus.READY,
        DoctorStatus.BUSY,
    }),
    DoctorStatus.AVAILABLE: frozenset({
        DoctorStatus.OFFLINE,
        DoctorStatus.BREAK,
        DoctorStatus.READY,
        DoctorStatus.BUSY,
    }),
    DoctorStatus.BREAK: frozenset({
        DoctorStatus.AVAILABLE,
        DoctorStatus.OFFLINE,
        DoctorStatus.READY,
        DoctorStatus.BUSY,
    }),
    DoctorStatus.READY: frozenset({
        DoctorStatus.BUSY,
        DoctorStatus.AVAILABLE,
        DoctorStatus.OFFLINE,
        DoctorStatus.BREAK,
    }),
    # Leaving busy happens through the consultation ending
    DoctorStatus.BUSY: frozenset({
        DoctorStatus.AVAILABLE,
    }),
}

# Statuses staff may set directly; busy and ready follow queue events
EXTERNAL_DOCTOR_STATUSES: FrozenSet[DoctorStatus] = frozenset({
    DoctorStatus.OFFLINE,
    DoctorStatus.BREAK,
    DoctorStatus.AVAILABLE,
})


def is_terminal(status: EntryStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: EntryStatus, target: EntryStatus) -> bool:
    return target in ENTRY_TRANSITIONS[current]


def ensure_entry_transition(appointment_id: str, current: EntryStatus, target: EntryStatus) -> None:
    """Raise InvalidTransitionError unless the entry may move to ``target``."""
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Appointment {appointment_id} cannot move from "
            f"'{current.value}' to '{target.value}'"
        )


def ensure_doctor_transition(current: DoctorStatus, target: DoctorStatus) -> None:
    if current == target:
        return
    if target not in DOCTOR_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Doctor cannot move from '{current.value}' to '{target.value}'"
        )


def ensure_external_doctor_status(current: DoctorStatus, target: DoctorStatus) -> None:
    """Validate a status change requested by staff rather than a queue event."""
    if target not in EXTERNAL_DOCTOR_STATUSES:
        raise InvalidTransitionError(
            f"Doctor status '{target.value}' is set by queue events only"
        )
    # Busy ends only with the consultation (end or cancel)
    if current == DoctorStatus.BUSY:
        raise InvalidTransitionError(
            "Doctor is in consultation; end or cancel it before changing status"
        )
    ensure_doctor_transition(current, target)
