"""
The Queue aggregate: one doctor's patients for one calendar day.

Every mutating operation works on a deep copy and returns ``(queue, result)``.
The receiver is never modified, so a failed transition leaves nothing behind
and the caller decides whether to persist the new state. Operations that
change nothing return the receiver itself.
"""
from datetime import date, datetime
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from ..core.clock import utcnow
from ..core.errors import InvalidTransitionError, NotFoundError, QueueFullError
from ..schemas.queue import (
    ConsultationAnalysis,
    DoctorStatus,
    EntryStatus,
    QueueEntry,
    QueueHistory,
    QueueKey,
    QueueStats,
    QueueStatusView,
)
from . import wait_estimator
from .state_machine import (
    LIVE_STATUSES,
    POSITIONED_STATUSES,
    TERMINAL_STATUSES,
    ensure_doctor_transition,
    ensure_entry_transition,
    ensure_external_doctor_status,
)


def _resolve_now(now: Optional[datetime]) -> datetime:
    return now if now is not None else utcnow()


class Queue(BaseModel):
    doctor_id: str
    day: date
    entries: List[QueueEntry] = Field(default_factory=list)

    doctor_status: DoctorStatus = DoctorStatus.OFFLINE
    current_patient_id: Optional[str] = None
    current_appointment_id: Optional[str] = None

    avg_consultation_time_minutes: float = 15.0
    total_consultations_completed_today: int = 0

    max_queue_size: int = 50
    auto_call_next: bool = True

    version: int = 0

    @property
    def key(self) -> QueueKey:
        return QueueKey(doctor_id=self.doctor_id, day=self.day)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _index_of(self, appointment_id: str) -> int:
        for index, entry in enumerate(self.entries):
            if entry.appointment_id == appointment_id:
                return index
        return -1

    def _require_index(self, appointment_id: str) -> int:
        index = self._index_of(appointment_id)
        if index == -1:
            raise NotFoundError(f"Appointment {appointment_id} is not in this queue")
        return index

    def _current_entry(self) -> Optional[QueueEntry]:
        for entry in self.entries:
            if entry.status == EntryStatus.IN_CONSULTATION:
                return entry
        return None

    def _count(self, status: EntryStatus) -> int:
        return sum(1 for entry in self.entries if entry.status == status)

    def get_entry(self, appointment_id: str) -> Optional[QueueEntry]:
        index = self._index_of(appointment_id)
        if index == -1:
            return None
        return self.entries[index].model_copy()

    def live_count(self) -> int:
        return sum(1 for entry in self.entries if entry.status in LIVE_STATUSES)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_queue_position(self, appointment_id: str) -> int:
        """1-based rank among waiting/called entries, or -1 when not actionable."""
        position = 0
        for entry in self.entries:
            if entry.status not in POSITIONED_STATUSES:
                continue
            position += 1
            if entry.appointment_id == appointment_id:
                return position
        return -1

    def get_estimated_wait(self, appointment_id: str, now: Optional[datetime] = None) -> int:
        position = self.get_queue_position(appointment_id)
        if position <= 0:
            return 0

        return wait_estimator.position_wait(
            position,
            self.avg_consultation_time_minutes,
            self.remaining_consultation_minutes(self.avg_consultation_time_minutes, now),
        )

    def remaining_consultation_minutes(self, avg_minutes: float, now: Optional[datetime] = None) -> float:
        """Expected time left in the running consultation; 0 unless the doctor is busy."""
        if self.doctor_status != DoctorStatus.BUSY:
            return 0.0
        current = self._current_entry()
        if current is None:
            return 0.0
        return wait_estimator.remaining_consultation_minutes(
            avg_minutes, current.consultation_started_at, _resolve_now(now)
        )

    def get_consultation_analysis(self) -> ConsultationAnalysis:
        completed = [entry for entry in self.entries if entry.status == EntryStatus.COMPLETED]
        return wait_estimator.analyze_consultation_patterns(completed)

    def get_stats(self) -> QueueStats:
        waiting = self._count(EntryStatus.WAITING)
        in_consultation = self._count(EntryStatus.IN_CONSULTATION)
        return QueueStats(
            waiting=waiting,
            called=self._count(EntryStatus.CALLED),
            in_consultation=in_consultation,
            completed=self._count(EntryStatus.COMPLETED),
            no_show=self._count(EntryStatus.NO_SHOW),
            cancelled=self._count(EntryStatus.CANCELLED),
            total_in_queue=waiting + in_consultation,
            avg_wait_minutes=wait_estimator.round_minutes(
                waiting * self.avg_consultation_time_minutes
            ),
            avg_consultation_time_minutes=self.avg_consultation_time_minutes,
            doctor_status=self.doctor_status,
        )

    def get_active_entries(self) -> List[QueueEntry]:
        return [entry.model_copy() for entry in self.entries if entry.status in LIVE_STATUSES]

    def get_history(self) -> QueueHistory:
        history = [
            entry.model_copy() for entry in self.entries if entry.status in TERMINAL_STATUSES
        ]
        return QueueHistory(
            history=history,
            completed=self._count(EntryStatus.COMPLETED),
            no_show=self._count(EntryStatus.NO_SHOW),
            cancelled=self._count(EntryStatus.CANCELLED),
            avg_consultation_time_minutes=self.avg_consultation_time_minutes,
        )

    def get_status_view(self, appointment_id: str, now: Optional[datetime] = None) -> QueueStatusView:
        position = self.get_queue_position(appointment_id)
        entry = self.get_entry(appointment_id)
        return QueueStatusView(
            appointment_id=appointment_id,
            position=position if position > 0 else None,
            estimated_wait_minutes=self.get_estimated_wait(appointment_id, now),
            total_in_queue=self.get_stats().total_in_queue,
            doctor_status=self.doctor_status,
            patient_status=entry.status.value if entry else "not-joined",
            is_your_turn=position == 1 and self.doctor_status == DoctorStatus.READY,
            joined_at=entry.joined_at if entry else None,
            called_at=entry.called_at if entry else None,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def add_to_queue(
        self,
        appointment_id: str,
        patient_id: str,
        patient_name: str,
        scheduled_time: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple["Queue", QueueEntry]:
        existing = self.get_entry(appointment_id)
        if existing is not None:
            return self, existing

        if self.live_count() >= self.max_queue_size:
            raise QueueFullError(
                f"Queue for doctor {self.doctor_id} on {self.day.isoformat()} "
                f"is full ({self.max_queue_size} patients)"
            )

        now = _resolve_now(now)
        queue = self.model_copy(deep=True)
        entry = QueueEntry(
            appointment_id=appointment_id,
            patient_id=patient_id,
            patient_name=patient_name,
            scheduled_time=scheduled_time,
            joined_at=now,
        )
        queue.entries.append(entry)
        entry.estimated_wait_minutes = queue.get_estimated_wait(appointment_id, now)
        return queue, entry.model_copy()

    def call_next_patient(self, now: Optional[datetime] = None) -> Tuple["Queue", Optional[QueueEntry]]:
        if not any(entry.status == EntryStatus.WAITING for entry in self.entries):
            return self, None

        queue = self.model_copy(deep=True)
        called = queue._call_next_in_place(_resolve_now(now))
        return queue, called

    def _call_next_in_place(self, now: datetime) -> Optional[QueueEntry]:
        for entry in self.entries:
            if entry.status != EntryStatus.WAITING:
                continue
            ensure_entry_transition(entry.appointment_id, entry.status, EntryStatus.CALLED)
            entry.status = EntryStatus.CALLED
            entry.called_at = now
            # A called patient waits for the running consultation to finish
            if self._current_entry() is None:
                ensure_doctor_transition(self.doctor_status, DoctorStatus.READY)
                self.doctor_status = DoctorStatus.READY
            return entry.model_copy()
        return None

    def start_consultation(self, appointment_id: str, now: Optional[datetime] = None) -> Tuple["Queue", QueueEntry]:
        index = self._require_index(appointment_id)
        entry = self.entries[index]
        ensure_entry_transition(appointment_id, entry.status, EntryStatus.IN_CONSULTATION)

        current = self._current_entry()
        if current is not None:
            raise InvalidTransitionError(
                f"Appointment {current.appointment_id} is already in consultation"
            )

        queue = self.model_copy(deep=True)
        entry = queue.entries[index]
        entry.status = EntryStatus.IN_CONSULTATION
        entry.consultation_started_at = _resolve_now(now)

        ensure_doctor_transition(queue.doctor_status, DoctorStatus.BUSY)
        queue.doctor_status = DoctorStatus.BUSY
        queue.current_patient_id = entry.patient_id
        queue.current_appointment_id = entry.appointment_id
        return queue, entry.model_copy()

    def end_consultation(
        self,
        appointment_id: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple["Queue", Optional[QueueEntry]]:
        """
        Complete the consultation and fold its duration into the running mean.

        With ``auto_call_next`` the result is the newly called patient (None
        when nobody is waiting); otherwise it is the completed entry.
        """
        index = self._require_index(appointment_id)
        ensure_entry_transition(appointment_id, self.entries[index].status, EntryStatus.COMPLETED)

        now = _resolve_now(now)
        queue = self.model_copy(deep=True)
        entry = queue.entries[index]
        entry.status = EntryStatus.COMPLETED
        entry.consultation_ended_at = now
        if notes is not None:
            entry.notes = notes

        duration = 0.0
        if entry.consultation_started_at is not None:
            duration = max(0.0, wait_estimator.minutes_between(entry.consultation_started_at, now))
        queue.avg_consultation_time_minutes = wait_estimator.incremental_mean(
            queue.avg_consultation_time_minutes,
            queue.total_consultations_completed_today,
            duration,
        )
        queue.total_consultations_completed_today += 1

        queue._release_doctor()

        if queue.auto_call_next:
            return queue, queue._call_next_in_place(now)
        return queue, entry.model_copy()

    def mark_no_show(self, appointment_id: str, now: Optional[datetime] = None) -> Tuple["Queue", Optional[QueueEntry]]:
        """Mark a waiting or called patient as absent, then auto-call if enabled."""
        index = self._require_index(appointment_id)
        ensure_entry_transition(appointment_id, self.entries[index].status, EntryStatus.NO_SHOW)

        queue = self.model_copy(deep=True)
        entry = queue.entries[index]
        entry.status = EntryStatus.NO_SHOW

        if queue.doctor_status == DoctorStatus.READY and queue._count(EntryStatus.CALLED) == 0:
            queue.doctor_status = DoctorStatus.AVAILABLE

        if queue.auto_call_next:
            return queue, queue._call_next_in_place(_resolve_now(now))
        return queue, entry.model_copy()

    def cancel_entry(self, appointment_id: str) -> Tuple["Queue", QueueEntry]:
        """Remove a patient from the line; the entry stays as ``cancelled``."""
        index = self._require_index(appointment_id)
        ensure_entry_transition(appointment_id, self.entries[index].status, EntryStatus.CANCELLED)

        queue = self.model_copy(deep=True)
        entry = queue.entries[index]
        was_in_consultation = entry.status == EntryStatus.IN_CONSULTATION
        entry.status = EntryStatus.CANCELLED

        if was_in_consultation:
            queue._release_doctor()
        elif queue.doctor_status == DoctorStatus.READY and queue._count(EntryStatus.CALLED) == 0:
            queue.doctor_status = DoctorStatus.AVAILABLE
        return queue, entry.model_copy()

    def set_doctor_status(self, status: DoctorStatus) -> "Queue":
        status = DoctorStatus(status)
        current = self._current_entry()
        if current is not None:
            raise InvalidTransitionError(
                f"Appointment {current.appointment_id} is in consultation"
            )
        ensure_external_doctor_status(self.doctor_status, status)
        if status == self.doctor_status:
            return self

        queue = self.model_copy(deep=True)
        queue.doctor_status = status
        return queue

    def _release_doctor(self) -> None:
        self.current_patient_id = None
        self.current_appointment_id = None
        ensure_doctor_transition(self.doctor_status, DoctorStatus.AVAILABLE)
        self.doctor_status = DoctorStatus.AVAILABLE
