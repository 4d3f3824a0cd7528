"""
Queue command API.

Every mutating command runs load -> transition -> versioned save while
holding the per-(doctor, day) gate. Version conflicts and storage failures
are retried from a fresh load up to ``MAX_WRITE_ATTEMPTS`` times; domain
failures (not found, invalid transition, queue full) surface immediately.
Notifications go out after the save and never undo it.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional, Tuple, TypeVar

from ..core.clock import utcnow
from ..core.config import settings
from ..core.errors import PersistenceFailureError, VersionConflictError
from ..schemas.queue import (
    DoctorStatus,
    EntryStatus,
    HourlyStat,
    QueueEntry,
    QueueEvent,
    QueueHistory,
    QueueKey,
    QueueStats,
    QueueStatusView,
    WaitPrediction,
)
from . import wait_estimator
from .appointments import AppointmentLookup
from .gate import KeyedLock
from .notifications import QueueNotifier
from .queue_aggregate import Queue
from .repository import QueueRepository

logger = logging.getLogger(__name__)

R = TypeVar("R")
Transition = Callable[[Queue, datetime], Tuple[Queue, R]]


class QueueService:
    def __init__(
        self,
        repository: QueueRepository,
        appointments: Optional[AppointmentLookup] = None,
        notifier: Optional[QueueNotifier] = None,
        gate: Optional[KeyedLock] = None,
        clock: Callable[[], datetime] = utcnow,
        max_write_attempts: Optional[int] = None,
    ):
        self.repository = repository
        self.appointments = appointments
        self.notifier = notifier or QueueNotifier()
        self.gate = gate or KeyedLock()
        self.clock = clock
        self.max_write_attempts = max(1, max_write_attempts or settings.MAX_WRITE_ATTEMPTS)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _mutate(self, doctor_id: str, day: date, action: str, transition: Transition) -> R:
        """Apply ``transition`` to the stored queue under the key's gate."""
        key = QueueKey(doctor_id=doctor_id, day=day)
        last_error = None

        for attempt in range(1, self.max_write_attempts + 1):
            try:
                with self.gate.hold(key):
                    queue = self.repository.load_or_create(doctor_id, day)
                    updated, result = transition(queue, self.clock())
                    if updated is not queue:
                        saved = self.repository.save_if_unchanged(updated, queue.version)
                        logger.info(f"{action} on queue {key} committed at version {saved.version}")
                return result
            except (VersionConflictError, PersistenceFailureError) as exc:
                last_error = exc
                logger.warning(
                    f"{action} on queue {key} failed "
                    f"(attempt {attempt}/{self.max_write_attempts}): {exc.detail}"
                )

        raise last_error

    def _snapshot(self, doctor_id: str, day: date) -> Queue:
        return self.repository.load_or_create(doctor_id, day)

    def _notify(self, appointment_id: str, event: QueueEvent) -> None:
        try:
            self.notifier.notify(appointment_id, event)
        except Exception:
            logger.exception(f"Failed to deliver '{event.value}' for appointment {appointment_id}")

    def _notify_if_called(self, entry: Optional[QueueEntry]) -> None:
        if entry is not None and entry.status == EntryStatus.CALLED:
            self._notify(entry.appointment_id, QueueEvent.CALLED)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def add_to_queue(
        self,
        doctor_id: str,
        day: date,
        appointment_id: str,
        patient_id: str,
        patient_name: str,
        scheduled_time: Optional[str] = None,
    ) -> QueueEntry:
        """Add a patient to the queue; repeated calls return the same entry."""
        return self._mutate(
            doctor_id, day, "add_to_queue",
            lambda queue, now: queue.add_to_queue(
                appointment_id, patient_id, patient_name, scheduled_time, now=now
            ),
        )

    def join_queue(self, doctor_id: str, day: date, appointment_id: str) -> QueueEntry:
        """Add a patient using the details held by the appointment store."""
        existing = self._snapshot(doctor_id, day).get_entry(appointment_id)
        if existing is not None:
            return existing

        if self.appointments is None:
            raise RuntimeError("No appointment lookup configured")
        appointment = self.appointments.get_appointment(appointment_id)
        return self.add_to_queue(
            doctor_id,
            day,
            appointment_id,
            appointment.patient_id,
            appointment.patient_name,
            appointment.scheduled_time,
        )

    def call_next_patient(self, doctor_id: str, day: date) -> Optional[QueueEntry]:
        entry = self._mutate(
            doctor_id, day, "call_next_patient",
            lambda queue, now: queue.call_next_patient(now=now),
        )
        if entry is None:
            logger.info(f"No patients waiting for doctor {doctor_id} on {day}")
        self._notify_if_called(entry)
        return entry

    def start_consultation(self, doctor_id: str, day: date, appointment_id: str) -> QueueEntry:
        entry = self._mutate(
            doctor_id, day, "start_consultation",
            lambda queue, now: queue.start_consultation(appointment_id, now=now),
        )
        self._notify(entry.appointment_id, QueueEvent.IN_CONSULTATION)
        return entry

    def end_consultation(
        self,
        doctor_id: str,
        day: date,
        appointment_id: str,
        notes: Optional[str] = None,
    ) -> Optional[QueueEntry]:
        """
        Complete a consultation.

        Returns the auto-called next patient (or None when nobody is
        waiting) if the queue auto-calls, otherwise the completed entry.
        """
        entry = self._mutate(
            doctor_id, day, "end_consultation",
            lambda queue, now: queue.end_consultation(appointment_id, notes=notes, now=now),
        )
        self._notify_if_called(entry)
        return entry

    def mark_no_show(self, doctor_id: str, day: date, appointment_id: str) -> Optional[QueueEntry]:
        entry = self._mutate(
            doctor_id, day, "mark_no_show",
            lambda queue, now: queue.mark_no_show(appointment_id, now=now),
        )
        self._notify_if_called(entry)
        return entry

    def cancel_entry(self, doctor_id: str, day: date, appointment_id: str) -> QueueEntry:
        return self._mutate(
            doctor_id, day, "cancel_entry",
            lambda queue, now: queue.cancel_entry(appointment_id),
        )

    def set_doctor_status(self, doctor_id: str, day: date, status: DoctorStatus) -> DoctorStatus:
        def transition(queue: Queue, now: datetime):
            updated = queue.set_doctor_status(status)
            return updated, updated.doctor_status

        return self._mutate(doctor_id, day, "set_doctor_status", transition)

    def record_hourly_stats(self, doctor_id: str, day: date) -> List[HourlyStat]:
        """Roll the day's call waits up by hour and store them for predictions."""
        stats = wait_estimator.build_hourly_stats(self._snapshot(doctor_id, day).entries)
        self.repository.save_hourly_stats(doctor_id, day, stats)
        logger.info(f"Recorded {len(stats)} hourly stat(s) for doctor {doctor_id} on {day}")
        return stats

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_entry(self, doctor_id: str, day: date, appointment_id: str) -> Optional[QueueEntry]:
        return self._snapshot(doctor_id, day).get_entry(appointment_id)

    def get_queue_position(self, doctor_id: str, day: date, appointment_id: str) -> int:
        return self._snapshot(doctor_id, day).get_queue_position(appointment_id)

    def get_estimated_wait(self, doctor_id: str, day: date, appointment_id: str) -> int:
        return self._snapshot(doctor_id, day).get_estimated_wait(appointment_id, now=self.clock())

    def get_stats(self, doctor_id: str, day: date) -> QueueStats:
        return self._snapshot(doctor_id, day).get_stats()

    def get_active_entries(self, doctor_id: str, day: date) -> List[QueueEntry]:
        return self._snapshot(doctor_id, day).get_active_entries()

    def get_history(self, doctor_id: str, day: date) -> QueueHistory:
        return self._snapshot(doctor_id, day).get_history()

    def get_status_view(self, doctor_id: str, day: date, appointment_id: str) -> QueueStatusView:
        return self._snapshot(doctor_id, day).get_status_view(appointment_id, now=self.clock())

    def predict_wait(
        self,
        doctor_id: str,
        day: date,
        appointment_id: str,
        target_hour: Optional[int] = None,
        history_day: Optional[date] = None,
    ) -> WaitPrediction:
        """
        Wait estimate for an appointment, blended with the hourly history of
        ``history_day`` (by default the same weekday one week earlier).

        Also carries an adaptive estimate driven by today's consultation
        pattern and the hour of day, with a recommendation for the patient.
        """
        now = self.clock()
        queue = self._snapshot(doctor_id, day)
        position = queue.get_queue_position(appointment_id)
        hour = target_hour if target_hour is not None else now.hour
        hourly_stats = self.repository.load_hourly_stats(
            doctor_id, history_day or day - timedelta(days=7)
        )

        predicted = 0
        if position > 0:
            predicted = wait_estimator.predict_wait_time(
                position - 1,
                queue.avg_consultation_time_minutes,
                hourly_stats,
                hour,
            )

        analysis = queue.get_consultation_analysis()
        avg_minutes = analysis.avg_duration_minutes or queue.avg_consultation_time_minutes
        adaptive = wait_estimator.adaptive_wait_time(
            position,
            avg_minutes,
            analysis,
            hour,
            queue.remaining_consultation_minutes(avg_minutes, now),
        )

        return WaitPrediction(
            appointment_id=appointment_id,
            position=position,
            estimated_wait_minutes=queue.get_estimated_wait(appointment_id, now=now),
            predicted_wait_minutes=predicted,
            hour=hour,
            used_history=position > 0 and wait_estimator.find_hourly_stat(hourly_stats, hour) is not None,
            adaptive_wait_minutes=adaptive,
            analysis=analysis,
            recommendation=wait_estimator.recommend(adaptive, position) if position > 0 else None,
        )
