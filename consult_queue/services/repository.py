"""
Queue persistence.

A repository hands out private copies of the Queue aggregate and stores new
states with an optimistic version check: ``save_if_unchanged`` succeeds only
if nobody else saved the same (doctor, day) queue since it was loaded.
"""
import logging
import threading
from abc import ABC, abstractmethod
from datetime import date
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..core.config import settings
from ..core.database import get_session_factory
from ..core.errors import PersistenceFailureError, VersionConflictError
from ..models.queue import HourlyStatRecord, QueueEntryRecord, QueueRecord
from ..schemas.queue import DoctorStatus, EntryStatus, HourlyStat, QueueEntry
from .queue_aggregate import Queue

logger = logging.getLogger(__name__)


class QueueRepository(ABC):
    """Storage contract for Queue aggregates and their hourly statistics."""

    def __init__(
        self,
        default_avg_consultation_minutes: Optional[float] = None,
        default_max_queue_size: Optional[int] = None,
        default_auto_call_next: Optional[bool] = None,
    ):
        self.default_avg_consultation_minutes = (
            default_avg_consultation_minutes
            if default_avg_consultation_minutes is not None
            else settings.DEFAULT_AVG_CONSULTATION_MINUTES
        )
        self.default_max_queue_size = (
            default_max_queue_size
            if default_max_queue_size is not None
            else settings.DEFAULT_MAX_QUEUE_SIZE
        )
        self.default_auto_call_next = (
            default_auto_call_next
            if default_auto_call_next is not None
            else settings.DEFAULT_AUTO_CALL_NEXT
        )

    def new_queue(self, doctor_id: str, day: date) -> Queue:
        """An unsaved queue (version 0) seeded with the configured defaults."""
        return Queue(
            doctor_id=doctor_id,
            day=day,
            avg_consultation_time_minutes=self.default_avg_consultation_minutes,
            max_queue_size=self.default_max_queue_size,
            auto_call_next=self.default_auto_call_next,
        )

    @abstractmethod
    def load_or_create(self, doctor_id: str, day: date) -> Queue:
        raise NotImplementedError

    @abstractmethod
    def save_if_unchanged(self, queue: Queue, expected_version: int) -> Queue:
        raise NotImplementedError

    @abstractmethod
    def load_hourly_stats(self, doctor_id: str, day: date) -> List[HourlyStat]:
        raise NotImplementedError

    @abstractmethod
    def save_hourly_stats(self, doctor_id: str, day: date, stats: Sequence[HourlyStat]) -> None:
        raise NotImplementedError


class InMemoryQueueRepository(QueueRepository):
    """Process-local storage, used in tests and single-process deployments."""

    def __init__(self, **defaults):
        super().__init__(**defaults)
        self._lock = threading.Lock()
        self._queues: Dict[Tuple[str, date], Queue] = {}
        self._hourly_stats: Dict[Tuple[str, date], List[HourlyStat]] = {}

    def load_or_create(self, doctor_id: str, day: date) -> Queue:
        with self._lock:
            stored = self._queues.get((doctor_id, day))
            if stored is None:
                return self.new_queue(doctor_id, day)
            return stored.model_copy(deep=True)

    def save_if_unchanged(self, queue: Queue, expected_version: int) -> Queue:
        key = (queue.doctor_id, queue.day)
        with self._lock:
            stored = self._queues.get(key)
            current_version = stored.version if stored is not None else 0
            if current_version != expected_version:
                raise VersionConflictError(
                    f"Queue {queue.key} is at version {current_version}, "
                    f"expected {expected_version}"
                )
            saved = queue.model_copy(deep=True, update={"version": expected_version + 1})
            self._queues[key] = saved
            return saved.model_copy(deep=True)

    def load_hourly_stats(self, doctor_id: str, day: date) -> List[HourlyStat]:
        with self._lock:
            return [stat.model_copy() for stat in self._hourly_stats.get((doctor_id, day), [])]

    def save_hourly_stats(self, doctor_id: str, day: date, stats: Sequence[HourlyStat]) -> None:
        with self._lock:
            self._hourly_stats[(doctor_id, day)] = [stat.model_copy() for stat in stats]


class SqlAlchemyQueueRepository(QueueRepository):
    """Relational storage: one ``queues`` row per key plus its entry rows."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None, **defaults):
        super().__init__(**defaults)
        self.session_factory = session_factory or get_session_factory()

    def load_or_create(self, doctor_id: str, day: date) -> Queue:
        session = self.session_factory()
        try:
            # Single statement so the queue row and its entries come from one snapshot
            record = session.query(QueueRecord).options(
                joinedload(QueueRecord.entries)
            ).filter(
                QueueRecord.doctor_id == doctor_id,
                QueueRecord.day == day,
            ).one_or_none()

            if record is None:
                return self.new_queue(doctor_id, day)
            return self._to_queue(record)
        except SQLAlchemyError as exc:
            logger.error(f"Failed to load queue {doctor_id}:{day}: {exc}")
            raise PersistenceFailureError(f"Failed to load queue: {exc}") from exc
        finally:
            session.close()

    def save_if_unchanged(self, queue: Queue, expected_version: int) -> Queue:
        new_version = expected_version + 1
        session = self.session_factory()
        try:
            if expected_version == 0:
                record = QueueRecord(
                    doctor_id=queue.doctor_id,
                    day=queue.day,
                    version=new_version,
                    **self._queue_columns(queue),
                )
                session.add(record)
                session.flush()
            else:
                updated = session.query(QueueRecord).filter(
                    QueueRecord.doctor_id == queue.doctor_id,
                    QueueRecord.day == queue.day,
                    QueueRecord.version == expected_version,
                ).update(
                    dict(self._queue_columns(queue), version=new_version),
                    synchronize_session=False,
                )
                if updated == 0:
                    session.rollback()
                    raise VersionConflictError(
                        f"Queue {queue.key} changed since version {expected_version}"
                    )

                record = session.query(QueueRecord).filter(
                    QueueRecord.doctor_id == queue.doctor_id,
                    QueueRecord.day == queue.day,
                ).one()
                session.query(QueueEntryRecord).filter(
                    QueueEntryRecord.queue_id == record.id
                ).delete(synchronize_session=False)

            session.add_all([
                self._entry_record(record.id, seq, entry)
                for seq, entry in enumerate(queue.entries)
            ])
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise VersionConflictError(
                f"Queue {queue.key} was created concurrently"
            ) from exc
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error(f"Failed to save queue {queue.key}: {exc}")
            raise PersistenceFailureError(f"Failed to save queue: {exc}") from exc
        finally:
            session.close()

        return queue.model_copy(deep=True, update={"version": new_version})

    def load_hourly_stats(self, doctor_id: str, day: date) -> List[HourlyStat]:
        session = self.session_factory()
        try:
            records = session.query(HourlyStatRecord).filter(
                HourlyStatRecord.doctor_id == doctor_id,
                HourlyStatRecord.day == day,
            ).order_by(HourlyStatRecord.hour).all()

            return [
                HourlyStat(
                    hour=record.hour,
                    avg_wait_minutes=record.avg_wait_minutes,
                    patient_count=record.patient_count,
                )
                for record in records
            ]
        except SQLAlchemyError as exc:
            raise PersistenceFailureError(f"Failed to load hourly stats: {exc}") from exc
        finally:
            session.close()

    def save_hourly_stats(self, doctor_id: str, day: date, stats: Sequence[HourlyStat]) -> None:
        session = self.session_factory()
        try:
            session.query(HourlyStatRecord).filter(
                HourlyStatRecord.doctor_id == doctor_id,
                HourlyStatRecord.day == day,
            ).delete(synchronize_session=False)

            session.add_all([
                HourlyStatRecord(
                    doctor_id=doctor_id,
                    day=day,
                    hour=stat.hour,
                    avg_wait_minutes=stat.avg_wait_minutes,
                    patient_count=stat.patient_count,
                )
                for stat in stats
            ])
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise PersistenceFailureError(f"Failed to save hourly stats: {exc}") from exc
        finally:
            session.close()

    @staticmethod
    def _queue_columns(queue: Queue) -> dict:
        return {
            "doctor_status": queue.doctor_status.value,
            "current_patient_id": queue.current_patient_id,
            "current_appointment_id": queue.current_appointment_id,
            "avg_consultation_time_minutes": queue.avg_consultation_time_minutes,
            "total_consultations_completed_today": queue.total_consultations_completed_today,
            "max_queue_size": queue.max_queue_size,
            "auto_call_next": queue.auto_call_next,
        }

    @staticmethod
    def _entry_record(queue_id: int, seq: int, entry: QueueEntry) -> QueueEntryRecord:
        return QueueEntryRecord(
            queue_id=queue_id,
            seq=seq,
            appointment_id=entry.appointment_id,
            patient_id=entry.patient_id,
            patient_name=entry.patient_name,
            scheduled_time=entry.scheduled_time,
            status=entry.status.value,
            joined_at=entry.joined_at,
            called_at=entry.called_at,
            consultation_started_at=entry.consultation_started_at,
            consultation_ended_at=entry.consultation_ended_at,
            estimated_wait_minutes=entry.estimated_wait_minutes,
            notes=entry.notes,
        )

    @staticmethod
    def _to_queue(record: QueueRecord) -> Queue:
        return Queue(
            doctor_id=record.doctor_id,
            day=record.day,
            doctor_status=DoctorStatus(record.doctor_status),
            current_patient_id=record.current_patient_id,
            current_appointment_id=record.current_appointment_id,
            avg_consultation_time_minutes=record.avg_consultation_time_minutes,
            total_consultations_completed_today=record.total_consultations_completed_today,
            max_queue_size=record.max_queue_size,
            auto_call_next=record.auto_call_next,
            version=record.version,
            entries=[
                QueueEntry(
                    appointment_id=entry.appointment_id,
                    patient_id=entry.patient_id,
                    patient_name=entry.patient_name,
                    scheduled_time=entry.scheduled_time,
                    status=EntryStatus(entry.status),
                    joined_at=entry.joined_at,
                    called_at=entry.called_at,
                    consultation_started_at=entry.consultation_started_at,
                    consultation_ended_at=entry.consultation_ended_at,
                    estimated_wait_minutes=entry.estimated_wait_minutes,
                    notes=entry.notes,
                )
                for entry in record.entries
            ],
        )
