from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Date, Boolean, Float, Text, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..core.database import Base

class QueueRecord(Base):
    __tablename__ = "queues"
    __table_args__ = (
        UniqueConstraint("doctor_id", "day", name="uq_queues_doctor_day"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Aggregate key
    doctor_id = Column(String(64), nullable=False, index=True)
    day = Column(Date, nullable=False, index=True)

    # Doctor state
    doctor_status = Column(String(20), nullable=False, default="offline")
    current_patient_id = Column(String(64), nullable=True)
    current_appointment_id = Column(String(64), nullable=True)

    # Running statistics
    avg_consultation_time_minutes = Column(Float, nullable=False, default=15.0)
    total_consultations_completed_today = Column(Integer, nullable=False, default=0)

    # Configuration
    max_queue_size = Column(Integer, nullable=False, default=50)
    auto_call_next = Column(Boolean, nullable=False, default=True)

    # Optimistic concurrency stamp
    version = Column(Integer, nullable=False, default=1)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    entries = relationship(
        "QueueEntryRecord",
        back_populates="queue",
        order_by="QueueEntryRecord.seq",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<QueueRecord(id={self.id}, doctor_id='{self.doctor_id}', day='{self.day}', version={self.version})>"

class QueueEntryRecord(Base):
    __tablename__ = "queue_entries"
    __table_args__ = (
        UniqueConstraint("queue_id", "appointment_id", name="uq_queue_entries_appointment"),
    )

    id = Column(Integer, primary_key=True, index=True)
    queue_id = Column(Integer, ForeignKey("queues.id", ondelete="CASCADE"), nullable=False, index=True)

    # Join order within the queue
    seq = Column(Integer, nullable=False)

    # Patient information
    appointment_id = Column(String(64), nullable=False)
    patient_id = Column(String(64), nullable=False)
    patient_name = Column(String(200), nullable=False)
    scheduled_time = Column(String(20), nullable=True)

    status = Column(String(20), nullable=False, default="waiting")

    # Lifecycle timestamps
    joined_at = Column(DateTime, nullable=False)
    called_at = Column(DateTime, nullable=True)
    consultation_started_at = Column(DateTime, nullable=True)
    consultation_ended_at = Column(DateTime, nullable=True)

    estimated_wait_minutes = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    # Relationships
    queue = relationship("QueueRecord", back_populates="entries")

    def __repr__(self):
        return f"<QueueEntryRecord(id={self.id}, appointment_id='{self.appointment_id}', status='{self.status}')>"

class HourlyStatRecord(Base):
    __tablename__ = "hourly_stats"
    __table_args__ = (
        UniqueConstraint("doctor_id", "day", "hour", name="uq_hourly_stats_doctor_day_hour"),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(String(64), nullable=False, index=True)
    day = Column(Date, nullable=False)
    hour = Column(Integer, nullable=False)  # 0-23

    avg_wait_minutes = Column(Float, nullable=False)
    patient_count = Column(Integer, nullable=False, default=0)

    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<HourlyStatRecord(doctor_id='{self.doctor_id}', day='{self.day}', hour={self.hour})>"
