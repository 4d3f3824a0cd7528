from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class EntryStatus(str, Enum):
    WAITING = "waiting"
    CALLED = "called"
    IN_CONSULTATION = "in-consultation"
    COMPLETED = "completed"
    NO_SHOW = "no-show"
    CANCELLED = "cancelled"


class DoctorStatus(str, Enum):
    OFFLINE = "offline"
    AVAILABLE = "available"
    BUSY = "busy"
    BREAK = "break"
    READY = "ready"


class QueueEvent(str, Enum):
    CALLED = "called"
    IN_CONSULTATION = "in-consultation"


class QueueEntry(BaseModel):
    """One patient's record within a doctor's queue."""

    appointment_id: str
    patient_id: str
    patient_name: str
    scheduled_time: Optional[str] = None
    status: EntryStatus = EntryStatus.WAITING

    joined_at: datetime
    called_at: Optional[datetime] = None
    consultation_started_at: Optional[datetime] = None
    consultation_ended_at: Optional[datetime] = None

    estimated_wait_minutes: Optional[int] = None
    notes: Optional[str] = None


class HourlyStat(BaseModel):
    hour: int = Field(ge=0, le=23)
    avg_wait_minutes: float
    patient_count: int = 0


class QueueStats(BaseModel):
    waiting: int
    called: int
    in_consultation: int
    completed: int
    no_show: int
    cancelled: int
    total_in_queue: int
    avg_wait_minutes: int
    avg_consultation_time_minutes: float
    doctor_status: DoctorStatus


class QueueHistory(BaseModel):
    history: List[QueueEntry]
    completed: int
    no_show: int
    cancelled: int
    avg_consultation_time_minutes: float


class QueueStatusView(BaseModel):
    """Patient-facing view of where an appointment stands in the queue."""

    appointment_id: str
    position: Optional[int] = None
    estimated_wait_minutes: int = 0
    total_in_queue: int = 0
    doctor_status: DoctorStatus
    patient_status: str = "not-joined"
    is_your_turn: bool = False
    joined_at: Optional[datetime] = None
    called_at: Optional[datetime] = None


class ConsultationPattern(str, Enum):
    NO_DATA = "no_data"
    INSUFFICIENT_DATA = "insufficient_data"
    CONSISTENT = "consistent"
    VARIABLE = "variable"
    SPEEDING_UP = "speeding_up"
    SLOWING_DOWN = "slowing_down"


class Confidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Urgency(str, Enum):
    IMMEDIATE = "immediate"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


class ConsultationAnalysis(BaseModel):
    """How today's consultations have been running."""

    avg_duration_minutes: Optional[float] = None
    fastest_minutes: Optional[int] = None
    slowest_minutes: Optional[int] = None
    std_dev_minutes: Optional[int] = None
    sample_size: int = 0
    pattern: ConsultationPattern = ConsultationPattern.NO_DATA
    confidence: Confidence = Confidence.LOW


class WaitRecommendation(BaseModel):
    urgency: Urgency
    action: str
    message: str


class WaitPrediction(BaseModel):
    appointment_id: str
    position: int
    estimated_wait_minutes: int
    predicted_wait_minutes: int
    hour: int
    used_history: bool = False

    # Adjusted for how consultations have been running today
    adaptive_wait_minutes: int = 0
    analysis: ConsultationAnalysis = Field(default_factory=ConsultationAnalysis)
    recommendation: Optional[WaitRecommendation] = None


class AppointmentInfo(BaseModel):
    """Patient details supplied by the appointment store."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    patient_id: str = Field(
        validation_alias=AliasChoices("patient_id", "patientId", "userId")
    )
    patient_name: str = Field(
        validation_alias=AliasChoices("patient_name", "patientName")
    )
    scheduled_time: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("scheduled_time", "scheduledTime", "time"),
    )


class QueueKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    doctor_id: str
    day: date

    def __str__(self):
        return f"{self.doctor_id}:{self.day.isoformat()}"
