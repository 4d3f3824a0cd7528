"""
Wait time estimation.

Position-based estimates for a live queue, predictions blended with
historical per-hour averages, and estimates adapted to how today's
consultations have been running. Everything here is side-effect free.
"""
import math
import statistics
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from ..schemas.queue import (
    Confidence,
    ConsultationAnalysis,
    ConsultationPattern,
    HourlyStat,
    QueueEntry,
    Urgency,
    WaitRecommendation,
)


def round_minutes(value: float) -> int:
    """Round to the nearest whole minute, halves rounding up."""
    return int(math.floor(value + 0.5))


def minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60.0


def remaining_consultation_minutes(
    avg_consultation_time_minutes: float,
    started_at: Optional[datetime],
    now: datetime,
) -> float:
    """Expected minutes left in the consultation currently in progress."""
    if started_at is None:
        return 0.0
    elapsed = minutes_between(started_at, now)
    return max(0.0, avg_consultation_time_minutes - elapsed)


def position_wait(
    position: int,
    avg_consultation_time_minutes: float,
    remaining_current_minutes: float = 0.0,
) -> int:
    """Estimate the wait for a queue position (1 = next in line)."""
    if position <= 0:
        return 0
    wait = (position - 1) * avg_consultation_time_minutes + remaining_current_minutes
    return max(0, round_minutes(wait))


def find_hourly_stat(hourly_stats: Iterable[HourlyStat], hour: int) -> Optional[HourlyStat]:
    for stat in hourly_stats:
        if stat.hour == hour:
            return stat
    return None


def predict_wait_time(
    queue_length: int,
    avg_consultation_time_minutes: float,
    hourly_stats: Sequence[HourlyStat],
    target_hour: int,
) -> int:
    """
    Predict a wait from queue length, biased by history for the target hour.

    With a recorded average for ``target_hour`` the result is the plain mean
    of the live estimate and the historical one.
    """
    base = queue_length * avg_consultation_time_minutes
    stat = find_hourly_stat(hourly_stats, target_hour)
    if stat is not None:
        return round_minutes((base + stat.avg_wait_minutes) / 2)
    return round_minutes(base)


def incremental_mean(current_mean: float, count: int, sample: float) -> float:
    return (current_mean * count + sample) / (count + 1)


def build_hourly_stats(entries: Iterable[QueueEntry]) -> List[HourlyStat]:
    """Roll up how long patients waited to be called, by the hour they joined."""
    waits: Dict[int, List[float]] = defaultdict(list)
    for entry in entries:
        if entry.called_at is None:
            continue
        waits[entry.joined_at.hour].append(
            max(0.0, minutes_between(entry.joined_at, entry.called_at))
        )

    return [
        HourlyStat(
            hour=hour,
            avg_wait_minutes=sum(samples) / len(samples),
            patient_count=len(samples),
        )
        for hour, samples in sorted(waits.items())
    ]


# Consultations outside these bounds are treated as bad timing data
MAX_CONSULTATION_MINUTES = 120.0
MAX_COMPLETION_GAP_MINUTES = 60.0

TRANSITION_MINUTES_PER_PATIENT = 1.5

PATTERN_FACTORS: Dict[ConsultationPattern, float] = {
    ConsultationPattern.SPEEDING_UP: 0.9,
    ConsultationPattern.SLOWING_DOWN: 1.15,
    ConsultationPattern.VARIABLE: 1.1,
}


def consultation_durations(completed: Sequence[QueueEntry]) -> List[float]:
    """
    Durations in minutes of finished consultations, in queue order.

    Entries without usable start/end stamps fall back to the gaps between
    consecutive completion times.
    """
    durations = []
    for entry in completed:
        if entry.consultation_started_at is None or entry.consultation_ended_at is None:
            continue
        duration = minutes_between(entry.consultation_started_at, entry.consultation_ended_at)
        if 0 < duration < MAX_CONSULTATION_MINUTES:
            durations.append(duration)

    if durations:
        return durations

    ended = sorted(
        entry.consultation_ended_at for entry in completed if entry.consultation_ended_at is not None
    )
    for previous, current in zip(ended, ended[1:]):
        gap = minutes_between(previous, current)
        if 0 < gap < MAX_COMPLETION_GAP_MINUTES:
            durations.append(gap)
    return durations


def _confidence(sample_size: int) -> Confidence:
    if sample_size >= 5:
        return Confidence.HIGH
    if sample_size >= 3:
        return Confidence.MEDIUM
    return Confidence.LOW


def classify_durations(durations: Sequence[float]) -> ConsultationPattern:
    """
    Spread above half the mean is ``variable``. Otherwise, with three or more
    samples, a second half more than 15% faster or slower than the first
    marks a trend.
    """
    mean = sum(durations) / len(durations)
    if statistics.pstdev(durations) > mean * 0.5:
        return ConsultationPattern.VARIABLE

    if len(durations) >= 3:
        middle = len(durations) // 2
        first_half = statistics.mean(durations[:middle])
        second_half = statistics.mean(durations[middle:])
        if second_half < first_half * 0.85:
            return ConsultationPattern.SPEEDING_UP
        if second_half > first_half * 1.15:
            return ConsultationPattern.SLOWING_DOWN
    return ConsultationPattern.CONSISTENT


def analyze_consultation_patterns(completed: Sequence[QueueEntry]) -> ConsultationAnalysis:
    if not completed:
        return ConsultationAnalysis(pattern=ConsultationPattern.NO_DATA)

    durations = consultation_durations(completed)
    if not durations:
        return ConsultationAnalysis(pattern=ConsultationPattern.INSUFFICIENT_DATA)

    return ConsultationAnalysis(
        avg_duration_minutes=sum(durations) / len(durations),
        fastest_minutes=round_minutes(min(durations)),
        slowest_minutes=round_minutes(max(durations)),
        std_dev_minutes=round_minutes(statistics.pstdev(durations)),
        sample_size=len(durations),
        pattern=classify_durations(durations),
        confidence=_confidence(len(durations)),
    )


def time_of_day_factor(hour: int) -> float:
    # Lunch hours run slow, evenings fast
    if 12 <= hour < 14:
        return 1.1
    if hour >= 17:
        return 0.95
    return 1.0


def adaptive_wait_time(
    position: int,
    avg_consultation_time_minutes: float,
    analysis: ConsultationAnalysis,
    hour: int,
    remaining_current_minutes: float = 0.0,
) -> int:
    """Position wait scaled by today's pattern and the hour, plus changeover time."""
    if position <= 0:
        return 0

    base = (position - 1) * avg_consultation_time_minutes + remaining_current_minutes
    factor = PATTERN_FACTORS.get(analysis.pattern, 1.0) * time_of_day_factor(hour)
    transition = (position - 1) * TRANSITION_MINUTES_PER_PATIENT
    return max(0, round_minutes(base * factor + transition))


def recommend(wait_minutes: int, position: int) -> WaitRecommendation:
    if position == 1:
        return WaitRecommendation(
            urgency=Urgency.IMMEDIATE,
            action="proceed_now",
            message="It's your turn. Please proceed to the consultation room.",
        )
    if wait_minutes <= 5:
        return WaitRecommendation(
            urgency=Urgency.HIGH,
            action="be_ready",
            message="Almost your turn. Please be ready at the clinic.",
        )
    if wait_minutes <= 15:
        return WaitRecommendation(
            urgency=Urgency.MEDIUM,
            action="leave_now",
            message="Time to head to the clinic if you're not there yet.",
        )
    if wait_minutes <= 30:
        return WaitRecommendation(
            urgency=Urgency.LOW,
            action="prepare",
            message="Start preparing to leave in the next 10-15 minutes.",
        )
    if wait_minutes <= 60:
        return WaitRecommendation(
            urgency=Urgency.NONE,
            action="wait",
            message="You have some time. We'll notify you when to leave.",
        )
    return WaitRecommendation(
        urgency=Urgency.NONE,
        action="wait",
        message="Relax. We'll send you updates as your turn approaches.",
    )
