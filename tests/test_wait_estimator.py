from datetime import datetime, timedelta

import pytest

from consult_queue.schemas.queue import (
    Confidence,
    ConsultationAnalysis,
    ConsultationPattern,
    EntryStatus,
    HourlyStat,
    QueueEntry,
    Urgency,
)
from consult_queue.services import wait_estimator


def entry(appointment_id, joined_at, called_at=None):
    return QueueEntry(
        appointment_id=appointment_id,
        patient_id=f"P-{appointment_id}",
        patient_name="Patient",
        joined_at=joined_at,
        called_at=called_at,
        status=EntryStatus.CALLED if called_at else EntryStatus.WAITING,
    )


class TestPredictWaitTime:

    def test_without_history_uses_base(self):
        assert wait_estimator.predict_wait_time(3, 10, [], 9) == 30

    def test_blends_with_matching_hour(self):
        """Historical average for the hour is averaged with the live estimate."""
        stats = [HourlyStat(hour=9, avg_wait_minutes=20, patient_count=4)]
        assert wait_estimator.predict_wait_time(3, 10, stats, 9) == 25

    def test_ignores_other_hours(self):
        stats = [HourlyStat(hour=14, avg_wait_minutes=90, patient_count=4)]
        assert wait_estimator.predict_wait_time(2, 15, stats, 9) == 30

    def test_rounds_half_up(self):
        stats = [HourlyStat(hour=10, avg_wait_minutes=0, patient_count=1)]
        assert wait_estimator.predict_wait_time(1, 5, stats, 10) == 3

    def test_empty_queue(self):
        stats = [HourlyStat(hour=9, avg_wait_minutes=12, patient_count=2)]
        assert wait_estimator.predict_wait_time(0, 15, stats, 9) == 6


class TestPositionWait:

    @pytest.mark.parametrize("position, remaining, expected", [
        (0, 0.0, 0),
        (-1, 10.0, 0),
        (1, 0.0, 0),
        (3, 0.0, 30),
        (1, 4.4, 4),
        (2, 7.5, 23),
    ])
    def test_position_wait(self, position, remaining, expected):
        assert wait_estimator.position_wait(position, 15, remaining) == expected

    def test_remaining_consultation(self):
        started = datetime(2026, 10, 17, 9, 0)

        assert wait_estimator.remaining_consultation_minutes(15, None, started) == 0
        assert wait_estimator.remaining_consultation_minutes(
            15, started, datetime(2026, 10, 17, 9, 6)
        ) == pytest.approx(9)
        assert wait_estimator.remaining_consultation_minutes(
            15, started, datetime(2026, 10, 17, 10, 0)
        ) == 0


class TestStatistics:

    def test_incremental_mean(self):
        assert wait_estimator.incremental_mean(15, 0, 10) == 10
        assert wait_estimator.incremental_mean(10, 1, 20) == 15

    def test_build_hourly_stats(self):
        """Waits are grouped by the hour the patient joined."""
        entries = [
            entry("A1", datetime(2026, 10, 17, 9, 0), datetime(2026, 10, 17, 9, 10)),
            entry("A2", datetime(2026, 10, 17, 9, 30), datetime(2026, 10, 17, 9, 50)),
            entry("A3", datetime(2026, 10, 17, 10, 5), datetime(2026, 10, 17, 10, 10)),
            entry("A4", datetime(2026, 10, 17, 10, 20)),
        ]
        stats = wait_estimator.build_hourly_stats(entries)

        assert [stat.hour for stat in stats] == [9, 10]
        assert stats[0].avg_wait_minutes == pytest.approx(15)
        assert stats[0].patient_count == 2
        assert stats[1].avg_wait_minutes == pytest.approx(5)
        assert stats[1].patient_count == 1

    def test_build_hourly_stats_without_calls(self):
        assert wait_estimator.build_hourly_stats([entry("A1", datetime(2026, 10, 17, 9, 0))]) == []


def completed_entries(*durations, gap=2):
    """Back-to-back completed consultations starting at 09:00."""
    entries = []
    start = datetime(2026, 10, 17, 9, 0)
    for index, duration in enumerate(durations):
        entries.append(QueueEntry(
            appointment_id=f"A{index}",
            patient_id=f"P{index}",
            patient_name="Patient",
            joined_at=datetime(2026, 10, 17, 8, 30),
            status=EntryStatus.COMPLETED,
            consultation_started_at=start,
            consultation_ended_at=start + timedelta(minutes=duration),
        ))
        start += timedelta(minutes=duration + gap)
    return entries


class TestConsultationPatterns:

    def test_no_completed_consultations(self):
        analysis = wait_estimator.analyze_consultation_patterns([])

        assert analysis.pattern == ConsultationPattern.NO_DATA
        assert analysis.avg_duration_minutes is None
        assert analysis.confidence == Confidence.LOW

    def test_consistent(self):
        analysis = wait_estimator.analyze_consultation_patterns(completed_entries(10, 10, 10, 10))

        assert analysis.pattern == ConsultationPattern.CONSISTENT
        assert analysis.avg_duration_minutes == pytest.approx(10)
        assert analysis.fastest_minutes == 10
        assert analysis.slowest_minutes == 10
        assert analysis.std_dev_minutes == 0
        assert analysis.sample_size == 4
        assert analysis.confidence == Confidence.MEDIUM

    def test_variable(self):
        """A spread above half the mean outweighs any trend."""
        analysis = wait_estimator.analyze_consultation_patterns(completed_entries(5, 30))

        assert analysis.pattern == ConsultationPattern.VARIABLE
        assert analysis.fastest_minutes == 5
        assert analysis.slowest_minutes == 30
        assert analysis.confidence == Confidence.LOW

    def test_speeding_up(self):
        analysis = wait_estimator.analyze_consultation_patterns(completed_entries(20, 20, 15, 15))

        assert analysis.pattern == ConsultationPattern.SPEEDING_UP
        assert analysis.confidence == Confidence.MEDIUM

    def test_slowing_down(self):
        analysis = wait_estimator.analyze_consultation_patterns(completed_entries(10, 10, 12, 14, 14))

        assert analysis.pattern == ConsultationPattern.SLOWING_DOWN
        assert analysis.avg_duration_minutes == pytest.approx(12)
        assert analysis.confidence == Confidence.HIGH

    def test_two_samples_show_no_trend(self):
        analysis = wait_estimator.analyze_consultation_patterns(completed_entries(10, 13))

        assert analysis.pattern == ConsultationPattern.CONSISTENT

    def test_implausible_durations_are_ignored(self):
        analysis = wait_estimator.analyze_consultation_patterns(completed_entries(10, 150))

        assert analysis.sample_size == 1
        assert analysis.avg_duration_minutes == pytest.approx(10)

    def test_completion_gaps_stand_in_for_durations(self):
        """Zero-length timings fall back to the time between completions."""
        analysis = wait_estimator.analyze_consultation_patterns(completed_entries(0, 0, gap=12))

        assert analysis.sample_size == 1
        assert analysis.avg_duration_minutes == pytest.approx(12)

    def test_insufficient_data(self):
        analysis = wait_estimator.analyze_consultation_patterns(completed_entries(0))

        assert analysis.pattern == ConsultationPattern.INSUFFICIENT_DATA
        assert analysis.avg_duration_minutes is None


class TestAdaptiveWait:

    @pytest.mark.parametrize("pattern, expected", [
        (ConsultationPattern.CONSISTENT, 23),
        (ConsultationPattern.NO_DATA, 23),
        (ConsultationPattern.SPEEDING_UP, 21),
        (ConsultationPattern.SLOWING_DOWN, 26),
        (ConsultationPattern.VARIABLE, 25),
    ])
    def test_pattern_factor(self, pattern, expected):
        analysis = ConsultationAnalysis(pattern=pattern)
        assert wait_estimator.adaptive_wait_time(3, 10, analysis, 9) == expected

    @pytest.mark.parametrize("hour, expected", [
        (9, 23),
        (12, 25),
        (13, 25),
        (14, 23),
        (18, 22),
    ])
    def test_time_of_day_factor(self, hour, expected):
        analysis = ConsultationAnalysis(pattern=ConsultationPattern.CONSISTENT)
        assert wait_estimator.adaptive_wait_time(3, 10, analysis, hour) == expected

    def test_next_in_line_waits_for_current_consultation(self):
        analysis = ConsultationAnalysis()

        assert wait_estimator.adaptive_wait_time(1, 10, analysis, 9, 7.6) == 8
        assert wait_estimator.adaptive_wait_time(0, 10, analysis, 9, 7.6) == 0
        assert wait_estimator.adaptive_wait_time(-1, 10, analysis, 9) == 0


class TestRecommendation:

    @pytest.mark.parametrize("wait, position, urgency, action", [
        (40, 1, Urgency.IMMEDIATE, "proceed_now"),
        (5, 2, Urgency.HIGH, "be_ready"),
        (15, 3, Urgency.MEDIUM, "leave_now"),
        (30, 3, Urgency.LOW, "prepare"),
        (60, 4, Urgency.NONE, "wait"),
        (61, 5, Urgency.NONE, "wait"),
    ])
    def test_bands(self, wait, position, urgency, action):
        recommendation = wait_estimator.recommend(wait, position)

        assert recommendation.urgency == urgency
        assert recommendation.action == action
        assert recommendation.message
