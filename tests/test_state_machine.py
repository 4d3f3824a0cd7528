import pytest

from consult_queue.core.errors import InvalidTransitionError
from consult_queue.schemas.queue import DoctorStatus, EntryStatus
from consult_queue.services import state_machine


class TestEntryTransitions:

    @pytest.mark.parametrize("current, target", [
        (EntryStatus.WAITING, EntryStatus.CALLED),
        (EntryStatus.WAITING, EntryStatus.IN_CONSULTATION),
        (EntryStatus.CALLED, EntryStatus.IN_CONSULTATION),
        (EntryStatus.IN_CONSULTATION, EntryStatus.COMPLETED),
        (EntryStatus.WAITING, EntryStatus.NO_SHOW),
        (EntryStatus.CALLED, EntryStatus.NO_SHOW),
        (EntryStatus.IN_CONSULTATION, EntryStatus.CANCELLED),
    ])
    def test_allowed(self, current, target):
        state_machine.ensure_entry_transition("A1", current, target)

    @pytest.mark.parametrize("current, target", [
        (EntryStatus.WAITING, EntryStatus.COMPLETED),
        (EntryStatus.CALLED, EntryStatus.WAITING),
        (EntryStatus.IN_CONSULTATION, EntryStatus.NO_SHOW),
        (EntryStatus.IN_CONSULTATION, EntryStatus.CALLED),
    ])
    def test_rejected(self, current, target):
        with pytest.raises(InvalidTransitionError) as exc_info:
            state_machine.ensure_entry_transition("A1", current, target)

        assert exc_info.value.code == "invalid_transition"
        assert "A1" in exc_info.value.detail

    @pytest.mark.parametrize("terminal", sorted(state_machine.TERMINAL_STATUSES, key=lambda s: s.value))
    def test_terminal_states_have_no_exit(self, terminal):
        assert state_machine.is_terminal(terminal)
        for target in EntryStatus:
            assert not state_machine.can_transition(terminal, target)


class TestDoctorTransitions:

    @pytest.mark.parametrize("start", [DoctorStatus.OFFLINE, DoctorStatus.BREAK])
    def test_offline_and_break_lead_to_available(self, start):
        state_machine.ensure_external_doctor_status(start, DoctorStatus.AVAILABLE)

    def test_busy_only_ends_in_available(self):
        state_machine.ensure_doctor_transition(DoctorStatus.BUSY, DoctorStatus.AVAILABLE)
        with pytest.raises(InvalidTransitionError):
            state_machine.ensure_doctor_transition(DoctorStatus.BUSY, DoctorStatus.OFFLINE)

    @pytest.mark.parametrize("target", [DoctorStatus.BUSY, DoctorStatus.READY])
    def test_queue_driven_statuses_are_not_external(self, target):
        with pytest.raises(InvalidTransitionError):
            state_machine.ensure_external_doctor_status(DoctorStatus.AVAILABLE, target)

    @pytest.mark.parametrize("target", [DoctorStatus.AVAILABLE, DoctorStatus.BREAK, DoctorStatus.OFFLINE])
    def test_staff_cannot_end_busy(self, target):
        """Only the consultation ending releases a busy doctor."""
        with pytest.raises(InvalidTransitionError):
            state_machine.ensure_external_doctor_status(DoctorStatus.BUSY, target)
