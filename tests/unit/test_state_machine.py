"""
Unit tests for ride status state machine validations.
"""
import pytest

from app.services.rides import ALLOWED_TRANSITIONS, TERMINAL_STATUSES, can_transition


class TestRideStateMachine:
    def test_pending_to_accepted(self):
        assert can_transition("PENDING", "ACCEPTED")

    def test_pending_to_cancelled(self):
        assert can_transition("PENDING", "CANCELLED")

    def test_accepted_to_arrived(self):
        assert can_transition("ACCEPTED", "ARRIVED")

    def test_arrived_to_in_progress(self):
        assert can_transition("ARRIVED", "IN_PROGRESS")

    def test_in_progress_to_completed(self):
        assert can_transition("IN_PROGRESS", "COMPLETED")

    def test_in_progress_can_be_cancelled(self):
        assert can_transition("IN_PROGRESS", "CANCELLED")

    def test_completed_is_terminal(self):
        assert ALLOWED_TRANSITIONS["COMPLETED"] == set()

    def test_cancelled_is_terminal(self):
        assert ALLOWED_TRANSITIONS["CANCELLED"] == set()

    def test_cannot_skip_arrival(self):
        assert not can_transition("ACCEPTED", "IN_PROGRESS")

    def test_cannot_complete_before_start(self):
        assert not can_transition("ARRIVED", "COMPLETED")

    def test_cannot_go_back_to_pending(self):
        assert not can_transition("ACCEPTED", "PENDING")

    def test_unknown_status(self):
        assert not can_transition("UNKNOWN", "ACCEPTED")

    @pytest.mark.parametrize("status", ["PENDING", "ACCEPTED", "ARRIVED", "IN_PROGRESS"])
    def test_every_active_status_can_cancel(self, status):
        assert can_transition(status, "CANCELLED")

    @pytest.mark.parametrize("status", TERMINAL_STATUSES)
    def test_nothing_leaves_a_terminal_status(self, status):
        assert not any(can_transition(status, target) for target in ALLOWED_TRANSITIONS)
