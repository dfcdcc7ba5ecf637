"""Tests for the loan request state machine."""

import pytest

from peerlend.models.loan import LoanStatus
from peerlend.services.exceptions import InvalidStateError
from peerlend.services.loan_state_machine import (
    TRANSITIONS,
    can_transition,
    ensure_transition,
    get_allowed_transitions,
    is_terminal_state,
)


class TestTransitions:

    def test_every_status_has_an_entry(self):
        assert set(TRANSITIONS) == set(LoanStatus)

    def test_happy_path(self):
        assert can_transition(LoanStatus.PENDING, LoanStatus.ACCEPTED)
        assert can_transition(LoanStatus.ACCEPTED, LoanStatus.IN_PROGRESS)
        assert can_transition(LoanStatus.IN_PROGRESS, LoanStatus.COMPLETED)

    def test_cancel_only_from_pending(self):
        assert can_transition(LoanStatus.PENDING, LoanStatus.REJECTED)
        assert not can_transition(LoanStatus.ACCEPTED, LoanStatus.REJECTED)
        assert not can_transition(LoanStatus.IN_PROGRESS, LoanStatus.REJECTED)

    def test_cannot_skip_fulfilment(self):
        assert not can_transition(LoanStatus.PENDING, LoanStatus.IN_PROGRESS)
        assert not can_transition(LoanStatus.ACCEPTED, LoanStatus.COMPLETED)

    def test_dispute_sources(self):
        assert can_transition(LoanStatus.ACCEPTED, LoanStatus.DISPUTED)
        assert can_transition(LoanStatus.IN_PROGRESS, LoanStatus.DISPUTED)
        assert not can_transition(LoanStatus.PENDING, LoanStatus.DISPUTED)

    def test_default_sources(self):
        assert can_transition(LoanStatus.IN_PROGRESS, LoanStatus.DEFAULTED)
        assert can_transition(LoanStatus.DISPUTED, LoanStatus.DEFAULTED)
        assert not can_transition(LoanStatus.ACCEPTED, LoanStatus.DEFAULTED)

    def test_allowed_transitions_is_a_copy(self):
        allowed = get_allowed_transitions(LoanStatus.PENDING)
        allowed.add(LoanStatus.COMPLETED)
        assert not can_transition(LoanStatus.PENDING, LoanStatus.COMPLETED)


class TestTerminalStates:

    @pytest.mark.parametrize("status", [LoanStatus.COMPLETED, LoanStatus.REJECTED, LoanStatus.DEFAULTED])
    def test_terminal(self, status):
        assert is_terminal_state(status)
        assert get_allowed_transitions(status) == set()

    @pytest.mark.parametrize("status", [LoanStatus.PENDING, LoanStatus.ACCEPTED, LoanStatus.IN_PROGRESS, LoanStatus.DISPUTED])
    def test_non_terminal(self, status):
        assert not is_terminal_state(status)

    @pytest.mark.parametrize("target", list(LoanStatus))
    def test_nothing_leaves_completed(self, target):
        with pytest.raises(InvalidStateError):
            ensure_transition(1, LoanStatus.COMPLETED, target)


def test_ensure_transition_reports_loan_and_status():
    with pytest.raises(InvalidStateError) as exc_info:
        ensure_transition(42, LoanStatus.REJECTED, LoanStatus.ACCEPTED)
    assert exc_info.value.code == "INVALID_STATE"
    assert exc_info.value.details == {"loan_id": 42, "status": "rejected"}
