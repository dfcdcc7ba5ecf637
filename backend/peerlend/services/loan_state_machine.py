"""Loan request state machine.

pending → accepted → in_progress → completed, with pending → rejected
(borrower cancels), accepted/in_progress → disputed, and defaulted as an
administrative terminal state. A resolved dispute returns the loan to the
status it had when the dispute was raised.
"""

from peerlend.models.loan import LoanStatus
from peerlend.services.exceptions import InvalidStateError

# Valid transitions: from_state -> set of allowed to_states
TRANSITIONS: dict[LoanStatus, set[LoanStatus]] = {
    LoanStatus.PENDING: {
        LoanStatus.ACCEPTED,
        LoanStatus.REJECTED,
    },
    LoanStatus.ACCEPTED: {
        LoanStatus.IN_PROGRESS,
        LoanStatus.DISPUTED,
    },
    LoanStatus.IN_PROGRESS: {
        LoanStatus.COMPLETED,
        LoanStatus.DISPUTED,
        LoanStatus.DEFAULTED,
    },
    LoanStatus.DISPUTED: {
        LoanStatus.ACCEPTED,
        LoanStatus.IN_PROGRESS,
        LoanStatus.DEFAULTED,
    },
    LoanStatus.COMPLETED: set(),
    LoanStatus.REJECTED: set(),
    LoanStatus.DEFAULTED: set(),
}

TERMINAL_STATES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)

# Loans that count toward a borrower's repayment history
SCORED_STATES = (LoanStatus.COMPLETED, LoanStatus.IN_PROGRESS, LoanStatus.DEFAULTED)


def can_transition(from_state: LoanStatus, to_state: LoanStatus) -> bool:
    return to_state in TRANSITIONS[from_state]


def get_allowed_transitions(from_state: LoanStatus) -> set[LoanStatus]:
    return set(TRANSITIONS[from_state])


def is_terminal_state(state: LoanStatus) -> bool:
    return state in TERMINAL_STATES


def ensure_transition(loan_id: int, from_state: LoanStatus, to_state: LoanStatus) -> None:
    """Raise InvalidStateError unless from_state → to_state is allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidStateError(
            f"Loan request cannot move from {from_state.value} to {to_state.value}",
            loan_id=loan_id,
            status=from_state.value,
        )
