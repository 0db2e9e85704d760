"""
Commission Status State Machine

This module is the SINGLE SOURCE OF TRUTH for commission status transitions.
All status changes must be validated here.

    pending ──► approved ──► paid
       │           │           │
       ▼           └─────┬─────┘
    rejected             ▼
                    clawed_back

rejected and clawed_back are terminal. clawed_back is only entered through
the clawback operation, never through a generic status update.
"""

from typing import Dict, List

from affiliate_ledger.core.exceptions import InvalidTransitionError
from affiliate_ledger.models.commission import CommissionStatus


# =============================================================================
# TRANSITION RULES
# =============================================================================

# Format: current_status -> [list of allowed next statuses]
COMMISSION_TRANSITIONS: Dict[str, List[str]] = {
    CommissionStatus.PENDING.value: [
        CommissionStatus.APPROVED.value,     # Clearance elapsed or admin override
        CommissionStatus.REJECTED.value,     # Admin rejection
    ],
    CommissionStatus.APPROVED.value: [
        CommissionStatus.PAID.value,         # Payout processed
        CommissionStatus.CLAWED_BACK.value,  # Refund / chargeback before payout
    ],
    CommissionStatus.PAID.value: [
        CommissionStatus.CLAWED_BACK.value,  # Refund / chargeback after payout
    ],
    CommissionStatus.REJECTED.value: [],     # Terminal state
    CommissionStatus.CLAWED_BACK.value: [],  # Terminal state
}

# Statuses a clawback (full or partial) may be applied to
CLAWBACK_ELIGIBLE_STATUSES = (CommissionStatus.APPROVED.value, CommissionStatus.PAID.value)

# Human-readable action names for each transition
TRANSITION_ACTIONS: Dict[tuple, str] = {
    (CommissionStatus.PENDING.value, CommissionStatus.APPROVED.value): "Approve",
    (CommissionStatus.PENDING.value, CommissionStatus.REJECTED.value): "Reject",
    (CommissionStatus.APPROVED.value, CommissionStatus.PAID.value): "Mark as Paid",
    (CommissionStatus.APPROVED.value, CommissionStatus.CLAWED_BACK.value): "Claw Back",
    (CommissionStatus.PAID.value, CommissionStatus.CLAWED_BACK.value): "Claw Back",
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed."""
    return new_status in COMMISSION_TRANSITIONS.get(current_status, [])


def get_allowed_transitions(current_status: str) -> List[str]:
    """Get list of statuses that can be transitioned to from current status."""
    return list(COMMISSION_TRANSITIONS.get(current_status, []))


def get_transition_action(current_status: str, new_status: str) -> str:
    """Get human-readable action name for a transition."""
    return TRANSITION_ACTIONS.get((current_status, new_status), f"{current_status} -> {new_status}")


def is_terminal(status: str) -> bool:
    return not COMMISSION_TRANSITIONS.get(status)


def validate_transition(current_status: str, new_status: str) -> None:
    """
    Validate a status transition. Raises InvalidTransitionError if invalid.

    Self-transitions are invalid: approving an approved commission is an error.
    """
    if not can_transition(current_status, new_status):
        raise InvalidTransitionError(current_status, new_status)


def status_change_reason(old_status: str, new_status: str, rejection_reason: str = None) -> str:
    """Ledger reason recorded for a status change."""
    reason = f"Status changed from {old_status} to {new_status}"
    if new_status == CommissionStatus.REJECTED.value and rejection_reason:
        reason = f"{reason}: {rejection_reason}"
    return reason
