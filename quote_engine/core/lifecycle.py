"""
Quote/invoice lifecycle states and allowed transitions.

Only an approved record carries a frozen tax snapshot; drafts are always
priced against the live configuration.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet

from .errors import InvalidTransitionError


class QuoteStatus(Enum):
    """Lifecycle state of a stored quote."""
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"


TRANSITIONS: Dict[QuoteStatus, FrozenSet[QuoteStatus]] = {
    QuoteStatus.DRAFT: frozenset({QuoteStatus.PENDING_APPROVAL}),
    QuoteStatus.PENDING_APPROVAL: frozenset({
        QuoteStatus.APPROVED,
        QuoteStatus.REJECTED,
        QuoteStatus.DRAFT,
    }),
    QuoteStatus.APPROVED: frozenset(),
    QuoteStatus.REJECTED: frozenset(),
}


def can_transition(current: QuoteStatus, target: QuoteStatus) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(current: QuoteStatus, target: QuoteStatus) -> None:
    """Raise InvalidTransitionError unless current -> target is allowed."""
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)


def is_frozen(status: QuoteStatus) -> bool:
    """Whether records in this state must be priced from their snapshot."""
    return status == QuoteStatus.APPROVED


def format_invoice_number(sequence: int, when: datetime) -> str:
    """Permanent invoice number assigned at approval.

    Format: INV-{SEQ}-{YYYY}-{DD}-{HHMM}, e.g. INV-001-2025-28-1314
    """
    if sequence < 1:
        raise ValueError("sequence must be >= 1")
    return f"INV-{sequence:03d}-{when.year}-{when.day:02d}-{when.hour:02d}{when.minute:02d}"
