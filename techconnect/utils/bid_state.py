"""
Bid State Machine - Manages bid lifecycle, milestone and negotiation statuses
"""
from typing import List, Optional


class BidStatus:
    """Valid bid status values"""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"
    EXPIRED = "expired"

    ALL = [DRAFT, SUBMITTED, UNDER_REVIEW, ACCEPTED, REJECTED, WITHDRAWN, EXPIRED]


class BidStateMachine:
    """
    State machine for bid lifecycle.

    State Flow:
    draft → submitted → under_review → accepted
                      ↘              ↘ rejected
                        accepted | rejected | expired

    Any non-terminal bid can be withdrawn by its company.
    """

    TRANSITIONS = {
        BidStatus.DRAFT: [BidStatus.SUBMITTED, BidStatus.WITHDRAWN],
        BidStatus.SUBMITTED: [
            BidStatus.UNDER_REVIEW, BidStatus.ACCEPTED, BidStatus.REJECTED,
            BidStatus.WITHDRAWN, BidStatus.EXPIRED,
        ],
        BidStatus.UNDER_REVIEW: [
            BidStatus.ACCEPTED, BidStatus.REJECTED, BidStatus.WITHDRAWN, BidStatus.EXPIRED,
        ],
        BidStatus.ACCEPTED: [],  # Terminal state
        BidStatus.REJECTED: [],  # Terminal state
        BidStatus.WITHDRAWN: [],  # Terminal state
        BidStatus.EXPIRED: [],  # Terminal state
    }

    TERMINAL = {BidStatus.ACCEPTED, BidStatus.REJECTED, BidStatus.WITHDRAWN, BidStatus.EXPIRED}
    OPEN = {BidStatus.SUBMITTED, BidStatus.UNDER_REVIEW}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if transition from one status to another is valid"""
        if from_status not in cls.TRANSITIONS:
            return False
        return to_status in cls.TRANSITIONS[from_status]

    @classmethod
    def get_allowed_transitions(cls, current_status: str) -> List[str]:
        return cls.TRANSITIONS.get(current_status, [])

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> tuple[bool, str]:
        """
        Validate a status transition.

        A no-op transition (same status) is invalid.

        Returns:
            (is_valid, error_message)
        """
        if to_status not in BidStatus.ALL:
            return False, f"Unknown bid status '{to_status}'"

        if not cls.can_transition(from_status, to_status):
            allowed = cls.get_allowed_transitions(from_status)
            return False, f"Cannot transition from '{from_status}' to '{to_status}'. Allowed: {allowed}"

        return True, "Valid transition"

    @classmethod
    def is_terminal_status(cls, status: str) -> bool:
        return status in cls.TERMINAL

    @classmethod
    def is_open(cls, status: str) -> bool:
        """Submitted bids awaiting a client decision"""
        return status in cls.OPEN

    @classmethod
    def can_edit(cls, status: str) -> bool:
        return status in [BidStatus.DRAFT, BidStatus.SUBMITTED]

    @classmethod
    def can_negotiate(cls, status: str) -> bool:
        return status in cls.OPEN

    @classmethod
    def can_manage_milestones(cls, status: str) -> bool:
        return status == BidStatus.ACCEPTED


class MilestoneStatus:
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PAID = "paid"

    ALL = [PENDING, IN_PROGRESS, COMPLETED, PAID]


class MilestoneStateMachine:
    """
    Per-milestone lifecycle: pending → in_progress → completed → paid.

    Each milestone moves forward one step at a time. Ordering across
    milestones of the same bid is not enforced.
    """

    TRANSITIONS = {
        MilestoneStatus.PENDING: [MilestoneStatus.IN_PROGRESS],
        MilestoneStatus.IN_PROGRESS: [MilestoneStatus.COMPLETED],
        MilestoneStatus.COMPLETED: [MilestoneStatus.PAID],
        MilestoneStatus.PAID: [],
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        return to_status in cls.TRANSITIONS.get(from_status, [])

    @classmethod
    def validate_transition(
        cls, from_status: str, to_status: str, approved: Optional[bool] = None
    ) -> tuple[bool, str]:
        if to_status not in MilestoneStatus.ALL:
            return False, f"Unknown milestone status '{to_status}'"
        if not cls.can_transition(from_status, to_status):
            allowed = cls.TRANSITIONS.get(from_status, [])
            return False, f"Cannot move milestone from '{from_status}' to '{to_status}'. Allowed: {allowed}"
        if to_status == MilestoneStatus.PAID and not approved:
            return False, "Milestone must be approved by the client before it is paid"
        return True, "Valid transition"


class NegotiationStatus:
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COUNTERED = "countered"
