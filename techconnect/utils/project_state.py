"""
Project State Machine - Manages project lifecycle and status transitions
"""


class ProjectStatus:
    DRAFT = "draft"
    POSTED = "posted"
    BIDDING = "bidding"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ProjectStateMachine:
    """
    draft → posted → bidding → active → completed

    Status can also go to 'cancelled' from any non-terminal state.
    """

    TRANSITIONS = {
        ProjectStatus.DRAFT: [ProjectStatus.POSTED, ProjectStatus.CANCELLED],
        ProjectStatus.POSTED: [ProjectStatus.BIDDING, ProjectStatus.ACTIVE, ProjectStatus.CANCELLED],
        ProjectStatus.BIDDING: [ProjectStatus.ACTIVE, ProjectStatus.CANCELLED],
        ProjectStatus.ACTIVE: [ProjectStatus.COMPLETED, ProjectStatus.CANCELLED],
        ProjectStatus.COMPLETED: [],
        ProjectStatus.CANCELLED: [],
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        return to_status in cls.TRANSITIONS.get(from_status, [])

    @classmethod
    def can_receive_bids(cls, status: str) -> bool:
        return status in [ProjectStatus.POSTED, ProjectStatus.BIDDING]

    @classmethod
    def can_edit(cls, status: str) -> bool:
        return status in [ProjectStatus.DRAFT, ProjectStatus.POSTED, ProjectStatus.BIDDING]

    @classmethod
    def is_terminal_status(cls, status: str) -> bool:
        return status in [ProjectStatus.COMPLETED, ProjectStatus.CANCELLED]
