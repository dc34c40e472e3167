"""
Company verification state machine
"""
from typing import List


class VerificationStatus:
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"

    ALL = [PENDING, UNDER_REVIEW, APPROVED, REJECTED]


# Documents a company must upload before requesting review
REQUIRED_DOCUMENTS = [
    "secp_certificate",
    "ntn_certificate",
    "owner_cnic_front",
    "owner_cnic_back",
]

OPTIONAL_DOCUMENTS = [
    "incorporation_certificate",
    "owner_photo",
    "utility_bill",
    "office_photos",
]


class VerificationStateMachine:
    """
    pending → under_review → approved
                           ↘ rejected → under_review (resubmission)
    """

    TRANSITIONS = {
        VerificationStatus.PENDING: [VerificationStatus.UNDER_REVIEW],
        VerificationStatus.UNDER_REVIEW: [VerificationStatus.APPROVED, VerificationStatus.REJECTED],
        VerificationStatus.REJECTED: [VerificationStatus.UNDER_REVIEW],
        VerificationStatus.APPROVED: [],
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        return to_status in cls.TRANSITIONS.get(from_status, [])

    @classmethod
    def get_allowed_transitions(cls, current_status: str) -> List[str]:
        return cls.TRANSITIONS.get(current_status, [])

    @classmethod
    def can_submit_bids(cls, status: str) -> bool:
        return status == VerificationStatus.APPROVED
