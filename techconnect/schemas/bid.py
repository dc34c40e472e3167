# techconnect/schemas/bid.py
from pydantic import BaseModel, Field, validator
from typing import Annotated, Optional, List, Union, Literal
from uuid import UUID
from datetime import datetime
from decimal import Decimal

CURRENCIES = ["PKR", "USD", "EUR", "GBP"]
TIMELINE_UNITS = ["days", "weeks", "months"]
PAYMENT_SCHEDULE_TYPES = ["milestone", "weekly", "monthly", "lump_sum", "custom"]
INVITATION_SOURCES = ["client_invite", "platform_match", "direct_apply", "other"]
PRIORITY_LEVELS = ["low", "medium", "high", "urgent"]
RISK_LEVELS = ["low", "medium", "high"]
ATTACHMENT_TYPES = ["document", "image", "presentation", "other"]

PROPOSAL_MIN_LENGTH = 100
PROPOSAL_MAX_LENGTH = 5000


# ---------------------------------------------------------------------------
# Nested value objects
# ---------------------------------------------------------------------------

class Timeline(BaseModel):
    value: int = Field(..., ge=1)
    unit: str = "days"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @validator("unit")
    def unit_allowed(cls, v):
        if v not in TIMELINE_UNITS:
            raise ValueError(f"unit must be one of {TIMELINE_UNITS}")
        return v

    @validator("end_date")
    def end_after_start(cls, v, values):
        start = values.get("start_date")
        if v is not None and start is not None and v < start:
            raise ValueError("end_date must not precede start_date")
        return v


class TeamMember(BaseModel):
    role: str
    name: Optional[str] = None
    experience: Optional[str] = None
    hours_allocated: Optional[int] = Field(None, ge=0)


class Risk(BaseModel):
    description: str
    mitigation: Optional[str] = None
    probability: str = "medium"
    impact: str = "medium"

    @validator("probability", "impact")
    def level_allowed(cls, v):
        if v not in RISK_LEVELS:
            raise ValueError(f"must be one of {RISK_LEVELS}")
        return v


class PaymentSchedule(BaseModel):
    type: str = "milestone"
    details: Optional[str] = None

    @validator("type")
    def type_allowed(cls, v):
        if v not in PAYMENT_SCHEDULE_TYPES:
            raise ValueError(f"type must be one of {PAYMENT_SCHEDULE_TYPES}")
        return v


class Attachment(BaseModel):
    url: str
    original_name: Optional[str] = None
    file_type: str = "document"
    size: Optional[int] = Field(None, ge=0)
    description: Optional[str] = None

    @validator("file_type")
    def file_type_allowed(cls, v):
        if v not in ATTACHMENT_TYPES:
            raise ValueError(f"file_type must be one of {ATTACHMENT_TYPES}")
        return v


class MilestoneIn(BaseModel):
    title: str
    description: Optional[str] = None
    amount: Decimal = Field(..., ge=0)
    due_date: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Create / update
# ---------------------------------------------------------------------------

class BidCreate(BaseModel):
    project_id: UUID
    amount: Decimal = Field(..., ge=0)
    currency: str = "PKR"
    tax_percentage: Decimal = Field(Decimal("0"), ge=0, le=100)
    total_amount: Optional[Decimal] = Field(None, ge=0)
    proposed_timeline: Optional[Timeline] = None
    proposal: str = Field(..., min_length=PROPOSAL_MIN_LENGTH, max_length=PROPOSAL_MAX_LENGTH)
    executive_summary: Optional[str] = None
    methodology: Optional[str] = None
    deliverables: List[str] = []
    team_structure: List[TeamMember] = []
    tech_stack: List[str] = []
    assumptions: List[str] = []
    risks: List[Risk] = []
    payment_schedule: Optional[PaymentSchedule] = None
    escrow_required: bool = True
    attachments: List[Attachment] = []
    supporting_documents: List[Attachment] = []
    milestones: List[MilestoneIn] = []
    invitation_source: str = "direct_apply"
    priority_level: str = "medium"
    # Submit immediately instead of saving a draft
    submit: bool = True

    @validator("currency")
    def currency_allowed(cls, v):
        if v not in CURRENCIES:
            raise ValueError(f"currency must be one of {CURRENCIES}")
        return v

    @validator("invitation_source")
    def source_allowed(cls, v):
        if v not in INVITATION_SOURCES:
            raise ValueError(f"invitation_source must be one of {INVITATION_SOURCES}")
        return v

    @validator("priority_level")
    def priority_allowed(cls, v):
        if v not in PRIORITY_LEVELS:
            raise ValueError(f"priority_level must be one of {PRIORITY_LEVELS}")
        return v


class BidUpdate(BaseModel):
    """
    Partial edit of a draft or submitted bid.

    Only fields present in the request body are applied. Sending
    ``total_amount: null`` explicitly clears the stored total so it is
    recomputed from the new amount and tax.
    """
    amount: Optional[Decimal] = Field(None, ge=0)
    currency: Optional[str] = None
    tax_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    total_amount: Optional[Decimal] = Field(None, ge=0)
    proposed_timeline: Optional[Timeline] = None
    proposal: Optional[str] = Field(None, min_length=PROPOSAL_MIN_LENGTH, max_length=PROPOSAL_MAX_LENGTH)
    executive_summary: Optional[str] = None
    methodology: Optional[str] = None
    deliverables: Optional[List[str]] = None
    team_structure: Optional[List[TeamMember]] = None
    tech_stack: Optional[List[str]] = None
    assumptions: Optional[List[str]] = None
    risks: Optional[List[Risk]] = None
    payment_schedule: Optional[PaymentSchedule] = None
    escrow_required: Optional[bool] = None
    attachments: Optional[List[Attachment]] = None
    supporting_documents: Optional[List[Attachment]] = None
    milestones: Optional[List[MilestoneIn]] = None
    expected_version: Optional[int] = None

    @validator("currency")
    def currency_allowed(cls, v):
        if v is not None and v not in CURRENCIES:
            raise ValueError(f"currency must be one of {CURRENCIES}")
        return v


class BidTransition(BaseModel):
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class BidWithdrawal(BaseModel):
    reason: Optional[str] = None
    expected_version: Optional[int] = None


class BidStatusUpdate(BaseModel):
    status: str
    notes: Optional[str] = None
    expected_version: Optional[int] = None


# ---------------------------------------------------------------------------
# Negotiation: closed set of negotiable fields, tagged by ``field``
# ---------------------------------------------------------------------------

class AmountProposal(BaseModel):
    field: Literal["amount"]
    new_value: Decimal = Field(..., ge=0)


class TaxProposal(BaseModel):
    field: Literal["tax_percentage"]
    new_value: Decimal = Field(..., ge=0, le=100)


class TimelineProposal(BaseModel):
    field: Literal["proposed_timeline"]
    new_value: Timeline


class MilestonesProposal(BaseModel):
    field: Literal["milestones"]
    new_value: List[MilestoneIn]


class DeliverablesProposal(BaseModel):
    field: Literal["deliverables"]
    new_value: List[str]


class PaymentScheduleProposal(BaseModel):
    field: Literal["payment_schedule"]
    new_value: PaymentSchedule


NegotiationProposal = Annotated[
    Union[
        AmountProposal,
        TaxProposal,
        TimelineProposal,
        MilestonesProposal,
        DeliverablesProposal,
        PaymentScheduleProposal,
    ],
    Field(discriminator="field"),
]

NEGOTIABLE_FIELDS = [
    "amount", "tax_percentage", "proposed_timeline",
    "milestones", "deliverables", "payment_schedule",
]


class NegotiationCreate(BaseModel):
    proposal: NegotiationProposal
    notes: Optional[str] = None


class NegotiationResolve(BaseModel):
    notes: Optional[str] = None


class NegotiationOut(BaseModel):
    id: int
    position: int
    field: str
    old_value: Optional[Union[dict, list, str, int, float]] = None
    new_value: Optional[Union[dict, list, str, int, float]] = None
    proposed_by_id: Optional[UUID] = None
    proposed_at: datetime
    status: str
    counter_offer: Optional[Union[dict, list, str, int, float]] = None
    final_accepted: bool
    notes: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by_id: Optional[UUID] = None

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Milestones, questions, feedback
# ---------------------------------------------------------------------------

class MilestoneAdvance(BaseModel):
    status: str  # in_progress, completed, paid
    completion_proof: List[Attachment] = []


class MilestoneApproval(BaseModel):
    approved: bool = True
    comments: Optional[str] = None


class MilestoneOut(BaseModel):
    id: UUID
    position: int
    title: str
    description: Optional[str] = None
    amount: Decimal
    due_date: Optional[datetime] = None
    status: str
    completion_proof: list = []
    approved: Optional[bool] = None
    approved_at: Optional[datetime] = None
    approval_comments: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class QuestionCreate(BaseModel):
    question: str = Field(..., min_length=1, max_length=2000)


class AnswerCreate(BaseModel):
    answer: str = Field(..., min_length=1, max_length=5000)


class QuestionOut(BaseModel):
    id: UUID
    question: str
    asked_by_id: UUID
    asked_at: datetime
    answer: Optional[str] = None
    answered_by_id: Optional[UUID] = None
    answered_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class FeedbackCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comments: Optional[str] = None


class StatusHistoryOut(BaseModel):
    status: str
    changed_at: datetime
    changed_by_id: Optional[UUID] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------

class CompanySummary(BaseModel):
    id: UUID
    name: str
    logo_url: Optional[str] = None
    verified: bool
    rating_average: float
    rating_count: int
    services: list = []
    location: Optional[str] = None

    class Config:
        from_attributes = True


class ProjectSummary(BaseModel):
    id: UUID
    title: str
    category: str
    status: str
    budget_min: Optional[Decimal] = None
    budget_max: Optional[Decimal] = None
    deadline: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserSummary(BaseModel):
    id: UUID
    name: str
    email: str
    avatar: Optional[str] = None

    class Config:
        from_attributes = True


class BidOut(BaseModel):
    id: UUID
    project_id: UUID
    company_id: UUID
    client_id: UUID
    amount: Decimal
    currency: str
    tax_percentage: Decimal
    total_amount: Optional[Decimal] = None
    proposed_timeline: Optional[dict] = None
    timeline_in_days: Optional[int] = None
    proposal: str
    executive_summary: Optional[str] = None
    methodology: Optional[str] = None
    deliverables: list = []
    team_structure: list = []
    tech_stack: list = []
    assumptions: list = []
    risks: list = []
    payment_schedule: Optional[dict] = None
    escrow_required: bool
    attachments: list = []
    supporting_documents: list = []
    milestones: List[MilestoneOut] = []

    status: str
    submitted_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    withdrawn_at: Optional[datetime] = None
    status_history: List[StatusHistoryOut] = []
    negotiation_history: List[NegotiationOut] = []
    questions: List[QuestionOut] = []

    feedback_rating: Optional[int] = None
    feedback_comments: Optional[str] = None
    feedback_submitted_at: Optional[datetime] = None

    is_invited: bool
    invitation_source: str
    priority_level: str
    viewed_by_client: bool
    viewed_at: Optional[datetime] = None
    shortlisted: bool
    shortlisted_at: Optional[datetime] = None

    expires_at: Optional[datetime] = None
    auto_withdraw_at: Optional[datetime] = None
    is_expired: bool
    days_to_expiry: Optional[int] = None
    revision_count: int
    last_revised_at: Optional[datetime] = None
    version: int
    score: float

    company: Optional[CompanySummary] = None
    project: Optional[ProjectSummary] = None
    client: Optional[UserSummary] = None
    created_by: Optional[UserSummary] = None

    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BidScoreOut(BaseModel):
    bid_id: UUID
    score: float


class CompanyBidStats(BaseModel):
    total: int
    draft: int = 0
    submitted: int = 0
    under_review: int = 0
    accepted: int = 0
    rejected: int = 0
    withdrawn: int = 0
    expired: int = 0
