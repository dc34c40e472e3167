from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from techconnect.db.session import get_db
from techconnect.db.models import Bid, BidNegotiation, Project, User
from techconnect.schemas.bid import (
    BidCreate, BidUpdate, BidOut, BidTransition, BidWithdrawal, BidStatusUpdate,
    NegotiationCreate, NegotiationResolve, NegotiationOut, MilestoneAdvance, MilestoneApproval,
    MilestoneOut, QuestionCreate, AnswerCreate, QuestionOut, FeedbackCreate, BidScoreOut,
    CompanyBidStats,
)
from techconnect.core.deps import get_current_user
from techconnect.services.bid_engine import BidEngine
from techconnect.services.notification_service import NotificationEventSink, NotificationType, create_notification
from techconnect.utils.bid_state import MilestoneStatus
from techconnect.utils.permissions import (
    can_change_bid_status, can_submit_bid, can_view_bid, can_view_project_bids,
    is_admin, owns_bid,
)
from techconnect.utils.verification_state import VerificationStateMachine

router = APIRouter(prefix="/bids", tags=["bids"])


def get_engine(db: Session = Depends(get_db)) -> BidEngine:
    return BidEngine(db, NotificationEventSink(db))


def _viewable_bid(engine: BidEngine, bid_id: UUID, user: User) -> Bid:
    bid = engine.get_bid(bid_id)
    if not can_view_bid(user, bid):
        raise HTTPException(status_code=403, detail="Not authorized to view this bid")
    return bid


def _client_bid(engine: BidEngine, bid_id: UUID, user: User) -> Bid:
    bid = engine.get_bid(bid_id)
    if bid.client_id != user.id and not is_admin(user):
        raise HTTPException(status_code=403, detail="Only the project's client can do this")
    return bid


def _company_bid(engine: BidEngine, bid_id: UUID, user: User) -> Bid:
    bid = engine.get_bid(bid_id)
    if not owns_bid(user, bid) and not is_admin(user):
        raise HTTPException(status_code=403, detail="Only the bidding company can do this")
    return bid


# ---------------------------------------------------------------------------
# Create and list
# ---------------------------------------------------------------------------

@router.post("/", response_model=BidOut, status_code=201)
def create_bid(
    data: BidCreate,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    """Create a bid (submitted immediately unless ``submit`` is false)"""
    if not can_submit_bid(current_user):
        raise HTTPException(status_code=403, detail="Only company accounts with a company profile can bid")

    company = current_user.company
    if not VerificationStateMachine.can_submit_bids(company.verification_status):
        raise HTTPException(
            status_code=403,
            detail="Your company must be verified before submitting bids"
        )
    return engine.create_bid(company, current_user, data)


@router.get("/project/{project_id}", response_model=list[BidOut])
def list_bids_for_project(
    project_id: UUID,
    status: Optional[str] = None,
    sort: str = "newest",
    db: Session = Depends(get_db),
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    """All bids on a project, for its client. ``sort=score`` ranks them."""
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    if not can_view_project_bids(current_user, project):
        raise HTTPException(status_code=403, detail="Not authorized to view bids for this project")

    bids = [b for b in engine.find_by_project(project_id, status) if b.status != "draft"]
    if sort == "score":
        bids = engine.rank_by_score(bids)
    return bids


@router.get("/company/me", response_model=list[BidOut])
def list_my_company_bids(
    status: Optional[str] = None,
    limit: Optional[int] = None,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    if current_user.company is None:
        raise HTTPException(status_code=404, detail="Create a company profile first")
    return engine.find_by_company(current_user.company.id, status, limit)


@router.get("/company/{company_id}/stats", response_model=CompanyBidStats)
def company_stats(
    company_id: UUID,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    own = current_user.company is not None and current_user.company.id == company_id
    if not (own or is_admin(current_user)):
        raise HTTPException(status_code=403, detail="Not authorized to view stats for this company")
    return engine.company_bid_stats(company_id)


@router.get("/company/{company_id}", response_model=list[BidOut])
def list_bids_by_company(
    company_id: UUID,
    status: Optional[str] = None,
    limit: Optional[int] = None,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    """Company members see their own bids; admins see any company's"""
    own = current_user.company is not None and current_user.company.id == company_id
    if not (own or is_admin(current_user)):
        raise HTTPException(status_code=403, detail="Not authorized to view bids for this company")
    return engine.find_by_company(company_id, status, limit)


@router.get("/client/me", response_model=list[BidOut])
def list_bids_received(
    status: Optional[str] = None,
    limit: Optional[int] = None,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    """Bids received on the current client's projects"""
    bids = engine.find_by_client(current_user.id, status, limit)
    return [b for b in bids if b.status != "draft"]


# ---------------------------------------------------------------------------
# Single bid
# ---------------------------------------------------------------------------

@router.get("/{bid_id}", response_model=BidOut)
def get_bid(
    bid_id: UUID,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    """Fetch a bid; the client's first look marks it viewed"""
    bid = _viewable_bid(engine, bid_id, current_user)
    if bid.client_id == current_user.id and bid.status == "draft":
        raise HTTPException(status_code=404, detail="Bid not found")
    return engine.mark_viewed(bid, current_user)


@router.get("/{bid_id}/score", response_model=BidScoreOut)
def get_bid_score(
    bid_id: UUID,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    bid = _viewable_bid(engine, bid_id, current_user)
    return {"bid_id": bid.id, "score": bid.score}


@router.put("/{bid_id}", response_model=BidOut)
def update_bid(
    bid_id: UUID,
    payload: BidUpdate,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    """Revise a draft or submitted bid. Send ``total_amount: null`` to recompute it."""
    bid = _company_bid(engine, bid_id, current_user)
    changes = payload.model_dump(mode="json", exclude_unset=True)
    changes.pop("expected_version", None)
    return engine.update_bid(bid, current_user, changes, payload.expected_version)


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------

@router.post("/{bid_id}/submit", response_model=BidOut)
def submit_bid(
    bid_id: UUID,
    payload: BidTransition,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    bid = _company_bid(engine, bid_id, current_user)
    return engine.submit(bid, current_user, payload.notes, payload.expected_version)


@router.post("/{bid_id}/review", response_model=BidOut)
def review_bid(
    bid_id: UUID,
    payload: BidTransition,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    bid = _client_bid(engine, bid_id, current_user)
    return engine.mark_under_review(bid, current_user, payload.notes, payload.expected_version)


@router.post("/{bid_id}/accept", response_model=BidOut)
def accept_bid(
    bid_id: UUID,
    payload: BidTransition,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    """Accept a bid; all other open bids on the project are rejected"""
    bid = _client_bid(engine, bid_id, current_user)
    return engine.accept(bid, current_user, payload.notes, payload.expected_version)


@router.post("/{bid_id}/reject", response_model=BidOut)
def reject_bid(
    bid_id: UUID,
    payload: BidTransition,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    bid = _client_bid(engine, bid_id, current_user)
    return engine.reject(bid, current_user, payload.notes, payload.expected_version)


@router.post("/{bid_id}/withdraw", response_model=BidOut)
def withdraw_bid(
    bid_id: UUID,
    payload: BidWithdrawal,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    bid = _company_bid(engine, bid_id, current_user)
    return engine.withdraw(bid, current_user, payload.reason, payload.expected_version)


@router.put("/{bid_id}/status", response_model=BidOut)
def update_bid_status(
    bid_id: UUID,
    payload: BidStatusUpdate,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    """Generic status change, bound by the same transition table"""
    bid = engine.get_bid(bid_id)
    if not can_change_bid_status(current_user, bid, payload.status):
        raise HTTPException(status_code=403, detail=f"Not authorized to set bid status to '{payload.status}'")
    return engine.change_status(bid, payload.status, current_user, payload.notes, payload.expected_version)


# ---------------------------------------------------------------------------
# Client interaction
# ---------------------------------------------------------------------------

@router.post("/{bid_id}/shortlist", response_model=BidOut)
def toggle_shortlist(
    bid_id: UUID,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    bid = _client_bid(engine, bid_id, current_user)
    return engine.toggle_shortlist(bid, current_user)


@router.post("/{bid_id}/questions", response_model=QuestionOut, status_code=201)
def ask_question(
    bid_id: UUID,
    payload: QuestionCreate,
    db: Session = Depends(get_db),
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    bid = _client_bid(engine, bid_id, current_user)
    question = engine.add_question(bid, current_user, payload.question)
    create_notification(
        db,
        user_id=bid.company.user_id,
        notification_type=NotificationType.BID_QUESTION,
        title="New Question on Your Bid",
        message=f"The client asked a question about your bid on '{bid.project.title}'.",
        related_project_id=bid.project_id,
        related_bid_id=bid.id,
        related_company_id=bid.company_id,
        source="user",
    )
    return question


@router.post("/{bid_id}/questions/{question_id}/answer", response_model=QuestionOut)
def answer_question(
    bid_id: UUID,
    question_id: UUID,
    payload: AnswerCreate,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    bid = _company_bid(engine, bid_id, current_user)
    return engine.answer_question(bid, question_id, current_user, payload.answer)


@router.post("/{bid_id}/feedback", response_model=BidOut)
def submit_feedback(
    bid_id: UUID,
    payload: FeedbackCreate,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    bid = _client_bid(engine, bid_id, current_user)
    return engine.submit_feedback(bid, current_user, payload.rating, payload.comments)


# ---------------------------------------------------------------------------
# Negotiation
# ---------------------------------------------------------------------------

def _party_bid(engine: BidEngine, bid_id: UUID, user: User) -> Bid:
    bid = engine.get_bid(bid_id)
    if not (bid.client_id == user.id or owns_bid(user, bid) or is_admin(user)):
        raise HTTPException(status_code=403, detail="Only the client or the bidding company can negotiate")
    return bid


def _resolvable_entry(bid: Bid, index: int, user: User) -> BidNegotiation:
    entry = next((e for e in bid.negotiation_history if e.position == index), None)
    if entry is None:
        raise HTTPException(status_code=404, detail="Negotiation entry not found")
    if entry.proposed_by_id == user.id and not is_admin(user):
        raise HTTPException(status_code=403, detail="The other party must respond to this proposal")
    return entry


@router.get("/{bid_id}/negotiations", response_model=list[NegotiationOut])
def list_negotiations(
    bid_id: UUID,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    return _party_bid(engine, bid_id, current_user).negotiation_history


@router.post("/{bid_id}/negotiations", response_model=NegotiationOut, status_code=201)
def propose_negotiation(
    bid_id: UUID,
    payload: NegotiationCreate,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    bid = _party_bid(engine, bid_id, current_user)
    return engine.propose_negotiation(bid, payload.proposal, current_user, payload.notes)


@router.post("/{bid_id}/negotiations/{index}/accept", response_model=NegotiationOut)
def accept_negotiation(
    bid_id: UUID,
    index: int,
    payload: NegotiationResolve,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    bid = _party_bid(engine, bid_id, current_user)
    _resolvable_entry(bid, index, current_user)
    return engine.accept_negotiation(bid, index, current_user, payload.notes)


@router.post("/{bid_id}/negotiations/{index}/reject", response_model=NegotiationOut)
def reject_negotiation(
    bid_id: UUID,
    index: int,
    payload: NegotiationResolve,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    bid = _party_bid(engine, bid_id, current_user)
    _resolvable_entry(bid, index, current_user)
    return engine.reject_negotiation(bid, index, current_user, payload.notes)


@router.post("/{bid_id}/negotiations/{index}/counter", response_model=NegotiationOut, status_code=201)
def counter_negotiation(
    bid_id: UUID,
    index: int,
    payload: NegotiationCreate,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    """Counter a pending proposal; the counter becomes a new pending entry"""
    bid = _party_bid(engine, bid_id, current_user)
    _resolvable_entry(bid, index, current_user)
    return engine.counter_negotiation(bid, index, payload.proposal, current_user, payload.notes)


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------

@router.post("/{bid_id}/milestones/{milestone_id}/advance", response_model=MilestoneOut)
def advance_milestone(
    bid_id: UUID,
    milestone_id: UUID,
    payload: MilestoneAdvance,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    """
    Company moves a milestone forward (in_progress, completed).
    ``paid`` is set by payment settlement or by an admin.
    """
    bid = _company_bid(engine, bid_id, current_user)
    if payload.status == MilestoneStatus.PAID and not is_admin(current_user):
        raise HTTPException(status_code=403, detail="Milestones are marked paid when the payment settles")
    proof = [a.model_dump(mode="json") for a in payload.completion_proof]
    return engine.advance_milestone(bid, milestone_id, payload.status, current_user, proof)


@router.post("/{bid_id}/milestones/{milestone_id}/approve", response_model=MilestoneOut)
def approve_milestone(
    bid_id: UUID,
    milestone_id: UUID,
    payload: MilestoneApproval,
    engine: BidEngine = Depends(get_engine),
    current_user: User = Depends(get_current_user),
):
    bid = _client_bid(engine, bid_id, current_user)
    return engine.approve_milestone(bid, milestone_id, current_user, payload.approved, payload.comments)
