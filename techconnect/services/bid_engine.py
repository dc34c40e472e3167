"""
Bid Engine - Bid lifecycle, negotiation, milestones and expiry sweeps

The Bid row is the source of truth. ``Project.bid_summaries`` is a read-cache
rebuilt from the project's Bid rows after every mutation that touches them.

Every mutation goes through ``_touch`` so the bid row itself is UPDATEd and
its ``version`` column is checked; a concurrent writer gets a StaleWriteError.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Protocol
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.orm.exc import StaleDataError

from techconnect.core.config import settings
from techconnect.core.errors import (
    ConflictError,
    DomainError,
    InvalidTransitionError,
    NotFoundError,
    StaleWriteError,
    ValidationError,
)
from techconnect.db.models import (
    Bid,
    BidMilestone,
    BidNegotiation,
    BidQuestion,
    BidStatusHistory,
    Company,
    Project,
    ProjectInvitation,
    User,
)
from techconnect.utils.bid_state import (
    BidStateMachine,
    BidStatus,
    MilestoneStateMachine,
    MilestoneStatus,
    NegotiationStatus,
)
from techconnect.utils.project_state import ProjectStateMachine, ProjectStatus

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

AUTO_REJECT_NOTE = "Rejected because another bid was accepted"

# Fields a company may change through update_bid
EDITABLE_FIELDS = {
    "amount", "currency", "tax_percentage", "total_amount", "proposed_timeline",
    "proposal", "executive_summary", "methodology", "deliverables",
    "team_structure", "tech_stack", "assumptions", "risks", "payment_schedule",
    "escrow_required", "attachments", "supporting_documents", "milestones",
}

NON_NULLABLE_FIELDS = {"amount", "currency", "tax_percentage", "proposal", "escrow_required", "milestones"}


# ---------------------------------------------------------------------------
# Money helpers
# ---------------------------------------------------------------------------

def round_money(value) -> Optional[Decimal]:
    """Round to 2 decimal places, half away from zero."""
    if value is None:
        return None
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_total_amount(amount, tax_percentage) -> Decimal:
    amount = Decimal(str(amount))
    tax = Decimal(str(tax_percentage or 0))
    return round_money(amount * (Decimal("1") + tax / Decimal("100")))


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

class BidEventType:
    NEW_BID = "new_bid"
    BID_ACCEPTED = "bid_accepted"
    BID_REJECTED = "bid_rejected"
    BID_WITHDRAWN = "bid_withdrawn"
    BID_EXPIRED = "bid_expired"
    MILESTONE_COMPLETED = "milestone_completed"
    MILESTONE_APPROVED = "milestone_approved"
    PAYMENT_RECEIVED = "payment_received"


@dataclass
class BidEvent:
    type: str
    bid_id: UUID
    project_id: UUID
    company_id: UUID
    client_id: UUID
    actor_id: Optional[UUID] = None
    data: Dict[str, Any] = field(default_factory=dict)


class BidEventSink(Protocol):
    def publish(self, event: BidEvent) -> None:
        ...


class LoggingEventSink:
    """Sink used when no notification fan-out is wired in."""

    def publish(self, event: BidEvent) -> None:
        logger.info(f"Bid event {event.type} for bid {event.bid_id}")


# ---------------------------------------------------------------------------
# JSON forms of negotiable fields
# ---------------------------------------------------------------------------

def _money_json(value) -> Optional[str]:
    rounded = round_money(value)
    return str(rounded) if rounded is not None else None


def _datetime_json(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.isoformat()


def _milestone_json(title, description, amount, due_date) -> dict:
    return {
        "title": title,
        "description": description,
        "amount": _money_json(amount),
        "due_date": _datetime_json(due_date),
    }


def _same_value(a, b) -> bool:
    return json.dumps(a, sort_keys=True, default=str) == json.dumps(b, sort_keys=True, default=str)


def proposal_value(proposal) -> Any:
    """JSON-storable value of a negotiation proposal variant."""
    value = proposal.new_value
    if proposal.field == "amount":
        return _money_json(value)
    if proposal.field == "tax_percentage":
        return _money_json(value)
    if proposal.field == "milestones":
        return [_milestone_json(m.title, m.description, m.amount, m.due_date) for m in value]
    if proposal.field == "deliverables":
        return list(value)
    return value.model_dump(mode="json")


def _parse_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class BidEngine:
    """
    Service object for the bid lifecycle.

    Each public operation validates, mutates, commits and then publishes
    events to the sink. Access control is the route layer's job.
    """

    def __init__(self, db: Session, sink: Optional[BidEventSink] = None):
        self.db = db
        self.sink = sink or LoggingEventSink()

    # -- plumbing -----------------------------------------------------------

    def _commit(self, conflict_message: str = "Write conflicts with existing data", **details):
        try:
            self.db.commit()
        except StaleDataError as exc:
            self.db.rollback()
            raise StaleWriteError("Bid was modified by another request; reload and retry") from exc
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError(conflict_message, **details) from exc

    def _emit(self, events: List[BidEvent]):
        for event in events:
            try:
                self.sink.publish(event)
            except (DomainError, SQLAlchemyError) as e:
                # The bid change is already committed
                logger.error(f"Failed to publish {event.type} for bid {event.bid_id}: {e}")

    @staticmethod
    def _touch(bid: Bid, actor: Optional[User] = None):
        bid.updated_at = datetime.utcnow()
        if actor is not None:
            bid.updated_by_id = actor.id

    @staticmethod
    def _check_version(bid: Bid, expected_version: Optional[int]):
        if expected_version is not None and bid.version != expected_version:
            raise StaleWriteError(
                "Bid was modified since it was read",
                expected_version=expected_version,
                current_version=bid.version,
            )

    def _event(self, event_type: str, bid: Bid, actor: Optional[User] = None, **data) -> BidEvent:
        payload = {
            "project_title": bid.project.title if bid.project else None,
            "company_name": bid.company.name if bid.company else None,
            "amount": _money_json(bid.amount),
            "currency": bid.currency,
        }
        payload.update(data)
        return BidEvent(
            type=event_type,
            bid_id=bid.id,
            project_id=bid.project_id,
            company_id=bid.company_id,
            client_id=bid.client_id,
            actor_id=actor.id if actor else None,
            data=payload,
        )

    def _set_status(self, bid: Bid, target: str, actor: Optional[User], notes: Optional[str] = None):
        """Validate against the transition table and append one history entry."""
        valid, message = BidStateMachine.validate_transition(bid.status, target)
        if not valid:
            raise InvalidTransitionError(bid.status, target, message, bid_id=str(bid.id))

        now = datetime.utcnow()
        bid.status = target
        bid.status_history.append(BidStatusHistory(
            status=target,
            changed_at=now,
            changed_by_id=actor.id if actor else None,
            notes=notes,
        ))
        self._touch(bid, actor)
        return now

    def refresh_project_cache(self, project: Project):
        summaries = []
        for bid in sorted(project.bids, key=lambda b: b.created_at or datetime.utcnow()):
            if bid.status == BidStatus.DRAFT:
                continue
            summaries.append({
                "bid_id": str(bid.id),
                "company_id": str(bid.company_id),
                "company_name": bid.company.name if bid.company else None,
                "amount": _money_json(bid.amount),
                "total_amount": _money_json(bid.total_amount),
                "currency": bid.currency,
                "status": bid.status,
                "score": bid.score,
                "shortlisted": bool(bid.shortlisted),
                "submitted_at": _datetime_json(bid.submitted_at),
            })
        project.bid_summaries = summaries

    def _replace_milestones(self, bid: Bid, milestones: List[dict]):
        bid.milestones.clear()
        for position, item in enumerate(milestones):
            bid.milestones.append(BidMilestone(
                position=position,
                title=item["title"],
                description=item.get("description"),
                amount=round_money(item["amount"]),
                due_date=_parse_datetime(item.get("due_date")),
                status=MilestoneStatus.PENDING,
            ))

    # -- lookups ------------------------------------------------------------

    def get_bid(self, bid_id: UUID) -> Bid:
        bid = (
            self.db.query(Bid)
            .options(joinedload(Bid.company), joinedload(Bid.project))
            .filter(Bid.id == bid_id)
            .first()
        )
        if not bid:
            raise NotFoundError("Bid not found", bid_id=str(bid_id))
        return bid

    # -- creation -----------------------------------------------------------

    def create_bid(self, company: Company, actor: User, data) -> Bid:
        project = self.db.query(Project).filter(Project.id == data.project_id).first()
        if not project:
            raise NotFoundError("Project not found", project_id=str(data.project_id))

        if not ProjectStateMachine.can_receive_bids(project.status):
            raise ValidationError(
                "This project is no longer accepting bids", project_status=project.status
            )
        if project.expires_at and project.expires_at < datetime.utcnow():
            raise ValidationError("This project has expired")
        if project.client_id == actor.id:
            raise ValidationError("You cannot bid on your own project")

        existing = (
            self.db.query(Bid.id)
            .filter(Bid.project_id == project.id, Bid.company_id == company.id)
            .first()
        )
        if existing:
            raise ConflictError(
                "You have already submitted a bid for this project",
                project_id=str(project.id),
                company_id=str(company.id),
            )

        invitation = (
            self.db.query(ProjectInvitation)
            .filter(ProjectInvitation.project_id == project.id, ProjectInvitation.company_id == company.id)
            .first()
        )
        if project.is_invite_only and invitation is None:
            raise ValidationError("This project is open to invited companies only")

        timeline = data.proposed_timeline.model_dump(mode="json") if data.proposed_timeline else None
        if timeline is None and project.timeline_value and str(project.timeline_value).isdigit():
            timeline = {
                "value": int(project.timeline_value),
                "unit": project.timeline_unit or "months",
                "start_date": None,
                "end_date": None,
            }

        amount = round_money(data.amount)
        tax = round_money(data.tax_percentage)
        total = round_money(data.total_amount) if data.total_amount is not None else compute_total_amount(amount, tax)
        now = datetime.utcnow()

        bid = Bid(
            project=project,
            company=company,
            client_id=project.client_id,
            amount=amount,
            currency=data.currency,
            tax_percentage=tax,
            total_amount=total,
            proposed_timeline=timeline,
            proposal=data.proposal,
            executive_summary=data.executive_summary,
            methodology=data.methodology,
            deliverables=list(data.deliverables),
            team_structure=[m.model_dump(mode="json") for m in data.team_structure],
            tech_stack=list(data.tech_stack),
            assumptions=list(data.assumptions),
            risks=[r.model_dump(mode="json") for r in data.risks],
            payment_schedule=(
                data.payment_schedule.model_dump(mode="json")
                if data.payment_schedule else {"type": "milestone", "details": None}
            ),
            escrow_required=data.escrow_required,
            attachments=[a.model_dump(mode="json") for a in data.attachments],
            supporting_documents=[a.model_dump(mode="json") for a in data.supporting_documents],
            status=BidStatus.DRAFT,
            is_invited=invitation is not None,
            invitation_source="client_invite" if invitation is not None else data.invitation_source,
            priority_level=data.priority_level,
            created_by_id=actor.id,
            updated_by_id=actor.id,
            created_at=now,
            updated_at=now,
        )
        bid.status_history.append(BidStatusHistory(
            status=BidStatus.DRAFT, changed_at=now, changed_by_id=actor.id, notes="Bid created",
        ))
        self._replace_milestones(bid, [
            _milestone_json(m.title, m.description, m.amount, m.due_date) for m in data.milestones
        ])
        self.db.add(bid)

        events = []
        if data.submit:
            self._apply_submit(bid, actor, "Initial bid submission")
            events.append(self._event(BidEventType.NEW_BID, bid, actor))

        self.refresh_project_cache(project)
        self._commit(
            "You have already submitted a bid for this project",
            project_id=str(project.id),
            company_id=str(company.id),
        )
        self.db.refresh(bid)
        logger.info(f"Bid {bid.id} created by company {company.id} on project {project.id} ({bid.status})")
        self._emit(events)
        return bid

    # -- status transitions -------------------------------------------------

    def _apply_submit(self, bid: Bid, actor: Optional[User], notes: Optional[str] = None):
        now = self._set_status(bid, BidStatus.SUBMITTED, actor, notes)
        bid.submitted_at = now
        # Timers are set the first time the bid is submitted only
        if bid.expires_at is None:
            bid.expires_at = now + timedelta(days=settings.BID_EXPIRY_DAYS)
        if bid.auto_withdraw_at is None:
            bid.auto_withdraw_at = now + timedelta(days=settings.BID_AUTO_WITHDRAW_DAYS)

        project = bid.project
        if project is not None and project.status == ProjectStatus.POSTED:
            project.status = ProjectStatus.BIDDING

    def submit(self, bid: Bid, actor: User, notes: Optional[str] = None,
               expected_version: Optional[int] = None) -> Bid:
        self._check_version(bid, expected_version)
        project = bid.project
        if not ProjectStateMachine.can_receive_bids(project.status):
            raise ValidationError("This project is no longer accepting bids", project_status=project.status)

        self._apply_submit(bid, actor, notes)
        self.refresh_project_cache(project)
        self._commit()
        logger.info(f"Bid {bid.id} submitted")
        self._emit([self._event(BidEventType.NEW_BID, bid, actor)])
        return bid

    def mark_under_review(self, bid: Bid, actor: User, notes: Optional[str] = None,
                          expected_version: Optional[int] = None) -> Bid:
        self._check_version(bid, expected_version)
        self._set_status(bid, BidStatus.UNDER_REVIEW, actor, notes)
        self.refresh_project_cache(bid.project)
        self._commit()
        return bid

    def accept(self, bid: Bid, actor: User, notes: Optional[str] = None,
               expected_version: Optional[int] = None) -> Bid:
        """
        Accept ``bid``; every other open bid on the project is rejected and
        the project moves to ``active`` with this bid selected.
        """
        self._check_version(bid, expected_version)
        project = bid.project
        if not ProjectStateMachine.can_transition(project.status, ProjectStatus.ACTIVE):
            raise InvalidTransitionError(
                project.status, ProjectStatus.ACTIVE,
                f"Project is '{project.status}' and cannot take an accepted bid",
            )

        now = self._set_status(bid, BidStatus.ACCEPTED, actor, notes)
        bid.accepted_at = now

        events = [self._event(BidEventType.BID_ACCEPTED, bid, actor)]
        for other in project.bids:
            if other.id == bid.id or not BidStateMachine.is_open(other.status):
                continue
            self._set_status(other, BidStatus.REJECTED, actor, AUTO_REJECT_NOTE)
            other.rejected_at = now
            other.rejection_reason = AUTO_REJECT_NOTE
            events.append(self._event(BidEventType.BID_REJECTED, other, actor, reason=AUTO_REJECT_NOTE))

        project.status = ProjectStatus.ACTIVE
        project.selected_bid_id = bid.id
        project.selected_company_id = bid.company_id
        self.refresh_project_cache(project)
        self._commit()
        logger.info(f"Bid {bid.id} accepted on project {project.id}; {len(events) - 1} other bid(s) rejected")
        self._emit(events)
        return bid

    def reject(self, bid: Bid, actor: User, notes: Optional[str] = None,
               expected_version: Optional[int] = None) -> Bid:
        self._check_version(bid, expected_version)
        now = self._set_status(bid, BidStatus.REJECTED, actor, notes)
        bid.rejected_at = now
        bid.rejection_reason = notes
        self.refresh_project_cache(bid.project)
        self._commit()
        self._emit([self._event(BidEventType.BID_REJECTED, bid, actor, reason=notes)])
        return bid

    def withdraw(self, bid: Bid, actor: Optional[User], reason: Optional[str] = None,
                 expected_version: Optional[int] = None) -> Bid:
        self._check_version(bid, expected_version)
        now = self._set_status(bid, BidStatus.WITHDRAWN, actor, reason)
        bid.withdrawn_at = now
        self.refresh_project_cache(bid.project)
        self._commit()
        self._emit([self._event(BidEventType.BID_WITHDRAWN, bid, actor, reason=reason)])
        return bid

    def expire(self, bid: Bid, actor: Optional[User] = None, notes: Optional[str] = None) -> Bid:
        self._set_status(bid, BidStatus.EXPIRED, actor, notes or "Bid expired")
        self.refresh_project_cache(bid.project)
        self._commit()
        self._emit([self._event(BidEventType.BID_EXPIRED, bid, actor)])
        return bid

    def change_status(self, bid: Bid, status: str, actor: User, notes: Optional[str] = None,
                      expected_version: Optional[int] = None) -> Bid:
        """Generic path, still bound by the transition table and side effects."""
        if status == BidStatus.SUBMITTED:
            return self.submit(bid, actor, notes, expected_version)
        if status == BidStatus.UNDER_REVIEW:
            return self.mark_under_review(bid, actor, notes, expected_version)
        if status == BidStatus.ACCEPTED:
            return self.accept(bid, actor, notes, expected_version)
        if status == BidStatus.REJECTED:
            return self.reject(bid, actor, notes, expected_version)
        if status == BidStatus.WITHDRAWN:
            return self.withdraw(bid, actor, notes, expected_version)
        if status == BidStatus.EXPIRED:
            self._check_version(bid, expected_version)
            return self.expire(bid, actor, notes)
        raise InvalidTransitionError(bid.status, status, f"Unknown bid status '{status}'")

    # -- edits --------------------------------------------------------------

    def update_bid(self, bid: Bid, actor: User, changes: Dict[str, Any],
                   expected_version: Optional[int] = None) -> Bid:
        """
        Apply a partial edit. Protected fields (status, ownership, timers,
        history) are ignored. ``total_amount`` is only recomputed when it was
        explicitly cleared.
        """
        self._check_version(bid, expected_version)
        if not BidStateMachine.can_edit(bid.status):
            raise ValidationError(
                f"Bid cannot be edited while '{bid.status}'", status=bid.status
            )

        changes = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS}
        if not changes:
            return bid

        for key, value in changes.items():
            if value is None and key in NON_NULLABLE_FIELDS:
                continue
            if key == "amount":
                bid.amount = round_money(value)
            elif key == "tax_percentage":
                bid.tax_percentage = round_money(value)
            elif key == "total_amount":
                bid.total_amount = round_money(value)
            elif key == "milestones":
                self._replace_milestones(bid, [
                    _milestone_json(m["title"], m.get("description"), m["amount"], m.get("due_date"))
                    for m in value or []
                ])
            elif key == "proposed_timeline":
                bid.proposed_timeline = _jsonable(value)
            elif key in ("team_structure", "risks", "attachments", "supporting_documents", "payment_schedule"):
                setattr(bid, key, _jsonable(value))
            else:
                setattr(bid, key, value)

        if bid.total_amount is None:
            bid.total_amount = compute_total_amount(bid.amount, bid.tax_percentage)

        bid.revision_count = (bid.revision_count or 0) + 1
        bid.last_revised_at = datetime.utcnow()
        self._touch(bid, actor)
        self.refresh_project_cache(bid.project)
        self._commit()
        logger.info(f"Bid {bid.id} revised ({', '.join(sorted(changes))}); revision {bid.revision_count}")
        return bid

    # -- negotiation --------------------------------------------------------

    def _live_value(self, bid: Bid, field_name: str) -> Any:
        if field_name in ("amount", "tax_percentage"):
            return _money_json(getattr(bid, field_name))
        if field_name == "milestones":
            return [_milestone_json(m.title, m.description, m.amount, m.due_date) for m in bid.milestones]
        if field_name == "deliverables":
            return list(bid.deliverables or [])
        return getattr(bid, field_name)

    def _apply_value(self, bid: Bid, field_name: str, value: Any):
        if field_name in ("amount", "tax_percentage"):
            setattr(bid, field_name, round_money(value))
        elif field_name == "milestones":
            self._replace_milestones(bid, value)
        else:
            setattr(bid, field_name, value)

    @staticmethod
    def _negotiation_entry(bid: Bid, index: int) -> BidNegotiation:
        for entry in bid.negotiation_history:
            if entry.position == index:
                return entry
        raise NotFoundError("Negotiation entry not found", index=index)

    @staticmethod
    def _require_negotiable(bid: Bid):
        if not BidStateMachine.can_negotiate(bid.status):
            raise ValidationError(
                "Negotiation is only possible while a bid is submitted or under review",
                status=bid.status,
            )

    @staticmethod
    def _require_pending(entry: BidNegotiation):
        if entry.status != NegotiationStatus.PENDING:
            raise ValidationError(
                f"Negotiation entry is already {entry.status}", index=entry.position
            )

    def _append_negotiation(self, bid: Bid, field_name: str, new_value: Any,
                            actor: User, notes: Optional[str]) -> BidNegotiation:
        entry = BidNegotiation(
            position=len(bid.negotiation_history),
            field=field_name,
            old_value=self._live_value(bid, field_name),
            new_value=new_value,
            proposed_by_id=actor.id,
            proposed_at=datetime.utcnow(),
            status=NegotiationStatus.PENDING,
            final_accepted=False,
            notes=notes,
        )
        bid.negotiation_history.append(entry)
        return entry

    def propose_negotiation(self, bid: Bid, proposal, actor: User,
                            notes: Optional[str] = None) -> BidNegotiation:
        """Record a pending change; the live field is untouched."""
        self._require_negotiable(bid)
        entry = self._append_negotiation(bid, proposal.field, proposal_value(proposal), actor, notes)
        self._touch(bid, actor)
        self._commit()
        logger.info(f"Negotiation #{entry.position} on bid {bid.id}: {entry.field}")
        return entry

    def accept_negotiation(self, bid: Bid, index: int, actor: User,
                           notes: Optional[str] = None) -> BidNegotiation:
        """
        Write the entry's new value onto the live field.

        Other pending entries for the same field are rejected. If the live
        value moved away from the entry's ``old_value`` the acceptance fails
        with StaleWriteError.
        """
        self._require_negotiable(bid)
        entry = self._negotiation_entry(bid, index)
        self._require_pending(entry)

        live = self._live_value(bid, entry.field)
        if not _same_value(live, entry.old_value):
            raise StaleWriteError(
                f"'{entry.field}' changed since this proposal was made",
                index=index, field=entry.field,
            )

        now = datetime.utcnow()
        self._apply_value(bid, entry.field, entry.new_value)
        entry.status = NegotiationStatus.ACCEPTED
        entry.final_accepted = True
        entry.resolved_at = now
        entry.resolved_by_id = actor.id
        if notes:
            entry.notes = notes

        for sibling in bid.negotiation_history:
            if sibling is entry or sibling.field != entry.field:
                continue
            if sibling.status == NegotiationStatus.PENDING:
                sibling.status = NegotiationStatus.REJECTED
                sibling.resolved_at = now
                sibling.resolved_by_id = actor.id
                sibling.notes = f"Superseded by accepted entry #{entry.position}"

        bid.revision_count = (bid.revision_count or 0) + 1
        bid.last_revised_at = now
        self._touch(bid, actor)
        self.refresh_project_cache(bid.project)
        self._commit()
        logger.info(f"Negotiation #{entry.position} on bid {bid.id} accepted ({entry.field})")
        return entry

    def reject_negotiation(self, bid: Bid, index: int, actor: User,
                           notes: Optional[str] = None) -> BidNegotiation:
        self._require_negotiable(bid)
        entry = self._negotiation_entry(bid, index)
        self._require_pending(entry)
        entry.status = NegotiationStatus.REJECTED
        entry.resolved_at = datetime.utcnow()
        entry.resolved_by_id = actor.id
        if notes:
            entry.notes = notes
        self._touch(bid, actor)
        self._commit()
        return entry

    def counter_negotiation(self, bid: Bid, index: int, counter, actor: User,
                            notes: Optional[str] = None) -> BidNegotiation:
        """Mark the entry countered and open a new pending entry with the counter value."""
        self._require_negotiable(bid)
        entry = self._negotiation_entry(bid, index)
        self._require_pending(entry)
        if counter.field != entry.field:
            raise ValidationError(
                f"Counter offer must target '{entry.field}', not '{counter.field}'"
            )

        value = proposal_value(counter)
        entry.status = NegotiationStatus.COUNTERED
        entry.counter_offer = value
        entry.resolved_at = datetime.utcnow()
        entry.resolved_by_id = actor.id

        new_entry = self._append_negotiation(bid, entry.field, value, actor, notes)
        self._touch(bid, actor)
        self._commit()
        return new_entry

    # -- milestones ---------------------------------------------------------

    @staticmethod
    def _milestone(bid: Bid, milestone_id: UUID) -> BidMilestone:
        for milestone in bid.milestones:
            if milestone.id == milestone_id:
                return milestone
        raise NotFoundError("Milestone not found", milestone_id=str(milestone_id))

    def advance_milestone(self, bid: Bid, milestone_id: UUID, status: str, actor: Optional[User],
                          completion_proof: Optional[List[dict]] = None) -> BidMilestone:
        if not BidStateMachine.can_manage_milestones(bid.status):
            raise ValidationError("Milestones can only change on an accepted bid", status=bid.status)

        milestone = self._milestone(bid, milestone_id)
        valid, message = MilestoneStateMachine.validate_transition(
            milestone.status, status, milestone.approved
        )
        if not valid:
            raise InvalidTransitionError(milestone.status, status, message, milestone_id=str(milestone.id))

        now = datetime.utcnow()
        milestone.status = status
        events = []
        if status == MilestoneStatus.IN_PROGRESS:
            milestone.started_at = now
        elif status == MilestoneStatus.COMPLETED:
            milestone.completed_at = now
            if completion_proof:
                milestone.completion_proof = list(milestone.completion_proof or []) + list(completion_proof)
            events.append(self._event(
                BidEventType.MILESTONE_COMPLETED, bid, actor,
                milestone_id=str(milestone.id), milestone_title=milestone.title,
            ))
        elif status == MilestoneStatus.PAID:
            milestone.paid_at = now
            events.append(self._event(
                BidEventType.PAYMENT_RECEIVED, bid, actor,
                milestone_id=str(milestone.id), milestone_title=milestone.title,
                amount=_money_json(milestone.amount),
            ))

        self._touch(bid, actor)
        self._commit()
        logger.info(f"Milestone {milestone.id} of bid {bid.id} moved to {status}")
        self._emit(events)
        return milestone

    def approve_milestone(self, bid: Bid, milestone_id: UUID, actor: User,
                          approved: bool = True, comments: Optional[str] = None) -> BidMilestone:
        if not BidStateMachine.can_manage_milestones(bid.status):
            raise ValidationError("Milestones can only change on an accepted bid", status=bid.status)

        milestone = self._milestone(bid, milestone_id)
        if milestone.status != MilestoneStatus.COMPLETED:
            raise ValidationError(
                "Only completed milestones can be approved", milestone_status=milestone.status
            )

        milestone.approved = approved
        milestone.approved_at = datetime.utcnow()
        milestone.approval_comments = comments
        self._touch(bid, actor)
        self._commit()

        if approved:
            self._emit([self._event(
                BidEventType.MILESTONE_APPROVED, bid, actor,
                milestone_id=str(milestone.id), milestone_title=milestone.title,
            )])
        return milestone

    # -- client interaction -------------------------------------------------

    def mark_viewed(self, bid: Bid, actor: User) -> Bid:
        """
        First view by the project's client is recorded; other readers are ignored.

        The flags are written through the table, not the mapper, so a view
        leaves ``version`` untouched and never invalidates a version the
        company already holds.
        """
        if actor.id != bid.client_id or bid.viewed_by_client:
            return bid
        self.db.execute(
            update(Bid.__table__)
            .where(Bid.__table__.c.id == bid.id, Bid.__table__.c.viewed_by_client.isnot(True))
            .values(viewed_by_client=True, viewed_at=datetime.utcnow())
        )
        self.db.commit()
        self.db.refresh(bid)
        return bid

    def toggle_shortlist(self, bid: Bid, actor: User) -> Bid:
        if BidStateMachine.is_terminal_status(bid.status) or bid.status == BidStatus.DRAFT:
            raise ValidationError(f"Cannot shortlist a bid that is '{bid.status}'")
        bid.shortlisted = not bid.shortlisted
        bid.shortlisted_at = datetime.utcnow() if bid.shortlisted else None
        self._touch(bid, actor)
        self.refresh_project_cache(bid.project)
        self._commit()
        return bid

    def add_question(self, bid: Bid, actor: User, question: str) -> BidQuestion:
        item = BidQuestion(question=question, asked_by_id=actor.id, asked_at=datetime.utcnow())
        bid.questions.append(item)
        self._touch(bid, actor)
        self._commit()
        return item

    def answer_question(self, bid: Bid, question_id: UUID, actor: User, answer: str) -> BidQuestion:
        item = next((q for q in bid.questions if q.id == question_id), None)
        if item is None:
            raise NotFoundError("Question not found", question_id=str(question_id))
        if item.answer:
            raise ConflictError("Question has already been answered")
        item.answer = answer
        item.answered_by_id = actor.id
        item.answered_at = datetime.utcnow()
        self._touch(bid, actor)
        self._commit()
        return item

    def submit_feedback(self, bid: Bid, actor: User, rating: int, comments: Optional[str] = None) -> Bid:
        """Client feedback on a decided bid; folds the rating into the company's average."""
        if not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5")
        if bid.status not in (BidStatus.ACCEPTED, BidStatus.REJECTED):
            raise ValidationError("Feedback can only be left on accepted or rejected bids")
        if bid.feedback_submitted_at is not None:
            raise ConflictError("Feedback has already been submitted for this bid")

        bid.feedback_rating = rating
        bid.feedback_comments = comments
        bid.feedback_submitted_at = datetime.utcnow()

        company = bid.company
        count = company.rating_count or 0
        company.rating_average = round(((company.rating_average or 0.0) * count + rating) / (count + 1), 2)
        company.rating_count = count + 1

        self._touch(bid, actor)
        self.refresh_project_cache(bid.project)
        self._commit()
        return bid

    # -- queries ------------------------------------------------------------

    def find_by_project(self, project_id: UUID, status: Optional[str] = None) -> List[Bid]:
        query = (
            self.db.query(Bid)
            .options(joinedload(Bid.company), joinedload(Bid.created_by))
            .filter(Bid.project_id == project_id)
        )
        if status:
            query = query.filter(Bid.status == status)
        return query.order_by(Bid.created_at.desc()).all()

    def find_by_company(self, company_id: UUID, status: Optional[str] = None,
                        limit: Optional[int] = None) -> List[Bid]:
        query = (
            self.db.query(Bid)
            .options(joinedload(Bid.project), joinedload(Bid.client))
            .filter(Bid.company_id == company_id)
        )
        if status:
            query = query.filter(Bid.status == status)
        query = query.order_by(Bid.created_at.desc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def find_by_client(self, client_id: UUID, status: Optional[str] = None,
                       limit: Optional[int] = None) -> List[Bid]:
        query = (
            self.db.query(Bid)
            .options(joinedload(Bid.company), joinedload(Bid.project))
            .filter(Bid.client_id == client_id)
        )
        if status:
            query = query.filter(Bid.status == status)
        query = query.order_by(Bid.created_at.desc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def company_bid_stats(self, company_id: UUID) -> Dict[str, int]:
        rows = (
            self.db.query(Bid.status, func.count(Bid.id))
            .filter(Bid.company_id == company_id)
            .group_by(Bid.status)
            .all()
        )
        stats = {status: 0 for status in BidStatus.ALL}
        for status, count in rows:
            stats[status] = count
        stats["total"] = sum(count for _, count in rows)
        return stats

    @staticmethod
    def rank_by_score(bids: List[Bid]) -> List[Bid]:
        return sorted(bids, key=lambda b: b.score, reverse=True)

    # -- sweeps -------------------------------------------------------------

    def _sweep(self, ids: List[UUID], target: str, should_apply, notes: str,
               event_type: str) -> Dict[str, int]:
        result = {"checked": len(ids), "updated": 0, "skipped": 0, "failed": 0}
        events = []
        projects = {}

        for bid_id in ids:
            try:
                with self.db.begin_nested():
                    bid = (
                        self.db.query(Bid)
                        .populate_existing()
                        .filter(Bid.id == bid_id)
                        .first()
                    )
                    # Re-checked under the savepoint; a concurrent terminal transition wins
                    if bid is None or not should_apply(bid):
                        result["skipped"] += 1
                        continue
                    now = self._set_status(bid, target, None, notes)
                    if target == BidStatus.WITHDRAWN:
                        bid.withdrawn_at = now
                    self.db.flush()
                result["updated"] += 1
                projects[bid.project_id] = bid.project
                events.append(self._event(event_type, bid))
            except (DomainError, SQLAlchemyError) as e:
                result["failed"] += 1
                logger.error(f"Sweep to '{target}' failed for bid {bid_id}: {e}")

        for project in projects.values():
            self.refresh_project_cache(project)
        self._commit()
        self._emit(events)
        return result

    def expire_stale_bids(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Move open bids whose ``expires_at`` has passed to ``expired``."""
        now = now or datetime.utcnow()
        ids = [
            row[0] for row in self.db.query(Bid.id)
            .filter(Bid.status.in_(list(BidStateMachine.OPEN)), Bid.expires_at.isnot(None), Bid.expires_at < now)
            .all()
        ]
        result = self._sweep(
            ids,
            BidStatus.EXPIRED,
            lambda bid: BidStateMachine.is_open(bid.status) and bid.expires_at is not None and bid.expires_at < now,
            "Bid expired automatically",
            BidEventType.BID_EXPIRED,
        )
        if result["checked"]:
            logger.info(f"Bid expiry sweep: {result}")
        return result

    def auto_withdraw_bids(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Withdraw non-terminal bids whose ``auto_withdraw_at`` has passed."""
        now = now or datetime.utcnow()
        ids = [
            row[0] for row in self.db.query(Bid.id)
            .filter(
                Bid.status.notin_(list(BidStateMachine.TERMINAL)),
                Bid.auto_withdraw_at.isnot(None),
                Bid.auto_withdraw_at < now,
            )
            .all()
        ]
        result = self._sweep(
            ids,
            BidStatus.WITHDRAWN,
            lambda bid: (
                not BidStateMachine.is_terminal_status(bid.status)
                and bid.auto_withdraw_at is not None
                and bid.auto_withdraw_at < now
            ),
            "Bid withdrawn automatically",
            BidEventType.BID_WITHDRAWN,
        )
        if result["checked"]:
            logger.info(f"Bid auto-withdraw sweep: {result}")
        return result


def _jsonable(value):
    """Pydantic models and lists of them as plain JSON data."""
    if value is None:
        return None
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, datetime):
        return value.isoformat()
    return value
