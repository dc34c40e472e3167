from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from techconnect.core.errors import ConflictError, InvalidTransitionError, StaleWriteError, ValidationError
from techconnect.db.models import Bid, BidStatusHistory, ProjectInvitation
from techconnect.schemas.bid import BidCreate
from techconnect.services.bid_engine import AUTO_REJECT_NOTE, BidEngine, compute_total_amount, round_money

from conftest import bid_payload, make_company, make_project, make_user


class RecordingSink:
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def engine(db, sink):
    return BidEngine(db, sink)


def create(engine, db, project=None, company=None, **overrides):
    project = project or make_project(db)
    company = company or make_company(db)
    data = BidCreate(**bid_payload(project.id, **overrides))
    return engine.create_bid(company, company.owner, data)


def test_round_money_half_up():
    assert round_money("10.005") == Decimal("10.01")
    assert round_money(Decimal("99.994")) == Decimal("99.99")
    assert round_money(None) is None


def test_compute_total_amount():
    assert compute_total_amount(Decimal("150000"), Decimal("10")) == Decimal("165000.00")
    assert compute_total_amount(Decimal("999.99"), None) == Decimal("999.99")


def test_scenario_a_submit_sets_total_and_timers(engine, db, sink):
    bid = create(engine, db, amount="150000", tax_percentage="10")

    assert bid.total_amount == Decimal("165000.00")
    assert bid.status == "submitted"
    assert [h.status for h in bid.status_history] == ["draft", "submitted"]
    assert abs((bid.expires_at - bid.submitted_at) - timedelta(days=30)) <= timedelta(seconds=1)
    assert abs((bid.auto_withdraw_at - bid.submitted_at) - timedelta(days=60)) <= timedelta(seconds=1)
    assert abs(bid.submitted_at - datetime.utcnow()) < timedelta(seconds=5)

    assert [e.type for e in sink.events] == ["new_bid"]
    assert sink.events[0].client_id == bid.client_id


def test_amount_is_rounded_on_create_and_update(engine, db):
    bid = create(engine, db, amount="1234.565")
    assert bid.amount == Decimal("1234.57")

    engine.update_bid(bid, bid.created_by, {"amount": "10.004"})
    assert bid.amount == Decimal("10.00")


def test_total_amount_sticks_until_cleared(engine, db):
    bid = create(engine, db, amount="100000", tax_percentage="10")
    assert bid.total_amount == Decimal("110000.00")

    engine.update_bid(bid, bid.created_by, {"amount": "200000", "tax_percentage": "5"})
    assert bid.total_amount == Decimal("110000.00")

    engine.update_bid(bid, bid.created_by, {"total_amount": None})
    assert bid.total_amount == Decimal("210000.00")


def test_explicit_total_amount_is_kept(engine, db):
    bid = create(engine, db, amount="100000", tax_percentage="10", total_amount="105000")
    assert bid.total_amount == Decimal("105000.00")


def test_update_bumps_revision_and_ignores_protected_fields(engine, db):
    bid = create(engine, db)
    engine.update_bid(bid, bid.created_by, {"proposal": "x" * 150, "status": "accepted", "client_id": None})

    assert bid.status == "submitted"
    assert bid.revision_count == 1
    assert bid.last_revised_at is not None
    assert len(bid.proposal) == 150


def test_update_rejected_once_under_review(engine, db):
    bid = create(engine, db)
    client = bid.project.client
    engine.mark_under_review(bid, client)

    with pytest.raises(ValidationError):
        engine.update_bid(bid, bid.created_by, {"amount": "1"})


def test_duplicate_bid_is_a_conflict(engine, db):
    project = make_project(db)
    company = make_company(db)
    create(engine, db, project=project, company=company)

    with pytest.raises(ConflictError):
        create(engine, db, project=project, company=company)
    assert db.query(Bid).count() == 1


def test_cannot_bid_on_closed_project(engine, db):
    project = make_project(db, status="active")
    with pytest.raises(ValidationError):
        create(engine, db, project=project)


def test_invite_only_project_requires_invitation(engine, db):
    project = make_project(db, is_invite_only=True)
    outsider = make_company(db)
    with pytest.raises(ValidationError):
        create(engine, db, project=project, company=outsider)

    invited = make_company(db)
    db.add(ProjectInvitation(project_id=project.id, company_id=invited.id))
    db.commit()
    bid = create(engine, db, project=project, company=invited)
    assert bid.is_invited is True
    assert bid.invitation_source == "client_invite"


def test_draft_then_submit(engine, db, sink):
    bid = create(engine, db, submit=False)
    assert bid.status == "draft"
    assert bid.expires_at is None
    assert sink.events == []

    engine.submit(bid, bid.created_by)
    assert bid.status == "submitted"
    assert bid.expires_at is not None
    assert bid.project.status == "bidding"


def test_status_history_grows_by_one_and_is_append_only(engine, db):
    bid = create(engine, db)
    client = bid.project.client
    before = [(h.id, h.status, h.changed_at, h.notes) for h in bid.status_history]

    engine.mark_under_review(bid, client, "Looking closely")
    db.expire_all()
    history = db.query(BidStatusHistory).filter_by(bid_id=bid.id).order_by(BidStatusHistory.id).all()

    assert len(history) == len(before) + 1
    assert [(h.id, h.status, h.changed_at, h.notes) for h in history[:-1]] == before
    assert history[-1].status == "under_review"
    assert history[-1].changed_by_id == client.id


def test_invalid_transition_leaves_history_untouched(engine, db):
    bid = create(engine, db)
    engine.withdraw(bid, bid.created_by, "Changed plans")
    count = len(bid.status_history)

    with pytest.raises(InvalidTransitionError) as exc:
        engine.accept(bid, bid.project.client)
    assert exc.value.current == "withdrawn"
    assert len(bid.status_history) == count


def test_accept_rejects_other_open_bids_and_activates_project(engine, db, sink):
    project = make_project(db)
    winner = create(engine, db, project=project)
    loser = create(engine, db, project=project)
    drafted = create(engine, db, project=project, submit=False)
    sink.events.clear()

    engine.accept(winner, project.client, "Best value")

    assert winner.status == "accepted"
    assert winner.accepted_at is not None
    assert loser.status == "rejected"
    assert loser.rejection_reason == AUTO_REJECT_NOTE
    assert loser.status_history[-1].notes == AUTO_REJECT_NOTE
    assert drafted.status == "draft"
    assert project.status == "active"
    assert project.selected_bid_id == winner.id
    assert project.selected_company_id == winner.company_id
    assert sorted(e.type for e in sink.events) == ["bid_accepted", "bid_rejected"]


def test_reject_stores_reason(engine, db):
    bid = create(engine, db)
    engine.reject(bid, bid.project.client, "Over budget")
    assert bid.status == "rejected"
    assert bid.rejection_reason == "Over budget"
    assert bid.rejected_at is not None


def test_change_status_is_bound_by_transition_table(engine, db):
    bid = create(engine, db, submit=False)
    admin = make_user(db, role="admin")
    with pytest.raises(InvalidTransitionError):
        engine.change_status(bid, "accepted", admin)
    with pytest.raises(InvalidTransitionError):
        engine.change_status(bid, "bogus", admin)


def test_expected_version_mismatch_is_stale(engine, db):
    bid = create(engine, db)
    with pytest.raises(StaleWriteError):
        engine.mark_under_review(bid, bid.project.client, expected_version=bid.version - 1)


def test_version_increments_on_every_write(engine, db):
    bid = create(engine, db)
    version = bid.version
    engine.toggle_shortlist(bid, bid.project.client)
    assert bid.version == version + 1


def test_concurrent_write_surfaces_as_stale(engine, db):
    bid = create(engine, db)
    bids = Bid.__table__
    db.execute(update(bids).where(bids.c.id == bid.id).values(version=bids.c.version + 1))

    with pytest.raises(StaleWriteError):
        engine.reject(bid, bid.project.client, "Too slow")


def test_scenario_d_is_expired_without_sweep(engine, db):
    bid = create(engine, db)
    bid.expires_at = datetime.utcnow() - timedelta(minutes=1)
    db.commit()

    fetched = engine.get_bid(bid.id)
    assert fetched.status == "submitted"
    assert fetched.is_expired is True


def test_is_expired_false_without_expiry(engine, db):
    bid = create(engine, db, submit=False)
    assert bid.expires_at is None
    assert bid.is_expired is False


def test_project_cache_mirrors_bid_rows(engine, db):
    project = make_project(db)
    bid = create(engine, db, project=project)
    create(engine, db, project=project, submit=False)

    assert len(project.bid_summaries) == 1
    summary = project.bid_summaries[0]
    assert summary["bid_id"] == str(bid.id)
    assert summary["status"] == "submitted"
    assert summary["score"] == bid.score

    engine.withdraw(bid, bid.created_by)
    assert project.bid_summaries[0]["status"] == "withdrawn"


def test_mark_viewed_only_by_client(engine, db):
    bid = create(engine, db)
    engine.mark_viewed(bid, bid.created_by)
    assert bid.viewed_by_client is False

    engine.mark_viewed(bid, bid.project.client)
    first_view = bid.viewed_at
    assert bid.viewed_by_client is True

    engine.mark_viewed(bid, bid.project.client)
    assert bid.viewed_at == first_view


def test_client_view_keeps_company_version_valid(engine, db):
    bid = create(engine, db)
    held_version = bid.version

    engine.mark_viewed(bid, bid.project.client)
    assert bid.version == held_version

    engine.update_bid(bid, bid.created_by, {"executive_summary": "Six weeks"}, expected_version=held_version)
    assert bid.version == held_version + 1


def test_questions_and_answers(engine, db):
    bid = create(engine, db)
    question = engine.add_question(bid, bid.project.client, "Do you offer support?")
    engine.answer_question(bid, question.id, bid.created_by, "Yes, six months.")
    assert question.answer == "Yes, six months."

    with pytest.raises(ConflictError):
        engine.answer_question(bid, question.id, bid.created_by, "Again")


def test_feedback_updates_company_rating(engine, db):
    company = make_company(db, rating=4.0, rating_count=1)
    bid = create(engine, db, company=company)
    client = bid.project.client

    with pytest.raises(ValidationError):
        engine.submit_feedback(bid, client, 5)

    engine.reject(bid, client, "Chose another vendor")
    engine.submit_feedback(bid, client, 5, "Strong proposal")
    assert company.rating_count == 2
    assert company.rating_average == 4.5

    with pytest.raises(ConflictError):
        engine.submit_feedback(bid, client, 1)


def test_company_bid_stats(engine, db):
    company = make_company(db)
    create(engine, db, company=company)
    bid = create(engine, db, company=company)
    engine.withdraw(bid, bid.created_by)

    stats = engine.company_bid_stats(company.id)
    assert stats["submitted"] == 1
    assert stats["withdrawn"] == 1
    assert stats["total"] == 2
    assert stats["accepted"] == 0
