from decimal import Decimal

import pytest
from pydantic import TypeAdapter

from techconnect.core.errors import NotFoundError, StaleWriteError, ValidationError
from techconnect.schemas.bid import BidCreate, NegotiationProposal
from techconnect.services.bid_engine import BidEngine

from conftest import bid_payload, make_company, make_project

proposal_adapter = TypeAdapter(NegotiationProposal)


def proposal(field, value):
    return proposal_adapter.validate_python({"field": field, "new_value": value})


@pytest.fixture
def engine(db):
    return BidEngine(db)


@pytest.fixture
def bid(engine, db):
    project = make_project(db)
    company = make_company(db)
    return engine.create_bid(company, company.owner, BidCreate(**bid_payload(project.id, amount="150000")))


def test_proposal_union_rejects_unknown_field():
    with pytest.raises(ValueError):
        proposal("status", "accepted")


def test_scenario_c_accept_amount_negotiation(engine, bid):
    client = bid.project.client
    entry = engine.propose_negotiation(bid, proposal("amount", "140000"), client, "Tighter budget")

    assert entry.status == "pending"
    assert entry.old_value == "150000.00"
    assert entry.new_value == "140000.00"
    assert bid.amount == Decimal("150000.00")

    accepted = engine.accept_negotiation(bid, entry.position, bid.created_by)
    assert bid.amount == Decimal("140000.00")
    assert accepted.status == "accepted"
    assert accepted.final_accepted is True
    assert accepted.resolved_by_id == bid.created_by_id
    assert bid.revision_count == 1


def test_accept_rejects_pending_siblings_for_same_field(engine, bid):
    client = bid.project.client
    first = engine.propose_negotiation(bid, proposal("amount", "140000"), client)
    second = engine.propose_negotiation(bid, proposal("amount", "145000"), client)
    other = engine.propose_negotiation(bid, proposal("tax_percentage", "5"), client)

    engine.accept_negotiation(bid, first.position, bid.created_by)

    assert second.status == "rejected"
    assert "Superseded" in second.notes
    assert other.status == "pending"


def test_accept_fails_when_live_value_moved(engine, bid):
    entry = engine.propose_negotiation(bid, proposal("amount", "140000"), bid.project.client)
    engine.update_bid(bid, bid.created_by, {"amount": "155000"})

    with pytest.raises(StaleWriteError):
        engine.accept_negotiation(bid, entry.position, bid.created_by)
    assert bid.amount == Decimal("155000.00")


def test_reject_leaves_live_value(engine, bid):
    entry = engine.propose_negotiation(bid, proposal("amount", "100000"), bid.project.client)
    engine.reject_negotiation(bid, entry.position, bid.created_by, "Too low")

    assert entry.status == "rejected"
    assert entry.notes == "Too low"
    assert bid.amount == Decimal("150000.00")

    with pytest.raises(ValidationError):
        engine.accept_negotiation(bid, entry.position, bid.created_by)


def test_counter_opens_new_pending_entry(engine, bid):
    entry = engine.propose_negotiation(bid, proposal("amount", "120000"), bid.project.client)
    counter = engine.counter_negotiation(bid, entry.position, proposal("amount", "135000"), bid.created_by)

    assert entry.status == "countered"
    assert entry.counter_offer == "135000.00"
    assert counter.status == "pending"
    assert counter.position == entry.position + 1
    assert counter.proposed_by_id == bid.created_by_id

    engine.accept_negotiation(bid, counter.position, bid.project.client)
    assert bid.amount == Decimal("135000.00")


def test_counter_must_target_same_field(engine, bid):
    entry = engine.propose_negotiation(bid, proposal("amount", "120000"), bid.project.client)
    with pytest.raises(ValidationError):
        engine.counter_negotiation(bid, entry.position, proposal("tax_percentage", "2"), bid.created_by)


def test_milestone_negotiation_replaces_milestones(engine, bid):
    milestones = [
        {"title": "Design", "amount": "40000"},
        {"title": "Build", "amount": "80000"},
    ]
    entry = engine.propose_negotiation(bid, proposal("milestones", milestones), bid.project.client)
    engine.accept_negotiation(bid, entry.position, bid.created_by)

    assert [m.title for m in bid.milestones] == ["Design", "Build"]
    assert bid.milestones[1].amount == Decimal("80000.00")
    assert all(m.status == "pending" for m in bid.milestones)


def test_timeline_negotiation(engine, bid):
    entry = engine.propose_negotiation(
        bid, proposal("proposed_timeline", {"value": 6, "unit": "weeks"}), bid.project.client
    )
    engine.accept_negotiation(bid, entry.position, bid.created_by)
    assert bid.proposed_timeline["value"] == 6
    assert bid.timeline_in_days == 42


def test_negotiation_requires_open_bid(engine, bid):
    engine.withdraw(bid, bid.created_by)
    with pytest.raises(ValidationError):
        engine.propose_negotiation(bid, proposal("amount", "1"), bid.project.client)


def test_unknown_entry_index(engine, bid):
    with pytest.raises(NotFoundError):
        engine.accept_negotiation(bid, 7, bid.created_by)
