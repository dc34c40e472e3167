import pytest

from techconnect.schemas.bid import BidCreate
from techconnect.services.bid_engine import BidEngine
from techconnect.utils.scoring import MAX_SCORE, MIN_SCORE, ScoreSnapshot, calculate_score

from conftest import bid_payload, make_company, make_project


def snapshot(**overrides):
    values = {
        "rating": 0.0,
        "proposal_length": 0,
        "milestone_count": 0,
        "has_attachments": False,
        "is_invited": False,
    }
    values.update(overrides)
    return ScoreSnapshot(**values)


def test_base_score_without_signals():
    assert calculate_score(snapshot()) == 100
    assert calculate_score(snapshot(rating=None)) == 100


@pytest.mark.parametrize("length,bonus", [
    (99, 0), (100, 20), (500, 20), (501, 10), (1000, 10), (1001, 0),
])
def test_proposal_length_bands(length, bonus):
    assert calculate_score(snapshot(proposal_length=length)) == 100 + bonus


def test_milestones_attachments_and_invitation():
    assert calculate_score(snapshot(milestone_count=2)) == 100
    assert calculate_score(snapshot(milestone_count=3)) == 115
    assert calculate_score(snapshot(has_attachments=True)) == 110
    assert calculate_score(snapshot(is_invited=True)) == 125


def test_rating_is_clamped():
    assert calculate_score(snapshot(rating=9.0)) == 150
    assert calculate_score(snapshot(rating=-3.0)) == 100


def test_fractional_ratings_keep_their_ordering():
    scores = [
        calculate_score(snapshot(rating=r, proposal_length=300, milestone_count=3))
        for r in (4.21, 4.24, 4.25, 4.35)
    ]
    assert scores == [177.1, 177.4, 177.5, 178.5]
    assert scores == sorted(set(scores))


def test_score_bounds():
    best = snapshot(rating=5.0, proposal_length=300, milestone_count=5, has_attachments=True, is_invited=True)
    assert calculate_score(best) == MAX_SCORE
    assert calculate_score(snapshot(rating=-100.0)) == MIN_SCORE


def test_same_snapshot_same_score():
    snap = snapshot(rating=4.3, proposal_length=700, milestone_count=4)
    assert calculate_score(snap) == calculate_score(snap) == 168


def test_scenario_b_rating_difference(db):
    engine = BidEngine(db)
    project = make_project(db)
    milestones = [{"title": f"Phase {i}", "amount": "50000"} for i in range(3)]
    proposal = "p" * 300

    scores = []
    for rating in (4.0, 4.8):
        company = make_company(db, rating=rating)
        data = BidCreate(**bid_payload(project.id, proposal=proposal, milestones=milestones))
        scores.append(engine.create_bid(company, company.owner, data).score)

    assert scores == [175, 183]
    assert scores[1] - scores[0] == 8


def test_rank_by_score_orders_descending(db):
    engine = BidEngine(db)
    project = make_project(db)
    low = engine.create_bid(*_company_and_owner(db, 1.0), BidCreate(**bid_payload(project.id)))
    high = engine.create_bid(*_company_and_owner(db, 4.5), BidCreate(**bid_payload(project.id)))

    assert engine.rank_by_score([low, high]) == [high, low]


def _company_and_owner(db, rating):
    company = make_company(db, rating=rating)
    return company, company.owner
