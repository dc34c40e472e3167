"""
Bid ranking heuristic.

``calculate_score`` is a pure function of a ``ScoreSnapshot``; it never
touches the database, so the same snapshot always yields the same score.
"""
from dataclasses import dataclass
from typing import Optional

BASE_SCORE = 100
MIN_SCORE = 100
MAX_SCORE = 200


@dataclass(frozen=True)
class ScoreSnapshot:
    rating: Optional[float]
    proposal_length: int
    milestone_count: int
    has_attachments: bool
    is_invited: bool

    @classmethod
    def from_bid(cls, bid, rating: Optional[float] = None) -> "ScoreSnapshot":
        if rating is None and bid.company is not None:
            rating = bid.company.rating_average
        return cls(
            rating=rating,
            proposal_length=len(bid.proposal or ""),
            milestone_count=len(bid.milestones or []),
            has_attachments=bool(bid.attachments),
            is_invited=bool(bid.is_invited),
        )


def calculate_score(snapshot: ScoreSnapshot) -> float:
    score = float(BASE_SCORE)

    if snapshot.rating:
        score += min(max(snapshot.rating, 0.0), 5.0) * 10

    if 100 <= snapshot.proposal_length <= 500:
        score += 20
    elif 500 < snapshot.proposal_length <= 1000:
        score += 10

    if snapshot.milestone_count >= 3:
        score += 15

    if snapshot.has_attachments:
        score += 10

    if snapshot.is_invited:
        score += 25

    return round(min(max(score, MIN_SCORE), MAX_SCORE), 2)
