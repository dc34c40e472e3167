from datetime import datetime, timedelta

from techconnect.db.models import Notification
from techconnect.core.errors import DomainError
from techconnect.schemas.bid import BidCreate
from techconnect.services.bid_engine import BidEngine
from techconnect.services.notification_service import NotificationEventSink, create_notification
from techconnect.services.scheduler_service import SchedulerService

from conftest import TestingSessionLocal, bid_payload, make_company, make_project, make_user


def submitted_bid(db, submit=True):
    engine = BidEngine(db)
    project = make_project(db)
    company = make_company(db)
    return engine.create_bid(company, company.owner, BidCreate(**bid_payload(project.id, submit=submit)))


def test_expiry_sweep_moves_open_bids_past_expiry(db):
    stale = submitted_bid(db)
    fresh = submitted_bid(db)
    stale.expires_at = datetime.utcnow() - timedelta(hours=1)
    db.commit()

    result = BidEngine(db).expire_stale_bids()

    assert result == {"checked": 1, "updated": 1, "skipped": 0, "failed": 0}
    assert stale.status == "expired"
    assert stale.status_history[-1].status == "expired"
    assert stale.status_history[-1].changed_by_id is None
    assert fresh.status == "submitted"


def test_expiry_sweep_ignores_terminal_bids(db):
    bid = submitted_bid(db)
    engine = BidEngine(db)
    engine.reject(bid, bid.project.client, "No")
    bid.expires_at = datetime.utcnow() - timedelta(days=1)
    db.commit()
    history = len(bid.status_history)

    result = engine.expire_stale_bids()

    assert result["checked"] == 0
    assert bid.status == "rejected"
    assert len(bid.status_history) == history


def test_one_failing_bid_does_not_stop_the_sweep(db, monkeypatch):
    broken = submitted_bid(db)
    healthy = submitted_bid(db)
    for bid in (broken, healthy):
        bid.expires_at = datetime.utcnow() - timedelta(hours=1)
    db.commit()

    original = BidEngine._set_status

    def failing_set_status(self, bid, target, actor, notes=None):
        if bid.id == broken.id:
            raise DomainError("history write failed")
        return original(self, bid, target, actor, notes)

    monkeypatch.setattr(BidEngine, "_set_status", failing_set_status)
    result = BidEngine(db).expire_stale_bids()

    assert result == {"checked": 2, "updated": 1, "skipped": 0, "failed": 1}
    db.refresh(broken)
    db.refresh(healthy)
    assert broken.status == "submitted"
    assert healthy.status == "expired"


def test_expiry_sweep_uses_given_clock(db):
    bid = submitted_bid(db)
    engine = BidEngine(db)

    assert engine.expire_stale_bids(now=datetime.utcnow())["updated"] == 0
    assert engine.expire_stale_bids(now=bid.expires_at + timedelta(seconds=1))["updated"] == 1


def test_auto_withdraw_covers_drafts_and_open_bids(db):
    draft = submitted_bid(db, submit=False)
    open_bid = submitted_bid(db)
    draft.auto_withdraw_at = datetime.utcnow() - timedelta(minutes=5)
    open_bid.auto_withdraw_at = datetime.utcnow() - timedelta(minutes=5)
    db.commit()

    result = BidEngine(db).auto_withdraw_bids()

    assert result["updated"] == 2
    assert draft.status == "withdrawn"
    assert open_bid.status == "withdrawn"
    assert open_bid.withdrawn_at is not None


def test_sweep_notifies_company_owner(db):
    bid = submitted_bid(db)
    bid.expires_at = datetime.utcnow() - timedelta(hours=1)
    db.commit()

    BidEngine(db, NotificationEventSink(db)).expire_stale_bids()

    owner_id = bid.company.user_id
    notes = db.query(Notification).filter_by(user_id=owner_id, type="bid_expired").all()
    assert len(notes) == 1
    assert notes[0].related_bid_id == bid.id


def test_scheduler_jobs_record_last_result(db):
    service = SchedulerService(session_factory=TestingSessionLocal)
    bid = submitted_bid(db)
    bid.expires_at = datetime.utcnow() - timedelta(hours=1)
    db.commit()

    result = service.run_bid_expiry(db)

    assert result["updated"] == 1
    assert service.last_results["bid_expiry"] == result
    assert service.run_auto_withdraw(db)["updated"] == 0


def test_notification_cleanup_job(db):
    user = make_user(db)
    old = create_notification(db, user.id, "system", "Old", "Stale message")
    create_notification(db, user.id, "system", "New", "Fresh message")
    old.expires_at = datetime.utcnow() - timedelta(days=1)
    db.commit()

    result = SchedulerService().run_notification_cleanup(db)

    assert result == {"deleted": 1}
    assert [n.title for n in db.query(Notification).all()] == ["New"]
