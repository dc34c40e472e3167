"""
Scheduler Service for TechConnect

Manages scheduled jobs for:
- Bid expiry (open bids past ``expires_at``)
- Bid auto-withdrawal (non-terminal bids past ``auto_withdraw_at``)
- Expired notification cleanup
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, List, Optional
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from techconnect.core.errors import DomainError
from techconnect.db.session import SessionLocal
from techconnect.services.bid_engine import BidEngine
from techconnect.services.notification_service import (
    NotificationEventSink,
    cleanup_expired_notifications,
)

logger = logging.getLogger(__name__)


class SchedulerService:
    """
    Background job scheduler using APScheduler.

    Job methods can also be called directly with an open session (admin
    endpoints, tests); without one they open and close their own.
    """

    def __init__(self, session_factory=SessionLocal):
        self.scheduler = BackgroundScheduler()
        self.session_factory = session_factory
        self.jobs = {}
        self.last_results: Dict[str, dict] = {}

    def start(self):
        """Start the scheduler and register all jobs."""
        if self.scheduler.running:
            logger.warning("Scheduler already running")
            return

        logger.info("Starting scheduler service...")
        self._register(self.run_bid_expiry, IntervalTrigger(minutes=15), "bid_expiry", "Bid Expiry Sweep")
        self._register(self.run_auto_withdraw, IntervalTrigger(hours=1), "bid_auto_withdraw", "Bid Auto-Withdraw Sweep")
        self._register(
            self.run_notification_cleanup, CronTrigger(hour=2, minute=0),
            "notification_cleanup", "Expired Notification Cleanup",
        )

        self.scheduler.start()
        logger.info(f"Scheduler started with {len(self.scheduler.get_jobs())} jobs")

    def stop(self):
        if not self.scheduler.running:
            return
        logger.info("Stopping scheduler service...")
        self.scheduler.shutdown()
        logger.info("Scheduler stopped")

    def _register(self, func, trigger, job_id: str, name: str):
        job = self.scheduler.add_job(
            func=func,
            trigger=trigger,
            id=job_id,
            name=name,
            replace_existing=True
        )
        self.jobs[job_id] = job
        logger.info(f"Registered job: {job_id} ({trigger})")

    @contextmanager
    def _session(self, db: Optional[Session]):
        if db is not None:
            yield db
            return
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def run_bid_expiry(self, db: Optional[Session] = None, now: Optional[datetime] = None) -> dict:
        """Expire open bids past their expiry date."""
        logger.info("Running bid expiry sweep...")
        with self._session(db) as session:
            try:
                result = BidEngine(session, NotificationEventSink(session)).expire_stale_bids(now)
            except (DomainError, SQLAlchemyError) as e:
                logger.error(f"Error in bid expiry sweep: {e}")
                session.rollback()
                result = {"error": str(e)}
        self.last_results["bid_expiry"] = result
        return result

    def run_auto_withdraw(self, db: Optional[Session] = None, now: Optional[datetime] = None) -> dict:
        """Withdraw bids that outlived their auto-withdraw date."""
        logger.info("Running bid auto-withdraw sweep...")
        with self._session(db) as session:
            try:
                result = BidEngine(session, NotificationEventSink(session)).auto_withdraw_bids(now)
            except (DomainError, SQLAlchemyError) as e:
                logger.error(f"Error in bid auto-withdraw sweep: {e}")
                session.rollback()
                result = {"error": str(e)}
        self.last_results["bid_auto_withdraw"] = result
        return result

    def run_notification_cleanup(self, db: Optional[Session] = None, now: Optional[datetime] = None) -> dict:
        """Delete notifications past their TTL."""
        logger.info("Running notification cleanup...")
        with self._session(db) as session:
            try:
                result = {"deleted": cleanup_expired_notifications(session, now)}
            except SQLAlchemyError as e:
                logger.error(f"Error in notification cleanup: {e}")
                session.rollback()
                result = {"error": str(e)}
        self.last_results["notification_cleanup"] = result
        return result

    def get_job_status(self) -> List[dict]:
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger),
                "last_result": self.last_results.get(job.id),
            })
        return jobs

    def trigger_job(self, job_id: str) -> bool:
        """Schedule a registered job to run immediately."""
        job = self.scheduler.get_job(job_id)
        if job:
            job.modify(next_run_time=datetime.now())
            logger.info(f"Manually triggered job: {job_id}")
            return True
        return False


# Singleton instance
scheduler_service = SchedulerService()
