"""
Admin API for Scheduled Jobs

Endpoints for monitoring the scheduler and running sweeps on demand.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional
from pydantic import BaseModel

from techconnect.core.deps import get_current_admin
from techconnect.db.session import get_db
from techconnect.db.models import User
from techconnect.services.scheduler_service import scheduler_service

router = APIRouter(prefix="/api/admin/jobs", tags=["admin", "jobs"])


class JobStatus(BaseModel):
    """Job status response."""
    id: str
    name: str
    next_run: Optional[str] = None
    trigger: str
    last_result: Optional[dict] = None


class JobTriggerRequest(BaseModel):
    """Request to manually trigger a job."""
    job_id: str


@router.get("/", response_model=List[JobStatus])
def list_scheduled_jobs(current_user: User = Depends(get_current_admin)):
    """List all scheduled jobs with their status."""
    return scheduler_service.get_job_status()


@router.post("/trigger")
def trigger_job(request: JobTriggerRequest, current_user: User = Depends(get_current_admin)):
    """Schedule a registered job to run now."""
    if not scheduler_service.trigger_job(request.job_id):
        raise HTTPException(status_code=404, detail="Job not found")

    return {"message": f"Job {request.job_id} triggered successfully"}


@router.get("/health")
def scheduler_health(current_user: User = Depends(get_current_admin)):
    return {
        "scheduler_running": scheduler_service.scheduler.running,
        "total_jobs": len(scheduler_service.scheduler.get_jobs()),
        "jobs": scheduler_service.get_job_status(),
        "last_results": scheduler_service.last_results,
    }


@router.post("/bid-expiry/run")
def run_bid_expiry(
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """Run the bid expiry sweep synchronously and return its counts."""
    return scheduler_service.run_bid_expiry(db)


@router.post("/bid-auto-withdraw/run")
def run_auto_withdraw(
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return scheduler_service.run_auto_withdraw(db)


@router.post("/notification-cleanup/run")
def run_notification_cleanup(
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return scheduler_service.run_notification_cleanup(db)
