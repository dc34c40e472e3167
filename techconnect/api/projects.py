from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID
import logging

from techconnect.core.config import settings
from techconnect.core.deps import get_current_user
from techconnect.db.session import get_db
from techconnect.db.models import Company, Project, ProjectInvitation, User
from techconnect.schemas.project import ProjectCreate, ProjectUpdate, ProjectCancel, ProjectInvite, ProjectOut
from techconnect.services.bid_engine import BidEngine
from techconnect.services.notification_service import NotificationEventSink, NotificationType, notify_company_owner
from techconnect.utils.bid_state import BidStateMachine
from techconnect.utils.pagination import PaginationParams, create_paginated_response, paginate_query
from techconnect.utils.permissions import is_admin, owns_project, require_role
from techconnect.utils.project_state import ProjectStateMachine, ProjectStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])

PUBLIC_STATUSES = [ProjectStatus.POSTED, ProjectStatus.BIDDING]


def _get_project(db: Session, project_id: UUID) -> Project:
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


def _require_owner(current_user: User, project: Project):
    if not (owns_project(current_user, project) or is_admin(current_user)):
        raise HTTPException(status_code=403, detail="Only the project owner can do this")


def _invite(db: Session, project: Project, company_id: UUID) -> ProjectInvitation:
    company = db.query(Company).filter(Company.id == company_id).first()
    if not company:
        raise HTTPException(status_code=404, detail=f"Company {company_id} not found")
    invitation = ProjectInvitation(project_id=project.id, company_id=company.id)
    db.add(invitation)
    return invitation


def _notify_invited(db: Session, project: Project, company_ids):
    for company_id in company_ids:
        notify_company_owner(
            db,
            company_id,
            NotificationType.PROJECT_INVITATION,
            "Project Invitation",
            f"You have been invited to bid on '{project.title}'.",
            related_project_id=project.id,
            action_url=f"/projects/{project.id}",
            priority="high",
            source="user",
        )


@router.post("/", response_model=ProjectOut, status_code=201)
def create_project(
    data: ProjectCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Post a project (or save it as a draft). Clients only."""
    require_role(current_user, "client", "admin")

    payload = data.model_dump(mode="json", exclude={"invited_company_ids", "budget_min", "budget_max", "deadline"})
    project = Project(
        client_id=current_user.id,
        budget_min=data.budget_min,
        budget_max=data.budget_max,
        deadline=data.deadline,
        expires_at=datetime.utcnow() + timedelta(days=settings.PROJECT_EXPIRY_DAYS),
        **payload,
    )
    if not project.client_info:
        project.client_info = {"name": current_user.name, "email": current_user.email, "phone": current_user.phone}
    db.add(project)
    db.flush()

    invited = list(dict.fromkeys(data.invited_company_ids))
    for company_id in invited:
        _invite(db, project, company_id)
    db.commit()
    db.refresh(project)
    logger.info(f"Project {project.id} created by {current_user.id} ({project.status})")

    if project.status != ProjectStatus.DRAFT:
        _notify_invited(db, project, invited)
    return project


@router.get("/")
def list_projects(
    pagination: PaginationParams = Depends(),
    category: Optional[str] = None,
    search: Optional[str] = None,
    budget_min: Optional[float] = None,
    budget_max: Optional[float] = None,
    db: Session = Depends(get_db),
):
    """Projects open for bidding, newest first"""
    query = db.query(Project).filter(
        Project.status.in_(PUBLIC_STATUSES),
        Project.is_invite_only == False,  # noqa: E712
    )
    if category:
        query = query.filter(Project.category == category)
    if search:
        term = f"%{search}%"
        query = query.filter(or_(Project.title.ilike(term), Project.description.ilike(term)))
    if budget_min is not None:
        query = query.filter(Project.budget_max >= budget_min)
    if budget_max is not None:
        query = query.filter(Project.budget_min <= budget_max)

    query = query.order_by(Project.created_at.desc())
    items, total = paginate_query(query, pagination.skip, pagination.limit)
    items = [ProjectOut.model_validate(p) for p in items]
    return create_paginated_response(items, total, pagination.page, pagination.limit)


@router.get("/mine")
def my_projects(
    pagination: PaginationParams = Depends(),
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    query = db.query(Project).filter(Project.client_id == current_user.id)
    if status:
        query = query.filter(Project.status == status)
    query = query.order_by(Project.created_at.desc())
    items, total = paginate_query(query, pagination.skip, pagination.limit)
    items = [ProjectOut.model_validate(p) for p in items]
    return create_paginated_response(items, total, pagination.page, pagination.limit)


@router.get("/invited", response_model=list[ProjectOut])
def invited_projects(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Projects the current company account was invited to"""
    if current_user.company is None:
        return []
    return (
        db.query(Project)
        .join(ProjectInvitation, ProjectInvitation.project_id == Project.id)
        .filter(ProjectInvitation.company_id == current_user.company.id)
        .order_by(ProjectInvitation.invited_at.desc())
        .all()
    )


@router.get("/{project_id}", response_model=ProjectOut)
def get_project(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    project = _get_project(db, project_id)
    if project.status == ProjectStatus.DRAFT and not (owns_project(current_user, project) or is_admin(current_user)):
        raise HTTPException(status_code=404, detail="Project not found")

    if not owns_project(current_user, project):
        project.view_count = (project.view_count or 0) + 1
        db.commit()
        db.refresh(project)
    return project


@router.put("/{project_id}", response_model=ProjectOut)
def update_project(
    project_id: UUID,
    data: ProjectUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Edit a project while it is still open.

    ``status`` moves through the project state machine; completing a project
    credits the selected company.
    """
    project = _get_project(db, project_id)
    _require_owner(current_user, project)

    changes = data.model_dump(exclude_unset=True)
    new_status = changes.pop("status", None)
    if changes.get("attachments") is not None:
        changes["attachments"] = data.model_dump(mode="json", include={"attachments"})["attachments"]

    if changes and not ProjectStateMachine.can_edit(project.status):
        raise HTTPException(status_code=400, detail=f"Project cannot be edited while '{project.status}'")
    for key, value in changes.items():
        setattr(project, key, value)

    if new_status and new_status != project.status:
        if not ProjectStateMachine.can_transition(project.status, new_status):
            raise HTTPException(
                status_code=400,
                detail=f"Cannot move project from '{project.status}' to '{new_status}'"
            )
        if new_status == ProjectStatus.CANCELLED:
            raise HTTPException(status_code=400, detail="Use the cancel endpoint to cancel a project")
        if new_status == ProjectStatus.ACTIVE:
            raise HTTPException(status_code=400, detail="A project becomes active by accepting a bid")
        project.status = new_status
        if new_status == ProjectStatus.COMPLETED and project.selected_company is not None:
            project.selected_company.completed_projects = (project.selected_company.completed_projects or 0) + 1

    db.commit()
    db.refresh(project)
    return project


@router.post("/{project_id}/cancel", response_model=ProjectOut)
def cancel_project(
    project_id: UUID,
    payload: ProjectCancel,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Cancel a project; every open bid on it is rejected"""
    project = _get_project(db, project_id)
    _require_owner(current_user, project)
    if not ProjectStateMachine.can_transition(project.status, ProjectStatus.CANCELLED):
        raise HTTPException(status_code=400, detail=f"Project is already '{project.status}'")

    engine = BidEngine(db, NotificationEventSink(db))
    reason = payload.reason or "Project cancelled by client"
    for bid in list(project.bids):
        if BidStateMachine.is_open(bid.status):
            engine.reject(bid, current_user, reason)

    project.status = ProjectStatus.CANCELLED
    project.cancelled_at = datetime.utcnow()
    project.cancellation_reason = payload.reason
    db.commit()
    db.refresh(project)
    logger.info(f"Project {project.id} cancelled by {current_user.id}")
    return project


@router.post("/{project_id}/invite", status_code=201)
def invite_company(
    project_id: UUID,
    payload: ProjectInvite,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    project = _get_project(db, project_id)
    _require_owner(current_user, project)
    if not ProjectStateMachine.can_receive_bids(project.status) and project.status != ProjectStatus.DRAFT:
        raise HTTPException(status_code=400, detail="Project is no longer accepting bids")

    existing = db.query(ProjectInvitation).filter(
        ProjectInvitation.project_id == project.id,
        ProjectInvitation.company_id == payload.company_id
    ).first()
    if existing:
        raise HTTPException(status_code=409, detail="Company already invited")

    invitation = _invite(db, project, payload.company_id)
    db.commit()
    if project.status != ProjectStatus.DRAFT:
        _notify_invited(db, project, [payload.company_id])

    return {
        "message": "Company invited",
        "project_id": str(project.id),
        "company_id": str(payload.company_id),
        "invited_at": invitation.invited_at,
    }
