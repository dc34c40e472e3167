"""
Role-based access control utilities
"""
from fastapi import HTTPException
from techconnect.db.models import Bid, Company, Project, User

ROLES = ["client", "company", "admin"]


def is_admin(user: User) -> bool:
    return user.role == "admin"


def is_client(user: User) -> bool:
    return user.role == "client"


def is_company(user: User) -> bool:
    return user.role == "company"


def require_role(user: User, *roles: str):
    """Raise exception if user's role is not one of ``roles``"""
    if user.role not in roles:
        raise HTTPException(
            status_code=403,
            detail=f"Access denied. Requires one of: {', '.join(roles)}"
        )


def owns_project(user: User, project: Project) -> bool:
    return project.client_id == user.id


def owns_company(user: User, company: Company) -> bool:
    return company.user_id == user.id


def owns_bid(user: User, bid: Bid) -> bool:
    """The bid belongs to the company account of ``user``"""
    return user.company is not None and bid.company_id == user.company.id


def can_view_bid(user: User, bid: Bid) -> bool:
    """Client of the project, the bidding company, or an admin."""
    return is_admin(user) or bid.client_id == user.id or owns_bid(user, bid)


def can_view_project_bids(user: User, project: Project) -> bool:
    return is_admin(user) or owns_project(user, project)


def can_submit_bid(user: User) -> bool:
    """Only company accounts with a company profile can bid"""
    return is_company(user) and user.company is not None


def can_change_bid_status(user: User, bid: Bid, status: str) -> bool:
    """
    Status changes allowed per actor:
    client of the project may review/accept/reject, the owning company may
    withdraw, admins may do anything the state machine allows.
    """
    if is_admin(user):
        return True
    if status in ("under_review", "accepted", "rejected"):
        return is_client(user) and bid.client_id == user.id
    if status == "withdrawn":
        return is_company(user) and owns_bid(user, bid)
    return False
