from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from techconnect.core.deps import get_current_user, get_current_admin
from techconnect.db.session import get_db
from techconnect.db.models import Company, User
from techconnect.schemas.company import (
    CompanyCreate, CompanyUpdate, CompanyOut, VerificationSubmit, VerificationApprove,
    VerificationReject, DocumentVerify, VerificationStatusOut, VerificationStats,
)
from techconnect.services import verification_service
from techconnect.utils.cache import generate_cache_key, get_cached, set_cached, invalidate_company_cache
from techconnect.utils.pagination import PaginationParams, create_paginated_response, paginate_query
from techconnect.utils.permissions import is_admin, owns_company, require_role

router = APIRouter(prefix="/companies", tags=["companies"])


def _own_company(current_user: User) -> Company:
    if current_user.company is None:
        raise HTTPException(status_code=404, detail="Create a company profile first")
    return current_user.company


# Create company profile
@router.post("/", response_model=CompanyOut, status_code=201)
def create_company(
    data: CompanyCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """One company profile per company account"""
    require_role(current_user, "company")
    if current_user.company is not None:
        raise HTTPException(status_code=400, detail="Company profile already exists")

    company = Company(user_id=current_user.id, **data.model_dump())
    db.add(company)
    db.commit()
    db.refresh(company)
    invalidate_company_cache()
    return company


# Browse companies
@router.get("/")
def list_companies(
    pagination: PaginationParams = Depends(),
    category: Optional[str] = None,
    location: Optional[str] = None,
    verified: Optional[bool] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Active companies, best rated first. Results are cached for a few minutes."""
    cache_key = generate_cache_key(
        "companies", "list", page=pagination.page, limit=pagination.limit,
        category=category, location=location, verified=verified, search=search,
    )
    cached = get_cached(cache_key)
    if cached:
        return cached

    query = db.query(Company).filter(Company.is_active == True)  # noqa: E712
    if category:
        query = query.filter(Company.category == category)
    if location:
        query = query.filter(Company.location.ilike(f"%{location}%"))
    if verified is not None:
        query = query.filter(Company.verified == verified)
    if search:
        term = f"%{search}%"
        query = query.filter(or_(Company.name.ilike(term), Company.description.ilike(term)))

    query = query.order_by(Company.rating_average.desc(), Company.created_at.desc())
    items, total = paginate_query(query, pagination.skip, pagination.limit)
    items = [CompanyOut.model_validate(c).model_dump(mode="json") for c in items]
    response = create_paginated_response(items, total, pagination.page, pagination.limit)
    set_cached(cache_key, response)
    return response


@router.get("/me", response_model=CompanyOut)
def get_my_company(current_user: User = Depends(get_current_user)):
    return _own_company(current_user)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

@router.post("/verification/submit", response_model=VerificationStatusOut)
def submit_verification(
    payload: VerificationSubmit,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Upload verification documents (as URLs) and request admin review"""
    company = verification_service.submit_verification(db, _own_company(current_user), payload.documents)
    invalidate_company_cache()
    return verification_service.verification_status(company)


@router.get("/verification/status", response_model=VerificationStatusOut)
def get_verification_status(current_user: User = Depends(get_current_user)):
    return verification_service.verification_status(_own_company(current_user))


@router.get("/verification/pending", response_model=list[CompanyOut])
def list_pending_verifications(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin)
):
    return verification_service.pending_verifications(db)


@router.get("/verification/stats", response_model=VerificationStats)
def get_verification_stats(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin)
):
    return verification_service.verification_stats(db)


@router.get("/verification/{company_id}", response_model=VerificationStatusOut)
def get_company_verification(
    company_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin)
):
    return verification_service.verification_status(verification_service.get_company(db, company_id))


@router.post("/verification/{company_id}/approve", response_model=VerificationStatusOut)
def approve_verification(
    company_id: UUID,
    payload: VerificationApprove,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin)
):
    company = verification_service.get_company(db, company_id)
    company = verification_service.approve_verification(db, company, current_user, payload.comments)
    invalidate_company_cache()
    return verification_service.verification_status(company)


@router.post("/verification/{company_id}/reject", response_model=VerificationStatusOut)
def reject_verification(
    company_id: UUID,
    payload: VerificationReject,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin)
):
    company = verification_service.get_company(db, company_id)
    company = verification_service.reject_verification(
        db, company, current_user, payload.reason, payload.comments
    )
    invalidate_company_cache()
    return verification_service.verification_status(company)


@router.put("/verification/{company_id}/documents/{doc_type}", response_model=VerificationStatusOut)
def verify_document(
    company_id: UUID,
    doc_type: str,
    payload: DocumentVerify,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin)
):
    company = verification_service.get_company(db, company_id)
    company = verification_service.verify_document(db, company, doc_type, current_user, payload.verified)
    return verification_service.verification_status(company)


# ---------------------------------------------------------------------------
# Single company
# ---------------------------------------------------------------------------

@router.get("/{company_id}", response_model=CompanyOut)
def get_company(company_id: UUID, db: Session = Depends(get_db)):
    company = db.query(Company).filter(Company.id == company_id).first()
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")
    return company


@router.put("/{company_id}", response_model=CompanyOut)
def update_company(
    company_id: UUID,
    data: CompanyUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    company = db.query(Company).filter(Company.id == company_id).first()
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")
    if not (owns_company(current_user, company) or is_admin(current_user)):
        raise HTTPException(status_code=403, detail="Not authorized to update this company")

    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(company, key, value)

    db.commit()
    db.refresh(company)
    invalidate_company_cache()
    return company
