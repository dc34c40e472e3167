from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict
from datetime import datetime
from decimal import Decimal
from uuid import UUID

CATEGORIES = ["web", "mobile", "marketing", "design", "other"]


class CompanyBase(BaseModel):
    name: str
    tagline: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    logo_url: Optional[str] = None
    category: str = "web"
    starting_price: Decimal = Decimal("100000")
    services: List[str] = []
    location: Optional[str] = None
    team_size: str = "1-10"
    years_in_business: Optional[int] = Field(None, ge=0)
    website: Optional[str] = None
    linkedin: Optional[str] = None
    facebook: Optional[str] = None
    twitter: Optional[str] = None

    @validator("category")
    def category_allowed(cls, v):
        if v not in CATEGORIES:
            raise ValueError(f"category must be one of {CATEGORIES}")
        return v


class CompanyCreate(CompanyBase):
    pass


class CompanyUpdate(BaseModel):
    name: Optional[str] = None
    tagline: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    logo_url: Optional[str] = None
    category: Optional[str] = None
    starting_price: Optional[Decimal] = None
    services: Optional[List[str]] = None
    location: Optional[str] = None
    team_size: Optional[str] = None
    years_in_business: Optional[int] = Field(None, ge=0)
    website: Optional[str] = None
    linkedin: Optional[str] = None
    facebook: Optional[str] = None
    twitter: Optional[str] = None

    @validator("category")
    def category_allowed(cls, v):
        if v is not None and v not in CATEGORIES:
            raise ValueError(f"category must be one of {CATEGORIES}")
        return v


class CompanyOut(CompanyBase):
    id: UUID
    user_id: UUID
    rating_average: float
    rating_count: int
    completed_projects: int
    verified: bool
    verification_status: str
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class DocumentRef(BaseModel):
    url: str
    original_name: Optional[str] = None


class VerificationSubmit(BaseModel):
    """Map of document type to uploaded document reference"""
    documents: Dict[str, DocumentRef]


class VerificationApprove(BaseModel):
    comments: Optional[str] = None


class VerificationReject(BaseModel):
    reason: str
    comments: Optional[str] = None

    @validator("reason")
    def reason_not_blank(cls, v):
        if not v.strip():
            raise ValueError("Rejection reason is required")
        return v


class DocumentVerify(BaseModel):
    verified: bool = True


class VerificationStatusOut(BaseModel):
    company_id: UUID
    verification_status: str
    verified: bool
    verification_documents: dict
    missing_documents: List[str]
    verification_submitted_at: Optional[datetime] = None
    admin_comments: Optional[str] = None
    rejection_reason: Optional[str] = None
    verified_at: Optional[datetime] = None


class VerificationStats(BaseModel):
    pending: int
    under_review: int
    approved: int
    rejected: int
    total: int
