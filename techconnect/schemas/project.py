from pydantic import BaseModel, Field, validator
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from techconnect.schemas.company import CATEGORIES

PAYMENT_METHODS = ["jazzcash", "easypaisa", "bank"]


class ProjectAttachment(BaseModel):
    url: str
    original_name: Optional[str] = None
    file_type: Optional[str] = None
    size: Optional[int] = None


class ClientInfo(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class ProjectCreate(BaseModel):
    title: str
    description: str = Field(..., max_length=3000)
    category: str
    budget_min: Optional[Decimal] = Field(None, ge=0)
    budget_max: Optional[Decimal] = Field(None, ge=0)
    budget_range: Optional[str] = None
    timeline_value: Optional[str] = None
    timeline_unit: str = "months"
    deadline: Optional[datetime] = None
    attachments: List[ProjectAttachment] = []
    client_info: Optional[ClientInfo] = None
    tech_stack: List[str] = []
    payment_method: str = "jazzcash"
    is_invite_only: bool = False
    invited_company_ids: List[UUID] = []
    status: str = "posted"  # draft or posted

    @validator("title")
    def title_not_blank(cls, v):
        if not v.strip():
            raise ValueError("Title is required")
        return v.strip()

    @validator("category")
    def category_allowed(cls, v):
        if v not in CATEGORIES:
            raise ValueError(f"category must be one of {CATEGORIES}")
        return v

    @validator("timeline_unit")
    def unit_allowed(cls, v):
        if v not in ("weeks", "months"):
            raise ValueError("timeline_unit must be 'weeks' or 'months'")
        return v

    @validator("payment_method")
    def payment_method_allowed(cls, v):
        if v not in PAYMENT_METHODS:
            raise ValueError(f"payment_method must be one of {PAYMENT_METHODS}")
        return v

    @validator("status")
    def initial_status(cls, v):
        if v not in ("draft", "posted"):
            raise ValueError("A new project is either 'draft' or 'posted'")
        return v

    @validator("budget_max")
    def budget_order(cls, v, values):
        low = values.get("budget_min")
        if v is not None and low is not None and v < low:
            raise ValueError("budget_max must not be below budget_min")
        return v


class ProjectUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = Field(None, max_length=3000)
    budget_min: Optional[Decimal] = Field(None, ge=0)
    budget_max: Optional[Decimal] = Field(None, ge=0)
    budget_range: Optional[str] = None
    timeline_value: Optional[str] = None
    timeline_unit: Optional[str] = None
    deadline: Optional[datetime] = None
    attachments: Optional[List[ProjectAttachment]] = None
    tech_stack: Optional[List[str]] = None
    payment_method: Optional[str] = None
    is_invite_only: Optional[bool] = None
    status: Optional[str] = None


class ProjectCancel(BaseModel):
    reason: Optional[str] = None


class ProjectInvite(BaseModel):
    company_id: UUID


class ProjectOut(BaseModel):
    id: UUID
    client_id: UUID
    title: str
    description: str
    category: str
    budget_min: Optional[Decimal] = None
    budget_max: Optional[Decimal] = None
    budget_range: Optional[str] = None
    timeline_value: Optional[str] = None
    timeline_unit: Optional[str] = None
    deadline: Optional[datetime] = None
    attachments: list = []
    client_info: Optional[dict] = None
    tech_stack: list = []
    payment_method: str
    is_invite_only: bool
    status: str
    bid_summaries: list = []
    selected_bid_id: Optional[UUID] = None
    selected_company_id: Optional[UUID] = None
    view_count: int
    expires_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
