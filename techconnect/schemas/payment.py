from pydantic import BaseModel, Field, validator
from typing import Optional
from datetime import datetime
from decimal import Decimal
from uuid import UUID

PAYMENT_METHODS = ["jazzcash", "easypaisa", "bank"]


class PaymentInitiate(BaseModel):
    project_id: UUID
    bid_id: Optional[UUID] = None
    milestone_id: Optional[UUID] = None
    amount: Decimal = Field(..., gt=0)
    method: str
    phone: Optional[str] = None
    email: Optional[str] = None

    @validator("method")
    def method_allowed(cls, v):
        if v not in PAYMENT_METHODS:
            raise ValueError(f"method must be one of {PAYMENT_METHODS}")
        return v


class PaymentInitiateOut(BaseModel):
    order_id: str
    method: str
    amount: Decimal
    # Redirect form for card/wallet gateways, or transfer instructions for bank
    gateway_url: Optional[str] = None
    form_fields: Optional[dict] = None
    instructions: Optional[dict] = None


class PaymentOut(BaseModel):
    id: UUID
    order_id: str
    project_id: UUID
    bid_id: Optional[UUID] = None
    milestone_id: Optional[UUID] = None
    payer_id: UUID
    amount: Decimal
    currency: str
    method: str
    status: str
    gateway_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True
