from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional
import logging

from techconnect.core.deps import get_current_user, get_current_admin
from techconnect.db.session import get_db
from techconnect.db.models import Payment, User
from techconnect.schemas.payment import PaymentInitiate, PaymentInitiateOut, PaymentOut
from techconnect.services import payment_service
from techconnect.utils.permissions import is_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


class BankTransferConfirm(BaseModel):
    reference: Optional[str] = None


@router.post("/initiate", response_model=PaymentInitiateOut, status_code=201)
def initiate_payment(
    payload: PaymentInitiate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Start a payment for a project (optionally for one milestone).

    Wallet methods return the signed form to post to the gateway; bank
    returns transfer instructions.
    """
    return payment_service.initiate_payment(db, current_user, payload)


@router.post("/callback/{method}", response_model=PaymentOut)
async def payment_callback(method: str, request: Request, db: Session = Depends(get_db)):
    """Gateway return URL. Accepts form posts and JSON bodies."""
    if request.headers.get("content-type", "").startswith("application/json"):
        data = await request.json()
    else:
        data = dict(await request.form())
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Callback body must be an object")

    data = {k: str(v) if v is not None else "" for k, v in data.items()}
    logger.info(f"Payment callback received for {method}")
    return payment_service.handle_callback(db, method, data)


@router.get("/status/{order_id}", response_model=PaymentOut)
def payment_status(
    order_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    payment = db.query(Payment).filter(Payment.order_id == order_id).first()
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")
    if payment.payer_id != current_user.id and not is_admin(current_user):
        raise HTTPException(status_code=403, detail="Not authorized to view this payment")
    return payment


@router.get("/mine", response_model=list[PaymentOut])
def my_payments(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return (
        db.query(Payment)
        .filter(Payment.payer_id == current_user.id)
        .order_by(Payment.created_at.desc())
        .all()
    )


@router.post("/bank/{order_id}/confirm", response_model=PaymentOut)
def confirm_bank_transfer(
    order_id: str,
    payload: BankTransferConfirm,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin)
):
    """Mark a reconciled bank transfer as completed. Admin only."""
    return payment_service.confirm_bank_transfer(db, order_id, payload.reference)
