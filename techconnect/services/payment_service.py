"""
Payment Service - JazzCash / EasyPaisa redirect forms, bank transfer
instructions and callback settlement.

Gateways only build and verify signed payloads; no money moves here. A
verified successful callback completes the Payment row and, when the payment
is tied to a milestone, marks that milestone paid.
"""
import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from techconnect.core.config import settings
from techconnect.core.errors import (
    AuthorizationError,
    ConflictError,
    DomainError,
    NotFoundError,
    ValidationError,
)
from techconnect.db.models import Bid, Payment, Project, User
from techconnect.services.bid_engine import BidEngine, round_money
from techconnect.services.notification_service import NotificationEventSink
from techconnect.utils.bid_state import MilestoneStatus

logger = logging.getLogger(__name__)

GATEWAY_DATETIME_FORMAT = "%Y%m%d%H%M%S"


def sign_fields(fields: Dict[str, Any], key: str, exclude=()) -> str:
    """
    Uppercase hex HMAC-SHA256 keyed with ``key`` over
    ``key&v1&v2...`` where values are ordered by field name.

    Empty values and the names in ``exclude`` are left out.
    """
    values = [
        str(fields[name]) for name in sorted(fields)
        if name not in exclude and fields[name] not in (None, "")
    ]
    message = "&".join([key] + values)
    return hmac.new(key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest().upper()


def generate_order_id() -> str:
    # JazzCash caps pp_TxnRefNo at 20 characters
    return "TC" + datetime.utcnow().strftime(GATEWAY_DATETIME_FORMAT) + secrets.token_hex(2).upper()


def to_paisa(amount) -> int:
    return int((round_money(amount) * 100).to_integral_value())


class JazzCashGateway:
    HASH_FIELD = "pp_SecureHash"
    SUCCESS_CODE = "000"

    def __init__(self):
        self.merchant_id = settings.JAZZCASH_MERCHANT_ID
        self.password = settings.JAZZCASH_PASSWORD
        self.salt = settings.JAZZCASH_SALT
        self.return_url = settings.JAZZCASH_RETURN_URL
        self.api_url = settings.JAZZCASH_API_URL

    def build_payment(self, amount, order_id: str, phone: Optional[str] = None,
                      email: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.utcnow()
        fields = {
            "pp_Version": "1.1",
            "pp_TxnType": "MWALLET",
            "pp_Language": "EN",
            "pp_MerchantID": self.merchant_id,
            "pp_SubMerchantID": "",
            "pp_Password": self.password,
            "pp_BankID": "",
            "pp_ProductID": "",
            "pp_TxnRefNo": order_id,
            "pp_Amount": str(to_paisa(amount)),
            "pp_TxnCurrency": "PKR",
            "pp_TxnDateTime": now.strftime(GATEWAY_DATETIME_FORMAT),
            "pp_BillReference": order_id,
            "pp_Description": f"{settings.PROJECT_NAME} Project Payment",
            "pp_TxnExpiryDateTime": (now + timedelta(hours=1)).strftime(GATEWAY_DATETIME_FORMAT),
            "pp_ReturnURL": self.return_url,
            "ppmpf_1": phone or "",
            "ppmpf_2": email or "",
            "ppmpf_3": "",
            "ppmpf_4": "",
            "ppmpf_5": "",
        }
        fields[self.HASH_FIELD] = sign_fields(fields, self.salt, exclude=(self.HASH_FIELD,))
        return fields

    def verify_callback(self, data: Dict[str, Any]) -> Dict[str, Any]:
        received = data.get(self.HASH_FIELD, "")
        expected = sign_fields(data, self.salt, exclude=(self.HASH_FIELD,))
        if not hmac.compare_digest(str(received).upper(), expected):
            return {"success": False, "message": "Invalid payment response signature"}
        if data.get("pp_ResponseCode") != self.SUCCESS_CODE:
            return {"success": False, "message": data.get("pp_ResponseMessage") or "Payment failed"}
        return {"success": True, "message": "Payment successful", "transaction_id": data.get("pp_TxnRefNo")}

    @staticmethod
    def order_id(data: Dict[str, Any]) -> Optional[str]:
        return data.get("pp_TxnRefNo") or data.get("pp_BillReference")


class EasyPaisaGateway:
    HASH_FIELD = "merchantHashedReq"
    SUCCESS_CODE = "0000"

    def __init__(self):
        self.store_id = settings.EASYPAISA_STORE_ID
        self.hash_key = settings.EASYPAISA_HASH_KEY
        self.return_url = settings.EASYPAISA_RETURN_URL
        self.api_url = settings.EASYPAISA_API_URL

    def build_payment(self, amount, order_id: str, phone: Optional[str] = None,
                      email: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.utcnow()
        fields = {
            "storeId": self.store_id,
            "amount": str(round_money(amount)),
            "postBackURL": self.return_url,
            "orderRefNum": order_id,
            "expiryDate": (now + timedelta(hours=1)).strftime("%Y%m%d %H%M%S"),
            "mobileAccountNo": phone or "",
            "emailAddress": email or "",
        }
        fields[self.HASH_FIELD] = sign_fields(fields, self.hash_key, exclude=(self.HASH_FIELD,))
        return fields

    def verify_callback(self, data: Dict[str, Any]) -> Dict[str, Any]:
        received = data.get(self.HASH_FIELD, "")
        expected = sign_fields(data, self.hash_key, exclude=(self.HASH_FIELD,))
        if not hmac.compare_digest(str(received).upper(), expected):
            return {"success": False, "message": "Invalid payment response signature"}
        if data.get("responseCode") != self.SUCCESS_CODE:
            return {"success": False, "message": data.get("responseDesc") or "Payment failed"}
        return {"success": True, "message": "Payment successful", "transaction_id": data.get("transactionId")}

    @staticmethod
    def order_id(data: Dict[str, Any]) -> Optional[str]:
        return data.get("orderRefNum")


def bank_transfer_instructions(order_id: str, amount) -> Dict[str, Any]:
    return {
        "account_title": settings.BANK_ACCOUNT_TITLE,
        "iban": settings.BANK_ACCOUNT_IBAN,
        "bank_name": settings.BANK_NAME,
        "amount": str(round_money(amount)),
        "currency": "PKR",
        "reference": order_id,
        "note": "Use the reference in the transfer description. Payment is confirmed once the transfer is reconciled.",
    }


GATEWAYS = {
    "jazzcash": JazzCashGateway,
    "easypaisa": EasyPaisaGateway,
}


def get_gateway(method: str):
    gateway_cls = GATEWAYS.get(method)
    if gateway_cls is None:
        raise ValidationError(f"Unsupported payment method '{method}'")
    return gateway_cls()


def initiate_payment(db: Session, payer: User, data) -> Dict[str, Any]:
    """
    Create a pending Payment and return what the client needs to pay it:
    a signed redirect form for wallets, or transfer instructions for bank.
    """
    project = db.query(Project).filter(Project.id == data.project_id).first()
    if not project:
        raise NotFoundError("Project not found", project_id=str(data.project_id))
    if project.client_id != payer.id:
        raise AuthorizationError("Only the project's client can pay for it")

    bid = None
    milestone = None
    if data.bid_id or data.milestone_id:
        bid_id = data.bid_id or project.selected_bid_id
        bid = db.query(Bid).filter(Bid.id == bid_id, Bid.project_id == project.id).first()
        if not bid:
            raise NotFoundError("Bid not found for this project", bid_id=str(bid_id))
    if data.milestone_id:
        milestone = next((m for m in bid.milestones if m.id == data.milestone_id), None)
        if milestone is None:
            raise NotFoundError("Milestone not found", milestone_id=str(data.milestone_id))
        if milestone.status != MilestoneStatus.COMPLETED or not milestone.approved:
            raise ValidationError("Only completed, client-approved milestones can be paid")
        pending = (
            db.query(Payment)
            .filter(Payment.milestone_id == milestone.id, Payment.status.in_(["pending", "completed"]))
            .first()
        )
        if pending:
            raise ConflictError("A payment for this milestone already exists", order_id=pending.order_id)

    amount = round_money(data.amount)
    order_id = generate_order_id()
    payment = Payment(
        order_id=order_id,
        project_id=project.id,
        bid_id=bid.id if bid else None,
        milestone_id=milestone.id if milestone else None,
        payer_id=payer.id,
        amount=amount,
        currency="PKR",
        method=data.method,
        status="pending",
    )
    db.add(payment)
    db.commit()
    logger.info(f"Payment {order_id} initiated by {payer.id} via {data.method} for {amount}")

    response = {"order_id": order_id, "method": data.method, "amount": amount}
    if data.method == "bank":
        response["instructions"] = bank_transfer_instructions(order_id, amount)
    else:
        gateway = get_gateway(data.method)
        response["gateway_url"] = gateway.api_url
        response["form_fields"] = gateway.build_payment(amount, order_id, data.phone, data.email)
    return response


def _complete_payment(db: Session, payment: Payment, reference: Optional[str], response: Dict[str, Any]):
    payment.status = "completed"
    payment.completed_at = datetime.utcnow()
    payment.gateway_reference = reference
    payment.gateway_response = response
    db.commit()
    logger.info(f"Payment {payment.order_id} completed")

    if payment.milestone_id and payment.bid_id:
        engine = BidEngine(db, NotificationEventSink(db))
        try:
            bid = engine.get_bid(payment.bid_id)
            engine.advance_milestone(bid, payment.milestone_id, MilestoneStatus.PAID, None)
        except DomainError as e:
            # The money is in; the milestone needs manual reconciliation
            logger.error(f"Payment {payment.order_id} completed but milestone not settled: {e.message}")


def handle_callback(db: Session, method: str, data: Dict[str, Any]) -> Payment:
    """Verify a gateway callback and settle the matching payment."""
    gateway = get_gateway(method)
    order_id = gateway.order_id(data)
    if not order_id:
        raise ValidationError("Callback carries no order reference")

    payment = db.query(Payment).filter(Payment.order_id == order_id).first()
    if not payment:
        raise NotFoundError("Payment not found", order_id=order_id)
    if payment.method != method:
        raise ValidationError("Callback method does not match payment", order_id=order_id)
    if payment.status != "pending":
        logger.info(f"Ignoring repeated callback for payment {order_id} ({payment.status})")
        return payment

    verification = gateway.verify_callback(data)
    if verification["success"] and method == "jazzcash" and data.get("pp_Amount"):
        if str(data["pp_Amount"]) != str(to_paisa(payment.amount)):
            verification = {"success": False, "message": "Amount does not match payment"}

    if not verification["success"]:
        payment.status = "failed"
        payment.failure_reason = verification["message"]
        payment.gateway_response = data
        db.commit()
        logger.warning(f"Payment {order_id} failed: {verification['message']}")
        return payment

    _complete_payment(db, payment, verification.get("transaction_id"), data)
    return payment


def confirm_bank_transfer(db: Session, order_id: str, reference: Optional[str] = None) -> Payment:
    """Admin reconciliation of a bank transfer."""
    payment = db.query(Payment).filter(Payment.order_id == order_id).first()
    if not payment:
        raise NotFoundError("Payment not found", order_id=order_id)
    if payment.method != "bank":
        raise ValidationError("Only bank transfers are confirmed manually")
    if payment.status != "pending":
        raise ConflictError(f"Payment is already {payment.status}")
    _complete_payment(db, payment, reference, {"confirmed_manually": True})
    return payment
