"""
Company Verification Service

Companies upload their registration documents and request review; admins
approve or reject. Only approved companies may submit bids.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from techconnect.core.errors import InvalidTransitionError, NotFoundError, ValidationError
from techconnect.db.models import Company, User
from techconnect.services.notification_service import (
    NotificationType,
    create_notification,
    notify_company_owner,
)
from techconnect.utils.verification_state import (
    OPTIONAL_DOCUMENTS,
    REQUIRED_DOCUMENTS,
    VerificationStateMachine,
    VerificationStatus,
)

logger = logging.getLogger(__name__)

KNOWN_DOCUMENTS = set(REQUIRED_DOCUMENTS) | set(OPTIONAL_DOCUMENTS)


def get_company(db: Session, company_id) -> Company:
    company = db.query(Company).filter(Company.id == company_id).first()
    if not company:
        raise NotFoundError("Company not found", company_id=str(company_id))
    return company


def missing_documents(company: Company, documents: Optional[Dict] = None) -> List[str]:
    if documents is None:
        documents = company.verification_documents or {}
    return [doc for doc in REQUIRED_DOCUMENTS if not (documents.get(doc) or {}).get("url")]


def verification_status(company: Company) -> Dict:
    return {
        "company_id": company.id,
        "verification_status": company.verification_status,
        "verified": bool(company.verified),
        "verification_documents": company.verification_documents or {},
        "missing_documents": missing_documents(company),
        "verification_submitted_at": company.verification_submitted_at,
        "admin_comments": company.admin_comments,
        "rejection_reason": company.rejection_reason,
        "verified_at": company.verified_at,
    }


def _require_transition(company: Company, target: str):
    if not VerificationStateMachine.can_transition(company.verification_status, target):
        raise InvalidTransitionError(
            company.verification_status, target,
            f"Verification is '{company.verification_status}' and cannot move to '{target}'",
            company_id=str(company.id),
        )


def submit_verification(db: Session, company: Company, documents: Dict) -> Company:
    """
    Merge uploaded documents into the company's set and request review.

    Every required document must be present after the merge.
    """
    unknown = sorted(set(documents) - KNOWN_DOCUMENTS)
    if unknown:
        raise ValidationError(f"Unknown document type(s): {', '.join(unknown)}", allowed=sorted(KNOWN_DOCUMENTS))
    _require_transition(company, VerificationStatus.UNDER_REVIEW)

    now = datetime.utcnow()
    merged = dict(company.verification_documents or {})
    for doc_type, ref in documents.items():
        merged[doc_type] = {
            "url": ref.url,
            "original_name": ref.original_name,
            "uploaded_at": now.isoformat(),
            "verified": False,
            "verified_at": None,
        }
    missing = missing_documents(company, merged)
    if missing:
        raise ValidationError(f"Missing required documents: {', '.join(missing)}", missing_documents=missing)

    company.verification_documents = merged
    company.verification_status = VerificationStatus.UNDER_REVIEW
    company.verification_submitted_at = now
    company.rejection_reason = None
    db.commit()
    db.refresh(company)
    logger.info(f"Company {company.id} submitted verification documents")

    admins = db.query(User).filter(User.role == "admin").all()
    for admin in admins:
        create_notification(
            db,
            user_id=admin.id,
            notification_type=NotificationType.VERIFICATION_SUBMITTED,
            title="Verification Request",
            message=f"{company.name} submitted documents for verification.",
            related_company_id=company.id,
            action_url=f"/admin/companies/{company.id}/verification",
        )
    return company


def approve_verification(db: Session, company: Company, admin: User,
                         comments: Optional[str] = None) -> Company:
    _require_transition(company, VerificationStatus.APPROVED)

    now = datetime.utcnow()
    company.verification_status = VerificationStatus.APPROVED
    company.verified = True
    company.verified_by_id = admin.id
    company.verified_at = now
    company.admin_comments = comments
    company.rejection_reason = None
    db.commit()
    db.refresh(company)
    logger.info(f"Company {company.id} verification approved by {admin.id}")

    notify_company_owner(
        db,
        company.id,
        NotificationType.VERIFICATION_APPROVED,
        "Company Verified",
        f"{company.name} has been verified. You can now bid on projects.",
        data={"approved": True, "comments": comments},
        priority="high",
        source="admin",
    )
    return company


def reject_verification(db: Session, company: Company, admin: User, reason: str,
                        comments: Optional[str] = None) -> Company:
    if not reason or not reason.strip():
        raise ValidationError("Rejection reason is required")
    _require_transition(company, VerificationStatus.REJECTED)

    company.verification_status = VerificationStatus.REJECTED
    company.verified = False
    company.verified_by_id = admin.id
    company.verified_at = None
    company.rejection_reason = reason
    company.admin_comments = comments
    db.commit()
    db.refresh(company)
    logger.info(f"Company {company.id} verification rejected by {admin.id}: {reason}")

    notify_company_owner(
        db,
        company.id,
        NotificationType.VERIFICATION_REJECTED,
        "Verification Rejected",
        f"Your verification was rejected: {reason}",
        data={"approved": False, "reason": reason, "comments": comments},
        priority="high",
        source="admin",
    )
    return company


def verify_document(db: Session, company: Company, doc_type: str, admin: User,
                    verified: bool = True) -> Company:
    documents = dict(company.verification_documents or {})
    if doc_type not in documents:
        raise NotFoundError("Document not uploaded", document_type=doc_type)

    entry = dict(documents[doc_type])
    entry["verified"] = verified
    entry["verified_at"] = datetime.utcnow().isoformat() if verified else None
    entry["verified_by"] = str(admin.id)
    documents[doc_type] = entry
    # Reassign so the JSON column is flagged dirty
    company.verification_documents = documents
    db.commit()
    db.refresh(company)
    return company


def pending_verifications(db: Session) -> List[Company]:
    return (
        db.query(Company)
        .filter(Company.verification_status == VerificationStatus.UNDER_REVIEW)
        .order_by(Company.verification_submitted_at.asc())
        .all()
    )


def verification_stats(db: Session) -> Dict[str, int]:
    rows = (
        db.query(Company.verification_status, func.count(Company.id))
        .group_by(Company.verification_status)
        .all()
    )
    stats = {status: 0 for status in VerificationStatus.ALL}
    for status, count in rows:
        if status in stats:
            stats[status] = count
    stats["total"] = sum(count for _, count in rows)
    return stats
