import pytest

from techconnect.core.errors import InvalidTransitionError, NotFoundError, ValidationError
from techconnect.db.models import Notification
from techconnect.schemas.company import DocumentRef
from techconnect.services import verification_service
from techconnect.utils.verification_state import REQUIRED_DOCUMENTS

from conftest import make_company, make_user


def docs(*names):
    return {name: DocumentRef(url=f"https://files.example.com/{name}.pdf", original_name=f"{name}.pdf")
            for name in names}


@pytest.fixture
def company(db):
    return make_company(db, verification_status="pending")


def test_submit_requires_all_documents(db, company):
    with pytest.raises(ValidationError) as exc:
        verification_service.submit_verification(db, company, docs("secp_certificate"))

    assert set(exc.value.details["missing_documents"]) == set(REQUIRED_DOCUMENTS) - {"secp_certificate"}
    db.refresh(company)
    assert company.verification_status == "pending"
    assert not company.verification_documents


def test_submit_rejects_unknown_documents(db, company):
    with pytest.raises(ValidationError):
        verification_service.submit_verification(db, company, docs("passport", *REQUIRED_DOCUMENTS))


def test_submit_moves_to_review_and_notifies_admins(db, company):
    admin = make_user(db, role="admin")
    verification_service.submit_verification(db, company, docs(*REQUIRED_DOCUMENTS, "utility_bill"))

    assert company.verification_status == "under_review"
    assert company.verification_submitted_at is not None
    assert company.verification_documents["utility_bill"]["verified"] is False
    assert verification_service.missing_documents(company) == []

    note = db.query(Notification).filter_by(user_id=admin.id).one()
    assert note.type == "verification_submitted"
    assert note.related_company_id == company.id


def test_approve_lets_company_bid(db, company):
    admin = make_user(db, role="admin")
    verification_service.submit_verification(db, company, docs(*REQUIRED_DOCUMENTS))
    verification_service.approve_verification(db, company, admin, "All good")

    assert company.verified is True
    assert company.verification_status == "approved"
    assert company.verified_by_id == admin.id
    note = db.query(Notification).filter_by(user_id=company.user_id).one()
    assert note.type == "verification_approved"
    assert note.source == "admin"

    with pytest.raises(InvalidTransitionError):
        verification_service.reject_verification(db, company, admin, "Late objection")


def test_reject_then_resubmit(db, company):
    admin = make_user(db, role="admin")
    verification_service.submit_verification(db, company, docs(*REQUIRED_DOCUMENTS))

    with pytest.raises(ValidationError):
        verification_service.reject_verification(db, company, admin, "  ")

    verification_service.reject_verification(db, company, admin, "NTN certificate is blurry")
    assert company.verification_status == "rejected"
    assert company.rejection_reason == "NTN certificate is blurry"

    verification_service.submit_verification(db, company, docs("ntn_certificate"))
    assert company.verification_status == "under_review"
    assert company.rejection_reason is None


def test_cannot_approve_without_review(db, company):
    with pytest.raises(InvalidTransitionError):
        verification_service.approve_verification(db, company, make_user(db, role="admin"))


def test_verify_single_document(db, company):
    admin = make_user(db, role="admin")
    verification_service.submit_verification(db, company, docs(*REQUIRED_DOCUMENTS))
    verification_service.verify_document(db, company, "ntn_certificate", admin)

    entry = company.verification_documents["ntn_certificate"]
    assert entry["verified"] is True
    assert entry["verified_by"] == str(admin.id)

    with pytest.raises(NotFoundError):
        verification_service.verify_document(db, company, "office_photos", admin)


def test_pending_list_and_stats(db, company):
    make_company(db)
    verification_service.submit_verification(db, company, docs(*REQUIRED_DOCUMENTS))

    assert [c.id for c in verification_service.pending_verifications(db)] == [company.id]
    stats = verification_service.verification_stats(db)
    assert stats["under_review"] == 1
    assert stats["approved"] == 1
    assert stats["total"] == 2
