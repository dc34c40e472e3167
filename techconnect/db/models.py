from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, Numeric, String,
    Text, UniqueConstraint, Index, Uuid,
)
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
from techconnect.db.session import Base
from techconnect.utils.scoring import ScoreSnapshot, calculate_score


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    name = Column(String, nullable=False)
    role = Column(String, nullable=False, default="client")  # client, company, admin
    phone = Column(String, nullable=True)
    avatar = Column(String, nullable=True)
    email_verified = Column(Boolean, default=False)
    verified = Column(Boolean, default=False)

    # Login security
    failed_login_attempts = Column(Integer, default=0)
    lock_until = Column(DateTime, nullable=True)
    last_login = Column(DateTime, nullable=True)

    email_notifications = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    company = relationship("Company", back_populates="owner", uselist=False, foreign_keys="Company.user_id")


class Company(Base):
    __tablename__ = "companies"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), unique=True, nullable=False)
    name = Column(String, nullable=False)
    tagline = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)
    logo_url = Column(String, nullable=True)
    category = Column(String, default="web")  # web, mobile, marketing, design, other
    starting_price = Column(Numeric(14, 2), default=100000)
    services = Column(JSON, default=list)
    location = Column(String, nullable=True)
    team_size = Column(String, default="1-10")
    years_in_business = Column(Integer, nullable=True)
    website = Column(String, nullable=True)
    linkedin = Column(String, nullable=True)
    facebook = Column(String, nullable=True)
    twitter = Column(String, nullable=True)

    rating_average = Column(Float, default=0.0)
    rating_count = Column(Integer, default=0)
    completed_projects = Column(Integer, default=0)

    # Verification: pending, under_review, approved, rejected
    verified = Column(Boolean, default=False)
    verification_status = Column(String, default="pending", index=True)
    verification_documents = Column(JSON, default=dict)
    verification_submitted_at = Column(DateTime, nullable=True)
    admin_comments = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    verified_by_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    verified_at = Column(DateTime, nullable=True)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner = relationship("User", back_populates="company", foreign_keys=[user_id])
    verified_by = relationship("User", foreign_keys=[verified_by_id])


class Project(Base):
    __tablename__ = "projects"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String, nullable=False)  # web, mobile, marketing, design, other
    budget_min = Column(Numeric(14, 2), nullable=True)
    budget_max = Column(Numeric(14, 2), nullable=True)
    budget_range = Column(String, nullable=True)
    timeline_value = Column(String, nullable=True)
    timeline_unit = Column(String, default="months")  # weeks, months
    deadline = Column(DateTime, nullable=True)
    attachments = Column(JSON, default=list)
    client_info = Column(JSON, default=dict)
    tech_stack = Column(JSON, default=list)
    payment_method = Column(String, default="jazzcash")  # jazzcash, easypaisa, bank
    is_invite_only = Column(Boolean, default=False)

    # Status: draft, posted, bidding, active, completed, cancelled
    status = Column(String, default="draft", index=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # Denormalized read-cache of the project's bids, rebuilt from Bid rows
    bid_summaries = Column(JSON, default=list)
    selected_bid_id = Column(Uuid, nullable=True)
    selected_company_id = Column(Uuid, ForeignKey("companies.id"), nullable=True)

    view_count = Column(Integer, default=0)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    client = relationship("User", foreign_keys=[client_id])
    selected_company = relationship("Company", foreign_keys=[selected_company_id])
    bids = relationship("Bid", back_populates="project", cascade="all, delete-orphan")
    invitations = relationship("ProjectInvitation", back_populates="project", cascade="all, delete-orphan")


class ProjectInvitation(Base):
    __tablename__ = "project_invitations"
    __table_args__ = (UniqueConstraint("project_id", "company_id", name="uq_invitation_project_company"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id"), nullable=False)
    company_id = Column(Uuid, ForeignKey("companies.id"), nullable=False)
    status = Column(String, default="pending")  # pending, accepted, declined
    invited_at = Column(DateTime, default=datetime.utcnow)
    responded_at = Column(DateTime, nullable=True)

    project = relationship("Project", back_populates="invitations")
    company = relationship("Company")


class Bid(Base):
    __tablename__ = "bids"
    __table_args__ = (
        UniqueConstraint("project_id", "company_id", name="uq_bid_project_company"),
        Index("ix_bids_client_status", "client_id", "status"),
        Index("ix_bids_company_status", "company_id", "status"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id"), nullable=False, index=True)
    company_id = Column(Uuid, ForeignKey("companies.id"), nullable=False, index=True)
    client_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)

    # Financial details
    amount = Column(Numeric(14, 2), nullable=False)
    currency = Column(String, default="PKR")  # PKR, USD, EUR, GBP
    tax_percentage = Column(Numeric(5, 2), default=0)
    total_amount = Column(Numeric(14, 2), nullable=True)

    # {value, unit, start_date, end_date}
    proposed_timeline = Column(JSON, nullable=True)

    # Proposal details
    proposal = Column(Text, nullable=False)
    executive_summary = Column(Text, nullable=True)
    methodology = Column(Text, nullable=True)
    deliverables = Column(JSON, default=list)
    team_structure = Column(JSON, default=list)
    tech_stack = Column(JSON, default=list)
    assumptions = Column(JSON, default=list)
    risks = Column(JSON, default=list)
    payment_schedule = Column(JSON, default=dict)
    escrow_required = Column(Boolean, default=True)
    attachments = Column(JSON, default=list)
    supporting_documents = Column(JSON, default=list)

    # Status: draft, submitted, under_review, accepted, rejected, withdrawn, expired
    status = Column(String, default="draft", index=True)
    submitted_at = Column(DateTime, nullable=True)
    accepted_at = Column(DateTime, nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    withdrawn_at = Column(DateTime, nullable=True)

    # Client interaction
    feedback_rating = Column(Integer, nullable=True)
    feedback_comments = Column(Text, nullable=True)
    feedback_submitted_at = Column(DateTime, nullable=True)

    # Flags
    is_invited = Column(Boolean, default=False)
    invitation_source = Column(String, default="direct_apply")
    priority_level = Column(String, default="medium")

    viewed_by_client = Column(Boolean, default=False)
    viewed_at = Column(DateTime, nullable=True)
    shortlisted = Column(Boolean, default=False)
    shortlisted_at = Column(DateTime, nullable=True)

    # Expiry timers, applied by the scheduler sweep
    expires_at = Column(DateTime, nullable=True, index=True)
    auto_withdraw_at = Column(DateTime, nullable=True)

    revision_count = Column(Integer, default=0)
    last_revised_at = Column(DateTime, nullable=True)

    created_by_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    updated_by_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Optimistic concurrency token
    version = Column(Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version}

    project = relationship("Project", back_populates="bids")
    company = relationship("Company", backref="bids")
    client = relationship("User", foreign_keys=[client_id])
    created_by = relationship("User", foreign_keys=[created_by_id])

    milestones = relationship(
        "BidMilestone", back_populates="bid", cascade="all, delete-orphan",
        order_by="BidMilestone.position",
    )
    status_history = relationship(
        "BidStatusHistory", back_populates="bid", cascade="all, delete-orphan",
        order_by="BidStatusHistory.id",
    )
    negotiation_history = relationship(
        "BidNegotiation", back_populates="bid", cascade="all, delete-orphan",
        order_by="BidNegotiation.position",
    )
    questions = relationship(
        "BidQuestion", back_populates="bid", cascade="all, delete-orphan",
        order_by="BidQuestion.asked_at",
    )

    @property
    def is_expired(self) -> bool:
        # Derived view only; the persisted status may still read 'submitted'
        if not self.expires_at:
            return False
        return datetime.utcnow() > self.expires_at

    @property
    def days_to_expiry(self):
        if not self.expires_at:
            return None
        remaining = self.expires_at - datetime.utcnow()
        return -(-int(remaining.total_seconds()) // 86400)

    @property
    def timeline_in_days(self):
        if not self.proposed_timeline:
            return None
        value = self.proposed_timeline.get("value")
        if value is None:
            return None
        unit = self.proposed_timeline.get("unit", "days")
        return value * {"days": 1, "weeks": 7, "months": 30}.get(unit, 1)

    @property
    def score(self) -> float:
        return calculate_score(ScoreSnapshot.from_bid(self))


class BidMilestone(Base):
    __tablename__ = "bid_milestones"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    bid_id = Column(Uuid, ForeignKey("bids.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    amount = Column(Numeric(14, 2), nullable=False)
    due_date = Column(DateTime, nullable=True)

    # Status: pending, in_progress, completed, paid
    status = Column(String, default="pending")
    completion_proof = Column(JSON, default=list)
    approved = Column(Boolean, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    approval_comments = Column(Text, nullable=True)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)

    bid = relationship("Bid", back_populates="milestones")


class BidStatusHistory(Base):
    """Append-only audit log of bid status changes."""
    __tablename__ = "bid_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bid_id = Column(Uuid, ForeignKey("bids.id"), nullable=False, index=True)
    status = Column(String, nullable=False)
    changed_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    changed_by_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    notes = Column(Text, nullable=True)

    bid = relationship("Bid", back_populates="status_history")


class BidNegotiation(Base):
    __tablename__ = "bid_negotiations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bid_id = Column(Uuid, ForeignKey("bids.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    field = Column(String, nullable=False)
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    proposed_by_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    proposed_at = Column(DateTime, default=datetime.utcnow)

    # Status: pending, accepted, rejected, countered
    status = Column(String, default="pending")
    counter_offer = Column(JSON, nullable=True)
    final_accepted = Column(Boolean, default=False)
    notes = Column(Text, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    resolved_by_id = Column(Uuid, ForeignKey("users.id"), nullable=True)

    bid = relationship("Bid", back_populates="negotiation_history")


class BidQuestion(Base):
    __tablename__ = "bid_questions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    bid_id = Column(Uuid, ForeignKey("bids.id"), nullable=False, index=True)
    question = Column(Text, nullable=False)
    asked_by_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    asked_at = Column(DateTime, default=datetime.utcnow)
    answer = Column(Text, nullable=True)
    answered_by_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    answered_at = Column(DateTime, nullable=True)

    bid = relationship("Bid", back_populates="questions")


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_user_read_created", "user_id", "is_read", "created_at"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String, nullable=False)  # new_bid, bid_accepted, verification_approved, etc.
    title = Column(String(100), nullable=False)
    message = Column(String(500), nullable=False)
    data = Column(JSON, default=dict)

    # Weak references: a notification never owns or mutates these entities
    related_project_id = Column(Uuid, nullable=True, index=True)
    related_company_id = Column(Uuid, nullable=True, index=True)
    related_bid_id = Column(Uuid, nullable=True)
    related_payment_id = Column(Uuid, nullable=True)

    is_read = Column(Boolean, default=False)
    read_at = Column(DateTime, nullable=True)
    priority = Column(String, default="medium")  # low, medium, high, urgent
    source = Column(String, default="system")  # system, user, admin
    action_url = Column(String, nullable=True)
    email_sent = Column(Boolean, default=False)
    expires_at = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", backref="notifications")


class Message(Base):
    """Direct message between two users, fetched by polling"""
    __tablename__ = "messages"
    __table_args__ = (Index("ix_messages_conversation_created", "conversation_id", "created_at"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(String(100), nullable=False)
    sender_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    receiver_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    sender_name = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    attachments = Column(JSON, default=list)
    related_project_id = Column(Uuid, nullable=True)
    is_read = Column(Boolean, default=False)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    sender = relationship("User", foreign_keys=[sender_id])
    receiver = relationship("User", foreign_keys=[receiver_id])


class EmailLog(Base):
    """Email delivery tracking"""
    __tablename__ = "email_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    notification_id = Column(Uuid, ForeignKey("notifications.id", ondelete="SET NULL"), nullable=True)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    email_to = Column(String, nullable=False)
    subject = Column(String, nullable=False)
    template_name = Column(String, nullable=False)
    status = Column(String, default="queued")  # queued, sent, failed, disabled
    provider = Column(String, nullable=True)  # smtp, sendgrid, console
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", backref="email_logs")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(String, unique=True, nullable=False, index=True)
    project_id = Column(Uuid, ForeignKey("projects.id"), nullable=False)
    bid_id = Column(Uuid, ForeignKey("bids.id"), nullable=True)
    milestone_id = Column(Uuid, ForeignKey("bid_milestones.id"), nullable=True)
    payer_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    currency = Column(String, default="PKR")
    method = Column(String, nullable=False)  # jazzcash, easypaisa, bank

    # Status: pending, completed, failed
    status = Column(String, default="pending", index=True)
    gateway_reference = Column(String, nullable=True)
    gateway_response = Column(JSON, nullable=True)
    failure_reason = Column(Text, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    project = relationship("Project")
    milestone = relationship("BidMilestone")
