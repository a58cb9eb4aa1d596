"""
Cooperative Request Workflow
Request domain models.

Models:
    - Request:      unit of work routed through a type-specific approval chain
    - ApprovalStep: one rung (one role, one level) of a Request's chain

Architecture:
    Request ──1:N──▶ ApprovalStep   (levels 1..N, created with the Request)
    Request ──N:1──▶ Member         (biodata_id, optional subject link)
    Request ──N:1──▶ PersonalSavings (personal_savings_id, optional subject link)

Every UPDATE of a Request row is a compare-and-swap on ``version``: a flush
against a row that changed since it was loaded raises ``StaleDataError``.
"""

import uuid
from datetime import datetime, timezone

from coopflow.models import db


# ── Request Type Constants ───────────────────────────────────────────────────

LOAN_APPLICATION = "LOAN_APPLICATION"
BIODATA_UPDATE = "BIODATA_UPDATE"
ACCOUNT_UPDATE = "ACCOUNT_UPDATE"
SAVINGS_WITHDRAWAL = "SAVINGS_WITHDRAWAL"
ACCOUNT_CREATION = "ACCOUNT_CREATION"
ACCOUNT_CLOSURE = "ACCOUNT_CLOSURE"
LOAN_DISBURSEMENT = "LOAN_DISBURSEMENT"
BULK_UPLOAD = "BULK_UPLOAD"
SYSTEM_ADJUSTMENT = "SYSTEM_ADJUSTMENT"
ACCOUNT_VERIFICATION = "ACCOUNT_VERIFICATION"
PERSONAL_SAVINGS_CREATION = "PERSONAL_SAVINGS_CREATION"
PERSONAL_SAVINGS_WITHDRAWAL = "PERSONAL_SAVINGS_WITHDRAWAL"

REQUEST_TYPES = {
    LOAN_APPLICATION, BIODATA_UPDATE, ACCOUNT_UPDATE, SAVINGS_WITHDRAWAL,
    ACCOUNT_CREATION, ACCOUNT_CLOSURE, LOAN_DISBURSEMENT, BULK_UPLOAD,
    SYSTEM_ADJUSTMENT, ACCOUNT_VERIFICATION, PERSONAL_SAVINGS_CREATION,
    PERSONAL_SAVINGS_WITHDRAWAL,
}

REQUEST_TYPE_LABELS = {
    LOAN_APPLICATION: "Loan Application",
    BIODATA_UPDATE: "Biodata Approval",
    ACCOUNT_UPDATE: "Account Update",
    SAVINGS_WITHDRAWAL: "Savings Withdrawal",
    ACCOUNT_CREATION: "Account Creation",
    ACCOUNT_CLOSURE: "Account Closure",
    LOAN_DISBURSEMENT: "Loan Disbursement",
    BULK_UPLOAD: "Bulk Upload",
    SYSTEM_ADJUSTMENT: "System Adjustment",
    ACCOUNT_VERIFICATION: "Account Verification",
    PERSONAL_SAVINGS_CREATION: "Personal Savings Creation",
    PERSONAL_SAVINGS_WITHDRAWAL: "Personal Savings Withdrawal",
}

# Informational only; never consulted by the state machine.
REQUEST_MODULES = {"LOAN", "SAVINGS", "ACCOUNT", "SYSTEM", "SHARES"}

# ── Status Constants ─────────────────────────────────────────────────────────

PENDING = "PENDING"
IN_REVIEW = "IN_REVIEW"
REVIEWED = "REVIEWED"
APPROVED = "APPROVED"
REJECTED = "REJECTED"
COMPLETED = "COMPLETED"
CANCELLED = "CANCELLED"

REQUEST_STATUSES = {PENDING, IN_REVIEW, REVIEWED, APPROVED, REJECTED, COMPLETED, CANCELLED}

OPEN_STATUSES = {PENDING, IN_REVIEW}
TERMINAL_STATUSES = {REJECTED, COMPLETED, CANCELLED}

STEP_PENDING = "PENDING"
STEP_APPROVED = "APPROVED"
STEP_REJECTED = "REJECTED"
STEP_STATUSES = {STEP_PENDING, STEP_APPROVED, STEP_REJECTED}


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

REQUEST_TRANSITIONS = {
    PENDING:   frozenset({IN_REVIEW, REVIEWED, REJECTED, CANCELLED}),  # REVIEWED = fast-track
    IN_REVIEW: frozenset({REVIEWED, REJECTED, CANCELLED}),
    REVIEWED:  frozenset({APPROVED, REJECTED, CANCELLED}),
    APPROVED:  frozenset({COMPLETED, REJECTED, CANCELLED}),
    REJECTED:  frozenset(),
    COMPLETED: frozenset(),
    CANCELLED: frozenset(),
}


def allowed_next(status):
    """Statuses reachable from ``status`` in one step (empty for unknown/terminal)."""
    return REQUEST_TRANSITIONS.get(status, frozenset())


def validate_request_transition(old_status, new_status):
    """Return True if Request status transition is valid."""
    return new_status in allowed_next(old_status)


def step_outcome_for(target_status):
    """Step-local outcome implied by a Request transition."""
    if target_status in (REJECTED, CANCELLED):
        return STEP_REJECTED
    return STEP_APPROVED


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ═══════════════════════════════════════════════════════════════
# 1. REQUEST
# ═══════════════════════════════════════════════════════════════
class Request(db.Model):
    """
    A request moving through a multi-level approval chain.

    Lifecycle: PENDING → IN_REVIEW → REVIEWED → APPROVED → COMPLETED,
    with REJECTED / CANCELLED exits from every non-terminal status.
    Never deleted; only terminalized.
    """

    __tablename__ = "requests"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    type = db.Column(db.String(40), nullable=False, index=True)
    module = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=PENDING, index=True)

    content = db.Column(db.JSON, nullable=False, default=dict)
    meta = db.Column("metadata", db.JSON, nullable=True, default=dict)

    next_approval_level = db.Column(db.Integer, nullable=False, default=1)

    # Subject links (at most one at creation)
    biodata_id = db.Column(
        db.String(36), db.ForeignKey("members.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    savings_id = db.Column(db.String(36), nullable=True)
    loan_id = db.Column(db.String(36), nullable=True)
    personal_savings_id = db.Column(
        db.String(36), db.ForeignKey("personal_savings.id", ondelete="SET NULL"), nullable=True,
        index=True,
    )

    initiator_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    approver_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
        comment="Last actor",
    )
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    approval_steps = db.relationship(
        "ApprovalStep", back_populates="request", cascade="all, delete-orphan",
        order_by="ApprovalStep.level",
    )
    biodata = db.relationship("Member", foreign_keys=[biodata_id])
    personal_savings = db.relationship("PersonalSavings", foreign_keys=[personal_savings_id])
    initiator = db.relationship("User", foreign_keys=[initiator_id])
    approver = db.relationship("User", foreign_keys=[approver_id])

    @property
    def max_level(self):
        return max((s.level for s in self.approval_steps), default=0)

    @property
    def type_label(self):
        return REQUEST_TYPE_LABELS.get(self.type, self.type)

    def step_at(self, level):
        """Return the ApprovalStep at ``level`` or None."""
        for step in self.approval_steps:
            if step.level == level:
                return step
        return None

    def to_dict(self, include_steps=True):
        d = {
            "id": self.id,
            "type": self.type,
            "module": self.module,
            "status": self.status,
            "content": self.content or {},
            "metadata": self.meta or {},
            "next_approval_level": self.next_approval_level,
            "biodata_id": self.biodata_id,
            "savings_id": self.savings_id,
            "loan_id": self.loan_id,
            "personal_savings_id": self.personal_savings_id,
            "initiator_id": self.initiator_id,
            "approver_id": self.approver_id,
            "notes": self.notes,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "completed_at": _iso(self.completed_at),
            "version": self.version,
            "biodata": self.biodata.summary() if self.biodata else None,
            "initiator": self.initiator.summary() if self.initiator else None,
            "approver": self.approver.summary() if self.approver else None,
        }
        if include_steps:
            d["approval_steps"] = [s.to_dict() for s in self.approval_steps]
        return d

    def __repr__(self):
        return f"<Request {self.id} {self.type} [{self.status}] L{self.next_approval_level}>"


# ═══════════════════════════════════════════════════════════════
# 2. APPROVAL STEP
# ═══════════════════════════════════════════════════════════════
class ApprovalStep(db.Model):
    """One role-gated rung of a Request's chain. Levels are 1..N, no gaps."""

    __tablename__ = "request_approvals"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.String(36), db.ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    level = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=STEP_PENDING)
    approver_role = db.Column(db.String(50), nullable=False, index=True)
    approver_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("request_id", "level", name="uq_request_approval_level"),
    )

    request = db.relationship("Request", back_populates="approval_steps")
    approver = db.relationship("User", foreign_keys=[approver_id])

    def to_dict(self):
        return {
            "id": self.id,
            "request_id": self.request_id,
            "level": self.level,
            "status": self.status,
            "approver_role": self.approver_role,
            "approver_id": self.approver_id,
            "approver": self.approver.summary() if self.approver else None,
            "approved_at": _iso(self.approved_at),
            "notes": self.notes,
        }
