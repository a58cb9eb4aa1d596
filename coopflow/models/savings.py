"""
Cooperative Request Workflow
Personal savings domain models.

Models:
    - PersonalSavingsPlanType: catalogue of plan types members may open
    - PersonalSavings:         a member's plan with its running balance
    - Transaction:             ledger row written for every balance movement

Architecture:
    Member ──1:N──▶ PersonalSavings ──1:N──▶ Transaction
    PersonalSavingsPlanType ──1:N──▶ PersonalSavings

``PersonalSavings.current_balance`` is shared between the approval engine
(withdrawal completion) and direct staff operations (deposits); writers lock
the row before reading the balance they are about to change.
"""

import uuid
from datetime import datetime, timezone

from coopflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

PLAN_ACTIVE = "ACTIVE"
PLAN_SUSPENDED = "SUSPENDED"
PLAN_CLOSED = "CLOSED"
PLAN_STATUSES = {PLAN_ACTIVE, PLAN_SUSPENDED, PLAN_CLOSED}

TX_PERSONAL_SAVINGS_DEPOSIT = "PERSONAL_SAVINGS_DEPOSIT"
TX_PERSONAL_SAVINGS_WITHDRAWAL = "PERSONAL_SAVINGS_WITHDRAWAL"
TRANSACTION_TYPES = {TX_PERSONAL_SAVINGS_DEPOSIT, TX_PERSONAL_SAVINGS_WITHDRAWAL}

BASE_CREDIT = "CREDIT"
BASE_DEBIT = "DEBIT"

TX_COMPLETED = "COMPLETED"
TX_MODULE_SAVINGS = "SAVINGS"


def _utcnow():
    return datetime.now(timezone.utc)


class PersonalSavingsPlanType(db.Model):
    __tablename__ = "personal_savings_plan_types"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
        }


class PersonalSavings(db.Model):
    """A member's personal savings plan."""

    __tablename__ = "personal_savings"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    erp_id = db.Column(db.String(50), nullable=False, index=True)
    member_id = db.Column(
        db.String(36), db.ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    plan_type_id = db.Column(
        db.String(36), db.ForeignKey("personal_savings_plan_types.id"), nullable=False,
    )
    plan_name = db.Column(db.String(200))
    target_amount = db.Column(db.Numeric(15, 2), nullable=True)
    current_balance = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default=PLAN_ACTIVE)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    member = db.relationship("Member")
    plan_type = db.relationship("PersonalSavingsPlanType")
    transactions = db.relationship(
        "Transaction", back_populates="personal_savings", lazy="dynamic",
        order_by="Transaction.created_at",
    )

    __table_args__ = (
        db.Index("ix_personal_savings_member_type", "member_id", "plan_type_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "erp_id": self.erp_id,
            "member_id": self.member_id,
            "plan_type_id": self.plan_type_id,
            "plan_name": self.plan_name,
            "target_amount": str(self.target_amount) if self.target_amount is not None else None,
            "current_balance": str(self.current_balance),
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<PersonalSavings {self.id}: {self.plan_name} balance={self.current_balance}>"


class Transaction(db.Model):
    """Ledger row. Never updated after insert."""

    __tablename__ = "transactions"

    id = db.Column(db.Integer, primary_key=True)
    transaction_type = db.Column(db.String(50), nullable=False)
    base_type = db.Column(db.String(10), nullable=False, comment="CREDIT | DEBIT")
    module = db.Column(db.String(20), nullable=False, default=TX_MODULE_SAVINGS)
    amount = db.Column(db.Numeric(15, 2), nullable=False)
    balance_after = db.Column(db.Numeric(15, 2), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=TX_COMPLETED)
    description = db.Column(db.Text)

    initiated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    personal_savings_id = db.Column(
        db.String(36), db.ForeignKey("personal_savings.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    request_id = db.Column(
        db.String(36), db.ForeignKey("requests.id", ondelete="SET NULL"), nullable=True, index=True,
    )

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)

    personal_savings = db.relationship("PersonalSavings", back_populates="transactions")

    def to_dict(self):
        return {
            "id": self.id,
            "transaction_type": self.transaction_type,
            "base_type": self.base_type,
            "module": self.module,
            "amount": str(self.amount),
            "balance_after": str(self.balance_after),
            "status": self.status,
            "description": self.description,
            "initiated_by": self.initiated_by,
            "approved_by": self.approved_by,
            "personal_savings_id": self.personal_savings_id,
            "request_id": self.request_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
