"""
Personal savings: request submission and direct balance writes.

Plan creation and withdrawals go through the approval workflow: this module
checks the member-facing rules and submits the request. Deposits are a
direct staff operation on the same ``current_balance`` the withdrawal
completion handler debits, so both lock the plan row before touching it.

Withdrawal rules (checked at submission):
    - the plan is ACTIVE and holds at least the requested amount
    - no deposit within PERSONAL_SAVINGS_DEPOSIT_COOLDOWN_DAYS
    - no withdrawal within PERSONAL_SAVINGS_WITHDRAWAL_INTERVAL_DAYS of the
      plan's first withdrawal
The balance is checked again when the request completes.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from coopflow.core.exceptions import (
    FetchError,
    NotFoundError,
    UnauthorizedActionError,
    ValidationError,
    WorkflowError,
)
from coopflow.models import db
from coopflow.models.auth import User
from coopflow.models.member import MEMBERSHIP_ACTIVE, Member
from coopflow.models.request import PERSONAL_SAVINGS_CREATION, PERSONAL_SAVINGS_WITHDRAWAL
from coopflow.models.savings import (
    BASE_CREDIT,
    BASE_DEBIT,
    PLAN_ACTIVE,
    TX_COMPLETED,
    TX_PERSONAL_SAVINGS_DEPOSIT,
    TX_PERSONAL_SAVINGS_WITHDRAWAL,
    PersonalSavings,
    PersonalSavingsPlanType,
    Transaction,
)
from coopflow.services.request_content import parse_amount
from coopflow.services.request_service import create_request
from coopflow.services.role_directory import caller_approval_level

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _require_owner_or_staff(member: Member, user_id: int) -> None:
    if member.user_id == user_id:
        return
    if caller_approval_level(user_id) >= 1:
        return
    raise UnauthorizedActionError("You can only act on your own personal savings")


# ── Submission (via the approval workflow) ─────────────────────────────────────


def request_plan_creation(
    erp_id: str,
    plan_type_id: str,
    user_id: int,
    plan_name: str | None = None,
    target_amount=None,
    notes: str | None = None,
) -> dict:
    """Submit a PERSONAL_SAVINGS_CREATION request for the member ``erp_id``.

    Raises:
        NotFoundError:            no member with this ERP id.
        UnauthorizedActionError:  membership not ACTIVE, or caller is not the
                                  member and not staff.
        ValidationError:          unknown or inactive plan type.
    """
    member = db.session.execute(
        select(Member).where(Member.erp_id == erp_id)
    ).scalar_one_or_none()
    if member is None:
        raise NotFoundError("Member", erp_id)
    if member.membership_status != MEMBERSHIP_ACTIVE:
        raise UnauthorizedActionError("Only active members can create personal savings plans")
    _require_owner_or_staff(member, user_id)

    plan_type = db.session.get(PersonalSavingsPlanType, plan_type_id)
    if plan_type is None or not plan_type.is_active:
        raise ValidationError("Invalid or inactive plan type",
                              details={"plan_type_id": "unknown or inactive"})

    content = {
        "erp_id": member.erp_id,
        "plan_type_id": plan_type.id,
        "plan_name": plan_name or plan_type.name,
    }
    if target_amount is not None:
        content["target_amount"] = target_amount

    return create_request(
        PERSONAL_SAVINGS_CREATION,
        "SAVINGS",
        user_id,
        subject_links={"biodata_id": member.id},
        content=content,
        metadata={
            "member_name": member.full_name,
            "department": member.department,
            "plan_type_name": plan_type.name,
        },
        notes=notes,
    )


def request_withdrawal(plan_id: str, amount, user_id: int, reason: str | None = None) -> dict:
    """Submit a PERSONAL_SAVINGS_WITHDRAWAL request against ``plan_id``.

    Raises:
        NotFoundError, UnauthorizedActionError, ValidationError (plan not
        active, insufficient balance, cooldown or interval rule).
    """
    amount = parse_amount(amount)
    plan = db.session.get(PersonalSavings, plan_id)
    if plan is None:
        raise NotFoundError("PersonalSavings", plan_id)
    _require_owner_or_staff(plan.member, user_id)

    if plan.status != PLAN_ACTIVE:
        raise ValidationError("Cannot withdraw from a closed or suspended savings plan",
                              details={"plan_id": f"plan is {plan.status}"})
    balance = Decimal(plan.current_balance or 0)
    if balance < amount:
        raise ValidationError("Insufficient balance for withdrawal",
                              details={"amount": f"exceeds available balance {balance}"})

    now = datetime.now(timezone.utc)
    cfg = current_app.config

    latest_deposit = db.session.execute(
        select(Transaction.created_at)
        .where(
            Transaction.personal_savings_id == plan.id,
            Transaction.transaction_type == TX_PERSONAL_SAVINGS_DEPOSIT,
            Transaction.status == TX_COMPLETED,
        )
        .order_by(Transaction.created_at.desc())
        .limit(1)
    ).scalar()
    cooldown = timedelta(days=cfg["PERSONAL_SAVINGS_DEPOSIT_COOLDOWN_DAYS"])
    if latest_deposit is not None and _as_utc(latest_deposit) > now - cooldown:
        raise ValidationError(
            f"Withdrawal not allowed within {cooldown.days} days of the last deposit",
            details={"amount": "deposit cooldown in effect"},
        )

    first_withdrawal = db.session.execute(
        select(Transaction.created_at)
        .where(
            Transaction.personal_savings_id == plan.id,
            Transaction.status == TX_COMPLETED,
            (Transaction.transaction_type == TX_PERSONAL_SAVINGS_WITHDRAWAL)
            | (Transaction.base_type == BASE_DEBIT),
        )
        .order_by(Transaction.created_at.asc())
        .limit(1)
    ).scalar()
    interval = timedelta(days=cfg["PERSONAL_SAVINGS_WITHDRAWAL_INTERVAL_DAYS"])
    if first_withdrawal is not None and _as_utc(first_withdrawal) > now - interval:
        available = (_as_utc(first_withdrawal) + interval).date().isoformat()
        raise ValidationError(
            f"Further withdrawals are restricted until {available}",
            details={"amount": f"next withdrawal available from {available}"},
        )

    content = {
        "amount": amount,
        "plan_id": plan.id,
        "plan_name": plan.plan_name,
        "current_balance": balance,
    }
    if reason:
        content["reason"] = reason

    return create_request(
        PERSONAL_SAVINGS_WITHDRAWAL,
        "SAVINGS",
        user_id,
        subject_links={"personal_savings_id": plan.id},
        content=content,
        metadata={
            "plan_id": plan.id,
            "member_id": plan.member_id,
            "member_name": plan.member.full_name if plan.member else None,
            "amount": str(amount),
        },
    )


# ── Direct balance write ──────────────────────────────────────────────────────


def process_deposit(plan_id: str, amount, user_id: int, description: str | None = None) -> dict:
    """Credit ``amount`` to the plan and write a CREDIT ledger row. Commits.

    Returns:
        {"plan": {...}, "transaction": {...}}
    """
    amount = parse_amount(amount)
    try:
        if db.session.get(User, user_id) is None:
            raise NotFoundError("User", user_id)

        plan = db.session.execute(
            select(PersonalSavings)
            .where(PersonalSavings.id == plan_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if plan is None:
            raise NotFoundError("PersonalSavings", plan_id)
        if plan.status != PLAN_ACTIVE:
            raise ValidationError("Cannot deposit to a closed or suspended savings plan",
                                  details={"plan_id": f"plan is {plan.status}"})

        new_balance = Decimal(plan.current_balance or 0) + amount
        plan.current_balance = new_balance
        tx = Transaction(
            transaction_type=TX_PERSONAL_SAVINGS_DEPOSIT,
            base_type=BASE_CREDIT,
            amount=amount,
            balance_after=new_balance,
            status=TX_COMPLETED,
            description=description or f"Deposit to personal savings plan: {plan.plan_name or 'Unnamed plan'}",
            initiated_by=user_id,
            personal_savings_id=plan.id,
        )
        db.session.add(tx)
        db.session.commit()
    except WorkflowError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Deposit failed", extra={"plan_id": plan_id, "actor_id": user_id})
        raise FetchError("Failed to process deposit") from exc

    logger.info("Deposit posted", extra={"plan_id": plan.id, "amount": str(amount),
                                         "actor_id": user_id})
    return {"plan": plan.to_dict(), "transaction": tx.to_dict()}
