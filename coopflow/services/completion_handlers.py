"""
Completion Handler Registry.

Type-specific side effects fired when a request reaches its productive
terminal status. Some types finalize at APPROVED (the chain's last approval
is the decision), others defer to COMPLETED (the treasurer confirms the
money actually moved), so the registry is keyed by ``(type, status)``.

Handlers run inside the orchestrator's unit of work, after the status and
step mutation were flushed and before the commit. Raising from a handler
rolls the transition back. Each handler returns an outcome dict which is
recorded on the request under ``metadata["completion"]``.

Exactly-once: COMPLETED is terminal and APPROVED cannot be re-entered, so
the transition validator rejects any second trigger before a handler runs.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select

from coopflow.core.exceptions import NotFoundError
from coopflow.models import db
from coopflow.models.member import MEMBERSHIP_ACTIVE, MEMBERSHIP_INACTIVE, Member
from coopflow.models.request import (
    ACCOUNT_CLOSURE,
    APPROVED,
    BIODATA_UPDATE,
    COMPLETED,
    PERSONAL_SAVINGS_CREATION,
    PERSONAL_SAVINGS_WITHDRAWAL,
    Request,
)
from coopflow.models.savings import (
    BASE_DEBIT,
    PLAN_ACTIVE,
    TX_COMPLETED,
    TX_PERSONAL_SAVINGS_WITHDRAWAL,
    PersonalSavings,
    PersonalSavingsPlanType,
    Transaction,
)
from coopflow.services.notification import NotificationService
from coopflow.services.request_content import parse_content

logger = logging.getLogger(__name__)


def _member_for(req: Request) -> Member:
    member = db.session.get(Member, req.biodata_id) if req.biodata_id else None
    if member is None:
        raise NotFoundError("Member", req.biodata_id)
    return member


def _log_extra(req: Request, actor_id: int, **more) -> dict:
    extra = {"request_ref": req.id, "request_type": req.type, "actor_id": actor_id}
    extra.update(more)
    return extra


# ── Handlers ─────────────────────────────────────────────────────────────────


def create_personal_savings_plan(req: Request, actor_id: int) -> dict:
    """PERSONAL_SAVINGS_CREATION @ APPROVED: open the plan with a zero balance.

    Skips creation when the member already has an ACTIVE plan of the same
    type; the existing plan is back-linked instead.
    """
    content = parse_content(req.type, req.content)
    member = _member_for(req)

    existing = db.session.execute(
        select(PersonalSavings).where(
            PersonalSavings.member_id == member.id,
            PersonalSavings.plan_type_id == content.plan_type_id,
            PersonalSavings.status == PLAN_ACTIVE,
        )
    ).scalars().first()
    if existing is not None:
        req.personal_savings_id = existing.id
        logger.warning("Active plan already exists, creation skipped",
                       extra=_log_extra(req, actor_id, plan_id=existing.id))
        return {"outcome": "skipped", "reason": "plan_exists", "personal_savings_id": existing.id}

    plan_type = db.session.get(PersonalSavingsPlanType, content.plan_type_id)
    if plan_type is None:
        raise NotFoundError("PersonalSavingsPlanType", content.plan_type_id)

    plan = PersonalSavings(
        erp_id=member.erp_id,
        member_id=member.id,
        plan_type_id=plan_type.id,
        plan_name=content.plan_name or plan_type.name,
        target_amount=content.target_amount,
        current_balance=Decimal("0"),
        status=PLAN_ACTIVE,
    )
    db.session.add(plan)
    db.session.flush()
    req.personal_savings_id = plan.id

    NotificationService.notify(
        req.initiator_id,
        title="Personal Savings Plan Created",
        message=f"Your personal savings plan '{plan.plan_name}' has been created.",
        request_id=req.id,
        metadata={"personal_savings_id": plan.id},
    )
    logger.info("Personal savings plan created", extra=_log_extra(req, actor_id, plan_id=plan.id))
    return {"outcome": "applied", "personal_savings_id": plan.id}


def approve_biodata(req: Request, actor_id: int) -> dict:
    """BIODATA_UPDATE @ APPROVED: mark the member's biodata approved."""
    member = _member_for(req)
    member.is_approved = True
    member.membership_status = MEMBERSHIP_ACTIVE
    logger.info("Biodata approved", extra=_log_extra(req, actor_id))
    return {"outcome": "applied", "biodata_id": member.id}


def process_personal_savings_withdrawal(req: Request, actor_id: int) -> dict:
    """PERSONAL_SAVINGS_WITHDRAWAL @ COMPLETED: debit the plan.

    The balance is re-read under a row lock: it may have moved since the
    request was submitted. An insufficient balance leaves the request
    COMPLETED without effect and tells the initiator the withdrawal failed.
    """
    content = parse_content(req.type, req.content)
    amount = content.amount

    plan = db.session.execute(
        select(PersonalSavings)
        .where(PersonalSavings.id == req.personal_savings_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if plan is None:
        raise NotFoundError("PersonalSavings", req.personal_savings_id)

    balance = Decimal(plan.current_balance or 0)
    if plan.status != PLAN_ACTIVE or balance < amount:
        reason = "plan_inactive" if plan.status != PLAN_ACTIVE else "insufficient_balance"
        logger.warning(
            "Withdrawal skipped: %s (balance=%s, requested=%s)", reason, balance, amount,
            extra=_log_extra(req, actor_id, plan_id=plan.id, amount=str(amount)),
        )
        NotificationService.notify(
            req.initiator_id,
            title="Withdrawal Failed",
            message=(
                f"Your withdrawal of {amount} from '{plan.plan_name}' could not be "
                f"processed. Available balance: {balance}."
            ),
            request_id=req.id,
            metadata={"personal_savings_id": plan.id, "reason": reason},
        )
        return {
            "outcome": "skipped",
            "reason": reason,
            "requested_amount": str(amount),
            "available_balance": str(balance),
        }

    new_balance = balance - amount
    plan.current_balance = new_balance
    tx = Transaction(
        transaction_type=TX_PERSONAL_SAVINGS_WITHDRAWAL,
        base_type=BASE_DEBIT,
        amount=amount,
        balance_after=new_balance,
        status=TX_COMPLETED,
        description=f"Personal savings withdrawal ({req.id})",
        initiated_by=req.initiator_id,
        approved_by=actor_id,
        personal_savings_id=plan.id,
        request_id=req.id,
    )
    db.session.add(tx)
    db.session.flush()

    NotificationService.notify(
        req.initiator_id,
        title="Withdrawal Processed",
        message=(
            f"Your withdrawal of {amount} from '{plan.plan_name}' has been processed. "
            f"New balance: {new_balance}."
        ),
        request_id=req.id,
        metadata={"personal_savings_id": plan.id, "transaction_id": tx.id},
    )
    logger.info("Withdrawal debited", extra=_log_extra(req, actor_id, plan_id=plan.id,
                                                         amount=str(amount)))
    return {"outcome": "applied", "transaction_id": tx.id, "balance_after": str(new_balance)}


def close_member_account(req: Request, actor_id: int) -> dict:
    """ACCOUNT_CLOSURE @ COMPLETED: deactivate the membership."""
    member = _member_for(req)
    member.membership_status = MEMBERSHIP_INACTIVE
    logger.info("Membership closed", extra=_log_extra(req, actor_id))
    return {"outcome": "applied", "biodata_id": member.id}


# ── Registry ─────────────────────────────────────────────────────────────────

COMPLETION_HANDLERS = {
    (PERSONAL_SAVINGS_CREATION, APPROVED): create_personal_savings_plan,
    (BIODATA_UPDATE, APPROVED): approve_biodata,
    (PERSONAL_SAVINGS_WITHDRAWAL, COMPLETED): process_personal_savings_withdrawal,
    (ACCOUNT_CLOSURE, COMPLETED): close_member_account,
}


def run_completion_handler(req: Request, status: str, actor_id: int) -> dict | None:
    """Run the handler registered for ``(req.type, status)``; no-op if none.

    The outcome is stored on ``req.meta["completion"]``.
    """
    handler = COMPLETION_HANDLERS.get((req.type, status))
    if handler is None:
        return None
    outcome = handler(req, actor_id)
    outcome = {"handler": handler.__name__, "status": status, **outcome}
    # Reassign so the JSON column is marked dirty
    req.meta = {**(req.meta or {}), "completion": outcome}
    return outcome
