"""
Request workflow orchestrator tests.

Tests cover:
  - Creation: ladder from the chain, content / subject-link validation,
    submission notifications
  - Advancing: level bookkeeping, completed_at, authorization by step role
  - Invalid transitions leave storage untouched
  - Idempotence of terminal transitions
  - Cancellation by the initiator
  - Completion handler failure rolls the transition back
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from coopflow.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedActionError,
    ValidationError,
)
from coopflow.models import db
from coopflow.models.auth import ADMIN, User
from coopflow.models.notification import KIND_APPROVAL_REQUIRED, Notification
from coopflow.models.request import Request
from coopflow.services import completion_handlers
from coopflow.services.request_service import (
    advance_status,
    cancel_request,
    create_request,
    get_request,
)
from coopflow.services.role_directory import caller_approval_level


def _loan(initiator_id, amount=250000, tenure=12, **kw):
    return create_request(
        "LOAN_APPLICATION", "LOAN", initiator_id,
        content={"amount": amount, "tenure_months": tenure, "purpose": "School fees"},
        **kw,
    )


def _notifications(user_id, title=None):
    stmt = select(Notification).where(Notification.user_id == user_id)
    if title:
        stmt = stmt.where(Notification.title == title)
    return db.session.execute(stmt).scalars().all()


def _step(data, level):
    return next(s for s in data["approval_steps"] if s["level"] == level)


# ═════════════════════════════════════════════════════════════════════════
# CREATE
# ═════════════════════════════════════════════════════════════════════════

class TestCreateRequest:
    def test_creates_pending_request_with_full_ladder(self, staff):
        data = _loan(staff.member)

        assert data["status"] == "PENDING"
        assert data["next_approval_level"] == 1
        assert data["completed_at"] is None
        assert data["version"] == 1
        assert [s["level"] for s in data["approval_steps"]] == [1, 2, 3, 4]
        assert [s["approver_role"] for s in data["approval_steps"]] == [
            "ADMIN", "TREASURER", "CHAIRMAN", "TREASURER",
        ]
        assert all(s["status"] == "PENDING" for s in data["approval_steps"])
        assert data["content"]["amount"] == 250000
        assert data["content"]["tenure_months"] == 12
        assert data["initiator"]["username"] == "member"

    def test_notifies_initiator_and_level_one_role(self, staff, make_user):
        second_admin = make_user(ADMIN).id
        data = _loan(staff.member)

        submitted = _notifications(staff.member, "Request Submitted")
        assert len(submitted) == 1
        assert submitted[0].request_id == data["id"]

        for admin_id in (staff.admin, second_admin):
            review = _notifications(admin_id, "New Request Requires Review")
            assert len(review) == 1
            assert review[0].kind == KIND_APPROVAL_REQUIRED
        # Level-2 role is not told yet
        assert _notifications(staff.treasurer) == []

    def test_super_admin_is_not_a_fan_out_target_for_other_roles(self, staff):
        _loan(staff.member)
        assert _notifications(staff.super_admin) == []

    def test_unknown_type_rejected(self, staff):
        with pytest.raises(ValidationError) as exc:
            create_request("TIME_TRAVEL", "SYSTEM", staff.member)
        assert "type" in exc.value.details

    def test_unknown_module_rejected(self, staff):
        with pytest.raises(ValidationError):
            create_request("ACCOUNT_UPDATE", "BANKING", staff.member)

    def test_content_validation_reports_fields(self, staff):
        with pytest.raises(ValidationError) as exc:
            create_request("LOAN_APPLICATION", "LOAN", staff.member,
                           content={"amount": -5, "tenure_months": "soon"})
        assert exc.value.details == {
            "content.amount": "must be greater than 0",
            "content.tenure_months": "must be an integer",
        }
        assert db.session.execute(select(func.count(Request.id))).scalar() == 0

    def test_required_subject_link(self, staff):
        with pytest.raises(ValidationError) as exc:
            create_request("BIODATA_UPDATE", "ACCOUNT", staff.member, content={})
        assert exc.value.details == {"biodata_id": "required"}

    def test_at_most_one_subject_link(self, staff, member_record, make_plan_type, make_plan):
        plan = make_plan(member_record, make_plan_type())
        with pytest.raises(ValidationError):
            create_request(
                "ACCOUNT_CLOSURE", "ACCOUNT", staff.member,
                subject_links={"biodata_id": member_record.id, "personal_savings_id": plan.id},
            )

    def test_missing_subject_entity_is_not_found(self, staff):
        with pytest.raises(NotFoundError):
            create_request("ACCOUNT_CLOSURE", "ACCOUNT", staff.member,
                           subject_links={"biodata_id": "no-such-member"})

    def test_plan_creation_erp_id_must_match_linked_member(self, staff, member_record,
                                                           make_member, make_plan_type):
        other = make_member(erp_id="ERP-OTHER")
        with pytest.raises(ValidationError) as exc:
            create_request(
                "PERSONAL_SAVINGS_CREATION", "SAVINGS", staff.member,
                subject_links={"biodata_id": member_record.id},
                content={"erp_id": other.erp_id, "plan_type_id": make_plan_type().id},
            )
        assert "content.erp_id" in exc.value.details
        assert db.session.execute(select(func.count(Request.id))).scalar() == 0

    def test_unknown_initiator_is_not_found(self, staff):
        with pytest.raises(NotFoundError):
            create_request("ACCOUNT_UPDATE", "ACCOUNT", 9999)
        assert db.session.execute(select(func.count(Request.id))).scalar() == 0

    def test_unmodelled_type_keeps_free_form_content(self, staff):
        data = create_request("SYSTEM_ADJUSTMENT", "SYSTEM", staff.admin,
                              content={"anything": [1, 2, 3]}, metadata={"source": "ops"})
        assert data["content"] == {"anything": [1, 2, 3]}
        assert data["metadata"] == {"source": "ops"}
        assert len(data["approval_steps"]) == 1

    def test_get_request_not_found(self):
        with pytest.raises(NotFoundError):
            get_request("missing")

    def test_amounts_are_stored_as_json_numbers(self, staff):
        data = _loan(staff.member, amount="1500.50")
        assert data["content"]["amount"] == 1500.5
        assert Decimal(str(data["content"]["amount"])) == Decimal("1500.5")


# ═════════════════════════════════════════════════════════════════════════
# ADVANCE
# ═════════════════════════════════════════════════════════════════════════

class TestAdvanceStatus:
    def test_level_moves_up_one_rung_per_advancing_transition(self, staff):
        rid = _loan(staff.member)["id"]

        data = advance_status(rid, "IN_REVIEW", staff.admin, notes="Looks complete")
        assert data["status"] == "IN_REVIEW"
        assert data["next_approval_level"] == 2
        assert data["approver_id"] == staff.admin
        step1 = _step(data, 1)
        assert step1["status"] == "APPROVED"
        assert step1["approver_id"] == staff.admin
        assert step1["notes"] == "Looks complete"
        assert step1["approved_at"] is not None
        assert _step(data, 2)["status"] == "PENDING"

        data = advance_status(rid, "REVIEWED", staff.treasurer)
        assert data["next_approval_level"] == 3

        data = advance_status(rid, "APPROVED", staff.chairman)
        assert data["next_approval_level"] == 4
        # Not the last level: not complete yet
        assert data["completed_at"] is None

        data = advance_status(rid, "COMPLETED", staff.treasurer)
        assert data["status"] == "COMPLETED"
        assert data["next_approval_level"] == 4
        assert data["completed_at"] is not None
        assert data["version"] == 5

    def test_level_never_exceeds_chain_length(self, staff, member_record):
        rid = create_request("BIODATA_UPDATE", "ACCOUNT", staff.member,
                             subject_links={"biodata_id": member_record.id})["id"]
        levels = []
        for status, actor in (("IN_REVIEW", staff.admin), ("REVIEWED", staff.chairman),
                              ("APPROVED", staff.chairman)):
            levels.append(advance_status(rid, status, actor)["next_approval_level"])
        assert levels == [2, 2, 2]

    def test_approved_at_last_level_sets_completed_at(self, staff):
        rid = create_request("ACCOUNT_UPDATE", "ACCOUNT", staff.member)["id"]
        advance_status(rid, "REVIEWED", staff.admin)
        data = advance_status(rid, "APPROVED", staff.admin)
        assert data["completed_at"] is not None
        assert data["next_approval_level"] == 1

    def test_fast_track_pending_to_reviewed(self, staff):
        rid = _loan(staff.member)["id"]
        data = advance_status(rid, "REVIEWED", staff.admin)
        assert data["status"] == "REVIEWED"
        assert data["next_approval_level"] == 2

    def test_pending_to_approved_is_rejected_without_mutation(self, staff):
        rid = _loan(staff.member)["id"]
        before = len(_notifications(staff.member))

        with pytest.raises(InvalidTransitionError) as exc:
            advance_status(rid, "APPROVED", staff.super_admin)
        assert exc.value.current_status == "PENDING"

        data = get_request(rid)
        assert data["status"] == "PENDING"
        assert data["version"] == 1
        assert data["approver_id"] is None
        assert all(s["status"] == "PENDING" and s["approver_id"] is None
                   for s in data["approval_steps"])
        assert len(_notifications(staff.member)) == before

    def test_unknown_target_status(self, staff):
        rid = _loan(staff.member)["id"]
        with pytest.raises(ValidationError):
            advance_status(rid, "ON_HOLD", staff.admin)

    def test_missing_request(self, staff):
        with pytest.raises(NotFoundError):
            advance_status("missing", "IN_REVIEW", staff.admin)

    def test_rejection_ends_workflow_at_current_level(self, staff):
        rid = _loan(staff.member)["id"]
        advance_status(rid, "IN_REVIEW", staff.admin)
        data = advance_status(rid, "REJECTED", staff.treasurer, notes="Too risky")

        assert data["status"] == "REJECTED"
        assert data["next_approval_level"] == 2
        assert data["completed_at"] is not None
        assert _step(data, 2)["status"] == "REJECTED"
        assert _step(data, 3)["status"] == "PENDING"
        rejected = _notifications(staff.member, "Request Rejected")
        assert len(rejected) == 1
        assert "Too risky" in rejected[0].message

        with pytest.raises(InvalidTransitionError):
            advance_status(rid, "REVIEWED", staff.treasurer)

    def test_next_role_holders_are_notified(self, staff, make_user):
        rid = _loan(staff.member)["id"]
        advance_status(rid, "IN_REVIEW", staff.admin)
        review = _notifications(staff.treasurer, "Request Requires Your Review")
        assert len(review) == 1
        assert review[0].meta["level"] == 2

        # Role granted after submission still receives the next fan-out
        late_chairman = make_user("CHAIRMAN").id
        advance_status(rid, "REVIEWED", staff.treasurer)
        assert len(_notifications(late_chairman, "Request Requires Your Review")) == 1

    def test_no_fan_out_past_the_last_level(self, staff):
        rid = create_request("ACCOUNT_UPDATE", "ACCOUNT", staff.member)["id"]
        advance_status(rid, "IN_REVIEW", staff.admin)
        assert _notifications(staff.admin, "Request Requires Your Review") == []
        assert len(_notifications(staff.member, "Request In Review")) == 1


class TestAuthorization:
    def test_actor_must_hold_the_awaited_role(self, staff):
        rid = _loan(staff.member)["id"]
        with pytest.raises(UnauthorizedActionError):
            advance_status(rid, "IN_REVIEW", staff.treasurer)
        assert get_request(rid)["status"] == "PENDING"

    def test_initiator_cannot_approve_own_request(self, staff):
        rid = _loan(staff.member)["id"]
        with pytest.raises(UnauthorizedActionError):
            advance_status(rid, "IN_REVIEW", staff.member)

    def test_role_checked_against_current_level(self, staff):
        rid = _loan(staff.member)["id"]
        advance_status(rid, "IN_REVIEW", staff.admin)
        # Level 2 belongs to the treasurer now
        with pytest.raises(UnauthorizedActionError):
            advance_status(rid, "REVIEWED", staff.admin)

    def test_super_admin_may_act_at_any_level(self, staff):
        rid = _loan(staff.member)["id"]
        for status in ("IN_REVIEW", "REVIEWED", "APPROVED", "COMPLETED"):
            data = advance_status(rid, status, staff.super_admin)
        assert data["status"] == "COMPLETED"

    def test_revoked_role_no_longer_authorizes(self, staff, make_user):
        from coopflow.models.auth import UserRole
        admin2 = make_user(ADMIN).id
        grant = db.session.execute(
            select(UserRole).where(UserRole.user_id == admin2)
        ).scalar_one()
        grant.is_active = False
        db.session.commit()

        rid = _loan(staff.member)["id"]
        with pytest.raises(UnauthorizedActionError):
            advance_status(rid, "IN_REVIEW", admin2)

    def test_deactivated_user_no_longer_authorizes(self, staff):
        user = db.session.get(User, staff.admin)
        user.is_active = False
        db.session.commit()

        rid = _loan(staff.member)["id"]
        with pytest.raises(UnauthorizedActionError):
            advance_status(rid, "IN_REVIEW", staff.admin)
        assert get_request(rid)["status"] == "PENDING"
        assert caller_approval_level(staff.admin) == 0


class TestIdempotence:
    def test_repeating_terminal_transition_is_rejected(self, staff):
        rid = create_request("ACCOUNT_UPDATE", "ACCOUNT", staff.member)["id"]
        advance_status(rid, "REVIEWED", staff.admin)
        advance_status(rid, "APPROVED", staff.admin)
        advance_status(rid, "COMPLETED", staff.admin)
        count = len(_notifications(staff.member))

        with pytest.raises(InvalidTransitionError):
            advance_status(rid, "COMPLETED", staff.admin)
        assert len(_notifications(staff.member)) == count

    def test_repeating_advancing_transition_is_rejected(self, staff):
        rid = _loan(staff.member)["id"]
        advance_status(rid, "IN_REVIEW", staff.admin)
        treasurer_notices = len(_notifications(staff.treasurer))

        with pytest.raises(InvalidTransitionError):
            advance_status(rid, "IN_REVIEW", staff.admin)
        assert len(_notifications(staff.treasurer)) == treasurer_notices
        assert get_request(rid)["next_approval_level"] == 2


# ═════════════════════════════════════════════════════════════════════════
# CANCEL
# ═════════════════════════════════════════════════════════════════════════

class TestCancelRequest:
    def test_initiator_cancels_pending_request(self, staff):
        rid = _loan(staff.member)["id"]
        data = cancel_request(rid, staff.member)

        assert data["status"] == "CANCELLED"
        assert data["completed_at"] is not None
        assert data["notes"] == "Request cancelled by user"
        assert _step(data, 1)["status"] == "REJECTED"
        assert len(_notifications(staff.member, "Request Cancelled")) == 1

    def test_only_initiator_may_cancel(self, staff):
        rid = _loan(staff.member)["id"]
        with pytest.raises(UnauthorizedActionError):
            cancel_request(rid, staff.chairman)
        assert get_request(rid)["status"] == "PENDING"

    def test_cannot_cancel_after_review_started(self, staff):
        rid = _loan(staff.member)["id"]
        advance_status(rid, "IN_REVIEW", staff.admin)
        with pytest.raises(InvalidTransitionError):
            cancel_request(rid, staff.member)
        assert get_request(rid)["status"] == "IN_REVIEW"

    def test_status_check_comes_before_ownership(self, staff):
        rid = _loan(staff.member)["id"]
        cancel_request(rid, staff.member)
        with pytest.raises(InvalidTransitionError):
            cancel_request(rid, staff.chairman)

    def test_approver_may_cancel_through_advance(self, staff):
        rid = _loan(staff.member)["id"]
        advance_status(rid, "IN_REVIEW", staff.admin)
        data = advance_status(rid, "CANCELLED", staff.treasurer)
        assert data["status"] == "CANCELLED"
        assert data["completed_at"] is not None

    def test_cancel_missing_request(self, staff):
        with pytest.raises(NotFoundError):
            cancel_request("missing", staff.member)


# ═════════════════════════════════════════════════════════════════════════
# ATOMICITY
# ═════════════════════════════════════════════════════════════════════════

class TestHandlerFailureRollsBack:
    def test_exception_in_handler_undoes_transition(self, staff, member_record, monkeypatch):
        rid = create_request("BIODATA_UPDATE", "ACCOUNT", staff.member,
                             subject_links={"biodata_id": member_record.id})["id"]
        advance_status(rid, "IN_REVIEW", staff.admin)
        advance_status(rid, "REVIEWED", staff.chairman)
        before = get_request(rid)
        notices = len(_notifications(staff.member))

        def _explode(req, actor_id):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setitem(completion_handlers.COMPLETION_HANDLERS,
                            ("BIODATA_UPDATE", "APPROVED"), _explode)
        with pytest.raises(RuntimeError):
            advance_status(rid, "APPROVED", staff.chairman)

        after = get_request(rid)
        assert after["status"] == "REVIEWED"
        assert after["version"] == before["version"]
        assert after["completed_at"] is None
        assert after["approval_steps"] == before["approval_steps"]
        assert len(_notifications(staff.member)) == notices

    def test_typed_error_in_handler_undoes_transition(self, staff, member_record,
                                                      make_plan_type):
        plan_type = make_plan_type()
        data = create_request(
            "PERSONAL_SAVINGS_CREATION", "SAVINGS", staff.member,
            subject_links={"biodata_id": member_record.id},
            content={"erp_id": member_record.erp_id, "plan_type_id": plan_type.id},
        )
        rid = data["id"]
        advance_status(rid, "IN_REVIEW", staff.treasurer)
        advance_status(rid, "REVIEWED", staff.chairman)

        # Plan type withdrawn from the catalogue before final approval
        db.session.delete(plan_type)
        db.session.commit()

        with pytest.raises(NotFoundError):
            advance_status(rid, "APPROVED", staff.chairman)
        assert get_request(rid)["status"] == "REVIEWED"