"""
Personal Savings Blueprint.

Routes:
  POST   /personal-savings/requests                – request a new plan
  POST   /personal-savings/<plan_id>/withdrawals   – request a withdrawal
  POST   /personal-savings/<plan_id>/deposits      – post a deposit (treasurer+)
"""

from flask import Blueprint, jsonify

from coopflow.blueprints import (
    current_user_id,
    json_body,
    register_error_handlers,
    require_approval_level,
)
from coopflow.core.exceptions import ValidationError
from coopflow.services import personal_savings_service

personal_savings_bp = Blueprint("personal_savings", __name__, url_prefix="/api/v1/personal-savings")
register_error_handlers(personal_savings_bp)

# Deposits move money directly; treasurer level and above
DEPOSIT_LEVEL = 2


@personal_savings_bp.route("/requests", methods=["POST"])
def request_plan():
    """Body: { erp_id, plan_type_id, plan_name?, target_amount?, notes? }"""
    user_id = current_user_id()
    data = json_body()
    missing = {k: "required" for k in ("erp_id", "plan_type_id") if not data.get(k)}
    if missing:
        raise ValidationError("Missing required fields", details=missing)

    result = personal_savings_service.request_plan_creation(
        data["erp_id"],
        data["plan_type_id"],
        user_id,
        plan_name=data.get("plan_name"),
        target_amount=data.get("target_amount"),
        notes=data.get("notes"),
    )
    return jsonify(result), 201


@personal_savings_bp.route("/<plan_id>/withdrawals", methods=["POST"])
def request_withdrawal(plan_id):
    """Body: { amount, reason? }"""
    user_id = current_user_id()
    data = json_body()
    result = personal_savings_service.request_withdrawal(
        plan_id, data.get("amount"), user_id, reason=data.get("reason"),
    )
    return jsonify(result), 201


@personal_savings_bp.route("/<plan_id>/deposits", methods=["POST"])
def post_deposit(plan_id):
    """Body: { amount, description? }"""
    user_id = current_user_id()
    require_approval_level(user_id, DEPOSIT_LEVEL)
    data = json_body()
    result = personal_savings_service.process_deposit(
        plan_id, data.get("amount"), user_id, description=data.get("description"),
    )
    return jsonify(result), 201
