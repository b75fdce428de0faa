from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, g, jsonify, request

from bomabnb.database import get_db
from bomabnb.models import RecipientType, Referrer
from bomabnb.services.account_service import AccountService, referral_link
from bomabnb.services.commission_service import CommissionService
from bomabnb.services.session_resolver import Role

from .guards import current_user_id, require_role
from .inbox import register_inbox_routes
from .serializers import (
    json_result,
    money_dict,
    serialize_account,
    serialize_commission,
    serialize_payment,
    serialize_payout,
)

agent_bp = Blueprint("agent", __name__, url_prefix="/api/agent")


def _payload() -> Dict[str, Any]:
    return request.get_json(silent=True) or {}


@agent_bp.route("/summary", methods=["GET"])
@require_role(Role.REFERRER)
def summary():
    return jsonify({"summary": money_dict(CommissionService(get_db()).agent_summary(g.access.account_id))})


@agent_bp.route("/referral-link", methods=["GET"])
@require_role(Role.REFERRER)
def get_referral_link():
    referrer = get_db().get(Referrer, g.access.account_id)
    return jsonify(
        {
            "referral_code": referrer.referral_code,
            "referral_link": referral_link(request.host_url, referrer),
        }
    )


@agent_bp.route("/commissions", methods=["GET"])
@require_role(Role.REFERRER)
def list_commissions():
    commissions = CommissionService(get_db()).list_for_referrer(g.access.account_id)
    return jsonify({"commissions": [serialize_commission(c) for c in commissions]})


@agent_bp.route("/payments", methods=["GET"])
@require_role(Role.REFERRER)
def list_payments():
    payments = CommissionService(get_db()).list_payments(g.access.account_id)
    return jsonify({"payments": [serialize_payment(p) for p in payments]})


@agent_bp.route("/payouts", methods=["GET"])
@require_role(Role.REFERRER)
def list_payouts():
    payouts = CommissionService(get_db()).list_payouts(g.access.account_id)
    return jsonify({"payouts": [serialize_payout(p) for p in payouts]})


@agent_bp.route("/payouts", methods=["POST"])
@require_role(Role.REFERRER)
def request_payout():
    payload = _payload()
    success, message, payout = CommissionService(get_db()).request_payout(
        current_user_id(),
        amount=payload.get("amount"),
        payment_method=payload.get("payment_method", ""),
        payment_details=payload.get("payment_details"),
    )
    if not success:
        return json_result(False, message)
    return json_result(True, message, status=201, payout=serialize_payout(payout))


@agent_bp.route("/payout-details", methods=["PUT"])
@require_role(Role.REFERRER)
def update_payout_details():
    payload = dict(_payload())
    payment_mode = payload.pop("payment_mode", None)
    try:
        success, message, referrer = AccountService(get_db()).update_payout_details(
            current_user_id(), payment_mode, **payload
        )
    except ValueError:
        return json_result(False, "Unsupported payment mode")
    return json_result(success, message, account=serialize_account(referrer) if referrer else None)


register_inbox_routes(agent_bp, Role.REFERRER, RecipientType.REFERRER)
