from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, jsonify, request

from bomabnb.database import get_db
from bomabnb.models import RecipientType
from bomabnb.services.account_service import AccountService
from bomabnb.services.booking_service import BookingService
from bomabnb.services.commission_service import CommissionService
from bomabnb.services.feature_request_service import FeatureRequestService
from bomabnb.services.property_service import PropertyService
from bomabnb.services.results import FailureKind
from bomabnb.services.review_service import ReviewService
from bomabnb.services.session_resolver import Role
from bomabnb.services.support_service import SupportService

from .guards import current_user_id, require_role
from .serializers import (
    json_result,
    serialize_account,
    serialize_booking,
    serialize_commission,
    serialize_feature_request,
    serialize_payment,
    serialize_payout,
    serialize_property,
    serialize_report,
    serialize_review,
    serialize_ticket,
)

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")

_ACCOUNT_KINDS = {"partners": RecipientType.PARTNER, "agents": RecipientType.REFERRER}
_ACCOUNT_ACTIONS = ("approve", "reject", "suspend", "reinstate")


def _payload() -> Dict[str, Any]:
    return request.get_json(silent=True) or {}


def _days(payload: Dict[str, Any], key: str):
    try:
        return int(payload.get(key, 0))
    except (TypeError, ValueError):
        return 0


# ---------------------------
# Accounts
# ---------------------------


@admin_bp.route("/<kind>", methods=["GET"])
@require_role(Role.ADMIN)
def list_accounts(kind: str):
    if kind not in _ACCOUNT_KINDS:
        return json_result(False, "Unknown account type", status=404)
    try:
        success, message, accounts = AccountService(get_db()).list_accounts(
            current_user_id(), _ACCOUNT_KINDS[kind], status=request.args.get("status")
        )
    except ValueError:
        return json_result(False, "Invalid account status")
    if not success:
        return json_result(False, message)
    return jsonify({"accounts": [serialize_account(a) for a in accounts]})


@admin_bp.route("/<kind>/<int:account_id>/<action>", methods=["POST"])
@require_role(Role.ADMIN)
def change_account_status(kind: str, account_id: int, action: str):
    if kind not in _ACCOUNT_KINDS or action not in _ACCOUNT_ACTIONS:
        return json_result(False, "Unknown account action", status=404)
    service = AccountService(get_db())
    success, message, account = getattr(service, action)(current_user_id(), _ACCOUNT_KINDS[kind], account_id)
    return json_result(success, message, account=serialize_account(account) if account else None)


@admin_bp.route("/agents/<int:referrer_id>", methods=["DELETE"])
@require_role(Role.ADMIN)
def delete_agent(referrer_id: int):
    success, message, _ = AccountService(get_db()).delete_referrer(current_user_id(), referrer_id)
    return json_result(success, message)


# ---------------------------
# Properties
# ---------------------------


@admin_bp.route("/properties", methods=["GET"])
@require_role(Role.ADMIN)
def list_properties():
    success, message, listings = PropertyService(get_db()).list_all(current_user_id())
    if not success:
        return json_result(False, message)
    return jsonify({"properties": [serialize_property(p, include_contacts=True) for p in listings]})


@admin_bp.route("/properties/<int:property_id>/activate", methods=["POST"])
@require_role(Role.ADMIN)
def activate_property(property_id: int):
    success, message, listing = PropertyService(get_db()).set_active(current_user_id(), property_id, True)
    return json_result(success, message, property=serialize_property(listing) if listing else None)


@admin_bp.route("/properties/<int:property_id>/deactivate", methods=["POST"])
@require_role(Role.ADMIN)
def deactivate_property(property_id: int):
    success, message, listing = PropertyService(get_db()).set_active(current_user_id(), property_id, False)
    return json_result(success, message, property=serialize_property(listing) if listing else None)


@admin_bp.route("/properties/<int:property_id>/feature", methods=["POST"])
@require_role(Role.ADMIN)
def feature_property(property_id: int):
    days = _days(_payload(), "duration_days")
    success, message, listing = PropertyService(get_db()).force_feature(current_user_id(), property_id, days)
    return json_result(success, message, property=serialize_property(listing) if listing else None)


@admin_bp.route("/properties/<int:property_id>/extend", methods=["POST"])
@require_role(Role.ADMIN)
def extend_feature(property_id: int):
    days = _days(_payload(), "additional_days")
    success, message, listing = PropertyService(get_db()).extend_feature(current_user_id(), property_id, days)
    return json_result(success, message, property=serialize_property(listing) if listing else None)


@admin_bp.route("/properties/<int:property_id>/unfeature", methods=["POST"])
@require_role(Role.ADMIN)
def unfeature_property(property_id: int):
    success, message, listing = PropertyService(get_db()).remove_feature(current_user_id(), property_id)
    return json_result(success, message, property=serialize_property(listing) if listing else None)


# ---------------------------
# Feature requests
# ---------------------------


@admin_bp.route("/feature-requests", methods=["GET"])
@require_role(Role.ADMIN)
def list_feature_requests():
    try:
        success, message, requests = FeatureRequestService(get_db()).list_all(
            current_user_id(), status=request.args.get("status")
        )
    except ValueError:
        return json_result(False, "Invalid request status")
    if not success:
        return json_result(False, message)
    return jsonify({"feature_requests": [serialize_feature_request(r) for r in requests]})


@admin_bp.route("/feature-requests/<int:request_id>/approve", methods=["POST"])
@require_role(Role.ADMIN)
def approve_feature_request(request_id: int):
    report = FeatureRequestService(get_db()).approve(current_user_id(), request_id)
    status = None
    if report.success:
        status = 200
    elif report.failure == FailureKind.REMOTE:
        status = 502
    elif report.failure == FailureKind.CONFLICT:
        status = 409
    return json_result(report.success, report.message, status=status, report=report.to_dict())


@admin_bp.route("/feature-requests/<int:request_id>/reject", methods=["POST"])
@require_role(Role.ADMIN)
def reject_feature_request(request_id: int):
    success, message, feature_request = FeatureRequestService(get_db()).reject(
        current_user_id(), request_id, admin_notes=_payload().get("admin_notes")
    )
    return json_result(
        success, message, feature_request=serialize_feature_request(feature_request) if feature_request else None
    )


# ---------------------------
# Bookings and money
# ---------------------------


@admin_bp.route("/bookings", methods=["GET"])
@require_role(Role.ADMIN)
def list_bookings():
    success, message, bookings = BookingService(get_db()).list_all(current_user_id())
    if not success:
        return json_result(False, message)
    return jsonify({"bookings": [serialize_booking(b) for b in bookings]})


@admin_bp.route("/commissions/<int:commission_id>", methods=["POST"])
@require_role(Role.ADMIN)
def mark_commission(commission_id: int):
    try:
        success, message, commission = CommissionService(get_db()).mark_commission(
            current_user_id(), commission_id, _payload().get("status", "")
        )
    except ValueError:
        return json_result(False, "Invalid commission status")
    return json_result(success, message, commission=serialize_commission(commission) if commission else None)


@admin_bp.route("/agents/<int:referrer_id>/payments", methods=["GET"])
@require_role(Role.ADMIN)
def list_agent_payments(referrer_id: int):
    payments = CommissionService(get_db()).list_payments(referrer_id)
    return jsonify({"payments": [serialize_payment(p) for p in payments]})


@admin_bp.route("/agents/<int:referrer_id>/payments", methods=["POST"])
@require_role(Role.ADMIN)
def record_agent_payment(referrer_id: int):
    payload = _payload()
    success, message, payment = CommissionService(get_db()).record_agent_payment(
        current_user_id(),
        referrer_id,
        amount=payload.get("amount"),
        payment_method=payload.get("payment_method", ""),
        transaction_ref=payload.get("transaction_ref"),
        notes=payload.get("notes"),
    )
    if not success:
        return json_result(False, message)
    return json_result(True, message, status=201, payment=serialize_payment(payment))


@admin_bp.route("/payouts", methods=["GET"])
@require_role(Role.ADMIN)
def list_payouts():
    payouts = CommissionService(get_db()).list_payouts()
    return jsonify({"payouts": [serialize_payout(p) for p in payouts]})


@admin_bp.route("/payouts/<int:payout_id>/<action>", methods=["POST"])
@require_role(Role.ADMIN)
def process_payout(payout_id: int, action: str):
    if action not in ("approve", "reject"):
        return json_result(False, "Unknown payout action", status=404)
    success, message, payout = CommissionService(get_db()).process_payout(
        current_user_id(), payout_id, approve=action == "approve", notes=_payload().get("notes")
    )
    return json_result(success, message, payout=serialize_payout(payout) if payout else None)


# ---------------------------
# Reviews
# ---------------------------


@admin_bp.route("/reviews/<int:review_id>/approval", methods=["POST"])
@require_role(Role.ADMIN)
def set_review_approval(review_id: int):
    approved = bool(_payload().get("approved", True))
    success, message, review = ReviewService(get_db()).set_approval(current_user_id(), review_id, approved)
    return json_result(success, message, review=serialize_review(review) if review else None)


@admin_bp.route("/reviews/<int:review_id>", methods=["DELETE"])
@require_role(Role.ADMIN)
def delete_review(review_id: int):
    success, message, _ = ReviewService(get_db()).delete_review(current_user_id(), review_id)
    return json_result(success, message)


@admin_bp.route("/review-reports", methods=["GET"])
@require_role(Role.ADMIN)
def list_review_reports():
    try:
        success, message, reports = ReviewService(get_db()).list_reports(
            current_user_id(), status=request.args.get("status")
        )
    except ValueError:
        return json_result(False, "Invalid report status")
    if not success:
        return json_result(False, message)
    return jsonify({"reports": [serialize_report(r) for r in reports]})


@admin_bp.route("/review-reports/<int:report_id>/resolve", methods=["POST"])
@require_role(Role.ADMIN)
def resolve_review_report(report_id: int):
    payload = _payload()
    success, message, report = ReviewService(get_db()).resolve_report(
        current_user_id(), report_id, action=payload.get("action", "keep"), admin_notes=payload.get("admin_notes")
    )
    return json_result(success, message, report=serialize_report(report) if report else None)


# ---------------------------
# Support
# ---------------------------


@admin_bp.route("/support", methods=["GET"])
@require_role(Role.ADMIN)
def list_tickets():
    try:
        success, message, tickets = SupportService(get_db()).list_all(
            current_user_id(), status=request.args.get("status")
        )
    except ValueError:
        return json_result(False, "Invalid ticket status")
    if not success:
        return json_result(False, message)
    return jsonify({"tickets": [serialize_ticket(t) for t in tickets]})


@admin_bp.route("/support/<int:ticket_id>/respond", methods=["POST"])
@require_role(Role.ADMIN)
def respond_to_ticket(ticket_id: int):
    success, message, ticket = SupportService(get_db()).respond(
        current_user_id(), ticket_id, _payload().get("response", "")
    )
    return json_result(success, message, ticket=serialize_ticket(ticket) if ticket else None)


@admin_bp.route("/support/<int:ticket_id>/resolve", methods=["POST"])
@require_role(Role.ADMIN)
def resolve_ticket(ticket_id: int):
    success, message, ticket = SupportService(get_db()).resolve(current_user_id(), ticket_id)
    return json_result(success, message, ticket=serialize_ticket(ticket) if ticket else None)


@admin_bp.route("/support/<int:ticket_id>/close", methods=["POST"])
@require_role(Role.ADMIN)
def close_ticket(ticket_id: int):
    success, message, ticket = SupportService(get_db()).close(current_user_id(), ticket_id)
    return json_result(success, message, ticket=serialize_ticket(ticket) if ticket else None)
