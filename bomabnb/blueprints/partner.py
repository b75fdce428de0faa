from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, g, jsonify, request

from bomabnb.database import get_db
from bomabnb.models import AccountStatus, RecipientType
from bomabnb.services.account_service import AccountService
from bomabnb.services.booking_service import BookingService
from bomabnb.services.commission_service import CommissionService
from bomabnb.services.feature_request_service import FeatureRequestService
from bomabnb.services.property_service import PropertyService
from bomabnb.services.review_service import ReviewService
from bomabnb.services.session_resolver import (
    PENDING_MESSAGE,
    REJECTED_MESSAGE,
    SUSPENDED_MESSAGE,
    Role,
)
from bomabnb.services.support_service import SupportService

from .guards import current_user_id, require_login, require_role
from .inbox import register_inbox_routes
from .serializers import (
    json_result,
    money_dict,
    serialize_booking,
    serialize_feature_request,
    serialize_property,
    serialize_ticket,
)

partner_bp = Blueprint("partner", __name__, url_prefix="/api/partner")

_STATUS_MESSAGES = {
    AccountStatus.PENDING: PENDING_MESSAGE,
    AccountStatus.REJECTED: REJECTED_MESSAGE,
    AccountStatus.SUSPENDED: SUSPENDED_MESSAGE,
    AccountStatus.ACTIVE: "Your account has been approved!",
}


def _payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


@partner_bp.route("/status", methods=["GET"])
@require_login
def account_status():
    """Polled by the pending-approval view; open to any signed-in partner regardless of status."""
    status = AccountService(get_db()).get_account_status(current_user_id(), RecipientType.PARTNER)
    if status is None:
        return json_result(False, "Partner account not found")
    return jsonify(
        {
            "status": status.value,
            "message": _STATUS_MESSAGES[status],
            "poll_interval_seconds": current_app.config["STATUS_POLL_INTERVAL_SECONDS"],
        }
    )


# ---------------------------
# Listings
# ---------------------------


@partner_bp.route("/properties", methods=["GET"])
@require_role(Role.PARTNER)
def list_properties():
    listings = PropertyService(get_db()).list_for_partner(current_user_id())
    return jsonify({"properties": [serialize_property(p, include_contacts=True) for p in listings]})


@partner_bp.route("/properties", methods=["POST"])
@require_role(Role.PARTNER)
def create_property():
    success, message, listing = PropertyService(get_db()).create_property(current_user_id(), _payload())
    if not success:
        return json_result(False, message)
    return json_result(True, message, status=201, property=serialize_property(listing, include_contacts=True))


@partner_bp.route("/properties/<int:property_id>", methods=["PUT", "PATCH"])
@require_role(Role.PARTNER)
def update_property(property_id: int):
    success, message, listing = PropertyService(get_db()).update_property(current_user_id(), property_id, _payload())
    return json_result(success, message, property=serialize_property(listing, include_contacts=True) if listing else None)


# ---------------------------
# Bookings
# ---------------------------


@partner_bp.route("/bookings", methods=["GET"])
@require_role(Role.PARTNER)
def list_bookings():
    try:
        bookings = BookingService(get_db()).list_for_partner(
            current_user_id(), status=request.args.get("status"), query=request.args.get("q")
        )
    except ValueError:
        return json_result(False, "Invalid booking status")
    return jsonify({"bookings": [serialize_booking(b) for b in bookings]})


@partner_bp.route("/bookings/<int:booking_id>/confirm", methods=["POST"])
@require_role(Role.PARTNER)
def confirm_booking(booking_id: int):
    success, message, booking = BookingService(get_db()).confirm(current_user_id(), booking_id)
    return json_result(success, message, booking=serialize_booking(booking) if booking else None)


@partner_bp.route("/bookings/<int:booking_id>/decline", methods=["POST"])
@require_role(Role.PARTNER)
def decline_booking(booking_id: int):
    success, message, booking = BookingService(get_db()).decline(current_user_id(), booking_id)
    return json_result(success, message, booking=serialize_booking(booking) if booking else None)


@partner_bp.route("/revenue", methods=["GET"])
@require_role(Role.PARTNER)
def revenue():
    summary = CommissionService(get_db()).partner_revenue(g.access.account_id)
    return jsonify({"revenue": money_dict(summary)})


# ---------------------------
# Feature requests
# ---------------------------


@partner_bp.route("/feature-requests", methods=["GET"])
@require_role(Role.PARTNER)
def list_feature_requests():
    service = FeatureRequestService(get_db())
    return jsonify(
        {
            "feature_requests": [serialize_feature_request(r) for r in service.list_for_partner(current_user_id())],
            "prices": {str(days): price for days, price in service.config.FEATURE_PRICES.items()},
        }
    )


@partner_bp.route("/feature-requests", methods=["POST"])
@require_role(Role.PARTNER)
def submit_feature_request():
    payload = _payload()
    try:
        duration = int(payload.get("duration_days", 0))
    except (TypeError, ValueError):
        return json_result(False, "Duration must be a number of days")
    success, message, feature_request = FeatureRequestService(get_db()).submit(
        current_user_id(),
        property_id=payload.get("property_id"),
        duration_days=duration,
        payment_method=payload.get("payment_method", ""),
        remarks=payload.get("remarks"),
    )
    if not success:
        return json_result(False, message)
    return json_result(True, message, status=201, feature_request=serialize_feature_request(feature_request))


# ---------------------------
# Reviews and support
# ---------------------------


@partner_bp.route("/reviews/<int:review_id>/reply", methods=["POST"])
@require_role(Role.PARTNER)
def reply_to_review(review_id: int):
    success, message, _ = ReviewService(get_db()).reply(current_user_id(), review_id, _payload().get("reply_text", ""))
    return json_result(success, message, status=201 if success else None)


@partner_bp.route("/support", methods=["GET"])
@require_role(Role.PARTNER)
def list_tickets():
    tickets = SupportService(get_db()).list_for_partner(current_user_id())
    return jsonify({"tickets": [serialize_ticket(t) for t in tickets]})


@partner_bp.route("/support", methods=["POST"])
@require_role(Role.PARTNER)
def open_ticket():
    payload = _payload()
    success, message, ticket = SupportService(get_db()).open_ticket(
        current_user_id(),
        subject=payload.get("subject", ""),
        message=payload.get("message", ""),
        category=payload.get("category", "general"),
        priority=payload.get("priority", "medium"),
    )
    if not success:
        return json_result(False, message)
    return json_result(True, message, status=201, ticket=serialize_ticket(ticket))


@partner_bp.route("/support/<int:ticket_id>/close", methods=["POST"])
@require_role(Role.PARTNER)
def close_ticket(ticket_id: int):
    success, message, ticket = SupportService(get_db()).close(current_user_id(), ticket_id)
    return json_result(success, message, ticket=serialize_ticket(ticket) if ticket else None)


register_inbox_routes(partner_bp, Role.PARTNER, RecipientType.PARTNER)
