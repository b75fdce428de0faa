from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, jsonify, request

from bomabnb.database import get_db
from bomabnb.models import Partner
from bomabnb.services.booking_service import BookingService
from bomabnb.services.property_service import PropertyService
from bomabnb.services.review_service import ReviewService

from .guards import current_user_id
from .serializers import json_result, serialize_booking, serialize_property, serialize_review

public_bp = Blueprint("public", __name__, url_prefix="/api")


def _payload() -> Dict[str, Any]:
    return request.get_json(silent=True) or {}


@public_bp.route("/properties", methods=["GET"])
def list_properties():
    try:
        listings = PropertyService(get_db()).list_public(
            location=request.args.get("location"),
            property_type=request.args.get("type"),
            search=request.args.get("q"),
        )
    except ValueError:
        return json_result(False, "Invalid property type")
    return jsonify({"properties": [serialize_property(p) for p in listings]})


@public_bp.route("/properties/featured", methods=["GET"])
def featured_properties():
    service = PropertyService(get_db())
    service.expire_features()
    service.warn_expiring()
    rotation = service.featured_rotation(limit=request.args.get("limit", type=int))
    return jsonify({"properties": [serialize_property(p) for p in rotation]})


@public_bp.route("/properties/<int:property_id>", methods=["GET"])
def property_details(property_id: int):
    db = get_db()
    listing = PropertyService(db).get_public(property_id)
    if not listing:
        return json_result(False, "Property not found")
    partner = db.get(Partner, listing.partnerID)
    data = serialize_property(listing, include_contacts=bool(partner and partner.show_contacts_publicly))
    data["rating"] = ReviewService(db).rating_summary(property_id)
    return jsonify({"property": data})


@public_bp.route("/properties/<int:property_id>/bookings", methods=["POST"])
def create_booking(property_id: int):
    payload = _payload()
    service = BookingService(get_db())
    success, message, booking = service.create_booking(
        property_id,
        guest_name=payload.get("name") or payload.get("guest_name", ""),
        guest_email=payload.get("email") or payload.get("guest_email", ""),
        guest_phone=payload.get("phone") or payload.get("guest_phone", ""),
        check_in=payload.get("check_in", ""),
        check_out=payload.get("check_out", ""),
        number_of_guests=payload.get("guests", payload.get("number_of_guests", 1)),
        notes=payload.get("notes"),
    )
    if not success:
        return json_result(False, message)
    return json_result(
        True,
        message,
        status=201,
        booking=serialize_booking(booking),
        whatsapp_url=service.whatsapp_handoff(booking),
    )


@public_bp.route("/properties/<int:property_id>/reviews", methods=["GET"])
def list_reviews(property_id: int):
    service = ReviewService(get_db())
    return jsonify(
        {
            "reviews": [serialize_review(r) for r in service.list_for_property(property_id)],
            "summary": service.rating_summary(property_id),
        }
    )


@public_bp.route("/properties/<int:property_id>/reviews", methods=["POST"])
def submit_review(property_id: int):
    payload = _payload()
    success, message, review = ReviewService(get_db()).submit_review(
        property_id,
        reviewer_name=payload.get("reviewer_name", ""),
        rating=payload.get("rating"),
        review_text=payload.get("review_text"),
        reviewer_email=payload.get("reviewer_email"),
        user_id=current_user_id(),
        device_fingerprint=request.headers.get("X-Device-Fingerprint") or payload.get("device_fingerprint"),
    )
    if not success:
        status = 409 if "already reviewed" in message else None
        return json_result(False, message, status=status)
    return json_result(True, message, status=201, review=serialize_review(review))


@public_bp.route("/reviews/<int:review_id>/report", methods=["POST"])
def report_review(review_id: int):
    payload = _payload()
    success, message, _ = ReviewService(get_db()).report(
        review_id, payload.get("reason", ""), reported_by=current_user_id()
    )
    return json_result(success, message, status=201 if success else None)
