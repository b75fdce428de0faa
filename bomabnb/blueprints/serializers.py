from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from flask import jsonify

from bomabnb.contact_links import mailto_link, tel_link, whatsapp_link
from bomabnb.models import (
    AgentPayment,
    Booking,
    Commission,
    FeatureRequest,
    Partner,
    PayoutRequest,
    Property,
    PropertyReview,
    Referrer,
    ReviewReport,
    SupportTicket,
)
from bomabnb.services.account_service import NOT_AUTHORIZED_MESSAGE
from bomabnb.services.booking_service import effective_status
from bomabnb.services.inflight import ALREADY_PROCESSING_MESSAGE


def _serialize_dt(value: Optional[datetime | date]) -> Optional[str]:
    return value.isoformat() if value else None


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _money(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value) if isinstance(value, Decimal) else value


def json_result(success: bool, message: str, status: Optional[int] = None, **payload: Any):
    """JSON envelope for service tuples; failure status is inferred from the message."""
    body: Dict[str, Any] = {"success": success, "message": message}
    body.update(payload)
    if status is None:
        status = 200 if success else _failure_status(message)
    return jsonify(body), status


def _failure_status(message: str) -> int:
    if message == NOT_AUTHORIZED_MESSAGE:
        return 403
    if message == ALREADY_PROCESSING_MESSAGE:
        return 409
    if "not found" in message.lower():
        return 404
    return 400


def money_dict(values: Dict[str, Any]) -> Dict[str, Any]:
    return {key: _money(value) for key, value in values.items()}


def serialize_property(listing: Property, include_contacts: bool = False) -> Dict[str, Any]:
    data = {
        "id": listing.propertyID,
        "partner_id": listing.partnerID,
        "property_name": listing.property_name,
        "property_type": _enum_value(listing.property_type),
        "location": listing.location,
        "google_maps_link": listing.google_maps_link,
        "description": listing.description,
        "price_per_night": _money(listing.price_per_night),
        "number_of_units": listing.number_of_units,
        "max_guests_per_unit": listing.max_guests_per_unit,
        "amenities": listing.amenities or [],
        "featured_image": listing.featured_image,
        "images": [image.image_url for image in listing.images],
        "terms_policies": listing.terms_policies,
        "is_active": listing.is_active,
        "is_featured": listing.is_featured,
        "feature_start_date": _serialize_dt(listing.feature_start_date),
        "feature_end_date": _serialize_dt(listing.feature_end_date),
        "created_at": _serialize_dt(listing.created_at),
    }
    if include_contacts:
        data["contact"] = {
            "phone": listing.contact_phone,
            "email": listing.contact_email,
            "tel": tel_link(listing.contact_phone),
            "mailto": mailto_link(listing.contact_email, subject=f"Enquiry: {listing.property_name}"),
            "whatsapp": whatsapp_link(listing.contact_phone),
        }
    return data


def serialize_booking(booking: Booking) -> Dict[str, Any]:
    return {
        "id": booking.bookingID,
        "property_id": booking.propertyID,
        "guest_name": booking.guest_name,
        "guest_email": booking.guest_email,
        "guest_phone": booking.guest_phone,
        "check_in": _serialize_dt(booking.check_in),
        "check_out": _serialize_dt(booking.check_out),
        "number_of_guests": booking.number_of_guests,
        "total_price": _money(booking.total_price),
        "notes": booking.notes,
        "status": effective_status(booking).value,
        "created_at": _serialize_dt(booking.created_at),
    }


def serialize_account(account: Partner | Referrer) -> Dict[str, Any]:
    data = {
        "business_name": account.business_name,
        "user_id": account.userID,
        "status": _enum_value(account.status),
        "approved_at": _serialize_dt(account.approved_at),
        "created_at": _serialize_dt(account.created_at),
    }
    if isinstance(account, Partner):
        data.update({"id": account.partnerID, "kind": "partner", "location": account.location, "about": account.about})
    else:
        data.update(
            {
                "id": account.referrerID,
                "kind": "referrer",
                "referral_code": account.referral_code,
                "commission_rate": _money(account.commission_rate),
                "payout_details": account.payout_details(),
            }
        )
    return data


def serialize_feature_request(feature_request: FeatureRequest) -> Dict[str, Any]:
    return {
        "id": feature_request.featureRequestID,
        "property_id": feature_request.propertyID,
        "partner_id": feature_request.partnerID,
        "duration_days": feature_request.duration_days,
        "payment_method": feature_request.payment_method,
        "additional_remarks": feature_request.additional_remarks,
        "admin_notes": feature_request.admin_notes,
        "status": _enum_value(feature_request.status),
        "created_at": _serialize_dt(feature_request.created_at),
    }


def serialize_commission(commission: Commission) -> Dict[str, Any]:
    return {
        "id": commission.commissionID,
        "booking_id": commission.bookingID,
        "property_id": commission.propertyID,
        "partner_id": commission.partnerID,
        "booking_amount": _money(commission.booking_amount),
        "commission_rate": _money(commission.commission_rate),
        "commission_amount": _money(commission.commission_amount),
        "status": _enum_value(commission.status),
        "paid_at": _serialize_dt(commission.paid_at),
        "created_at": _serialize_dt(commission.created_at),
    }


def serialize_payment(payment: AgentPayment) -> Dict[str, Any]:
    return {
        "id": payment.agentPaymentID,
        "referrer_id": payment.referrerID,
        "amount": _money(payment.amount),
        "payment_method": payment.payment_method,
        "transaction_ref": payment.transaction_ref,
        "notes": payment.notes,
        "created_at": _serialize_dt(payment.created_at),
    }


def serialize_payout(payout: PayoutRequest) -> Dict[str, Any]:
    return {
        "id": payout.payoutRequestID,
        "referrer_id": payout.referrerID,
        "amount": _money(payout.amount),
        "payment_method": payout.payment_method,
        "payment_details": payout.payment_details or {},
        "status": _enum_value(payout.status),
        "processed_at": _serialize_dt(payout.processed_at),
        "notes": payout.notes,
        "created_at": _serialize_dt(payout.created_at),
    }


def serialize_review(review: PropertyReview) -> Dict[str, Any]:
    return {
        "id": review.reviewID,
        "property_id": review.propertyID,
        "reviewer_name": review.reviewer_name,
        "rating": review.rating,
        "review_text": review.review_text,
        "is_approved": review.is_approved,
        "is_flagged": review.is_flagged,
        "replies": [
            {"id": reply.replyID, "reply_text": reply.reply_text, "created_at": _serialize_dt(reply.created_at)}
            for reply in review.replies
        ],
        "created_at": _serialize_dt(review.created_at),
    }


def serialize_report(report: ReviewReport) -> Dict[str, Any]:
    return {
        "id": report.reportID,
        "review_id": report.reviewID,
        "report_reason": report.report_reason,
        "status": _enum_value(report.status),
        "admin_notes": report.admin_notes,
        "resolved_at": _serialize_dt(report.resolved_at),
        "created_at": _serialize_dt(report.created_at),
    }


def serialize_ticket(ticket: SupportTicket) -> Dict[str, Any]:
    return {
        "id": ticket.ticketID,
        "partner_id": ticket.partnerID,
        "subject": ticket.subject,
        "category": ticket.category,
        "priority": ticket.priority,
        "message": ticket.message,
        "admin_response": ticket.admin_response,
        "status": _enum_value(ticket.status),
        "created_at": _serialize_dt(ticket.created_at),
        "last_updated": _serialize_dt(ticket.last_updated),
    }
