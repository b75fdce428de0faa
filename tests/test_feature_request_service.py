from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy.exc import OperationalError

from bomabnb.models import (
    AccountStatus,
    FeatureRequest,
    FeatureRequestStatus,
    Notification,
    Property,
)
from bomabnb.observability import get_counter_value
from bomabnb.services.account_service import NOT_AUTHORIZED_MESSAGE
from bomabnb.services.feature_request_service import FeatureRequestService
from bomabnb.services.inflight import ALREADY_PROCESSING_MESSAGE
from bomabnb.services.notification_service import NotificationService
from bomabnb.services.results import FailureKind

from conftest import StubConfig, make_partner, make_property

NOW = datetime(2026, 3, 1, 9, 30, 0)


class _FailingNotifications(NotificationService):
    def notify(self, *args, **kwargs):
        return False, "Failed to create notification", None


def _service(db_session, inflight, **kwargs):
    return FeatureRequestService(db_session, config=StubConfig, inflight=inflight, **kwargs)


def _submit(service, partner, listing, days=7):
    success, message, feature_request = service.submit(partner.userID, listing.propertyID, days, "M-Pesa")
    assert success is True, message
    return feature_request


def test_partner_submits_request_for_own_active_listing(db_session, inflight, partner, listing):
    service = _service(db_session, inflight)
    success, message, feature_request = service.submit(partner.userID, listing.propertyID, 14, " M-Pesa ", "asap")

    assert success is True
    assert message == "Feature request submitted! We'll review it shortly."
    assert feature_request.status == FeatureRequestStatus.PENDING
    assert feature_request.payment_method == "m-pesa"
    assert feature_request.additional_remarks == "asap"
    assert service.quote(14) == 9000


def test_submit_validations(db_session, inflight, partner, listing):
    service = _service(db_session, inflight)
    other_listing = make_property(db_session, make_partner(db_session))
    hidden = make_property(db_session, partner, is_active=False)

    assert service.submit(partner.userID, listing.propertyID, 10, "mpesa")[1] == "Duration must be one of: 7, 14, 30, 90 days"
    assert service.submit(partner.userID, other_listing.propertyID, 7, "mpesa")[1] == "Property not found"
    assert service.submit(partner.userID, hidden.propertyID, 7, "mpesa")[1] == "Only active properties can be featured"
    assert service.submit(partner.userID, listing.propertyID, 7, "")[1] == "Payment method is required"

    _submit(service, partner, listing)
    assert (
        service.submit(partner.userID, listing.propertyID, 7, "mpesa")[1]
        == "A feature request for this property is already awaiting review"
    )


def test_pending_partner_cannot_request_featuring(db_session, inflight):
    partner = make_partner(db_session, status=AccountStatus.PENDING)
    listing = make_property(db_session, partner)
    success, message, _ = _service(db_session, inflight).submit(partner.userID, listing.propertyID, 7, "mpesa")

    assert success is False
    assert message == "Only approved partners can request featuring"


def test_approval_features_property_and_notifies(db_session, inflight, admin, partner, listing):
    service = _service(db_session, inflight)
    feature_request = _submit(service, partner, listing, days=30)

    report = service.approve(admin.userID, feature_request.featureRequestID, now=NOW)

    assert report.success is True
    assert report.partial is False
    assert report.message == "Feature request approved"
    assert [s.name for s in report.steps] == ["mark_request_approved", "feature_property", "notify_partner"]

    featured = db_session.get(Property, listing.propertyID)
    assert featured.is_featured is True
    assert featured.feature_start_date == NOW
    assert featured.feature_end_date == NOW + timedelta(days=30)
    assert db_session.get(FeatureRequest, feature_request.featureRequestID).status == FeatureRequestStatus.APPROVED

    notice = db_session.query(Notification).filter(Notification.type == "feature_approved").one()
    assert notice.title == "Feature Request Approved"
    assert "for 30 days" in notice.message


def test_property_step_failure_returns_request_to_pending(db_session, inflight, admin, partner, listing, monkeypatch):
    service = _service(db_session, inflight)
    feature_request = _submit(service, partner, listing)

    def _fail(*_args, **_kwargs):
        raise OperationalError("UPDATE", {}, Exception("connection reset"))

    monkeypatch.setattr(service, "_feature_property", _fail)
    report = service.approve(admin.userID, feature_request.featureRequestID, now=NOW)

    assert report.success is False
    assert report.failure == FailureKind.REMOTE
    assert report.message == "Failed to approve request"
    step = report.step("feature_property")
    assert step.ok is False
    assert step.compensated is True
    assert report.step("notify_partner") is None

    assert db_session.get(FeatureRequest, feature_request.featureRequestID).status == FeatureRequestStatus.PENDING
    assert db_session.get(Property, listing.propertyID).is_featured is False
    assert db_session.query(Notification).filter(Notification.type == "feature_approved").count() == 0
    assert get_counter_value("saga_step_failures_total", {"step": "feature_property"}) == 1


def test_compensated_request_can_be_approved_again(db_session, inflight, admin, partner, listing, monkeypatch):
    service = _service(db_session, inflight)
    feature_request = _submit(service, partner, listing)

    def _fail(*_args, **_kwargs):
        raise OperationalError("UPDATE", {}, Exception("connection reset"))

    monkeypatch.setattr(service, "_feature_property", _fail)
    service.approve(admin.userID, feature_request.featureRequestID, now=NOW)
    monkeypatch.undo()

    report = service.approve(admin.userID, feature_request.featureRequestID, now=NOW)
    assert report.success is True
    assert db_session.get(Property, listing.propertyID).is_featured is True


def test_notification_failure_makes_report_partial(db_session, inflight, admin, partner, listing):
    service = _service(
        db_session, inflight, notification_service=_FailingNotifications(db_session, config=StubConfig)
    )
    feature_request = _submit(service, partner, listing)

    report = service.approve(admin.userID, feature_request.featureRequestID, now=NOW)

    assert report.success is True
    assert report.partial is True
    assert report.failure == FailureKind.PARTIAL
    assert report.message == "Feature request approved, but the partner could not be notified"
    assert report.step("notify_partner").ok is False
    assert db_session.get(Property, listing.propertyID).is_featured is True
    assert db_session.get(FeatureRequest, feature_request.featureRequestID).status == FeatureRequestStatus.APPROVED


def test_second_approval_is_refused(db_session, inflight, admin, partner, listing):
    service = _service(db_session, inflight)
    feature_request = _submit(service, partner, listing)
    service.approve(admin.userID, feature_request.featureRequestID, now=NOW)

    report = service.approve(admin.userID, feature_request.featureRequestID, now=NOW + timedelta(days=1))

    assert report.success is False
    assert "approved to approved" in report.message
    # the original window is untouched
    assert db_session.get(Property, listing.propertyID).feature_start_date == NOW


def test_concurrent_approval_is_rejected(db_session, inflight, admin, partner, listing):
    service = _service(db_session, inflight)
    feature_request = _submit(service, partner, listing)

    with inflight.claim(("feature_request", feature_request.featureRequestID)):
        report = service.approve(admin.userID, feature_request.featureRequestID, now=NOW)

    assert report.success is False
    assert report.message == ALREADY_PROCESSING_MESSAGE
    assert report.failure == FailureKind.CONFLICT
    assert report.steps == []
    assert db_session.get(FeatureRequest, feature_request.featureRequestID).status == FeatureRequestStatus.PENDING


def test_approval_requires_admin(db_session, inflight, partner, listing):
    service = _service(db_session, inflight)
    feature_request = _submit(service, partner, listing)

    report = service.approve(partner.userID, feature_request.featureRequestID)

    assert report.failure == FailureKind.AUTHORIZATION
    assert report.message == NOT_AUTHORIZED_MESSAGE
    assert report.steps == []


def test_reject_keeps_property_unfeatured(db_session, inflight, admin, partner, listing):
    service = _service(db_session, inflight)
    feature_request = _submit(service, partner, listing)

    success, message, rejected = service.reject(admin.userID, feature_request.featureRequestID, "Payment not received")

    assert success is True
    assert message == "Feature request rejected"
    assert rejected.status == FeatureRequestStatus.REJECTED
    assert rejected.admin_notes == "Payment not received"
    assert db_session.get(Property, listing.propertyID).is_featured is False
    assert service.reject(admin.userID, feature_request.featureRequestID)[0] is False


def test_listing_requests(db_session, inflight, admin, partner, listing):
    service = _service(db_session, inflight)
    feature_request = _submit(service, partner, listing)

    assert [r.featureRequestID for r in service.list_for_partner(partner.userID)] == [feature_request.featureRequestID]
    success, _, pending = service.list_all(admin.userID, status="pending")
    assert success is True
    assert len(pending) == 1
    assert service.list_all(partner.userID)[1] == NOT_AUTHORIZED_MESSAGE
