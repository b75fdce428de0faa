from __future__ import annotations

from bomabnb.models import Notification, PropertyReview, ReportStatus, ReviewReport
from bomabnb.services.account_service import NOT_AUTHORIZED_MESSAGE
from bomabnb.services.review_service import ReviewService

from conftest import StubConfig, make_partner, make_user


def _service(db_session):
    return ReviewService(db_session, config=StubConfig)


def _review(service, listing, rating=5, **kwargs):
    kwargs.setdefault("device_fingerprint", f"fp-{rating}-{kwargs.get('reviewer_name', 'guest')}")
    kwargs.setdefault("reviewer_name", "Wanjiru")
    success, message, review = service.submit_review(listing.propertyID, rating=rating, **kwargs)
    assert success is True, message
    return review


def test_guest_review_is_sanitised_and_notifies_partner(db_session, listing):
    success, message, review = _service(db_session).submit_review(
        listing.propertyID,
        "<b>Wanjiru</b>",
        4,
        review_text="<script>alert(1)</script>Lovely <i>stay</i>",
        device_fingerprint="device-1",
    )

    assert success is True
    assert message == "Thank you for your review!"
    assert review.reviewer_name == "Wanjiru"
    assert "<" not in review.review_text
    assert review.review_text.endswith("Lovely stay")
    assert review.is_approved is True

    notice = db_session.query(Notification).filter(Notification.type == "new_review").one()
    assert notice.recipient_id == listing.partnerID
    assert notice.title == "New Review Received"
    assert "4 stars" in notice.message


def test_review_validation(db_session, listing):
    service = _service(db_session)

    assert service.submit_review(999, "Guest", 5, device_fingerprint="x")[1] == "Property not found"
    assert service.submit_review(listing.propertyID, "Guest", None, device_fingerprint="x")[1] == "Please select a rating"
    assert service.submit_review(listing.propertyID, "Guest", 6, device_fingerprint="x")[1] == "Rating must be between 1 and 5"
    assert service.submit_review(listing.propertyID, "  ", 5, device_fingerprint="x")[1] == "Name is required"
    assert service.submit_review(listing.propertyID, "Guest", 5)[1] == "Unable to identify reviewer"
    assert db_session.query(PropertyReview).count() == 0


def test_one_review_per_user_or_device(db_session, listing):
    service = _service(db_session)
    user = make_user(db_session)

    assert service.submit_review(listing.propertyID, "Guest", 5, user_id=user.userID)[0] is True
    assert (
        service.submit_review(listing.propertyID, "Guest", 3, user_id=user.userID)[1]
        == "You have already reviewed this property"
    )

    assert service.submit_review(listing.propertyID, "Anon", 5, device_fingerprint="device-9")[0] is True
    assert service.submit_review(listing.propertyID, "Anon", 2, device_fingerprint="device-9")[0] is False


def test_only_the_owning_partner_replies(db_session, partner, listing):
    service = _service(db_session)
    review = _review(service, listing)
    stranger = make_partner(db_session)

    assert service.reply(stranger.userID, review.reviewID, "Thanks!")[1] == NOT_AUTHORIZED_MESSAGE
    assert service.reply(partner.userID, review.reviewID, "   ")[1] == "Reply cannot be empty"
    assert service.reply(partner.userID, 999, "Thanks!")[1] == "Review not found"

    success, message, reply = service.reply(partner.userID, review.reviewID, "Karibu tena!")
    assert success is True
    assert message == "Reply posted"
    assert reply.partnerID == partner.partnerID


def test_report_then_keep_unflags_review(db_session, admin, listing):
    service = _service(db_session)
    review = _review(service, listing)

    assert service.report(review.reviewID, "")[1] == "Please give a reason for the report"
    success, _, report = service.report(review.reviewID, "Spam", reported_by=admin.userID)
    assert success is True
    assert db_session.get(PropertyReview, review.reviewID).is_flagged is True

    success, message, resolved = service.resolve_report(admin.userID, report.reportID, "keep", "Looks fine")
    assert success is True
    assert message == "Report resolved"
    assert resolved.status == ReportStatus.RESOLVED
    assert resolved.resolved_at is not None
    assert db_session.get(PropertyReview, review.reviewID).is_flagged is False
    assert service.resolve_report(admin.userID, report.reportID)[0] is False


def test_report_then_delete_removes_review(db_session, admin, listing):
    service = _service(db_session)
    review = _review(service, listing)
    _, _, report = service.report(review.reviewID, "Offensive")

    assert service.resolve_report(admin.userID, report.reportID, "ban")[1] == "Action must be 'keep' or 'delete'"
    success, message, _ = service.resolve_report(admin.userID, report.reportID, "delete")

    assert success is True
    assert message == "Report resolved; review deleted"
    assert db_session.get(PropertyReview, review.reviewID) is None
    assert db_session.query(ReviewReport).count() == 0


def test_moderation_requires_admin(db_session, partner, listing):
    service = _service(db_session)
    review = _review(service, listing)

    assert service.set_approval(partner.userID, review.reviewID, False)[1] == NOT_AUTHORIZED_MESSAGE
    assert service.delete_review(partner.userID, review.reviewID)[1] == NOT_AUTHORIZED_MESSAGE
    assert service.list_reports(partner.userID)[1] == NOT_AUTHORIZED_MESSAGE


def test_rating_summary_counts_visible_reviews_only(db_session, admin, listing):
    service = _service(db_session)
    _review(service, listing, rating=5, reviewer_name="A")
    _review(service, listing, rating=4, reviewer_name="B")
    hidden = _review(service, listing, rating=1, reviewer_name="C")

    assert service.set_approval(admin.userID, hidden.reviewID, False)[1] == "Review hidden"
    summary = service.rating_summary(listing.propertyID)

    assert summary["average_rating"] == 4.5
    assert summary["total_reviews"] == 2
    assert summary["distribution"] == {1: 0, 2: 0, 3: 0, 4: 1, 5: 1}
    assert [r.rating for r in service.list_for_property(listing.propertyID, include_hidden=True)].count(1) == 1
    assert all(r.rating != 1 for r in service.list_for_property(listing.propertyID))


def test_admin_deletes_review(db_session, admin, listing):
    service = _service(db_session)
    review = _review(service, listing)

    assert service.delete_review(admin.userID, review.reviewID)[1] == "Review deleted successfully"
    assert service.delete_review(admin.userID, review.reviewID)[1] == "Review not found"
