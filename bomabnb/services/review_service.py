from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import bleach
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bomabnb.config import Config
from bomabnb.models import (
    Property,
    PropertyReview,
    RecipientType,
    ReportStatus,
    ReviewReply,
    ReviewReport,
    utcnow,
)
from bomabnb.observability import increment_counter
from bomabnb.services.account_service import NOT_AUTHORIZED_MESSAGE, AccountService
from bomabnb.services.notification_service import NotificationService


def _clean_text(value: Optional[str], max_length: int) -> Optional[str]:
    if value is None:
        return None
    # Reviews render as plain text; drop every tag
    cleaned = bleach.clean(value, tags=[], strip=True).strip()
    return cleaned[:max_length] or None


class ReviewService:
    """Guest reviews, partner replies, reports and admin moderation."""

    def __init__(
        self,
        db_session: Session,
        config: type[Config] = Config,
        notification_service: Optional[NotificationService] = None,
        account_service: Optional[AccountService] = None,
    ) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.notifications = notification_service or NotificationService(db_session, config=config)
        self.accounts = account_service or AccountService(
            db_session, config=config, notification_service=self.notifications
        )

    # ------------------------------------------------------------------
    # Guest flows
    # ------------------------------------------------------------------
    def submit_review(
        self,
        property_id: int,
        reviewer_name: str,
        rating: int,
        review_text: Optional[str] = None,
        reviewer_email: Optional[str] = None,
        user_id: Optional[int] = None,
        device_fingerprint: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[PropertyReview]]:
        listing = self.db.get(Property, property_id)
        if not listing or not listing.is_active:
            return False, "Property not found", None
        try:
            rating = int(rating)
        except (TypeError, ValueError):
            return False, "Please select a rating", None
        if rating < 1 or rating > 5:
            return False, "Rating must be between 1 and 5", None
        name = _clean_text(reviewer_name, 255)
        if not name:
            return False, "Name is required", None
        if user_id is None and not device_fingerprint:
            return False, "Unable to identify reviewer", None

        if self._already_reviewed(property_id, user_id, device_fingerprint):
            return False, "You have already reviewed this property", None

        review = PropertyReview(
            propertyID=property_id,
            userID=user_id,
            reviewer_name=name,
            reviewer_email=reviewer_email or None,
            rating=rating,
            review_text=_clean_text(review_text, self.config.REVIEW_MAX_LENGTH),
            device_fingerprint=device_fingerprint,
            is_approved=True,
        )
        try:
            self.db.add(review)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to save review for property %s", property_id)
            return False, "Failed to submit review", None

        increment_counter("reviews_submitted_total", labels={"rating": rating})
        self.notifications.notify(
            RecipientType.PARTNER,
            listing.partnerID,
            "new_review",
            "New Review Received",
            f'{name} rated "{listing.property_name}" {rating} star{"s" if rating > 1 else ""}.',
            property_id=property_id,
        )
        return True, "Thank you for your review!", review

    def report(
        self,
        review_id: int,
        reason: str,
        reported_by: Optional[int] = None,
    ) -> Tuple[bool, str, Optional[ReviewReport]]:
        review = self.db.get(PropertyReview, review_id)
        if not review:
            return False, "Review not found", None
        reason = _clean_text(reason, 1000)
        if not reason:
            return False, "Please give a reason for the report", None
        report = ReviewReport(reviewID=review_id, reported_by=reported_by, report_reason=reason)
        review.is_flagged = True
        review.flagged_reason = reason
        try:
            self.db.add(report)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to report review %s", review_id)
            return False, "Failed to submit report", None
        return True, "Review reported", report

    # ------------------------------------------------------------------
    # Partner flows
    # ------------------------------------------------------------------
    def reply(self, user_id: int, review_id: int, reply_text: str) -> Tuple[bool, str, Optional[ReviewReply]]:
        partner = self.accounts.get_own_account(user_id, RecipientType.PARTNER)
        review = self.db.get(PropertyReview, review_id)
        if not partner or not review:
            return False, "Review not found", None
        listing = self.db.get(Property, review.propertyID)
        if not listing or listing.partnerID != partner.partnerID:
            return False, NOT_AUTHORIZED_MESSAGE, None
        text = _clean_text(reply_text, self.config.REVIEW_MAX_LENGTH)
        if not text:
            return False, "Reply cannot be empty", None

        reply = ReviewReply(reviewID=review_id, partnerID=partner.partnerID, reply_text=text)
        try:
            self.db.add(reply)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to save reply to review %s", review_id)
            return False, "Failed to post reply", None
        return True, "Reply posted", reply

    # ------------------------------------------------------------------
    # Admin moderation
    # ------------------------------------------------------------------
    def set_approval(self, admin_id: int, review_id: int, approved: bool) -> Tuple[bool, str, Optional[PropertyReview]]:
        if not self.accounts.is_admin(admin_id):
            return False, NOT_AUTHORIZED_MESSAGE, None
        review = self.db.get(PropertyReview, review_id)
        if not review:
            return False, "Review not found", None
        review.is_approved = bool(approved)
        if not self._commit(f"update approval on review {review_id}"):
            return False, "Failed to update review", None
        return True, "Review approved" if approved else "Review hidden", review

    def delete_review(self, admin_id: int, review_id: int) -> Tuple[bool, str, None]:
        if not self.accounts.is_admin(admin_id):
            return False, NOT_AUTHORIZED_MESSAGE, None
        review = self.db.get(PropertyReview, review_id)
        if not review:
            return False, "Review not found", None
        self.db.delete(review)
        if not self._commit(f"delete review {review_id}"):
            return False, "Failed to delete review", None
        self.logger.info("Review %s deleted by admin %s", review_id, admin_id)
        return True, "Review deleted successfully", None

    def resolve_report(
        self,
        admin_id: int,
        report_id: int,
        action: str = "keep",
        admin_notes: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[ReviewReport]]:
        """``keep`` closes the report; ``delete`` removes the review and its reports."""
        if not self.accounts.is_admin(admin_id):
            return False, NOT_AUTHORIZED_MESSAGE, None
        if action not in ("keep", "delete"):
            return False, "Action must be 'keep' or 'delete'", None
        report = self.db.get(ReviewReport, report_id)
        if not report:
            return False, "Report not found", None
        try:
            report.transition_to(ReportStatus.RESOLVED)
        except ValueError as exc:
            return False, str(exc), None

        if action == "delete":
            self.db.delete(report.review)
            if not self._commit(f"delete reported review {report.reviewID}"):
                return False, "Failed to resolve report", None
            return True, "Report resolved; review deleted", None

        report.admin_notes = admin_notes
        report.resolved_at = utcnow()
        review = report.review
        still_open = [
            r for r in review.reports if r.reportID != report.reportID and ReportStatus(r.status) == ReportStatus.PENDING
        ]
        if not still_open:
            review.is_flagged = False
        if not self._commit(f"resolve report {report_id}"):
            return False, "Failed to resolve report", None
        return True, "Report resolved", report

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def list_for_property(self, property_id: int, include_hidden: bool = False) -> List[PropertyReview]:
        query = self.db.query(PropertyReview).filter(PropertyReview.propertyID == property_id)
        if not include_hidden:
            query = query.filter(PropertyReview.is_approved.is_(True))
        return query.order_by(PropertyReview.created_at.desc()).all()

    def list_reports(self, admin_id: int, status: Optional[str] = None) -> Tuple[bool, str, List[ReviewReport]]:
        if not self.accounts.is_admin(admin_id):
            return False, NOT_AUTHORIZED_MESSAGE, []
        query = self.db.query(ReviewReport)
        if status:
            query = query.filter(ReviewReport.status == ReportStatus(status))
        return True, "OK", query.order_by(ReviewReport.created_at.desc()).all()

    def rating_summary(self, property_id: int) -> Dict[str, Any]:
        ratings = [
            row.rating
            for row in self.db.query(PropertyReview.rating)
            .filter(PropertyReview.propertyID == property_id, PropertyReview.is_approved.is_(True))
            .all()
        ]
        distribution = {star: 0 for star in range(1, 6)}
        for rating in ratings:
            distribution[rating] += 1
        average = round(sum(ratings) / len(ratings), 1) if ratings else 0.0
        return {"average_rating": average, "total_reviews": len(ratings), "distribution": distribution}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _already_reviewed(self, property_id: int, user_id: Optional[int], fingerprint: Optional[str]) -> bool:
        conditions = []
        if user_id is not None:
            conditions.append(PropertyReview.userID == user_id)
        if fingerprint:
            conditions.append(PropertyReview.device_fingerprint == fingerprint)
        return (
            self.db.query(PropertyReview.reviewID)
            .filter(PropertyReview.propertyID == property_id, or_(*conditions))
            .first()
            is not None
        )

    def _commit(self, action: str) -> bool:
        try:
            self.db.commit()
            return True
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to %s", action)
            return False
