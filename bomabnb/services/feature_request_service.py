from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import bleach
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bomabnb.config import Config
from bomabnb.models import (
    AccountStatus,
    FeatureRequest,
    FeatureRequestStatus,
    Property,
    RecipientType,
    as_naive_utc,
    utcnow,
)
from bomabnb.observability import increment_counter, record_event
from bomabnb.services.account_service import NOT_AUTHORIZED_MESSAGE, AccountService
from bomabnb.services.inflight import InFlightError, InFlightRegistry, default_registry
from bomabnb.services.notification_service import NotificationService
from bomabnb.services.results import FailureKind, SagaReport

APPROVAL_SAGA = "feature_request_approval"


class FeatureRequestService:
    """'Feature my listing' requests from partners and their admin approval."""

    def __init__(
        self,
        db_session: Session,
        config: type[Config] = Config,
        notification_service: Optional[NotificationService] = None,
        account_service: Optional[AccountService] = None,
        inflight: Optional[InFlightRegistry] = None,
    ) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.notifications = notification_service or NotificationService(db_session, config=config)
        self.accounts = account_service or AccountService(
            db_session, config=config, notification_service=self.notifications
        )
        self.inflight = inflight or default_registry

    # ------------------------------------------------------------------
    # Partner flows
    # ------------------------------------------------------------------
    def submit(
        self,
        user_id: int,
        property_id: int,
        duration_days: int,
        payment_method: str,
        remarks: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[FeatureRequest]]:
        partner = self.accounts.get_own_account(user_id, RecipientType.PARTNER)
        if not partner or AccountStatus(partner.status) != AccountStatus.ACTIVE:
            return False, "Only approved partners can request featuring", None
        listing = self.db.get(Property, property_id)
        if not listing or listing.partnerID != partner.partnerID:
            return False, "Property not found", None
        if not listing.is_active:
            return False, "Only active properties can be featured", None
        if duration_days not in self.config.FEATURE_DURATION_OPTIONS:
            options = ", ".join(str(d) for d in self.config.FEATURE_DURATION_OPTIONS)
            return False, f"Duration must be one of: {options} days", None
        if not payment_method or not payment_method.strip():
            return False, "Payment method is required", None

        pending = (
            self.db.query(FeatureRequest.featureRequestID)
            .filter(FeatureRequest.propertyID == property_id)
            .filter(FeatureRequest.status == FeatureRequestStatus.PENDING)
            .first()
        )
        if pending:
            return False, "A feature request for this property is already awaiting review", None

        feature_request = FeatureRequest(
            propertyID=property_id,
            partnerID=partner.partnerID,
            duration_days=duration_days,
            payment_method=payment_method.strip().lower(),
            additional_remarks=bleach.clean(remarks or "", tags=[], strip=True).strip() or None,
            status=FeatureRequestStatus.PENDING,
        )
        try:
            self.db.add(feature_request)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to submit feature request for property %s", property_id)
            return False, "Failed to submit feature request", None

        increment_counter("feature_requests_submitted_total", labels={"duration_days": duration_days})
        self.logger.info("Feature request %s submitted for property %s", feature_request.featureRequestID, property_id)
        return True, "Feature request submitted! We'll review it shortly.", feature_request

    def quote(self, duration_days: int) -> Optional[int]:
        return self.config.FEATURE_PRICES.get(duration_days)

    # ------------------------------------------------------------------
    # Admin flows
    # ------------------------------------------------------------------
    def approve(self, admin_id: int, request_id: int, now: Optional[datetime] = None) -> SagaReport:
        """
        Approve a request and feature its property for the requested days.

        Runs as three separately committed steps:
          1. mark_request_approved
          2. feature_property   (on failure the request goes back to pending)
          3. notify_partner     (on failure the approval stands; report is partial)
        """
        report = SagaReport(name=APPROVAL_SAGA)
        if not self.accounts.is_admin(admin_id):
            report.failure = FailureKind.AUTHORIZATION
            report.message = NOT_AUTHORIZED_MESSAGE
            return report

        start = as_naive_utc(now) if now else utcnow()
        try:
            with self.inflight.claim(("feature_request", request_id)):
                self._run_approval(report, admin_id, request_id, start)
        except InFlightError as exc:
            report.failure = FailureKind.CONFLICT
            report.message = str(exc)

        record_event(APPROVAL_SAGA, {"request_id": request_id, **report.to_dict()})
        return report

    def _run_approval(self, report: SagaReport, admin_id: int, request_id: int, start: datetime) -> None:
        feature_request = self.db.get(FeatureRequest, request_id)
        if not feature_request:
            report.failure = FailureKind.DATA_INTEGRITY
            report.message = "Feature request not found"
            return

        # Step 1
        try:
            feature_request.transition_to(FeatureRequestStatus.APPROVED)
        except ValueError as exc:
            report.failure = FailureKind.AUTHORIZATION
            report.message = str(exc)
            report.record("mark_request_approved", ok=False, error=str(exc))
            return
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            self._step_failed(report, "mark_request_approved", exc, request_id)
            report.failure = FailureKind.REMOTE
            report.message = "Failed to approve request"
            return
        report.record("mark_request_approved", ok=True)
        increment_counter("status_transitions_total", labels={"entity": "feature_request", "to_status": "approved"})

        # Step 2
        duration_days = feature_request.duration_days
        end = start + timedelta(days=duration_days)
        try:
            listing = self._feature_property(feature_request.propertyID, start, end)
        except (SQLAlchemyError, ValueError, LookupError) as exc:
            self.db.rollback()
            step = self._step_failed(report, "feature_property", exc, request_id)
            step.compensated = self._compensate(request_id)
            report.failure = FailureKind.REMOTE if step.compensated else FailureKind.DATA_INTEGRITY
            report.message = "Failed to approve request"
            return
        report.record("feature_property", ok=True)
        increment_counter("status_transitions_total", labels={"entity": "property", "to_status": "featured"})

        # Step 3
        ok, message, _ = self.notifications.notify(
            RecipientType.PARTNER,
            feature_request.partnerID,
            "feature_approved",
            "Feature Request Approved",
            f'Your feature request for "{listing.property_name or "your property"}" has been approved! Your property '
            f"is now featured and will appear at the top of search results for {duration_days} days.",
            property_id=listing.propertyID,
        )
        if not ok:
            self._step_failed(report, "notify_partner", RuntimeError(message), request_id)
            report.failure = FailureKind.PARTIAL
            report.message = "Feature request approved, but the partner could not be notified"
            return
        report.record("notify_partner", ok=True)
        report.message = "Feature request approved"
        self.logger.info("Feature request %s approved by admin %s", request_id, admin_id)

    def _feature_property(self, property_id: int, start: datetime, end: datetime) -> Property:
        listing = self.db.get(Property, property_id)
        if not listing:
            raise LookupError(f"Property {property_id} not found")
        listing.set_feature_window(start, end)
        self.db.commit()
        return listing

    def _compensate(self, request_id: int) -> bool:
        try:
            feature_request = self.db.get(FeatureRequest, request_id)
            # Direct assignment: approved -> pending is only legal as an undo
            feature_request.status = FeatureRequestStatus.PENDING
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.critical(
                "Feature request %s is approved but its property was not featured; manual repair needed",
                request_id,
                exc_info=True,
            )
            return False
        self.logger.warning("Feature request %s returned to pending after a failed property update", request_id)
        return True

    def _step_failed(self, report: SagaReport, step_name: str, exc: Exception, request_id: int):
        increment_counter("saga_step_failures_total", labels={"saga": APPROVAL_SAGA, "step": step_name})
        self.logger.error(
            "Step %s of %s failed for request %s: %s", step_name, APPROVAL_SAGA, request_id, exc,
        )
        return report.record(step_name, ok=False, error=str(exc))

    def reject(
        self,
        admin_id: int,
        request_id: int,
        admin_notes: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[FeatureRequest]]:
        if not self.accounts.is_admin(admin_id):
            return False, NOT_AUTHORIZED_MESSAGE, None
        try:
            with self.inflight.claim(("feature_request", request_id)):
                feature_request = self.db.get(FeatureRequest, request_id)
                if not feature_request:
                    return False, "Feature request not found", None
                try:
                    feature_request.transition_to(FeatureRequestStatus.REJECTED)
                except ValueError as exc:
                    return False, str(exc), None
                feature_request.admin_notes = admin_notes
                try:
                    self.db.commit()
                except SQLAlchemyError:
                    self.db.rollback()
                    self.logger.exception("Failed to reject feature request %s", request_id)
                    return False, "Failed to reject request", None
        except InFlightError as exc:
            return False, str(exc), None

        increment_counter("status_transitions_total", labels={"entity": "feature_request", "to_status": "rejected"})
        self.logger.info("Feature request %s rejected by admin %s", request_id, admin_id)
        return True, "Feature request rejected", feature_request

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def list_for_partner(self, user_id: int) -> List[FeatureRequest]:
        partner = self.accounts.get_own_account(user_id, RecipientType.PARTNER)
        if not partner:
            return []
        return (
            self.db.query(FeatureRequest)
            .filter(FeatureRequest.partnerID == partner.partnerID)
            .order_by(FeatureRequest.created_at.desc())
            .all()
        )

    def list_all(
        self,
        admin_id: int,
        status: Optional[FeatureRequestStatus | str] = None,
    ) -> Tuple[bool, str, List[FeatureRequest]]:
        if not self.accounts.is_admin(admin_id):
            return False, NOT_AUTHORIZED_MESSAGE, []
        query = self.db.query(FeatureRequest)
        if status:
            query = query.filter(FeatureRequest.status == FeatureRequestStatus(status))
        return True, "OK", query.order_by(FeatureRequest.created_at.desc()).all()
