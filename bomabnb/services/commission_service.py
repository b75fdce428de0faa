from __future__ import annotations

import logging
import secrets
import string
import time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from bomabnb.config import Config
from bomabnb.models import (
    AccountStatus,
    AgentPayment,
    Booking,
    BookingStatus,
    Commission,
    CommissionStatus,
    Partner,
    PayoutRequest,
    Property,
    RecipientType,
    Referral,
    Referrer,
    utcnow,
)
from bomabnb.observability import increment_counter, record_event
from bomabnb.services.account_service import NOT_AUTHORIZED_MESSAGE, AccountService
from bomabnb.services.inflight import InFlightError, InFlightRegistry, default_registry
from bomabnb.services.notification_service import NotificationService

CENT = Decimal("0.01")
_BASE36 = string.digits + string.ascii_uppercase


def _money(value: Any) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_transaction_ref() -> str:
    """``TXN-<base36 epoch millis>-<5 random base36 chars>``, all upper case."""
    stamp = _base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(5))
    return f"TXN-{stamp}-{suffix}"


class CommissionService:
    """Referral commissions, agent payouts and partner revenue figures."""

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
    # Rates
    # ------------------------------------------------------------------
    def resolve_commission_rate(self, referrer: Optional[Referrer]) -> Decimal:
        """Fraction of a booking owed to the agent, per COMMISSION_RATE_SOURCE."""
        if self.config.COMMISSION_RATE_SOURCE == "agent" and referrer is not None and referrer.commission_rate is not None:
            return Decimal(str(referrer.commission_rate)) / Decimal(100)
        return Decimal(str(self.config.AGENT_COMMISSION_RATE))

    # ------------------------------------------------------------------
    # Commissions
    # ------------------------------------------------------------------
    def record_for_booking(self, booking: Booking) -> Tuple[bool, str, Optional[Commission]]:
        """Create the pending commission for a confirmed, referred booking; safe to call twice."""
        if BookingStatus(booking.status) != BookingStatus.CONFIRMED:
            return False, "Commissions are only earned on confirmed bookings", None

        existing = self._commission_for(booking.bookingID)
        if existing:
            return True, "Commission already recorded", existing

        listing = self.db.get(Property, booking.propertyID)
        referral = (
            self.db.query(Referral).filter(Referral.partnerID == listing.partnerID).first() if listing else None
        )
        if referral is None:
            return True, "Booking has no referring agent", None

        referrer = self.db.get(Referrer, referral.referrerID)
        rate = self.resolve_commission_rate(referrer)
        booking_amount = _money(booking.total_price)
        commission = Commission(
            referrerID=referral.referrerID,
            bookingID=booking.bookingID,
            partnerID=listing.partnerID,
            propertyID=listing.propertyID,
            booking_amount=booking_amount,
            commission_rate=(rate * 100).quantize(CENT),
            commission_amount=_money(booking_amount * rate),
            status=CommissionStatus.PENDING,
        )
        try:
            self.db.add(commission)
            self.db.commit()
        except IntegrityError:
            # Lost a race with another confirmation of the same booking
            self.db.rollback()
            existing = self._commission_for(booking.bookingID)
            return True, "Commission already recorded", existing
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to record commission for booking %s", booking.bookingID)
            return False, "Failed to record commission", None

        increment_counter("commissions_created_total")
        record_event(
            "commission_recorded",
            {"booking_id": booking.bookingID, "referrer_id": referral.referrerID, "amount": str(commission.commission_amount)},
        )
        self.logger.info("Commission %s recorded for booking %s", commission.commissionID, booking.bookingID)
        return True, "Commission recorded", commission

    def mark_commission(
        self,
        admin_id: int,
        commission_id: int,
        status: CommissionStatus | str,
    ) -> Tuple[bool, str, Optional[Commission]]:
        if not self.accounts.is_admin(admin_id):
            return False, NOT_AUTHORIZED_MESSAGE, None
        target = CommissionStatus(status)
        try:
            with self.inflight.claim(("commission", commission_id)):
                commission = self.db.get(Commission, commission_id)
                if not commission:
                    return False, "Commission not found", None
                try:
                    commission.transition_to(target)
                except ValueError as exc:
                    return False, str(exc), None
                if target == CommissionStatus.PAID:
                    commission.paid_at = utcnow()
                if not self._commit(f"mark commission {commission_id} {target.value}"):
                    return False, "Failed to update commission", None
        except InFlightError as exc:
            return False, str(exc), None
        increment_counter("status_transitions_total", labels={"entity": "commission", "to_status": target.value})
        return True, f"Commission marked {target.value}", commission

    def list_for_referrer(self, referrer_id: int) -> List[Commission]:
        return (
            self.db.query(Commission)
            .filter(Commission.referrerID == referrer_id)
            .order_by(Commission.created_at.desc())
            .all()
        )

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------
    def agent_summary(self, referrer_id: int) -> Dict[str, Any]:
        partner_ids = [
            row.partnerID for row in self.db.query(Referral.partnerID).filter(Referral.referrerID == referrer_id).all()
        ]
        active_partners = 0
        confirmed_bookings = 0
        if partner_ids:
            active_partners = (
                self.db.query(Partner)
                .filter(Partner.partnerID.in_(partner_ids), Partner.status == AccountStatus.ACTIVE)
                .count()
            )
            confirmed_bookings = (
                self.db.query(Booking)
                .join(Property, Booking.propertyID == Property.propertyID)
                .filter(Property.partnerID.in_(partner_ids), Booking.status == BookingStatus.CONFIRMED)
                .count()
            )
        total_earnings = _money(
            self.db.query(func.coalesce(func.sum(Commission.commission_amount), 0))
            .filter(Commission.referrerID == referrer_id, Commission.status != CommissionStatus.REJECTED)
            .scalar()
        )
        total_paid = self._total_paid(referrer_id)
        return {
            "referred_partners": len(partner_ids),
            "active_partners": active_partners,
            "confirmed_bookings": confirmed_bookings,
            "total_earnings": total_earnings,
            "total_paid": total_paid,
            "pending_payment": max(total_earnings - total_paid, Decimal("0.00")),
        }

    def partner_revenue(self, partner_id: int) -> Dict[str, Any]:
        rows = (
            self.db.query(Booking.status, func.count(Booking.bookingID), func.coalesce(func.sum(Booking.total_price), 0))
            .join(Property, Booking.propertyID == Property.propertyID)
            .filter(Property.partnerID == partner_id)
            .group_by(Booking.status)
            .all()
        )
        counts = {BookingStatus(status).value: count for status, count, _ in rows}
        gross = _money(sum((Decimal(str(total)) for status, _, total in rows if BookingStatus(status) == BookingStatus.CONFIRMED), Decimal(0)))
        platform_commission = _money(gross * Decimal(str(self.config.PLATFORM_COMMISSION_RATE)))
        return {
            "total_bookings": sum(counts.values()),
            "confirmed_bookings": counts.get(BookingStatus.CONFIRMED.value, 0),
            "pending_bookings": counts.get(BookingStatus.PENDING.value, 0),
            "gross_revenue": gross,
            "platform_commission": platform_commission,
            "net_revenue": gross - platform_commission,
        }

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------
    def record_agent_payment(
        self,
        admin_id: int,
        referrer_id: int,
        amount: Any,
        payment_method: str,
        transaction_ref: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[AgentPayment]]:
        if not self.accounts.is_admin(admin_id):
            return False, NOT_AUTHORIZED_MESSAGE, None
        if not payment_method:
            return False, "Please fill in all required fields", None
        try:
            value = _money(amount)
        except (InvalidOperation, ValueError):
            return False, "Amount must be a number", None
        if value <= 0:
            return False, "Amount must be greater than zero", None

        try:
            with self.inflight.claim(("agent_payment", referrer_id)):
                if not self.db.get(Referrer, referrer_id):
                    return False, "Agent not found", None
                # open payout requests already reserve part of the balance
                pending = max(
                    self.agent_summary(referrer_id)["pending_payment"] - self._open_payouts(referrer_id),
                    Decimal("0.00"),
                )
                if value > pending:
                    return False, f"Maximum amount is KES {pending:,.2f}", None
                payment = AgentPayment(
                    referrerID=referrer_id,
                    amount=value,
                    payment_method=payment_method,
                    transaction_ref=(transaction_ref or "").strip() or generate_transaction_ref(),
                    notes=notes,
                    processed_by=admin_id,
                )
                try:
                    self.db.add(payment)
                    self.db.commit()
                except IntegrityError:
                    self.db.rollback()
                    return False, "Transaction reference already used", None
                except SQLAlchemyError:
                    self.db.rollback()
                    self.logger.exception("Failed to record payment for referrer %s", referrer_id)
                    return False, "Failed to record payment", None
        except InFlightError as exc:
            return False, str(exc), None

        increment_counter("agent_payments_total", labels={"method": payment_method})
        self.logger.info("Recorded payment %s of %s to referrer %s", payment.transaction_ref, value, referrer_id)
        self.notifications.notify(
            RecipientType.REFERRER,
            referrer_id,
            "payment_received",
            "Commission Payment Sent",
            f"A payment of KES {value:,.2f} has been sent via {payment_method} (ref {payment.transaction_ref}).",
            metadata={"transaction_ref": payment.transaction_ref},
        )
        return True, "Payment recorded successfully", payment

    def list_payments(self, referrer_id: int) -> List[AgentPayment]:
        return (
            self.db.query(AgentPayment)
            .filter(AgentPayment.referrerID == referrer_id)
            .order_by(AgentPayment.created_at.desc())
            .all()
        )

    def request_payout(
        self,
        user_id: int,
        amount: Any,
        payment_method: str,
        payment_details: Optional[Dict[str, Any]] = None,
    ) -> Tuple[bool, str, Optional[PayoutRequest]]:
        referrer = self.accounts.get_own_account(user_id, RecipientType.REFERRER)
        if not referrer or AccountStatus(referrer.status) != AccountStatus.ACTIVE:
            return False, "Only approved agents can request payouts", None
        if not payment_method:
            return False, "Payment method is required", None
        try:
            value = _money(amount)
        except (InvalidOperation, ValueError):
            return False, "Amount must be a number", None
        if value <= 0:
            return False, "Amount must be greater than zero", None

        try:
            with self.inflight.claim(("payout", referrer.referrerID)):
                available = self.agent_summary(referrer.referrerID)["pending_payment"] - self._open_payouts(referrer.referrerID)
                if value > available:
                    return False, f"Requested amount exceeds available balance (KES {available:,.2f})", None
                payout = PayoutRequest(
                    referrerID=referrer.referrerID,
                    amount=value,
                    payment_method=payment_method,
                    payment_details=payment_details or referrer.payout_details(),
                    status=CommissionStatus.PENDING,
                )
                try:
                    self.db.add(payout)
                    self.db.commit()
                except SQLAlchemyError:
                    self.db.rollback()
                    self.logger.exception("Failed to create payout request for referrer %s", referrer.referrerID)
                    return False, "Failed to submit payout request", None
        except InFlightError as exc:
            return False, str(exc), None

        self.logger.info("Payout request %s opened by referrer %s", payout.payoutRequestID, referrer.referrerID)
        return True, "Payout request submitted", payout

    def process_payout(
        self,
        admin_id: int,
        payout_id: int,
        approve: bool,
        notes: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[PayoutRequest]]:
        """Approving pays the request out and books it as an agent payment."""
        if not self.accounts.is_admin(admin_id):
            return False, NOT_AUTHORIZED_MESSAGE, None
        target = CommissionStatus.PAID if approve else CommissionStatus.REJECTED
        try:
            with self.inflight.claim(("payout_request", payout_id)):
                payout = self.db.get(PayoutRequest, payout_id)
                if not payout:
                    return False, "Payout request not found", None
                with self.inflight.claim(("agent_payment", payout.referrerID)):
                    try:
                        payout.transition_to(target)
                    except ValueError as exc:
                        return False, str(exc), None
                    if approve:
                        pending = self.agent_summary(payout.referrerID)["pending_payment"]
                        if _money(payout.amount) > pending:
                            self.db.rollback()
                            return False, f"Payout exceeds unpaid earnings (KES {pending:,.2f})", None
                    payout.processed_by = admin_id
                    payout.processed_at = utcnow()
                    payout.notes = notes
                    if approve:
                        self.db.add(
                            AgentPayment(
                                referrerID=payout.referrerID,
                                amount=payout.amount,
                                payment_method=payout.payment_method,
                                transaction_ref=generate_transaction_ref(),
                                notes=f"Payout request #{payout.payoutRequestID}",
                                processed_by=admin_id,
                            )
                        )
                    if not self._commit(f"process payout {payout_id}"):
                        return False, "Failed to process payout", None
        except InFlightError as exc:
            return False, str(exc), None

        increment_counter("status_transitions_total", labels={"entity": "payout_request", "to_status": target.value})
        return True, "Payout approved" if approve else "Payout rejected", payout

    def list_payouts(self, referrer_id: Optional[int] = None) -> List[PayoutRequest]:
        query = self.db.query(PayoutRequest)
        if referrer_id is not None:
            query = query.filter(PayoutRequest.referrerID == referrer_id)
        return query.order_by(PayoutRequest.created_at.desc()).all()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _commission_for(self, booking_id: int) -> Optional[Commission]:
        return self.db.query(Commission).filter(Commission.bookingID == booking_id).first()

    def _total_paid(self, referrer_id: int) -> Decimal:
        return _money(
            self.db.query(func.coalesce(func.sum(AgentPayment.amount), 0))
            .filter(AgentPayment.referrerID == referrer_id)
            .scalar()
        )

    def _open_payouts(self, referrer_id: int) -> Decimal:
        return _money(
            self.db.query(func.coalesce(func.sum(PayoutRequest.amount), 0))
            .filter(
                PayoutRequest.referrerID == referrer_id,
                PayoutRequest.status.in_([CommissionStatus.PENDING, CommissionStatus.PROCESSING]),
            )
            .scalar()
        )

    def _commit(self, action: str) -> bool:
        try:
            self.db.commit()
            return True
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to %s", action)
            return False
