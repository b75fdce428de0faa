from __future__ import annotations

import logging
import math
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Tuple, Union

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bomabnb.config import Config
from bomabnb.contact_links import booking_request_message, normalize_phone, whatsapp_link
from bomabnb.models import Booking, BookingStatus, Property, RecipientType
from bomabnb.observability import increment_counter, record_event
from bomabnb.services.account_service import NOT_AUTHORIZED_MESSAGE, AccountService
from bomabnb.services.commission_service import CommissionService
from bomabnb.services.inflight import InFlightError, InFlightRegistry, default_registry
from bomabnb.services.notification_service import NotificationService

DateLike = Union[date, datetime, str]

# Older rows used "cancelled" for what is now "declined"
LEGACY_STATUS_ALIASES = {BookingStatus.CANCELLED: BookingStatus.DECLINED}


def calculate_nights(check_in: DateLike, check_out: DateLike) -> int:
    """Whole nights between two dates, rounded up and never below one."""
    start, end = _as_date_or_datetime(check_in), _as_date_or_datetime(check_out)
    if isinstance(start, datetime) != isinstance(end, datetime):
        start, end = _to_datetime(start), _to_datetime(end)
    seconds = (end - start).total_seconds()
    return max(1, math.ceil(seconds / 86400))


def effective_status(booking: Booking) -> BookingStatus:
    status = BookingStatus(booking.status)
    return LEGACY_STATUS_ALIASES.get(status, status)


def _as_date_or_datetime(value: DateLike) -> Union[date, datetime]:
    if isinstance(value, (date, datetime)):
        return value
    text = str(value).strip()
    if "T" in text or " " in text:
        return datetime.fromisoformat(text)
    return date.fromisoformat(text)


def _to_datetime(value: Union[date, datetime]) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day)


def _to_date(value: Union[date, datetime]) -> date:
    return value.date() if isinstance(value, datetime) else value


class BookingService:
    """Guest booking requests and the owning partner's confirm/decline decision."""

    def __init__(
        self,
        db_session: Session,
        config: type[Config] = Config,
        notification_service: Optional[NotificationService] = None,
        account_service: Optional[AccountService] = None,
        commission_service: Optional[CommissionService] = None,
        inflight: Optional[InFlightRegistry] = None,
    ) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.notifications = notification_service or NotificationService(db_session, config=config)
        self.accounts = account_service or AccountService(
            db_session, config=config, notification_service=self.notifications
        )
        self.commissions = commission_service or CommissionService(
            db_session, config=config, notification_service=self.notifications, account_service=self.accounts
        )
        self.inflight = inflight or default_registry

    # ------------------------------------------------------------------
    # Guest flows
    # ------------------------------------------------------------------
    def create_booking(
        self,
        property_id: int,
        guest_name: str,
        guest_email: str,
        guest_phone: str,
        check_in: DateLike,
        check_out: DateLike,
        number_of_guests: int,
        notes: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[Booking]]:
        if not guest_name or not guest_email or not guest_phone:
            return False, "Name, email and phone are required", None
        listing = self.db.get(Property, property_id)
        if not listing or not listing.is_active:
            return False, "Property not found", None

        try:
            start = _as_date_or_datetime(check_in)
            end = _as_date_or_datetime(check_out)
        except ValueError:
            return False, "Invalid check-in or check-out date", None
        if _to_datetime(end) <= _to_datetime(start):
            return False, "Check-out must be after check-in", None
        try:
            guests = int(number_of_guests)
        except (TypeError, ValueError):
            return False, "Number of guests must be a whole number", None
        if guests < 1:
            return False, "At least one guest is required", None
        if guests > listing.capacity:
            return False, f"This property accommodates at most {listing.capacity} guests", None

        nights = calculate_nights(start, end)
        booking = Booking(
            propertyID=listing.propertyID,
            guest_name=guest_name.strip(),
            guest_email=guest_email.strip(),
            guest_phone=normalize_phone(guest_phone) or guest_phone,
            check_in=_to_date(start),
            check_out=_to_date(end),
            number_of_guests=guests,
            total_price=Decimal(str(listing.price_per_night)) * nights,
            notes=notes or None,
            status=BookingStatus.PENDING,
        )
        try:
            self.db.add(booking)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to create booking for property %s", property_id)
            return False, "Failed to submit booking", None

        increment_counter("bookings_created_total")
        record_event("booking_created", {"booking_id": booking.bookingID, "property_id": property_id, "nights": nights})
        self.logger.info("Booking %s requested for property %s (%d nights)", booking.bookingID, property_id, nights)
        self.notifications.notify(
            RecipientType.PARTNER,
            listing.partnerID,
            "new_booking",
            "New Booking Request",
            f'{booking.guest_name} requested "{listing.property_name}" from {booking.check_in.isoformat()} '
            f"to {booking.check_out.isoformat()} for {guests} guest{'s' if guests > 1 else ''}.",
            property_id=listing.propertyID,
            action_url="/partner-bookings",
            metadata={"booking_id": booking.bookingID},
        )
        return True, "Booking request sent successfully!", booking

    def whatsapp_handoff(self, booking: Booking) -> Optional[str]:
        """wa.me link that opens a chat with the property contact, pre-filled with the request."""
        listing = self.db.get(Property, booking.propertyID)
        if not listing or not listing.contact_phone:
            return None
        return whatsapp_link(listing.contact_phone, booking_request_message(booking, listing.property_name))

    # ------------------------------------------------------------------
    # Partner flows
    # ------------------------------------------------------------------
    def confirm(self, user_id: int, booking_id: int) -> Tuple[bool, str, Optional[Booking]]:
        ok, message, booking = self._decide(user_id, booking_id, BookingStatus.CONFIRMED)
        if not ok:
            return ok, message, booking
        recorded, commission_message, _ = self.commissions.record_for_booking(booking)
        if not recorded:
            self.logger.error("Booking %s confirmed but commission failed: %s", booking_id, commission_message)
        return True, message, booking

    def decline(self, user_id: int, booking_id: int) -> Tuple[bool, str, Optional[Booking]]:
        return self._decide(user_id, booking_id, BookingStatus.DECLINED)

    def _decide(self, user_id: int, booking_id: int, target: BookingStatus) -> Tuple[bool, str, Optional[Booking]]:
        partner = self.accounts.get_own_account(user_id, RecipientType.PARTNER)
        if not partner:
            return False, NOT_AUTHORIZED_MESSAGE, None
        try:
            with self.inflight.claim(("booking", booking_id)):
                booking = self.db.get(Booking, booking_id)
                if not booking:
                    return False, "Booking not found", None
                listing = self.db.get(Property, booking.propertyID)
                if not listing or listing.partnerID != partner.partnerID:
                    return False, "Booking not found", None
                try:
                    booking.transition_to(target)
                except ValueError:
                    return False, f"Booking is already {effective_status(booking).value}", None
                try:
                    self.db.commit()
                except SQLAlchemyError:
                    self.db.rollback()
                    self.logger.exception("Failed to mark booking %s %s", booking_id, target.value)
                    return False, "Failed to update booking", None
        except InFlightError as exc:
            return False, str(exc), None

        increment_counter("status_transitions_total", labels={"entity": "booking", "to_status": target.value})
        self.logger.info("Booking %s %s by partner %s", booking_id, target.value, partner.partnerID)
        return True, f"Booking {target.value}", booking

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def list_for_partner(
        self,
        user_id: int,
        status: Optional[BookingStatus | str] = None,
        query: Optional[str] = None,
    ) -> List[Booking]:
        partner = self.accounts.get_own_account(user_id, RecipientType.PARTNER)
        if not partner:
            return []
        bookings = (
            self.db.query(Booking)
            .join(Property, Booking.propertyID == Property.propertyID)
            .filter(Property.partnerID == partner.partnerID)
        )
        if status:
            wanted = BookingStatus(status)
            aliases = [s for s, canonical in LEGACY_STATUS_ALIASES.items() if canonical == wanted]
            bookings = bookings.filter(Booking.status.in_([wanted, *aliases]))
        if query:
            pattern = f"%{query.strip()}%"
            bookings = bookings.filter(
                or_(
                    Booking.guest_name.ilike(pattern),
                    Booking.guest_email.ilike(pattern),
                    Property.property_name.ilike(pattern),
                )
            )
        return bookings.order_by(Booking.created_at.desc()).all()

    def list_all(self, admin_id: int) -> Tuple[bool, str, List[Booking]]:
        if not self.accounts.is_admin(admin_id):
            return False, NOT_AUTHORIZED_MESSAGE, []
        return True, "OK", self.db.query(Booking).order_by(Booking.created_at.desc()).all()
