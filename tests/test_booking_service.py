from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from urllib.parse import unquote

import pytest

from bomabnb.models import Booking, BookingStatus, Commission, Notification, RecipientType
from bomabnb.services.account_service import NOT_AUTHORIZED_MESSAGE
from bomabnb.services.booking_service import BookingService, calculate_nights, effective_status
from bomabnb.services.inflight import ALREADY_PROCESSING_MESSAGE

from conftest import StubConfig, make_partner, make_property


def _service(db_session, inflight):
    return BookingService(db_session, config=StubConfig, inflight=inflight)


def _book(service, listing, **overrides):
    fields = dict(
        guest_name="Amina Guest",
        guest_email="amina@example.com",
        guest_phone="0733444555",
        check_in="2026-04-10",
        check_out="2026-04-13",
        number_of_guests=2,
    )
    fields.update(overrides)
    return service.create_booking(listing.propertyID, **fields)


@pytest.mark.parametrize(
    "check_in, check_out, nights",
    [
        ("2026-04-10", "2026-04-13", 3),
        (date(2026, 4, 10), date(2026, 4, 11), 1),
        ("2026-04-10T14:00:00", "2026-04-11T10:00:00", 1),
        ("2026-04-10T10:00:00", "2026-04-11T14:00:00", 2),
        (datetime(2026, 4, 10, 12), datetime(2026, 4, 10, 13), 1),
    ],
)
def test_calculate_nights_rounds_up(check_in, check_out, nights):
    assert calculate_nights(check_in, check_out) == nights


def test_guest_booking_is_pending_and_priced(db_session, inflight, listing):
    success, message, booking = _book(_service(db_session, inflight), listing)

    assert success is True
    assert message == "Booking request sent successfully!"
    assert booking.status == BookingStatus.PENDING
    assert booking.total_price == Decimal("15000")
    assert booking.check_in == date(2026, 4, 10)
    assert booking.guest_phone == "+254733444555"

    notice = db_session.query(Notification).filter(Notification.type == "new_booking").one()
    assert notice.recipient_type == RecipientType.PARTNER
    assert notice.recipient_id == listing.partnerID
    assert notice.title == "New Booking Request"
    assert notice.extra_data == {"booking_id": booking.bookingID}


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"check_out": "2026-04-10"}, "Check-out must be after check-in"),
        ({"check_out": "2026-04-09"}, "Check-out must be after check-in"),
        ({"check_in": "not-a-date"}, "Invalid check-in or check-out date"),
        ({"number_of_guests": 0}, "At least one guest is required"),
        ({"number_of_guests": 7}, "This property accommodates at most 6 guests"),
        ({"guest_email": ""}, "Name, email and phone are required"),
    ],
)
def test_booking_validation(db_session, inflight, listing, overrides, message):
    success, got, _ = _book(_service(db_session, inflight), listing, **overrides)
    assert success is False
    assert got == message
    assert db_session.query(Booking).count() == 0


def test_inactive_listing_cannot_be_booked(db_session, inflight, partner):
    hidden = make_property(db_session, partner, is_active=False)
    assert _book(_service(db_session, inflight), hidden)[1] == "Property not found"


def test_whatsapp_handoff_prefills_request(db_session, inflight, listing):
    service = _service(db_session, inflight)
    _, _, booking = _book(service, listing)

    link = service.whatsapp_handoff(booking)

    assert link.startswith("https://wa.me/254712345678?text=")
    text = unquote(link.split("text=", 1)[1])
    assert text.startswith("New Booking Request!")
    assert "Amina Guest" in text
    assert "KES 15,000" in text


def test_owner_confirms_and_commission_is_recorded(db_session, inflight, partner, referrer, listing):
    service = _service(db_session, inflight)
    _, _, booking = _book(service, listing)

    success, message, confirmed = service.confirm(partner.userID, booking.bookingID)

    assert success is True
    assert message == "Booking confirmed"
    assert confirmed.status == BookingStatus.CONFIRMED
    commission = db_session.query(Commission).filter_by(bookingID=booking.bookingID).one()
    assert commission.referrerID == referrer.referrerID
    assert commission.commission_amount == Decimal("1500.00")


def test_decided_booking_cannot_be_decided_again(db_session, inflight, partner, listing):
    service = _service(db_session, inflight)
    _, _, booking = _book(service, listing)
    service.decline(partner.userID, booking.bookingID)

    success, message, _ = service.confirm(partner.userID, booking.bookingID)

    assert success is False
    assert message == "Booking is already declined"
    assert db_session.query(Commission).count() == 0


def test_double_confirm_records_one_commission(db_session, inflight, partner, listing):
    service = _service(db_session, inflight)
    _, _, booking = _book(service, listing)

    assert service.confirm(partner.userID, booking.bookingID)[0] is True
    assert service.confirm(partner.userID, booking.bookingID)[1] == "Booking is already confirmed"
    assert db_session.query(Commission).count() == 1


def test_concurrent_decision_is_rejected(db_session, inflight, partner, listing):
    service = _service(db_session, inflight)
    _, _, booking = _book(service, listing)

    with inflight.claim(("booking", booking.bookingID)):
        success, message, _ = service.confirm(partner.userID, booking.bookingID)

    assert success is False
    assert message == ALREADY_PROCESSING_MESSAGE
    assert db_session.get(Booking, booking.bookingID).status == BookingStatus.PENDING


def test_only_the_owning_partner_decides(db_session, inflight, admin, listing):
    service = _service(db_session, inflight)
    _, _, booking = _book(service, listing)
    stranger = make_partner(db_session)

    assert service.confirm(stranger.userID, booking.bookingID)[1] == "Booking not found"
    assert service.confirm(admin.userID, booking.bookingID)[1] == NOT_AUTHORIZED_MESSAGE


def test_legacy_cancelled_reads_as_declined(db_session, inflight, partner, listing):
    service = _service(db_session, inflight)
    _, _, booking = _book(service, listing)
    booking.status = BookingStatus.CANCELLED
    db_session.commit()

    assert effective_status(booking) == BookingStatus.DECLINED
    assert [b.bookingID for b in service.list_for_partner(partner.userID, status="declined")] == [booking.bookingID]
    assert service.confirm(partner.userID, booking.bookingID)[1] == "Booking is already declined"


def test_partner_booking_search(db_session, inflight, partner, listing):
    service = _service(db_session, inflight)
    _book(service, listing)
    _book(service, listing, guest_name="Brian Otieno", guest_email="brian@example.com")

    assert [b.guest_name for b in service.list_for_partner(partner.userID, query="brian")] == ["Brian Otieno"]
    assert len(service.list_for_partner(partner.userID, status="pending")) == 2
    assert service.list_for_partner(make_partner(db_session).userID) == []
