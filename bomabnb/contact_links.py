"""Deep links for contacting partners: tel:, mailto: and WhatsApp hand-off URLs."""
from __future__ import annotations

import re
from typing import Optional
from urllib.parse import quote

from bomabnb.config import Config

_NON_DIGITS = re.compile(r"\D")


def digits_only(value: Optional[str]) -> str:
    return _NON_DIGITS.sub("", value or "")


def normalize_phone(value: Optional[str], country_code: Optional[str] = None) -> Optional[str]:
    """Return ``+<country><subscriber>``, or None when the input has no digits.

    ``0712 345 678`` and ``712345678`` both become ``+254712345678``; numbers that
    already start with the country code are only reformatted.
    """
    country_code = country_code or Config.PHONE_COUNTRY_CODE
    cleaned = digits_only(value)
    if not cleaned:
        return None
    if cleaned.startswith(country_code):
        return f"+{cleaned}"
    # Local trunk prefix
    cleaned = cleaned.lstrip("0")
    return f"+{country_code}{cleaned}"


def tel_link(phone: Optional[str]) -> Optional[str]:
    normalized = normalize_phone(phone)
    return f"tel:{normalized}" if normalized else None


def mailto_link(email: Optional[str], subject: Optional[str] = None) -> Optional[str]:
    if not email or "@" not in email:
        return None
    link = f"mailto:{email.strip()}"
    if subject:
        link += f"?subject={quote(subject)}"
    return link


def whatsapp_link(phone: Optional[str], text: Optional[str] = None) -> Optional[str]:
    """wa.me link to ``phone``; with no phone, a share link carrying only ``text``."""
    target = digits_only(normalize_phone(phone)) if phone else ""
    if not target and not text:
        return None
    link = f"https://wa.me/{target}"
    if text:
        link += f"?text={quote(text)}"
    return link


def booking_request_message(booking, property_name: str) -> str:
    return (
        "New Booking Request!\n\n"
        f"Property: {property_name}\n"
        f"Guest: {booking.guest_name}\n"
        f"Email: {booking.guest_email}\n"
        f"Phone: {booking.guest_phone}\n"
        f"Check-in: {booking.check_in.isoformat()}\n"
        f"Check-out: {booking.check_out.isoformat()}\n"
        f"Guests: {booking.number_of_guests}\n"
        f"Total: KES {float(booking.total_price):,.0f}"
    )
