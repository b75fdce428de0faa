from urllib.parse import unquote

import pytest

from bomabnb.contact_links import mailto_link, normalize_phone, tel_link, whatsapp_link


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("0712 345 678", "+254712345678"),
        ("712345678", "+254712345678"),
        ("+254-712-345-678", "+254712345678"),
        ("254712345678", "+254712345678"),
        ("", None),
        (None, None),
    ],
)
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


def test_other_country_code():
    assert normalize_phone("0772 123456", country_code="256") == "+256772123456"


def test_contact_links():
    assert tel_link("0712345678") == "tel:+254712345678"
    assert tel_link("") is None
    assert mailto_link("host@example.com", "Booking enquiry") == "mailto:host@example.com?subject=Booking%20enquiry"
    assert mailto_link("not-an-email") is None


def test_whatsapp_link():
    link = whatsapp_link("0712 345 678", "Hi & welcome")
    assert link.startswith("https://wa.me/254712345678?text=")
    assert unquote(link.split("text=", 1)[1]) == "Hi & welcome"
    assert whatsapp_link(None, "Check this out") == "https://wa.me/?text=Check%20this%20out"
    assert whatsapp_link(None) is None
