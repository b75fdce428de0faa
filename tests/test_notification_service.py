from __future__ import annotations

from bomabnb.models import Notification, NotificationStatus, RecipientType
from bomabnb.services.notification_service import NotificationService

from conftest import StubConfig


def _service(db_session):
    return NotificationService(db_session, config=StubConfig)


def _seed(service, recipient_id, count, recipient_type=RecipientType.PARTNER):
    created = []
    for index in range(count):
        _, _, notification = service.notify(recipient_type, recipient_id, "info", f"Notice {index}", "Body")
        created.append(notification)
    return created


def test_notify_creates_unread_notification(db_session):
    success, message, notification = _service(db_session).notify(
        "partner", 7, "new_booking", "New Booking Request", "Someone booked", property_id=None,
        action_url="/partner-bookings", metadata={"booking_id": 3},
    )

    assert success is True
    assert message == "Notification created"
    assert notification.recipient_type == RecipientType.PARTNER
    assert notification.status == NotificationStatus.UNREAD
    assert notification.extra_data == {"booking_id": 3}


def test_inbox_is_scoped_to_recipient(db_session):
    service = _service(db_session)
    _seed(service, 1, 3)
    _seed(service, 1, 2, recipient_type=RecipientType.REFERRER)

    assert len(service.list_for(RecipientType.PARTNER, 1)) == 3
    assert service.unread_count("referrer", 1) == 2
    assert service.list_for(RecipientType.PARTNER, 2) == []
    assert len(service.list_for(RecipientType.PARTNER, 1, limit=2)) == 2


def test_mark_as_read(db_session):
    service = _service(db_session)
    mine = _seed(service, 1, 2)
    theirs = _seed(service, 2, 1)[0]

    success, message, notification = service.mark_as_read("partner", 1, mine[0].notificationID)
    assert success is True
    assert message == "Notification marked as read"
    assert notification.read_at is not None
    assert service.mark_as_read("partner", 1, mine[0].notificationID)[1] == "Notification already read"
    assert service.mark_as_read("partner", 1, theirs.notificationID)[1] == "Notification not found"

    assert [n.notificationID for n in service.list_for("partner", 1, unread_only=True)] == [mine[1].notificationID]
    assert service.unread_count("partner", 2) == 1


def test_mark_all_delete_and_clear(db_session):
    service = _service(db_session)
    mine = _seed(service, 1, 3)
    _seed(service, 2, 1)

    assert service.mark_all_as_read("partner", 1) == 3
    assert service.unread_count("partner", 1) == 0
    assert service.mark_all_as_read("partner", 1) == 0

    assert service.delete("partner", 1, mine[0].notificationID)[1] == "Notification deleted"
    assert service.delete("partner", 1, mine[0].notificationID)[1] == "Notification not found"
    assert service.clear("partner", 1) == 2
    assert db_session.query(Notification).count() == 1
