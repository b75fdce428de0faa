from __future__ import annotations

from bomabnb.models import Notification, SupportTicket, TicketStatus
from bomabnb.services.account_service import NOT_AUTHORIZED_MESSAGE
from bomabnb.services.support_service import SupportService

from conftest import StubConfig, make_partner


def _service(db_session):
    return SupportService(db_session, config=StubConfig)


def _open(service, partner, **overrides):
    fields = dict(subject="Calendar sync", message="My calendar is not updating", category="technical")
    fields.update(overrides)
    success, message, ticket = service.open_ticket(partner.userID, **fields)
    assert success is True, message
    return ticket


def test_partner_opens_ticket(db_session, partner):
    success, message, ticket = _service(db_session).open_ticket(
        partner.userID, "<b>Payout</b> question", "When do I get paid?", "billing", "high"
    )

    assert success is True
    assert message == "Support ticket submitted"
    assert ticket.subject == "Payout question"
    assert ticket.status == TicketStatus.OPEN
    assert ticket.priority == "high"


def test_open_ticket_validation(db_session, partner, referrer):
    service = _service(db_session)

    assert service.open_ticket(referrer.userID, "Hi", "Help")[1] == "Partner account not found"
    assert service.open_ticket(partner.userID, "", "Help")[1] == "Subject and message are required"
    assert service.open_ticket(partner.userID, "Hi", "Help", category="legal")[1] == "Unknown category"
    assert service.open_ticket(partner.userID, "Hi", "Help", priority="now")[1] == "Unknown priority"
    assert db_session.query(SupportTicket).count() == 0


def test_admin_response_moves_ticket_in_progress_and_notifies(db_session, admin, partner):
    service = _service(db_session)
    ticket = _open(service, partner)

    assert service.respond(partner.userID, ticket.ticketID, "Hi")[1] == NOT_AUTHORIZED_MESSAGE
    assert service.respond(admin.userID, ticket.ticketID, "  ")[1] == "Response cannot be empty"

    success, message, updated = service.respond(admin.userID, ticket.ticketID, "Please refresh the page")
    assert success is True
    assert message == "Response sent"
    assert updated.status == TicketStatus.IN_PROGRESS
    assert updated.admin_response == "Please refresh the page"

    notice = db_session.query(Notification).filter(Notification.type == "support_response").one()
    assert notice.recipient_id == partner.partnerID
    assert notice.extra_data == {"ticket_id": ticket.ticketID}


def test_ticket_lifecycle(db_session, admin, partner):
    service = _service(db_session)
    ticket = _open(service, partner)

    # resolving needs an admin response first
    assert service.resolve(admin.userID, ticket.ticketID)[0] is False
    service.respond(admin.userID, ticket.ticketID, "Fixed")
    success, message, _ = service.resolve(admin.userID, ticket.ticketID)
    assert success is True
    assert message == "Ticket resolved"

    assert service.respond(admin.userID, ticket.ticketID, "More")[1] == "Ticket is already resolved"
    assert service.close(partner.userID, ticket.ticketID)[1] == "Ticket closed"
    assert service.close(partner.userID, ticket.ticketID)[0] is False


def test_only_owner_or_admin_closes(db_session, admin, partner):
    service = _service(db_session)
    first = _open(service, partner)
    second = _open(service, partner, subject="Photos")
    stranger = make_partner(db_session)

    assert service.close(stranger.userID, first.ticketID)[1] == "Ticket not found"
    assert service.close(admin.userID, first.ticketID)[0] is True
    assert service.close(partner.userID, second.ticketID)[0] is True


def test_ticket_lists(db_session, admin, partner):
    service = _service(db_session)
    ticket = _open(service, partner)
    other = make_partner(db_session)
    _open(service, other)

    assert [t.ticketID for t in service.list_for_partner(partner.userID)] == [ticket.ticketID]
    success, _, tickets = service.list_all(admin.userID, status="open")
    assert success is True
    assert len(tickets) == 2
    assert service.list_all(partner.userID)[1] == NOT_AUTHORIZED_MESSAGE
