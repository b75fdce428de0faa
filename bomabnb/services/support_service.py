from __future__ import annotations

import logging
from typing import List, Optional, Tuple

import bleach
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bomabnb.config import Config
from bomabnb.models import RecipientType, SupportTicket, TicketStatus
from bomabnb.observability import increment_counter
from bomabnb.services.account_service import NOT_AUTHORIZED_MESSAGE, AccountService
from bomabnb.services.notification_service import NotificationService

CATEGORIES = ("general", "technical", "billing", "account", "property", "booking")
PRIORITIES = ("low", "medium", "high", "urgent")


class SupportService:
    """Partner support tickets: open -> in_progress -> resolved, closable from any open state."""

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

    def open_ticket(
        self,
        user_id: int,
        subject: str,
        message: str,
        category: str = "general",
        priority: str = "medium",
    ) -> Tuple[bool, str, Optional[SupportTicket]]:
        partner = self.accounts.get_own_account(user_id, RecipientType.PARTNER)
        if not partner:
            return False, "Partner account not found", None
        subject = bleach.clean(subject or "", tags=[], strip=True).strip()
        message = bleach.clean(message or "", tags=[], strip=True).strip()
        if not subject or not message:
            return False, "Subject and message are required", None
        if category not in CATEGORIES:
            return False, "Unknown category", None
        if priority not in PRIORITIES:
            return False, "Unknown priority", None

        ticket = SupportTicket(
            partnerID=partner.partnerID,
            subject=subject[:255],
            message=message,
            category=category,
            priority=priority,
            status=TicketStatus.OPEN,
        )
        try:
            self.db.add(ticket)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to open ticket for partner %s", partner.partnerID)
            return False, "Failed to submit ticket", None
        increment_counter("support_tickets_opened_total", labels={"category": category})
        return True, "Support ticket submitted", ticket

    def respond(self, admin_id: int, ticket_id: int, response: str) -> Tuple[bool, str, Optional[SupportTicket]]:
        """Record the admin's answer; an open ticket moves to in_progress."""
        if not self.accounts.is_admin(admin_id):
            return False, NOT_AUTHORIZED_MESSAGE, None
        ticket = self.db.get(SupportTicket, ticket_id)
        if not ticket:
            return False, "Ticket not found", None
        response = bleach.clean(response or "", tags=[], strip=True).strip()
        if not response:
            return False, "Response cannot be empty", None
        status = TicketStatus(ticket.status)
        if status in (TicketStatus.RESOLVED, TicketStatus.CLOSED):
            return False, f"Ticket is already {status.value}", None
        if status == TicketStatus.OPEN:
            ticket.transition_to(TicketStatus.IN_PROGRESS)
        ticket.admin_response = response
        if not self._commit(f"respond to ticket {ticket_id}"):
            return False, "Failed to save response", None

        self.notifications.notify(
            RecipientType.PARTNER,
            ticket.partnerID,
            "support_response",
            "Support Ticket Updated",
            f'Our team has responded to your ticket "{ticket.subject}".',
            action_url="/partner-support",
            metadata={"ticket_id": ticket.ticketID},
        )
        return True, "Response sent", ticket

    def resolve(self, admin_id: int, ticket_id: int) -> Tuple[bool, str, Optional[SupportTicket]]:
        if not self.accounts.is_admin(admin_id):
            return False, NOT_AUTHORIZED_MESSAGE, None
        return self._move(ticket_id, TicketStatus.RESOLVED)

    def close(self, user_id: int, ticket_id: int) -> Tuple[bool, str, Optional[SupportTicket]]:
        ticket = self.db.get(SupportTicket, ticket_id)
        if not ticket:
            return False, "Ticket not found", None
        if not self.accounts.is_admin(user_id):
            partner = self.accounts.get_own_account(user_id, RecipientType.PARTNER)
            if not partner or partner.partnerID != ticket.partnerID:
                return False, "Ticket not found", None
        return self._move(ticket_id, TicketStatus.CLOSED)

    def list_for_partner(self, user_id: int) -> List[SupportTicket]:
        partner = self.accounts.get_own_account(user_id, RecipientType.PARTNER)
        if not partner:
            return []
        return (
            self.db.query(SupportTicket)
            .filter(SupportTicket.partnerID == partner.partnerID)
            .order_by(SupportTicket.created_at.desc())
            .all()
        )

    def list_all(self, admin_id: int, status: Optional[str] = None) -> Tuple[bool, str, List[SupportTicket]]:
        if not self.accounts.is_admin(admin_id):
            return False, NOT_AUTHORIZED_MESSAGE, []
        query = self.db.query(SupportTicket)
        if status:
            query = query.filter(SupportTicket.status == TicketStatus(status))
        return True, "OK", query.order_by(SupportTicket.created_at.desc()).all()

    def _move(self, ticket_id: int, target: TicketStatus) -> Tuple[bool, str, Optional[SupportTicket]]:
        ticket = self.db.get(SupportTicket, ticket_id)
        if not ticket:
            return False, "Ticket not found", None
        try:
            ticket.transition_to(target)
        except ValueError as exc:
            return False, str(exc), None
        if not self._commit(f"move ticket {ticket_id} to {target.value}"):
            return False, "Failed to update ticket", None
        increment_counter("status_transitions_total", labels={"entity": "support_ticket", "to_status": target.value})
        return True, f"Ticket {target.value}", ticket

    def _commit(self, action: str) -> bool:
        try:
            self.db.commit()
            return True
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to %s", action)
            return False
