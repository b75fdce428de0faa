"""
Notification Service

Store-backed inbox for partners and referral agents. Workflow services publish
status changes here; the dashboards list, count and mark them read.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bomabnb.config import Config
from bomabnb.models import Notification, NotificationStatus, RecipientType, utcnow
from bomabnb.observability import increment_counter, record_event


class NotificationService:
    """Creates and reads notifications addressed to one partner or referrer account."""

    def __init__(self, db_session: Session, config: type[Config] = Config) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------
    def notify(
        self,
        recipient_type: RecipientType | str,
        recipient_id: int,
        notification_type: str,
        title: str,
        message: str,
        property_id: Optional[int] = None,
        action_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[bool, str, Optional[Notification]]:
        """
        Persist one unread notification and commit it on its own.

        Callers commit their primary change first, so a failure here never
        undoes the action the notification describes.
        """
        recipient = RecipientType(recipient_type)
        notification = Notification(
            recipient_type=recipient,
            recipient_id=recipient_id,
            propertyID=property_id,
            type=notification_type,
            title=title,
            message=message,
            action_url=action_url,
            status=NotificationStatus.UNREAD,
            extra_data=metadata or {},
        )
        try:
            self.db.add(notification)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception(
                "Failed to create %s notification for %s %s",
                notification_type,
                recipient.value,
                recipient_id,
            )
            return False, "Failed to create notification", None

        increment_counter("notifications_created_total", labels={"type": notification_type})
        record_event(
            "notification_created",
            {"recipient_type": recipient.value, "recipient_id": recipient_id, "type": notification_type},
        )
        self.logger.info("Notification created for %s %s: %s", recipient.value, recipient_id, title)
        return True, "Notification created", notification

    # ------------------------------------------------------------------
    # Inbox
    # ------------------------------------------------------------------
    def list_for(
        self,
        recipient_type: RecipientType | str,
        recipient_id: int,
        unread_only: bool = False,
        limit: Optional[int] = None,
    ) -> List[Notification]:
        query = self._inbox(recipient_type, recipient_id)
        if unread_only:
            query = query.filter(Notification.status == NotificationStatus.UNREAD)
        query = query.order_by(Notification.created_at.desc(), Notification.notificationID.desc())
        return query.limit(limit or self.config.NOTIFICATIONS_PAGE_SIZE).all()

    def unread_count(self, recipient_type: RecipientType | str, recipient_id: int) -> int:
        return (
            self._inbox(recipient_type, recipient_id)
            .filter(Notification.status == NotificationStatus.UNREAD)
            .count()
        )

    def mark_as_read(
        self,
        recipient_type: RecipientType | str,
        recipient_id: int,
        notification_id: int,
    ) -> Tuple[bool, str, Optional[Notification]]:
        notification = self._owned(recipient_type, recipient_id, notification_id)
        if not notification:
            return False, "Notification not found", None
        if NotificationStatus(notification.status) == NotificationStatus.READ:
            return True, "Notification already read", notification
        notification.status = NotificationStatus.READ
        notification.read_at = utcnow()
        if not self._commit("mark notification %s read" % notification_id):
            return False, "Failed to update notification", None
        return True, "Notification marked as read", notification

    def mark_all_as_read(self, recipient_type: RecipientType | str, recipient_id: int) -> int:
        now = utcnow()
        unread = (
            self._inbox(recipient_type, recipient_id)
            .filter(Notification.status == NotificationStatus.UNREAD)
            .all()
        )
        for notification in unread:
            notification.status = NotificationStatus.READ
            notification.read_at = now
        if unread and not self._commit("mark all notifications read"):
            return 0
        return len(unread)

    def delete(
        self,
        recipient_type: RecipientType | str,
        recipient_id: int,
        notification_id: int,
    ) -> Tuple[bool, str, None]:
        notification = self._owned(recipient_type, recipient_id, notification_id)
        if not notification:
            return False, "Notification not found", None
        self.db.delete(notification)
        if not self._commit("delete notification %s" % notification_id):
            return False, "Failed to delete notification", None
        return True, "Notification deleted", None

    def clear(self, recipient_type: RecipientType | str, recipient_id: int) -> int:
        removed = self._inbox(recipient_type, recipient_id).delete(synchronize_session=False)
        if not self._commit("clear notifications"):
            return 0
        return removed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _inbox(self, recipient_type: RecipientType | str, recipient_id: int):
        return self.db.query(Notification).filter(
            Notification.recipient_type == RecipientType(recipient_type),
            Notification.recipient_id == recipient_id,
        )

    def _owned(self, recipient_type, recipient_id: int, notification_id: int) -> Optional[Notification]:
        # Someone else's notification reads as missing
        return self._inbox(recipient_type, recipient_id).filter(
            Notification.notificationID == notification_id
        ).first()

    def _commit(self, action: str) -> bool:
        try:
            self.db.commit()
            return True
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to %s", action)
            return False


# -----------------------------------------------------------------------------
# Account status notices
# -----------------------------------------------------------------------------

ACCOUNT_NOTICES: Dict[Tuple[RecipientType, str], Tuple[str, str, str]] = {
    (RecipientType.PARTNER, "approved"): (
        "account_approved",
        "Account Approved!",
        "Congratulations {name}! Your {app} partner account has been approved. You can now access "
        "your dashboard and start listing your properties. Welcome to the {app} family!",
    ),
    (RecipientType.PARTNER, "rejected"): (
        "account_rejected",
        "Account Application Rejected",
        "Hello {name}, unfortunately your {app} partner account application has been rejected. "
        "Please contact our support team if you have any questions or would like to reapply.",
    ),
    (RecipientType.PARTNER, "suspended"): (
        "account_suspended",
        "Account Suspended",
        "Hello {name}, your {app} partner account has been suspended. Please contact our support "
        "team for more information and assistance.",
    ),
    (RecipientType.PARTNER, "reinstated"): (
        "account_reactivated",
        "Account Reactivated!",
        "Great news {name}! Your {app} partner account has been reactivated. You can now access "
        "your dashboard and manage your properties again. Welcome back!",
    ),
    (RecipientType.REFERRER, "approved"): (
        "approval",
        "Agent Account Approved!",
        "Congratulations! Your agent account has been approved. You can now start referring "
        "partners and earning commissions.",
    ),
    (RecipientType.REFERRER, "rejected"): (
        "warning",
        "Agent Application Rejected",
        "Your agent application has been rejected. Please contact support for more information.",
    ),
    (RecipientType.REFERRER, "suspended"): (
        "warning",
        "Account Suspended",
        "Your agent account has been suspended. Please contact support for more information.",
    ),
    (RecipientType.REFERRER, "reinstated"): (
        "info",
        "Account Reactivated",
        "Your agent account has been reactivated. You can now access your dashboard.",
    ),
}


def publish_account_status_change(
    notifications: NotificationService,
    recipient_type: RecipientType,
    account_id: int,
    event: str,
    display_name: Optional[str] = None,
    app_name: str = Config.APP_NAME,
) -> Tuple[bool, str, Optional[Notification]]:
    """Send the approval or warning notice that matches an account transition."""
    notification_type, title, template = ACCOUNT_NOTICES[(recipient_type, event)]
    message = template.format(name=display_name or "there", app=app_name)
    return notifications.notify(
        recipient_type,
        account_id,
        notification_type,
        title,
        message,
        metadata={"event": event},
    )
