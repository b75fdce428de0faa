from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from bomabnb.database import get_db
from bomabnb.models import RecipientType
from bomabnb.services.notification_service import NotificationService
from bomabnb.services.session_resolver import Role

from .guards import require_role
from .serializers import json_result


def register_inbox_routes(bp: Blueprint, role: Role, recipient_type: RecipientType) -> None:
    """Notification inbox endpoints for the account behind the resolved session."""

    def _service() -> NotificationService:
        return NotificationService(get_db())

    @bp.route("/notifications", methods=["GET"], endpoint="list_notifications")
    @require_role(role)
    def list_notifications():
        unread_only = request.args.get("unread") in ("1", "true", "yes")
        limit = request.args.get("limit", type=int)
        service = _service()
        account_id = g.access.account_id
        notifications = service.list_for(recipient_type, account_id, unread_only=unread_only, limit=limit)
        return jsonify(
            {
                "notifications": [n.to_dict() for n in notifications],
                "unread_count": service.unread_count(recipient_type, account_id),
            }
        )

    @bp.route("/notifications/<int:notification_id>/read", methods=["POST"], endpoint="read_notification")
    @require_role(role)
    def read_notification(notification_id: int):
        success, message, notification = _service().mark_as_read(recipient_type, g.access.account_id, notification_id)
        return json_result(success, message, notification=notification.to_dict() if notification else None)

    @bp.route("/notifications/read-all", methods=["POST"], endpoint="read_all_notifications")
    @require_role(role)
    def read_all_notifications():
        count = _service().mark_all_as_read(recipient_type, g.access.account_id)
        return json_result(True, f"{count} notifications marked as read", updated=count)

    @bp.route("/notifications/<int:notification_id>", methods=["DELETE"], endpoint="delete_notification")
    @require_role(role)
    def delete_notification(notification_id: int):
        success, message, _ = _service().delete(recipient_type, g.access.account_id, notification_id)
        return json_result(success, message)

    @bp.route("/notifications", methods=["DELETE"], endpoint="clear_notifications")
    @require_role(role)
    def clear_notifications():
        removed = _service().clear(recipient_type, g.access.account_id)
        return json_result(True, "Notifications cleared", removed=removed)
