from __future__ import annotations

from functools import wraps
from typing import Any, Callable

from flask import g, jsonify, session

from bomabnb.database import get_db
from bomabnb.services.session_resolver import Role, SessionResolver


def current_user_id():
    return session.get("user_id")


def resolve_current_session():
    """Run the resolver for the cookie session; a denial clears the session."""
    return SessionResolver(get_db(), sign_out=session.clear).resolve(current_user_id())


def require_login(view: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(view)
    def wrapper(*args, **kwargs):
        if current_user_id() is None:
            return jsonify({"success": False, "message": "Not authenticated"}), 401
        return view(*args, **kwargs)

    return wrapper


def require_role(role: Role) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Re-resolve the session on every request and admit only ``role``."""

    def decorator(view: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view)
        def wrapper(*args, **kwargs):
            if current_user_id() is None:
                return jsonify({"success": False, "message": "Not authenticated"}), 401
            decision = resolve_current_session()
            if not decision.granted:
                payload = {"success": False, "message": decision.message, "access": decision.to_dict()}
                return jsonify(payload), 401
            if decision.role != role:
                return jsonify({"success": False, "message": "Forbidden"}), 403
            g.access = decision
            return view(*args, **kwargs)

        return wrapper

    return decorator
