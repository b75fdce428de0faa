from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, jsonify, request, session

from bomabnb.database import get_db
from bomabnb.services.account_service import AccountService
from bomabnb.services.session_resolver import AuthService, SessionResolver

from .guards import current_user_id, resolve_current_session
from .serializers import json_result, serialize_account

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True) or request.form.to_dict()
    return payload if isinstance(payload, dict) else {}


def _text(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    return value if isinstance(value, str) else ""


@auth_bp.route("/login", methods=["POST"])
def login():
    payload = _payload()
    db = get_db()
    success, message, user = AuthService(db).sign_in(_text(payload, "email"), _text(payload, "password"))
    if not success:
        return json_result(False, message, status=401)

    session.clear()
    session["user_id"] = user.userID
    decision = SessionResolver(db, sign_out=session.clear).resolve(user.userID)
    status = 200 if decision.granted else 403
    return jsonify({"success": decision.granted, "message": decision.message, "access": decision.to_dict()}), status


@auth_bp.route("/logout", methods=["POST"])
def logout():
    session.clear()
    return json_result(True, "Signed out")


@auth_bp.route("/session", methods=["GET"])
def current_session():
    was_signed_in = current_user_id() is not None
    decision = resolve_current_session()
    return jsonify(
        {
            "authenticated": was_signed_in and decision.granted,
            "access": decision.to_dict(),
        }
    )


def _create_principal(payload: Dict[str, Any]):
    password = _text(payload, "password")
    if "confirm_password" in payload and _text(payload, "confirm_password") != password:
        return False, "Passwords do not match", None
    return AuthService(get_db()).sign_up(
        email=_text(payload, "email"),
        password=password,
        full_name=_text(payload, "full_name"),
        phone_number=_text(payload, "phone_number") or None,
    )


@auth_bp.route("/register/partner", methods=["POST"])
def register_partner():
    payload = _payload()
    if not _text(payload, "location").strip():
        return json_result(False, "Location is required")
    success, message, user = _create_principal(payload)
    if not success:
        return json_result(False, message)

    referral_code = request.args.get("ref") or payload.get("referral_code")
    success, message, partner = AccountService(get_db()).register_partner(
        user.userID,
        location=_text(payload, "location"),
        business_name=payload.get("business_name"),
        id_passport_number=payload.get("id_passport_number"),
        about=payload.get("about"),
        referral_code=referral_code,
        phone_number=payload.get("phone_number"),
    )
    if not success:
        AuthService(get_db()).discard_principal(user.userID)
        return json_result(False, message)

    # Registration signs the principal in so the pending-approval view can poll
    session.clear()
    session["user_id"] = user.userID
    return json_result(True, message, status=201, account=serialize_account(partner))


@auth_bp.route("/register/agent", methods=["POST"])
def register_agent():
    payload = _payload()
    success, message, user = _create_principal(payload)
    if not success:
        return json_result(False, message)

    success, message, referrer = AccountService(get_db()).register_referrer(
        user.userID,
        business_name=payload.get("business_name"),
        contact_phone=payload.get("phone_number"),
        contact_email=payload.get("email"),
    )
    if not success:
        AuthService(get_db()).discard_principal(user.userID)
        return json_result(False, message)
    session.clear()
    session["user_id"] = user.userID
    return json_result(True, message, status=201, account=serialize_account(referrer))
