"""
Session/role resolution.

Turns an authenticated principal into exactly one decision: which dashboard the
session may enter, or why it is refused. Every refusal tears the session down
before the decision is returned, so a denied principal never keeps a live
session behind an error message.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from bomabnb.config import Config
from bomabnb.models import AccountStatus, AppRole, Partner, Referrer, User, UserRole
from bomabnb.observability import increment_counter
from bomabnb.services.results import FailureKind

logger = logging.getLogger(__name__)


class Role(str, Enum):
    ANONYMOUS = "anonymous"
    PARTNER = "partner"
    REFERRER = "referrer"
    ADMIN = "admin"


class Destination(str, Enum):
    HOME = "/"
    AGENT_DASHBOARD = "/agent-dashboard"
    PARTNER_DASHBOARD = "/partner-dashboard"
    ADMIN_DASHBOARD = "/admin"


# Walked in order; the first role the principal holds decides the session.
ROLE_PRIORITY: Tuple[Role, ...] = (Role.REFERRER, Role.PARTNER, Role.ADMIN)

_APP_ROLE_TO_ROLE = {
    AppRole.REFERRER: Role.REFERRER,
    AppRole.PARTNER: Role.PARTNER,
    AppRole.ADMIN: Role.ADMIN,
}

_ACCOUNT_LABEL = {Role.PARTNER: "partner", Role.REFERRER: "agent"}
_DASHBOARD = {Role.PARTNER: Destination.PARTNER_DASHBOARD, Role.REFERRER: Destination.AGENT_DASHBOARD}
_WELCOME = {
    Role.PARTNER: "Welcome to your Partner Dashboard!",
    Role.REFERRER: "Welcome to your Agent Dashboard!",
    Role.ADMIN: "Welcome to Admin Dashboard!",
    Role.ANONYMOUS: "",
}

PENDING_MESSAGE = "Your registration is pending approval. You'll be notified once approved."
REJECTED_MESSAGE = "Your account has been rejected. Contact support for help."
SUSPENDED_MESSAGE = "Your account has been suspended. Contact support for help."
LOOKUP_FAILED_MESSAGE = "Unable to verify account. Please try again."
UNEXPECTED_MESSAGE = "An error occurred during login. Please try again."
INVALID_LOGIN_MESSAGE = "Invalid email or password. Please check your credentials and try again."


@dataclass(frozen=True)
class AccessDecision:
    granted: bool
    role: Role
    destination: Optional[Destination]
    message: str
    failure: Optional[FailureKind] = None
    account_status: Optional[AccountStatus] = None
    account_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "granted": self.granted,
            "role": self.role.value,
            "destination": self.destination.value if self.destination else None,
            "message": self.message,
            "failure": self.failure.value if self.failure else None,
            "account_status": self.account_status.value if self.account_status else None,
            "account_id": self.account_id,
        }


def _denied(role: Role, message: str, failure: FailureKind, **extra) -> AccessDecision:
    return AccessDecision(granted=False, role=role, destination=None, message=message, failure=failure, **extra)


def pick_role(held: Iterable[AppRole]) -> Role:
    held_roles = {_APP_ROLE_TO_ROLE[r] for r in held if r in _APP_ROLE_TO_ROLE}
    for role in ROLE_PRIORITY:
        if role in held_roles:
            return role
    return Role.ANONYMOUS


def decide_access(
    role: Role,
    account_status: Optional[AccountStatus | str],
    account_id: Optional[int] = None,
) -> AccessDecision:
    """Pure decision table for a resolved role and its account status."""
    if role == Role.ADMIN:
        return AccessDecision(True, role, Destination.ADMIN_DASHBOARD, _WELCOME[role])
    if role == Role.ANONYMOUS:
        return AccessDecision(True, role, Destination.HOME, _WELCOME[role])

    if account_status is None:
        return _denied(
            role,
            f"Invalid {_ACCOUNT_LABEL[role]} credentials. Please contact support.",
            FailureKind.DATA_INTEGRITY,
        )

    status = AccountStatus(account_status)
    extra = {"account_status": status, "account_id": account_id}
    if status == AccountStatus.PENDING:
        return _denied(role, PENDING_MESSAGE, FailureKind.AUTHORIZATION, **extra)
    if status == AccountStatus.REJECTED:
        return _denied(role, REJECTED_MESSAGE, FailureKind.AUTHORIZATION, **extra)
    if status == AccountStatus.SUSPENDED:
        return _denied(role, SUSPENDED_MESSAGE, FailureKind.AUTHORIZATION, **extra)
    return AccessDecision(True, role, _DASHBOARD[role], _WELCOME[role], **extra)


def _no_sign_out() -> None:
    return None


class SessionResolver:
    """Resolves a principal to an AccessDecision, signing out on every denial."""

    def __init__(self, db_session: Session, sign_out: Optional[Callable[[], None]] = None) -> None:
        self.db = db_session
        self.sign_out = sign_out or _no_sign_out
        self.logger = logger

    def resolve(self, user_id: Optional[int]) -> AccessDecision:
        if user_id is None:
            return decide_access(Role.ANONYMOUS, None)

        try:
            decision = self._resolve(user_id)
        except Exception:
            self.logger.exception("Unexpected error resolving session for user %s", user_id)
            decision = _denied(Role.ANONYMOUS, UNEXPECTED_MESSAGE, FailureKind.UNEXPECTED)

        if not decision.granted:
            self.logger.warning(
                "Session denied for user %s",
                user_id,
                extra={"role": decision.role.value, "failure": decision.failure.value if decision.failure else None},
            )
            self.sign_out()
        increment_counter(
            "sessions_resolved_total",
            labels={"role": decision.role.value, "outcome": "granted" if decision.granted else "denied"},
        )
        return decision

    def _resolve(self, user_id: int) -> AccessDecision:
        try:
            held = [AppRole(row.role) for row in self.db.query(UserRole).filter(UserRole.userID == user_id).all()]
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Role lookup failed for user %s", user_id)
            return _denied(Role.ANONYMOUS, LOOKUP_FAILED_MESSAGE, FailureKind.REMOTE)

        role = pick_role(held)
        if role not in _ACCOUNT_LABEL:
            return decide_access(role, None)

        model = Partner if role == Role.PARTNER else Referrer
        try:
            account = self.db.query(model).filter(model.userID == user_id).first()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("%s lookup failed for user %s", model.__name__, user_id)
            return _denied(role, LOOKUP_FAILED_MESSAGE, FailureKind.REMOTE)

        if account is None:
            self.logger.error("User %s holds the %s role but has no account row", user_id, role.value)
            return decide_access(role, None)
        account_id = account.partnerID if role == Role.PARTNER else account.referrerID
        return decide_access(role, account.status, account_id)


class AuthService:
    """Credential checks and principal creation; session storage stays with the caller."""

    def __init__(self, db_session: Session, config: type[Config] = Config) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)

    def sign_in(self, email: str, password: str) -> Tuple[bool, str, Optional[User]]:
        if not email or not password:
            return False, "Please fill in all fields", None
        user = self.db.query(User).filter(User.email == email.strip().lower()).first()
        if not user or not check_password_hash(user.passwordHash, password):
            increment_counter("sessions_resolved_total", labels={"role": "anonymous", "outcome": "bad_credentials"})
            self.logger.info("Failed sign-in for %s", email)
            return False, INVALID_LOGIN_MESSAGE, None
        return True, "Signed in", user

    def sign_up(
        self,
        email: str,
        password: str,
        full_name: str,
        phone_number: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[User]]:
        email = (email or "").strip().lower()
        if not email or "@" not in email:
            return False, "A valid email address is required", None
        if not full_name or not full_name.strip():
            return False, "Full name is required", None
        if len(password or "") < self.config.MIN_PASSWORD_LENGTH:
            return False, f"Password must be at least {self.config.MIN_PASSWORD_LENGTH} characters", None
        if self.db.query(User).filter(User.email == email).first():
            return False, "An account with this email already exists", None

        user = User(
            email=email,
            full_name=full_name.strip(),
            passwordHash=generate_password_hash(password),
            phone_number=phone_number,
        )
        try:
            self.db.add(user)
            self.db.flush()
            self.db.add(UserRole(userID=user.userID, role=AppRole.USER))
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False, "An account with this email already exists", None
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to create principal for %s", email)
            return False, "Failed to create account. Please try again.", None

        self.logger.info("Principal %s created", user.userID)
        return True, "Account created", user

    def discard_principal(self, user_id: int) -> None:
        """Remove a principal whose account registration did not go through."""
        user = self.db.get(User, user_id)
        if user is None:
            return
        try:
            self.db.delete(user)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to discard principal %s", user_id)
            raise
        self.logger.info("Principal %s discarded after failed registration", user_id)
