from __future__ import annotations

import logging
import secrets
import string
from typing import List, Optional, Tuple, Type, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from bomabnb.config import Config
from bomabnb.contact_links import normalize_phone
from bomabnb.models import (
    AccountStatus,
    AppRole,
    Partner,
    PaymentMode,
    RecipientType,
    Referral,
    Referrer,
    User,
    UserRole,
    utcnow,
)
from bomabnb.observability import increment_counter, record_event
from bomabnb.services.inflight import InFlightError, InFlightRegistry, default_registry
from bomabnb.services.notification_service import NotificationService, publish_account_status_change

Account = Union[Partner, Referrer]

_REFERRAL_ALPHABET = string.ascii_uppercase + string.digits
NOT_AUTHORIZED_MESSAGE = "You are not authorized to perform this action"


def user_has_role(db: Session, user_id: Optional[int], role: AppRole) -> bool:
    if user_id is None:
        return False
    return (
        db.query(UserRole.roleID)
        .filter(UserRole.userID == user_id, UserRole.role == role)
        .first()
        is not None
    )


def account_model(kind: RecipientType | str) -> Type[Account]:
    return Partner if RecipientType(kind) == RecipientType.PARTNER else Referrer


def account_id_of(account: Account) -> int:
    return account.partnerID if isinstance(account, Partner) else account.referrerID


class AccountService:
    """Partner and referral-agent registration plus the admin approval lifecycle."""

    def __init__(
        self,
        db_session: Session,
        config: type[Config] = Config,
        notification_service: Optional[NotificationService] = None,
        inflight: Optional[InFlightRegistry] = None,
    ) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.notifications = notification_service or NotificationService(db_session, config=config)
        self.inflight = inflight or default_registry

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def register_partner(
        self,
        user_id: int,
        location: str,
        business_name: Optional[str] = None,
        id_passport_number: Optional[str] = None,
        about: Optional[str] = None,
        referral_code: Optional[str] = None,
        phone_number: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[Partner]]:
        if not location or not location.strip():
            return False, "Location is required", None
        user = self.db.get(User, user_id)
        if not user:
            return False, "User not found", None
        if self.db.query(Partner).filter(Partner.userID == user_id).first():
            return False, "A partner account already exists for this user", None

        partner = Partner(
            userID=user_id,
            business_name=business_name or None,
            id_passport_number=id_passport_number or None,
            location=location.strip(),
            about=about or None,
            status=AccountStatus.PENDING,
        )
        if phone_number:
            user.phone_number = normalize_phone(phone_number)

        referrer = None
        try:
            self.db.add(partner)
            self._grant_role(user_id, AppRole.PARTNER)
            self.db.flush()
            referrer = self._active_referrer_for_code(referral_code)
            if referrer is not None:
                self.db.add(Referral(referrerID=referrer.referrerID, partnerID=partner.partnerID))
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Partner registration failed for user %s", user_id)
            return False, "Failed to register. Please try again.", None

        increment_counter("accounts_registered_total", labels={"kind": "partner"})
        record_event(
            "partner_registered",
            {"partner_id": partner.partnerID, "referred": referrer is not None},
        )
        self.logger.info("Partner %s registered (pending)", partner.partnerID)
        return True, "Registration successful! Your application is pending approval.", partner

    def register_referrer(
        self,
        user_id: int,
        business_name: Optional[str] = None,
        contact_phone: Optional[str] = None,
        contact_email: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[Referrer]]:
        user = self.db.get(User, user_id)
        if not user:
            return False, "User not found", None
        if self.db.query(Referrer).filter(Referrer.userID == user_id).first():
            return False, "An agent account already exists for this user", None

        referrer = Referrer(
            userID=user_id,
            referral_code=self._new_referral_code(),
            business_name=business_name or None,
            contact_phone=normalize_phone(contact_phone) if contact_phone else None,
            contact_email=contact_email or user.email,
            commission_rate=self.config.DEFAULT_AGENT_COMMISSION_PERCENT,
            status=AccountStatus.PENDING,
        )
        try:
            self.db.add(referrer)
            self._grant_role(user_id, AppRole.REFERRER)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False, "Failed to register. Please try again.", None
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Agent registration failed for user %s", user_id)
            return False, "Failed to register. Please try again.", None

        increment_counter("accounts_registered_total", labels={"kind": "referrer"})
        self.logger.info("Referrer %s registered (pending)", referrer.referrerID)
        return True, "Registration successful! Your application is pending approval.", referrer

    def update_payout_details(
        self,
        user_id: int,
        payment_mode: PaymentMode | str,
        **details: Optional[str],
    ) -> Tuple[bool, str, Optional[Referrer]]:
        referrer = self.get_own_account(user_id, RecipientType.REFERRER)
        if not referrer:
            return False, "Agent account not found", None
        mode = PaymentMode(payment_mode)
        if mode == PaymentMode.BANK:
            required = ("bank_name", "account_number", "account_name")
        else:
            required = ("mobile_money_number", "mobile_money_name")
        missing = [name for name in required if not details.get(name)]
        if missing:
            return False, f"Missing payout details: {', '.join(missing)}", None

        referrer.payment_mode = mode
        if mode == PaymentMode.BANK:
            referrer.bank_name = details.get("bank_name")
            referrer.bank_branch = details.get("bank_branch")
            referrer.account_number = details.get("account_number")
            referrer.account_name = details.get("account_name")
        else:
            referrer.mobile_money_provider = mode.value
            referrer.mobile_money_number = normalize_phone(details.get("mobile_money_number"))
            referrer.mobile_money_name = details.get("mobile_money_name")
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to update payout details for referrer %s", referrer.referrerID)
            return False, "Failed to save payout details", None
        return True, "Payout details updated", referrer

    # ------------------------------------------------------------------
    # Admin lifecycle
    # ------------------------------------------------------------------
    def approve(self, admin_id: int, kind: RecipientType | str, account_id: int) -> Tuple[bool, str, Optional[Account]]:
        return self._transition(admin_id, kind, account_id, AccountStatus.ACTIVE, "approved")

    def reject(self, admin_id: int, kind: RecipientType | str, account_id: int) -> Tuple[bool, str, Optional[Account]]:
        return self._transition(admin_id, kind, account_id, AccountStatus.REJECTED, "rejected")

    def suspend(self, admin_id: int, kind: RecipientType | str, account_id: int) -> Tuple[bool, str, Optional[Account]]:
        return self._transition(admin_id, kind, account_id, AccountStatus.SUSPENDED, "suspended")

    def reinstate(self, admin_id: int, kind: RecipientType | str, account_id: int) -> Tuple[bool, str, Optional[Account]]:
        if not self.config.ACCOUNT_REINSTATEMENT_ENABLED:
            return False, "Account reinstatement is disabled", None
        return self._transition(admin_id, kind, account_id, AccountStatus.ACTIVE, "reinstated")

    def delete_referrer(self, admin_id: int, referrer_id: int) -> Tuple[bool, str, None]:
        if not self.is_admin(admin_id):
            return False, NOT_AUTHORIZED_MESSAGE, None
        referrer = self.db.get(Referrer, referrer_id)
        if not referrer:
            return False, "Agent not found", None
        try:
            self.db.query(UserRole).filter(
                UserRole.userID == referrer.userID, UserRole.role == AppRole.REFERRER
            ).delete(synchronize_session=False)
            self.db.delete(referrer)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to delete referrer %s", referrer_id)
            return False, "Failed to delete agent", None
        self.logger.info("Referrer %s deleted by admin %s", referrer_id, admin_id)
        return True, "Agent deleted", None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def list_accounts(
        self,
        actor_id: int,
        kind: RecipientType | str,
        status: Optional[AccountStatus | str] = None,
    ) -> Tuple[bool, str, List[Account]]:
        if not self.is_admin(actor_id):
            return False, NOT_AUTHORIZED_MESSAGE, []
        model = account_model(kind)
        query = self.db.query(model)
        if status:
            query = query.filter(model.status == AccountStatus(status))
        return True, "OK", query.order_by(model.created_at.desc()).all()

    def get_own_account(self, user_id: Optional[int], kind: RecipientType | str) -> Optional[Account]:
        if user_id is None:
            return None
        model = account_model(kind)
        return self.db.query(model).filter(model.userID == user_id).first()

    def get_account_status(self, user_id: Optional[int], kind: RecipientType | str) -> Optional[AccountStatus]:
        account = self.get_own_account(user_id, kind)
        if account is None:
            return None
        self.db.refresh(account)
        return AccountStatus(account.status)

    def is_admin(self, user_id: Optional[int]) -> bool:
        return user_has_role(self.db, user_id, AppRole.ADMIN)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _transition(
        self,
        admin_id: int,
        kind: RecipientType | str,
        account_id: int,
        target: AccountStatus,
        event: str,
    ) -> Tuple[bool, str, Optional[Account]]:
        if not self.is_admin(admin_id):
            return False, NOT_AUTHORIZED_MESSAGE, None
        kind = RecipientType(kind)
        model = account_model(kind)
        try:
            with self.inflight.claim((kind.value, account_id)):
                account = self.db.get(model, account_id)
                if not account:
                    return False, "Account not found", None
                old_status = account.status_value
                try:
                    if event == "reinstated":
                        account.reinstate()
                    else:
                        account.transition_to(target)
                except ValueError as exc:
                    return False, str(exc), None
                if target == AccountStatus.ACTIVE and event == "approved":
                    account.approved_at = utcnow()
                    account.approved_by = admin_id
                try:
                    self.db.commit()
                except SQLAlchemyError:
                    self.db.rollback()
                    self.logger.exception("Failed to move %s %s to %s", kind.value, account_id, target.value)
                    return False, "Failed to update account. Please try again.", None
        except InFlightError as exc:
            return False, str(exc), None

        increment_counter("status_transitions_total", labels={"entity": kind.value, "to_status": target.value})
        self.logger.info(
            "%s %s moved from %s to %s by admin %s", kind.value, account_id, old_status, target.value, admin_id
        )
        # the transition is committed; a failed notice is logged, never raised
        try:
            ok, _, _ = publish_account_status_change(
                self.notifications,
                kind,
                account_id,
                event,
                display_name=self._display_name(account),
                app_name=self.config.APP_NAME,
            )
        except Exception:
            self.logger.exception("Notice for %s %s %s raised", kind.value, account_id, event)
            ok = False
        if not ok:
            self.logger.error("Account %s %s %s but the notification was not delivered", kind.value, account_id, event)
        return True, f"Account {event}", account

    def _display_name(self, account: Account) -> Optional[str]:
        if account.business_name:
            return account.business_name
        user = self.db.get(User, account.userID)
        return user.full_name if user else None

    def _grant_role(self, user_id: int, role: AppRole) -> None:
        if not user_has_role(self.db, user_id, role):
            self.db.add(UserRole(userID=user_id, role=role))

    def _active_referrer_for_code(self, referral_code: Optional[str]) -> Optional[Referrer]:
        if not referral_code:
            return None
        referrer = (
            self.db.query(Referrer)
            .filter(Referrer.referral_code == referral_code.strip().upper())
            .first()
        )
        if referrer is None or not referrer.is_active_account:
            self.logger.info("Ignoring referral code %s (unknown or inactive agent)", referral_code)
            return None
        return referrer

    def _new_referral_code(self) -> str:
        while True:
            code = "BOMA" + "".join(secrets.choice(_REFERRAL_ALPHABET) for _ in range(6))
            if not self.db.query(Referrer.referrerID).filter(Referrer.referral_code == code).first():
                return code


def referral_link(base_url: str, referrer: Referrer) -> str:
    return f"{base_url.rstrip('/')}/partner-register?ref={referrer.referral_code}"
