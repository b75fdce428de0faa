from __future__ import annotations

from bomabnb.models import (
    AccountStatus,
    AppRole,
    Notification,
    Partner,
    PaymentMode,
    RecipientType,
    Referral,
    Referrer,
)
from bomabnb.services.account_service import NOT_AUTHORIZED_MESSAGE, AccountService, referral_link
from bomabnb.services.inflight import ALREADY_PROCESSING_MESSAGE
from bomabnb.services.session_resolver import Role, SessionResolver

from conftest import StubConfig, make_partner, make_referrer, make_user


class _ReinstateConfig(StubConfig):
    ACCOUNT_REINSTATEMENT_ENABLED = True


class _FailingNotifications:
    def notify(self, *args, **kwargs):
        return False, "Failed to create notification", None


class _BrokenNotifications:
    def notify(self, *args, **kwargs):
        raise RuntimeError("notification store unavailable")


def _service(db_session, inflight, config=StubConfig, **kwargs):
    return AccountService(db_session, config=config, inflight=inflight, **kwargs)


def _inbox(db_session, recipient_type, recipient_id):
    return (
        db_session.query(Notification)
        .filter(Notification.recipient_type == recipient_type, Notification.recipient_id == recipient_id)
        .all()
    )


def test_register_partner_starts_pending_and_links_active_referrer(db_session, inflight, referrer):
    user = make_user(db_session)
    success, message, partner = _service(db_session, inflight).register_partner(
        user.userID,
        location="Malindi",
        business_name="Sunset Homes",
        referral_code=referrer.referral_code.lower(),
        phone_number="0722000111",
    )

    assert success is True
    assert message == "Registration successful! Your application is pending approval."
    assert partner.status == AccountStatus.PENDING
    assert user.has_role(AppRole.PARTNER)
    assert user.phone_number == "+254722000111"
    referral = db_session.query(Referral).filter_by(partnerID=partner.partnerID).one()
    assert referral.referrerID == referrer.referrerID


def test_register_partner_ignores_inactive_or_unknown_referral_codes(db_session, inflight):
    pending_agent = make_referrer(db_session, status=AccountStatus.PENDING)
    service = _service(db_session, inflight)

    _, _, first = service.register_partner(make_user(db_session).userID, "Lamu", referral_code=pending_agent.referral_code)
    _, _, second = service.register_partner(make_user(db_session).userID, "Lamu", referral_code="BOMANOPE00")

    assert db_session.query(Referral).count() == 0
    assert first.status == AccountStatus.PENDING
    assert second.status == AccountStatus.PENDING


def test_register_partner_requires_location_and_single_account(db_session, inflight, partner):
    service = _service(db_session, inflight)
    assert service.register_partner(make_user(db_session).userID, "  ")[1] == "Location is required"
    assert service.register_partner(partner.userID, "Diani")[1] == "A partner account already exists for this user"


def test_register_referrer_generates_code_and_default_rate(db_session, inflight):
    user = make_user(db_session)
    success, _, referrer = _service(db_session, inflight).register_referrer(user.userID, business_name="Scouts")

    assert success is True
    assert referrer.referral_code.startswith("BOMA")
    assert len(referrer.referral_code) == 10
    assert float(referrer.commission_rate) == 10.0
    assert referrer.contact_email == user.email
    assert referrer.status == AccountStatus.PENDING


def test_approve_activates_partner_and_notifies(db_session, inflight, admin):
    partner = make_partner(db_session, status=AccountStatus.PENDING)
    success, message, account = _service(db_session, inflight).approve(admin.userID, "partner", partner.partnerID)

    assert success is True
    assert message == "Account approved"
    assert account.status == AccountStatus.ACTIVE
    assert account.approved_by == admin.userID
    assert account.approved_at is not None

    notices = _inbox(db_session, RecipientType.PARTNER, partner.partnerID)
    assert [n.title for n in notices] == ["Account Approved!"]
    assert "Coastal Stays" in notices[0].message


def test_approved_partner_resolves_to_dashboard_on_next_sign_in(db_session, inflight, admin):
    partner = make_partner(db_session, status=AccountStatus.PENDING)
    resolver = SessionResolver(db_session)
    assert resolver.resolve(partner.userID).granted is False

    _service(db_session, inflight).approve(admin.userID, RecipientType.PARTNER, partner.partnerID)

    decision = resolver.resolve(partner.userID)
    assert decision.granted is True
    assert decision.role == Role.PARTNER


def test_reject_and_suspend_referrer(db_session, inflight, admin):
    pending = make_referrer(db_session, status=AccountStatus.PENDING)
    active = make_referrer(db_session)
    service = _service(db_session, inflight)

    assert service.reject(admin.userID, "referrer", pending.referrerID)[0] is True
    assert service.suspend(admin.userID, "referrer", active.referrerID)[0] is True
    assert db_session.get(Referrer, pending.referrerID).status == AccountStatus.REJECTED
    assert db_session.get(Referrer, active.referrerID).status == AccountStatus.SUSPENDED
    titles = [n.title for n in _inbox(db_session, RecipientType.REFERRER, active.referrerID)]
    assert titles == ["Account Suspended"]


def test_invalid_transitions_are_refused(db_session, inflight, admin):
    rejected = make_partner(db_session, status=AccountStatus.REJECTED)
    pending = make_partner(db_session, status=AccountStatus.PENDING)
    service = _service(db_session, inflight)

    success, message, _ = service.approve(admin.userID, "partner", rejected.partnerID)
    assert success is False
    assert "rejected to active" in message

    assert service.suspend(admin.userID, "partner", pending.partnerID)[0] is False
    assert db_session.get(Partner, pending.partnerID).status == AccountStatus.PENDING


def test_reinstatement_is_disabled_by_default(db_session, inflight, admin):
    suspended = make_partner(db_session, status=AccountStatus.SUSPENDED)
    success, message, _ = _service(db_session, inflight).reinstate(admin.userID, "partner", suspended.partnerID)

    assert success is False
    assert message == "Account reinstatement is disabled"
    assert db_session.get(Partner, suspended.partnerID).status == AccountStatus.SUSPENDED


def test_reinstatement_when_enabled_only_from_suspended(db_session, inflight, admin):
    suspended = make_partner(db_session, status=AccountStatus.SUSPENDED)
    pending = make_partner(db_session, status=AccountStatus.PENDING)
    service = _service(db_session, inflight, config=_ReinstateConfig)

    assert service.reinstate(admin.userID, "partner", suspended.partnerID)[0] is True
    assert db_session.get(Partner, suspended.partnerID).status == AccountStatus.ACTIVE
    assert service.reinstate(admin.userID, "partner", pending.partnerID)[0] is False
    titles = [n.title for n in _inbox(db_session, RecipientType.PARTNER, suspended.partnerID)]
    assert titles == ["Account Reactivated!"]


def test_non_admin_cannot_change_status(db_session, inflight, partner):
    pending = make_partner(db_session, status=AccountStatus.PENDING)
    success, message, _ = _service(db_session, inflight).approve(partner.userID, "partner", pending.partnerID)

    assert success is False
    assert message == NOT_AUTHORIZED_MESSAGE
    assert db_session.get(Partner, pending.partnerID).status == AccountStatus.PENDING


def test_in_flight_action_is_rejected(db_session, inflight, admin):
    pending = make_partner(db_session, status=AccountStatus.PENDING)
    service = _service(db_session, inflight)

    with inflight.claim(("partner", pending.partnerID)):
        success, message, _ = service.approve(admin.userID, "partner", pending.partnerID)

    assert success is False
    assert message == ALREADY_PROCESSING_MESSAGE
    assert db_session.get(Partner, pending.partnerID).status == AccountStatus.PENDING


def test_notification_failure_does_not_undo_approval(db_session, inflight, admin):
    pending = make_partner(db_session, status=AccountStatus.PENDING)
    service = _service(db_session, inflight, notification_service=_FailingNotifications())

    success, _, account = service.approve(admin.userID, "partner", pending.partnerID)

    assert success is True
    assert account.status == AccountStatus.ACTIVE

def test_raising_notifier_still_reports_committed_approval(db_session, inflight, admin):
    pending = make_partner(db_session, status=AccountStatus.PENDING)
    service = _service(db_session, inflight, notification_service=_BrokenNotifications())

    success, message, account = service.approve(admin.userID, "partner", pending.partnerID)

    assert success is True
    assert message == "Account approved"
    assert db_session.get(Partner, pending.partnerID).status == AccountStatus.ACTIVE


def test_list_accounts_filters_by_status_for_admins_only(db_session, inflight, admin, partner):
    make_partner(db_session, status=AccountStatus.PENDING)
    service = _service(db_session, inflight)

    success, _, pending = service.list_accounts(admin.userID, "partner", status="pending")
    assert success is True
    assert [p.status for p in pending] == [AccountStatus.PENDING]
    assert service.list_accounts(partner.userID, "partner")[1] == NOT_AUTHORIZED_MESSAGE


def test_get_account_status_reads_fresh_value(db_session, inflight):
    partner = make_partner(db_session, status=AccountStatus.PENDING)
    service = _service(db_session, inflight)
    assert service.get_account_status(partner.userID, "partner") == AccountStatus.PENDING
    assert service.get_account_status(None, "partner") is None


def test_delete_referrer_removes_role(db_session, inflight, admin):
    referrer = make_referrer(db_session)
    user_id = referrer.userID
    success, _, _ = _service(db_session, inflight).delete_referrer(admin.userID, referrer.referrerID)

    assert success is True
    assert db_session.query(Referrer).filter_by(userID=user_id).first() is None
    assert SessionResolver(db_session).resolve(user_id).role == Role.ANONYMOUS


def test_update_payout_details_validates_by_mode(db_session, inflight, referrer):
    service = _service(db_session, inflight)

    success, message, _ = service.update_payout_details(referrer.userID, "bank", bank_name="KCB")
    assert success is False
    assert message == "Missing payout details: account_number, account_name"

    success, _, updated = service.update_payout_details(
        referrer.userID, PaymentMode.MPESA, mobile_money_number="0711222333", mobile_money_name="Jane Agent"
    )
    assert success is True
    assert updated.payout_details() == {
        "mode": "mpesa",
        "provider": "MPESA",
        "number": "+254711222333",
        "name": "Jane Agent",
    }


def test_referral_link_points_at_partner_registration(referrer):
    link = referral_link("https://bomabnb.example/", referrer)
    assert link == f"https://bomabnb.example/partner-register?ref={referrer.referral_code}"
