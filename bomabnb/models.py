# bomabnb/models.py
from enum import Enum
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    Date,
    DateTime,
    ForeignKey,
    Boolean,
    Text,
    JSON,
    UniqueConstraint,
    Index,
    Enum as SAEnum,
)
from sqlalchemy.orm import relationship

# Use a single, shared Base for all models
# This ensures all models use the same SQLAlchemy metadata, preventing conflicts.
from bomabnb.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class AppRole(str, Enum):
    ADMIN = "admin"
    PARTNER = "partner"
    REFERRER = "referrer"
    USER = "user"


class AccountStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class PropertyType(str, Enum):
    APARTMENT = "apartment"
    COTTAGE = "cottage"
    VILLA = "villa"
    GUESTHOUSE = "guesthouse"
    HOSTEL = "hostel"
    OTHER = "other"


class FeatureRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    CANCELLED = "cancelled"


class CommissionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    REJECTED = "rejected"


class NotificationStatus(str, Enum):
    UNREAD = "unread"
    READ = "read"


class RecipientType(str, Enum):
    PARTNER = "partner"
    REFERRER = "referrer"


class ReportStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


class TicketStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class PaymentMode(str, Enum):
    BANK = "bank"
    MPESA = "mpesa"
    AIRTEL = "airtel"


def _status_column(enum_cls, name: str, default):
    return Column(
        SAEnum(enum_cls, name=name, native_enum=False, validate_strings=True,
               values_callable=lambda members: [m.value for m in members]),
        default=default,
        nullable=False,
    )


class StatusTransitionMixin:
    """Shared guard for models whose lifecycle is an explicit status field."""

    _STATUS_ENUM = None
    _VALID_TRANSITIONS = {}

    def can_transition(self, new_status) -> bool:
        allowed = self._VALID_TRANSITIONS.get(self._STATUS_ENUM(self.status), set())
        return self._STATUS_ENUM(new_status) in allowed

    def transition_to(self, new_status) -> None:
        if not self.can_transition(new_status):
            raise ValueError(
                f"Invalid {self.__tablename__} status transition from "
                f"{self._STATUS_ENUM(self.status).value} to {self._STATUS_ENUM(new_status).value}"
            )
        self.status = self._STATUS_ENUM(new_status)

    @property
    def status_value(self) -> str:
        return self._STATUS_ENUM(self.status).value


class AccountStatusMixin(StatusTransitionMixin):
    # rejected and suspended are terminal; reinstatement is a separate, opt-in path
    _STATUS_ENUM = AccountStatus
    _VALID_TRANSITIONS = {
        AccountStatus.PENDING: {AccountStatus.ACTIVE, AccountStatus.REJECTED},
        AccountStatus.ACTIVE: {AccountStatus.SUSPENDED},
    }

    def reinstate(self) -> None:
        if self._STATUS_ENUM(self.status) != AccountStatus.SUSPENDED:
            raise ValueError(f"Only suspended accounts can be reinstated (current status: {self.status_value})")
        self.status = AccountStatus.ACTIVE

    @property
    def is_active_account(self) -> bool:
        return self._STATUS_ENUM(self.status) == AccountStatus.ACTIVE


class User(Base):
    __tablename__ = 'User'
    userID = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False)
    full_name = Column(String(255), nullable=False)
    _passwordHash = Column('passwordHash', String(255), nullable=False)
    phone_number = Column(String(50))
    whatsapp_number = Column(String(50))
    avatar_url = Column(String(512))
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    roles = relationship("UserRole", back_populates="user", cascade="all, delete-orphan")

    @property
    def passwordHash(self):
        return self._passwordHash

    @passwordHash.setter
    def passwordHash(self, value):
        self._passwordHash = value

    def has_role(self, role: AppRole) -> bool:
        return any(AppRole(r.role) == role for r in self.roles)


class UserRole(Base):
    __tablename__ = 'UserRole'
    __table_args__ = (UniqueConstraint('userID', 'role', name='uq_user_role'),)

    roleID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('User.userID'), nullable=False, index=True)
    role = Column(
        SAEnum(AppRole, name="app_role", native_enum=False, validate_strings=True,
               values_callable=lambda members: [m.value for m in members]),
        nullable=False,
    )
    created_at = Column(DateTime, default=utcnow)

    user = relationship("User", back_populates="roles")


class Partner(AccountStatusMixin, Base):
    __tablename__ = 'Partner'
    partnerID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('User.userID'), unique=True, nullable=False)
    business_name = Column(String(255))
    id_passport_number = Column(String(100))
    location = Column(String(255), nullable=False)
    about = Column(Text)
    show_contacts_publicly = Column(Boolean, default=True, nullable=False)
    status = _status_column(AccountStatus, "partner_status", AccountStatus.PENDING)
    approved_at = Column(DateTime)
    approved_by = Column(Integer, ForeignKey('User.userID'))
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", foreign_keys=[userID])
    properties = relationship("Property", back_populates="partner", cascade="all, delete-orphan")
    referral = relationship("Referral", uselist=False, back_populates="partner")


class Referrer(AccountStatusMixin, Base):
    __tablename__ = 'Referrer'
    referrerID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('User.userID'), unique=True, nullable=False)
    referral_code = Column(String(32), unique=True, nullable=False)
    business_name = Column(String(255))
    contact_phone = Column(String(50))
    contact_email = Column(String(255))
    commission_rate = Column(Numeric(5, 2), default=10.00, nullable=False)
    payment_mode = Column(
        SAEnum(PaymentMode, name="payment_mode", native_enum=False, validate_strings=True,
               values_callable=lambda members: [m.value for m in members]),
    )
    bank_name = Column(String(255))
    bank_branch = Column(String(255))
    account_number = Column(String(100))
    account_name = Column(String(255))
    mobile_money_provider = Column(String(50))
    mobile_money_number = Column(String(50))
    mobile_money_name = Column(String(255))
    status = _status_column(AccountStatus, "referrer_status", AccountStatus.PENDING)
    approved_at = Column(DateTime)
    approved_by = Column(Integer, ForeignKey('User.userID'))
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", foreign_keys=[userID])
    referrals = relationship("Referral", back_populates="referrer", cascade="all, delete-orphan")

    def payout_details(self) -> Dict[str, Optional[str]]:
        mode = PaymentMode(self.payment_mode) if self.payment_mode else None
        if mode == PaymentMode.BANK:
            return {
                "mode": mode.value,
                "bank_name": self.bank_name,
                "bank_branch": self.bank_branch,
                "account_number": self.account_number,
                "account_name": self.account_name,
            }
        if mode in (PaymentMode.MPESA, PaymentMode.AIRTEL):
            return {
                "mode": mode.value,
                "provider": (self.mobile_money_provider or mode.value).upper(),
                "number": self.mobile_money_number,
                "name": self.mobile_money_name,
            }
        return {"mode": None}


class Property(Base):
    __tablename__ = 'Property'
    __table_args__ = (
        Index('ix_property_feature_window', 'feature_start_date', 'feature_end_date'),
    )

    propertyID = Column(Integer, primary_key=True, autoincrement=True)
    partnerID = Column(Integer, ForeignKey('Partner.partnerID'), nullable=False, index=True)
    property_name = Column(String(255), nullable=False)
    property_type = Column(
        SAEnum(PropertyType, name="property_type", native_enum=False, validate_strings=True,
               values_callable=lambda members: [m.value for m in members]),
        nullable=False,
    )
    location = Column(String(255), nullable=False)
    google_maps_link = Column(String(512))
    description = Column(Text)
    price_per_night = Column(Numeric(10, 2), nullable=False)
    number_of_units = Column(Integer, default=1, nullable=False)
    max_guests_per_unit = Column(Integer, nullable=False)
    amenities = Column(JSON, default=list)
    featured_image = Column(String(512), nullable=False)
    contact_phone = Column(String(50))
    contact_email = Column(String(255))
    terms_policies = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)
    is_featured = Column(Boolean, default=False, nullable=False, index=True)
    feature_start_date = Column(DateTime)
    feature_end_date = Column(DateTime)
    last_featured_display = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    partner = relationship("Partner", back_populates="properties")
    images = relationship("PropertyImage", back_populates="property", cascade="all, delete-orphan",
                          order_by="PropertyImage.display_order")
    bookings = relationship("Booking", back_populates="property", cascade="all, delete-orphan")
    reviews = relationship("PropertyReview", back_populates="property", cascade="all, delete-orphan")

    @property
    def capacity(self) -> int:
        return (self.number_of_units or 0) * (self.max_guests_per_unit or 0)

    def set_feature_window(self, start: datetime, end: datetime) -> None:
        if end <= start:
            raise ValueError("feature_end_date must be after feature_start_date")
        self.is_featured = True
        self.feature_start_date = start
        self.feature_end_date = end

    def clear_feature(self) -> None:
        self.is_featured = False

    def is_featured_at(self, moment: datetime) -> bool:
        if not self.is_featured or not self.feature_start_date or not self.feature_end_date:
            return False
        return self.feature_start_date <= moment < self.feature_end_date


class PropertyImage(Base):
    __tablename__ = 'PropertyImage'
    imageID = Column(Integer, primary_key=True, autoincrement=True)
    propertyID = Column(Integer, ForeignKey('Property.propertyID'), nullable=False, index=True)
    image_url = Column(String(512), nullable=False)
    display_order = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    property = relationship("Property", back_populates="images")


class FeatureRequest(StatusTransitionMixin, Base):
    __tablename__ = 'FeatureRequest'
    featureRequestID = Column(Integer, primary_key=True, autoincrement=True)
    propertyID = Column(Integer, ForeignKey('Property.propertyID'), nullable=False, index=True)
    partnerID = Column(Integer, ForeignKey('Partner.partnerID'), nullable=False, index=True)
    duration_days = Column(Integer, nullable=False)
    payment_method = Column(String(50), nullable=False)
    additional_remarks = Column(Text)
    admin_notes = Column(Text)
    status = _status_column(FeatureRequestStatus, "feature_request_status", FeatureRequestStatus.PENDING)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    property = relationship("Property")
    partner = relationship("Partner")

    _STATUS_ENUM = FeatureRequestStatus
    _VALID_TRANSITIONS = {
        FeatureRequestStatus.PENDING: {FeatureRequestStatus.APPROVED, FeatureRequestStatus.REJECTED},
    }


class Booking(StatusTransitionMixin, Base):
    __tablename__ = 'Booking'
    bookingID = Column(Integer, primary_key=True, autoincrement=True)
    propertyID = Column(Integer, ForeignKey('Property.propertyID'), nullable=False, index=True)
    guest_name = Column(String(255), nullable=False)
    guest_email = Column(String(255), nullable=False)
    guest_phone = Column(String(50), nullable=False)
    check_in = Column(Date, nullable=False)
    check_out = Column(Date, nullable=False)
    number_of_guests = Column(Integer, nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    notes = Column(Text)
    status = _status_column(BookingStatus, "booking_status", BookingStatus.PENDING)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    property = relationship("Property", back_populates="bookings")
    commission = relationship("Commission", uselist=False, back_populates="booking")

    _STATUS_ENUM = BookingStatus
    _VALID_TRANSITIONS = {
        BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.DECLINED, BookingStatus.CANCELLED},
    }


class Referral(Base):
    __tablename__ = 'Referral'
    referralID = Column(Integer, primary_key=True, autoincrement=True)
    referrerID = Column(Integer, ForeignKey('Referrer.referrerID'), nullable=False, index=True)
    partnerID = Column(Integer, ForeignKey('Partner.partnerID'), unique=True, nullable=False)
    status = Column(String(20), default='active', nullable=False)
    referred_at = Column(DateTime, default=utcnow)

    referrer = relationship("Referrer", back_populates="referrals")
    partner = relationship("Partner", back_populates="referral")


class Commission(StatusTransitionMixin, Base):
    __tablename__ = 'Commission'
    commissionID = Column(Integer, primary_key=True, autoincrement=True)
    referrerID = Column(Integer, ForeignKey('Referrer.referrerID'), nullable=False, index=True)
    bookingID = Column(Integer, ForeignKey('Booking.bookingID'), unique=True, nullable=False)
    partnerID = Column(Integer, ForeignKey('Partner.partnerID'), nullable=False)
    propertyID = Column(Integer, ForeignKey('Property.propertyID'), nullable=False)
    booking_amount = Column(Numeric(10, 2), nullable=False)
    commission_rate = Column(Numeric(5, 2), nullable=False)
    commission_amount = Column(Numeric(10, 2), nullable=False)
    status = _status_column(CommissionStatus, "commission_status", CommissionStatus.PENDING)
    paid_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)

    booking = relationship("Booking", back_populates="commission")
    referrer = relationship("Referrer")

    _STATUS_ENUM = CommissionStatus
    _VALID_TRANSITIONS = {
        CommissionStatus.PENDING: {CommissionStatus.PROCESSING, CommissionStatus.PAID, CommissionStatus.REJECTED},
        CommissionStatus.PROCESSING: {CommissionStatus.PAID, CommissionStatus.REJECTED},
    }


class AgentPayment(Base):
    __tablename__ = 'AgentPayment'
    agentPaymentID = Column(Integer, primary_key=True, autoincrement=True)
    referrerID = Column(Integer, ForeignKey('Referrer.referrerID'), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(String(50), nullable=False)
    transaction_ref = Column(String(64), unique=True, nullable=False)
    notes = Column(Text)
    processed_by = Column(Integer, ForeignKey('User.userID'))
    created_at = Column(DateTime, default=utcnow)

    referrer = relationship("Referrer")


class PayoutRequest(StatusTransitionMixin, Base):
    __tablename__ = 'PayoutRequest'
    payoutRequestID = Column(Integer, primary_key=True, autoincrement=True)
    referrerID = Column(Integer, ForeignKey('Referrer.referrerID'), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(String(50), nullable=False)
    payment_details = Column(JSON, nullable=False, default=dict)
    status = _status_column(CommissionStatus, "payout_status", CommissionStatus.PENDING)
    processed_by = Column(Integer, ForeignKey('User.userID'))
    processed_at = Column(DateTime)
    notes = Column(Text)
    created_at = Column(DateTime, default=utcnow)

    referrer = relationship("Referrer")

    _STATUS_ENUM = CommissionStatus
    _VALID_TRANSITIONS = {
        CommissionStatus.PENDING: {CommissionStatus.PROCESSING, CommissionStatus.PAID, CommissionStatus.REJECTED},
        CommissionStatus.PROCESSING: {CommissionStatus.PAID, CommissionStatus.REJECTED},
    }


class Notification(Base):
    __tablename__ = 'Notification'
    __table_args__ = (
        Index('ix_notification_recipient', 'recipient_type', 'recipient_id'),
    )

    notificationID = Column(Integer, primary_key=True, autoincrement=True)
    recipient_type = Column(
        SAEnum(RecipientType, name="recipient_type", native_enum=False, validate_strings=True,
               values_callable=lambda members: [m.value for m in members]),
        nullable=False,
    )
    recipient_id = Column(Integer, nullable=False)
    propertyID = Column(Integer, ForeignKey('Property.propertyID'))
    type = Column(String(50), default='system', nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    action_url = Column(String(512))
    status = _status_column(NotificationStatus, "notification_status", NotificationStatus.UNREAD)
    extra_data = Column('metadata', JSON, default=dict)  # 'metadata' is reserved on declarative classes
    created_at = Column(DateTime, default=utcnow)
    read_at = Column(DateTime)

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.notificationID,
            "recipient_type": RecipientType(self.recipient_type).value,
            "recipient_id": self.recipient_id,
            "property_id": self.propertyID,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "action_url": self.action_url,
            "status": NotificationStatus(self.status).value,
            "metadata": self.extra_data or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "read_at": self.read_at.isoformat() if self.read_at else None,
        }


class PropertyReview(Base):
    __tablename__ = 'PropertyReview'
    reviewID = Column(Integer, primary_key=True, autoincrement=True)
    propertyID = Column(Integer, ForeignKey('Property.propertyID'), nullable=False, index=True)
    userID = Column(Integer, ForeignKey('User.userID'), index=True)
    reviewer_name = Column(String(255), nullable=False)
    reviewer_email = Column(String(255))
    rating = Column(Integer, nullable=False)
    review_text = Column(Text)
    device_fingerprint = Column(String(255))
    is_approved = Column(Boolean, default=True, nullable=False)
    is_flagged = Column(Boolean, default=False, nullable=False)
    flagged_reason = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    property = relationship("Property", back_populates="reviews")
    replies = relationship("ReviewReply", back_populates="review", cascade="all, delete-orphan")
    reports = relationship("ReviewReport", back_populates="review", cascade="all, delete-orphan")


class ReviewReply(Base):
    __tablename__ = 'ReviewReply'
    replyID = Column(Integer, primary_key=True, autoincrement=True)
    reviewID = Column(Integer, ForeignKey('PropertyReview.reviewID'), nullable=False, index=True)
    partnerID = Column(Integer, ForeignKey('Partner.partnerID'), nullable=False)
    reply_text = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    review = relationship("PropertyReview", back_populates="replies")


class ReviewReport(StatusTransitionMixin, Base):
    __tablename__ = 'ReviewReport'
    reportID = Column(Integer, primary_key=True, autoincrement=True)
    reviewID = Column(Integer, ForeignKey('PropertyReview.reviewID'), nullable=False, index=True)
    reported_by = Column(Integer, ForeignKey('User.userID'))
    report_reason = Column(Text, nullable=False)
    status = _status_column(ReportStatus, "report_status", ReportStatus.PENDING)
    admin_notes = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    resolved_at = Column(DateTime)

    review = relationship("PropertyReview", back_populates="reports")

    _STATUS_ENUM = ReportStatus
    _VALID_TRANSITIONS = {
        ReportStatus.PENDING: {ReportStatus.RESOLVED},
    }


class SupportTicket(StatusTransitionMixin, Base):
    __tablename__ = 'SupportTicket'
    ticketID = Column(Integer, primary_key=True, autoincrement=True)
    partnerID = Column(Integer, ForeignKey('Partner.partnerID'), nullable=False, index=True)
    subject = Column(String(255), nullable=False)
    category = Column(String(50), default='general', nullable=False)
    priority = Column(String(20), default='medium', nullable=False)
    message = Column(Text, nullable=False)
    admin_response = Column(Text)
    status = _status_column(TicketStatus, "ticket_status", TicketStatus.OPEN)
    created_at = Column(DateTime, default=utcnow)
    last_updated = Column(DateTime, default=utcnow, onupdate=utcnow)

    partner = relationship("Partner")

    _STATUS_ENUM = TicketStatus
    _VALID_TRANSITIONS = {
        TicketStatus.OPEN: {TicketStatus.IN_PROGRESS, TicketStatus.CLOSED},
        TicketStatus.IN_PROGRESS: {TicketStatus.RESOLVED, TicketStatus.CLOSED},
        TicketStatus.RESOLVED: {TicketStatus.CLOSED},
    }
