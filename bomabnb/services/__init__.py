from .notification_service import NotificationService
from .session_resolver import AuthService, SessionResolver
from .account_service import AccountService
from .property_service import PropertyService
from .feature_request_service import FeatureRequestService
from .commission_service import CommissionService
from .booking_service import BookingService
from .review_service import ReviewService
from .support_service import SupportService

# Concurrency helpers
from .inflight import InFlightRegistry
from .status_poller import StatusPoller

__all__ = [
    "NotificationService",
    "AuthService",
    "SessionResolver",
    "AccountService",
    "PropertyService",
    "FeatureRequestService",
    "CommissionService",
    "BookingService",
    "ReviewService",
    "SupportService",
    "InFlightRegistry",
    "StatusPoller",
]
