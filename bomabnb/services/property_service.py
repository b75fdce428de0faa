from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

import bleach
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bomabnb.config import Config
from bomabnb.contact_links import normalize_phone
from bomabnb.models import (
    AccountStatus,
    Notification,
    Property,
    PropertyImage,
    PropertyType,
    RecipientType,
    as_naive_utc,
    utcnow,
)
from bomabnb.observability import increment_counter, record_event
from bomabnb.services.account_service import NOT_AUTHORIZED_MESSAGE, AccountService
from bomabnb.services.inflight import InFlightError, InFlightRegistry, default_registry
from bomabnb.services.notification_service import NotificationService

# Partners may change listing content; visibility and featuring belong to admins.
EDITABLE_FIELDS = frozenset(
    {
        "property_name",
        "property_type",
        "location",
        "google_maps_link",
        "description",
        "price_per_night",
        "number_of_units",
        "max_guests_per_unit",
        "amenities",
        "featured_image",
        "contact_phone",
        "contact_email",
        "terms_policies",
    }
)
PROTECTED_FIELDS = frozenset(
    {"is_active", "is_featured", "feature_start_date", "feature_end_date", "last_featured_display", "partnerID"}
)
EXPIRY_WARNING_DAYS = 3


class PropertyService:
    """Listing lifecycle: creation by active partners, admin visibility and featured windows."""

    def __init__(
        self,
        db_session: Session,
        config: type[Config] = Config,
        notification_service: Optional[NotificationService] = None,
        account_service: Optional[AccountService] = None,
        inflight: Optional[InFlightRegistry] = None,
    ) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.notifications = notification_service or NotificationService(db_session, config=config)
        self.accounts = account_service or AccountService(
            db_session, config=config, notification_service=self.notifications
        )
        self.inflight = inflight or default_registry

    # ------------------------------------------------------------------
    # Partner flows
    # ------------------------------------------------------------------
    def create_property(self, user_id: int, fields: Dict[str, Any]) -> Tuple[bool, str, Optional[Property]]:
        partner = self.accounts.get_own_account(user_id, RecipientType.PARTNER)
        if not partner:
            return False, "Partner account not found", None
        if AccountStatus(partner.status) != AccountStatus.ACTIVE:
            return False, "Only approved partners can list properties", None

        fields = dict(fields)
        images = fields.pop("images", None) or []
        for required in (
            "property_name", "property_type", "location", "featured_image", "price_per_night", "max_guests_per_unit"
        ):
            if fields.get(required) in (None, ""):
                return False, f"{required.replace('_', ' ').capitalize()} is required", None
        fields.setdefault("number_of_units", 1)

        ok, message, cleaned = self._clean_fields(fields)
        if not ok:
            return False, message, None

        listing = Property(partnerID=partner.partnerID, is_active=True, is_featured=False, **cleaned)
        for position, url in enumerate(u for u in images if isinstance(u, str) and u.strip()):
            listing.images.append(PropertyImage(image_url=url.strip(), display_order=position))
        try:
            self.db.add(listing)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to create property for partner %s", partner.partnerID)
            return False, "Failed to create property", None

        increment_counter("properties_created_total")
        self.logger.info("Property %s created by partner %s", listing.propertyID, partner.partnerID)
        return True, "Property listed successfully", listing

    def update_property(self, user_id: int, property_id: int, fields: Dict[str, Any]) -> Tuple[bool, str, Optional[Property]]:
        listing, error = self._owned_property(user_id, property_id)
        if error:
            return False, error, None

        protected = PROTECTED_FIELDS.intersection(fields)
        if protected:
            return False, f"Cannot change {', '.join(sorted(protected))}", None
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            return False, f"Unknown fields: {', '.join(sorted(unknown))}", None

        ok, message, cleaned = self._clean_fields(fields)
        if not ok:
            return False, message, None
        for name, value in cleaned.items():
            setattr(listing, name, value)
        if not self._commit(f"update property {property_id}"):
            return False, "Failed to update property", None
        return True, "Property updated", listing

    # ------------------------------------------------------------------
    # Admin flows
    # ------------------------------------------------------------------
    def set_active(self, admin_id: int, property_id: int, active: bool) -> Tuple[bool, str, Optional[Property]]:
        if not self.accounts.is_admin(admin_id):
            return False, NOT_AUTHORIZED_MESSAGE, None
        listing = self.db.get(Property, property_id)
        if not listing:
            return False, "Property not found", None
        listing.is_active = bool(active)
        if not self._commit(f"toggle property {property_id}"):
            return False, "Failed to update property", None
        increment_counter(
            "status_transitions_total",
            labels={"entity": "property", "to_status": "active" if active else "inactive"},
        )
        self.logger.info("Property %s %s by admin %s", property_id, "activated" if active else "deactivated", admin_id)
        return True, "Property activated" if active else "Property deactivated", listing

    def force_feature(
        self,
        admin_id: int,
        property_id: int,
        duration_days: int,
        now: Optional[datetime] = None,
    ) -> Tuple[bool, str, Optional[Property]]:
        if not self.accounts.is_admin(admin_id):
            return False, NOT_AUTHORIZED_MESSAGE, None
        if not isinstance(duration_days, int) or duration_days < 1:
            return False, "Duration must be at least one day", None
        start = as_naive_utc(now) if now else utcnow()

        try:
            with self.inflight.claim(("property", property_id)):
                listing = self.db.get(Property, property_id)
                if not listing:
                    return False, "Property not found", None
                listing.set_feature_window(start, start + timedelta(days=duration_days))
                if not self._commit(f"feature property {property_id}"):
                    return False, "Failed to feature property", None
        except InFlightError as exc:
            return False, str(exc), None

        increment_counter("status_transitions_total", labels={"entity": "property", "to_status": "featured"})
        self._notify_partner(
            listing,
            "feature_approved",
            "Property Featured by Admin",
            f'Your property "{listing.property_name}" has been featured by the admin for {duration_days} days. '
            "It will appear at the top of search results.",
        )
        return True, f"Property featured for {duration_days} days", listing

    def extend_feature(
        self,
        admin_id: int,
        property_id: int,
        additional_days: int,
    ) -> Tuple[bool, str, Optional[Property]]:
        if not self.accounts.is_admin(admin_id):
            return False, NOT_AUTHORIZED_MESSAGE, None
        if not isinstance(additional_days, int) or additional_days < 1:
            return False, "Extension must be at least one day", None

        try:
            with self.inflight.claim(("property", property_id)):
                listing = self.db.get(Property, property_id)
                if not listing:
                    return False, "Property not found", None
                if not listing.is_featured or not listing.feature_end_date:
                    return False, "Only featured properties can be extended", None
                listing.feature_end_date = listing.feature_end_date + timedelta(days=additional_days)
                if not self._commit(f"extend feature on property {property_id}"):
                    return False, "Failed to extend featured period", None
        except InFlightError as exc:
            return False, str(exc), None

        self._notify_partner(
            listing,
            "feature_extended",
            "Featured Period Extended",
            f'The featured period for "{listing.property_name}" has been extended by {additional_days} days by the admin.',
        )
        return True, f"Featured period extended by {additional_days} days", listing

    def remove_feature(self, admin_id: int, property_id: int) -> Tuple[bool, str, Optional[Property]]:
        if not self.accounts.is_admin(admin_id):
            return False, NOT_AUTHORIZED_MESSAGE, None
        listing = self.db.get(Property, property_id)
        if not listing:
            return False, "Property not found", None
        if not listing.is_featured:
            return False, "Property is not featured", None
        listing.clear_feature()
        if not self._commit(f"unfeature property {property_id}"):
            return False, "Failed to remove feature", None
        increment_counter("status_transitions_total", labels={"entity": "property", "to_status": "unfeatured"})
        return True, "Property removed from featured", listing

    # ------------------------------------------------------------------
    # Featured housekeeping
    # ------------------------------------------------------------------
    def expire_features(self, now: Optional[datetime] = None) -> List[Property]:
        """Unfeature every listing whose window has ended and tell its partner."""
        now = as_naive_utc(now) if now else utcnow()
        expired = (
            self.db.query(Property)
            .filter(Property.is_featured.is_(True))
            .filter(Property.feature_end_date.isnot(None))
            .filter(Property.feature_end_date <= now)
            .all()
        )
        if not expired:
            return []
        for listing in expired:
            listing.clear_feature()
        if not self._commit("expire featured properties"):
            return []

        increment_counter("featured_expired_total", amount=len(expired))
        for listing in expired:
            self._notify_partner(
                listing,
                "feature_expired",
                "Featured Property Expired",
                f'Your featured property "{listing.property_name}" has expired. It\'s no longer featured but '
                "remains active in regular listings. You can request to feature it again anytime.",
            )
        self.logger.info("Expired %d featured properties", len(expired))
        return expired

    def warn_expiring(self, now: Optional[datetime] = None, within_days: int = EXPIRY_WARNING_DAYS) -> List[Property]:
        """One 'expiring soon' notice per listing whose window closes within ``within_days``."""
        now = as_naive_utc(now) if now else utcnow()
        horizon = now + timedelta(days=within_days)
        expiring = (
            self.db.query(Property)
            .filter(Property.is_featured.is_(True))
            .filter(Property.feature_end_date > now)
            .filter(Property.feature_end_date <= horizon)
            .all()
        )
        warned: List[Property] = []
        for listing in expiring:
            window_end = listing.feature_end_date.isoformat()
            earlier = (
                self.db.query(Notification.extra_data)
                .filter(
                    Notification.recipient_type == RecipientType.PARTNER,
                    Notification.recipient_id == listing.partnerID,
                    Notification.type == "feature_expiring",
                    Notification.propertyID == listing.propertyID,
                )
                .all()
            )
            if any((extra or {}).get("feature_end_date") == window_end for (extra,) in earlier):
                continue
            remaining = listing.feature_end_date - now
            days_left = max(1, remaining.days + (1 if remaining.seconds or remaining.microseconds else 0))
            self._notify_partner(
                listing,
                "feature_expiring",
                "Featured Property Expiring Soon",
                f'Your featured property "{listing.property_name}" will expire in {days_left} '
                f"day{'s' if days_left > 1 else ''}. Consider extending the feature period to maintain visibility.",
                metadata={"feature_end_date": window_end},
            )
            warned.append(listing)
        return warned

    def featured_rotation(self, limit: Optional[int] = None, now: Optional[datetime] = None) -> List[Property]:
        """Least-recently shown featured listings first; stamps what it returns."""
        now = as_naive_utc(now) if now else utcnow()
        limit = limit or self.config.FEATURED_ROTATION_SIZE
        rotation = (
            self.db.query(Property)
            .filter(Property.is_active.is_(True))
            .filter(Property.is_featured.is_(True))
            .filter(Property.feature_start_date <= now)
            .filter(Property.feature_end_date > now)
            .order_by(
                Property.last_featured_display.is_(None).desc(),
                Property.last_featured_display.asc(),
                Property.propertyID.asc(),
            )
            .limit(limit)
            .all()
        )
        for listing in rotation:
            listing.last_featured_display = now
        if rotation:
            self._commit("stamp featured rotation")
        return rotation

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def list_public(
        self,
        location: Optional[str] = None,
        property_type: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[Property]:
        query = self.db.query(Property).filter(Property.is_active.is_(True))
        if location:
            query = query.filter(Property.location.ilike(f"%{location.strip()}%"))
        if property_type:
            query = query.filter(Property.property_type == PropertyType(property_type))
        if search:
            query = query.filter(Property.property_name.ilike(f"%{search.strip()}%"))
        return query.order_by(Property.is_featured.desc(), Property.created_at.desc()).all()

    def get_public(self, property_id: int) -> Optional[Property]:
        listing = self.db.get(Property, property_id)
        if not listing or not listing.is_active:
            return None
        return listing

    def list_for_partner(self, user_id: int) -> List[Property]:
        partner = self.accounts.get_own_account(user_id, RecipientType.PARTNER)
        if not partner:
            return []
        return (
            self.db.query(Property)
            .filter(Property.partnerID == partner.partnerID)
            .order_by(Property.created_at.desc())
            .all()
        )

    def list_all(self, admin_id: int) -> Tuple[bool, str, List[Property]]:
        if not self.accounts.is_admin(admin_id):
            return False, NOT_AUTHORIZED_MESSAGE, []
        return True, "OK", self.db.query(Property).order_by(Property.created_at.desc()).all()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _owned_property(self, user_id: int, property_id: int) -> Tuple[Optional[Property], Optional[str]]:
        partner = self.accounts.get_own_account(user_id, RecipientType.PARTNER)
        if not partner:
            return None, "Partner account not found"
        listing = self.db.get(Property, property_id)
        if not listing or listing.partnerID != partner.partnerID:
            return None, "Property not found"
        return listing, None

    def _clean_fields(self, fields: Dict[str, Any]) -> Tuple[bool, str, Dict[str, Any]]:
        cleaned: Dict[str, Any] = {}
        for name, value in fields.items():
            if name not in EDITABLE_FIELDS:
                return False, f"Unknown field: {name}", {}
            cleaned[name] = value

        if "property_type" in cleaned:
            try:
                cleaned["property_type"] = PropertyType(cleaned["property_type"])
            except ValueError:
                return False, "Invalid property type", {}
        if "price_per_night" in cleaned:
            try:
                price = Decimal(str(cleaned["price_per_night"]))
            except (InvalidOperation, ValueError):
                return False, "Price per night must be a number", {}
            if price <= 0:
                return False, "Price per night must be greater than zero", {}
            cleaned["price_per_night"] = price
        for count_field in ("number_of_units", "max_guests_per_unit"):
            if count_field in cleaned:
                try:
                    count = int(cleaned[count_field])
                except (TypeError, ValueError):
                    return False, f"{count_field.replace('_', ' ').capitalize()} must be a whole number", {}
                if count < 1:
                    return False, f"{count_field.replace('_', ' ').capitalize()} must be at least 1", {}
                cleaned[count_field] = count
        if "amenities" in cleaned:
            amenities = cleaned["amenities"] or []
            if not isinstance(amenities, list) or not all(isinstance(a, str) and a.strip() for a in amenities):
                return False, "Amenities must be a list of names", {}
            cleaned["amenities"] = [a.strip() for a in amenities]
        if cleaned.get("contact_phone"):
            cleaned["contact_phone"] = normalize_phone(cleaned["contact_phone"])
        for text_field in ("property_name", "location"):
            if text_field in cleaned:
                if not isinstance(cleaned[text_field], str) or not cleaned[text_field].strip():
                    return False, f"{text_field.replace('_', ' ').capitalize()} is required", {}
                cleaned[text_field] = cleaned[text_field].strip()
        for free_text in ("description", "terms_policies"):
            if cleaned.get(free_text):
                cleaned[free_text] = bleach.clean(str(cleaned[free_text]), tags=[], strip=True).strip() or None
        return True, "OK", cleaned

    def _notify_partner(
        self,
        listing: Property,
        notification_type: str,
        title: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        ok, _, _ = self.notifications.notify(
            RecipientType.PARTNER,
            listing.partnerID,
            notification_type,
            title,
            message,
            property_id=listing.propertyID,
            metadata=metadata,
        )
        if not ok:
            self.logger.error("Property %s changed but partner %s was not notified", listing.propertyID, listing.partnerID)
        record_event(notification_type, {"property_id": listing.propertyID, "delivered": ok})
        return ok

    def _commit(self, action: str) -> bool:
        try:
            self.db.commit()
            return True
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to %s", action)
            return False
