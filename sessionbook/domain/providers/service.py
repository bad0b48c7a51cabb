"""Provider settings - profile, rates and booking window"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...errors import NotFoundError, PersistenceError
from ...models import User
from ...shared.civil_time import iso_z, utcnow
from ..availability.materializer import materialize_provider_slots
from .schemas import ProviderProfile, ProviderSettings, ProviderSettingsUpdate

logger = logging.getLogger(__name__)

# Request field -> User column
_FIELD_MAP = {
    "displayName": "display_name",
    "timezone": "timezone",
    "rate15Cents": "rate_15_cents",
    "rate30Cents": "rate_30_cents",
    "rate60Cents": "rate_60_cents",
    "minAdvanceHours": "min_advance_hours",
    "maxAdvanceDays": "max_advance_days",
    "payoutAccountId": "payout_account_id",
    "languages": "languages",
    "specialties": "specialties",
    "bio": "bio",
}


class ProviderService:
    def __init__(self, db: Session, now_fn: Callable[[], datetime] = utcnow):
        self.db = db
        self.now_fn = now_fn

    @staticmethod
    def to_settings(user: User) -> ProviderSettings:
        return ProviderSettings(
            displayName=user.display_name,
            timezone=user.timezone,
            rate15Cents=user.rate_for(15),
            rate30Cents=user.rate_for(30),
            rate60Cents=user.rate_for(60),
            minAdvanceHours=user.min_advance_hours,
            maxAdvanceDays=user.max_advance_days,
            payoutConfigured=bool(user.payout_account_id),
            cancelledSessions=user.cancelled_sessions or 0,
            lastWarningAt=iso_z(user.last_warning_at) if user.last_warning_at else None,
            languages=user.language_list,
            specialties=user.specialty_list,
            bio=user.bio,
        )

    def update_settings(self, user: User, data: ProviderSettingsUpdate) -> tuple[User, Optional[int]]:
        """
        Apply a partial settings update. A timezone change rebuilds the
        provider's slots; that rebuild is best-effort and never undoes the save.
        """
        changes = data.model_dump(exclude_unset=True)
        timezone_changed = "timezone" in changes and changes["timezone"] != user.timezone

        for field, column in _FIELD_MAP.items():
            if field in changes:
                setattr(user, column, changes[field])
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to update settings for provider {user.id}: {e}")
            raise PersistenceError("Could not save settings")
        self.db.refresh(user)
        logger.info(f"✅ Settings updated for provider {user.id}: {sorted(changes)}")

        slots_created = None
        if timezone_changed:
            try:
                slots_created = materialize_provider_slots(self.db, user, now=self.now_fn())
            except Exception as e:
                logger.error(f"❌ Slot rebuild after timezone change failed for provider {user.id}: {e}")
        return user, slots_created

    def get_public_profile(self, provider_id: int) -> ProviderProfile:
        user = self.db.query(User).filter(User.id == provider_id).first()
        if not user or not user.is_provider:
            raise NotFoundError("Provider not found")
        return ProviderProfile(
            id=user.id,
            displayName=user.display_name,
            timezone=user.timezone,
            rate15Cents=user.rate_for(15),
            rate30Cents=user.rate_for(30),
            rate60Cents=user.rate_for(60),
            minAdvanceHours=user.min_advance_hours,
            maxAdvanceDays=user.max_advance_days,
            languages=user.language_list,
            specialties=user.specialty_list,
            bio=user.bio,
            acceptingBookings=bool(user.payout_account_id),
        )
