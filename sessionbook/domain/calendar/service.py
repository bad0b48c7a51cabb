"""
Calendar connection management and busy-time lookups.

Busy lookups never fail the caller: provider errors come back as a
degraded BusyQueryResult and are cached only when the lookup succeeded.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

import httpx
from dateutil import parser as date_parser
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...cache import build_calendar_busy_key, cache, invalidate_calendar_busy_cache
from ...config import CALENDAR_CACHE_TTL_SECONDS
from ...errors import NotFoundError, UpstreamDegraded, ValidationError
from ...models import Booking, User
from ...models_calendar import CalendarConnection, CalendarKind
from ...security_utils import encrypt_secret, generate_secure_token
from ...shared.civil_time import iso_z, utcnow
from .base import BusyInterval, BusyQueryResult, CalendarEvent, OAuthCalendarProvider
from .factory import get_calendar_provider, provider_for_connection
from .ical_feed import ICalFeedProvider, parse_ical_feed
from .repository import CalendarConnectionRepository
from .schemas import CalendarConnectionStatus

logger = logging.getLogger(__name__)

OAUTH_KINDS = (CalendarKind.GOOGLE.value, CalendarKind.MICROSOFT.value)


def _serialize_intervals(intervals) -> list:
    return [[iso_z(i.start), iso_z(i.end)] for i in intervals]


def _deserialize_intervals(raw) -> list:
    intervals = []
    for start, end in raw:
        intervals.append(
            BusyInterval(
                start=date_parser.isoparse(start).replace(tzinfo=None),
                end=date_parser.isoparse(end).replace(tzinfo=None),
            )
        )
    return intervals


class CalendarService:
    def __init__(self, db: Session, transport: Optional[httpx.AsyncBaseTransport] = None, busy_cache=cache):
        self.db = db
        self.transport = transport
        self.busy_cache = busy_cache

    def _persist_token_changes(self, connection: CalendarConnection) -> None:
        if connection not in self.db.dirty:
            return
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            logger.error(f"❌ Failed to store refreshed calendar token for user {connection.user_id}: {e}")
            self.db.rollback()

    # ------------------------------------------------------------------ busy

    async def _fetch_busy(
        self, connection: CalendarConnection, start: datetime, end: datetime, tz_name: str
    ) -> BusyQueryResult:
        adapter = provider_for_connection(connection, transport=self.transport)
        try:
            return await adapter.list_busy(connection, start, end, tz_name)
        except Exception as e:
            raise UpstreamDegraded(connection.kind, str(e) or type(e).__name__) from e

    async def list_busy(self, provider: User, start: datetime, end: datetime) -> BusyQueryResult:
        connection = CalendarConnectionRepository.get_active_by_user(self.db, provider.id)
        if connection is None:
            return BusyQueryResult()

        cache_key = build_calendar_busy_key(provider.id, iso_z(start), iso_z(end))
        cached = self.busy_cache.get(cache_key)
        if cached is not None:
            return BusyQueryResult(intervals=_deserialize_intervals(cached))

        try:
            result = await self._fetch_busy(connection, start, end, provider.timezone)
        except UpstreamDegraded as e:
            logger.warning(f"⚠️ Calendar busy lookup failed for provider {provider.id}: {e}")
            return BusyQueryResult(degraded=True, error=str(e))
        self._persist_token_changes(connection)

        if result.degraded:
            logger.warning(f"⚠️ Calendar busy lookup degraded for provider {provider.id}: {result.error}")
        else:
            self.busy_cache.set(cache_key, _serialize_intervals(result.intervals), CALENDAR_CACHE_TTL_SECONDS)
        return result

    # ---------------------------------------------------------------- writes

    async def create_booking_event(self, booking: Booking, provider: User, requester: User) -> Optional[str]:
        """Mirror a confirmed booking onto the provider's calendar; returns the event id"""
        connection = CalendarConnectionRepository.get_active_by_user(self.db, provider.id)
        adapter = provider_for_connection(connection, transport=self.transport)
        if not adapter.supports_write:
            return None

        requester_name = requester.display_name or requester.email
        event = CalendarEvent(
            summary=f"Session with {requester_name}",
            description=booking.notes or f"{booking.duration_minutes}-minute session booked via Sessionbook",
            start=booking.start_time,
            end=booking.end_time,
            attendees=[requester.email],
            meeting_url=booking.meeting_url,
        )
        try:
            event_id = await adapter.create_event(connection, event)
        except Exception as e:
            logger.error(f"❌ Calendar event creation failed for booking {booking.id}: {e}")
            event_id = None
        self._persist_token_changes(connection)

        if event_id:
            booking.calendar_event_id = event_id
            booking.calendar_event_provider = adapter.kind
            try:
                self.db.commit()
            except SQLAlchemyError as e:
                logger.error(f"❌ Failed to store calendar event id for booking {booking.id}: {e}")
                self.db.rollback()
            invalidate_calendar_busy_cache(provider.id)
        return event_id

    async def delete_booking_event(self, provider_id: int, event_id: Optional[str], kind: Optional[str]) -> bool:
        if not event_id:
            return False
        connection = CalendarConnectionRepository.get_active_by_user(self.db, provider_id)
        if connection is None or connection.kind != kind:
            logger.info(f"ℹ️ Calendar event {event_id} left in place; {kind} calendar no longer connected")
            return False
        adapter = provider_for_connection(connection, transport=self.transport)
        try:
            deleted = await adapter.delete_event(connection, event_id)
        except Exception as e:
            logger.error(f"❌ Calendar event deletion failed for {event_id}: {e}")
            deleted = False
        self._persist_token_changes(connection)
        if deleted:
            invalidate_calendar_busy_cache(provider_id)
        return deleted

    # ----------------------------------------------------------- connections

    def get_status(self, user: User) -> CalendarConnectionStatus:
        connection = CalendarConnectionRepository.get_by_user(self.db, user.id)
        if connection is None:
            return CalendarConnectionStatus(connected=False)
        return CalendarConnectionStatus(
            connected=connection.is_active,
            kind=connection.kind,
            account_email=connection.account_email,
            feed_url=connection.feed_url,
            is_active=connection.is_active,
            last_error=connection.last_error,
            connected_at=connection.updated_at or connection.created_at,
        )

    def _oauth_adapter(self, kind: str) -> OAuthCalendarProvider:
        if kind not in OAUTH_KINDS:
            raise NotFoundError(f"Unknown calendar provider: {kind}")
        adapter = get_calendar_provider(kind, transport=self.transport)
        if not adapter.is_configured:
            raise ValidationError(f"{kind.capitalize()} Calendar is not configured")
        return adapter

    def authorization_url(self, user: User, kind: str) -> tuple:
        adapter = self._oauth_adapter(kind)
        state = generate_secure_token(16)
        logger.info(f"{kind} calendar OAuth initiated for user: {user.email}")
        return adapter.authorization_url(state), state

    async def complete_oauth(self, user: User, kind: str, code: str) -> CalendarConnection:
        adapter = self._oauth_adapter(kind)
        tokens = await adapter.exchange_code(code)
        if tokens is None:
            raise ValidationError("Failed to exchange authorization code")
        account_email = await adapter.fetch_account_email(tokens.access_token)

        connection = CalendarConnectionRepository.upsert(
            self.db,
            user.id,
            kind=kind,
            access_token=encrypt_secret(tokens.access_token),
            refresh_token=encrypt_secret(tokens.refresh_token),
            token_expires_at=utcnow() + timedelta(seconds=tokens.expires_in),
            account_email=account_email,
        )
        invalidate_calendar_busy_cache(user.id)
        logger.info(f"✅ {kind} calendar connected for user: {user.email}")
        return connection

    async def connect_ical(self, user: User, feed_url: str, account_email: Optional[str] = None) -> CalendarConnection:
        adapter = ICalFeedProvider(transport=self.transport)
        text = await adapter.fetch_feed(feed_url)
        if text is None:
            raise ValidationError("Could not read calendar feed")
        try:
            now = utcnow()
            parse_ical_feed(text, now, now + timedelta(days=1), user.timezone, account_email)
        except ValueError:
            raise ValidationError("Calendar feed is not valid iCalendar data")

        connection = CalendarConnectionRepository.upsert(
            self.db,
            user.id,
            kind=CalendarKind.ICAL.value,
            feed_url=feed_url,
            account_email=account_email or user.email,
        )
        invalidate_calendar_busy_cache(user.id)
        logger.info(f"✅ iCal feed connected for user: {user.email}")
        return connection

    def disconnect(self, user: User) -> None:
        connection = CalendarConnectionRepository.get_by_user(self.db, user.id)
        if connection is None:
            raise NotFoundError("No calendar connected")
        CalendarConnectionRepository.delete(self.db, connection)
        invalidate_calendar_busy_cache(user.id)
        logger.info(f"✅ Calendar disconnected for user: {user.email}")
