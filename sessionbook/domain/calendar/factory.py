from typing import Optional

import httpx

from ...models_calendar import CalendarConnection, CalendarKind
from .base import CalendarProvider, NullCalendarProvider
from .google import GoogleCalendarProvider
from .ical_feed import ICalFeedProvider
from .microsoft import MicrosoftCalendarProvider

PROVIDERS = {
    CalendarKind.GOOGLE.value: GoogleCalendarProvider,
    CalendarKind.MICROSOFT.value: MicrosoftCalendarProvider,
    CalendarKind.ICAL.value: ICalFeedProvider,
}


def get_calendar_provider(kind: Optional[str], transport: Optional[httpx.AsyncBaseTransport] = None) -> CalendarProvider:
    provider_class = PROVIDERS.get(kind or "", NullCalendarProvider)
    return provider_class(transport=transport)


def provider_for_connection(
    connection: Optional[CalendarConnection], transport: Optional[httpx.AsyncBaseTransport] = None
) -> CalendarProvider:
    if connection is None or not connection.is_active:
        return NullCalendarProvider(transport=transport)
    return get_calendar_provider(connection.kind, transport=transport)
