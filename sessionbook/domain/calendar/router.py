"""
Calendar connection routes.
OAuth flow: provider → frontend → frontend posts the code to the callback here.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import get_current_provider
from ...database import get_db
from ...models import User
from .schemas import AuthorizationUrlResponse, CalendarConnectionStatus, ICalConnectRequest, OAuthCallbackRequest
from .service import CalendarService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendar", tags=["calendar"])


def get_calendar_service(db: Session = Depends(get_db)) -> CalendarService:
    return CalendarService(db)


@router.get("/connection", response_model=CalendarConnectionStatus)
async def get_connection_status(
    current_user: User = Depends(get_current_provider),
    service: CalendarService = Depends(get_calendar_service),
):
    return service.get_status(current_user)


@router.get("/{kind}/connect", response_model=AuthorizationUrlResponse)
async def initiate_calendar_oauth(
    kind: str,
    current_user: User = Depends(get_current_provider),
    service: CalendarService = Depends(get_calendar_service),
):
    url, state = service.authorization_url(current_user, kind)
    return AuthorizationUrlResponse(authorization_url=url, state=state)


@router.post("/{kind}/callback", response_model=CalendarConnectionStatus)
async def handle_calendar_callback(
    kind: str,
    data: OAuthCallbackRequest,
    current_user: User = Depends(get_current_provider),
    service: CalendarService = Depends(get_calendar_service),
):
    await service.complete_oauth(current_user, kind, data.code)
    return service.get_status(current_user)


@router.post("/ical/connect", response_model=CalendarConnectionStatus)
async def connect_ical_feed(
    data: ICalConnectRequest,
    current_user: User = Depends(get_current_provider),
    service: CalendarService = Depends(get_calendar_service),
):
    await service.connect_ical(current_user, data.feed_url, data.account_email)
    return service.get_status(current_user)


@router.post("/disconnect")
async def disconnect_calendar(
    current_user: User = Depends(get_current_provider),
    service: CalendarService = Depends(get_calendar_service),
):
    service.disconnect(current_user)
    return {"success": True, "message": "Calendar disconnected"}
