"""
Daily.co video rooms for booked sessions.
Room creation is best-effort: a failure leaves the booking without a URL.
"""
import logging
import time
from typing import Optional

import httpx

from ..config import DAILY_API_KEY, MEETING_ROOM_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

DAILY_ROOMS_URL = "https://api.daily.co/v1/rooms"
ROOM_LIFETIME_SECONDS = 7 * 24 * 3600


class MeetingRoomService:
    def __init__(
        self,
        api_key: Optional[str] = DAILY_API_KEY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = MEETING_ROOM_TIMEOUT_SECONDS,
    ):
        self.api_key = api_key
        self.transport = transport
        self.timeout = timeout

    async def create_room(self, booking_id: str) -> Optional[str]:
        """Create a public room named after the booking; returns its URL or None"""
        if not self.api_key:
            logger.info("ℹ️ DAILY_API_KEY not set, skipping meeting room creation")
            return None

        payload = {
            "name": f"booking-{booking_id}",
            "privacy": "public",
            "properties": {
                "exp": int(time.time()) + ROOM_LIFETIME_SECONDS,
                "enable_chat": True,
                "enable_screenshare": True,
                "start_video_off": False,
                "start_audio_off": False,
            },
        }
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.post(
                    DAILY_ROOMS_URL,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=payload,
                )
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ Daily.co room creation failed for booking {booking_id}: {e}")
            return None

        if response.status_code not in (200, 201):
            logger.warning(
                f"⚠️ Daily.co room creation failed for booking {booking_id}: HTTP {response.status_code}"
            )
            return None

        url = response.json().get("url")
        logger.info(f"✅ Meeting room created for booking {booking_id}")
        return url


def get_meeting_room_service() -> MeetingRoomService:
    return MeetingRoomService()
