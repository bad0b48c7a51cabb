"""Provider router - own booking settings and public profiles"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import get_current_provider
from ...database import get_db
from ...models import User
from .schemas import ProviderProfile, ProviderSettings, ProviderSettingsResponse, ProviderSettingsUpdate
from .service import ProviderService

router = APIRouter(prefix="/providers", tags=["Providers"])


def get_provider_service(db: Session = Depends(get_db)) -> ProviderService:
    return ProviderService(db)


@router.get("/me/settings", response_model=ProviderSettings)
async def get_settings(
    current_user: User = Depends(get_current_provider),
    service: ProviderService = Depends(get_provider_service),
):
    return service.to_settings(current_user)


@router.put("/me/settings", response_model=ProviderSettingsResponse)
async def update_settings(
    data: ProviderSettingsUpdate,
    current_user: User = Depends(get_current_provider),
    service: ProviderService = Depends(get_provider_service),
):
    user, slots_created = service.update_settings(current_user, data)
    return ProviderSettingsResponse(settings=service.to_settings(user), slotsCreated=slots_created)


@router.get("/{provider_id}", response_model=ProviderProfile)
async def get_provider_profile(provider_id: int, service: ProviderService = Depends(get_provider_service)):
    """Public profile shown on the booking page"""
    return service.get_public_profile(provider_id)
