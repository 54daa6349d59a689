from fastapi import APIRouter, Depends

from app.core.auth import Principal
from app.core.security import get_admin_principal, get_human_principal
from app.schemas.admin import AppSettingOut, ToggleUpdateRequest
from app.schemas.common import Envelope
from app.services.toggles import PostingToggles, get_posting_toggles

router = APIRouter()


@router.get("", response_model=Envelope[list[AppSettingOut]])
async def list_settings(
    _: Principal = Depends(get_human_principal),
    toggles: PostingToggles = Depends(get_posting_toggles),
) -> Envelope[list[AppSettingOut]]:
    rows = await toggles.list_settings()
    return Envelope(data=[AppSettingOut(**row) for row in rows])


@router.put("/{key}", response_model=Envelope[AppSettingOut])
async def update_setting(
    key: str,
    payload: ToggleUpdateRequest,
    principal: Principal = Depends(get_admin_principal),
    toggles: PostingToggles = Depends(get_posting_toggles),
) -> Envelope[AppSettingOut]:
    row = await toggles.set(key, payload.value, principal)
    return Envelope(data=AppSettingOut(**row))
