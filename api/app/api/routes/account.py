from fastapi import APIRouter, Body, Depends

from app.core.auth import Principal
from app.core.security import get_human_principal
from app.schemas.admin import AccountDeleteRequest, DeletionOut, ProfileUpdateRequest, UserOut
from app.schemas.common import Envelope
from app.services.accounts import (
    AccountDeletionWorkflow,
    ProfileService,
    get_account_deletion_workflow,
    get_profile_service,
)

router = APIRouter()


@router.get("", response_model=Envelope[UserOut])
async def get_profile(
    principal: Principal = Depends(get_human_principal),
    service: ProfileService = Depends(get_profile_service),
) -> Envelope[UserOut]:
    user = await service.get(principal)
    return Envelope(data=UserOut(**user.to_dict()))


@router.patch("", response_model=Envelope[UserOut])
async def update_profile(
    payload: ProfileUpdateRequest,
    principal: Principal = Depends(get_human_principal),
    service: ProfileService = Depends(get_profile_service),
) -> Envelope[UserOut]:
    user = await service.update(principal, payload.changes())
    return Envelope(data=UserOut(**user.to_dict()))


@router.delete("", response_model=Envelope[DeletionOut])
async def delete_account(
    payload: AccountDeleteRequest | None = Body(default=None),
    principal: Principal = Depends(get_human_principal),
    workflow: AccountDeletionWorkflow = Depends(get_account_deletion_workflow),
) -> Envelope[DeletionOut]:
    result = await workflow.delete_self(principal, reason=payload.reason if payload else None)
    return Envelope(data=DeletionOut(**result.to_dict()))
