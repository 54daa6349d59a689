from fastapi import APIRouter, Body, Depends, Query

from app.core.auth import Principal, Role
from app.core.security import get_admin_principal
from app.schemas.admin import AccountDeleteRequest, DeletedUserOut, DeletionOut, UserOut, UserPatchRequest, UserRole
from app.schemas.analytics import BoardMetricsOut
from app.schemas.common import Envelope
from app.schemas.postings import PostingEventOut, PostingOut, posting_out
from app.services.accounts import (
    AccountDeletionWorkflow,
    UserAdminService,
    get_account_deletion_workflow,
    get_user_admin_service,
)
from app.services.analytics import AnalyticsService, get_analytics_service
from app.services.postings import PostingService, get_posting_service

router = APIRouter()


@router.get("/postings/pending", response_model=Envelope[list[PostingOut]])
async def list_pending_postings(
    principal: Principal = Depends(get_admin_principal),
    service: PostingService = Depends(get_posting_service),
) -> Envelope[list[PostingOut]]:
    rows = await service.list_pending(principal)
    today = service.today()
    return Envelope(data=[posting_out(row, today=today) for row in rows])


@router.get("/postings/{posting_id}/events", response_model=Envelope[list[PostingEventOut]])
async def list_posting_events(
    posting_id: str,
    principal: Principal = Depends(get_admin_principal),
    service: PostingService = Depends(get_posting_service),
) -> Envelope[list[PostingEventOut]]:
    rows = await service.events(principal, posting_id)
    return Envelope(data=[PostingEventOut(**row) for row in rows])


@router.get("/users", response_model=Envelope[list[UserOut]])
async def list_users(
    role: UserRole | None = Query(default=None),
    is_active: bool | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(get_admin_principal),
    service: UserAdminService = Depends(get_user_admin_service),
) -> Envelope[list[UserOut]]:
    rows = await service.list_users(
        principal,
        role=Role(role) if role else None,
        is_active=is_active,
        limit=limit,
        offset=offset,
    )
    return Envelope(data=[UserOut(**row.to_dict()) for row in rows])


@router.patch("/users/{user_id}", response_model=Envelope[UserOut])
async def update_user(
    user_id: str,
    payload: UserPatchRequest,
    principal: Principal = Depends(get_admin_principal),
    service: UserAdminService = Depends(get_user_admin_service),
) -> Envelope[UserOut]:
    user = await service.update_user(
        principal,
        user_id,
        is_active=payload.is_active,
        role=Role(payload.role) if payload.role else None,
    )
    return Envelope(data=UserOut(**user.to_dict()))


@router.delete("/users/{user_id}", response_model=Envelope[DeletionOut])
async def delete_user(
    user_id: str,
    payload: AccountDeleteRequest | None = Body(default=None),
    principal: Principal = Depends(get_admin_principal),
    workflow: AccountDeletionWorkflow = Depends(get_account_deletion_workflow),
) -> Envelope[DeletionOut]:
    result = await workflow.delete_by_admin(principal, user_id, reason=payload.reason if payload else None)
    return Envelope(data=DeletionOut(**result.to_dict()))


@router.get("/deleted-users", response_model=Envelope[list[DeletedUserOut]])
async def list_deleted_users(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(get_admin_principal),
    service: UserAdminService = Depends(get_user_admin_service),
) -> Envelope[list[DeletedUserOut]]:
    rows = await service.list_deleted_users(principal, limit=limit, offset=offset)
    return Envelope(data=[DeletedUserOut(**row) for row in rows])


@router.get("/metrics", response_model=Envelope[BoardMetricsOut])
async def get_board_metrics(
    principal: Principal = Depends(get_admin_principal),
    service: AnalyticsService = Depends(get_analytics_service),
) -> Envelope[BoardMetricsOut]:
    metrics = await service.board_metrics(principal)
    return Envelope(data=BoardMetricsOut(**metrics))
