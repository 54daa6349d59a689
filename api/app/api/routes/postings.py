from fastapi import APIRouter, Depends, Query, status

from app.core.auth import Principal
from app.core.config import get_settings
from app.core.security import get_human_principal, get_optional_principal
from app.schemas.analytics import AnalyticsEventRequest, PostingAnalyticsOut, TrackedEventOut
from app.schemas.applications import ApplicationOut, SavedJobOut, UnsaveOut
from app.schemas.common import Envelope
from app.schemas.postings import (
    ModerationRequest,
    PostingCreateRequest,
    PostingEditRequest,
    PostingOut,
    ReactivateRequest,
    posting_out,
)
from app.services.analytics import AnalyticsEvent, AnalyticsService, get_analytics_service
from app.services.applications import ApplicationService, get_application_service
from app.services.policy import PostingAction
from app.services.postings import PostingService, get_posting_service
from app.services.visibility import PostingOrder

router = APIRouter()


@router.get("", response_model=Envelope[list[PostingOut]])
async def list_postings(
    order: PostingOrder = Query(default="newest"),
    limit: int = Query(default=20, ge=1),
    offset: int = Query(default=0, ge=0),
    viewer: Principal | None = Depends(get_optional_principal),
    service: PostingService = Depends(get_posting_service),
) -> Envelope[list[PostingOut]]:
    limit = min(limit, get_settings().page_size_max)
    rows = await service.list_public(viewer, order=order, limit=limit, offset=offset)
    today = service.today()
    return Envelope(data=[posting_out(row, today=today) for row in rows])


@router.get("/mine", response_model=Envelope[list[PostingOut]])
async def list_my_postings(
    order: PostingOrder = Query(default="newest"),
    principal: Principal = Depends(get_human_principal),
    service: PostingService = Depends(get_posting_service),
) -> Envelope[list[PostingOut]]:
    rows = await service.list_mine(principal, order=order)
    today = service.today()
    return Envelope(data=[posting_out(row, today=today) for row in rows])


@router.post("", response_model=Envelope[PostingOut], status_code=status.HTTP_201_CREATED)
async def create_posting(
    payload: PostingCreateRequest,
    principal: Principal = Depends(get_human_principal),
    service: PostingService = Depends(get_posting_service),
) -> Envelope[PostingOut]:
    posting = await service.create(principal, payload.model_dump())
    return Envelope(data=posting_out(posting, today=service.today()))


@router.get("/{posting_id}", response_model=Envelope[PostingOut])
async def get_posting(
    posting_id: str,
    viewer: Principal | None = Depends(get_optional_principal),
    service: PostingService = Depends(get_posting_service),
) -> Envelope[PostingOut]:
    posting = await service.get_visible(viewer, posting_id)
    return Envelope(data=posting_out(posting, today=service.today()))


@router.patch("/{posting_id}", response_model=Envelope[PostingOut])
async def edit_posting(
    posting_id: str,
    payload: PostingEditRequest,
    principal: Principal = Depends(get_human_principal),
    service: PostingService = Depends(get_posting_service),
) -> Envelope[PostingOut]:
    posting = await service.edit(principal, posting_id, payload.changes(), resubmit=payload.resubmit)
    return Envelope(data=posting_out(posting, today=service.today()))


@router.post("/{posting_id}/resubmit", response_model=Envelope[PostingOut])
async def resubmit_posting(
    posting_id: str,
    principal: Principal = Depends(get_human_principal),
    service: PostingService = Depends(get_posting_service),
) -> Envelope[PostingOut]:
    posting = await service.resubmit(principal, posting_id)
    return Envelope(data=posting_out(posting, today=service.today()))


@router.post("/{posting_id}/reactivate", response_model=Envelope[PostingOut])
async def reactivate_posting(
    posting_id: str,
    payload: ReactivateRequest,
    principal: Principal = Depends(get_human_principal),
    service: PostingService = Depends(get_posting_service),
) -> Envelope[PostingOut]:
    posting = await service.reactivate(principal, posting_id, payload.deadline)
    return Envelope(data=posting_out(posting, today=service.today()))


@router.delete("/{posting_id}", response_model=Envelope[dict[str, str]])
async def delete_posting(
    posting_id: str,
    principal: Principal = Depends(get_human_principal),
    service: PostingService = Depends(get_posting_service),
) -> Envelope[dict[str, str]]:
    await service.delete(principal, posting_id)
    return Envelope(data={"id": posting_id})


@router.post("/{posting_id}/moderation", response_model=Envelope[PostingOut])
async def moderate_posting(
    posting_id: str,
    payload: ModerationRequest,
    principal: Principal = Depends(get_human_principal),
    service: PostingService = Depends(get_posting_service),
) -> Envelope[PostingOut]:
    posting = await service.moderate(principal, posting_id, PostingAction(payload.action), note=payload.note)
    return Envelope(data=posting_out(posting, today=service.today()))


@router.post("/{posting_id}/apply", response_model=Envelope[ApplicationOut], status_code=status.HTTP_201_CREATED)
async def apply_to_posting(
    posting_id: str,
    principal: Principal = Depends(get_human_principal),
    service: ApplicationService = Depends(get_application_service),
) -> Envelope[ApplicationOut]:
    application = await service.apply(principal, posting_id)
    return Envelope(data=ApplicationOut(**application.to_dict()))


@router.get("/{posting_id}/applications", response_model=Envelope[list[ApplicationOut]])
async def list_posting_applications(
    posting_id: str,
    principal: Principal = Depends(get_human_principal),
    service: ApplicationService = Depends(get_application_service),
) -> Envelope[list[ApplicationOut]]:
    rows = await service.list_for_posting(principal, posting_id)
    return Envelope(data=[ApplicationOut(**row.to_dict()) for row in rows])


@router.post("/{posting_id}/save", response_model=Envelope[SavedJobOut])
async def save_posting(
    posting_id: str,
    principal: Principal = Depends(get_human_principal),
    service: ApplicationService = Depends(get_application_service),
) -> Envelope[SavedJobOut]:
    row = await service.save(principal, posting_id)
    return Envelope(data=SavedJobOut(**row))


@router.delete("/{posting_id}/save", response_model=Envelope[UnsaveOut])
async def unsave_posting(
    posting_id: str,
    principal: Principal = Depends(get_human_principal),
    service: ApplicationService = Depends(get_application_service),
) -> Envelope[UnsaveOut]:
    removed = await service.unsave(principal, posting_id)
    return Envelope(data=UnsaveOut(job_id=posting_id, removed=removed))


@router.post("/{posting_id}/events", response_model=Envelope[TrackedEventOut], status_code=status.HTTP_201_CREATED)
async def track_posting_event(
    posting_id: str,
    payload: AnalyticsEventRequest,
    viewer: Principal | None = Depends(get_optional_principal),
    service: AnalyticsService = Depends(get_analytics_service),
) -> Envelope[TrackedEventOut]:
    row = await service.track(viewer, posting_id, AnalyticsEvent(payload.event_type))
    return Envelope(data=TrackedEventOut(**row))


@router.get("/{posting_id}/analytics", response_model=Envelope[PostingAnalyticsOut])
async def get_posting_analytics(
    posting_id: str,
    days: int = Query(default=30, ge=1, le=365),
    principal: Principal = Depends(get_human_principal),
    service: AnalyticsService = Depends(get_analytics_service),
) -> Envelope[PostingAnalyticsOut]:
    summary = await service.posting_summary(principal, posting_id, days=days)
    return Envelope(data=PostingAnalyticsOut(**summary.to_dict()))
