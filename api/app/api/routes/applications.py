from fastapi import APIRouter, Depends

from app.core.auth import Principal
from app.core.security import get_human_principal
from app.schemas.applications import ApplicationOut, ApplicationStatusPatchRequest, SavedJobOut
from app.schemas.common import Envelope
from app.services.applications import ApplicationService, get_application_service

router = APIRouter()
saved_jobs_router = APIRouter()


@router.get("/mine", response_model=Envelope[list[ApplicationOut]])
async def list_my_applications(
    principal: Principal = Depends(get_human_principal),
    service: ApplicationService = Depends(get_application_service),
) -> Envelope[list[ApplicationOut]]:
    rows = await service.list_mine(principal)
    return Envelope(data=[ApplicationOut(**row.to_dict()) for row in rows])


@router.patch("/{application_id}", response_model=Envelope[ApplicationOut])
async def update_application(
    application_id: str,
    payload: ApplicationStatusPatchRequest,
    principal: Principal = Depends(get_human_principal),
    service: ApplicationService = Depends(get_application_service),
) -> Envelope[ApplicationOut]:
    application = await service.update_status(principal, application_id, payload.status)
    return Envelope(data=ApplicationOut(**application.to_dict()))


@saved_jobs_router.get("", response_model=Envelope[list[SavedJobOut]])
async def list_saved_jobs(
    principal: Principal = Depends(get_human_principal),
    service: ApplicationService = Depends(get_application_service),
) -> Envelope[list[SavedJobOut]]:
    rows = await service.list_saved(principal)
    return Envelope(data=[SavedJobOut(**row) for row in rows])
