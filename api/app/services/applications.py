from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date
from typing import Any, Literal

from fastapi import Depends

from app.core.auth import Principal, Role
from app.core.clock import board_today
from app.core.errors import NotFoundError
from app.services.policy import DenialReason, PolicyDeniedError, decide_application_update, decide_apply
from app.services.records import ApplicationRecord
from app.services.repository import get_repository
from app.services.visibility import can_view

logger = logging.getLogger(__name__)

ApplicationStatus = Literal["applied", "viewed", "interview", "hired", "rejected"]


class ApplicationService:
    def __init__(self, repository: Any, *, clock: Callable[[], date] = board_today) -> None:
        self.repository = repository
        self.clock = clock

    async def apply(self, actor: Principal, job_id: str) -> ApplicationRecord:
        posting = await self.repository.get_posting(job_id)
        decision = decide_apply(actor, posting, today=self.clock())
        if not decision.allowed:
            logger.info("apply denied actor=%s posting=%s reason=%s", actor.user_id, job_id, decision.reason)
        decision.raise_if_denied()

        application = await self.repository.insert_application(job_id=job_id, student_id=actor.user_id)
        logger.info("application created id=%s posting=%s student=%s", application.id, job_id, actor.user_id)
        return application

    async def list_mine(self, actor: Principal) -> list[ApplicationRecord]:
        _require_student(actor, "only students have applications")
        return await self.repository.list_applications_by_student(actor.user_id)

    async def list_for_posting(self, actor: Principal, job_id: str) -> list[ApplicationRecord]:
        posting = await self.repository.get_posting(job_id)
        decide_application_update(actor, posting).raise_if_denied()
        return await self.repository.list_applications_by_job(job_id)

    async def update_status(self, actor: Principal, application_id: str, status: ApplicationStatus) -> ApplicationRecord:
        application = await self.repository.get_application(application_id)
        posting = await self.repository.get_posting(application.job_id)
        decision = decide_application_update(actor, posting)
        if not decision.allowed:
            logger.info(
                "application update denied actor=%s application=%s reason=%s",
                actor.user_id,
                application_id,
                decision.reason,
            )
        decision.raise_if_denied()

        updated = await self.repository.update_application_status(application_id, status)
        logger.info("application %s status %s->%s", application_id, application.status, updated.status)
        return updated

    async def save(self, actor: Principal, job_id: str) -> dict[str, Any]:
        _require_student(actor, "only students can save jobs")
        posting = await self.repository.get_posting(job_id)
        if not can_view(posting, actor, today=self.clock()):
            raise NotFoundError("posting not found")
        return await self.repository.save_job(student_id=actor.user_id, job_id=job_id)

    async def unsave(self, actor: Principal, job_id: str) -> bool:
        _require_student(actor, "only students can save jobs")
        return await self.repository.unsave_job(student_id=actor.user_id, job_id=job_id)

    async def list_saved(self, actor: Principal) -> list[dict[str, Any]]:
        _require_student(actor, "only students can save jobs")
        return await self.repository.list_saved_jobs(actor.user_id)


def _require_student(actor: Principal, message: str) -> None:
    if not actor.is_active:
        raise PolicyDeniedError(DenialReason.INACTIVE, "inactive account")
    if actor.role is not Role.STUDENT:
        raise PolicyDeniedError(DenialReason.ROLE_NOT_PERMITTED, message)


def get_application_service(repository=Depends(get_repository)) -> ApplicationService:
    return ApplicationService(repository)
