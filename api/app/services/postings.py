from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date
from typing import Any

from fastapi import Depends

from app.core.auth import POSTING_ROLES, Principal
from app.core.clock import board_today
from app.core.errors import InvalidInputError, NotFoundError
from app.services.policy import Decision, PostingAction, decide, normalize_note, require_active_admin
from app.services.records import PostingRecord
from app.services.repository import get_repository
from app.services.toggles import PostingToggles, get_posting_toggles
from app.services.visibility import PostingOrder, can_view, paginate, visible_postings

logger = logging.getLogger(__name__)

MODERATION_ACTIONS = (PostingAction.APPROVE, PostingAction.REJECT, PostingAction.REMOVE)


class PostingService:
    """Runs posting commands through the policy engine and reads through the visibility filter."""

    def __init__(
        self,
        repository: Any,
        toggles: PostingToggles,
        *,
        clock: Callable[[], date] = board_today,
    ) -> None:
        self.repository = repository
        self.toggles = toggles
        self.clock = clock

    # commands

    async def create(self, actor: Principal, fields: dict[str, Any]) -> PostingRecord:
        snapshot = await self.toggles.snapshot()
        decision = decide(
            PostingAction.CREATE,
            actor,
            None,
            today=self.clock(),
            toggles=snapshot,
            deadline=fields.get("deadline"),
        )
        self._enforce(decision, PostingAction.CREATE, actor, None)

        posting = await self.repository.insert_posting(
            fields={**fields, **decision.changes},
            created_by=actor.user_id,
        )
        logger.info("posting created id=%s actor=%s status=%s", posting.id, actor.user_id, posting.status)
        return posting

    async def moderate(
        self,
        actor: Principal,
        posting_id: str,
        action: PostingAction,
        note: str | None = None,
    ) -> PostingRecord:
        if action not in MODERATION_ACTIONS:
            raise InvalidInputError(f"unsupported moderation action: {action.value}", reason="invalid_action")

        posting = await self.repository.get_posting(posting_id)
        decision = decide(action, actor, posting, today=self.clock(), note=note)
        self._enforce(decision, action, actor, posting_id)

        return await self._write(actor, posting, action, decision.changes, note=note)

    async def edit(
        self,
        actor: Principal,
        posting_id: str,
        changes: dict[str, Any],
        *,
        resubmit: bool = False,
    ) -> PostingRecord:
        if not changes and not resubmit:
            raise InvalidInputError("no fields to update")

        posting = await self.repository.get_posting(posting_id)
        today = self.clock()
        decision = decide(PostingAction.EDIT, actor, posting, today=today, deadline=changes.get("deadline"))
        self._enforce(decision, PostingAction.EDIT, actor, posting_id)
        fields = {**changes, **decision.changes}
        action = PostingAction.EDIT

        if resubmit:
            # Both decisions are taken before anything is written.
            resubmission = decide(PostingAction.RESUBMIT, actor, posting, today=today)
            self._enforce(resubmission, PostingAction.RESUBMIT, actor, posting_id)
            fields.update(resubmission.changes)
            action = PostingAction.RESUBMIT

        return await self._write(actor, posting, action, fields)

    async def resubmit(self, actor: Principal, posting_id: str) -> PostingRecord:
        posting = await self.repository.get_posting(posting_id)
        decision = decide(PostingAction.RESUBMIT, actor, posting, today=self.clock())
        self._enforce(decision, PostingAction.RESUBMIT, actor, posting_id)
        return await self._write(actor, posting, PostingAction.RESUBMIT, decision.changes)

    async def reactivate(self, actor: Principal, posting_id: str, deadline: date) -> PostingRecord:
        posting = await self.repository.get_posting(posting_id)
        decision = decide(PostingAction.REACTIVATE, actor, posting, today=self.clock(), deadline=deadline)
        self._enforce(decision, PostingAction.REACTIVATE, actor, posting_id)
        return await self._write(actor, posting, PostingAction.REACTIVATE, decision.changes)

    async def delete(self, actor: Principal, posting_id: str) -> None:
        posting = await self.repository.get_posting(posting_id)
        decision = decide(PostingAction.DELETE, actor, posting, today=self.clock())
        self._enforce(decision, PostingAction.DELETE, actor, posting_id)

        await self.repository.delete_posting(posting_id)
        logger.info("posting deleted id=%s actor=%s admin=%s", posting_id, actor.user_id, actor.is_admin)

    # queries

    async def list_public(
        self,
        viewer: Principal | None,
        *,
        order: PostingOrder = "newest",
        limit: int,
        offset: int,
    ) -> list[PostingRecord]:
        today = self.clock()
        if viewer is not None and viewer.is_admin:
            candidates = await self.repository.list_postings()
        else:
            candidates = await self.repository.list_active_postings(today)
            if viewer is not None and viewer.role in POSTING_ROLES:
                seen = {posting.id for posting in candidates}
                own = await self.repository.list_postings_by_creator(viewer.user_id)
                candidates.extend(posting for posting in own if posting.id not in seen)

        rows = visible_postings(candidates, viewer, today=today, order=order)
        return paginate(rows, limit=limit, offset=offset)

    async def list_mine(self, actor: Principal, *, order: PostingOrder = "newest") -> list[PostingRecord]:
        rows = await self.repository.list_postings_by_creator(actor.user_id)
        return visible_postings(rows, actor, today=self.clock(), order=order)

    async def list_pending(self, actor: Principal) -> list[PostingRecord]:
        require_active_admin(actor)
        return await self.repository.list_postings_by_status("pending")

    async def get_visible(self, viewer: Principal | None, posting_id: str) -> PostingRecord:
        posting = await self.repository.get_posting(posting_id)
        if not can_view(posting, viewer, today=self.clock()):
            # Hidden postings look the same as missing ones.
            raise NotFoundError("posting not found")
        return posting

    async def events(self, actor: Principal, posting_id: str) -> list[dict[str, Any]]:
        require_active_admin(actor)
        await self.repository.get_posting(posting_id)
        return await self.repository.list_posting_events(posting_id)

    def today(self) -> date:
        return self.clock()

    async def _write(
        self,
        actor: Principal,
        posting: PostingRecord,
        action: PostingAction,
        fields: dict[str, Any],
        *,
        note: str | None = None,
    ) -> PostingRecord:
        updated = await self.repository.update_posting(
            posting.id,
            fields,
            action=action.value,
            actor_user_id=actor.user_id,
            note=normalize_note(note),
        )
        logger.info(
            "posting %s id=%s actor=%s status=%s->%s",
            action.value,
            posting.id,
            actor.user_id,
            posting.status,
            updated.status,
        )
        return updated

    @staticmethod
    def _enforce(decision: Decision, action: PostingAction, actor: Principal, posting_id: str | None) -> None:
        if not decision.allowed:
            logger.info(
                "posting %s denied actor=%s posting=%s reason=%s",
                action.value,
                actor.user_id,
                posting_id,
                decision.reason.value if decision.reason else None,
            )
        decision.raise_if_denied()


def get_posting_service(
    repository=Depends(get_repository),
    toggles: PostingToggles = Depends(get_posting_toggles),
) -> PostingService:
    return PostingService(repository, toggles)
