"""Posting view and apply-click tracking, and the reports built on it."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Any

from fastapi import Depends

from app.core.auth import Principal
from app.core.clock import board_today
from app.core.config import get_settings
from app.core.errors import NotFoundError
from app.services.policy import DenialReason, PolicyDeniedError, require_active_admin
from app.services.repository import get_repository
from app.services.visibility import can_view

logger = logging.getLogger(__name__)

POSTING_STATUSES = ("pending", "active", "removed", "rejected")


class AnalyticsEvent(str, Enum):
    VIEW = "view"
    CLICK = "click"


@dataclass(slots=True)
class PostingAnalytics:
    posting_id: str
    days: int
    views: int = 0
    clicks: int = 0
    trend: list[dict[str, Any]] = field(default_factory=list)

    @property
    def engagement_rate(self) -> float:
        # Clicks per hundred views.
        if self.views == 0:
            return 0.0
        return round(self.clicks * 100 / self.views, 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "posting_id": self.posting_id,
            "days": self.days,
            "views": self.views,
            "clicks": self.clicks,
            "engagement_rate": self.engagement_rate,
            "trend": [dict(row) for row in self.trend],
        }


class AnalyticsService:
    def __init__(
        self,
        repository: Any,
        *,
        clock: Callable[[], date] = board_today,
        timezone: str = "UTC",
    ) -> None:
        self.repository = repository
        self.clock = clock
        self.timezone = timezone

    async def track(self, viewer: Principal | None, posting_id: str, event: AnalyticsEvent) -> dict[str, Any]:
        posting = await self.repository.get_posting(posting_id)
        if not can_view(posting, viewer, today=self.clock()):
            raise NotFoundError("posting not found")

        row = await self.repository.insert_analytics_event(
            job_id=posting.id,
            user_id=viewer.user_id if viewer is not None else None,
            event_type=event.value,
        )
        logger.debug("posting %s tracked id=%s viewer=%s", event.value, posting.id, viewer.user_id if viewer else None)
        return row

    async def posting_summary(self, actor: Principal, posting_id: str, *, days: int) -> PostingAnalytics:
        """Daily views and clicks for one posting, visible to its creator only.

        The window ends today in the board timezone and always has ``days``
        entries; days without events report zeros.
        """
        posting = await self.repository.get_posting(posting_id)
        if not actor.is_active:
            raise PolicyDeniedError(DenialReason.INACTIVE, "inactive account")
        if not actor.owns(posting.created_by):
            raise PolicyDeniedError(DenialReason.NOT_OWNER, "not owner")

        today = self.clock()
        since = today - timedelta(days=days - 1)
        rows = await self.repository.count_analytics_by_day(posting.id, since=since, timezone=self.timezone)

        buckets = {since + timedelta(days=offset): {"views": 0, "clicks": 0} for offset in range(days)}
        summary = PostingAnalytics(posting_id=posting.id, days=days)
        for row in rows:
            bucket = buckets.get(row["day"])
            if bucket is None:
                continue
            if row["event_type"] == AnalyticsEvent.VIEW:
                bucket["views"] += row["count"]
                summary.views += row["count"]
            elif row["event_type"] == AnalyticsEvent.CLICK:
                bucket["clicks"] += row["count"]
                summary.clicks += row["count"]
        summary.trend = [{"day": day, **counts} for day, counts in sorted(buckets.items())]
        return summary

    async def board_metrics(self, admin: Principal) -> dict[str, Any]:
        require_active_admin(admin)
        counts = await self.repository.count_postings_by_status(self.clock())
        events = await self.repository.count_analytics_events()
        by_status = {status: counts.get(status, 0) for status in POSTING_STATUSES}
        return {
            "total_postings": sum(by_status.values()),
            "by_status": by_status,
            "archived": counts.get("archived", 0),
            "views": events.get(AnalyticsEvent.VIEW.value, 0),
            "clicks": events.get(AnalyticsEvent.CLICK.value, 0),
        }


def get_analytics_service(repository=Depends(get_repository)) -> AnalyticsService:
    return AnalyticsService(repository, timezone=get_settings().board_timezone)
