from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

AnalyticsEventType = Literal["view", "click"]


class AnalyticsEventRequest(BaseModel):
    event_type: AnalyticsEventType


class TrackedEventOut(BaseModel):
    id: int
    job_id: str
    user_id: str | None = None
    event_type: AnalyticsEventType
    created_at: datetime


class AnalyticsDayOut(BaseModel):
    day: date
    views: int
    clicks: int


class PostingAnalyticsOut(BaseModel):
    posting_id: str
    days: int
    views: int
    clicks: int
    engagement_rate: float
    trend: list[AnalyticsDayOut] = Field(default_factory=list)


class BoardMetricsOut(BaseModel):
    total_postings: int
    by_status: dict[str, int]
    archived: int
    views: int
    clicks: int
