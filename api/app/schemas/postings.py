import re
from datetime import date, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, Field, StringConstraints, field_validator

PostingStatus = Literal["pending", "active", "removed", "rejected"]
JobType = Literal["Internship", "Part-Time", "Full-Time"]
ModerationAction = Literal["approve", "reject", "remove"]

_CALENDAR_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _calendar_date(value: Any) -> Any:
    # Deadlines are plain dates; timestamps and other formats are rejected.
    if isinstance(value, datetime):
        raise ValueError("deadline must be a calendar date (YYYY-MM-DD)")
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not _CALENDAR_DATE.match(value):
        raise ValueError("deadline must be a calendar date (YYYY-MM-DD)")
    return value


CalendarDate = Annotated[date, BeforeValidator(_calendar_date)]
RequiredText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
OptionalText = Annotated[str, StringConstraints(strip_whitespace=True, max_length=500)]
Skill = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=80)]
SkillList = Annotated[list[Skill], Field(max_length=50)]


class PostingOut(BaseModel):
    id: str
    title: str
    company: str
    industry: str
    job_type: JobType
    description: str
    skills: list[str] = Field(default_factory=list)
    location: str | None = None
    salary_range: str | None = None
    apply_url: str | None = None
    deadline: date
    status: PostingStatus
    rejection_note: str | None = None
    created_by: str | None = None
    is_archived: bool = False
    created_at: datetime
    updated_at: datetime


class PostingCreateRequest(BaseModel):
    title: RequiredText
    company: RequiredText
    industry: RequiredText
    job_type: JobType
    description: RequiredText
    skills: SkillList = Field(default_factory=list)
    location: OptionalText | None = None
    salary_range: OptionalText | None = None
    apply_url: OptionalText | None = None
    deadline: CalendarDate


class PostingEditRequest(BaseModel):
    title: RequiredText | None = None
    company: RequiredText | None = None
    industry: RequiredText | None = None
    job_type: JobType | None = None
    description: RequiredText | None = None
    skills: SkillList | None = None
    location: OptionalText | None = None
    salary_range: OptionalText | None = None
    apply_url: OptionalText | None = None
    deadline: CalendarDate | None = None
    resubmit: bool = False

    @field_validator("title", "company", "industry", "job_type", "description", "skills", "deadline")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        # Defaults are not validated, so this only fires on an explicit null.
        if value is None:
            raise ValueError("field cannot be null")
        return value

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude={"resubmit"})


class ReactivateRequest(BaseModel):
    deadline: CalendarDate


class ModerationRequest(BaseModel):
    action: ModerationAction
    note: str | None = Field(default=None, max_length=2000)


class PostingEventOut(BaseModel):
    id: int
    posting_id: str
    action: str
    from_status: str | None = None
    to_status: str | None = None
    actor_id: str | None = None
    note: str | None = None
    created_at: datetime


def posting_out(record: Any, *, today: date) -> PostingOut:
    return PostingOut(**record.to_dict(today=today))
