from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any


@dataclass(slots=True)
class PostingRecord:
    id: str
    title: str
    company: str
    industry: str
    job_type: str
    description: str
    deadline: date
    status: str
    created_at: datetime
    updated_at: datetime
    created_by: str | None = None
    rejection_note: str | None = None
    skills: list[str] = field(default_factory=list)
    location: str | None = None
    salary_range: str | None = None
    apply_url: str | None = None

    def is_archived(self, today: date) -> bool:
        return self.status == "active" and self.deadline < today

    def is_open(self, today: date) -> bool:
        return self.status == "active" and self.deadline >= today

    def to_dict(self, *, today: date | None = None) -> dict[str, Any]:
        payload = asdict(self)
        payload["is_archived"] = self.is_archived(today) if today is not None else False
        return payload


@dataclass(slots=True)
class UserRecord:
    user_id: str
    email: str | None
    role: str
    is_active: bool
    created_at: datetime
    first_name: str | None = None
    last_name: str | None = None
    company_name: str | None = None
    deleted_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class ApplicationRecord:
    id: str
    job_id: str
    student_id: str
    status: str
    applied_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
