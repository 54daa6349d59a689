from datetime import datetime
from typing import Literal

from pydantic import BaseModel

ApplicationStatus = Literal["applied", "viewed", "interview", "hired", "rejected"]


class ApplicationOut(BaseModel):
    id: str
    job_id: str
    student_id: str
    status: ApplicationStatus
    applied_at: datetime
    updated_at: datetime


class ApplicationStatusPatchRequest(BaseModel):
    status: ApplicationStatus


class SavedJobOut(BaseModel):
    student_id: str
    job_id: str
    created_at: datetime


class UnsaveOut(BaseModel):
    job_id: str
    removed: bool
