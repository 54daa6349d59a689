from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, StrictBool, StringConstraints, field_validator

UserRole = Literal["student", "faculty", "rep", "admin"]
DeletionStep = Literal["audit_snapshot", "role_cleanup", "directory_row", "identity_revoke"]
PersonName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
CompanyName = Annotated[str, StringConstraints(strip_whitespace=True, max_length=200)]


class AppSettingOut(BaseModel):
    key: str
    value: bool
    updated_by: str | None = None
    updated_at: datetime | None = None


class ToggleUpdateRequest(BaseModel):
    value: StrictBool


class UserOut(BaseModel):
    user_id: str
    email: str | None = None
    role: UserRole
    is_active: bool
    first_name: str | None = None
    last_name: str | None = None
    company_name: str | None = None
    created_at: datetime
    deleted_at: datetime | None = None


class UserPatchRequest(BaseModel):
    is_active: StrictBool | None = None
    role: UserRole | None = None


class DeletedUserOut(BaseModel):
    id: int
    user_id: str
    email: str | None = None
    role: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    company_name: str | None = None
    self_deleted: bool
    deleted_by_admin_email: str | None = None
    deletion_reason: str | None = None
    deleted_at: datetime
    identity_revoked_at: datetime | None = None


class AccountDeleteRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class DeletionOut(BaseModel):
    user_id: str
    self_deleted: bool
    completed_steps: list[DeletionStep] = Field(default_factory=list)
    audit_id: int | None = None
    resumed: bool = False


class ProfileUpdateRequest(BaseModel):
    first_name: PersonName | None = None
    last_name: PersonName | None = None
    company_name: CompanyName | None = None

    @field_validator("first_name", "last_name")
    @classmethod
    def _not_null(cls, value: str | None) -> str:
        if value is None:
            raise ValueError("field cannot be null")
        return value

    @field_validator("company_name")
    @classmethod
    def _blank_company_is_none(cls, value: str | None) -> str | None:
        return value or None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)
