from __future__ import annotations

import os
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from typing import Any

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("JB_OTEL_ENABLED", "false")

from app.core.auth import Principal, parse_role  # noqa: E402
from app.core.errors import UnauthenticatedError  # noqa: E402
from app.main import app  # noqa: E402
from app.services.analytics import AnalyticsService, get_analytics_service  # noqa: E402
from app.services.applications import ApplicationService, get_application_service  # noqa: E402
from app.services.directory import get_identity_directory  # noqa: E402
from app.services.postings import PostingService, get_posting_service  # noqa: E402
from app.services.records import ApplicationRecord, PostingRecord, UserRecord  # noqa: E402
from app.services.repository import (  # noqa: E402
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryValidationError,
    POSTING_WRITABLE_COLUMNS,
    PROFILE_WRITABLE_COLUMNS,
    get_repository,
)
from app.services.toggles import PostingToggles  # noqa: E402

TODAY = date(2026, 3, 15)
BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

SEED_USERS = (
    ("student-1", "student", True),
    ("student-2", "student", True),
    ("faculty-1", "faculty", True),
    ("rep-1", "rep", True),
    ("rep-2", "rep", True),
    ("rep-inactive", "rep", False),
    ("admin-1", "admin", True),
    ("admin-2", "admin", True),
)


class FakeRepository:
    """In-memory stand-in for PostgresRepository."""

    def __init__(self) -> None:
        self._tick = 0
        self.users: dict[str, UserRecord] = {}
        self.postings: dict[str, PostingRecord] = {}
        self.events: list[dict[str, Any]] = []
        self.applications: dict[str, ApplicationRecord] = {}
        self.saved: dict[tuple[str, str], dict[str, Any]] = {}
        self.settings: dict[str, dict[str, Any]] = {}
        self.status_audit: list[dict[str, Any]] = []
        self.deleted_audit: list[dict[str, Any]] = []
        self.analytics: list[dict[str, Any]] = []
        self.failures: dict[str, Exception] = {}
        self.calls: list[str] = []
        for user_id, role, is_active in SEED_USERS:
            self.add_user(user_id, role, is_active=is_active)

    def _now(self) -> datetime:
        self._tick += 1
        return BASE_TIME + timedelta(minutes=self._tick)

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failures:
            raise self.failures[name]

    # seeding helpers

    def add_user(self, user_id: str, role: str, *, is_active: bool = True) -> UserRecord:
        user = UserRecord(
            user_id=user_id,
            email=f"{user_id}@example.edu",
            role=role,
            is_active=is_active,
            created_at=self._now(),
            first_name=user_id.split("-")[0].title(),
            last_name="Tester",
            company_name="Acme" if role == "rep" else None,
        )
        self.users[user_id] = user
        return user

    def add_posting(
        self,
        *,
        created_by: str | None,
        status: str = "active",
        deadline: date = TODAY + timedelta(days=30),
        rejection_note: str | None = None,
        title: str = "Research Assistant",
        created_at: datetime | None = None,
        posting_id: str | None = None,
    ) -> PostingRecord:
        now = created_at or self._now()
        posting = PostingRecord(
            id=posting_id or f"posting-{len(self.postings) + 1}",
            title=title,
            company="Acme",
            industry="Technology",
            job_type="Internship",
            description="Help with research.",
            deadline=deadline,
            status=status,
            created_at=now,
            updated_at=now,
            created_by=created_by,
            rejection_note=rejection_note,
            skills=["python"],
        )
        self.postings[posting.id] = posting
        return posting

    async def close(self) -> None:
        return None

    # users

    async def get_user(self, user_id: str) -> UserRecord | None:
        self._enter("get_user")
        return self.users.get(user_id)

    async def list_users(self, *, role: str | None, is_active: bool | None, limit: int, offset: int) -> list[UserRecord]:
        self._enter("list_users")
        rows = [
            user
            for user in self.users.values()
            if user.deleted_at is None
            and (role is None or user.role == role)
            and (is_active is None or user.is_active == is_active)
        ]
        rows.sort(key=lambda user: (-user.created_at.timestamp(), user.user_id))
        return rows[offset : offset + limit]

    async def update_user(self, user_id: str, *, is_active: bool | None = None, role: str | None = None) -> UserRecord:
        self._enter("update_user")
        user = self.users.get(user_id)
        if user is None or user.deleted_at is not None:
            raise RepositoryNotFoundError("user not found")
        if is_active is not None:
            user.is_active = is_active
        if role is not None:
            user.role = role
        return user

    async def record_user_status_event(self, *, user_id: str, action: str, admin_email: str | None) -> None:
        self._enter("record_user_status_event")
        self.status_audit.append({"user_id": user_id, "action": action, "changed_by_admin_email": admin_email})

    async def update_profile(self, user_id: str, fields: dict[str, Any]) -> UserRecord:
        self._enter("update_profile")
        unknown = set(fields) - set(PROFILE_WRITABLE_COLUMNS)
        if unknown:
            raise RepositoryValidationError(f"unsupported profile fields: {', '.join(sorted(unknown))}")
        user = self.users.get(user_id)
        if user is None or user.deleted_at is not None:
            raise RepositoryNotFoundError("user not found")
        for key, value in fields.items():
            setattr(user, key, value)
        return replace(user)

    async def anonymize_user(self, user_id: str) -> None:
        self._enter("anonymize_user")
        user = self.users.get(user_id)
        if user is None or user.deleted_at is not None:
            raise RepositoryNotFoundError("user not found")
        user.email = f"deleted-{user_id}@redacted.invalid"
        user.first_name = "Deleted"
        user.last_name = "User"
        user.company_name = None
        user.is_active = False
        user.deleted_at = self._now()

    async def delete_user_row(self, user_id: str) -> None:
        self._enter("delete_user_row")
        if self.users.pop(user_id, None) is None:
            raise RepositoryNotFoundError("user not found")
        for posting in self.postings.values():
            if posting.created_by == user_id:
                posting.created_by = None

    async def insert_deleted_user_audit(
        self,
        *,
        user: UserRecord,
        self_deleted: bool,
        admin_email: str | None,
        reason: str | None,
    ) -> dict[str, Any]:
        self._enter("insert_deleted_user_audit")
        row = {
            "id": len(self.deleted_audit) + 1,
            "user_id": user.user_id,
            "email": user.email,
            "role": user.role,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "company_name": user.company_name,
            "self_deleted": self_deleted,
            "deleted_by_admin_email": admin_email,
            "deletion_reason": reason,
            "deleted_at": self._now(),
            "identity_revoked_at": None,
        }
        self.deleted_audit.append(row)
        return row

    async def has_deleted_user_audit(self, user_id: str) -> bool:
        self._enter("has_deleted_user_audit")
        return any(row["user_id"] == user_id for row in self.deleted_audit)

    async def get_unrevoked_deletion(self, user_id: str) -> dict[str, Any] | None:
        self._enter("get_unrevoked_deletion")
        pending = [row for row in self.deleted_audit if row["user_id"] == user_id and row["identity_revoked_at"] is None]
        return dict(pending[-1]) if pending else None

    async def mark_identity_revoked(self, audit_id: int) -> None:
        self._enter("mark_identity_revoked")
        for row in self.deleted_audit:
            if row["id"] == audit_id:
                row["identity_revoked_at"] = self._now()

    async def list_deleted_users(self, *, limit: int, offset: int) -> list[dict[str, Any]]:
        self._enter("list_deleted_users")
        rows = sorted(self.deleted_audit, key=lambda row: (row["deleted_at"], row["id"]), reverse=True)
        return rows[offset : offset + limit]

    # postings

    async def insert_posting(self, *, fields: dict[str, Any], created_by: str) -> PostingRecord:
        self._enter("insert_posting")
        now = self._now()
        posting = PostingRecord(
            id=f"posting-{len(self.postings) + 1}",
            title=fields["title"],
            company=fields["company"],
            industry=fields["industry"],
            job_type=fields["job_type"],
            description=fields["description"],
            deadline=fields["deadline"],
            status=fields["status"],
            created_at=now,
            updated_at=now,
            created_by=created_by,
            rejection_note=fields.get("rejection_note"),
            skills=list(fields.get("skills") or []),
            location=fields.get("location"),
            salary_range=fields.get("salary_range"),
            apply_url=fields.get("apply_url"),
        )
        self.postings[posting.id] = posting
        self._record_event(posting.id, "create", None, posting.status, created_by, None)
        return replace(posting)

    async def get_posting(self, posting_id: str) -> PostingRecord:
        self._enter("get_posting")
        posting = self.postings.get(posting_id)
        if posting is None:
            raise RepositoryNotFoundError("posting not found")
        return replace(posting)

    async def update_posting(
        self,
        posting_id: str,
        fields: dict[str, Any],
        *,
        action: str,
        actor_user_id: str,
        note: str | None = None,
    ) -> PostingRecord:
        self._enter("update_posting")
        unknown = set(fields) - set(POSTING_WRITABLE_COLUMNS)
        if unknown:
            raise RepositoryValidationError(f"unsupported posting fields: {', '.join(sorted(unknown))}")
        posting = self.postings.get(posting_id)
        if posting is None:
            raise RepositoryNotFoundError("posting not found")
        from_status = posting.status
        for key, value in fields.items():
            setattr(posting, key, value)
        posting.updated_at = self._now()
        self._record_event(posting_id, action, from_status, posting.status, actor_user_id, note)
        return replace(posting)

    async def delete_posting(self, posting_id: str) -> None:
        self._enter("delete_posting")
        if self.postings.pop(posting_id, None) is None:
            raise RepositoryNotFoundError("posting not found")
        self.events = [event for event in self.events if event["posting_id"] != posting_id]

    async def list_postings(self) -> list[PostingRecord]:
        self._enter("list_postings")
        return [replace(posting) for posting in self.postings.values()]

    async def list_postings_by_creator(self, user_id: str) -> list[PostingRecord]:
        self._enter("list_postings_by_creator")
        return [replace(posting) for posting in self.postings.values() if posting.created_by == user_id]

    async def list_postings_by_status(self, status: str) -> list[PostingRecord]:
        self._enter("list_postings_by_status")
        rows = [replace(posting) for posting in self.postings.values() if posting.status == status]
        return sorted(rows, key=lambda posting: (posting.created_at, posting.id))

    async def list_active_postings(self, today: date) -> list[PostingRecord]:
        self._enter("list_active_postings")
        return [replace(posting) for posting in self.postings.values() if posting.is_open(today)]

    async def detach_postings(self, user_id: str) -> int:
        self._enter("detach_postings")
        count = 0
        for posting in self.postings.values():
            if posting.created_by == user_id:
                posting.created_by = None
                count += 1
        return count

    async def list_posting_events(self, posting_id: str) -> list[dict[str, Any]]:
        self._enter("list_posting_events")
        return [dict(event) for event in self.events if event["posting_id"] == posting_id]

    def _record_event(
        self,
        posting_id: str,
        action: str,
        from_status: str | None,
        to_status: str | None,
        actor_id: str,
        note: str | None,
    ) -> None:
        self.events.append(
            {
                "id": len(self.events) + 1,
                "posting_id": posting_id,
                "action": action,
                "from_status": from_status,
                "to_status": to_status,
                "actor_id": actor_id,
                "note": note,
                "created_at": self._now(),
            }
        )

    # applications

    async def insert_application(self, *, job_id: str, student_id: str) -> ApplicationRecord:
        self._enter("insert_application")
        if job_id not in self.postings:
            raise RepositoryNotFoundError("posting not found")
        if any(row.job_id == job_id and row.student_id == student_id for row in self.applications.values()):
            raise RepositoryConflictError("you have already applied to this job")
        now = self._now()
        application = ApplicationRecord(
            id=f"application-{len(self.applications) + 1}",
            job_id=job_id,
            student_id=student_id,
            status="applied",
            applied_at=now,
            updated_at=now,
        )
        self.applications[application.id] = application
        return replace(application)

    async def get_application(self, application_id: str) -> ApplicationRecord:
        self._enter("get_application")
        application = self.applications.get(application_id)
        if application is None:
            raise RepositoryNotFoundError("application not found")
        return replace(application)

    async def update_application_status(self, application_id: str, status: str) -> ApplicationRecord:
        self._enter("update_application_status")
        application = self.applications.get(application_id)
        if application is None:
            raise RepositoryNotFoundError("application not found")
        application.status = status
        application.updated_at = self._now()
        return replace(application)

    async def list_applications_by_student(self, student_id: str) -> list[ApplicationRecord]:
        self._enter("list_applications_by_student")
        return [replace(row) for row in self.applications.values() if row.student_id == student_id]

    async def list_applications_by_job(self, job_id: str) -> list[ApplicationRecord]:
        self._enter("list_applications_by_job")
        return [replace(row) for row in self.applications.values() if row.job_id == job_id]

    async def delete_student_applications(self, student_id: str) -> int:
        self._enter("delete_student_applications")
        doomed = [key for key, row in self.applications.items() if row.student_id == student_id]
        for key in doomed:
            del self.applications[key]
        return len(doomed)

    # saved jobs

    async def save_job(self, *, student_id: str, job_id: str) -> dict[str, Any]:
        self._enter("save_job")
        key = (student_id, job_id)
        if key not in self.saved:
            self.saved[key] = {"student_id": student_id, "job_id": job_id, "created_at": self._now()}
        return dict(self.saved[key])

    async def unsave_job(self, *, student_id: str, job_id: str) -> bool:
        self._enter("unsave_job")
        return self.saved.pop((student_id, job_id), None) is not None

    async def list_saved_jobs(self, student_id: str) -> list[dict[str, Any]]:
        self._enter("list_saved_jobs")
        return [dict(row) for (owner, _), row in self.saved.items() if owner == student_id]

    async def delete_saved_jobs(self, student_id: str) -> int:
        self._enter("delete_saved_jobs")
        doomed = [key for key in self.saved if key[0] == student_id]
        for key in doomed:
            del self.saved[key]
        return len(doomed)

    # analytics

    async def insert_analytics_event(self, *, job_id: str, user_id: str | None, event_type: str) -> dict[str, Any]:
        self._enter("insert_analytics_event")
        if job_id not in self.postings:
            raise RepositoryNotFoundError("posting not found")
        row = {
            "id": len(self.analytics) + 1,
            "job_id": job_id,
            "user_id": user_id,
            "event_type": event_type,
            "created_at": self._now(),
        }
        self.analytics.append(row)
        return dict(row)

    async def count_analytics_by_day(self, job_id: str, *, since: date, timezone: str) -> list[dict[str, Any]]:
        self._enter("count_analytics_by_day")
        counts: dict[tuple[date, str], int] = {}
        for row in self.analytics:
            day = row["created_at"].date()
            if row["job_id"] == job_id and day >= since:
                key = (day, row["event_type"])
                counts[key] = counts.get(key, 0) + 1
        return [{"day": day, "event_type": kind, "count": count} for (day, kind), count in sorted(counts.items())]

    async def count_analytics_events(self) -> dict[str, int]:
        self._enter("count_analytics_events")
        counts: dict[str, int] = {}
        for row in self.analytics:
            counts[row["event_type"]] = counts.get(row["event_type"], 0) + 1
        return counts

    async def count_postings_by_status(self, today: date) -> dict[str, int]:
        self._enter("count_postings_by_status")
        counts: dict[str, int] = {}
        for posting in self.postings.values():
            counts[posting.status] = counts.get(posting.status, 0) + 1
        counts["archived"] = sum(1 for posting in self.postings.values() if posting.is_archived(today))
        return counts

    # settings

    async def get_app_settings(self) -> dict[str, bool]:
        self._enter("get_app_settings")
        return {key: row["value"] for key, row in self.settings.items()}

    async def get_app_setting_rows(self) -> list[dict[str, Any]]:
        self._enter("get_app_setting_rows")
        return [dict(row) for _, row in sorted(self.settings.items())]

    async def set_app_setting(self, *, key: str, value: bool, actor_user_id: str) -> dict[str, Any]:
        self._enter("set_app_setting")
        row = {"key": key, "value": value, "updated_by": actor_user_id, "updated_at": self._now()}
        self.settings[key] = row
        return dict(row)


class FakeDirectory:
    """Treats the bearer token as the user id and reads role and activation from the repository."""

    def __init__(self, repository: FakeRepository) -> None:
        self.repository = repository
        self.revoked: list[str] = []
        self.revoke_error: Exception | None = None

    async def resolve(self, credential: str) -> Principal:
        user = self.repository.users.get(credential)
        if user is None or user.deleted_at is not None:
            raise UnauthenticatedError("invalid bearer token")
        role = parse_role(user.role)
        assert role is not None
        return Principal(user_id=user.user_id, role=role, is_active=user.is_active, email=user.email)

    async def revoke(self, user_id: str) -> None:
        if self.revoke_error is not None:
            raise self.revoke_error
        self.revoked.append(user_id)


def principal_for(repository: FakeRepository, user_id: str) -> Principal:
    user = repository.users[user_id]
    role = parse_role(user.role)
    assert role is not None
    return Principal(user_id=user_id, role=role, is_active=user.is_active, email=user.email)


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def directory(repository: FakeRepository) -> FakeDirectory:
    return FakeDirectory(repository)


@pytest.fixture
def principal(repository: FakeRepository):
    def _principal(user_id: str) -> Principal:
        return principal_for(repository, user_id)

    return _principal


@pytest.fixture
def posting_service(repository: FakeRepository) -> PostingService:
    return PostingService(repository, PostingToggles(repository), clock=lambda: TODAY)


@pytest.fixture
def client(repository: FakeRepository, directory: FakeDirectory) -> TestClient:
    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_identity_directory] = lambda: directory
    app.dependency_overrides[get_posting_service] = lambda: PostingService(
        repository,
        PostingToggles(repository),
        clock=lambda: TODAY,
    )
    app.dependency_overrides[get_application_service] = lambda: ApplicationService(repository, clock=lambda: TODAY)
    app.dependency_overrides[get_analytics_service] = lambda: AnalyticsService(repository, clock=lambda: TODAY)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
