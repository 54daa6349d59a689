from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from app.core.config import get_settings
from app.core.errors import ConflictError, InvalidInputError, JobBoardError, NotFoundError, UpstreamError
from app.services.records import ApplicationRecord, PostingRecord, UserRecord


class RepositoryError(JobBoardError):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError, UpstreamError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError, NotFoundError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError, ConflictError):
    """Raised when a write violates a uniqueness rule."""


class RepositoryValidationError(RepositoryError, InvalidInputError):
    """Raised when payload validation fails before persistence."""


POSTING_COLUMNS = """
  id::text as id,
  title,
  company,
  industry,
  job_type,
  description,
  skills,
  location,
  salary_range,
  apply_url,
  deadline,
  status,
  rejection_note,
  created_by::text as created_by,
  created_at,
  updated_at
"""
POSTING_WRITABLE_COLUMNS = (
    "title",
    "company",
    "industry",
    "job_type",
    "description",
    "skills",
    "location",
    "salary_range",
    "apply_url",
    "deadline",
    "status",
    "rejection_note",
)
PROFILE_WRITABLE_COLUMNS = ("first_name", "last_name", "company_name")
USER_COLUMNS = """
  user_id::text as user_id,
  email,
  role,
  is_active,
  first_name,
  last_name,
  company_name,
  created_at,
  deleted_at
"""
DELETED_USER_COLUMNS = """
  id,
  user_id::text as user_id,
  email,
  role,
  first_name,
  last_name,
  company_name,
  self_deleted,
  deleted_by_admin_email,
  deletion_reason,
  deleted_at,
  identity_revoked_at
"""
APPLICATION_COLUMNS = """
  id::text as id,
  job_id::text as job_id,
  student_id::text as student_id,
  status,
  applied_at,
  updated_at
"""
_UNAVAILABLE_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.InterfaceError,
    pg_exc.PostgresConnectionError,
)
_BAD_ID_ERRORS = (pg_exc.InvalidTextRepresentationError, asyncpg.DataError)


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
        command_timeout: float = 15.0,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.command_timeout = command_timeout
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    # users

    async def get_user(self, user_id: str) -> UserRecord | None:
        async with self._connection() as conn:
            try:
                row = await conn.fetchrow(f"select {USER_COLUMNS} from user_roles where user_id = $1::uuid", user_id)
            except _BAD_ID_ERRORS:
                return None
        return self._user_row_to_record(row) if row else None

    async def list_users(
        self,
        *,
        role: str | None,
        is_active: bool | None,
        limit: int,
        offset: int,
    ) -> list[UserRecord]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                select {USER_COLUMNS}
                from user_roles
                where deleted_at is null
                  and ($1::text is null or role = $1::text)
                  and ($2::boolean is null or is_active = $2::boolean)
                order by created_at desc, user_id asc
                limit $3 offset $4
                """,
                role,
                is_active,
                limit,
                offset,
            )
        return [self._user_row_to_record(row) for row in rows]

    async def update_user(
        self,
        user_id: str,
        *,
        is_active: bool | None = None,
        role: str | None = None,
    ) -> UserRecord:
        async with self._connection() as conn:
            try:
                row = await conn.fetchrow(
                    f"""
                    update user_roles
                    set
                      is_active = coalesce($2::boolean, is_active),
                      role = coalesce($3::text, role)
                    where user_id = $1::uuid and deleted_at is null
                    returning {USER_COLUMNS}
                    """,
                    user_id,
                    is_active,
                    role,
                )
            except _BAD_ID_ERRORS as exc:
                raise RepositoryNotFoundError("user not found") from exc
        if not row:
            raise RepositoryNotFoundError("user not found")
        return self._user_row_to_record(row)

    async def record_user_status_event(self, *, user_id: str, action: str, admin_email: str | None) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                insert into user_status_audit (user_id, action, changed_by_admin_email)
                values ($1::uuid, $2, $3)
                """,
                user_id,
                action,
                admin_email,
            )

    async def update_profile(self, user_id: str, fields: dict[str, Any]) -> UserRecord:
        unknown = set(fields) - set(PROFILE_WRITABLE_COLUMNS)
        if unknown:
            raise RepositoryValidationError(f"unsupported profile fields: {', '.join(sorted(unknown))}")
        columns = list(fields)
        assignments = ", ".join(f"{column} = ${index}" for index, column in enumerate(columns, start=2))
        async with self._connection() as conn:
            try:
                row = await conn.fetchrow(
                    f"""
                    update user_roles
                    set {assignments}
                    where user_id = $1::uuid and deleted_at is null
                    returning {USER_COLUMNS}
                    """,
                    user_id,
                    *[fields[column] for column in columns],
                )
            except _BAD_ID_ERRORS as exc:
                raise RepositoryNotFoundError("user not found") from exc
        if not row:
            raise RepositoryNotFoundError("user not found")
        return self._user_row_to_record(row)

    async def anonymize_user(self, user_id: str) -> None:
        async with self._connection() as conn:
            result = await conn.execute(
                """
                update user_roles
                set
                  email = 'deleted-' || user_id::text || '@redacted.invalid',
                  first_name = 'Deleted',
                  last_name = 'User',
                  company_name = null,
                  is_active = false,
                  deleted_at = now()
                where user_id = $1::uuid and deleted_at is null
                """,
                user_id,
            )
        if result.endswith(" 0"):
            raise RepositoryNotFoundError("user not found")

    async def delete_user_row(self, user_id: str) -> None:
        async with self._connection() as conn:
            result = await conn.execute("delete from user_roles where user_id = $1::uuid", user_id)
        if result.endswith(" 0"):
            raise RepositoryNotFoundError("user not found")

    async def insert_deleted_user_audit(
        self,
        *,
        user: UserRecord,
        self_deleted: bool,
        admin_email: str | None,
        reason: str | None,
    ) -> dict[str, Any]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"""
                insert into deleted_users_audit (
                  user_id,
                  email,
                  role,
                  first_name,
                  last_name,
                  company_name,
                  self_deleted,
                  deleted_by_admin_email,
                  deletion_reason
                )
                values ($1::uuid, $2, $3, $4, $5, $6, $7, $8, $9)
                returning {DELETED_USER_COLUMNS}
                """,
                user.user_id,
                user.email,
                user.role,
                user.first_name,
                user.last_name,
                user.company_name,
                self_deleted,
                admin_email,
                reason,
            )
        return dict(row)

    async def has_deleted_user_audit(self, user_id: str) -> bool:
        async with self._connection() as conn:
            try:
                found = await conn.fetchval(
                    "select exists(select 1 from deleted_users_audit where user_id = $1::uuid)",
                    user_id,
                )
            except _BAD_ID_ERRORS:
                return False
        return bool(found)

    async def get_unrevoked_deletion(self, user_id: str) -> dict[str, Any] | None:
        async with self._connection() as conn:
            try:
                row = await conn.fetchrow(
                    f"""
                    select {DELETED_USER_COLUMNS}
                    from deleted_users_audit
                    where user_id = $1::uuid and identity_revoked_at is null
                    order by deleted_at desc, id desc
                    limit 1
                    """,
                    user_id,
                )
            except _BAD_ID_ERRORS:
                return None
        return dict(row) if row else None

    async def mark_identity_revoked(self, audit_id: int) -> None:
        async with self._connection() as conn:
            await conn.execute(
                "update deleted_users_audit set identity_revoked_at = now() where id = $1",
                audit_id,
            )

    async def list_deleted_users(self, *, limit: int, offset: int) -> list[dict[str, Any]]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                select {DELETED_USER_COLUMNS}
                from deleted_users_audit
                order by deleted_at desc, id desc
                limit $1 offset $2
                """,
                limit,
                offset,
            )
        return [dict(row) for row in rows]

    # postings

    async def insert_posting(self, *, fields: dict[str, Any], created_by: str) -> PostingRecord:
        columns = [column for column in POSTING_WRITABLE_COLUMNS if column in fields]
        values = [fields[column] for column in columns]
        placeholders = ", ".join(f"${index}" for index in range(1, len(columns) + 1))
        async with self._connection() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    f"""
                    insert into jobs ({", ".join(columns)}, created_by)
                    values ({placeholders}, ${len(columns) + 1}::uuid)
                    returning {POSTING_COLUMNS}
                    """,
                    *values,
                    created_by,
                )
                await self._insert_posting_event(
                    conn=conn,
                    posting_id=row["id"],
                    action="create",
                    from_status=None,
                    to_status=row["status"],
                    actor_user_id=created_by,
                    note=None,
                )
        return self._posting_row_to_record(row)

    async def get_posting(self, posting_id: str) -> PostingRecord:
        async with self._connection() as conn:
            try:
                row = await conn.fetchrow(f"select {POSTING_COLUMNS} from jobs where id = $1::uuid", posting_id)
            except _BAD_ID_ERRORS as exc:
                raise RepositoryNotFoundError("posting not found") from exc
        if not row:
            raise RepositoryNotFoundError("posting not found")
        return self._posting_row_to_record(row)

    async def update_posting(
        self,
        posting_id: str,
        fields: dict[str, Any],
        *,
        action: str,
        actor_user_id: str,
        note: str | None = None,
    ) -> PostingRecord:
        unknown = set(fields) - set(POSTING_WRITABLE_COLUMNS)
        if unknown:
            raise RepositoryValidationError(f"unsupported posting fields: {', '.join(sorted(unknown))}")
        columns = list(fields)
        assignments = [f"{column} = ${index}" for index, column in enumerate(columns, start=2)]
        assignments.append("updated_at = now()")
        async with self._connection() as conn:
            try:
                async with conn.transaction():
                    from_status = await conn.fetchval("select status from jobs where id = $1::uuid", posting_id)
                    if from_status is None:
                        raise RepositoryNotFoundError("posting not found")

                    # Last write wins: the caller decided on a status it read
                    # earlier and nothing here re-checks it.
                    row = await conn.fetchrow(
                        f"""
                        update jobs
                        set {", ".join(assignments)}
                        where id = $1::uuid
                        returning {POSTING_COLUMNS}
                        """,
                        posting_id,
                        *[fields[column] for column in columns],
                    )
                    await self._insert_posting_event(
                        conn=conn,
                        posting_id=posting_id,
                        action=action,
                        from_status=from_status,
                        to_status=row["status"],
                        actor_user_id=actor_user_id,
                        note=note,
                    )
            except _BAD_ID_ERRORS as exc:
                raise RepositoryNotFoundError("posting not found") from exc
        return self._posting_row_to_record(row)

    async def delete_posting(self, posting_id: str) -> None:
        async with self._connection() as conn:
            try:
                result = await conn.execute("delete from jobs where id = $1::uuid", posting_id)
            except _BAD_ID_ERRORS as exc:
                raise RepositoryNotFoundError("posting not found") from exc
        if result.endswith(" 0"):
            raise RepositoryNotFoundError("posting not found")

    async def list_postings(self) -> list[PostingRecord]:
        async with self._connection() as conn:
            rows = await conn.fetch(f"select {POSTING_COLUMNS} from jobs order by created_at desc, id asc")
        return [self._posting_row_to_record(row) for row in rows]

    async def list_postings_by_creator(self, user_id: str) -> list[PostingRecord]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"select {POSTING_COLUMNS} from jobs where created_by = $1::uuid order by created_at desc, id asc",
                user_id,
            )
        return [self._posting_row_to_record(row) for row in rows]

    async def list_postings_by_status(self, status: str) -> list[PostingRecord]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"select {POSTING_COLUMNS} from jobs where status = $1 order by created_at asc, id asc",
                status,
            )
        return [self._posting_row_to_record(row) for row in rows]

    async def list_active_postings(self, today: date) -> list[PostingRecord]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                select {POSTING_COLUMNS}
                from jobs
                where status = 'active' and deadline >= $1::date
                order by created_at desc, id asc
                """,
                today,
            )
        return [self._posting_row_to_record(row) for row in rows]

    async def detach_postings(self, user_id: str) -> int:
        async with self._connection() as conn:
            result = await conn.execute("update jobs set created_by = null where created_by = $1::uuid", user_id)
        return self._affected_rows(result)

    async def _insert_posting_event(
        self,
        *,
        conn: asyncpg.Connection,
        posting_id: str,
        action: str,
        from_status: str | None,
        to_status: str | None,
        actor_user_id: str,
        note: str | None,
    ) -> None:
        await conn.execute(
            """
            insert into posting_events (posting_id, action, from_status, to_status, actor_id, payload)
            values ($1::uuid, $2, $3, $4, $5::uuid, $6::jsonb)
            """,
            posting_id,
            action,
            from_status,
            to_status,
            actor_user_id,
            json.dumps({"note": note}),
        )

    async def list_posting_events(self, posting_id: str) -> list[dict[str, Any]]:
        async with self._connection() as conn:
            try:
                rows = await conn.fetch(
                    """
                    select
                      id,
                      posting_id::text as posting_id,
                      action,
                      from_status,
                      to_status,
                      actor_id::text as actor_id,
                      payload,
                      created_at
                    from posting_events
                    where posting_id = $1::uuid
                    order by created_at asc, id asc
                    """,
                    posting_id,
                )
            except _BAD_ID_ERRORS as exc:
                raise RepositoryNotFoundError("posting not found") from exc
        return [self._posting_event_row_to_dict(row) for row in rows]

    # applications

    async def insert_application(self, *, job_id: str, student_id: str) -> ApplicationRecord:
        async with self._connection() as conn:
            try:
                row = await conn.fetchrow(
                    f"""
                    insert into job_applications (job_id, student_id, status)
                    values ($1::uuid, $2::uuid, 'applied')
                    returning {APPLICATION_COLUMNS}
                    """,
                    job_id,
                    student_id,
                )
            except pg_exc.UniqueViolationError as exc:
                raise RepositoryConflictError("you have already applied to this job") from exc
            except pg_exc.ForeignKeyViolationError as exc:
                raise RepositoryNotFoundError("posting not found") from exc
        return self._application_row_to_record(row)

    async def get_application(self, application_id: str) -> ApplicationRecord:
        async with self._connection() as conn:
            try:
                row = await conn.fetchrow(
                    f"select {APPLICATION_COLUMNS} from job_applications where id = $1::uuid",
                    application_id,
                )
            except _BAD_ID_ERRORS as exc:
                raise RepositoryNotFoundError("application not found") from exc
        if not row:
            raise RepositoryNotFoundError("application not found")
        return self._application_row_to_record(row)

    async def update_application_status(self, application_id: str, status: str) -> ApplicationRecord:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"""
                update job_applications
                set status = $2, updated_at = now()
                where id = $1::uuid
                returning {APPLICATION_COLUMNS}
                """,
                application_id,
                status,
            )
        if not row:
            raise RepositoryNotFoundError("application not found")
        return self._application_row_to_record(row)

    async def list_applications_by_student(self, student_id: str) -> list[ApplicationRecord]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                select {APPLICATION_COLUMNS}
                from job_applications
                where student_id = $1::uuid
                order by applied_at desc, id asc
                """,
                student_id,
            )
        return [self._application_row_to_record(row) for row in rows]

    async def list_applications_by_job(self, job_id: str) -> list[ApplicationRecord]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                select {APPLICATION_COLUMNS}
                from job_applications
                where job_id = $1::uuid
                order by applied_at asc, id asc
                """,
                job_id,
            )
        return [self._application_row_to_record(row) for row in rows]

    async def delete_student_applications(self, student_id: str) -> int:
        async with self._connection() as conn:
            result = await conn.execute("delete from job_applications where student_id = $1::uuid", student_id)
        return self._affected_rows(result)

    # saved jobs

    async def save_job(self, *, student_id: str, job_id: str) -> dict[str, Any]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                insert into saved_jobs (student_id, job_id)
                values ($1::uuid, $2::uuid)
                on conflict (student_id, job_id) do update set student_id = excluded.student_id
                returning student_id::text as student_id, job_id::text as job_id, created_at
                """,
                student_id,
                job_id,
            )
        return dict(row)

    async def unsave_job(self, *, student_id: str, job_id: str) -> bool:
        async with self._connection() as conn:
            result = await conn.execute(
                "delete from saved_jobs where student_id = $1::uuid and job_id = $2::uuid",
                student_id,
                job_id,
            )
        return self._affected_rows(result) > 0

    async def list_saved_jobs(self, student_id: str) -> list[dict[str, Any]]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                select student_id::text as student_id, job_id::text as job_id, created_at
                from saved_jobs
                where student_id = $1::uuid
                order by created_at desc, job_id asc
                """,
                student_id,
            )
        return [dict(row) for row in rows]

    async def delete_saved_jobs(self, student_id: str) -> int:
        async with self._connection() as conn:
            result = await conn.execute("delete from saved_jobs where student_id = $1::uuid", student_id)
        return self._affected_rows(result)

    # analytics

    async def insert_analytics_event(self, *, job_id: str, user_id: str | None, event_type: str) -> dict[str, Any]:
        async with self._connection() as conn:
            try:
                row = await conn.fetchrow(
                    """
                    insert into job_analytics (job_id, user_id, event_type)
                    values ($1::uuid, $2::uuid, $3)
                    returning id, job_id::text as job_id, user_id::text as user_id, event_type, created_at
                    """,
                    job_id,
                    user_id,
                    event_type,
                )
            except pg_exc.ForeignKeyViolationError as exc:
                raise RepositoryNotFoundError("posting not found") from exc
        return dict(row)

    async def count_analytics_by_day(self, job_id: str, *, since: date, timezone: str) -> list[dict[str, Any]]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                select
                  (created_at at time zone $3)::date as day,
                  event_type,
                  count(*) as count
                from job_analytics
                where job_id = $1::uuid
                  and (created_at at time zone $3)::date >= $2::date
                group by 1, 2
                order by 1, 2
                """,
                job_id,
                since,
                timezone,
            )
        return [{"day": row["day"], "event_type": row["event_type"], "count": int(row["count"])} for row in rows]

    async def count_analytics_events(self) -> dict[str, int]:
        async with self._connection() as conn:
            rows = await conn.fetch("select event_type, count(*) as count from job_analytics group by event_type")
        return {row["event_type"]: int(row["count"]) for row in rows}

    async def count_postings_by_status(self, today: date) -> dict[str, int]:
        async with self._connection() as conn:
            rows = await conn.fetch("select status, count(*) as count from jobs group by status")
            archived = await conn.fetchval(
                "select count(*) from jobs where status = 'active' and deadline < $1::date",
                today,
            )
        counts = {row["status"]: int(row["count"]) for row in rows}
        counts["archived"] = int(archived or 0)
        return counts

    # settings

    async def get_app_settings(self) -> dict[str, bool]:
        return {row["key"]: row["value"] for row in await self.get_app_setting_rows()}

    async def get_app_setting_rows(self) -> list[dict[str, Any]]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                select setting_key as key, setting_value as value, updated_by::text as updated_by, updated_at
                from app_settings
                order by setting_key
                """
            )
        return [dict(row) for row in rows]

    async def set_app_setting(self, *, key: str, value: bool, actor_user_id: str) -> dict[str, Any]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                insert into app_settings (setting_key, setting_value, updated_by, updated_at)
                values ($1, $2, $3::uuid, now())
                on conflict (setting_key) do update
                set
                  setting_value = excluded.setting_value,
                  updated_by = excluded.updated_by,
                  updated_at = excluded.updated_at
                returning setting_key as key, setting_value as value, updated_by::text as updated_by, updated_at
                """,
                key,
                value,
                actor_user_id,
            )
        return dict(row)

    # plumbing

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                yield conn
        except _UNAVAILABLE_ERRORS as exc:
            raise RepositoryUnavailableError("database unavailable") from exc

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("JB_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=self.command_timeout,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _affected_rows(result: str) -> int:
        try:
            return int(result.rsplit(" ", maxsplit=1)[-1])
        except (ValueError, IndexError):
            return 0

    @staticmethod
    def _posting_row_to_record(row: asyncpg.Record) -> PostingRecord:
        return PostingRecord(
            id=row["id"],
            title=row["title"],
            company=row["company"],
            industry=row["industry"],
            job_type=row["job_type"],
            description=row["description"],
            skills=list(row["skills"] or []),
            location=row["location"],
            salary_range=row["salary_range"],
            apply_url=row["apply_url"],
            deadline=row["deadline"],
            status=row["status"],
            rejection_note=row["rejection_note"],
            created_by=row["created_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _user_row_to_record(row: asyncpg.Record) -> UserRecord:
        return UserRecord(
            user_id=row["user_id"],
            email=row["email"],
            role=row["role"],
            is_active=bool(row["is_active"]),
            first_name=row["first_name"],
            last_name=row["last_name"],
            company_name=row["company_name"],
            created_at=row["created_at"],
            deleted_at=row["deleted_at"],
        )

    @staticmethod
    def _application_row_to_record(row: asyncpg.Record) -> ApplicationRecord:
        return ApplicationRecord(
            id=row["id"],
            job_id=row["job_id"],
            student_id=row["student_id"],
            status=row["status"],
            applied_at=row["applied_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _posting_event_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        payload = row["payload"]
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError:
                payload = {}
        if not isinstance(payload, dict):
            payload = {}
        return {
            "id": int(row["id"]),
            "posting_id": row["posting_id"],
            "action": row["action"],
            "from_status": row["from_status"],
            "to_status": row["to_status"],
            "actor_id": row["actor_id"],
            "note": payload.get("note"),
            "created_at": row["created_at"],
        }


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        command_timeout=settings.database_command_timeout_seconds,
    )
