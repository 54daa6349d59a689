"""Account deletion, admin user management and self-service profile edits.

Deletion runs four ordered steps against two independent systems (the
Postgres store and the Supabase identity service). There is no transaction
spanning them: a failure stops the run and reports which steps already
completed, and nothing is rolled back.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from fastapi import Depends
from opentelemetry import trace

from app.core.auth import POSTING_ROLES, Principal, Role, parse_role
from app.core.errors import ConflictError, InvalidInputError, NotFoundError, UpstreamError
from app.services.directory import IdentityDirectory, get_identity_directory
from app.services.policy import require_active_admin
from app.services.records import UserRecord
from app.services.repository import get_repository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class AccountDeletionError(UpstreamError):
    """Raised when a deletion step fails; earlier steps stay applied."""

    def __init__(self, step: str, completed_steps: list[str], message: str) -> None:
        super().__init__(message, reason=f"step_failed:{step}")
        self.step = step
        self.completed_steps = list(completed_steps)


@dataclass(slots=True)
class DeletionResult:
    user_id: str
    self_deleted: bool
    completed_steps: list[str] = field(default_factory=list)
    audit_id: int | None = None
    resumed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "self_deleted": self.self_deleted,
            "completed_steps": list(self.completed_steps),
            "audit_id": self.audit_id,
            "resumed": self.resumed,
        }


class AccountDeletionWorkflow:
    """Deletes an account in four ordered steps.

    The audit row doubles as the resume marker: until ``identity_revoked_at``
    is set on it, calling the workflow again for the same user skips the steps
    that already landed and retries the rest.
    """

    def __init__(self, repository: Any, directory: IdentityDirectory) -> None:
        self.repository = repository
        self.directory = directory

    async def delete_self(self, principal: Principal, reason: str | None = None) -> DeletionResult:
        return await self._start(principal.user_id, self_deleted=True, admin_email=None, reason=reason)

    async def delete_by_admin(self, admin: Principal, user_id: str, reason: str | None = None) -> DeletionResult:
        require_active_admin(admin)
        if user_id == admin.user_id:
            raise InvalidInputError("use account deletion to remove your own account", reason="self_delete")

        return await self._start(user_id, self_deleted=False, admin_email=admin.email, reason=reason)

    async def _start(
        self,
        user_id: str,
        *,
        self_deleted: bool,
        admin_email: str | None,
        reason: str | None,
    ) -> DeletionResult:
        pending = await self.repository.get_unrevoked_deletion(user_id)
        user = await self.repository.get_user(user_id)
        if pending is not None:
            logger.info("resuming account deletion user_id=%s audit_id=%s", user_id, pending["id"])
            return await self._run(
                user_id,
                user=user,
                role=pending["role"],
                self_deleted=bool(pending["self_deleted"]),
                admin_email=admin_email,
                reason=reason,
                audit_id=pending["id"],
            )

        if user is None:
            if await self.repository.has_deleted_user_audit(user_id):
                raise ConflictError("account already deleted")
            raise NotFoundError("user not found")
        if user.deleted_at is not None:
            raise ConflictError("account already deleted")
        return await self._run(
            user_id,
            user=user,
            role=user.role,
            self_deleted=self_deleted,
            admin_email=admin_email,
            reason=reason,
        )

    async def _run(
        self,
        user_id: str,
        *,
        user: UserRecord | None,
        role: str | None,
        self_deleted: bool,
        admin_email: str | None,
        reason: str | None,
        audit_id: int | None = None,
    ) -> DeletionResult:
        resumed = audit_id is not None
        row_settled = user is None or user.deleted_at is not None
        result = DeletionResult(user_id=user_id, self_deleted=self_deleted, audit_id=audit_id, resumed=resumed)

        async def audit_snapshot() -> None:
            if resumed or user is None:
                return
            row = await self.repository.insert_deleted_user_audit(
                user=user,
                self_deleted=self_deleted,
                admin_email=admin_email,
                reason=reason.strip() if reason and reason.strip() else None,
            )
            result.audit_id = row.get("id")

        async def role_cleanup() -> None:
            if row_settled:
                return
            parsed = parse_role(role)
            if parsed is Role.STUDENT:
                applications = await self.repository.delete_student_applications(user_id)
                saved = await self.repository.delete_saved_jobs(user_id)
                logger.info("removed student data user_id=%s applications=%s saved=%s", user_id, applications, saved)
            elif parsed in POSTING_ROLES:
                detached = await self.repository.detach_postings(user_id)
                logger.info("detached postings user_id=%s count=%s", user_id, detached)

        async def directory_row() -> None:
            if row_settled:
                return
            # Admin deletions keep an anonymized row; self deletions drop it.
            if self_deleted:
                await self.repository.delete_user_row(user_id)
            else:
                await self.repository.anonymize_user(user_id)

        async def identity_revoke() -> None:
            await self.directory.revoke(user_id)
            await self.repository.mark_identity_revoked(result.audit_id)

        steps: list[tuple[str, Callable[[], Awaitable[None]]]] = [
            ("audit_snapshot", audit_snapshot),
            ("role_cleanup", role_cleanup),
            ("directory_row", directory_row),
            ("identity_revoke", identity_revoke),
        ]

        with tracer.start_as_current_span("account_deletion") as span:
            span.set_attribute("account.self_deleted", self_deleted)
            span.set_attribute("account.resumed", resumed)
            for name, step in steps:
                with tracer.start_as_current_span(f"account_deletion.{name}"):
                    try:
                        await step()
                    except Exception as exc:
                        logger.exception(
                            "account deletion step failed user_id=%s step=%s completed=%s",
                            user_id,
                            name,
                            result.completed_steps,
                        )
                        raise AccountDeletionError(
                            name,
                            result.completed_steps,
                            f"account deletion failed at {name}",
                        ) from exc
                result.completed_steps.append(name)

        logger.info(
            "account deleted user_id=%s self_deleted=%s admin=%s resumed=%s",
            user_id,
            self_deleted,
            admin_email,
            resumed,
        )
        return result


class UserAdminService:
    def __init__(self, repository: Any) -> None:
        self.repository = repository

    async def list_users(
        self,
        admin: Principal,
        *,
        role: Role | None = None,
        is_active: bool | None = None,
        limit: int,
        offset: int,
    ) -> list[UserRecord]:
        require_active_admin(admin)
        return await self.repository.list_users(
            role=role.value if role else None,
            is_active=is_active,
            limit=limit,
            offset=offset,
        )

    async def update_user(
        self,
        admin: Principal,
        user_id: str,
        *,
        is_active: bool | None = None,
        role: Role | None = None,
    ) -> UserRecord:
        require_active_admin(admin)
        if is_active is None and role is None:
            raise InvalidInputError("nothing to update")
        if user_id == admin.user_id:
            raise InvalidInputError("admins cannot change their own status or role", reason="self_update")

        user = await self.repository.update_user(
            user_id,
            is_active=is_active,
            role=role.value if role else None,
        )

        actions = []
        if is_active is not None:
            actions.append("activated" if is_active else "deactivated")
        if role is not None:
            actions.append(f"role:{role.value}")
        for action in actions:
            await self._record_status_event(user_id, action, admin)

        logger.info("user updated user_id=%s actions=%s admin=%s", user_id, actions, admin.user_id)
        return user

    async def set_user_status(self, admin: Principal, user_id: str, is_active: bool) -> UserRecord:
        return await self.update_user(admin, user_id, is_active=is_active)

    async def set_user_role(self, admin: Principal, user_id: str, role: Role) -> UserRecord:
        return await self.update_user(admin, user_id, role=role)

    async def list_deleted_users(self, admin: Principal, *, limit: int, offset: int) -> list[dict[str, Any]]:
        require_active_admin(admin)
        return await self.repository.list_deleted_users(limit=limit, offset=offset)

    async def _record_status_event(self, user_id: str, action: str, admin: Principal) -> None:
        try:
            await self.repository.record_user_status_event(user_id=user_id, action=action, admin_email=admin.email)
        except UpstreamError:
            # The status change already landed; only the trail row is missing.
            logger.exception("failed to write user status audit user_id=%s action=%s", user_id, action)


class ProfileService:
    """Lets a signed-in user read and edit their own name and company."""

    def __init__(self, repository: Any) -> None:
        self.repository = repository

    async def get(self, principal: Principal) -> UserRecord:
        user = await self.repository.get_user(principal.user_id)
        if user is None or user.deleted_at is not None:
            raise NotFoundError("user not found")
        return user

    async def update(self, principal: Principal, changes: dict[str, Any]) -> UserRecord:
        if not changes:
            raise InvalidInputError("nothing to update")

        user = await self.repository.update_profile(principal.user_id, changes)
        logger.info("profile updated user_id=%s fields=%s", principal.user_id, sorted(changes))
        return user


def get_account_deletion_workflow(
    repository=Depends(get_repository),
    directory=Depends(get_identity_directory),
) -> AccountDeletionWorkflow:
    return AccountDeletionWorkflow(repository, directory)


def get_user_admin_service(repository=Depends(get_repository)) -> UserAdminService:
    return UserAdminService(repository)


def get_profile_service(repository=Depends(get_repository)) -> ProfileService:
    return ProfileService(repository)
