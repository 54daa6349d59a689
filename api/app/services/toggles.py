from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from fastapi import Depends

from app.core.auth import Principal, Role
from app.core.config import get_settings
from app.core.errors import ForbiddenError, InvalidInputError
from app.services.repository import get_repository

logger = logging.getLogger(__name__)


class ToggleKey(str, Enum):
    FACULTY_CAN_POST_JOBS = "faculty_can_post_jobs"
    REP_CAN_POST_JOBS = "rep_can_post_jobs"


TOGGLE_KEY_BY_ROLE: dict[Role, ToggleKey] = {
    Role.FACULTY: ToggleKey.FACULTY_CAN_POST_JOBS,
    Role.REP: ToggleKey.REP_CAN_POST_JOBS,
}


class SettingsStore(Protocol):
    async def get_app_settings(self) -> dict[str, bool]: ...

    async def get_app_setting_rows(self) -> list[dict[str, Any]]: ...

    async def set_app_setting(self, *, key: str, value: bool, actor_user_id: str) -> dict[str, Any]: ...


@dataclass(frozen=True, slots=True)
class ToggleSnapshot:
    """Toggle values read once per request.

    Keys without a stored row resolve to ``default``. The default is fail-open
    (``True``) unless ``JB_TOGGLE_DEFAULT`` says otherwise, so a role is not
    locked out just because its settings row was never seeded.
    """

    values: Mapping[str, bool] = field(default_factory=dict)
    default: bool = True

    def enabled(self, key: str | ToggleKey) -> bool:
        raw_key = key.value if isinstance(key, ToggleKey) else key
        value = self.values.get(raw_key)
        if value is None:
            logger.info("toggle %s not configured; using default=%s", raw_key, self.default)
            return self.default
        return value


def parse_toggle_key(key: str) -> ToggleKey:
    try:
        return ToggleKey(key)
    except ValueError as exc:
        raise InvalidInputError(f"unknown setting key: {key}", reason="invalid_key") from exc


class PostingToggles:
    def __init__(self, store: SettingsStore, *, default: bool = True) -> None:
        self.store = store
        self.default = default

    async def snapshot(self) -> ToggleSnapshot:
        values = await self.store.get_app_settings()
        known = {key.value for key in ToggleKey}
        return ToggleSnapshot(
            values={key: bool(value) for key, value in values.items() if key in known},
            default=self.default,
        )

    async def get(self, key: str) -> bool:
        snapshot = await self.snapshot()
        return snapshot.enabled(key)

    async def list_settings(self) -> list[dict[str, Any]]:
        rows = {row["key"]: row for row in await self.store.get_app_setting_rows()}
        listed: list[dict[str, Any]] = []
        for key in ToggleKey:
            row = rows.get(key.value)
            if row is None:
                listed.append({"key": key.value, "value": self.default, "updated_by": None, "updated_at": None})
            else:
                listed.append(row)
        return listed

    async def set(self, key: str, value: bool, actor: Principal) -> dict[str, Any]:
        if actor.role is not Role.ADMIN:
            raise ForbiddenError("admin access required", reason="role_not_permitted")
        if not actor.is_active:
            raise ForbiddenError("inactive account", reason="inactive")
        toggle_key = parse_toggle_key(key)

        # No compare-and-set: two admins writing at once resolve to whichever
        # write reaches the store last.
        row = await self.store.set_app_setting(key=toggle_key.value, value=value, actor_user_id=actor.user_id)
        logger.info("setting updated key=%s value=%s actor=%s", toggle_key.value, value, actor.user_id)
        return row


def get_posting_toggles(repository=Depends(get_repository)) -> PostingToggles:
    return PostingToggles(repository, default=get_settings().toggle_default)
