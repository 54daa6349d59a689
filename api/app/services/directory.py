from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from fastapi import Depends

from app.core.auth import Principal, parse_role
from app.core.config import get_settings
from app.core.errors import UnauthenticatedError, UpstreamError
from app.services.repository import get_repository

logger = logging.getLogger(__name__)


class DirectoryUnavailableError(UpstreamError):
    """Raised when Supabase auth cannot be reached or is not configured."""


class IdentityDirectory(Protocol):
    async def resolve(self, credential: str) -> Principal: ...

    async def revoke(self, user_id: str) -> None: ...


class SupabaseIdentityDirectory:
    """Supabase auth for identity, the ``user_roles`` table for role and activation."""

    def __init__(
        self,
        *,
        supabase_url: str | None,
        anon_key: str | None,
        service_role_key: str | None,
        timeout_seconds: float,
        repository: Any,
    ) -> None:
        self.supabase_url = supabase_url
        self.anon_key = anon_key
        self.service_role_key = service_role_key
        self.timeout_seconds = timeout_seconds
        self.repository = repository

    async def resolve(self, credential: str) -> Principal:
        if not self.supabase_url or not self.anon_key:
            raise DirectoryUnavailableError("Supabase auth is not configured")

        user = await _fetch_supabase_user(
            supabase_url=self.supabase_url,
            supabase_anon_key=self.anon_key,
            token=credential,
            timeout_seconds=self.timeout_seconds,
        )
        user_id = user.get("id")
        if not isinstance(user_id, str) or not user_id:
            raise UnauthenticatedError("invalid bearer token")

        record = await self.repository.get_user(user_id)
        if record is None or record.deleted_at is not None:
            raise UnauthenticatedError("no job board profile for this account")

        role = parse_role(record.role)
        if role is None:
            raise UnauthenticatedError("account has no recognised role")

        email = record.email or user.get("email")
        return Principal(
            user_id=user_id,
            role=role,
            is_active=record.is_active,
            email=email if isinstance(email, str) else None,
        )

    async def revoke(self, user_id: str) -> None:
        if not self.supabase_url or not self.service_role_key:
            raise DirectoryUnavailableError("Supabase service role key is not configured")

        await _delete_supabase_user(
            supabase_url=self.supabase_url,
            service_role_key=self.service_role_key,
            user_id=user_id,
            timeout_seconds=self.timeout_seconds,
        )


async def _fetch_supabase_user(
    *,
    supabase_url: str,
    supabase_anon_key: str,
    token: str,
    timeout_seconds: float,
) -> dict[str, Any]:
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": supabase_anon_key,
    }
    url = f"{supabase_url.rstrip('/')}/auth/v1/user"

    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        raise DirectoryUnavailableError("Supabase auth verification unavailable") from exc

    if response.status_code in {401, 403}:
        raise UnauthenticatedError("invalid bearer token")
    if response.status_code != 200:
        raise DirectoryUnavailableError("Supabase auth verification failed")

    return response.json()


async def _delete_supabase_user(
    *,
    supabase_url: str,
    service_role_key: str,
    user_id: str,
    timeout_seconds: float,
) -> None:
    headers = {
        "Authorization": f"Bearer {service_role_key}",
        "apikey": service_role_key,
    }
    url = f"{supabase_url.rstrip('/')}/auth/v1/admin/users/{user_id}"

    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.delete(url, headers=headers)
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        raise DirectoryUnavailableError("Supabase admin API unavailable") from exc

    if response.status_code == 404:
        logger.warning("identity already absent in Supabase user_id=%s", user_id)
        return
    if response.status_code >= 300:
        raise DirectoryUnavailableError(f"Supabase identity revocation failed with status {response.status_code}")


def get_identity_directory(repository=Depends(get_repository)) -> SupabaseIdentityDirectory:
    settings = get_settings()
    return SupabaseIdentityDirectory(
        supabase_url=settings.supabase_url,
        anon_key=settings.supabase_anon_key,
        service_role_key=settings.supabase_service_role_key,
        timeout_seconds=settings.auth_timeout_seconds,
        repository=repository,
    )
