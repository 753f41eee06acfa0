"""Supabase-backed remote store and session.

Tables, the ``insert_document_with_site`` stored procedure and the
``resources`` storage bucket are expected to exist in the project.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx
from postgrest.exceptions import APIError
from storage3.utils import StorageException
from supabase import AsyncClient, AuthError, acreate_client

from brainsync.exceptions import (
    AuthenticationError,
    ConfigurationError,
    RemoteLookupError,
    RemoteWriteError,
)
from brainsync.filesystem.frontmatter import DocumentState
from brainsync.remote.base import (
    AuthenticatedUser,
    LookupResult,
    ResourceRecord,
    Revision,
    SiteRecord,
    object_key,
)
from brainsync.services.datetime_service import format_iso, parse_datetime

if TYPE_CHECKING:
    from brainsync.config import Settings

logger = logging.getLogger(__name__)

# PostgREST error code for ``.single()`` matching zero rows
NOT_FOUND_CODE = "PGRST116"
INSERT_DOCUMENT_RPC = "insert_document_with_site"


def _is_not_found(exc: Exception) -> bool:
    return getattr(exc, "code", None) == NOT_FOUND_CODE


def _to_user(user: Any) -> AuthenticatedUser | None:
    if user is None:
        return None
    return AuthenticatedUser(id=str(user.id), email=getattr(user, "email", None))


async def create_supabase_client(settings: Settings) -> AsyncClient:
    """Create an async Supabase client with the project's anon key.

    Raises:
        ConfigurationError: If the Supabase URL or anon key is not configured
    """
    if not settings.supabase_url or not settings.supabase_anon_key:
        raise ConfigurationError(
            "Supabase URL and anon key must be configured. "
            "Set BRAINSYNC_SUPABASE_URL and BRAINSYNC_SUPABASE_ANON_KEY or run 'brainsync init'."
        )
    client = await acreate_client(settings.supabase_url, settings.supabase_anon_key)
    logger.debug("Supabase client initialized for %s", settings.supabase_url)
    return client


class SupabaseSessionService:
    """Session handling through Supabase Auth."""

    def __init__(self, client: AsyncClient) -> None:
        self.client = client

    async def has_active_session(self) -> bool:
        try:
            session = await self.client.auth.get_session()
        except (AuthError, httpx.HTTPError) as exc:
            logger.error("Error checking session: %s", exc)
            return False
        return session is not None

    async def sign_in(self, email: str, password: str) -> AuthenticatedUser | None:
        logger.debug("Signing in as %s", email)
        try:
            response = await self.client.auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        except AuthError as exc:
            raise AuthenticationError(f"Sign in failed: {exc.message}") from exc
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"Sign in failed: {exc}") from exc
        return _to_user(response.user)

    async def current_user(self) -> AuthenticatedUser | None:
        try:
            response = await self.client.auth.get_user()
        except AuthError as exc:
            raise AuthenticationError(f"Failed to get user: {exc.message}") from exc
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"Failed to get user: {exc}") from exc
        if response is None:
            return None
        return _to_user(response.user)

    async def sign_out(self) -> None:
        try:
            await self.client.auth.sign_out()
        except (AuthError, httpx.HTTPError) as exc:
            raise AuthenticationError(f"Failed to sign out: {exc}") from exc


class SupabaseRemoteStore:
    """RemoteStore over PostgREST tables and Supabase Storage."""

    def __init__(self, client: AsyncClient, bucket: str = "resources") -> None:
        self.client = client
        self.bucket = bucket

    async def find_site(self, slug: str) -> LookupResult[SiteRecord]:
        try:
            response = await (
                self.client.table("sites")
                .select("id, slug, name, created_by")
                .eq("slug", slug)
                .single()
                .execute()
            )
        except (APIError, httpx.HTTPError) as exc:
            if _is_not_found(exc):
                return LookupResult.not_found()
            logger.error("Failed to look up site %s: %s", slug, exc)
            return LookupResult.failed(exc)
        row = response.data
        if not row:
            return LookupResult.not_found()
        return LookupResult.found(
            SiteRecord(
                id=str(row["id"]),
                slug=row["slug"],
                name=row.get("name") or row["slug"],
                owner=row.get("created_by"),
            )
        )

    async def create_site(self, slug: str, owner: AuthenticatedUser) -> SiteRecord:
        try:
            response = await (
                self.client.table("sites")
                .insert({"slug": slug, "name": slug, "created_by": owner.id})
                .execute()
            )
        except APIError as exc:
            raise RemoteWriteError(f"Failed to create site: {exc.message}") from exc
        except httpx.HTTPError as exc:
            raise RemoteWriteError(f"Failed to create site: {exc}") from exc
        rows = response.data or []
        row = rows[0] if rows else {}
        logger.info("Created site %s", slug)
        return SiteRecord(
            id=str(row.get("id", "")),
            slug=row.get("slug", slug),
            name=row.get("name", slug),
            owner=row.get("created_by", owner.id),
        )

    async def insert_revision(self, revision: Revision, site_slug: str, author_id: str) -> None:
        # The stored procedure links the site and inserts the row in one transaction.
        try:
            await self.client.rpc(
                INSERT_DOCUMENT_RPC,
                {
                    "p_document": revision.to_payload(),
                    "p_site_slug": site_slug,
                    "p_user_id": author_id,
                },
            ).execute()
        except APIError as exc:
            raise RemoteWriteError(
                f"Error in document insertion transaction: {exc.message}"
            ) from exc
        except httpx.HTTPError as exc:
            raise RemoteWriteError(f"Error in document insertion transaction: {exc}") from exc

    async def latest_version(self, identity: str) -> int | None:
        try:
            response = await (
                self.client.table("documents")
                .select("version")
                .eq("id", identity)
                .order("version", desc=True)
                .limit(1)
                .execute()
            )
        except (APIError, httpx.HTTPError) as exc:
            raise RemoteLookupError(f"Error reading versions of {identity}: {exc}") from exc
        rows = response.data or []
        return int(rows[0]["version"]) if rows else None

    async def mark_removed(self, identity: str) -> None:
        try:
            latest = await self.latest_version(identity)
            if latest is None:
                logger.warning("No remote revision found for %s", identity)
                return
            await (
                self.client.table("documents")
                .update({"state": str(DocumentState.REMOVED)})
                .eq("id", identity)
                .eq("version", latest)
                .execute()
            )
        except APIError as exc:
            raise RemoteWriteError(f"Error updating document state: {exc.message}") from exc
        except httpx.HTTPError as exc:
            raise RemoteWriteError(f"Error updating document state: {exc}") from exc

    async def find_resource(self, path_hash: str) -> LookupResult[ResourceRecord]:
        try:
            response = await (
                self.client.table("resources")
                .select("path_hash, path, name, last_modified")
                .eq("path_hash", path_hash)
                .single()
                .execute()
            )
        except (APIError, httpx.HTTPError) as exc:
            if _is_not_found(exc):
                return LookupResult.not_found()
            logger.error("Error checking resource %s: %s", path_hash, exc)
            return LookupResult.failed(exc)
        row = response.data
        if not row:
            return LookupResult.not_found()
        return LookupResult.found(
            ResourceRecord(
                path_hash=row["path_hash"],
                path=row.get("path") or "",
                name=row.get("name") or "",
                last_modified=parse_datetime(row["last_modified"]),
            )
        )

    async def upsert_resource(self, record: ResourceRecord) -> None:
        try:
            await (
                self.client.table("resources")
                .upsert(
                    {
                        "path_hash": record.path_hash,
                        "path": record.path,
                        "name": record.name,
                        "last_modified": format_iso(record.last_modified),
                    }
                )
                .execute()
            )
        except APIError as exc:
            raise RemoteWriteError(f"Error updating resource record: {exc.message}") from exc
        except httpx.HTTPError as exc:
            raise RemoteWriteError(f"Error updating resource record: {exc}") from exc

    async def upload_object(
        self, site_slug: str, logical_path: str, data: bytes, content_type: str
    ) -> str:
        key = object_key(site_slug, logical_path)
        try:
            await self.client.storage.from_(self.bucket).upload(
                path=key,
                file=data,
                file_options={"content-type": content_type, "upsert": "true"},
            )
        except (StorageException, httpx.HTTPError) as exc:
            raise RemoteWriteError(f"Error uploading file {key}: {exc}") from exc
        logger.debug("Uploaded %s to bucket %s", key, self.bucket)
        return key
