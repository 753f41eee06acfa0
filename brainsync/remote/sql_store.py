"""Self-hosted remote store: SQLAlchemy tables plus a local object directory."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING

import bcrypt
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from brainsync.exceptions import RemoteLookupError, RemoteWriteError
from brainsync.filesystem.frontmatter import DocumentState
from brainsync.models import Document, DocumentSite, Resource, Site, User
from brainsync.remote.base import (
    AuthenticatedUser,
    LookupResult,
    ResourceRecord,
    Revision,
    SiteRecord,
    object_key,
)
from brainsync.services.datetime_service import format_iso, now_utc, parse_datetime

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

_DUMMY_PASSWORD_HASH = bcrypt.hashpw(b"brainsync-dummy-password", bcrypt.gensalt()).decode("utf-8")


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def _site_record(site: Site) -> SiteRecord:
    return SiteRecord(id=site.id, slug=site.slug, name=site.name, owner=site.created_by)


class SqlSessionService:
    """Email/password sign-in against the ``users`` table.

    The session lives for the lifetime of this object.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory
        self._user: AuthenticatedUser | None = None

    async def has_active_session(self) -> bool:
        return self._user is not None

    async def sign_in(self, email: str, password: str) -> AuthenticatedUser | None:
        async with self.session_factory() as session:
            result = await session.execute(select(User).where(User.email == email))
            user = result.scalar_one_or_none()
        if user is None:
            # Run a dummy hash check to reduce email timing side channels.
            verify_password(password, _DUMMY_PASSWORD_HASH)
            return None
        if not verify_password(password, user.password_hash):
            return None
        self._user = AuthenticatedUser(id=user.id, email=user.email)
        logger.debug("Signed in as %s", user.email)
        return self._user

    async def current_user(self) -> AuthenticatedUser | None:
        return self._user

    async def sign_out(self) -> None:
        self._user = None

    async def create_user(self, email: str, password: str) -> AuthenticatedUser:
        """Register a new account."""
        user = User(
            id=str(uuid.uuid4()),
            email=email,
            password_hash=hash_password(password),
            created_at=format_iso(now_utc()),
        )
        async with self.session_factory() as session:
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as exc:
                raise RemoteWriteError(f"User {email} already exists") from exc
        return AuthenticatedUser(id=user.id, email=user.email)


class SqlRemoteStore:
    """RemoteStore backed by SQLAlchemy and a directory of uploaded objects."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage_dir: Path,
        bucket: str = "resources",
    ) -> None:
        self.session_factory = session_factory
        self.storage_dir = storage_dir
        self.bucket = bucket

    async def find_site(self, slug: str) -> LookupResult[SiteRecord]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(Site).where(Site.slug == slug))
                site = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.error("Failed to look up site %s: %s", slug, exc)
            return LookupResult.failed(exc)
        if site is None:
            return LookupResult.not_found()
        return LookupResult.found(_site_record(site))

    async def create_site(self, slug: str, owner: AuthenticatedUser) -> SiteRecord:
        site = Site(
            id=str(uuid.uuid4()),
            slug=slug,
            name=slug,
            created_by=owner.id,
            created_at=format_iso(now_utc()),
        )
        try:
            async with self.session_factory() as session:
                session.add(site)
                await session.commit()
        except SQLAlchemyError as exc:
            raise RemoteWriteError(f"Failed to create site: {exc}") from exc
        logger.info("Created site %s", slug)
        return _site_record(site)

    async def insert_revision(self, revision: Revision, site_slug: str, author_id: str) -> None:
        try:
            async with self.session_factory() as session, session.begin():
                result = await session.execute(select(Site).where(Site.slug == site_slug))
                site = result.scalar_one_or_none()
                if site is None:
                    site = Site(
                        id=str(uuid.uuid4()),
                        slug=site_slug,
                        name=site_slug,
                        created_by=author_id,
                        created_at=format_iso(now_utc()),
                    )
                    session.add(site)
                    await session.flush()

                session.add(
                    Document(
                        id=revision.identity,
                        version=revision.version,
                        path=revision.path,
                        name=revision.name,
                        state=str(revision.state),
                        content=revision.content,
                        created_by=author_id,
                        created_at=format_iso(now_utc()),
                    )
                )
                link = await session.get(DocumentSite, (revision.identity, site.id))
                if link is None:
                    session.add(DocumentSite(document_id=revision.identity, site_id=site.id))
        except IntegrityError as exc:
            raise RemoteWriteError(
                f"Revision {revision.version} of {revision.identity} already exists"
            ) from exc
        except SQLAlchemyError as exc:
            raise RemoteWriteError(f"Error in document insertion transaction: {exc}") from exc

    async def latest_version(self, identity: str) -> int | None:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(func.max(Document.version)).where(Document.id == identity)
                )
                latest: int | None = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise RemoteLookupError(f"Error reading versions of {identity}: {exc}") from exc
        return latest

    async def mark_removed(self, identity: str) -> None:
        try:
            async with self.session_factory() as session, session.begin():
                result = await session.execute(
                    select(func.max(Document.version)).where(Document.id == identity)
                )
                latest = result.scalar_one_or_none()
                if latest is None:
                    logger.warning("No remote revision found for %s", identity)
                    return
                await session.execute(
                    update(Document)
                    .where(Document.id == identity, Document.version == latest)
                    .values(state=str(DocumentState.REMOVED))
                )
        except SQLAlchemyError as exc:
            raise RemoteWriteError(f"Error updating document state: {exc}") from exc

    async def find_resource(self, path_hash: str) -> LookupResult[ResourceRecord]:
        try:
            async with self.session_factory() as session:
                resource = await session.get(Resource, path_hash)
        except SQLAlchemyError as exc:
            logger.error("Error checking resource %s: %s", path_hash, exc)
            return LookupResult.failed(exc)
        if resource is None:
            return LookupResult.not_found()
        return LookupResult.found(
            ResourceRecord(
                path_hash=resource.path_hash,
                path=resource.path,
                name=resource.name,
                last_modified=parse_datetime(resource.last_modified),
            )
        )

    async def upsert_resource(self, record: ResourceRecord) -> None:
        try:
            async with self.session_factory() as session:
                await session.merge(
                    Resource(
                        path_hash=record.path_hash,
                        path=record.path,
                        name=record.name,
                        last_modified=format_iso(record.last_modified),
                    )
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise RemoteWriteError(f"Error updating resource record: {exc}") from exc

    async def upload_object(
        self, site_slug: str, logical_path: str, data: bytes, content_type: str
    ) -> str:
        key = object_key(site_slug, logical_path)
        bucket_dir = (self.storage_dir / self.bucket).resolve()
        target = (bucket_dir / key).resolve()
        if not target.is_relative_to(bucket_dir):
            raise RemoteWriteError(f"Invalid object key: {key}")

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise RemoteWriteError(f"Error uploading file: {exc}") from exc
        logger.debug("Stored %s (%s, %d bytes)", key, content_type, len(data))
        return key
