"""Remote store contracts shared by the Supabase and SQL adapters."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Generic, Protocol, TypeVar

from brainsync.filesystem.frontmatter import DocumentState

if TYPE_CHECKING:
    from datetime import datetime

T = TypeVar("T")


class LookupStatus(StrEnum):
    """Outcome of a single-row remote lookup."""

    FOUND = "found"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass(frozen=True)
class LookupResult(Generic[T]):
    """Result of a lookup that may legitimately find nothing.

    "No matching row" is a normal outcome and is kept apart from genuine
    failures, so callers branch on ``status`` instead of inspecting errors.
    """

    status: LookupStatus
    value: T | None = None
    error: Exception | None = None

    @classmethod
    def found(cls, value: T) -> LookupResult[T]:
        return cls(LookupStatus.FOUND, value=value)

    @classmethod
    def not_found(cls) -> LookupResult[T]:
        return cls(LookupStatus.NOT_FOUND)

    @classmethod
    def failed(cls, error: Exception) -> LookupResult[T]:
        return cls(LookupStatus.FAILED, error=error)


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    email: str | None = None


@dataclass(frozen=True)
class SiteRecord:
    id: str
    slug: str
    name: str
    owner: str | None = None


@dataclass(frozen=True)
class ResourceRecord:
    path_hash: str
    path: str
    name: str
    last_modified: datetime


@dataclass(frozen=True)
class Revision:
    """One immutable copy of a document at a specific version."""

    identity: str
    version: int
    path: str
    name: str
    state: DocumentState
    content: str

    def to_payload(self) -> dict[str, object]:
        """Row payload in the remote ``documents`` table layout."""
        return {
            "id": self.identity,
            "version": self.version,
            "path": self.path,
            "name": self.name,
            "state": str(self.state),
            "content": self.content,
        }


class SessionService(Protocol):
    """Authentication against the remote store."""

    async def has_active_session(self) -> bool: ...

    async def sign_in(self, email: str, password: str) -> AuthenticatedUser | None: ...

    async def current_user(self) -> AuthenticatedUser | None: ...

    async def sign_out(self) -> None: ...


class RemoteStore(Protocol):
    """Relational and object storage operations used by the sync protocol."""

    async def find_site(self, slug: str) -> LookupResult[SiteRecord]: ...

    async def create_site(self, slug: str, owner: AuthenticatedUser) -> SiteRecord: ...

    async def insert_revision(self, revision: Revision, site_slug: str, author_id: str) -> None:
        """Insert a new revision row and link it to the site in one transaction."""
        ...

    async def mark_removed(self, identity: str) -> None:
        """Set ``state = removed`` on the latest revision of *identity*."""
        ...

    async def latest_version(self, identity: str) -> int | None: ...

    async def find_resource(self, path_hash: str) -> LookupResult[ResourceRecord]: ...

    async def upsert_resource(self, record: ResourceRecord) -> None: ...

    async def upload_object(
        self, site_slug: str, logical_path: str, data: bytes, content_type: str
    ) -> str:
        """Store bytes under ``{site_slug}/{logical_path}``, overwriting. Returns the key."""
        ...


class Prompt(Protocol):
    """Interactive confirmation supplied by the host."""

    async def confirm_site_creation(self, slug: str) -> bool: ...


def object_key(site_slug: str, logical_path: str) -> str:
    """Storage key of a resource inside the bucket."""
    return f"{site_slug}/{logical_path.lstrip('/')}"
