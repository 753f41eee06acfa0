"""Shared test fixtures for brainsync."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

import pytest

from brainsync.config import Settings, StoreBackend
from brainsync.database import create_engine, init_schema
from brainsync.exceptions import RemoteWriteError
from brainsync.filesystem.frontmatter import DocumentState
from brainsync.filesystem.vault import Vault
from brainsync.remote.base import (
    AuthenticatedUser,
    LookupResult,
    ResourceRecord,
    Revision,
    SiteRecord,
    object_key,
)
from brainsync.remote.sql_store import SqlRemoteStore, SqlSessionService
from brainsync.services.session_service import Credentials

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

TEST_EMAIL = "writer@example.com"
TEST_PASSWORD = "correct horse battery staple"
TEST_USER = AuthenticatedUser(id="user-1", email=TEST_EMAIL)


class FakeSessions:
    """SessionService that accepts one email/password pair."""

    def __init__(self, active: bool = False, user: AuthenticatedUser = TEST_USER) -> None:
        self.active = active
        self.user = user
        self.sign_in_calls: list[str] = []

    async def has_active_session(self) -> bool:
        return self.active

    async def sign_in(self, email: str, password: str) -> AuthenticatedUser | None:
        self.sign_in_calls.append(email)
        if email != TEST_EMAIL or password != TEST_PASSWORD:
            return None
        self.active = True
        return self.user

    async def current_user(self) -> AuthenticatedUser | None:
        return self.user if self.active else None

    async def sign_out(self) -> None:
        self.active = False


class InMemoryStore:
    """RemoteStore keeping rows in dicts and recording every call."""

    def __init__(self) -> None:
        self.sites: dict[str, SiteRecord] = {}
        self.revisions: list[dict[str, Any]] = []
        self.resources: dict[str, ResourceRecord] = {}
        self.objects: dict[str, bytes] = {}
        self.calls: list[tuple[str, Any]] = []
        self.failing_resource_hashes: set[str] = set()
        self.fail_inserts = False
        self.fail_mark_removed = False

    def calls_to(self, name: str) -> list[Any]:
        return [args for call, args in self.calls if call == name]

    async def find_site(self, slug: str) -> LookupResult[SiteRecord]:
        self.calls.append(("find_site", slug))
        site = self.sites.get(slug)
        return LookupResult.found(site) if site else LookupResult.not_found()

    async def create_site(self, slug: str, owner: AuthenticatedUser) -> SiteRecord:
        self.calls.append(("create_site", slug))
        site = SiteRecord(id=f"site-{len(self.sites) + 1}", slug=slug, name=slug, owner=owner.id)
        self.sites[slug] = site
        return site

    async def insert_revision(self, revision: Revision, site_slug: str, author_id: str) -> None:
        self.calls.append(("insert_revision", (revision.identity, revision.version)))
        if self.fail_inserts:
            raise RemoteWriteError("Error in document insertion transaction: boom")
        row = {**revision.to_payload(), "site": site_slug, "created_by": author_id}
        self.revisions.append(row)

    async def latest_version(self, identity: str) -> int | None:
        versions = [r["version"] for r in self.revisions if r["id"] == identity]
        return max(versions) if versions else None

    async def mark_removed(self, identity: str) -> None:
        self.calls.append(("mark_removed", identity))
        if self.fail_mark_removed:
            raise RemoteWriteError("Error updating document state: boom")
        latest = await self.latest_version(identity)
        for row in self.revisions:
            if row["id"] == identity and row["version"] == latest:
                row["state"] = str(DocumentState.REMOVED)

    async def find_resource(self, path_hash: str) -> LookupResult[ResourceRecord]:
        self.calls.append(("find_resource", path_hash))
        if path_hash in self.failing_resource_hashes:
            return LookupResult.failed(RuntimeError("connection reset"))
        record = self.resources.get(path_hash)
        return LookupResult.found(record) if record else LookupResult.not_found()

    async def upsert_resource(self, record: ResourceRecord) -> None:
        self.calls.append(("upsert_resource", record.path_hash))
        self.resources[record.path_hash] = record

    async def upload_object(
        self, site_slug: str, logical_path: str, data: bytes, content_type: str
    ) -> str:
        key = object_key(site_slug, logical_path)
        self.calls.append(("upload_object", key))
        self.objects[key] = data
        return key

    def seed_resource(self, path_hash: str, path: str, last_modified: datetime) -> None:
        self.resources[path_hash] = ResourceRecord(
            path_hash=path_hash, path=path, name=path.rsplit("/", 1)[-1], last_modified=last_modified
        )


class ScriptedPrompt:
    """Prompt answering with a fixed decision and recording the slugs asked about."""

    def __init__(self, answer: bool) -> None:
        self.answer = answer
        self.asked: list[str] = []

    async def confirm_site_creation(self, slug: str) -> bool:
        self.asked.append(slug)
        return self.answer


@pytest.fixture
def tmp_vault_dir(tmp_path: Path) -> Path:
    """Create a temporary vault with an attachments folder."""
    vault_dir = tmp_path / "vault"
    vault_dir.mkdir()
    (vault_dir / "attachments").mkdir()
    return vault_dir


@pytest.fixture
def vault(tmp_vault_dir: Path) -> Vault:
    return Vault(tmp_vault_dir)


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(email=TEST_EMAIL, password=TEST_PASSWORD)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def sessions() -> FakeSessions:
    return FakeSessions()


@pytest.fixture
def test_settings(tmp_vault_dir: Path, tmp_path: Path) -> Settings:
    """Settings for the sql backend with temporary paths."""
    db_path = tmp_path / "db" / "test.db"
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        vault_dir=tmp_vault_dir,
        store_backend=StoreBackend.SQL,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        storage_dir=tmp_path / "storage",
        email=TEST_EMAIL,
        password=TEST_PASSWORD,
        default_site_slug="blog",
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    engine, _session_factory = create_engine(test_settings)
    await init_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def sql_sessions(session_factory: async_sessionmaker[AsyncSession]) -> SqlSessionService:
    return SqlSessionService(session_factory)


@pytest.fixture
def sql_store(
    session_factory: async_sessionmaker[AsyncSession], test_settings: Settings
) -> SqlRemoteStore:
    return SqlRemoteStore(session_factory, test_settings.storage_dir)


@pytest.fixture
async def registered_user(sql_sessions: SqlSessionService) -> AuthenticatedUser:
    return await sql_sessions.create_user(TEST_EMAIL, TEST_PASSWORD)
