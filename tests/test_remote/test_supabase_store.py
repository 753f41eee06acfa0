"""Tests for the Supabase adapters against a scripted client."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import SimpleNamespace
from typing import TYPE_CHECKING, Any

import httpx
import pytest
from postgrest.exceptions import APIError
from storage3.utils import StorageException
from supabase import AuthError

from brainsync.config import Settings
from brainsync.exceptions import (
    AuthenticationError,
    ConfigurationError,
    RemoteLookupError,
    RemoteWriteError,
)
from brainsync.filesystem.frontmatter import DocumentState
from brainsync.remote.base import AuthenticatedUser, LookupStatus, ResourceRecord, Revision
from brainsync.remote.supabase_store import (
    INSERT_DOCUMENT_RPC,
    NOT_FOUND_CODE,
    SupabaseRemoteStore,
    SupabaseSessionService,
    create_supabase_client,
)
from brainsync.services.resource_service import ResourceStatus
from brainsync.services.sync_service import SyncFailedError, SyncService, SyncState
from tests.conftest import FakeSessions, ScriptedPrompt

if TYPE_CHECKING:
    from pathlib import Path

    from brainsync.filesystem.vault import Vault
    from brainsync.services.session_service import Credentials

OWNER = AuthenticatedUser(id="user-1", email="writer@example.com")


def _api_error(code: str, message: str = "error") -> APIError:
    return APIError({"code": code, "message": message, "details": "", "hint": ""})


@dataclass
class FakeQuery:
    """Chainable PostgREST builder that records calls and returns a scripted response."""

    client: FakeClient
    target: str
    chain: list[tuple[str, tuple[Any, ...]]] = field(default_factory=list)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_") or name in {"client", "target", "chain"}:
            raise AttributeError(name)

        def _record(*args: Any, **kwargs: Any) -> FakeQuery:
            self.chain.append((name, args + tuple(sorted(kwargs.items()))))
            return self

        return _record

    async def execute(self) -> SimpleNamespace:
        self.client.executed.append((self.target, list(self.chain)))
        outcome = self.client.responses.pop(0) if self.client.responses else None
        if isinstance(outcome, Exception):
            raise outcome
        return SimpleNamespace(data=outcome)


class FakeBucket:
    def __init__(self, client: FakeClient, name: str) -> None:
        self.client = client
        self.name = name

    async def upload(self, path: str, file: bytes, file_options: dict[str, str]) -> None:
        if self.client.upload_error is not None:
            raise self.client.upload_error
        self.client.uploads.append((self.name, path, file, file_options))


class FakeStorage:
    def __init__(self, client: FakeClient) -> None:
        self.client = client

    def from_(self, name: str) -> FakeBucket:
        return FakeBucket(self.client, name)


class FakeAuth:
    def __init__(self) -> None:
        self.session: object | None = None
        self.user = SimpleNamespace(id="user-1", email="writer@example.com")
        self.error: AuthError | None = None

    async def get_session(self) -> object | None:
        if self.error is not None:
            raise self.error
        return self.session

    async def sign_in_with_password(self, credentials: dict[str, str]) -> SimpleNamespace:
        if self.error is not None:
            raise self.error
        self.session = object()
        return SimpleNamespace(user=self.user, session=self.session)

    async def get_user(self) -> SimpleNamespace | None:
        if self.error is not None:
            raise self.error
        return SimpleNamespace(user=self.user) if self.session else None

    async def sign_out(self) -> None:
        self.session = None


class FakeClient:
    def __init__(self, responses: list[Any] | None = None) -> None:
        self.responses: list[Any] = list(responses or [])
        self.executed: list[tuple[str, list[tuple[str, tuple[Any, ...]]]]] = []
        self.uploads: list[tuple[str, str, bytes, dict[str, str]]] = []
        self.upload_error: Exception | None = None
        self.auth = FakeAuth()
        self.storage = FakeStorage(self)

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: dict[str, Any]) -> FakeQuery:
        return FakeQuery(self, f"rpc:{name}", [("params", (params,))])


def _store(*responses: Any) -> tuple[SupabaseRemoteStore, FakeClient]:
    client = FakeClient(list(responses))
    return SupabaseRemoteStore(client, bucket="resources"), client  # type: ignore[arg-type]


class TestCreateClient:
    async def test_missing_configuration(self) -> None:
        with pytest.raises(ConfigurationError, match="Supabase URL and anon key"):
            await create_supabase_client(Settings(_env_file=None))


class TestSessionService:
    async def test_sign_in_flow(self) -> None:
        client = FakeClient()
        sessions = SupabaseSessionService(client)  # type: ignore[arg-type]
        assert not await sessions.has_active_session()
        user = await sessions.sign_in("writer@example.com", "pw")
        assert user == OWNER
        assert await sessions.has_active_session()
        assert await sessions.current_user() == OWNER
        await sessions.sign_out()
        assert await sessions.current_user() is None

    async def test_auth_error_on_sign_in(self) -> None:
        client = FakeClient()
        client.auth.error = AuthError("Invalid login credentials", None)
        sessions = SupabaseSessionService(client)  # type: ignore[arg-type]
        with pytest.raises(AuthenticationError, match="Invalid login credentials"):
            await sessions.sign_in("writer@example.com", "bad")

    async def test_auth_error_means_no_session(self) -> None:
        client = FakeClient()
        client.auth.error = AuthError("expired", None)
        sessions = SupabaseSessionService(client)  # type: ignore[arg-type]
        assert await sessions.has_active_session() is False


class TestFindSite:
    async def test_found(self) -> None:
        store, client = _store({"id": 7, "slug": "blog", "name": "Blog", "created_by": "user-1"})
        lookup = await store.find_site("blog")
        assert lookup.status == LookupStatus.FOUND
        site = lookup.value
        assert site is not None
        assert (site.id, site.slug, site.owner) == ("7", "blog", "user-1")
        target, chain = client.executed[0]
        assert target == "sites"
        assert ("eq", ("slug", "blog")) in chain
        assert ("single", ()) in chain

    async def test_no_rows_is_not_found(self) -> None:
        store, _client = _store(_api_error(NOT_FOUND_CODE, "JSON object requested, 0 rows"))
        assert (await store.find_site("blog")).status == LookupStatus.NOT_FOUND

    async def test_other_errors_are_failures(self) -> None:
        error = _api_error("42501", "permission denied")
        store, _client = _store(error)
        lookup = await store.find_site("blog")
        assert lookup.status == LookupStatus.FAILED
        assert lookup.error is error


class TestCreateSite:
    async def test_inserts_row(self) -> None:
        store, client = _store([{"id": "s1", "slug": "blog", "name": "blog", "created_by": "user-1"}])
        site = await store.create_site("blog", OWNER)
        assert site.id == "s1"
        _target, chain = client.executed[0]
        assert chain[0] == ("insert", ({"slug": "blog", "name": "blog", "created_by": "user-1"},))

    async def test_error_wrapped(self) -> None:
        store, _client = _store(_api_error("23505", "duplicate key"))
        with pytest.raises(RemoteWriteError, match="duplicate key"):
            await store.create_site("blog", OWNER)


class TestRevisions:
    async def test_insert_calls_stored_procedure(self) -> None:
        store, client = _store(None)
        revision = Revision(
            identity="abc",
            version=4,
            path="notes/",
            name="hello",
            state=DocumentState.PUBLISHED,
            content="Body",
        )
        await store.insert_revision(revision, "blog", "user-1")

        target, chain = client.executed[0]
        assert target == f"rpc:{INSERT_DOCUMENT_RPC}"
        params = chain[0][1][0]
        assert params["p_site_slug"] == "blog"
        assert params["p_user_id"] == "user-1"
        assert params["p_document"]["id"] == "abc"
        assert params["p_document"]["version"] == 4

    async def test_insert_error_wrapped(self) -> None:
        store, _client = _store(_api_error("23505", "duplicate key"))
        revision = Revision("abc", 1, "", "n", DocumentState.PUBLISHED, "x")
        with pytest.raises(RemoteWriteError, match="document insertion transaction"):
            await store.insert_revision(revision, "blog", "user-1")

    async def test_mark_removed_updates_latest(self) -> None:
        store, client = _store([{"version": 5}], [])
        await store.mark_removed("abc")
        _target, chain = client.executed[1]
        assert chain[0] == ("update", ({"state": "removed"},))
        assert ("eq", ("version", 5)) in chain

    async def test_mark_removed_without_rows(self) -> None:
        store, client = _store([])
        await store.mark_removed("abc")
        assert len(client.executed) == 1


class TestResources:
    async def test_found(self) -> None:
        store, _client = _store(
            {
                "path_hash": "h",
                "path": "a.png",
                "name": "a.png",
                "last_modified": "2026-03-01T12:00:00+00:00",
            }
        )
        record = (await store.find_resource("h")).value
        assert record is not None
        assert record.last_modified.year == 2026
        assert record.last_modified.tzinfo is not None

    async def test_not_found(self) -> None:
        store, _client = _store(_api_error(NOT_FOUND_CODE))
        assert (await store.find_resource("h")).status == LookupStatus.NOT_FOUND

    async def test_upload_uses_site_prefixed_key(self) -> None:
        store, client = _store()
        key = await store.upload_object("blog", "attachments/a.png", b"x", "image/png")
        assert key == "blog/attachments/a.png"
        bucket, path, data, options = client.uploads[0]
        assert (bucket, path, data) == ("resources", "blog/attachments/a.png", b"x")
        assert options == {"content-type": "image/png", "upsert": "true"}

    async def test_upload_error_wrapped(self) -> None:
        store, client = _store()
        client.upload_error = StorageException("bucket not found")
        with pytest.raises(RemoteWriteError, match="bucket not found"):
            await store.upload_object("blog", "a.png", b"x", "image/png")

    async def test_upload_transport_error_wrapped(self) -> None:
        store, client = _store()
        client.upload_error = httpx.WriteTimeout("write timed out")
        with pytest.raises(RemoteWriteError, match="write timed out"):
            await store.upload_object("blog", "a.png", b"x", "image/png")


class TestTransportErrors:
    async def test_site_lookup_is_a_failure(self) -> None:
        error = httpx.ConnectError("connection refused")
        store, _client = _store(error)
        lookup = await store.find_site("blog")
        assert lookup.status == LookupStatus.FAILED
        assert lookup.error is error

    async def test_resource_lookup_is_a_failure(self) -> None:
        store, _client = _store(httpx.ReadTimeout("timed out"))
        assert (await store.find_resource("h")).status == LookupStatus.FAILED

    async def test_insert_revision_wrapped(self) -> None:
        store, _client = _store(httpx.ConnectError("connection reset"))
        revision = Revision("abc", 1, "", "n", DocumentState.PUBLISHED, "x")
        with pytest.raises(RemoteWriteError, match="connection reset"):
            await store.insert_revision(revision, "blog", "user-1")

    async def test_create_site_wrapped(self) -> None:
        store, _client = _store(httpx.ConnectError("connection reset"))
        with pytest.raises(RemoteWriteError, match="Failed to create site"):
            await store.create_site("blog", OWNER)

    async def test_upsert_resource_wrapped(self) -> None:
        store, _client = _store(httpx.ConnectError("connection reset"))
        record = ResourceRecord("h", "a.png", "a.png", datetime(2026, 3, 1, tzinfo=UTC))
        with pytest.raises(RemoteWriteError, match="Error updating resource record"):
            await store.upsert_resource(record)

    async def test_latest_version_wrapped(self) -> None:
        store, _client = _store(httpx.ConnectError("connection reset"))
        with pytest.raises(RemoteLookupError, match="connection reset"):
            await store.latest_version("abc")

    async def test_mark_removed_wrapped(self) -> None:
        store, _client = _store([{"version": 2}], httpx.ConnectError("connection reset"))
        with pytest.raises(RemoteWriteError, match="Error updating document state"):
            await store.mark_removed("abc")

    async def test_sign_in_transport_error(self) -> None:
        client = FakeClient()

        async def _unreachable(credentials: dict[str, str]) -> None:
            raise httpx.ConnectError("connection refused")

        client.auth.sign_in_with_password = _unreachable  # type: ignore[method-assign]
        sessions = SupabaseSessionService(client)  # type: ignore[arg-type]
        with pytest.raises(AuthenticationError, match="connection refused"):
            await sessions.sign_in("writer@example.com", "pw")


class TestSyncOverSupabase:
    async def test_unreachable_resource_lookup_fails_only_that_resource(
        self,
        vault: Vault,
        tmp_vault_dir: Path,
        sessions: FakeSessions,
        credentials: Credentials,
    ) -> None:
        (tmp_vault_dir / "attachments" / "a.png").write_bytes(b"a")
        (tmp_vault_dir / "attachments" / "b.png").write_bytes(b"b")
        (tmp_vault_dir / "note.md").write_text("![[a.png]]\n![[b.png]]\n")
        store, client = _store(
            {"id": "s1", "slug": "blog", "name": "Blog", "created_by": "user-1"},
            httpx.ConnectError("connection reset"),
            _api_error(NOT_FOUND_CODE),
            [],
            None,
        )
        service = SyncService(
            vault=vault,
            sessions=sessions,
            store=store,
            prompt=ScriptedPrompt(True),
            credentials=credentials,
            default_site_slug="blog",
        )

        result = await service.sync_document("note.md")

        assert result.state == SyncState.DONE
        assert [(o.logical_path, o.status) for o in result.resources] == [
            ("attachments/a.png", ResourceStatus.FAILED),
            ("attachments/b.png", ResourceStatus.UPLOADED),
        ]
        assert "connection reset" in (result.resources[0].error or "")
        assert [upload[1] for upload in client.uploads] == ["blog/attachments/b.png"]
        assert client.executed[-1][0] == f"rpc:{INSERT_DOCUMENT_RPC}"

    async def test_unreachable_insert_ends_in_error_state(
        self,
        vault: Vault,
        tmp_vault_dir: Path,
        sessions: FakeSessions,
        credentials: Credentials,
    ) -> None:
        (tmp_vault_dir / "note.md").write_text("Body\n")
        store, _client = _store(
            {"id": "s1", "slug": "blog", "name": "Blog", "created_by": "user-1"},
            httpx.ConnectError("connection reset"),
        )
        service = SyncService(
            vault=vault,
            sessions=sessions,
            store=store,
            prompt=ScriptedPrompt(True),
            credentials=credentials,
            default_site_slug="blog",
        )

        with pytest.raises(SyncFailedError, match="connection reset") as exc_info:
            await service.sync_document("note.md")
        assert exc_info.value.result.state == SyncState.ERROR
