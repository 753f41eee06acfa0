"""CLI client for pushing vault documents to a brainsync site."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from pydantic import ValidationError

from brainsync.config import Settings, StoreBackend
from brainsync.exceptions import ConfigurationError, SyncError
from brainsync.filesystem.vault import Vault
from brainsync.remote.factory import open_remote
from brainsync.remote.sql_store import SqlSessionService
from brainsync.services.resource_service import ResourceStatus
from brainsync.services.session_service import Credentials, ensure_session
from brainsync.services.site_service import GateOutcome
from brainsync.services.sync_service import SyncService, SyncState
from brainsync.services.tombstone_service import TombstoneOutcome, TombstoneTracker

if TYPE_CHECKING:
    from brainsync.remote.base import Prompt
    from brainsync.remote.factory import RemoteConnection

logger = logging.getLogger(__name__)

CONFIG_FILE = ".brainsync.json"
_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}
_CONFIG_KEYS = (
    "store_backend",
    "supabase_url",
    "supabase_anon_key",
    "email",
    "default_site_slug",
    "database_url",
    "storage_dir",
    "resource_bucket",
)


def validate_server_url(server_url: str, allow_insecure_http: bool = False) -> str:
    """Validate server URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = server_url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Server URL must include scheme and host (e.g. https://example.com)")

    hostname = parsed.hostname
    if parsed.scheme == "http" and not allow_insecure_http and hostname not in _LOCALHOST_HOSTS:
        raise ValueError(
            "HTTPS is required for non-localhost servers. "
            "Use --allow-insecure-http only on trusted networks."
        )

    return normalized


def load_config(dir_path: Path) -> dict[str, str]:
    """Load sync config from file."""
    config_path = dir_path / CONFIG_FILE
    if not config_path.exists():
        return {}
    config: dict[str, str] = json.loads(config_path.read_text())
    return config


def save_config(dir_path: Path, config: dict[str, str]) -> None:
    """Save sync config to file."""
    config_path = dir_path / CONFIG_FILE
    config_path.write_text(json.dumps(config, indent=2))


def build_settings(vault_dir: Path, debug: bool = False) -> Settings:
    """Environment settings overridden by the vault's config file."""
    config = load_config(vault_dir)
    overrides: dict[str, Any] = {k: v for k, v in config.items() if k in _CONFIG_KEYS and v}
    return Settings(vault_dir=vault_dir, debug=debug, **overrides)


def vault_relative_path(vault_dir: Path, file_arg: str) -> str | None:
    """Resolve a user-supplied file path inside the vault, returning None on traversal."""
    candidate = Path(file_arg)
    if not candidate.is_absolute():
        cwd_candidate = Path.cwd() / candidate
        candidate = cwd_candidate if cwd_candidate.exists() else vault_dir / candidate
    resolved = candidate.resolve()
    if not resolved.is_relative_to(vault_dir.resolve()):
        return None
    return resolved.relative_to(vault_dir.resolve()).as_posix()


class ConsolePrompt:
    """Asks for confirmation on the terminal without blocking the event loop."""

    async def confirm_site_creation(self, slug: str) -> bool:
        question = f"Site '{slug}' does not exist. Create it? [y/N] "
        try:
            answer = await asyncio.to_thread(input, question)
        except EOFError:
            return False
        return answer.strip().lower() in {"y", "yes"}


class SyncClient:
    """Wires a vault to a remote connection for one CLI command."""

    def __init__(
        self,
        settings: Settings,
        remote: RemoteConnection,
        credentials: Credentials,
        prompt: Prompt | None = None,
    ) -> None:
        self.settings = settings
        self.remote = remote
        self.credentials = credentials
        self.vault = Vault(settings.vault_dir)
        self.sync_service = SyncService(
            vault=self.vault,
            sessions=remote.sessions,
            store=remote.store,
            prompt=prompt or ConsolePrompt(),
            credentials=credentials,
            default_site_slug=settings.default_site_slug,
            resource_concurrency=settings.resource_concurrency,
        )
        self.tombstones = TombstoneTracker(
            vault=self.vault,
            sessions=remote.sessions,
            store=remote.store,
            credentials=credentials,
        )

    async def push(self, rel_path: str) -> bool:
        """Push one document. Returns False if the user cancelled."""
        result = await self.sync_service.sync_document(rel_path)
        if result.state == SyncState.CANCELLED:
            print(f"Sync cancelled: site '{result.site_slug}' was not created.")
            return False

        for outcome in result.resources:
            if outcome.status == ResourceStatus.UPLOADED:
                print(f"  Upload: {outcome.logical_path}")
            elif outcome.status == ResourceStatus.SKIPPED:
                print(f"  Skip (up to date): {outcome.logical_path}")
            else:
                print(f"  FAILED: {outcome.logical_path} ({outcome.error})")

        revision = result.revision
        if revision is not None:
            print(
                f"Synced {rel_path} to '{result.site_slug}' as {revision.identity} "
                f"version {revision.version}."
            )
        return True

    async def remove(self, rel_path: str) -> TombstoneOutcome | None:
        """Delete a document locally and mark its remote revision removed."""
        outcomes: list[TombstoneOutcome | None] = []

        async def _on_delete(path: str) -> None:
            outcomes.append(await self.tombstones.on_deleted(path))

        self.tombstones.on_menu_opened(rel_path)
        self.vault.add_delete_listener(_on_delete)
        if not await self.vault.delete(rel_path):
            print(f"No such file: {rel_path}")
            return None

        outcome = outcomes[0] if outcomes else None
        if outcome is None:
            print(f"Deleted {rel_path} (never synced).")
        elif outcome.removed:
            print(f"Marked server document {outcome.identity} as removed")
        else:
            print(
                f"Failed to mark server document as removed with uuid: {outcome.identity}\n"
                f" error: {outcome.error}"
            )
        return outcome

    async def check_site(self, slug: str | None) -> GateOutcome:
        outcome = await self.sync_service.check_site(slug)
        site = slug or self.settings.default_site_slug
        messages = {
            GateOutcome.EXISTS: f"Site '{site}' exists.",
            GateOutcome.CREATED: f"Site '{site}' created.",
            GateOutcome.DECLINED: f"Site '{site}' does not exist and was not created.",
        }
        print(messages[outcome])
        return outcome

    async def status(self, rel_path: str) -> None:
        """Show local identity/version next to the latest remote version."""
        metadata = self.vault.read_sync_metadata(rel_path)
        site = metadata.site or self.settings.default_site_slug or "(none)"
        print(f"Document: {rel_path}")
        print(f"  Site:           {site}")
        print(f"  Identity:       {metadata.identity or '(not synced)'}")
        print(f"  Local version:  {metadata.version or '-'}")
        if metadata.state is not None:
            print(f"  State:          {metadata.state}")
        if metadata.identity is None:
            return
        await ensure_session(self.remote.sessions, self.credentials)
        latest = await self.remote.store.latest_version(metadata.identity)
        print(f"  Remote version: {latest if latest is not None else '(none)'}")
        if latest is not None and metadata.version is not None and latest != metadata.version:
            print("  Warning: local and remote versions differ")

    async def logout(self) -> None:
        await self.remote.sessions.sign_out()
        print("Signed out.")

    async def add_user(self, email: str, password: str) -> None:
        sessions = self.remote.sessions
        if not isinstance(sessions, SqlSessionService):
            raise ConfigurationError("useradd is only available with the sql backend")
        user = await sessions.create_user(email, password)
        print(f"Created user {user.email} ({user.id})")


def _configure_logging(debug: bool) -> None:
    """Configure CLI logging."""
    level = logging.DEBUG if debug else logging.WARNING
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stderr,
        force=True,
    )
    logging.getLogger("brainsync").setLevel(logging.DEBUG if debug else logging.INFO)
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


def _init_command(args: argparse.Namespace, vault_dir: Path) -> None:
    config = load_config(vault_dir)
    if args.backend:
        config["store_backend"] = args.backend
    if args.supabase_url:
        config["supabase_url"] = validate_server_url(
            args.supabase_url, args.allow_insecure_http
        )
    if args.anon_key:
        config["supabase_anon_key"] = args.anon_key
    if args.email:
        config["email"] = args.email
    if args.site:
        config["default_site_slug"] = args.site
    if args.database_url:
        config["database_url"] = args.database_url
    save_config(vault_dir, config)
    print(f"Initialized sync config in {vault_dir / CONFIG_FILE}")


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    password = settings.password
    if not password and args.command != "logout":
        password = getpass.getpass("Password: ")
    credentials = Credentials(email=settings.email, password=password)
    async with open_remote(settings) as remote:
        client = SyncClient(settings, remote, credentials)

        if args.command == "useradd":
            await client.add_user(settings.email, password)
            return 0
        if args.command == "site":
            outcome = await client.check_site(args.slug)
            return 0 if outcome.proceed else 1
        if args.command == "logout":
            await client.logout()
            return 0

        rel_path = vault_relative_path(settings.vault_dir, args.file)
        if rel_path is None:
            print(f"Error: {args.file} is outside the vault {settings.vault_dir}")
            return 1
        if args.command == "push":
            return 0 if await client.push(rel_path) else 1
        if args.command == "remove":
            outcome = await client.remove(rel_path)
            return 1 if outcome is not None and not outcome.removed else 0
        await client.status(rel_path)
        return 0


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="brainsync",
        description="Push vault documents and their embedded files to a brainsync site",
    )
    parser.add_argument("--dir", "-d", default=".", help="Vault directory (default: current)")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command")
    init_parser = subparsers.add_parser("init", help="Initialize sync configuration")
    init_parser.add_argument("--backend", choices=[b.value for b in StoreBackend])
    init_parser.add_argument("--supabase-url", help="Supabase project URL")
    init_parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// project URLs for non-localhost hosts",
    )
    init_parser.add_argument("--anon-key", help="Supabase project anon key")
    init_parser.add_argument("--email", help="Sign-in email")
    init_parser.add_argument("--site", help="Default site slug")
    init_parser.add_argument("--database-url", help="Database URL for the sql backend")

    push_parser = subparsers.add_parser("push", help="Push a document as a new revision")
    push_parser.add_argument("file")
    remove_parser = subparsers.add_parser(
        "remove", help="Delete a document and mark it removed on the server"
    )
    remove_parser.add_argument("file")
    status_parser = subparsers.add_parser("status", help="Show local and remote versions")
    status_parser.add_argument("file")
    site_parser = subparsers.add_parser("site", help="Check a site exists, offering to create it")
    site_parser.add_argument("slug", nargs="?", help="Site slug (default: configured default)")
    subparsers.add_parser("logout", help="End the remote session")
    subparsers.add_parser("useradd", help="Create the configured user (sql backend)")

    args = parser.parse_args()
    vault_dir = Path(args.dir).resolve()
    _configure_logging(args.debug)

    if args.command is None:
        parser.print_help()
        return

    if args.command == "init":
        try:
            _init_command(args, vault_dir)
        except ValueError as exc:
            print(f"Error: {exc}")
            sys.exit(1)
        return

    try:
        settings = build_settings(vault_dir, debug=args.debug)
        settings.validate_remote()
    except (ValidationError, ConfigurationError) as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    try:
        exit_code = asyncio.run(_run(args, settings))
    except ConfigurationError as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    except SyncError as exc:
        print(f"Failed to sync with server: {exc}")
        sys.exit(1)
    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
