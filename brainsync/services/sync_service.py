"""Sync service: pushes one document and its embedded resources as a new revision."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from brainsync.exceptions import ConfigurationError, SyncError
from brainsync.remote.base import Revision
from brainsync.services.identity_service import apply_identity
from brainsync.services.resource_service import (
    ResourceDeduplicator,
    ResourceOutcome,
    ResourceStatus,
)
from brainsync.services.session_service import ensure_session
from brainsync.services.site_service import GateOutcome, SiteGate

if TYPE_CHECKING:
    from brainsync.filesystem.vault import Vault
    from brainsync.remote.base import AuthenticatedUser, Prompt, RemoteStore, SessionService
    from brainsync.services.session_service import Credentials

logger = logging.getLogger(__name__)


class SyncState(StrEnum):
    """Steps of a push, in order."""

    IDLE = "idle"
    SESSION_ENSURED = "session_ensured"
    SITE_CHECKED = "site_checked"
    SITE_MISSING = "site_missing"
    SITE_CREATED = "site_created"
    CANCELLED = "cancelled"
    IDENTITY_ASSIGNED = "identity_assigned"
    CONTENT_LOADED = "content_loaded"
    RESOURCES_PROCESSED = "resources_processed"
    REVISION_PERSISTED = "revision_persisted"
    DONE = "done"
    ERROR = "error"


@dataclass
class SyncResult:
    """Outcome of one push."""

    rel_path: str
    site_slug: str
    history: list[SyncState] = field(default_factory=lambda: [SyncState.IDLE])
    revision: Revision | None = None
    resources: list[ResourceOutcome] = field(default_factory=list)
    error: str | None = None

    @property
    def state(self) -> SyncState:
        return self.history[-1]

    def advance(self, state: SyncState) -> None:
        logger.debug("%s: %s -> %s", self.rel_path, self.state, state)
        self.history.append(state)

    def count(self, status: ResourceStatus) -> int:
        return sum(1 for outcome in self.resources if outcome.status == status)


class SyncFailedError(SyncError):
    """A push ended in the ERROR state; ``result`` holds the steps reached."""

    def __init__(self, message: str, result: SyncResult) -> None:
        super().__init__(message)
        self.result = result


def document_location(rel_path: str) -> tuple[str, str]:
    """Return (folder with trailing slash, file stem) of a vault path."""
    pure = PurePosixPath(rel_path)
    folder = "" if str(pure.parent) == "." else f"{pure.parent}/"
    return folder, pure.stem


class SyncService:
    """Runs the push protocol for a document in a vault."""

    def __init__(
        self,
        vault: Vault,
        sessions: SessionService,
        store: RemoteStore,
        prompt: Prompt,
        credentials: Credentials,
        default_site_slug: str = "",
        resource_concurrency: int = 1,
    ) -> None:
        self.vault = vault
        self.sessions = sessions
        self.store = store
        self.credentials = credentials
        self.default_site_slug = default_site_slug.strip()
        self.resource_concurrency = resource_concurrency
        self.gate = SiteGate(store, prompt)
        self.deduplicator = ResourceDeduplicator(store)

    def target_site(self, rel_path: str) -> str:
        """Site a document is pushed to: its own ``site`` field, else the default.

        Raises:
            ConfigurationError: If neither is set
        """
        site = self.vault.read_sync_metadata(rel_path).site or self.default_site_slug
        if not site:
            raise ConfigurationError(
                "A default site slug is required. "
                "Configure it with 'brainsync init --site <slug>' before syncing."
            )
        return site

    async def check_site(self, slug: str | None = None) -> GateOutcome:
        """Sign in and run the site gate without pushing anything."""
        site = (slug or self.default_site_slug).strip()
        if not site:
            raise ConfigurationError("No site slug given and no default site slug configured")
        user = await ensure_session(self.sessions, self.credentials)
        return await self.gate.ensure(site, user)

    async def _pass_gate(self, result: SyncResult, user: AuthenticatedUser) -> bool:
        outcome = await self.gate.ensure(result.site_slug, user)
        result.advance(SyncState.SITE_CHECKED)
        if outcome == GateOutcome.EXISTS:
            return True

        result.advance(SyncState.SITE_MISSING)
        if not outcome.proceed:
            return False
        result.advance(SyncState.SITE_CREATED)
        return True

    async def sync_document(self, rel_path: str) -> SyncResult:
        """Push *rel_path* as a new revision.

        Returns a result in state DONE, or CANCELLED if the user declined to
        create a missing site.

        Raises:
            ConfigurationError: If no target site is configured (no network access happens)
            SyncFailedError: If any later step fails
        """
        if not self.vault.is_document(rel_path):
            raise ConfigurationError(f"Not a markdown document: {rel_path}")
        site_slug = self.target_site(rel_path)
        result = SyncResult(rel_path=rel_path, site_slug=site_slug)
        logger.info("Syncing %s to site '%s'", rel_path, site_slug)

        try:
            user = await ensure_session(self.sessions, self.credentials)
            result.advance(SyncState.SESSION_ENSURED)

            if not await self._pass_gate(result, user):
                result.advance(SyncState.CANCELLED)
                logger.info("Sync of %s cancelled", rel_path)
                return result

            assignment = apply_identity(self.vault, rel_path)
            result.advance(SyncState.IDENTITY_ASSIGNED)

            content = self.vault.read_text(rel_path)
            result.advance(SyncState.CONTENT_LOADED)

            resources = self.vault.resources(rel_path)
            result.resources = await self.deduplicator.sync_resources(
                site_slug, resources, concurrency=self.resource_concurrency
            )
            result.advance(SyncState.RESOURCES_PROCESSED)

            folder, name = document_location(rel_path)
            revision = Revision(
                identity=assignment.identity,
                version=assignment.version,
                path=folder,
                name=name,
                state=assignment.state,
                content=content,
            )
            await self.store.insert_revision(revision, site_slug, user.id)
            result.revision = revision
            result.advance(SyncState.REVISION_PERSISTED)
        except SyncError as exc:
            result.error = str(exc)
            result.advance(SyncState.ERROR)
            logger.error("Error during sync of %s: %s", rel_path, exc)
            raise SyncFailedError(str(exc), result) from exc

        result.advance(SyncState.DONE)
        logger.info(
            "Pushed %s as %s v%d (%d uploaded, %d skipped, %d failed)",
            rel_path,
            revision.identity,
            revision.version,
            result.count(ResourceStatus.UPLOADED),
            result.count(ResourceStatus.SKIPPED),
            result.count(ResourceStatus.FAILED),
        )
        return result
