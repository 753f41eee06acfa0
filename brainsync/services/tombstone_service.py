"""Mark remote revisions removed when their local document is deleted."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from brainsync.exceptions import LocalIOError, SyncError
from brainsync.services.session_service import ensure_session

if TYPE_CHECKING:
    from brainsync.filesystem.vault import Vault
    from brainsync.remote.base import RemoteStore, SessionService
    from brainsync.services.session_service import Credentials

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TombstoneOutcome:
    identity: str
    removed: bool
    error: str | None = None


@dataclass
class TombstoneTracker:
    """Remembers identities of documents the user is about to act on.

    A deleted file's front matter can no longer be read, so the identity is
    captured when the file's menu is opened and consumed when the deletion
    arrives.  Entries are keyed by path: opening A then B and deleting A
    tombstones A.
    """

    vault: Vault
    sessions: SessionService
    store: RemoteStore
    credentials: Credentials
    _pending: dict[str, str] = field(default_factory=dict, repr=False)

    def pending_identity(self, rel_path: str) -> str | None:
        return self._pending.get(rel_path)

    def on_menu_opened(self, rel_path: str) -> str | None:
        """Capture the document's identity, or forget the path if it has none."""
        if not self.vault.is_document(rel_path):
            return None
        try:
            identity = self.vault.read_sync_metadata(rel_path).identity
        except LocalIOError as exc:
            logger.warning("Could not read front matter of %s: %s", rel_path, exc)
            identity = None
        if identity is None:
            self._pending.pop(rel_path, None)
            return None
        self._pending[rel_path] = identity
        return identity

    async def on_deleted(self, rel_path: str) -> TombstoneOutcome | None:
        """Tombstone the remote document captured for *rel_path*, if any.

        The entry is cleared whether or not the remote update succeeds.
        """
        identity = self._pending.pop(rel_path, None)
        if identity is None:
            return None
        try:
            await ensure_session(self.sessions, self.credentials)
            await self.store.mark_removed(identity)
        except SyncError as exc:
            logger.error("Failed to mark document %s as removed: %s", identity, exc)
            return TombstoneOutcome(identity=identity, removed=False, error=str(exc))
        logger.info("Marked server document %s as removed", identity)
        return TombstoneOutcome(identity=identity, removed=True)
