"""Stable document identity and version bookkeeping in front matter."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from brainsync.filesystem.frontmatter import (
    DocumentState,
    SyncMetadata,
    merge_sync_metadata,
    parse_sync_metadata,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from brainsync.filesystem.vault import Vault

logger = logging.getLogger(__name__)


def new_identity() -> str:
    """Mint a random document identity (UUID4)."""
    return str(uuid.uuid4())


@dataclass(frozen=True)
class IdentityAssignment:
    """Identity and version for the revision about to be pushed."""

    identity: str
    version: int
    state: DocumentState
    minted: bool
    metadata: dict[str, Any]


def assign_identity(
    metadata: Mapping[str, object],
    mint: Callable[[], str] = new_identity,
) -> IdentityAssignment:
    """Compute the next identity/version and the front matter to persist.

    A document that already carries both an identity and a version keeps the
    identity and moves to version + 1.  Anything else gets a fresh identity
    at version 1.  ``state`` passes through unchanged, defaulting to
    published.
    """
    current = parse_sync_metadata(metadata)
    if current.identity is not None and current.version is not None:
        identity, version, minted = current.identity, current.version + 1, False
    else:
        identity, version, minted = mint(), 1, True

    updated = SyncMetadata(identity=identity, version=version, state=current.state)
    return IdentityAssignment(
        identity=identity,
        version=version,
        state=current.state or DocumentState.PUBLISHED,
        minted=minted,
        metadata=merge_sync_metadata(metadata, updated),
    )


def apply_identity(vault: Vault, rel_path: str) -> IdentityAssignment:
    """Assign identity/version and write it back into the document.

    Raises LocalIOError if the front matter cannot be read or written; the
    caller must not have touched the remote store yet.
    """
    assignment = assign_identity(vault.read_metadata(rel_path))
    vault.write_metadata(rel_path, assignment.metadata)
    if assignment.minted:
        logger.info("Assigned identity %s to %s", assignment.identity, rel_path)
    logger.debug("%s is now version %d", rel_path, assignment.version)
    return assignment
