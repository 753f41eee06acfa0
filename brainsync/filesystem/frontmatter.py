"""YAML front matter parser/serializer for sync metadata."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import frontmatter

if TYPE_CHECKING:
    from collections.abc import Mapping

IDENTITY_KEY = "uuid"
VERSION_KEY = "version"
STATE_KEY = "state"
SITE_KEY = "site"

OWNED_FIELDS: frozenset[str] = frozenset({IDENTITY_KEY, VERSION_KEY, STATE_KEY})


class DocumentState(StrEnum):
    """Lifecycle state of a remote revision."""

    PUBLISHED = "published"
    REMOVED = "removed"


@dataclass(frozen=True)
class SyncMetadata:
    """Sync fields found in a document's front matter.

    Each field is None when absent or unusable, so callers test presence
    explicitly instead of probing the raw mapping.
    """

    identity: str | None = None
    version: int | None = None
    state: DocumentState | None = None
    site: str | None = None


def _parse_identity(raw: object) -> str | None:
    if raw is None or isinstance(raw, bool):
        return None
    value = str(raw).strip()
    return value or None


def _parse_version(raw: object) -> int | None:
    # bool is an int subclass; "version: true" is not a version
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw if raw > 0 else None
    if isinstance(raw, str) and raw.strip().isdigit():
        value = int(raw.strip())
        return value if value > 0 else None
    return None


def _parse_state(raw: object) -> DocumentState | None:
    if not isinstance(raw, str):
        return None
    try:
        return DocumentState(raw.strip().lower())
    except ValueError:
        return None


def parse_sync_metadata(metadata: Mapping[str, object]) -> SyncMetadata:
    """Extract sync fields from a raw front matter mapping."""
    raw_site = metadata.get(SITE_KEY)
    site = raw_site.strip() if isinstance(raw_site, str) and raw_site.strip() else None
    return SyncMetadata(
        identity=_parse_identity(metadata.get(IDENTITY_KEY)),
        version=_parse_version(metadata.get(VERSION_KEY)),
        state=_parse_state(metadata.get(STATE_KEY)),
        site=site,
    )


def merge_sync_metadata(
    metadata: Mapping[str, object], sync_metadata: SyncMetadata
) -> dict[str, Any]:
    """Return a copy of *metadata* with the owned sync fields replaced.

    Keys outside OWNED_FIELDS are left untouched.  ``state`` is only written
    when the document already carried one.
    """
    merged: dict[str, Any] = dict(metadata)
    if sync_metadata.identity is not None:
        merged[IDENTITY_KEY] = sync_metadata.identity
    if sync_metadata.version is not None:
        merged[VERSION_KEY] = sync_metadata.version
    if sync_metadata.state is not None:
        merged[STATE_KEY] = str(sync_metadata.state)
    return merged


def split_document(raw_content: str) -> tuple[dict[str, Any], str]:
    """Split raw markdown into (front matter mapping, body)."""
    post = frontmatter.loads(raw_content)
    return dict(post.metadata), post.content


def join_document(metadata: Mapping[str, Any], body: str) -> str:
    """Serialize front matter and body back to markdown."""
    if not metadata:
        return body if body.endswith("\n") else body + "\n"
    post = frontmatter.Post(body)
    post.metadata.update(metadata)
    return str(frontmatter.dumps(post)) + "\n"
