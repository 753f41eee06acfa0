"""Vault directory access: documents, front matter and embedded resources."""

from __future__ import annotations

import logging
import mimetypes
import os
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any
from urllib.parse import unquote

import yaml

from brainsync.exceptions import LocalIOError
from brainsync.filesystem.frontmatter import (
    SyncMetadata,
    join_document,
    parse_sync_metadata,
    split_document,
)
from brainsync.services.datetime_service import from_timestamp

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping
    from datetime import datetime

logger = logging.getLogger(__name__)

DOCUMENT_SUFFIXES: frozenset[str] = frozenset({".md"})
DEFAULT_CONTENT_TYPE = "application/octet-stream"

_WIKI_EMBED_RE = re.compile(r"!\[\[([^\]\n]+)\]\]")
_MARKDOWN_EMBED_RE = re.compile(r"!\[[^\]\n]*\]\(\s*(?:<([^>\n]+)>|([^)\s]+))(?:\s+\"[^\"]*\")?\s*\)")
_URL_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")


@dataclass(frozen=True)
class ResourceRef:
    """An embedded file resolved to a concrete location in the vault."""

    logical_path: str
    absolute_path: Path
    last_modified: datetime
    content_type: str

    @property
    def name(self) -> str:
        return PurePosixPath(self.logical_path).name

    def read_bytes(self) -> bytes:
        """Read the raw file contents."""
        try:
            return self.absolute_path.read_bytes()
        except OSError as exc:
            raise LocalIOError(f"Failed to read file: {self.logical_path}: {exc}") from exc


def guess_content_type(path: str) -> str:
    """Guess a MIME type from the file extension."""
    content_type, _encoding = mimetypes.guess_type(path)
    return content_type or DEFAULT_CONTENT_TYPE


def _strip_code_blocks(body: str) -> str:
    """Drop fenced code blocks so example embeds inside them are ignored."""
    lines: list[str] = []
    in_code_block = False
    for line in body.split("\n"):
        if line.strip().startswith("```"):
            in_code_block = not in_code_block
            continue
        if not in_code_block:
            lines.append(line)
    return "\n".join(lines)


def parse_embedded_links(body: str) -> list[str]:
    """Return embed targets in document order.

    Recognizes ``![[target]]`` (with optional ``|alias`` or ``#heading``) and
    ``![alt](path)``.  External URLs are skipped.
    """
    text = _strip_code_blocks(body)
    found: list[tuple[int, str]] = []
    for match in _WIKI_EMBED_RE.finditer(text):
        target = match.group(1).split("|", 1)[0].split("#", 1)[0].strip()
        if target:
            found.append((match.start(), target))
    for match in _MARKDOWN_EMBED_RE.finditer(text):
        raw = match.group(1) or match.group(2) or ""
        if _URL_SCHEME_RE.match(raw) or raw.startswith("//"):
            continue
        target = unquote(raw.split("#", 1)[0]).strip()
        if target:
            found.append((match.start(), target))
    found.sort(key=lambda item: item[0])
    return [target for _pos, target in found]


@dataclass
class Vault:
    """Reads and writes documents under a vault directory."""

    vault_dir: Path
    _delete_listeners: list[Callable[[str], Awaitable[None]]] = field(
        default_factory=list, repr=False
    )

    def _validate_path(self, rel_path: str) -> Path:
        """Validate that a relative path stays within the vault directory.

        Raises ValueError if the resolved path escapes vault_dir.
        """
        full_path = (self.vault_dir / rel_path).resolve()
        if not full_path.is_relative_to(self.vault_dir.resolve()):
            raise ValueError(f"Path traversal detected: {rel_path}")
        return full_path

    def relative_path(self, path: Path) -> str:
        """Return the vault-relative POSIX path for a file."""
        return path.resolve().relative_to(self.vault_dir.resolve()).as_posix()

    def is_document(self, rel_path: str) -> bool:
        return PurePosixPath(rel_path).suffix.lower() in DOCUMENT_SUFFIXES

    def read_text(self, rel_path: str) -> str:
        """Read a document's full text, front matter included."""
        full_path = self._validate_path(rel_path)
        try:
            return full_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise LocalIOError(f"Failed to read document {rel_path}: {exc}") from exc

    def read_metadata(self, rel_path: str) -> dict[str, Any]:
        """Read a document's front matter mapping (empty if it has none)."""
        raw_content = self.read_text(rel_path)
        try:
            metadata, _body = split_document(raw_content)
        except yaml.YAMLError as exc:
            raise LocalIOError(f"Invalid front matter in {rel_path}: {exc}") from exc
        return metadata

    def read_sync_metadata(self, rel_path: str) -> SyncMetadata:
        return parse_sync_metadata(self.read_metadata(rel_path))

    def write_metadata(self, rel_path: str, metadata: Mapping[str, Any]) -> None:
        """Replace a document's front matter, keeping its body."""
        raw_content = self.read_text(rel_path)
        try:
            _old, body = split_document(raw_content)
            serialized = join_document(metadata, body)
        except yaml.YAMLError as exc:
            raise LocalIOError(f"Invalid front matter in {rel_path}: {exc}") from exc
        full_path = self._validate_path(rel_path)
        try:
            full_path.write_text(serialized, encoding="utf-8")
        except OSError as exc:
            raise LocalIOError(f"Failed to write front matter of {rel_path}: {exc}") from exc
        logger.debug("Updated front matter of %s", rel_path)

    def embedded_links(self, rel_path: str) -> list[str]:
        """Return the raw embed targets of a document, in order."""
        raw_content = self.read_text(rel_path)
        try:
            _metadata, body = split_document(raw_content)
        except yaml.YAMLError:
            body = raw_content
        return parse_embedded_links(body)

    def _candidate_paths(self, link: str, source_rel_path: str) -> list[str]:
        source_dir = PurePosixPath(source_rel_path).parent
        link_path = PurePosixPath(link.lstrip("/"))
        candidates = [str(source_dir / link_path), str(link_path)]
        if not link_path.suffix:
            candidates.extend(f"{c}.md" for c in list(candidates))
        return candidates

    def _find_by_name(self, name: str) -> Path | None:
        matches: list[Path] = []
        for root, dirs, files in os.walk(self.vault_dir):
            dirs[:] = [d for d in dirs if not d.startswith(".")]
            if name in files:
                matches.append(Path(root) / name)
        if not matches:
            return None
        return sorted(matches, key=lambda p: self.relative_path(p))[0]

    def resolve_link(self, link: str, source_rel_path: str) -> ResourceRef | None:
        """Resolve an embed target to a file in the vault.

        Tries the path relative to the embedding document, then relative to
        the vault root, then the first file anywhere in the vault with the
        same name.
        """
        resolved: Path | None = None
        for candidate in self._candidate_paths(link, source_rel_path):
            try:
                full_path = self._validate_path(candidate)
            except ValueError:
                logger.warning("Ignoring embed outside the vault: %s", link)
                return None
            if full_path.is_file():
                resolved = full_path
                break
        if resolved is None:
            resolved = self._find_by_name(PurePosixPath(link).name)
        if resolved is None:
            return None

        logical_path = self.relative_path(resolved)
        stat = resolved.stat()
        return ResourceRef(
            logical_path=logical_path,
            absolute_path=resolved,
            last_modified=from_timestamp(stat.st_mtime),
            content_type=guess_content_type(logical_path),
        )

    def resources(self, rel_path: str) -> list[ResourceRef]:
        """Resolve every embed of a document, skipping unresolvable ones.

        A file embedded more than once is returned once, at its first position.
        """
        refs: list[ResourceRef] = []
        seen: set[str] = set()
        for link in self.embedded_links(rel_path):
            ref = self.resolve_link(link, rel_path)
            if ref is None:
                logger.warning("Could not find associated file for embed: %s", link)
                continue
            if ref.logical_path == rel_path or ref.logical_path in seen:
                continue
            seen.add(ref.logical_path)
            refs.append(ref)
        return refs

    def add_delete_listener(self, listener: Callable[[str], Awaitable[None]]) -> None:
        """Register a coroutine called with the relative path after a file is deleted."""
        self._delete_listeners.append(listener)

    async def delete(self, rel_path: str) -> bool:
        """Delete a file and notify listeners. Returns True if the file existed."""
        full_path = self._validate_path(rel_path)
        if not full_path.exists():
            return False
        try:
            full_path.unlink()
        except OSError as exc:
            raise LocalIOError(f"Failed to delete {rel_path}: {exc}") from exc
        logger.info("Deleted %s", rel_path)
        for listener in self._delete_listeners:
            await listener(rel_path)
        return True
