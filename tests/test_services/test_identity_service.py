"""Tests for identity and version assignment."""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest
from hypothesis import given
from hypothesis import strategies as st

from brainsync.exceptions import LocalIOError
from brainsync.filesystem.frontmatter import DocumentState
from brainsync.services.identity_service import apply_identity, assign_identity, new_identity

if TYPE_CHECKING:
    from brainsync.filesystem.vault import Vault


class TestAssignIdentity:
    def test_new_document_gets_identity_and_version_one(self) -> None:
        assignment = assign_identity({})
        assert assignment.identity
        assert uuid.UUID(assignment.identity).version == 4
        assert assignment.version == 1
        assert assignment.minted is True
        assert assignment.metadata["uuid"] == assignment.identity
        assert assignment.metadata["version"] == 1

    def test_existing_document_keeps_identity_and_increments(self) -> None:
        assignment = assign_identity({"uuid": "abc", "version": 3})
        assert assignment.identity == "abc"
        assert assignment.version == 4
        assert assignment.minted is False
        assert assignment.metadata == {"uuid": "abc", "version": 4}

    def test_identity_without_version_is_reminted(self) -> None:
        assignment = assign_identity({"uuid": "abc"}, mint=lambda: "fresh")
        assert assignment.identity == "fresh"
        assert assignment.version == 1

    def test_version_without_identity_is_reminted(self) -> None:
        assignment = assign_identity({"version": 7}, mint=lambda: "fresh")
        assert assignment.identity == "fresh"
        assert assignment.version == 1

    def test_state_defaults_to_published_and_is_not_added(self) -> None:
        assignment = assign_identity({"uuid": "abc", "version": 1})
        assert assignment.state == DocumentState.PUBLISHED
        assert "state" not in assignment.metadata

    def test_state_is_carried_through(self) -> None:
        assignment = assign_identity({"uuid": "abc", "version": 1, "state": "removed"})
        assert assignment.state == DocumentState.REMOVED
        assert assignment.metadata["state"] == "removed"

    def test_unowned_keys_preserved(self) -> None:
        metadata = {"title": "Hello", "tags": ["a", "b"], "uuid": "abc", "version": 2}
        assignment = assign_identity(metadata)
        assert assignment.metadata["title"] == "Hello"
        assert assignment.metadata["tags"] == ["a", "b"]

    def test_input_mapping_not_mutated(self) -> None:
        metadata = {"uuid": "abc", "version": 2}
        assign_identity(metadata)
        assert metadata == {"uuid": "abc", "version": 2}

    def test_new_identities_are_unique(self) -> None:
        assert len({new_identity() for _ in range(100)}) == 100

    @given(
        identity=st.uuids().map(str),
        version=st.integers(min_value=1, max_value=10**9),
    )
    def test_existing_identity_always_increments_by_one(self, identity: str, version: int) -> None:
        assignment = assign_identity({"uuid": identity, "version": version})
        assert assignment.identity == identity
        assert assignment.version == version + 1


class TestApplyIdentity:
    def test_writes_identity_into_document(self, vault: Vault, tmp_vault_dir: Path) -> None:
        (tmp_vault_dir / "note.md").write_text("# Hello\n")
        assignment = apply_identity(vault, "note.md")

        metadata = vault.read_sync_metadata("note.md")
        assert metadata.identity == assignment.identity
        assert metadata.version == 1
        assert vault.read_text("note.md").rstrip().endswith("# Hello")

    def test_repeated_application_increments(self, vault: Vault, tmp_vault_dir: Path) -> None:
        (tmp_vault_dir / "note.md").write_text("---\nuuid: abc\nversion: 3\n---\nBody\n")
        apply_identity(vault, "note.md")
        second = apply_identity(vault, "note.md")
        assert second.identity == "abc"
        assert vault.read_sync_metadata("note.md").version == 5

    def test_write_failure_raises_local_io_error(self, vault: Vault, tmp_vault_dir: Path) -> None:
        (tmp_vault_dir / "note.md").write_text("Body\n")
        with (
            patch.object(Path, "write_text", side_effect=PermissionError("denied")),
            pytest.raises(LocalIOError, match="Failed to write front matter"),
        ):
            apply_identity(vault, "note.md")
