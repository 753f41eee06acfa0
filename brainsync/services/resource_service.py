"""Upload decisions and uploads for embedded resources."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from brainsync.exceptions import RemoteLookupError, SyncError
from brainsync.remote.base import LookupStatus, ResourceRecord
from brainsync.services.datetime_service import ensure_aware
from brainsync.services.hash_service import content_address

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from brainsync.filesystem.vault import ResourceRef
    from brainsync.remote.base import RemoteStore

logger = logging.getLogger(__name__)


class ResourceStatus(StrEnum):
    UPLOADED = "uploaded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class DedupDecision:
    exists: bool
    needs_upload: bool


@dataclass(frozen=True)
class ResourceOutcome:
    """What happened to one embedded resource during a sync."""

    logical_path: str
    path_hash: str
    status: ResourceStatus
    object_key: str | None = None
    error: str | None = None


class ResourceDeduplicator:
    """Skips uploads of resources the remote store already has in a fresh enough copy."""

    def __init__(self, store: RemoteStore) -> None:
        self.store = store

    async def decide(self, path: str, last_modified: datetime) -> DedupDecision:
        """Decide whether the resource at *path* must be uploaded.

        Raises:
            RemoteLookupError: If the lookup fails for a reason other than "not found"
        """
        path_hash = content_address(path)
        lookup = await self.store.find_resource(path_hash)
        if lookup.status == LookupStatus.NOT_FOUND:
            return DedupDecision(exists=False, needs_upload=True)
        if lookup.status == LookupStatus.FAILED or lookup.value is None:
            raise RemoteLookupError(f"Error checking resource {path}: {lookup.error}")

        remote_modified = ensure_aware(lookup.value.last_modified)
        needs_upload = remote_modified < ensure_aware(last_modified)
        return DedupDecision(exists=True, needs_upload=needs_upload)

    async def sync_resource(self, site_slug: str, resource: ResourceRef) -> ResourceOutcome:
        """Upload one resource if needed and record it.

        Failures are returned as a FAILED outcome, never raised.
        """
        path = resource.logical_path
        path_hash = content_address(path)
        try:
            decision = await self.decide(path, resource.last_modified)
            if not decision.needs_upload:
                logger.debug("Skip (up to date): %s", path)
                return ResourceOutcome(path, path_hash, ResourceStatus.SKIPPED)

            data = resource.read_bytes()
            key = await self.store.upload_object(site_slug, path, data, resource.content_type)
            await self.store.upsert_resource(
                ResourceRecord(
                    path_hash=path_hash,
                    path=path,
                    name=resource.name,
                    last_modified=resource.last_modified,
                )
            )
        except SyncError as exc:
            logger.error("Failed to sync resource %s: %s", path, exc)
            return ResourceOutcome(path, path_hash, ResourceStatus.FAILED, error=str(exc))

        logger.info("Uploaded %s", path)
        return ResourceOutcome(path, path_hash, ResourceStatus.UPLOADED, object_key=key)

    async def sync_resources(
        self,
        site_slug: str,
        resources: Sequence[ResourceRef],
        concurrency: int = 1,
    ) -> list[ResourceOutcome]:
        """Sync resources in order, at most *concurrency* at a time.

        Outcomes are returned in the order of *resources*.
        """
        if concurrency <= 1:
            return [await self.sync_resource(site_slug, ref) for ref in resources]

        semaphore = asyncio.Semaphore(concurrency)

        async def _bounded(ref: ResourceRef) -> ResourceOutcome:
            async with semaphore:
                return await self.sync_resource(site_slug, ref)

        return list(await asyncio.gather(*(_bounded(ref) for ref in resources)))
