"""Site gate: a push may only target a site that exists."""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from brainsync.exceptions import ConfigurationError, InvalidSlugError, RemoteLookupError
from brainsync.remote.base import LookupStatus
from brainsync.services.slug_service import validate_site_slug

if TYPE_CHECKING:
    from brainsync.remote.base import AuthenticatedUser, Prompt, RemoteStore

logger = logging.getLogger(__name__)


class SiteStatus(StrEnum):
    EXISTS = "exists"
    MISSING = "missing"


class GateOutcome(StrEnum):
    """Result of passing through the gate."""

    EXISTS = "exists"
    CREATED = "created"
    DECLINED = "declined"

    @property
    def proceed(self) -> bool:
        return self is not GateOutcome.DECLINED


class SiteGate:
    """Checks a site exists and offers to create it when it does not.

    The gate is two-phase: ``check`` only reads; ``ensure`` adds the
    interactive creation step.  After a confirmed creation the caller
    resumes with its remaining work instead of starting over.
    """

    def __init__(self, store: RemoteStore, prompt: Prompt) -> None:
        self.store = store
        self.prompt = prompt

    async def check(self, slug: str) -> SiteStatus:
        """Return whether the site exists.

        Raises:
            RemoteLookupError: If the lookup fails for a reason other than "not found"
        """
        lookup = await self.store.find_site(slug)
        if lookup.status == LookupStatus.FOUND:
            return SiteStatus.EXISTS
        if lookup.status == LookupStatus.NOT_FOUND:
            return SiteStatus.MISSING
        raise RemoteLookupError(f"Error checking site slug '{slug}': {lookup.error}")

    async def create(self, slug: str, owner: AuthenticatedUser) -> None:
        """Create the site owned by *owner*.

        Raises:
            ConfigurationError: If the slug is not URL-safe
            RemoteWriteError: If the site cannot be created
        """
        try:
            valid_slug = validate_site_slug(slug)
        except InvalidSlugError as exc:
            raise ConfigurationError(str(exc)) from exc
        await self.store.create_site(valid_slug, owner)

    async def ensure(self, slug: str, owner: AuthenticatedUser) -> GateOutcome:
        """Make sure the site exists, asking the user before creating it."""
        if await self.check(slug) == SiteStatus.EXISTS:
            return GateOutcome.EXISTS

        logger.info("Site '%s' does not exist", slug)
        if not await self.prompt.confirm_site_creation(slug):
            logger.info("Creation of site '%s' declined", slug)
            return GateOutcome.DECLINED

        await self.create(slug, owner)
        return GateOutcome.CREATED
