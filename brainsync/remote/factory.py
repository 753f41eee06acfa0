"""Build the configured remote store and session service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from brainsync.config import StoreBackend
from brainsync.database import create_engine, init_schema
from brainsync.remote.sql_store import SqlRemoteStore, SqlSessionService
from brainsync.remote.supabase_store import (
    SupabaseRemoteStore,
    SupabaseSessionService,
    create_supabase_client,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from brainsync.config import Settings
    from brainsync.remote.base import RemoteStore, SessionService

logger = logging.getLogger(__name__)


@dataclass
class RemoteConnection:
    """Session service and store sharing one underlying connection."""

    sessions: SessionService
    store: RemoteStore


@asynccontextmanager
async def open_remote(settings: Settings) -> AsyncGenerator[RemoteConnection]:
    """Connect to the remote store selected by ``settings.store_backend``."""
    if settings.store_backend == StoreBackend.SQL:
        engine, session_factory = create_engine(settings)
        try:
            await init_schema(engine)
            yield RemoteConnection(
                sessions=SqlSessionService(session_factory),
                store=SqlRemoteStore(
                    session_factory, settings.storage_dir, bucket=settings.resource_bucket
                ),
            )
        finally:
            await engine.dispose()
        return

    client = await create_supabase_client(settings)
    yield RemoteConnection(
        sessions=SupabaseSessionService(client),
        store=SupabaseRemoteStore(client, bucket=settings.resource_bucket),
    )
