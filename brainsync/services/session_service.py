"""Session establishment shared by sync and tombstone flows."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from brainsync.exceptions import AuthenticationError

if TYPE_CHECKING:
    from brainsync.remote.base import AuthenticatedUser, SessionService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credentials:
    email: str
    password: str = field(repr=False)


async def ensure_session(sessions: SessionService, credentials: Credentials) -> AuthenticatedUser:
    """Return the signed-in user, signing in first when there is no active session.

    Raises:
        AuthenticationError: If sign-in fails or no user can be resolved
    """
    if not await sessions.has_active_session():
        user = await sessions.sign_in(credentials.email, credentials.password)
        if user is None:
            raise AuthenticationError("Failed to establish session: invalid email or password")
        logger.info("Session established for %s", user.email or user.id)
        return user

    user = await sessions.current_user()
    if user is None:
        raise AuthenticationError("No user found despite active session")
    return user
