"""Application-level exception types.

Convention:
- ``SyncError`` and its subclasses carry a message that is safe to show to
  the user as-is.  The CLI prints ``str(exc)`` and exits non-zero.
- Remote lookups that find nothing are *not* errors; they return a
  ``LookupResult`` with ``NOT_FOUND`` status (see ``brainsync.remote.base``).
- Library exceptions (supabase, SQLAlchemy, OS errors) are wrapped with
  ``raise ... from exc`` at the adapter boundary so the cause stays in the
  traceback while callers only deal with the types below.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for failures surfaced to the user."""


class ConfigurationError(SyncError):
    """Required configuration (site slug, credentials, backend) is missing or invalid.

    Raised before any network access is attempted.
    """


class AuthenticationError(SyncError):
    """Sign-in failed or no user could be resolved for the active session."""


class RemoteLookupError(SyncError):
    """A remote read failed for a reason other than "no matching row"."""


class RemoteWriteError(SyncError):
    """A remote write (site, revision, upload, tombstone) failed."""


class LocalIOError(SyncError):
    """Reading or writing a document in the vault failed."""


class InvalidSlugError(ValueError):
    """A site slug is not URL-safe."""
