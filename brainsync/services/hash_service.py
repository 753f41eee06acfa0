"""Content addresses for embedded resources."""

from __future__ import annotations

import hashlib


def content_address(path: str) -> str:
    """Return the SHA-256 hex digest of a resource's logical path.

    The digest keys the remote resource record.  It addresses the *path*,
    not the bytes: a changed file at the same path keeps its address and is
    re-uploaded when newer.
    """
    return hashlib.sha256(path.encode("utf-8")).hexdigest()
