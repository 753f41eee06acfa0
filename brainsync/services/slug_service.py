"""Site slug normalization and validation."""

from __future__ import annotations

import re
import unicodedata

from brainsync.exceptions import InvalidSlugError

MAX_SLUG_LENGTH = 80

_SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def generate_site_slug(name: str) -> str:
    """Generate a URL-safe slug from a free-form site name.

    - Normalize unicode to ASCII (NFKD)
    - Lowercase, strip
    - Replace non-alphanumeric chars with hyphens
    - Collapse multiple hyphens, strip leading/trailing hyphens
    - Truncate to 80 chars (don't cut mid-word if possible)
    - Return "" for input with no usable characters
    """
    text = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    text = text.lower().strip()
    text = re.sub(r"[^a-z0-9]+", "-", text)
    text = text.strip("-")

    if len(text) > MAX_SLUG_LENGTH:
        truncated = text[:MAX_SLUG_LENGTH]
        last_hyphen = truncated.rfind("-")
        if last_hyphen > 0:
            truncated = truncated[:last_hyphen]
        text = truncated.rstrip("-")

    return text


def is_valid_site_slug(slug: str) -> bool:
    """Return True if *slug* is already in canonical URL-safe form."""
    return len(slug) <= MAX_SLUG_LENGTH and bool(_SLUG_RE.match(slug))


def validate_site_slug(slug: str) -> str:
    """Return the stripped slug, or raise InvalidSlugError if it is not URL-safe."""
    stripped = slug.strip()
    if not is_valid_site_slug(stripped):
        suggestion = generate_site_slug(stripped)
        hint = f" (try '{suggestion}')" if suggestion else ""
        raise InvalidSlugError(
            f"Site slug '{slug}' must use lowercase letters, digits and single hyphens{hint}"
        )
    return stripped
