"""SQLAlchemy ORM models for the brainsync SQL store."""

from brainsync.models.base import Base
from brainsync.models.document import Document, DocumentSite
from brainsync.models.resource import Resource
from brainsync.models.site import Site
from brainsync.models.user import User

__all__ = [
    "Base",
    "Document",
    "DocumentSite",
    "Resource",
    "Site",
    "User",
]
