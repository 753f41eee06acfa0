"""Embedded resource records."""

from __future__ import annotations

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from brainsync.models.base import Base


class Resource(Base):
    """Upload bookkeeping for one embedded file, keyed by its content address."""

    __tablename__ = "resources"

    path_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    path: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    last_modified: Mapped[str] = mapped_column(Text, nullable=False)
