"""Stash ORM models.

This module defines the StashEntry model holding the staged secret of
one build target. There is at most one row per target; a replacement
overwrites the row inside a single transaction.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from buildstash.db import Base


class StashEntry(Base):
    """ORM model for a persisted stash record.

    Attributes:
        target: Build target identity (primary key).
        secret_value: Staged secret value.
        staged_under: Fingerprint the secret was staged under.
        generation: Number of replacements since the first staging.
        staged_at: Timestamp of the staging.
    """

    __tablename__ = "stash_records"

    target: Mapped[str] = mapped_column(String(255), primary_key=True)
    secret_value: Mapped[str] = mapped_column(Text, nullable=False)
    staged_under: Mapped[str] = mapped_column(String(128), nullable=False)
    generation: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    staged_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    def __repr__(self) -> str:
        """Return string representation of StashEntry without the secret."""
        return (
            f"<StashEntry(target='{self.target}', generation={self.generation}, "
            f"staged_under='{self.staged_under[:16]}...')>"
        )


__all__ = ["StashEntry"]
