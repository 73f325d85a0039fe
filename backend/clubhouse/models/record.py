"""Document-store table: every collection's records share one table."""
from __future__ import annotations

import datetime

from sqlalchemy import JSON, DateTime, Index, String, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from clubhouse.database import Base


class StoredRecord(Base):
    """One document of a collection, with its access metadata promoted to columns."""
    __tablename__ = "records"
    __table_args__ = (
        Index("idx_records_collection_scope", "collection", "scope"),
        Index("idx_records_collection_created", "collection", "created_at"),
    )

    collection: Mapped[str] = mapped_column(String(100), primary_key=True)
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    scope: Mapped[str] = mapped_column(
        String(128), nullable=False, server_default=text("'all'")
    )
    visibility: Mapped[str] = mapped_column(String(20), nullable=False)
    # A label, not a foreign key: it may outlive the profile it names.
    owner_id: Mapped[str | None] = mapped_column(String(128))
    data: Mapped[dict] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("NOW()"),
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("NOW()"),
    )

    def __repr__(self) -> str:
        return f"<StoredRecord {self.collection}/{self.id} visibility={self.visibility!r}>"
