"""
SQLAlchemy ORM Models — Processing & Query Records

Append-only tables written by the metadata store:

  processed_documents   one row per successfully indexed PDF
  query_records         one row per answered question

Column types are dialect-neutral (Uuid, JSON) so the same models run on
PostgreSQL (asyncpg) in production and SQLite (aiosqlite) in tests.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# ProcessedDocument — processed_documents
# ---------------------------------------------------------------------------

class ProcessedDocument(Base):
    """
    Written once per document after its chunks are indexed.

    success_rate = successful_chunks / total_chunks at the time of indexing;
    rows are only written for documents that met the acceptance threshold.
    """

    __tablename__ = "processed_documents"
    __table_args__ = (
        Index("idx_processed_documents_user_id", "user_id"),
        Index("idx_processed_documents_key", "key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id:         Mapped[str] = mapped_column(String(255), nullable=False)
    file_name:       Mapped[str] = mapped_column(String(1024), nullable=False)
    key:             Mapped[str] = mapped_column(String(1024), nullable=False)
    collection_name: Mapped[str] = mapped_column(String(255), nullable=False)

    total_chunks:      Mapped[int]   = mapped_column(Integer, nullable=False, default=0)
    successful_chunks: Mapped[int]   = mapped_column(Integer, nullable=False, default=0)
    success_rate:      Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    text_length:       Mapped[int]   = mapped_column(Integer, nullable=False, default=0)

    extraction_method:  Mapped[Optional[str]]   = mapped_column(String(32))
    quality_score:      Mapped[Optional[float]] = mapped_column(Float)
    processing_time_ms: Mapped[Optional[int]]   = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<ProcessedDocument key={self.key!r} user={self.user_id!r} "
            f"chunks={self.successful_chunks}/{self.total_chunks}>"
        )


# ---------------------------------------------------------------------------
# QueryRecord — query_records
# ---------------------------------------------------------------------------

class QueryRecord(Base):
    """A question, its answer, and the top sources that supported it."""

    __tablename__ = "query_records"
    __table_args__ = (
        Index("idx_query_records_user_created", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id:    Mapped[str] = mapped_column(String(255), nullable=False)
    query_text: Mapped[str] = mapped_column(Text, nullable=False)
    answer:     Mapped[str] = mapped_column(Text, nullable=False)

    model:         Mapped[Optional[str]]   = mapped_column(String(64))
    temperature:   Mapped[Optional[float]] = mapped_column(Float)
    total_tokens:  Mapped[Optional[int]]   = mapped_column(Integer)
    query_type:    Mapped[Optional[str]]   = mapped_column(String(32))
    results_count: Mapped[int]             = mapped_column(Integer, nullable=False, default=0)
    sources:       Mapped[list]            = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )

    def __repr__(self) -> str:
        return f"<QueryRecord user={self.user_id!r} type={self.query_type!r}>"
