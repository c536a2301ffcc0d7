"""
Metadata Store — append-only records of processed documents and answered queries.

SqlMetadataStore writes through SQLAlchemy async sessions. Driver errors are
translated at this boundary:

  IntegrityError            → ValidationError        (never retried)
  any other SQLAlchemyError → TransientServiceError  (retried by callers)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from drillrag.core.exceptions import TransientServiceError, ValidationError
from drillrag.db.session import get_session_factory, session_scope
from drillrag.models.records import ProcessedDocument, QueryRecord

logger = logging.getLogger(__name__)


class MetadataStore(ABC):

    @abstractmethod
    async def save_processed_document(self, record: ProcessedDocument) -> None: ...

    @abstractmethod
    async def save_query(self, record: QueryRecord) -> None: ...


class SqlMetadataStore(MetadataStore):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._factory = session_factory

    async def save_processed_document(self, record: ProcessedDocument) -> None:
        await self._add(record, "processed_documents")
        logger.info(
            "Metadata saved | table=processed_documents key=%s chunks=%d/%d",
            record.key, record.successful_chunks, record.total_chunks,
        )

    async def save_query(self, record: QueryRecord) -> None:
        await self._add(record, "query_records")
        logger.info(
            "Metadata saved | table=query_records user=%s results=%d",
            record.user_id, record.results_count,
        )

    async def _add(self, record, table: str) -> None:
        try:
            async with session_scope(self._factory or get_session_factory()) as session:
                session.add(record)
        except IntegrityError as exc:
            raise ValidationError(
                f"Metadata rejected by {table}: {exc.orig}", cause=exc, context={"table": table},
            ) from exc
        except SQLAlchemyError as exc:
            raise TransientServiceError(
                f"Metadata write to {table} failed: {exc}", cause=exc, context={"table": table},
            ) from exc
