"""
Unit Tests — SqlMetadataStore on SQLite (aiosqlite)
════════════════════════════════════════════════════

Coverage targets:
  ✅ ProcessedDocument and QueryRecord rows are committed
  ✅ Constraint violation → ValidationError (not retried)
  ✅ Other driver failures → TransientServiceError
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from drillrag.core.config import Settings
from drillrag.core.exceptions import TransientServiceError, ValidationError
from drillrag.db.session import build_engine, create_tables
from drillrag.models.records import ProcessedDocument, QueryRecord
from drillrag.services.metadata import SqlMetadataStore


@pytest.fixture
async def session_factory(tmp_path):
    engine = build_engine(Settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'metadata.db'}"))
    await create_tables(engine)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


def _document(**overrides) -> ProcessedDocument:
    fields = dict(
        user_id="user-1",
        file_name="bha2.pdf",
        key="uploads/user-1/bha2.pdf",
        collection_name="drilling_reports",
        total_chunks=10,
        successful_chunks=9,
        success_rate=0.9,
        text_length=4200,
        extraction_method="digital",
        quality_score=0.88,
        processing_time_ms=1800,
    )
    fields.update(overrides)
    return ProcessedDocument(**fields)


@pytest.mark.unit
@pytest.mark.storage
class TestSqlMetadataStore:

    async def test_processed_document_committed(self, session_factory):
        await SqlMetadataStore(session_factory).save_processed_document(_document())

        async with session_factory() as session:
            row = (await session.execute(select(ProcessedDocument))).scalar_one()
        assert row.key == "uploads/user-1/bha2.pdf"
        assert row.successful_chunks == 9
        assert row.created_at is not None

    async def test_query_record_committed(self, session_factory):
        store = SqlMetadataStore(session_factory)
        await store.save_query(QueryRecord(
            user_id="user-1",
            query_text="average ROP?",
            answer="85.2 ft/hr",
            model="gpt-4o",
            temperature=0.3,
            total_tokens=120,
            query_type="aggregation",
            results_count=3,
            sources=[{"file_name": "bha2.pdf", "score": 0.81, "rank": 1, "relevance": "HIGH"}],
        ))

        async with session_factory() as session:
            count = (await session.execute(select(func.count()).select_from(QueryRecord))).scalar_one()
            row = (await session.execute(select(QueryRecord))).scalar_one()
        assert count == 1
        assert row.sources[0]["relevance"] == "HIGH"

    async def test_constraint_violation_is_validation_error(self, session_factory):
        with pytest.raises(ValidationError):
            await SqlMetadataStore(session_factory).save_processed_document(_document(user_id=None))

    async def test_driver_failure_is_transient(self):
        factory = MagicMock(side_effect=OperationalError("INSERT", {}, Exception("database is locked")))
        with pytest.raises(TransientServiceError) as exc_info:
            await SqlMetadataStore(factory).save_query(QueryRecord(
                user_id="u", query_text="q", answer="a", results_count=0, sources=[],
            ))
        assert exc_info.value.retryable
