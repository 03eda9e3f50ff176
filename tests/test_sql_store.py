"""Tests for the SQLAlchemy report store on in-memory SQLite."""

import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import visibility_report.models  # noqa: F401  registers tables on Base.metadata
from visibility_report.db.base import Base
from visibility_report.models.questionnaire import Questionnaire
from visibility_report.pipeline.types import (
    BatchStatus,
    QuestionnaireStatus,
    ReportStatus,
    ResponseRecord,
)
from visibility_report.store.base import BatchesExistError
from visibility_report.store.sql import SqlReportStore


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def sql_store(session_factory) -> SqlReportStore:
    return SqlReportStore(session_factory)


@pytest.fixture
async def questionnaire_id(session_factory) -> uuid.UUID:
    row = Questionnaire(
        user_id="user-1",
        brand_name="Acme",
        aliases=["ACME Corp"],
        competitors=["Globex", "Initech"],
    )
    async with session_factory() as db:
        db.add(row)
        await db.commit()
        return row.id


def _response(batch_id, question, tokens=10):
    return ResponseRecord(
        batch_id=batch_id,
        question_text=question,
        answer_text=f"Answer to {question}",
        tokens_used=tokens,
        brand_match=True,
        competitor_matches=["Globex"],
    )


class TestQuestionnaires:
    @pytest.mark.asyncio
    async def test_get_maps_record(self, sql_store, questionnaire_id):
        job = await sql_store.get_questionnaire(questionnaire_id)
        assert job.brand_name == "Acme"
        assert job.aliases == ["ACME Corp"]
        assert job.competitors == ["Globex", "Initech"]
        assert job.status == QuestionnaireStatus.PENDING
        assert job.progress_percent == 0

    @pytest.mark.asyncio
    async def test_get_missing(self, sql_store):
        assert await sql_store.get_questionnaire(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_update_accepts_enums(self, sql_store, questionnaire_id):
        await sql_store.update_questionnaire(
            questionnaire_id, status=QuestionnaireStatus.ERROR, error_message="boom"
        )
        job = await sql_store.get_questionnaire(questionnaire_id)
        assert job.status == QuestionnaireStatus.ERROR
        assert job.error_message == "boom"

    @pytest.mark.asyncio
    async def test_raise_progress_never_lowers(self, sql_store, questionnaire_id):
        assert await sql_store.raise_progress(questionnaire_id, 40) is True
        assert await sql_store.raise_progress(questionnaire_id, 30) is False
        assert await sql_store.raise_progress(questionnaire_id, 40) is False
        assert (await sql_store.get_questionnaire(questionnaire_id)).progress_percent == 40


class TestBatches:
    @pytest.mark.asyncio
    async def test_create_and_list_in_order(self, sql_store, questionnaire_id):
        await sql_store.create_batches(questionnaire_id, [["Q1?", "Q2?"], ["Q3?"]])

        batches = await sql_store.list_batches(questionnaire_id)

        assert [b.batch_number for b in batches] == [1, 2]
        assert batches[0].questions == ["Q1?", "Q2?"]
        assert batches[1].status == BatchStatus.PENDING

    @pytest.mark.asyncio
    async def test_create_conflict(self, sql_store, questionnaire_id):
        await sql_store.create_batches(questionnaire_id, [["Q1?"], ["Q2?"]])

        with pytest.raises(BatchesExistError):
            await sql_store.create_batches(questionnaire_id, [["Other?"]], first_number=2)

        assert len(await sql_store.list_batches(questionnaire_id)) == 2

    @pytest.mark.asyncio
    async def test_get_by_number(self, sql_store, questionnaire_id):
        await sql_store.create_batches(questionnaire_id, [["Q1?"], ["Q2?"]])
        batch = await sql_store.get_batch_by_number(questionnaire_id, 2)
        assert batch.questions == ["Q2?"]
        assert await sql_store.get_batch_by_number(questionnaire_id, 3) is None

    @pytest.mark.asyncio
    async def test_claim_is_exclusive(self, sql_store, questionnaire_id):
        (batch,) = await sql_store.create_batches(questionnaire_id, [["Q1?"]])
        now = datetime.now(timezone.utc)
        stale_before = now - timedelta(minutes=10)

        assert await sql_store.claim_batch(batch.id, now, stale_before) is True
        assert await sql_store.claim_batch(batch.id, now, stale_before) is False
        assert (await sql_store.get_batch(batch.id)).status == BatchStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_stale_claim_can_be_taken_over(self, sql_store, questionnaire_id):
        (batch,) = await sql_store.create_batches(questionnaire_id, [["Q1?"]])
        old = datetime.now(timezone.utc) - timedelta(hours=1)
        await sql_store.claim_batch(batch.id, old, old - timedelta(minutes=10))

        now = datetime.now(timezone.utc)
        assert await sql_store.claim_batch(batch.id, now, now - timedelta(minutes=10)) is True

    @pytest.mark.asyncio
    async def test_complete_batch_is_never_claimed(self, sql_store, questionnaire_id):
        (batch,) = await sql_store.create_batches(questionnaire_id, [["Q1?"]], status=BatchStatus.COMPLETE)
        now = datetime.now(timezone.utc)
        assert await sql_store.claim_batch(batch.id, now, now) is False

    @pytest.mark.asyncio
    async def test_claim_clears_error(self, sql_store, questionnaire_id):
        (batch,) = await sql_store.create_batches(questionnaire_id, [["Q1?"]])
        await sql_store.update_batch(batch.id, status=BatchStatus.ERROR, error_message="Processed 0/1 questions.")
        now = datetime.now(timezone.utc)

        assert await sql_store.claim_batch(batch.id, now, now - timedelta(minutes=10)) is True
        assert (await sql_store.get_batch(batch.id)).error_message is None

    @pytest.mark.asyncio
    async def test_touch_requires_the_held_lease(self, sql_store, questionnaire_id):
        (batch,) = await sql_store.create_batches(questionnaire_id, [["Q1?"]])
        held = datetime.now(timezone.utc) - timedelta(minutes=1)
        await sql_store.claim_batch(batch.id, held, held - timedelta(minutes=10))
        renewed = held + timedelta(seconds=30)

        assert await sql_store.touch_batch(batch.id, held - timedelta(seconds=1), renewed) is False
        assert await sql_store.touch_batch(batch.id, held, renewed) is True
        # The old stamp no longer identifies the holder
        assert await sql_store.touch_batch(batch.id, held, renewed + timedelta(seconds=30)) is False

    @pytest.mark.asyncio
    async def test_finish_after_takeover_is_rejected(self, sql_store, questionnaire_id):
        (batch,) = await sql_store.create_batches(questionnaire_id, [["Q1?"]])
        old = datetime.now(timezone.utc) - timedelta(hours=1)
        await sql_store.claim_batch(batch.id, old, old - timedelta(minutes=10))
        now = datetime.now(timezone.utc)
        await sql_store.claim_batch(batch.id, now, now - timedelta(minutes=10))

        assert await sql_store.finish_batch(batch.id, old, BatchStatus.ERROR, error_message="boom") is False
        stored = await sql_store.get_batch(batch.id)
        assert stored.status == BatchStatus.PROCESSING
        assert stored.error_message is None

        assert await sql_store.finish_batch(batch.id, now, BatchStatus.COMPLETE) is True
        stored = await sql_store.get_batch(batch.id)
        assert stored.status == BatchStatus.COMPLETE
        assert stored.claimed_at is None


class TestResponses:
    @pytest.mark.asyncio
    async def test_duplicate_response_is_rejected(self, sql_store, questionnaire_id):
        (batch,) = await sql_store.create_batches(questionnaire_id, [["Q1?"]])

        assert await sql_store.insert_response(_response(batch.id, "Q1?")) is True
        assert await sql_store.insert_response(_response(batch.id, "Q1?", tokens=99)) is False

        responses = await sql_store.list_responses(batch.id)
        assert len(responses) == 1
        assert responses[0].tokens_used == 10
        assert responses[0].competitor_matches == ["Globex"]
        assert await sql_store.answered_questions(batch.id) == {"Q1?"}

    @pytest.mark.asyncio
    async def test_questionnaire_responses_in_batch_order(self, sql_store, questionnaire_id):
        first, second = await sql_store.create_batches(questionnaire_id, [["Q1?"], ["Q2?"]])
        await sql_store.insert_response(_response(second.id, "Q2?"))
        await sql_store.insert_response(_response(first.id, "Q1?"))

        responses = await sql_store.list_questionnaire_responses(questionnaire_id)

        assert [r.question_text for r in responses] == ["Q1?", "Q2?"]


class TestSummariesAndReport:
    @pytest.mark.asyncio
    async def test_one_summary_per_batch(self, sql_store, questionnaire_id):
        (batch,) = await sql_store.create_batches(questionnaire_id, [["Q1?"]])

        assert await sql_store.insert_batch_summary(batch.id, {"tone": "positive"}) is True
        assert await sql_store.insert_batch_summary(batch.id, {"tone": "negative"}) is False
        assert (await sql_store.get_batch_summary(batch.id)).summary_json == {"tone": "positive"}

    @pytest.mark.asyncio
    async def test_upsert_final_report_keeps_one_row(self, sql_store, questionnaire_id):
        created = await sql_store.upsert_final_report(questionnaire_id, status=ReportStatus.PROCESSING)
        updated = await sql_store.upsert_final_report(
            questionnaire_id,
            status=ReportStatus.READY,
            summary_json={"executive_conclusion": "ok"},
            total_tokens=300,
            cost_eur=0.003,
            cost_alert=False,
            pdf_url="https://reports.example.com/r.html",
        )

        assert updated.id == created.id
        stored = await sql_store.get_final_report(questionnaire_id)
        assert stored.status == ReportStatus.READY
        assert stored.total_tokens == 300
        assert stored.pdf_url == "https://reports.example.com/r.html"
