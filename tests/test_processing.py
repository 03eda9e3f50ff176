"""Tests for per-question and per-batch processing."""

import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from unittest.mock import patch

from tests.fakes import FakeCompletionClient
from visibility_report.core.exceptions import BatchInProgressError, BatchNotFoundError
from visibility_report.pipeline.processing import (
    ANSWER_SYSTEM_PROMPT,
    QuestionProcessor,
    brand_mentioned,
    competitors_mentioned,
)
from visibility_report.pipeline.progress import ProgressTracker
from visibility_report.pipeline.types import BatchStatus, BrandInfo, ResponseRecord

BRAND = BrandInfo(brand="Acme", aliases=["ACME Corp"])
COMPETITORS = ["Globex", "Initech"]


def _processor(store, config, client):
    return QuestionProcessor(client, store, ProgressTracker(store), config)


async def _batch(store, job, questions, number=1):
    return (await store.create_batches(job.id, [questions], first_number=number))[0]


class SimulatedClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class HookedCompletionClient(FakeCompletionClient):
    """Advances the clock per call and runs ``after_answer[n]`` once the n-th answer is produced."""

    def __init__(self, clock: SimulatedClock | None = None, seconds_per_call: float = 0.0, **kwargs):
        super().__init__(**kwargs)
        self.clock = clock
        self.seconds_per_call = seconds_per_call
        self.after_answer = {}

    async def complete(self, system_prompt, user_prompt):
        if self.clock is not None:
            self.clock.advance(self.seconds_per_call)
        completion = await super().complete(system_prompt, user_prompt)
        if system_prompt == ANSWER_SYSTEM_PROMPT:
            hook = self.after_answer.pop(len(self.answer_calls), None)
            if hook is not None:
                await hook()
        return completion


class TestMentionDetection:
    def test_competitor_match_is_case_insensitive(self):
        assert competitors_mentioned("globex is a strong alternative", ["Globex"]) == ["Globex"]

    def test_competitors_in_list_order(self):
        answer = "Initech and Globex both compete here."
        assert competitors_mentioned(answer, COMPETITORS) == ["Globex", "Initech"]

    def test_no_competitor(self):
        assert competitors_mentioned("Nothing relevant.", COMPETITORS) == []

    def test_alias_counts_as_brand(self):
        assert brand_mentioned("I would pick acme corp.", BrandInfo(brand="Zeta", aliases=["ACME Corp"]))

    def test_regex_metacharacters_are_escaped(self):
        brand = BrandInfo(brand="C++ Tools (EU)")
        assert brand_mentioned("Try c++ tools (eu) today", brand)
        assert not brand_mentioned("C Tools EU", brand)

    def test_empty_brand_never_matches(self):
        assert not brand_mentioned("anything", BrandInfo(brand=""))


class TestProcessQuestion:
    @pytest.mark.asyncio
    async def test_globex_answer_is_classified(self, store, config, job):
        client = FakeCompletionClient(default_answer="Globex is a strong alternative")
        batch = await _batch(store, job, ["Best tool?"])

        response = await _processor(store, config, client).process_question("Best tool?", BRAND, ["Globex"], batch.id)

        assert response.competitor_matches == ["Globex"]
        assert response.brand_match is False
        assert len(store.responses) == 1

    @pytest.mark.asyncio
    async def test_fail_twice_then_succeed(self, store, config, job):
        client = FakeCompletionClient()
        client.fail("Is Acme reliable?", times=2)
        client.answers["Is Acme reliable?"] = ["Yes, Acme is reliable."]
        batch = await _batch(store, job, ["Is Acme reliable?"])

        await _processor(store, config, client).process_question("Is Acme reliable?", BRAND, COMPETITORS, batch.id)

        assert len(client.answer_calls) == 3
        assert len(store.responses) == 1
        assert store.responses[0].brand_match is True
        assert store.responses[0].answer_text == "Yes, Acme is reliable."

    @pytest.mark.asyncio
    async def test_duplicate_insert_keeps_first_row(self, store, config, job):
        batch = await _batch(store, job, ["Q?"])
        await store.insert_response(ResponseRecord(batch_id=batch.id, question_text="Q?", answer_text="first"))

        await _processor(store, config, FakeCompletionClient()).process_question("Q?", BRAND, COMPETITORS, batch.id)

        assert len(store.responses) == 1
        assert store.responses[0].answer_text == "first"

    @pytest.mark.asyncio
    async def test_retry_budget_exhausted_raises(self, store, config, job):
        client = FakeCompletionClient()
        client.fail("Q?")
        batch = await _batch(store, job, ["Q?"])
        with pytest.raises(httpx.ConnectError):
            await _processor(store, config, client).process_question("Q?", BRAND, COMPETITORS, batch.id)
        assert len(client.answer_calls) == config.max_retries + 1
        assert store.responses == []


class TestProcessBatch:
    @pytest.mark.asyncio
    async def test_resume_only_sends_unanswered_questions(self, store, config, job):
        questions = [f"Q{i}?" for i in range(10)]
        batch = await _batch(store, job, questions)
        for q in questions[:4]:
            await store.insert_response(ResponseRecord(batch_id=batch.id, question_text=q, answer_text="old"))
        client = FakeCompletionClient()

        processed = await _processor(store, config, client).process_batch(
            1, questions, job.id, BRAND, COMPETITORS, total_questions=10, previously_processed=0
        )

        assert client.answer_calls == questions[4:]
        assert processed == 10
        assert (await store.get_batch(batch.id)).status == BatchStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_complete_batch_has_one_response_per_question(self, store, config, job):
        questions = [f"Q{i}?" for i in range(7)]
        batch = await _batch(store, job, questions)

        await _processor(store, config, FakeCompletionClient()).process_batch(
            1, questions, job.id, BRAND, COMPETITORS, total_questions=7, previously_processed=0, batch_id=batch.id
        )

        assert (await store.get_batch(batch.id)).status == BatchStatus.COMPLETE
        assert len(await store.list_responses(batch.id)) == len(questions)
        assert batch.id in store.summaries

    @pytest.mark.asyncio
    async def test_already_complete_batch_is_credited_without_calls(self, store, config, job):
        questions = ["Q1?", "Q2?"]
        batch = await _batch(store, job, questions)
        await store.update_batch(batch.id, status=BatchStatus.COMPLETE)
        client = FakeCompletionClient()

        processed = await _processor(store, config, client).process_batch(
            1, questions, job.id, BRAND, COMPETITORS, total_questions=10, previously_processed=5
        )

        assert processed == 7
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_failed_questions_mark_batch_error_with_counts(self, store, config, job):
        questions = [f"Q{i}?" for i in range(5)]
        batch = await _batch(store, job, questions)
        client = FakeCompletionClient()
        client.fail("Q1?")
        client.fail("Q3?")

        processed = await _processor(store, config, client).process_batch(
            1, questions, job.id, BRAND, COMPETITORS, total_questions=5, previously_processed=0
        )

        stored = await store.get_batch(batch.id)
        assert processed == 3
        assert stored.status == BatchStatus.ERROR
        assert stored.error_message == "Processed 3/5 questions. Failed to process 2 questions."
        assert len(store.responses) == 3

    @pytest.mark.asyncio
    async def test_creates_missing_batch_record(self, store, config, job):
        questions = ["Q1?", "Q2?"]
        await _processor(store, config, FakeCompletionClient()).process_batch(
            2, questions, job.id, BRAND, COMPETITORS, total_questions=2, previously_processed=0
        )
        batch = await store.get_batch_by_number(job.id, 2)
        assert batch is not None
        assert batch.status == BatchStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_unknown_batch_id(self, store, config, job):
        with pytest.raises(BatchNotFoundError):
            await _processor(store, config, FakeCompletionClient()).process_batch(
                1, ["Q?"], job.id, BRAND, COMPETITORS, 1, 0, batch_id=uuid.uuid4()
            )

    @pytest.mark.asyncio
    async def test_live_lease_blocks_second_processor(self, store, config, job):
        batch = await _batch(store, job, ["Q?"])
        await store.update_batch(batch.id, status=BatchStatus.PROCESSING, claimed_at=datetime.now(timezone.utc))
        client = FakeCompletionClient()

        with pytest.raises(BatchInProgressError):
            await _processor(store, config, client).process_batch(1, ["Q?"], job.id, BRAND, COMPETITORS, 1, 0)
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_stale_lease_is_reclaimed(self, store, config, job):
        batch = await _batch(store, job, ["Q?"])
        stale = datetime.now(timezone.utc) - timedelta(seconds=config.batch_lease_seconds + 60)
        await store.update_batch(batch.id, status=BatchStatus.PROCESSING, claimed_at=stale)

        await _processor(store, config, FakeCompletionClient()).process_batch(
            1, ["Q?"], job.id, BRAND, COMPETITORS, 1, 0
        )
        assert (await store.get_batch(batch.id)).status == BatchStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_slow_answers_keep_the_lease_alive(self, store, config, job):
        questions = [f"Q{i}?" for i in range(10)]
        batch = await _batch(store, job, questions)
        clock = SimulatedClock(datetime(2025, 10, 1, tzinfo=timezone.utc))
        # Each answer takes a third of the lease; the batch as a whole takes far longer than the lease
        first_client = HookedCompletionClient(clock, seconds_per_call=config.batch_lease_seconds / 3)
        second_client = FakeCompletionClient()
        second_errors = []

        async def start_second_processor():
            try:
                await _processor(store, config, second_client).process_batch(
                    1, questions, job.id, BRAND, COMPETITORS, 10, 0
                )
            except BatchInProgressError as e:
                second_errors.append(e)

        first_client.after_answer[4] = start_second_processor

        with patch("visibility_report.pipeline.processing._utcnow", new=clock):
            await _processor(store, config, first_client).process_batch(
                1, questions, job.id, BRAND, COMPETITORS, 10, 0
            )

        assert len(second_errors) == 1
        assert second_client.calls == []
        assert first_client.answer_calls == questions
        stored = await store.get_batch(batch.id)
        assert stored.status == BatchStatus.COMPLETE
        assert stored.claimed_at is None

    @pytest.mark.asyncio
    async def test_lost_lease_stops_without_touching_the_batch(self, store, config, job):
        questions = [f"Q{i}?" for i in range(5)]
        batch = await _batch(store, job, questions)
        taken_over_at = datetime.now(timezone.utc) + timedelta(seconds=5)
        client = HookedCompletionClient()

        async def take_over():
            store.batches[batch.id] = replace(store.batches[batch.id], claimed_at=taken_over_at)

        client.after_answer[2] = take_over

        with pytest.raises(BatchInProgressError):
            await _processor(store, config, client).process_batch(1, questions, job.id, BRAND, COMPETITORS, 5, 0)

        assert len(client.answer_calls) == 2
        stored = await store.get_batch(batch.id)
        assert stored.status == BatchStatus.PROCESSING
        assert stored.claimed_at == taken_over_at
        assert stored.error_message is None

    @pytest.mark.asyncio
    async def test_summary_failure_keeps_batch_complete(self, store, config, job):
        batch = await _batch(store, job, ["Q?"])
        client = FakeCompletionClient()
        client.summary_text = "not json at all"

        await _processor(store, config, client).process_batch(1, ["Q?"], job.id, BRAND, COMPETITORS, 1, 0)

        assert (await store.get_batch(batch.id)).status == BatchStatus.COMPLETE
        assert batch.id not in store.summaries

    @pytest.mark.asyncio
    async def test_progress_is_non_decreasing_and_capped(self, store, config, job):
        questions = [f"Q{i}?" for i in range(20)]
        await _batch(store, job, questions)
        client = FakeCompletionClient()
        client.fail("Q5?")

        await _processor(store, config, client).process_batch(1, questions, job.id, BRAND, COMPETITORS, 20, 0)

        writes = store.progress_writes
        assert writes == sorted(writes)
        assert max(writes) <= 99


class TestBatchSummary:
    @pytest.mark.asyncio
    async def test_summary_is_generated_once(self, store, config, job):
        batch = await _batch(store, job, ["Q?"])
        await store.insert_response(ResponseRecord(batch_id=batch.id, question_text="Q?", answer_text="A"))
        client = FakeCompletionClient()
        processor = _processor(store, config, client)

        first = await processor.generate_batch_summary(batch.id, "Acme", COMPETITORS)
        second = await processor.generate_batch_summary(batch.id, "Acme", COMPETITORS)

        assert first == {"brand_mentions": 3, "competitor_mentions": {"Globex": 1}, "tone": "positive"}
        assert second is None
        assert len(client.calls) == 1
