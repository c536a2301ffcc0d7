"""
Unit Tests — retry_async + error taxonomy
══════════════════════════════════════════

Coverage targets:
  ✅ Success on first attempt → no sleep
  ✅ Transient failure then success → one back-off sleep
  ✅ Exhausted attempts → last error propagates unchanged
  ✅ Terminal taxonomy errors → never retried
  ✅ Back-off doubles and is capped at max_delay
  ✅ is_retryable classification
  ✅ PipelineError.to_dict structure
"""

from __future__ import annotations

import asyncio

import pytest

from drillrag.core.exceptions import (
    ChunkingFailed,
    ExtractionFailed,
    NotFoundError,
    PipelineError,
    StageFailed,
    TransientServiceError,
    ValidationError,
    is_retryable,
)
from drillrag.core.retry import RetryPolicy, retry_async


class _Flaky:
    """Raises the queued errors in order, then returns 'ok'."""

    def __init__(self, *errors: Exception) -> None:
        self.errors = list(errors)
        self.calls  = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


class _SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# ─────────────────────────────────────────────────────────────────────────────
# retry_async
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestRetryAsync:

    async def test_first_attempt_success_does_not_sleep(self):
        op, sleep = _Flaky(), _SleepRecorder()
        result = await retry_async(op, policy=RetryPolicy(attempts=3), sleep=sleep)
        assert result == "ok"
        assert op.calls == 1
        assert sleep.delays == []

    async def test_transient_error_is_retried(self):
        op, sleep = _Flaky(TransientServiceError("429")), _SleepRecorder()
        result = await retry_async(
            op, policy=RetryPolicy(attempts=3, base_delay=0.5, max_delay=5.0), sleep=sleep,
        )
        assert result == "ok"
        assert op.calls == 2
        assert sleep.delays == [0.5]

    async def test_exhausted_attempts_raise_last_error(self):
        last = TransientServiceError("third")
        op = _Flaky(TransientServiceError("first"), TransientServiceError("second"), last)
        with pytest.raises(TransientServiceError) as exc_info:
            await retry_async(op, policy=RetryPolicy(attempts=3), sleep=_SleepRecorder())
        assert exc_info.value is last
        assert op.calls == 3

    @pytest.mark.parametrize("error", [
        ValidationError("bad input"),
        NotFoundError("missing"),
        ExtractionFailed("image based"),
        ChunkingFailed("bad options"),
    ])
    async def test_terminal_errors_are_not_retried(self, error):
        op = _Flaky(error)
        with pytest.raises(type(error)):
            await retry_async(op, policy=RetryPolicy(attempts=5), sleep=_SleepRecorder())
        assert op.calls == 1

    async def test_timeout_is_retried(self):
        op = _Flaky(asyncio.TimeoutError())
        assert await retry_async(op, policy=RetryPolicy(attempts=2), sleep=_SleepRecorder()) == "ok"

    async def test_custom_predicate_overrides_default(self):
        op = _Flaky(TransientServiceError("no retry here"))
        with pytest.raises(TransientServiceError):
            await retry_async(
                op, policy=RetryPolicy(attempts=3), retryable=lambda exc: False,
                sleep=_SleepRecorder(),
            )
        assert op.calls == 1

    def test_backoff_doubles_and_caps(self):
        policy = RetryPolicy(attempts=6, base_delay=0.5, max_delay=3.0)
        assert [policy.delay_for(n) for n in range(1, 6)] == [0.5, 1.0, 2.0, 3.0, 3.0]


# ─────────────────────────────────────────────────────────────────────────────
# Taxonomy
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestErrorTaxonomy:

    def test_unclassified_errors_are_retryable(self):
        assert is_retryable(ConnectionResetError("peer reset")) is True

    def test_plain_pipeline_error_is_not_retryable(self):
        assert is_retryable(PipelineError("generic")) is False

    def test_to_dict_includes_cause_and_suggestions(self):
        cause = ValueError("boom")
        err = ValidationError("bad", cause=cause, context={"key": "a.pdf"}, suggestions=["fix it"])
        data = err.to_dict()
        assert data["error"]["code"] == "VALIDATION_ERROR"
        assert data["context"] == {"key": "a.pdf"}
        assert data["suggestions"] == ["fix it"]
        assert data["cause"]["type"] == "ValueError"

    def test_stage_failed_carries_stage_and_suggestions(self):
        cause = ExtractionFailed("image based", suggestions=["convert it"])
        err = StageFailed("extract", cause)
        assert err.stage == "extract"
        assert err.cause is cause
        assert err.suggestions == ["convert it"]
