"""Tests for the retry engine."""

import asyncio

import pytest

from faultline.classification import ErrorKind
from faultline.errors import LastAttemptError, RetryCancelled, StorageError
from faultline.retry import CancellationToken, RetryPolicy, retry, with_retry


class Flaky:
    """Fails ``failures`` times with ``error`` and then returns ``result``."""

    def __init__(self, failures, error=None, result="ok"):
        self.failures = failures
        self.error = error or ConnectionError("connection reset")
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


class TestRetryPolicy:
    """Tests for RetryPolicy delay math."""

    def test_no_delay_before_first_attempt(self):
        assert RetryPolicy().delay_before(1) == 0.0

    def test_exponential_delays(self):
        policy = RetryPolicy(base_delay=1.0, backoff_multiplier=2.0, max_delay=100.0)
        assert [policy.delay_before(n) for n in range(2, 6)] == [1.0, 2.0, 4.0, 8.0]

    def test_delay_cap(self):
        policy = RetryPolicy(base_delay=1.0, backoff_multiplier=10.0, max_delay=5.0)
        assert policy.delay_before(4) == 5.0

    def test_default_retries_transient_only(self):
        policy = RetryPolicy()
        assert policy.should_retry(ErrorKind.NETWORK)
        assert policy.should_retry(ErrorKind.SERVER)
        assert not policy.should_retry(ErrorKind.VALIDATION)

    def test_retry_on_none_retries_everything(self):
        policy = RetryPolicy(retry_on=None)
        assert all(policy.should_retry(kind) for kind in ErrorKind)

    def test_invalid_policy(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestRetry:
    """Tests for the retry loop."""

    @pytest.mark.asyncio
    async def test_success_first_try_never_sleeps(self, recording_sleep):
        op = Flaky(0)
        assert await retry(op, RetryPolicy(), sleep=recording_sleep) == "ok"
        assert op.calls == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self, recording_sleep):
        op = Flaky(2)
        policy = RetryPolicy(max_attempts=3, base_delay=0.5, backoff_multiplier=3.0)

        assert await retry(op, policy, sleep=recording_sleep) == "ok"
        assert op.calls == 3
        assert recording_sleep.delays == [0.5, 1.5]

    @pytest.mark.asyncio
    async def test_exhaustion_wraps_last_error(self, recording_sleep):
        errors = [ConnectionError("first"), ConnectionError("second"), ConnectionError("third")]

        async def op():
            raise errors.pop(0)

        with pytest.raises(LastAttemptError) as exc_info:
            await retry(op, RetryPolicy(max_attempts=3), sleep=recording_sleep)

        assert exc_info.value.attempts == 3
        assert str(exc_info.value.last_error) == "third"
        assert exc_info.value.__cause__ is exc_info.value.last_error
        assert len(recording_sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_never_exceeds_max_attempts(self, recording_sleep):
        op = Flaky(100)
        with pytest.raises(LastAttemptError):
            await retry(op, RetryPolicy(max_attempts=5, base_delay=0.0), sleep=recording_sleep)
        assert op.calls == 5

    @pytest.mark.asyncio
    async def test_single_attempt_policy(self, recording_sleep):
        op = Flaky(1)
        with pytest.raises(LastAttemptError):
            await retry(op, RetryPolicy(max_attempts=1), sleep=recording_sleep)
        assert op.calls == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_non_retryable_fails_fast(self, recording_sleep, metrics):
        error = StorageError("duplicate", code="23505")
        op = Flaky(5, error=error)

        with pytest.raises(StorageError) as exc_info:
            await retry(op, RetryPolicy(), sleep=recording_sleep, metrics=metrics, name="create_project")

        assert exc_info.value is error
        assert op.calls == 1
        assert metrics.snapshot().values()[
            'retry_fail_fast_total{kind="storage",operation="create_project"}'
        ] == 1

    @pytest.mark.asyncio
    async def test_retry_everything(self, recording_sleep):
        op = Flaky(2, error=ValueError("odd"))
        assert await retry(op, RetryPolicy(retry_on=None, base_delay=0.0), sleep=recording_sleep) == "ok"

    @pytest.mark.asyncio
    async def test_metrics(self, recording_sleep, metrics):
        await retry(Flaky(1), RetryPolicy(), sleep=recording_sleep, metrics=metrics, name="load")
        values = metrics.snapshot().values()
        assert values['retry_attempts_total{operation="load"}'] == 1
        assert values['retry_success_total{operation="load"}'] == 1


class TestCancellation:
    """Tests for CancellationToken."""

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self):
        token = CancellationToken()
        token.cancel("navigated away")
        op = Flaky(0)

        with pytest.raises(RetryCancelled) as exc_info:
            await retry(op, cancel=token)

        assert op.calls == 0
        assert exc_info.value.attempts == 0
        assert exc_info.value.reason == "navigated away"

    @pytest.mark.asyncio
    async def test_cancel_interrupts_backoff(self):
        token = CancellationToken()
        op = Flaky(10)
        policy = RetryPolicy(max_attempts=5, base_delay=60.0)

        task = asyncio.create_task(retry(op, policy, cancel=token))
        await asyncio.sleep(0.05)
        token.cancel("unmounted")

        with pytest.raises(RetryCancelled):
            await asyncio.wait_for(task, timeout=2.0)
        assert op.calls == 1

    def test_cancel_is_idempotent(self):
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")
        assert token.cancelled
        assert token.reason == "first"


class TestWithRetry:
    """Tests for the decorator form."""

    @pytest.mark.asyncio
    async def test_decorator(self, recording_sleep):
        calls = []

        @with_retry(RetryPolicy(max_attempts=3), sleep=recording_sleep)
        async def fetch(project_id):
            calls.append(project_id)
            if len(calls) < 2:
                raise ConnectionError("blip")
            return {"id": project_id}

        assert await fetch("p-1") == {"id": "p-1"}
        assert calls == ["p-1", "p-1"]
        assert fetch.__name__ == "fetch"

    def test_rejects_sync_functions(self):
        with pytest.raises(TypeError):

            @with_retry()
            def not_async():
                return 1
