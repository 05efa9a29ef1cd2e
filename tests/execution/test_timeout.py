"""Tests for per-node timeout enforcement."""

import asyncio

import pytest

from blockflow.execution.timeout import TimeoutExpired, run_with_timeout_async


async def _sleep_then(value, seconds):
    await asyncio.sleep(seconds)
    return value


class TestRunWithTimeout:
    @pytest.mark.asyncio
    async def test_returns_result_within_deadline(self):
        assert await run_with_timeout_async(_sleep_then("ok", 0), 1.0) == "ok"

    @pytest.mark.asyncio
    async def test_none_waits_forever(self):
        assert await run_with_timeout_async(_sleep_then("ok", 0.01), None) == "ok"

    @pytest.mark.asyncio
    async def test_deadline_exceeded(self):
        with pytest.raises(TimeoutExpired) as exc_info:
            await run_with_timeout_async(_sleep_then("late", 1.0), 0.02, operation="node A")

        error = exc_info.value
        assert isinstance(error, TimeoutError)
        assert error.timeout == 0.02
        assert error.operation == "node A"
        assert error.elapsed > 0
        assert "Operation 'node A' timed out after 0.02s" in str(error)

    @pytest.mark.asyncio
    async def test_rejects_non_positive_timeout(self):
        coro = _sleep_then("x", 0)
        with pytest.raises(ValueError):
            await run_with_timeout_async(coro, 0)
        coro.close()

    @pytest.mark.asyncio
    async def test_callback_errors_propagate(self):
        async def broken():
            raise KeyError("missing")

        with pytest.raises(KeyError):
            await run_with_timeout_async(broken(), 1.0)


class TestTimeoutExpired:
    def test_message_without_elapsed(self):
        error = TimeoutExpired(5.0)
        assert str(error) == "Operation 'operation' timed out after 5.0s"
        assert error.elapsed is None
