"""Tests for meroclient.http.signals -- abort, timeout, and combined signals."""

from __future__ import annotations

import asyncio

import pytest

from meroclient.exceptions import AbortError, RequestTimeoutError
from meroclient.http.signals import (
    AbortController,
    AbortReason,
    AbortSignal,
    combine_signals,
    timeout_signal,
)


class TestAbortController:

    def test_abort_fires_signal(self) -> None:
        controller = AbortController()
        assert not controller.signal.aborted

        controller.abort()

        assert controller.signal.aborted
        assert controller.signal.reason is AbortReason.ABORT

    def test_first_reason_wins(self) -> None:
        controller = AbortController()
        controller.abort(AbortReason.TIMEOUT)
        controller.abort(AbortReason.ABORT)
        assert controller.signal.reason is AbortReason.TIMEOUT

    def test_listeners_called_once(self) -> None:
        controller = AbortController()
        calls: list[AbortReason] = []
        controller.signal.add_listener(calls.append)

        controller.abort()
        controller.abort()

        assert calls == [AbortReason.ABORT]

    def test_removed_listener_not_called(self) -> None:
        controller = AbortController()
        calls: list[AbortReason] = []
        controller.signal.add_listener(calls.append)
        controller.signal.remove_listener(calls.append)

        controller.abort()

        assert calls == []

    def test_remove_unknown_listener_is_ignored(self) -> None:
        AbortSignal().remove_listener(lambda reason: None)

    def test_to_error_matches_reason(self) -> None:
        aborted = AbortController()
        aborted.abort()
        timed_out = AbortController()
        timed_out.abort(AbortReason.TIMEOUT)

        assert isinstance(aborted.signal.to_error("http://x"), AbortError)
        error = timed_out.signal.to_error("http://x")
        assert isinstance(error, RequestTimeoutError)
        assert error.url == "http://x"

    def test_raise_if_aborted(self) -> None:
        controller = AbortController()
        controller.signal.raise_if_aborted()

        controller.abort()

        with pytest.raises(AbortError):
            controller.signal.raise_if_aborted()

    @pytest.mark.asyncio
    async def test_wait_returns_reason(self) -> None:
        controller = AbortController()
        waiter = asyncio.ensure_future(controller.signal.wait())
        await asyncio.sleep(0)
        assert not waiter.done()

        controller.abort()

        assert await waiter is AbortReason.ABORT

    @pytest.mark.asyncio
    async def test_wait_after_abort_returns_immediately(self) -> None:
        controller = AbortController()
        controller.abort()
        assert await controller.signal.wait() is AbortReason.ABORT


class TestTimeoutSignal:

    @pytest.mark.asyncio
    async def test_fires_after_delay(self) -> None:
        signal = timeout_signal(0.01)
        assert not signal.aborted

        reason = await asyncio.wait_for(signal.wait(), timeout=1.0)

        assert reason is AbortReason.TIMEOUT
        assert signal.aborted

    @pytest.mark.asyncio
    async def test_close_cancels_timer(self) -> None:
        signal = timeout_signal(0.01)
        signal.close()

        await asyncio.sleep(0.03)

        assert not signal.aborted


class TestCombineSignals:

    def test_no_inputs_returns_none(self) -> None:
        assert combine_signals([]) is None
        assert combine_signals([None, None]) is None

    def test_fires_when_any_input_fires(self) -> None:
        first, second = AbortController(), AbortController()
        combined = combine_signals([first.signal, None, second.signal])
        assert combined is not None and not combined.aborted

        second.abort()

        assert combined.aborted
        assert combined.reason is AbortReason.ABORT

    def test_already_aborted_input_fires_immediately(self) -> None:
        first = AbortController()
        first.abort(AbortReason.TIMEOUT)

        combined = combine_signals([AbortController().signal, first.signal])

        assert combined is not None
        assert combined.reason is AbortReason.TIMEOUT

    def test_first_firing_reason_is_kept(self) -> None:
        caller, deadline = AbortController(), AbortController()
        combined = combine_signals([caller.signal, deadline.signal])

        deadline.abort(AbortReason.TIMEOUT)
        caller.abort(AbortReason.ABORT)

        assert combined is not None
        assert combined.reason is AbortReason.TIMEOUT

    def test_detaches_from_inputs_after_firing(self) -> None:
        long_lived, other = AbortController(), AbortController()
        combine_signals([long_lived.signal, other.signal])

        other.abort()

        assert long_lived.signal._listeners == []

    def test_close_detaches_from_inputs(self) -> None:
        long_lived = AbortController()
        for _ in range(5):
            combined = combine_signals([long_lived.signal])
            assert combined is not None
            combined.close()

        assert long_lived.signal._listeners == []

    @pytest.mark.asyncio
    async def test_combined_with_timeout(self) -> None:
        caller = AbortController()
        combined = combine_signals([caller.signal, timeout_signal(0.01)])
        assert combined is not None

        reason = await asyncio.wait_for(combined.wait(), timeout=1.0)

        assert reason is AbortReason.TIMEOUT
        assert caller.signal._listeners == []
