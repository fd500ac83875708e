"""Cancellation signals that compose caller, default, and timeout sources.

An :class:`AbortSignal` fires at most once and remembers the
:class:`AbortReason` that fired it.  The distinction between a manual
``ABORT`` and an elapsed ``TIMEOUT`` matters downstream: the retry engine
retries timeouts but never user aborts.

Typical usage inside :class:`~meroclient.http.client.HttpClient`::

    signal = combine_signals([transport.default_signal, options.signal,
                              timeout_signal(30.0)])
    try:
        ...
    finally:
        if signal is not None:
            signal.close()
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import Iterable
from typing import Callable, Optional

from meroclient.exceptions import AbortError, RequestCancelledError, RequestTimeoutError

Listener = Callable[["AbortReason"], None]


class AbortReason(str, enum.Enum):
    """Why a signal fired."""

    ABORT = "abort"
    TIMEOUT = "timeout"


class AbortSignal:
    """A one-shot cancellation flag with listeners and an awaitable.

    Signals are created by :class:`AbortController`, :func:`timeout_signal`,
    or :func:`combine_signals`; user code normally only reads them.
    """

    def __init__(self) -> None:
        self._reason: Optional[AbortReason] = None
        self._listeners: list[Listener] = []
        self._cleanups: list[Callable[[], None]] = []
        self._waiters: list[asyncio.Future[AbortReason]] = []

    @property
    def aborted(self) -> bool:
        """Whether the signal has fired."""
        return self._reason is not None

    @property
    def reason(self) -> Optional[AbortReason]:
        """The reason the signal fired, or ``None`` while pending."""
        return self._reason

    def add_listener(self, listener: Listener) -> None:
        """Register *listener* to be called once with the firing reason.

        If the signal already fired, *listener* is not registered.
        """
        if self._reason is None:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        """Unregister *listener*; unknown listeners are ignored."""
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    async def wait(self) -> AbortReason:
        """Suspend until the signal fires and return its reason."""
        if self._reason is not None:
            return self._reason
        waiter: asyncio.Future[AbortReason] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            return await waiter
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    def to_error(self, url: Optional[str] = None) -> RequestCancelledError:
        """Build the exception matching the firing reason."""
        target = f" {url}" if url else ""
        if self._reason is AbortReason.TIMEOUT:
            return RequestTimeoutError(f"Request timed out{target}", url=url)
        return AbortError(f"Request aborted{target}", url=url)

    def raise_if_aborted(self, url: Optional[str] = None) -> None:
        """Raise the matching exception if the signal already fired."""
        if self._reason is not None:
            raise self.to_error(url)

    def close(self) -> None:
        """Release timers and detach from constituent signals."""
        cleanups, self._cleanups = self._cleanups, []
        for cleanup in cleanups:
            cleanup()

    def _fire(self, reason: AbortReason) -> None:
        if self._reason is not None:
            return
        self._reason = reason
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener(reason)
        for waiter in self._waiters:
            if not waiter.done():
                waiter.set_result(reason)
        self.close()


class AbortController:
    """Owner of an :class:`AbortSignal` that user code can trigger.

    Example::

        controller = AbortController()
        task = asyncio.create_task(client.get("/slow", RequestOptions(signal=controller.signal)))
        controller.abort()
    """

    def __init__(self) -> None:
        self.signal = AbortSignal()

    def abort(self, reason: AbortReason = AbortReason.ABORT) -> None:
        """Fire the signal.  Later calls are no-ops; the first reason wins."""
        self.signal._fire(reason)


def timeout_signal(seconds: float) -> AbortSignal:
    """Return a signal that fires with ``TIMEOUT`` after *seconds*.

    Must be called from within a running event loop.  Call
    :meth:`AbortSignal.close` to cancel the pending timer early.
    """
    signal = AbortSignal()
    handle = asyncio.get_running_loop().call_later(
        max(0.0, seconds), signal._fire, AbortReason.TIMEOUT
    )
    signal._cleanups.append(handle.cancel)
    return signal


def combine_signals(signals: Iterable[Optional[AbortSignal]]) -> Optional[AbortSignal]:
    """Combine signals into one that fires as soon as any input fires.

    ``None`` entries are skipped.  Returns ``None`` when no signal remains.
    The combined signal carries the first firing reason.  Listeners on the
    inputs are removed after the first trigger or when the combined signal
    is closed, so long-lived inputs do not accumulate listeners.
    """
    present = [signal for signal in signals if signal is not None]
    if not present:
        return None

    combined = AbortSignal()
    for signal in present:
        if signal.reason is not None:
            combined._fire(signal.reason)
            return combined

    def detach() -> None:
        for signal in present:
            signal.remove_listener(on_fire)

    def on_fire(reason: AbortReason) -> None:
        detach()
        combined._fire(reason)

    for signal in present:
        signal.add_listener(on_fire)
    combined._cleanups.append(detach)
    return combined
