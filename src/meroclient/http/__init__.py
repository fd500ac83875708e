"""HTTP transport layer for meroclient.

Provides the request pipeline and the pieces it is built from:

- :class:`HttpClient` -- async client bound to a :class:`Transport`.
- :class:`RequestOptions` / :class:`FormData` -- per-call overrides and form payloads.
- :class:`AbortController`, :func:`timeout_signal`, :func:`combine_signals` --
  cancellation signals (:mod:`meroclient.http.signals`).
- :class:`RetryPolicy`, :func:`with_retry`, :func:`retryable` -- retry with
  exponential backoff, jitter and ``Retry-After`` (:mod:`meroclient.http.retry`).
- :func:`unwrap` -- ``{data, error}`` envelope extraction.

Example::

    from meroclient.http import HttpClient, RequestOptions, RetryPolicy, Transport

    async with HttpClient(Transport(base_url="http://localhost:2428")) as client:
        health = await client.get("/admin-api/health", RequestOptions(retry=RetryPolicy()))
"""

from meroclient.http.client import (
    FormData,
    HttpClient,
    RequestOptions,
    Transport,
    merge_headers,
    resolve_url,
)
from meroclient.http.response import ParseMode, detect_parse_mode, unwrap
from meroclient.http.retry import (
    RetryPolicy,
    default_retry_condition,
    retry_on_rate_limit,
    retryable,
    with_retry,
)
from meroclient.http.signals import (
    AbortController,
    AbortReason,
    AbortSignal,
    combine_signals,
    timeout_signal,
)

__all__ = [
    "AbortController",
    "AbortReason",
    "AbortSignal",
    "FormData",
    "HttpClient",
    "ParseMode",
    "RequestOptions",
    "RetryPolicy",
    "Transport",
    "combine_signals",
    "default_retry_condition",
    "detect_parse_mode",
    "merge_headers",
    "resolve_url",
    "retry_on_rate_limit",
    "retryable",
    "timeout_signal",
    "unwrap",
    "with_retry",
]
