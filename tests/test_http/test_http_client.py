"""Tests for meroclient.http.client -- URL/header helpers and the request pipeline."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx
import pytest

from meroclient.exceptions import (
    AbortError,
    AuthErrorCode,
    HTTPError,
    NetworkError,
    RequestTimeoutError,
    StorageError,
)
from meroclient.http.client import (
    FormData,
    HttpClient,
    RequestOptions,
    Transport,
    merge_headers,
    resolve_url,
)
from meroclient.http.response import ParseMode
from meroclient.http.retry import RetryPolicy
from meroclient.http.signals import AbortController
from meroclient.models import CredentialsPolicy, HeadResponse

BASE = "https://httpbin.org"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _json_response(data: Any, status_code: int = 200, **headers: str) -> httpx.Response:
    return httpx.Response(
        status_code=status_code,
        headers={"content-type": "application/json", **headers},
        content=json.dumps(data).encode(),
    )


@asynccontextmanager
async def _client(handler: Any, **transport_kwargs: Any) -> AsyncIterator[HttpClient]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as mock:
        transport_kwargs.setdefault("base_url", BASE)
        yield HttpClient(Transport(http_client=mock, **transport_kwargs))


class _Sleeps:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# ---------------------------------------------------------------------------
# URL and header helpers
# ---------------------------------------------------------------------------


class TestResolveUrl:

    @pytest.mark.parametrize("slashes", [0, 1, 2, 3])
    @pytest.mark.parametrize("path", ["get", "/get"])
    def test_single_separator(self, slashes: int, path: str) -> None:
        assert resolve_url(BASE + "/" * slashes, path) == "https://httpbin.org/get"

    def test_nested_base_path(self) -> None:
        assert resolve_url("http://node:2428/admin-api/", "/contexts") == (
            "http://node:2428/admin-api/contexts"
        )

    def test_absolute_url_unchanged(self) -> None:
        assert resolve_url(BASE, "http://other.example/x") == "http://other.example/x"
        assert resolve_url(BASE, "wss://other.example/ws") == "wss://other.example/ws"

    def test_transport_strips_trailing_slashes(self) -> None:
        assert Transport(base_url="http://node///").base_url == "http://node"


class TestMergeHeaders:

    @pytest.mark.parametrize("key", ["content-type", "CONTENT-TYPE", "Content-type"])
    def test_override_wins_case_insensitively(self, key: str) -> None:
        headers = merge_headers({"Content-Type": "application/json", "X-App": "a"}, {key: "text/plain"})

        assert headers["content-type"] == "text/plain"
        keys = [raw_key.lower() for raw_key, _ in headers.raw]
        assert keys.count(b"content-type") == 1
        assert headers["x-app"] == "a"

    def test_override_keeps_caller_spelling(self) -> None:
        headers = merge_headers({"authorization": "Bearer a"}, {"Authorization": "Bearer b"})
        assert headers.raw == [(b"Authorization", b"Bearer b")]

    def test_none_inputs(self) -> None:
        assert len(merge_headers(None, None)) == 0


# ---------------------------------------------------------------------------
# Request pipeline
# ---------------------------------------------------------------------------


class TestRequest:

    @pytest.mark.asyncio
    async def test_get_json(self, recording_handler) -> None:
        handler = recording_handler([_json_response({"url": f"{BASE}/get"})])

        async with _client(handler) as client:
            body = await client.get("/get")

        assert body == {"url": "https://httpbin.org/get"}
        assert handler.count == 1
        assert str(handler.requests[0].url) == "https://httpbin.org/get"
        assert handler.requests[0].method == "GET"

    @pytest.mark.asyncio
    async def test_query_params(self, recording_handler) -> None:
        handler = recording_handler([_json_response({})])

        async with _client(handler) as client:
            await client.get("/search", RequestOptions(params={"q": "ctx", "limit": 5}))

        assert handler.requests[0].url.params["q"] == "ctx"
        assert handler.requests[0].url.params["limit"] == "5"

    @pytest.mark.asyncio
    async def test_default_and_call_headers(self, recording_handler) -> None:
        handler = recording_handler([_json_response({})])

        async with _client(handler, default_headers={"X-App": "mero", "Accept": "text/plain"}) as client:
            await client.get("/x", RequestOptions(headers={"accept": "application/json"}))

        sent = handler.requests[0].headers
        assert sent["x-app"] == "mero"
        assert sent.get_list("accept") == ["application/json"]

    @pytest.mark.asyncio
    async def test_json_body(self, recording_handler) -> None:
        handler = recording_handler([_json_response({"ok": True})])

        async with _client(handler) as client:
            await client.post("/jsonrpc", {"method": "ping"})

        sent = handler.requests[0]
        assert sent.method == "POST"
        assert sent.headers["content-type"] == "application/json"
        assert json.loads(sent.content) == {"method": "ping"}

    @pytest.mark.asyncio
    async def test_raw_body_sent_verbatim(self, recording_handler) -> None:
        handler = recording_handler([_json_response({})])

        async with _client(handler) as client:
            await client.put(
                "/blob",
                b"\x00\x01",
                RequestOptions(headers={"content-type": "application/octet-stream"}),
            )

        assert handler.requests[0].content == b"\x00\x01"
        assert handler.requests[0].headers["content-type"] == "application/octet-stream"

    @pytest.mark.asyncio
    async def test_form_data_drops_default_content_type(self, recording_handler) -> None:
        handler = recording_handler([_json_response({})])

        async with _client(handler, default_headers={"Content-Type": "application/json"}) as client:
            await client.post(
                "/admin-api/install-application",
                FormData(fields={"name": "app"}, files={"file": ("app.wasm", b"\x00asm")}),
            )

        content_type = handler.requests[0].headers["content-type"]
        assert content_type != "application/json"
        assert content_type.startswith("multipart/form-data; boundary=")
        assert b"\x00asm" in handler.requests[0].content

    @pytest.mark.asyncio
    async def test_patch_and_delete(self, recording_handler) -> None:
        handler = recording_handler([httpx.Response(204)])

        async with _client(handler) as client:
            assert await client.patch("/x", {"a": 1}) is None
            assert await client.delete("/x") is None

        assert [r.method for r in handler.requests] == ["PATCH", "DELETE"]

    @pytest.mark.asyncio
    async def test_head(self, recording_handler) -> None:
        handler = recording_handler([httpx.Response(200, headers={"x-version": "1.2"})])

        async with _client(handler) as client:
            response = await client.head("/admin-api/health")

        assert isinstance(response, HeadResponse)
        assert response.status == 200
        assert response.headers["x-version"] == "1.2"
        assert handler.requests[0].method == "HEAD"

    @pytest.mark.asyncio
    async def test_parse_override(self, recording_handler) -> None:
        handler = recording_handler([_json_response({"a": 1})])

        async with _client(handler) as client:
            text = await client.get("/x", RequestOptions(parse=ParseMode.TEXT))

        assert text == '{"a": 1}'

    @pytest.mark.asyncio
    async def test_http_error_carries_details(self, recording_handler) -> None:
        handler = recording_handler(
            [
                httpx.Response(
                    401,
                    headers={"x-auth-error": "token_expired"},
                    content=b"expired",
                )
            ]
        )

        async with _client(handler) as client:
            with pytest.raises(HTTPError) as exc_info:
                await client.get("/admin-api/contexts")

        error = exc_info.value
        assert error.status == 401
        assert error.status_text == "Unauthorized"
        assert error.url == "https://httpbin.org/admin-api/contexts"
        assert error.body_text == "expired"
        assert error.auth_error is AuthErrorCode.TOKEN_EXPIRED

    @pytest.mark.asyncio
    async def test_error_body_truncated(self, recording_handler) -> None:
        handler = recording_handler([httpx.Response(500, text="x" * 70000)])

        async with _client(handler) as client:
            with pytest.raises(HTTPError) as exc_info:
                await client.get("/x")

        assert len(exc_info.value.body_text) == 65536

    @pytest.mark.asyncio
    async def test_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(NetworkError) as exc_info:
                await client.get("/x")

        assert exc_info.value.url == "https://httpbin.org/x"


class TestAuthInjection:

    @pytest.mark.asyncio
    async def test_bearer_token_injected(self, recording_handler) -> None:
        handler = recording_handler([_json_response({})])

        async def get_token() -> str:
            return "abc"

        async with _client(handler, get_auth_token=get_token) as client:
            await client.get("/x")

        assert handler.requests[0].headers["authorization"] == "Bearer abc"

    @pytest.mark.asyncio
    async def test_caller_authorization_not_overwritten(self, recording_handler) -> None:
        handler = recording_handler([_json_response({})])

        async def get_token() -> str:
            return "abc"

        async with _client(handler, get_auth_token=get_token) as client:
            await client.get("/x", RequestOptions(headers={"Authorization": "Bearer mine"}))

        assert handler.requests[0].headers.get_list("authorization") == ["Bearer mine"]

    @pytest.mark.asyncio
    async def test_missing_token_sends_no_header(self, recording_handler) -> None:
        handler = recording_handler([_json_response({})])

        async def get_token() -> None:
            return None

        async with _client(handler, get_auth_token=get_token) as client:
            await client.get("/x")

        assert "authorization" not in handler.requests[0].headers

    @pytest.mark.asyncio
    async def test_getter_failure_is_logged_and_ignored(self, recording_handler, caplog) -> None:
        handler = recording_handler([_json_response({"ok": True})])

        async def get_token() -> str:
            raise RuntimeError("keychain locked")

        async with _client(handler, get_auth_token=get_token) as client:
            with caplog.at_level(logging.WARNING, logger="meroclient.http.client"):
                body = await client.get("/x")

        assert body == {"ok": True}
        assert "authorization" not in handler.requests[0].headers
        assert "keychain locked" in caplog.text


class TestCredentials:

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("policy", "path", "has_cookie"),
        [
            (CredentialsPolicy.INCLUDE, "https://other.example/x", True),
            (CredentialsPolicy.SAME_ORIGIN, "/x", True),
            (CredentialsPolicy.SAME_ORIGIN, "https://other.example/x", False),
            (CredentialsPolicy.OMIT, "/x", False),
        ],
    )
    async def test_cookie_policy(self, recording_handler, policy, path: str, has_cookie: bool) -> None:
        handler = recording_handler([_json_response({})])

        async with _client(handler, default_headers={"Cookie": "session=1"}) as client:
            await client.get(path, RequestOptions(credentials=policy))

        assert ("cookie" in handler.requests[0].headers) is has_cookie


class TestCancellation:

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1.0)
            return _json_response({})

        async with _client(handler) as client:
            with pytest.raises(RequestTimeoutError):
                await client.get("/slow", RequestOptions(timeout=0.05))

    @pytest.mark.asyncio
    async def test_transport_default_timeout(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1.0)
            return _json_response({})

        async with _client(handler, timeout=0.05) as client:
            with pytest.raises(RequestTimeoutError):
                await client.get("/slow")

    @pytest.mark.asyncio
    async def test_caller_abort_not_retried(self) -> None:
        calls = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            await asyncio.sleep(1.0)
            return _json_response({})

        controller = AbortController()
        sleeps = _Sleeps()
        policy = RetryPolicy(attempts=3, retry_condition=lambda e, r: True, sleep=sleeps)
        asyncio.get_running_loop().call_later(0.02, controller.abort)

        async with _client(handler) as client:
            with pytest.raises(AbortError):
                await client.get("/slow", RequestOptions(signal=controller.signal, retry=policy))

        assert calls == 1
        assert sleeps.delays == []

    @pytest.mark.asyncio
    async def test_already_aborted_signal_skips_dispatch(self, recording_handler) -> None:
        handler = recording_handler([_json_response({})])
        controller = AbortController()
        controller.abort()

        async with _client(handler, default_signal=controller.signal) as client:
            with pytest.raises(AbortError):
                await client.get("/x")

        assert handler.count == 0

    @pytest.mark.asyncio
    async def test_timeout_retried_by_default_policy(self) -> None:
        calls = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                await asyncio.sleep(1.0)
            return _json_response({"attempt": calls})

        policy = RetryPolicy(attempts=2, sleep=_Sleeps())
        async with _client(handler) as client:
            body = await client.get("/x", RequestOptions(timeout=0.05, retry=policy))

        assert body == {"attempt": 2}

    @pytest.mark.asyncio
    async def test_deadline_timer_released_after_response(
        self, recording_handler, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        from meroclient.http import client as client_module

        original = client_module.timeout_signal
        created: list[Any] = []

        def recording_timeout_signal(seconds: float) -> Any:
            signal = original(seconds)
            created.append(signal)
            return signal

        monkeypatch.setattr(client_module, "timeout_signal", recording_timeout_signal)
        handler = recording_handler([_json_response({})])

        async with _client(handler, timeout=30.0) as client:
            for _ in range(20):
                await client.get("/x")

        assert len(created) == 20
        # closed before firing: no pending timer and no reason recorded
        assert all(signal._cleanups == [] for signal in created)
        assert all(signal.reason is None for signal in created)


class TestRetry:

    @pytest.mark.asyncio
    async def test_server_error_dispatched_attempts_times(self, recording_handler) -> None:
        handler = recording_handler([httpx.Response(500, text="boom")])
        sleeps = _Sleeps()

        async with _client(handler) as client:
            with pytest.raises(HTTPError) as exc_info:
                await client.get("/status/500", RequestOptions(retry=RetryPolicy(attempts=3, sleep=sleeps)))

        assert exc_info.value.status == 500
        assert handler.count == 3
        assert len(sleeps.delays) == 2

    @pytest.mark.asyncio
    async def test_transport_policy_applies_to_every_call(self, recording_handler) -> None:
        handler = recording_handler([httpx.Response(503), _json_response({"ok": True})])

        async with _client(handler, retry=RetryPolicy(attempts=2, sleep=_Sleeps())) as client:
            assert await client.get("/x") == {"ok": True}

        assert handler.count == 2

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, recording_handler) -> None:
        handler = recording_handler([httpx.Response(404)])

        async with _client(handler, retry=RetryPolicy(attempts=3, sleep=_Sleeps())) as client:
            with pytest.raises(HTTPError):
                await client.get("/missing")

        assert handler.count == 1

    @pytest.mark.asyncio
    async def test_retry_after_honoured(self, recording_handler) -> None:
        handler = recording_handler([httpx.Response(503, headers={"Retry-After": "2"}), httpx.Response(204)])
        sleeps = _Sleeps()
        policy = RetryPolicy(attempts=2, base_delay=0.01, sleep=sleeps)

        async with _client(handler) as client:
            await client.get("/x", RequestOptions(retry=policy))

        assert sleeps.delays[0] >= 2.0


class TestTokenRefresh:

    @staticmethod
    def _auth_handler(valid: str):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.headers.get("authorization") == f"Bearer {valid}":
                return _json_response({"ok": True})
            return httpx.Response(401, headers={"x-auth-error": "token_expired"})

        return handler

    @pytest.mark.asyncio
    async def test_refresh_then_retry_once(self, recording_handler) -> None:
        state = {"token": "old"}
        refreshed: list[str] = []
        handler = recording_handler(self._auth_handler("new"))

        async def get_token() -> str:
            return state["token"]

        async def refresh() -> str:
            state["token"] = "new"
            return "new"

        async def on_refresh(token: str) -> None:
            refreshed.append(token)

        async with _client(
            handler, get_auth_token=get_token, refresh_token=refresh, on_token_refresh=on_refresh
        ) as client:
            assert await client.get("/x") == {"ok": True}

        assert handler.count == 2
        assert refreshed == ["new"]

    @pytest.mark.asyncio
    async def test_concurrent_401s_share_one_refresh(self, recording_handler) -> None:
        state = {"token": "old"}
        refreshes = 0
        handler = recording_handler(self._auth_handler("new"))

        async def get_token() -> str:
            return state["token"]

        async def refresh() -> str:
            nonlocal refreshes
            refreshes += 1
            await asyncio.sleep(0.05)
            state["token"] = "new"
            return "new"

        async with _client(handler, get_auth_token=get_token, refresh_token=refresh) as client:
            results = await asyncio.gather(*(client.get(f"/x/{i}") for i in range(3)))

        assert results == [{"ok": True}] * 3
        assert refreshes == 1
        assert handler.count == 6

    @pytest.mark.asyncio
    async def test_second_401_is_not_refreshed_again(self, recording_handler) -> None:
        refreshes = 0
        handler = recording_handler([httpx.Response(401)])

        async def refresh() -> str:
            nonlocal refreshes
            refreshes += 1
            return "still-bad"

        async with _client(handler, refresh_token=refresh) as client:
            with pytest.raises(HTTPError) as exc_info:
                await client.get("/x")

        assert exc_info.value.status == 401
        assert refreshes == 1
        assert handler.count == 2

    @pytest.mark.asyncio
    async def test_refresh_failure_raises_original_401(self, recording_handler) -> None:
        handler = recording_handler([httpx.Response(401, text="nope")])

        async def refresh() -> str:
            raise RuntimeError("refresh endpoint down")

        async with _client(handler, refresh_token=refresh) as client:
            with pytest.raises(HTTPError) as exc_info:
                await client.get("/x")

        assert exc_info.value.body_text == "nope"
        assert handler.count == 1

    @pytest.mark.asyncio
    async def test_empty_refreshed_token_raises_original_401(self, recording_handler) -> None:
        handler = recording_handler([httpx.Response(401)])

        async def refresh() -> str:
            return "  "

        async with _client(handler, refresh_token=refresh) as client:
            with pytest.raises(HTTPError):
                await client.get("/x")

        assert handler.count == 1

    @pytest.mark.asyncio
    async def test_storage_error_propagates(self, recording_handler) -> None:
        handler = recording_handler([httpx.Response(401)])

        async def refresh() -> str:
            raise StorageError("disk full")

        async with _client(handler, refresh_token=refresh) as client:
            with pytest.raises(StorageError):
                await client.get("/x")

    @pytest.mark.asyncio
    async def test_no_refresher_configured(self, recording_handler) -> None:
        handler = recording_handler([httpx.Response(401)])

        async with _client(handler) as client:
            with pytest.raises(HTTPError):
                await client.get("/x")

        assert handler.count == 1

    @pytest.mark.asyncio
    async def test_other_statuses_do_not_refresh(self, recording_handler) -> None:
        handler = recording_handler([httpx.Response(403)])
        refreshes = 0

        async def refresh() -> str:
            nonlocal refreshes
            refreshes += 1
            return "new"

        async with _client(handler, refresh_token=refresh) as client:
            with pytest.raises(HTTPError):
                await client.get("/x")

        assert refreshes == 0


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_owned_client_created_and_closed(self) -> None:
        client = HttpClient(Transport(base_url=BASE))
        async with client:
            inner = client._client
            assert inner is not None
        assert inner.is_closed
        assert client._client is None

    @pytest.mark.asyncio
    async def test_injected_client_not_closed(self) -> None:
        async with httpx.AsyncClient() as inner:
            client = HttpClient(Transport(base_url=BASE, http_client=inner))
            await client.aclose()
            assert not inner.is_closed
