"""Queries and mutations on a context through the node's ``/jsonrpc`` endpoint.

Every call is a JSON-RPC 2.0 ``execute`` request posted through the same
:class:`~meroclient.http.client.HttpClient` as the admin API, so it gets
the bearer token, the 401 refresh and the retry policy for free.  The
node reports execution failures inside a 200 response as an ``error``
object; :class:`RpcClient` turns those into
:class:`~meroclient.exceptions.JsonRpcError`.

Example::

    rpc = RpcClient(http)
    value = await rpc.query("ctx-1", "get", {"key": "greeting"}, executor_key)
"""

from __future__ import annotations

import logging
import random
from typing import Any, Callable, Optional

from pydantic import ValidationError

from meroclient.exceptions import JsonRpcError, ResponseParseError
from meroclient.exit_codes import EXIT_PROTOCOL_ERROR
from meroclient.http.client import HttpClient, RequestOptions
from meroclient.models import RpcExecuteParams, RpcRequest, RpcResponse

logger = logging.getLogger(__name__)

RPC_PATH = "/jsonrpc"


def _random_request_id() -> int:
    return random.randrange(2**32)


class RpcClient:
    """Runs context methods over JSON-RPC.

    Args:
        http: Client bound to the node's base URL.
        request_id: Factory for request ids; random 32-bit integers by default.
    """

    def __init__(
        self,
        http: HttpClient,
        request_id: Callable[[], int] = _random_request_id,
    ) -> None:
        self._http = http
        self._request_id = request_id

    async def execute(
        self,
        context_id: str,
        method: str,
        args: Optional[dict[str, Any]] = None,
        executor_public_key: str = "",
        substitute: Optional[list[dict[str, Any]]] = None,
        options: Optional[RequestOptions] = None,
    ) -> dict[str, Any]:
        """Execute *method* on *context_id* and return the ``result`` object.

        Args:
            context_id: Context to run the method in.
            method: Application method name.
            args: Method arguments, sent as ``argsJson``.
            executor_public_key: Public key of the identity executing the call.
            substitute: Alias substitutions.
            options: Per-call HTTP overrides (timeout, signal, retry).

        Returns:
            The ``result`` object, ``{"output": ...}``; ``{"output": None}``
            when the node sent neither a result nor an error.

        Raises:
            JsonRpcError: If the response carries an ``error`` object, or its
                ``id`` does not match the request.
            ResponseParseError: If the body is not a JSON-RPC response.
            HTTPError: If the node answered with a non-2xx status.
        """
        request_id = self._request_id()
        request = RpcRequest(
            id=request_id,
            params=RpcExecuteParams(
                context_id=context_id,
                method=method,
                args_json=args or {},
                executor_public_key=executor_public_key,
                substitute=substitute or [],
            ),
        )
        logger.debug("execute %s on %s (id=%d)", method, context_id, request_id)
        body = await self._http.post(RPC_PATH, request.model_dump(by_alias=True), options)

        try:
            response = RpcResponse.model_validate(body)
        except ValidationError as exc:
            raise ResponseParseError(f"Unexpected JSON-RPC response: {exc}") from exc

        if response.id != request_id:
            raise JsonRpcError(
                "MismatchedRequestIdError",
                f"Expected request ID {request_id}, got {response.id}",
                response.id,
                exit_code=EXIT_PROTOCOL_ERROR,
            )
        if response.error is not None:
            raise JsonRpcError(response.error.type, response.error.data, response.id)
        return response.result if response.result is not None else {"output": None}

    async def query(
        self,
        context_id: str,
        method: str,
        args: dict[str, Any],
        executor_public_key: str,
    ) -> Any:
        """Run a read-only method and return its ``output``."""
        result = await self.execute(context_id, method, args, executor_public_key)
        return result.get("output")

    async def mutate(
        self,
        context_id: str,
        method: str,
        args: dict[str, Any],
        executor_public_key: str,
    ) -> Any:
        """Run a state-changing method and return its ``output``."""
        result = await self.execute(context_id, method, args, executor_public_key)
        return result.get("output")
