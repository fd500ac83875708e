"""WebSocket commands -- stream context events to stdout.

``mero ws listen`` connects to the node's ``/ws`` endpoint, subscribes to
one or more contexts, and prints every event as it arrives.  In ``--json``
and ``--plain`` modes each event is a single JSON line, so the stream can be
piped into ``jq``.  The client reconnects automatically and resubscribes
after a dropped connection.

Example::

    mero --json ws listen ctx-1 ctx-2 --count 10 | jq .type
"""

from __future__ import annotations

import asyncio
from typing import Optional

import typer

from meroclient.commands import build_client, run
from meroclient.exceptions import ReconnectError, WebSocketError
from meroclient.models import WsEvent
from meroclient.output import get_output

ws_app = typer.Typer(no_args_is_help=True)


@ws_app.command("listen")
def ws_listen(
    ctx: typer.Context,
    contexts: list[str] = typer.Argument(help="Context IDs to subscribe to."),
    count: Optional[int] = typer.Option(
        None, "--count", "-c", min=1, help="Exit after this many events."
    ),
) -> None:
    """Subscribe to contexts and print events until interrupted.

    Raises:
        typer.Exit: With code 6 if the subscription is rejected or the
            reconnect budget is exhausted.
    """
    output = get_output()

    async def _listen() -> int:
        received = 0
        done = asyncio.Event()
        failures: list[WebSocketError] = []

        def on_event(event: WsEvent) -> None:
            nonlocal received
            output.print_event(event)
            received += 1
            if count is not None and received >= count:
                done.set()

        def on_error(error: BaseException) -> None:
            if isinstance(error, ReconnectError):
                failures.append(error)
                done.set()
            else:
                output.warning(str(error))

        async with build_client(ctx) as mero:
            client = mero.create_websocket()
            client.on_event(on_event)
            await client.connect()
            client.on_error(on_error)
            try:
                response = await client.subscribe(contexts)
                if not response.ok:
                    raise WebSocketError(f"Subscription rejected: {response.error}")
                output.info(f"Subscribed to {', '.join(client.subscribed_contexts)}")
                await done.wait()
            finally:
                await client.disconnect()

        if failures:
            raise failures[0]
        return received

    received = run(_listen())
    output.debug(f"Received {received} event(s)")
