"""meroclient -- async HTTP and WebSocket client for Calimero nodes.

This package wraps a node's JSON APIs behind a small transport layer that
handles URL joining, header merging, bearer-token injection, timeouts and
cancellation, retries with jittered backoff, and single-flight token refresh
on 401.  A separate WebSocket client correlates request/response frames by
ID, fans out context events, and reconnects with exponential backoff.
Context methods run over JSON-RPC through the same transport.

Typical usage::

    from meroclient.models import ClientSettings
    from meroclient.sdk import MeroClient

    async with MeroClient(ClientSettings(base_url="http://localhost:2428")) as mero:
        await mero.authenticate("admin", "secret")
        contexts = await mero.http.get("/admin-api/contexts")

The ``mero`` console script exposes the same operations from the shell.

Modules:
    app: Typer application and CLI entry point.
    sdk: High-level client facade.
    http: Transport, signals, retry and response helpers.
    auth: Token storage, token exchange, and session lifecycle.
    ws: WebSocket event client.
    rpc: JSON-RPC execution of context methods.
    models: Pydantic models shared across the package.
    config: XDG-aware settings resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
