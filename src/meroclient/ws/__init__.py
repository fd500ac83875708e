"""WebSocket event subscriptions for meroclient."""

from meroclient.ws.client import ConnectionState, WebSocketClient, build_ws_url

__all__ = ["ConnectionState", "WebSocketClient", "build_ws_url"]
