"""JSON-RPC execution of context methods for meroclient."""

from meroclient.rpc.client import RPC_PATH, RpcClient

__all__ = ["RPC_PATH", "RpcClient"]
