"""Token ledger state storage with a JSON-RPC query server and client."""

__version__ = "0.0.1"

__all__ = ["storage", "rpc_server", "rpc_client"]