"""In-process mock Bitcoin Core JSON-RPC server with an in-memory chain, for integration tests."""

__version__ = "0.1.0"
__all__ = ["primitives", "state", "rpc", "handle"]