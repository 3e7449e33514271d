"""Chain access - relay wallet client for the BOND token."""

from bondly_api.chain.client import ChainClient, ChainClientError, RateLimiter, RPCError

__all__ = [
    "ChainClient",
    "ChainClientError",
    "RPCError",
    "RateLimiter",
]
