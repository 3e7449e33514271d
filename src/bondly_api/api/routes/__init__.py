"""HTTP routers."""

from bondly_api.api.routes import airdrops, auth, health, wallets

__all__ = ["airdrops", "auth", "health", "wallets"]
