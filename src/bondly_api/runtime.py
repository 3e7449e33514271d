"""Application runtime.

This module provides the Application class that builds every component
from settings, owns their connections and manages the start/stop
lifecycle. The HTTP layer holds one Application and reads its services.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from bondly_api.airdrop.engine import AirdropEngine
from bondly_api.airdrop.watcher import ReceiptWatcher
from bondly_api.auth.otp import OTPStore
from bondly_api.auth.service import AuthService
from bondly_api.auth.tokens import TokenIssuer
from bondly_api.chain.client import ChainClient
from bondly_api.config import Settings, get_settings
from bondly_api.mailer.dispatcher import EmailDispatcher, build_transport
from bondly_api.storage.database import DatabaseManager
from bondly_api.wallet.custody import CustodyWalletManager
from bondly_api.wallet.service import WalletService

if TYPE_CHECKING:
    from pydantic import SecretStr

    from bondly_api.mailer.transports import EmailTransport

logger = logging.getLogger(__name__)


class ApplicationState(str, Enum):
    """Application lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


def _secret(value: SecretStr | None, name: str) -> str:
    if value is None or not value.get_secret_value():
        raise ValueError(f"{name} is required")
    return value.get_secret_value()


class Application:
    """Wires together storage, chain, email and the core services.

    Connections may be injected (tests pass an SQLite database, a fake
    Redis and a chain double) and stay open after stop; anything not
    injected is built from settings on start and closed on stop.

    Example:
        ```python
        app = Application(get_settings())
        await app.start()
        result = await app.auth.send_code("alice@example.com")
        await app.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        db: DatabaseManager | None = None,
        redis: Redis | None = None,
        chain: ChainClient | None = None,
        email_transport: EmailTransport | None = None,
        init_schema: bool = False,
    ) -> None:
        """Initialize the application.

        Args:
            settings: Configuration settings. If not provided, loads from environment.
            db: Pre-built database manager.
            redis: Pre-built Redis client.
            chain: Pre-built chain client.
            email_transport: Pre-built email transport.
            init_schema: Create tables on start (development and tests).
        """
        self._settings = settings or get_settings()
        self._state = ApplicationState.STOPPED
        self._init_schema = init_schema
        self._started_at: datetime | None = None

        self.db = db
        self.redis = redis
        self.chain = chain
        self._email_transport = email_transport
        # Injected clients belong to the caller and are left open on stop.
        self._owns_db = db is None
        self._owns_redis = redis is None
        self._owns_chain = chain is None
        self._owns_transport = email_transport is None

        self.otp: OTPStore | None = None
        self.dispatcher: EmailDispatcher | None = None
        self.tokens: TokenIssuer | None = None
        self.custody: CustodyWalletManager | None = None
        self.watcher: ReceiptWatcher | None = None
        self.engine: AirdropEngine | None = None
        self.auth: AuthService | None = None
        self.wallets: WalletService | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def state(self) -> ApplicationState:
        """Current application state."""
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == ApplicationState.RUNNING

    async def start(self) -> None:
        """Build components, run the airdrop sweep and start background tasks.

        Raises:
            RuntimeError: If the application is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != ApplicationState.STOPPED:
            raise RuntimeError(f"Cannot start application in state {self._state}")

        self._state = ApplicationState.STARTING
        logger.info("Starting application...")

        try:
            await self._initialize_components()
            self._started_at = datetime.now(UTC)
            self._state = ApplicationState.RUNNING
            logger.info("Application started")
        except Exception as e:
            self._state = ApplicationState.ERROR
            logger.error("Failed to start application: %s", e)
            await self._cleanup()
            raise

    async def _initialize_components(self) -> None:
        settings = self._settings

        if self.redis is None:
            logger.debug("Initializing Redis connection...")
            self.redis = Redis.from_url(
                settings.redis.url,
                socket_timeout=settings.redis.socket_timeout_seconds,
                decode_responses=True,
            )

        if self.db is None:
            logger.debug("Initializing database manager...")
            self.db = DatabaseManager(
                settings.database.url,
                pool_size=settings.database.pool_size,
                max_overflow=settings.database.max_overflow,
            )
        if self._init_schema:
            await self.db.init_schema_async()

        if self.chain is None:
            logger.debug("Initializing chain client...")
            self.chain = ChainClient(
                settings.chain.rpc_url,
                _secret(settings.chain.relay_private_key, "CHAIN_RELAY_PRIVATE_KEY"),
                fallback_rpc_url=settings.chain.fallback_rpc_url,
                timeout_seconds=settings.chain.rpc_timeout_seconds,
                gas_limit=settings.chain.gas_limit,
                poa=settings.chain.poa,
            )

        if not settings.chain.token_address:
            raise ValueError("CHAIN_TOKEN_ADDRESS is required")

        self.otp = OTPStore(
            self.redis,
            code_ttl_seconds=settings.otp.code_ttl_seconds,
            lock_ttl_seconds=settings.otp.lock_ttl_seconds,
            verified_ttl_seconds=settings.otp.verified_ttl_seconds,
        )
        self.dispatcher = EmailDispatcher(
            self._email_transport or build_transport(settings.email),
            code_ttl_seconds=settings.otp.code_ttl_seconds,
            service_name=settings.email.service_name,
        )
        self.tokens = TokenIssuer(
            _secret(settings.auth.secret, "JWT_SECRET"),
            expires_in_hours=settings.auth.expires_in_hours,
            issuer=settings.auth.issuer,
        )
        self.custody = CustodyWalletManager(_secret(settings.wallet.secret_key, "WALLET_SECRET_KEY"))
        self.watcher = ReceiptWatcher(
            self.db,
            self.chain,
            confirmations=settings.chain.confirmations,
            poll_interval_seconds=settings.chain.receipt_poll_seconds,
            attempt_timeout_seconds=settings.chain.rpc_timeout_seconds,
            stale_after=timedelta(minutes=settings.chain.stale_pending_minutes),
            sweep_interval_seconds=settings.chain.sweep_interval_seconds,
        )
        self.engine = AirdropEngine(
            self.db,
            self.chain,
            self.watcher,
            token_address=settings.chain.token_address,
            amount_units=settings.chain.airdrop_amount_units,
        )
        self.auth = AuthService(
            self.db,
            self.otp,
            self.dispatcher,
            self.tokens,
            self.custody,
            self.engine,
        )
        self.wallets = WalletService(self.db, self.custody, self.engine)

        await self.watcher.start()

    async def stop(self) -> None:
        """Stop background tasks and close connections."""
        if self._state == ApplicationState.STOPPED:
            return

        self._state = ApplicationState.STOPPING
        logger.info("Stopping application...")

        await self._cleanup()

        self._state = ApplicationState.STOPPED
        logger.info("Application stopped")

    async def _cleanup(self) -> None:
        """Stop background tasks and close the clients this application built."""
        if self.auth is not None:
            await self.auth.stop()
        if self.engine is not None:
            await self.engine.stop()
        if self.watcher is not None:
            await self.watcher.stop()

        if self.dispatcher is not None:
            if self._owns_transport:
                await self.dispatcher.aclose()
            self.dispatcher = None

        if self.chain is not None and self._owns_chain:
            await self.chain.aclose()
            self.chain = None

        if self.db is not None and self._owns_db:
            await self.db.dispose_async()
            self.db = None

        if self.redis is not None and self._owns_redis:
            await self.redis.aclose()
            self.redis = None

        logger.debug("Resources cleaned up")

    async def _redis_ok(self) -> bool:
        if self.redis is None:
            return False
        try:
            return bool(await self.redis.ping())
        except (RedisError, OSError) as e:
            logger.warning("Redis health check failed: %s", e)
            return False

    async def health(self) -> dict[str, Any]:
        """Reachability of Redis, the database and the chain RPC."""
        redis_ok, db_ok, chain_ok = await asyncio.gather(
            self._redis_ok(),
            self.db.health_check() if self.db else asyncio.sleep(0, result=False),
            self.chain.health_check() if self.chain else asyncio.sleep(0, result=False),
        )
        checks = {"redis": redis_ok, "database": db_ok, "chain": chain_ok}
        return {
            "status": "ok" if all(checks.values()) else "degraded",
            "state": self._state.value,
            "checks": checks,
            "watching": self.watcher.active_count if self.watcher else 0,
            "started_at": self._started_at.isoformat() if self._started_at else None,
        }

    async def __aenter__(self) -> Application:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
