"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Bondly API, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from eth_utils import is_address, to_checksum_address
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL connection string",
    )
    pool_size: int = Field(
        default=5,
        alias="DATABASE_POOL_SIZE",
        ge=1,
        le=100,
        description="Connection pool size",
    )
    max_overflow: int = Field(
        default=10,
        alias="DATABASE_MAX_OVERFLOW",
        ge=0,
        le=100,
        description="Connections allowed above the pool size",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )
    socket_timeout_seconds: float = Field(
        default=5.0,
        alias="REDIS_SOCKET_TIMEOUT_SECONDS",
        gt=0,
        le=60,
        description="Per-command socket timeout",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class ChainSettings(BaseSettings):
    """EVM chain, relay wallet and airdrop settings."""

    model_config = SettingsConfigDict(env_prefix="CHAIN_", extra="ignore")

    rpc_url: str = Field(
        default="http://localhost:8545",
        alias="CHAIN_RPC_URL",
        description="Primary JSON-RPC endpoint",
    )
    fallback_rpc_url: str | None = Field(
        default=None,
        alias="CHAIN_FALLBACK_RPC_URL",
        description="Fallback JSON-RPC endpoint",
    )
    relay_private_key: SecretStr | None = Field(
        default=None,
        alias="CHAIN_RELAY_PRIVATE_KEY",
        description="Private key of the relay wallet that funds airdrops",
    )
    token_address: str | None = Field(
        default=None,
        alias="CHAIN_TOKEN_ADDRESS",
        description="BOND ERC-20 contract address",
    )
    airdrop_amount: int = Field(
        default=1000,
        alias="CHAIN_AIRDROP_AMOUNT",
        ge=1,
        description="Whole tokens transferred per airdrop event",
    )
    token_decimals: int = Field(
        default=18,
        alias="CHAIN_TOKEN_DECIMALS",
        ge=0,
        le=36,
        description="Token decimals used to scale the airdrop amount",
    )
    gas_limit: int = Field(
        default=100_000,
        alias="CHAIN_GAS_LIMIT",
        ge=21_000,
        description="Gas limit for the ERC-20 transfer transaction",
    )
    rpc_timeout_seconds: float = Field(
        default=10.0,
        alias="CHAIN_RPC_TIMEOUT_SECONDS",
        gt=0,
        le=120,
        description="Deadline for a single RPC call",
    )
    confirmations: int = Field(
        default=1,
        alias="CHAIN_CONFIRMATIONS",
        ge=1,
        le=64,
        description="Blocks (including the inclusion block) before a receipt is final",
    )
    receipt_poll_seconds: float = Field(
        default=3.0,
        alias="CHAIN_RECEIPT_POLL_SECONDS",
        gt=0,
        le=600,
        description="Delay between receipt polls",
    )
    stale_pending_minutes: int = Field(
        default=60,
        alias="CHAIN_STALE_PENDING_MINUTES",
        ge=1,
        description="Age after which a pending airdrop without a receipt is failed",
    )
    sweep_interval_seconds: int = Field(
        default=300,
        alias="CHAIN_SWEEP_INTERVAL_SECONDS",
        ge=10,
        description="How often pending airdrops are reconciled",
    )
    poa: bool = Field(
        default=False,
        alias="CHAIN_POA",
        description="Inject the proof-of-authority extraData middleware",
    )

    @field_validator("rpc_url", "fallback_rpc_url")
    @classmethod
    def validate_rpc_url(cls, v: str | None) -> str | None:
        """Validate RPC URL format."""
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError("RPC URL must be an HTTP(S) endpoint")
        return v

    @field_validator("token_address")
    @classmethod
    def validate_token_address(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if not is_address(v):
            raise ValueError("CHAIN_TOKEN_ADDRESS must be a 20-byte hex address")
        return to_checksum_address(v)

    @property
    def airdrop_amount_units(self) -> int:
        """Airdrop amount in base token units."""
        return self.airdrop_amount * 10**self.token_decimals


class AuthSettings(BaseSettings):
    """Bearer token settings."""

    model_config = SettingsConfigDict(env_prefix="JWT_", extra="ignore")

    secret: SecretStr | None = Field(
        default=None,
        alias="JWT_SECRET",
        description="HS256 signing secret",
    )
    expires_in_hours: int = Field(
        default=24,
        alias="JWT_EXPIRES_IN_HOURS",
        ge=1,
        le=24 * 30,
        description="Token lifetime",
    )
    issuer: str = Field(
        default="bondly-api",
        alias="JWT_ISSUER",
        description="Issuer claim",
    )


class WalletSettings(BaseSettings):
    """Custody wallet encryption settings."""

    model_config = SettingsConfigDict(env_prefix="WALLET_", extra="ignore")

    secret_key: SecretStr | None = Field(
        default=None,
        alias="WALLET_SECRET_KEY",
        description="Process secret used to encrypt custody private keys",
    )


class OTPSettings(BaseSettings):
    """Email one-time code settings."""

    model_config = SettingsConfigDict(env_prefix="OTP_", extra="ignore")

    code_ttl_seconds: int = Field(
        default=600,
        alias="OTP_CODE_TTL_SECONDS",
        ge=30,
        le=3600,
        description="Lifetime of an issued code",
    )
    lock_ttl_seconds: int = Field(
        default=60,
        alias="OTP_LOCK_TTL_SECONDS",
        ge=1,
        le=3600,
        description="Minimum interval between two sends to the same email",
    )
    verified_ttl_seconds: int = Field(
        default=600,
        alias="OTP_VERIFIED_TTL_SECONDS",
        ge=30,
        le=3600,
        description="Window in which a verified email may complete login",
    )


class EmailSettings(BaseSettings):
    """Outbound email settings."""

    model_config = SettingsConfigDict(env_prefix="EMAIL_", extra="ignore")

    provider: Literal["mock", "resend"] = Field(
        default="mock",
        alias="EMAIL_PROVIDER",
        description="Email transport",
    )
    api_key: SecretStr | None = Field(
        default=None,
        alias="RESEND_API_KEY",
        description="Transactional email API key",
    )
    from_address: str | None = Field(
        default=None,
        alias="EMAIL_FROM",
        description="Sender address",
    )
    api_url: str = Field(
        default="https://api.resend.com/emails",
        alias="EMAIL_API_URL",
        description="Transactional email API endpoint",
    )
    timeout_seconds: float = Field(
        default=5.0,
        alias="EMAIL_TIMEOUT_SECONDS",
        gt=0,
        le=60,
        description="Deadline for one send",
    )
    service_name: str = Field(
        default="Bondly",
        alias="EMAIL_SERVICE_NAME",
        description="Product name rendered into templates",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from bondly_api.config import get_settings

        settings = get_settings()
        settings.validate_requirements()
        print(settings.database.url)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    chain: ChainSettings = Field(
        default_factory=lambda: ChainSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    auth: AuthSettings = Field(
        default_factory=lambda: AuthSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    wallet: WalletSettings = Field(
        default_factory=lambda: WalletSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    otp: OTPSettings = Field(
        default_factory=lambda: OTPSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    email: EmailSettings = Field(
        default_factory=lambda: EmailSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    http_host: str = Field(
        default="0.0.0.0",
        alias="HTTP_HOST",
        description="HTTP bind address",
    )
    http_port: int = Field(
        default=8080,
        alias="HTTP_PORT",
        description="HTTP port",
        ge=1,
        le=65535,
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url),
            "chain": {
                "rpc_url": self.chain.rpc_url,
                "fallback_rpc_url": self.chain.fallback_rpc_url or "(not set)",
                "relay_private_key": "(set)" if self.chain.relay_private_key else "(not set)",
                "token_address": self.chain.token_address or "(not set)",
                "airdrop_amount": str(self.chain.airdrop_amount),
                "confirmations": str(self.chain.confirmations),
            },
            "auth": {
                "secret": "(set)" if self.auth.secret else "(not set)",
                "expires_in_hours": str(self.auth.expires_in_hours),
                "issuer": self.auth.issuer,
            },
            "wallet_secret_key": "(set)" if self.wallet.secret_key else "(not set)",
            "otp": {
                "code_ttl_seconds": str(self.otp.code_ttl_seconds),
                "lock_ttl_seconds": str(self.otp.lock_ttl_seconds),
            },
            "email": {
                "provider": self.email.provider,
                "api_key": "(set)" if self.email.api_key else "(not set)",
                "from_address": self.email.from_address or "(not set)",
            },
            "log_level": self.log_level,
            "http_port": str(self.http_port),
        }

    def validate_requirements(self) -> None:
        """Validate that every secret the service depends on is configured.

        This is strict by design: the service must refuse to start rather
        than run with a default signing or encryption secret.
        """
        if not self.auth.secret or not self.auth.secret.get_secret_value():
            raise ValueError("JWT_SECRET is required")
        if not self.wallet.secret_key or not self.wallet.secret_key.get_secret_value():
            raise ValueError("WALLET_SECRET_KEY is required")
        if not self.chain.relay_private_key or not self.chain.relay_private_key.get_secret_value():
            raise ValueError("CHAIN_RELAY_PRIVATE_KEY is required")
        if not self.chain.token_address:
            raise ValueError("CHAIN_TOKEN_ADDRESS is required")
        if self.email.provider == "resend":
            if not self.email.api_key:
                raise ValueError("RESEND_API_KEY is required when EMAIL_PROVIDER=resend")
            if not self.email.from_address:
                raise ValueError("EMAIL_FROM is required when EMAIL_PROVIDER=resend")

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
