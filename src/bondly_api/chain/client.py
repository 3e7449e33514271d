"""EVM chain client for the relay wallet.

This module provides the client the airdrop engine uses to talk to the
chain:
- ERC-20 balance queries and relay-signed ``transfer`` submission
- Receipt and block-height polling for confirmation tracking
- Retry logic with exponential backoff
- Rate limiting to respect provider limits
- Failover to secondary RPC URL
"""

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from eth_account import Account
from web3 import AsyncWeb3
from web3.exceptions import TransactionNotFound, Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware
from web3.providers import AsyncHTTPProvider

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_MAX_REQUESTS_PER_SECOND = 25
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_GAS_LIMIT = 100_000

ERC20_ABI: list[dict[str, Any]] = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_to", "type": "address"},
            {"name": "_value", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
]

# Transport-level failures worth retrying alongside web3's own errors.
_RETRYABLE = (Web3Exception, TimeoutError, OSError)


class ChainClientError(Exception):
    """Base exception for chain client errors."""


class RPCError(ChainClientError):
    """Raised when RPC call fails."""


@dataclass
class RateLimiter:
    """Token bucket rate limiter."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    @classmethod
    def create(cls, max_requests_per_second: float) -> "RateLimiter":
        """Create a rate limiter with specified max requests per second."""
        return cls(
            max_tokens=max_requests_per_second,
            refill_rate=max_requests_per_second,
            tokens=max_requests_per_second,
            last_refill=time.monotonic(),
        )

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Acquire tokens, waiting if necessary."""
        while True:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return
            wait_time = (tokens - self.tokens) / self.refill_rate
            await asyncio.sleep(wait_time)


class ChainClient:
    """Relay-wallet chain client with rate limiting and failover.

    All transfers are signed by the single relay key. Nonce assignment is
    serialized through a process-local lock so concurrent airdrops never
    submit two transactions with the same nonce.

    Example:
        ```python
        client = ChainClient(
            rpc_url="https://rpc.example.org",
            relay_private_key="0x...",
            fallback_rpc_url="https://rpc-backup.example.org",
        )

        balance = await client.get_token_balance(client.relay_address, token)
        tx_hash = await client.transfer_tokens(token, "0x...", 10**21)
        receipt = await client.get_transaction_receipt(tx_hash)
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        relay_private_key: str,
        *,
        fallback_rpc_url: str | None = None,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT,
        gas_limit: int = DEFAULT_GAS_LIMIT,
        poa: bool = False,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
    ) -> None:
        """Initialize the chain client.

        Args:
            rpc_url: Primary JSON-RPC endpoint URL.
            relay_private_key: Hex private key of the relay wallet.
            fallback_rpc_url: Optional fallback RPC URL for failover.
            timeout_seconds: Deadline for a single RPC call.
            gas_limit: Gas limit used for transfer transactions.
            poa: Inject the proof-of-authority extraData middleware.
            max_requests_per_second: Rate limit for RPC calls.
            max_retries: Maximum retry attempts on failure.
            retry_delay_seconds: Initial delay between retries.
        """
        self._rpc_url = rpc_url
        self._fallback_rpc_url = fallback_rpc_url
        self._timeout = timeout_seconds
        self._gas_limit = gas_limit
        self._poa = poa
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds

        self._account = Account.from_key(relay_private_key)

        self._w3 = self._new_web3_client(rpc_url)
        self._w3_fallback: AsyncWeb3[AsyncHTTPProvider] | None = None
        if fallback_rpc_url:
            self._w3_fallback = self._new_web3_client(fallback_rpc_url)

        self._rate_limiter = RateLimiter.create(max_requests_per_second)

        # Track primary RPC health
        self._primary_healthy = True
        self._last_primary_check = 0.0
        self._primary_recovery_interval = 60.0

        self._nonce_lock = asyncio.Lock()
        self._chain_id: int | None = None

    @property
    def relay_address(self) -> str:
        """Checksummed address of the relay wallet."""
        return str(self._account.address)

    def _new_web3_client(self, rpc_url: str) -> AsyncWeb3[AsyncHTTPProvider]:
        client = AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": self._timeout}))
        if self._poa:
            self._inject_poa_middleware(client, rpc_url=rpc_url)
        return client

    def _inject_poa_middleware(self, client: AsyncWeb3[AsyncHTTPProvider], *, rpc_url: str) -> None:
        try:
            client.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        except Exception as e:
            logger.warning("Failed to inject PoA middleware (rpc=%s): %s", rpc_url, e)

    def _should_try_primary(self) -> bool:
        """Check if we should try the primary RPC."""
        if self._primary_healthy:
            return True
        now = time.monotonic()
        if now - self._last_primary_check > self._primary_recovery_interval:
            self._last_primary_check = now
            return True
        return False

    def _active_w3(self) -> AsyncWeb3[AsyncHTTPProvider]:
        if self._primary_healthy or self._w3_fallback is None:
            return self._w3
        return self._w3_fallback

    async def _with_timeout(self, awaitable: Awaitable[Any]) -> Any:
        return await asyncio.wait_for(awaitable, timeout=self._timeout)

    async def _invoke(self, w3: AsyncWeb3[AsyncHTTPProvider], name: str, *args: Any) -> Any:
        # web3.eth exposes both methods (get_block) and awaitable properties (gas_price).
        attr = getattr(w3.eth, name)
        result = attr(*args) if callable(attr) else attr
        if inspect.isawaitable(result):
            result = await self._with_timeout(result)
        return result

    async def _execute_with_retry(self, func_name: str, *args: Any) -> Any:
        """Execute an RPC call with retry and failover logic.

        Args:
            func_name: Name of the web3.eth method or awaitable property.
            *args: Positional arguments for the method.

        Returns:
            Result from the RPC call.

        Raises:
            TransactionNotFound: Passed through unchanged for receipt lookups.
            RPCError: If all retries and failover fail.
        """
        await self._rate_limiter.acquire()

        last_error: Exception | None = None
        delay = self._retry_delay

        if self._should_try_primary():
            for attempt in range(self._max_retries):
                try:
                    result = await self._invoke(self._w3, func_name, *args)
                    self._primary_healthy = True
                    return result
                except TransactionNotFound:
                    raise
                except _RETRYABLE as e:
                    last_error = e
                    logger.warning(
                        "Primary RPC %s failed (attempt %d/%d): %s",
                        func_name,
                        attempt + 1,
                        self._max_retries,
                        e,
                    )
                    if attempt < self._max_retries - 1:
                        await asyncio.sleep(delay)
                        delay *= 2

            self._primary_healthy = False
            self._last_primary_check = time.monotonic()

        if self._w3_fallback:
            delay = self._retry_delay
            for attempt in range(self._max_retries):
                try:
                    result = await self._invoke(self._w3_fallback, func_name, *args)
                    logger.info("Fallback RPC succeeded for %s", func_name)
                    return result
                except TransactionNotFound:
                    raise
                except _RETRYABLE as e:
                    last_error = e
                    logger.warning(
                        "Fallback RPC %s failed (attempt %d/%d): %s",
                        func_name,
                        attempt + 1,
                        self._max_retries,
                        e,
                    )
                    if attempt < self._max_retries - 1:
                        await asyncio.sleep(delay)
                        delay *= 2

        raise RPCError(f"RPC call {func_name} failed after all retries: {last_error}")

    def _token_contract(self, token_address: str) -> Any:
        return self._active_w3().eth.contract(
            address=AsyncWeb3.to_checksum_address(token_address),
            abi=ERC20_ABI,
        )

    async def get_token_balance(self, address: str, token_address: str) -> int:
        """Get latest ERC-20 token balance in base units.

        Args:
            address: Holder address.
            token_address: ERC-20 token contract address.

        Raises:
            RPCError: If the call fails or times out.
        """
        await self._rate_limiter.acquire()
        try:
            contract = self._token_contract(token_address)
            balance = await self._with_timeout(
                contract.functions.balanceOf(AsyncWeb3.to_checksum_address(address)).call()
            )
        except _RETRYABLE as e:
            raise RPCError(f"Failed to get token balance: {e}") from e
        return int(balance)

    async def _get_chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = int(await self._execute_with_retry("chain_id"))
        return self._chain_id

    async def transfer_tokens(
        self,
        token_address: str,
        to_address: str,
        amount: int,
        *,
        on_signed: Callable[[str], Awaitable[None]] | None = None,
    ) -> str:
        """Sign and submit an ERC-20 ``transfer`` from the relay wallet.

        The transaction hash is known once the transaction is signed. If
        ``on_signed`` is given it is awaited with that hash before the
        broadcast; an exception from it propagates unchanged and nothing is
        broadcast. The raw transaction is broadcast once and never retried,
        so a failure here never leaves two transfers in flight.

        Args:
            token_address: ERC-20 token contract address.
            to_address: Recipient address.
            amount: Amount in base token units.
            on_signed: Optional hook awaited with the hash before broadcast.

        Returns:
            The transaction hash as a 0x-prefixed hex string.

        Raises:
            RPCError: If nonce lookup, signing or broadcast fails.
        """
        contract = self._token_contract(token_address)
        recipient = AsyncWeb3.to_checksum_address(to_address)

        async with self._nonce_lock:
            nonce = await self._execute_with_retry(
                "get_transaction_count", self.relay_address, "pending"
            )
            gas_price = await self._execute_with_retry("gas_price")
            chain_id = await self._get_chain_id()

            await self._rate_limiter.acquire()
            try:
                tx = await self._with_timeout(
                    contract.functions.transfer(recipient, amount).build_transaction(
                        {
                            "from": self.relay_address,
                            "nonce": nonce,
                            "gas": self._gas_limit,
                            "gasPrice": gas_price,
                            "chainId": chain_id,
                        }
                    )
                )
                signed = self._account.sign_transaction(tx)
            except (*_RETRYABLE, ValueError) as e:
                raise RPCError(f"Failed to build token transfer: {e}") from e

            tx_hash_hex = AsyncWeb3.to_hex(signed.hash)
            if on_signed is not None:
                await on_signed(tx_hash_hex)

            try:
                await self._with_timeout(
                    self._active_w3().eth.send_raw_transaction(signed.raw_transaction)
                )
            except (*_RETRYABLE, ValueError) as e:
                raise RPCError(f"Failed to broadcast token transfer {tx_hash_hex}: {e}") from e

        logger.info("Submitted token transfer nonce=%s to=%s tx=%s", nonce, recipient, tx_hash_hex)
        return tx_hash_hex

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        """Get a transaction receipt.

        Returns:
            The receipt, or None if the transaction is not mined yet.

        Raises:
            RPCError: If the RPC call fails.
        """
        try:
            receipt = await self._execute_with_retry("get_transaction_receipt", tx_hash)
        except TransactionNotFound:
            return None
        if receipt is None:
            return None
        return dict(receipt)

    async def get_block_number(self) -> int:
        """Get the latest block number."""
        return int(await self._execute_with_retry("get_block_number"))

    async def health_check(self) -> bool:
        """Check if the client can connect to the RPC.

        Returns:
            True if healthy, False otherwise.
        """
        try:
            await self._execute_with_retry("get_block_number")
            return True
        except RPCError:
            return False

    async def aclose(self) -> None:
        """Close async HTTP provider sessions to avoid leaked aiohttp sessions."""
        providers = [self._w3.provider]
        if self._w3_fallback is not None:
            providers.append(self._w3_fallback.provider)

        for provider in providers:
            disconnect = getattr(provider, "disconnect", None)
            if not callable(disconnect):
                continue
            try:
                result = disconnect()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning("Failed to close RPC provider session: %s", e)
