"""Pytest configuration and fixtures."""

from __future__ import annotations

import itertools
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import fakeredis
import pytest
from eth_account import Account

from bondly_api.airdrop.engine import AirdropEngine
from bondly_api.airdrop.watcher import ReceiptWatcher
from bondly_api.auth.tokens import TokenIssuer
from bondly_api.storage.database import DatabaseManager
from bondly_api.storage.repos import UserDTO, UserRepository
from bondly_api.wallet.custody import CustodyWalletManager

RELAY_KEY = "0x" + "11" * 32
RELAY_ADDRESS = Account.from_key(RELAY_KEY).address
TOKEN_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
AIRDROP_AMOUNT = 1000 * 10**18
WALLET_SECRET = "test-wallet-secret"
JWT_SECRET = "test-jwt-secret"


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


@pytest.fixture
async def db(tmp_path) -> DatabaseManager:
    """File-backed SQLite database with the schema created."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'bondly.db'}")
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()


@pytest.fixture
async def redis():
    """In-memory async Redis."""
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def chain() -> MagicMock:
    """Chain client double with a funded relay and successful receipts.

    ``transfer_tokens`` hands the signed hash to ``on_signed`` before it is
    appended to ``broadcasts``, like the real client.
    """
    counter = itertools.count(1)
    mock = MagicMock()
    mock.broadcasts = []

    async def transfer(token_address, to_address, amount, *, on_signed=None):
        signed_hash = tx_hash(next(counter))
        if on_signed is not None:
            await on_signed(signed_hash)
        mock.broadcasts.append(signed_hash)
        return signed_hash

    mock.relay_address = RELAY_ADDRESS
    mock.get_token_balance = AsyncMock(return_value=10 * AIRDROP_AMOUNT)
    mock.transfer_tokens = AsyncMock(side_effect=transfer)
    mock.get_transaction_receipt = AsyncMock(return_value={"status": 1, "blockNumber": 100})
    mock.get_block_number = AsyncMock(return_value=100)
    mock.health_check = AsyncMock(return_value=True)
    mock.aclose = AsyncMock()
    return mock


@pytest.fixture
def custody() -> CustodyWalletManager:
    return CustodyWalletManager(WALLET_SECRET)


@pytest.fixture
def tokens() -> TokenIssuer:
    return TokenIssuer(JWT_SECRET, expires_in_hours=24)


@pytest.fixture
async def watcher(db, chain) -> ReceiptWatcher:
    watcher = ReceiptWatcher(
        db,
        chain,
        confirmations=1,
        poll_interval_seconds=0.01,
        attempt_timeout_seconds=1.0,
        stale_after=timedelta(hours=1),
        sweep_interval_seconds=60,
    )
    yield watcher
    await watcher.stop()


@pytest.fixture
async def engine(db, chain, watcher) -> AirdropEngine:
    engine = AirdropEngine(
        db,
        chain,
        watcher,
        token_address=TOKEN_ADDRESS,
        amount_units=AIRDROP_AMOUNT,
    )
    yield engine
    await engine.stop()


@pytest.fixture
def make_user(db, custody):
    """Factory inserting a user, optionally with a custody wallet."""
    emails = (f"user{n}@example.com" for n in itertools.count(1))

    async def _make(
        email: str | None = None,
        nickname: str = "Alice",
        *,
        with_custody: bool = True,
    ) -> UserDTO:
        wallet = custody.generate() if with_custody else None
        async with db.get_async_session() as session:
            return await UserRepository(session).create(
                email=email or next(emails),
                nickname=nickname,
                custody_wallet_address=wallet.address if wallet else None,
                encrypted_private_key=wallet.encrypted_private_key if wallet else None,
            )

    return _make


@pytest.fixture
def load_user(db):
    """Reload a user row."""

    async def _load(user_id: int) -> UserDTO:
        async with db.get_async_session() as session:
            user = await UserRepository(session).get_by_id(user_id)
        assert user is not None
        return user

    return _load
