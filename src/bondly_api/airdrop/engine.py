"""At-most-once BOND token airdrops.

An airdrop runs in four steps:

1. Eligibility check under the user's row lock.
2. Advisory relay-balance check against the chain.
3. Pending ledger entry (and custody flag) committed, then the transfer
   is signed. Its hash is stored on the entry before the broadcast, so
   an entry without a hash was never sent. A synchronous submit failure
   fails the entry.
4. A receipt watcher takes over the submitted entry.

No database transaction is held open across a chain call. The partial
unique index on (user_id, kind) for pending/success entries backs up the
row lock, so two racing triggers can never both reach the ledger.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from eth_utils import is_address, to_checksum_address
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bondly_api.airdrop.events import AirdropEvent
from bondly_api.airdrop.watcher import finalize_record
from bondly_api.chain.client import ChainClientError
from bondly_api.errors import (
    AlreadyAirdropped,
    BondlyError,
    ChainUnavailable,
    InsufficientRelayBalance,
    InvalidAddress,
    SubmitFailed,
    UserNotFound,
)
from bondly_api.storage.models import AirdropKind, AirdropStatus
from bondly_api.storage.repos import AirdropRecordDTO, AirdropRepository, UserDTO, UserRepository

if TYPE_CHECKING:
    from bondly_api.airdrop.watcher import ReceiptWatcher
    from bondly_api.chain.client import ChainClient
    from bondly_api.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


class AirdropEngine:
    """Transfers the configured airdrop amount to users' wallets."""

    def __init__(
        self,
        db: DatabaseManager,
        chain: ChainClient,
        watcher: ReceiptWatcher,
        *,
        token_address: str,
        amount_units: int,
    ) -> None:
        """Initialize the engine.

        Args:
            db: Database manager for user and ledger access.
            chain: Relay-wallet chain client.
            watcher: Receipt watcher that finalizes submitted entries.
            token_address: ERC-20 contract address.
            amount_units: Amount per airdrop in base token units.
        """
        self._db = db
        self._chain = chain
        self._watcher = watcher
        self._token_address = to_checksum_address(token_address)
        self._amount = amount_units
        self._background: set[asyncio.Task[None]] = set()

    @property
    def amount_units(self) -> int:
        return self._amount

    async def _lock_user(self, session: AsyncSession, user_id: int) -> UserDTO:
        user = await UserRepository(session).get_by_id(user_id, for_update=True)
        if user is None:
            raise UserNotFound()
        return user

    async def _ensure_eligible(self, session: AsyncSession, user: UserDTO, kind: AirdropKind) -> None:
        if kind is AirdropKind.CUSTODY and user.received_custody_airdrop:
            raise AlreadyAirdropped("custody airdrop already received")
        if await AirdropRepository(session).has_active(user.id, kind):
            raise AlreadyAirdropped(f"{kind.value} airdrop already received or in progress")

    async def airdrop(self, user_id: int, target_address: str, kind: AirdropKind) -> AirdropRecordDTO:
        """Submit one airdrop and hand it to the receipt watcher.

        Returns as soon as the transaction is submitted; the returned entry
        is pending.

        Raises:
            InvalidAddress: If the target address is malformed.
            UserNotFound: If the user does not exist.
            AlreadyAirdropped: If a pending or successful airdrop of this kind exists.
            ChainUnavailable: If the balance check cannot reach the chain.
            InsufficientRelayBalance: If the relay wallet cannot cover the amount.
            SubmitFailed: If the transfer could not be submitted.
        """
        if not target_address or not is_address(target_address):
            raise InvalidAddress()
        target = to_checksum_address(target_address)

        async with self._db.get_async_session() as session:
            user = await self._lock_user(session, user_id)
            try:
                await self._ensure_eligible(session, user, kind)
            except AlreadyAirdropped:
                logger.info(
                    "Airdrop rejected for user %d",
                    user_id,
                    extra={"event": AirdropEvent.REJECTED, "user_id": user_id, "kind": kind.value},
                )
                raise

        try:
            balance = await self._chain.get_token_balance(self._chain.relay_address, self._token_address)
        except ChainClientError as e:
            raise ChainUnavailable(f"relay balance check failed: {e}") from e
        if balance < self._amount:
            logger.error(
                "Relay balance %d below airdrop amount %d",
                balance,
                self._amount,
                extra={"event": AirdropEvent.INSUFFICIENT_BALANCE, "user_id": user_id},
            )
            raise InsufficientRelayBalance(balance, self._amount)

        try:
            async with self._db.get_async_session() as session:
                user = await self._lock_user(session, user_id)
                await self._ensure_eligible(session, user, kind)
                record = await AirdropRepository(session).insert_pending(
                    user_id=user_id,
                    wallet_address=target,
                    amount=self._amount,
                    kind=kind,
                )
                if kind is AirdropKind.CUSTODY:
                    await UserRepository(session).set_custody_airdrop_flag(user_id, True)
        except IntegrityError as e:
            raise AlreadyAirdropped(f"{kind.value} airdrop already in progress") from e

        logger.info(
            "Airdrop %d pending for user %d",
            record.id,
            user_id,
            extra={"event": AirdropEvent.PENDING, "kind": kind.value, "to": target},
        )

        async def record_hash(tx_hash: str) -> None:
            async with self._db.get_async_session() as session:
                await AirdropRepository(session).set_tx_hash(record.id, tx_hash)

        try:
            tx_hash = await self._chain.transfer_tokens(
                self._token_address, target, self._amount, on_signed=record_hash
            )
        except ChainClientError as e:
            logger.error(
                "Airdrop %d submission failed: %s",
                record.id,
                e,
                extra={"event": AirdropEvent.SUBMIT_FAILED, "user_id": user_id, "kind": kind.value},
            )
            await finalize_record(self._db, record, AirdropStatus.FAILED, clear_tx_hash=True)
            raise SubmitFailed(str(e)) from e
        except SQLAlchemyError as e:
            # Signed but never broadcast.
            logger.error(
                "Failed to record tx hash for airdrop %d: %s",
                record.id,
                e,
                extra={"event": AirdropEvent.HASH_NOT_RECORDED, "user_id": user_id},
            )
            await finalize_record(self._db, record, AirdropStatus.FAILED)
            raise SubmitFailed("transaction hash could not be recorded") from e

        record.tx_hash = tx_hash
        logger.info(
            "Airdrop %d submitted",
            record.id,
            extra={"event": AirdropEvent.SUBMITTED, "user_id": user_id, "tx_hash": tx_hash},
        )
        self._watcher.watch(record)
        return record

    async def history(self, user_id: int) -> list[AirdropRecordDTO]:
        """Ledger entries for a user, newest first."""
        async with self._db.get_async_session() as session:
            if await UserRepository(session).get_by_id(user_id) is None:
                raise UserNotFound()
            return await AirdropRepository(session).list_for_user(user_id)

    async def recent(self, *, offset: int = 0, limit: int = 50) -> list[AirdropRecordDTO]:
        async with self._db.get_async_session() as session:
            return await AirdropRepository(session).list_recent(offset=offset, limit=limit)

    def enqueue(self, user_id: int, target_address: str, kind: AirdropKind) -> asyncio.Task[None]:
        """Run ``airdrop`` in the background; failures are logged, never raised."""
        task = asyncio.create_task(
            self._run_detached(user_id, target_address, kind),
            name=f"airdrop-{kind.value}-{user_id}",
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _run_detached(self, user_id: int, target_address: str, kind: AirdropKind) -> None:
        try:
            await self.airdrop(user_id, target_address, kind)
        except BondlyError as e:
            logger.warning(
                "Background %s airdrop for user %d not sent: %s",
                kind.value,
                user_id,
                e.message,
                extra={"event": AirdropEvent.ENQUEUE_FAILED, "error_code": e.code},
            )
        except SQLAlchemyError as e:
            logger.error(
                "Background %s airdrop for user %d failed: %s",
                kind.value,
                user_id,
                e,
                extra={"event": AirdropEvent.ENQUEUE_FAILED},
            )

    async def join(self) -> None:
        """Wait for queued background airdrops to finish submitting."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def stop(self) -> None:
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        self._background.clear()
