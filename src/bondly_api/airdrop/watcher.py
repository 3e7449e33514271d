"""Background confirmation tracking for submitted airdrops.

Each pending ledger entry with a transaction hash gets one watcher task.
The task polls for the receipt, waits for the configured confirmation
depth and moves the entry to success or failed. Entries that stay pending
past the stale threshold without a receipt are failed.

A sweep at startup (and then periodically) re-attaches watchers for
pending entries, so tracking survives process restarts.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from bondly_api.airdrop.events import AirdropEvent
from bondly_api.chain.client import ChainClientError
from bondly_api.storage.models import AirdropKind, AirdropStatus
from bondly_api.storage.repos import AirdropRecordDTO, AirdropRepository, UserRepository

if TYPE_CHECKING:
    from bondly_api.chain.client import ChainClient
    from bondly_api.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

DEFAULT_CONFIRMATIONS = 1
DEFAULT_POLL_INTERVAL_SECONDS = 3.0
DEFAULT_ATTEMPT_TIMEOUT_SECONDS = 10.0
DEFAULT_STALE_AFTER = timedelta(hours=1)
DEFAULT_SWEEP_INTERVAL_SECONDS = 300.0

RECEIPT_STATUS_SUCCESS = 1


async def finalize_record(
    db: DatabaseManager,
    record: AirdropRecordDTO,
    status: AirdropStatus,
    *,
    tx_hash: str | None = None,
    clear_tx_hash: bool = False,
) -> bool:
    """Move a pending entry to a terminal status.

    For a failed custody airdrop the user's flag is cleared in the same
    transaction so the airdrop can be retried.

    Returns:
        True if this call finalized the entry, False if it was already final.
    """
    async with db.get_async_session() as session:
        changed = await AirdropRepository(session).mark_status(
            record.id, status, tx_hash=tx_hash, clear_tx_hash=clear_tx_hash
        )
        if changed and status is AirdropStatus.FAILED and record.kind is AirdropKind.CUSTODY:
            await UserRepository(session).set_custody_airdrop_flag(record.user_id, False)
    return changed


class ReceiptWatcher:
    """Tracks submitted airdrop transactions until they are final."""

    def __init__(
        self,
        db: DatabaseManager,
        chain: ChainClient,
        *,
        confirmations: int = DEFAULT_CONFIRMATIONS,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        attempt_timeout_seconds: float = DEFAULT_ATTEMPT_TIMEOUT_SECONDS,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self._db = db
        self._chain = chain
        self._confirmations = max(confirmations, 1)
        self._poll_interval = poll_interval_seconds
        self._attempt_timeout = attempt_timeout_seconds
        self._stale_after = stale_after
        self._sweep_interval = sweep_interval_seconds

        self._tasks: dict[int, asyncio.Task[None]] = {}
        self._sweep_task: asyncio.Task[None] | None = None

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    def is_watching(self, record_id: int) -> bool:
        return record_id in self._tasks

    def watch(self, record: AirdropRecordDTO) -> asyncio.Task[None]:
        """Start tracking ``record`` unless it is already being tracked."""
        if record.tx_hash is None:
            raise ValueError("cannot watch an airdrop without a transaction hash")
        existing = self._tasks.get(record.id)
        if existing is not None and not existing.done():
            return existing

        task = asyncio.create_task(
            self._watch(record, record.tx_hash), name=f"airdrop-watch-{record.id}"
        )
        self._tasks[record.id] = task
        task.add_done_callback(lambda t, rid=record.id: self._forget(rid, t))
        return task

    def _forget(self, record_id: int, task: asyncio.Task[None]) -> None:
        if self._tasks.get(record_id) is task:
            del self._tasks[record_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Watcher for airdrop %d crashed",
                record_id,
                exc_info=task.exception(),
                extra={"event": AirdropEvent.WATCH_ERROR},
            )

    def _is_stale(self, record: AirdropRecordDTO, now: datetime | None = None) -> bool:
        if record.created_at is None:
            return False
        now = now or datetime.now(UTC)
        return now - record.created_at > self._stale_after

    async def _check_receipt(self, tx_hash: str) -> AirdropStatus | None:
        """Return the terminal status if the transaction is final, else None."""
        receipt = await self._chain.get_transaction_receipt(tx_hash)
        if receipt is None:
            return None
        if receipt.get("status") != RECEIPT_STATUS_SUCCESS:
            return AirdropStatus.FAILED
        block_number = receipt.get("blockNumber")
        if block_number is None:
            return None
        current = await self._chain.get_block_number()
        if current - int(block_number) + 1 < self._confirmations:
            return None
        return AirdropStatus.SUCCESS

    async def _finalize(self, record: AirdropRecordDTO, status: AirdropStatus, event: AirdropEvent) -> None:
        changed = await finalize_record(self._db, record, status, tx_hash=record.tx_hash)
        log = logger.info if status is AirdropStatus.SUCCESS else logger.warning
        log(
            "Airdrop %d finalized as %s%s",
            record.id,
            status.value,
            "" if changed else " (already final)",
            extra={
                "event": event,
                "record_id": record.id,
                "user_id": record.user_id,
                "kind": record.kind.value,
                "tx_hash": record.tx_hash,
            },
        )

    async def _watch(self, record: AirdropRecordDTO, tx_hash: str) -> None:
        while True:
            status: AirdropStatus | None = None
            try:
                status = await asyncio.wait_for(
                    self._check_receipt(tx_hash), timeout=self._attempt_timeout
                )
            except (ChainClientError, TimeoutError) as e:
                logger.warning(
                    "Receipt poll for airdrop %d failed: %s",
                    record.id,
                    e,
                    extra={"event": AirdropEvent.WATCH_ERROR, "tx_hash": tx_hash},
                )

            try:
                if status is AirdropStatus.SUCCESS:
                    await self._finalize(record, status, AirdropEvent.CONFIRMED)
                    return
                if status is AirdropStatus.FAILED:
                    await self._finalize(record, status, AirdropEvent.FAILED)
                    return
                if self._is_stale(record):
                    await self._finalize(record, AirdropStatus.FAILED, AirdropEvent.STALE)
                    return
            except SQLAlchemyError as e:
                logger.error(
                    "Failed to persist outcome of airdrop %d: %s",
                    record.id,
                    e,
                    extra={"event": AirdropEvent.WATCH_ERROR, "tx_hash": tx_hash},
                )

            await asyncio.sleep(self._poll_interval)

    async def sweep(self) -> dict[str, int]:
        """Re-attach watchers for pending entries and fail stale orphans.

        Pending entries without a transaction hash are left alone until they
        are stale, since their submission may still be in flight.
        """
        async with self._db.get_async_session() as session:
            pending = await AirdropRepository(session).list_pending()

        now = datetime.now(UTC)
        attached = 0
        expired = 0
        for record in pending:
            if record.tx_hash:
                if not self.is_watching(record.id):
                    self.watch(record)
                    attached += 1
            elif self._is_stale(record, now):
                await self._finalize(record, AirdropStatus.FAILED, AirdropEvent.STALE)
                expired += 1

        summary = {"pending": len(pending), "attached": attached, "expired": expired}
        logger.info(
            "Swept pending airdrops: %s",
            summary,
            extra={"event": AirdropEvent.SWEEP},
        )
        return summary

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.sweep()
            except SQLAlchemyError as e:
                logger.error("Airdrop sweep failed: %s", e, extra={"event": AirdropEvent.SWEEP})

    async def start(self) -> None:
        """Run the startup sweep and schedule periodic sweeps."""
        await self.sweep()
        self._sweep_task = asyncio.create_task(self._sweep_loop(), name="airdrop-sweep")

    async def join(self) -> None:
        """Wait until every currently tracked entry is final."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def stop(self) -> None:
        """Cancel the sweep loop and all watcher tasks."""
        tasks: list[asyncio.Task[Any]] = list(self._tasks.values())
        if self._sweep_task is not None:
            tasks.append(self._sweep_task)
            self._sweep_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
