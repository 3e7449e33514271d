"""Tests for the airdrop engine."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from bondly_api.airdrop.watcher import ReceiptWatcher
from bondly_api.chain.client import RPCError
from bondly_api.errors import (
    AlreadyAirdropped,
    ChainUnavailable,
    InsufficientRelayBalance,
    InvalidAddress,
    SubmitFailed,
    UserNotFound,
)
from bondly_api.storage.models import AirdropKind, AirdropStatus
from bondly_api.storage.repos import AirdropRepository, UserRepository

TARGET = "0x8ba1f109551bD432803012645Ac136ddd64DBA72"


async def ledger(db, user_id: int):
    async with db.get_async_session() as session:
        return await AirdropRepository(session).list_for_user(user_id)


# ============================================================================
# Happy path
# ============================================================================


class TestAirdrop:
    @pytest.mark.asyncio
    async def test_custody_airdrop_submits_and_confirms(
        self, engine, watcher, make_user, chain, db, load_user
    ) -> None:
        user = await make_user()

        record = await engine.airdrop(user.id, user.custody_wallet_address, AirdropKind.CUSTODY)

        assert record.status == AirdropStatus.PENDING
        assert record.tx_hash is not None
        assert record.amount == engine.amount_units
        chain.transfer_tokens.assert_awaited_once()
        assert (await load_user(user.id)).received_custody_airdrop is True

        await watcher.join()

        [stored] = await ledger(db, user.id)
        assert stored.status == AirdropStatus.SUCCESS
        assert stored.tx_hash == record.tx_hash
        assert (await load_user(user.id)).received_custody_airdrop is True

    @pytest.mark.asyncio
    async def test_lowercase_target_is_checksummed(self, engine, make_user, chain) -> None:
        user = await make_user()

        record = await engine.airdrop(user.id, TARGET.lower(), AirdropKind.BINDING)

        assert record.wallet_address == TARGET
        assert chain.transfer_tokens.await_args.args[1] == TARGET

    @pytest.mark.asyncio
    async def test_kinds_are_independent(self, engine, watcher, make_user, db) -> None:
        user = await make_user()

        await engine.airdrop(user.id, user.custody_wallet_address, AirdropKind.CUSTODY)
        await watcher.join()
        await engine.airdrop(user.id, TARGET, AirdropKind.BINDING)
        await watcher.join()

        kinds = sorted(r.kind.value for r in await ledger(db, user.id))
        assert kinds == ["binding", "custody"]


# ============================================================================
# Eligibility
# ============================================================================


class TestEligibility:
    @pytest.mark.asyncio
    async def test_second_airdrop_rejected_while_pending(self, engine, make_user, chain, db) -> None:
        chain.get_transaction_receipt.return_value = None
        user = await make_user()
        await engine.airdrop(user.id, TARGET, AirdropKind.BINDING)

        with pytest.raises(AlreadyAirdropped):
            await engine.airdrop(user.id, TARGET, AirdropKind.BINDING)

        assert chain.transfer_tokens.await_count == 1
        assert len(await ledger(db, user.id)) == 1

    @pytest.mark.asyncio
    async def test_second_airdrop_rejected_after_success(self, engine, watcher, make_user, chain) -> None:
        user = await make_user()
        await engine.airdrop(user.id, user.custody_wallet_address, AirdropKind.CUSTODY)
        await watcher.join()

        with pytest.raises(AlreadyAirdropped):
            await engine.airdrop(user.id, user.custody_wallet_address, AirdropKind.CUSTODY)
        assert chain.transfer_tokens.await_count == 1

    @pytest.mark.asyncio
    async def test_custody_flag_blocks_airdrop(self, engine, make_user, chain, db) -> None:
        user = await make_user()
        async with db.get_async_session() as session:
            await UserRepository(session).set_custody_airdrop_flag(user.id, True)

        with pytest.raises(AlreadyAirdropped):
            await engine.airdrop(user.id, user.custody_wallet_address, AirdropKind.CUSTODY)
        chain.get_token_balance.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_user(self, engine) -> None:
        with pytest.raises(UserNotFound):
            await engine.airdrop(404, TARGET, AirdropKind.BINDING)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("address", ["", "0x123", "not-an-address"])
    async def test_invalid_address(self, engine, make_user, chain, address: str) -> None:
        user = await make_user()
        with pytest.raises(InvalidAddress):
            await engine.airdrop(user.id, address, AirdropKind.BINDING)
        chain.transfer_tokens.assert_not_awaited()


# ============================================================================
# Failures
# ============================================================================


class TestFailures:
    @pytest.mark.asyncio
    async def test_insufficient_balance_leaves_no_trace(
        self, engine, make_user, chain, db, load_user
    ) -> None:
        chain.get_token_balance.return_value = engine.amount_units - 1
        user = await make_user()

        with pytest.raises(InsufficientRelayBalance) as exc_info:
            await engine.airdrop(user.id, user.custody_wallet_address, AirdropKind.CUSTODY)

        assert exc_info.value.required == engine.amount_units
        assert await ledger(db, user.id) == []
        assert (await load_user(user.id)).received_custody_airdrop is False
        chain.transfer_tokens.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_balance_check_unreachable(self, engine, make_user, chain, db) -> None:
        chain.get_token_balance.side_effect = RPCError("down")
        user = await make_user()

        with pytest.raises(ChainUnavailable):
            await engine.airdrop(user.id, TARGET, AirdropKind.BINDING)
        assert await ledger(db, user.id) == []

    @pytest.mark.asyncio
    async def test_submit_failure_fails_entry_and_allows_retry(
        self, engine, watcher, make_user, chain, db, load_user
    ) -> None:
        user = await make_user()
        transfer = chain.transfer_tokens.side_effect
        chain.transfer_tokens.side_effect = RPCError("nonce too low")

        with pytest.raises(SubmitFailed):
            await engine.airdrop(user.id, user.custody_wallet_address, AirdropKind.CUSTODY)

        [failed] = await ledger(db, user.id)
        assert failed.status == AirdropStatus.FAILED
        assert failed.tx_hash is None
        assert (await load_user(user.id)).received_custody_airdrop is False

        chain.transfer_tokens.side_effect = transfer
        await engine.airdrop(user.id, user.custody_wallet_address, AirdropKind.CUSTODY)
        await watcher.join()

        statuses = sorted(r.status.value for r in await ledger(db, user.id))
        assert statuses == ["failed", "success"]

    @pytest.mark.asyncio
    async def test_reverted_transaction_resets_custody_flag(
        self, engine, watcher, make_user, chain, db, load_user
    ) -> None:
        chain.get_transaction_receipt.return_value = {"status": 0, "blockNumber": 100}
        user = await make_user()

        await engine.airdrop(user.id, user.custody_wallet_address, AirdropKind.CUSTODY)
        await watcher.join()

        [failed] = await ledger(db, user.id)
        assert failed.status == AirdropStatus.FAILED
        assert failed.tx_hash is not None
        assert (await load_user(user.id)).received_custody_airdrop is False

        chain.get_transaction_receipt.return_value = {"status": 1, "blockNumber": 100}
        await engine.airdrop(user.id, user.custody_wallet_address, AirdropKind.CUSTODY)
        await watcher.join()

        assert (await load_user(user.id)).received_custody_airdrop is True

    @pytest.mark.asyncio
    async def test_reverted_binding_keeps_user_fields(
        self, engine, watcher, make_user, chain, load_user
    ) -> None:
        chain.get_transaction_receipt.return_value = {"status": 0, "blockNumber": 100}
        user = await make_user()

        await engine.airdrop(user.id, TARGET, AirdropKind.BINDING)
        await watcher.join()

        assert (await load_user(user.id)).received_custody_airdrop is False


    @pytest.mark.asyncio
    async def test_hash_stored_before_broadcast(self, engine, make_user, chain, db) -> None:
        user = await make_user()
        stored_at_broadcast = []

        async def transfer(token_address, to_address, amount, *, on_signed):
            await on_signed("0x" + "cd" * 32)
            [entry] = await ledger(db, user.id)
            stored_at_broadcast.append(entry.tx_hash)
            return "0x" + "cd" * 32

        chain.transfer_tokens.side_effect = transfer

        await engine.airdrop(user.id, user.custody_wallet_address, AirdropKind.CUSTODY)

        assert stored_at_broadcast == ["0x" + "cd" * 32]

    @pytest.mark.asyncio
    async def test_hash_write_failure_fails_entry_without_broadcast(
        self, engine, make_user, chain, db, load_user, monkeypatch
    ) -> None:
        monkeypatch.setattr(
            AirdropRepository,
            "set_tx_hash",
            AsyncMock(side_effect=OperationalError("UPDATE airdrop_records", {}, Exception("disk I/O error"))),
        )
        user = await make_user()

        with pytest.raises(SubmitFailed):
            await engine.airdrop(user.id, user.custody_wallet_address, AirdropKind.CUSTODY)

        assert chain.broadcasts == []
        [failed] = await ledger(db, user.id)
        assert failed.status == AirdropStatus.FAILED
        assert failed.tx_hash is None
        assert (await load_user(user.id)).received_custody_airdrop is False

    @pytest.mark.asyncio
    async def test_broadcast_failure_clears_hash_and_allows_retry(
        self, engine, watcher, make_user, chain, db, load_user
    ) -> None:
        user = await make_user()
        transfer = chain.transfer_tokens.side_effect

        async def rejected(token_address, to_address, amount, *, on_signed):
            await on_signed("0x" + "ef" * 32)
            raise RPCError("replacement transaction underpriced")

        chain.transfer_tokens.side_effect = rejected

        with pytest.raises(SubmitFailed):
            await engine.airdrop(user.id, user.custody_wallet_address, AirdropKind.CUSTODY)

        [failed] = await ledger(db, user.id)
        assert failed.status == AirdropStatus.FAILED
        assert failed.tx_hash is None
        assert (await load_user(user.id)).received_custody_airdrop is False

        chain.transfer_tokens.side_effect = transfer
        await engine.airdrop(user.id, user.custody_wallet_address, AirdropKind.CUSTODY)
        await watcher.join()

        assert (await load_user(user.id)).received_custody_airdrop is True


# ============================================================================
# Restart recovery
# ============================================================================


class TestRestartRecovery:
    @pytest.mark.asyncio
    async def test_submitted_entry_is_reattached_not_expired(
        self, engine, watcher, make_user, chain, db, load_user
    ) -> None:
        chain.get_transaction_receipt.return_value = None
        user = await make_user()
        record = await engine.airdrop(user.id, user.custody_wallet_address, AirdropKind.CUSTODY)
        await watcher.stop()

        chain.get_transaction_receipt.return_value = {"status": 1, "blockNumber": 100}
        restarted = ReceiptWatcher(
            db, chain, confirmations=1, poll_interval_seconds=0.01, stale_after=timedelta(0)
        )
        try:
            summary = await restarted.sweep()
            await restarted.join()
        finally:
            await restarted.stop()

        assert summary == {"pending": 1, "attached": 1, "expired": 0}
        [stored] = await ledger(db, user.id)
        assert stored.status == AirdropStatus.SUCCESS
        assert stored.tx_hash == record.tx_hash == chain.broadcasts[0]
        assert (await load_user(user.id)).received_custody_airdrop is True


# ============================================================================
# Concurrent triggers
# ============================================================================


class TestConcurrentTriggers:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", [AirdropKind.CUSTODY, AirdropKind.BINDING])
    async def test_one_airdrop_per_user_and_kind(
        self, engine, make_user, chain, db, kind: AirdropKind
    ) -> None:
        chain.get_transaction_receipt.return_value = None
        user = await make_user()

        results = await asyncio.gather(
            *(engine.airdrop(user.id, TARGET, kind) for _ in range(5)), return_exceptions=True
        )

        rejected = [r for r in results if isinstance(r, AlreadyAirdropped)]
        assert len(rejected) == 4
        assert len(await ledger(db, user.id)) == 1
        assert len(chain.broadcasts) == 1


# ============================================================================
# Queries and background runs
# ============================================================================


class TestQueries:
    @pytest.mark.asyncio
    async def test_history_newest_first(self, engine, watcher, make_user) -> None:
        user = await make_user()
        await engine.airdrop(user.id, user.custody_wallet_address, AirdropKind.CUSTODY)
        await watcher.join()
        await engine.airdrop(user.id, TARGET, AirdropKind.BINDING)
        await watcher.join()

        history = await engine.history(user.id)

        assert [r.kind for r in history] == [AirdropKind.BINDING, AirdropKind.CUSTODY]

    @pytest.mark.asyncio
    async def test_history_unknown_user(self, engine) -> None:
        with pytest.raises(UserNotFound):
            await engine.history(404)

    @pytest.mark.asyncio
    async def test_recent_paginates(self, engine, watcher, make_user) -> None:
        for _ in range(3):
            user = await make_user()
            await engine.airdrop(user.id, TARGET, AirdropKind.BINDING)
            await watcher.join()

        assert len(await engine.recent(limit=2)) == 2
        assert len(await engine.recent(offset=2, limit=2)) == 1

    @pytest.mark.asyncio
    async def test_enqueue_logs_instead_of_raising(self, engine, make_user, chain, db) -> None:
        chain.get_token_balance.return_value = 0
        user = await make_user()

        engine.enqueue(user.id, user.custody_wallet_address, AirdropKind.CUSTODY)
        await engine.join()

        assert await ledger(db, user.id) == []
