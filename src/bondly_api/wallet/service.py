"""Custody wallet provisioning and external wallet binding."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from eth_utils import is_address, to_checksum_address
from sqlalchemy.exc import IntegrityError

from bondly_api.errors import (
    AlreadyAirdropped,
    BondlyError,
    CustodyWalletExists,
    InvalidAddress,
    UserNotFound,
    WalletAlreadyBound,
)
from bondly_api.storage.models import AirdropKind
from bondly_api.storage.repos import UserRepository

if TYPE_CHECKING:
    from bondly_api.airdrop.engine import AirdropEngine
    from bondly_api.storage.database import DatabaseManager
    from bondly_api.wallet.custody import CustodyWalletManager

logger = logging.getLogger(__name__)


@dataclass
class WalletInfo:
    user_id: int
    nickname: str
    custody_wallet_address: str | None
    has_wallet: bool
    wallet_address: str | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BindResult:
    user_id: int
    wallet_address: str
    airdrop_initiated: bool
    airdrop_tx_hash: str | None = None
    airdrop_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BatchOutcome:
    user_id: int
    success: bool
    custody_wallet_address: str | None = None
    error_code: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def checksum_address(address: str) -> str:
    """Validate and checksum a 0x-prefixed 20-byte address."""
    address = (address or "").strip()
    if len(address) != 42 or not address.startswith("0x") or not is_address(address):
        raise InvalidAddress()
    return to_checksum_address(address)


class WalletService:
    """Creates custody wallets and binds external ones, triggering airdrops."""

    def __init__(
        self,
        db: DatabaseManager,
        custody: CustodyWalletManager,
        engine: AirdropEngine,
    ) -> None:
        self._db = db
        self._custody = custody
        self._engine = engine

    async def generate_for_user(self, user_id: int) -> WalletInfo:
        """Provision a custody wallet for an existing user.

        The custody airdrop is queued in the background once the wallet
        is committed.

        Raises:
            UserNotFound: If the user does not exist.
            CustodyWalletExists: If the user already has a custody wallet.
        """
        async with self._db.get_async_session() as session:
            repo = UserRepository(session)
            user = await repo.get_by_id(user_id, for_update=True)
            if user is None:
                raise UserNotFound()
            if user.has_custody_wallet:
                raise CustodyWalletExists()
            wallet = self._custody.generate()
            if not await repo.set_custody_wallet(user_id, wallet.address, wallet.encrypted_private_key):
                raise CustodyWalletExists()

        self._engine.enqueue(user_id, wallet.address, AirdropKind.CUSTODY)
        return WalletInfo(
            user_id=user.id,
            nickname=user.nickname,
            custody_wallet_address=wallet.address,
            has_wallet=True,
            wallet_address=user.wallet_address,
        )

    async def batch_generate(self, user_ids: list[int]) -> list[BatchOutcome]:
        """Provision custody wallets for several users; one outcome per id."""
        outcomes: list[BatchOutcome] = []
        for user_id in dict.fromkeys(user_ids):
            try:
                info = await self.generate_for_user(user_id)
            except BondlyError as e:
                outcomes.append(
                    BatchOutcome(user_id=user_id, success=False, error_code=e.code, error=e.message)
                )
                continue
            outcomes.append(
                BatchOutcome(
                    user_id=user_id,
                    success=True,
                    custody_wallet_address=info.custody_wallet_address,
                )
            )
        logger.info(
            "Batch custody generation: %d/%d succeeded",
            sum(1 for o in outcomes if o.success),
            len(outcomes),
        )
        return outcomes

    async def wallet_info(self, user_id: int) -> WalletInfo:
        async with self._db.get_async_session() as session:
            user = await UserRepository(session).get_by_id(user_id)
        if user is None:
            raise UserNotFound()
        return WalletInfo(
            user_id=user.id,
            nickname=user.nickname,
            custody_wallet_address=user.custody_wallet_address,
            has_wallet=user.has_custody_wallet,
            wallet_address=user.wallet_address,
        )

    async def bind_wallet(self, user_id: int, wallet_address: str) -> BindResult:
        """Bind an external wallet to a user and run the binding airdrop.

        The binding is committed before the airdrop starts and stays in
        place whatever the airdrop outcome. An airdrop that was already
        received or is in flight is reported in the result, not raised.

        Raises:
            InvalidAddress: If the address is malformed.
            UserNotFound: If the user does not exist.
            WalletAlreadyBound: If another user holds the address.
        """
        address = checksum_address(wallet_address)
        try:
            async with self._db.get_async_session() as session:
                repo = UserRepository(session)
                if await repo.get_by_id(user_id, for_update=True) is None:
                    raise UserNotFound()
                owner = await repo.get_by_wallet_address(address)
                if owner is not None and owner.id != user_id:
                    raise WalletAlreadyBound()
                await repo.set_wallet_address(user_id, address)
        except IntegrityError as e:
            raise WalletAlreadyBound() from e

        logger.info("Bound wallet %s to user %d", address, user_id)

        try:
            record = await self._engine.airdrop(user_id, address, AirdropKind.BINDING)
        except AlreadyAirdropped as e:
            return BindResult(
                user_id=user_id,
                wallet_address=address,
                airdrop_initiated=False,
                airdrop_message=e.message,
            )
        return BindResult(
            user_id=user_id,
            wallet_address=address,
            airdrop_initiated=True,
            airdrop_tx_hash=record.tx_hash,
        )
