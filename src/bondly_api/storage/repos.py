"""Repository pattern implementations for data access.

This module provides verb-oriented data access for users and the airdrop
ledger. Repositories operate inside a caller-owned session; they flush but
never commit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update

from bondly_api.storage.models import (
    AirdropKind,
    AirdropRecordModel,
    AirdropStatus,
    UserModel,
    UserRole,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

_ACTIVE_STATUSES = (AirdropStatus.PENDING.value, AirdropStatus.SUCCESS.value)


def _as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops the offset)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


@dataclass
class UserDTO:
    """Data transfer object for users."""

    id: int
    email: str | None
    nickname: str
    role: UserRole
    reputation_score: int
    wallet_address: str | None = None
    custody_wallet_address: str | None = None
    encrypted_private_key: str | None = None
    received_custody_airdrop: bool = False
    last_login_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def has_custody_wallet(self) -> bool:
        return self.custody_wallet_address is not None

    @classmethod
    def from_model(cls, model: UserModel) -> UserDTO:
        """Create DTO from SQLAlchemy model."""
        return cls(
            id=model.id,
            email=model.email,
            nickname=model.nickname,
            role=UserRole(model.role),
            reputation_score=model.reputation_score,
            wallet_address=model.wallet_address,
            custody_wallet_address=model.custody_wallet_address,
            encrypted_private_key=model.encrypted_private_key,
            received_custody_airdrop=bool(model.received_custody_airdrop),
            last_login_at=_as_utc(model.last_login_at),
            created_at=_as_utc(model.created_at),
            updated_at=_as_utc(model.updated_at),
        )


@dataclass
class AirdropRecordDTO:
    """Data transfer object for airdrop ledger entries."""

    id: int
    user_id: int
    wallet_address: str
    amount: int
    kind: AirdropKind
    status: AirdropStatus
    tx_hash: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: AirdropRecordModel) -> AirdropRecordDTO:
        """Create DTO from SQLAlchemy model."""
        return cls(
            id=model.id,
            user_id=model.user_id,
            wallet_address=model.wallet_address,
            amount=int(model.amount),
            kind=AirdropKind(model.kind),
            status=AirdropStatus(model.status),
            tx_hash=model.tx_hash,
            created_at=_as_utc(model.created_at),
            updated_at=_as_utc(model.updated_at),
        )


class UserRepository:
    """Repository for platform users."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, user_id: int, *, for_update: bool = False) -> UserDTO | None:
        """Get a user by id, optionally holding the row lock until commit."""
        stmt = select(UserModel).where(UserModel.id == user_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return UserDTO.from_model(model) if model else None

    async def get_by_email(self, email: str) -> UserDTO | None:
        result = await self.session.execute(select(UserModel).where(UserModel.email == email))
        model = result.scalar_one_or_none()
        return UserDTO.from_model(model) if model else None

    async def get_by_wallet_address(self, wallet_address: str) -> UserDTO | None:
        """Get the user an external wallet is bound to (case-insensitive)."""
        result = await self.session.execute(
            select(UserModel).where(func.lower(UserModel.wallet_address) == wallet_address.lower())
        )
        model = result.scalar_one_or_none()
        return UserDTO.from_model(model) if model else None

    async def create(
        self,
        *,
        email: str,
        nickname: str,
        role: UserRole = UserRole.USER,
        custody_wallet_address: str | None = None,
        encrypted_private_key: str | None = None,
    ) -> UserDTO:
        """Insert a new user, optionally with its custody wallet."""
        now = datetime.now(UTC)
        model = UserModel(
            email=email,
            nickname=nickname,
            role=role.value,
            reputation_score=0,
            custody_wallet_address=custody_wallet_address,
            encrypted_private_key=encrypted_private_key,
            received_custody_airdrop=False,
            last_login_at=now,
            created_at=now,
            updated_at=now,
        )
        self.session.add(model)
        await self.session.flush()
        return UserDTO.from_model(model)

    async def touch_login(self, user_id: int, *, nickname: str | None = None) -> None:
        """Refresh last_login_at, and the nickname when one is given."""
        now = datetime.now(UTC)
        values: dict[str, object] = {"last_login_at": now, "updated_at": now}
        if nickname is not None:
            values["nickname"] = nickname
        await self.session.execute(update(UserModel).where(UserModel.id == user_id).values(**values))

    async def set_custody_wallet(
        self, user_id: int, custody_wallet_address: str, encrypted_private_key: str
    ) -> bool:
        """Attach a custody wallet to a user that has none.

        Returns:
            True if the row was updated, False if a wallet was already present.
        """
        result = await self.session.execute(
            update(UserModel)
            .where(UserModel.id == user_id, UserModel.custody_wallet_address.is_(None))
            .values(
                custody_wallet_address=custody_wallet_address,
                encrypted_private_key=encrypted_private_key,
                updated_at=datetime.now(UTC),
            )
        )
        return (result.rowcount or 0) > 0

    async def set_wallet_address(self, user_id: int, wallet_address: str) -> None:
        await self.session.execute(
            update(UserModel)
            .where(UserModel.id == user_id)
            .values(wallet_address=wallet_address, updated_at=datetime.now(UTC))
        )

    async def set_custody_airdrop_flag(self, user_id: int, value: bool) -> None:
        await self.session.execute(
            update(UserModel)
            .where(UserModel.id == user_id)
            .values(received_custody_airdrop=value, updated_at=datetime.now(UTC))
        )


class AirdropRepository:
    """Repository for the airdrop ledger.

    Status updates only ever apply to pending rows, so success and failed
    entries are never rewritten.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, record_id: int) -> AirdropRecordDTO | None:
        result = await self.session.execute(
            select(AirdropRecordModel).where(AirdropRecordModel.id == record_id)
        )
        model = result.scalar_one_or_none()
        return AirdropRecordDTO.from_model(model) if model else None

    async def has_active(self, user_id: int, kind: AirdropKind) -> bool:
        """Return True if a pending or successful entry exists for (user, kind)."""
        result = await self.session.execute(
            select(func.count())
            .select_from(AirdropRecordModel)
            .where(
                AirdropRecordModel.user_id == user_id,
                AirdropRecordModel.kind == kind.value,
                AirdropRecordModel.status.in_(_ACTIVE_STATUSES),
            )
        )
        return (result.scalar_one() or 0) > 0

    async def insert_pending(
        self, *, user_id: int, wallet_address: str, amount: int, kind: AirdropKind
    ) -> AirdropRecordDTO:
        now = datetime.now(UTC)
        model = AirdropRecordModel(
            user_id=user_id,
            wallet_address=wallet_address,
            amount=str(amount),
            kind=kind.value,
            status=AirdropStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        self.session.add(model)
        await self.session.flush()
        return AirdropRecordDTO.from_model(model)

    async def set_tx_hash(self, record_id: int, tx_hash: str) -> None:
        await self.session.execute(
            update(AirdropRecordModel)
            .where(AirdropRecordModel.id == record_id)
            .values(tx_hash=tx_hash, updated_at=datetime.now(UTC))
        )

    async def mark_status(
        self,
        record_id: int,
        status: AirdropStatus,
        *,
        tx_hash: str | None = None,
        clear_tx_hash: bool = False,
    ) -> bool:
        """Move a pending entry to a terminal status.

        ``clear_tx_hash`` drops the stored hash of a transaction that was
        signed but never broadcast.

        Returns:
            True if the entry was pending and is now ``status``; False if it
            had already been finalized.
        """
        if not AirdropStatus.PENDING.can_transition_to(status):
            raise ValueError(f"cannot transition airdrop to {status.value}")
        values: dict[str, object] = {"status": status.value, "updated_at": datetime.now(UTC)}
        if clear_tx_hash:
            values["tx_hash"] = None
        elif tx_hash is not None:
            values["tx_hash"] = tx_hash
        result = await self.session.execute(
            update(AirdropRecordModel)
            .where(
                AirdropRecordModel.id == record_id,
                AirdropRecordModel.status == AirdropStatus.PENDING.value,
            )
            .values(**values)
        )
        return (result.rowcount or 0) > 0

    async def list_for_user(self, user_id: int) -> list[AirdropRecordDTO]:
        """Ledger entries for a user, newest first."""
        result = await self.session.execute(
            select(AirdropRecordModel)
            .where(AirdropRecordModel.user_id == user_id)
            .order_by(AirdropRecordModel.created_at.desc(), AirdropRecordModel.id.desc())
        )
        return [AirdropRecordDTO.from_model(m) for m in result.scalars().all()]

    async def list_recent(self, *, offset: int = 0, limit: int = 50) -> list[AirdropRecordDTO]:
        result = await self.session.execute(
            select(AirdropRecordModel)
            .order_by(AirdropRecordModel.created_at.desc(), AirdropRecordModel.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return [AirdropRecordDTO.from_model(m) for m in result.scalars().all()]

    async def list_pending(self) -> list[AirdropRecordDTO]:
        """All pending entries, oldest first."""
        result = await self.session.execute(
            select(AirdropRecordModel)
            .where(AirdropRecordModel.status == AirdropStatus.PENDING.value)
            .order_by(AirdropRecordModel.created_at.asc(), AirdropRecordModel.id.asc())
        )
        return [AirdropRecordDTO.from_model(m) for m in result.scalars().all()]
