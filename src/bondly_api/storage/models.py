"""SQLAlchemy models for persistent storage.

This module defines the two tables the authentication and airdrop core
owns: users and the airdrop ledger.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UserRole(str, Enum):
    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


class AirdropKind(str, Enum):
    """Event that triggered an airdrop."""

    CUSTODY = "custody"
    BINDING = "binding"


class AirdropStatus(str, Enum):
    """Ledger entry status.

    Transitions are pending -> success and pending -> failed only.
    """

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not AirdropStatus.PENDING

    def can_transition_to(self, other: AirdropStatus) -> bool:
        return self is AirdropStatus.PENDING and other.is_terminal


# BigInteger ids render as INTEGER on SQLite so autoincrement keeps working there.
_Id = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class UserModel(Base):
    """Platform user.

    A custody wallet address is present exactly when its encrypted
    private key is present.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(_Id, primary_key=True, autoincrement=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    wallet_address: Mapped[str | None] = mapped_column(String(42), nullable=True, unique=True)
    nickname: Mapped[str] = mapped_column(String(64), nullable=False, default="Anonymous")
    role: Mapped[str] = mapped_column(String(32), nullable=False, default=UserRole.USER.value)
    reputation_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    custody_wallet_address: Mapped[str | None] = mapped_column(String(42), nullable=True)
    encrypted_private_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    received_custody_airdrop: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )

    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint("role IN ('user', 'moderator', 'admin')", name="ck_users_role"),
        CheckConstraint("reputation_score >= 0", name="ck_users_reputation_non_negative"),
        CheckConstraint(
            "wallet_address IS NULL OR length(wallet_address) = 42",
            name="ck_users_wallet_address_length",
        ),
        CheckConstraint(
            "(custody_wallet_address IS NULL) = (encrypted_private_key IS NULL)",
            name="ck_users_custody_key_pair",
        ),
    )


class AirdropRecordModel(Base):
    """Airdrop ledger entry, one per submitted (or attempted) transfer."""

    __tablename__ = "airdrop_records"

    id: Mapped[int] = mapped_column(_Id, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(_Id, ForeignKey("users.id"), nullable=False)
    wallet_address: Mapped[str] = mapped_column(String(42), nullable=False)
    # Base token units as a decimal string (uint256 does not fit BIGINT).
    amount: Mapped[str] = mapped_column(String(78), nullable=False)
    tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True, unique=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=AirdropStatus.PENDING.value
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint("kind IN ('custody', 'binding')", name="ck_airdrop_records_kind"),
        CheckConstraint(
            "status IN ('pending', 'success', 'failed')", name="ck_airdrop_records_status"
        ),
        # At most one live (pending or successful) airdrop per user and kind.
        Index(
            "uq_airdrop_records_user_kind_active",
            "user_id",
            "kind",
            unique=True,
            postgresql_where=text("status IN ('pending', 'success')"),
            sqlite_where=text("status IN ('pending', 'success')"),
        ),
        Index("idx_airdrop_records_status_created", "status", "created_at"),
        Index("idx_airdrop_records_user", "user_id"),
    )
