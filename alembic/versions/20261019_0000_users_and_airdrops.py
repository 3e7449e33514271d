"""Users and airdrop ledger.

Revision ID: 001_users_airdrops
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_users_airdrops"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("wallet_address", sa.String(42), nullable=True),
        sa.Column("nickname", sa.String(64), nullable=False),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("reputation_score", sa.Integer(), nullable=False),
        sa.Column("custody_wallet_address", sa.String(42), nullable=True),
        sa.Column("encrypted_private_key", sa.Text(), nullable=True),
        sa.Column(
            "received_custody_airdrop",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sa.UniqueConstraint("wallet_address"),
        sa.CheckConstraint("role IN ('user', 'moderator', 'admin')", name="ck_users_role"),
        sa.CheckConstraint("reputation_score >= 0", name="ck_users_reputation_non_negative"),
        sa.CheckConstraint(
            "wallet_address IS NULL OR length(wallet_address) = 42",
            name="ck_users_wallet_address_length",
        ),
        sa.CheckConstraint(
            "(custody_wallet_address IS NULL) = (encrypted_private_key IS NULL)",
            name="ck_users_custody_key_pair",
        ),
    )

    op.create_table(
        "airdrop_records",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("wallet_address", sa.String(42), nullable=False),
        sa.Column("amount", sa.String(78), nullable=False),
        sa.Column("tx_hash", sa.String(66), nullable=True),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.UniqueConstraint("tx_hash"),
        sa.CheckConstraint("kind IN ('custody', 'binding')", name="ck_airdrop_records_kind"),
        sa.CheckConstraint(
            "status IN ('pending', 'success', 'failed')", name="ck_airdrop_records_status"
        ),
    )
    op.create_index(
        "uq_airdrop_records_user_kind_active",
        "airdrop_records",
        ["user_id", "kind"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'success')"),
    )
    op.create_index(
        "idx_airdrop_records_status_created", "airdrop_records", ["status", "created_at"]
    )
    op.create_index("idx_airdrop_records_user", "airdrop_records", ["user_id"])


def downgrade() -> None:
    op.drop_index("idx_airdrop_records_user", table_name="airdrop_records")
    op.drop_index("idx_airdrop_records_status_created", table_name="airdrop_records")
    op.drop_index("uq_airdrop_records_user_kind_active", table_name="airdrop_records")
    op.drop_table("airdrop_records")

    op.drop_table("users")
