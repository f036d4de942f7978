"""verification tables

Revision ID: 3c1f2a9d0b7e
Revises:
Create Date: 2026-10-18 09:12:40.518233

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3c1f2a9d0b7e"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_ID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    """Create rule, legacy server, wallet and role assignment tables."""
    op.create_table(
        "verifier_rules",
        sa.Column("id", _ID, primary_key=True),
        sa.Column("server_id", sa.Text(), nullable=False),
        sa.Column("server_name", sa.Text(), nullable=True),
        sa.Column("channel_id", sa.Text(), nullable=True),
        sa.Column("channel_name", sa.Text(), nullable=True),
        sa.Column("message_id", sa.Text(), nullable=True),
        sa.Column("slug", sa.Text(), nullable=True),
        sa.Column("role_id", sa.Text(), nullable=False),
        sa.Column("role_name", sa.Text(), nullable=True),
        sa.Column("attribute_key", sa.Text(), nullable=True),
        sa.Column("attribute_value", sa.Text(), nullable=True),
        sa.Column("min_items", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_verifier_rules_server_id", "verifier_rules", ["server_id"])
    op.create_index(
        "ix_verifier_rules_message",
        "verifier_rules",
        ["server_id", "channel_id", "message_id"],
    )

    op.create_table(
        "verifier_servers",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("role_id", sa.Text(), nullable=False),
    )

    op.create_table(
        "user_wallets",
        sa.Column("id", _ID, primary_key=True),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("address", sa.Text(), nullable=False),
        sa.Column("user_name", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_verified_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "address", name="uq_user_wallets_user_address"),
    )
    op.create_index("ix_user_wallets_user_id", "user_wallets", ["user_id"])

    op.create_table(
        "verifier_user_roles",
        sa.Column("id", _ID, primary_key=True),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("server_id", sa.Text(), nullable=False),
        sa.Column("role_id", sa.Text(), nullable=False),
        sa.Column("rule_id", sa.BigInteger(), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("user_name", sa.Text(), nullable=True),
        sa.Column("server_name", sa.Text(), nullable=True),
        sa.Column("role_name", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="active"),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_checked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "server_id", "role_id", name="uq_user_roles_triple"),
    )
    op.create_index(
        "ix_user_roles_status_checked",
        "verifier_user_roles",
        ["status", "last_checked_at"],
    )


def downgrade() -> None:
    """Drop verification tables."""
    op.drop_index("ix_user_roles_status_checked", table_name="verifier_user_roles")
    op.drop_table("verifier_user_roles")
    op.drop_index("ix_user_wallets_user_id", table_name="user_wallets")
    op.drop_table("user_wallets")
    op.drop_table("verifier_servers")
    op.drop_index("ix_verifier_rules_message", table_name="verifier_rules")
    op.drop_index("ix_verifier_rules_server_id", table_name="verifier_rules")
    op.drop_table("verifier_rules")
