"""Initial schema.

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

Creates all tables for VaultKeep:
- vaults, vault_members, vault_policies (vaults and release policies)
- vault_items, vault_item_visibilities and the five payload tables
- vault_invites
- vault_logs, notifications
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ENUMS: dict[str, tuple[str, ...]] = {
    "vault_status": ("active", "deleted"),
    "privilege": ("owner", "admin", "member"),
    "member_status": ("active", "left", "removed"),
    "policy_type": ("immediate", "time_based", "expiry_based", "manual_release"),
    "release_status": ("pending", "released", "expired", "revoked"),
    "item_type": ("document", "password", "note", "link", "crypto_wallet"),
    "item_status": ("active", "deleted"),
    "item_permission": ("view", "edit"),
    "invite_status": ("pending", "sent", "accepted", "cancelled", "expired"),
    "content_format": ("plain_text", "markdown", "rich_text"),
    "wallet_type": ("seed_phrase", "private_key", "wallet_file", "exchange_account"),
    "vault_log_action": (
        "create_item",
        "update_item",
        "delete_item",
        "restore_item",
        "share_item",
        "member_joined",
        "member_left",
        "member_removed",
        "privilege_changed",
        "ownership_transferred",
        "vault_released",
        "vault_revoked",
        "vault_deleted",
        "vault_restored",
    ),
    "notification_category": ("vault_released",),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def _timestamp_column(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def _fk(table: str, column: str, target: str) -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint(
        [column],
        [f"{target}.id"],
        name=op.f(f"fk_{table}_{column}_{target}"),
        ondelete="RESTRICT",
    )


def _payload_table(table: str, *columns: sa.Column) -> None:
    op.create_table(
        table,
        _id_column(),
        sa.Column("vault_item_id", postgresql.UUID(as_uuid=True), nullable=False),
        *columns,
        _fk(table, "vault_item_id", "vault_items"),
        sa.PrimaryKeyConstraint("id", name=op.f(f"pk_{table}")),
        sa.UniqueConstraint("vault_item_id", name=op.f(f"uq_{table}_vault_item_id")),
    )


def upgrade() -> None:
    """Apply migration: initial schema."""
    bind = op.get_bind()
    for name in ENUMS:
        _enum(name).create(bind, checkfirst=True)

    # =========================================================================
    # Vaults
    # =========================================================================
    op.create_table(
        "vaults",
        _id_column(),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("original_owner_id", sa.String(255), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.String(2000), nullable=True),
        sa.Column("status", _enum("vault_status"), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by", sa.String(255), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_vaults")),
    )
    op.create_index("ix_vaults_owner_id", "vaults", ["owner_id"], unique=False)
    op.create_index("ix_vaults_status", "vaults", ["status"], unique=False)

    op.create_table(
        "vault_members",
        _id_column(),
        sa.Column("vault_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("privilege", _enum("privilege"), nullable=False),
        sa.Column("status", _enum("member_status"), nullable=False),
        sa.Column("added_by_id", sa.String(255), nullable=True),
        sa.Column("removed_by_id", sa.String(255), nullable=True),
        _timestamp_column("joined_at"),
        sa.Column("left_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("removed_at", sa.DateTime(timezone=True), nullable=True),
        _fk("vault_members", "vault_id", "vaults"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_vault_members")),
    )
    op.create_index(
        "uq_vault_members_active_vault_user",
        "vault_members",
        ["vault_id", "user_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )
    op.create_index("ix_vault_members_user_id", "vault_members", ["user_id"], unique=False)

    op.create_table(
        "vault_policies",
        _id_column(),
        _timestamp_column("created_at"),
        sa.Column("vault_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("policy_type", _enum("policy_type"), nullable=False),
        sa.Column("release_status", _enum("release_status"), nullable=False),
        sa.Column("release_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("released_by_id", sa.String(255), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_by_id", sa.String(255), nullable=True),
        sa.Column("note", sa.String(1000), nullable=True),
        sa.CheckConstraint(
            "(policy_type = 'time_based') = (release_date IS NOT NULL)",
            name=op.f("ck_vault_policies_release_date_iff_time_based"),
        ),
        sa.CheckConstraint(
            "(policy_type = 'expiry_based') = (expires_at IS NOT NULL)",
            name=op.f("ck_vault_policies_expires_at_iff_expiry_based"),
        ),
        _fk("vault_policies", "vault_id", "vaults"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_vault_policies")),
        sa.UniqueConstraint("vault_id", name=op.f("uq_vault_policies_vault_id")),
    )

    # =========================================================================
    # Items
    # =========================================================================
    op.create_table(
        "vault_items",
        _id_column(),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.Column("vault_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("created_by_user_id", sa.String(255), nullable=False),
        sa.Column("item_type", _enum("item_type"), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.String(2000), nullable=True),
        sa.Column("status", _enum("item_status"), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by", sa.String(255), nullable=True),
        _fk("vault_items", "vault_id", "vaults"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_vault_items")),
    )
    op.create_index("ix_vault_items_vault_id", "vault_items", ["vault_id"], unique=False)
    op.create_index(
        "ix_vault_items_created_by_user_id",
        "vault_items",
        ["created_by_user_id"],
        unique=False,
    )

    op.create_table(
        "vault_item_visibilities",
        _id_column(),
        _timestamp_column("created_at"),
        sa.Column("vault_item_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("vault_member_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("permission", _enum("item_permission"), nullable=False),
        _fk("vault_item_visibilities", "vault_item_id", "vault_items"),
        _fk("vault_item_visibilities", "vault_member_id", "vault_members"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_vault_item_visibilities")),
        sa.UniqueConstraint(
            "vault_item_id",
            "vault_member_id",
            name=op.f("uq_vault_item_visibilities_vault_item_id"),
        ),
    )
    op.create_index(
        "ix_vault_item_visibilities_vault_member_id",
        "vault_item_visibilities",
        ["vault_member_id"],
        unique=False,
    )

    _payload_table(
        "vault_passwords",
        sa.Column("username", sa.String(500), nullable=True),
        sa.Column("password_ciphertext", sa.Text(), nullable=False),
        sa.Column("website_url", sa.String(2000), nullable=True),
        sa.Column("notes_ciphertext", sa.Text(), nullable=True),
    )
    _payload_table(
        "vault_notes",
        sa.Column("content_ciphertext", sa.Text(), nullable=False),
        sa.Column("content_format", _enum("content_format"), nullable=False),
    )
    _payload_table(
        "vault_links",
        sa.Column("url", sa.String(2000), nullable=False),
        sa.Column("notes_ciphertext", sa.Text(), nullable=True),
    )
    _payload_table(
        "vault_crypto_wallets",
        sa.Column("wallet_type", _enum("wallet_type"), nullable=False),
        sa.Column("platform_name", sa.String(200), nullable=True),
        sa.Column("secret_ciphertext", sa.Text(), nullable=False),
        sa.Column("public_address", sa.String(500), nullable=True),
        sa.Column("notes_ciphertext", sa.Text(), nullable=True),
    )
    _payload_table(
        "vault_documents",
        sa.Column("object_key", sa.String(500), nullable=False),
        sa.Column("file_name", sa.String(500), nullable=False),
        sa.Column("content_type", sa.String(255), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
    )

    # =========================================================================
    # Invites
    # =========================================================================
    op.create_table(
        "vault_invites",
        _id_column(),
        _timestamp_column("created_at"),
        sa.Column("vault_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("inviter_id", sa.String(255), nullable=False),
        sa.Column("invitee_email", sa.String(320), nullable=False),
        sa.Column("invitee_id", sa.String(255), nullable=True),
        sa.Column("privilege", _enum("privilege"), nullable=False),
        sa.Column("status", _enum("invite_status"), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("note", sa.String(1000), nullable=True),
        _fk("vault_invites", "vault_id", "vaults"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_vault_invites")),
        sa.UniqueConstraint("token_hash", name=op.f("uq_vault_invites_token_hash")),
    )
    op.create_index("ix_vault_invites_vault_id", "vault_invites", ["vault_id"], unique=False)
    op.create_index(
        "ix_vault_invites_invitee_email", "vault_invites", ["invitee_email"], unique=False
    )

    # =========================================================================
    # Activity
    # =========================================================================
    op.create_table(
        "vault_logs",
        _id_column(),
        _timestamp_column("created_at"),
        sa.Column("vault_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("action", _enum("vault_log_action"), nullable=False),
        sa.Column("item_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("target_user_id", sa.String(255), nullable=True),
        sa.Column("details", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _fk("vault_logs", "vault_id", "vaults"),
        _fk("vault_logs", "item_id", "vault_items"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_vault_logs")),
    )
    op.create_index(
        "ix_vault_logs_vault_id_created_at",
        "vault_logs",
        ["vault_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "notifications",
        _id_column(),
        _timestamp_column("created_at"),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("vault_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("category", _enum("notification_category"), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.String(2000), nullable=False),
        sa.Column("is_read", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        _fk("notifications", "vault_id", "vaults"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notifications")),
    )
    op.create_index(
        "ix_notifications_user_id_is_read",
        "notifications",
        ["user_id", "is_read"],
        unique=False,
    )


def downgrade() -> None:
    """Revert migration: initial schema."""
    # Drop tables in reverse order (respecting foreign key dependencies)
    op.drop_table("notifications")
    op.drop_table("vault_logs")
    op.drop_table("vault_invites")
    op.drop_table("vault_documents")
    op.drop_table("vault_crypto_wallets")
    op.drop_table("vault_links")
    op.drop_table("vault_notes")
    op.drop_table("vault_passwords")
    op.drop_table("vault_item_visibilities")
    op.drop_table("vault_items")
    op.drop_table("vault_policies")
    op.drop_table("vault_members")
    op.drop_table("vaults")

    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
