"""Initial schema – users, key material, devices, sessions, device codes, audit

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

Every per-user table cascades on user deletion; sessions also cascade on
device deletion.  user_key_material is keyed by user_id so at most one
envelope per user can ever be inserted.
"""

from alembic import op
import sqlalchemy as sa

# Alembic revision identifiers
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # -- users ----------------------------------------------------------
    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        # JSON text, parsed into NotificationPreferences
        sa.Column("notification_preferences", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"])

    # -- user_key_material ----------------------------------------------
    op.create_table(
        "user_key_material",
        sa.Column(
            "user_id",
            sa.String(64),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        # base64( ciphertext || 16-byte GCM tag ) – never plaintext
        sa.Column("ciphertext", sa.Text(), nullable=False),
        # base64( 12-byte AES-GCM nonce )
        sa.Column("iv", sa.String(64), nullable=False),
        sa.Column("key_id", sa.String(64), nullable=False, server_default="default"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # -- devices --------------------------------------------------------
    op.create_table(
        "devices",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(64),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", sa.Enum("web", "extension", name="device_type"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("last_ip_address", sa.String(45), nullable=True),
        sa.Column("last_user_agent", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("revoked", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_devices_user_id", "devices", ["user_id"])
    op.create_index("ix_devices_revoked", "devices", ["revoked"])

    # -- sessions -------------------------------------------------------
    op.create_table(
        "sessions",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(64),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "device_id",
            sa.String(64),
            sa.ForeignKey("devices.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("token", sa.String(128), nullable=False, unique=True),
        sa.Column("session_type", sa.Enum("web", "extension", name="session_type"), nullable=False),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("public_key", sa.Text(), nullable=True),
        sa.Column("key_material_delivered", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("key_material_delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_sessions_user_id", "sessions", ["user_id"])
    op.create_index("ix_sessions_device_id", "sessions", ["device_id"])

    # -- device_codes ---------------------------------------------------
    op.create_table(
        "device_codes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("device_code", sa.String(128), nullable=False, unique=True),
        sa.Column("user_code", sa.String(16), nullable=False, unique=True),
        sa.Column(
            "user_id",
            sa.String(64),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("client_id", sa.String(64), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "approved", "denied", "consumed", name="grant_status"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_polled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_device_codes_device_code", "device_codes", ["device_code"])
    op.create_index("ix_device_codes_user_code", "device_codes", ["user_code"])
    op.create_index("ix_device_codes_user_id", "device_codes", ["user_id"])

    # -- audit_logs -----------------------------------------------------
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            sa.String(64),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        # No FK – survives the deletion of the device it describes
        sa.Column("device_id", sa.String(64), nullable=True),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("request_ip", sa.String(45), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("device_codes")
    op.drop_table("sessions")
    op.drop_table("devices")
    op.drop_table("user_key_material")
    op.drop_table("users")
    sa.Enum(name="grant_status").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="session_type").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="device_type").drop(op.get_bind(), checkfirst=True)
