"""initial mdm schema: admins, devices, telemetry tables, summary, directory users

Revision ID: 0001_initial_mdm_schema
Revises: None
Create Date: 2026-10-17 00:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_initial_mdm_schema"
down_revision = None
branch_labels = None
depends_on = None

TELEMETRY_TABLES = (
    "system_info",
    "disk_encryption_info",
    "password_manager_info",
    "antivirus_info",
    "screen_lock_info",
    "apps_info",
)


def upgrade() -> None:
    op.create_table(
        "admins",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=512), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_admins_email", "admins", ["email"], unique=True)

    op.create_table(
        "devices",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("serial_no", sa.String(length=255), nullable=False),
        sa.Column("user_email", sa.String(length=255), nullable=False),
        sa.Column("computer_name", sa.String(length=255), nullable=True),
        sa.Column("os_type", sa.String(length=50), nullable=False),
        sa.Column("os_version", sa.String(length=100), nullable=True),
        sa.Column("agent_version", sa.String(length=50), nullable=True),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="unknown"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_devices_serial_no", "devices", ["serial_no"], unique=True)
    op.create_index("ix_devices_user_email", "devices", ["user_email"])
    op.create_index("ix_devices_os_type", "devices", ["os_type"])
    op.create_index("ix_devices_last_seen", "devices", ["last_seen"])

    for table in TELEMETRY_TABLES:
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("device_id", sa.Integer(), sa.ForeignKey("devices.id", ondelete="CASCADE"), nullable=False),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.Column("data", sa.Text(), nullable=False),
            sa.Column("error", sa.String(length=1024), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index(f"ix_{table}_device_id", table, ["device_id"])
        op.create_index(f"ix_{table}_timestamp", table, ["timestamp"])
        op.create_index(f"idx_{table}_device_ts", table, ["device_id", "timestamp"])

    op.create_table(
        "device_summary",
        sa.Column("device_id", sa.Integer(), sa.ForeignKey("devices.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("last_report", sa.DateTime(timezone=True), nullable=True),
        *[sa.Column(table, sa.Boolean(), nullable=False, server_default=sa.false()) for table in TELEMETRY_TABLES],
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_device_summary_last_report", "device_summary", ["last_report"])

    op.create_table(
        "users",
        sa.Column("gid", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("account_type", sa.String(length=16), nullable=False, server_default="user"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    op.drop_index("ix_device_summary_last_report", table_name="device_summary")
    op.drop_table("device_summary")
    for table in reversed(TELEMETRY_TABLES):
        op.drop_index(f"idx_{table}_device_ts", table_name=table)
        op.drop_index(f"ix_{table}_timestamp", table_name=table)
        op.drop_index(f"ix_{table}_device_id", table_name=table)
        op.drop_table(table)
    op.drop_index("ix_devices_last_seen", table_name="devices")
    op.drop_index("ix_devices_os_type", table_name="devices")
    op.drop_index("ix_devices_user_email", table_name="devices")
    op.drop_index("ix_devices_serial_no", table_name="devices")
    op.drop_table("devices")
    op.drop_index("ix_admins_email", table_name="admins")
    op.drop_table("admins")
