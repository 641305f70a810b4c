"""Add workspace and automation tables: data_tables, data_fields, data_records,
automations, automation_sync_links, automation_executions

Revision ID: add_workspace_automation_tables
Revises:
Create Date: 2026-10-01 00:00:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "add_workspace_automation_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    # Create data_tables table
    op.create_table(
        "data_tables",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("base_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_data_tables_base_id", "data_tables", ["base_id"], unique=False)

    # Create data_fields table
    op.create_table(
        "data_fields",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("table_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("options", JSONType, nullable=True),
        sa.ForeignKeyConstraint(["table_id"], ["data_tables.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_data_fields_table_id", "data_fields", ["table_id"], unique=False)

    # Create data_records table
    op.create_table(
        "data_records",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("table_id", sa.String(length=36), nullable=False),
        sa.Column("values", JSONType, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["table_id"], ["data_tables.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_data_records_table_created", "data_records", ["table_id", "created_at"], unique=False
    )

    # Create automations table
    op.create_table(
        "automations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("table_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("enabled", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("trigger", JSONType, nullable=False),
        sa.Column("action", JSONType, nullable=False),
        sa.Column("target_table_id", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_automations_table_id", "automations", ["table_id"], unique=False)
    op.create_index("ix_automations_enabled", "automations", ["enabled"], unique=False)
    op.create_index(
        "ix_automations_target_table_id", "automations", ["target_table_id"], unique=False
    )
    op.create_index(
        "idx_automations_table_enabled", "automations", ["table_id", "enabled"], unique=False
    )

    # Create automation_sync_links table (no FK: links outlive their automation)
    op.create_table(
        "automation_sync_links",
        sa.Column("automation_id", sa.Uuid(), nullable=False),
        sa.Column("source_record_id", sa.String(length=36), nullable=False),
        sa.Column("target_record_id", sa.String(length=36), nullable=False),
        sa.Column("source_table_id", sa.String(length=36), nullable=False),
        sa.Column("target_table_id", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("automation_id", "source_record_id"),
    )
    op.create_index(
        "ix_automation_sync_links_target_record_id",
        "automation_sync_links",
        ["target_record_id"],
        unique=False,
    )
    op.create_index(
        "idx_sync_links_automation_target",
        "automation_sync_links",
        ["automation_id", "target_record_id"],
        unique=False,
    )

    # Create automation_executions table
    op.create_table(
        "automation_executions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("automation_id", sa.Uuid(), nullable=False),
        sa.Column("event_id", sa.Uuid(), nullable=False),
        sa.Column("direction", sa.String(length=10), nullable=False, server_default="forward"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="success"),
        sa.Column("depth", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("result", JSONType, nullable=True),
        sa.Column("error_code", sa.String(length=64), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_automation_executions_automation_id",
        "automation_executions",
        ["automation_id"],
        unique=False,
    )
    op.create_index(
        "ix_automation_executions_event_id", "automation_executions", ["event_id"], unique=False
    )
    op.create_index(
        "ix_automation_executions_status", "automation_executions", ["status"], unique=False
    )
    op.create_index(
        "ix_automation_executions_executed_at",
        "automation_executions",
        ["executed_at"],
        unique=False,
    )
    op.create_index(
        "idx_automation_executions_automation_event",
        "automation_executions",
        ["automation_id", "event_id", "direction"],
        unique=True,
    )
    op.create_index(
        "idx_automation_executions_automation_status",
        "automation_executions",
        ["automation_id", "status"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_table("automation_executions")
    op.drop_table("automation_sync_links")
    op.drop_table("automations")
    op.drop_table("data_records")
    op.drop_table("data_fields")
    op.drop_table("data_tables")
