"""Baseline schema: tenants, users, CRM records, pipelines and deals.

Optional elements (deal client/owner/proposal columns, products, subscriptions,
tenant branding and CRM settings) are applied by the schema upgrader.

Revision ID: 001_baseline
Revises:
Create Date: 2026-09-14

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_baseline"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", sa.String(64), primary_key=True)


def _tenant_fk() -> sa.Column:
    return sa.Column("tenant_id", sa.String(64), sa.ForeignKey("tenants.id"), nullable=False, index=True)


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    op.create_table(
        "tenants",
        _id(),
        sa.Column("name", sa.String(200), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "users",
        _id(),
        _tenant_fk(),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("role", sa.String(16), nullable=False, server_default="MEMBER"),
        _timestamp("created_at"),
        sa.CheckConstraint("role IN ('OWNER', 'ADMIN', 'MEMBER')", name="ck_users_role"),
    )

    op.create_table(
        "clients",
        _id(),
        _tenant_fk(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(64), nullable=True),
        sa.Column("company", sa.String(200), nullable=True),
        sa.Column("first_name", sa.String(120), nullable=True),
        sa.Column("function", sa.String(120), nullable=True),
        sa.Column("company_sector", sa.String(120), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "tasks",
        _id(),
        _tenant_fk(),
        sa.Column("client_id", sa.String(64), sa.ForeignKey("clients.id"), nullable=False, index=True),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("time_spent_hours", sa.Float(), nullable=True),
        sa.Column("amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "invoices",
        _id(),
        _tenant_fk(),
        sa.Column("client_id", sa.String(64), sa.ForeignKey("clients.id"), nullable=True, index=True),
        sa.Column("file_path", sa.String(500), nullable=False),
        sa.Column("original_filename", sa.String(300), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="UPLOADED"),
        sa.Column("amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("issued_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("extracted_raw", sa.Text(), nullable=True),
        _timestamp("created_at"),
    )

    op.create_table(
        "pipelines",
        _id(),
        _tenant_fk(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "stages",
        _id(),
        _tenant_fk(),
        sa.Column("pipeline_id", sa.String(64), sa.ForeignKey("pipelines.id"), nullable=False, index=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("probability", sa.Float(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(8), nullable=False, server_default="OPEN"),
        _timestamp("created_at"),
    )

    op.create_table(
        "deals",
        _id(),
        _tenant_fk(),
        sa.Column("pipeline_id", sa.String(64), sa.ForeignKey("pipelines.id"), nullable=False, index=True),
        sa.Column("stage_id", sa.String(64), sa.ForeignKey("stages.id"), nullable=False, index=True),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("value", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("expected_close_date", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "deal_stage_history",
        _id(),
        _tenant_fk(),
        sa.Column("deal_id", sa.String(64), sa.ForeignKey("deals.id"), nullable=False, index=True),
        sa.Column("from_stage_id", sa.String(64), nullable=True),
        sa.Column("to_stage_id", sa.String(64), nullable=False),
        _timestamp("changed_at"),
    )


def downgrade() -> None:
    for table in (
        "deal_stage_history",
        "deals",
        "stages",
        "pipelines",
        "invoices",
        "tasks",
        "clients",
        "users",
        "tenants",
    ):
        op.drop_table(table)
