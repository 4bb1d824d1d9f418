"""create pm sync tables

Revision ID: 5f2a9c1d7e30
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "5f2a9c1d7e30"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SNAPSHOT_TABLES = (
    "pm_app_content_sizing",
    "pm_api_response",
    "pm_app_other_api_response",
)


def _create_snapshot_table(name: str) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("plan_id", sa.Integer(), nullable=False),
        sa.Column("env_id", sa.Integer(), nullable=False),
        sa.Column("bucket_key", sa.String(length=10), nullable=False, server_default=""),
        sa.Column(
            "payload",
            sa.JSON().with_variant(postgresql.JSONB, "postgresql"),
            nullable=False,
        ),
        sa.Column("record_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("imported_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["plan_id"], ["pm_plan.id"]),
        sa.ForeignKeyConstraint(["env_id"], ["env.id"]),
        sa.UniqueConstraint("plan_id", "env_id", "bucket_key", name=f"uq_{name}_key"),
    )
    op.create_index(f"ix_{name}_plan_id", name, ["plan_id"])


def upgrade() -> None:
    bind = op.get_bind()
    existing = set(sa.inspect(bind).get_table_names())

    if "customer" not in existing:
        op.create_table(
            "customer",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("code", sa.String(length=60), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=True),
            sa.Column("project_name", sa.String(length=200), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        )
        op.create_index("ix_customer_code", "customer", ["code"])

    if "env" not in existing:
        op.create_table(
            "env",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
        )

    if "customer_env" not in existing:
        op.create_table(
            "customer_env",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("customer_id", sa.Integer(), nullable=False),
            sa.Column("env_id", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["customer_id"], ["customer.id"]),
            sa.ForeignKeyConstraint(["env_id"], ["env.id"]),
            sa.UniqueConstraint("customer_id", "env_id", name="uq_customer_env_link"),
        )
        op.create_index("ix_customer_env_customer_id", "customer_env", ["customer_id"])
        op.create_index("ix_customer_env_env_id", "customer_env", ["env_id"])

    if "pm_plan" not in existing:
        op.create_table(
            "pm_plan",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("customer_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=True),
            sa.Column("year", sa.String(length=4), nullable=True),
            sa.Column("round", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["customer_id"], ["customer.id"]),
        )
        op.create_index("ix_pm_plan_customer_id", "pm_plan", ["customer_id"])

    if "url_share" not in existing:
        op.create_table(
            "url_share",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("owner_id", sa.Integer(), nullable=False),
            sa.Column("url", sa.Text(), nullable=False),
            sa.Column("type", sa.String(length=40), nullable=False, server_default="project"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["owner_id"], ["customer.id"]),
        )
        op.create_index("ix_url_share_owner_created", "url_share", ["owner_id", "created_at"])

    if "app_settings" not in existing:
        op.create_table(
            "app_settings",
            sa.Column("setting_key", sa.String(length=120), primary_key=True),
            sa.Column("setting_value", sa.Text(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
        )

    for name in SNAPSHOT_TABLES:
        if name not in existing:
            _create_snapshot_table(name)


def downgrade() -> None:
    for name in reversed(SNAPSHOT_TABLES):
        op.drop_index(f"ix_{name}_plan_id", table_name=name)
        op.drop_table(name)
    op.drop_table("app_settings")
    op.drop_index("ix_url_share_owner_created", table_name="url_share")
    op.drop_table("url_share")
    # customer/env/customer_env/pm_plan belong to the surrounding application
    # and may predate this migration; they are left in place.
