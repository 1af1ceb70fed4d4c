"""create company, division hierarchy and assignable entity tables

Revision ID: 202610010001
Revises:
Create Date: 2026-10-01 09:00:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610010001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

_ENTITY_TABLES = ("crm_user", "crm_contact", "crm_property", "crm_opportunity", "crm_project")


def _entity_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("division_id", sa.Uuid(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_by", sa.String(length=128), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["company_id"], ["company.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["division_id"], ["division.id"], ondelete="SET NULL"),
    ]


def upgrade() -> None:
    op.create_table(
        "company",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("business_name", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "division",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=150), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("division_type", sa.String(length=32), nullable=False, server_default="GEOGRAPHIC"),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("address", sa.JSON(), nullable=True),
        sa.Column("parent_division_id", sa.Uuid(), nullable=True),
        sa.Column("division_manager_id", sa.Uuid(), nullable=True),
        sa.Column("target_revenue", sa.Numeric(18, 2), nullable=True),
        sa.Column("target_margin_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("employee_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active_projects_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("color_code", sa.String(length=7), nullable=False, server_default="#007bff"),
        sa.Column("icon", sa.String(length=64), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("settings", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column("updated_by", sa.String(length=128), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["company_id"], ["company.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parent_division_id"], ["division.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "division_type IN ('GEOGRAPHIC', 'SERVICE_LINE', 'MARKET_SEGMENT', 'BUSINESS_UNIT', 'OPERATIONAL')",
            name="ck_division_type",
        ),
    )
    op.create_index("ix_division_scope", "division", ["company_id", "is_active", "sort_order"])
    op.create_index("ix_division_parent", "division", ["parent_division_id"])
    # Case-insensitive name uniqueness among live divisions of a company.
    op.create_index(
        "uq_division_company_name_active",
        "division",
        ["company_id", sa.text("lower(name)")],
        unique=True,
        postgresql_where=sa.text("deleted_at IS NULL"),
    )

    op.create_table(
        "division_closure",
        sa.Column("ancestor_id", sa.Uuid(), nullable=False),
        sa.Column("descendant_id", sa.Uuid(), nullable=False),
        sa.Column("depth", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("ancestor_id", "descendant_id"),
        sa.ForeignKeyConstraint(["ancestor_id"], ["division.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["descendant_id"], ["division.id"], ondelete="CASCADE"),
        sa.CheckConstraint("depth >= 0", name="ck_division_closure_depth"),
    )
    op.create_index("ix_division_closure_descendant", "division_closure", ["descendant_id", "depth"])

    op.create_table(
        "crm_user",
        *_entity_columns(),
        sa.Column("first_name", sa.Text(), nullable=False),
        sa.Column("last_name", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=False),
    )
    op.create_table(
        "crm_contact",
        *_entity_columns(),
        sa.Column("first_name", sa.Text(), nullable=False),
        sa.Column("last_name", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
    )
    op.create_table(
        "crm_property",
        *_entity_columns(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("street", sa.Text(), nullable=True),
        sa.Column("city", sa.Text(), nullable=True),
    )
    op.create_table(
        "crm_opportunity",
        *_entity_columns(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=True),
    )
    op.create_table(
        "crm_project",
        *_entity_columns(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("project_status", sa.String(length=32), nullable=False, server_default="PLANNING"),
        sa.Column("contract_value", sa.Numeric(18, 2), nullable=False, server_default="0"),
    )
    for table_name in _ENTITY_TABLES:
        op.create_index(f"ix_{table_name}_division", table_name, ["company_id", "division_id", "is_active"])


def downgrade() -> None:
    for table_name in reversed(_ENTITY_TABLES):
        op.drop_index(f"ix_{table_name}_division", table_name=table_name)
        op.drop_table(table_name)
    op.drop_index("ix_division_closure_descendant", table_name="division_closure")
    op.drop_table("division_closure")
    op.drop_index("uq_division_company_name_active", table_name="division")
    op.drop_index("ix_division_parent", table_name="division")
    op.drop_index("ix_division_scope", table_name="division")
    op.drop_table("division")
    op.drop_table("company")
